import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_schedule_schema_checked = False
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_schedule_schema() -> None:
    global _schedule_schema_checked

    if _schedule_schema_checked:
        return

    with _schema_lock:
        if _schedule_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctor_availability' not in inspector.get_table_names():
            _schedule_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('doctor_availability')}

        with engine.begin() as connection:
            if 'location_id' not in existing_columns:
                connection.execute(text('ALTER TABLE doctor_availability ADD COLUMN location_id VARCHAR'))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_doctor_availability_doctor_day '
                    'ON doctor_availability(doctor_id, day_of_week)'
                )
            )

        _schedule_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('duration_minutes', 'ALTER TABLE appointments ADD COLUMN duration_minutes INTEGER'),
            ('location_id', 'ALTER TABLE appointments ADD COLUMN location_id VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date '
                    'ON appointments(doctor_id, appointment_date)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_org_status '
                    'ON appointments(organization_id, status)'
                )
            )

        _appointment_schema_checked = True
