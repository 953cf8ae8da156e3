import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from medbook.core import config
from medbook.database import Base, engine, ensure_appointment_schema, ensure_schedule_schema
from medbook.models import appointment, availability_block, doctor_service, schedule, user  # noqa: F401
from medbook.routes import auth_routes, availability_routes, doctor_routes, gateway_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s [%(levelname)s]: %(name)s:%(lineno)d | %(message)s',
)
logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='MedBook API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_schedule_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'MedBook API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(availability_routes.router, prefix='/appointments')
app.include_router(doctor_routes.router, prefix='/doctors')
app.include_router(gateway_routes.router, prefix='/channels/whatsapp')
