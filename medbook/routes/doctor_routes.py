from datetime import time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_optional_user, require_staff
from medbook.database import ensure_appointment_schema, ensure_schedule_schema, get_db
from medbook.models.schedule import DoctorAvailability
from medbook.models.user import User
from medbook.routes.availability_routes import (
    current_time,
    error_response,
    resolve_request_role,
    run_availability,
)
from medbook.services.availability import (
    AvailabilityQuery,
    CamelModel,
    InvalidDateRange,
    UpstreamDataError,
    day_of_week,
    parse_iso_date,
)

router = APIRouter(tags=['doctors'])

MIN_SLOT_DURATION_MINUTES = 15
MAX_SLOT_DURATION_MINUTES = 240


class CreateScheduleEntryRequest(CamelModel):
    day_of_week: int
    start_time: time
    end_time: time
    location_id: str | None = None
    is_active: bool = True

    @field_validator('location_id')
    @classmethod
    def normalize_location_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class ScheduleEntryResponse(CamelModel):
    id: str
    doctor_id: str
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool
    location_id: str | None = None


def ensure_database_ready() -> None:
    try:
        ensure_schedule_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc


def validate_schedule_window(day: int, start_time: time, end_time: time) -> None:
    if not 0 <= day <= 6:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='dayOfWeek must be between 0 (Sunday) and 6 (Saturday).',
        )

    if start_time >= end_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='startTime must be earlier than endTime.',
        )


@router.get('/availability')
def get_doctor_day_availability(
    organization_id: str | None = Query(default=None, alias='organizationId'),
    date: str | None = Query(default=None),
    doctor_id: str | None = Query(default=None, alias='doctorId'),
    service_id: str | None = Query(default=None, alias='serviceId'),
    duration: int = Query(default=30),
    user_role: str | None = Query(default=None, alias='userRole'),
    use_standard_rules: bool = Query(default=False, alias='useStandardRules'),
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if not organization_id or not date:
        return error_response(status.HTTP_400_BAD_REQUEST, 'organizationId and date are required.')

    if not MIN_SLOT_DURATION_MINUTES <= duration <= MAX_SLOT_DURATION_MINUTES:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            f'duration must be between {MIN_SLOT_DURATION_MINUTES} and {MAX_SLOT_DURATION_MINUTES} minutes.',
        )

    try:
        role = resolve_request_role(current_user, user_role)
    except ValueError:
        return error_response(status.HTTP_400_BAD_REQUEST, 'Invalid userRole.')

    query = AvailabilityQuery(
        organization_id=organization_id,
        start_date=date,
        end_date=date,
        service_id=service_id or None,
        doctor_id=doctor_id or None,
        user_role=role,
        use_standard_rules=use_standard_rules,
    )

    try:
        target_date = parse_iso_date(date, 'date')
        days = run_availability(db, query, current_time(), duration)
    except InvalidDateRange as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    except UpstreamDataError as exc:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    available = [
        slot.model_dump(mode='json', by_alias=True, exclude_none=True)
        for day in days
        for slot in day.slots
        if slot.available
    ]

    return {
        'success': True,
        'data': available,
        'count': len(available),
        'date': target_date.isoformat(),
        'dayOfWeek': day_of_week(target_date),
        'durationMinutes': duration,
    }


@router.get('/{doctor_id}/schedule', response_model=list[ScheduleEntryResponse])
def list_schedule_entries(
    doctor_id: str,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return db.query(DoctorAvailability).filter(
            DoctorAvailability.organization_id == current_user.organization_id,
            DoctorAvailability.doctor_id == doctor_id,
        ).order_by(DoctorAvailability.day_of_week.asc(), DoctorAvailability.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc


@router.post('/{doctor_id}/schedule', response_model=ScheduleEntryResponse, status_code=status.HTTP_201_CREATED)
def create_schedule_entry(
    doctor_id: str,
    data: CreateScheduleEntryRequest,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    validate_schedule_window(data.day_of_week, data.start_time, data.end_time)

    ensure_database_ready()

    try:
        overlapping_entry = db.query(DoctorAvailability).filter(
            DoctorAvailability.organization_id == current_user.organization_id,
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.day_of_week == data.day_of_week,
            DoctorAvailability.is_active.is_(True),
            DoctorAvailability.start_time < data.end_time,
            DoctorAvailability.end_time > data.start_time,
        ).first()

        if overlapping_entry:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This schedule overlaps an existing entry for the same day.',
            )

        entry = DoctorAvailability(
            organization_id=current_user.organization_id,
            doctor_id=doctor_id,
            day_of_week=data.day_of_week,
            start_time=data.start_time,
            end_time=data.end_time,
            is_active=data.is_active,
            location_id=data.location_id,
        )

        db.add(entry)
        db.commit()
        db.refresh(entry)

        return entry
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc


@router.delete('/{doctor_id}/schedule/{schedule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule_entry(
    doctor_id: str,
    schedule_id: str,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        entry = db.query(DoctorAvailability).filter(
            DoctorAvailability.id == schedule_id,
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.organization_id == current_user.organization_id,
        ).first()

        if not entry:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Schedule entry not found.',
            )

        db.delete(entry)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc
