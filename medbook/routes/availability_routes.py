from datetime import datetime

import pytz
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_optional_user, resolve_actor_role
from medbook.core import config
from medbook.database import get_db
from medbook.models.user import User
from medbook.services.availability import (
    AvailabilityQuery,
    DayAvailability,
    InvalidDateRange,
    Role,
    UpstreamDataError,
    compute_availability,
    parse_date_range,
)
from medbook.services.schedule_store import load_availability_inputs

router = APIRouter(tags=['availability'])


def current_time() -> datetime:
    """Clinic wall-clock time; the one place requests read the clock."""
    return datetime.now(pytz.timezone(config.CLINIC_TIMEZONE)).replace(tzinfo=None)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'success': False, 'error': message})


def resolve_request_role(current_user: User | None, user_role: str | None) -> Role | None:
    """An authenticated user's role wins over the ``userRole`` parameter."""
    if current_user is not None:
        return resolve_actor_role(current_user)
    if not user_role or not user_role.strip():
        return None
    return Role(user_role.strip().lower())


def run_availability(db: Session, query: AvailabilityQuery, now: datetime, slot_duration_minutes: int) -> list[DayAvailability]:
    start, end = parse_date_range(query.start_date, query.end_date)
    if (end - start).days + 1 > config.MAX_AVAILABILITY_RANGE_DAYS:
        raise InvalidDateRange(f'Date range cannot exceed {config.MAX_AVAILABILITY_RANGE_DAYS} days.')

    first_day = max(start, now.date())
    if first_day > end:
        return []

    inputs = load_availability_inputs(db, query, first_day, end)
    return compute_availability(
        query,
        inputs.schedules,
        inputs.appointments,
        now,
        blocks=inputs.blocks,
        slot_duration_minutes=slot_duration_minutes,
        advance_booking_hours=config.STANDARD_ADVANCE_BOOKING_HOURS,
        locale=config.DAY_NAME_LOCALE,
    )


def serialize_days(days: list[DayAvailability]) -> dict[str, dict]:
    return {
        day.date: day.model_dump(mode='json', by_alias=True, exclude={'date'}, exclude_none=True)
        for day in days
    }


@router.get('/availability')
def get_availability(
    organization_id: str | None = Query(default=None, alias='organizationId'),
    start_date: str | None = Query(default=None, alias='startDate'),
    end_date: str | None = Query(default=None, alias='endDate'),
    service_id: str | None = Query(default=None, alias='serviceId'),
    doctor_id: str | None = Query(default=None, alias='doctorId'),
    location_id: str | None = Query(default=None, alias='locationId'),
    user_role: str | None = Query(default=None, alias='userRole'),
    use_standard_rules: bool = Query(default=False, alias='useStandardRules'),
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if not organization_id or not start_date or not end_date:
        return error_response(status.HTTP_400_BAD_REQUEST, 'organizationId, startDate and endDate are required.')

    try:
        role = resolve_request_role(current_user, user_role)
    except ValueError:
        return error_response(status.HTTP_400_BAD_REQUEST, 'Invalid userRole.')

    query = AvailabilityQuery(
        organization_id=organization_id,
        start_date=start_date,
        end_date=end_date,
        service_id=service_id or None,
        doctor_id=doctor_id or None,
        location_id=location_id or None,
        user_role=role,
        use_standard_rules=use_standard_rules,
    )

    try:
        days = run_availability(db, query, current_time(), config.SLOT_DURATION_MINUTES)
    except InvalidDateRange as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    except UpstreamDataError as exc:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    return {'success': True, 'data': serialize_days(days)}
