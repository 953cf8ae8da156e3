"""Database loaders that feed the availability calculator.

Tenant, doctor, location and service scoping happens here so the calculator
only deals with dates, times and roles.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import NamedTuple

from pydantic import ValidationError
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.models.appointment import Appointment
from medbook.models.availability_block import AvailabilityBlock
from medbook.models.doctor_service import DoctorService
from medbook.models.schedule import DoctorAvailability
from medbook.services.availability import (
    DEFAULT_SLOT_DURATION_MINUTES,
    NON_BLOCKING_STATUSES,
    AvailabilityBlockEntry,
    AvailabilityQuery,
    BookedAppointment,
    UpstreamDataError,
    WeeklyScheduleEntry,
)

logger = logging.getLogger(__name__)


class AvailabilityInputs(NamedTuple):
    schedules: list[WeeklyScheduleEntry]
    appointments: list[BookedAppointment]
    blocks: list[AvailabilityBlockEntry]


def fetch_weekly_schedules(
    db: Session,
    organization_id: str,
    doctor_id: str | None = None,
    location_id: str | None = None,
    service_id: str | None = None,
) -> list[WeeklyScheduleEntry]:
    try:
        query = db.query(DoctorAvailability).filter(
            DoctorAvailability.organization_id == organization_id,
            DoctorAvailability.is_active.is_(True),
        )
        if doctor_id:
            query = query.filter(DoctorAvailability.doctor_id == doctor_id)
        if location_id:
            query = query.filter(DoctorAvailability.location_id == location_id)
        if service_id:
            query = query.filter(
                DoctorAvailability.doctor_id.in_(
                    select(DoctorService.doctor_id).where(DoctorService.service_id == service_id)
                )
            )
        rows = query.order_by(DoctorAvailability.day_of_week, DoctorAvailability.start_time).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load weekly schedules for organization %s', organization_id)
        raise UpstreamDataError('Error loading doctor schedules.') from exc

    try:
        return [
            WeeklyScheduleEntry(
                doctor_id=row.doctor_id,
                day_of_week=row.day_of_week,
                start_time=row.start_time,
                end_time=row.end_time,
                is_active=bool(row.is_active),
                location_id=row.location_id,
            )
            for row in rows
        ]
    except ValidationError as exc:
        logger.exception('Invalid weekly schedule row for organization %s', organization_id)
        raise UpstreamDataError('Error loading doctor schedules.') from exc


def fetch_booked_appointments(
    db: Session,
    organization_id: str,
    start_date: date,
    end_date: date,
    doctor_id: str | None = None,
) -> list[BookedAppointment]:
    try:
        query = db.query(Appointment).filter(
            Appointment.organization_id == organization_id,
            Appointment.appointment_date >= start_date,
            Appointment.appointment_date <= end_date,
            or_(Appointment.status.is_(None), Appointment.status.notin_(sorted(NON_BLOCKING_STATUSES))),
        )
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        rows = query.all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load appointments for organization %s', organization_id)
        raise UpstreamDataError('Error loading booked appointments.') from exc

    try:
        return [
            BookedAppointment(
                doctor_id=row.doctor_id,
                appointment_date=row.appointment_date,
                start_time=row.start_time,
                duration_minutes=row.duration_minutes or DEFAULT_SLOT_DURATION_MINUTES,
                status=row.status or 'scheduled',
            )
            for row in rows
        ]
    except ValidationError as exc:
        logger.exception('Invalid appointment row for organization %s', organization_id)
        raise UpstreamDataError('Error loading booked appointments.') from exc


def fetch_availability_blocks(
    db: Session,
    organization_id: str,
    start_date: date,
    end_date: date,
    doctor_id: str | None = None,
) -> list[AvailabilityBlockEntry]:
    range_start = datetime.combine(start_date, time())
    range_end = datetime.combine(end_date + timedelta(days=1), time())
    try:
        query = db.query(AvailabilityBlock).filter(
            AvailabilityBlock.organization_id == organization_id,
            AvailabilityBlock.start_datetime < range_end,
            AvailabilityBlock.end_datetime > range_start,
        )
        if doctor_id:
            query = query.filter(AvailabilityBlock.doctor_id == doctor_id)
        rows = query.all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load availability blocks for organization %s', organization_id)
        raise UpstreamDataError('Error loading availability blocks.') from exc

    try:
        return [
            AvailabilityBlockEntry(
                doctor_id=row.doctor_id,
                start_datetime=row.start_datetime,
                end_datetime=row.end_datetime,
                reason=row.reason,
                block_type=row.block_type or 'other',
            )
            for row in rows
        ]
    except ValidationError as exc:
        logger.exception('Invalid availability block row for organization %s', organization_id)
        raise UpstreamDataError('Error loading availability blocks.') from exc


def load_availability_inputs(
    db: Session,
    query: AvailabilityQuery,
    start_date: date,
    end_date: date,
) -> AvailabilityInputs:
    """Load everything the calculator needs for ``query`` between two dates."""
    return AvailabilityInputs(
        schedules=fetch_weekly_schedules(
            db,
            query.organization_id,
            doctor_id=query.doctor_id,
            location_id=query.location_id,
            service_id=query.service_id,
        ),
        appointments=fetch_booked_appointments(
            db,
            query.organization_id,
            start_date,
            end_date,
            doctor_id=query.doctor_id,
        ),
        blocks=fetch_availability_blocks(
            db,
            query.organization_id,
            start_date,
            end_date,
            doctor_id=query.doctor_id,
        ),
    )
