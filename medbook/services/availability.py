"""Appointment availability calculation.

Expands doctors' recurring weekly schedules into dated slots, marks the slots
that collide with availability blocks or booked appointments, applies the
booking window of the acting role and summarizes every day of the range.

Every booking flow (weekly selector, single-day booking, reschedule) goes
through :func:`compute_availability`. The function is pure: the schedules,
the appointments and the current time are all supplied by the caller.
"""

import logging
import re
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_SLOT_DURATION_MINUTES = 30
DEFAULT_ADVANCE_BOOKING_HOURS = 24
DEFAULT_LOCALE = 'es'

NON_BLOCKING_STATUSES = frozenset({'cancelled', 'completed', 'no_show'})

REASON_SLOT_CONFLICT = 'slot_conflict'
REASON_AVAILABILITY_BLOCK = 'availability_block'
REASON_ADVANCE_BOOKING_REQUIRED = 'advance_booking_required'
REASON_TIME_ALREADY_PASSED = 'time_already_passed'

# Indexed by day of week, 0 = Sunday.
DAY_NAMES = {
    'es': ('Domingo', 'Lunes', 'Martes', 'Miércoles', 'Jueves', 'Viernes', 'Sábado'),
    'en': ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday'),
}

_ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


class AvailabilityError(Exception):
    """Base class for availability failures."""


class InvalidDateRange(AvailabilityError):
    """The requested range is missing, malformed or inverted."""


class UpstreamDataError(AvailabilityError):
    """Schedules or appointments could not be loaded."""


class Role(str, Enum):
    PATIENT = 'patient'
    STAFF = 'staff'
    DOCTOR = 'doctor'
    ADMIN = 'admin'
    SUPERADMIN = 'superadmin'


class BookingRule(str, Enum):
    STANDARD = 'standard'
    PRIVILEGED = 'privileged'


ROLE_BOOKING_RULES = {
    Role.PATIENT: BookingRule.STANDARD,
    Role.STAFF: BookingRule.PRIVILEGED,
    Role.DOCTOR: BookingRule.PRIVILEGED,
    Role.ADMIN: BookingRule.PRIVILEGED,
    Role.SUPERADMIN: BookingRule.PRIVILEGED,
}


class AvailabilityLevel(str, Enum):
    NONE = 'none'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class WeeklyScheduleEntry(CamelModel):
    doctor_id: str
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_active: bool = True
    location_id: str | None = None


class BookedAppointment(CamelModel):
    doctor_id: str
    appointment_date: date
    start_time: time
    duration_minutes: int = Field(default=DEFAULT_SLOT_DURATION_MINUTES, gt=0)
    status: str = 'scheduled'

    @field_validator('status')
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def is_blocking(self) -> bool:
        # Unknown statuses keep the slot taken.
        return self.status not in NON_BLOCKING_STATUSES


class AvailabilityBlockEntry(CamelModel):
    doctor_id: str
    start_datetime: datetime
    end_datetime: datetime
    reason: str | None = None
    block_type: str = 'other'


class AvailabilityQuery(CamelModel):
    organization_id: str
    start_date: str
    end_date: str
    service_id: str | None = None
    doctor_id: str | None = None
    location_id: str | None = None
    user_role: Role | None = None
    use_standard_rules: bool = False


class TimeSlot(CamelModel):
    time: str
    doctor_id: str
    duration_minutes: int
    available: bool = True
    unavailable_reason: str | None = None
    required_advance_hours: int | None = None


class DayAvailability(CamelModel):
    date: str
    day_name: str
    slots: list[TimeSlot] = Field(default_factory=list)
    total_slots: int = 0
    available_slots: int = 0
    availability_level: AvailabilityLevel = AvailabilityLevel.NONE
    is_today: bool = False
    is_tomorrow: bool = False
    is_weekend: bool = False


def select_booking_rule(role: Role | None, use_standard_rules: bool = False) -> BookingRule:
    """Anonymous callers and forced standard rules both get the patient window."""
    if use_standard_rules or role is None:
        return BookingRule.STANDARD
    return ROLE_BOOKING_RULES[role]


def classify_availability(available_slots: int) -> AvailabilityLevel:
    if available_slots <= 0:
        return AvailabilityLevel.NONE
    if available_slots <= 2:
        return AvailabilityLevel.LOW
    if available_slots <= 5:
        return AvailabilityLevel.MEDIUM
    return AvailabilityLevel.HIGH


def parse_iso_date(value: str | None, field_name: str) -> date:
    if not value or not _ISO_DATE_PATTERN.match(value.strip()):
        raise InvalidDateRange(f'{field_name} must be a date in YYYY-MM-DD format.')
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidDateRange(f'{field_name} is not a valid calendar date.') from exc


def parse_date_range(start_date: str | None, end_date: str | None) -> tuple[date, date]:
    start = parse_iso_date(start_date, 'startDate')
    end = parse_iso_date(end_date, 'endDate')
    if start > end:
        raise InvalidDateRange('startDate must be on or before endDate.')
    return start, end


def iterate_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def day_of_week(day: date) -> int:
    """Day of week with Sunday as 0."""
    return day.isoweekday() % 7


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def format_minutes(minutes: int) -> str:
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def iterate_slot_starts(start_time: time, end_time: time, duration_minutes: int) -> Iterator[int]:
    """Yield slot starts, in minutes, for slots that end by ``end_time``."""
    current = minutes_since_midnight(start_time)
    end = minutes_since_midnight(end_time)
    while current + duration_minutes <= end:
        yield current
        current += duration_minutes


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    return start_a < end_b and start_b < end_a


def _to_wall_clock(value: datetime, tz: tzinfo | None) -> datetime:
    if value.tzinfo is None:
        return value
    if tz is not None:
        value = value.astimezone(tz)
    return value.replace(tzinfo=None)


def _usable_entries(schedules: Iterable[WeeklyScheduleEntry]) -> list[WeeklyScheduleEntry]:
    entries = []
    for entry in schedules:
        if not entry.is_active:
            continue
        if entry.start_time >= entry.end_time:
            logger.warning(
                'Skipping schedule entry with invalid time range %s-%s for doctor %s',
                entry.start_time,
                entry.end_time,
                entry.doctor_id,
            )
            continue
        entries.append(entry)
    return entries


def _index_appointments(
    appointments: Iterable[BookedAppointment],
    first_day: date,
    last_day: date,
) -> dict[tuple[str, date], list[tuple[int, int]]]:
    booked: dict[tuple[str, date], list[tuple[int, int]]] = {}
    for appointment in appointments:
        if not appointment.is_blocking:
            continue
        if not first_day <= appointment.appointment_date <= last_day:
            continue
        start = minutes_since_midnight(appointment.start_time)
        booked.setdefault((appointment.doctor_id, appointment.appointment_date), []).append(
            (start, start + appointment.duration_minutes)
        )
    return booked


def _index_blocks(
    blocks: Iterable[AvailabilityBlockEntry],
    tz: tzinfo | None,
) -> dict[str, list[tuple[datetime, datetime]]]:
    by_doctor: dict[str, list[tuple[datetime, datetime]]] = {}
    for block in blocks:
        by_doctor.setdefault(block.doctor_id, []).append(
            (_to_wall_clock(block.start_datetime, tz), _to_wall_clock(block.end_datetime, tz))
        )
    return by_doctor


def _evaluate_slot(
    doctor_id: str,
    day: date,
    start_minutes: int,
    duration_minutes: int,
    booked: list[tuple[int, int]],
    blocks: list[tuple[datetime, datetime]],
    rule: BookingRule,
    now: datetime,
    advance_booking_hours: int,
) -> TimeSlot:
    slot = TimeSlot(
        time=format_minutes(start_minutes),
        doctor_id=doctor_id,
        duration_minutes=duration_minutes,
    )
    end_minutes = start_minutes + duration_minutes
    slot_start = datetime.combine(day, time()) + timedelta(minutes=start_minutes)
    slot_end = slot_start + timedelta(minutes=duration_minutes)

    if any(overlaps(slot_start, slot_end, block_start, block_end) for block_start, block_end in blocks):
        slot.available = False
        slot.unavailable_reason = REASON_AVAILABILITY_BLOCK
        return slot

    if any(overlaps(start_minutes, end_minutes, booked_start, booked_end) for booked_start, booked_end in booked):
        slot.available = False
        slot.unavailable_reason = REASON_SLOT_CONFLICT
        return slot

    slot_start = slot_start.replace(tzinfo=now.tzinfo)
    if rule is BookingRule.STANDARD:
        if slot_start - now < timedelta(hours=advance_booking_hours):
            slot.available = False
            slot.unavailable_reason = REASON_ADVANCE_BOOKING_REQUIRED
            slot.required_advance_hours = advance_booking_hours
    elif slot_start <= now:
        slot.available = False
        slot.unavailable_reason = REASON_TIME_ALREADY_PASSED

    return slot


def summarize_day(day: date, slots: list[TimeSlot], today: date, locale: str = DEFAULT_LOCALE) -> DayAvailability:
    available_slots = sum(1 for slot in slots if slot.available)
    weekday = day_of_week(day)
    return DayAvailability(
        date=day.isoformat(),
        day_name=DAY_NAMES.get(locale, DAY_NAMES[DEFAULT_LOCALE])[weekday],
        slots=slots,
        total_slots=len(slots),
        available_slots=available_slots,
        availability_level=classify_availability(available_slots),
        is_today=day == today,
        is_tomorrow=day == today + timedelta(days=1),
        is_weekend=weekday in (0, 6),
    )


def compute_availability(
    query: AvailabilityQuery,
    schedules: Iterable[WeeklyScheduleEntry],
    appointments: Iterable[BookedAppointment],
    now: datetime,
    *,
    blocks: Iterable[AvailabilityBlockEntry] = (),
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES,
    advance_booking_hours: int = DEFAULT_ADVANCE_BOOKING_HOURS,
    locale: str = DEFAULT_LOCALE,
) -> list[DayAvailability]:
    """Compute per-day slot availability for ``query``.

    ``schedules``, ``appointments`` and ``blocks`` must already be scoped to the
    query's organization, service, doctor and location; only date, time and
    role logic is applied here.

    Days before ``now``'s date are omitted. Slot times are wall-clock times in
    the same zone as ``now``.

    Raises:
        InvalidDateRange: if either date is malformed or start is after end.
    """
    if slot_duration_minutes <= 0:
        raise ValueError('slot_duration_minutes must be positive.')

    start, end = parse_date_range(query.start_date, query.end_date)
    today = now.date()
    first_day = max(start, today)
    rule = select_booking_rule(query.user_role, query.use_standard_rules)

    entries = _usable_entries(schedules)
    booked = _index_appointments(appointments, first_day, end)
    blocks_by_doctor = _index_blocks(blocks, now.tzinfo)

    days: list[DayAvailability] = []
    for day in iterate_dates(first_day, end):
        weekday = day_of_week(day)
        slots_by_key: dict[tuple[str, int], TimeSlot] = {}

        for entry in entries:
            if entry.day_of_week != weekday:
                continue
            for start_minutes in iterate_slot_starts(entry.start_time, entry.end_time, slot_duration_minutes):
                key = (entry.doctor_id, start_minutes)
                # Overlapping entries for the same doctor yield one slot.
                if key in slots_by_key:
                    continue
                slots_by_key[key] = _evaluate_slot(
                    doctor_id=entry.doctor_id,
                    day=day,
                    start_minutes=start_minutes,
                    duration_minutes=slot_duration_minutes,
                    booked=booked.get((entry.doctor_id, day), []),
                    blocks=blocks_by_doctor.get(entry.doctor_id, []),
                    rule=rule,
                    now=now,
                    advance_booking_hours=advance_booking_hours,
                )

        ordered = [slots_by_key[key] for key in sorted(slots_by_key, key=lambda item: (item[1], item[0]))]
        days.append(summarize_day(day, ordered, today, locale))

    logger.debug(
        'Computed availability for organization %s: %d days, %d available slots (%s rules)',
        query.organization_id,
        len(days),
        sum(day.available_slots for day in days),
        rule.value,
    )
    return days
