import logging
from datetime import date, datetime, time, timezone

import pytest

from medbook.services.availability import (
    AvailabilityBlockEntry,
    AvailabilityLevel,
    AvailabilityQuery,
    BookedAppointment,
    BookingRule,
    InvalidDateRange,
    Role,
    WeeklyScheduleEntry,
    classify_availability,
    compute_availability,
    day_of_week,
    iterate_slot_starts,
    parse_date_range,
    select_booking_rule,
)

# Friday
NOW = datetime(2025, 5, 30, 10, 0)

FRIDAY = 5
SATURDAY = 6
MONDAY = 1


def make_query(start_date: str, end_date: str, **overrides) -> AvailabilityQuery:
    return AvailabilityQuery(organization_id='org-1', start_date=start_date, end_date=end_date, **overrides)


def make_entry(day: int, start: str, end: str, doctor_id: str = 'doc-1', **overrides) -> WeeklyScheduleEntry:
    return WeeklyScheduleEntry(doctor_id=doctor_id, day_of_week=day, start_time=start, end_time=end, **overrides)


def make_appointment(
    appointment_date: str,
    start: str,
    status: str = 'confirmed',
    duration_minutes: int = 30,
    doctor_id: str = 'doc-1',
) -> BookedAppointment:
    return BookedAppointment(
        doctor_id=doctor_id,
        appointment_date=appointment_date,
        start_time=start,
        duration_minutes=duration_minutes,
        status=status,
    )


def slots_by_time(day):
    return {slot.time: slot for slot in day.slots}


def test_day_of_week_uses_sunday_as_zero() -> None:
    assert day_of_week(date(2025, 6, 1)) == 0
    assert day_of_week(date(2025, 5, 30)) == FRIDAY
    assert day_of_week(date(2025, 5, 31)) == SATURDAY


def test_iterate_slot_starts_stops_at_end_boundary() -> None:
    assert list(iterate_slot_starts(time(9, 0), time(10, 0), 30)) == [540, 570]
    assert list(iterate_slot_starts(time(9, 0), time(10, 15), 30)) == [540, 570]
    assert list(iterate_slot_starts(time(9, 0), time(9, 20), 30)) == []


@pytest.mark.parametrize(
    ('available_slots', 'expected_level'),
    [
        (0, AvailabilityLevel.NONE),
        (1, AvailabilityLevel.LOW),
        (2, AvailabilityLevel.LOW),
        (3, AvailabilityLevel.MEDIUM),
        (5, AvailabilityLevel.MEDIUM),
        (6, AvailabilityLevel.HIGH),
    ],
)
def test_classify_availability_thresholds(available_slots: int, expected_level: AvailabilityLevel) -> None:
    assert classify_availability(available_slots) == expected_level


@pytest.mark.parametrize(
    ('role', 'use_standard_rules', 'expected_rule'),
    [
        (Role.PATIENT, False, BookingRule.STANDARD),
        (None, False, BookingRule.STANDARD),
        (Role.STAFF, False, BookingRule.PRIVILEGED),
        (Role.DOCTOR, False, BookingRule.PRIVILEGED),
        (Role.ADMIN, False, BookingRule.PRIVILEGED),
        (Role.SUPERADMIN, False, BookingRule.PRIVILEGED),
        (Role.ADMIN, True, BookingRule.STANDARD),
    ],
)
def test_select_booking_rule(role, use_standard_rules: bool, expected_rule: BookingRule) -> None:
    assert select_booking_rule(role, use_standard_rules) == expected_rule


@pytest.mark.parametrize(
    ('start_date', 'end_date'),
    [
        ('2025-06-05', '2025-06-01'),
        ('2025-6-1', '2025-06-05'),
        ('2025-02-30', '2025-03-01'),
        ('not-a-date', '2025-06-05'),
        (None, '2025-06-05'),
        ('2025-06-01', ''),
    ],
)
def test_parse_date_range_rejects_invalid_input(start_date, end_date) -> None:
    with pytest.raises(InvalidDateRange):
        parse_date_range(start_date, end_date)


def test_compute_availability_rejects_inverted_range() -> None:
    with pytest.raises(InvalidDateRange):
        compute_availability(make_query('2025-06-05', '2025-06-01'), [make_entry(MONDAY, '09:00', '12:00')], [], NOW)


def test_compute_availability_rejects_non_positive_slot_duration() -> None:
    with pytest.raises(ValueError):
        compute_availability(make_query('2025-06-01', '2025-06-05'), [], [], NOW, slot_duration_minutes=0)


def test_past_days_are_not_returned() -> None:
    days = compute_availability(make_query('2025-05-28', '2025-06-01'), [], [], NOW)

    assert [day.date for day in days] == ['2025-05-30', '2025-05-31', '2025-06-01']


def test_range_entirely_in_the_past_is_empty() -> None:
    assert compute_availability(make_query('2025-05-01', '2025-05-10'), [], [], NOW) == []


def test_days_without_schedule_are_empty_not_errors() -> None:
    days = compute_availability(make_query('2025-06-01', '2025-06-01'), [make_entry(MONDAY, '09:00', '12:00')], [], NOW)

    assert len(days) == 1
    assert days[0].slots == []
    assert days[0].total_slots == 0
    assert days[0].available_slots == 0
    assert days[0].availability_level == AvailabilityLevel.NONE


def test_weekly_entries_expand_on_matching_weekdays_only() -> None:
    days = compute_availability(
        make_query('2025-06-01', '2025-06-14'),
        [make_entry(MONDAY, '09:00', '10:00')],
        [],
        NOW,
    )

    with_slots = [day.date for day in days if day.slots]
    assert with_slots == ['2025-06-02', '2025-06-09']
    assert [slot.time for slot in days[1].slots] == ['09:00', '09:30']


def test_inactive_entries_are_ignored() -> None:
    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [make_entry(MONDAY, '09:00', '10:00', is_active=False)],
        [],
        NOW,
    )

    assert days[0].slots == []


def test_entries_with_inverted_times_are_skipped(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger='medbook.services.availability'):
        days = compute_availability(
            make_query('2025-06-02', '2025-06-02'),
            [make_entry(MONDAY, '12:00', '09:00')],
            [],
            NOW,
        )

    assert days[0].slots == []
    assert 'invalid time range' in caplog.text


def test_patient_needs_24_hours_notice_but_admin_does_not() -> None:
    schedules = [make_entry(FRIDAY, '15:00', '15:30')]

    patient_day = compute_availability(
        make_query('2025-05-30', '2025-05-30', user_role=Role.PATIENT), schedules, [], NOW
    )[0]
    admin_day = compute_availability(
        make_query('2025-05-30', '2025-05-30', user_role=Role.ADMIN), schedules, [], NOW
    )[0]

    patient_slot = patient_day.slots[0]
    assert patient_slot.time == '15:00'
    assert patient_slot.available is False
    assert patient_slot.unavailable_reason == 'advance_booking_required'
    assert patient_slot.required_advance_hours == 24

    admin_slot = admin_day.slots[0]
    assert admin_slot.available is True
    assert admin_slot.unavailable_reason is None


def test_standard_rule_boundary_is_exactly_24_hours() -> None:
    days = compute_availability(
        make_query('2025-05-31', '2025-05-31', user_role=Role.PATIENT),
        [make_entry(SATURDAY, '09:30', '10:30')],
        [],
        NOW,
    )

    slots = slots_by_time(days[0])
    assert slots['09:30'].available is False
    assert slots['10:00'].available is True


def test_privileged_rule_only_blocks_past_and_present_times() -> None:
    days = compute_availability(
        make_query('2025-05-30', '2025-05-30', user_role=Role.STAFF),
        [make_entry(FRIDAY, '09:00', '11:00')],
        [],
        NOW,
    )

    slots = slots_by_time(days[0])
    assert slots['09:00'].unavailable_reason == 'time_already_passed'
    assert slots['09:30'].unavailable_reason == 'time_already_passed'
    assert slots['10:00'].unavailable_reason == 'time_already_passed'
    assert slots['10:30'].available is True


def test_confirmed_appointment_blocks_slot_but_cancelled_does_not() -> None:
    schedules = [make_entry(MONDAY, '09:00', '09:30')]
    query = make_query('2025-06-02', '2025-06-02', user_role=Role.PATIENT)

    confirmed_day = compute_availability(query, schedules, [make_appointment('2025-06-02', '09:00')], NOW)[0]
    cancelled_day = compute_availability(
        query, schedules, [make_appointment('2025-06-02', '09:00', status='cancelled')], NOW
    )[0]

    assert confirmed_day.slots[0].available is False
    assert confirmed_day.slots[0].unavailable_reason == 'slot_conflict'
    assert cancelled_day.slots[0].available is True


@pytest.mark.parametrize('status', ['scheduled', 'confirmed', 'pending', 'Confirmed'])
def test_blocking_statuses_conflict(status: str) -> None:
    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [make_entry(MONDAY, '09:00', '09:30')],
        [make_appointment('2025-06-02', '09:00', status=status)],
        NOW,
    )

    assert days[0].slots[0].unavailable_reason == 'slot_conflict'


@pytest.mark.parametrize('status', ['cancelled', 'completed', 'no_show'])
def test_non_blocking_statuses_do_not_conflict(status: str) -> None:
    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [make_entry(MONDAY, '09:00', '09:30')],
        [make_appointment('2025-06-02', '09:00', status=status)],
        NOW,
    )

    assert days[0].slots[0].available is True


def test_conflict_uses_half_open_intervals() -> None:
    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [make_entry(MONDAY, '09:00', '11:00')],
        [make_appointment('2025-06-02', '09:15', duration_minutes=45)],
        NOW,
    )

    slots = slots_by_time(days[0])
    assert slots['09:00'].unavailable_reason == 'slot_conflict'
    assert slots['09:30'].unavailable_reason == 'slot_conflict'
    assert slots['10:00'].available is True
    assert slots['10:30'].available is True


def test_conflicts_are_scoped_to_doctor_and_date() -> None:
    days = compute_availability(
        make_query('2025-06-02', '2025-06-09'),
        [make_entry(MONDAY, '09:00', '09:30'), make_entry(MONDAY, '09:00', '09:30', doctor_id='doc-2')],
        [make_appointment('2025-06-02', '09:00', doctor_id='doc-2')],
        NOW,
    )

    first_monday = {slot.doctor_id: slot for slot in days[0].slots}
    assert first_monday['doc-1'].available is True
    assert first_monday['doc-2'].unavailable_reason == 'slot_conflict'
    assert all(slot.available for slot in days[-1].slots)


def test_availability_blocks_mark_slots_unavailable() -> None:
    blocks = [
        AvailabilityBlockEntry(
            doctor_id='doc-1',
            start_datetime=datetime(2025, 6, 2, 9, 0),
            end_datetime=datetime(2025, 6, 2, 10, 0),
            reason='Vacaciones',
            block_type='vacation',
        )
    ]

    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [make_entry(MONDAY, '09:00', '11:00'), make_entry(MONDAY, '09:00', '11:00', doctor_id='doc-2')],
        [],
        NOW,
        blocks=blocks,
    )

    doc_1 = {slot.time: slot for slot in days[0].slots if slot.doctor_id == 'doc-1'}
    doc_2 = [slot for slot in days[0].slots if slot.doctor_id == 'doc-2']
    assert doc_1['09:00'].unavailable_reason == 'availability_block'
    assert doc_1['09:30'].unavailable_reason == 'availability_block'
    assert doc_1['10:00'].available is True
    assert all(slot.available for slot in doc_2)


def test_multi_day_block_covers_whole_days() -> None:
    blocks = [
        AvailabilityBlockEntry(
            doctor_id='doc-1',
            start_datetime=datetime(2025, 6, 1, 0, 0),
            end_datetime=datetime(2025, 6, 4, 0, 0),
            block_type='sick_leave',
        )
    ]

    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [make_entry(MONDAY, '09:00', '12:00')],
        [],
        NOW,
        blocks=blocks,
    )

    assert days[0].available_slots == 0
    assert days[0].total_slots == 6


def test_slots_are_sorted_by_time_across_doctors() -> None:
    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [
            make_entry(MONDAY, '11:00', '12:00', doctor_id='doc-b'),
            make_entry(MONDAY, '09:00', '10:00', doctor_id='doc-b'),
            make_entry(MONDAY, '09:30', '11:00', doctor_id='doc-a'),
        ],
        [],
        NOW,
    )

    times = [slot.time for slot in days[0].slots]
    assert times == sorted(times)
    assert [(slot.time, slot.doctor_id) for slot in days[0].slots][:3] == [
        ('09:00', 'doc-b'),
        ('09:30', 'doc-a'),
        ('09:30', 'doc-b'),
    ]


def test_overlapping_entries_for_same_doctor_do_not_duplicate_slots() -> None:
    days = compute_availability(
        make_query('2025-06-02', '2025-06-02'),
        [make_entry(MONDAY, '09:00', '10:00'), make_entry(MONDAY, '09:30', '10:30')],
        [],
        NOW,
    )

    assert [slot.time for slot in days[0].slots] == ['09:00', '09:30', '10:00']


def test_aggregation_counts_match_slots() -> None:
    days = compute_availability(
        make_query('2025-05-30', '2025-06-06', user_role=Role.PATIENT),
        [
            make_entry(FRIDAY, '09:00', '17:00'),
            make_entry(MONDAY, '09:00', '12:00'),
            make_entry(MONDAY, '09:00', '10:00', doctor_id='doc-2'),
        ],
        [make_appointment('2025-06-02', '09:00'), make_appointment('2025-06-02', '10:30', duration_minutes=60)],
        NOW,
    )

    for day in days:
        assert day.total_slots == len(day.slots)
        assert day.available_slots == sum(1 for slot in day.slots if slot.available)
        assert day.availability_level == classify_availability(day.available_slots)

    monday = next(day for day in days if day.date == '2025-06-02')
    assert monday.total_slots == 8
    assert monday.available_slots == 5
    assert monday.availability_level == AvailabilityLevel.MEDIUM


def test_patient_and_forced_standard_staff_see_the_same_counts() -> None:
    schedules = [make_entry(FRIDAY, '09:00', '17:00'), make_entry(SATURDAY, '08:00', '12:00')]
    appointments = [make_appointment('2025-05-31', '11:00')]

    patient_days = compute_availability(
        make_query('2025-05-30', '2025-06-07', user_role=Role.PATIENT), schedules, appointments, NOW
    )
    staff_days = compute_availability(
        make_query('2025-05-30', '2025-06-07', user_role=Role.STAFF, use_standard_rules=True),
        schedules,
        appointments,
        NOW,
    )

    assert [day.available_slots for day in patient_days] == [day.available_slots for day in staff_days]


def test_compute_availability_is_idempotent() -> None:
    query = make_query('2025-05-30', '2025-06-13', user_role=Role.DOCTOR)
    schedules = [make_entry(FRIDAY, '09:00', '13:00'), make_entry(MONDAY, '14:00', '18:00', doctor_id='doc-2')]
    appointments = [make_appointment('2025-06-02', '15:00', doctor_id='doc-2')]

    first = compute_availability(query, schedules, appointments, NOW)
    second = compute_availability(query, schedules, appointments, NOW)

    assert first == second


def test_day_summary_flags_and_labels() -> None:
    days = compute_availability(make_query('2025-05-30', '2025-06-02'), [], [], NOW)

    assert [day.day_name for day in days] == ['Viernes', 'Sábado', 'Domingo', 'Lunes']
    assert [day.is_today for day in days] == [True, False, False, False]
    assert [day.is_tomorrow for day in days] == [False, True, False, False]
    assert [day.is_weekend for day in days] == [False, True, True, False]


def test_day_names_follow_locale() -> None:
    days = compute_availability(make_query('2025-05-30', '2025-05-30'), [], [], NOW, locale='en')

    assert days[0].day_name == 'Friday'


def test_custom_slot_duration_and_advance_window() -> None:
    days = compute_availability(
        make_query('2025-05-31', '2025-05-31', user_role=Role.PATIENT),
        [make_entry(SATURDAY, '08:00', '12:00')],
        [],
        NOW,
        slot_duration_minutes=60,
        advance_booking_hours=2,
    )

    assert [slot.time for slot in days[0].slots] == ['08:00', '09:00', '10:00', '11:00']
    assert all(slot.duration_minutes == 60 for slot in days[0].slots)
    assert days[0].available_slots == 4


def test_timezone_aware_now_is_supported() -> None:
    aware_now = datetime(2025, 5, 30, 10, 0, tzinfo=timezone.utc)
    blocks = [
        AvailabilityBlockEntry(
            doctor_id='doc-1',
            start_datetime=datetime(2025, 5, 30, 11, 0, tzinfo=timezone.utc),
            end_datetime=datetime(2025, 5, 30, 11, 30, tzinfo=timezone.utc),
        )
    ]

    days = compute_availability(
        make_query('2025-05-30', '2025-05-30', user_role=Role.ADMIN),
        [make_entry(FRIDAY, '10:00', '12:00')],
        [],
        aware_now,
        blocks=blocks,
    )

    slots = slots_by_time(days[0])
    assert slots['10:00'].unavailable_reason == 'time_already_passed'
    assert slots['10:30'].available is True
    assert slots['11:00'].unavailable_reason == 'availability_block'
    assert slots['11:30'].available is True
