from datetime import date, datetime
from types import SimpleNamespace

import pytest

from portal.api.location import dataQuality
from portal.src.constants import (
    DEFAULT_SCHEDULING_SETTINGS,
    TMZ_PRIMARY,
    TMZ_SECONDARY,
)
from portal.src.enums import ScheduleStatus
from portal.src.functions import (
    academicPeriod,
    availableSeats,
    bookingDeadline,
    bookingDisabledReason,
    estimateArrival,
    gpsStatus,
    groupByStop,
    minutesSince,
    semesterWindow,
)


@pytest.mark.parametrize(
    "today, expected",
    [
        (date(2025, 6, 1), ("2025-26", 1)),
        (date(2025, 11, 30), ("2025-26", 1)),
        (date(2025, 12, 1), ("2025-26", 2)),
        (date(2026, 5, 31), ("2025-26", 2)),
        (date(2099, 1, 15), ("2098-99", 2)),
    ],
)
def test_academic_period(today, expected):
    assert academicPeriod(today) == expected


def test_semester_window():
    assert semesterWindow("2025-26", 1) == (date(2025, 6, 1), date(2025, 11, 30))
    assert semesterWindow("2025-26", 2) == (date(2025, 12, 1), date(2026, 5, 31))
    assert semesterWindow("2027-28", 2) == (date(2027, 12, 1), date(2028, 5, 31))


def test_available_seats_never_negative():
    assert availableSeats(40, 12) == 28
    assert availableSeats(40, 45) == 0
    assert availableSeats(None, None) == 0


def test_group_by_stop():
    bookings = [
        {"id": 1, "boarding_stop": "Erode"},
        {"id": 2, "boarding_stop": None},
        {"id": 3, "boarding_stop": "Erode"},
    ]

    grouped = groupByStop(bookings)

    assert [b["id"] for b in grouped["Erode"]] == [1, 3]
    assert [b["id"] for b in grouped["Unknown Stop"]] == [2]


def test_booking_deadline():
    deadline = bookingDeadline(date(2026, 3, 10), DEFAULT_SCHEDULING_SETTINGS)

    assert deadline == datetime(2026, 3, 9, 19, tzinfo=TMZ_SECONDARY)


@pytest.mark.parametrize(
    "now, status, enabled, approved, expected",
    [
        (datetime(2026, 3, 9, 18), ScheduleStatus.SCHEDULED, True, True, None),
        (
            datetime(2026, 3, 9, 19, 1),
            ScheduleStatus.SCHEDULED,
            True,
            True,
            "Booking window has closed",
        ),
        (
            datetime(2026, 3, 11, 8),
            ScheduleStatus.SCHEDULED,
            True,
            True,
            "Trip date has passed",
        ),
        (
            datetime(2026, 3, 1),
            ScheduleStatus.CANCELLED,
            True,
            True,
            "Trip has been cancelled",
        ),
        (
            datetime(2026, 3, 1),
            ScheduleStatus.SCHEDULED,
            True,
            False,
            "Trip is not yet approved for booking",
        ),
        (
            datetime(2026, 3, 1),
            ScheduleStatus.SCHEDULED,
            False,
            True,
            "Booking is disabled for this trip",
        ),
    ],
)
def test_booking_disabled_reason(now, status, enabled, approved, expected):
    reason = bookingDisabledReason(
        date(2026, 3, 10),
        status,
        enabled,
        approved,
        DEFAULT_SCHEDULING_SETTINGS,
        now.replace(tzinfo=TMZ_SECONDARY),
    )

    assert reason == expected


def test_booking_window_can_be_switched_off():
    settings = {**DEFAULT_SCHEDULING_SETTINGS, "enableBookingTimeWindow": False}

    reason = bookingDisabledReason(
        date(2026, 3, 10),
        ScheduleStatus.SCHEDULED,
        True,
        True,
        settings,
        datetime(2026, 3, 10, 6, tzinfo=TMZ_SECONDARY),
    )

    assert reason is None


@pytest.mark.parametrize(
    "accuracy, expected",
    [(None, "unknown"), (5, "excellent"), (30, "good"), (80, "fair"), (500, "poor")],
)
def test_data_quality(accuracy, expected):
    assert dataQuality(accuracy) == expected


@pytest.mark.parametrize(
    "minutes, expected",
    [
        (None, "offline"),
        (0, "online"),
        (2, "online"),
        (3, "recent"),
        (5, "recent"),
        (6, "offline"),
    ],
)
def test_gps_status(minutes, expected):
    assert gpsStatus(minutes) == expected


def test_minutes_since_reads_naive_values_as_utc():
    now = datetime(2026, 3, 10, 6, 30, tzinfo=TMZ_PRIMARY)

    assert minutesSince(datetime(2026, 3, 10, 6, 27, 30), now) == 2
    assert minutesSince(datetime(2026, 3, 10, 12, 0, tzinfo=TMZ_SECONDARY), now) == 0
    assert minutesSince(None, now) is None


def test_estimate_arrival():
    now = datetime(2026, 3, 10, 2, 0, tzinfo=TMZ_PRIMARY)
    stops = [
        SimpleNamespace(stop_name="Erode", sequence_order=1),
        SimpleNamespace(stop_name="Perundurai", sequence_order=3),
    ]

    arrival = estimateArrival(stops, "perundurai", "recent", 4, now)

    assert arrival["boardingStop"] == "Perundurai"
    assert arrival["estimatedMinutes"] == 19
    assert arrival["estimatedTime"] == datetime(
        2026, 3, 10, 7, 49, tzinfo=TMZ_SECONDARY
    )
    assert arrival["confidence"] == "medium"
    assert estimateArrival(stops, "Erode", "online", 0, now)["confidence"] == "high"
    assert estimateArrival(stops, "Erode", "offline", 10, now) is None
    assert estimateArrival(stops, "Salem", "online", 0, now) is None
