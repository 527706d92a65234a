from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from portal.src import schemas
from portal.src.exceptions import APIException
from portal.src.constants import (
    GPS_ONLINE_MINUTES,
    GPS_RECENT_MINUTES,
    SEMESTER_END_MONTH,
    SEMESTER_START_MONTH,
    STOP_TRAVEL_MINUTES,
    TMZ_PRIMARY,
    TMZ_SECONDARY,
    UNKNOWN_STOP,
)
from portal.src.enums import ScheduleStatus


def fuseExceptionResponses(exceptions: List[APIException]) -> Dict[int, dict]:
    """
    Generate OpenAPI response documentation by fusing multiple APIException instances.

    Args:
        exceptions (List[APIException]): List of instantiated exceptions.

    Returns:
        Dict[int, dict]: A dictionary of OpenAPI response specs grouped by status code.
    """
    responses = {}

    for exception in exceptions:
        status_code = exception.status_code
        example_key = type(exception).__name__
        example_value = {
            "summary": str(exception.headers),
            "value": {"success": False, "error": exception.detail},
        }

        if status_code not in responses:
            responses[status_code] = {
                "model": schemas.ErrorResponse,
                "content": {
                    "application/json": {"examples": {example_key: example_value}}
                },
            }
        else:
            responses[status_code]["content"]["application/json"]["examples"][
                example_key
            ] = example_value

    return responses


def enumStr(enumClass) -> str:
    """
    Convert an Enum class into a comma-separated string of its members.

    Each enum member is formatted as "<NAME>: <VALUE>".

    Example:
        >>> enumStr(TrackingStatus)
        'INACTIVE: 1, ACTIVE: 2'
    """
    return ", ".join(f"{x.name}: {x.value}" for x in enumClass)


def updateIfChanged(targetObj, sourceObj, fields: List[str]) -> None:
    """
    Update attributes on a target object from a source object
    only if the values differ and the new value is not None.

    Designed for use with SQLAlchemy models, where `fields` are typically
    provided as `Model.field.key`.

    Args:
        targetObj (object): The object whose attributes may be updated
            (e.g., a SQLAlchemy model instance).
        sourceObj (object): The object providing new values
            (e.g., an update form).
        fields (List[str]): A list of attribute names to check and update.

    Example:
        >>> updateIfChanged(route, fParam, [Route.route_name.key, Route.fare.key])
    """
    for field in fields:
        new_value = getattr(sourceObj, field, None)
        if new_value is not None:
            old_value = getattr(targetObj, field)
            if old_value != new_value:
                setattr(targetObj, field, new_value)


def toCalendarDate(value: str) -> Optional[date]:
    """
    Parse an ISO date or datetime string into a calendar date.

    Time-of-day and timezone are ignored, so "2004-05-17",
    "2004-05-17T00:00:00" and "2004-05-17T23:30:00+05:30" all give the same date.

    Args:
        value (str): ISO-8601 date or datetime.

    Returns:
        Optional[date]: The calendar date, or None if the value cannot be parsed.
    """
    value = value.strip()
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def availableSeats(total: Optional[int], taken: Optional[int]) -> int:
    """Return the free seats, never negative."""
    return max(0, (total or 0) - (taken or 0))


def groupByStop(bookings: Iterable[dict]) -> Dict[str, List[dict]]:
    """
    Group booking rows by their boarding stop, preserving input order.

    Bookings without a boarding stop fall under "Unknown Stop".
    """
    stopWise: Dict[str, List[dict]] = {}
    for booking in bookings:
        stop = booking.get("boarding_stop") or UNKNOWN_STOP
        stopWise.setdefault(stop, []).append(booking)
    return stopWise


def academicPeriod(today: date) -> Tuple[str, int]:
    """
    Derive the academic year and semester for a date.

    June to November belongs to semester 1 of the academic year starting in
    that June. December to May belongs to semester 2 of the academic year that
    started in the previous June.

    Example:
        >>> academicPeriod(date(2026, 7, 1))
        ('2026-27', 1)
        >>> academicPeriod(date(2027, 2, 1))
        ('2026-27', 2)
    """
    if SEMESTER_START_MONTH <= today.month <= SEMESTER_END_MONTH:
        startYear, semester = today.year, 1
    elif today.month > SEMESTER_END_MONTH:
        startYear, semester = today.year, 2
    else:
        startYear, semester = today.year - 1, 2
    return f"{startYear}-{str(startYear + 1)[-2:]}", semester


def semesterWindow(academicYear: str, semester: int) -> Tuple[date, date]:
    """Return the first and last day of a semester of an academic year."""
    startYear = int(academicYear[:4])
    if semester == 1:
        return (
            date(startYear, SEMESTER_START_MONTH, 1),
            date(startYear, SEMESTER_END_MONTH + 1, 1) - timedelta(days=1),
        )
    return (
        date(startYear, SEMESTER_END_MONTH + 1, 1),
        date(startYear + 1, SEMESTER_START_MONTH, 1) - timedelta(days=1),
    )


def bookingDeadline(scheduleDate: date, settings: dict) -> datetime:
    """
    Compute the moment booking closes for a schedule date.

    Booking closes at `bookingWindowEndHour` local time,
    `bookingWindowDaysBefore` days before the trip.
    """
    closingDay = scheduleDate - timedelta(days=settings["bookingWindowDaysBefore"])
    return datetime.combine(
        closingDay, time(hour=settings["bookingWindowEndHour"]), tzinfo=TMZ_SECONDARY
    )


def bookingDisabledReason(
    scheduleDate: date,
    scheduleStatus: int,
    bookingEnabled: bool,
    adminApproved: bool,
    settings: dict,
    now: datetime,
) -> Optional[str]:
    """
    Explain why a schedule cannot be booked at `now`.

    Returns:
        Optional[str]: A human readable reason, or None when booking is open.
    """
    today = now.astimezone(TMZ_SECONDARY).date()
    if scheduleStatus == ScheduleStatus.CANCELLED:
        return "Trip has been cancelled"
    if scheduleStatus == ScheduleStatus.COMPLETED:
        return "Trip has already completed"
    if scheduleDate < today:
        return "Trip date has passed"
    if not adminApproved:
        return "Trip is not yet approved for booking"
    if not bookingEnabled:
        return "Booking is disabled for this trip"
    if settings["enableBookingTimeWindow"] and now > bookingDeadline(
        scheduleDate, settings
    ):
        return "Booking window has closed"
    return None


def minutesSince(moment: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole minutes elapsed since `moment`. Naive values are read as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=TMZ_PRIMARY)
    return int((now - moment).total_seconds() // 60)


def gpsStatus(minutes: Optional[int]) -> str:
    if minutes is None:
        return "offline"
    if minutes <= GPS_ONLINE_MINUTES:
        return "online"
    if minutes <= GPS_RECENT_MINUTES:
        return "recent"
    return "offline"


def estimateArrival(
    stops: Iterable,
    boardingStop: str,
    status: str,
    minutes: Optional[int],
    now: datetime,
) -> Optional[dict]:
    """
    Estimate when the bus reaches a student's boarding stop.

    Each stop ahead in the sequence adds a fixed travel time to the age of the
    last GPS fix. The stop is matched by name, ignoring case.

    Returns:
        Optional[dict]: The stop, the minutes to wait, the expected local time
            and a confidence of "high" or "medium". None when the stop is not
            on the route or the GPS is offline.
    """
    if status == "offline":
        return None
    for stop in stops:
        if stop.stop_name.lower() == boardingStop.lower():
            estimatedMinutes = stop.sequence_order * STOP_TRAVEL_MINUTES
            estimatedMinutes += minutes or 0
            arrival = now + timedelta(minutes=estimatedMinutes)
            return {
                "boardingStop": stop.stop_name,
                "estimatedMinutes": estimatedMinutes,
                "estimatedTime": arrival.astimezone(TMZ_SECONDARY),
                "confidence": "high" if status == "online" else "medium",
            }
    return None
