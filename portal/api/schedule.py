from datetime import date, datetime, time, timedelta
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import update
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.api.bearer import bearer_admin
from portal.src.config import Config
from portal.src.db import Booking, Route, Schedule, Store, Student
from portal.src import exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.enums import BookingStatus, RouteStatus, ScheduleStatus
from portal.src.constants import AVAILABILITY_RANGE_DAYS, TMZ_PRIMARY, TMZ_SECONDARY
from portal.src.functions import (
    availableSeats,
    bookingDeadline,
    bookingDisabledReason,
    enumStr,
    fuseExceptionResponses,
)
from portal.src.urls import URL_ADMIN_SCHEDULE, URL_BOOKING, URL_SCHEDULE_AVAILABILITY

route_public = APIRouter()
route_admin = APIRouter()


## Output Schema
class UserBookingSchema(BaseModel):
    id: int
    boarding_stop: Optional[str]
    seat_number: Optional[str]
    status: int
    payment_status: int


class AvailabilitySchema(BaseModel):
    id: int
    route_id: int
    schedule_date: date
    departure_time: time
    arrival_time: time
    total_seats: int
    booked_seats: int
    available_seats: int
    status: int
    booking_enabled: bool
    admin_scheduling_enabled: bool
    booking_deadline: Optional[datetime]
    is_booking_window_open: bool
    is_booking_available: bool
    booking_disabled_reason: Optional[str]
    user_booking: Optional[UserBookingSchema]


class ScheduleSchema(BaseModel):
    id: int
    route_id: int
    schedule_date: date
    departure_time: time
    arrival_time: time
    total_seats: int
    booked_seats: int
    status: int
    booking_enabled: bool
    admin_scheduling_enabled: bool
    driver_id: Optional[int]
    vehicle_id: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class BookingSchema(BaseModel):
    id: int
    student_id: int
    route_id: int
    schedule_id: int
    trip_date: date
    boarding_stop: Optional[str]
    seat_number: Optional[str]
    status: int
    payment_status: int
    amount: float
    created_on: datetime


class BookingResponseSchema(BaseModel):
    success: bool
    message: str
    booking: BookingSchema
    availableSeats: int


## Input Forms
class BookingForm(BaseModel):
    studentId: int
    scheduleId: int
    boardingStop: str = Field(max_length=256)


class CreateScheduleForm(BaseModel):
    route_id: int
    schedule_date: date
    departure_time: time | None = Field(default=None)
    arrival_time: time | None = Field(default=None)
    total_seats: int | None = Field(default=None, ge=1, le=120)
    status: ScheduleStatus = Field(
        description=enumStr(ScheduleStatus), default=ScheduleStatus.SCHEDULED
    )
    booking_enabled: bool = Field(default=True)
    admin_scheduling_enabled: bool = Field(default=True)
    driver_id: int | None = Field(default=None)
    vehicle_id: int | None = Field(default=None)


## Query Parameters
class AvailabilityQueryParams(BaseModel):
    routeId: int | None = Field(Query(default=None))
    startDate: date | None = Field(Query(default=None))
    endDate: date | None = Field(Query(default=None))
    studentId: int | None = Field(Query(default=None))


## Function
def studentBookings(
    session: Session, studentId: Optional[int], scheduleIds: List[int]
) -> dict:
    """Map schedule id to the student's confirmed booking on it."""
    if studentId is None or not scheduleIds:
        return {}
    bookings = (
        session.query(Booking)
        .filter(
            Booking.student_id == studentId,
            Booking.schedule_id.in_(scheduleIds),
            Booking.status == BookingStatus.CONFIRMED,
        )
        .all()
    )
    return {booking.schedule_id: booking for booking in bookings}


def claimSeat(session: Session, scheduleId: int) -> Optional[int]:
    """
    Take one seat of a schedule in a single conditional update.

    Returns:
        Optional[int]: The seat count after the claim, which doubles as the
        seat number, or None when the schedule is full.
    """
    statement = (
        update(Schedule)
        .where(Schedule.id == scheduleId, Schedule.booked_seats < Schedule.total_seats)
        .values(booked_seats=Schedule.booked_seats + 1)
        .returning(Schedule.booked_seats)
        .execution_options(synchronize_session=False)
    )
    return session.execute(statement).scalar_one_or_none()


## API endpoints [Public]
@route_public.get(
    URL_SCHEDULE_AVAILABILITY,
    tags=["Schedule"],
    response_model=List[AvailabilitySchema],
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Route ID is required"),
            exceptions.InvalidValue("startDate must not be after endDate"),
            exceptions.UnknownValue(Route),
        ]
    ),
    description="""
    Lists the schedules of an active route between two dates, defaulting to the coming month.
    Each schedule reports its free seats, the booking window state derived from the scheduling settings
    and whether it can be booked now, with the reason when it cannot.
    With a `studentId`, the student's confirmed booking on each schedule is included.
    """,
)
async def fetch_availability(
    qParam: AvailabilityQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    validators.requireValues("Route ID is required", qParam.routeId)
    now = datetime.now(TMZ_PRIMARY)
    startDate = qParam.startDate or now.astimezone(TMZ_SECONDARY).date()
    endDate = qParam.endDate or startDate + timedelta(days=AVAILABILITY_RANGE_DAYS)
    if startDate > endDate:
        raise exceptions.InvalidValue("startDate must not be after endDate")
    session = store.sessionMaker()
    try:
        route = session.query(Route).filter(Route.id == qParam.routeId).first()
        if route is None:
            raise exceptions.UnknownValue(Route)
        if route.status != RouteStatus.ACTIVE:
            return []

        schedules = (
            session.query(Schedule)
            .filter(
                Schedule.route_id == route.id,
                Schedule.schedule_date >= startDate,
                Schedule.schedule_date <= endDate,
                Schedule.status.in_(
                    [
                        ScheduleStatus.SCHEDULED,
                        ScheduleStatus.IN_PROGRESS,
                        ScheduleStatus.CANCELLED,
                    ]
                ),
            )
            .order_by(Schedule.schedule_date.asc())
            .all()
        )
        settings = getters.schedulingSettings(session)
        bookings = studentBookings(
            session, qParam.studentId, [schedule.id for schedule in schedules]
        )

        availability = []
        for schedule in schedules:
            seatsLeft = availableSeats(schedule.total_seats, schedule.booked_seats)
            deadline = None
            windowOpen = True
            if settings["enableBookingTimeWindow"]:
                deadline = bookingDeadline(schedule.schedule_date, settings)
                windowOpen = now <= deadline
            reason = bookingDisabledReason(
                schedule.schedule_date,
                schedule.status,
                schedule.booking_enabled,
                schedule.admin_scheduling_enabled,
                settings,
                now,
            )
            if reason is None and seatsLeft == 0:
                reason = exceptions.NoAvailableSeats.detail
            availability.append(
                {
                    **jsonable_encoder(schedule),
                    "available_seats": seatsLeft,
                    "booking_deadline": deadline,
                    "is_booking_window_open": windowOpen,
                    "is_booking_available": reason is None,
                    "booking_disabled_reason": reason,
                    "user_booking": bookings.get(schedule.id),
                }
            )
        return availability
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_BOOKING,
    tags=["Schedule"],
    response_model=BookingResponseSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.UnknownValue(Student),
            exceptions.UnknownValue(Schedule),
            exceptions.BookingUnavailable("Booking window has closed"),
            exceptions.AlreadyBooked(),
            exceptions.NoAvailableSeats(),
        ]
    ),
    description="""
    Books a seat on a schedule for a student.
    The schedule must be open for booking and the student must not already hold a confirmed booking on it.
    The seat is claimed with a single conditional increment, in the same transaction as the booking,
    so the booked seats never exceed the total seats.
    Logs the booking.
    """,
)
async def create_booking(
    fParam: BookingForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues("Boarding stop is required", fParam.boardingStop)
    session = store.sessionMaker()
    try:
        student = session.query(Student).filter(Student.id == fParam.studentId).first()
        if student is None:
            raise exceptions.UnknownValue(Student)
        schedule = (
            session.query(Schedule).filter(Schedule.id == fParam.scheduleId).first()
        )
        if schedule is None:
            raise exceptions.UnknownValue(Schedule)
        route = session.query(Route).filter(Route.id == schedule.route_id).first()

        reason = bookingDisabledReason(
            schedule.schedule_date,
            schedule.status,
            schedule.booking_enabled,
            schedule.admin_scheduling_enabled,
            getters.schedulingSettings(session),
            datetime.now(TMZ_PRIMARY),
        )
        if reason is not None:
            raise exceptions.BookingUnavailable(reason)
        existing = (
            session.query(Booking.id)
            .filter(
                Booking.student_id == student.id,
                Booking.schedule_id == schedule.id,
                Booking.status == BookingStatus.CONFIRMED,
            )
            .first()
        )
        if existing is not None:
            raise exceptions.AlreadyBooked()

        seatCount = claimSeat(session, schedule.id)
        if seatCount is None:
            session.rollback()
            raise exceptions.NoAvailableSeats()
        booking = Booking(
            student_id=student.id,
            route_id=schedule.route_id,
            schedule_id=schedule.id,
            trip_date=schedule.schedule_date,
            boarding_stop=fParam.boardingStop.strip(),
            seat_number=str(seatCount),
            status=BookingStatus.CONFIRMED,
            amount=route.fare if route is not None else 0,
        )
        session.add(booking)
        session.commit()
        session.refresh(booking)

        bookingData = jsonable_encoder(booking)
        logEvent(config, request_info, bookingData, {"_student_id": student.id})
        return {
            "success": True,
            "message": "Booking confirmed",
            "booking": bookingData,
            "availableSeats": availableSeats(schedule.total_seats, seatCount),
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Admin]
@route_admin.post(
    URL_ADMIN_SCHEDULE,
    tags=["Schedule"],
    response_model=ScheduleSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UnknownValue(Route),
            exceptions.UniqueViolation("Route already has a schedule on this date"),
        ]
    ),
    description="""
    Creates the schedule of a route for a date.
    Timing and seat count default to the route's.
    A route has at most one schedule per date.
    Logs the schedule creation activity.
    """,
)
async def create_schedule(
    fParam: CreateScheduleForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        route = session.query(Route).filter(Route.id == fParam.route_id).first()
        if route is None:
            raise exceptions.UnknownValue(Route)
        existing = (
            session.query(Schedule.id)
            .filter(
                Schedule.route_id == route.id,
                Schedule.schedule_date == fParam.schedule_date,
            )
            .first()
        )
        if existing is not None:
            raise exceptions.UniqueViolation(
                "Route already has a schedule on this date"
            )

        schedule = Schedule(
            route_id=route.id,
            schedule_date=fParam.schedule_date,
            departure_time=fParam.departure_time or route.departure_time,
            arrival_time=fParam.arrival_time or route.arrival_time,
            total_seats=fParam.total_seats or route.total_capacity,
            booked_seats=0,
            status=fParam.status,
            booking_enabled=fParam.booking_enabled,
            admin_scheduling_enabled=fParam.admin_scheduling_enabled,
            driver_id=fParam.driver_id or route.driver_id,
            vehicle_id=fParam.vehicle_id or route.vehicle_id,
        )
        session.add(schedule)
        session.commit()
        session.refresh(schedule)

        scheduleData = jsonable_encoder(schedule)
        logEvent(config, request_info, scheduleData)
        return scheduleData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
