from datetime import date, datetime, time
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.src.config import Config
from portal.src.db import Booking, Driver, Route, Schedule, Store, Student
from portal.src import exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.enums import BookingStatus, RouteStatus
from portal.src.constants import TMZ_SECONDARY
from portal.src.functions import fuseExceptionResponses, groupByStop
from portal.src.urls import (
    URL_DRIVER_BOOKINGS,
    URL_DRIVER_PROFILE,
    URL_DRIVER_PROFILE_UPDATE,
    URL_DRIVER_ROUTE,
    URL_DRIVER_ROUTES,
)

route_public = APIRouter()


## Output Schema
class BookingSchema(BaseModel):
    id: int
    student_id: int
    student_name: str
    roll_number: Optional[str]
    email: str
    mobile: Optional[str]
    route_id: int
    route_number: str
    route_name: str
    schedule_id: int
    schedule_date: Optional[date]
    departure_time: Optional[time]
    trip_date: date
    boarding_stop: Optional[str]
    seat_number: Optional[str]
    status: int
    payment_status: int
    amount: float


class BookingListSchema(BaseModel):
    success: bool
    bookings: List[BookingSchema]
    stopWise: Dict[str, List[BookingSchema]]


class ProfileSchema(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    license_number: Optional[str]
    experience_years: int
    rating: float
    total_trips: int
    status: int
    location_sharing_enabled: bool
    created_on: datetime


class ProfileResponseSchema(BaseModel):
    success: bool
    profile: ProfileSchema


class VehicleSchema(BaseModel):
    id: int
    registration_number: str
    model: Optional[str]
    capacity: int


class StopSchema(BaseModel):
    id: int
    stop_name: str
    stop_time: time
    sequence_order: int
    is_major_stop: bool
    latitude: Optional[float]
    longitude: Optional[float]


class AssignedRouteSchema(BaseModel):
    id: int
    route_number: str
    route_name: str
    start_location: str
    end_location: str
    departure_time: time
    arrival_time: time
    distance: Optional[float]
    duration: Optional[str]
    fare: float
    total_capacity: int
    current_passengers: int
    status: int
    vehicle: Optional[VehicleSchema]
    route_stops: List[StopSchema]


class AssignedRouteListSchema(BaseModel):
    success: bool
    routes: List[AssignedRouteSchema]


class AssignedRouteResponseSchema(BaseModel):
    success: bool
    route: AssignedRouteSchema


## Input Forms
class ProfileUpdateForm(BaseModel):
    driverId: int | None = Field(default=None)
    name: str | None = Field(default=None, max_length=128)
    phone: str | None = Field(default=None, max_length=32)
    license_number: str | None = Field(default=None, max_length=64)


## Query Parameters
class BookingQueryParams(BaseModel):
    routeId: int | None = Field(Query(default=None))
    routeNumber: str | None = Field(Query(default=None, max_length=32))
    tripDate: date | None = Field(Query(default=None, alias="date"))


class DriverQueryParams(BaseModel):
    driverId: int | None = Field(Query(default=None))


## Function
def searchBookings(session: Session, routeId: int, tripDate: date) -> List[dict]:
    """
    Fetch the confirmed and completed bookings of a route for a date.

    Each row carries the student, route and schedule display fields, ordered
    by boarding stop.
    """
    rows = (
        session.query(Booking, Student, Route, Schedule)
        .join(Student, Student.id == Booking.student_id)
        .join(Route, Route.id == Booking.route_id)
        .outerjoin(Schedule, Schedule.id == Booking.schedule_id)
        .filter(
            Booking.route_id == routeId,
            Booking.trip_date == tripDate,
            Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED]),
        )
        .order_by(Booking.boarding_stop.asc(), Booking.id.asc())
        .all()
    )
    bookings = []
    for booking, student, route, schedule in rows:
        bookings.append(
            {
                "id": booking.id,
                "student_id": student.id,
                "student_name": student.student_name,
                "roll_number": student.roll_number,
                "email": student.email,
                "mobile": student.mobile,
                "route_id": route.id,
                "route_number": route.route_number,
                "route_name": route.route_name,
                "schedule_id": booking.schedule_id,
                "schedule_date": schedule.schedule_date if schedule else None,
                "departure_time": schedule.departure_time if schedule else None,
                "trip_date": booking.trip_date,
                "boarding_stop": booking.boarding_stop,
                "seat_number": booking.seat_number,
                "status": booking.status,
                "payment_status": booking.payment_status,
                "amount": booking.amount,
            }
        )
    return bookings


def profileData(driver: Driver) -> dict:
    return {
        "id": driver.id,
        "name": driver.name,
        "email": driver.email,
        "phone": driver.phone,
        "license_number": driver.license_number,
        "experience_years": driver.experience_years or 0,
        "rating": driver.rating or 0,
        "total_trips": driver.total_trips or 0,
        "status": driver.status,
        "location_sharing_enabled": driver.location_sharing_enabled,
        "created_on": driver.created_on,
    }


def routeDetail(session: Session, route: Route) -> dict:
    routeData = jsonable_encoder(route)
    vehicle = getters.vehicle(session, route.vehicle_id)
    routeData["vehicle"] = jsonable_encoder(vehicle) if vehicle else None
    routeData["route_stops"] = jsonable_encoder(getters.routeStops(session, route.id))
    return routeData


## API endpoints [Driver]
@route_public.get(
    URL_DRIVER_BOOKINGS,
    tags=["Driver"],
    response_model=BookingListSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("routeId or routeNumber is required"),
            exceptions.UnknownValue(Route),
        ]
    ),
    description="""
    Lists the passengers booked on a route for a date, defaulting to today.
    The route is given by `routeId` or by `routeNumber`.
    Only CONFIRMED and COMPLETED bookings are reported, ordered by boarding stop.
    The bookings are also grouped by stop in `stopWise`, bookings without a stop fall under "Unknown Stop".
    """,
)
async def fetch_bookings(
    qParam: BookingQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    if qParam.routeId is None and not qParam.routeNumber:
        raise exceptions.MissingParameter("routeId or routeNumber is required")
    session = store.sessionMaker()
    try:
        routeId = qParam.routeId
        if routeId is None:
            route = (
                session.query(Route)
                .filter(Route.route_number == qParam.routeNumber)
                .first()
            )
            if route is None:
                raise exceptions.UnknownValue(Route)
            routeId = route.id
        tripDate = qParam.tripDate or datetime.now(TMZ_SECONDARY).date()

        bookings = searchBookings(session, routeId, tripDate)
        return {
            "success": True,
            "bookings": bookings,
            "stopWise": groupByStop(bookings),
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_DRIVER_PROFILE,
    tags=["Driver"],
    response_model=ProfileResponseSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Driver ID is required"),
            exceptions.UnknownValue(Driver),
        ]
    ),
    description="""
    Fetches the profile of a driver.
    Missing statistics are reported as zero.
    """,
)
async def fetch_profile(
    qParam: DriverQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    validators.requireValues("Driver ID is required", qParam.driverId)
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == qParam.driverId).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)
        return {"success": True, "profile": profileData(driver)}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_DRIVER_PROFILE_UPDATE,
    tags=["Driver"],
    response_model=ProfileResponseSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter(
                "Driver ID, name, phone and license number are required"
            ),
            exceptions.UnknownValue(Driver),
        ]
    ),
    description="""
    Updates the name, phone and license number of a driver.
    All values are trimmed and must be non-empty.
    Logs the profile update when any value changed.
    """,
)
async def update_profile(
    fParam: ProfileUpdateForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Driver ID, name, phone and license number are required",
        fParam.driverId,
        fParam.name,
        fParam.phone,
        fParam.license_number,
    )
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == fParam.driverId).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)

        driver.name = fParam.name.strip()
        driver.phone = fParam.phone.strip()
        driver.license_number = fParam.license_number.strip()
        haveUpdates = session.is_modified(driver)
        if haveUpdates:
            session.commit()
            session.refresh(driver)

        driverData = profileData(driver)
        if haveUpdates:
            logEvent(config, request_info, driverData, {"_driver_id": driver.id})
        return {"success": True, "profile": driverData}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_DRIVER_ROUTES,
    tags=["Driver"],
    response_model=AssignedRouteListSchema,
    responses=fuseExceptionResponses(
        [exceptions.MissingParameter("Driver ID is required")]
    ),
    description="""
    Lists the active routes assigned to a driver.
    Each route carries its vehicle and its stops ordered by sequence.
    """,
)
async def fetch_routes(
    qParam: DriverQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    validators.requireValues("Driver ID is required", qParam.driverId)
    session = store.sessionMaker()
    try:
        routes = (
            session.query(Route)
            .filter(
                Route.driver_id == qParam.driverId,
                Route.status == RouteStatus.ACTIVE,
            )
            .order_by(Route.departure_time.asc())
            .all()
        )
        return {
            "success": True,
            "routes": [routeDetail(session, route) for route in routes],
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_DRIVER_ROUTE,
    tags=["Driver"],
    response_model=AssignedRouteResponseSchema,
    responses=fuseExceptionResponses([exceptions.UnknownValue(Route)]),
    description="""
    Fetches one route with its vehicle and its stops ordered by sequence.
    """,
)
async def fetch_route(routeId: int, store: Store = Depends(getters.store)):
    session = store.sessionMaker()
    try:
        route = session.query(Route).filter(Route.id == routeId).first()
        if route is None:
            raise exceptions.UnknownValue(Route)
        return {"success": True, "route": routeDetail(session, route)}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
