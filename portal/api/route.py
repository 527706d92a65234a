from datetime import date, datetime, time
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.api.bearer import bearer_admin
from portal.src.config import Config
from portal.src.db import Driver, Route, RouteStop, SemesterPayment, Store, Vehicle
from portal.src import exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.constants import TMZ_PRIMARY, TMZ_SECONDARY
from portal.src.enums import OrderIn, PaymentStatus, RouteStatus
from portal.src.functions import (
    availableSeats,
    enumStr,
    estimateArrival,
    fuseExceptionResponses,
    gpsStatus,
    minutesSince,
    updateIfChanged,
)
from portal.src.urls import (
    URL_ADMIN_ROUTE,
    URL_ADMIN_ROUTE_STOP,
    URL_ROUTE_STOPS,
    URL_ROUTES_AVAILABLE,
    URL_ROUTES_LIVE_TRACKING,
)

route_public = APIRouter()
route_admin = APIRouter()


## Output Schema
class RouteStopSchema(BaseModel):
    id: int
    route_id: int
    stop_name: str
    stop_time: time
    sequence_order: int
    is_major_stop: bool
    latitude: Optional[float]
    longitude: Optional[float]
    updated_on: Optional[datetime]
    created_on: datetime


class RouteSummarySchema(BaseModel):
    id: int
    route_number: str
    route_name: str
    start_location: str
    end_location: str


class RouteStopListSchema(BaseModel):
    success: bool
    route: RouteSummarySchema
    stops: List[RouteStopSchema]
    count: int


class RouteSchema(BaseModel):
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
    driver_id: Optional[int]
    vehicle_id: Optional[int]
    live_tracking_enabled: bool
    updated_on: Optional[datetime]
    created_on: datetime


class AvailableRouteSchema(RouteSchema):
    availableSeats: int
    route_stops: List[RouteStopSchema]


class AvailableRouteListSchema(BaseModel):
    success: bool
    routes: List[AvailableRouteSchema]


class LiveRouteSchema(RouteSummarySchema):
    departure_time: time
    arrival_time: time
    distance: Optional[float]
    duration: Optional[str]
    status: int
    stops: List[RouteStopSchema]


class LiveLocationSchema(BaseModel):
    latitude: float
    longitude: float
    lastUpdate: datetime
    timeSinceUpdate: Optional[int]


class GpsSchema(BaseModel):
    enabled: bool
    status: str
    currentLocation: Optional[LiveLocationSchema]


class VehicleSummarySchema(BaseModel):
    id: int
    registration_number: str
    model: Optional[str]


class ArrivalSchema(BaseModel):
    boardingStop: str
    estimatedMinutes: int
    estimatedTime: datetime
    confidence: str


class LiveTrackingSchema(BaseModel):
    route: LiveRouteSchema
    gps: GpsSchema
    vehicle: Optional[VehicleSummarySchema]
    estimatedArrival: Optional[ArrivalSchema]
    lastUpdated: datetime


class LiveTrackingResponseSchema(BaseModel):
    success: bool
    data: Optional[LiveTrackingSchema]
    message: Optional[str] = None


## Input Forms
class CreateRouteForm(BaseModel):
    route_number: str = Field(max_length=32)
    route_name: str = Field(max_length=256)
    start_location: str = Field(max_length=256)
    end_location: str = Field(max_length=256)
    departure_time: time
    arrival_time: time
    distance: float | None = Field(default=None, ge=0)
    duration: str | None = Field(default=None, max_length=32)
    fare: float = Field(ge=0)
    total_capacity: int = Field(default=40, ge=1, le=120)
    status: RouteStatus = Field(
        description=enumStr(RouteStatus), default=RouteStatus.ACTIVE
    )
    driver_id: int | None = Field(default=None)
    vehicle_id: int | None = Field(default=None)
    live_tracking_enabled: bool = Field(default=False)


class UpdateRouteForm(BaseModel):
    id: int
    route_name: str | None = Field(default=None, max_length=256)
    start_location: str | None = Field(default=None, max_length=256)
    end_location: str | None = Field(default=None, max_length=256)
    departure_time: time | None = Field(default=None)
    arrival_time: time | None = Field(default=None)
    distance: float | None = Field(default=None, ge=0)
    duration: str | None = Field(default=None, max_length=32)
    fare: float | None = Field(default=None, ge=0)
    total_capacity: int | None = Field(default=None, ge=1, le=120)
    current_passengers: int | None = Field(default=None, ge=0)
    status: RouteStatus | None = Field(description=enumStr(RouteStatus), default=None)
    driver_id: int | None = Field(default=None)
    vehicle_id: int | None = Field(default=None)
    live_tracking_enabled: bool | None = Field(default=None)


class CreateStopForm(BaseModel):
    route_id: int
    stop_name: str = Field(max_length=256)
    stop_time: time
    sequence_order: int = Field(ge=1)
    is_major_stop: bool = Field(default=False)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class UpdateStopForm(BaseModel):
    id: int
    stop_name: str | None = Field(default=None, max_length=256)
    stop_time: time | None = Field(default=None)
    sequence_order: int | None = Field(default=None, ge=1)
    is_major_stop: bool | None = Field(default=None)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class DeleteForm(BaseModel):
    id: int = Field(Query())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    route_number = 2
    departure_time = 3
    updated_on = 4
    created_on = 5


class LiveTrackingQueryParams(BaseModel):
    studentId: int | None = Field(Query(default=None))
    routeId: int | None = Field(Query(default=None))


class QueryParams(BaseModel):
    # filters
    route_number: str | None = Field(Query(default=None))
    route_name: str | None = Field(Query(default=None))
    status: RouteStatus | None = Field(
        Query(default=None, description=enumStr(RouteStatus))
    )
    driver_id: int | None = Field(Query(default=None))
    vehicle_id: int | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # updated_on based
    updated_on_ge: datetime | None = Field(Query(default=None))
    updated_on_le: datetime | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


## Function
def updateRoute(route: Route, fParam: UpdateRouteForm):
    updateIfChanged(
        route,
        fParam,
        [
            Route.route_name.key,
            Route.start_location.key,
            Route.end_location.key,
            Route.departure_time.key,
            Route.arrival_time.key,
            Route.distance.key,
            Route.duration.key,
            Route.fare.key,
            Route.total_capacity.key,
            Route.current_passengers.key,
            Route.status.key,
            Route.driver_id.key,
            Route.vehicle_id.key,
            Route.live_tracking_enabled.key,
        ],
    )


def updateStop(stop: RouteStop, fParam: UpdateStopForm):
    updateIfChanged(
        stop,
        fParam,
        [
            RouteStop.stop_name.key,
            RouteStop.stop_time.key,
            RouteStop.sequence_order.key,
            RouteStop.is_major_stop.key,
            RouteStop.latitude.key,
            RouteStop.longitude.key,
        ],
    )


def validateAssignment(
    session: Session, driverId: Optional[int], vehicleId: Optional[int]
):
    if driverId is not None:
        if session.query(Driver.id).filter(Driver.id == driverId).first() is None:
            raise exceptions.UnknownValue(Driver)
    if vehicleId is not None:
        if session.query(Vehicle.id).filter(Vehicle.id == vehicleId).first() is None:
            raise exceptions.UnknownValue(Vehicle)


def validateSequence(
    session: Session, routeId: int, sequenceOrder: int, stopId: Optional[int] = None
):
    """Ensure no other stop of the route holds the sequence position."""
    query = session.query(RouteStop.id).filter(
        RouteStop.route_id == routeId, RouteStop.sequence_order == sequenceOrder
    )
    if stopId is not None:
        query = query.filter(RouteStop.id != stopId)
    if query.first() is not None:
        raise exceptions.UniqueViolation(
            f"Sequence order {sequenceOrder} is already used in this route"
        )


def currentAllocation(
    session: Session, studentId: int, today: date
) -> Optional[SemesterPayment]:
    """Find the confirmed semester payment covering today, the latest first."""
    return (
        session.query(SemesterPayment)
        .filter(
            SemesterPayment.student_id == studentId,
            SemesterPayment.payment_status == PaymentStatus.CONFIRMED,
            SemesterPayment.valid_from <= today,
            SemesterPayment.valid_until >= today,
        )
        .order_by(SemesterPayment.paid_on.desc(), SemesterPayment.id.desc())
        .first()
    )


def searchRoute(session: Session, qParam: QueryParams) -> List[Route]:
    query = session.query(Route)

    # Filters
    if qParam.route_number is not None:
        query = query.filter(Route.route_number.ilike(f"%{qParam.route_number}%"))
    if qParam.route_name is not None:
        query = query.filter(Route.route_name.ilike(f"%{qParam.route_name}%"))
    if qParam.status is not None:
        query = query.filter(Route.status == qParam.status)
    if qParam.driver_id is not None:
        query = query.filter(Route.driver_id == qParam.driver_id)
    if qParam.vehicle_id is not None:
        query = query.filter(Route.vehicle_id == qParam.vehicle_id)
    # id based
    if qParam.id is not None:
        query = query.filter(Route.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Route.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Route.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Route.id.in_(qParam.id_list))
    # updated_on based
    if qParam.updated_on_ge is not None:
        query = query.filter(Route.updated_on >= qParam.updated_on_ge)
    if qParam.updated_on_le is not None:
        query = query.filter(Route.updated_on <= qParam.updated_on_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Route.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Route.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Route, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Public]
@route_public.get(
    URL_ROUTES_LIVE_TRACKING,
    tags=["Route"],
    response_model=LiveTrackingResponseSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Student ID or Route ID is required"),
            exceptions.UnknownValue(Route),
        ]
    ),
    description="""
    Reports the live position of a route's bus with its stops and vehicle.
    Given only a student, the route is the one of the student's confirmed semester payment covering today.
    The GPS is online when the last fix is at most 2 minutes old, recent up to 5 minutes, offline otherwise.
    For a student, the arrival at the boarding stop is estimated while the GPS is not offline.
    """,
)
async def fetch_live_tracking(
    qParam: LiveTrackingQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    if qParam.studentId is None and qParam.routeId is None:
        raise exceptions.MissingParameter("Student ID or Route ID is required")
    session = store.sessionMaker()
    try:
        now = datetime.now(TMZ_PRIMARY)
        routeId = qParam.routeId
        boardingStop = None
        if qParam.studentId is not None:
            allocation = currentAllocation(
                session, qParam.studentId, now.astimezone(TMZ_SECONDARY).date()
            )
            if routeId is None:
                if allocation is None:
                    return {
                        "success": True,
                        "data": None,
                        "message": "No route allocated to student",
                    }
                routeId = allocation.route_id
            if allocation is not None and allocation.route_id == routeId:
                boardingStop = allocation.stop_name

        route = session.query(Route).filter(Route.id == routeId).first()
        if route is None:
            raise exceptions.UnknownValue(Route)
        stops = getters.routeStops(session, route.id)
        vehicle = getters.vehicle(session, route.vehicle_id)

        minutes = minutesSince(route.last_gps_update, now)
        status = gpsStatus(minutes)
        hasPosition = (
            route.current_latitude is not None and route.current_longitude is not None
        )
        currentLocation = None
        if hasPosition and route.last_gps_update is not None:
            currentLocation = {
                "latitude": route.current_latitude,
                "longitude": route.current_longitude,
                "lastUpdate": route.last_gps_update,
                "timeSinceUpdate": minutes,
            }
        estimatedArrival = None
        if boardingStop and hasPosition:
            estimatedArrival = estimateArrival(
                stops, boardingStop, status, minutes, now
            )

        routeData = jsonable_encoder(route)
        routeData["stops"] = jsonable_encoder(stops)
        return {
            "success": True,
            "data": {
                "route": routeData,
                "gps": {
                    "enabled": route.live_tracking_enabled,
                    "status": status,
                    "currentLocation": currentLocation,
                },
                "vehicle": jsonable_encoder(vehicle) if vehicle else None,
                "estimatedArrival": estimatedArrival,
                "lastUpdated": now,
            },
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_ROUTE_STOPS,
    tags=["Route"],
    response_model=RouteStopListSchema,
    responses=fuseExceptionResponses([exceptions.UnknownValue(Route)]),
    description="""
    Lists the stops of a route in boarding order, ascending by sequence.
    """,
)
async def fetch_route_stops(routeId: int, store: Store = Depends(getters.store)):
    session = store.sessionMaker()
    try:
        route = session.query(Route).filter(Route.id == routeId).first()
        if route is None:
            raise exceptions.UnknownValue(Route)

        stops = getters.routeStops(session, route.id)
        return {"success": True, "route": route, "stops": stops, "count": len(stops)}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_ROUTES_AVAILABLE,
    tags=["Route"],
    response_model=AvailableRouteListSchema,
    description="""
    Lists the active routes with their stops in boarding order.
    The free seats of a route are its capacity less its enrolled passengers, never negative.
    """,
)
async def fetch_available_routes(store: Store = Depends(getters.store)):
    session = store.sessionMaker()
    try:
        routes = (
            session.query(Route)
            .filter(Route.status == RouteStatus.ACTIVE)
            .order_by(Route.route_number.asc())
            .all()
        )
        routeList = []
        for route in routes:
            routeData = jsonable_encoder(route)
            routeData["availableSeats"] = availableSeats(
                route.total_capacity, route.current_passengers
            )
            routeData["route_stops"] = jsonable_encoder(
                getters.routeStops(session, route.id)
            )
            routeList.append(routeData)
        return {"success": True, "routes": routeList}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Admin]
@route_admin.post(
    URL_ADMIN_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UniqueViolation("Route number already exists"),
            exceptions.UnknownValue(Driver),
            exceptions.UnknownValue(Vehicle),
        ]
    ),
    description="""
    Creates a new route.
    The route number must be unique, the assigned driver and vehicle must exist.
    Logs the route creation activity.
    """,
)
async def create_route(
    fParam: CreateRouteForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        existing = (
            session.query(Route.id)
            .filter(Route.route_number == fParam.route_number)
            .first()
        )
        if existing is not None:
            raise exceptions.UniqueViolation("Route number already exists")
        validateAssignment(session, fParam.driver_id, fParam.vehicle_id)

        route = Route(**fParam.model_dump())
        session.add(route)
        session.commit()
        session.refresh(route)

        routeData = jsonable_encoder(route)
        logEvent(config, request_info, routeData)
        return routeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ADMIN_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UnknownValue(Route),
            exceptions.UnknownValue(Driver),
            exceptions.UnknownValue(Vehicle),
        ]
    ),
    description="""
    Updates an existing route.
    Supports partial updates, changes are saved only if the route data has been modified.
    Logs the route updating activity.
    """,
)
async def update_route(
    fParam: UpdateRouteForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        route = session.query(Route).filter(Route.id == fParam.id).first()
        if route is None:
            raise exceptions.UnknownValue(Route)
        validateAssignment(session, fParam.driver_id, fParam.vehicle_id)

        updateRoute(route, fParam)
        haveUpdates = session.is_modified(route)
        if haveUpdates:
            session.commit()
            session.refresh(route)

        routeData = jsonable_encoder(route)
        if haveUpdates:
            logEvent(config, request_info, routeData)
        return routeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ADMIN_ROUTE,
    tags=["Route"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Deletes a route together with its stops and schedules.
    Deleting an unknown route is not an error.
    Logs the deletion activity.
    """,
)
async def delete_route(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        route = session.query(Route).filter(Route.id == fParam.id).first()
        if route is not None:
            session.delete(route)
            session.commit()
            logEvent(config, request_info, jsonable_encoder(route))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_ADMIN_ROUTE,
    tags=["Route"],
    response_model=List[RouteSchema],
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Fetches a list of routes.
    Supports filtering by number, name, status, assignment and metadata.
    """,
)
async def fetch_routes(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        return searchRoute(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.post(
    URL_ADMIN_ROUTE_STOP,
    tags=["Route Stop"],
    response_model=RouteStopSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UnknownValue(Route),
            exceptions.UniqueViolation(
                "Sequence order 1 is already used in this route"
            ),
        ]
    ),
    description="""
    Adds a stop to a route.
    The sequence order must not be used by another stop of the same route.
    Logs the stop creation activity.
    """,
)
async def create_route_stop(
    fParam: CreateStopForm,
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
        validateSequence(session, route.id, fParam.sequence_order)

        stop = RouteStop(**fParam.model_dump())
        session.add(stop)
        session.commit()
        session.refresh(stop)

        stopData = jsonable_encoder(stop)
        logEvent(config, request_info, stopData)
        return stopData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ADMIN_ROUTE_STOP,
    tags=["Route Stop"],
    response_model=RouteStopSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UnknownValue(RouteStop),
            exceptions.UniqueViolation(
                "Sequence order 1 is already used in this route"
            ),
        ]
    ),
    description="""
    Updates a stop of a route.
    A new sequence order must not be used by another stop of the same route.
    Logs the stop updating activity.
    """,
)
async def update_route_stop(
    fParam: UpdateStopForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        stop = session.query(RouteStop).filter(RouteStop.id == fParam.id).first()
        if stop is None:
            raise exceptions.UnknownValue(RouteStop)
        if fParam.sequence_order is not None:
            validateSequence(session, stop.route_id, fParam.sequence_order, stop.id)

        updateStop(stop, fParam)
        haveUpdates = session.is_modified(stop)
        if haveUpdates:
            session.commit()
            session.refresh(stop)

        stopData = jsonable_encoder(stop)
        if haveUpdates:
            logEvent(config, request_info, stopData)
        return stopData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ADMIN_ROUTE_STOP,
    tags=["Route Stop"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Removes a stop from its route.
    Logs the deletion activity.
    """,
)
async def delete_route_stop(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        stop = session.query(RouteStop).filter(RouteStop.id == fParam.id).first()
        if stop is not None:
            session.delete(stop)
            session.commit()
            logEvent(config, request_info, jsonable_encoder(stop))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
