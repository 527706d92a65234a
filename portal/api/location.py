from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from portal.src.config import Config
from portal.src.db import Driver, LocationTracking, Route, Store
from portal.src import exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.enums import TrackingStatus
from portal.src.constants import (
    LOCATION_SOURCE_GPS,
    LOCATION_UPDATE_INTERVAL,
    MAX_TRACKING_HISTORY_LIMIT,
    TMZ_PRIMARY,
    TRACKING_HISTORY_LIMIT,
)
from portal.src.functions import fuseExceptionResponses
from portal.src.urls import (
    URL_DRIVER_LOCATION,
    URL_DRIVER_LOCATION_SETTINGS,
    URL_DRIVER_LOCATION_UPDATE,
)

route_public = APIRouter()


## Output Schema
class CurrentLocationSchema(BaseModel):
    latitude: Optional[float]
    longitude: Optional[float]
    accuracy: Optional[float]
    timestamp: Optional[datetime]
    lastUpdate: Optional[datetime]


class DriverLocationSchema(BaseModel):
    id: int
    name: str
    currentLocation: CurrentLocationSchema
    trackingStatus: int
    sharingEnabled: bool
    trackingEnabled: bool


class TrackingPointSchema(BaseModel):
    id: int
    route_id: int
    vehicle_id: Optional[int]
    timestamp: datetime
    latitude: float
    longitude: float
    accuracy: Optional[float]
    speed: Optional[float]
    heading: Optional[float]
    location_source: Optional[str]
    data_quality: Optional[str]


class LocationResponseSchema(BaseModel):
    success: bool
    driver: DriverLocationSchema
    trackingHistory: List[TrackingPointSchema]


class LocationUpdateSchema(BaseModel):
    success: bool
    message: str
    location: CurrentLocationSchema
    routeUpdated: bool
    historyRecorded: bool


class LocationSettingsSchema(BaseModel):
    locationSharingEnabled: bool
    locationTrackingEnabled: bool
    updateInterval: int
    shareWithAdmin: bool
    shareWithPassengers: bool
    trackingStatus: int
    lastUpdate: Optional[datetime]


class LocationSettingsResponseSchema(BaseModel):
    success: bool
    settings: LocationSettingsSchema


## Input Forms
class LocationUpdateForm(BaseModel):
    driverId: int | None = Field(default=None)
    latitude: float | None = Field(default=None)
    longitude: float | None = Field(default=None)
    accuracy: float | None = Field(default=None, ge=0)
    speed: float | None = Field(default=None, ge=0)
    heading: float | None = Field(default=None, ge=0, le=360)
    timestamp: datetime | None = Field(default=None)
    routeId: int | None = Field(default=None)
    vehicleId: int | None = Field(default=None)


class SettingsValues(BaseModel):
    locationSharingEnabled: bool | None = Field(default=None)
    locationTrackingEnabled: bool | None = Field(default=None)


class SettingsForm(BaseModel):
    driverId: int | None = Field(default=None)
    settings: SettingsValues | None = Field(default=None)


## Query Parameters
class LocationQueryParams(BaseModel):
    routeId: int | None = Field(Query(default=None))
    limit: int = Field(
        Query(default=TRACKING_HISTORY_LIMIT, gt=0, le=MAX_TRACKING_HISTORY_LIMIT)
    )


class SettingsQueryParams(BaseModel):
    driverId: int | None = Field(Query(default=None))


## Function
def currentLocation(driver: Driver) -> dict:
    return {
        "latitude": driver.current_latitude,
        "longitude": driver.current_longitude,
        "accuracy": driver.location_accuracy,
        "timestamp": driver.location_timestamp,
        "lastUpdate": driver.last_location_update,
    }


def locationSettings(driver: Driver) -> dict:
    return {
        "locationSharingEnabled": driver.location_sharing_enabled,
        "locationTrackingEnabled": driver.location_enabled,
        "updateInterval": LOCATION_UPDATE_INTERVAL,
        "shareWithAdmin": True,
        "shareWithPassengers": driver.location_sharing_enabled,
        "trackingStatus": driver.location_tracking_status,
        "lastUpdate": driver.last_location_update,
    }


def dataQuality(accuracy: Optional[float]) -> str:
    """Grade a GPS fix by its accuracy radius in meters."""
    if accuracy is None:
        return "unknown"
    if accuracy <= 10:
        return "excellent"
    if accuracy <= 50:
        return "good"
    if accuracy <= 100:
        return "fair"
    return "poor"


## API endpoints [Location]
@route_public.get(
    URL_DRIVER_LOCATION,
    tags=["Location"],
    response_model=LocationResponseSchema,
    responses=fuseExceptionResponses(
        [exceptions.UnknownValue(Driver), exceptions.LocationSharingDisabled()]
    ),
    description="""
    Fetches the last known location of a driver.
    Fails when the driver has disabled location sharing, regardless of the tracking flag.
    With a `routeId`, the most recent active tracking points of the driver on that route are included, newest first.
    """,
)
async def fetch_driver_location(
    driverId: int,
    qParam: LocationQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == driverId).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)
        validators.locationSharing(driver)

        history = []
        if qParam.routeId is not None:
            history = (
                session.query(LocationTracking)
                .filter(
                    LocationTracking.driver_id == driver.id,
                    LocationTracking.route_id == qParam.routeId,
                    LocationTracking.is_active == True,
                )
                .order_by(LocationTracking.timestamp.desc(), LocationTracking.id.desc())
                .limit(qParam.limit)
                .all()
            )
        return {
            "success": True,
            "driver": {
                "id": driver.id,
                "name": driver.name,
                "currentLocation": currentLocation(driver),
                "trackingStatus": driver.location_tracking_status,
                "sharingEnabled": driver.location_sharing_enabled,
                "trackingEnabled": driver.location_enabled,
            },
            "trackingHistory": history,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_DRIVER_LOCATION_UPDATE,
    tags=["Location"],
    response_model=LocationUpdateSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter(
                "Driver ID, latitude and longitude are required"
            ),
            exceptions.InvalidValue("Invalid coordinates"),
            exceptions.UnknownValue(Driver),
            exceptions.LocationSharingDisabled(),
        ]
    ),
    description="""
    Records the current position of a driver and marks the tracking as active.
    With a `routeId` that resolves, the position is appended to the tracking history
    and copied to the route when live tracking is enabled on it.
    An unknown route does not fail the request.
    """,
)
async def update_driver_location(
    fParam: LocationUpdateForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Driver ID, latitude and longitude are required",
        fParam.driverId,
        fParam.latitude,
        fParam.longitude,
    )
    validators.coordinates(fParam.latitude, fParam.longitude)
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == fParam.driverId).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)
        validators.locationSharing(driver)

        now = datetime.now(TMZ_PRIMARY)
        timestamp = fParam.timestamp or now
        driver.current_latitude = fParam.latitude
        driver.current_longitude = fParam.longitude
        driver.location_accuracy = fParam.accuracy
        driver.location_timestamp = timestamp
        driver.last_location_update = now
        driver.location_tracking_status = TrackingStatus.ACTIVE

        routeUpdated = historyRecorded = False
        route = None
        if fParam.routeId is not None:
            route = session.query(Route).filter(Route.id == fParam.routeId).first()
        if route is not None:
            if route.live_tracking_enabled:
                route.current_latitude = fParam.latitude
                route.current_longitude = fParam.longitude
                route.last_gps_update = now
                routeUpdated = True
            session.add(
                LocationTracking(
                    driver_id=driver.id,
                    route_id=route.id,
                    vehicle_id=fParam.vehicleId or route.vehicle_id,
                    timestamp=timestamp,
                    latitude=fParam.latitude,
                    longitude=fParam.longitude,
                    accuracy=fParam.accuracy,
                    speed=fParam.speed,
                    heading=fParam.heading,
                    location_source=LOCATION_SOURCE_GPS,
                    data_quality=dataQuality(fParam.accuracy),
                )
            )
            historyRecorded = True
        session.commit()

        location = currentLocation(driver)
        logEvent(
            config,
            request_info,
            {"route_id": fParam.routeId, **location},
            {"_driver_id": driver.id},
        )
        return {
            "success": True,
            "message": "Location updated successfully",
            "location": location,
            "routeUpdated": routeUpdated,
            "historyRecorded": historyRecorded,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_DRIVER_LOCATION_SETTINGS,
    tags=["Location"],
    response_model=LocationSettingsResponseSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Driver ID is required"),
            exceptions.UnknownValue(Driver),
        ]
    ),
    description="""
    Fetches the location sharing preferences of a driver.
    """,
)
async def fetch_location_settings(
    qParam: SettingsQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    validators.requireValues("Driver ID is required", qParam.driverId)
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == qParam.driverId).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)
        return {"success": True, "settings": locationSettings(driver)}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_DRIVER_LOCATION_SETTINGS,
    tags=["Location"],
    response_model=LocationSettingsResponseSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Driver ID and settings are required"),
            exceptions.UnknownValue(Driver),
        ]
    ),
    description="""
    Updates the location sharing and tracking flags of a driver.
    The tracking status follows the tracking flag.
    Logs the change when any flag changed.
    """,
)
async def update_location_settings(
    fParam: SettingsForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Driver ID and settings are required", fParam.driverId, fParam.settings
    )
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == fParam.driverId).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)

        values = fParam.settings
        if values.locationSharingEnabled is not None:
            driver.location_sharing_enabled = values.locationSharingEnabled
        if values.locationTrackingEnabled is not None:
            driver.location_enabled = values.locationTrackingEnabled
            driver.location_tracking_status = (
                TrackingStatus.ACTIVE
                if values.locationTrackingEnabled
                else TrackingStatus.INACTIVE
            )
        haveUpdates = session.is_modified(driver)
        if haveUpdates:
            session.commit()

        settings = locationSettings(driver)
        if haveUpdates:
            logEvent(config, request_info, settings, {"_driver_id": driver.id})
        return {"success": True, "settings": settings}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
