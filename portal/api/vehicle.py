from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.api.bearer import bearer_admin
from portal.src.config import Config
from portal.src.db import Store, Vehicle
from portal.src import exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.enums import OrderIn
from portal.src.constants import REGEX_REGISTRATION_NUMBER
from portal.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from portal.src.urls import URL_ADMIN_VEHICLE

route_admin = APIRouter()


## Output Schema
class VehicleSchema(BaseModel):
    id: int
    registration_number: str
    model: Optional[str]
    capacity: int
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    registration_number: str = Field(pattern=REGEX_REGISTRATION_NUMBER, max_length=16)
    model: str | None = Field(default=None, max_length=128)
    capacity: int = Field(default=40, ge=1, le=120)


class UpdateForm(BaseModel):
    id: int
    model: str | None = Field(default=None, max_length=128)
    capacity: int | None = Field(default=None, ge=1, le=120)


class DeleteForm(BaseModel):
    id: int = Field(Query())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    registration_number = 2
    capacity = 3
    updated_on = 4
    created_on = 5


class QueryParams(BaseModel):
    # filters
    registration_number: str | None = Field(Query(default=None))
    model: str | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # capacity based
    capacity_ge: int | None = Field(Query(default=None))
    capacity_le: int | None = Field(Query(default=None))
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
def searchVehicle(session: Session, qParam: QueryParams) -> List[Vehicle]:
    query = session.query(Vehicle)

    # Filters
    if qParam.registration_number is not None:
        query = query.filter(
            Vehicle.registration_number.ilike(f"%{qParam.registration_number}%")
        )
    if qParam.model is not None:
        query = query.filter(Vehicle.model.ilike(f"%{qParam.model}%"))
    # id based
    if qParam.id is not None:
        query = query.filter(Vehicle.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Vehicle.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Vehicle.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Vehicle.id.in_(qParam.id_list))
    # capacity based
    if qParam.capacity_ge is not None:
        query = query.filter(Vehicle.capacity >= qParam.capacity_ge)
    if qParam.capacity_le is not None:
        query = query.filter(Vehicle.capacity <= qParam.capacity_le)
    # updated_on based
    if qParam.updated_on_ge is not None:
        query = query.filter(Vehicle.updated_on >= qParam.updated_on_ge)
    if qParam.updated_on_le is not None:
        query = query.filter(Vehicle.updated_on <= qParam.updated_on_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Vehicle.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Vehicle.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Vehicle, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Admin]
@route_admin.post(
    URL_ADMIN_VEHICLE,
    tags=["Vehicle"],
    response_model=VehicleSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UniqueViolation("Registration number already exists"),
        ]
    ),
    description="""
    Registers a vehicle that can be assigned to routes and schedules.
    The registration number must be unique, ex:- TN33AB1234.
    Logs the vehicle creation activity.
    """,
)
async def create_vehicle(
    fParam: CreateForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        existing = (
            session.query(Vehicle.id)
            .filter(Vehicle.registration_number == fParam.registration_number)
            .first()
        )
        if existing is not None:
            raise exceptions.UniqueViolation("Registration number already exists")

        vehicle = Vehicle(**fParam.model_dump())
        session.add(vehicle)
        session.commit()
        session.refresh(vehicle)

        vehicleData = jsonable_encoder(vehicle)
        logEvent(config, request_info, vehicleData)
        return vehicleData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ADMIN_VEHICLE,
    tags=["Vehicle"],
    response_model=VehicleSchema,
    responses=fuseExceptionResponses(
        [exceptions.InvalidAdminKey(), exceptions.UnknownValue(Vehicle)]
    ),
    description="""
    Updates the model or capacity of a vehicle.
    Changes are saved only if the vehicle data has been modified.
    Logs the vehicle updating activity.
    """,
)
async def update_vehicle(
    fParam: UpdateForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        vehicle = session.query(Vehicle).filter(Vehicle.id == fParam.id).first()
        if vehicle is None:
            raise exceptions.UnknownValue(Vehicle)

        updateIfChanged(vehicle, fParam, [Vehicle.model.key, Vehicle.capacity.key])
        haveUpdates = session.is_modified(vehicle)
        if haveUpdates:
            session.commit()
            session.refresh(vehicle)

        vehicleData = jsonable_encoder(vehicle)
        if haveUpdates:
            logEvent(config, request_info, vehicleData)
        return vehicleData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ADMIN_VEHICLE,
    tags=["Vehicle"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Deletes a vehicle. Routes and schedules using it are left without a vehicle.
    Deleting an unknown vehicle is not an error.
    Logs the deletion activity.
    """,
)
async def delete_vehicle(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        vehicle = session.query(Vehicle).filter(Vehicle.id == fParam.id).first()
        if vehicle is not None:
            session.delete(vehicle)
            session.commit()
            logEvent(config, request_info, jsonable_encoder(vehicle))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_ADMIN_VEHICLE,
    tags=["Vehicle"],
    response_model=List[VehicleSchema],
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Fetches a list of vehicles.
    Supports filtering by registration number, model, capacity and metadata.
    """,
)
async def fetch_vehicles(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        return searchVehicle(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
