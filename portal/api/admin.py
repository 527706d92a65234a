from datetime import date, datetime, time
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.api.bearer import bearer_admin
from portal.src.config import Config
from portal.src.db import (
    AdminSetting,
    Driver,
    Route,
    SemesterFee,
    Store,
    Student,
    Vehicle,
)
from portal.src import argon2, exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.enums import AccountStatus, DriverStatus, OrderIn, RouteStatus
from portal.src.constants import (
    DEMO_ROUTE_NUMBER,
    DEMO_SEMESTER_FEE,
    DEMO_STUDENT_EMAIL,
    DEMO_STUDENT_ROLL_NUMBER,
    DEMO_VEHICLE_REGISTRATION_NUMBER,
    MIN_PASSWORD_LENGTH,
    SCHEDULING_SETTING_TYPE,
    TMZ_PRIMARY,
    TMZ_SECONDARY,
)
from portal.src.functions import (
    academicPeriod,
    enumStr,
    fuseExceptionResponses,
    semesterWindow,
    updateIfChanged,
)
from portal.src.urls import (
    URL_ADMIN_CREATE_DRIVER,
    URL_ADMIN_DRIVER,
    URL_ADMIN_SEMESTER_FEE,
    URL_ADMIN_STUDENT,
    URL_SETTINGS,
    URL_SETUP_DEMO,
)

route_public = APIRouter()
route_admin = APIRouter()


## Output Schema
class StudentSchema(BaseModel):
    id: int
    student_name: str
    roll_number: Optional[str]
    email: str
    mobile: Optional[str]
    date_of_birth: Optional[date]
    first_login_completed: bool
    failed_login_attempts: int
    last_login: Optional[datetime]
    external_student_id: Optional[str]
    status: int
    updated_on: Optional[datetime]
    created_on: datetime


class DriverSchema(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    license_number: Optional[str]
    experience_years: Optional[int]
    rating: Optional[float]
    total_trips: Optional[int]
    status: int
    location_sharing_enabled: bool
    location_enabled: bool
    updated_on: Optional[datetime]
    created_on: datetime


class CreatedDriverSchema(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    license_number: Optional[str]
    status: int


class CreateDriverResponseSchema(BaseModel):
    success: bool
    message: str
    driver: CreatedDriverSchema


class SemesterFeeSchema(BaseModel):
    id: int
    route_id: int
    academic_year: str
    semester: int
    semester_fee: float
    valid_from: date
    valid_until: date
    is_active: bool
    updated_on: Optional[datetime]
    created_on: datetime


class SchedulingSettingsSchema(BaseModel):
    enableBookingTimeWindow: bool
    bookingWindowEndHour: int
    bookingWindowDaysBefore: int
    autoNotifyPassengers: bool
    sendReminderHours: List[int]


class SettingsResponseSchema(BaseModel):
    settings: SchedulingSettingsSchema


class SettingsUpdateSchema(BaseModel):
    success: bool
    settings: SchedulingSettingsSchema


class DemoStudentSchema(BaseModel):
    id: int
    name: str
    email: str


class DemoRouteSchema(BaseModel):
    id: int
    name: str
    number: str


class DemoVehicleSchema(BaseModel):
    id: int
    registrationNumber: str


class DemoFeeSchema(BaseModel):
    id: int
    amount: float
    academicYear: str
    semester: int


class DemoDataSchema(BaseModel):
    student: DemoStudentSchema
    route: DemoRouteSchema
    vehicle: DemoVehicleSchema
    semesterFee: DemoFeeSchema


class DemoResponseSchema(BaseModel):
    success: bool
    message: str
    data: DemoDataSchema


## Input Forms
class CreateDriverForm(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=256)
    phone: str | None = Field(default=None, max_length=32)
    licenseNumber: str | None = Field(default=None, max_length=64)
    password: str | None = Field(default=None, max_length=128)
    adminKey: str | None = Field(default=None, max_length=256)


class UpdateDriverForm(BaseModel):
    id: int
    name: str | None = Field(default=None, max_length=128)
    phone: str | None = Field(default=None, max_length=32)
    license_number: str | None = Field(default=None, max_length=64)
    experience_years: int | None = Field(default=None, ge=0)
    status: DriverStatus | None = Field(description=enumStr(DriverStatus), default=None)
    password: str | None = Field(
        default=None, min_length=MIN_PASSWORD_LENGTH, max_length=128
    )


class CreateStudentForm(BaseModel):
    student_name: str = Field(max_length=128)
    roll_number: str | None = Field(default=None, max_length=32)
    email: str = Field(max_length=256)
    mobile: str | None = Field(default=None, max_length=32)
    date_of_birth: date | None = Field(default=None)
    external_student_id: str | None = Field(default=None, max_length=128)
    status: AccountStatus = Field(
        description=enumStr(AccountStatus), default=AccountStatus.ACTIVE
    )


class UpdateStudentForm(BaseModel):
    id: int
    student_name: str | None = Field(default=None, max_length=128)
    roll_number: str | None = Field(default=None, max_length=32)
    mobile: str | None = Field(default=None, max_length=32)
    date_of_birth: date | None = Field(default=None)
    external_student_id: str | None = Field(default=None, max_length=128)
    status: AccountStatus | None = Field(
        description=enumStr(AccountStatus), default=None
    )


class CreateFeeForm(BaseModel):
    route_id: int
    academic_year: str = Field(pattern=r"^\d{4}-\d{2}$")
    semester: int = Field(ge=1, le=2)
    semester_fee: float = Field(ge=0)
    valid_from: date | None = Field(default=None)
    valid_until: date | None = Field(default=None)
    is_active: bool = Field(default=True)


class UpdateFeeForm(BaseModel):
    id: int
    semester_fee: float | None = Field(default=None, ge=0)
    valid_from: date | None = Field(default=None)
    valid_until: date | None = Field(default=None)
    is_active: bool | None = Field(default=None)


class SettingsForm(BaseModel):
    enableBookingTimeWindow: bool
    bookingWindowEndHour: int = Field(ge=0, le=23)
    bookingWindowDaysBefore: int = Field(ge=0, le=30)
    autoNotifyPassengers: bool
    sendReminderHours: List[int] = Field(max_length=10)


class DeleteForm(BaseModel):
    id: int = Field(Query())


## Query Parameters
class StudentOrderBy(IntEnum):
    id = 1
    student_name = 2
    roll_number = 3
    updated_on = 4
    created_on = 5


class DriverOrderBy(IntEnum):
    id = 1
    name = 2
    rating = 3
    updated_on = 4
    created_on = 5


class FeeOrderBy(IntEnum):
    id = 1
    academic_year = 2
    semester_fee = 3
    updated_on = 4
    created_on = 5


class CommonQueryParams(BaseModel):
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
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class StudentQueryParams(CommonQueryParams):
    student_name: str | None = Field(Query(default=None))
    roll_number: str | None = Field(Query(default=None))
    email: str | None = Field(Query(default=None))
    first_login_completed: bool | None = Field(Query(default=None))
    status: AccountStatus | None = Field(
        Query(default=None, description=enumStr(AccountStatus))
    )
    order_by: StudentOrderBy = Field(
        Query(default=StudentOrderBy.id, description=enumStr(StudentOrderBy))
    )


class DriverQueryParams(CommonQueryParams):
    name: str | None = Field(Query(default=None))
    email: str | None = Field(Query(default=None))
    status: DriverStatus | None = Field(
        Query(default=None, description=enumStr(DriverStatus))
    )
    order_by: DriverOrderBy = Field(
        Query(default=DriverOrderBy.id, description=enumStr(DriverOrderBy))
    )


class FeeQueryParams(CommonQueryParams):
    route_id: int | None = Field(Query(default=None))
    academic_year: str | None = Field(Query(default=None))
    semester: int | None = Field(Query(default=None, ge=1, le=2))
    is_active: bool | None = Field(Query(default=None))
    order_by: FeeOrderBy = Field(
        Query(default=FeeOrderBy.id, description=enumStr(FeeOrderBy))
    )


## Function
def commonFilters(query, model, qParam: CommonQueryParams, orderBy: str):
    """Apply the id, metadata, ordering and pagination parameters."""
    # id based
    if qParam.id is not None:
        query = query.filter(model.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(model.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(model.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(model.id.in_(qParam.id_list))
    # updated_on based
    if qParam.updated_on_ge is not None:
        query = query.filter(model.updated_on >= qParam.updated_on_ge)
    if qParam.updated_on_le is not None:
        query = query.filter(model.updated_on <= qParam.updated_on_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(model.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(model.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(model, orderBy)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    return query.offset(qParam.offset).limit(qParam.limit)


def searchStudent(session: Session, qParam: StudentQueryParams) -> List[Student]:
    query = session.query(Student)

    # Filters
    if qParam.student_name is not None:
        query = query.filter(Student.student_name.ilike(f"%{qParam.student_name}%"))
    if qParam.roll_number is not None:
        query = query.filter(Student.roll_number.ilike(f"%{qParam.roll_number}%"))
    if qParam.email is not None:
        query = query.filter(Student.email.ilike(f"%{qParam.email}%"))
    if qParam.first_login_completed is not None:
        query = query.filter(
            Student.first_login_completed == qParam.first_login_completed
        )
    if qParam.status is not None:
        query = query.filter(Student.status == qParam.status)

    orderBy = StudentOrderBy(qParam.order_by).name
    return commonFilters(query, Student, qParam, orderBy).all()


def searchDriver(session: Session, qParam: DriverQueryParams) -> List[Driver]:
    query = session.query(Driver)

    # Filters
    if qParam.name is not None:
        query = query.filter(Driver.name.ilike(f"%{qParam.name}%"))
    if qParam.email is not None:
        query = query.filter(Driver.email.ilike(f"%{qParam.email}%"))
    if qParam.status is not None:
        query = query.filter(Driver.status == qParam.status)

    orderBy = DriverOrderBy(qParam.order_by).name
    return commonFilters(query, Driver, qParam, orderBy).all()


def searchFee(session: Session, qParam: FeeQueryParams) -> List[SemesterFee]:
    query = session.query(SemesterFee)

    # Filters
    if qParam.route_id is not None:
        query = query.filter(SemesterFee.route_id == qParam.route_id)
    if qParam.academic_year is not None:
        query = query.filter(SemesterFee.academic_year == qParam.academic_year)
    if qParam.semester is not None:
        query = query.filter(SemesterFee.semester == qParam.semester)
    if qParam.is_active is not None:
        query = query.filter(SemesterFee.is_active == qParam.is_active)

    orderBy = FeeOrderBy(qParam.order_by).name
    return commonFilters(query, SemesterFee, qParam, orderBy).all()


def validateRollNumber(
    session: Session, rollNumber: Optional[str], studentId: Optional[int] = None
):
    if rollNumber is None:
        return
    query = session.query(Student.id).filter(Student.roll_number == rollNumber)
    if studentId is not None:
        query = query.filter(Student.id != studentId)
    if query.first() is not None:
        raise exceptions.UniqueViolation("Roll number already exists")


def validateValidity(validFrom: date, validUntil: date):
    if validFrom > validUntil:
        raise exceptions.InvalidValue("valid_from must not be after valid_until")


def seedDemoData(session: Session, today: date) -> dict:
    """
    Insert or refresh the demo student, vehicle, route and semester fee.

    Rows are located by their natural keys so that repeated seeding
    updates them in place.
    """
    student = session.query(Student).filter(Student.email == DEMO_STUDENT_EMAIL).first()
    if student is None:
        student = Student(email=DEMO_STUDENT_EMAIL)
        session.add(student)
    student.student_name = "DEMO STUDENT"
    student.roll_number = DEMO_STUDENT_ROLL_NUMBER
    student.mobile = "9876543210"
    student.date_of_birth = date(2005, 1, 1)
    student.status = AccountStatus.ACTIVE

    vehicle = (
        session.query(Vehicle)
        .filter(Vehicle.registration_number == DEMO_VEHICLE_REGISTRATION_NUMBER)
        .first()
    )
    if vehicle is None:
        vehicle = Vehicle(registration_number=DEMO_VEHICLE_REGISTRATION_NUMBER)
        session.add(vehicle)
    vehicle.model = "DEMO BUS"
    vehicle.capacity = 40
    session.flush()

    route = session.query(Route).filter(Route.route_number == DEMO_ROUTE_NUMBER).first()
    if route is None:
        route = Route(route_number=DEMO_ROUTE_NUMBER)
        session.add(route)
    route.route_name = "DEMO ROUTE - College to City"
    route.start_location = "JKKN College"
    route.end_location = "City Center"
    route.departure_time = time(7, 30)
    route.arrival_time = time(8, 15)
    route.distance = 25.5
    route.duration = "45 minutes"
    route.fare = 50
    route.total_capacity = 40
    route.status = RouteStatus.ACTIVE
    route.vehicle_id = vehicle.id
    session.flush()

    academicYear, semester = academicPeriod(today)
    validFrom, validUntil = semesterWindow(academicYear, semester)
    fee = (
        session.query(SemesterFee)
        .filter(
            SemesterFee.route_id == route.id,
            SemesterFee.academic_year == academicYear,
            SemesterFee.semester == semester,
        )
        .first()
    )
    if fee is None:
        fee = SemesterFee(
            route_id=route.id, academic_year=academicYear, semester=semester
        )
        session.add(fee)
    fee.semester_fee = DEMO_SEMESTER_FEE
    fee.valid_from = validFrom
    fee.valid_until = validUntil
    fee.is_active = True
    session.flush()

    return {
        "student": {
            "id": student.id,
            "name": student.student_name,
            "email": student.email,
        },
        "route": {
            "id": route.id,
            "name": route.route_name,
            "number": route.route_number,
        },
        "vehicle": {
            "id": vehicle.id,
            "registrationNumber": vehicle.registration_number,
        },
        "semesterFee": {
            "id": fee.id,
            "amount": fee.semester_fee,
            "academicYear": fee.academic_year,
            "semester": fee.semester,
        },
    }


## API endpoints [Public]
@route_public.post(
    URL_ADMIN_CREATE_DRIVER,
    tags=["Admin"],
    response_model=CreateDriverResponseSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Name, email and password are required"),
            exceptions.InvalidAdminKey(),
            exceptions.UniqueViolation("Driver with this email already exists"),
            exceptions.ConfigurationError(),
        ]
    ),
    description="""
    Creates an active driver account with a password.
    The admin setup key is passed in the body as `adminKey`.
    The email is stored in lower case and must not belong to another driver.
    Logs the driver creation activity.
    """,
)
async def create_driver(
    fParam: CreateDriverForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, fParam.adminKey)
    validators.requireValues(
        "Name, email and password are required",
        fParam.name,
        fParam.email,
        fParam.password,
    )
    if len(fParam.password) < MIN_PASSWORD_LENGTH:
        raise exceptions.InvalidValue(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    session = store.sessionMaker()
    try:
        email = fParam.email.strip().lower()
        existing = session.query(Driver.id).filter(Driver.email == email).first()
        if existing is not None:
            raise exceptions.UniqueViolation("Driver with this email already exists")

        now = datetime.now(TMZ_PRIMARY)
        driver = Driver(
            name=fParam.name.strip(),
            email=email,
            phone=fParam.phone,
            license_number=fParam.licenseNumber or f"LIC{int(now.timestamp() * 1000)}",
            password_hash=argon2.makePassword(fParam.password),
            status=DriverStatus.ACTIVE,
            experience_years=1,
            rating=5.0,
            total_trips=0,
        )
        session.add(driver)
        session.commit()
        session.refresh(driver)

        driverData = {
            "id": driver.id,
            "name": driver.name,
            "email": driver.email,
            "phone": driver.phone,
            "license_number": driver.license_number,
            "status": driver.status,
        }
        logEvent(config, request_info, driverData)
        return {
            "success": True,
            "message": "Driver account created successfully",
            "driver": driverData,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_SETTINGS,
    tags=["Admin"],
    response_model=SettingsResponseSchema,
    description="""
    Fetches the scheduling settings that govern the booking window.
    Settings never stored fall back to their defaults.
    """,
)
async def fetch_settings(store: Store = Depends(getters.store)):
    session = store.sessionMaker()
    try:
        return {"settings": getters.schedulingSettings(session)}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Admin]
@route_admin.put(
    URL_SETTINGS,
    tags=["Admin"],
    response_model=SettingsUpdateSchema,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Replaces the scheduling settings.
    Logs the settings update activity.
    """,
)
async def update_settings(
    fParam: SettingsForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        settings = fParam.model_dump()
        setting = (
            session.query(AdminSetting)
            .filter(AdminSetting.setting_type == SCHEDULING_SETTING_TYPE)
            .first()
        )
        if setting is None:
            setting = AdminSetting(setting_type=SCHEDULING_SETTING_TYPE)
            session.add(setting)
        setting.settings_data = settings
        session.commit()

        logEvent(config, request_info, settings)
        return {"success": True, "settings": settings}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.post(
    URL_SETUP_DEMO,
    tags=["Admin"],
    response_model=DemoResponseSchema,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Seeds a demo student, the demo route RT001 and its semester fee for the current semester.
    Seeding again refreshes the same rows instead of adding new ones.
    """,
)
async def setup_demo(
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        today = datetime.now(TMZ_SECONDARY).date()
        demoData = seedDemoData(session, today)
        session.commit()

        demoData = jsonable_encoder(demoData)
        logEvent(config, request_info, demoData)
        return {
            "success": True,
            "message": "Demo data created successfully",
            "data": demoData,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.post(
    URL_ADMIN_STUDENT,
    tags=["Student"],
    response_model=StudentSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UniqueViolation("Student with this email already exists"),
            exceptions.UniqueViolation("Roll number already exists"),
        ]
    ),
    description="""
    Imports a student.
    The student sets a password on the first login, proving the date of birth.
    Logs the student creation activity.
    """,
)
async def create_student(
    fParam: CreateStudentForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        email = fParam.email.strip().lower()
        existing = session.query(Student.id).filter(Student.email == email).first()
        if existing is not None:
            raise exceptions.UniqueViolation("Student with this email already exists")
        validateRollNumber(session, fParam.roll_number)

        student = Student(**fParam.model_dump(exclude={"email"}), email=email)
        session.add(student)
        session.commit()
        session.refresh(student)

        studentData = jsonable_encoder(student, exclude={"password_hash"})
        logEvent(config, request_info, studentData)
        return studentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ADMIN_STUDENT,
    tags=["Student"],
    response_model=StudentSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UnknownValue(Student),
            exceptions.UniqueViolation("Roll number already exists"),
        ]
    ),
    description="""
    Updates an existing student.
    Supports partial updates, changes are saved only if the student data has been modified.
    The password and the first login state are not editable.
    Logs the student updating activity.
    """,
)
async def update_student(
    fParam: UpdateStudentForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        student = session.query(Student).filter(Student.id == fParam.id).first()
        if student is None:
            raise exceptions.UnknownValue(Student)
        validateRollNumber(session, fParam.roll_number, student.id)

        updateIfChanged(
            student,
            fParam,
            [
                Student.student_name.key,
                Student.roll_number.key,
                Student.mobile.key,
                Student.date_of_birth.key,
                Student.external_student_id.key,
                Student.status.key,
            ],
        )
        haveUpdates = session.is_modified(student)
        if haveUpdates:
            session.commit()
            session.refresh(student)

        studentData = jsonable_encoder(student, exclude={"password_hash"})
        if haveUpdates:
            logEvent(config, request_info, studentData)
        return studentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ADMIN_STUDENT,
    tags=["Student"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Deletes a student together with the bookings and payments of the student.
    Deleting an unknown student is not an error.
    Logs the deletion activity.
    """,
)
async def delete_student(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        student = session.query(Student).filter(Student.id == fParam.id).first()
        if student is not None:
            session.delete(student)
            session.commit()
            logEvent(
                config,
                request_info,
                jsonable_encoder(student, exclude={"password_hash"}),
            )
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_ADMIN_STUDENT,
    tags=["Student"],
    response_model=List[StudentSchema],
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Fetches a list of students.
    Supports filtering by name, roll number, email, first login state, status and metadata.
    """,
)
async def fetch_students(
    qParam: StudentQueryParams = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        return searchStudent(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ADMIN_DRIVER,
    tags=["Driver"],
    response_model=DriverSchema,
    responses=fuseExceptionResponses(
        [exceptions.InvalidAdminKey(), exceptions.UnknownValue(Driver)]
    ),
    description="""
    Updates an existing driver.
    Supports partial updates, changes are saved only if the driver data has been modified.
    A new password replaces the stored hash.
    Logs the driver updating activity.
    """,
)
async def update_driver(
    fParam: UpdateDriverForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == fParam.id).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)

        updateIfChanged(
            driver,
            fParam,
            [
                Driver.name.key,
                Driver.phone.key,
                Driver.license_number.key,
                Driver.experience_years.key,
                Driver.status.key,
            ],
        )
        if fParam.password is not None:
            driver.password_hash = argon2.makePassword(fParam.password)
        haveUpdates = session.is_modified(driver)
        if haveUpdates:
            session.commit()
            session.refresh(driver)

        driverData = jsonable_encoder(driver, exclude={"password_hash"})
        if haveUpdates:
            logEvent(config, request_info, driverData)
        return driverData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ADMIN_DRIVER,
    tags=["Driver"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Deletes a driver.
    Routes and schedules assigned to the driver are left without a driver,
    the location history of the driver is removed.
    Deleting an unknown driver is not an error.
    Logs the deletion activity.
    """,
)
async def delete_driver(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        driver = session.query(Driver).filter(Driver.id == fParam.id).first()
        if driver is not None:
            session.delete(driver)
            session.commit()
            logEvent(
                config,
                request_info,
                jsonable_encoder(driver, exclude={"password_hash"}),
            )
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_ADMIN_DRIVER,
    tags=["Driver"],
    response_model=List[DriverSchema],
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Fetches a list of drivers.
    Supports filtering by name, email, status and metadata.
    """,
)
async def fetch_drivers(
    qParam: DriverQueryParams = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        return searchDriver(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.post(
    URL_ADMIN_SEMESTER_FEE,
    tags=["Semester Fee"],
    response_model=SemesterFeeSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UnknownValue(Route),
            exceptions.InvalidValue("valid_from must not be after valid_until"),
            exceptions.UniqueViolation(
                "Semester fee already exists for this route and semester"
            ),
        ]
    ),
    description="""
    Sets the fee of a route for a semester of an academic year.
    Without an explicit validity window the fee covers the whole semester,
    June to November for the first and December to May for the second.
    Logs the fee creation activity.
    """,
)
async def create_semester_fee(
    fParam: CreateFeeForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        route = session.query(Route.id).filter(Route.id == fParam.route_id).first()
        if route is None:
            raise exceptions.UnknownValue(Route)
        existing = (
            session.query(SemesterFee.id)
            .filter(
                SemesterFee.route_id == fParam.route_id,
                SemesterFee.academic_year == fParam.academic_year,
                SemesterFee.semester == fParam.semester,
            )
            .first()
        )
        if existing is not None:
            raise exceptions.UniqueViolation(
                "Semester fee already exists for this route and semester"
            )
        semesterStart, semesterEnd = semesterWindow(
            fParam.academic_year, fParam.semester
        )
        validFrom = fParam.valid_from or semesterStart
        validUntil = fParam.valid_until or semesterEnd
        validateValidity(validFrom, validUntil)

        fee = SemesterFee(
            route_id=fParam.route_id,
            academic_year=fParam.academic_year,
            semester=fParam.semester,
            semester_fee=fParam.semester_fee,
            valid_from=validFrom,
            valid_until=validUntil,
            is_active=fParam.is_active,
        )
        session.add(fee)
        session.commit()
        session.refresh(fee)

        feeData = jsonable_encoder(fee)
        logEvent(config, request_info, feeData)
        return feeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ADMIN_SEMESTER_FEE,
    tags=["Semester Fee"],
    response_model=SemesterFeeSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.UnknownValue(SemesterFee),
            exceptions.InvalidValue("valid_from must not be after valid_until"),
        ]
    ),
    description="""
    Updates the amount, validity window or active state of a semester fee.
    Payments already started keep the amount they were created with.
    Logs the fee updating activity.
    """,
)
async def update_semester_fee(
    fParam: UpdateFeeForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        fee = session.query(SemesterFee).filter(SemesterFee.id == fParam.id).first()
        if fee is None:
            raise exceptions.UnknownValue(SemesterFee)
        validateValidity(
            fParam.valid_from or fee.valid_from, fParam.valid_until or fee.valid_until
        )

        updateIfChanged(
            fee,
            fParam,
            [
                SemesterFee.valid_from.key,
                SemesterFee.valid_until.key,
                SemesterFee.is_active.key,
            ],
        )
        if fParam.semester_fee is not None and float(fee.semester_fee) != float(
            fParam.semester_fee
        ):
            fee.semester_fee = fParam.semester_fee
        haveUpdates = session.is_modified(fee)
        if haveUpdates:
            session.commit()
            session.refresh(fee)

        feeData = jsonable_encoder(fee)
        if haveUpdates:
            logEvent(config, request_info, feeData)
        return feeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ADMIN_SEMESTER_FEE,
    tags=["Semester Fee"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Deletes a semester fee.
    Payments made against it are kept.
    Deleting an unknown fee is not an error.
    Logs the deletion activity.
    """,
)
async def delete_semester_fee(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        fee = session.query(SemesterFee).filter(SemesterFee.id == fParam.id).first()
        if fee is not None:
            session.delete(fee)
            session.commit()
            logEvent(config, request_info, jsonable_encoder(fee))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_ADMIN_SEMESTER_FEE,
    tags=["Semester Fee"],
    response_model=List[SemesterFeeSchema],
    responses=fuseExceptionResponses([exceptions.InvalidAdminKey()]),
    description="""
    Fetches a list of semester fees.
    Supports filtering by route, academic year, semester, active state and metadata.
    """,
)
async def fetch_semester_fees(
    qParam: FeeQueryParams = Depends(),
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    session = store.sessionMaker()
    try:
        return searchFee(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
