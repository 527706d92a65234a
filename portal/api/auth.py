from datetime import datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Depends, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.src.config import Config
from portal.src.db import Driver, Store, Student
from portal.src import argon2, exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.enums import DriverStatus
from portal.src.constants import (
    DRIVER_REFRESH_PREFIX,
    DRIVER_SESSION_PREFIX,
    DRIVER_SESSION_VALIDITY,
    MIN_PASSWORD_LENGTH,
    TMZ_PRIMARY,
)
from portal.src.functions import fuseExceptionResponses, toCalendarDate
from portal.src.urls import (
    URL_CHECK_DRIVER,
    URL_DRIVER_LOGIN,
    URL_FIRST_LOGIN,
    URL_SYNC_EXTERNAL_ID,
)

route_public = APIRouter()


## Output Schema
class DriverUserSchema(BaseModel):
    id: int
    email: str
    role: str
    driver_name: str


class DriverSessionSchema(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: int
    user: DriverUserSchema


class DriverAccountSchema(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    license_number: Optional[str]
    rating: float
    total_trips: int
    status: int


class DriverLoginSchema(BaseModel):
    success: bool
    user: DriverUserSchema
    session: DriverSessionSchema
    driver: DriverAccountSchema


class FirstLoginStudentSchema(BaseModel):
    id: int
    student_name: str
    email: str
    roll_number: Optional[str]


class FirstLoginSchema(BaseModel):
    success: bool
    message: str
    student: FirstLoginStudentSchema


class SyncSchema(BaseModel):
    success: bool
    message: str
    studentId: int
    email: str
    externalStudentId: str


class DriverCheckSchema(BaseModel):
    exists: bool
    hasPassword: Optional[bool] = None
    isActive: Optional[bool] = None
    name: Optional[str] = None
    status: Optional[int] = None
    message: str


## Input Forms
class DriverLoginForm(BaseModel):
    email: str | None = Field(default=None, max_length=256)
    password: str | None = Field(default=None, max_length=128)


class FirstLoginForm(BaseModel):
    email: str | None = Field(default=None, max_length=256)
    dateOfBirth: str | None = Field(default=None, max_length=64)
    newPassword: str | None = Field(default=None, max_length=128)


class SyncForm(BaseModel):
    email: str | None = Field(default=None, max_length=256)
    externalStudentId: str | None = Field(default=None, max_length=128)


class DriverCheckForm(BaseModel):
    email: str | None = Field(default=None, max_length=256)


## Function
def driverSession(driver: Driver, now: datetime) -> dict:
    """
    Build the session handed to a driver after a successful login.

    The tokens are identifiers derived from the driver id, they are not
    persisted and carry no signature.
    """
    user = {
        "id": driver.id,
        "email": driver.email,
        "role": "driver",
        "driver_name": driver.name,
    }
    expiresAt = now + timedelta(seconds=DRIVER_SESSION_VALIDITY)
    return {
        "user": user,
        "session": {
            "access_token": f"{DRIVER_SESSION_PREFIX}{driver.id}",
            "refresh_token": f"{DRIVER_REFRESH_PREFIX}{driver.id}",
            "expires_at": int(expiresAt.timestamp() * 1000),
            "user": user,
        },
    }


## API endpoints [Public]
@route_public.post(
    URL_DRIVER_LOGIN,
    tags=["Auth"],
    response_model=DriverLoginSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Email and password are required"),
            exceptions.PasswordNotSet(),
            exceptions.InvalidCredentials(),
            exceptions.InactiveAccount(),
            exceptions.UnknownValue(Driver),
        ]
    ),
    description="""
    Authenticates a driver with email and password.
    The driver must exist, be in ACTIVE status and have a password set.
    Returns a session whose access token is `driver-session-<id>`, valid for 24 hours.
    Nothing is persisted, the login is logged.
    """,
)
async def driver_login(
    fParam: DriverLoginForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Email and password are required", fParam.email, fParam.password
    )
    session = store.sessionMaker()
    try:
        email = fParam.email.strip().lower()
        driver = session.query(Driver).filter(Driver.email == email).first()
        if driver is None:
            raise exceptions.UnknownValue(Driver)
        validators.activeDriver(driver)
        if not driver.password_hash:
            raise exceptions.PasswordNotSet()
        if not argon2.checkPassword(fParam.password, driver.password_hash):
            raise exceptions.InvalidCredentials()

        loginData = driverSession(driver, datetime.now(TMZ_PRIMARY))
        loginData["success"] = True
        loginData["driver"] = {
            "id": driver.id,
            "name": driver.name,
            "email": driver.email,
            "phone": driver.phone,
            "license_number": driver.license_number,
            "rating": driver.rating or 0,
            "total_trips": driver.total_trips or 0,
            "status": driver.status,
        }
        logEvent(
            config, request_info, {"email": driver.email}, {"_driver_id": driver.id}
        )
        return loginData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_FIRST_LOGIN,
    tags=["Auth"],
    response_model=FirstLoginSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter(
                "Email, date of birth and new password are required"
            ),
            exceptions.FirstLoginCompleted(),
            exceptions.DateOfBirthMismatch(),
            exceptions.UnknownValue(Student),
        ]
    ),
    description="""
    Sets the password of a student logging in for the first time.
    The student proves the identity with the date of birth on record, compared by calendar date.
    Fails if the first login was already completed, irrespective of the date of birth.
    On success the password is hashed and stored, the failed login counter is reset and the login time recorded.
    """,
)
async def first_login(
    fParam: FirstLoginForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Email, date of birth and new password are required",
        fParam.email,
        fParam.dateOfBirth,
        fParam.newPassword,
    )
    session = store.sessionMaker()
    try:
        email = fParam.email.strip().lower()
        student = session.query(Student).filter(Student.email == email).first()
        if student is None:
            raise exceptions.UnknownValue(Student)
        if student.first_login_completed:
            raise exceptions.FirstLoginCompleted()
        providedDate = toCalendarDate(fParam.dateOfBirth)
        if student.date_of_birth is None or providedDate != student.date_of_birth:
            raise exceptions.DateOfBirthMismatch()
        if len(fParam.newPassword) < MIN_PASSWORD_LENGTH:
            raise exceptions.InvalidValue(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )

        student.password_hash = argon2.makePassword(fParam.newPassword)
        student.first_login_completed = True
        student.failed_login_attempts = 0
        student.last_login = datetime.now(TMZ_PRIMARY)
        session.commit()

        studentData = {
            "id": student.id,
            "student_name": student.student_name,
            "email": student.email,
            "roll_number": student.roll_number,
        }
        logEvent(config, request_info, studentData, {"_student_id": student.id})
        return {
            "success": True,
            "message": "Password set successfully",
            "student": studentData,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_SYNC_EXTERNAL_ID,
    tags=["Auth"],
    response_model=SyncSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Email and external student ID are required"),
            exceptions.UnknownValue(Student),
        ]
    ),
    description="""
    Links a student to the identifier issued by the external identity provider.
    The student is located by email.
    """,
)
async def sync_external_id(
    fParam: SyncForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Email and external student ID are required",
        fParam.email,
        fParam.externalStudentId,
    )
    session = store.sessionMaker()
    try:
        email = fParam.email.strip().lower()
        student = session.query(Student).filter(Student.email == email).first()
        if student is None:
            raise exceptions.UnknownValue(Student)
        if student.external_student_id != fParam.externalStudentId:
            student.external_student_id = fParam.externalStudentId
            session.commit()
            logEvent(
                config,
                request_info,
                {"external_student_id": student.external_student_id},
                {"_student_id": student.id},
            )
        return {
            "success": True,
            "message": "External student ID synced",
            "studentId": student.id,
            "email": student.email,
            "externalStudentId": student.external_student_id,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_CHECK_DRIVER,
    tags=["Auth"],
    response_model=DriverCheckSchema,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    responses=fuseExceptionResponses(
        [exceptions.MissingParameter("Email is required")]
    ),
    description="""
    Reports whether a driver account exists for an email and whether it can log in.
    """,
)
async def check_driver(
    fParam: DriverCheckForm,
    store: Store = Depends(getters.store),
):
    validators.requireValues("Email is required", fParam.email)
    session = store.sessionMaker()
    try:
        email = fParam.email.strip().lower()
        driver = session.query(Driver).filter(Driver.email == email).first()
        if driver is None:
            return {"exists": False, "message": "No driver found with this email"}

        isActive = driver.status == DriverStatus.ACTIVE
        hasPassword = bool(driver.password_hash)
        if not isActive:
            message = "Driver account is not active"
        elif not hasPassword:
            message = "Password not set for this driver"
        else:
            message = "Driver account is ready for login"
        return jsonable_encoder(
            {
                "exists": True,
                "hasPassword": hasPassword,
                "isActive": isActive,
                "name": driver.name,
                "status": driver.status,
                "message": message,
            }
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
