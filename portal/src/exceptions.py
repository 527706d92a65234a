"""
Centralized exception handling for the Student Transport Portal API.

This module provides:
- Base APIException class extending FastAPI's HTTPException.
- Domain-specific exceptions with appropriate status codes and headers.
- Utility functions for formatting store errors, logging, and normalizing exceptions.
- Exception handlers rendering errors as `{"success": false, "error": ...}`.

Usage:
    - Raise specific exceptions in route handlers.
    - Use `handle()` to normalize raw exceptions (store, pydantic, gateway)
      into API-friendly responses.
"""

from traceback import format_exception
from logging import getLogger
from fastapi import Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from psycopg2.errorcodes import UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION
from pydantic import ValidationError
from requests import RequestException


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------
def formatIntegrityError(e: IntegrityError) -> str:
    """
    Format a store integrity error into a user-friendly message.
    """
    errorMessage: str = e.orig.diag.message_detail or "Conflicting data"
    errorMessage = errorMessage.translate({ord(i): None for i in '\\"\\.\\(\\)'})
    errorMessage = errorMessage.replace("Key ", "For ")
    errorMessage = errorMessage.replace("=", " value ")
    return errorMessage


def formatValidationErrors(errors: list) -> str:
    """
    Describe the first pydantic validation error in one sentence.

    Args:
        errors (list): Output of `ValidationError.errors()` or
            `RequestValidationError.errors()`.

    Returns:
        str: A message naming the offending field, ex:-
            "Missing required field: email" or
            "Invalid value for limit: Input should be greater than 0".
    """
    if not errors:
        return "Invalid request"
    error = errors[0]
    location = [str(part) for part in error.get("loc", ()) if part != "body"]
    field = ".".join(location[1:] if location[:1] == ["query"] else location)
    if error.get("type") == "missing":
        return f"Missing required field: {field}"
    return f"Invalid value for {field}: {error.get('msg')}"


def logException(e: Exception) -> None:
    """Log an exception with traceback using Uvicorn's error logger."""
    detail = str(format_exception(type(e), e, e.__traceback__))
    logger = getLogger("uvicorn.error")
    logger.error(detail)


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------
class APIException(HTTPException):
    """
    Base class for all application-specific exceptions.

    Provides default handling of status_code, detail, and headers.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    detail = None
    headers = None

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("status_code", self.status_code)
        kwargs.setdefault("detail", self.detail)
        kwargs.setdefault("headers", self.headers)
        super().__init__(*args, **kwargs)


# ---------------------------------------------------------------------------
# Exception handling entrypoint
# ---------------------------------------------------------------------------
def handle(e: Exception):
    """
    Normalize and re-raise exceptions as API-friendly errors.

    Converts raw exceptions from the store, pydantic and the payment gateway
    into corresponding APIException subclasses. Anything unexpected is logged
    and reported with a generic message.
    """
    if isinstance(e, APIException):
        raise e
    if isinstance(e, IntegrityError) and hasattr(e.orig, "diag"):
        if e.orig.diag.sqlstate == UNIQUE_VIOLATION:
            raise UniqueViolation(formatIntegrityError(e))
        if e.orig.diag.sqlstate == FOREIGN_KEY_VIOLATION:
            raise ForeignKeyViolation(formatIntegrityError(e))
    if isinstance(e, ValidationError):
        raise InvalidRequest(formatValidationErrors(e.errors()))

    logException(e)
    if isinstance(e, RequestException):
        raise GatewayError() from e
    if isinstance(e, SQLAlchemyError):
        raise StoreError() from e
    raise InternalError() from e


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------
async def apiExceptionHandler(request: Request, exc: APIException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=exc.headers,
    )


async def validationExceptionHandler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": formatValidationErrors(exc.errors())},
        headers={"X-Error": "InvalidRequest"},
    )


# ---------------------------------------------------------------------------
# Exception Classes
# ---------------------------------------------------------------------------
class InvalidRequest(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "InvalidRequest"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class MissingParameter(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "MissingParameter"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class InvalidValue(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "InvalidValue"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class InvalidSubscription(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid subscription format"
    headers = {"X-Error": "InvalidSubscription"}


class PasswordNotSet(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Password not set for this driver"
    headers = {"X-Error": "PasswordNotSet"}


class FirstLoginCompleted(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "First time login already completed. Please use regular login."
    headers = {"X-Error": "FirstLoginCompleted"}


class DateOfBirthMismatch(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Date of birth does not match our records"
    headers = {"X-Error": "DateOfBirthMismatch"}


class BookingUnavailable(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    headers = {"X-Error": "BookingUnavailable"}

    def __init__(self, reason: str):
        super().__init__(detail=reason)


class InvalidSignature(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Payment verification failed - invalid signature"
    headers = {"X-Error": "InvalidSignature"}


class InvalidWebhookSignature(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid webhook signature"
    headers = {"X-Error": "InvalidWebhookSignature"}


class PaymentNotCaptured(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Payment not captured"
    headers = {"X-Error": "PaymentNotCaptured"}


class AmountMismatch(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Payment amount mismatch"
    headers = {"X-Error": "AmountMismatch"}


class OrderMismatch(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Payment does not belong to this order"
    headers = {"X-Error": "OrderMismatch"}


class InvalidCredentials(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid email or password"
    headers = {"X-Error": "InvalidCredentials"}


class InvalidAdminKey(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Unauthorized"
    headers = {"X-Error": "InvalidAdminKey"}


class InactiveAccount(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Driver account is not active"
    headers = {"X-Error": "InactiveAccount"}


class LocationSharingDisabled(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Location sharing is disabled for this driver"
    headers = {"X-Error": "LocationSharingDisabled"}


class UnknownValue(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    headers = {"X-Error": "UnknownValue"}

    def __init__(self, orm_class):
        detail = f"{orm_class.__name__} not found"
        super().__init__(detail=detail)


class UniqueViolation(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "UniqueViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class AlreadyBooked(APIException):
    status_code = status.HTTP_409_CONFLICT
    detail = "Student already has a booking for this schedule"
    headers = {"X-Error": "AlreadyBooked"}


class NoAvailableSeats(APIException):
    status_code = status.HTTP_409_CONFLICT
    detail = "No available seats"
    headers = {"X-Error": "NoAvailableSeats"}


class PaymentCompleted(APIException):
    status_code = status.HTTP_409_CONFLICT
    detail = "Payment already completed for this semester"
    headers = {"X-Error": "PaymentCompleted"}


class ForeignKeyViolation(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    headers = {"X-Error": "ForeignKeyViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class ConfigurationError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Server configuration error"
    headers = {"X-Error": "ConfigurationError"}


class StoreError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Database operation failed"
    headers = {"X-Error": "StoreError"}


class InternalError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Internal server error"
    headers = {"X-Error": "InternalError"}


class GatewayError(APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    detail = "Payment gateway request failed"
    headers = {"X-Error": "GatewayError"}
