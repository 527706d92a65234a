import json
from datetime import date, datetime
from http import HTTPStatus
from typing import List, Optional, Union
from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.src.config import Config
from portal.src.db import Route, SemesterFee, SemesterPayment, Store, Student
from portal.src import exceptions, validators, getters, razorpay
from portal.src.loggers import logEvent
from portal.src.enums import PaymentMethod, PaymentStatus, RouteStatus
from portal.src.constants import (
    PAYMENT_CAPTURED,
    RAZORPAY_KEY_PREFIX,
    TMZ_PRIMARY,
    TMZ_SECONDARY,
    WEBHOOK_ORDER_PAID,
    WEBHOOK_PAYMENT_CAPTURED,
    WEBHOOK_PAYMENT_FAILED,
)
from portal.src.functions import academicPeriod, enumStr, fuseExceptionResponses
from portal.src.urls import (
    URL_PAYMENT_CONFIG_CHECK,
    URL_PAYMENT_GATEWAY_TEST,
    URL_PAYMENT_ORDER,
    URL_PAYMENT_VERIFY,
    URL_PAYMENT_WEBHOOK,
    URL_SEMESTER_PAYMENTS,
)

route_public = APIRouter()


## Output Schema
class OrderSchema(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: Optional[str]


class PayerSchema(BaseModel):
    name: str
    email: str
    contact: Optional[str]


class OrderResponseSchema(BaseModel):
    success: bool
    order: OrderSchema
    paymentConfig: dict
    studentData: PayerSchema
    paymentId: int
    academicYear: str
    semester: int
    isDemo: bool


class PaymentSchema(BaseModel):
    id: int
    student_id: int
    route_id: int
    semester_fee_id: Optional[int]
    stop_name: str
    academic_year: str
    semester: int
    amount_paid: float
    payment_method: int
    payment_status: int
    receipt_number: Optional[str]
    razorpay_order_id: Optional[str]
    razorpay_payment_id: Optional[str]
    valid_from: date
    valid_until: date
    paid_on: Optional[datetime]


class VerifySchema(BaseModel):
    success: bool
    message: str
    payment: PaymentSchema


class KeyStatusSchema(BaseModel):
    hasKeyId: bool
    hasKeySecret: bool
    hasPublicKeyId: bool
    keyIdFormatValid: bool
    mode: str
    keysMatch: Optional[bool]
    demoMode: bool


class ConfigCheckSchema(BaseModel):
    success: bool
    config: KeyStatusSchema
    recommendations: List[str]


class GatewayTestSchema(BaseModel):
    success: bool
    valid: bool
    message: str
    statusCode: int
    orderCount: Optional[int] = None


class WebhookSchema(BaseModel):
    success: bool
    event: Optional[str]
    processed: bool


class RouteSummarySchema(BaseModel):
    id: int
    route_number: str
    route_name: str
    start_location: str
    end_location: str


class AvailableFeeSchema(BaseModel):
    id: int
    route_id: int
    academic_year: str
    semester: int
    semester_fee: float
    valid_from: date
    valid_until: date
    route: RouteSummarySchema


class PaymentHistorySchema(PaymentSchema):
    failure_reason: Optional[str]
    created_on: datetime
    route: Optional[RouteSummarySchema]


## Input Forms
class OrderForm(BaseModel):
    studentId: int | None = Field(default=None)
    semesterFeeId: int | None = Field(default=None)
    routeId: int | None = Field(default=None)
    stopName: str | None = Field(default=None, max_length=256)
    paymentMethod: PaymentMethod = Field(
        description=enumStr(PaymentMethod), default=PaymentMethod.RAZORPAY
    )


class VerifyForm(BaseModel):
    razorpay_order_id: str | None = Field(default=None, max_length=64)
    razorpay_payment_id: str | None = Field(default=None, max_length=64)
    razorpay_signature: str | None = Field(default=None, max_length=256)
    paymentId: int | None = Field(default=None)
    isDemo: bool = Field(default=False)


## Query Parameters
class SemesterPaymentQueryParams(BaseModel):
    studentId: int | None = Field(Query(default=None))
    type: str | None = Field(Query(default=None, description="available or history"))
    routeId: int | None = Field(Query(default=None))


## Function
def keyMode(keyId: Optional[str]) -> str:
    """Tell test keys from live keys by their prefix."""
    if not keyId:
        return "missing"
    if keyId.startswith(f"{RAZORPAY_KEY_PREFIX}test_"):
        return "test"
    if keyId.startswith(f"{RAZORPAY_KEY_PREFIX}live_"):
        return "live"
    return "unknown"


def failPayment(session, payment: SemesterPayment, reason: str, paymentId: str):
    payment.payment_status = PaymentStatus.FAILED
    payment.failure_reason = reason
    payment.razorpay_payment_id = paymentId
    session.commit()


def confirmPayment(payment: SemesterPayment, paymentId: str):
    payment.payment_status = PaymentStatus.CONFIRMED
    payment.razorpay_payment_id = paymentId
    payment.failure_reason = None
    payment.paid_on = datetime.now(TMZ_PRIMARY)


def routeSummary(route: Optional[Route]) -> Optional[dict]:
    if route is None:
        return None
    return {
        "id": route.id,
        "route_number": route.route_number,
        "route_name": route.route_name,
        "start_location": route.start_location,
        "end_location": route.end_location,
    }


def availableFees(
    session, studentId: int, routeId: Optional[int], today: date
) -> List[dict]:
    """
    List the active fees of the current semester the student may still pay.

    A confirmed or pending payment for the semester leaves nothing to pay.
    """
    academicYear, semester = academicPeriod(today)
    held = (
        session.query(SemesterPayment.id)
        .filter(
            SemesterPayment.student_id == studentId,
            SemesterPayment.academic_year == academicYear,
            SemesterPayment.semester == semester,
            SemesterPayment.payment_status.in_(
                [PaymentStatus.CONFIRMED, PaymentStatus.PENDING]
            ),
        )
        .first()
    )
    if held is not None:
        return []

    query = (
        session.query(SemesterFee, Route)
        .join(Route, Route.id == SemesterFee.route_id)
        .filter(
            SemesterFee.academic_year == academicYear,
            SemesterFee.semester == semester,
            SemesterFee.is_active == True,
            Route.status == RouteStatus.ACTIVE,
        )
    )
    if routeId is not None:
        query = query.filter(SemesterFee.route_id == routeId)
    fees = []
    for fee, route in query.order_by(Route.route_number.asc()).all():
        feeData = jsonable_encoder(fee)
        feeData["route"] = routeSummary(route)
        fees.append(feeData)
    return fees


def paymentHistory(session, studentId: int) -> List[dict]:
    """List the payments of a student, newest first, with their routes."""
    payments = (
        session.query(SemesterPayment)
        .filter(SemesterPayment.student_id == studentId)
        .order_by(SemesterPayment.created_on.desc(), SemesterPayment.id.desc())
        .all()
    )
    routeIds = {payment.route_id for payment in payments}
    routes = {
        route.id: route
        for route in session.query(Route).filter(Route.id.in_(routeIds)).all()
    }
    history = []
    for payment in payments:
        paymentData = jsonable_encoder(payment)
        paymentData["route"] = routeSummary(routes.get(payment.route_id))
        history.append(paymentData)
    return history


## API endpoints [Public]
@route_public.post(
    URL_PAYMENT_ORDER,
    tags=["Payment"],
    response_model=OrderResponseSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter(
                "Student ID, semester fee ID, route ID and stop name are required"
            ),
            exceptions.ConfigurationError(),
            exceptions.UnknownValue(SemesterFee),
            exceptions.UnknownValue(Student),
            exceptions.UnknownValue(Route),
            exceptions.PaymentCompleted(),
            exceptions.GatewayError(),
        ]
    ),
    description="""
    Starts the payment of a semester fee.
    The academic year and semester follow the current month, June to November being the first semester.
    Fails if the student already paid for the semester, a pending payment is replaced.
    Creates a gateway order for the fee in paise, a fabricated one in demo mode,
    and records a pending payment.
    """,
)
async def create_order(
    fParam: OrderForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Student ID, semester fee ID, route ID and stop name are required",
        fParam.studentId,
        fParam.semesterFeeId,
        fParam.routeId,
        fParam.stopName,
    )
    if not config.demo_mode and not config.hasGatewayKeys():
        raise exceptions.ConfigurationError()
    session = store.sessionMaker()
    try:
        fee = (
            session.query(SemesterFee)
            .filter(
                SemesterFee.id == fParam.semesterFeeId,
                SemesterFee.is_active == True,
            )
            .first()
        )
        if fee is None:
            raise exceptions.UnknownValue(SemesterFee)
        student = session.query(Student).filter(Student.id == fParam.studentId).first()
        if student is None:
            raise exceptions.UnknownValue(Student)
        route = session.query(Route).filter(Route.id == fParam.routeId).first()
        if route is None:
            raise exceptions.UnknownValue(Route)

        now = datetime.now(TMZ_PRIMARY)
        academicYear, semester = academicPeriod(now.astimezone(TMZ_SECONDARY).date())
        periodPayments = session.query(SemesterPayment).filter(
            SemesterPayment.student_id == student.id,
            SemesterPayment.academic_year == academicYear,
            SemesterPayment.semester == semester,
        )
        confirmed = periodPayments.filter(
            SemesterPayment.payment_status == PaymentStatus.CONFIRMED
        ).first()
        if confirmed is not None:
            raise exceptions.PaymentCompleted()
        periodPayments.filter(
            SemesterPayment.payment_status == PaymentStatus.PENDING
        ).delete(synchronize_session=False)

        amount = razorpay.toPaise(fee.semester_fee)
        receipt = f"SEM{student.id}T{int(now.timestamp())}"
        notes = {
            "student_id": str(student.id),
            "route_id": str(route.id),
            "stop_name": fParam.stopName,
            "academic_year": academicYear,
            "semester": str(semester),
        }
        if config.demo_mode:
            order = razorpay.demoOrder(amount, receipt, notes)
        else:
            order = razorpay.createOrder(config, amount, receipt, notes)

        payment = SemesterPayment(
            student_id=student.id,
            route_id=route.id,
            semester_fee_id=fee.id,
            stop_name=fParam.stopName.strip(),
            academic_year=academicYear,
            semester=semester,
            amount_paid=fee.semester_fee,
            payment_method=fParam.paymentMethod,
            payment_status=PaymentStatus.PENDING,
            receipt_number=receipt,
            razorpay_order_id=order["id"],
            valid_from=fee.valid_from,
            valid_until=fee.valid_until,
        )
        session.add(payment)
        session.commit()
        session.refresh(payment)

        logEvent(
            config,
            request_info,
            jsonable_encoder(payment),
            {"_student_id": student.id},
        )
        prefill = {
            "name": student.student_name,
            "email": student.email,
            "contact": student.mobile,
        }
        return {
            "success": True,
            "order": {
                "id": order["id"],
                "amount": order["amount"],
                "currency": order["currency"],
                "receipt": order.get("receipt"),
            },
            "paymentConfig": razorpay.checkoutOptions(config, order, prefill, notes),
            "studentData": prefill,
            "paymentId": payment.id,
            "academicYear": academicYear,
            "semester": semester,
            "isDemo": config.demo_mode,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.post(
    URL_PAYMENT_VERIFY,
    tags=["Payment"],
    response_model=VerifySchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Missing payment verification data"),
            exceptions.InvalidSignature(),
            exceptions.OrderMismatch(),
            exceptions.PaymentNotCaptured(),
            exceptions.AmountMismatch(),
            exceptions.UnknownValue(SemesterPayment),
            exceptions.ConfigurationError(),
            exceptions.GatewayError(),
        ]
    ),
    description="""
    Confirms a payment after the checkout completed in the browser.
    The checkout signature is checked against the key secret, except in demo mode.
    The recorded payment and the gateway payment must belong to the signed order.
    The gateway payment must be captured and match the recorded amount,
    otherwise the recorded payment is marked as failed.
    Verifying a confirmed payment again returns it unchanged.
    """,
)
async def verify_payment(
    fParam: VerifyForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Missing payment verification data",
        fParam.razorpay_order_id,
        fParam.razorpay_payment_id,
        fParam.razorpay_signature,
    )
    # The client flag alone never skips the signature check
    isDemo = config.demo_mode
    if not isDemo:
        if not config.hasGatewayKeys():
            raise exceptions.ConfigurationError()
        if not razorpay.verifySignature(
            config,
            fParam.razorpay_order_id,
            fParam.razorpay_payment_id,
            fParam.razorpay_signature,
        ):
            raise exceptions.InvalidSignature()
    session = store.sessionMaker()
    try:
        query = session.query(SemesterPayment)
        if fParam.paymentId is not None:
            query = query.filter(SemesterPayment.id == fParam.paymentId)
        else:
            query = query.filter(
                SemesterPayment.razorpay_order_id == fParam.razorpay_order_id
            )
        payment = query.first()
        if payment is None:
            raise exceptions.UnknownValue(SemesterPayment)
        # The signature only covers the order it was issued for
        if payment.razorpay_order_id != fParam.razorpay_order_id:
            raise exceptions.OrderMismatch()
        if payment.payment_status == PaymentStatus.CONFIRMED:
            return {
                "success": True,
                "message": "Payment already verified",
                "payment": jsonable_encoder(payment),
            }

        expectedAmount = razorpay.toPaise(payment.amount_paid)
        if isDemo:
            gatewayPayment = razorpay.demoPayment(
                fParam.razorpay_order_id, fParam.razorpay_payment_id, expectedAmount
            )
        else:
            gatewayPayment = razorpay.fetchPayment(config, fParam.razorpay_payment_id)
        if gatewayPayment.get("order_id") != payment.razorpay_order_id:
            raise exceptions.OrderMismatch()
        if gatewayPayment.get("status") != PAYMENT_CAPTURED:
            failPayment(
                session,
                payment,
                f"Payment status is {gatewayPayment.get('status')}",
                fParam.razorpay_payment_id,
            )
            raise exceptions.PaymentNotCaptured()
        if gatewayPayment.get("amount") != expectedAmount:
            failPayment(
                session,
                payment,
                "Payment amount does not match the semester fee",
                fParam.razorpay_payment_id,
            )
            raise exceptions.AmountMismatch()

        confirmPayment(payment, fParam.razorpay_payment_id)
        session.commit()
        session.refresh(payment)

        paymentData = jsonable_encoder(payment)
        logEvent(config, request_info, paymentData, {"_student_id": payment.student_id})
        return {
            "success": True,
            "message": "Payment verified successfully",
            "payment": paymentData,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_PAYMENT_CONFIG_CHECK,
    tags=["Payment"],
    response_model=ConfigCheckSchema,
    description="""
    Reports which gateway keys are configured and whether they look well formed.
    Key values are never returned.
    """,
)
async def check_config(config: Config = Depends(getters.config)):
    keyId = config.razorpay_key_id
    publicKeyId = config.razorpay_public_key_id
    keyIdFormatValid = bool(keyId) and keyId.startswith(RAZORPAY_KEY_PREFIX)

    recommendations = []
    if not keyId:
        recommendations.append("Set RAZORPAY_KEY_ID")
    elif not keyIdFormatValid:
        recommendations.append(f"RAZORPAY_KEY_ID should start with {RAZORPAY_KEY_PREFIX}")
    if not config.razorpay_key_secret:
        recommendations.append("Set RAZORPAY_KEY_SECRET")
    if not publicKeyId:
        recommendations.append("Set RAZORPAY_PUBLIC_KEY_ID for the checkout widget")
    elif keyId and publicKeyId != keyId:
        recommendations.append("RAZORPAY_PUBLIC_KEY_ID should match RAZORPAY_KEY_ID")
    if config.demo_mode:
        recommendations.append("DEMO_MODE is on, payments are not charged")

    return {
        "success": True,
        "config": {
            "hasKeyId": bool(keyId),
            "hasKeySecret": bool(config.razorpay_key_secret),
            "hasPublicKeyId": bool(publicKeyId),
            "keyIdFormatValid": keyIdFormatValid,
            "mode": keyMode(keyId),
            "keysMatch": (publicKeyId == keyId) if keyId and publicKeyId else None,
            "demoMode": config.demo_mode,
        },
        "recommendations": recommendations,
    }


@route_public.get(
    URL_PAYMENT_GATEWAY_TEST,
    tags=["Payment"],
    response_model=GatewayTestSchema,
    responses=fuseExceptionResponses(
        [exceptions.ConfigurationError(), exceptions.GatewayError()]
    ),
    description="""
    Tests the gateway with the configured keys by listing recent orders.
    Reports whether the keys were accepted.
    """,
)
async def test_gateway(config: Config = Depends(getters.config)):
    if not config.hasGatewayKeys():
        raise exceptions.ConfigurationError()
    try:
        response = razorpay.listOrders(config)
        if response.status_code == HTTPStatus.OK:
            return {
                "success": True,
                "valid": True,
                "message": "Razorpay keys are valid",
                "statusCode": response.status_code,
                "orderCount": response.json().get("count"),
            }
        if response.status_code == HTTPStatus.UNAUTHORIZED:
            message = "Razorpay authentication failed, check the key id and secret"
        else:
            message = "Razorpay returned an unexpected response"
        return {
            "success": False,
            "valid": False,
            "message": message,
            "statusCode": response.status_code,
        }
    except Exception as e:
        exceptions.handle(e)


@route_public.post(
    URL_PAYMENT_WEBHOOK,
    tags=["Payment"],
    response_model=WebhookSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.ConfigurationError(),
            exceptions.InvalidWebhookSignature(),
            exceptions.InvalidRequest("Invalid webhook payload"),
        ]
    ),
    description="""
    Receives payment events from the gateway, for checkouts the browser never verified.
    The `X-Razorpay-Signature` header must carry the HMAC-SHA256 of the raw body
    computed with the webhook secret.
    `payment.captured` and `order.paid` confirm the recorded payment of the order
    when the amount matches, `payment.failed` marks it as failed.
    Confirmed payments are never changed, other events and unknown orders are acknowledged and ignored.
    """,
)
async def receive_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    if not config.razorpay_webhook_secret:
        raise exceptions.ConfigurationError()
    body = await request.body()
    if not razorpay.verifyWebhook(config, body, x_razorpay_signature):
        raise exceptions.InvalidWebhookSignature()
    try:
        webhook = json.loads(body)
        event = webhook.get("event")
    except (ValueError, AttributeError):
        raise exceptions.InvalidRequest("Invalid webhook payload")
    if event not in (
        WEBHOOK_PAYMENT_CAPTURED,
        WEBHOOK_PAYMENT_FAILED,
        WEBHOOK_ORDER_PAID,
    ):
        return {"success": True, "event": event, "processed": False}
    entity = ((webhook.get("payload") or {}).get("payment") or {}).get("entity")
    if not isinstance(entity, dict) or not entity.get("order_id"):
        raise exceptions.InvalidRequest("Invalid webhook payload")

    session = store.sessionMaker()
    try:
        payment = (
            session.query(SemesterPayment)
            .filter(SemesterPayment.razorpay_order_id == entity["order_id"])
            .first()
        )
        if payment is None or payment.payment_status == PaymentStatus.CONFIRMED:
            return {"success": True, "event": event, "processed": False}

        if event == WEBHOOK_PAYMENT_FAILED:
            failPayment(
                session,
                payment,
                f"{entity.get('error_code')}: {entity.get('error_description')}",
                entity.get("id"),
            )
        elif entity.get("status") != PAYMENT_CAPTURED:
            return {"success": True, "event": event, "processed": False}
        elif entity.get("amount") != razorpay.toPaise(payment.amount_paid):
            failPayment(
                session,
                payment,
                "Payment amount does not match the semester fee",
                entity.get("id"),
            )
        else:
            confirmPayment(payment, entity.get("id"))
            session.commit()
        session.refresh(payment)

        logEvent(
            config,
            request_info,
            {"event": event, **jsonable_encoder(payment)},
            {"_student_id": payment.student_id},
        )
        return {"success": True, "event": event, "processed": True}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.get(
    URL_SEMESTER_PAYMENTS,
    tags=["Payment"],
    response_model=Union[List[AvailableFeeSchema], List[PaymentHistorySchema]],
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Student ID is required"),
            exceptions.InvalidValue(
                'Invalid type parameter. Use "available" or "history"'
            ),
            exceptions.UnknownValue(Student),
        ]
    ),
    description="""
    With `type=history`, lists the semester payments of a student, newest first, with their routes.
    With `type=available`, lists the active fees of the current semester the student may pay,
    optionally for a single `routeId`. The list is empty once the semester is paid or a payment is pending.
    """,
)
async def fetch_semester_payments(
    qParam: SemesterPaymentQueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    validators.requireValues("Student ID is required", qParam.studentId)
    if qParam.type not in ("available", "history"):
        raise exceptions.InvalidValue(
            'Invalid type parameter. Use "available" or "history"'
        )
    session = store.sessionMaker()
    try:
        student = session.query(Student).filter(Student.id == qParam.studentId).first()
        if student is None:
            raise exceptions.UnknownValue(Student)
        if qParam.type == "history":
            return paymentHistory(session, student.id)
        today = datetime.now(TMZ_SECONDARY).date()
        return availableFees(session, student.id, qParam.routeId, today)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
