import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient

from portal.main import createApp
from portal.src import exceptions, razorpay
from portal.src.config import Config
from portal.src.constants import TMZ_SECONDARY
from portal.src.db import SemesterPayment
from portal.src.enums import PaymentMethod, PaymentStatus, RouteStatus
from portal.src.functions import academicPeriod

URL_PAYMENT_ORDER = "/api/payments/create-order"
URL_PAYMENT_VERIFY = "/api/payments/verify"
URL_PAYMENT_CONFIG_CHECK = "/api/payments/config-check"
URL_PAYMENT_GATEWAY_TEST = "/api/payments/test-razorpay"
URL_PAYMENT_WEBHOOK = "/api/payments/webhook"
URL_SEMESTER_PAYMENTS = "/api/semester-payments"

KEY_ID = "rzp_test_1DP5mmOlF5G5ag"
KEY_SECRET = "thisisasecret"
WEBHOOK_SECRET = "webhooksecret"


@pytest.fixture
def demoClient(config, engine):
    demoConfig = config.model_copy(update={"demo_mode": True})
    with TestClient(createApp(demoConfig, engine)) as client:
        yield client


@pytest.fixture
def gatewayClient(config, engine):
    gatewayConfig = config.model_copy(
        update={"razorpay_key_id": KEY_ID, "razorpay_key_secret": KEY_SECRET}
    )
    with TestClient(createApp(gatewayConfig, engine)) as client:
        yield client


@pytest.fixture
def webhookClient(config, engine):
    webhookConfig = config.model_copy(
        update={"razorpay_webhook_secret": WEBHOOK_SECRET}
    )
    with TestClient(createApp(webhookConfig, engine)) as client:
        yield client


@pytest.fixture
def enrolment(seed):
    route = seed.route()
    return {
        "student": seed.student(),
        "route": route,
        "fee": seed.semesterFee(route),
    }


def orderPayload(enrolment):
    return {
        "studentId": enrolment["student"].id,
        "semesterFeeId": enrolment["fee"].id,
        "routeId": enrolment["route"].id,
        "stopName": "Erode",
    }


def addPayment(session, enrolment, status=PaymentStatus.PENDING, orderId="order_1"):
    fee = enrolment["fee"]
    payment = SemesterPayment(
        student_id=enrolment["student"].id,
        route_id=enrolment["route"].id,
        semester_fee_id=fee.id,
        stop_name="Erode",
        academic_year=fee.academic_year,
        semester=fee.semester,
        amount_paid=fee.semester_fee,
        payment_method=PaymentMethod.RAZORPAY,
        payment_status=status,
        receipt_number=f"SEM-{orderId}",
        razorpay_order_id=orderId,
        valid_from=fee.valid_from,
        valid_until=fee.valid_until,
    )
    session.add(payment)
    session.commit()
    return payment


def verifyPayload(orderId="order_1", paymentId="pay_1", signature=None):
    return {
        "razorpay_order_id": orderId,
        "razorpay_payment_id": paymentId,
        "razorpay_signature": signature
        or razorpay.signPayment(KEY_SECRET, orderId, paymentId),
    }


def gatewayResponse(statusCode=200, body=None):
    response = MagicMock()
    response.status_code = statusCode
    response.json.return_value = body or {}
    return response


def storedPayment(session):
    session.expire_all()
    return session.query(SemesterPayment).one()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def test_to_paise_rounds_half_up():
    assert razorpay.toPaise(10000) == 1000000
    assert razorpay.toPaise("12.345") == 1235
    assert razorpay.toPaise(0.1) == 10


def test_signature_check():
    config = Config(razorpay_key_secret=KEY_SECRET)
    signature = razorpay.signPayment(KEY_SECRET, "order_1", "pay_1")

    assert razorpay.verifySignature(config, "order_1", "pay_1", signature)
    assert not razorpay.verifySignature(config, "order_1", "pay_2", signature)
    assert not razorpay.verifySignature(Config(), "order_1", "pay_1", signature)


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------
def test_demo_order_and_verification(demoClient, enrolment, session):
    response = demoClient.post(URL_PAYMENT_ORDER, json=orderPayload(enrolment))

    assert response.status_code == 200
    body = response.json()
    academicYear, semester = academicPeriod(datetime.now(TMZ_SECONDARY).date())
    assert body["isDemo"] is True
    assert body["order"]["amount"] == 1000000
    assert body["order"]["currency"] == "INR"
    assert body["order"]["id"].startswith("order_demo_")
    assert body["paymentConfig"]["key"] == "demo_key"
    assert body["studentData"]["email"] == "asha@student.edu"
    assert (body["academicYear"], body["semester"]) == (academicYear, semester)

    response = demoClient.post(
        URL_PAYMENT_VERIFY,
        json={
            **verifyPayload(body["order"]["id"], "pay_demo_1", "demo_signature"),
            "paymentId": body["paymentId"],
        },
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Payment verified successfully"
    payment = storedPayment(session)
    assert payment.payment_status == PaymentStatus.CONFIRMED
    assert payment.razorpay_payment_id == "pay_demo_1"
    assert payment.paid_on is not None


def test_order_requires_all_fields(demoClient, enrolment):
    payload = orderPayload(enrolment)
    del payload["stopName"]

    response = demoClient.post(URL_PAYMENT_ORDER, json=payload)

    assert response.status_code == 400
    assert (
        response.json()["error"]
        == "Student ID, semester fee ID, route ID and stop name are required"
    )


def test_order_without_gateway_keys(client, enrolment):
    response = client.post(URL_PAYMENT_ORDER, json=orderPayload(enrolment))

    assert response.status_code == 500
    assert response.json()["error"] == "Server configuration error"


def test_order_unknown_fee(demoClient, enrolment):
    payload = {**orderPayload(enrolment), "semesterFeeId": 999}

    response = demoClient.post(URL_PAYMENT_ORDER, json=payload)

    assert response.status_code == 404
    assert response.json()["error"] == "SemesterFee not found"


def test_order_after_semester_paid(demoClient, enrolment, session):
    addPayment(session, enrolment, status=PaymentStatus.CONFIRMED)

    response = demoClient.post(URL_PAYMENT_ORDER, json=orderPayload(enrolment))

    assert response.status_code == 409
    assert response.json()["error"] == exceptions.PaymentCompleted.detail


def test_order_replaces_pending_payment(demoClient, enrolment, session):
    addPayment(session, enrolment)

    response = demoClient.post(URL_PAYMENT_ORDER, json=orderPayload(enrolment))

    assert response.status_code == 200
    payment = storedPayment(session)
    assert payment.id == response.json()["paymentId"]
    assert payment.payment_status == PaymentStatus.PENDING


def test_order_through_gateway(gatewayClient, enrolment):
    order = {"id": "order_live_1", "amount": 1000000, "currency": "INR"}
    with patch.object(razorpay, "requests") as mocked:
        mocked.post.return_value = gatewayResponse(body=order)
        response = gatewayClient.post(URL_PAYMENT_ORDER, json=orderPayload(enrolment))

    assert response.status_code == 200
    assert response.json()["order"]["id"] == "order_live_1"
    assert response.json()["paymentConfig"]["key"] == KEY_ID
    assert response.json()["isDemo"] is False
    sent = mocked.post.call_args.kwargs
    assert sent["auth"] == (KEY_ID, KEY_SECRET)
    assert sent["json"]["amount"] == 1000000


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------
def test_verify_captured_payment(gatewayClient, enrolment, session):
    addPayment(session, enrolment)
    captured = {
        "id": "pay_1",
        "order_id": "order_1",
        "status": "captured",
        "amount": 1000000,
    }
    with patch.object(razorpay, "requests") as mocked:
        mocked.get.return_value = gatewayResponse(body=captured)
        response = gatewayClient.post(URL_PAYMENT_VERIFY, json=verifyPayload())

    assert response.status_code == 200
    assert response.json()["payment"]["payment_status"] == PaymentStatus.CONFIRMED
    assert storedPayment(session).payment_status == PaymentStatus.CONFIRMED


def test_verify_rejects_bad_signature_even_when_client_claims_demo(
    gatewayClient, enrolment, session
):
    addPayment(session, enrolment)

    response = gatewayClient.post(
        URL_PAYMENT_VERIFY,
        json={**verifyPayload(signature="forged"), "isDemo": True},
    )

    assert response.status_code == 400
    assert response.json()["error"] == exceptions.InvalidSignature.detail
    assert storedPayment(session).payment_status == PaymentStatus.PENDING


def test_verify_payment_not_captured(gatewayClient, enrolment, session):
    addPayment(session, enrolment)
    authorized = {
        "id": "pay_1",
        "order_id": "order_1",
        "status": "authorized",
        "amount": 1000000,
    }
    with patch.object(razorpay, "requests") as mocked:
        mocked.get.return_value = gatewayResponse(body=authorized)
        response = gatewayClient.post(URL_PAYMENT_VERIFY, json=verifyPayload())

    assert response.status_code == 400
    assert response.json()["error"] == exceptions.PaymentNotCaptured.detail
    payment = storedPayment(session)
    assert payment.payment_status == PaymentStatus.FAILED
    assert payment.failure_reason == "Payment status is authorized"


def test_verify_amount_mismatch(gatewayClient, enrolment, session):
    addPayment(session, enrolment)
    underpaid = {
        "id": "pay_1",
        "order_id": "order_1",
        "status": "captured",
        "amount": 100,
    }
    with patch.object(razorpay, "requests") as mocked:
        mocked.get.return_value = gatewayResponse(body=underpaid)
        response = gatewayClient.post(URL_PAYMENT_VERIFY, json=verifyPayload())

    assert response.status_code == 400
    assert response.json()["error"] == exceptions.AmountMismatch.detail
    assert storedPayment(session).payment_status == PaymentStatus.FAILED


def test_verify_confirmed_payment_again(gatewayClient, enrolment, session):
    addPayment(session, enrolment, status=PaymentStatus.CONFIRMED)

    response = gatewayClient.post(URL_PAYMENT_VERIFY, json=verifyPayload())

    assert response.status_code == 200
    assert response.json()["message"] == "Payment already verified"


def test_verify_unknown_order(gatewayClient):
    response = gatewayClient.post(URL_PAYMENT_VERIFY, json=verifyPayload("order_x"))

    assert response.status_code == 404
    assert response.json()["error"] == "SemesterPayment not found"


def test_verify_requires_checkout_values(gatewayClient):
    response = gatewayClient.post(
        URL_PAYMENT_VERIFY, json={"razorpay_order_id": "order_1"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Missing payment verification data"


def test_verify_rejects_signature_for_another_order(
    gatewayClient, enrolment, seed, session
):
    other = seed.student(
        student_name="Bala", roll_number="CS2024002", email="bala@student.edu"
    )
    addPayment(session, enrolment, orderId="order_A")
    target = addPayment(session, {**enrolment, "student": other}, orderId="order_B")

    response = gatewayClient.post(
        URL_PAYMENT_VERIFY,
        json={**verifyPayload("order_A", "pay_A"), "paymentId": target.id},
    )

    assert response.status_code == 400
    assert response.json()["error"] == exceptions.OrderMismatch.detail
    session.expire_all()
    stored = session.get(SemesterPayment, target.id)
    assert stored.payment_status == PaymentStatus.PENDING
    assert stored.razorpay_payment_id is None


def test_verify_rejects_gateway_payment_of_another_order(
    gatewayClient, enrolment, session
):
    addPayment(session, enrolment)
    elsewhere = {
        "id": "pay_1",
        "order_id": "order_2",
        "status": "captured",
        "amount": 1000000,
    }
    with patch.object(razorpay, "requests") as mocked:
        mocked.get.return_value = gatewayResponse(body=elsewhere)
        response = gatewayClient.post(URL_PAYMENT_VERIFY, json=verifyPayload())

    assert response.status_code == 400
    assert response.json()["error"] == exceptions.OrderMismatch.detail
    assert storedPayment(session).payment_status == PaymentStatus.PENDING


# ---------------------------------------------------------------------------
# Gateway diagnostics
# ---------------------------------------------------------------------------
def test_config_check_without_keys(client):
    response = client.get(URL_PAYMENT_CONFIG_CHECK)

    assert response.status_code == 200
    body = response.json()
    assert body["config"]["hasKeyId"] is False
    assert body["config"]["mode"] == "missing"
    assert body["config"]["keysMatch"] is None
    assert "Set RAZORPAY_KEY_ID" in body["recommendations"]


def test_config_check_never_returns_key_values(gatewayClient):
    response = gatewayClient.get(URL_PAYMENT_CONFIG_CHECK)

    assert response.json()["config"]["mode"] == "test"
    assert response.json()["config"]["keyIdFormatValid"] is True
    assert KEY_ID not in response.text
    assert KEY_SECRET not in response.text


def test_gateway_test_accepts_keys(gatewayClient):
    with patch.object(razorpay, "requests") as mocked:
        mocked.get.return_value = gatewayResponse(body={"count": 1, "items": []})
        response = gatewayClient.get(URL_PAYMENT_GATEWAY_TEST)

    assert response.status_code == 200
    assert response.json()["valid"] is True
    assert response.json()["orderCount"] == 1


def test_gateway_test_rejected_keys(gatewayClient):
    with patch.object(razorpay, "requests") as mocked:
        mocked.get.return_value = gatewayResponse(statusCode=401)
        response = gatewayClient.get(URL_PAYMENT_GATEWAY_TEST)

    assert response.status_code == 200
    assert response.json()["valid"] is False
    assert response.json()["statusCode"] == 401


def test_gateway_test_unreachable(gatewayClient):
    with patch.object(razorpay.requests, "get", side_effect=requests.ConnectionError):
        response = gatewayClient.get(URL_PAYMENT_GATEWAY_TEST)

    assert response.status_code == 502
    assert response.json()["error"] == exceptions.GatewayError.detail


def test_gateway_test_without_keys(client):
    response = client.get(URL_PAYMENT_GATEWAY_TEST)

    assert response.status_code == 500


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------
def webhookBody(event, orderId="order_1", **entity):
    payment = {
        "id": "pay_1",
        "order_id": orderId,
        "status": "captured",
        "amount": 1000000,
    }
    payment.update(entity)
    return json.dumps(
        {"event": event, "payload": {"payment": {"entity": payment}}}
    ).encode("utf-8")


def postWebhook(client, body, signature=None):
    return client.post(
        URL_PAYMENT_WEBHOOK,
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Razorpay-Signature": signature
            or razorpay.signWebhook(WEBHOOK_SECRET, body),
        },
    )


def test_webhook_signature_check():
    config = Config(razorpay_webhook_secret=WEBHOOK_SECRET)
    body = webhookBody("payment.captured")
    signature = razorpay.signWebhook(WEBHOOK_SECRET, body)

    assert razorpay.verifyWebhook(config, body, signature)
    assert not razorpay.verifyWebhook(config, body + b" ", signature)
    assert not razorpay.verifyWebhook(config, body, None)
    assert not razorpay.verifyWebhook(Config(), body, signature)


def test_webhook_captured_confirms_payment(webhookClient, enrolment, session):
    addPayment(session, enrolment)

    response = postWebhook(webhookClient, webhookBody("payment.captured"))

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "event": "payment.captured",
        "processed": True,
    }
    payment = storedPayment(session)
    assert payment.payment_status == PaymentStatus.CONFIRMED
    assert payment.razorpay_payment_id == "pay_1"
    assert payment.paid_on is not None


def test_webhook_failed_records_reason(webhookClient, enrolment, session):
    addPayment(session, enrolment)
    body = webhookBody(
        "payment.failed",
        status="failed",
        error_code="BAD_REQUEST_ERROR",
        error_description="Payment was cancelled",
    )

    response = postWebhook(webhookClient, body)

    assert response.json()["processed"] is True
    payment = storedPayment(session)
    assert payment.payment_status == PaymentStatus.FAILED
    assert payment.failure_reason == "BAD_REQUEST_ERROR: Payment was cancelled"


def test_webhook_order_paid_with_wrong_amount(webhookClient, enrolment, session):
    addPayment(session, enrolment)

    response = postWebhook(webhookClient, webhookBody("order.paid", amount=100))

    assert response.json()["processed"] is True
    payment = storedPayment(session)
    assert payment.payment_status == PaymentStatus.FAILED
    assert payment.failure_reason == "Payment amount does not match the semester fee"


def test_webhook_never_changes_confirmed_payment(webhookClient, enrolment, session):
    addPayment(session, enrolment, status=PaymentStatus.CONFIRMED)
    body = webhookBody("payment.failed", status="failed")

    response = postWebhook(webhookClient, body)

    assert response.json()["processed"] is False
    assert storedPayment(session).payment_status == PaymentStatus.CONFIRMED


def test_webhook_ignores_other_events(webhookClient, enrolment, session):
    addPayment(session, enrolment)

    response = postWebhook(webhookClient, webhookBody("refund.created"))

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "event": "refund.created",
        "processed": False,
    }
    assert storedPayment(session).payment_status == PaymentStatus.PENDING


def test_webhook_unknown_order_is_acknowledged(webhookClient):
    response = postWebhook(webhookClient, webhookBody("payment.captured", "order_x"))

    assert response.status_code == 200
    assert response.json()["processed"] is False


def test_webhook_rejects_bad_signature(webhookClient, enrolment, session):
    addPayment(session, enrolment)

    response = postWebhook(
        webhookClient, webhookBody("payment.captured"), signature="forged"
    )

    assert response.status_code == 400
    assert response.json()["error"] == exceptions.InvalidWebhookSignature.detail
    assert storedPayment(session).payment_status == PaymentStatus.PENDING


def test_webhook_rejects_malformed_payload(webhookClient):
    response = postWebhook(webhookClient, b"not json")

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid webhook payload"


def test_webhook_without_secret(client):
    response = postWebhook(client, webhookBody("payment.captured"))

    assert response.status_code == 500
    assert response.json()["error"] == exceptions.ConfigurationError.detail


# ---------------------------------------------------------------------------
# Semester payments
# ---------------------------------------------------------------------------
def test_payment_history_newest_first(client, enrolment, session):
    older = addPayment(session, enrolment, PaymentStatus.FAILED, orderId="order_0")
    older.created_on = datetime(2025, 1, 5, 9, 0)
    newer = addPayment(session, enrolment, PaymentStatus.CONFIRMED)
    newer.created_on = datetime(2025, 1, 6, 9, 0)
    session.commit()

    response = client.get(
        URL_SEMESTER_PAYMENTS,
        params={"studentId": enrolment["student"].id, "type": "history"},
    )

    assert response.status_code == 200
    history = response.json()
    assert [payment["id"] for payment in history] == [newer.id, older.id]
    assert history[0]["route"]["route_number"] == "RT001"
    assert history[1]["payment_status"] == PaymentStatus.FAILED


def test_available_fees_of_current_semester(client, enrolment, seed):
    closed = seed.route(route_number="RT002", status=RouteStatus.INACTIVE)
    seed.semesterFee(closed)

    response = client.get(
        URL_SEMESTER_PAYMENTS,
        params={"studentId": enrolment["student"].id, "type": "available"},
    )

    assert response.status_code == 200
    fees = response.json()
    assert [fee["id"] for fee in fees] == [enrolment["fee"].id]
    assert fees[0]["semester_fee"] == 10000
    assert fees[0]["route"]["route_name"] == "Erode -> JKKN College"


def test_no_fees_available_once_payment_is_held(client, enrolment, session):
    addPayment(session, enrolment)

    response = client.get(
        URL_SEMESTER_PAYMENTS,
        params={"studentId": enrolment["student"].id, "type": "available"},
    )

    assert response.status_code == 200
    assert response.json() == []


def test_semester_payments_invalid_type(client, enrolment):
    response = client.get(
        URL_SEMESTER_PAYMENTS,
        params={"studentId": enrolment["student"].id, "type": "all"},
    )

    assert response.status_code == 400
    assert (
        response.json()["error"]
        == 'Invalid type parameter. Use "available" or "history"'
    )


def test_semester_payments_requires_student(client):
    response = client.get(URL_SEMESTER_PAYMENTS, params={"type": "history"})

    assert response.status_code == 400
    assert response.json()["error"] == "Student ID is required"


def test_semester_payments_unknown_student(client):
    response = client.get(
        URL_SEMESTER_PAYMENTS, params={"studentId": 999, "type": "history"}
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Student not found"
