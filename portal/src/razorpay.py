"""
Razorpay payment gateway client.

Talks to the Razorpay REST API with `requests` using HTTP Basic auth
(key id and key secret). Amounts exchanged with the gateway are integers in
paise. In demo mode the order and payment documents are fabricated locally so
that the checkout flow can be exercised without gateway keys.
"""

import hmac, hashlib, requests
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from secrets import token_hex
from requests import Response

from portal.src.config import Config
from portal.src.constants import (
    PAYMENT_CAPTURED,
    PAYMENT_COMPANY_NAME,
    PAYMENT_CURRENCY,
    PAYMENT_THEME_COLOR,
    RAZORPAY_API_URL,
    RAZORPAY_TIMEOUT,
    TMZ_PRIMARY,
)


def toPaise(amount: Decimal | float | int) -> int:
    """Convert a rupee amount to integer paise, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), ROUND_HALF_UP))


def _auth(config: Config) -> tuple:
    return (config.razorpay_key_id, config.razorpay_key_secret)


def createOrder(config: Config, amount: int, receipt: str, notes: dict) -> dict:
    """
    Create a gateway order.

    Args:
        config (Config): Application configuration holding the gateway keys.
        amount (int): Amount in paise.
        receipt (str): Merchant receipt reference.
        notes (dict): Free form key/value pairs stored with the order.

    Returns:
        dict: The order document, including `id`, `amount` and `currency`.

    Raises:
        requests.RequestException: If the gateway is unreachable or rejects the order.
    """
    response = requests.post(
        f"{RAZORPAY_API_URL}/orders",
        auth=_auth(config),
        json={
            "amount": amount,
            "currency": PAYMENT_CURRENCY,
            "receipt": receipt,
            "notes": notes,
        },
        timeout=RAZORPAY_TIMEOUT,
    )
    response.raise_for_status()
    return response.json()


def fetchPayment(config: Config, paymentId: str) -> dict:
    """Fetch a payment document by id, raising on gateway errors."""
    response = requests.get(
        f"{RAZORPAY_API_URL}/payments/{paymentId}",
        auth=_auth(config),
        timeout=RAZORPAY_TIMEOUT,
    )
    response.raise_for_status()
    return response.json()


def listOrders(config: Config, count: int = 1) -> Response:
    """List recent orders. Used to check whether the configured keys work."""
    return requests.get(
        f"{RAZORPAY_API_URL}/orders",
        auth=_auth(config),
        params={"count": count},
        timeout=RAZORPAY_TIMEOUT,
    )


def signPayment(secret: str, orderId: str, paymentId: str) -> str:
    """Compute the checkout signature, HMAC-SHA256 of `order_id|payment_id`."""
    message = f"{orderId}|{paymentId}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verifySignature(
    config: Config, orderId: str, paymentId: str, signature: str
) -> bool:
    if not config.razorpay_key_secret:
        return False
    expected = signPayment(config.razorpay_key_secret, orderId, paymentId)
    return hmac.compare_digest(expected, signature)


def signWebhook(secret: str, body: bytes) -> str:
    """Compute the webhook signature, HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verifyWebhook(config: Config, body: bytes, signature: Optional[str]) -> bool:
    if not config.razorpay_webhook_secret or not signature:
        return False
    expected = signWebhook(config.razorpay_webhook_secret, body)
    return hmac.compare_digest(expected, signature)


def demoOrder(amount: int, receipt: str, notes: dict) -> dict:
    """Fabricate an order document shaped like the gateway's."""
    now = datetime.now(TMZ_PRIMARY)
    return {
        "id": f"order_demo_{int(now.timestamp() * 1000)}{token_hex(3)}",
        "entity": "order",
        "amount": amount,
        "amount_paid": 0,
        "amount_due": amount,
        "currency": PAYMENT_CURRENCY,
        "receipt": receipt,
        "status": "created",
        "notes": notes,
        "created_at": int(now.timestamp()),
    }


def demoPayment(orderId: str, paymentId: str, amount: int) -> dict:
    """Fabricate a captured payment document for a demo order."""
    return {
        "id": paymentId,
        "entity": "payment",
        "order_id": orderId,
        "amount": amount,
        "currency": PAYMENT_CURRENCY,
        "status": PAYMENT_CAPTURED,
        "method": "demo",
        "captured": True,
        "created_at": int(datetime.now(TMZ_PRIMARY).timestamp()),
    }


def checkoutOptions(config: Config, order: dict, prefill: dict, notes: dict) -> dict:
    """
    Build the options object the browser passes to the checkout widget.
    """
    return {
        "key": config.gatewayKeyId() or "demo_key",
        "amount": order["amount"],
        "currency": order.get("currency", PAYMENT_CURRENCY),
        "name": PAYMENT_COMPANY_NAME,
        "description": "Semester transport fee",
        "order_id": order["id"],
        "prefill": prefill,
        "notes": notes,
        "theme": {"color": PAYMENT_THEME_COLOR},
    }
