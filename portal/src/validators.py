"""
Validation and permission checks for the Student Transport Portal API.

This module centralizes guard logic such as:
- Admin key validation
- Required field checks with endpoint specific messages
- Coordinate range checks
- Push subscription shape checks
- Driver account and location sharing state

All functions raise appropriate exceptions from `portal.src.exceptions`
when validation fails, ensuring consistent error handling.
"""

from hmac import compare_digest
from typing import Any, Optional, Tuple

from portal.src import exceptions
from portal.src.config import Config
from portal.src.db import Driver
from portal.src.enums import DriverStatus


# ---------------------------------------------------------------------------
# Admin key validation
# ---------------------------------------------------------------------------
def adminKey(config: Config, providedKey: Optional[str]) -> None:
    """
    Validate the admin setup key presented by the caller.

    Args:
        config (Config): Application configuration.
        providedKey (Optional[str]): Key from the bearer header or the body.

    Raises:
        exceptions.ConfigurationError: If no admin key is configured.
        exceptions.InvalidAdminKey: If the key is missing or wrong.
    """
    if not config.admin_setup_key:
        raise exceptions.ConfigurationError()
    if not providedKey or not compare_digest(
        providedKey.encode("utf-8"), config.admin_setup_key.encode("utf-8")
    ):
        raise exceptions.InvalidAdminKey()


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------
def requireValues(detail: str, *values: Any) -> None:
    """
    Ensure every value is present.

    Strings made of whitespace only count as missing.

    Raises:
        exceptions.MissingParameter: With `detail` as the message.
    """
    for value in values:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise exceptions.MissingParameter(detail)


def coordinates(latitude: float, longitude: float) -> None:
    """
    Check WGS84 coordinate ranges.

    Raises:
        exceptions.InvalidValue: If latitude is outside [-90, 90] or
            longitude is outside [-180, 180].
    """
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        raise exceptions.InvalidValue("Invalid coordinates")


def pushSubscription(subscription: dict) -> Tuple[str, str, str]:
    """
    Extract the endpoint and keys of a browser push subscription.

    Args:
        subscription (dict): The `PushSubscription.toJSON()` payload.

    Returns:
        Tuple[str, str, str]: (endpoint, p256dh key, auth key).

    Raises:
        exceptions.InvalidSubscription: If any of the three is missing.
    """
    keys = subscription.get("keys")
    if not isinstance(keys, dict):
        raise exceptions.InvalidSubscription()
    endpoint = subscription.get("endpoint")
    p256dh = keys.get("p256dh")
    auth = keys.get("auth")
    if not endpoint or not p256dh or not auth:
        raise exceptions.InvalidSubscription()
    return endpoint, p256dh, auth


# ---------------------------------------------------------------------------
# Driver state
# ---------------------------------------------------------------------------
def activeDriver(driver: Driver) -> None:
    if driver.status != DriverStatus.ACTIVE:
        raise exceptions.InactiveAccount()


def locationSharing(driver: Driver) -> None:
    """
    Ensure the driver allows the location to be shared.

    Only `location_sharing_enabled` decides, `location_enabled` is not
    consulted.
    """
    if not driver.location_sharing_enabled:
        raise exceptions.LocationSharingDisabled()
