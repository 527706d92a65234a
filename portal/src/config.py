"""
Deployment configuration for the Student Transport Portal API.

The configuration is read once from the environment when the application is
built and attached to the application state. Route handlers receive it via
`portal.src.getters.config` and never read the environment themselves.

Environment variables:
    STORE_URL: SQLAlchemy URL of the store without credentials.
    STORE_SERVICE_USERNAME / STORE_SERVICE_PASSWORD: privileged store role.
    STORE_ANON_USERNAME / STORE_ANON_PASSWORD: restricted store role.
    RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET / RAZORPAY_PUBLIC_KEY_ID: gateway keys.
    RAZORPAY_WEBHOOK_SECRET: shared secret signing gateway webhooks.
    ADMIN_SETUP_KEY: shared secret gating the admin endpoints.
    DEMO_MODE: "true" to fabricate payment gateway responses.
    OPENOBSERVE_*: event log shipping, enabled with OPENOBSERVE_ENABLED=true.
"""

from os import environ
from typing import Mapping, Optional, Tuple
from pydantic import BaseModel
from sqlalchemy.engine import URL, make_url


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes", "on")


class Config(BaseModel):
    # Store
    store_url: Optional[str] = None
    store_service_username: Optional[str] = None
    store_service_password: Optional[str] = None
    store_anon_username: Optional[str] = None
    store_anon_password: Optional[str] = None
    # Payment gateway
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_public_key_id: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    demo_mode: bool = False
    # Admin
    admin_setup_key: Optional[str] = None
    # OpenObserve
    openobserve_enabled: bool = False
    openobserve_protocol: str = "http"
    openobserve_host: str = "localhost"
    openobserve_port: str = "5080"
    openobserve_username: str = "admin@portal.local"
    openobserve_password: str = "password"
    openobserve_org: str = "default"
    openobserve_stream: str = "student-transport-portal"

    @classmethod
    def fromEnvironment(cls, env: Mapping[str, str] = environ) -> "Config":
        """
        Build a configuration from environment variables.

        Args:
            env (Mapping[str, str]): Variable source, defaults to `os.environ`.

        Returns:
            Config: The populated configuration. Unset optional values stay None.
        """
        return cls(
            store_url=env.get("STORE_URL"),
            store_service_username=env.get("STORE_SERVICE_USERNAME"),
            store_service_password=env.get("STORE_SERVICE_PASSWORD"),
            store_anon_username=env.get("STORE_ANON_USERNAME"),
            store_anon_password=env.get("STORE_ANON_PASSWORD"),
            razorpay_key_id=env.get("RAZORPAY_KEY_ID"),
            razorpay_key_secret=env.get("RAZORPAY_KEY_SECRET"),
            razorpay_public_key_id=env.get("RAZORPAY_PUBLIC_KEY_ID"),
            razorpay_webhook_secret=env.get("RAZORPAY_WEBHOOK_SECRET"),
            demo_mode=_flag(env.get("DEMO_MODE")),
            admin_setup_key=env.get("ADMIN_SETUP_KEY"),
            openobserve_enabled=_flag(env.get("OPENOBSERVE_ENABLED")),
            openobserve_protocol=env.get("OPENOBSERVE_PROTOCOL", "http"),
            openobserve_host=env.get("OPENOBSERVE_HOST", "localhost"),
            openobserve_port=env.get("OPENOBSERVE_PORT", "5080"),
            openobserve_username=env.get("OPENOBSERVE_USERNAME", "admin@portal.local"),
            openobserve_password=env.get("OPENOBSERVE_PASSWORD", "password"),
            openobserve_org=env.get("OPENOBSERVE_ORG", "default"),
            openobserve_stream=env.get(
                "OPENOBSERVE_STREAM", "student-transport-portal"
            ),
        )

    def storeCredentials(self) -> Optional[Tuple[str, str]]:
        """
        Pick the store credentials, preferring the service role.

        Returns:
            Optional[Tuple[str, str]]: (username, password) or None when
            neither credential pair is complete.
        """
        if self.store_service_username and self.store_service_password:
            return self.store_service_username, self.store_service_password
        if self.store_anon_username and self.store_anon_password:
            return self.store_anon_username, self.store_anon_password
        return None

    def storeURL(self) -> Optional[URL]:
        """Return the store URL with credentials applied, or None if incomplete."""
        credentials = self.storeCredentials()
        if not self.store_url or credentials is None:
            return None
        username, password = credentials
        return make_url(self.store_url).set(username=username, password=password)

    def gatewayKeyId(self) -> Optional[str]:
        return self.razorpay_public_key_id or self.razorpay_key_id

    def hasGatewayKeys(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)
