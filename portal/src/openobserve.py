import base64, json, requests
from requests import Response

from portal.src.config import Config

OPENOBSERVE_TIMEOUT = 5  # Shipping timeout (in seconds)


def ingestionURL(config: Config) -> str:
    """Construct the OpenObserve JSON ingestion URL for the configured stream."""
    host = f"{config.openobserve_protocol}://{config.openobserve_host}:{config.openobserve_port}"
    return f"{host}/api/{config.openobserve_org}/{config.openobserve_stream}/_json"


def ingestionHeaders(config: Config) -> dict:
    """Build the JSON content type and Basic auth headers for OpenObserve."""
    credentials = base64.b64encode(
        bytes(config.openobserve_username + ":" + config.openobserve_password, "utf-8")
    ).decode("utf-8")
    return {"Content-type": "application/json", "Authorization": "Basic " + credentials}


def logEvent(config: Config, eventData: dict) -> Response:
    """
    Send an event log to the configured OpenObserve instance.

    This function serializes the given event data as JSON and sends it
    to the OpenObserve API using HTTP POST with Basic authentication.

    Args:
        config (Config): Application configuration holding the OpenObserve settings.
        eventData (dict): A dictionary representing the event log to be sent.
            Example:
                {
                    "_method": "POST",
                    "_path": "/api/auth/driver-login",
                    "_driver_id": 1
                }

    Returns:
        requests.Response: The HTTP response object returned by the OpenObserve API.
    """
    return requests.post(
        ingestionURL(config),
        headers=ingestionHeaders(config),
        data=json.dumps(eventData, default=str),
        timeout=OPENOBSERVE_TIMEOUT,
    )
