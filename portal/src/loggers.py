import json
from logging import getLogger
from typing import Optional
from requests import RequestException

from portal.src import openobserve
from portal.src.config import Config
from portal.src.schemas import RequestInfo

eventLogger = getLogger("portal.events")

# Columns never written to the event log
SECRET_FIELDS = ("password_hash", "p256dh_key", "auth_key", "password", "adminKey")


def logEvent(
    config: Config,
    requestInfo: RequestInfo,
    data: dict,
    actor: Optional[dict] = None,
) -> None:
    """
    Log an audit event with request and actor context.

    Args:
        config (Config): Application configuration.
        requestInfo (RequestInfo): Metadata about the current request.
        data (dict): Event-specific details, usually the written row.
        actor (Optional[dict]): Identity of the acting user, ex:-
            `{"_driver_id": 4}` or `{"_student_id": 12}`.

    Notes:
        - Automatically attaches `_method` and `_path`.
        - Secret columns are dropped before the event leaves the process.
        - Events are shipped to OpenObserve when enabled, otherwise they are
          written to the `portal.events` logger.
    """
    logDetails = {
        "_method": requestInfo.method,
        "_path": requestInfo.path,
    }
    if actor is not None:
        logDetails.update(actor)
    logDetails.update(
        {key: value for key, value in data.items() if key not in SECRET_FIELDS}
    )

    if not config.openobserve_enabled:
        eventLogger.info(json.dumps(logDetails, default=str))
        return
    try:
        openobserve.logEvent(config, logDetails)
    except RequestException as e:
        eventLogger.warning("Event shipping failed: %s", e)
        eventLogger.info(json.dumps(logDetails, default=str))
