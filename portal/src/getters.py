from typing import List, Optional
from fastapi import Request
from sqlalchemy.orm.session import Session

from portal.src import schemas, exceptions
from portal.src.config import Config
from portal.src.constants import DEFAULT_SCHEDULING_SETTINGS, SCHEDULING_SETTING_TYPE
from portal.src.db import AdminSetting, RouteStop, Store, Vehicle


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Args:
        request (Request): FastAPI request object.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
    """
    return schemas.RequestInfo(method=request.method, path=request.url.path)


def config(request: Request) -> Config:
    """Return the configuration attached to the application at startup."""
    return request.app.state.config


def store(request: Request) -> Store:
    """
    Return the store attached to the application at startup.

    Raises:
        exceptions.ConfigurationError: If the application was built without
            store credentials.
    """
    appStore = request.app.state.store
    if appStore is None:
        raise exceptions.ConfigurationError()
    return appStore


def routeStops(session: Session, routeId: int) -> List[RouteStop]:
    """Fetch the stops of a route in boarding order."""
    return (
        session.query(RouteStop)
        .filter(RouteStop.route_id == routeId)
        .order_by(RouteStop.sequence_order.asc())
        .all()
    )


def vehicle(session: Session, vehicleId: Optional[int]) -> Optional[Vehicle]:
    if vehicleId is None:
        return None
    return session.query(Vehicle).filter(Vehicle.id == vehicleId).first()


def schedulingSettings(session: Session) -> dict:
    """
    Fetch the scheduling settings, falling back to the defaults.

    Stored values override the defaults key by key, so a partially stored
    document still yields every setting.
    """
    setting = (
        session.query(AdminSetting)
        .filter(AdminSetting.setting_type == SCHEDULING_SETTING_TYPE)
        .first()
    )
    settings = dict(DEFAULT_SCHEDULING_SETTINGS)
    if setting is not None and isinstance(setting.settings_data, dict):
        settings.update(setting.settings_data)
    return settings
