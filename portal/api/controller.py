from fastapi import APIRouter

from portal.api import (
    admin,
    auth,
    driver,
    location,
    notification,
    payment,
    push,
    route,
    schedule,
    vehicle,
)
from portal.src.constants import API_PREFIX


# ------------------------------------------------------
# Every handler is served under the API prefix
# ------------------------------------------------------
route_api = APIRouter(prefix=API_PREFIX)


# ------------------------------------------------------
# Public routers
# ------------------------------------------------------
route_api.include_router(auth.route_public)
route_api.include_router(driver.route_public)
route_api.include_router(location.route_public)
route_api.include_router(route.route_public)
route_api.include_router(schedule.route_public)
route_api.include_router(notification.route_public)
route_api.include_router(push.route_public)
route_api.include_router(payment.route_public)
route_api.include_router(admin.route_public)


# ------------------------------------------------------
# Admin routers (admin setup key as bearer credential)
# ------------------------------------------------------
route_api.include_router(admin.route_admin)
route_api.include_router(vehicle.route_admin)
route_api.include_router(route.route_admin)
route_api.include_router(schedule.route_admin)
route_api.include_router(notification.route_admin)
