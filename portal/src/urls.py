"""
API Endpoint URL Constants

This module defines the URL paths used throughout the application
for accessing the resources of the student transport portal.

These URLs are relative paths and are prefixed by `API_PREFIX` when the
routers are included in the application.
"""

# -------------------------------
# Authentication
# -------------------------------
URL_DRIVER_LOGIN = "/auth/driver-login"
URL_FIRST_LOGIN = "/auth/first-login"
URL_SYNC_EXTERNAL_ID = "/auth/sync-external-id"
URL_CHECK_DRIVER = "/auth/check-driver"

# -------------------------------
# Driver
# -------------------------------
URL_DRIVER_BOOKINGS = "/driver/bookings"
URL_DRIVER_PROFILE = "/driver/profile"
URL_DRIVER_PROFILE_UPDATE = "/driver/profile/update"
URL_DRIVER_ROUTES = "/driver/routes"
URL_DRIVER_ROUTE = "/driver/routes/{routeId}"

# -------------------------------
# Location
# -------------------------------
URL_DRIVER_LOCATION = "/location/driver/{driverId}"
URL_DRIVER_LOCATION_UPDATE = "/driver/location/update"
URL_DRIVER_LOCATION_SETTINGS = "/driver/location/settings"

# -------------------------------
# Routes, schedules and bookings
# -------------------------------
URL_ROUTE_STOPS = "/routes/{routeId}/stops"
URL_ROUTES_AVAILABLE = "/routes/available"
URL_ROUTES_LIVE_TRACKING = "/routes/live-tracking"
URL_SCHEDULE_AVAILABILITY = "/schedules/availability"
URL_BOOKING = "/bookings"

# -------------------------------
# Notifications
# -------------------------------
URL_NOTIFICATION = "/notifications"
URL_NOTIFICATION_READ = "/notifications/{notificationId}/read"
URL_NOTIFICATION_READ_ALL = "/notifications/mark-all-read"
URL_PUSH_SUBSCRIBE = "/push/subscribe"

# -------------------------------
# Payments
# -------------------------------
URL_PAYMENT_ORDER = "/payments/create-order"
URL_PAYMENT_VERIFY = "/payments/verify"
URL_PAYMENT_CONFIG_CHECK = "/payments/config-check"
URL_PAYMENT_GATEWAY_TEST = "/payments/test-razorpay"
URL_PAYMENT_WEBHOOK = "/payments/webhook"
URL_SEMESTER_PAYMENTS = "/semester-payments"

# -------------------------------
# Admin
# -------------------------------
URL_ADMIN_CREATE_DRIVER = "/admin/create-driver"
URL_SETUP_DEMO = "/setup-demo"
URL_SETTINGS = "/settings"
URL_ADMIN_STUDENT = "/admin/student"
URL_ADMIN_DRIVER = "/admin/driver"
URL_ADMIN_VEHICLE = "/admin/vehicle"
URL_ADMIN_ROUTE = "/admin/route"
URL_ADMIN_ROUTE_STOP = "/admin/route/stop"
URL_ADMIN_SEMESTER_FEE = "/admin/semester-fee"
URL_ADMIN_SCHEDULE = "/admin/schedule"
