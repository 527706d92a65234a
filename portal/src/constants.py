"""
Application constants for the Student Transport Portal API.

This module centralizes fixed values such as application metadata, session
lifetimes, booking defaults, payment gateway details and timezones.

Deployment specific values (store credentials, gateway keys, admin key) are
not kept here, see `portal.src.config`.
"""

from zoneinfo import ZoneInfo


# ---------------------------------------------------------------------------
# Application metadata
# ---------------------------------------------------------------------------
API_TITLE = "Student Transport Portal API"
API_VERSION = "1.0.0"
API_PREFIX = "/api"


# ---------------------------------------------------------------------------
# Driver session
# ---------------------------------------------------------------------------
DRIVER_SESSION_PREFIX = "driver-session-"
DRIVER_REFRESH_PREFIX = "driver-refresh-"
DRIVER_SESSION_VALIDITY = 24 * 60 * 60  # Session validity (in seconds, 24 hours)


# ---------------------------------------------------------------------------
# Location tracking
# ---------------------------------------------------------------------------
TRACKING_HISTORY_LIMIT = 100  # Default number of history points returned
MAX_TRACKING_HISTORY_LIMIT = 1000
LOCATION_UPDATE_INTERVAL = 30  # Suggested client push interval (in seconds)
LOCATION_SOURCE_GPS = "gps"
GPS_ONLINE_MINUTES = 2  # A fix at most this old is live
GPS_RECENT_MINUTES = 5  # A fix at most this old is recent, older is offline
STOP_TRAVEL_MINUTES = 5  # Estimated travel time per stop in sequence


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------
UNKNOWN_STOP = "Unknown Stop"
AVAILABILITY_RANGE_DAYS = 30  # Default availability window when no end date
SCHEDULING_SETTING_TYPE = "scheduling"
DEFAULT_SCHEDULING_SETTINGS = {
    "enableBookingTimeWindow": True,
    "bookingWindowEndHour": 19,
    "bookingWindowDaysBefore": 1,
    "autoNotifyPassengers": True,
    "sendReminderHours": [24, 2],
}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
NOTIFICATION_PAGE_LIMIT = 50


# ---------------------------------------------------------------------------
# Payment gateway (Razorpay)
# ---------------------------------------------------------------------------
RAZORPAY_API_URL = "https://api.razorpay.com/v1"
RAZORPAY_TIMEOUT = 15  # Gateway request timeout (in seconds)
RAZORPAY_KEY_PREFIX = "rzp_"
PAYMENT_CURRENCY = "INR"
PAYMENT_COMPANY_NAME = "JKKN College of Engineering"
PAYMENT_THEME_COLOR = "#2196F3"
PAYMENT_CAPTURED = "captured"
WEBHOOK_PAYMENT_CAPTURED = "payment.captured"
WEBHOOK_PAYMENT_FAILED = "payment.failed"
WEBHOOK_ORDER_PAID = "order.paid"
SEMESTER_START_MONTH = 6  # June opens the first semester
SEMESTER_END_MONTH = 11  # November closes the first semester


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------
REGEX_REGISTRATION_NUMBER = r"^[A-Z]{2}[0-9]{2}[A-Z]{0,2}[0-9]{1,4}$"
DEMO_VEHICLE_REGISTRATION_NUMBER = "TN33DM0001"


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
MIN_PASSWORD_LENGTH = 6


# ---------------------------------------------------------------------------
# Timezone constants
# ---------------------------------------------------------------------------
TMZ_PRIMARY = ZoneInfo("UTC")
TMZ_SECONDARY = ZoneInfo("Asia/Kolkata")


# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------
DEMO_STUDENT_EMAIL = "demo@student.edu"
DEMO_STUDENT_ROLL_NUMBER = "TMS2025001"
DEMO_ROUTE_NUMBER = "RT001"
DEMO_SEMESTER_FEE = 10000
