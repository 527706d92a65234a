from enum import IntEnum


class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class AccountStatus(IntEnum):
    ACTIVE = 1
    SUSPENDED = 2


class DriverStatus(IntEnum):
    ACTIVE = 1
    INACTIVE = 2
    ON_LEAVE = 3


class RouteStatus(IntEnum):
    ACTIVE = 1
    INACTIVE = 2
    MAINTENANCE = 3


class ScheduleStatus(IntEnum):
    SCHEDULED = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    CANCELLED = 4


class BookingStatus(IntEnum):
    CONFIRMED = 1
    COMPLETED = 2
    CANCELLED = 3
    NO_SHOW = 4


class BookingPaymentStatus(IntEnum):
    PENDING = 1
    PAID = 2
    REFUNDED = 3


class TrackingStatus(IntEnum):
    INACTIVE = 1
    ACTIVE = 2


class NotificationType(IntEnum):
    INFO = 1
    WARNING = 2
    SUCCESS = 3
    ERROR = 4


class NotificationCategory(IntEnum):
    TRANSPORT = 1
    PAYMENT = 2
    SYSTEM = 3
    EMERGENCY = 4


class TargetAudience(IntEnum):
    ALL = 1
    STUDENTS = 2
    DRIVERS = 3
    ADMINS = 4


class PaymentStatus(IntEnum):
    PENDING = 1
    CONFIRMED = 2
    FAILED = 3


class PaymentMethod(IntEnum):
    RAZORPAY = 1
    CASH = 2
    UPI = 3
