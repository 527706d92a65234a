from typing import Optional
from sqlalchemy import (
    JSON,
    TEXT,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Time,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from portal.src.config import Config
from portal.src.enums import (
    AccountStatus,
    BookingPaymentStatus,
    BookingStatus,
    DriverStatus,
    NotificationCategory,
    NotificationType,
    PaymentStatus,
    RouteStatus,
    ScheduleStatus,
    TargetAudience,
    TrackingStatus,
)


ORMbase = declarative_base()


class Store:
    """
    Holds the engine and the session factory of the relational store.

    Built once when the application starts and shared by every request.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)

    def createTables(self) -> None:
        ORMbase.metadata.create_all(self.engine)

    def removeTables(self) -> None:
        ORMbase.metadata.drop_all(self.engine)


def createStore(config: Config) -> Optional[Store]:
    """
    Create the store from the configuration.

    Args:
        config (Config): Application configuration.

    Returns:
        Optional[Store]: The store, or None when the URL or both credential
        pairs are missing.
    """
    url = config.storeURL()
    if url is None:
        return None
    return Store(create_engine(url=url, echo=False, pool_pre_ping=True))


# ----------------------------------- Account Models ------------------------------------------#
class Student(ORMbase):
    """
    Represents a student who may book seats and pay semester fees.

    Students are imported by the administration. The password is set by the
    student on the first login, after proving the date of birth.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the student.

        student_name (String(128)):
            Full name of the student. Must be non-null.

        roll_number (String(32)):
            College roll number. Unique when present.

        email (String(256)):
            Login identifier. Must be non-null and unique.

        mobile (String(32)):
            Optional contact number.

        date_of_birth (Date):
            Second factor used during the first login.

        password_hash (TEXT):
            Argon2 hash of the password. Null until the first login completes.

        first_login_completed (Boolean):
            One way flag, set once the student has chosen a password.

        failed_login_attempts (Integer):
            Counter of consecutive failed logins. Reset on success.

        last_login (DateTime):
            Timestamp of the latest successful login.

        external_student_id (String(128)):
            Identifier of the student in the external identity provider.

        status (Integer):
            Account status, see `AccountStatus`.
    """

    __tablename__ = "students"

    id = Column(Integer, primary_key=True)
    student_name = Column(String(128), nullable=False)
    roll_number = Column(String(32), unique=True)
    email = Column(String(256), nullable=False, unique=True)
    mobile = Column(String(32))
    date_of_birth = Column(Date)
    password_hash = Column(TEXT)
    first_login_completed = Column(Boolean, nullable=False, default=False)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    last_login = Column(DateTime(timezone=True))
    external_student_id = Column(String(128))
    status = Column(Integer, nullable=False, default=AccountStatus.ACTIVE)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Driver(ORMbase):
    """
    Represents a bus driver.

    Besides the account fields, a driver row carries the last known position
    pushed by the driver's device and the location sharing preferences.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the driver.

        name (String(128)), email (String(256)), phone (String(32)):
            Identity and contact details. Email is unique.

        license_number (String(64)):
            Driving license number.

        experience_years (Integer), rating (Float), total_trips (Integer):
            Profile statistics. May be null for new drivers.

        password_hash (TEXT):
            Argon2 hash of the password. Null until the admin sets one.

        status (Integer):
            Account status, see `DriverStatus`.

        current_latitude, current_longitude, location_accuracy (Float):
            Last known position and its accuracy in meters.

        location_timestamp (DateTime):
            Device timestamp of the last known position.

        last_location_update (DateTime):
            Server timestamp of the last position push.

        location_sharing_enabled (Boolean):
            Whether the position may be shown to others.

        location_enabled (Boolean):
            Whether the device is tracking at all.

        location_tracking_status (Integer):
            Tracking state, see `TrackingStatus`.
    """

    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True)
    name = Column(String(128), nullable=False)
    email = Column(String(256), nullable=False, unique=True)
    phone = Column(String(32))
    license_number = Column(String(64))
    experience_years = Column(Integer)
    rating = Column(Float)
    total_trips = Column(Integer)
    password_hash = Column(TEXT)
    status = Column(Integer, nullable=False, default=DriverStatus.ACTIVE)
    # Location
    current_latitude = Column(Float)
    current_longitude = Column(Float)
    location_accuracy = Column(Float)
    location_timestamp = Column(DateTime(timezone=True))
    last_location_update = Column(DateTime(timezone=True))
    location_sharing_enabled = Column(Boolean, nullable=False, default=False)
    location_enabled = Column(Boolean, nullable=False, default=False)
    location_tracking_status = Column(
        Integer, nullable=False, default=TrackingStatus.INACTIVE
    )
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Vehicle(ORMbase):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True)
    registration_number = Column(String(32), nullable=False, unique=True)
    model = Column(String(128))
    capacity = Column(Integer, nullable=False, default=40)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Route Models --------------------------------------------#
class Route(ORMbase):
    """
    Represents a bus route operated by the college.

    Columns:
        route_number (String(32)):
            Short public identifier, ex:- RT001. Must be unique.

        route_name (String(256)):
            Descriptive name, ex:- Erode -> Komarapalayam.

        start_location, end_location (String(256)):
            Names of the first and last stop.

        departure_time, arrival_time (Time):
            Daily timing of the trip.

        distance (Float), duration (String(32)):
            Length in kilometers and a human readable duration.

        fare (Numeric(10, 2)):
            Per trip fare in rupees.

        total_capacity, current_passengers (Integer):
            Seat capacity and the number of enrolled passengers.

        status (Integer):
            Route status, see `RouteStatus`.

        driver_id, vehicle_id (Integer):
            Assigned driver and vehicle. Set to null when those are deleted.

        live_tracking_enabled (Boolean):
            Whether driver position pushes are copied to the route.

        current_latitude, current_longitude (Float), last_gps_update (DateTime):
            Latest position copied from the driver.
    """

    __tablename__ = "routes"

    id = Column(Integer, primary_key=True)
    route_number = Column(String(32), nullable=False, unique=True)
    route_name = Column(String(256), nullable=False)
    start_location = Column(String(256), nullable=False)
    end_location = Column(String(256), nullable=False)
    departure_time = Column(Time, nullable=False)
    arrival_time = Column(Time, nullable=False)
    distance = Column(Float)
    duration = Column(String(32))
    fare = Column(Numeric(10, 2), nullable=False, default=0)
    total_capacity = Column(Integer, nullable=False, default=40)
    current_passengers = Column(Integer, nullable=False, default=0)
    status = Column(Integer, nullable=False, default=RouteStatus.ACTIVE)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="SET NULL"))
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"))
    # Live tracking
    live_tracking_enabled = Column(Boolean, nullable=False, default=False)
    current_latitude = Column(Float)
    current_longitude = Column(Float)
    last_gps_update = Column(DateTime(timezone=True))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class RouteStop(ORMbase):
    """
    Represents a boarding stop along a route.

    The `sequence_order` is unique within a route so that stops of a route
    always form a strictly increasing sequence.
    """

    __tablename__ = "route_stops"
    __table_args__ = (UniqueConstraint("route_id", "sequence_order"),)

    id = Column(Integer, primary_key=True)
    route_id = Column(
        Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False
    )
    stop_name = Column(String(256), nullable=False)
    stop_time = Column(Time, nullable=False)
    sequence_order = Column(Integer, nullable=False)
    is_major_stop = Column(Boolean, nullable=False, default=False)
    latitude = Column(Float)
    longitude = Column(Float)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Schedule(ORMbase):
    """
    Represents one run of a route on a given date.

    Seats are claimed by incrementing `booked_seats`, which never exceeds
    `total_seats`. A route has at most one schedule per date.

    Columns:
        schedule_date (Date):
            Date of the run.

        departure_time, arrival_time (Time):
            Timing of this run, copied from the route on creation.

        total_seats, booked_seats (Integer):
            Capacity and seats already claimed.

        status (Integer):
            Schedule status, see `ScheduleStatus`.

        booking_enabled (Boolean):
            Whether seats may be claimed.

        admin_scheduling_enabled (Boolean):
            Whether the administration has approved the run for booking.
    """

    __tablename__ = "schedules"
    __table_args__ = (UniqueConstraint("route_id", "schedule_date"),)

    id = Column(Integer, primary_key=True)
    route_id = Column(
        Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False
    )
    schedule_date = Column(Date, nullable=False)
    departure_time = Column(Time, nullable=False)
    arrival_time = Column(Time, nullable=False)
    total_seats = Column(Integer, nullable=False)
    booked_seats = Column(Integer, nullable=False, default=0)
    status = Column(Integer, nullable=False, default=ScheduleStatus.SCHEDULED)
    booking_enabled = Column(Boolean, nullable=False, default=True)
    admin_scheduling_enabled = Column(Boolean, nullable=False, default=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="SET NULL"))
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Booking(ORMbase):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    route_id = Column(
        Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False
    )
    schedule_id = Column(
        Integer, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False
    )
    trip_date = Column(Date, nullable=False)
    boarding_stop = Column(String(256))
    seat_number = Column(String(16))
    status = Column(Integer, nullable=False, default=BookingStatus.CONFIRMED)
    payment_status = Column(
        Integer, nullable=False, default=BookingPaymentStatus.PENDING
    )
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class LocationTracking(ORMbase):
    """
    A single position pushed by a driver while running a route.

    Only active rows are reported in the tracking history.
    """

    __tablename__ = "location_tracking"

    id = Column(Integer, primary_key=True)
    driver_id = Column(
        Integer, ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False
    )
    route_id = Column(
        Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False
    )
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"))
    timestamp = Column(DateTime(timezone=True), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float)
    speed = Column(Float)
    heading = Column(Float)
    location_source = Column(String(32))
    data_quality = Column(String(32))
    is_active = Column(Boolean, nullable=False, default=True)
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Notification Models -------------------------------------#
class Notification(ORMbase):
    """
    Represents a broadcast message shown to portal users.

    Columns:
        title (String(256)), message (TEXT):
            Content of the notification.

        type (Integer), category (Integer):
            See `NotificationType` and `NotificationCategory`.

        target_audience (Integer):
            See `TargetAudience`.

        specific_users (JSON):
            Optional list of user ids that may also see the notification.

        is_active (Boolean), expires_at (DateTime):
            Only active notifications that have not expired are visible.

        enable_push_notification, enable_email_notification (Boolean):
            Delivery preferences recorded with the notification.
    """

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    title = Column(String(256), nullable=False)
    message = Column(TEXT, nullable=False)
    type = Column(Integer, nullable=False, default=NotificationType.INFO)
    category = Column(Integer, nullable=False, default=NotificationCategory.SYSTEM)
    target_audience = Column(Integer, nullable=False, default=TargetAudience.ALL)
    specific_users = Column(JSON)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True))
    enable_push_notification = Column(Boolean, nullable=False, default=False)
    enable_email_notification = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class NotificationRead(ORMbase):
    """
    Records that a user has read a notification.

    A user appears at most once per notification, enforced by the unique
    constraint on (notification_id, user_id).
    """

    __tablename__ = "notification_reads"
    __table_args__ = (UniqueConstraint("notification_id", "user_id"),)

    id = Column(Integer, primary_key=True)
    notification_id = Column(
        Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(64), nullable=False)
    read_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class PushSubscription(ORMbase):
    __tablename__ = "push_subscriptions"
    __table_args__ = (UniqueConstraint("user_id", "endpoint"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False)
    endpoint = Column(TEXT, nullable=False)
    p256dh_key = Column(TEXT, nullable=False)
    auth_key = Column(TEXT, nullable=False)
    user_agent = Column(TEXT)
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Settings Models -----------------------------------------#
class AdminSetting(ORMbase):
    __tablename__ = "admin_settings"

    id = Column(Integer, primary_key=True)
    setting_type = Column(String(64), nullable=False, unique=True)
    settings_data = Column(JSON, nullable=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Payment Models ------------------------------------------#
class SemesterFee(ORMbase):
    """
    Fee charged for travelling on a route during one semester.

    Columns:
        academic_year (String(16)):
            Academic year, ex:- 2026-27.

        semester (Integer):
            1 for June to November, 2 for December to May.

        semester_fee (Numeric(10, 2)):
            Amount charged to the student.

        valid_from, valid_until (Date):
            Period of travel covered by the fee.
    """

    __tablename__ = "semester_fees"
    __table_args__ = (UniqueConstraint("route_id", "academic_year", "semester"),)

    id = Column(Integer, primary_key=True)
    route_id = Column(
        Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False
    )
    academic_year = Column(String(16), nullable=False)
    semester = Column(Integer, nullable=False)
    semester_fee = Column(Numeric(10, 2), nullable=False)
    valid_from = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class SemesterPayment(ORMbase):
    """
    A student's payment of a semester fee through the gateway.

    At most one confirmed payment exists per student and semester. A pending
    payment is replaced when the student starts a new checkout.
    """

    __tablename__ = "semester_payments"

    id = Column(Integer, primary_key=True)
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    route_id = Column(
        Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False
    )
    semester_fee_id = Column(
        Integer, ForeignKey("semester_fees.id", ondelete="SET NULL")
    )
    stop_name = Column(String(256), nullable=False)
    academic_year = Column(String(16), nullable=False)
    semester = Column(Integer, nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(Integer, nullable=False)
    payment_status = Column(Integer, nullable=False, default=PaymentStatus.PENDING)
    receipt_number = Column(String(64), unique=True)
    razorpay_order_id = Column(String(64), unique=True)
    razorpay_payment_id = Column(String(64))
    failure_reason = Column(TEXT)
    valid_from = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False)
    paid_on = Column(DateTime(timezone=True))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())
