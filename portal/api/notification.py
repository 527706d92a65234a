from datetime import datetime
from typing import Dict, List, Optional, Set
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.session import Session
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from portal.api.bearer import bearer_admin
from portal.src.config import Config
from portal.src.db import Notification, NotificationRead, Store
from portal.src import exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.enums import (
    NotificationCategory,
    NotificationType,
    TargetAudience,
)
from portal.src.constants import NOTIFICATION_PAGE_LIMIT, TMZ_PRIMARY
from portal.src.functions import enumStr, fuseExceptionResponses
from portal.src.urls import (
    URL_NOTIFICATION,
    URL_NOTIFICATION_READ,
    URL_NOTIFICATION_READ_ALL,
)

route_public = APIRouter()
route_admin = APIRouter()

# Audiences visible to every portal user
OPEN_AUDIENCES = (TargetAudience.ALL, TargetAudience.STUDENTS)


## Output Schema
class NotificationSchema(BaseModel):
    id: int
    title: str
    message: str
    type: int
    category: int
    target_audience: int
    specific_users: Optional[List[str]]
    is_active: bool
    expires_at: Optional[datetime]
    enable_push_notification: bool
    enable_email_notification: bool
    updated_on: Optional[datetime]
    created_on: datetime


class UserNotificationSchema(NotificationSchema):
    read_by: List[str]
    read: bool


class PaginationSchema(BaseModel):
    limit: int
    offset: int
    total: int
    hasMore: bool


class NotificationListSchema(BaseModel):
    success: bool
    notifications: List[UserNotificationSchema]
    pagination: PaginationSchema
    unreadCount: int


class ReadSchema(BaseModel):
    success: bool
    message: str


class ReadAllSchema(BaseModel):
    success: bool
    message: str
    updatedCount: int


## Input Forms
class CreateForm(BaseModel):
    title: str | None = Field(default=None, max_length=256)
    message: str | None = Field(default=None, max_length=8192)
    type: NotificationType = Field(
        description=enumStr(NotificationType), default=NotificationType.INFO
    )
    category: NotificationCategory = Field(
        description=enumStr(NotificationCategory), default=NotificationCategory.SYSTEM
    )
    target_audience: TargetAudience = Field(
        description=enumStr(TargetAudience), default=TargetAudience.ALL
    )
    specific_users: List[str] | None = Field(default=None)
    expires_at: datetime | None = Field(default=None)
    enable_push_notification: bool = Field(default=False)
    enable_email_notification: bool = Field(default=False)


class ReadForm(BaseModel):
    userId: str | None = Field(default=None, max_length=64)


## Query Parameters
class QueryParams(BaseModel):
    userId: str | None = Field(Query(default=None, max_length=64))
    category: NotificationCategory | None = Field(
        Query(default=None, description=enumStr(NotificationCategory))
    )
    since: datetime | None = Field(Query(default=None))
    unreadOnly: bool = Field(Query(default=False))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=NOTIFICATION_PAGE_LIMIT, gt=0, le=100))


## Function
def searchVisible(
    session: Session,
    userId: Optional[str],
    now: datetime,
    category: Optional[int] = None,
    since: Optional[datetime] = None,
) -> List[Notification]:
    """
    Fetch the notifications a user may see, newest first.

    Active, unexpired notifications addressed to everyone or to students are
    visible, as are those listing the user in `specific_users`.
    """
    query = session.query(Notification).filter(
        Notification.is_active == True,
        or_(Notification.expires_at == None, Notification.expires_at > now),
    )
    if category is not None:
        query = query.filter(Notification.category == category)
    if since is not None:
        query = query.filter(Notification.created_on >= since)
    query = query.order_by(Notification.created_on.desc(), Notification.id.desc())

    visible = []
    for notification in query.all():
        if notification.target_audience in OPEN_AUDIENCES:
            visible.append(notification)
        elif userId is not None and userId in (notification.specific_users or []):
            visible.append(notification)
    return visible


def readersOf(session: Session, notificationIds: List[int]) -> Dict[int, List[str]]:
    """Map notification id to the ids of the users who read it."""
    readers: Dict[int, List[str]] = {id: [] for id in notificationIds}
    if not notificationIds:
        return readers
    reads = (
        session.query(NotificationRead)
        .filter(NotificationRead.notification_id.in_(notificationIds))
        .order_by(NotificationRead.read_on.asc(), NotificationRead.id.asc())
        .all()
    )
    for read in reads:
        readers[read.notification_id].append(read.user_id)
    return readers


def readBy(session: Session, userId: str) -> Set[int]:
    rows = (
        session.query(NotificationRead.notification_id)
        .filter(NotificationRead.user_id == userId)
        .all()
    )
    return {row.notification_id for row in rows}


def markRead(session: Session, notificationId: int, userId: str) -> bool:
    """
    Record that the user read the notification.

    Returns:
        bool: True if a read row was written, False if one already existed,
        including one written concurrently by another request.
    """
    session.add(NotificationRead(notification_id=notificationId, user_id=userId))
    try:
        session.commit()
        return True
    except IntegrityError:
        session.rollback()
        return False


## API endpoints [Public]
@route_public.get(
    URL_NOTIFICATION,
    tags=["Notification"],
    response_model=NotificationListSchema,
    description="""
    Lists the notifications visible to a user, newest first.
    Each notification carries the ids of its readers and whether the user read it.
    Supports filtering by category and creation time, unread only listing and pagination.
    """,
)
async def fetch_notifications(
    qParam: QueryParams = Depends(),
    store: Store = Depends(getters.store),
):
    session = store.sessionMaker()
    try:
        notifications = searchVisible(
            session,
            qParam.userId,
            datetime.now(TMZ_PRIMARY),
            qParam.category,
            qParam.since,
        )
        userReads = readBy(session, qParam.userId) if qParam.userId else set()
        unreadCount = sum(1 for n in notifications if n.id not in userReads)
        if qParam.unreadOnly:
            notifications = [n for n in notifications if n.id not in userReads]

        total = len(notifications)
        page = notifications[qParam.offset : qParam.offset + qParam.limit]
        readers = readersOf(session, [notification.id for notification in page])
        notificationList = []
        for notification in page:
            notificationData = jsonable_encoder(notification)
            notificationData["read_by"] = readers[notification.id]
            notificationData["read"] = notification.id in userReads
            notificationList.append(notificationData)
        return {
            "success": True,
            "notifications": notificationList,
            "pagination": {
                "limit": qParam.limit,
                "offset": qParam.offset,
                "total": total,
                "hasMore": qParam.offset + len(page) < total,
            },
            "unreadCount": unreadCount,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.put(
    URL_NOTIFICATION_READ_ALL,
    tags=["Notification"],
    response_model=ReadAllSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("User ID is required"),
            exceptions.StoreError(),
        ]
    ),
    description="""
    Marks every visible notification the user has not read yet as read.
    Each notification is marked in its own transaction.
    If some of them fail, the others stay marked and the failing ids are reported with a 500 status.
    """,
)
async def mark_all_read(
    fParam: ReadForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues("User ID is required", fParam.userId)
    session = store.sessionMaker()
    try:
        now = datetime.now(TMZ_PRIMARY)
        notifications = searchVisible(session, fParam.userId, now)
        userReads = readBy(session, fParam.userId)
        unreadIds = [n.id for n in notifications if n.id not in userReads]
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

    updatedIds, failedIds = [], []
    for notificationId in unreadIds:
        itemSession = store.sessionMaker()
        try:
            if markRead(itemSession, notificationId, fParam.userId):
                updatedIds.append(notificationId)
        except SQLAlchemyError as e:
            itemSession.rollback()
            exceptions.logException(e)
            failedIds.append(notificationId)
        finally:
            itemSession.close()

    if updatedIds:
        logEvent(
            config,
            request_info,
            {"notification_ids": updatedIds, "failed_ids": failedIds},
            {"_user_id": fParam.userId},
        )
    if failedIds:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": f"Failed to mark {len(failedIds)} notification(s) as read",
                "details": failedIds,
                "updatedCount": len(updatedIds),
            },
            headers={"X-Error": "PartialFailure"},
        )
    return {
        "success": True,
        "message": "All notifications marked as read",
        "updatedCount": len(updatedIds),
    }


@route_public.put(
    URL_NOTIFICATION_READ,
    tags=["Notification"],
    response_model=ReadSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("User ID is required"),
            exceptions.UnknownValue(Notification),
        ]
    ),
    description="""
    Marks a notification as read by a user.
    Marking it again is harmless, the user is recorded at most once per notification.
    """,
)
async def mark_read(
    notificationId: int,
    fParam: ReadForm,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues("User ID is required", fParam.userId)
    session = store.sessionMaker()
    try:
        notification = (
            session.query(Notification.id)
            .filter(Notification.id == notificationId)
            .first()
        )
        if notification is None:
            raise exceptions.UnknownValue(Notification)
        existing = (
            session.query(NotificationRead.id)
            .filter(
                NotificationRead.notification_id == notificationId,
                NotificationRead.user_id == fParam.userId,
            )
            .first()
        )
        if existing is not None:
            return {"success": True, "message": "Notification already marked as read"}
        if not markRead(session, notificationId, fParam.userId):
            return {"success": True, "message": "Notification already marked as read"}

        logEvent(
            config,
            request_info,
            {"notification_id": notificationId},
            {"_user_id": fParam.userId},
        )
        return {"success": True, "message": "Notification marked as read"}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Admin]
@route_admin.post(
    URL_NOTIFICATION,
    tags=["Notification"],
    response_model=NotificationSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidAdminKey(),
            exceptions.MissingParameter("Title and message are required"),
        ]
    ),
    description="""
    Publishes a notification to an audience, optionally also to specific users.
    Logs the notification creation activity.
    """,
)
async def create_notification(
    fParam: CreateForm,
    bearer=Depends(bearer_admin),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.adminKey(config, bearer.credentials if bearer else None)
    validators.requireValues(
        "Title and message are required", fParam.title, fParam.message
    )
    session = store.sessionMaker()
    try:
        notification = Notification(
            title=fParam.title.strip(),
            message=fParam.message.strip(),
            type=fParam.type,
            category=fParam.category,
            target_audience=fParam.target_audience,
            specific_users=fParam.specific_users,
            expires_at=fParam.expires_at,
            enable_push_notification=fParam.enable_push_notification,
            enable_email_notification=fParam.enable_email_notification,
        )
        session.add(notification)
        session.commit()
        session.refresh(notification)

        notificationData = jsonable_encoder(notification)
        logEvent(config, request_info, notificationData)
        return notificationData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
