from typing import Any, Dict
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm.session import Session

from portal.src.config import Config
from portal.src.db import PushSubscription, Store
from portal.src import exceptions, validators, getters
from portal.src.loggers import logEvent
from portal.src.functions import fuseExceptionResponses
from portal.src.urls import URL_PUSH_SUBSCRIBE

route_public = APIRouter()

UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


## Output Schema
class SubscribeSchema(BaseModel):
    success: bool
    message: str
    subscriptionId: int


class UnsubscribeSchema(BaseModel):
    success: bool
    message: str
    updatedCount: int


## Input Forms
class SubscribeForm(BaseModel):
    subscription: Dict[str, Any] | None = Field(default=None)
    userId: str | None = Field(default=None, max_length=64)


## Query Parameters
class UnsubscribeParams(BaseModel):
    userId: str | None = Field(Query(default=None, max_length=64))
    endpoint: str | None = Field(Query(default=None))


## Function
def upsertSubscription(session: Session, values: dict) -> int:
    """
    Insert the subscription, or overwrite the one with the same user and endpoint.

    Returns:
        int: Id of the stored subscription.
    """
    insert = UPSERT_DIALECTS[session.get_bind().dialect.name]
    statement = insert(PushSubscription).values(**values)
    statement = statement.on_conflict_do_update(
        index_elements=["user_id", "endpoint"],
        set_={
            "p256dh_key": statement.excluded.p256dh_key,
            "auth_key": statement.excluded.auth_key,
            "user_agent": statement.excluded.user_agent,
            "is_active": statement.excluded.is_active,
            "updated_on": func.now(),
        },
    ).returning(PushSubscription.id)
    return session.execute(statement).scalar_one()


## API endpoints [Public]
@route_public.post(
    URL_PUSH_SUBSCRIBE,
    tags=["Push"],
    response_model=SubscribeSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.MissingParameter("Subscription and user ID are required"),
            exceptions.InvalidSubscription(),
        ]
    ),
    description="""
    Saves the browser push subscription of a user.
    The subscription must carry an endpoint and the `p256dh` and `auth` keys.
    A subscription is identified by user and endpoint, saving it again overwrites the keys
    and reactivates it.
    """,
)
async def subscribe(
    fParam: SubscribeForm,
    request: Request,
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues(
        "Subscription and user ID are required", fParam.subscription, fParam.userId
    )
    endpoint, p256dh, auth = validators.pushSubscription(fParam.subscription)
    session = store.sessionMaker()
    try:
        subscriptionId = upsertSubscription(
            session,
            {
                "user_id": fParam.userId,
                "endpoint": endpoint,
                "p256dh_key": p256dh,
                "auth_key": auth,
                "user_agent": request.headers.get("user-agent"),
                "is_active": True,
            },
        )
        session.commit()

        logEvent(
            config,
            request_info,
            {"subscription_id": subscriptionId, "endpoint": endpoint},
            {"_user_id": fParam.userId},
        )
        return {
            "success": True,
            "message": "Subscription saved successfully",
            "subscriptionId": subscriptionId,
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_public.delete(
    URL_PUSH_SUBSCRIBE,
    tags=["Push"],
    response_model=UnsubscribeSchema,
    responses=fuseExceptionResponses(
        [exceptions.MissingParameter("User ID is required")]
    ),
    description="""
    Deactivates the push subscriptions of a user, or only the one with the given endpoint.
    The subscriptions are kept and may be reactivated by subscribing again.
    """,
)
async def unsubscribe(
    qParam: UnsubscribeParams = Depends(),
    store: Store = Depends(getters.store),
    config: Config = Depends(getters.config),
    request_info=Depends(getters.requestInfo),
):
    validators.requireValues("User ID is required", qParam.userId)
    session = store.sessionMaker()
    try:
        query = session.query(PushSubscription).filter(
            PushSubscription.user_id == qParam.userId,
            PushSubscription.is_active == True,
        )
        if qParam.endpoint:
            query = query.filter(PushSubscription.endpoint == qParam.endpoint)
        subscriptions = query.all()
        for subscription in subscriptions:
            subscription.is_active = False
        if subscriptions:
            session.commit()
            logEvent(
                config,
                request_info,
                {"subscription_ids": [s.id for s in subscriptions]},
                {"_user_id": qParam.userId},
            )
        return {
            "success": True,
            "message": "Unsubscribed successfully",
            "updatedCount": len(subscriptions),
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
