"""Notification router for persisted notifications, history and subscribers."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Response
from fastapi.responses import JSONResponse

from ..core.dependencies import AdminAuth, Core, OperatorAuth, RequiredAuth
from ..core.exceptions import NotFoundError
from ..schemas.booking import Actor
from ..schemas.common import PROBLEM_RESPONSES, PageInfo
from ..schemas.notification import (
    AvailabilityChange,
    MarkAllReadResponse,
    NotificationEvent,
    NotificationPage,
    NotificationSubscriber,
    StoredNotification,
    UnreadCountResponse,
)
from ..services.container import ReservationCore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


def _recipient(actor: Actor, core: ReservationCore) -> str:
    # Admins share the default admin subscriber's inbox
    if actor.is_admin:
        return core.config.default_admin_subscriber_id
    return actor.user_id


@router.get("", response_model=NotificationPage)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """The caller's notifications plus broadcasts, newest first."""
    items, total = await core.notification_store.list_for_user(
        _recipient(actor, core), page=page, limit=limit, unread_only=unread_only
    )
    response_data = NotificationPage(items=items, pagination=PageInfo.of(page, limit, total))
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Polled by clients to badge the notification bell."""
    count = await core.notification_store.unread_count(_recipient(actor, core))
    return JSONResponse(
        status_code=200,
        content=UnreadCountResponse(unread_count=count).model_dump()
    )


@router.get("/inbox", response_model=list[NotificationEvent])
async def inbox(
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Events delivered in-process since startup, newest first."""
    events = core.inbox.inbox(_recipient(actor, core))
    return JSONResponse(
        status_code=200,
        content=[event.model_dump(mode="json") for event in events]
    )


@router.patch("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    updated = await core.notification_store.mark_all_read(_recipient(actor, core))
    logger.info("Notifications marked read", extra={"actor_id": actor.user_id, "updated": updated})
    return JSONResponse(
        status_code=200,
        content=MarkAllReadResponse(updated=updated).model_dump()
    )


@router.patch("/{notification_id}/read", response_model=StoredNotification, responses=PROBLEM_RESPONSES)
async def mark_read(
    notification_id: str,
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    recipient = _recipient(actor, core)
    notification = await core.notification_store.mark_read(notification_id, recipient)
    core.inbox.mark_read(recipient, notification_id)
    return JSONResponse(
        status_code=200,
        content=notification.model_dump(mode="json")
    )


@router.delete("/{notification_id}", status_code=204, responses=PROBLEM_RESPONSES)
async def delete_notification(
    notification_id: str,
    actor: Actor = RequiredAuth,
    core: ReservationCore = Core,
) -> Response:
    """Delete one of the caller's own notifications; broadcasts cannot be deleted."""
    await core.notification_store.delete(notification_id, _recipient(actor, core))
    return Response(status_code=204)


@router.get("/history", response_model=list[NotificationEvent])
async def history(
    limit: Optional[int] = Query(None, ge=1),
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Recently routed events, newest first."""
    events = core.notifications.history(limit)
    return JSONResponse(
        status_code=200,
        content=[event.model_dump(mode="json") for event in events]
    )


@router.post("/history/{event_id}/read", response_model=NotificationEvent, responses=PROBLEM_RESPONSES)
async def mark_history_read(
    event_id: str,
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    if not core.notifications.mark_read(event_id):
        raise NotFoundError("Notification event", event_id)
    event = next(event for event in core.notifications.history() if event.id == event_id)
    return JSONResponse(
        status_code=200,
        content=event.model_dump(mode="json")
    )


@router.delete("/history", status_code=204)
async def clear_history(
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> Response:
    core.notifications.clear_history()
    return Response(status_code=204)


@router.post("/availability", response_model=Optional[NotificationEvent], responses=PROBLEM_RESPONSES)
async def report_availability_change(
    change: AvailabilityChange,
    actor: Actor = OperatorAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """
    Classify and route one availability change.

    Returns the routed event, or null when nothing changed.
    """
    event = core.notifications.notify_availability_change(change)
    logger.info(
        "Availability change reported",
        extra={
            "resource_id": change.resource_id,
            "notification_type": event.type.value if event else None,
            "actor_id": actor.user_id,
        }
    )
    return JSONResponse(
        status_code=200,
        content=event.model_dump(mode="json") if event else None
    )


@router.post("/availability/bulk", response_model=list[NotificationEvent], responses=PROBLEM_RESPONSES)
async def report_bulk_availability_changes(
    changes: list[AvailabilityChange],
    _: Actor = OperatorAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    events = core.notifications.notify_bulk_changes(changes)
    return JSONResponse(
        status_code=200,
        content=[event.model_dump(mode="json") for event in events]
    )


@router.get("/subscribers", response_model=list[NotificationSubscriber])
async def list_subscribers(
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=[subscriber.model_dump(mode="json") for subscriber in core.registry.all()]
    )


@router.get("/subscribers/{subscriber_id}", response_model=NotificationSubscriber, responses=PROBLEM_RESPONSES)
async def get_subscriber(
    subscriber_id: str,
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=core.registry.get(subscriber_id).model_dump(mode="json")
    )


@router.put("/subscribers/{subscriber_id}", response_model=NotificationSubscriber, responses=PROBLEM_RESPONSES)
async def subscribe(
    subscriber_id: str,
    subscriber: NotificationSubscriber,
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> JSONResponse:
    """Create or replace a subscriber; the path ID wins over the body."""
    saved = await core.registry.subscribe(subscriber.model_copy(update={"id": subscriber_id}))
    return JSONResponse(
        status_code=200,
        content=saved.model_dump(mode="json")
    )


@router.delete("/subscribers/{subscriber_id}", status_code=204, responses=PROBLEM_RESPONSES)
async def unsubscribe(
    subscriber_id: str,
    _: Actor = AdminAuth,
    core: ReservationCore = Core,
) -> Response:
    await core.registry.unsubscribe(subscriber_id)
    return Response(status_code=204)
