from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from boardhub.db.models import Notification, NotificationKind, NotificationStatus
from boardhub.db.repositories import Repositories
from boardhub.errors import NotFoundError
from boardhub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

_MESSAGES = {
    NotificationKind.MEMBER_ADDED: "You were added to a project",
    NotificationKind.MEMBER_REMOVED: "You were removed from a project",
    NotificationKind.TASK_ASSIGNED: "A task was assigned to you",
    NotificationKind.TASK_UNASSIGNED: "A task was unassigned from you",
    NotificationKind.TASK_COMMENTED: "A task you follow has a new comment",
}


class NotificationSink:
    """Persists notifications as unread rows for their recipient."""

    async def notify(
        self,
        session: AsyncSession,
        kind: NotificationKind,
        recipient_id: int,
        *,
        actor_id: int | None,
        project_id: int | None = None,
        task_id: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Notification:
        body = {"kind": str(kind), "actor_id": actor_id, "message": _MESSAGES.get(kind, str(kind))}
        body.update(payload or {})
        async with session.begin_nested():
            return await Repositories(session).notifications.add(
                Notification(
                    user_id=recipient_id,
                    project_id=project_id,
                    task_id=task_id,
                    actor_id=actor_id,
                    type=str(kind),
                    status=NotificationStatus.UNREAD,
                    payload=body,
                )
            )


default_sink = NotificationSink()


async def emit(
    sink: NotificationSink | None,
    session: AsyncSession,
    kind: NotificationKind,
    recipient_id: int,
    *,
    actor_id: int | None,
    project_id: int | None = None,
    task_id: int | None = None,
    payload: dict[str, Any] | None = None,
) -> None:
    """Best-effort delivery: a failing sink never undoes the caller's change."""
    try:
        await (sink or default_sink).notify(
            session,
            kind,
            recipient_id,
            actor_id=actor_id,
            project_id=project_id,
            task_id=task_id,
            payload=payload,
        )
    except Exception:
        logger.exception(
            "Failed to emit notification",
            extra={"kind": str(kind), "recipient_id": recipient_id, "project_id": project_id, "task_id": task_id},
        )


async def list_notifications(session: AsyncSession, user_id: int, *, unread_only: bool = False) -> list[Notification]:
    return await Repositories(session).notifications.list_for_user(user_id, unread_only=unread_only)


async def mark_notification(session: AsyncSession, notification_id: int, user_id: int, *, is_read: bool) -> Notification:
    notification = await Repositories(session).notifications.get_for_user(notification_id, user_id)
    if notification is None or notification.status == NotificationStatus.ARCHIVED:
        raise NotFoundError("Notification not found")

    if is_read:
        notification.status = NotificationStatus.READ
        if notification.read_at is None:
            notification.read_at = utcnow()
    else:
        notification.status = NotificationStatus.UNREAD
        notification.read_at = None
    await session.flush()
    return notification
