from __future__ import annotations

import logging

import pytest

from boardhub.db.models import NotificationKind, NotificationStatus
from boardhub.db.session import session_scope
from boardhub.errors import NotFoundError
from boardhub.services.notification_service import (
    default_sink,
    emit,
    list_notifications,
    mark_notification,
)
from boardhub.services.project_service import add_project_member, list_members


@pytest.mark.asyncio
async def test_sink_persists_unread_notification(session_factory, world) -> None:
    async with session_scope(session_factory) as session:
        notification = await default_sink.notify(
            session,
            NotificationKind.TASK_ASSIGNED,
            world.outsider,
            actor_id=world.owner,
            project_id=world.project_id,
            task_id=12,
            payload={"task_title": "Deploy"},
        )

    assert notification.status == NotificationStatus.UNREAD
    assert notification.payload["task_title"] == "Deploy"
    assert notification.payload["kind"] == "task_assigned"


@pytest.mark.asyncio
async def test_list_and_mark_notifications(session_factory, world) -> None:
    async with session_factory() as session:
        notifications = await list_notifications(session, world.member)
    assert [n.type for n in notifications] == [NotificationKind.MEMBER_ADDED]
    notification_id = notifications[0].id

    async with session_scope(session_factory) as session:
        read = await mark_notification(session, notification_id, world.member, is_read=True)
        assert read.read_at is not None

    async with session_factory() as session:
        assert await list_notifications(session, world.member, unread_only=True) == []
        with pytest.raises(NotFoundError):
            await mark_notification(session, notification_id, world.viewer, is_read=True)

    async with session_scope(session_factory) as session:
        unread = await mark_notification(session, notification_id, world.member, is_read=False)
        assert unread.status == NotificationStatus.UNREAD
        assert unread.read_at is None


@pytest.mark.asyncio
async def test_emit_swallows_and_logs_sink_failures(session_factory, world, failing_sink, caplog) -> None:
    async with session_factory() as session:
        with caplog.at_level(logging.ERROR, logger="boardhub.services.notification_service"):
            await emit(failing_sink, session, NotificationKind.MEMBER_ADDED, world.outsider, actor_id=world.owner)

    assert failing_sink.calls == 1
    assert "Failed to emit notification" in caplog.text


@pytest.mark.asyncio
async def test_member_is_added_even_if_sink_fails(session_factory, world, failing_sink) -> None:
    async with session_scope(session_factory) as session:
        await add_project_member(session, world.project_id, world.outsider, "member", world.owner, sink=failing_sink)

    async with session_factory() as session:
        members = await list_members(session, world.project_id, world.owner)

    assert world.outsider in {m["user_id"] for m in members}
    assert failing_sink.calls == 1
