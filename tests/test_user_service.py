from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from boardhub.db.models import (
    KanbanBoard,
    Notification,
    NotificationStatus,
    Project,
    ProjectMember,
    ProjectStatus,
    RefreshToken,
    Task,
    User,
    UserRole,
)
from boardhub.db.repositories import RefreshTokenRepository, Repositories, UserRoleRepository
from boardhub.db.session import session_scope
from boardhub.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from boardhub.services.board_service import create_board
from boardhub.services.project_service import create_project
from boardhub.services.task_service import create_task
from boardhub.services.user_service import (
    change_password,
    create_user,
    get_user_profile,
    hard_delete_user,
    soft_delete_user,
    update_user_profile,
)
from boardhub.utils.datetime_utils import utcnow
from boardhub.utils.security import verify_password


async def _count(session_factory, model, *criteria) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*criteria))


async def _seed_user_footprint(session_factory, world) -> dict[str, int]:
    """Tasks around ``world.member``, a project they own and a refresh token."""
    async with session_scope(session_factory) as session:
        common = {"project_id": world.project_id, "board_id": world.board_id, "column_id": world.column_ids[0]}
        created = await create_task(session, title="By member", actor_id=world.member, **common)
        assigned = await create_task(
            session, title="For member", actor_id=world.owner, assignee_id=world.member, **common
        )
        unrelated = await create_task(session, title="Unrelated", actor_id=world.owner, **common)

        side = await create_project(session, owner_id=world.member, name="Side")
        await create_board(session, side.id, "Side board", world.member)

        session.add(RefreshToken(user_id=world.member, token_hash="abc", expires_at=utcnow() + timedelta(days=7)))
    return {"created": created.id, "assigned": assigned.id, "unrelated": unrelated.id, "side": side.id}


@pytest.mark.asyncio
async def test_create_user_grants_default_role(session_factory) -> None:
    async with session_scope(session_factory) as session:
        user = await create_user(session, username="dana", email="Dana@example.com", password="long-enough")

    assert user.is_active is True
    assert verify_password("long-enough", user.password_hash)
    async with session_factory() as session:
        assert await Repositories(session).user_roles.list_roles(user.id) == ["user"]


@pytest.mark.asyncio
async def test_create_user_rejects_duplicates_and_short_passwords(session_factory) -> None:
    async with session_scope(session_factory) as session:
        await create_user(session, username="dana", email="dana@example.com", password="long-enough")

    async with session_factory() as session:
        with pytest.raises(ConflictError):
            await create_user(session, username="dana", email="other@example.com", password="long-enough")
        with pytest.raises(ConflictError):
            await create_user(session, username="dana2", email="DANA@example.com", password="long-enough")
        with pytest.raises(ValidationError):
            await create_user(session, username="eve", email="eve@example.com", password="short")


@pytest.mark.asyncio
async def test_update_profile_rejects_taken_email(session_factory, world) -> None:
    async with session_factory() as session:
        with pytest.raises(ValidationError, match="Email is already taken"):
            await update_user_profile(session, world.member, {"email": "admin@example.com"})
        with pytest.raises(ValidationError):
            await update_user_profile(session, world.member, {"username": "admin"})
        with pytest.raises(ValidationError):
            await update_user_profile(session, world.member, {"password_hash": "x"})

    async with session_scope(session_factory) as session:
        user = await update_user_profile(
            session, world.member, {"full_name": "Mia Member", "email": "MEMBER@example.com"}
        )

    assert user.full_name == "Mia Member"
    assert user.email == "MEMBER@example.com"


@pytest.mark.asyncio
async def test_change_password(session_factory, world) -> None:
    async with session_factory() as session:
        with pytest.raises(ValidationError, match="Current password is incorrect"):
            await change_password(session, world.member, "wrong", "new-password")
        with pytest.raises(ValidationError):
            await change_password(session, world.member, "correct-horse", "tiny")

    async with session_scope(session_factory) as session:
        result = await change_password(session, world.member, "correct-horse", "new-password")

    assert result == {"message": "Password changed successfully"}
    async with session_factory() as session:
        user = await get_user_profile(session, world.member)
    assert verify_password("new-password", user.password_hash)


@pytest.mark.asyncio
async def test_users_cannot_delete_themselves(session_factory, world) -> None:
    async with session_factory() as session:
        with pytest.raises(ForbiddenError):
            await soft_delete_user(session, world.owner, world.owner)
        with pytest.raises(ForbiddenError):
            await hard_delete_user(session, world.owner, world.owner)
        with pytest.raises(NotFoundError):
            await soft_delete_user(session, 4040, world.owner)


@pytest.mark.asyncio
async def test_soft_delete_user_cascade(session_factory, world) -> None:
    ids = await _seed_user_footprint(session_factory, world)

    async with session_scope(session_factory) as session:
        result = await soft_delete_user(session, world.member, world.owner)

    assert result == {"message": "User and all related data soft deleted successfully"}
    assert await _count(session_factory, User, User.id == world.member, User.deleted_at.is_not(None)) == 1
    assert await _count(session_factory, Project, Project.id == ids["side"], Project.status == ProjectStatus.DELETED) == 1
    assert (
        await _count(session_factory, ProjectMember, ProjectMember.user_id == world.member, ProjectMember.is_active)
        == 0
    )
    assert await _count(session_factory, Task, Task.deleted_at.is_not(None)) == 2
    assert await _count(session_factory, Task, Task.id == ids["unrelated"], Task.deleted_at.is_(None)) == 1
    assert (
        await _count(
            session_factory,
            Notification,
            Notification.user_id == world.member,
            Notification.status == NotificationStatus.UNREAD,
        )
        == 0
    )
    assert await _count(session_factory, RefreshToken, RefreshToken.is_revoked.is_(True)) == 1
    # the side project's board is only reached by a project-level cascade
    assert await _count(session_factory, KanbanBoard, KanbanBoard.project_id == ids["side"], KanbanBoard.is_active) == 1

    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await get_user_profile(session, world.member)


@pytest.mark.asyncio
async def test_hard_delete_user_cascade(session_factory, world) -> None:
    ids = await _seed_user_footprint(session_factory, world)

    async with session_scope(session_factory) as session:
        result = await hard_delete_user(session, world.member, world.owner)

    assert result == {"message": "User and all related data hard deleted successfully"}
    assert await _count(session_factory, User, User.id == world.member) == 0
    assert await _count(session_factory, Project, Project.id == ids["side"]) == 0
    assert await _count(session_factory, KanbanBoard, KanbanBoard.project_id == ids["side"]) == 0
    assert await _count(session_factory, ProjectMember, ProjectMember.user_id == world.member) == 0
    assert await _count(session_factory, Task) == 1
    assert await _count(session_factory, Notification, Notification.user_id == world.member) == 0
    assert await _count(session_factory, RefreshToken) == 0
    assert await _count(session_factory, UserRole, UserRole.user_id == world.member) == 0
    # other users and the shared project survive
    assert await _count(session_factory, Project, Project.id == world.project_id) == 1


@pytest.mark.asyncio
async def test_soft_delete_user_rolls_back_on_failure(session_factory, world, monkeypatch) -> None:
    ids = await _seed_user_footprint(session_factory, world)
    unread = Notification.user_id == world.member, Notification.status == NotificationStatus.UNREAD
    unread_before = await _count(session_factory, Notification, *unread)

    async def failing_revoke(self, user_id):
        raise RuntimeError("token revoke failed")

    monkeypatch.setattr(RefreshTokenRepository, "revoke_for_user", failing_revoke)

    async with session_scope(session_factory) as session:
        with pytest.raises(RuntimeError):
            await soft_delete_user(session, world.member, world.owner)

    assert await _count(session_factory, User, User.id == world.member, User.deleted_at.is_(None)) == 1
    assert await _count(session_factory, Project, Project.id == ids["side"], Project.status == ProjectStatus.ACTIVE) == 1
    assert (
        await _count(session_factory, ProjectMember, ProjectMember.user_id == world.member, ProjectMember.is_active)
        == 2
    )
    assert await _count(session_factory, Task, Task.deleted_at.is_not(None)) == 0
    assert await _count(session_factory, Notification, *unread) == unread_before
    assert await _count(session_factory, RefreshToken, RefreshToken.is_revoked.is_(False)) == 1


@pytest.mark.asyncio
async def test_hard_delete_user_rolls_back_on_failure(session_factory, world, monkeypatch) -> None:
    ids = await _seed_user_footprint(session_factory, world)
    notifications = await _count(session_factory, Notification)

    async def failing_role_delete(self, user_id):
        raise RuntimeError("role delete failed")

    monkeypatch.setattr(UserRoleRepository, "delete_for_user", failing_role_delete)

    async with session_scope(session_factory) as session:
        with pytest.raises(RuntimeError):
            await hard_delete_user(session, world.member, world.owner)

    assert await _count(session_factory, User) == 5
    assert await _count(session_factory, Project, Project.id == ids["side"]) == 1
    assert await _count(session_factory, KanbanBoard, KanbanBoard.project_id == ids["side"]) == 1
    assert await _count(session_factory, ProjectMember, ProjectMember.user_id == world.member) == 2
    assert await _count(session_factory, Task) == 3
    assert await _count(session_factory, Notification) == notifications
    assert await _count(session_factory, RefreshToken) == 1
