"""User profiles, passwords and the user-level delete cascades."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from boardhub.db.models import User
from boardhub.db.repositories import Repositories
from boardhub.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from boardhub.services.project_service import purge_project_rows
from boardhub.utils.datetime_utils import utcnow
from boardhub.utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"
_PROFILE_FIELDS = frozenset({"username", "email", "full_name", "avatar"})


def _check_password(password: str, min_length: int) -> None:
    if len(password or "") < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters long")


async def create_user(
    session: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    full_name: str | None = None,
    min_password_length: int = 8,
) -> User:
    repos = Repositories(session)
    username = (username or "").strip()
    email = (email or "").strip()
    if not username or not email:
        raise ValidationError("Username and email are required")
    _check_password(password, min_password_length)

    if await repos.users.get_by_username(username) is not None:
        raise ConflictError("Username is already taken")
    if await repos.users.get_by_email(email) is not None:
        raise ConflictError("Email is already taken")

    async with session.begin_nested():
        user = await repos.users.add(
            User(username=username, email=email, password_hash=hash_password(password), full_name=full_name)
        )
        await repos.user_roles.grant(user.id, DEFAULT_ROLE)

    logger.info("User created", extra={"user_id": user.id})
    return user


async def get_user_profile(session: AsyncSession, user_id: int) -> User:
    user = await Repositories(session).users.get_active(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def update_user_profile(session: AsyncSession, user_id: int, changes: Mapping[str, Any]) -> User:
    repos = Repositories(session)
    user = await get_user_profile(session, user_id)

    unknown = set(changes) - _PROFILE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

    for field in ("username", "email"):
        if field in changes and not (changes[field] or "").strip():
            raise ValidationError(f"{field} cannot be empty")

    email = changes.get("email")
    if email and email.lower() != user.email.lower():
        if await repos.users.get_by_email(email) is not None:
            raise ValidationError("Email is already taken")
    username = changes.get("username")
    if username and username != user.username:
        if await repos.users.get_by_username(username) is not None:
            raise ValidationError("Username is already taken")

    for field, value in changes.items():
        setattr(user, field, value.strip() if field in ("username", "email") else value)
    await session.flush()
    return user


async def change_password(
    session: AsyncSession,
    user_id: int,
    current_password: str,
    new_password: str,
    *,
    min_length: int = 8,
) -> dict[str, str]:
    user = await get_user_profile(session, user_id)
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    _check_password(new_password, min_length)

    user.password_hash = hash_password(new_password)
    await session.flush()
    logger.info("Password changed", extra={"user_id": user.id})
    return {"message": "Password changed successfully"}


async def _get_deletable_user(session: AsyncSession, user_id: int, acting_user_id: int) -> User:
    if user_id == acting_user_id:
        raise ForbiddenError("Users cannot delete themselves")
    user = await Repositories(session).users.get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def soft_delete_user(session: AsyncSession, user_id: int, acting_user_id: int) -> dict[str, str]:
    """Deactivate a user and everything they own or take part in.

    Owned projects only get their status flipped; their boards, members and
    tasks are left for a later project-level cascade.
    """
    await _get_deletable_user(session, user_id, acting_user_id)
    repos = Repositories(session)
    now = utcnow()

    async with session.begin_nested():
        counts = {
            "users": await repos.users.soft_delete(user_id, now),
            "projects": await repos.projects.mark_deleted_owned_by(user_id),
            "members": await repos.members.deactivate_for_user(user_id, now),
            "tasks": await repos.tasks.soft_delete_for_user(user_id, now),
            "notifications": await repos.notifications.archive_unread_for_user(user_id, now),
            "refresh_tokens": await repos.refresh_tokens.revoke_for_user(user_id),
        }

    logger.info("User soft deleted", extra={"user_id": user_id, "acting_user_id": acting_user_id, "counts": counts})
    return {"message": "User and all related data soft deleted successfully"}


async def hard_delete_user(session: AsyncSession, user_id: int, acting_user_id: int) -> dict[str, str]:
    await _get_deletable_user(session, user_id, acting_user_id)
    repos = Repositories(session)

    async with session.begin_nested():
        counts: dict[str, int] = {"projects": 0}
        for project_id in await repos.projects.ids_owned_by(user_id):
            for key, value in (await purge_project_rows(repos, project_id)).items():
                counts[key] = counts.get(key, 0) + value

        counts["members"] = counts.get("members", 0) + await repos.members.delete_for_user(user_id)
        counts["tasks"] = (
            counts.get("tasks", 0)
            + await repos.tasks.delete_created_by(user_id)
            + await repos.tasks.delete_assigned_to(user_id)
        )
        counts["notifications"] = counts.get("notifications", 0) + await repos.notifications.delete_for_user(user_id)
        counts["refresh_tokens"] = await repos.refresh_tokens.delete_for_user(user_id)
        counts["user_roles"] = await repos.user_roles.delete_for_user(user_id)
        counts["users"] = await repos.users.delete(user_id)

    logger.info("User hard deleted", extra={"user_id": user_id, "acting_user_id": acting_user_id, "counts": counts})
    return {"message": "User and all related data hard deleted successfully"}
