"""Project lifecycle: creation, membership and the two delete cascades.

Existence is checked before access, so a non-member asking for somebody
else's project id gets ``ForbiddenError`` rather than ``NotFoundError``.
That leaks whether the id exists; it is kept as the documented behaviour.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from boardhub.db.models import NotificationKind, Project, ProjectRole, ProjectStatus
from boardhub.db.repositories import Repositories
from boardhub.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from boardhub.services.access_service import can_access_project, is_owner_or_admin
from boardhub.services.notification_service import NotificationSink, emit
from boardhub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"name", "description"})


def _parse_role(role: str) -> ProjectRole:
    try:
        return ProjectRole(role)
    except ValueError:
        allowed = ", ".join(r.value for r in ProjectRole)
        raise ValidationError(f"Unknown project role {role!r}, expected one of: {allowed}") from None


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Project name cannot be empty")
    return cleaned


async def create_project(
    session: AsyncSession,
    *,
    owner_id: int,
    name: str,
    description: str | None = None,
) -> Project:
    repos = Repositories(session)
    if await repos.users.get_active(owner_id) is None:
        raise NotFoundError("User not found")
    cleaned_name = _clean_name(name)

    async with session.begin_nested():
        project = await repos.projects.add(
            Project(name=cleaned_name, description=description, owner_id=owner_id, status=ProjectStatus.ACTIVE)
        )
        await repos.members.add(project.id, owner_id, ProjectRole.ADMIN)

    logger.info("Project created", extra={"project_id": project.id, "owner_id": owner_id})
    return project


async def list_projects(
    session: AsyncSession,
    user_id: int,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Project], int]:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1:
        raise ValidationError("limit must be >= 1")
    return await Repositories(session).projects.list_visible_to(user_id, offset=(page - 1) * limit, limit=limit)


async def get_project(session: AsyncSession, project_id: int, user_id: int) -> Project:
    project = await Repositories(session).projects.get_active(project_id)
    if project is None:
        raise NotFoundError("Project not found")
    if not await can_access_project(session, project.id, user_id):
        raise ForbiddenError("You do not have access to this project")
    return project


async def require_owner_or_admin(session: AsyncSession, project: Project, user_id: int, action: str) -> None:
    if not await is_owner_or_admin(session, project, user_id):
        raise ForbiddenError(f"Only project owner or admin can {action}")


async def update_project(
    session: AsyncSession,
    project_id: int,
    user_id: int,
    changes: Mapping[str, Any],
) -> Project:
    project = await get_project(session, project_id, user_id)
    await require_owner_or_admin(session, project, user_id, "update project")

    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown project fields: {', '.join(sorted(unknown))}")

    if "name" in changes:
        project.name = _clean_name(changes["name"])
    if "description" in changes:
        project.description = changes["description"]
    await session.flush()
    return project


async def _get_owned_project(session: AsyncSession, project_id: int, user_id: int) -> Project:
    project = await get_project(session, project_id, user_id)
    if project.owner_id != user_id:
        raise ForbiddenError("Only project owner can delete project")
    return project


async def soft_delete_project_rows(repos: Repositories, project_id: int, now: datetime) -> dict[str, int]:
    board_ids = await repos.boards.ids_for_project(project_id)
    return {
        "projects": await repos.projects.mark_deleted(project_id),
        "members": await repos.members.deactivate_for_project(project_id, now),
        "boards": await repos.boards.deactivate_for_project(project_id),
        "columns": await repos.columns.deactivate_for_boards(board_ids),
        "tasks": await repos.tasks.soft_delete_for_project(project_id, board_ids, now),
        "notifications": await repos.notifications.archive_unread_for_project(project_id, now),
    }


async def purge_project_rows(repos: Repositories, project_id: int) -> dict[str, int]:
    counts = {"members": await repos.members.delete_for_project(project_id)}

    board_ids = await repos.boards.ids_for_project(project_id)
    counts["tasks"] = await repos.tasks.delete_for_boards(board_ids)
    counts["columns"] = await repos.columns.delete_for_boards(board_ids)
    counts["boards"] = await repos.boards.delete_for_project(project_id)

    counts["tasks"] += await repos.tasks.delete_for_project(project_id)
    counts["notifications"] = await repos.notifications.delete_for_project(project_id)
    counts["projects"] = await repos.projects.delete(project_id)
    return counts


async def soft_delete_project(session: AsyncSession, project_id: int, user_id: int) -> dict[str, str]:
    project = await _get_owned_project(session, project_id, user_id)

    async with session.begin_nested():
        counts = await soft_delete_project_rows(Repositories(session), project.id, utcnow())

    logger.info("Project soft deleted", extra={"project_id": project.id, "user_id": user_id, "counts": counts})
    return {"message": "Project and all related data soft deleted successfully"}


async def hard_delete_project(session: AsyncSession, project_id: int, user_id: int) -> dict[str, str]:
    project = await _get_owned_project(session, project_id, user_id)
    project_id = project.id

    async with session.begin_nested():
        counts = await purge_project_rows(Repositories(session), project_id)

    logger.info("Project hard deleted", extra={"project_id": project_id, "user_id": user_id, "counts": counts})
    return {"message": "Project and all related data hard deleted successfully"}


async def add_project_member(
    session: AsyncSession,
    project_id: int,
    member_user_id: int,
    role: str,
    acting_user_id: int,
    *,
    sink: NotificationSink | None = None,
) -> dict[str, str]:
    repos = Repositories(session)
    project = await get_project(session, project_id, acting_user_id)
    await require_owner_or_admin(session, project, acting_user_id, "add members")
    member_role = _parse_role(role)

    if await repos.users.get_active(member_user_id) is None:
        raise NotFoundError("User not found")

    # Inactive rows count too: re-adding a removed member is rejected.
    if await repos.members.get(project.id, member_user_id) is not None:
        raise ConflictError("User is already a member of this project")

    await repos.members.add(project.id, member_user_id, member_role)
    logger.info(
        "Project member added",
        extra={"project_id": project.id, "member_user_id": member_user_id, "role": str(member_role)},
    )

    await emit(
        sink,
        session,
        NotificationKind.MEMBER_ADDED,
        member_user_id,
        actor_id=acting_user_id,
        project_id=project.id,
        payload={"role": str(member_role), "project_name": project.name},
    )
    return {"message": "Member added successfully"}


async def remove_project_member(
    session: AsyncSession,
    project_id: int,
    member_user_id: int,
    acting_user_id: int,
    *,
    sink: NotificationSink | None = None,
) -> dict[str, str]:
    repos = Repositories(session)
    project = await get_project(session, project_id, acting_user_id)
    await require_owner_or_admin(session, project, acting_user_id, "remove members")

    if project.owner_id == member_user_id:
        raise ForbiddenError("Cannot remove project owner")

    if not await repos.members.deactivate(project.id, member_user_id, utcnow()):
        raise NotFoundError("Member not found")
    logger.info("Project member removed", extra={"project_id": project.id, "member_user_id": member_user_id})

    await emit(
        sink,
        session,
        NotificationKind.MEMBER_REMOVED,
        member_user_id,
        actor_id=acting_user_id,
        project_id=project.id,
        payload={"project_name": project.name},
    )
    return {"message": "Member removed successfully"}


async def list_members(session: AsyncSession, project_id: int, user_id: int) -> list[dict[str, Any]]:
    project = await get_project(session, project_id, user_id)
    rows = await Repositories(session).members.list_active_with_users(project.id)
    return [dict(row._mapping) for row in rows]
