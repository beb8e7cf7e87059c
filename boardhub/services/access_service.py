"""Project and task access evaluation.

Everything here is read-only and never raises for missing rows: an absent
project or membership simply evaluates to ``False``. Callers decide whether
that becomes a "not found" or a "forbidden" error.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from boardhub.db.models import Project, ProjectMember, ProjectRole, Task
from boardhub.db.repositories import Repositories

logger = logging.getLogger(__name__)


class TaskAction(enum.StrEnum):
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MOVE = "move"
    COMMENT = "comment"


_CREATOR_ACTIONS = frozenset({TaskAction.UPDATE, TaskAction.DELETE})
_ASSIGNEE_ACTIONS = frozenset({TaskAction.UPDATE, TaskAction.COMMENT})
_MEMBER_ACTIONS = frozenset({TaskAction.READ, TaskAction.COMMENT})


@dataclass(frozen=True, slots=True)
class ResourceScope:
    project_id: int
    task_id: int | None = None


def evaluate_task_permission(
    task: Task,
    project: Project | None,
    membership: ProjectMember | None,
    user_id: int,
    action: TaskAction,
) -> bool:
    """Decide ``action`` on ``task`` for ``user_id`` from already loaded rows.

    Rules are checked in order and the first match wins: project owner,
    active admin, task creator (update/delete), task assignee
    (update/comment), any active member (read/comment).
    """
    if project is not None and project.owner_id == user_id:
        return True

    active_member = membership if membership is not None and membership.is_active else None
    if active_member is not None and active_member.role == ProjectRole.ADMIN:
        return True

    if task.created_by_id == user_id and action in _CREATOR_ACTIONS:
        return True

    if task.assignee_id is not None and task.assignee_id == user_id and action in _ASSIGNEE_ACTIONS:
        return True

    if active_member is not None and action in _MEMBER_ACTIONS:
        return True

    return False


async def can_access_project(session: AsyncSession, project_id: int, user_id: int) -> bool:
    repos = Repositories(session)
    project = await repos.projects.get(project_id)
    if project is None:
        return False
    if project.owner_id == user_id:
        return True
    return await repos.members.get_active(project_id, user_id) is not None


async def is_project_admin(session: AsyncSession, project_id: int, user_id: int) -> bool:
    member = await Repositories(session).members.get_active(project_id, user_id)
    return member is not None and member.role == ProjectRole.ADMIN


async def is_owner_or_admin(session: AsyncSession, project: Project, user_id: int) -> bool:
    if project.owner_id == user_id:
        return True
    return await is_project_admin(session, project.id, user_id)


async def check_task_permission(session: AsyncSession, task: Task, user_id: int, action: TaskAction | str) -> bool:
    try:
        action = TaskAction(action)
    except ValueError:
        logger.warning("Unknown task action", extra={"action": str(action), "task_id": task.id})
        return False

    repos = Repositories(session)
    project = await repos.projects.get(task.project_id)
    membership = await repos.members.get_active(task.project_id, user_id)
    allowed = evaluate_task_permission(task, project, membership, user_id, action)
    logger.debug(
        "Task permission evaluated",
        extra={"task_id": task.id, "user_id": user_id, "action": str(action), "allowed": allowed},
    )
    return allowed


async def has_capability(session: AsyncSession, actor_id: int, scope: ResourceScope, action: str) -> bool:
    """Answer "may ``actor_id`` perform ``action`` within ``scope``".

    Actions are ``project:read``, ``project:update``, ``project:delete``,
    ``member:manage`` and ``task:<read|update|delete|move|comment>`` (the
    latter needs ``scope.task_id``). Unknown actions are denied.
    """
    repos = Repositories(session)
    resource, _, verb = action.partition(":")

    if resource == "task":
        if scope.task_id is None:
            return False
        task = await repos.tasks.get_active(scope.task_id)
        if task is None or task.project_id != scope.project_id:
            return False
        return await check_task_permission(session, task, actor_id, verb)

    project = await repos.projects.get_active(scope.project_id)
    if project is None:
        return False

    if action == "project:read":
        return await can_access_project(session, project.id, actor_id)
    if action in {"project:update", "member:manage"}:
        return await is_owner_or_admin(session, project, actor_id)
    if action == "project:delete":
        return project.owner_id == actor_id
    return False
