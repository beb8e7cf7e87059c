"""Tasks on kanban columns: CRUD, drag-and-drop ordering and comments.

Active tasks of a column always leave an ordering operation with the dense
orders ``0..N-1``. Two different deletes exist and stay separate:
``delete_task`` removes the row, while project/user cascades only stamp
``deleted_at``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from boardhub.db.models import KanbanColumn, NotificationKind, Project, Task, TaskPriority
from boardhub.db.repositories import Repositories
from boardhub.errors import ForbiddenError, NotFoundError, ValidationError
from boardhub.services.access_service import TaskAction, check_task_permission
from boardhub.services.notification_service import NotificationSink, emit
from boardhub.services.project_service import get_project
from boardhub.utils.datetime_utils import isoformat_utc, utcnow

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"title", "description", "priority", "assignee_id", "due_date", "column_id"})


def _clean_title(title: str | None) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Task title cannot be empty")
    return cleaned


def _parse_priority(priority: str | None) -> TaskPriority:
    if priority is None:
        return TaskPriority.MEDIUM
    try:
        return TaskPriority(priority)
    except ValueError:
        allowed = ", ".join(p.value for p in TaskPriority)
        raise ValidationError(f"Unknown priority {priority!r}, expected one of: {allowed}") from None


def renumber(tasks: Iterable[Task]) -> None:
    for position, task in enumerate(tasks):
        if task.order != position:
            task.order = position


def place_task(column_tasks: Sequence[Task], moved: Task, slot: int | None) -> list[Task]:
    """Put ``moved`` at ``slot`` among ``column_tasks`` and renumber densely.

    The other tasks keep their relative order. A missing slot appends, a slot
    past the end is clamped to the end.
    """
    ordered = [task for task in column_tasks if task.id != moved.id]
    index = len(ordered) if slot is None else min(slot, len(ordered))
    ordered.insert(index, moved)
    renumber(ordered)
    return ordered


async def _ensure_assignable(session: AsyncSession, project: Project, user_id: int) -> None:
    if user_id == project.owner_id:
        return
    if await Repositories(session).members.get_active(project.id, user_id) is None:
        raise ValidationError("Assignee must be a member of the project")


async def _resolve_column(session: AsyncSession, column_id: int, project_id: int) -> KanbanColumn:
    repos = Repositories(session)
    column = await repos.columns.get_active(column_id)
    if column is None:
        raise NotFoundError("Column not found")
    board = await repos.boards.get_active(column.board_id)
    if board is None or board.project_id != project_id:
        raise NotFoundError("Column does not belong to project")
    return column


async def _require_permission(session: AsyncSession, task: Task, user_id: int, action: TaskAction, what: str) -> None:
    if not await check_task_permission(session, task, user_id, action):
        raise ForbiddenError(f"You do not have permission to {what} this task")


async def _relocate(session: AsyncSession, task: Task, column: KanbanColumn, slot: int | None) -> None:
    repos = Repositories(session)
    source_column_id = task.column_id
    # lock columns in ascending id order so opposite moves cannot deadlock
    locked = {}
    for column_id in sorted({source_column_id, column.id}):
        locked[column_id] = await repos.tasks.list_in_column(column_id, for_update=True)
    target_tasks = locked[column.id]
    source_tasks = locked[source_column_id] if source_column_id != column.id else []

    task.column_id = column.id
    task.board_id = column.board_id
    place_task(target_tasks, task, slot)
    renumber(t for t in source_tasks if t.id != task.id)
    await session.flush()


async def create_task(
    session: AsyncSession,
    *,
    project_id: int,
    board_id: int,
    column_id: int,
    title: str,
    actor_id: int,
    description: str = "",
    priority: str | None = None,
    assignee_id: int | None = None,
    due_date: datetime | None = None,
) -> Task:
    repos = Repositories(session)
    project = await get_project(session, project_id, actor_id)

    board = await repos.boards.get_active(board_id)
    if board is None or board.project_id != project.id:
        raise NotFoundError("Board not found or does not belong to project")
    column = await repos.columns.get_active(column_id)
    if column is None or column.board_id != board.id:
        raise NotFoundError("Column not found or does not belong to board")

    task_title = _clean_title(title)
    task_priority = _parse_priority(priority)
    if assignee_id is not None:
        await _ensure_assignable(session, project, assignee_id)

    async with session.begin_nested():
        max_order = await repos.tasks.max_order(column.id)
        task = await repos.tasks.add(
            Task(
                project_id=project.id,
                board_id=board.id,
                column_id=column.id,
                created_by_id=actor_id,
                assignee_id=assignee_id,
                title=task_title,
                description=description or "",
                priority=task_priority,
                due_date=due_date,
                order=(-1 if max_order is None else max_order) + 1,
                comments=[],
            )
        )

    logger.info("Task created", extra={"task_id": task.id, "column_id": column.id, "order": task.order})
    return task


async def list_project_tasks(
    session: AsyncSession,
    project_id: int,
    user_id: int,
    board_id: int | None = None,
) -> list[Task]:
    project = await get_project(session, project_id, user_id)
    return await Repositories(session).tasks.list_for_project(project.id, board_id)


async def list_column_tasks(session: AsyncSession, column_id: int, user_id: int) -> list[Task]:
    repos = Repositories(session)
    column = await repos.columns.get_active(column_id)
    if column is None:
        raise NotFoundError("Column not found")
    board = await repos.boards.get_active(column.board_id)
    if board is None:
        raise NotFoundError("Column not found")
    await get_project(session, board.project_id, user_id)
    return await repos.tasks.list_in_column(column.id)


async def get_task(session: AsyncSession, task_id: int, user_id: int) -> Task:
    task = await Repositories(session).tasks.get_active(task_id)
    if task is None:
        raise NotFoundError("Task not found")
    await get_project(session, task.project_id, user_id)
    return task


async def update_task(
    session: AsyncSession,
    task_id: int,
    actor_id: int,
    changes: Mapping[str, Any],
    *,
    sink: NotificationSink | None = None,
) -> Task:
    task = await get_task(session, task_id, actor_id)
    await _require_permission(session, task, actor_id, TaskAction.UPDATE, "update")

    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")

    target_column = None
    new_column_id = changes.get("column_id")
    if new_column_id is not None and new_column_id != task.column_id:
        target_column = await _resolve_column(session, new_column_id, task.project_id)

    values: dict[str, Any] = {}
    if "title" in changes:
        values["title"] = _clean_title(changes["title"])
    if "description" in changes:
        values["description"] = changes["description"] or ""
    if "priority" in changes:
        values["priority"] = _parse_priority(changes["priority"])
    if "due_date" in changes:
        values["due_date"] = changes["due_date"]
    if "assignee_id" in changes:
        if changes["assignee_id"] is not None:
            project = await Repositories(session).projects.get(task.project_id)
            await _ensure_assignable(session, project, changes["assignee_id"])
        values["assignee_id"] = changes["assignee_id"]

    old_assignee_id = task.assignee_id
    async with session.begin_nested():
        for field, value in values.items():
            setattr(task, field, value)
        if target_column is not None:
            await _relocate(session, task, target_column, None)
        await session.flush()

    new_assignee_id = task.assignee_id
    if old_assignee_id != new_assignee_id:
        context = {"task_title": task.title}
        if old_assignee_id is not None and old_assignee_id != actor_id:
            await emit(
                sink,
                session,
                NotificationKind.TASK_UNASSIGNED,
                old_assignee_id,
                actor_id=actor_id,
                project_id=task.project_id,
                task_id=task.id,
                payload=context,
            )
        if new_assignee_id is not None and new_assignee_id != actor_id:
            await emit(
                sink,
                session,
                NotificationKind.TASK_ASSIGNED,
                new_assignee_id,
                actor_id=actor_id,
                project_id=task.project_id,
                task_id=task.id,
                payload=context,
            )
    return task


async def delete_task(session: AsyncSession, task_id: int, actor_id: int) -> dict[str, str]:
    repos = Repositories(session)
    task = await get_task(session, task_id, actor_id)
    await _require_permission(session, task, actor_id, TaskAction.DELETE, "delete")

    column_id = task.column_id
    async with session.begin_nested():
        await repos.tasks.remove(task)
        renumber(await repos.tasks.list_in_column(column_id, for_update=True))
        await session.flush()

    logger.info("Task deleted", extra={"task_id": task_id, "column_id": column_id, "user_id": actor_id})
    return {"message": "Task deleted successfully"}


async def move_task(
    session: AsyncSession,
    task_id: int,
    target_column_id: int,
    actor_id: int,
    new_order: int | None = None,
) -> dict[str, str]:
    task = await get_task(session, task_id, actor_id)
    await _require_permission(session, task, actor_id, TaskAction.MOVE, "move")
    if new_order is not None and new_order < 0:
        raise ValidationError("new_order must be >= 0")
    column = await _resolve_column(session, target_column_id, task.project_id)

    async with session.begin_nested():
        await _relocate(session, task, column, new_order)

    logger.info(
        "Task moved",
        extra={"task_id": task.id, "column_id": column.id, "order": task.order, "user_id": actor_id},
    )
    return {"message": "Task moved successfully"}


async def reorder_tasks_in_column(
    session: AsyncSession,
    column_id: int,
    task_ids: Sequence[int],
    user_id: int,
) -> dict[str, str]:
    """Resync a column from a client-side id list.

    Ids that are not active tasks of the column are ignored. Listed tasks
    come first in the given order; unlisted ones follow in their previous
    relative order.
    """
    repos = Repositories(session)
    column = await repos.columns.get_active(column_id)
    if column is None:
        raise NotFoundError("Column not found")
    board = await repos.boards.get_active(column.board_id)
    if board is None:
        raise NotFoundError("Column not found")
    await get_project(session, board.project_id, user_id)

    async with session.begin_nested():
        tasks = await repos.tasks.list_in_column(column.id, for_update=True)
        by_id = {task.id: task for task in tasks}
        listed: list[Task] = []
        for task_id in task_ids:
            task = by_id.pop(task_id, None)
            if task is not None:
                listed.append(task)
        renumber([*listed, *(task for task in tasks if task.id in by_id)])
        await session.flush()

    return {"message": "Tasks reordered successfully"}


def _next_comment_id(comments: Sequence[Mapping[str, Any]]) -> int:
    return max((int(comment.get("id", 0)) for comment in comments), default=0) + 1


async def add_comment(
    session: AsyncSession,
    task_id: int,
    content: str,
    actor_id: int,
    *,
    sink: NotificationSink | None = None,
) -> dict[str, str]:
    repos = Repositories(session)
    task = await get_task(session, task_id, actor_id)
    await _require_permission(session, task, actor_id, TaskAction.COMMENT, "comment on")

    text = (content or "").strip()
    if not text:
        raise ValidationError("Comment content cannot be empty")

    async with session.begin_nested():
        locked = await repos.tasks.get_active(task.id, for_update=True)
        if locked is None:
            raise NotFoundError("Task not found")
        comments = list(locked.comments or [])
        comment = {
            "id": _next_comment_id(comments),
            "user_id": actor_id,
            "content": text,
            "created_at": isoformat_utc(utcnow()),
        }
        locked.comments = [*comments, comment]
        await session.flush()

    recipients: list[int] = []
    for user_id in (locked.assignee_id, locked.created_by_id):
        if user_id is not None and user_id != actor_id and user_id not in recipients:
            recipients.append(user_id)
    for user_id in recipients:
        await emit(
            sink,
            session,
            NotificationKind.TASK_COMMENTED,
            user_id,
            actor_id=actor_id,
            project_id=locked.project_id,
            task_id=locked.id,
            payload={"comment_id": comment["id"], "task_title": locked.title},
        )
    return {"message": "Comment added successfully"}


async def list_comments(session: AsyncSession, task_id: int, user_id: int) -> list[dict[str, Any]]:
    task = await get_task(session, task_id, user_id)
    return list(task.comments or [])
