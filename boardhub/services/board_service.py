from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from boardhub.db.models import KanbanBoard, KanbanColumn
from boardhub.db.repositories import Repositories
from boardhub.errors import NotFoundError, ValidationError
from boardhub.services.project_service import get_project, require_owner_or_admin

logger = logging.getLogger(__name__)

_DEFAULT_COLUMNS = ("To Do", "In Progress", "Done")

# Temporary offset used while rewriting positions under the unique constraint.
_REORDER_OFFSET = 1000


def _clean_name(name: str | None, what: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(f"{what} name cannot be empty")
    return cleaned


async def create_board(
    session: AsyncSession,
    project_id: int,
    name: str,
    actor_id: int,
    *,
    with_default_columns: bool = True,
) -> KanbanBoard:
    repos = Repositories(session)
    project = await get_project(session, project_id, actor_id)
    await require_owner_or_admin(session, project, actor_id, "create boards")
    board_name = _clean_name(name, "Board")

    async with session.begin_nested():
        max_position = await repos.boards.max_position(project.id)
        board = await repos.boards.add(
            KanbanBoard(
                project_id=project.id,
                name=board_name,
                position=0 if max_position is None else max_position + 1,
            )
        )
        if with_default_columns:
            for idx, column_name in enumerate(_DEFAULT_COLUMNS):
                session.add(KanbanColumn(board_id=board.id, name=column_name, position=idx))
            await session.flush()

    logger.info("Board created", extra={"project_id": project.id, "board_id": board.id})
    return board


async def list_boards(session: AsyncSession, project_id: int, user_id: int) -> list[KanbanBoard]:
    project = await get_project(session, project_id, user_id)
    return await Repositories(session).boards.list_active(project.id)


async def get_board(session: AsyncSession, board_id: int, user_id: int) -> KanbanBoard:
    board = await Repositories(session).boards.get_active(board_id)
    if board is None:
        raise NotFoundError("Board not found")
    await get_project(session, board.project_id, user_id)
    return board


async def create_column(session: AsyncSession, board_id: int, name: str, actor_id: int) -> KanbanColumn:
    repos = Repositories(session)
    board = await get_board(session, board_id, actor_id)
    project = await get_project(session, board.project_id, actor_id)
    await require_owner_or_admin(session, project, actor_id, "create columns")

    max_position = await repos.columns.max_position(board.id)
    column = await repos.columns.add(
        KanbanColumn(
            board_id=board.id,
            name=_clean_name(name, "Column"),
            position=0 if max_position is None else max_position + 1,
        )
    )
    return column


async def list_columns(session: AsyncSession, board_id: int, user_id: int) -> list[KanbanColumn]:
    board = await get_board(session, board_id, user_id)
    return await Repositories(session).columns.list_for_board(board.id)


async def reorder_column(
    session: AsyncSession,
    board_id: int,
    column_id: int,
    new_position: int,
    actor_id: int,
) -> list[KanbanColumn]:
    board = await get_board(session, board_id, actor_id)
    project = await get_project(session, board.project_id, actor_id)
    await require_owner_or_admin(session, project, actor_id, "reorder columns")

    columns = await Repositories(session).columns.list_for_board(board.id, active_only=False)
    idx = next((i for i, col in enumerate(columns) if col.id == column_id and col.is_active), None)
    if idx is None:
        raise NotFoundError("Column not found")

    column = columns.pop(idx)
    target_index = max(0, min(new_position, len(columns)))
    columns.insert(target_index, column)

    async with session.begin_nested():
        for i, col in enumerate(columns):
            col.position = _REORDER_OFFSET + i
        await session.flush()

        for i, col in enumerate(columns):
            col.position = i
        await session.flush()
    return [col for col in columns if col.is_active]
