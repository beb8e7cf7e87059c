from __future__ import annotations

import pytest
from sqlalchemy import update

from boardhub.db.models import Task
from boardhub.db.repositories import TaskRepository
from boardhub.db.session import session_scope
from boardhub.errors import ValidationError
from boardhub.services.task_service import (
    create_task,
    delete_task,
    list_column_tasks,
    move_task,
    reorder_tasks_in_column,
    update_task,
)


async def _seed_tasks(session_factory, world, titles, column_index=0) -> dict[str, int]:
    ids = {}
    async with session_scope(session_factory) as session:
        for title in titles:
            task = await create_task(
                session,
                project_id=world.project_id,
                board_id=world.board_id,
                column_id=world.column_ids[column_index],
                title=title,
                actor_id=world.owner,
            )
            ids[title] = task.id
    return ids


async def _column_state(session_factory, world, column_index) -> list[tuple[str, int]]:
    async with session_factory() as session:
        tasks = await list_column_tasks(session, world.column_ids[column_index], world.owner)
        return [(task.title, task.order) for task in tasks]


@pytest.mark.asyncio
async def test_create_task_appends_with_dense_orders(session_factory, world) -> None:
    await _seed_tasks(session_factory, world, ["A", "B", "C"])

    assert await _column_state(session_factory, world, 0) == [("A", 0), ("B", 1), ("C", 2)]


@pytest.mark.asyncio
async def test_move_last_task_to_front_shifts_others(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C"])

    async with session_scope(session_factory) as session:
        result = await move_task(session, ids["C"], world.column_ids[0], world.admin, new_order=0)

    assert result == {"message": "Task moved successfully"}
    assert await _column_state(session_factory, world, 0) == [("C", 0), ("A", 1), ("B", 2)]


@pytest.mark.asyncio
async def test_move_across_columns_compacts_source(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C"])
    await _seed_tasks(session_factory, world, ["X", "Y"], column_index=2)

    async with session_scope(session_factory) as session:
        await move_task(session, ids["A"], world.column_ids[2], world.owner, new_order=1)

    assert await _column_state(session_factory, world, 0) == [("B", 0), ("C", 1)]
    assert await _column_state(session_factory, world, 2) == [("X", 0), ("A", 1), ("Y", 2)]


@pytest.mark.asyncio
async def test_move_without_order_appends_and_large_order_is_clamped(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B"])
    await _seed_tasks(session_factory, world, ["X"], column_index=1)

    async with session_scope(session_factory) as session:
        await move_task(session, ids["A"], world.column_ids[1], world.owner)
        await move_task(session, ids["B"], world.column_ids[1], world.owner, new_order=50)

    assert await _column_state(session_factory, world, 0) == []
    assert await _column_state(session_factory, world, 1) == [("X", 0), ("A", 1), ("B", 2)]


@pytest.mark.asyncio
async def test_move_rejects_negative_order(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A"])

    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await move_task(session, ids["A"], world.column_ids[1], world.owner, new_order=-1)


@pytest.mark.asyncio
async def test_reorder_ignores_foreign_ids_and_keeps_unlisted_tasks(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C", "D"])
    other = await _seed_tasks(session_factory, world, ["Z"], column_index=1)

    async with session_scope(session_factory) as session:
        await reorder_tasks_in_column(
            session,
            world.column_ids[0],
            [ids["C"], 99999, other["Z"], ids["A"]],
            world.viewer,
        )

    assert await _column_state(session_factory, world, 0) == [("C", 0), ("A", 1), ("B", 2), ("D", 3)]
    assert await _column_state(session_factory, world, 1) == [("Z", 0)]


@pytest.mark.asyncio
async def test_delete_task_compacts_column(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C"])

    async with session_scope(session_factory) as session:
        await delete_task(session, ids["B"], world.owner)

    assert await _column_state(session_factory, world, 0) == [("A", 0), ("C", 1)]


@pytest.mark.asyncio
async def test_update_column_appends_to_new_column(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B"])
    await _seed_tasks(session_factory, world, ["X"], column_index=1)

    async with session_scope(session_factory) as session:
        task = await update_task(session, ids["A"], world.owner, {"column_id": world.column_ids[1]})
        assert task.column_id == world.column_ids[1]

    assert await _column_state(session_factory, world, 0) == [("B", 0)]
    assert await _column_state(session_factory, world, 1) == [("X", 0), ("A", 1)]


async def _set_orders(session_factory, orders: dict[int, int]) -> None:
    async with session_scope(session_factory) as session:
        for task_id, order in orders.items():
            await session.execute(update(Task).where(Task.id == task_id).values(order=order))


@pytest.mark.asyncio
async def test_move_into_tied_column_restores_dense_orders(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C", "D"])
    await _set_orders(session_factory, {task_id: 5 for task_id in ids.values()})

    async with session_scope(session_factory) as session:
        await move_task(session, ids["D"], world.column_ids[0], world.owner, new_order=1)

    assert await _column_state(session_factory, world, 0) == [("A", 0), ("D", 1), ("B", 2), ("C", 3)]


@pytest.mark.asyncio
async def test_reorder_of_gapped_column_restores_dense_orders(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C"])
    await _set_orders(session_factory, {ids["A"]: 3, ids["B"]: 7, ids["C"]: 12})

    async with session_scope(session_factory) as session:
        await reorder_tasks_in_column(session, world.column_ids[0], [ids["B"]], world.owner)

    assert await _column_state(session_factory, world, 0) == [("B", 0), ("A", 1), ("C", 2)]


@pytest.mark.asyncio
async def test_move_out_of_gapped_column_compacts_source(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C"])
    await _set_orders(session_factory, {ids["A"]: 2, ids["B"]: 9, ids["C"]: 9})

    async with session_scope(session_factory) as session:
        await move_task(session, ids["A"], world.column_ids[1], world.owner)

    assert await _column_state(session_factory, world, 0) == [("B", 0), ("C", 1)]
    assert await _column_state(session_factory, world, 1) == [("A", 0)]


@pytest.mark.asyncio
async def test_consecutive_reorders_end_in_one_submitted_order(session_factory, world) -> None:
    ids = await _seed_tasks(session_factory, world, ["A", "B", "C"])
    first = ["C", "A", "B"]
    second = ["B", "C", "A"]

    for titles in (first, second):
        async with session_scope(session_factory) as session:
            await reorder_tasks_in_column(
                session, world.column_ids[0], [ids[title] for title in titles], world.member
            )

    state = await _column_state(session_factory, world, 0)
    assert [order for _, order in state] == [0, 1, 2]
    assert [title for title, _ in state] == second


@pytest.mark.asyncio
async def test_moves_lock_columns_in_ascending_id_order(session_factory, world, monkeypatch) -> None:
    ids = await _seed_tasks(session_factory, world, ["A"])
    others = await _seed_tasks(session_factory, world, ["Z"], column_index=2)
    locked = []
    original = TaskRepository.list_in_column

    async def recording_list_in_column(self, column_id, *, for_update=False):
        if for_update:
            locked.append(column_id)
        return await original(self, column_id, for_update=for_update)

    monkeypatch.setattr(TaskRepository, "list_in_column", recording_list_in_column)

    low, high = sorted([world.column_ids[0], world.column_ids[2]])
    async with session_scope(session_factory) as session:
        await move_task(session, ids["A"], world.column_ids[2], world.owner)
    async with session_scope(session_factory) as session:
        await move_task(session, others["Z"], world.column_ids[0], world.owner)

    assert locked == [low, high, low, high]
    assert await _column_state(session_factory, world, 0) == [("Z", 0)]
    assert await _column_state(session_factory, world, 2) == [("A", 0)]
