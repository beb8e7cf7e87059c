from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from boardhub.db import models  # noqa: F401
from boardhub.db.base import Base
from boardhub.db.session import build_engine, session_scope
from boardhub.services.board_service import create_board, list_columns
from boardhub.services.project_service import add_project_member, create_project
from boardhub.services.user_service import create_user

PASSWORD = "correct-horse"


@pytest.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = build_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    yield factory

    await engine.dispose()


@dataclass
class World:
    owner: int
    admin: int
    member: int
    viewer: int
    outsider: int
    project_id: int
    board_id: int
    column_ids: list[int]


@pytest.fixture
async def world(session_factory) -> World:
    """One project with a member of every role and a board with three columns."""
    async with session_scope(session_factory) as session:
        ids: dict[str, int] = {}
        for name in ("owner", "admin", "member", "viewer", "outsider"):
            user = await create_user(session, username=name, email=f"{name}@example.com", password=PASSWORD)
            ids[name] = user.id

        project = await create_project(session, owner_id=ids["owner"], name="Apollo")
        for name in ("admin", "member", "viewer"):
            await add_project_member(session, project.id, ids[name], name, ids["owner"])

        board = await create_board(session, project.id, "Main", ids["owner"])
        columns = await list_columns(session, board.id, ids["owner"])

    return World(
        owner=ids["owner"],
        admin=ids["admin"],
        member=ids["member"],
        viewer=ids["viewer"],
        outsider=ids["outsider"],
        project_id=project.id,
        board_id=board.id,
        column_ids=[column.id for column in columns],
    )


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    async def notify(self, *args, **kwargs) -> None:
        self.calls += 1
        raise RuntimeError("sink unavailable")


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()
