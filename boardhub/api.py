from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boardhub import schemas
from boardhub.config import get_settings
from boardhub.db.session import session_scope
from boardhub.errors import ServiceError
from boardhub.services import (
    board_service,
    notification_service,
    project_service,
    task_service,
    user_service,
)

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "conflict": status.HTTP_409_CONFLICT,
    "bad_request": status.HTTP_400_BAD_REQUEST,
}

router = APIRouter()


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with session_scope(request.app.state.session_factory) as session:
        yield session


async def get_actor_id(x_user_id: int | None = Header(default=None)) -> int:
    # Authentication happens upstream; the gateway forwards the user id.
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


# Users


@router.post("/users", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(body: schemas.UserCreate, session: AsyncSession = Depends(get_session)):
    return await user_service.create_user(
        session,
        username=body.username,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        min_password_length=get_settings().PASSWORD_MIN_LENGTH,
    )


@router.get("/users/profile", response_model=schemas.UserResponse)
async def get_profile(actor_id: int = Depends(get_actor_id), session: AsyncSession = Depends(get_session)):
    return await user_service.get_user_profile(session, actor_id)


@router.patch("/users/profile", response_model=schemas.UserResponse)
async def update_profile(
    body: schemas.UserUpdate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await user_service.update_user_profile(session, actor_id, body.model_dump(exclude_unset=True))


@router.patch("/users/change-password", response_model=schemas.MessageResponse)
async def change_password(
    body: schemas.PasswordChange,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await user_service.change_password(
        session,
        actor_id,
        body.current_password,
        body.new_password,
        min_length=get_settings().PASSWORD_MIN_LENGTH,
    )


@router.delete("/users/{user_id}/soft", response_model=schemas.MessageResponse)
async def soft_delete_user(
    user_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await user_service.soft_delete_user(session, user_id, actor_id)


@router.delete("/users/{user_id}/hard", response_model=schemas.MessageResponse)
async def hard_delete_user(
    user_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await user_service.hard_delete_user(session, user_id, actor_id)


# Projects and members


@router.post("/projects", response_model=schemas.ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: schemas.ProjectCreate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.create_project(
        session, owner_id=actor_id, name=body.name, description=body.description
    )


@router.get("/projects", response_model=schemas.ProjectPage)
async def list_projects(
    page: int = 1,
    limit: int | None = None,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    default_limit, max_limit = get_settings().page_limit_bounds
    limit = default_limit if limit is None else min(limit, max_limit)
    projects, total = await project_service.list_projects(session, actor_id, page=page, limit=limit)
    return {"projects": projects, "total": total, "page": page, "limit": limit}


@router.get("/projects/{project_id}", response_model=schemas.ProjectResponse)
async def get_project(
    project_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.get_project(session, project_id, actor_id)


@router.patch("/projects/{project_id}", response_model=schemas.ProjectResponse)
async def update_project(
    project_id: int,
    body: schemas.ProjectUpdate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.update_project(session, project_id, actor_id, body.model_dump(exclude_unset=True))


@router.delete("/projects/{project_id}", response_model=schemas.MessageResponse)
async def delete_project(
    project_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    """Legacy endpoint, kept for older clients: same as ``/soft``."""
    return await project_service.soft_delete_project(session, project_id, actor_id)


@router.delete("/projects/{project_id}/soft", response_model=schemas.MessageResponse)
async def soft_delete_project(
    project_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.soft_delete_project(session, project_id, actor_id)


@router.delete("/projects/{project_id}/hard", response_model=schemas.MessageResponse)
async def hard_delete_project(
    project_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.hard_delete_project(session, project_id, actor_id)


@router.get("/projects/{project_id}/members", response_model=list[schemas.MemberResponse])
async def list_members(
    project_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.list_members(session, project_id, actor_id)


@router.post(
    "/projects/{project_id}/members",
    response_model=schemas.MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    project_id: int,
    body: schemas.MemberAdd,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.add_project_member(session, project_id, body.user_id, body.role, actor_id)


@router.delete("/projects/{project_id}/members/{user_id}", response_model=schemas.MessageResponse)
async def remove_member(
    project_id: int,
    user_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.remove_project_member(session, project_id, user_id, actor_id)


# Boards and columns


@router.post(
    "/projects/{project_id}/boards",
    response_model=schemas.BoardResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_board(
    project_id: int,
    body: schemas.BoardCreate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await board_service.create_board(
        session, project_id, body.name, actor_id, with_default_columns=body.with_default_columns
    )


@router.get("/projects/{project_id}/boards", response_model=list[schemas.BoardResponse])
async def list_boards(
    project_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await board_service.list_boards(session, project_id, actor_id)


@router.post(
    "/boards/{board_id}/columns",
    response_model=schemas.ColumnResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_column(
    board_id: int,
    body: schemas.ColumnCreate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await board_service.create_column(session, board_id, body.name, actor_id)


@router.get("/boards/{board_id}/columns", response_model=list[schemas.ColumnResponse])
async def list_columns(
    board_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await board_service.list_columns(session, board_id, actor_id)


@router.patch("/boards/{board_id}/columns/{column_id}/position", response_model=list[schemas.ColumnResponse])
async def reorder_column(
    board_id: int,
    column_id: int,
    body: schemas.ColumnReorder,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await board_service.reorder_column(session, board_id, column_id, body.new_position, actor_id)


# Tasks


@router.get("/projects/{project_id}/tasks", response_model=list[schemas.TaskResponse])
async def list_project_tasks(
    project_id: int,
    board_id: int | None = None,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.list_project_tasks(session, project_id, actor_id, board_id)


@router.get("/columns/{column_id}/tasks", response_model=list[schemas.TaskResponse])
async def list_column_tasks(
    column_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.list_column_tasks(session, column_id, actor_id)


@router.patch("/columns/{column_id}/tasks/reorder", response_model=schemas.MessageResponse)
async def reorder_tasks(
    column_id: int,
    body: schemas.TaskReorder,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.reorder_tasks_in_column(session, column_id, body.task_ids, actor_id)


@router.post("/tasks", response_model=schemas.TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    body: schemas.TaskCreate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.create_task(session, actor_id=actor_id, **body.model_dump())


@router.get("/tasks/{task_id}", response_model=schemas.TaskResponse)
async def get_task(
    task_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.get_task(session, task_id, actor_id)


@router.patch("/tasks/{task_id}", response_model=schemas.TaskResponse)
async def update_task(
    task_id: int,
    body: schemas.TaskUpdate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.update_task(session, task_id, actor_id, body.model_dump(exclude_unset=True))


@router.delete("/tasks/{task_id}", response_model=schemas.MessageResponse)
async def delete_task(
    task_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.delete_task(session, task_id, actor_id)


@router.patch("/tasks/{task_id}/move", response_model=schemas.MessageResponse)
async def move_task(
    task_id: int,
    body: schemas.TaskMove,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.move_task(session, task_id, body.column_id, actor_id, body.new_order)


@router.get("/tasks/{task_id}/comments", response_model=list[schemas.CommentResponse])
async def list_comments(
    task_id: int,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.list_comments(session, task_id, actor_id)


@router.post(
    "/tasks/{task_id}/comments",
    response_model=schemas.MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    task_id: int,
    body: schemas.CommentCreate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.add_comment(session, task_id, body.content, actor_id)


# Notifications


@router.get("/notifications", response_model=list[schemas.NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await notification_service.list_notifications(session, actor_id, unread_only=unread_only)


@router.patch("/notifications/{notification_id}", response_model=schemas.NotificationResponse)
async def update_notification(
    notification_id: int,
    body: schemas.NotificationUpdate,
    actor_id: int = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
):
    return await notification_service.mark_notification(session, notification_id, actor_id, is_read=body.is_read)


async def _service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    status_code = _STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "kind": exc.kind})


def create_api_app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    app = FastAPI(title="BoardHub API", version="1.0.0")
    app.state.session_factory = session_factory
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.include_router(router)

    @app.get("/health")
    async def health() -> JSONResponse:
        payload: dict[str, Any] = {"status": "ok", "checks": {}}
        status_code = 200

        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
            payload["checks"]["database"] = "ok"
        except Exception as exc:
            logger.warning("Database health check failed", extra={"error": exc.__class__.__name__})
            payload["checks"]["database"] = f"error: {exc.__class__.__name__}"
            payload["status"] = "degraded"
            status_code = 503

        return JSONResponse(content=payload, status_code=status_code)

    return app
