"""Request and response bodies of the HTTP layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    password: str
    full_name: str | None = None


class UserUpdate(BaseModel):
    username: str | None = Field(default=None, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    full_name: str | None = None
    avatar: str | None = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


class UserResponse(_ORMModel):
    id: int
    username: str
    email: str
    full_name: str | None
    avatar: str | None
    created_at: datetime
    updated_at: datetime


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None


class ProjectUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None


class ProjectResponse(_ORMModel):
    id: int
    name: str
    description: str | None
    owner_id: int
    status: str
    created_at: datetime
    updated_at: datetime


class ProjectPage(BaseModel):
    projects: list[ProjectResponse]
    total: int
    page: int
    limit: int


class MemberAdd(BaseModel):
    user_id: int
    role: str = "member"


class MemberResponse(_ORMModel):
    id: int
    user_id: int
    role: str
    is_active: bool
    joined_at: datetime
    username: str
    email: str
    full_name: str | None
    avatar: str | None


class BoardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    with_default_columns: bool = True


class BoardResponse(_ORMModel):
    id: int
    project_id: int
    name: str
    position: int


class ColumnCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)


class ColumnReorder(BaseModel):
    new_position: int = Field(ge=0)


class ColumnResponse(_ORMModel):
    id: int
    board_id: int
    name: str
    position: int


class TaskCreate(BaseModel):
    project_id: int
    board_id: int
    column_id: int
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    priority: str | None = None
    assignee_id: int | None = None
    due_date: datetime | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    priority: str | None = None
    assignee_id: int | None = None
    due_date: datetime | None = None
    column_id: int | None = None


class TaskMove(BaseModel):
    column_id: int
    new_order: int | None = None


class TaskReorder(BaseModel):
    task_ids: list[int]


class TaskResponse(_ORMModel):
    id: int
    project_id: int
    board_id: int
    column_id: int
    created_by_id: int
    assignee_id: int | None
    title: str
    description: str
    priority: str
    order: int
    due_date: datetime | None
    created_at: datetime
    updated_at: datetime


class CommentCreate(BaseModel):
    content: str = Field(min_length=1)


class CommentResponse(BaseModel):
    id: int
    user_id: int
    content: str
    created_at: str


class NotificationUpdate(BaseModel):
    is_read: bool


class NotificationResponse(_ORMModel):
    id: int
    type: str
    status: str
    project_id: int | None
    task_id: int | None
    actor_id: int | None
    payload: dict[str, Any]
    created_at: datetime
    read_at: datetime | None
