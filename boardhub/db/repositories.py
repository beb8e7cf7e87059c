"""Typed repositories over the relational store.

Each repository wraps one entity and is bound to the caller's
``AsyncSession``, which is the transaction handle for the whole operation.
Cascades are expressed as bulk updates/deletes scoped by foreign key so the
service layer never touches tables by name.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from boardhub.db.models import (
    KanbanBoard,
    KanbanColumn,
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


class _Repository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _rowcount(self, stmt) -> int:
        result = await self.session.execute(stmt)
        return result.rowcount or 0


class UserRepository(_Repository):
    async def get(self, user_id: int) -> User | None:
        return await self.session.get(User, user_id)

    async def get_active(self, user_id: int) -> User | None:
        result = await self.session.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(func.lower(User.email) == email.lower()))
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> User | None:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        return user

    async def soft_delete(self, user_id: int, now: datetime) -> int:
        return await self._rowcount(
            update(User).where(User.id == user_id).values(is_active=False, deleted_at=now)
        )

    async def delete(self, user_id: int) -> int:
        return await self._rowcount(delete(User).where(User.id == user_id))


class UserRoleRepository(_Repository):
    async def grant(self, user_id: int, role: str) -> None:
        self.session.add(UserRole(user_id=user_id, role=role))
        await self.session.flush()

    async def list_roles(self, user_id: int) -> list[str]:
        result = await self.session.execute(select(UserRole.role).where(UserRole.user_id == user_id))
        return list(result.scalars().all())

    async def delete_for_user(self, user_id: int) -> int:
        return await self._rowcount(delete(UserRole).where(UserRole.user_id == user_id))


class RefreshTokenRepository(_Repository):
    async def revoke_for_user(self, user_id: int) -> int:
        return await self._rowcount(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
        )

    async def delete_for_user(self, user_id: int) -> int:
        return await self._rowcount(delete(RefreshToken).where(RefreshToken.user_id == user_id))


class ProjectRepository(_Repository):
    async def get(self, project_id: int) -> Project | None:
        return await self.session.get(Project, project_id)

    async def get_active(self, project_id: int) -> Project | None:
        result = await self.session.execute(
            select(Project).where(Project.id == project_id, Project.status == ProjectStatus.ACTIVE)
        )
        return result.scalar_one_or_none()

    async def add(self, project: Project) -> Project:
        self.session.add(project)
        await self.session.flush()
        return project

    async def list_visible_to(self, user_id: int, *, offset: int, limit: int) -> tuple[list[Project], int]:
        has_membership = exists().where(ProjectMember.project_id == Project.id, ProjectMember.user_id == user_id)
        condition = (
            or_(Project.owner_id == user_id, has_membership),
            Project.status != ProjectStatus.DELETED,
        )
        total = await self.session.scalar(select(func.count(Project.id)).where(*condition))
        result = await self.session.execute(
            select(Project)
            .where(*condition)
            .order_by(Project.created_at.desc(), Project.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def ids_owned_by(self, owner_id: int) -> list[int]:
        result = await self.session.execute(select(Project.id).where(Project.owner_id == owner_id))
        return list(result.scalars().all())

    async def mark_deleted(self, project_id: int) -> int:
        return await self._rowcount(
            update(Project).where(Project.id == project_id).values(status=ProjectStatus.DELETED)
        )

    async def mark_deleted_owned_by(self, owner_id: int) -> int:
        return await self._rowcount(
            update(Project)
            .where(Project.owner_id == owner_id, Project.status == ProjectStatus.ACTIVE)
            .values(status=ProjectStatus.DELETED)
        )

    async def delete(self, project_id: int) -> int:
        return await self._rowcount(delete(Project).where(Project.id == project_id))


class ProjectMemberRepository(_Repository):
    async def get(self, project_id: int, user_id: int) -> ProjectMember | None:
        result = await self.session.execute(
            select(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self, project_id: int, user_id: int) -> ProjectMember | None:
        result = await self.session.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id == user_id,
                ProjectMember.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def add(self, project_id: int, user_id: int, role: str) -> ProjectMember:
        member = ProjectMember(project_id=project_id, user_id=user_id, role=role, is_active=True)
        self.session.add(member)
        await self.session.flush()
        return member

    async def list_active_with_users(self, project_id: int) -> Sequence[Row[Any]]:
        result = await self.session.execute(
            select(
                ProjectMember.id,
                ProjectMember.user_id,
                ProjectMember.role,
                ProjectMember.is_active,
                ProjectMember.joined_at,
                User.username,
                User.email,
                User.full_name,
                User.avatar,
            )
            .join(User, User.id == ProjectMember.user_id)
            .where(ProjectMember.project_id == project_id, ProjectMember.is_active.is_(True))
            .order_by(ProjectMember.joined_at.asc(), ProjectMember.id.asc())
        )
        return result.all()

    async def deactivate(self, project_id: int, user_id: int, now: datetime) -> int:
        return await self._rowcount(
            update(ProjectMember)
            .where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id == user_id,
                ProjectMember.is_active.is_(True),
            )
            .values(is_active=False, left_at=now)
        )

    async def deactivate_for_project(self, project_id: int, now: datetime) -> int:
        return await self._rowcount(
            update(ProjectMember)
            .where(ProjectMember.project_id == project_id, ProjectMember.is_active.is_(True))
            .values(is_active=False, left_at=now)
        )

    async def deactivate_for_user(self, user_id: int, now: datetime) -> int:
        return await self._rowcount(
            update(ProjectMember)
            .where(ProjectMember.user_id == user_id, ProjectMember.is_active.is_(True))
            .values(is_active=False, left_at=now)
        )

    async def delete_for_project(self, project_id: int) -> int:
        return await self._rowcount(delete(ProjectMember).where(ProjectMember.project_id == project_id))

    async def delete_for_user(self, user_id: int) -> int:
        return await self._rowcount(delete(ProjectMember).where(ProjectMember.user_id == user_id))


class BoardRepository(_Repository):
    async def get_active(self, board_id: int) -> KanbanBoard | None:
        result = await self.session.execute(
            select(KanbanBoard).where(KanbanBoard.id == board_id, KanbanBoard.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def add(self, board: KanbanBoard) -> KanbanBoard:
        self.session.add(board)
        await self.session.flush()
        return board

    async def list_active(self, project_id: int) -> list[KanbanBoard]:
        result = await self.session.execute(
            select(KanbanBoard)
            .where(KanbanBoard.project_id == project_id, KanbanBoard.is_active.is_(True))
            .order_by(KanbanBoard.position.asc(), KanbanBoard.id.asc())
        )
        return list(result.scalars().all())

    async def ids_for_project(self, project_id: int) -> list[int]:
        result = await self.session.execute(select(KanbanBoard.id).where(KanbanBoard.project_id == project_id))
        return list(result.scalars().all())

    async def max_position(self, project_id: int) -> int | None:
        return await self.session.scalar(
            select(func.max(KanbanBoard.position)).where(KanbanBoard.project_id == project_id)
        )

    async def deactivate_for_project(self, project_id: int) -> int:
        return await self._rowcount(
            update(KanbanBoard)
            .where(KanbanBoard.project_id == project_id, KanbanBoard.is_active.is_(True))
            .values(is_active=False)
        )

    async def delete_for_project(self, project_id: int) -> int:
        return await self._rowcount(delete(KanbanBoard).where(KanbanBoard.project_id == project_id))


class ColumnRepository(_Repository):
    async def get_active(self, column_id: int) -> KanbanColumn | None:
        result = await self.session.execute(
            select(KanbanColumn).where(KanbanColumn.id == column_id, KanbanColumn.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def add(self, column: KanbanColumn) -> KanbanColumn:
        self.session.add(column)
        await self.session.flush()
        return column

    async def list_for_board(self, board_id: int, *, active_only: bool = True) -> list[KanbanColumn]:
        stmt = select(KanbanColumn).where(KanbanColumn.board_id == board_id).order_by(KanbanColumn.position)
        if active_only:
            stmt = stmt.where(KanbanColumn.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def max_position(self, board_id: int) -> int | None:
        return await self.session.scalar(
            select(func.max(KanbanColumn.position)).where(KanbanColumn.board_id == board_id)
        )

    async def deactivate_for_boards(self, board_ids: Sequence[int]) -> int:
        if not board_ids:
            return 0
        return await self._rowcount(
            update(KanbanColumn)
            .where(KanbanColumn.board_id.in_(board_ids), KanbanColumn.is_active.is_(True))
            .values(is_active=False)
        )

    async def delete_for_boards(self, board_ids: Sequence[int]) -> int:
        if not board_ids:
            return 0
        return await self._rowcount(delete(KanbanColumn).where(KanbanColumn.board_id.in_(board_ids)))


class TaskRepository(_Repository):
    async def get_active(self, task_id: int, *, for_update: bool = False) -> Task | None:
        stmt = select(Task).where(Task.id == task_id, Task.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, task: Task) -> Task:
        self.session.add(task)
        await self.session.flush()
        return task

    async def remove(self, task: Task) -> None:
        await self.session.delete(task)
        await self.session.flush()

    async def max_order(self, column_id: int) -> int | None:
        return await self.session.scalar(
            select(func.max(Task.order)).where(Task.column_id == column_id, Task.deleted_at.is_(None))
        )

    async def list_in_column(self, column_id: int, *, for_update: bool = False) -> list[Task]:
        stmt = (
            select(Task)
            .where(Task.column_id == column_id, Task.deleted_at.is_(None))
            .order_by(Task.order.asc(), Task.id.asc())
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_project(self, project_id: int, board_id: int | None = None) -> list[Task]:
        stmt = (
            select(Task)
            .where(Task.project_id == project_id, Task.deleted_at.is_(None))
            .order_by(Task.order.asc(), Task.id.asc())
        )
        if board_id is not None:
            stmt = stmt.where(Task.board_id == board_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def soft_delete_for_project(self, project_id: int, board_ids: Sequence[int], now: datetime) -> int:
        scope = Task.project_id == project_id
        if board_ids:
            scope = or_(scope, Task.board_id.in_(board_ids))
        return await self._rowcount(
            update(Task).where(scope, Task.deleted_at.is_(None)).values(deleted_at=now)
        )

    async def soft_delete_for_user(self, user_id: int, now: datetime) -> int:
        return await self._rowcount(
            update(Task)
            .where(or_(Task.created_by_id == user_id, Task.assignee_id == user_id), Task.deleted_at.is_(None))
            .values(deleted_at=now)
        )

    async def delete_for_boards(self, board_ids: Sequence[int]) -> int:
        if not board_ids:
            return 0
        return await self._rowcount(delete(Task).where(Task.board_id.in_(board_ids)))

    async def delete_for_project(self, project_id: int) -> int:
        return await self._rowcount(delete(Task).where(Task.project_id == project_id))

    async def delete_created_by(self, user_id: int) -> int:
        return await self._rowcount(delete(Task).where(Task.created_by_id == user_id))

    async def delete_assigned_to(self, user_id: int) -> int:
        return await self._rowcount(delete(Task).where(Task.assignee_id == user_id))


class NotificationRepository(_Repository):
    async def add(self, notification: Notification) -> Notification:
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def get_for_user(self, notification_id: int, user_id: int) -> Notification | None:
        result = await self.session.execute(
            select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: int, *, unread_only: bool = False) -> list[Notification]:
        stmt = select(Notification).where(
            Notification.user_id == user_id,
            Notification.status != NotificationStatus.ARCHIVED,
        )
        if unread_only:
            stmt = stmt.where(Notification.status == NotificationStatus.UNREAD)
        result = await self.session.execute(stmt.order_by(Notification.created_at.desc(), Notification.id.desc()))
        return list(result.scalars().all())

    async def archive_unread_for_project(self, project_id: int, now: datetime) -> int:
        return await self._rowcount(
            update(Notification)
            .where(Notification.project_id == project_id, Notification.status == NotificationStatus.UNREAD)
            .values(status=NotificationStatus.ARCHIVED, archived_at=now)
        )

    async def archive_unread_for_user(self, user_id: int, now: datetime) -> int:
        return await self._rowcount(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.status == NotificationStatus.UNREAD)
            .values(status=NotificationStatus.ARCHIVED, archived_at=now)
        )

    async def delete_for_project(self, project_id: int) -> int:
        return await self._rowcount(delete(Notification).where(Notification.project_id == project_id))

    async def delete_for_user(self, user_id: int) -> int:
        return await self._rowcount(delete(Notification).where(Notification.user_id == user_id))


class Repositories:
    """All repositories bound to one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = UserRepository(session)
        self.user_roles = UserRoleRepository(session)
        self.refresh_tokens = RefreshTokenRepository(session)
        self.projects = ProjectRepository(session)
        self.members = ProjectMemberRepository(session)
        self.boards = BoardRepository(session)
        self.columns = ColumnRepository(session)
        self.tasks = TaskRepository(session)
        self.notifications = NotificationRepository(session)
