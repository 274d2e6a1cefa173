"""Repository implementations for docflow persistence.

This module provides async repositories over the docflow models using
advanced-alchemy's repository pattern. Methods whose name starts with ``lock_``
select with ``FOR UPDATE`` and refresh the identity map, so the caller holds the
row until its transaction ends.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, select, update

from docflow.core.types import ApprovalStatus, ExecutionStatus, StepKind, StepStatus, WorkflowStatus
from docflow.db.models import (
    ApprovalRequestModel,
    ApprovalResponseModel,
    ApprovalTokenModel,
    WorkflowExecutionModel,
    WorkflowModel,
    WorkflowStepModel,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

__all__ = [
    "ApprovalRequestRepository",
    "ApprovalResponseRepository",
    "ApprovalTokenRepository",
    "WorkflowExecutionRepository",
    "WorkflowRepository",
    "WorkflowStepRepository",
]


class WorkflowRepository(SQLAlchemyAsyncRepository[WorkflowModel]):
    """Repository for workflows. Soft-deleted rows are never returned."""

    model_type = WorkflowModel

    async def get_owned(self, workflow_id: UUID, owner_id: str) -> WorkflowModel | None:
        """Get a workflow if it exists, is not deleted and belongs to ``owner_id``.

        Args:
            workflow_id: The workflow ID.
            owner_id: The expected owner.

        Returns:
            The workflow or None.
        """
        stmt = select(WorkflowModel).where(
            and_(
                WorkflowModel.id == workflow_id,
                WorkflowModel.owner_id == owner_id,
                WorkflowModel.status != WorkflowStatus.DELETED,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_owner(
        self,
        owner_id: str,
        status: WorkflowStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowModel], int]:
        """List the non-deleted workflows of an owner.

        Args:
            owner_id: The owner.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (workflows, total_count).
        """
        conditions = [WorkflowModel.owner_id == owner_id, WorkflowModel.status != WorkflowStatus.DELETED]

        if status:
            conditions.append(WorkflowModel.status == status)

        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="created_at", sort_order="desc"),
        )


class WorkflowExecutionRepository(SQLAlchemyAsyncRepository[WorkflowExecutionModel]):
    """Repository for executions."""

    model_type = WorkflowExecutionModel

    async def lock(self, execution_id: UUID) -> WorkflowExecutionModel | None:
        """Select an execution ``FOR UPDATE`` with fresh column values.

        Args:
            execution_id: The execution ID.

        Returns:
            The locked execution or None.
        """
        stmt = (
            select(WorkflowExecutionModel)
            .where(WorkflowExecutionModel.id == execution_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_owned(self, execution_id: UUID, owner_id: str) -> WorkflowExecutionModel | None:
        """Get an execution whose workflow belongs to ``owner_id``.

        Args:
            execution_id: The execution ID.
            owner_id: The expected workflow owner.

        Returns:
            The execution or None.
        """
        stmt = (
            select(WorkflowExecutionModel)
            .join(WorkflowModel, WorkflowModel.id == WorkflowExecutionModel.workflow_id)
            .where(
                and_(
                    WorkflowExecutionModel.id == execution_id,
                    WorkflowModel.owner_id == owner_id,
                    WorkflowModel.status != WorkflowStatus.DELETED,
                )
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_owner(
        self,
        owner_id: str,
        status: ExecutionStatus | None = None,
        workflow_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowExecutionModel], int]:
        """List executions of workflows owned by ``owner_id``.

        Args:
            owner_id: The workflow owner.
            status: Optional status filter.
            workflow_id: Optional workflow filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (executions, total_count).
        """
        owned = select(WorkflowModel.id).where(
            and_(WorkflowModel.owner_id == owner_id, WorkflowModel.status != WorkflowStatus.DELETED)
        )
        conditions = [WorkflowExecutionModel.workflow_id.in_(owned)]

        if status:
            conditions.append(WorkflowExecutionModel.status == status)
        if workflow_id:
            conditions.append(WorkflowExecutionModel.workflow_id == workflow_id)

        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="started_at", sort_order="desc"),
        )

    async def find_waiting_on_delay(self, now: datetime) -> Sequence[UUID]:
        """IDs of running executions whose current delay step is due.

        Args:
            now: The reference time.

        Returns:
            Execution IDs.
        """
        stmt = (
            select(WorkflowExecutionModel.id)
            .join(
                WorkflowStepModel,
                and_(
                    WorkflowStepModel.execution_id == WorkflowExecutionModel.id,
                    WorkflowStepModel.step_index == WorkflowExecutionModel.current_step_index,
                ),
            )
            .where(
                and_(
                    WorkflowExecutionModel.status == ExecutionStatus.RUNNING,
                    WorkflowStepModel.step_type == StepKind.DELAY,
                    WorkflowStepModel.status == StepStatus.RUNNING,
                    WorkflowStepModel.resume_at <= now,
                )
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowStepRepository(SQLAlchemyAsyncRepository[WorkflowStepModel]):
    """Repository for execution-step records."""

    model_type = WorkflowStepModel

    async def find_by_execution(self, execution_id: UUID) -> Sequence[WorkflowStepModel]:
        """All step records of an execution, ordered by step index.

        Args:
            execution_id: The execution ID.

        Returns:
            List of step records.
        """
        stmt = (
            select(WorkflowStepModel)
            .where(WorkflowStepModel.execution_id == execution_id)
            .order_by(WorkflowStepModel.step_index)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_at_index(self, execution_id: UUID, step_index: int) -> WorkflowStepModel | None:
        """The step record at ``step_index``, if the execution reached it.

        Args:
            execution_id: The execution ID.
            step_index: The step index.

        Returns:
            The step record or None.
        """
        stmt = (
            select(WorkflowStepModel)
            .where(
                and_(
                    WorkflowStepModel.execution_id == execution_id,
                    WorkflowStepModel.step_index == step_index,
                )
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class ApprovalRequestRepository(SQLAlchemyAsyncRepository[ApprovalRequestModel]):
    """Repository for approval requests."""

    model_type = ApprovalRequestModel

    async def lock(self, request_id: UUID) -> ApprovalRequestModel | None:
        """Select a request ``FOR UPDATE`` with fresh column values.

        Args:
            request_id: The request ID.

        Returns:
            The locked request or None.
        """
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_step(self, step_id: UUID) -> ApprovalRequestModel | None:
        """The request opened for a step record, if any."""
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.step_id == step_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_execution(self, execution_id: UUID) -> Sequence[ApprovalRequestModel]:
        """All requests of an execution, oldest first."""
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.execution_id == execution_id)
            .order_by(ApprovalRequestModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_pending(self, execution_id: UUID | None = None) -> Sequence[ApprovalRequestModel]:
        """Pending requests, optionally of one execution.

        Args:
            execution_id: Optional execution filter.

        Returns:
            List of pending requests.
        """
        conditions = [ApprovalRequestModel.status == ApprovalStatus.PENDING]

        if execution_id:
            conditions.append(ApprovalRequestModel.execution_id == execution_id)

        stmt = select(ApprovalRequestModel).where(and_(*conditions)).order_by(ApprovalRequestModel.created_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_overdue(self, now: datetime) -> Sequence[ApprovalRequestModel]:
        """Pending requests whose deadline has passed."""
        stmt = select(ApprovalRequestModel).where(
            and_(
                ApprovalRequestModel.status == ApprovalStatus.PENDING,
                ApprovalRequestModel.expires_at.is_not(None),
                ApprovalRequestModel.expires_at <= now,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def resolve(self, request_id: UUID, status: ApprovalStatus, resolved_at: datetime) -> bool:
        """Move a request out of ``pending`` with a conditional update.

        Only one caller can win this transition; the others see ``False``.

        Args:
            request_id: The request ID.
            status: The terminal status.
            resolved_at: Resolution time.

        Returns:
            True if this call performed the transition.
        """
        stmt = (
            update(ApprovalRequestModel)
            .where(
                and_(
                    ApprovalRequestModel.id == request_id,
                    ApprovalRequestModel.status == ApprovalStatus.PENDING,
                )
            )
            .values(status=status, resolved_at=resolved_at)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class ApprovalResponseRepository(SQLAlchemyAsyncRepository[ApprovalResponseModel]):
    """Repository for approval responses."""

    model_type = ApprovalResponseModel

    async def find_by_request(self, request_id: UUID) -> Sequence[ApprovalResponseModel]:
        """Responses to a request, in the order they arrived."""
        stmt = (
            select(ApprovalResponseModel)
            .where(ApprovalResponseModel.request_id == request_id)
            .order_by(ApprovalResponseModel.responded_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_for_approver(self, request_id: UUID, approver_id: str) -> ApprovalResponseModel | None:
        """The response of ``approver_id`` to a request, if any."""
        stmt = select(ApprovalResponseModel).where(
            and_(
                ApprovalResponseModel.request_id == request_id,
                ApprovalResponseModel.approver_id == approver_id,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class ApprovalTokenRepository(SQLAlchemyAsyncRepository[ApprovalTokenModel]):
    """Repository for emailed approval tokens."""

    model_type = ApprovalTokenModel

    async def find_by_token(self, token: str) -> ApprovalTokenModel | None:
        """Look up a token by its secret value."""
        stmt = (
            select(ApprovalTokenModel)
            .where(ApprovalTokenModel.token == token)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def consume(self, token_id: UUID, now: datetime) -> bool:
        """Mark a token used if it is unused and not expired, atomically.

        Args:
            token_id: The token row ID.
            now: The reference time.

        Returns:
            True if this call consumed the token.
        """
        stmt = (
            update(ApprovalTokenModel)
            .where(
                and_(
                    ApprovalTokenModel.id == token_id,
                    ApprovalTokenModel.used == False,  # noqa: E712
                    ApprovalTokenModel.expires_at > now,
                )
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def revoke_for_request(self, request_id: UUID, now: datetime) -> None:
        """Expire every unused token of a request."""
        stmt = (
            update(ApprovalTokenModel)
            .where(
                and_(
                    ApprovalTokenModel.request_id == request_id,
                    ApprovalTokenModel.used == False,  # noqa: E712
                    ApprovalTokenModel.expires_at > now,
                )
            )
            .values(expires_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.execute(stmt)
