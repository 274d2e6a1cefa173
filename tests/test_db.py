"""Integration tests for the database persistence layer.

Tests the SQLAlchemy models, repositories and the initial migration using an
async SQLite in-memory database.
"""

from __future__ import annotations

import importlib.util
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from advanced_alchemy.exceptions import IntegrityError
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

from docflow.core.types import (
    ApprovalDecision,
    ApprovalMode,
    ApprovalStatus,
    ExecutionStatus,
    StepKind,
    StepStatus,
    WorkflowStatus,
)
from docflow.db import (
    ApprovalRequestModel,
    ApprovalRequestRepository,
    ApprovalResponseModel,
    ApprovalResponseRepository,
    ApprovalTokenModel,
    ApprovalTokenRepository,
    WorkflowExecutionModel,
    WorkflowExecutionRepository,
    WorkflowModel,
    WorkflowRepository,
    WorkflowStepModel,
    WorkflowStepRepository,
)
from tests.conftest import OWNER

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

MIGRATION = Path(__file__).parents[1] / "src/docflow/db/migrations/versions/001_initial_docflow_tables.py"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def workflow(session: AsyncSession) -> WorkflowModel:
    """Create a stored workflow."""
    repo = WorkflowRepository(session=session)
    workflow = await repo.add(
        WorkflowModel(
            owner_id=OWNER,
            name="Contract review",
            definition={"version": "1.0.0", "variables": {}, "steps": []},
            status=WorkflowStatus.ACTIVE,
        ),
        auto_commit=True,
    )
    return workflow


@pytest.fixture
async def execution(session: AsyncSession, workflow: WorkflowModel) -> WorkflowExecutionModel:
    """Create a running execution."""
    repo = WorkflowExecutionRepository(session=session)
    return await repo.add(
        WorkflowExecutionModel(
            workflow_id=workflow.id,
            document_id=uuid4(),
            started_by=OWNER,
            status=ExecutionStatus.RUNNING,
            started_at=NOW,
        ),
        auto_commit=True,
    )


@pytest.fixture
async def request_row(session: AsyncSession, execution: WorkflowExecutionModel) -> ApprovalRequestModel:
    """Create a pending approval request on an approval step record."""
    step = await WorkflowStepRepository(session=session).add(
        WorkflowStepModel(
            execution_id=execution.id,
            step_index=0,
            step_key="review",
            step_type=StepKind.APPROVAL,
            status=StepStatus.RUNNING,
            started_at=NOW,
        ),
        auto_commit=True,
    )
    return await ApprovalRequestRepository(session=session).add(
        ApprovalRequestModel(
            step_id=step.id,
            execution_id=execution.id,
            approvers=["ann", "bob"],
            mode=ApprovalMode.ALL,
            required_approvals=2,
            status=ApprovalStatus.PENDING,
            expires_at=NOW + timedelta(hours=1),
        ),
        auto_commit=True,
    )


# =============================================================================
# Models
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestModels:
    """Tests for model defaults and constraints."""

    async def test_execution_defaults(self, execution: WorkflowExecutionModel) -> None:
        """Test column defaults of a new execution."""
        assert execution.id is not None
        assert execution.current_step_index == 0
        assert execution.context == {}
        assert execution.retry_of_id is None
        assert execution.created_at is not None

    async def test_step_index_is_unique_per_execution(
        self, session: AsyncSession, execution: WorkflowExecutionModel
    ) -> None:
        """Test one record per step index."""
        repo = WorkflowStepRepository(session=session)

        def record() -> WorkflowStepModel:
            return WorkflowStepModel(
                execution_id=execution.id,
                step_index=0,
                step_key="stamp",
                step_type=StepKind.ACTION,
                status=StepStatus.RUNNING,
                started_at=NOW,
            )

        await repo.add(record(), auto_commit=True)

        with pytest.raises(IntegrityError):
            await repo.add(record(), auto_commit=True)

    async def test_one_response_per_approver(self, session: AsyncSession, request_row: ApprovalRequestModel) -> None:
        """Test the database refuses a second response from the same approver."""
        repo = ApprovalResponseRepository(session=session)
        await repo.add(
            ApprovalResponseModel(
                request_id=request_row.id, approver_id="ann", decision=ApprovalDecision.APPROVED, responded_at=NOW
            ),
            auto_commit=True,
        )

        with pytest.raises(IntegrityError):
            await repo.add(
                ApprovalResponseModel(
                    request_id=request_row.id, approver_id="ann", decision=ApprovalDecision.REJECTED, responded_at=NOW
                ),
                auto_commit=True,
            )


# =============================================================================
# Repositories
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestRepositories:
    """Tests for the custom repository queries."""

    async def test_workflow_ownership(self, session: AsyncSession, workflow: WorkflowModel) -> None:
        """Test owner scoping and soft deletion."""
        repo = WorkflowRepository(session=session)

        assert await repo.get_owned(workflow.id, OWNER) is workflow
        assert await repo.get_owned(workflow.id, "someone-else") is None

        workflow.status = WorkflowStatus.DELETED
        await session.commit()

        assert await repo.get_owned(workflow.id, OWNER) is None
        assert (await repo.find_by_owner(OWNER))[1] == 0

    async def test_find_waiting_on_delay(self, session: AsyncSession, execution: WorkflowExecutionModel) -> None:
        """Test only due delay steps at the current index are found."""
        repo = WorkflowExecutionRepository(session=session)
        await WorkflowStepRepository(session=session).add(
            WorkflowStepModel(
                execution_id=execution.id,
                step_index=0,
                step_key="cool-off",
                step_type=StepKind.DELAY,
                status=StepStatus.RUNNING,
                started_at=NOW,
                resume_at=NOW + timedelta(minutes=10),
            ),
            auto_commit=True,
        )

        assert list(await repo.find_waiting_on_delay(NOW)) == []
        assert list(await repo.find_waiting_on_delay(NOW + timedelta(minutes=10))) == [execution.id]

        execution.status = ExecutionStatus.PAUSED
        await session.commit()
        assert list(await repo.find_waiting_on_delay(NOW + timedelta(hours=1))) == []

    async def test_resolve_is_conditional(self, session: AsyncSession, request_row: ApprovalRequestModel) -> None:
        """Test only the first transition out of pending wins."""
        repo = ApprovalRequestRepository(session=session)

        assert await repo.resolve(request_row.id, ApprovalStatus.APPROVED, NOW) is True
        assert await repo.resolve(request_row.id, ApprovalStatus.REJECTED, NOW) is False
        await session.commit()

        reloaded = await repo.lock(request_row.id)
        assert reloaded is not None
        assert reloaded.status is ApprovalStatus.APPROVED
        assert reloaded.resolved_at == NOW

    async def test_find_overdue_and_pending(self, session: AsyncSession, request_row: ApprovalRequestModel) -> None:
        """Test deadline and status queries."""
        repo = ApprovalRequestRepository(session=session)

        assert list(await repo.find_overdue(NOW)) == []
        assert [r.id for r in await repo.find_overdue(NOW + timedelta(hours=2))] == [request_row.id]
        assert [r.id for r in await repo.find_pending(request_row.execution_id)] == [request_row.id]
        assert list(await repo.find_pending(uuid4())) == []

    async def test_token_consume_once(self, session: AsyncSession, request_row: ApprovalRequestModel) -> None:
        """Test a token can be consumed exactly once and not after expiry."""
        repo = ApprovalTokenRepository(session=session)
        token = await repo.add(
            ApprovalTokenModel(
                request_id=request_row.id,
                approver_id="ann",
                token="secret-1",
                decision=ApprovalDecision.APPROVED,
                expires_at=NOW + timedelta(hours=1),
            ),
            auto_commit=True,
        )

        assert await repo.consume(token.id, NOW + timedelta(hours=2)) is False
        assert await repo.consume(token.id, NOW) is True
        assert await repo.consume(token.id, NOW) is False
        await session.commit()

        found = await repo.find_by_token("secret-1")
        assert found is not None
        assert found.used is True
        assert found.used_at == NOW

    async def test_revoke_for_request(self, session: AsyncSession, request_row: ApprovalRequestModel) -> None:
        """Test unused tokens stop working once revoked."""
        repo = ApprovalTokenRepository(session=session)
        token = await repo.add(
            ApprovalTokenModel(
                request_id=request_row.id,
                approver_id="bob",
                token="secret-2",
                decision=ApprovalDecision.REJECTED,
                expires_at=NOW + timedelta(hours=1),
            ),
            auto_commit=True,
        )

        await repo.revoke_for_request(request_row.id, NOW)
        await session.commit()

        assert await repo.consume(token.id, NOW + timedelta(seconds=1)) is False


# =============================================================================
# Migrations
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestMigration:
    """Tests for the initial migration."""

    async def test_upgrade_and_downgrade(self) -> None:
        """Test the migration creates the model tables and drops them again."""
        from alembic.migration import MigrationContext
        from alembic.operations import Operations

        spec = importlib.util.spec_from_file_location("docflow_initial_migration", MIGRATION)
        assert spec is not None
        assert spec.loader is not None
        migration = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(migration)

        def run(connection, step):
            context = MigrationContext.configure(connection)
            with Operations.context(context):
                step()
            return set(inspect(connection).get_table_names())

        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        try:
            async with engine.begin() as conn:
                created = await conn.run_sync(run, migration.upgrade)
                dropped = await conn.run_sync(run, migration.downgrade)
        finally:
            await engine.dispose()

        assert created == set(WorkflowModel.metadata.tables)
        assert dropped == set()
