"""Tests for WorkflowService."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from docflow.core.types import WorkflowStatus
from docflow.exceptions import NotFoundError, WorkflowValidationError
from tests.conftest import OWNER

if TYPE_CHECKING:
    from docflow.engine.executor import WorkflowExecutor
    from docflow.engine.workflows import WorkflowService
    from tests.conftest import FakeDocument

STEPS = [{"id": "stamp", "type": "ACTION", "action": "stamp"}]


@pytest.mark.integration
@pytest.mark.asyncio
class TestWorkflowService:
    """Tests for owner-scoped workflow management."""

    async def test_create_stores_canonical_definition(self, workflow_service: WorkflowService) -> None:
        """Test definitions are validated and normalised on save."""
        workflow = await workflow_service.create(
            OWNER,
            "Invoice approval",
            {"version": "1.2.0", "steps": STEPS},
            description="Route invoices",
            team_id="finance",
        )

        assert workflow.id is not None
        assert workflow.status is WorkflowStatus.ACTIVE
        assert workflow.version == "1.2.0"
        assert workflow.team_id == "finance"
        assert workflow.definition["steps"] == [{"id": "stamp", "type": "action", "action": "stamp", "params": {}}]

    async def test_create_rejects_invalid_definition(self, workflow_service: WorkflowService) -> None:
        """Test nothing is stored when validation fails."""
        with pytest.raises(WorkflowValidationError) as exc_info:
            await workflow_service.create(
                OWNER, "Broken", {"steps": [{"id": "a", "type": "action", "action": "unregistered"}]}
            )

        assert exc_info.value.errors == ["Step 'a': unknown action 'unregistered'"]
        _, total = await workflow_service.list(OWNER)
        assert total == 0

    async def test_get_is_owner_scoped(self, workflow_service: WorkflowService) -> None:
        """Test other owners' workflows look missing."""
        workflow = await workflow_service.create(OWNER, "Mine", {"steps": STEPS})

        assert (await workflow_service.get(workflow.id, OWNER)).name == "Mine"
        with pytest.raises(NotFoundError):
            await workflow_service.get(workflow.id, "someone-else")
        with pytest.raises(NotFoundError):
            await workflow_service.get(uuid4(), OWNER)

    async def test_list_with_status_filter(self, workflow_service: WorkflowService) -> None:
        """Test listing and filtering."""
        await workflow_service.create(OWNER, "Active", {"steps": STEPS})
        await workflow_service.create(OWNER, "Draft", {"steps": STEPS}, status=WorkflowStatus.INACTIVE)
        await workflow_service.create("someone-else", "Theirs", {"steps": STEPS})

        _, total = await workflow_service.list(OWNER)
        inactive, inactive_total = await workflow_service.list(OWNER, status=WorkflowStatus.INACTIVE)

        assert total == 2
        assert inactive_total == 1
        assert inactive[0].name == "Draft"

    async def test_update(self, workflow_service: WorkflowService) -> None:
        """Test partial updates."""
        workflow = await workflow_service.create(OWNER, "Review", {"steps": STEPS})

        updated = await workflow_service.update(
            workflow.id,
            OWNER,
            name="Legal review",
            definition={"version": "2.0.0", "steps": [{"id": "wait", "type": "delay", "seconds": 5}]},
            status=WorkflowStatus.INACTIVE,
        )

        assert updated.name == "Legal review"
        assert updated.version == "2.0.0"
        assert updated.status is WorkflowStatus.INACTIVE
        assert updated.definition["steps"][0]["type"] == "delay"
        assert updated.description is None

    async def test_update_validates_definition(self, workflow_service: WorkflowService) -> None:
        """Test an invalid definition leaves the workflow unchanged."""
        workflow = await workflow_service.create(OWNER, "Review", {"steps": STEPS})
        workflow_id = workflow.id

        with pytest.raises(WorkflowValidationError):
            await workflow_service.update(workflow_id, OWNER, definition={"steps": []})

        assert (await workflow_service.get(workflow_id, OWNER)).definition["steps"][0]["id"] == "stamp"

    async def test_delete_is_soft(
        self, workflow_service: WorkflowService, executor: WorkflowExecutor, document: FakeDocument
    ) -> None:
        """Test deleted workflows disappear but their rows are kept."""
        workflow = await workflow_service.create(OWNER, "Review", {"steps": STEPS})
        await executor.start(workflow.id, document.id, OWNER)

        deleted = await workflow_service.delete(workflow.id, OWNER)

        assert deleted.status is WorkflowStatus.DELETED
        with pytest.raises(NotFoundError):
            await workflow_service.get(workflow.id, OWNER)
        with pytest.raises(NotFoundError):
            await executor.start(workflow.id, document.id, OWNER)
        assert (await workflow_service.list(OWNER))[1] == 0
        assert (await executor.list_executions(OWNER))[1] == 0
