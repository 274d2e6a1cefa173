"""Owner-scoped workflow management."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from docflow.core.definition import parse_definition
from docflow.core.types import WorkflowStatus
from docflow.db.models import WorkflowModel
from docflow.db.repositories import WorkflowRepository
from docflow.exceptions import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from docflow.engine.registry import ActionRegistry

__all__ = ["WorkflowService"]

logger = logging.getLogger(__name__)


class WorkflowService:
    """Create, read, update and soft-delete workflows.

    Every operation is scoped to the owner: a workflow owned by someone else
    is reported as missing. Definitions are validated before they are stored,
    and the stored JSON is the canonical form of the parsed definition.
    """

    def __init__(self, session: AsyncSession, actions: ActionRegistry | None = None) -> None:
        self.session = session
        self.actions = actions
        self._repo = WorkflowRepository(session=session)

    async def create(
        self,
        owner_id: str,
        name: str,
        definition: Mapping[str, Any],
        *,
        description: str | None = None,
        team_id: str | None = None,
        status: WorkflowStatus = WorkflowStatus.ACTIVE,
    ) -> WorkflowModel:
        """Validate and store a new workflow.

        Raises:
            WorkflowValidationError: If the definition is invalid.
        """
        parsed = parse_definition(definition, self.actions)
        workflow = await self._repo.add(
            WorkflowModel(
                owner_id=owner_id,
                team_id=team_id,
                name=name,
                description=description,
                version=parsed.version,
                definition=parsed.to_dict(),
                status=status,
            ),
            auto_commit=False,
        )
        await self.session.commit()
        logger.info("Workflow %s created by %s", workflow.id, owner_id)
        return workflow

    async def get(self, workflow_id: UUID, owner_id: str) -> WorkflowModel:
        """Get an owned workflow.

        Raises:
            NotFoundError: If it is missing, deleted or owned by someone else.
        """
        workflow = await self._repo.get_owned(workflow_id, owner_id)
        if workflow is None:
            raise NotFoundError("workflow", workflow_id)
        return workflow

    async def list(
        self,
        owner_id: str,
        *,
        status: WorkflowStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowModel], int]:
        """List the owner's workflows, newest first."""
        return await self._repo.find_by_owner(owner_id, status=status, limit=limit, offset=offset)

    async def update(
        self,
        workflow_id: UUID,
        owner_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        definition: Mapping[str, Any] | None = None,
        status: WorkflowStatus | None = None,
    ) -> WorkflowModel:
        """Update the given fields of an owned workflow.

        Running executions keep reading the stored definition, so a definition
        change applies to them from their next step on.

        Raises:
            NotFoundError: If the workflow is not owned by ``owner_id``.
            WorkflowValidationError: If the new definition is invalid.
        """
        workflow = await self.get(workflow_id, owner_id)
        if definition is not None:
            parsed = parse_definition(definition, self.actions)
            workflow.definition = parsed.to_dict()
            workflow.version = parsed.version
        if name is not None:
            workflow.name = name
        if description is not None:
            workflow.description = description
        if status is not None:
            workflow.status = status
        await self.session.commit()
        logger.info("Workflow %s updated by %s", workflow_id, owner_id)
        return workflow

    async def delete(self, workflow_id: UUID, owner_id: str) -> WorkflowModel:
        """Soft-delete an owned workflow. Its executions are kept."""
        workflow = await self.get(workflow_id, owner_id)
        workflow.status = WorkflowStatus.DELETED
        await self.session.commit()
        logger.info("Workflow %s deleted by %s", workflow_id, owner_id)
        return workflow
