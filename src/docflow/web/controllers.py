"""REST API controllers for docflow.

This module provides three controller classes:
- WorkflowController: Manage workflows and start executions
- ExecutionController: Monitor and control executions
- ApprovalController: List and answer approval requests

Handlers receive the acting user as ``actor_id``, injected from the request
header configured on the plugin.
"""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from litestar import Controller, delete, get, patch, post
from litestar.pagination import OffsetPagination
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED

from docflow.core.types import ExecutionStatus, WorkflowStatus
from docflow.engine.executor import WorkflowExecutor  # noqa: TC001 - needed for DI
from docflow.engine.workflows import WorkflowService  # noqa: TC001 - needed for DI
from docflow.web.dto import (
    ApprovalRequestDTO,
    CreateWorkflowDTO,
    ExecutionDetailDTO,
    ExecutionDTO,
    ExecutionLogDTO,
    RespondDTO,
    StartExecutionDTO,
    TokenResolutionDTO,
    UpdateWorkflowDTO,
    WorkflowDTO,
)

__all__ = [
    "ApprovalController",
    "ExecutionController",
    "WorkflowController",
]


class WorkflowController(Controller):
    """API controller for workflows.

    Provides CRUD endpoints for the actor's workflows and the endpoint that
    starts a workflow on a document.

    Tags: Workflows
    """

    path = "/"
    tags: ClassVar[list[str]] = ["Workflows"]

    @get("/")
    async def list_workflows(
        self,
        actor_id: str,
        workflow_service: WorkflowService,
        status: WorkflowStatus | None = Parameter(
            default=None,
            description="Filter by workflow status",
        ),
        limit: int = Parameter(
            default=100,
            ge=1,
            le=1000,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> OffsetPagination[WorkflowDTO]:
        """List the actor's workflows, newest first.

        Args:
            actor_id: The acting user.
            workflow_service: Injected workflow service.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            A page of workflow DTOs.
        """
        workflows, total = await workflow_service.list(actor_id, status=status, limit=limit, offset=offset)
        return OffsetPagination(
            items=[WorkflowDTO.from_model(w) for w in workflows],
            limit=limit,
            offset=offset,
            total=total,
        )

    @post("/", status_code=HTTP_201_CREATED)
    async def create_workflow(
        self,
        data: CreateWorkflowDTO,
        actor_id: str,
        workflow_service: WorkflowService,
    ) -> WorkflowDTO:
        """Create a workflow.

        Raises:
            WorkflowValidationError: If the definition is invalid.
        """
        workflow = await workflow_service.create(
            actor_id,
            data.name,
            data.definition,
            description=data.description,
            team_id=data.team_id,
            status=data.status,
        )
        return WorkflowDTO.from_model(workflow)

    @get("/{workflow_id:uuid}")
    async def get_workflow(
        self,
        workflow_id: UUID,
        actor_id: str,
        workflow_service: WorkflowService,
    ) -> WorkflowDTO:
        """Get one of the actor's workflows."""
        return WorkflowDTO.from_model(await workflow_service.get(workflow_id, actor_id))

    @patch("/{workflow_id:uuid}")
    async def update_workflow(
        self,
        workflow_id: UUID,
        data: UpdateWorkflowDTO,
        actor_id: str,
        workflow_service: WorkflowService,
    ) -> WorkflowDTO:
        """Update a workflow. Omitted fields are left unchanged."""
        workflow = await workflow_service.update(
            workflow_id,
            actor_id,
            name=data.name,
            description=data.description,
            definition=data.definition,
            status=data.status,
        )
        return WorkflowDTO.from_model(workflow)

    @delete("/{workflow_id:uuid}", status_code=HTTP_200_OK)
    async def delete_workflow(
        self,
        workflow_id: UUID,
        actor_id: str,
        workflow_service: WorkflowService,
    ) -> WorkflowDTO:
        """Soft-delete a workflow. Existing executions are kept."""
        return WorkflowDTO.from_model(await workflow_service.delete(workflow_id, actor_id))

    @post("/{workflow_id:uuid}/execute", status_code=HTTP_200_OK)
    async def execute_workflow(
        self,
        workflow_id: UUID,
        data: StartExecutionDTO,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> ExecutionDTO:
        """Start the workflow on a document.

        The execution runs until it finishes or has to wait, so the returned
        status may already be terminal.

        Raises:
            NotFoundError: If the workflow or document is missing or not owned.
            InvalidStateError: If the workflow is not active.
        """
        execution = await workflow_executor.start(workflow_id, data.document_id, actor_id, data.variables)
        return ExecutionDTO.from_model(execution)


class ExecutionController(Controller):
    """API controller for executions.

    Tags: Workflow Executions
    """

    path = "/executions"
    tags: ClassVar[list[str]] = ["Workflow Executions"]

    @get("/")
    async def list_executions(
        self,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
        status: ExecutionStatus | None = Parameter(
            default=None,
            description="Filter by execution status",
        ),
        workflow_id: UUID | None = Parameter(
            default=None,
            description="Filter by workflow",
        ),
        limit: int = Parameter(
            default=50,
            ge=1,
            le=1000,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> OffsetPagination[ExecutionDTO]:
        """List executions of the actor's workflows, newest first."""
        executions, total = await workflow_executor.list_executions(
            actor_id,
            status=status,
            workflow_id=workflow_id,
            limit=limit,
            offset=offset,
        )
        return OffsetPagination(
            items=[ExecutionDTO.from_model(e) for e in executions],
            limit=limit,
            offset=offset,
            total=total,
        )

    @get("/{execution_id:uuid}")
    async def get_execution(
        self,
        execution_id: UUID,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> ExecutionDetailDTO:
        """Get an execution with its step records and approval requests."""
        tree = await workflow_executor.get_execution_tree(execution_id, actor_id)
        return ExecutionDetailDTO.from_tree(tree)

    @get("/{execution_id:uuid}/logs")
    async def get_execution_logs(
        self,
        execution_id: UUID,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> list[ExecutionLogDTO]:
        """Get the step log of an execution."""
        entries = await workflow_executor.execution_logs(execution_id, actor_id)
        return [ExecutionLogDTO.from_entry(e) for e in entries]

    @post("/{execution_id:uuid}/pause", status_code=HTTP_200_OK)
    async def pause_execution(
        self,
        execution_id: UUID,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> ExecutionDTO:
        """Pause a running execution."""
        return ExecutionDTO.from_model(await workflow_executor.pause(execution_id, actor_id))

    @post("/{execution_id:uuid}/resume", status_code=HTTP_200_OK)
    async def resume_execution(
        self,
        execution_id: UUID,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> ExecutionDTO:
        """Resume a paused execution."""
        return ExecutionDTO.from_model(await workflow_executor.resume(execution_id, actor_id))

    @post("/{execution_id:uuid}/cancel", status_code=HTTP_200_OK)
    async def cancel_execution(
        self,
        execution_id: UUID,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
        reason: str | None = Parameter(
            default=None,
            description="Reason for cancellation",
        ),
    ) -> ExecutionDTO:
        """Cancel a running or paused execution."""
        return ExecutionDTO.from_model(await workflow_executor.cancel(execution_id, actor_id, reason))

    @post("/{execution_id:uuid}/retry", status_code=HTTP_200_OK)
    async def retry_execution(
        self,
        execution_id: UUID,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> ExecutionDTO:
        """Retry a failed execution.

        Returns:
            The new execution. The failed one is left as it was.
        """
        return ExecutionDTO.from_model(await workflow_executor.retry(execution_id, actor_id))


class ApprovalController(Controller):
    """API controller for approval requests.

    Tags: Approvals
    """

    path = "/approvals"
    tags: ClassVar[list[str]] = ["Approvals"]

    @get("/")
    async def list_pending_approvals(
        self,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> list[ApprovalRequestDTO]:
        """List the approval requests waiting on the actor."""
        requests = await workflow_executor.pending_approvals(actor_id)
        return [ApprovalRequestDTO.from_model(r) for r in requests]

    @post("/{request_id:uuid}/respond", status_code=HTTP_200_OK)
    async def respond_to_approval(
        self,
        request_id: UUID,
        data: RespondDTO,
        actor_id: str,
        workflow_executor: WorkflowExecutor,
    ) -> ApprovalRequestDTO:
        """Approve or reject a request as the actor.

        Returns:
            The request after the decision was counted.
        """
        outcome = await workflow_executor.respond(request_id, actor_id, data.decision, data.comment)
        return ApprovalRequestDTO.from_model(outcome.request)

    @post("/token/{token:str}", status_code=HTTP_200_OK)
    async def respond_with_token(
        self,
        token: str,
        workflow_executor: WorkflowExecutor,
    ) -> TokenResolutionDTO:
        """Record the decision carried by an emailed token. No actor is needed."""
        resolution = await workflow_executor.resolve_by_token(token)
        return TokenResolutionDTO.from_resolution(resolution)
