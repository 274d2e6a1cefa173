"""Data Transfer Objects for the docflow web API.

This module defines DTOs for serializing and deserializing workflows,
executions and approvals in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from docflow.core.types import ApprovalDecision, WorkflowStatus

if TYPE_CHECKING:
    from docflow.db.models import (
        ApprovalRequestModel,
        ApprovalResponseModel,
        WorkflowExecutionModel,
        WorkflowModel,
        WorkflowStepModel,
    )
    from docflow.engine.executor import ExecutionLogEntry, ExecutionTree, TokenResolution

__all__ = [
    "ApprovalRequestDTO",
    "ApprovalResponseDTO",
    "CreateWorkflowDTO",
    "ExecutionDTO",
    "ExecutionDetailDTO",
    "ExecutionLogDTO",
    "RespondDTO",
    "StartExecutionDTO",
    "StepRecordDTO",
    "TokenResolutionDTO",
    "UpdateWorkflowDTO",
    "WorkflowDTO",
]


@dataclass
class CreateWorkflowDTO:
    """DTO for creating a workflow.

    Attributes:
        name: Display name.
        definition: Step definition (``{"version": ..., "steps": [...], "variables": {...}}``).
        description: Optional description.
        team_id: Optional team scope.
        status: Initial status; active by default.
    """

    name: str
    definition: dict[str, Any]
    description: str | None = None
    team_id: str | None = None
    status: WorkflowStatus = WorkflowStatus.ACTIVE


@dataclass
class UpdateWorkflowDTO:
    """DTO for a partial workflow update. Omitted fields are left unchanged."""

    name: str | None = None
    description: str | None = None
    definition: dict[str, Any] | None = None
    status: WorkflowStatus | None = None


@dataclass
class WorkflowDTO:
    """DTO for a stored workflow."""

    id: UUID
    name: str
    description: str | None
    version: str
    status: str
    team_id: str | None
    definition: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, workflow: WorkflowModel) -> WorkflowDTO:
        return cls(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            version=workflow.version,
            status=str(workflow.status),
            team_id=workflow.team_id,
            definition=workflow.definition,
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
        )


@dataclass
class StartExecutionDTO:
    """DTO for starting a workflow on a document.

    Attributes:
        document_id: The document to run the workflow on.
        variables: Start variables, overlaid on the workflow defaults.
    """

    document_id: UUID
    variables: dict[str, Any] | None = None


@dataclass
class ExecutionDTO:
    """DTO for an execution summary."""

    id: UUID
    workflow_id: UUID
    document_id: UUID
    status: str
    current_step_index: int
    started_by: str
    started_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    error_message: str | None = None
    retry_of_id: UUID | None = None

    @classmethod
    def from_model(cls, execution: WorkflowExecutionModel) -> ExecutionDTO:
        return cls(
            id=execution.id,
            workflow_id=execution.workflow_id,
            document_id=execution.document_id,
            status=str(execution.status),
            current_step_index=execution.current_step_index,
            started_by=execution.started_by,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            cancelled_at=execution.cancelled_at,
            error_message=execution.error_message,
            retry_of_id=execution.retry_of_id,
        )


@dataclass
class StepRecordDTO:
    """DTO for one step record of an execution."""

    id: UUID
    step_index: int
    step_key: str
    step_type: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    resume_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None

    @classmethod
    def from_model(cls, record: WorkflowStepModel) -> StepRecordDTO:
        return cls(
            id=record.id,
            step_index=record.step_index,
            step_key=record.step_key,
            step_type=str(record.step_type),
            status=str(record.status),
            started_at=record.started_at,
            completed_at=record.completed_at,
            resume_at=record.resume_at,
            result=record.result,
            error_message=record.error_message,
        )


@dataclass
class ApprovalResponseDTO:
    """DTO for one approver's decision."""

    approver_id: str
    decision: str
    responded_at: datetime
    comment: str | None = None
    via_token: bool = False

    @classmethod
    def from_model(cls, response: ApprovalResponseModel) -> ApprovalResponseDTO:
        return cls(
            approver_id=response.approver_id,
            decision=str(response.decision),
            responded_at=response.responded_at,
            comment=response.comment,
            via_token=response.via_token,
        )


@dataclass
class ApprovalRequestDTO:
    """DTO for an approval request.

    Attributes:
        id: Request ID.
        execution_id: The owning execution.
        step_id: The step record the request gates.
        approvers: Approvers, in routing order.
        mode: Decision policy (any, all, majority).
        sequential: Whether approvers answer in order.
        required_approvals: Approvals needed to approve.
        approval_count: Approvals received.
        rejection_count: Rejections received.
        status: Request status.
        workflow_name: Name of the workflow.
        document_title: Title of the document.
        message: Optional text from the approval step.
        expires_at: Deadline, if any.
        resolved_at: When the request was decided.
        responses: Decisions recorded so far.
    """

    id: UUID
    execution_id: UUID
    step_id: UUID
    approvers: list[str]
    mode: str
    sequential: bool
    required_approvals: int
    approval_count: int
    rejection_count: int
    status: str
    workflow_name: str
    document_title: str
    message: str | None = None
    expires_at: datetime | None = None
    resolved_at: datetime | None = None
    responses: list[ApprovalResponseDTO] = field(default_factory=list)

    @classmethod
    def from_model(
        cls,
        request: ApprovalRequestModel,
        responses: list[ApprovalResponseModel] | None = None,
    ) -> ApprovalRequestDTO:
        return cls(
            id=request.id,
            execution_id=request.execution_id,
            step_id=request.step_id,
            approvers=list(request.approvers),
            mode=str(request.mode),
            sequential=request.sequential,
            required_approvals=request.required_approvals,
            approval_count=request.approval_count,
            rejection_count=request.rejection_count,
            status=str(request.status),
            workflow_name=request.workflow_name,
            document_title=request.document_title,
            message=request.message,
            expires_at=request.expires_at,
            resolved_at=request.resolved_at,
            responses=[ApprovalResponseDTO.from_model(r) for r in responses or []],
        )


@dataclass
class ExecutionDetailDTO:
    """DTO for an execution with its history.

    Extends ExecutionDTO with the context, step records and approval requests.
    """

    execution: ExecutionDTO
    workflow_name: str
    variables: dict[str, Any]
    context: dict[str, Any]
    steps: list[StepRecordDTO]
    approvals: list[ApprovalRequestDTO]

    @classmethod
    def from_tree(cls, tree: ExecutionTree) -> ExecutionDetailDTO:
        return cls(
            execution=ExecutionDTO.from_model(tree.execution),
            workflow_name=tree.workflow.name,
            variables=tree.execution.variables,
            context=tree.execution.context,
            steps=[StepRecordDTO.from_model(s) for s in tree.steps],
            approvals=[ApprovalRequestDTO.from_model(a.request, a.responses) for a in tree.approvals],
        )


@dataclass
class ExecutionLogDTO:
    """DTO for one execution log line."""

    level: str
    message: str
    step_index: int
    timestamp: datetime

    @classmethod
    def from_entry(cls, entry: ExecutionLogEntry) -> ExecutionLogDTO:
        return cls(level=entry.level, message=entry.message, step_index=entry.step_index, timestamp=entry.timestamp)


@dataclass
class RespondDTO:
    """DTO for answering an approval request.

    Attributes:
        decision: ``approved`` or ``rejected``.
        comment: Optional comment.
    """

    decision: ApprovalDecision
    comment: str | None = None


@dataclass
class TokenResolutionDTO:
    """DTO returned after an emailed token was used."""

    decision: str
    request_status: str
    workflow_name: str
    document_title: str
    execution_id: UUID
    document_id: UUID | None = None

    @classmethod
    def from_resolution(cls, resolution: TokenResolution) -> TokenResolutionDTO:
        return cls(
            decision=resolution.decision,
            request_status=resolution.request_status,
            workflow_name=resolution.workflow_name,
            document_title=resolution.document_title,
            execution_id=resolution.execution_id,
            document_id=resolution.document_id,
        )
