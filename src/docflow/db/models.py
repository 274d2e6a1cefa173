"""SQLAlchemy models for docflow persistence.

This module defines the tables behind the engine:
- WorkflowModel: A user-owned workflow and its step definition
- WorkflowExecutionModel: One run of a workflow against a document
- WorkflowStepModel: One instantiated step within an execution
- ApprovalRequestModel: A decision gate opened by an approval step
- ApprovalResponseModel: One approver's decision on a request
- ApprovalTokenModel: Single-use emailed approve/reject capability

Documents live in the host application, so ``document_id`` carries no foreign key.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docflow.core.types import (
    ApprovalDecision,
    ApprovalMode,
    ApprovalStatus,
    ExecutionStatus,
    StepKind,
    StepStatus,
    WorkflowStatus,
)

__all__ = [
    "ApprovalRequestModel",
    "ApprovalResponseModel",
    "ApprovalTokenModel",
    "WorkflowExecutionModel",
    "WorkflowModel",
    "WorkflowStepModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowModel(UUIDAuditBase):
    """A stored workflow.

    Attributes:
        owner_id: User who owns the workflow.
        team_id: Optional team scope.
        name: Display name.
        description: Optional description.
        version: Version label of the definition.
        definition: Canonical JSON of the validated definition.
        status: Lifecycle status; ``deleted`` rows are hidden from every query.
        executions: Related executions.
    """

    __tablename__ = "docflow_workflows"
    __table_args__ = (
        Index("ix_docflow_workflows_owner_status", "owner_id", "status"),
        Index("ix_docflow_workflows_team_id", "team_id"),
    )

    owner_id: Mapped[str] = mapped_column(String(255))
    team_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str] = mapped_column(String(50), default="1.0.0")
    definition: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus, native_enum=False, length=50),
        default=WorkflowStatus.ACTIVE,
    )

    # Relationships
    executions: Mapped[list[WorkflowExecutionModel]] = relationship(
        back_populates="workflow",
        lazy="noload",
    )


class WorkflowExecutionModel(UUIDAuditBase):
    """One run of a workflow bound to a document.

    Attributes:
        workflow_id: Foreign key to the workflow.
        document_id: The document the run is bound to.
        started_by: User who started the run.
        status: Current status.
        current_step_index: Index of the step being run. Never decreases.
        variables: Start variables, kept unchanged for retries.
        context: Accumulated key/value context.
        context_sources: Index of the step that wrote each context key.
        error_message: Failure or cancellation detail.
        cancelled_at: Set when the owner cancelled the run.
        retry_of_id: The failed execution this run retries, if any.
        started_at: When the run started.
        completed_at: When the run reached a terminal status.
    """

    __tablename__ = "docflow_executions"
    __table_args__ = (
        Index("ix_docflow_executions_workflow_id", "workflow_id"),
        Index("ix_docflow_executions_document_id", "document_id"),
        Index("ix_docflow_executions_status", "status"),
        Index("ix_docflow_executions_started_by", "started_by"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        ForeignKey("docflow_workflows.id", ondelete="CASCADE"),
    )
    document_id: Mapped[UUID]
    started_by: Mapped[str] = mapped_column(String(255))
    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(ExecutionStatus, native_enum=False, length=50),
        default=ExecutionStatus.RUNNING,
    )
    current_step_index: Mapped[int] = mapped_column(default=0)
    variables: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    context_sources: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    retry_of_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("docflow_executions.id", ondelete="SET NULL"),
        nullable=True,
    )
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Relationships
    workflow: Mapped[WorkflowModel] = relationship(
        back_populates="executions",
        lazy="noload",
    )
    steps: Mapped[list[WorkflowStepModel]] = relationship(
        back_populates="execution",
        lazy="noload",
        order_by="WorkflowStepModel.step_index",
    )


class WorkflowStepModel(UUIDAuditBase):
    """Record of one step within an execution.

    Records are created lazily as the execution reaches each step and are
    never deleted, so they form the history of what has run.

    Attributes:
        execution_id: Foreign key to the execution.
        step_index: Position of the step in the definition.
        step_key: Id of the step in the definition.
        step_type: Kind of step.
        status: Step status.
        result: Result payload of a completed step.
        error_message: Error detail of a failed step.
        resume_at: For delay steps, when the wait is over.
        started_at: When the step was first evaluated.
        completed_at: When the step finished.
    """

    __tablename__ = "docflow_execution_steps"
    __table_args__ = (
        UniqueConstraint("execution_id", "step_index", name="uq_docflow_execution_steps_index"),
        Index("ix_docflow_execution_steps_status", "status"),
        Index("ix_docflow_execution_steps_resume_at", "resume_at"),
    )

    execution_id: Mapped[UUID] = mapped_column(
        ForeignKey("docflow_executions.id", ondelete="CASCADE"),
    )
    step_index: Mapped[int]
    step_key: Mapped[str] = mapped_column(String(255))
    step_type: Mapped[StepKind] = mapped_column(
        Enum(StepKind, native_enum=False, length=50),
    )
    status: Mapped[StepStatus] = mapped_column(
        Enum(StepStatus, native_enum=False, length=50),
        default=StepStatus.PENDING,
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    resume_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Relationships
    execution: Mapped[WorkflowExecutionModel] = relationship(
        back_populates="steps",
        lazy="noload",
    )


class ApprovalRequestModel(UUIDAuditBase):
    """A pending decision gate tied to one approval step record.

    Attributes:
        step_id: Foreign key to the step record. One request per step.
        execution_id: Denormalized execution reference.
        approvers: Resolved approver identifiers, in routing order.
        mode: Decision policy.
        sequential: Whether approvers answer one after another in routing order.
        required_approvals: Approvals needed to approve.
        approval_count: Approvals received.
        rejection_count: Rejections received.
        status: Request status. Leaves ``pending`` exactly once.
        expires_at: Deadline, if any.
        resolved_at: When the request left ``pending``.
        workflow_name: Denormalized workflow name, for emails and listings.
        document_title: Denormalized document title, for emails and listings.
        message: Optional text from the approval step.
        responses: Related responses.
    """

    __tablename__ = "docflow_approval_requests"
    __table_args__ = (
        Index("ix_docflow_approval_requests_execution_id", "execution_id"),
        Index("ix_docflow_approval_requests_status_expires", "status", "expires_at"),
    )

    step_id: Mapped[UUID] = mapped_column(
        ForeignKey("docflow_execution_steps.id", ondelete="CASCADE"),
        unique=True,
    )
    execution_id: Mapped[UUID] = mapped_column(
        ForeignKey("docflow_executions.id", ondelete="CASCADE"),
    )
    approvers: Mapped[list[str]] = mapped_column(JSONType, default=list)
    mode: Mapped[ApprovalMode] = mapped_column(
        Enum(ApprovalMode, native_enum=False, length=50),
        default=ApprovalMode.ALL,
    )
    sequential: Mapped[bool] = mapped_column(default=False)
    required_approvals: Mapped[int] = mapped_column(default=1)
    approval_count: Mapped[int] = mapped_column(default=0)
    rejection_count: Mapped[int] = mapped_column(default=0)
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, native_enum=False, length=50),
        default=ApprovalStatus.PENDING,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    workflow_name: Mapped[str] = mapped_column(String(255), default="")
    document_title: Mapped[str] = mapped_column(String(500), default="")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    responses: Mapped[list[ApprovalResponseModel]] = relationship(
        back_populates="request",
        lazy="noload",
        order_by="ApprovalResponseModel.responded_at",
    )


class ApprovalResponseModel(UUIDAuditBase):
    """One approver's decision on a request.

    Attributes:
        request_id: Foreign key to the request.
        approver_id: The approver. Unique per request.
        decision: Approved or rejected.
        comment: Optional comment.
        via_token: Whether the decision came from an emailed token.
        responded_at: When the decision was recorded.
    """

    __tablename__ = "docflow_approval_responses"
    __table_args__ = (
        UniqueConstraint("request_id", "approver_id", name="uq_docflow_approval_responses_approver"),
    )

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("docflow_approval_requests.id", ondelete="CASCADE"),
    )
    approver_id: Mapped[str] = mapped_column(String(255))
    decision: Mapped[ApprovalDecision] = mapped_column(
        Enum(ApprovalDecision, native_enum=False, length=50),
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    via_token: Mapped[bool] = mapped_column(default=False)
    responded_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))

    # Relationships
    request: Mapped[ApprovalRequestModel] = relationship(
        back_populates="responses",
        lazy="noload",
    )


class ApprovalTokenModel(UUIDAuditBase):
    """Single-use capability to answer a request without logging in.

    Attributes:
        request_id: Foreign key to the request.
        approver_id: The approver the token was issued to.
        token: The url-safe secret. Unique.
        decision: The decision the token records.
        used: Flips to true exactly once.
        used_at: When the token was consumed.
        expires_at: Deadline of the token.
    """

    __tablename__ = "docflow_approval_tokens"
    __table_args__ = (Index("ix_docflow_approval_tokens_request_id", "request_id"),)

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("docflow_approval_requests.id", ondelete="CASCADE"),
    )
    approver_id: Mapped[str] = mapped_column(String(255))
    token: Mapped[str] = mapped_column(String(128), unique=True)
    decision: Mapped[ApprovalDecision] = mapped_column(
        Enum(ApprovalDecision, native_enum=False, length=50),
    )
    used: Mapped[bool] = mapped_column(default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
