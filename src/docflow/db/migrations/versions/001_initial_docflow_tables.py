"""Initial docflow tables.

Revision ID: 001_initial_docflow
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_docflow"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create docflow tables."""
    # Create docflow_workflows table
    op.create_table(
        "docflow_workflows",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("team_id", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("version", sa.String(length=50), nullable=False),
        sa.Column("definition", JSONType, nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False, default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_docflow_workflows_owner_status",
        "docflow_workflows",
        ["owner_id", "status"],
    )
    op.create_index(
        "ix_docflow_workflows_team_id",
        "docflow_workflows",
        ["team_id"],
    )

    # Create docflow_executions table
    op.create_table(
        "docflow_executions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workflow_id", sa.Uuid(), nullable=False),
        sa.Column("document_id", sa.Uuid(), nullable=False),
        sa.Column("started_by", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("current_step_index", sa.Integer(), nullable=False, default=0),
        sa.Column("variables", JSONType, nullable=False),
        sa.Column("context", JSONType, nullable=False),
        sa.Column("context_sources", JSONType, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_of_id", sa.Uuid(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["workflow_id"],
            ["docflow_workflows.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["retry_of_id"],
            ["docflow_executions.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_docflow_executions_workflow_id",
        "docflow_executions",
        ["workflow_id"],
    )
    op.create_index(
        "ix_docflow_executions_document_id",
        "docflow_executions",
        ["document_id"],
    )
    op.create_index(
        "ix_docflow_executions_status",
        "docflow_executions",
        ["status"],
    )
    op.create_index(
        "ix_docflow_executions_started_by",
        "docflow_executions",
        ["started_by"],
    )

    # Create docflow_execution_steps table
    op.create_table(
        "docflow_execution_steps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("execution_id", sa.Uuid(), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("step_key", sa.String(length=255), nullable=False),
        sa.Column("step_type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("result", JSONType, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("resume_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["execution_id"],
            ["docflow_executions.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("execution_id", "step_index", name="uq_docflow_execution_steps_index"),
    )
    op.create_index(
        "ix_docflow_execution_steps_status",
        "docflow_execution_steps",
        ["status"],
    )
    op.create_index(
        "ix_docflow_execution_steps_resume_at",
        "docflow_execution_steps",
        ["resume_at"],
    )

    # Create docflow_approval_requests table
    op.create_table(
        "docflow_approval_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("step_id", sa.Uuid(), nullable=False),
        sa.Column("execution_id", sa.Uuid(), nullable=False),
        sa.Column("approvers", JSONType, nullable=False),
        sa.Column("mode", sa.String(length=50), nullable=False),
        sa.Column("sequential", sa.Boolean(), nullable=False, default=False),
        sa.Column("required_approvals", sa.Integer(), nullable=False),
        sa.Column("approval_count", sa.Integer(), nullable=False, default=0),
        sa.Column("rejection_count", sa.Integer(), nullable=False, default=0),
        sa.Column("status", sa.String(length=50), nullable=False, default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("workflow_name", sa.String(length=255), nullable=False),
        sa.Column("document_title", sa.String(length=500), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["step_id"],
            ["docflow_execution_steps.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["execution_id"],
            ["docflow_executions.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("step_id"),
    )
    op.create_index(
        "ix_docflow_approval_requests_execution_id",
        "docflow_approval_requests",
        ["execution_id"],
    )
    op.create_index(
        "ix_docflow_approval_requests_status_expires",
        "docflow_approval_requests",
        ["status", "expires_at"],
    )

    # Create docflow_approval_responses table
    op.create_table(
        "docflow_approval_responses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("approver_id", sa.String(length=255), nullable=False),
        sa.Column("decision", sa.String(length=50), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("via_token", sa.Boolean(), nullable=False, default=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["docflow_approval_requests.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id", "approver_id", name="uq_docflow_approval_responses_approver"),
    )

    # Create docflow_approval_tokens table
    op.create_table(
        "docflow_approval_tokens",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("approver_id", sa.String(length=255), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("decision", sa.String(length=50), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, default=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["docflow_approval_requests.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index(
        "ix_docflow_approval_tokens_request_id",
        "docflow_approval_tokens",
        ["request_id"],
    )


def downgrade() -> None:
    """Drop docflow tables."""
    op.drop_table("docflow_approval_tokens")
    op.drop_table("docflow_approval_responses")
    op.drop_table("docflow_approval_requests")
    op.drop_table("docflow_execution_steps")
    op.drop_table("docflow_executions")
    op.drop_table("docflow_workflows")
