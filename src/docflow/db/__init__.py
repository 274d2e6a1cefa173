"""Database persistence layer for docflow.

This module provides SQLAlchemy models and repositories for persisting
workflows, executions, step records and approval state.
"""

from __future__ import annotations

from docflow.db.models import (
    ApprovalRequestModel,
    ApprovalResponseModel,
    ApprovalTokenModel,
    WorkflowExecutionModel,
    WorkflowModel,
    WorkflowStepModel,
)
from docflow.db.repositories import (
    ApprovalRequestRepository,
    ApprovalResponseRepository,
    ApprovalTokenRepository,
    WorkflowExecutionRepository,
    WorkflowRepository,
    WorkflowStepRepository,
)

__all__ = [
    "ApprovalRequestModel",
    "ApprovalRequestRepository",
    "ApprovalResponseModel",
    "ApprovalResponseRepository",
    "ApprovalTokenModel",
    "ApprovalTokenRepository",
    "WorkflowExecutionModel",
    "WorkflowExecutionRepository",
    "WorkflowModel",
    "WorkflowRepository",
    "WorkflowStepModel",
    "WorkflowStepRepository",
]
