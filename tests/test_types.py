"""Tests for type definitions and enums."""

from __future__ import annotations

import pytest

from docflow.core.events import EventType
from docflow.core.types import (
    ApprovalDecision,
    ApprovalMode,
    ApprovalStatus,
    ExecutionStatus,
    StepKind,
    StepStatus,
    WorkflowStatus,
)


@pytest.mark.unit
class TestStatusEnums:
    """Tests for the status enums."""

    def test_values_are_lowercase_names(self) -> None:
        """Test enum values as persisted and exposed over the API."""
        assert WorkflowStatus.INACTIVE == "inactive"
        assert ExecutionStatus.PAUSED == "paused"
        assert StepStatus.COMPLETED == "completed"
        assert ApprovalStatus.EXPIRED == "expired"
        assert ApprovalDecision.REJECTED == "rejected"
        assert str(StepKind.NOTIFICATION) == "notification"

    def test_members(self) -> None:
        """Test the closed sets of values."""
        assert set(ExecutionStatus) == {"running", "paused", "completed", "failed"}
        assert set(StepKind) == {"action", "condition", "approval", "notification", "delay"}
        assert set(ApprovalStatus) == {"pending", "approved", "rejected", "expired"}

    def test_terminal_statuses(self) -> None:
        """Test only completed and failed are terminal."""
        assert ExecutionStatus.COMPLETED.is_terminal
        assert ExecutionStatus.FAILED.is_terminal
        assert not ExecutionStatus.RUNNING.is_terminal
        assert not ExecutionStatus.PAUSED.is_terminal


@pytest.mark.unit
class TestApprovalMode:
    """Tests for ApprovalMode."""

    @pytest.mark.parametrize(
        ("mode", "approvers", "required"),
        [
            (ApprovalMode.ANY, 1, 1),
            (ApprovalMode.ANY, 5, 1),
            (ApprovalMode.ALL, 1, 1),
            (ApprovalMode.ALL, 3, 3),
            (ApprovalMode.MAJORITY, 1, 1),
            (ApprovalMode.MAJORITY, 2, 2),
            (ApprovalMode.MAJORITY, 3, 2),
            (ApprovalMode.MAJORITY, 4, 3),
        ],
    )
    def test_required_approvals(self, mode: ApprovalMode, approvers: int, required: int) -> None:
        """Test the approvals needed for each mode."""
        assert mode.required_approvals(approvers) == required


@pytest.mark.unit
class TestEventType:
    """Tests for EventType."""

    def test_event_names(self) -> None:
        """Test the dotted event names."""
        assert EventType.EXECUTION_STARTED == "execution.started"
        assert EventType.STEP_COMPLETED == "execution.step_completed"
        assert EventType.APPROVAL_RESOLVED == "approval.resolved"
        assert all(str(e).split(".")[0] in {"execution", "approval"} for e in EventType)
