"""Core type definitions for docflow.

This module defines the status and kind enumerations shared by the definition
parser, the engine, the persistence models, and the web layer.
"""

from __future__ import annotations

import sys
from enum import Enum, auto
from typing import Any

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)

        @staticmethod
        def _generate_next_value_(name: str, start: int, count: int, last_values: list[Any]) -> str:
            return name.lower()


from typing import TypeAlias

__all__ = [
    "ApprovalDecision",
    "ApprovalMode",
    "ApprovalStatus",
    "Context",
    "ExecutionStatus",
    "StepKind",
    "StepStatus",
    "WorkflowStatus",
]


class WorkflowStatus(StrEnum):
    """Lifecycle status of a stored workflow.

    Attributes:
        ACTIVE: The workflow can be started.
        INACTIVE: The workflow is kept but cannot be started.
        DELETED: The workflow was soft-deleted and is hidden from every query.
    """

    ACTIVE = auto()
    INACTIVE = auto()
    DELETED = auto()


class ExecutionStatus(StrEnum):
    """Status of one workflow execution.

    Attributes:
        RUNNING: The execution is advancing, or suspended on a gate.
        PAUSED: The execution was paused by its owner.
        COMPLETED: Every step finished. Terminal.
        FAILED: A step failed or the execution was cancelled. Terminal.
    """

    RUNNING = auto()
    PAUSED = auto()
    COMPLETED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        """Whether the status can never change again."""
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class StepStatus(StrEnum):
    """Status of one execution-step record.

    Attributes:
        PENDING: Recorded but not yet evaluated.
        RUNNING: Being evaluated, or waiting on an approval or a delay.
        COMPLETED: Finished successfully.
        FAILED: Finished with an error.
    """

    PENDING = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()


class StepKind(StrEnum):
    """Kinds of step a workflow definition may contain.

    Attributes:
        ACTION: Calls a registered action handler (send document, archive...).
        CONDITION: Picks a branch by evaluating expressions over the context.
        APPROVAL: Blocks until approvers decide.
        NOTIFICATION: Sends best-effort notifications.
        DELAY: Waits until a point in time.
    """

    ACTION = auto()
    CONDITION = auto()
    APPROVAL = auto()
    NOTIFICATION = auto()
    DELAY = auto()


class ApprovalStatus(StrEnum):
    """Status of an approval request."""

    PENDING = auto()
    APPROVED = auto()
    REJECTED = auto()
    EXPIRED = auto()


class ApprovalDecision(StrEnum):
    """Decision an approver can submit."""

    APPROVED = auto()
    REJECTED = auto()


class ApprovalMode(StrEnum):
    """How responses of several approvers combine into one decision.

    Attributes:
        ANY: The first approval wins; rejected only when everybody rejects.
        ALL: Every approver must approve; the first rejection rejects.
        MAJORITY: More than half must approve.
    """

    ANY = auto()
    ALL = auto()
    MAJORITY = auto()

    def required_approvals(self, approver_count: int) -> int:
        """Number of approvals needed to approve a request with ``approver_count`` approvers."""
        if self is ApprovalMode.ANY:
            return 1
        if self is ApprovalMode.MAJORITY:
            return approver_count // 2 + 1
        return approver_count


# Type aliases for execution data
Context: TypeAlias = dict[str, Any]
"""Type alias for the key/value bag carried by an execution."""
