"""Domain events emitted during execution.

The executor calls ``await event_bus.emit(event_type, **payload)`` on an optional
event bus (see :class:`docflow.core.protocols.EventBus`). These are the event
types it emits; every payload carries ``execution_id``.
"""

from __future__ import annotations

from docflow.core.types import StrEnum

__all__ = ["EventType"]


class EventType(StrEnum):
    """Names of the lifecycle events.

    Attributes:
        EXECUTION_STARTED: A new execution was created. Payload adds ``workflow_id``,
            ``document_id`` and ``retry_of`` (``None`` unless spawned by a retry).
        STEP_COMPLETED: A step finished. Payload adds ``step_index`` and ``step_id``.
        STEP_FAILED: A step failed. Payload adds ``step_index``, ``step_id`` and ``error``.
        EXECUTION_WAITING: The execution is suspended on an approval or a delay.
        EXECUTION_PAUSED: The owner paused the execution.
        EXECUTION_RESUMED: The owner resumed the execution.
        EXECUTION_COMPLETED: Every step completed.
        EXECUTION_FAILED: The execution failed. Payload adds ``error``.
        EXECUTION_CANCELLED: The owner cancelled the execution. Payload adds ``reason``.
        APPROVAL_REQUESTED: An approval request was opened. Payload adds ``request_id``
            and ``approvers``.
        APPROVAL_RESOLVED: An approval request reached a terminal status. Payload adds
            ``request_id`` and ``status``.
    """

    EXECUTION_STARTED = "execution.started"
    STEP_COMPLETED = "execution.step_completed"
    STEP_FAILED = "execution.step_failed"
    EXECUTION_WAITING = "execution.waiting"
    EXECUTION_PAUSED = "execution.paused"
    EXECUTION_RESUMED = "execution.resumed"
    EXECUTION_COMPLETED = "execution.completed"
    EXECUTION_FAILED = "execution.failed"
    EXECUTION_CANCELLED = "execution.cancelled"
    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_RESOLVED = "approval.resolved"
