"""Protocols for the collaborators the engine depends on.

The engine never talks to storage, mail or signing services directly. The host
application supplies objects matching these protocols; structural typing keeps
them free of any docflow base class.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from docflow.core.definition import ActionStep

__all__ = [
    "ActionCall",
    "ActionHandler",
    "Document",
    "DocumentStore",
    "EventBus",
    "NotificationSender",
]


@runtime_checkable
class Document(Protocol):
    """The parts of a document the engine reads."""

    id: Any
    title: str


@runtime_checkable
class DocumentStore(Protocol):
    """Lookup of documents owned by a user.

    Example:
        >>> class Documents:
        ...     async def get_document(self, document_id, owner_id):
        ...         return await repo.get_one_or_none(id=document_id, user_id=owner_id)
    """

    async def get_document(self, document_id: UUID, owner_id: str) -> Document | None:
        """Return the document if it exists and belongs to ``owner_id``, else ``None``."""
        ...


@runtime_checkable
class NotificationSender(Protocol):
    """Outbound notifications. Every call is best effort.

    Implementations return ``False`` (or raise) when delivery fails; the engine
    logs the failure and carries on.
    """

    async def send_approval_email(
        self,
        approver: str,
        links: Mapping[str, str],
        *,
        workflow_name: str,
        document_title: str,
        message: str | None = None,
    ) -> bool:
        """Ask ``approver`` for a decision.

        Args:
            approver: The approver identifier (usually an email address).
            links: Maps each decision (``"approved"``, ``"rejected"``) to a
                single-use link that records it.
            workflow_name: Name of the workflow, for the email body.
            document_title: Title of the document under review.
            message: Optional text from the approval step.

        Returns:
            Whether the email was handed over for delivery.
        """
        ...

    async def send_notification(self, recipient: str, subject: str | None, message: str) -> bool:
        """Send a plain notification. Returns whether it was handed over for delivery."""
        ...


@runtime_checkable
class EventBus(Protocol):
    """Receiver of lifecycle events, see :class:`docflow.core.events.EventType`."""

    async def emit(self, event_type: str, **payload: Any) -> None:
        """Publish one event."""
        ...


@dataclass(frozen=True)
class ActionCall:
    """Everything an action handler receives.

    Attributes:
        execution_id: The execution running the step.
        document_id: The document the execution is bound to.
        step: The action step definition.
        params: The step params with ``$key`` references resolved.
        context: Read-only view of the context visible to the step.
    """

    execution_id: UUID
    document_id: UUID
    step: ActionStep
    params: dict[str, Any] = field(default_factory=dict)
    context: Mapping[str, Any] = field(default_factory=dict)


ActionHandler = Callable[[ActionCall], Awaitable[Mapping[str, Any] | None]]
"""An async callable performing an action step.

It returns the step result payload (or ``None``) and raises to signal failure.
A ``outputs`` mapping in the payload is promoted into the execution context.
"""
