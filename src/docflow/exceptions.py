"""Exception hierarchy for docflow."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

__all__ = (
    "AlreadyRespondedError",
    "DocflowError",
    "ExpiredError",
    "ExpressionError",
    "InvalidStateError",
    "NoMatchingBranchError",
    "NotAuthorizedError",
    "NotFoundError",
    "TokenUsedError",
    "UpstreamFailureError",
    "WorkflowValidationError",
)


class DocflowError(Exception):
    """Base exception for all docflow errors.

    Everything the engine raises on purpose inherits from this class, so callers
    can catch workflow failures with a single except clause.
    """


class NotFoundError(DocflowError):
    """Raised when an entity is missing or not visible to the caller.

    Ownership failures are reported the same way as missing rows so that the
    existence of another user's workflow is never disclosed.

    Attributes:
        entity: Kind of entity that was looked up (``"workflow"``, ``"execution"``...).
        entity_id: Identifier that was looked up.
    """

    def __init__(self, entity: str, entity_id: str | UUID) -> None:
        """Initialize the exception with lookup details.

        Args:
            entity: Kind of entity that was looked up.
            entity_id: Identifier that was looked up.
        """
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} '{entity_id}' not found")


class InvalidStateError(DocflowError):
    """Raised when an illegal lifecycle transition is attempted.

    Attributes:
        entity: Kind of entity being transitioned.
        entity_id: Identifier of the entity.
        status: The status the entity is currently in.
        action: The operation that was refused.
    """

    def __init__(self, entity: str, entity_id: str | UUID, status: str, action: str) -> None:
        """Initialize the exception with transition details.

        Args:
            entity: Kind of entity being transitioned.
            entity_id: Identifier of the entity.
            status: The status the entity is currently in.
            action: The operation that was refused.
        """
        self.entity = entity
        self.entity_id = entity_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} {entity} '{entity_id}' while it is {status}")


class AlreadyRespondedError(DocflowError):
    """Raised when an approver answers the same approval request twice.

    Attributes:
        request_id: The approval request.
        approver_id: The approver who already answered.
    """

    def __init__(self, request_id: str | UUID, approver_id: str) -> None:
        """Initialize the exception.

        Args:
            request_id: The approval request.
            approver_id: The approver who already answered.
        """
        self.request_id = request_id
        self.approver_id = approver_id
        super().__init__(f"Approver '{approver_id}' has already responded to request '{request_id}'")


class NotAuthorizedError(DocflowError):
    """Raised when a party may not act on an approval request.

    Attributes:
        request_id: The approval request.
        approver_id: The party that attempted to respond.
        reason: Why the attempt was refused.
    """

    def __init__(self, request_id: str | UUID, approver_id: str, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            request_id: The approval request.
            approver_id: The party that attempted to respond.
            reason: Why the attempt was refused.
        """
        self.request_id = request_id
        self.approver_id = approver_id
        self.reason = reason
        msg = f"'{approver_id}' is not an approver of request '{request_id}'"
        if reason:
            msg = f"'{approver_id}' may not respond to request '{request_id}': {reason}"
        super().__init__(msg)


class ExpiredError(DocflowError):
    """Raised when an approval request or token is past its deadline.

    Attributes:
        entity: ``"approval request"`` or ``"approval token"``.
        entity_id: Identifier of the expired entity.
        expired_at: When the entity expired, if known.
    """

    def __init__(self, entity: str, entity_id: str | UUID, expired_at: datetime | None = None) -> None:
        """Initialize the exception.

        Args:
            entity: Kind of entity that expired.
            entity_id: Identifier of the expired entity.
            expired_at: When the entity expired, if known.
        """
        self.entity = entity
        self.entity_id = entity_id
        self.expired_at = expired_at
        msg = f"{entity.capitalize()} '{entity_id}' has expired"
        if expired_at:
            msg += f" (at {expired_at.isoformat()})"
        super().__init__(msg)


class TokenUsedError(ExpiredError):
    """Raised when a single-use approval token is presented a second time."""

    def __init__(self, token_id: str | UUID) -> None:
        """Initialize the exception.

        Args:
            token_id: Identifier of the consumed token.
        """
        self.entity = "approval token"
        self.entity_id = token_id
        self.expired_at = None
        DocflowError.__init__(self, f"Approval token '{token_id}' has already been used")


class NoMatchingBranchError(DocflowError):
    """Raised when no branch of a condition step matches the context.

    Attributes:
        step_id: The condition step.
    """

    def __init__(self, step_id: str) -> None:
        """Initialize the exception.

        Args:
            step_id: The condition step.
        """
        self.step_id = step_id
        super().__init__(f"No branch of condition step '{step_id}' matched")


class UpstreamFailureError(DocflowError):
    """Raised when an external collaborator call fails.

    Attributes:
        collaborator: Name of the action or service that failed.
        cause: The underlying exception, if any.
    """

    def __init__(self, collaborator: str, cause: Exception | str | None = None) -> None:
        """Initialize the exception.

        Args:
            collaborator: Name of the action or service that failed.
            cause: The underlying exception or reason, if any.
        """
        self.collaborator = collaborator
        self.cause = cause
        msg = f"Upstream call '{collaborator}' failed"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)


class WorkflowValidationError(DocflowError):
    """Raised when a workflow definition fails validation on save.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Workflow validation failed: {'; '.join(errors)}")


class ExpressionError(DocflowError):
    """Raised when a condition expression cannot be parsed or evaluated.

    Attributes:
        expression: The offending expression source.
        position: Character offset of the problem, if known.
    """

    def __init__(self, expression: str, message: str, position: int | None = None) -> None:
        """Initialize the exception.

        Args:
            expression: The offending expression source.
            message: Description of the problem.
            position: Character offset of the problem, if known.
        """
        self.expression = expression
        self.position = position
        msg = f"Invalid expression '{expression}': {message}"
        if position is not None:
            msg += f" (at position {position})"
        super().__init__(msg)
