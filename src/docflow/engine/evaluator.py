"""Step evaluation.

The :class:`StepEvaluator` decides what happens to one step given the context it
can see. It never writes to the database: it returns an outcome and the
executor persists the transition.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Union

from docflow.core.context import render_template, resolve_params, resolve_recipients
from docflow.core.definition import ActionStep, ApprovalStep, ConditionStep, DelayStep, NotificationStep
from docflow.core.expressions import parse_expression
from docflow.core.protocols import ActionCall
from docflow.core.types import ApprovalMode, ApprovalStatus
from docflow.exceptions import ExpiredError, ExpressionError, NoMatchingBranchError, UpstreamFailureError
from docflow.settings import EngineSettings

if TYPE_CHECKING:
    from uuid import UUID

    from docflow.core.definition import StepDefinition
    from docflow.core.protocols import NotificationSender
    from docflow.engine.registry import ActionRegistry

__all__ = [
    "ApprovalGateRef",
    "Completed",
    "Failed",
    "Outcome",
    "Pending",
    "StepEvaluator",
    "StepState",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalGateRef:
    """What the approval gate needs to open a request.

    Attributes:
        approvers: Resolved approvers, in routing order.
        mode: Decision policy.
        sequential: Whether approvers answer one after another.
        expires_at: Deadline, or ``None`` for no deadline.
        message: Optional text for approval emails.
    """

    approvers: tuple[str, ...]
    mode: ApprovalMode
    sequential: bool = False
    expires_at: datetime | None = None
    message: str | None = None


@dataclass(frozen=True)
class Completed:
    """The step finished; ``payload`` is its result."""

    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Pending:
    """The step cannot finish yet.

    Attributes:
        gate: Set when an approval request must be opened.
        resume_at: Set when a delay step starts waiting.
    """

    gate: ApprovalGateRef | None = None
    resume_at: datetime | None = None


@dataclass(frozen=True)
class Failed:
    """The step failed with ``error``."""

    error: str


Outcome = Union[Completed, Pending, Failed]
"""Result of evaluating one step."""


@dataclass(frozen=True)
class StepState:
    """Persisted state of the step being evaluated.

    Attributes:
        execution_id: The execution.
        document_id: The document the execution is bound to.
        step_index: Position of the step.
        now: Reference time for deadlines.
        request_id: The approval request already opened for the step, if any.
        approval_status: Status of that request.
        approval_counts: ``(approvals, rejections)`` of that request.
        expires_at: Deadline of that request.
        resume_at: For delay steps already waiting, when the wait ends.
    """

    execution_id: UUID
    document_id: UUID
    step_index: int
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: UUID | None = None
    approval_status: ApprovalStatus | None = None
    approval_counts: tuple[int, int] = (0, 0)
    expires_at: datetime | None = None
    resume_at: datetime | None = None


class StepEvaluator:
    """Evaluate steps of every kind.

    Attributes:
        actions: Registry of action handlers.
        notifier: Optional notification sender.
        settings: Engine settings.
    """

    def __init__(
        self,
        actions: ActionRegistry,
        notifier: NotificationSender | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            actions: Registry of action handlers.
            notifier: Optional notification sender.
            settings: Engine settings.
        """
        self.actions = actions
        self.notifier = notifier
        self.settings = settings or EngineSettings()

    async def evaluate(self, step: StepDefinition, view: Mapping[str, Any], state: StepState) -> Outcome:
        """Evaluate ``step`` against the context ``view``.

        Args:
            step: The step definition.
            view: Read-only context visible to the step.
            state: Persisted state of the step.

        Returns:
            The outcome of the step.
        """
        if isinstance(step, ActionStep):
            return await self._run_action(step, view, state)
        if isinstance(step, ConditionStep):
            return self._choose_branch(step, view)
        if isinstance(step, ApprovalStep):
            return self._check_approval(step, view, state)
        if isinstance(step, NotificationStep):
            return await self._notify(step, view, state)
        if isinstance(step, DelayStep):
            return self._wait(step, state)
        return Failed(f"Unsupported step type '{type(step).__name__}'")

    async def _run_action(self, step: ActionStep, view: Mapping[str, Any], state: StepState) -> Outcome:
        try:
            handler = self.actions.get(step.action)
        except KeyError as e:
            return Failed(str(UpstreamFailureError(step.action, e.args[0])))

        call = ActionCall(
            execution_id=state.execution_id,
            document_id=state.document_id,
            step=step,
            params=resolve_params(step.params, view),
            context=view,
        )
        try:
            result = await handler(call)
        except Exception as e:  # noqa: BLE001
            logger.error("Action '%s' failed in execution %s", step.action, state.execution_id, exc_info=True)
            return Failed(str(UpstreamFailureError(step.action, e)))

        if result is None:
            return Completed({})
        return Completed(dict(result) if isinstance(result, Mapping) else {"result": result})

    def _choose_branch(self, step: ConditionStep, view: Mapping[str, Any]) -> Outcome:
        for i, branch in enumerate(step.branches):
            try:
                expression = branch.expression or parse_expression(branch.when)
                matched = bool(expression.evaluate(view))
            except ExpressionError as e:
                return Failed(str(e))
            if matched:
                return Completed({"branch": i, "when": branch.when, "goto": branch.goto})
        return Failed(str(NoMatchingBranchError(step.id)))

    def _check_approval(self, step: ApprovalStep, view: Mapping[str, Any], state: StepState) -> Outcome:
        if state.approval_status is None:
            approvers = resolve_recipients(step.approvers, view)
            if not approvers:
                return Failed(f"Approval step '{step.id}' resolved to no approvers")
            if step.expires_in is not None:
                expires_at: datetime | None = state.now + timedelta(seconds=step.expires_in)
            elif self.settings.approval_expiry is not None:
                expires_at = state.now + self.settings.approval_expiry
            else:
                expires_at = None
            return Pending(
                gate=ApprovalGateRef(
                    approvers=tuple(approvers),
                    mode=step.mode or self.settings.default_approval_mode,
                    sequential=step.sequential,
                    expires_at=expires_at,
                    message=step.message,
                )
            )

        if state.approval_status is ApprovalStatus.PENDING:
            return Pending()

        approvals, rejections = state.approval_counts
        if state.approval_status is ApprovalStatus.APPROVED:
            return Completed({"decision": "approved", "approvals": approvals, "rejections": rejections})
        if state.approval_status is ApprovalStatus.REJECTED:
            return Failed(f"Approval step '{step.id}' was rejected ({approvals} approved, {rejections} rejected)")
        return Failed(str(ExpiredError("approval request", state.request_id or step.id, state.expires_at)))

    async def _notify(self, step: NotificationStep, view: Mapping[str, Any], state: StepState) -> Outcome:
        template_data = {**view, "document_id": str(state.document_id), "execution_id": str(state.execution_id)}
        message = render_template(step.message, template_data)
        subject = render_template(step.subject, template_data) if step.subject else None
        delivered: list[str] = []
        failed: list[str] = []

        for recipient in resolve_recipients(step.recipients, view):
            if self.notifier is None:
                logger.warning("No notification sender configured, dropping notification to %s", recipient)
                failed.append(recipient)
                continue
            try:
                sent = await self.notifier.send_notification(recipient, subject, message)
            except Exception:  # noqa: BLE001
                logger.warning("Notification to %s failed in step '%s'", recipient, step.id, exc_info=True)
                sent = False
            else:
                if not sent:
                    logger.warning("Notification to %s was not accepted in step '%s'", recipient, step.id)
            (delivered if sent else failed).append(recipient)

        return Completed({"delivered": delivered, "failed": failed})

    def _wait(self, step: DelayStep, state: StepState) -> Outcome:
        if state.resume_at is None:
            if step.seconds == 0:
                return Completed({"waited_seconds": 0})
            return Pending(resume_at=state.now + timedelta(seconds=step.seconds))
        if state.now >= state.resume_at:
            return Completed({"waited_seconds": step.seconds, "resumed_at": state.now.isoformat()})
        return Pending()
