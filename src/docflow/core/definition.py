"""Workflow definition types.

A workflow definition is an ordered list of typed steps. It is parsed from the
JSON stored on a workflow and validated when the workflow is saved, so the
executor only ever sees well-formed definitions.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Union

from docflow.core.expressions import Expression, parse_expression
from docflow.core.types import ApprovalMode, StepKind
from docflow.exceptions import ExpressionError, WorkflowValidationError

if TYPE_CHECKING:
    from docflow.engine.registry import ActionRegistry

__all__ = [
    "ActionStep",
    "ApprovalStep",
    "Branch",
    "ConditionStep",
    "DelayStep",
    "NotificationStep",
    "StepDefinition",
    "WorkflowDefinition",
    "parse_definition",
]

DEFAULT_VERSION = "1.0.0"


@dataclass(frozen=True)
class _BaseStep:
    """Fields shared by every step kind.

    Attributes:
        id: Identifier of the step, unique within the definition.
        name: Optional display name.
    """

    kind: ClassVar[StepKind]

    id: str
    name: str | None = None

    @property
    def label(self) -> str:
        """Display name, falling back to the id."""
        return self.name or self.id

    def _base_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "type": str(self.kind)}
        if self.name:
            data["name"] = self.name
        return data


@dataclass(frozen=True)
class ActionStep(_BaseStep):
    """Call a registered action handler.

    Attributes:
        action: Name of the handler in the action registry.
        params: Parameters passed to the handler. String values of the form
            ``$key`` are resolved against the context before the call.
    """

    kind: ClassVar[StepKind] = StepKind.ACTION

    action: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {**self._base_dict(), "action": self.action, "params": dict(self.params)}


@dataclass(frozen=True)
class Branch:
    """One arm of a condition step.

    Attributes:
        when: Expression source.
        goto: Id of the step to jump to, or ``None`` to continue with the next step.
        expression: The parsed expression.
    """

    when: str
    goto: str | None = None
    expression: Expression | None = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"when": self.when}
        if self.goto is not None:
            data["goto"] = self.goto
        return data


@dataclass(frozen=True)
class ConditionStep(_BaseStep):
    """Select a branch by evaluating expressions in order; the first true branch wins."""

    kind: ClassVar[StepKind] = StepKind.CONDITION

    branches: tuple[Branch, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {**self._base_dict(), "branches": [b.to_dict() for b in self.branches]}


@dataclass(frozen=True)
class ApprovalStep(_BaseStep):
    """Block the execution until approvers decide.

    Attributes:
        approvers: Approver identifiers, in routing order. ``$key`` entries are
            resolved against the context and may expand to several approvers.
        mode: How individual responses combine into a decision, or ``None`` for
            the engine default.
        sequential: If true, approvers must respond one after another in routing order.
        expires_in: Seconds until the request expires, or ``None`` for the engine default.
        message: Optional text included in approval emails.
    """

    kind: ClassVar[StepKind] = StepKind.APPROVAL

    approvers: tuple[str, ...] = ()
    mode: ApprovalMode | None = None
    sequential: bool = False
    expires_in: int | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            **self._base_dict(),
            "approvers": list(self.approvers),
            "sequential": self.sequential,
        }
        if self.mode is not None:
            data["mode"] = str(self.mode)
        if self.expires_in is not None:
            data["expires_in"] = self.expires_in
        if self.message:
            data["message"] = self.message
        return data


@dataclass(frozen=True)
class NotificationStep(_BaseStep):
    """Send a best-effort notification to each recipient.

    Attributes:
        recipients: Recipient identifiers; ``$key`` entries are resolved against the context.
        message: Message body; ``{key}`` placeholders are filled from the context.
        subject: Optional subject line.
    """

    kind: ClassVar[StepKind] = StepKind.NOTIFICATION

    recipients: tuple[str, ...] = ()
    message: str = ""
    subject: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {**self._base_dict(), "recipients": list(self.recipients), "message": self.message}
        if self.subject:
            data["subject"] = self.subject
        return data


@dataclass(frozen=True)
class DelayStep(_BaseStep):
    """Wait ``seconds`` before continuing."""

    kind: ClassVar[StepKind] = StepKind.DELAY

    seconds: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {**self._base_dict(), "seconds": self.seconds}


StepDefinition = Union[ActionStep, ConditionStep, ApprovalStep, NotificationStep, DelayStep]
"""Any concrete step definition."""


def _string_list(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    return None


def _parse_step(position: int, raw: Any, errors: list[str]) -> StepDefinition | None:
    where = f"Step {position}"
    if not isinstance(raw, Mapping):
        errors.append(f"{where}: must be an object")
        return None

    step_id = raw.get("id")
    if not isinstance(step_id, str) or not step_id.strip():
        errors.append(f"{where}: 'id' must be a non-empty string")
        return None
    where = f"Step '{step_id}'"
    name = raw.get("name")

    try:
        kind = StepKind(str(raw.get("type", "")).lower())
    except ValueError:
        errors.append(f"{where}: unknown step type {raw.get('type')!r}")
        return None

    if kind is StepKind.ACTION:
        action = raw.get("action")
        params = raw.get("params", {})
        if not isinstance(action, str) or not action:
            errors.append(f"{where}: 'action' must be a non-empty string")
            return None
        if not isinstance(params, Mapping):
            errors.append(f"{where}: 'params' must be an object")
            return None
        return ActionStep(id=step_id, name=name, action=action, params=dict(params))

    if kind is StepKind.CONDITION:
        raw_branches = raw.get("branches")
        if not isinstance(raw_branches, list) or not raw_branches:
            errors.append(f"{where}: at least one branch is required")
            return None
        branches = []
        for i, raw_branch in enumerate(raw_branches):
            if not isinstance(raw_branch, Mapping) or not isinstance(raw_branch.get("when"), str):
                errors.append(f"{where}: branch {i} needs a 'when' expression")
                continue
            goto = raw_branch.get("goto")
            if goto is not None and not isinstance(goto, str):
                errors.append(f"{where}: branch {i} 'goto' must be a step id")
                continue
            try:
                expression = parse_expression(raw_branch["when"])
            except ExpressionError as e:
                errors.append(f"{where}: branch {i}: {e}")
                continue
            branches.append(Branch(when=raw_branch["when"], goto=goto, expression=expression))
        return ConditionStep(id=step_id, name=name, branches=tuple(branches))

    if kind is StepKind.APPROVAL:
        approvers = _string_list(raw.get("approvers"))
        if not approvers:
            errors.append(f"{where}: at least one approver is required")
            return None
        mode = None
        if raw.get("mode") is not None:
            try:
                mode = ApprovalMode(str(raw["mode"]).lower())
            except ValueError:
                errors.append(f"{where}: approval mode must be one of any, all, majority")
                return None
        expires_in = raw.get("expires_in")
        if expires_in is not None and (
            not isinstance(expires_in, int) or isinstance(expires_in, bool) or expires_in <= 0
        ):
            errors.append(f"{where}: 'expires_in' must be a positive number of seconds")
            return None
        return ApprovalStep(
            id=step_id,
            name=name,
            approvers=approvers,
            mode=mode,
            sequential=bool(raw.get("sequential", False)),
            expires_in=expires_in,
            message=raw.get("message"),
        )

    if kind is StepKind.NOTIFICATION:
        recipients = _string_list(raw.get("recipients"))
        if not recipients:
            errors.append(f"{where}: at least one recipient is required")
            return None
        return NotificationStep(
            id=step_id,
            name=name,
            recipients=recipients,
            message=str(raw.get("message", "")),
            subject=raw.get("subject"),
        )

    seconds = raw.get("seconds", 0)
    if not isinstance(seconds, int) or isinstance(seconds, bool) or seconds < 0:
        errors.append(f"{where}: 'seconds' must be a non-negative integer")
        return None
    return DelayStep(id=step_id, name=name, seconds=seconds)


@dataclass(frozen=True)
class WorkflowDefinition:
    """An ordered, typed list of steps.

    Attributes:
        steps: The steps, in execution order.
        version: Definition format version.
        variables: Default input variables, overlaid by the variables passed at start.
    """

    steps: tuple[StepDefinition, ...]
    version: str = DEFAULT_VERSION
    variables: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowDefinition:
        """Parse a definition from its JSON form.

        Args:
            data: The JSON object, with a ``steps`` list.

        Returns:
            The parsed definition. Cross-step rules are checked by :meth:`validate`.

        Raises:
            WorkflowValidationError: If the JSON does not describe well-formed steps.
        """
        errors: list[str] = []
        if not isinstance(data, Mapping):
            raise WorkflowValidationError(["Definition must be an object"])
        raw_steps = data.get("steps")
        if not isinstance(raw_steps, list):
            raise WorkflowValidationError(["Definition must contain a 'steps' list"])
        variables = data.get("variables", {})
        if not isinstance(variables, Mapping):
            errors.append("'variables' must be an object")
            variables = {}

        steps = [_parse_step(i, raw, errors) for i, raw in enumerate(raw_steps)]
        if errors:
            raise WorkflowValidationError(errors)
        return cls(
            steps=tuple(s for s in steps if s is not None),
            version=str(data.get("version", DEFAULT_VERSION)),
            variables=dict(variables),
        )

    def to_dict(self) -> dict[str, Any]:
        """Canonical JSON form, as persisted on the workflow."""
        return {
            "version": self.version,
            "variables": dict(self.variables),
            "steps": [step.to_dict() for step in self.steps],
        }

    def __len__(self) -> int:
        return len(self.steps)

    def step_at(self, index: int) -> StepDefinition:
        """Return the step at ``index``."""
        return self.steps[index]

    def index_of(self, step_id: str) -> int:
        """Return the position of the step with id ``step_id``.

        Raises:
            KeyError: If no step has that id.
        """
        for i, step in enumerate(self.steps):
            if step.id == step_id:
                return i
        msg = f"Step '{step_id}' not found in definition"
        raise KeyError(msg)

    def validate(self, actions: ActionRegistry | None = None) -> list[str]:
        """Check the rules that span several steps.

        Args:
            actions: If given, action steps must name a registered handler.

        Returns:
            A list of error messages. Empty when the definition is valid.
        """
        errors: list[str] = []
        if not self.steps:
            errors.append("Definition must contain at least one step")
            return errors

        positions: dict[str, int] = {}
        for i, step in enumerate(self.steps):
            if step.id in positions:
                errors.append(f"Duplicate step id '{step.id}'")
            else:
                positions[step.id] = i

        for i, step in enumerate(self.steps):
            if isinstance(step, ConditionStep):
                for branch in step.branches:
                    if branch.goto is None:
                        continue
                    target = positions.get(branch.goto)
                    if target is None:
                        errors.append(f"Step '{step.id}': branch target '{branch.goto}' does not exist")
                    elif target <= i:
                        errors.append(
                            f"Step '{step.id}': branch target '{branch.goto}' must come after the condition"
                        )
            elif isinstance(step, ActionStep) and actions is not None and not actions.has_action(step.action):
                errors.append(f"Step '{step.id}': unknown action '{step.action}'")

        return errors


def parse_definition(data: Mapping[str, Any], actions: ActionRegistry | None = None) -> WorkflowDefinition:
    """Parse and fully validate a definition, as done when a workflow is saved.

    Raises:
        WorkflowValidationError: With every problem found.
    """
    definition = WorkflowDefinition.from_dict(data)
    errors = definition.validate(actions)
    if errors:
        raise WorkflowValidationError(errors)
    return definition
