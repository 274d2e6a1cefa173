"""Execution context and routing.

This module provides :class:`ExecutionContext`, the key/value bag carried by an
execution from step to step. Every key remembers which step wrote it, which is
what keeps data flow forward-only: a step only ever sees inputs and keys written
by steps at a lower index.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from docflow.core.expressions import lookup_path

__all__ = [
    "INPUT_SOURCE",
    "RESULTS_KEY",
    "ExecutionContext",
    "render_template",
    "resolve_params",
    "resolve_recipients",
]

INPUT_SOURCE = -1
"""Provenance marker for keys that came from the start variables."""

RESULTS_KEY = "steps"
"""Reserved key collecting every step result by step id."""

_PLACEHOLDER_RE = re.compile(r"\{([$\w.]+)\}")


@dataclass
class ExecutionContext:
    """Accumulating context of one execution.

    Only the execution controller writes to the context, through
    :meth:`record_result`, after a step has completed. Steps read it through
    :meth:`view_for`.

    Attributes:
        data: The key/value bag.
        sources: Maps each key to the index of the step that wrote it, or
            :data:`INPUT_SOURCE` for start variables.

    Example:
        >>> context = ExecutionContext.from_inputs({"amount": 500})
        >>> context.record_result(0, "send", {"sent": True})
        >>> dict(context.view_for(0))
        {'amount': 500}
        >>> context.view_for(1)["steps"]["send"]
        {'sent': True}
    """

    data: dict[str, Any] = field(default_factory=dict)
    sources: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_inputs(cls, variables: Mapping[str, Any] | None) -> ExecutionContext:
        """Create a context holding only start variables."""
        data = {key: value for key, value in (variables or {}).items() if key != RESULTS_KEY}
        return cls(data=data, sources=dict.fromkeys(data, INPUT_SOURCE))

    @classmethod
    def from_record(cls, data: Mapping[str, Any] | None, sources: Mapping[str, int] | None) -> ExecutionContext:
        """Rebuild a context from its persisted columns."""
        data = dict(data or {})
        known = dict(sources or {})
        for key in data:
            known.setdefault(key, INPUT_SOURCE)
        return cls(data=data, sources=known)

    def to_record(self) -> tuple[dict[str, Any], dict[str, int]]:
        """Return fresh copies of ``(data, sources)`` for persistence."""
        return _copy_json(self.data), dict(self.sources)

    def inputs(self) -> dict[str, Any]:
        """Return the start variables only."""
        return {
            key: value
            for key, value in self.data.items()
            if key != RESULTS_KEY and self.sources.get(key) == INPUT_SOURCE
        }

    def view_for(self, step_index: int) -> Mapping[str, Any]:
        """Read-only view of the keys visible to the step at ``step_index``.

        The ``steps`` key, which collects every step result by step id, is
        filtered the same way.
        """
        visible: dict[str, Any] = {}
        for key, value in self.data.items():
            if key == RESULTS_KEY:
                continue
            if self.sources.get(key, INPUT_SOURCE) < step_index:
                visible[key] = value
        step_results = {
            step_key: result
            for step_key, result in self.data.get(RESULTS_KEY, {}).items()
            if self.sources.get(f"{RESULTS_KEY}.{step_key}", INPUT_SOURCE) < step_index
        }
        if step_results:
            visible[RESULTS_KEY] = step_results
        return MappingProxyType(visible)

    def record_result(self, step_index: int, step_key: str, payload: Mapping[str, Any] | None) -> None:
        """Store the result of a completed step.

        The full payload is stored under ``steps.<step_key>``. Keys listed in the
        payload's ``outputs`` mapping are also promoted to the top level.

        Args:
            step_index: Index of the step that produced the payload.
            step_key: Id of that step.
            payload: The step result.
        """
        payload = dict(payload or {})
        steps = dict(self.data.get(RESULTS_KEY, {}))
        steps[step_key] = payload
        self.data[RESULTS_KEY] = steps
        self.sources[f"{RESULTS_KEY}.{step_key}"] = step_index

        outputs = payload.get("outputs")
        if isinstance(outputs, Mapping):
            for key, value in outputs.items():
                if key == RESULTS_KEY:
                    continue
                self.data[key] = value
                self.sources[key] = step_index

    def resolve(self, path: str, step_index: int) -> Any:
        """Look up a dotted ``path`` in the view of the step at ``step_index``."""
        return lookup_path(self.view_for(step_index), path)


def _copy_json(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _copy_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_copy_json(item) for item in value]
    return value


def _resolve_value(value: Any, view: Mapping[str, Any]) -> Any:
    if isinstance(value, str) and value.startswith("$"):
        return lookup_path(view, value)
    if isinstance(value, Mapping):
        return {key: _resolve_value(item, view) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_value(item, view) for item in value]
    return value


def resolve_params(params: Mapping[str, Any], view: Mapping[str, Any]) -> dict[str, Any]:
    """Replace ``$key`` string values in ``params`` with values from ``view``."""
    return {key: _resolve_value(value, view) for key, value in params.items()}


def resolve_recipients(entries: Iterable[str], view: Mapping[str, Any]) -> list[str]:
    """Expand approver or recipient entries into concrete identifiers.

    Entries of the form ``$key`` are looked up in ``view`` and may yield a single
    identifier or a list of them. Literal entries are kept as they are. The
    result keeps routing order and drops duplicates and empty values.

    Args:
        entries: Entries as written in the step definition.
        view: The context visible to the step.

    Returns:
        The resolved identifiers, in routing order.
    """
    resolved: list[str] = []
    for entry in entries:
        value: Any = lookup_path(view, entry) if entry.startswith("$") else entry
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None or item == "":
                continue
            identifier = str(item)
            if identifier not in resolved:
                resolved.append(identifier)
    return resolved


def render_template(template: str, view: Mapping[str, Any]) -> str:
    """Fill ``{key}`` placeholders in ``template`` from ``view``.

    Unknown placeholders are left untouched.
    """

    def _replace(match: re.Match[str]) -> str:
        value = lookup_path(view, match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)
