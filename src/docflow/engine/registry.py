"""Registry of action handlers.

Action steps name a handler (``send_document``, ``archive_document``...) that the
host application registers here. Definitions are checked against the registry
when a workflow is saved and handlers are looked up again when the step runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from docflow.core.protocols import ActionHandler

__all__ = ["ActionRegistry"]


class ActionRegistry:
    """Registry mapping action names to async handlers.

    Example:
        >>> registry = ActionRegistry()
        >>> @registry.action("send_document")
        ... async def send_document(call):
        ...     return {"sent_to": call.params["to"]}
        >>> registry.has_action("send_document")
        True
    """

    def __init__(self, handlers: dict[str, ActionHandler] | None = None) -> None:
        """Initialize the registry.

        Args:
            handlers: Optional initial mapping of action name to handler.
        """
        self._handlers: dict[str, ActionHandler] = dict(handlers or {})

    def register(self, name: str, handler: ActionHandler, *, replace: bool = False) -> None:
        """Register ``handler`` under ``name``.

        Args:
            name: The action name used by definitions.
            handler: Async callable receiving an :class:`~docflow.core.protocols.ActionCall`.
            replace: Allow overwriting an existing registration.

        Raises:
            ValueError: If ``name`` is already registered and ``replace`` is false.
        """
        if name in self._handlers and not replace:
            msg = f"Action '{name}' is already registered"
            raise ValueError(msg)
        self._handlers[name] = handler

    def action(self, name: str) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: ActionHandler) -> ActionHandler:
            self.register(name, handler)
            return handler

        return decorator

    def get(self, name: str) -> ActionHandler:
        """Return the handler registered under ``name``.

        Raises:
            KeyError: If no handler has that name.
        """
        if name not in self._handlers:
            msg = f"Action '{name}' not found in registry"
            raise KeyError(msg)
        return self._handlers[name]

    def unregister(self, name: str) -> None:
        """Remove ``name`` from the registry, if present."""
        self._handlers.pop(name, None)

    def has_action(self, name: str) -> bool:
        """Whether a handler is registered under ``name``."""
        return name in self._handlers

    def names(self) -> list[str]:
        """Registered action names, sorted."""
        return sorted(self._handlers)
