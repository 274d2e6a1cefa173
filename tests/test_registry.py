"""Tests for ActionRegistry."""

from __future__ import annotations

from typing import Any

import pytest

from docflow.engine.registry import ActionRegistry


async def noop(call: Any) -> None:
    return None


@pytest.mark.unit
class TestActionRegistry:
    """Tests for ActionRegistry."""

    def test_register_and_get(self) -> None:
        """Test registering a handler by name."""
        registry = ActionRegistry()
        registry.register("archive_document", noop)

        assert registry.get("archive_document") is noop
        assert registry.has_action("archive_document")

    def test_decorator(self) -> None:
        """Test the decorator form returns the handler unchanged."""
        registry = ActionRegistry()

        @registry.action("send_document")
        async def send_document(call: Any) -> dict[str, Any]:
            return {}

        assert registry.get("send_document") is send_document

    def test_duplicate_registration(self) -> None:
        """Test names cannot be registered twice unless replacing."""
        registry = ActionRegistry({"archive_document": noop})

        async def other(call: Any) -> None:
            return None

        with pytest.raises(ValueError, match="already registered"):
            registry.register("archive_document", other)

        registry.register("archive_document", other, replace=True)
        assert registry.get("archive_document") is other

    def test_get_unknown(self) -> None:
        """Test looking up an unknown action."""
        with pytest.raises(KeyError, match="not found"):
            ActionRegistry().get("missing")

    def test_unregister_and_names(self) -> None:
        """Test removing handlers and listing names."""
        registry = ActionRegistry({"b": noop, "a": noop})
        registry.unregister("b")
        registry.unregister("never-registered")

        assert registry.names() == ["a"]
        assert not registry.has_action("b")
