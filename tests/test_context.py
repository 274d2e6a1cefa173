"""Tests for the execution context."""

from __future__ import annotations

import pytest

from docflow.core.context import (
    INPUT_SOURCE,
    ExecutionContext,
    render_template,
    resolve_params,
    resolve_recipients,
)


@pytest.mark.unit
class TestExecutionContext:
    """Tests for ExecutionContext."""

    def test_inputs_are_visible_to_every_step(self) -> None:
        """Test start variables are seen from step 0 on."""
        context = ExecutionContext.from_inputs({"amount": 500, "owner": "ann"})

        assert dict(context.view_for(0)) == {"amount": 500, "owner": "ann"}
        assert context.sources == {"amount": INPUT_SOURCE, "owner": INPUT_SOURCE}

    def test_results_key_is_reserved(self) -> None:
        """Test a start variable cannot pose as step results."""
        context = ExecutionContext.from_inputs({"steps": {"sign": {"ok": True}}, "amount": 1})

        assert "steps" not in context.data
        assert context.inputs() == {"amount": 1}

    def test_outputs_are_visible_only_to_later_steps(self) -> None:
        """Test a step never sees what it or a later step wrote."""
        context = ExecutionContext.from_inputs({"amount": 500})
        context.record_result(1, "stamp", {"outputs": {"stamped": True}, "took": 3})

        assert "stamped" not in context.view_for(1)
        assert "steps" not in context.view_for(1)

        view = context.view_for(2)
        assert view["stamped"] is True
        assert view["steps"] == {"stamp": {"outputs": {"stamped": True}, "took": 3}}

    def test_results_are_filtered_per_step(self) -> None:
        """Test the steps mapping only lists earlier steps."""
        context = ExecutionContext()
        context.record_result(0, "first", {"n": 1})
        context.record_result(2, "third", {"n": 3})

        assert context.view_for(1)["steps"] == {"first": {"n": 1}}
        assert set(context.view_for(3)["steps"]) == {"first", "third"}

    def test_outputs_overwrite_inputs_for_later_steps(self) -> None:
        """Test provenance moves to the writing step."""
        context = ExecutionContext.from_inputs({"status": "draft"})
        context.record_result(0, "publish", {"outputs": {"status": "published"}})

        assert context.view_for(1)["status"] == "published"
        assert context.inputs() == {}

    def test_view_is_read_only(self) -> None:
        """Test steps cannot write through their view."""
        view = ExecutionContext.from_inputs({"a": 1}).view_for(0)

        with pytest.raises(TypeError):
            view["a"] = 2  # type: ignore[index]

    def test_record_round_trip_keeps_provenance(self) -> None:
        """Test rebuilding from persisted columns keeps visibility rules."""
        context = ExecutionContext.from_inputs({"amount": 1})
        context.record_result(0, "stamp", {"outputs": {"stamped": True}})
        data, sources = context.to_record()

        restored = ExecutionContext.from_record(data, sources)

        assert dict(restored.view_for(0)) == dict(context.view_for(0))
        assert dict(restored.view_for(1)) == dict(context.view_for(1))

    def test_from_record_treats_unknown_keys_as_inputs(self) -> None:
        """Test keys without provenance are treated as start variables."""
        context = ExecutionContext.from_record({"legacy": True}, None)

        assert context.view_for(0)["legacy"] is True

    def test_to_record_returns_copies(self) -> None:
        """Test persisted copies do not alias the live context."""
        context = ExecutionContext.from_inputs({"tags": ["a"]})
        data, _ = context.to_record()
        data["tags"].append("b")

        assert context.data["tags"] == ["a"]

    def test_resolve(self) -> None:
        """Test dotted lookups respect visibility."""
        context = ExecutionContext.from_inputs({"document": {"title": "NDA"}})
        context.record_result(0, "sign", {"envelope": {"id": "env-1"}})

        assert context.resolve("document.title", 0) == "NDA"
        assert context.resolve("steps.sign.envelope.id", 0) is None
        assert context.resolve("steps.sign.envelope.id", 1) == "env-1"


@pytest.mark.unit
class TestResolution:
    """Tests for parameter, recipient and template resolution."""

    def test_resolve_params(self) -> None:
        """Test $key strings are replaced, nested values included."""
        view = {"owner": {"email": "ann@example.com"}, "cc": ["bob"]}

        params = resolve_params({"to": "$owner.email", "copy": ["$cc", "literal"], "n": 3}, view)

        assert params == {"to": "ann@example.com", "copy": [["bob"], "literal"], "n": 3}

    def test_resolve_recipients_expands_and_dedups(self) -> None:
        """Test recipients keep routing order without duplicates."""
        view = {"legal": ["lia", "ann"], "cfo": "carl", "nobody": None}

        assert resolve_recipients(["ann", "$legal", "$cfo", "$nobody", "$missing"], view) == ["ann", "lia", "carl"]

    def test_render_template(self) -> None:
        """Test placeholders are filled and unknown ones kept."""
        view = {"title": "NDA", "signer": {"name": "Ann"}}

        assert render_template("{title} signed by {signer.name} {unknown}", view) == "NDA signed by Ann {unknown}"
