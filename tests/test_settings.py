"""Tests for engine settings."""

from __future__ import annotations

from datetime import timedelta

import pytest

from docflow.core.types import ApprovalMode
from docflow.settings import EngineSettings


@pytest.mark.unit
class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self) -> None:
        """Test default values."""
        settings = EngineSettings()

        assert settings.approval_expiry == timedelta(days=7)
        assert settings.token_ttl == timedelta(days=7)
        assert settings.token_bytes == 32
        assert settings.default_approval_mode is ApprovalMode.ALL

    def test_from_env_without_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test unset variables keep the defaults."""
        for name in ("APPROVAL_EXPIRY_SECONDS", "TOKEN_TTL_SECONDS", "APPROVAL_BASE_URL", "TOKEN_BYTES"):
            monkeypatch.delenv(f"DOCFLOW_{name}", raising=False)
        monkeypatch.delenv("DOCFLOW_DEFAULT_APPROVAL_MODE", raising=False)

        assert EngineSettings.from_env() == EngineSettings()

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test values are read from the environment."""
        monkeypatch.setenv("DOCFLOW_APPROVAL_EXPIRY_SECONDS", "3600")
        monkeypatch.setenv("DOCFLOW_TOKEN_TTL_SECONDS", "600")
        monkeypatch.setenv("DOCFLOW_APPROVAL_BASE_URL", "https://docs.example.com/approve")
        monkeypatch.setenv("DOCFLOW_TOKEN_BYTES", "16")
        monkeypatch.setenv("DOCFLOW_DEFAULT_APPROVAL_MODE", "MAJORITY")

        settings = EngineSettings.from_env()

        assert settings.approval_expiry == timedelta(hours=1)
        assert settings.token_ttl == timedelta(minutes=10)
        assert settings.approval_base_url == "https://docs.example.com/approve"
        assert settings.token_bytes == 16
        assert settings.default_approval_mode is ApprovalMode.MAJORITY

    def test_from_env_custom_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a custom prefix."""
        monkeypatch.setenv("APP_TOKEN_BYTES", "48")

        assert EngineSettings.from_env(prefix="APP_").token_bytes == 48

    def test_zero_expiry_disables_it(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test zero seconds means requests never expire."""
        monkeypatch.setenv("DOCFLOW_APPROVAL_EXPIRY_SECONDS", "0")

        assert EngineSettings.from_env().approval_expiry is None

    def test_bad_values_fall_back(self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
        """Test malformed values are ignored with a warning."""
        monkeypatch.setenv("DOCFLOW_TOKEN_BYTES", "lots")
        monkeypatch.setenv("DOCFLOW_DEFAULT_APPROVAL_MODE", "most")

        with caplog.at_level("WARNING", logger="docflow.settings"):
            settings = EngineSettings.from_env()

        assert settings.token_bytes == 32
        assert settings.default_approval_mode is ApprovalMode.ALL
        assert "DOCFLOW_TOKEN_BYTES" in caplog.text

    def test_approval_link(self) -> None:
        """Test links are built without doubled slashes."""
        settings = EngineSettings(approval_base_url="https://docs.example.com/approve/")

        assert settings.approval_link("abc") == "https://docs.example.com/approve/abc"
