"""Tests for the Litestar plugin."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from litestar import Litestar
from litestar.di import Provide
from litestar.status_codes import HTTP_200_OK, HTTP_401_UNAUTHORIZED
from litestar.testing import AsyncTestClient

from docflow import DocflowPlugin, DocflowPluginConfig, EngineSettings
from docflow.engine.executor import WorkflowExecutor
from docflow.engine.registry import ActionRegistry
from docflow.exceptions import DocflowError
from docflow.web.exceptions import docflow_error_handler

from collections.abc import AsyncIterator  # noqa: TC003 - needed for DI

from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - needed for DI

if TYPE_CHECKING:
    from tests.conftest import MockEventBus


def make_app(plugin: DocflowPlugin, session_maker) -> Litestar:
    async def provide_db_session() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session

    return Litestar(plugins=[plugin], dependencies={"db_session": Provide(provide_db_session)})


@pytest.mark.unit
class TestPluginInitialization:
    """Tests for plugin initialization."""

    def test_plugin_creates_default_registry(self) -> None:
        """Test an empty registry is created when none is configured."""
        plugin = DocflowPlugin()

        assert isinstance(plugin.actions, ActionRegistry)
        assert plugin.actions.names() == []

    def test_plugin_uses_provided_registry(self) -> None:
        """Test the configured registry is used."""
        actions = ActionRegistry()
        plugin = DocflowPlugin(config=DocflowPluginConfig(actions=actions))

        assert plugin.actions is actions
        assert plugin.config.actor_header == "X-User-Id"

    def test_settings_default_to_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test settings are read from the environment when not configured."""
        monkeypatch.setenv("DOCFLOW_TOKEN_BYTES", "24")

        plugin = DocflowPlugin()

        assert plugin._settings.token_bytes == 24


@pytest.mark.integration
@pytest.mark.asyncio
class TestPluginRoutes:
    """Tests for the routes the plugin registers."""

    async def test_registers_routes_and_error_handler(self, session_maker) -> None:
        """Test the API is mounted under the configured prefix."""
        app = make_app(DocflowPlugin(config=DocflowPluginConfig(api_path_prefix="/docflow")), session_maker)

        paths = {route.path for route in app.routes}
        assert "/docflow" in paths
        assert "/docflow/executions/{execution_id:uuid}" in paths
        assert "/docflow/approvals/token/{token:str}" in paths
        assert app.exception_handlers[DocflowError] is docflow_error_handler

    async def test_api_can_be_disabled(self, session_maker) -> None:
        """Test no routes are added when the API is disabled."""
        app = make_app(DocflowPlugin(config=DocflowPluginConfig(enable_api=False)), session_maker)

        assert not any(route.path.startswith("/workflows") for route in app.routes)
        assert DocflowError not in app.exception_handlers


@pytest.mark.integration
@pytest.mark.asyncio
class TestPluginServices:
    """Tests for the services the plugin builds."""

    async def test_create_executor(self, session: AsyncSession, mock_event_bus: MockEventBus) -> None:
        """Test executors share the plugin's collaborators."""
        settings = EngineSettings(token_bytes=16)
        plugin = DocflowPlugin(config=DocflowPluginConfig(settings=settings, event_bus=mock_event_bus))

        executor = plugin.create_executor(session)

        assert isinstance(executor, WorkflowExecutor)
        assert executor.session is session
        assert executor.actions is plugin.actions
        assert executor.settings is settings
        assert executor.event_bus is mock_event_bus
        assert executor.gate.settings is settings

    async def test_custom_actor_header(self, session_maker) -> None:
        """Test the actor is read from the configured header."""
        plugin = DocflowPlugin(config=DocflowPluginConfig(actor_header="X-Actor", settings=EngineSettings()))

        async with AsyncTestClient(app=make_app(plugin, session_maker)) as client:
            missing = await client.get("/workflows/", headers={"X-User-Id": "ann"})
            present = await client.get("/workflows/", headers={"X-Actor": "ann"})

        assert missing.status_code == HTTP_401_UNAUTHORIZED
        assert present.status_code == HTTP_200_OK
        assert present.json()["total"] == 0
