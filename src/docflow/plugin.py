"""Litestar plugin for docflow integration.

This module provides the DocflowPlugin, which wires the engine into a Litestar
application: it injects per-request services built on the request's database
session and registers the REST API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar import Request  # noqa: TC002 - needed for DI
from litestar.di import Provide
from litestar.exceptions import NotAuthorizedException
from litestar.plugins import InitPluginProtocol
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - needed for DI

from docflow.engine.executor import WorkflowExecutor
from docflow.engine.registry import ActionRegistry
from docflow.engine.workflows import WorkflowService
from docflow.exceptions import DocflowError
from docflow.settings import EngineSettings

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from docflow.core.protocols import DocumentStore, EventBus, NotificationSender

__all__ = ["DocflowPlugin", "DocflowPluginConfig"]


@dataclass
class DocflowPluginConfig:
    """Configuration for the DocflowPlugin.

    Attributes:
        settings: Engine settings. Defaults to ``EngineSettings.from_env()``.
        actions: Registry of action handlers. A new empty registry is created
            if not provided.
        documents: Document store used for ownership checks and titles.
        notifier: Sender for approval emails and notifications.
        event_bus: Optional event bus receiving lifecycle events.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all docflow API endpoints.
            Defaults to "/workflows".
        api_guards: List of Litestar guards to apply to all docflow API endpoints.
        api_tags: OpenAPI tags to apply to docflow API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
            Defaults to True.
        actor_header: Request header carrying the acting user's id.
            Defaults to "X-User-Id".
    """

    settings: EngineSettings | None = None
    actions: ActionRegistry | None = None
    documents: DocumentStore | None = None
    notifier: NotificationSender | None = None
    event_bus: EventBus | None = None
    enable_api: bool = True
    api_path_prefix: str = "/workflows"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Docflow"])
    include_api_in_schema: bool = True
    actor_header: str = "X-User-Id"


class DocflowPlugin(InitPluginProtocol):
    """Litestar plugin for document workflows.

    Requires a SQLAlchemy plugin providing an async ``db_session`` dependency.

    Example:
        Basic usage::

            from litestar import Litestar
            from litestar.plugins.sqlalchemy import SQLAlchemyAsyncConfig, SQLAlchemyPlugin
            from docflow import ActionRegistry, DocflowPlugin, DocflowPluginConfig

            actions = ActionRegistry()


            @actions.action("send_for_signature")
            async def send_for_signature(call):
                return {"envelope_id": "..."}


            app = Litestar(
                plugins=[
                    SQLAlchemyPlugin(config=SQLAlchemyAsyncConfig(connection_string="sqlite+aiosqlite:///docflow.db")),
                    DocflowPlugin(config=DocflowPluginConfig(actions=actions, documents=my_store, notifier=my_mailer)),
                ]
            )

        Driving the maintenance sweep from a scheduler::

            async with session_maker() as session:
                await plugin.create_executor(session).sweep()
    """

    __slots__ = ("_actions", "_config", "_settings")

    def __init__(self, config: DocflowPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or DocflowPluginConfig()
        self._actions: ActionRegistry = self._config.actions or ActionRegistry()
        self._settings: EngineSettings = self._config.settings or EngineSettings.from_env()

    @property
    def config(self) -> DocflowPluginConfig:
        """Get the plugin configuration."""
        return self._config

    @property
    def actions(self) -> ActionRegistry:
        """Get the action registry."""
        return self._actions

    def create_executor(self, session: AsyncSession) -> WorkflowExecutor:
        """Build an executor bound to ``session``.

        Args:
            session: SQLAlchemy async session.

        Returns:
            A WorkflowExecutor using the configured collaborators.
        """
        return WorkflowExecutor(
            session,
            actions=self._actions,
            documents=self._config.documents,
            notifier=self._config.notifier,
            settings=self._settings,
            event_bus=self._config.event_bus,
        )

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Register dependencies, routes and exception handlers.

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        actor_header = self._config.actor_header

        def provide_actor_id(request: Request) -> str:
            actor_id = request.headers.get(actor_header)
            if not actor_id:
                raise NotAuthorizedException(detail=f"Missing {actor_header} header")
            return actor_id

        def provide_workflow_executor(db_session: AsyncSession) -> WorkflowExecutor:
            return self.create_executor(db_session)

        def provide_workflow_service(db_session: AsyncSession) -> WorkflowService:
            return WorkflowService(db_session, self._actions)

        # Register REST API controllers if enabled
        if self._config.enable_api:
            from litestar import Router

            from docflow.web.controllers import ApprovalController, ExecutionController, WorkflowController
            from docflow.web.exceptions import docflow_error_handler

            # Create main router with configured options
            docflow_router = Router(
                path=self._config.api_path_prefix,
                route_handlers=[WorkflowController, ExecutionController, ApprovalController],
                dependencies={
                    "actor_id": Provide(provide_actor_id, sync_to_thread=False),
                    "workflow_executor": Provide(provide_workflow_executor, sync_to_thread=False),
                    "workflow_service": Provide(provide_workflow_service, sync_to_thread=False),
                },
                guards=self._config.api_guards,
                tags=self._config.api_tags,
                include_in_schema=self._config.include_api_in_schema,
            )

            # Register router with app
            app_config.route_handlers.append(docflow_router)

            # Register exception handler
            app_config.exception_handlers[DocflowError] = docflow_error_handler  # type: ignore[assignment]

        return app_config
