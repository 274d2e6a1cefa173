"""Shared test fixtures for docflow test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from docflow.db.models import WorkflowModel
from docflow.engine.executor import WorkflowExecutor
from docflow.engine.registry import ActionRegistry
from docflow.engine.workflows import WorkflowService
from docflow.settings import EngineSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from docflow.core.protocols import ActionCall

OWNER = "owner-1"
"""Default actor owning workflows and documents in tests."""

TOKEN_BASE_URL = "https://docs.example.com/workflows/approvals/token"


# =============================================================================
# Collaborator Fakes
# =============================================================================


@dataclass
class FakeDocument:
    """Document as seen by the engine."""

    id: UUID
    title: str
    owner_id: str


class InMemoryDocumentStore:
    """Document store keeping documents in a dict."""

    def __init__(self) -> None:
        """Initialize the store."""
        self.documents: dict[UUID, FakeDocument] = {}

    def add(self, title: str = "Master Services Agreement", owner_id: str = OWNER) -> FakeDocument:
        """Create a document owned by ``owner_id``."""
        document = FakeDocument(id=uuid4(), title=title, owner_id=owner_id)
        self.documents[document.id] = document
        return document

    async def get_document(self, document_id: UUID, owner_id: str) -> FakeDocument | None:
        """Return the document if ``owner_id`` owns it."""
        document = self.documents.get(document_id)
        if document is None or document.owner_id != owner_id:
            return None
        return document


@dataclass
class RecordingNotifier:
    """Notification sender recording everything it is asked to send."""

    approval_emails: list[dict[str, Any]] = field(default_factory=list)
    notifications: list[dict[str, Any]] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)

    async def send_approval_email(
        self,
        approver: str,
        links: Mapping[str, str],
        *,
        workflow_name: str,
        document_title: str,
        message: str | None = None,
    ) -> bool:
        """Record an approval email."""
        if approver in self.failing:
            msg = f"mailbox of {approver} is unavailable"
            raise ConnectionError(msg)
        self.approval_emails.append(
            {
                "approver": approver,
                "links": dict(links),
                "workflow_name": workflow_name,
                "document_title": document_title,
                "message": message,
            }
        )
        return True

    async def send_notification(self, recipient: str, subject: str | None, message: str) -> bool:
        """Record a notification."""
        if recipient in self.failing:
            msg = f"mailbox of {recipient} is unavailable"
            raise ConnectionError(msg)
        self.notifications.append({"recipient": recipient, "subject": subject, "message": message})
        return True

    def token_for(self, approver: str, decision: str = "approved") -> str:
        """Return the token from the latest approval email sent to ``approver``."""
        for email in reversed(self.approval_emails):
            if email["approver"] == approver:
                return email["links"][decision].rsplit("/", 1)[1]
        msg = f"No approval email sent to {approver}"
        raise AssertionError(msg)


class MockEventBus:
    """Mock event bus for testing."""

    def __init__(self) -> None:
        """Initialize mock event bus."""
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event_type: str, **kwargs: Any) -> None:
        """Emit an event."""
        self.events.append((event_type, kwargs))

    @property
    def names(self) -> list[str]:
        """Names of the emitted events, in order."""
        return [name for name, _ in self.events]


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine():
    """Create async SQLite in-memory engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(WorkflowModel.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
async def session_maker(db_engine):
    """Create session factory."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def session(session_maker) -> AsyncIterator[AsyncSession]:
    """Create an async session for testing."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    """Create an empty document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def document(documents: InMemoryDocumentStore) -> FakeDocument:
    """Create a document owned by the default owner."""
    return documents.add()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Create a recording notification sender."""
    return RecordingNotifier()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Create mock event bus."""
    return MockEventBus()


@pytest.fixture
def settings() -> EngineSettings:
    """Engine settings with a recognisable token link base."""
    return EngineSettings(approval_base_url=TOKEN_BASE_URL)


@pytest.fixture
def action_calls() -> list[ActionCall]:
    """Calls received by the test actions, in order."""
    return []


@pytest.fixture
def actions(action_calls: list[ActionCall]) -> ActionRegistry:
    """Registry with a few document actions.

    - ``stamp`` publishes ``stamped`` and ``stamp_count`` to the context
    - ``echo`` returns its resolved params
    - ``explode`` always fails
    """
    registry = ActionRegistry()
    calls = action_calls

    @registry.action("stamp")
    async def stamp(call: ActionCall) -> dict[str, Any]:
        calls.append(call)
        return {"outputs": {"stamped": True, "stamp_count": len(calls)}}

    @registry.action("echo")
    async def echo(call: ActionCall) -> dict[str, Any]:
        calls.append(call)
        return {"params": dict(call.params), "seen": sorted(call.context)}

    @registry.action("explode")
    async def explode(call: ActionCall) -> None:
        calls.append(call)
        msg = "signing service unavailable"
        raise RuntimeError(msg)

    return registry


@pytest.fixture
def executor(
    session: AsyncSession,
    actions: ActionRegistry,
    documents: InMemoryDocumentStore,
    notifier: RecordingNotifier,
    settings: EngineSettings,
    mock_event_bus: MockEventBus,
) -> WorkflowExecutor:
    """Create an executor wired to the in-memory collaborators."""
    return WorkflowExecutor(
        session,
        actions=actions,
        documents=documents,
        notifier=notifier,
        settings=settings,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def workflow_service(session: AsyncSession, actions: ActionRegistry) -> WorkflowService:
    """Create a workflow service validating against the test actions."""
    return WorkflowService(session, actions)


@pytest.fixture
def make_workflow(workflow_service: WorkflowService):
    """Factory creating a workflow from a list of raw steps."""

    async def _make(
        steps: list[dict[str, Any]],
        *,
        owner_id: str = OWNER,
        name: str = "Contract review",
        variables: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> WorkflowModel:
        definition: dict[str, Any] = {"steps": steps}
        if variables is not None:
            definition["variables"] = variables
        return await workflow_service.create(owner_id, name, definition, **kwargs)

    return _make


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
