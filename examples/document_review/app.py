"""Document review example for docflow.

This example runs a contract review workflow: the contract is stamped, routed
by amount, sent to legal for approval when it is large, and the owner is
notified at the end. Approval emails are not sent; their links are logged and
kept in memory so they can be clicked with curl.

Run with:
    cd examples/document_review
    litestar run

Or:
    uvicorn app:app --reload

Try it:
    # Register a document (the example keeps documents in memory)
    curl -X POST http://localhost:8000/documents \\
        -H "Content-Type: application/json" -H "X-User-Id: alice" \\
        -d '{"title": "Master Services Agreement"}'

    # Create the review workflow from the bundled template
    curl http://localhost:8000/workflow-template | curl -X POST http://localhost:8000/workflows \\
        -H "Content-Type: application/json" -H "X-User-Id: alice" -d @-

    # Start it on the document
    curl -X POST http://localhost:8000/workflows/<workflow_id>/execute \\
        -H "Content-Type: application/json" -H "X-User-Id: alice" \\
        -d '{"document_id": "<document_id>", "variables": {"amount": 25000, "owner": "alice"}}'

    # Approve through an emailed link, no user header needed
    curl http://localhost:8000/outbox
    curl -X POST <approved link>
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from litestar import Litestar, Request, get, post
from litestar.exceptions import NotAuthorizedException
from litestar.logging import LoggingConfig
from litestar.openapi import OpenAPIConfig
from litestar.plugins.sqlalchemy import AsyncSessionConfig, SQLAlchemyAsyncConfig, SQLAlchemyPlugin

from docflow import ActionRegistry, DocflowPlugin, DocflowPluginConfig, EngineSettings
from docflow.db import WorkflowModel

if TYPE_CHECKING:
    from collections.abc import Mapping

    from docflow.core.protocols import ActionCall

logger = logging.getLogger("docflow.examples.document_review")

REVIEW_WORKFLOW: dict[str, Any] = {
    "version": "1.0.0",
    "variables": {"threshold": 10000},
    "steps": [
        {"id": "stamp", "type": "action", "action": "stamp_received"},
        {
            "id": "route",
            "type": "condition",
            "branches": [
                {"when": "amount > threshold", "goto": "legal"},
                {"when": "true", "goto": "notify"},
            ],
        },
        {
            "id": "legal",
            "type": "approval",
            "name": "Legal review",
            "approvers": ["legal@example.com", "cfo@example.com"],
            "mode": "majority",
            "message": "Contract above the review threshold, please review",
        },
        {
            "id": "notify",
            "type": "notification",
            "recipients": ["$owner"],
            "subject": "{stamped_by} finished",
            "message": "Document {document_id} completed review",
        },
    ],
}


# =============================================================================
# Collaborators
# =============================================================================


@dataclass
class Document:
    """A document known to the example."""

    id: UUID
    title: str
    owner_id: str


class DocumentStore:
    """Documents kept in memory."""

    def __init__(self) -> None:
        self.documents: dict[UUID, Document] = {}

    def add(self, title: str, owner_id: str) -> Document:
        document = Document(id=uuid4(), title=title, owner_id=owner_id)
        self.documents[document.id] = document
        return document

    async def get_document(self, document_id: UUID, owner_id: str) -> Document | None:
        document = self.documents.get(document_id)
        return document if document and document.owner_id == owner_id else None


@dataclass
class LoggingNotifier:
    """Logs emails instead of sending them and remembers approval links."""

    links: list[dict[str, str]] = field(default_factory=list)

    async def send_approval_email(
        self,
        approver: str,
        links: Mapping[str, str],
        *,
        workflow_name: str,
        document_title: str,
        message: str | None = None,
    ) -> bool:
        logger.info("Approval email to %s for '%s' (%s): %s", approver, document_title, workflow_name, dict(links))
        self.links.append({"approver": approver, **links})
        return True

    async def send_notification(self, recipient: str, subject: str | None, message: str) -> bool:
        logger.info("Notification to %s: %s - %s", recipient, subject, message)
        return True


documents = DocumentStore()
notifier = LoggingNotifier()
actions = ActionRegistry()


@actions.action("stamp_received")
async def stamp_received(call: ActionCall) -> dict[str, Any]:
    """Stamp the document as received."""
    return {"outputs": {"stamped_by": "docflow"}, "document_id": str(call.document_id)}


# =============================================================================
# Example Routes
# =============================================================================


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@post("/documents")
async def create_document(request: Request, data: dict[str, str]) -> dict[str, str]:
    """Register a document for the user in the ``X-User-Id`` header."""
    owner_id = request.headers.get("X-User-Id")
    if not owner_id:
        raise NotAuthorizedException(detail="Missing X-User-Id header")
    document = documents.add(data.get("title", "Untitled"), owner_id)
    return {"id": str(document.id), "title": document.title}


@get("/outbox")
async def outbox() -> list[dict[str, str]]:
    """Approval links that would have been emailed."""
    return notifier.links


@get("/workflow-template")
async def workflow_template() -> dict[str, Any]:
    """A ready-to-post contract review workflow."""
    return {"name": "Contract review", "definition": REVIEW_WORKFLOW}


# =============================================================================
# Application
# =============================================================================


def create_app(connection_string: str = "sqlite+aiosqlite:///./docflow.db") -> Litestar:
    """Build the example application.

    Args:
        connection_string: Database URL. Tables are created on startup.

    Returns:
        The Litestar application.
    """
    sqlalchemy_config = SQLAlchemyAsyncConfig(
        connection_string=connection_string,
        metadata=WorkflowModel.metadata,
        create_all=True,
        session_config=AsyncSessionConfig(expire_on_commit=False),
    )
    docflow_config = DocflowPluginConfig(
        actions=actions,
        documents=documents,
        notifier=notifier,
        settings=EngineSettings(approval_base_url="http://localhost:8000/workflows/approvals/token"),
    )
    return Litestar(
        route_handlers=[health_check, create_document, outbox, workflow_template],
        plugins=[
            SQLAlchemyPlugin(config=sqlalchemy_config),
            DocflowPlugin(config=docflow_config),
        ],
        logging_config=LoggingConfig(loggers={"docflow": {"level": "INFO", "propagate": True}}),
        openapi_config=OpenAPIConfig(
            title="docflow - Document Review Example",
            version="1.0.0",
            description="Contract review with approval gates, conditional routing and emailed approval links.",
        ),
        debug=True,
    )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    print("\n" + "=" * 80)
    print("docflow - Document Review Example")
    print("=" * 80)
    print("\nStarting server on http://localhost:8000")
    print("\nKey endpoints:")
    print("  - POST /documents                          - Register a document")
    print("  - GET  /workflow-template                  - Example workflow body")
    print("  - POST /workflows                          - Create a workflow")
    print("  - POST /workflows/{id}/execute             - Start it on a document")
    print("  - GET  /workflows/approvals                - Pending approvals (X-User-Id)")
    print("  - GET  /outbox                             - Approval links")
    print("=" * 80 + "\n")

    uvicorn.run(app, host="0.0.0.0", port=8000)
