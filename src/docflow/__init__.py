"""docflow - Document workflow execution engine for Litestar.

This package drives documents through sequential, user-defined workflows
persisted in a relational database and resumable across process restarts.

Key Features:
    - Action, condition, approval, notification and delay steps
    - Conditional branches with a small expression language
    - Approval gates with any/all/majority modes and emailed one-click tokens
    - Pause, resume, cancel and retry of executions
    - REST API through a Litestar plugin

Example:
    >>> from docflow import ActionRegistry, DocflowPlugin, DocflowPluginConfig
    >>>
    >>> actions = ActionRegistry()
    >>>
    >>> @actions.action("stamp")
    ... async def stamp(call):
    ...     return {"outputs": {"stamped": True}}
    >>>
    >>> plugin = DocflowPlugin(config=DocflowPluginConfig(actions=actions))
"""

from __future__ import annotations

from docflow.__metadata__ import __project__, __version__
from docflow.engine.executor import WorkflowExecutor
from docflow.engine.registry import ActionRegistry
from docflow.engine.workflows import WorkflowService
from docflow.exceptions import (
    AlreadyRespondedError,
    DocflowError,
    ExpiredError,
    ExpressionError,
    InvalidStateError,
    NoMatchingBranchError,
    NotAuthorizedError,
    NotFoundError,
    TokenUsedError,
    UpstreamFailureError,
    WorkflowValidationError,
)
from docflow.plugin import DocflowPlugin, DocflowPluginConfig
from docflow.settings import EngineSettings

__all__ = (
    "ActionRegistry",
    "AlreadyRespondedError",
    "DocflowError",
    "DocflowPlugin",
    "DocflowPluginConfig",
    "EngineSettings",
    "ExpiredError",
    "ExpressionError",
    "InvalidStateError",
    "NoMatchingBranchError",
    "NotAuthorizedError",
    "NotFoundError",
    "TokenUsedError",
    "UpstreamFailureError",
    "WorkflowExecutor",
    "WorkflowService",
    "WorkflowValidationError",
    "__project__",
    "__version__",
)
