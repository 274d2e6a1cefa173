"""REST API for docflow.

The API is registered by :class:`~docflow.plugin.DocflowPlugin` when
``enable_api`` is true (the default). It includes controllers for workflows,
executions and approvals, and an exception handler translating domain errors
into JSON error responses.
"""

from __future__ import annotations

from docflow.web.controllers import ApprovalController, ExecutionController, WorkflowController
from docflow.web.exceptions import docflow_error_handler, error_status

__all__ = [
    "ApprovalController",
    "ExecutionController",
    "WorkflowController",
    "docflow_error_handler",
    "error_status",
]
