"""Exception handling for docflow web endpoints.

This module maps the engine's domain errors to JSON error responses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_502_BAD_GATEWAY,
)

from docflow.exceptions import (
    AlreadyRespondedError,
    DocflowError,
    ExpiredError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    TokenUsedError,
    UpstreamFailureError,
    WorkflowValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = ["docflow_error_handler", "error_status"]

# Checked in order, so subclasses come before their bases
_ERROR_CODES: tuple[tuple[type[DocflowError], int, str], ...] = (
    (NotFoundError, HTTP_404_NOT_FOUND, "not_found"),
    (NotAuthorizedError, HTTP_403_FORBIDDEN, "not_authorized"),
    (AlreadyRespondedError, HTTP_400_BAD_REQUEST, "already_responded"),
    (TokenUsedError, HTTP_400_BAD_REQUEST, "token_used"),
    (ExpiredError, HTTP_400_BAD_REQUEST, "expired"),
    (InvalidStateError, HTTP_400_BAD_REQUEST, "invalid_state"),
    (WorkflowValidationError, HTTP_400_BAD_REQUEST, "invalid_workflow"),
    (UpstreamFailureError, HTTP_502_BAD_GATEWAY, "upstream_failure"),
)


def error_status(exc: DocflowError) -> tuple[int, str]:
    """Return the HTTP status code and error code for a domain error."""
    for error_type, status_code, code in _ERROR_CODES:
        if isinstance(exc, error_type):
            return status_code, code
    return HTTP_400_BAD_REQUEST, "workflow_error"


def docflow_error_handler(
    _request: Request,
    exc: DocflowError,
) -> Response:
    """Exception handler for DocflowError and its subclasses.

    Args:
        request: The Litestar request object.
        exc: The domain error.

    Returns:
        JSON response with the error code and message.
    """
    status_code, code = error_status(exc)
    content: dict[str, Any] = {
        "error": code,
        "message": str(exc),
        "status_code": status_code,
    }
    if isinstance(exc, WorkflowValidationError):
        content["errors"] = list(exc.errors)
    return Response(
        content=content,
        status_code=status_code,
        media_type="application/json",
    )
