"""Engine settings.

Settings are a plain dataclass. Applications either construct
:class:`EngineSettings` directly or load it from ``DOCFLOW_*`` environment
variables with :meth:`EngineSettings.from_env`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta

from docflow.core.types import ApprovalMode

__all__ = ["EngineSettings"]

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring %s=%r, expected an integer", name, value)
        return default


@dataclass
class EngineSettings:
    """Behaviour of the execution engine.

    Attributes:
        approval_expiry: Default lifetime of an approval request when the step
            does not set ``expires_in``. ``None`` means requests never expire.
        token_ttl: Lifetime of emailed approve/reject tokens. Tokens never outlive
            their request.
        approval_base_url: Base URL of the token endpoint. The token is appended
            to it to build email links.
        token_bytes: Entropy of generated tokens, in bytes.
        default_approval_mode: Mode used by approval steps that do not set one.
    """

    approval_expiry: timedelta | None = timedelta(days=7)
    token_ttl: timedelta = timedelta(days=7)
    approval_base_url: str = "http://localhost:8000/workflows/approvals/token"
    token_bytes: int = 32
    default_approval_mode: ApprovalMode = ApprovalMode.ALL

    @classmethod
    def from_env(cls, prefix: str = "DOCFLOW_") -> EngineSettings:
        """Build settings from environment variables.

        Reads ``<prefix>APPROVAL_EXPIRY_SECONDS`` (``0`` disables expiry),
        ``<prefix>TOKEN_TTL_SECONDS``, ``<prefix>APPROVAL_BASE_URL``,
        ``<prefix>TOKEN_BYTES`` and ``<prefix>DEFAULT_APPROVAL_MODE``. Unset
        variables keep their defaults.
        """
        defaults = cls()
        expiry_seconds = _env_int(
            f"{prefix}APPROVAL_EXPIRY_SECONDS",
            int(defaults.approval_expiry.total_seconds()) if defaults.approval_expiry else 0,
        )
        mode = os.getenv(f"{prefix}DEFAULT_APPROVAL_MODE", str(defaults.default_approval_mode)).lower()
        try:
            approval_mode = ApprovalMode(mode)
        except ValueError:
            logger.warning("Ignoring %sDEFAULT_APPROVAL_MODE=%r", prefix, mode)
            approval_mode = defaults.default_approval_mode
        return cls(
            approval_expiry=timedelta(seconds=expiry_seconds) if expiry_seconds > 0 else None,
            token_ttl=timedelta(
                seconds=_env_int(f"{prefix}TOKEN_TTL_SECONDS", int(defaults.token_ttl.total_seconds()))
            ),
            approval_base_url=os.getenv(f"{prefix}APPROVAL_BASE_URL", defaults.approval_base_url),
            token_bytes=_env_int(f"{prefix}TOKEN_BYTES", defaults.token_bytes),
            default_approval_mode=approval_mode,
        )

    def approval_link(self, token: str) -> str:
        """Build the link emailed to an approver for ``token``."""
        return f"{self.approval_base_url.rstrip('/')}/{token}"
