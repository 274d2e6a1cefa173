"""Approval gate.

The :class:`ApprovalGate` owns approval requests, responses and emailed tokens.
It mutates rows inside the caller's transaction and never commits: the
executor decides when a transition is durable and when to advance.

Decision policy, given ``n`` approvers and the step's mode:

- ``any``: one approval approves; the request is rejected once all ``n`` reject
- ``all``: ``n`` approvals approve; the first rejection rejects
- ``majority``: ``n // 2 + 1`` approvals approve; rejected as soon as that
  number can no longer be reached
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from advanced_alchemy.exceptions import IntegrityError

from docflow.core.types import ApprovalDecision, ApprovalStatus
from docflow.db.models import ApprovalRequestModel, ApprovalResponseModel, ApprovalTokenModel
from docflow.db.repositories import (
    ApprovalRequestRepository,
    ApprovalResponseRepository,
    ApprovalTokenRepository,
)
from docflow.exceptions import (
    AlreadyRespondedError,
    ExpiredError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    TokenUsedError,
)
from docflow.settings import EngineSettings

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from docflow.core.protocols import NotificationSender
    from docflow.db.models import WorkflowStepModel
    from docflow.engine.evaluator import ApprovalGateRef

__all__ = ["ApprovalGate", "ApprovalOutcome", "decide"]

logger = logging.getLogger(__name__)


def decide(approvers: int, required: int, approvals: int, rejections: int) -> ApprovalStatus:
    """Apply the decision policy to the current counts.

    Args:
        approvers: Number of approvers on the request.
        required: Approvals needed to approve.
        approvals: Approvals received.
        rejections: Rejections received.

    Returns:
        ``APPROVED``, ``REJECTED``, or ``PENDING`` while undecided.
    """
    if approvals >= required:
        return ApprovalStatus.APPROVED
    if rejections > approvers - required:
        return ApprovalStatus.REJECTED
    return ApprovalStatus.PENDING


@dataclass
class ApprovalOutcome:
    """Result of recording one response.

    Attributes:
        request: The request, with updated counters and status.
        response: The stored response.
        resolved: Whether this response moved the request to a terminal status.
    """

    request: ApprovalRequestModel
    response: ApprovalResponseModel
    resolved: bool


@dataclass(frozen=True)
class _ApprovalEmail:
    approver: str
    links: dict[str, str]
    workflow_name: str
    document_title: str
    message: str | None


class ApprovalGate:
    """Human-in-the-loop decision gates.

    Attributes:
        session: The SQLAlchemy async session shared with the executor.
        notifier: Optional notification sender for approval emails.
        settings: Engine settings.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationSender | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        """Initialize the gate.

        Args:
            session: SQLAlchemy async session.
            notifier: Optional notification sender.
            settings: Engine settings.
        """
        self.session = session
        self.notifier = notifier
        self.settings = settings or EngineSettings()

        self._request_repo = ApprovalRequestRepository(session=session)
        self._response_repo = ApprovalResponseRepository(session=session)
        self._token_repo = ApprovalTokenRepository(session=session)

        # Emails are queued until the caller has committed the tokens they link to
        self._outbox: list[_ApprovalEmail] = []

    async def create_request(
        self,
        step: WorkflowStepModel,
        gate: ApprovalGateRef,
        *,
        workflow_name: str,
        document_title: str,
        now: datetime | None = None,
    ) -> ApprovalRequestModel:
        """Open a pending request for an approval step record.

        Tokens are issued and emails queued for every approver, or for the first
        approver only under sequential routing.

        Args:
            step: The approval step record.
            gate: Approvers, mode and deadline chosen by the evaluator.
            workflow_name: Workflow name, for emails.
            document_title: Document title, for emails.
            now: Reference time.

        Returns:
            The created request.
        """
        now = now or datetime.now(timezone.utc)
        approvers = list(gate.approvers)
        request = ApprovalRequestModel(
            step_id=step.id,
            execution_id=step.execution_id,
            approvers=approvers,
            mode=gate.mode,
            sequential=gate.sequential,
            required_approvals=gate.mode.required_approvals(len(approvers)),
            approval_count=0,
            rejection_count=0,
            status=ApprovalStatus.PENDING,
            expires_at=gate.expires_at,
            workflow_name=workflow_name,
            document_title=document_title,
            message=gate.message,
        )
        request = await self._request_repo.add(request, auto_commit=False)

        for approver in approvers[:1] if gate.sequential else approvers:
            await self._invite(request, approver, now)

        logger.info(
            "Opened approval request %s for step %s (%s of %d approvers, mode=%s)",
            request.id,
            step.id,
            request.required_approvals,
            len(approvers),
            request.mode,
        )
        return request

    async def respond(
        self,
        request_id: UUID,
        approver_id: str,
        decision: ApprovalDecision,
        comment: str | None = None,
        *,
        via_token: bool = False,
        now: datetime | None = None,
    ) -> ApprovalOutcome:
        """Record one approver's decision.

        The request row is locked for the rest of the caller's transaction, and
        the move out of ``pending`` is a conditional update, so exactly one
        decision fires even when responses race.

        Args:
            request_id: The request.
            approver_id: The responding approver.
            decision: Approved or rejected.
            comment: Optional comment.
            via_token: Whether the decision came from an emailed token.
            now: Reference time.

        Returns:
            The outcome of the response.

        Raises:
            NotFoundError: If the request does not exist.
            NotAuthorizedError: If ``approver_id`` is not an approver, or not next
                in routing order.
            AlreadyRespondedError: If ``approver_id`` already answered.
            ExpiredError: If the request is past its deadline. The request is
                marked expired before raising.
            InvalidStateError: If the request was already decided.
        """
        now = now or datetime.now(timezone.utc)
        request = await self._request_repo.lock(request_id)
        if request is None:
            raise NotFoundError("approval request", request_id)

        if approver_id not in request.approvers:
            raise NotAuthorizedError(request_id, approver_id)
        if await self._response_repo.find_for_approver(request.id, approver_id) is not None:
            raise AlreadyRespondedError(request_id, approver_id)
        if request.status is ApprovalStatus.EXPIRED:
            raise ExpiredError("approval request", request_id, request.expires_at)
        if request.status is not ApprovalStatus.PENDING:
            raise InvalidStateError("approval request", request_id, str(request.status), "respond to")
        if request.expires_at is not None and request.expires_at <= now:
            await self.expire(request, now)
            raise ExpiredError("approval request", request_id, request.expires_at)

        if request.sequential:
            expected = await self._next_approver(request)
            if expected is not None and approver_id != expected:
                raise NotAuthorizedError(request_id, approver_id, f"waiting for '{expected}'")

        try:
            response = await self._response_repo.add(
                ApprovalResponseModel(
                    request_id=request.id,
                    approver_id=approver_id,
                    decision=decision,
                    comment=comment,
                    via_token=via_token,
                    responded_at=now,
                ),
                auto_commit=False,
            )
        except IntegrityError as e:
            raise AlreadyRespondedError(request_id, approver_id) from e

        if decision is ApprovalDecision.APPROVED:
            request.approval_count += 1
        else:
            request.rejection_count += 1

        status = decide(
            len(request.approvers),
            request.required_approvals,
            request.approval_count,
            request.rejection_count,
        )
        resolved = False
        if status is not ApprovalStatus.PENDING:
            if not await self._request_repo.resolve(request.id, status, now):
                raise InvalidStateError("approval request", request_id, str(request.status), "respond to")
            await self._token_repo.revoke_for_request(request.id, now)
            resolved = True
            logger.info("Approval request %s %s after response from %s", request.id, status, approver_id)
        elif request.sequential:
            following = await self._next_approver(request)
            if following is not None:
                await self._invite(request, following, now)

        await self.session.flush()
        return ApprovalOutcome(request=request, response=response, resolved=resolved)

    async def resolve_by_token(
        self,
        token: str,
        now: datetime | None = None,
    ) -> tuple[ApprovalOutcome, ApprovalTokenModel]:
        """Record the decision bound to an emailed token.

        The token is consumed with a conditional update in the same transaction
        as the response, so a token can be spent only once.

        Args:
            token: The token secret.
            now: Reference time.

        Returns:
            The outcome and the consumed token.

        Raises:
            NotFoundError: If the token is unknown.
            TokenUsedError: If the token was already used.
            ExpiredError: If the token or its request is past its deadline.
        """
        now = now or datetime.now(timezone.utc)
        record = await self._token_repo.find_by_token(token)
        if record is None:
            raise NotFoundError("approval token", f"{token[:8]}...")
        if record.used:
            raise TokenUsedError(record.id)

        # Token deadlines are capped at the request deadline
        request = await self._request_repo.lock(record.request_id)
        if request is None:
            raise NotFoundError("approval request", record.request_id)
        if (
            request.status is ApprovalStatus.PENDING
            and request.expires_at is not None
            and request.expires_at <= now
        ):
            await self.expire(request, now)
            raise ExpiredError("approval request", request.id, request.expires_at)
        if record.expires_at <= now:
            raise ExpiredError("approval token", record.id, record.expires_at)

        if not await self._token_repo.consume(record.id, now):
            await self.session.refresh(record)
            if record.used:
                raise TokenUsedError(record.id)
            raise ExpiredError("approval token", record.id, record.expires_at)

        outcome = await self.respond(
            record.request_id,
            record.approver_id,
            record.decision,
            None,
            via_token=True,
            now=now,
        )
        return outcome, record

    async def expire(self, request: ApprovalRequestModel, now: datetime | None = None) -> bool:
        """Move a pending request to ``expired`` and revoke its tokens.

        Returns:
            True if this call performed the transition.
        """
        now = now or datetime.now(timezone.utc)
        if not await self._request_repo.resolve(request.id, ApprovalStatus.EXPIRED, now):
            return False
        await self._token_repo.revoke_for_request(request.id, now)
        logger.info("Approval request %s expired", request.id)
        return True

    async def expire_overdue(self, now: datetime | None = None) -> list[UUID]:
        """Expire every pending request past its deadline.

        Returns:
            IDs of the executions whose request was expired by this call.
        """
        now = now or datetime.now(timezone.utc)
        expired: list[UUID] = []
        for request in await self._request_repo.find_overdue(now):
            if await self.expire(request, now):
                expired.append(request.execution_id)
        return expired

    async def close_pending(self, execution_id: UUID, now: datetime | None = None) -> int:
        """Expire the pending requests of an execution, e.g. when it is cancelled.

        Returns:
            Number of requests closed.
        """
        closed = 0
        for request in await self._request_repo.find_pending(execution_id):
            if await self.expire(request, now):
                closed += 1
        return closed

    async def send_queued(self) -> int:
        """Send queued approval emails. Call after the tokens were committed.

        Delivery is best effort: failures are logged and otherwise ignored.

        Returns:
            Number of emails handed over for delivery.
        """
        outbox, self._outbox = self._outbox, []
        if self.notifier is None:
            if outbox:
                logger.warning("No notification sender configured, dropping %d approval emails", len(outbox))
            return 0

        sent = 0
        for email in outbox:
            try:
                accepted = await self.notifier.send_approval_email(
                    email.approver,
                    email.links,
                    workflow_name=email.workflow_name,
                    document_title=email.document_title,
                    message=email.message,
                )
            except Exception:  # noqa: BLE001
                logger.warning("Approval email to %s failed", email.approver, exc_info=True)
                continue
            if accepted:
                sent += 1
            else:
                logger.warning("Approval email to %s was not accepted", email.approver)
        return sent

    def discard_queued(self) -> None:
        """Drop queued emails, e.g. after a rollback."""
        self._outbox.clear()

    async def _next_approver(self, request: ApprovalRequestModel) -> str | None:
        answered = {r.approver_id for r in await self._response_repo.find_by_request(request.id)}
        return next((a for a in request.approvers if a not in answered), None)

    async def _invite(self, request: ApprovalRequestModel, approver: str, now: datetime) -> None:
        expires_at = now + self.settings.token_ttl
        if request.expires_at is not None:
            expires_at = min(expires_at, request.expires_at)

        links: dict[str, str] = {}
        for decision in ApprovalDecision:
            token = secrets.token_urlsafe(self.settings.token_bytes)
            await self._token_repo.add(
                ApprovalTokenModel(
                    request_id=request.id,
                    approver_id=approver,
                    token=token,
                    decision=decision,
                    used=False,
                    expires_at=expires_at,
                ),
                auto_commit=False,
            )
            links[str(decision)] = self.settings.approval_link(token)

        self._outbox.append(
            _ApprovalEmail(
                approver=approver,
                links=links,
                workflow_name=request.workflow_name,
                document_title=request.document_title,
                message=request.message,
            )
        )
