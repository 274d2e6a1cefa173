"""Execution controller.

:class:`WorkflowExecutor` owns the lifecycle of executions: start, advance,
pause, resume, cancel and retry. Every transition runs while holding the
execution row lock and ends with a commit, so at most one step of an execution
is ever in flight and a crash never leaves half-applied transitions behind.

The executor is a plain service object. The web layer builds one per request
around the request's database session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from docflow.core.context import ExecutionContext
from docflow.core.definition import WorkflowDefinition
from docflow.core.events import EventType
from docflow.core.types import ExecutionStatus, StepKind, StepStatus, WorkflowStatus
from docflow.db.models import WorkflowExecutionModel, WorkflowStepModel
from docflow.db.repositories import (
    ApprovalRequestRepository,
    ApprovalResponseRepository,
    WorkflowExecutionRepository,
    WorkflowRepository,
    WorkflowStepRepository,
)
from docflow.engine.approvals import ApprovalGate
from docflow.engine.evaluator import Completed, Failed, Pending, StepEvaluator, StepState
from docflow.engine.registry import ActionRegistry
from docflow.exceptions import ExpiredError, InvalidStateError, NotFoundError, TokenUsedError
from docflow.settings import EngineSettings

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from docflow.core.protocols import DocumentStore, EventBus, NotificationSender
    from docflow.core.types import ApprovalDecision
    from docflow.db.models import ApprovalRequestModel, ApprovalResponseModel, WorkflowModel
    from docflow.engine.approvals import ApprovalOutcome

__all__ = [
    "ApprovalTree",
    "ExecutionLogEntry",
    "ExecutionTree",
    "SweepResult",
    "TokenResolution",
    "WorkflowExecutor",
]

logger = logging.getLogger(__name__)


@dataclass
class ApprovalTree:
    """An approval request with its responses."""

    request: ApprovalRequestModel
    responses: list[ApprovalResponseModel] = field(default_factory=list)


@dataclass
class ExecutionTree:
    """An execution with its workflow, step records and approval requests."""

    execution: WorkflowExecutionModel
    workflow: WorkflowModel
    steps: list[WorkflowStepModel] = field(default_factory=list)
    approvals: list[ApprovalTree] = field(default_factory=list)


@dataclass(frozen=True)
class ExecutionLogEntry:
    """One line of an execution log.

    Attributes:
        level: ``"error"`` for failed steps, ``"info"`` otherwise.
        message: Human-readable summary of the step.
        step_index: The step position.
        timestamp: When the step last changed.
    """

    level: str
    message: str
    step_index: int
    timestamp: datetime


@dataclass(frozen=True)
class TokenResolution:
    """Summary returned after an emailed token was spent.

    Attributes:
        decision: The decision the token recorded.
        approver_id: The approver the token was issued to.
        request_id: The approval request.
        request_status: Status of the request after the response.
        execution_id: The owning execution.
        document_id: The document under review.
        workflow_name: Name of the workflow.
        document_title: Title of the document.
    """

    decision: str
    approver_id: str
    request_id: UUID
    request_status: str
    execution_id: UUID
    document_id: UUID | None
    workflow_name: str
    document_title: str


@dataclass(frozen=True)
class SweepResult:
    """What a maintenance sweep did.

    Attributes:
        expired_requests: Approval requests expired by the sweep.
        advanced_executions: Executions advanced by the sweep.
    """

    expired_requests: int = 0
    advanced_executions: int = 0


class WorkflowExecutor:
    """Runs workflow executions against the database.

    Attributes:
        session: SQLAlchemy async session for database operations.
        actions: Registry of action handlers.
        documents: Optional document store used for ownership checks and titles.
        notifier: Optional notification sender.
        settings: Engine settings.
        event_bus: Optional event bus for lifecycle events.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        actions: ActionRegistry | None = None,
        documents: DocumentStore | None = None,
        notifier: NotificationSender | None = None,
        settings: EngineSettings | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            session: SQLAlchemy async session.
            actions: Registry of action handlers.
            documents: Optional document store. Without one, documents are not checked.
            notifier: Optional notification sender.
            settings: Engine settings.
            event_bus: Optional event bus for events.
        """
        self.session = session
        self.actions = actions or ActionRegistry()
        self.documents = documents
        self.notifier = notifier
        self.settings = settings or EngineSettings()
        self.event_bus = event_bus

        self.evaluator = StepEvaluator(self.actions, notifier, self.settings)
        self.gate = ApprovalGate(session, notifier, self.settings)

        # Initialize repositories
        self._workflow_repo = WorkflowRepository(session=session)
        self._execution_repo = WorkflowExecutionRepository(session=session)
        self._step_repo = WorkflowStepRepository(session=session)
        self._request_repo = ApprovalRequestRepository(session=session)
        self._response_repo = ApprovalResponseRepository(session=session)

    # Lifecycle

    async def start(
        self,
        workflow_id: UUID,
        document_id: UUID,
        actor_id: str,
        variables: dict[str, Any] | None = None,
    ) -> WorkflowExecutionModel:
        """Start a workflow on a document and advance it as far as possible.

        Args:
            workflow_id: The workflow to run.
            document_id: The document to run it on.
            actor_id: The user starting the run. Must own the workflow and document.
            variables: Start variables, overlaid on the definition defaults.

        Returns:
            The new execution.

        Raises:
            NotFoundError: If the workflow or document is missing or not owned by ``actor_id``.
            InvalidStateError: If the workflow is not active.
        """
        workflow = await self._startable_workflow(workflow_id, actor_id)
        await self._require_document(document_id, actor_id)

        definition = WorkflowDefinition.from_dict(workflow.definition)
        inputs = {**definition.variables, **(variables or {})}
        execution = await self._create_execution(workflow, document_id, actor_id, inputs)
        await self.advance(execution.id)
        return execution

    async def retry(self, execution_id: UUID, actor_id: str) -> WorkflowExecutionModel:
        """Run a failed execution again as a brand-new execution.

        The failed execution is left untouched. The new one starts from step 0
        with the same workflow and document, seeded with the top-level context
        the failed execution had accumulated. Per-step results are not carried.

        Args:
            execution_id: The failed execution.
            actor_id: The owner.

        Returns:
            The new execution.

        Raises:
            NotFoundError: If the execution is not owned by ``actor_id``.
            InvalidStateError: If the execution is not failed, or its workflow is not active.
        """
        failed = await self._owned_execution(execution_id, actor_id)
        if failed.status is not ExecutionStatus.FAILED:
            raise InvalidStateError("execution", execution_id, str(failed.status), "retry")

        workflow = await self._startable_workflow(failed.workflow_id, actor_id)
        await self._require_document(failed.document_id, actor_id)

        execution = await self._create_execution(
            workflow,
            failed.document_id,
            actor_id,
            ExecutionContext.from_inputs(failed.context).inputs(),
            retry_of=failed.id,
        )
        logger.info("Execution %s retried as %s", failed.id, execution.id)
        await self.advance(execution.id)
        return execution

    async def pause(self, execution_id: UUID, actor_id: str) -> WorkflowExecutionModel:
        """Pause a running execution.

        Raises:
            NotFoundError: If the execution is not owned by ``actor_id``.
            InvalidStateError: If the execution is not running.
        """
        execution = await self._lock_owned(execution_id, actor_id)
        if execution.status is not ExecutionStatus.RUNNING:
            await self.session.rollback()
            raise InvalidStateError("execution", execution_id, str(execution.status), "pause")

        execution.status = ExecutionStatus.PAUSED
        await self.session.commit()
        logger.info("Execution %s paused by %s", execution_id, actor_id)
        await self._emit(EventType.EXECUTION_PAUSED, execution_id=execution_id)
        return execution

    async def resume(self, execution_id: UUID, actor_id: str) -> WorkflowExecutionModel:
        """Resume a paused execution and advance it.

        Raises:
            NotFoundError: If the execution is not owned by ``actor_id``.
            InvalidStateError: If the execution is not paused.
        """
        execution = await self._lock_owned(execution_id, actor_id)
        if execution.status is not ExecutionStatus.PAUSED:
            await self.session.rollback()
            raise InvalidStateError("execution", execution_id, str(execution.status), "resume")

        execution.status = ExecutionStatus.RUNNING
        await self.session.commit()
        logger.info("Execution %s resumed by %s", execution_id, actor_id)
        await self._emit(EventType.EXECUTION_RESUMED, execution_id=execution_id)
        await self.advance(execution_id)
        return execution

    async def cancel(self, execution_id: UUID, actor_id: str, reason: str | None = None) -> WorkflowExecutionModel:
        """Cancel a running or paused execution. Cancellation is terminal.

        The execution becomes ``failed`` with ``cancelled_at`` set, its open
        step record fails and its pending approval requests expire.

        Raises:
            NotFoundError: If the execution is not owned by ``actor_id``.
            InvalidStateError: If the execution already completed or failed.
        """
        execution = await self._lock_owned(execution_id, actor_id)
        if execution.status.is_terminal:
            await self.session.rollback()
            raise InvalidStateError("execution", execution_id, str(execution.status), "cancel")

        now = datetime.now(timezone.utc)
        message = f"Cancelled: {reason or f'cancelled by {actor_id}'}"
        execution.status = ExecutionStatus.FAILED
        execution.cancelled_at = now
        execution.completed_at = now
        execution.error_message = message

        record = await self._step_repo.find_at_index(execution.id, execution.current_step_index)
        if record is not None and record.status in (StepStatus.PENDING, StepStatus.RUNNING):
            record.status = StepStatus.FAILED
            record.error_message = message
            record.completed_at = now
        await self.gate.close_pending(execution.id, now)

        await self.session.commit()
        logger.info("Execution %s cancelled by %s", execution_id, actor_id)
        await self._emit(EventType.EXECUTION_CANCELLED, execution_id=execution_id, reason=message)
        return execution

    async def advance(self, execution_id: UUID, *, now: datetime | None = None) -> WorkflowExecutionModel | None:
        """Run steps until one cannot finish synchronously.

        Safe to call at any time: it does nothing unless the execution is
        running. Each step transition is committed on its own.

        Args:
            execution_id: The execution to advance.
            now: Reference time for deadlines and delays.

        Returns:
            The execution, or None if it does not exist.
        """
        definition: WorkflowDefinition | None = None
        workflow: WorkflowModel | None = None

        while True:
            current = now or datetime.now(timezone.utc)
            execution = await self._execution_repo.lock(execution_id)
            if execution is None:
                await self.session.rollback()
                return None
            if execution.status is not ExecutionStatus.RUNNING:
                await self.session.commit()
                return execution

            if workflow is None or definition is None:
                workflow = await self._workflow_repo.get(execution.workflow_id)
                definition = WorkflowDefinition.from_dict(workflow.definition)

            index = execution.current_step_index
            if index >= len(definition):
                execution.status = ExecutionStatus.COMPLETED
                execution.completed_at = current
                await self.session.commit()
                logger.info("Execution %s completed", execution.id)
                await self._emit(EventType.EXECUTION_COMPLETED, execution_id=execution.id)
                return execution

            try:
                waiting = await self._run_step(execution, workflow, definition, index, current)
            except Exception:
                self.gate.discard_queued()
                await self.session.rollback()
                raise
            if waiting:
                return execution

    async def _run_step(
        self,
        execution: WorkflowExecutionModel,
        workflow: WorkflowModel,
        definition: WorkflowDefinition,
        index: int,
        now: datetime,
    ) -> bool:
        """Evaluate the current step and persist the transition.

        Returns:
            True when the execution stops advancing (waiting or failed).
        """
        step = definition.step_at(index)
        record = await self._step_repo.find_at_index(execution.id, index)
        if record is None:
            record = await self._step_repo.add(
                WorkflowStepModel(
                    execution_id=execution.id,
                    step_index=index,
                    step_key=step.id,
                    step_type=step.kind,
                    status=StepStatus.RUNNING,
                    started_at=now,
                ),
                auto_commit=False,
            )
        elif record.status in (StepStatus.COMPLETED, StepStatus.FAILED):
            await self._fail(execution, record, f"Step {index} was already {record.status}", now)
            return True

        request = await self._request_repo.find_by_step(record.id) if step.kind is StepKind.APPROVAL else None
        state = StepState(
            execution_id=execution.id,
            document_id=execution.document_id,
            step_index=index,
            now=now,
            request_id=request.id if request else None,
            approval_status=request.status if request else None,
            approval_counts=(request.approval_count, request.rejection_count) if request else (0, 0),
            expires_at=request.expires_at if request else None,
            resume_at=record.resume_at,
        )
        context = ExecutionContext.from_record(execution.context, execution.context_sources)
        outcome = await self.evaluator.evaluate(step, context.view_for(index), state)

        # A cancel may have landed while the step ran
        await self.session.refresh(execution, attribute_names=["status"])
        if execution.status is not ExecutionStatus.RUNNING:
            logger.info("Discarding outcome of step %d, execution %s is %s", index, execution.id, execution.status)
            self.gate.discard_queued()
            await self.session.rollback()
            await self.session.refresh(execution)
            return True

        if isinstance(outcome, Completed):
            next_index = index + 1
            goto = outcome.payload.get("goto") if step.kind is StepKind.CONDITION else None
            if goto:
                next_index = definition.index_of(goto)
                if next_index <= index:
                    await self._fail(execution, record, f"Branch target '{goto}' is not after step {index}", now)
                    return True

            record.status = StepStatus.COMPLETED
            record.result = outcome.payload
            record.completed_at = now
            context.record_result(index, step.id, outcome.payload)
            execution.context, execution.context_sources = context.to_record()
            execution.current_step_index = next_index
            await self.session.commit()
            await self._emit(EventType.STEP_COMPLETED, execution_id=execution.id, step_index=index, step_id=step.id)
            return False

        if isinstance(outcome, Pending):
            opened: ApprovalRequestModel | None = None
            if outcome.gate is not None and request is None:
                opened = await self.gate.create_request(
                    record,
                    outcome.gate,
                    workflow_name=workflow.name,
                    document_title=await self._document_title(execution, workflow),
                    now=now,
                )
            if outcome.resume_at is not None:
                record.resume_at = outcome.resume_at
            await self.session.commit()
            await self.gate.send_queued()
            if opened is not None:
                await self._emit(
                    EventType.APPROVAL_REQUESTED,
                    execution_id=execution.id,
                    request_id=opened.id,
                    approvers=list(opened.approvers),
                )
            if opened is not None or outcome.resume_at is not None:
                await self._emit(EventType.EXECUTION_WAITING, execution_id=execution.id, step_index=index)
            return True

        if isinstance(outcome, Failed):
            await self._fail(execution, record, outcome.error, now)
        return True

    async def _fail(
        self,
        execution: WorkflowExecutionModel,
        record: WorkflowStepModel,
        error: str,
        now: datetime,
    ) -> None:
        if record.status is not StepStatus.COMPLETED:
            record.status = StepStatus.FAILED
            record.error_message = error
            record.completed_at = now
        execution.status = ExecutionStatus.FAILED
        execution.error_message = error
        execution.completed_at = now
        await self.session.commit()
        logger.info("Execution %s failed at step %d: %s", execution.id, record.step_index, error)
        await self._emit(
            EventType.STEP_FAILED,
            execution_id=execution.id,
            step_index=record.step_index,
            step_id=record.step_key,
            error=error,
        )
        await self._emit(EventType.EXECUTION_FAILED, execution_id=execution.id, error=error)

    # Approvals

    async def respond(
        self,
        request_id: UUID,
        approver_id: str,
        decision: ApprovalDecision,
        comment: str | None = None,
    ) -> ApprovalOutcome:
        """Record an approver's decision and advance the execution if it was decisive.

        Raises:
            NotFoundError: If the request does not exist.
            NotAuthorizedError: If ``approver_id`` may not respond.
            AlreadyRespondedError: If ``approver_id`` already answered.
            ExpiredError: If the request is past its deadline.
            InvalidStateError: If the request was already decided.
        """
        try:
            outcome = await self.gate.respond(request_id, approver_id, decision, comment)
        except TokenUsedError:
            await self.session.rollback()
            raise
        except ExpiredError:
            await self._settle_expiry(request_id)
            raise
        except Exception:
            self.gate.discard_queued()
            await self.session.rollback()
            raise

        await self._settle_response(outcome)
        return outcome

    async def resolve_by_token(self, token: str) -> TokenResolution:
        """Spend an emailed approval token.

        Raises:
            NotFoundError: If the token is unknown.
            TokenUsedError: If the token was already used.
            ExpiredError: If the token or its request expired.
            InvalidStateError: If the request was already decided.
        """
        try:
            outcome, record = await self.gate.resolve_by_token(token)
        except TokenUsedError:
            await self.session.rollback()
            raise
        except ExpiredError as e:
            if e.entity == "approval request":
                await self._settle_expiry(e.entity_id)
            else:
                await self.session.rollback()
            raise
        except Exception:
            self.gate.discard_queued()
            await self.session.rollback()
            raise

        request = outcome.request
        await self._settle_response(outcome)

        execution = await self._execution_repo.get_one_or_none(id=request.execution_id)
        return TokenResolution(
            decision=str(record.decision),
            approver_id=record.approver_id,
            request_id=request.id,
            request_status=str(request.status),
            execution_id=request.execution_id,
            document_id=execution.document_id if execution else None,
            workflow_name=request.workflow_name,
            document_title=request.document_title,
        )

    async def _settle_response(self, outcome: ApprovalOutcome) -> None:
        request = outcome.request
        await self.session.commit()
        await self.gate.send_queued()
        if outcome.resolved:
            await self._emit(
                EventType.APPROVAL_RESOLVED,
                execution_id=request.execution_id,
                request_id=request.id,
                status=str(request.status),
            )
            await self.advance(request.execution_id)

    async def _settle_expiry(self, request_id: UUID) -> None:
        await self.session.commit()
        request = await self._request_repo.get_one_or_none(id=request_id)
        if request is not None:
            await self.advance(request.execution_id)

    async def pending_approvals(self, approver_id: str) -> list[ApprovalRequestModel]:
        """Pending requests waiting on ``approver_id``.

        Requests the approver already answered are left out, as are sequential
        requests where it is not yet the approver's turn.
        """
        waiting: list[ApprovalRequestModel] = []
        for request in await self._request_repo.find_pending():
            if approver_id not in request.approvers:
                continue
            responses = await self._response_repo.find_by_request(request.id)
            answered = {r.approver_id for r in responses}
            if approver_id in answered:
                continue
            if request.sequential and next((a for a in request.approvers if a not in answered), None) != approver_id:
                continue
            waiting.append(request)
        return waiting

    # Queries

    async def get_execution_tree(self, execution_id: UUID, actor_id: str) -> ExecutionTree:
        """Load an execution with its step records and approval requests.

        Raises:
            NotFoundError: If the execution is not owned by ``actor_id``.
        """
        execution = await self._owned_execution(execution_id, actor_id)
        workflow = await self._workflow_repo.get(execution.workflow_id)
        steps = await self._step_repo.find_by_execution(execution.id)
        approvals = [
            ApprovalTree(request=request, responses=list(await self._response_repo.find_by_request(request.id)))
            for request in await self._request_repo.find_by_execution(execution.id)
        ]
        return ExecutionTree(execution=execution, workflow=workflow, steps=list(steps), approvals=approvals)

    async def list_executions(
        self,
        actor_id: str,
        *,
        status: ExecutionStatus | None = None,
        workflow_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowExecutionModel], int]:
        """List executions of workflows owned by ``actor_id``.

        Returns:
            Tuple of (executions, total_count).
        """
        return await self._execution_repo.find_by_owner(
            actor_id,
            status=status,
            workflow_id=workflow_id,
            limit=limit,
            offset=offset,
        )

    async def execution_logs(self, execution_id: UUID, actor_id: str) -> list[ExecutionLogEntry]:
        """Render the step records of an execution as log lines.

        Raises:
            NotFoundError: If the execution is not owned by ``actor_id``.
        """
        execution = await self._owned_execution(execution_id, actor_id)
        entries = []
        for record in await self._step_repo.find_by_execution(execution.id):
            message = f"Step {record.step_index + 1}: {record.step_type} - {record.status}"
            if record.error_message:
                message += f" ({record.error_message})"
            entries.append(
                ExecutionLogEntry(
                    level="error" if record.status is StepStatus.FAILED else "info",
                    message=message,
                    step_index=record.step_index,
                    timestamp=record.completed_at or record.started_at,
                )
            )
        return entries

    # Maintenance

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        """Expire overdue approvals and wake executions whose delay is over.

        Meant to be called periodically by an external scheduler.

        Args:
            now: Reference time.

        Returns:
            What the sweep did.
        """
        now = now or datetime.now(timezone.utc)
        expired = await self.gate.expire_overdue(now)
        await self.session.commit()
        due = await self._execution_repo.find_waiting_on_delay(now)
        await self.session.commit()

        to_advance = list(dict.fromkeys([*expired, *due]))
        for execution_id in to_advance:
            await self.advance(execution_id, now=now)
        if expired or to_advance:
            logger.info("Sweep expired %d requests and advanced %d executions", len(expired), len(to_advance))
        return SweepResult(expired_requests=len(expired), advanced_executions=len(to_advance))

    # Helpers

    async def _startable_workflow(self, workflow_id: UUID, actor_id: str) -> WorkflowModel:
        workflow = await self._workflow_repo.get_owned(workflow_id, actor_id)
        if workflow is None:
            raise NotFoundError("workflow", workflow_id)
        if workflow.status is not WorkflowStatus.ACTIVE:
            raise InvalidStateError("workflow", workflow_id, str(workflow.status), "start")
        return workflow

    async def _require_document(self, document_id: UUID, actor_id: str) -> None:
        if self.documents is None:
            return
        if await self.documents.get_document(document_id, actor_id) is None:
            raise NotFoundError("document", document_id)

    async def _document_title(self, execution: WorkflowExecutionModel, workflow: WorkflowModel) -> str:
        if self.documents is None:
            return ""
        document = await self.documents.get_document(execution.document_id, workflow.owner_id)
        if document is None:
            return ""
        return document.title or ""

    async def _create_execution(
        self,
        workflow: WorkflowModel,
        document_id: UUID,
        actor_id: str,
        inputs: dict[str, Any],
        retry_of: UUID | None = None,
    ) -> WorkflowExecutionModel:
        context, sources = ExecutionContext.from_inputs(inputs).to_record()
        execution = await self._execution_repo.add(
            WorkflowExecutionModel(
                workflow_id=workflow.id,
                document_id=document_id,
                started_by=actor_id,
                status=ExecutionStatus.RUNNING,
                current_step_index=0,
                variables=dict(inputs),
                context=context,
                context_sources=sources,
                retry_of_id=retry_of,
                started_at=datetime.now(timezone.utc),
            ),
            auto_commit=False,
        )
        await self.session.commit()
        logger.info("Execution %s of workflow %s started by %s", execution.id, workflow.id, actor_id)
        await self._emit(
            EventType.EXECUTION_STARTED,
            execution_id=execution.id,
            workflow_id=workflow.id,
            document_id=document_id,
            retry_of=retry_of,
        )
        return execution

    async def _owned_execution(self, execution_id: UUID, actor_id: str) -> WorkflowExecutionModel:
        execution = await self._execution_repo.get_owned(execution_id, actor_id)
        if execution is None:
            raise NotFoundError("execution", execution_id)
        return execution

    async def _lock_owned(self, execution_id: UUID, actor_id: str) -> WorkflowExecutionModel:
        await self._owned_execution(execution_id, actor_id)
        execution = await self._execution_repo.lock(execution_id)
        if execution is None:
            raise NotFoundError("execution", execution_id)
        return execution

    async def _emit(self, event_type: EventType, **payload: Any) -> None:
        if self.event_bus:
            await self.event_bus.emit(str(event_type), **payload)

