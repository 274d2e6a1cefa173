"""Core domain module for docflow.

This module exports the building blocks shared by the engine and the web layer:
status enums, typed workflow definitions, condition expressions, the execution
context and the collaborator protocols.
"""

from __future__ import annotations

from docflow.core.context import ExecutionContext, resolve_recipients
from docflow.core.definition import (
    ActionStep,
    ApprovalStep,
    Branch,
    ConditionStep,
    DelayStep,
    NotificationStep,
    StepDefinition,
    WorkflowDefinition,
    parse_definition,
)
from docflow.core.events import EventType
from docflow.core.expressions import Expression, parse_expression
from docflow.core.protocols import ActionCall, ActionHandler, DocumentStore, EventBus, NotificationSender
from docflow.core.types import (
    ApprovalDecision,
    ApprovalMode,
    ApprovalStatus,
    Context,
    ExecutionStatus,
    StepKind,
    StepStatus,
    WorkflowStatus,
)

__all__ = [
    "ActionCall",
    "ActionHandler",
    "ActionStep",
    "ApprovalDecision",
    "ApprovalMode",
    "ApprovalStatus",
    "ApprovalStep",
    "Branch",
    "ConditionStep",
    "Context",
    "DelayStep",
    "DocumentStore",
    "EventBus",
    "EventType",
    "ExecutionContext",
    "ExecutionStatus",
    "Expression",
    "NotificationSender",
    "NotificationStep",
    "StepDefinition",
    "StepKind",
    "StepStatus",
    "WorkflowDefinition",
    "WorkflowStatus",
    "parse_definition",
    "parse_expression",
    "resolve_recipients",
]
