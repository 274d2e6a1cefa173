"""Workflow execution engine.

This module provides the services that run executions, evaluate steps,
gate them on approvals and manage stored workflows.
"""

from __future__ import annotations

from docflow.engine.approvals import ApprovalGate, ApprovalOutcome, decide
from docflow.engine.evaluator import Completed, Failed, Pending, StepEvaluator, StepState
from docflow.engine.executor import (
    ApprovalTree,
    ExecutionLogEntry,
    ExecutionTree,
    SweepResult,
    TokenResolution,
    WorkflowExecutor,
)
from docflow.engine.registry import ActionRegistry
from docflow.engine.workflows import WorkflowService

__all__ = [
    "ActionRegistry",
    "ApprovalGate",
    "ApprovalOutcome",
    "ApprovalTree",
    "Completed",
    "ExecutionLogEntry",
    "ExecutionTree",
    "Failed",
    "Pending",
    "StepEvaluator",
    "StepState",
    "SweepResult",
    "TokenResolution",
    "WorkflowExecutor",
    "WorkflowService",
    "decide",
]
