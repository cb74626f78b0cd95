"""Data models for the workflow canvas."""

from .core import (
    StepType,
    ExecutionStatusEnum,
    TERMINAL_STATUSES,
    ValidationResult,
    Position,
    Step,
    Connection,
    Workflow,
    WorkflowSummary,
    StepExecution,
    Execution,
    ExecutionStats,
    DateRange,
    ExecutionFilter,
    utc_now,
    duration_ms,
)

__all__ = [
    "StepType",
    "ExecutionStatusEnum",
    "TERMINAL_STATUSES",
    "ValidationResult",
    "Position",
    "Step",
    "Connection",
    "Workflow",
    "WorkflowSummary",
    "StepExecution",
    "Execution",
    "ExecutionStats",
    "DateRange",
    "ExecutionFilter",
    "utc_now",
    "duration_ms",
]
