"""Core workflow canvas components."""

from .exceptions import (
    WorkflowCanvasError,
    GraphReferenceError,
    ValidationError,
    ExecutionStateError,
    RunTriggerError,
    PersistenceError,
    StepExecutionError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .graph_model import GraphModel
from .canvas import CanvasInteractionEngine, CanvasSettings, ViewState
from .execution_tracker import ExecutionTracker
from .runner import StepHandlerRegistry, WorkflowRunner

__all__ = [
    "WorkflowCanvasError",
    "GraphReferenceError",
    "ValidationError",
    "ExecutionStateError",
    "RunTriggerError",
    "PersistenceError",
    "StepExecutionError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "GraphModel",
    "CanvasInteractionEngine",
    "CanvasSettings",
    "ViewState",
    "ExecutionTracker",
    "StepHandlerRegistry",
    "WorkflowRunner",
]
