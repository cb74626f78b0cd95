"""Custom exceptions for the workflow canvas with detailed error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    REFERENCE = "reference"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"


class WorkflowCanvasError(Exception):
    """Base exception for all workflow canvas errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class GraphReferenceError(WorkflowCanvasError):
    """Raised when an operation references an unknown step or connection."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.REFERENCE,
            **kwargs
        )
        if step_id:
            self.add_context(step_id=step_id)
        if connection_id:
            self.add_context(connection_id=connection_id)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class ValidationError(WorkflowCanvasError):
    """Raised when a workflow document or graph is structurally malformed."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_name:
            self.add_context(workflow_name=workflow_name)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class ExecutionStateError(WorkflowCanvasError):
    """Raised for unknown executions or illegal lifecycle transitions."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        step_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if step_id:
            self.add_context(step_id=step_id)


class RunTriggerError(WorkflowCanvasError):
    """Raised when the external run trigger rejects a run."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.NETWORK,
            recoverable=kwargs.pop("recoverable", True),
            retry_after=kwargs.pop("retry_after", 5),
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class PersistenceError(WorkflowCanvasError):
    """Raised when saving, deleting or loading workflows fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=kwargs.pop("recoverable", True),
            retry_after=kwargs.pop("retry_after", 3),
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class StepExecutionError(WorkflowCanvasError):
    """Raised when a step handler fails or times out."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if step_id:
            self.add_context(step_id=step_id)
        if execution_id:
            self.add_context(execution_id=execution_id)


class ConfigurationError(WorkflowCanvasError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: WorkflowCanvasError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowCanvasError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
