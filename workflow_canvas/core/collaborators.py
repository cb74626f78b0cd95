"""Contracts for the editor's external collaborators.

The editor talks to persistence and to whatever actually runs workflows
only through these protocols. :class:`InMemoryWorkflowStore` is a
process-local store used when no database is configured.
"""

import threading
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..models.core import Execution, Workflow
from .logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class WorkflowStore(Protocol):
    """Persistence for workflow definitions."""

    def save_workflow(self, workflow: Workflow) -> Workflow:
        ...

    def delete_workflow(self, workflow_id: str) -> bool:
        ...

    def load_workflows(self) -> List[Workflow]:
        ...

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        ...


@runtime_checkable
class RunTrigger(Protocol):
    """Starts a workflow run and reports the resulting execution."""

    def run_workflow(self, workflow: Workflow, input: Optional[Any] = None) -> Execution:
        ...


class InMemoryWorkflowStore:
    """Thread-safe dictionary-backed :class:`WorkflowStore`."""

    def __init__(self):
        self._workflows: Dict[str, Workflow] = {}
        self._lock = threading.RLock()

    def save_workflow(self, workflow: Workflow) -> Workflow:
        with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
        logger.debug(f"Stored workflow {workflow.id} in memory")
        return workflow.model_copy(deep=True)

    def delete_workflow(self, workflow_id: str) -> bool:
        with self._lock:
            return self._workflows.pop(workflow_id, None) is not None

    def load_workflows(self) -> List[Workflow]:
        with self._lock:
            workflows = [workflow.model_copy(deep=True) for workflow in self._workflows.values()]
        return sorted(workflows, key=lambda workflow: workflow.updated_at, reverse=True)

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None
