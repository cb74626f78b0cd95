"""Editor session: the open workflow, its view state and the collaborators."""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..models.core import Execution, Position, Step, Workflow, utc_now
from .canvas import CanvasEvent, CanvasInteractionEngine, CanvasSettings, Selection, ViewState
from .collaborators import RunTrigger, WorkflowStore
from .exceptions import (
    GraphReferenceError,
    PersistenceError,
    RunTriggerError,
    ValidationError,
    WorkflowCanvasError,
)
from .execution_tracker import ExecutionTracker
from .graph_model import GraphModel
from .logging import get_logger
from .monitoring import latest_status
from .serialization import export_workflow, grid_position, import_workflow
from .templates import StepTemplateCatalog, WorkflowTemplate, get_step_catalog

logger = get_logger(__name__)


class ErrorNotice(BaseModel):
    """A failure shown to the user, optionally with a retry affordance."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: str = Field(..., description="Error kind: persistence, run or validation")
    operation: str = Field(..., description="Operation that failed")
    message: str
    retryable: bool = False
    details: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class EditorSession:
    """
    One user's editing session.

    The session owns at most one open :class:`GraphModel` with its
    :class:`ViewState`. Failures of the store or the run trigger never roll
    back local edits; they are recorded as :class:`ErrorNotice` entries
    which can be retried or dismissed.
    """

    def __init__(
        self,
        store: Optional[WorkflowStore] = None,
        run_trigger: Optional[RunTrigger] = None,
        tracker: Optional[ExecutionTracker] = None,
        settings: Optional[CanvasSettings] = None,
        catalog: Optional[StepTemplateCatalog] = None,
        read_only: bool = False
    ):
        self.store = store
        self.run_trigger = run_trigger
        self.tracker = tracker or ExecutionTracker()
        self.settings = settings or CanvasSettings()
        self.catalog = catalog or get_step_catalog()
        self.read_only = read_only

        self.graph: Optional[GraphModel] = None
        self.engine: Optional[CanvasInteractionEngine] = None
        self.view: ViewState = ViewState()
        self.workflows: List[Workflow] = []
        self.notices: List[ErrorNotice] = []
        self._retry_actions: Dict[str, Callable[[], Any]] = {}

    # Open workflow

    @property
    def workflow(self) -> Optional[Workflow]:
        return self.graph.workflow if self.graph else None

    def _require_graph(self) -> GraphModel:
        if self.graph is None:
            raise GraphReferenceError("No workflow is open")
        return self.graph

    def _attach(self, workflow: Workflow) -> Workflow:
        self.graph = GraphModel(workflow, self.catalog)
        self.engine = CanvasInteractionEngine(self.graph, self.settings, read_only=self.read_only)
        self.view = self.engine.initial_state()
        logger.info(f"Opened workflow '{workflow.name}' ({workflow.id})")
        return workflow

    def new_workflow(self, name: str, description: Optional[str] = None) -> Workflow:
        graph = GraphModel.new(name, description, self.catalog)
        return self._attach(graph.workflow)

    def open_workflow(self, workflow: Union[Workflow, str]) -> Workflow:
        """
        Open a workflow for editing; the view state starts fresh.

        Args:
            workflow: Workflow, or the id of a loaded or stored workflow

        Raises:
            GraphReferenceError: If no workflow with that id is known
        """
        if isinstance(workflow, str):
            workflow_id = workflow
            workflow = self._find_loaded(workflow_id)
            if workflow is None and self.store is not None:
                workflow = self.store.get_workflow(workflow_id)
            if workflow is None:
                raise GraphReferenceError(f"Workflow {workflow_id} not found", workflow_id=workflow_id)
        return self._attach(workflow.model_copy(deep=True))

    def close_workflow(self) -> None:
        self.graph = None
        self.engine = None
        self.view = ViewState()

    def _find_loaded(self, workflow_id: str) -> Optional[Workflow]:
        for workflow in self.workflows:
            if workflow.id == workflow_id:
                return workflow
        return None

    def _remember(self, workflow: Workflow) -> None:
        self.workflows = [w for w in self.workflows if w.id != workflow.id]
        self.workflows.insert(0, workflow.model_copy(deep=True))

    # Editing

    def handle(self, event: CanvasEvent) -> ViewState:
        if self.engine is None:
            raise GraphReferenceError("No workflow is open")
        self.view = self.engine.handle(self.view, event)
        return self.view

    def add_step_from_template(
        self,
        template_key: str,
        position: Optional[Position] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Step:
        """Add a step from the catalog and select it."""
        graph = self._require_graph()
        if position is None:
            position = Position(**grid_position(len(graph.steps)))
        step = graph.add_step_from_template(template_key, position, overrides)
        self.view = self.view.evolve(selection=Selection.step(step.id))
        return step

    def remove_step(self, step_id: str) -> None:
        graph = self._require_graph()
        removed = graph.remove_step(step_id)
        self.view = self.engine.clear_selection_for(
            self.view,
            step_ids=[step_id],
            connection_ids=[connection.id for connection in removed]
        )

    def remove_connection(self, connection_id: str) -> None:
        graph = self._require_graph()
        graph.remove_connection(connection_id)
        self.view = self.engine.clear_selection_for(self.view, connection_ids=[connection_id])

    def update_step_config(self, step_id: str, partial_config: Dict[str, Any]) -> Step:
        return self._require_graph().update_step_config(step_id, partial_config)

    # Notices

    def _notify(
        self,
        error: WorkflowCanvasError,
        kind: str,
        operation: str,
        retry: Optional[Callable[[], Any]] = None
    ) -> ErrorNotice:
        notice = ErrorNotice(
            kind=kind,
            operation=operation,
            message=error.message,
            retryable=retry is not None and error.recoverable,
            details=getattr(error, "validation_errors", [])
        )
        self.notices.append(notice)
        if notice.retryable:
            self._retry_actions[notice.id] = retry
        logger.warning(f"{operation} failed: {error.message}")
        return notice

    def dismiss(self, notice_id: str) -> bool:
        self._retry_actions.pop(notice_id, None)
        before = len(self.notices)
        self.notices = [notice for notice in self.notices if notice.id != notice_id]
        return len(self.notices) != before

    def retry(self, notice_id: str) -> Any:
        """
        Re-run the operation behind a retryable notice.

        The notice is dismissed first; a new notice is added if the retry fails.

        Raises:
            ValidationError: If the notice does not exist or cannot be retried
        """
        action = self._retry_actions.get(notice_id)
        if action is None:
            raise ValidationError(f"Notice {notice_id} cannot be retried")
        self.dismiss(notice_id)
        logger.info(f"Retrying operation for notice {notice_id}")
        return action()

    # Persistence

    def _require_store(self) -> WorkflowStore:
        if self.store is None:
            raise PersistenceError("No workflow store configured", operation="configure")
        return self.store

    def save(self) -> Optional[Workflow]:
        """Save the open workflow; on failure a retryable notice is added and None returned."""
        workflow = self._require_graph().workflow
        try:
            saved = self._require_store().save_workflow(workflow)
        except PersistenceError as e:
            self._notify(e, "persistence", "save", retry=self.save)
            return None
        except Exception as e:
            self._notify(
                PersistenceError(f"Failed to save workflow {workflow.name}: {e}", operation="save"),
                "persistence", "save", retry=self.save
            )
            return None

        self._remember(saved)
        logger.info(f"Saved workflow {saved.id}")
        return saved

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a stored workflow; closes it when it is the open one."""
        try:
            deleted = self._require_store().delete_workflow(workflow_id)
        except PersistenceError as e:
            self._notify(e, "persistence", "delete", retry=lambda: self.delete_workflow(workflow_id))
            return False
        except Exception as e:
            self._notify(
                PersistenceError(f"Failed to delete workflow {workflow_id}: {e}", operation="delete"),
                "persistence", "delete", retry=lambda: self.delete_workflow(workflow_id)
            )
            return False

        self.workflows = [w for w in self.workflows if w.id != workflow_id]
        if self.workflow is not None and self.workflow.id == workflow_id:
            self.close_workflow()
        return deleted

    def load_workflows(self) -> List[Workflow]:
        """Refresh the workflow list from the store; keeps the previous list on failure."""
        try:
            self.workflows = self._require_store().load_workflows()
        except PersistenceError as e:
            self._notify(e, "persistence", "load", retry=self.load_workflows)
        except Exception as e:
            self._notify(
                PersistenceError(f"Failed to load workflows: {e}", operation="load"),
                "persistence", "load", retry=self.load_workflows
            )
        return list(self.workflows)

    # Running

    def run(self, input: Optional[Any] = None) -> Optional[Execution]:
        """
        Run the open workflow through the run trigger.

        The resulting execution is handed to the tracker. Returns None and
        adds a notice when the run cannot be started.
        """
        workflow = self._require_graph().workflow
        if self.run_trigger is None:
            self._notify(RunTriggerError("No run trigger configured"), "run", "run")
            return None

        try:
            execution = self.run_trigger.run_workflow(workflow.model_copy(deep=True), input)
        except ValidationError as e:
            self._notify(e, "validation", "run")
            return None
        except RunTriggerError as e:
            self._notify(e, "run", "run", retry=lambda: self.run(input))
            return None
        except Exception as e:
            self._notify(
                RunTriggerError(f"Failed to run workflow {workflow.name}: {e}", workflow_id=workflow.id),
                "run", "run", retry=lambda: self.run(input)
            )
            return None

        if not self.tracker.has_execution(execution.id):
            self.tracker.ingest_execution(execution)
        return execution

    def executions(self) -> List[Execution]:
        """Executions of the open workflow, newest first."""
        return self.tracker.get_executions_for_workflow(self._require_graph().workflow.id)

    def workflow_status(self, workflow_id: str):
        return latest_status(self.tracker.list_executions(), workflow_id)

    # Documents and templates

    def import_document(self, document: Any, copy: bool = False) -> Optional[Workflow]:
        """Import and open a workflow document; invalid documents leave the session unchanged."""
        try:
            workflow = import_workflow(document, copy=copy)
        except ValidationError as e:
            self._notify(e, "validation", "import")
            return None
        return self._attach(workflow)

    def export_document(self) -> Dict[str, Any]:
        return export_workflow(self._require_graph().workflow)

    def duplicate_workflow(self, workflow_id: Optional[str] = None) -> Workflow:
        """
        Copy a workflow under a fresh id with a "(Copy)" name suffix.

        The copy is saved when a store is configured; it is not opened.
        """
        if workflow_id is None:
            source = self._require_graph().workflow
        else:
            source = self._find_loaded(workflow_id) or (self.store.get_workflow(workflow_id) if self.store else None)
            if source is None:
                raise GraphReferenceError(f"Workflow {workflow_id} not found", workflow_id=workflow_id)

        now = utc_now()
        duplicate = source.model_copy(deep=True, update={
            "id": f"workflow-{uuid.uuid4().hex}",
            "name": f"{source.name} (Copy)",
            "created_at": now,
            "updated_at": now,
        })

        if self.store is not None:
            try:
                duplicate = self.store.save_workflow(duplicate)
            except PersistenceError as e:
                self._notify(e, "persistence", "duplicate")
        self._remember(duplicate)
        logger.info(f"Duplicated workflow {source.id} as {duplicate.id}")
        return duplicate

    def instantiate_template(self, template: WorkflowTemplate) -> Workflow:
        """Open a fresh workflow built from a template."""
        now = utc_now()
        workflow = template.workflow.model_copy(deep=True, update={
            "id": f"workflow-{uuid.uuid4().hex}",
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Instantiated template '{template.name}' as {workflow.id}")
        return self._attach(workflow)
