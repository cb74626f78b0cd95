"""FastAPI REST endpoints for the workflow canvas."""

import asyncio
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import (
    GraphReferenceError,
    PersistenceError,
    ValidationError,
    WorkflowCanvasError,
    create_error_response,
)
from ..core.execution_tracker import ExecutionTracker
from ..core.graph_model import GraphModel
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..core.monitoring import NOT_RUN, compute_stats, filter_executions, latest_status
from ..core.runner import WorkflowRunner
from ..core.serialization import (
    export_workflow,
    grid_position,
    import_workflow,
    suggested_filename,
    validate_document,
    validate_workflow,
)
from ..core.templates import (
    StepTemplateCatalog,
    WorkflowTemplate,
    filter_templates,
    template_categories,
)
from ..models.core import (
    Connection,
    DateRange,
    DocumentModel,
    Execution,
    ExecutionFilter,
    ExecutionStats,
    ExecutionStatusEnum,
    Position,
    Step,
    ValidationResult,
    Workflow,
    WorkflowSummary,
    utc_now,
)
from ..storage.workflow_store import SqlWorkflowStore

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow-canvas"])

# Global instances (initialized by the application factory)
_store: Optional[SqlWorkflowStore] = None
_tracker: Optional[ExecutionTracker] = None
_runner: Optional[WorkflowRunner] = None
_catalog: Optional[StepTemplateCatalog] = None
_workflow_templates: List[WorkflowTemplate] = []
_read_only: bool = False


def init_dependencies(
    store: SqlWorkflowStore,
    tracker: ExecutionTracker,
    runner: WorkflowRunner,
    catalog: StepTemplateCatalog,
    workflow_templates: Optional[List[WorkflowTemplate]] = None,
    read_only: bool = False
):
    """Initialize the global dependencies."""
    global _store, _tracker, _runner, _catalog, _workflow_templates, _read_only
    _store = store
    _tracker = tracker
    _runner = runner
    _catalog = catalog
    _workflow_templates = list(workflow_templates or [])
    _read_only = read_only


def _not_initialized(component: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{component} not initialized"
    )


def get_store() -> SqlWorkflowStore:
    """Dependency to get the workflow store."""
    if _store is None:
        raise _not_initialized("Workflow store")
    return _store


def get_tracker() -> ExecutionTracker:
    """Dependency to get the execution tracker."""
    if _tracker is None:
        raise _not_initialized("Execution tracker")
    return _tracker


def get_runner() -> WorkflowRunner:
    """Dependency to get the workflow runner."""
    if _runner is None:
        raise _not_initialized("Workflow runner")
    return _runner


def get_catalog() -> StepTemplateCatalog:
    """Dependency to get the step template catalog."""
    if _catalog is None:
        raise _not_initialized("Step template catalog")
    return _catalog


def get_workflow_templates() -> List[WorkflowTemplate]:
    return _workflow_templates


def require_writable() -> None:
    """Dependency rejecting modifications when the service runs read-only."""
    if _read_only:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ReadOnlyMode",
                "message": "Workflow canvas is running in read-only mode",
                "details": {"timestamp": datetime.now(timezone.utc).isoformat()}
            }
        )


def _http_error(error: Exception, action: str) -> HTTPException:
    """Translate an error raised while handling a request into an HTTPException."""
    if isinstance(error, WorkflowCanvasError):
        status_code = status_code_for_error(error)
        if status_code >= 500:
            logger.error(f"Error while trying to {action}: {error.message}")
        else:
            logger.warning(f"Rejected request to {action}: {error.message}")
        return HTTPException(status_code=status_code, detail=create_error_response(error))

    logger.error(f"Unexpected error while trying to {action}: {str(error)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while trying to {action}",
            "details": {
                "original_error": str(error),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        }
    )


def _load_workflow(store: SqlWorkflowStore, workflow_id: str) -> Workflow:
    workflow = store.get_workflow(workflow_id)
    if workflow is None:
        raise GraphReferenceError(f"Workflow {workflow_id} not found", workflow_id=workflow_id)
    return workflow


def _archive_when_finished(store: SqlWorkflowStore, future: Future) -> None:
    """Store the execution record once the run resolves its completion future."""
    def archive(done: Future) -> None:
        execution = done.result()
        try:
            store.save_execution(execution)
        except PersistenceError as e:
            logger.error(f"Failed to archive execution {execution.id}: {e.message}")

    future.add_done_callback(archive)


# Request/Response models
class CreateWorkflowRequest(DocumentModel):
    """Request model for creating an empty workflow."""
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")


class ImportWorkflowRequest(DocumentModel):
    """Request model for importing a workflow document."""
    document: Dict[str, Any] = Field(..., description="Exported workflow document")
    copy_: bool = Field(False, alias="copy", description="Import under a fresh id")


class WorkflowResponse(DocumentModel):
    """Response model for workflow creation and modification."""
    workflow: Workflow = Field(..., description="The stored workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class WorkflowListItem(WorkflowSummary):
    """Workflow summary with the status of its latest run."""
    status: str = Field(NOT_RUN, description="Status of the most recent execution")


class AddStepRequest(DocumentModel):
    """Request model for adding a step from a catalog template."""
    template_key: str = Field(..., description="Catalog key, e.g. 'trigger.webhook'")
    position: Optional[Position] = Field(None, description="Canvas position; next grid slot when omitted")
    name: Optional[str] = Field(None, description="Step name; the template name when omitted")
    overrides: Dict[str, Any] = Field(default_factory=dict, description="Config values overriding the defaults")


class UpdateStepRequest(DocumentModel):
    """Request model for editing a step."""
    name: Optional[str] = None
    description: Optional[str] = None
    position: Optional[Position] = None
    config: Optional[Dict[str, Any]] = Field(None, description="Partial config merged into the current one")


class AddConnectionRequest(DocumentModel):
    """Request model for connecting two steps."""
    source: str = Field(..., description="Source step id")
    target: str = Field(..., description="Target step id")
    label: Optional[str] = None


class UpdateConnectionRequest(DocumentModel):
    """Request model for editing a connection."""
    label: Optional[str] = Field(None, description="New label; null or blank clears it")


class RunWorkflowRequest(DocumentModel):
    """Request model for running a workflow."""
    input: Optional[Any] = Field(None, description="Input passed to the entry steps")
    wait: bool = Field(False, description="Respond only once the run has finished")


class CancelExecutionRequest(DocumentModel):
    reason: Optional[str] = Field(None, description="Reason recorded on the execution")


class MessageResponse(BaseModel):
    message: str


# Workflow endpoints

@router.get(
    "/workflows",
    response_model=List[WorkflowListItem],
    summary="List workflows",
    description="List stored workflows, most recently updated first, with their latest run status"
)
async def list_workflows(
    store: SqlWorkflowStore = Depends(get_store),
    tracker: ExecutionTracker = Depends(get_tracker)
) -> List[WorkflowListItem]:
    try:
        executions = tracker.list_executions()
        items = []
        for summary in store.list_summaries():
            latest = latest_status(executions, summary.id)
            items.append(WorkflowListItem(
                **summary.model_dump(),
                status=latest.value if isinstance(latest, ExecutionStatusEnum) else latest
            ))
        return items
    except Exception as e:
        raise _http_error(e, "list workflows")


@router.post(
    "/workflows",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an empty workflow",
    dependencies=[Depends(require_writable)]
)
async def create_workflow(
    request: CreateWorkflowRequest,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> WorkflowResponse:
    """
    Create a new workflow without steps.

    Args:
        request: Name and description of the workflow
        store: Workflow store dependency
        catalog: Step template catalog dependency

    Returns:
        The stored workflow
    """
    try:
        graph = GraphModel.new(request.name, request.description, catalog=catalog)
        workflow = store.save_workflow(graph.workflow)
        logger.info(f"Created workflow '{workflow.name}' with ID: {workflow.id}")
        return WorkflowResponse(workflow=workflow, message=f"Workflow '{workflow.name}' created successfully")
    except Exception as e:
        raise _http_error(e, "create the workflow")


@router.post(
    "/workflows/import",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import a workflow document",
    description="Import an exported workflow; missing positions are laid out on a grid",
    dependencies=[Depends(require_writable)]
)
async def import_workflow_document(
    request: ImportWorkflowRequest,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> WorkflowResponse:
    """
    Import a workflow document.

    Raises:
        HTTPException: 400 with the list of problems if the document is malformed
    """
    try:
        workflow = import_workflow(request.document, copy=request.copy_)
        validation = validate_workflow(workflow, catalog)
        saved = store.save_workflow(workflow)
        logger.info(f"Imported workflow '{saved.name}' ({saved.id}) with {len(saved.steps)} steps")
        return WorkflowResponse(
            workflow=saved,
            message=f"Workflow '{saved.name}' imported successfully",
            validation_warnings=validation.warnings
        )
    except Exception as e:
        raise _http_error(e, "import the workflow")


@router.post(
    "/workflows/validate",
    response_model=ValidationResult,
    summary="Validate a workflow document",
    description="Report structural errors and warnings without storing anything"
)
async def validate_workflow_document(document: Dict[str, Any] = Body(...)) -> ValidationResult:
    try:
        return validate_document(document)
    except Exception as e:
        raise _http_error(e, "validate the workflow")


@router.get("/workflows/{workflow_id}", response_model=Workflow, summary="Get a workflow")
async def get_workflow(workflow_id: str, store: SqlWorkflowStore = Depends(get_store)) -> Workflow:
    try:
        return _load_workflow(store, workflow_id)
    except Exception as e:
        raise _http_error(e, f"get workflow {workflow_id}")


@router.put(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Replace a workflow",
    description="Replace the stored definition with a complete workflow document",
    dependencies=[Depends(require_writable)]
)
async def update_workflow(
    workflow_id: str,
    document: Dict[str, Any] = Body(...),
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> WorkflowResponse:
    try:
        existing = _load_workflow(store, workflow_id)
        workflow = import_workflow({**document, "id": workflow_id})
        workflow.created_at = existing.created_at
        workflow.updated_at = utc_now()
        saved = store.save_workflow(workflow)
        return WorkflowResponse(
            workflow=saved,
            message=f"Workflow '{saved.name}' updated successfully",
            validation_warnings=validate_workflow(saved, catalog).warnings
        )
    except Exception as e:
        raise _http_error(e, f"update workflow {workflow_id}")


@router.delete(
    "/workflows/{workflow_id}",
    response_model=MessageResponse,
    summary="Delete a workflow",
    description="Delete a workflow together with its stored executions",
    dependencies=[Depends(require_writable)]
)
async def delete_workflow(workflow_id: str, store: SqlWorkflowStore = Depends(get_store)) -> MessageResponse:
    try:
        if not store.delete_workflow(workflow_id):
            raise GraphReferenceError(f"Workflow {workflow_id} not found", workflow_id=workflow_id)
        return MessageResponse(message=f"Workflow {workflow_id} deleted")
    except Exception as e:
        raise _http_error(e, f"delete workflow {workflow_id}")


@router.post(
    "/workflows/{workflow_id}/duplicate",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate a workflow",
    dependencies=[Depends(require_writable)]
)
async def duplicate_workflow(workflow_id: str, store: SqlWorkflowStore = Depends(get_store)) -> WorkflowResponse:
    try:
        original = _load_workflow(store, workflow_id)
        copy = import_workflow(export_workflow(original), copy=True)
        copy.name = f"{original.name} (Copy)"
        saved = store.save_workflow(copy)
        logger.info(f"Duplicated workflow {workflow_id} as {saved.id}")
        return WorkflowResponse(workflow=saved, message=f"Workflow '{original.name}' duplicated")
    except Exception as e:
        raise _http_error(e, f"duplicate workflow {workflow_id}")


@router.get(
    "/workflows/{workflow_id}/export",
    summary="Export a workflow",
    description="Download the workflow document as a JSON attachment"
)
async def export_workflow_document(
    workflow_id: str,
    response: Response,
    store: SqlWorkflowStore = Depends(get_store)
) -> Dict[str, Any]:
    try:
        workflow = _load_workflow(store, workflow_id)
        response.headers["Content-Disposition"] = f'attachment; filename="{suggested_filename(workflow.name)}"'
        return export_workflow(workflow)
    except Exception as e:
        raise _http_error(e, f"export workflow {workflow_id}")


@router.get(
    "/workflows/{workflow_id}/validate",
    response_model=ValidationResult,
    summary="Validate a stored workflow"
)
async def validate_stored_workflow(
    workflow_id: str,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> ValidationResult:
    try:
        return validate_workflow(_load_workflow(store, workflow_id), catalog)
    except Exception as e:
        raise _http_error(e, f"validate workflow {workflow_id}")


# Graph editing endpoints

@router.post(
    "/workflows/{workflow_id}/steps",
    response_model=Step,
    status_code=status.HTTP_201_CREATED,
    summary="Add a step from a template",
    dependencies=[Depends(require_writable)]
)
async def add_step(
    workflow_id: str,
    request: AddStepRequest,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> Step:
    try:
        graph = GraphModel(_load_workflow(store, workflow_id), catalog=catalog)
        position = request.position or Position(**grid_position(len(graph.steps)))
        step = graph.add_step_from_template(request.template_key, position, request.overrides, name=request.name)
        store.save_workflow(graph.workflow)
        logger.info(f"Added step {step.id} from template {request.template_key} to workflow {workflow_id}")
        return step
    except Exception as e:
        raise _http_error(e, f"add a step to workflow {workflow_id}")


@router.patch(
    "/workflows/{workflow_id}/steps/{step_id}",
    response_model=Step,
    summary="Edit a step",
    description="Rename, describe, move or reconfigure a step; config is merged shallowly",
    dependencies=[Depends(require_writable)]
)
async def update_step(
    workflow_id: str,
    step_id: str,
    request: UpdateStepRequest,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> Step:
    try:
        graph = GraphModel(_load_workflow(store, workflow_id), catalog=catalog)
        step = graph.get_step(step_id)
        if request.name is not None or request.description is not None:
            step = graph.update_step_details(step_id, name=request.name, description=request.description)
        if request.position is not None:
            step = graph.move_step(step_id, request.position)
        if request.config is not None:
            step = graph.update_step_config(step_id, request.config)
        store.save_workflow(graph.workflow)
        return step
    except Exception as e:
        raise _http_error(e, f"update step {step_id}")


@router.delete(
    "/workflows/{workflow_id}/steps/{step_id}",
    response_model=List[Connection],
    summary="Remove a step",
    description="Remove a step and every connection touching it; returns the removed connections",
    dependencies=[Depends(require_writable)]
)
async def remove_step(
    workflow_id: str,
    step_id: str,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> List[Connection]:
    try:
        graph = GraphModel(_load_workflow(store, workflow_id), catalog=catalog)
        removed = graph.remove_step(step_id)
        store.save_workflow(graph.workflow)
        return removed
    except Exception as e:
        raise _http_error(e, f"remove step {step_id}")


@router.post(
    "/workflows/{workflow_id}/connections",
    response_model=Connection,
    status_code=status.HTTP_201_CREATED,
    summary="Connect two steps",
    dependencies=[Depends(require_writable)]
)
async def add_connection(
    workflow_id: str,
    request: AddConnectionRequest,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> Connection:
    """
    Connect two steps of a workflow.

    Raises:
        HTTPException: 400 for a self-loop, an unknown step or a duplicate connection
    """
    try:
        graph = GraphModel(_load_workflow(store, workflow_id), catalog=catalog)
        connection = graph.add_connection(request.source, request.target, label=request.label)
        if connection is None:
            raise ValidationError(
                f"Cannot connect {request.source} to {request.target}",
                validation_errors=["Connections must join two distinct existing steps at most once"]
            )
        store.save_workflow(graph.workflow)
        return connection
    except Exception as e:
        raise _http_error(e, f"connect steps in workflow {workflow_id}")


@router.patch(
    "/workflows/{workflow_id}/connections/{connection_id}",
    response_model=Connection,
    summary="Relabel a connection",
    dependencies=[Depends(require_writable)]
)
async def update_connection(
    workflow_id: str,
    connection_id: str,
    request: UpdateConnectionRequest,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> Connection:
    try:
        graph = GraphModel(_load_workflow(store, workflow_id), catalog=catalog)
        connection = graph.update_connection(connection_id, request.label)
        store.save_workflow(graph.workflow)
        return connection
    except Exception as e:
        raise _http_error(e, f"update connection {connection_id}")


@router.delete(
    "/workflows/{workflow_id}/connections/{connection_id}",
    response_model=Connection,
    summary="Remove a connection",
    dependencies=[Depends(require_writable)]
)
async def remove_connection(
    workflow_id: str,
    connection_id: str,
    store: SqlWorkflowStore = Depends(get_store),
    catalog: StepTemplateCatalog = Depends(get_catalog)
) -> Connection:
    try:
        graph = GraphModel(_load_workflow(store, workflow_id), catalog=catalog)
        removed = graph.remove_connection(connection_id)
        store.save_workflow(graph.workflow)
        return removed
    except Exception as e:
        raise _http_error(e, f"remove connection {connection_id}")


# Execution endpoints

@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=Execution,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run a workflow",
    description="Start a run in the background, or wait for it to finish when 'wait' is set",
    dependencies=[Depends(require_writable)]
)
async def execute_workflow(
    workflow_id: str,
    response: Response,
    request: Optional[RunWorkflowRequest] = None,
    store: SqlWorkflowStore = Depends(get_store),
    tracker: ExecutionTracker = Depends(get_tracker),
    runner: WorkflowRunner = Depends(get_runner)
) -> Execution:
    """
    Execute a workflow.

    Args:
        workflow_id: Workflow to run
        response: Outgoing response, used to report 200 for waited runs
        request: Run input and wait flag
        store: Workflow store dependency
        tracker: Execution tracker dependency
        runner: Workflow runner dependency

    Returns:
        The running execution, or the finished one when waiting

    Raises:
        HTTPException: 404 for an unknown workflow, 400 for an empty or cyclic one
    """
    request = request or RunWorkflowRequest()
    try:
        workflow = _load_workflow(store, workflow_id)
        execution = runner.start(workflow, request.input)
        future = tracker.completion_future(execution.id)
        _archive_when_finished(store, future)
        logger.info(f"Started execution {execution.id} for workflow {workflow_id}")

        if request.wait:
            response.status_code = status.HTTP_200_OK
            return await asyncio.wrap_future(future)
        return execution
    except Exception as e:
        raise _http_error(e, f"run workflow {workflow_id}")


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[Execution],
    summary="List a workflow's executions",
    description="Executions of one workflow, newest first"
)
async def list_workflow_executions(
    workflow_id: str,
    store: SqlWorkflowStore = Depends(get_store),
    tracker: ExecutionTracker = Depends(get_tracker)
) -> List[Execution]:
    try:
        _load_workflow(store, workflow_id)
        return tracker.get_executions_for_workflow(workflow_id)
    except Exception as e:
        raise _http_error(e, f"list executions of workflow {workflow_id}")


def _execution_filter(
    search: Optional[str],
    status_filter: Optional[ExecutionStatusEnum],
    workflow_id: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime]
) -> ExecutionFilter:
    if (start is None) != (end is None):
        raise ValidationError("Both 'start' and 'end' are required to filter by date")
    try:
        date_range = DateRange(start=start, end=end) if start is not None else None
    except PydanticValidationError as e:
        raise ValidationError("Invalid date range", validation_errors=[err["msg"] for err in e.errors()])
    return ExecutionFilter(
        search_term=search,
        status=status_filter,
        workflow_id=workflow_id,
        date_range=date_range
    )


@router.get(
    "/executions",
    response_model=List[Execution],
    summary="List executions",
    description="Filter executions by workflow name or id search, status, workflow and start time"
)
async def list_executions(
    search: Optional[str] = Query(None, description="Matches workflow name or execution id"),
    status_filter: Optional[ExecutionStatusEnum] = Query(None, alias="status"),
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    start: Optional[datetime] = Query(None, description="Earliest start time, inclusive"),
    end: Optional[datetime] = Query(None, description="Latest start time, inclusive"),
    store: SqlWorkflowStore = Depends(get_store),
    tracker: ExecutionTracker = Depends(get_tracker)
) -> List[Execution]:
    try:
        criteria = _execution_filter(search, status_filter, workflow_id, start, end)
        names = {summary.id: summary.name for summary in store.list_summaries()}
        return filter_executions(tracker.list_executions(), criteria, names)
    except Exception as e:
        raise _http_error(e, "list executions")


@router.get(
    "/executions/stats",
    response_model=ExecutionStats,
    summary="Execution statistics",
    description="Counts per status, mean completed duration and success rate"
)
async def execution_stats(
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    tracker: ExecutionTracker = Depends(get_tracker)
) -> ExecutionStats:
    try:
        if workflow_id:
            return compute_stats(tracker.get_executions_for_workflow(workflow_id))
        return compute_stats(tracker.list_executions())
    except Exception as e:
        raise _http_error(e, "compute execution statistics")


@router.get("/executions/{execution_id}", response_model=Execution, summary="Get an execution")
async def get_execution(execution_id: str, tracker: ExecutionTracker = Depends(get_tracker)) -> Execution:
    try:
        return tracker.get_execution(execution_id)
    except Exception as e:
        raise _http_error(e, f"get execution {execution_id}")


@router.post(
    "/executions/{execution_id}/cancel",
    response_model=Execution,
    summary="Cancel a running execution",
    dependencies=[Depends(require_writable)]
)
async def cancel_execution(
    execution_id: str,
    request: Optional[CancelExecutionRequest] = None,
    runner: WorkflowRunner = Depends(get_runner)
) -> Execution:
    try:
        execution = runner.cancel(execution_id, request.reason if request else None)
        logger.info(f"Cancelled execution {execution_id}")
        return execution
    except Exception as e:
        raise _http_error(e, f"cancel execution {execution_id}")


# Template endpoints

@router.get(
    "/templates/steps",
    summary="List step templates",
    description="Step templates grouped by step type, with their config schemas"
)
async def list_step_templates(catalog: StepTemplateCatalog = Depends(get_catalog)) -> Dict[str, List[Dict[str, Any]]]:
    return {
        step_type.value: [template.describe() for template in templates]
        for step_type, templates in catalog.by_type().items()
    }


@router.get(
    "/templates/workflows",
    response_model=List[WorkflowTemplate],
    summary="List workflow templates",
    description="Search templates by name or description and filter by category"
)
async def list_workflow_templates(
    search: Optional[str] = Query(None, description="Case-insensitive name or description search"),
    category: Optional[str] = Query(None, description="Exact category"),
    templates: List[WorkflowTemplate] = Depends(get_workflow_templates)
) -> List[WorkflowTemplate]:
    return filter_templates(templates, search_term=search, category=category)


@router.get("/templates/workflows/categories", response_model=List[str], summary="List template categories")
async def list_template_categories(
    templates: List[WorkflowTemplate] = Depends(get_workflow_templates)
) -> List[str]:
    return template_categories(templates)


@router.post(
    "/templates/workflows/{template_id}/instantiate",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow from a template",
    dependencies=[Depends(require_writable)]
)
async def instantiate_workflow_template(
    template_id: str,
    store: SqlWorkflowStore = Depends(get_store),
    templates: List[WorkflowTemplate] = Depends(get_workflow_templates)
) -> WorkflowResponse:
    try:
        template = next((template for template in templates if template.id == template_id), None)
        if template is None:
            raise GraphReferenceError(f"Workflow template {template_id} not found")
        workflow = import_workflow(export_workflow(template.workflow), copy=True)
        saved = store.save_workflow(workflow)
        logger.info(f"Created workflow {saved.id} from template {template_id}")
        return WorkflowResponse(workflow=saved, message=f"Workflow created from template '{template.name}'")
    except Exception as e:
        raise _http_error(e, f"instantiate template {template_id}")
