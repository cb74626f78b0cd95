"""SQLAlchemy-backed workflow and execution store."""

from typing import Callable, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.error_recovery import RetryConfig, with_retry
from ..core.exceptions import PersistenceError
from ..core.logging import get_logger
from ..models.core import Execution, Workflow, WorkflowSummary
from .database import get_session_factory
from .models import ExecutionRecord, WorkflowRecord

logger = get_logger(__name__)

T = TypeVar("T")


class SqlWorkflowStore:
    """
    Persists workflows and executions through SQLAlchemy.

    Workflows and executions are stored as their exported JSON documents,
    with the columns needed for listing and filtering alongside. Database
    errors surface as :class:`PersistenceError` after the configured
    retries.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, retry_config: Optional[RetryConfig] = None):
        self._session_factory = session_factory or get_session_factory()
        self._retry_config = retry_config or RetryConfig(max_attempts=3, retryable_exceptions=[PersistenceError])

    def _run(self, operation: str, table: str, work: Callable[[Session], T]) -> T:
        def attempt() -> T:
            session = self._session_factory()
            try:
                result = work(session)
                session.commit()
                return result
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceError(f"Failed to {operation.replace('_', ' ')}: {e}", operation=operation, table=table)
            finally:
                session.close()

        attempt.__name__ = operation
        return with_retry(self._retry_config)(attempt)()

    # Workflows

    def save_workflow(self, workflow: Workflow) -> Workflow:
        """Insert or update a workflow definition."""
        document = workflow.model_dump(by_alias=True, mode="json")

        def work(session: Session) -> Workflow:
            record = session.get(WorkflowRecord, workflow.id)
            if record is None:
                record = WorkflowRecord(id=workflow.id, created_at=workflow.created_at)
                session.add(record)
            record.name = workflow.name
            record.description = workflow.description
            record.definition = document
            record.step_count = len(workflow.steps)
            record.connection_count = len(workflow.connections)
            record.updated_at = workflow.updated_at
            return workflow.model_copy(deep=True)

        saved = self._run("save_workflow", "workflows", work)
        logger.info(f"Saved workflow {workflow.id} ({len(workflow.steps)} steps)")
        return saved

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and its executions; False when it did not exist."""
        def work(session: Session) -> bool:
            record = session.get(WorkflowRecord, workflow_id)
            if record is None:
                return False
            session.delete(record)
            return True

        deleted = self._run("delete_workflow", "workflows", work)
        if deleted:
            logger.info(f"Deleted workflow {workflow_id}")
        return deleted

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        def work(session: Session) -> Optional[Workflow]:
            record = session.get(WorkflowRecord, workflow_id)
            return Workflow.model_validate(record.definition) if record else None

        return self._run("get_workflow", "workflows", work)

    def load_workflows(self) -> List[Workflow]:
        """All workflows, most recently updated first."""
        def work(session: Session) -> List[Workflow]:
            records = session.query(WorkflowRecord).order_by(WorkflowRecord.updated_at.desc()).all()
            return [Workflow.model_validate(record.definition) for record in records]

        return self._run("load_workflows", "workflows", work)

    def list_summaries(self) -> List[WorkflowSummary]:
        def work(session: Session) -> List[WorkflowSummary]:
            records = session.query(WorkflowRecord).order_by(WorkflowRecord.updated_at.desc()).all()
            return [
                WorkflowSummary(
                    id=record.id,
                    name=record.name,
                    description=record.description,
                    step_count=record.step_count,
                    connection_count=record.connection_count,
                    updated_at=record.updated_at
                )
                for record in records
            ]

        return self._run("list_summaries", "workflows", work)

    # Executions

    def save_execution(self, execution: Execution) -> Execution:
        """
        Insert or update an execution record.

        Raises:
            PersistenceError: If the execution's workflow is not stored
        """
        document = execution.model_dump(by_alias=True, mode="json")

        def work(session: Session) -> Execution:
            if session.get(WorkflowRecord, execution.workflow_id) is None:
                raise PersistenceError(
                    f"Cannot store execution {execution.id}: workflow {execution.workflow_id} not found",
                    operation="save_execution",
                    table="executions",
                    recoverable=False
                )
            record = session.get(ExecutionRecord, execution.id)
            if record is None:
                record = ExecutionRecord(id=execution.id, workflow_id=execution.workflow_id)
                session.add(record)
            record.status = execution.status.value
            record.start_time = execution.start_time
            record.end_time = execution.end_time
            record.duration = execution.duration
            record.error = execution.error
            record.document = document
            return execution.model_copy(deep=True)

        return self._run("save_execution", "executions", work)

    def load_executions(self, workflow_id: Optional[str] = None) -> List[Execution]:
        """Stored executions, newest first, optionally for one workflow."""
        def work(session: Session) -> List[Execution]:
            query = session.query(ExecutionRecord)
            if workflow_id is not None:
                query = query.filter(ExecutionRecord.workflow_id == workflow_id)
            records = query.order_by(ExecutionRecord.start_time.desc()).all()
            return [Execution.model_validate(record.document) for record in records]

        return self._run("load_executions", "executions", work)
