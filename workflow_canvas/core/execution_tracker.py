"""Execution lifecycle tracking."""

import threading
import uuid
from concurrent.futures import Future
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models.core import (
    Execution,
    ExecutionStatusEnum,
    StepExecution,
    duration_ms,
    ensure_utc,
    utc_now,
)
from .exceptions import ExecutionStateError
from .logging import get_logger, logging_context

logger = get_logger(__name__)


class ExecutionTracker:
    """
    Owns execution records and enforces their lifecycle.

    Executions move ``pending -> running -> completed | failed | cancelled``
    and each step execution follows the same states. Step results may
    arrive from several threads and in any order; one lock per execution
    serializes every change to that execution. Callers never receive the
    live records, only copies.
    """

    def __init__(self):
        self._executions: Dict[str, Execution] = {}
        self._execution_locks: Dict[str, threading.RLock] = {}
        self._completion_futures: Dict[str, Future] = {}
        self._lock_manager = threading.RLock()
        logger.info("ExecutionTracker initialized")

    def _register(self, execution: Execution) -> None:
        with self._lock_manager:
            if execution.id in self._executions:
                raise ExecutionStateError(
                    f"Execution {execution.id} already exists",
                    execution_id=execution.id
                )
            self._executions[execution.id] = execution
            self._execution_locks[execution.id] = threading.RLock()
            self._completion_futures[execution.id] = Future()

    def _lock_for(self, execution_id: str) -> threading.RLock:
        with self._lock_manager:
            lock = self._execution_locks.get(execution_id)
        if lock is None:
            raise ExecutionStateError(f"Execution {execution_id} not found", execution_id=execution_id)
        return lock

    def _require_active(self, execution_id: str) -> Execution:
        execution = self._executions[execution_id]
        if execution.status.is_terminal:
            raise ExecutionStateError(
                f"Execution {execution_id} already finished with status {execution.status.value}",
                execution_id=execution_id
            )
        return execution

    def _resolve(self, execution: Execution) -> None:
        future = self._completion_futures[execution.id]
        if not future.done():
            future.set_result(execution.model_copy(deep=True))

    # Lifecycle

    def start_execution(
        self,
        workflow_id: str,
        input: Optional[Any] = None,
        execution_id: Optional[str] = None,
        start_time: Optional[datetime] = None
    ) -> Execution:
        """
        Create an execution and move it to running.

        Args:
            workflow_id: ID of the workflow being run
            input: Input the run was started with
            execution_id: Explicit ID; generated when omitted
            start_time: Explicit start time; now when omitted

        Returns:
            Copy of the running execution
        """
        execution = Execution(
            id=execution_id or str(uuid.uuid4()),
            workflow_id=workflow_id,
            status=ExecutionStatusEnum.PENDING,
            start_time=start_time or utc_now(),
            input=input
        )
        self._register(execution)

        with self._lock_for(execution.id):
            execution.status = ExecutionStatusEnum.RUNNING

        logger.info(f"Started execution {execution.id} for workflow {workflow_id}")
        return execution.model_copy(deep=True)

    def start_step(
        self,
        execution_id: str,
        step_id: str,
        name: str,
        input: Optional[Any] = None,
        start_time: Optional[datetime] = None
    ) -> StepExecution:
        """Record that a step began running."""
        return self.record_step_result(
            execution_id,
            step_id,
            ExecutionStatusEnum.RUNNING,
            name=name,
            input=input,
            start_time=start_time
        )

    def record_step_result(
        self,
        execution_id: str,
        step_id: str,
        status: ExecutionStatusEnum,
        output: Optional[Any] = None,
        error: Optional[str] = None,
        name: Optional[str] = None,
        input: Optional[Any] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None
    ) -> StepExecution:
        """
        Append or update a step execution.

        Terminal statuses stamp the step's end time. Steps stay ordered by
        start time; steps starting at the same instant keep arrival order.

        Args:
            execution_id: ID of the running execution
            step_id: ID of the step
            status: New step status
            output: Output of a completed step
            error: Error message of a failed step
            name: Step name; required for a step not seen before
            input: Input handed to the step
            start_time: Step start time; now when the step is new
            end_time: Step end time; now for terminal statuses

        Returns:
            Copy of the updated step execution

        Raises:
            ExecutionStateError: If the execution is unknown or finished, the
                step already finished, or the result is inconsistent
        """
        with self._lock_for(execution_id):
            execution = self._require_active(execution_id)
            existing = execution.find_step(step_id)

            if existing is not None and existing.status.is_terminal:
                raise ExecutionStateError(
                    f"Step {step_id} already finished with status {existing.status.value}",
                    execution_id=execution_id,
                    step_id=step_id
                )

            if existing is None and not name:
                raise ExecutionStateError(
                    f"Step {step_id} is new to execution {execution_id} and needs a name",
                    execution_id=execution_id,
                    step_id=step_id
                )

            status = ExecutionStatusEnum(status)
            step_start = existing.start_time if existing is not None else ensure_utc(start_time or utc_now())
            if status.is_terminal:
                step_end = ensure_utc(end_time) if end_time else max(utc_now(), step_start)
            else:
                step_end = None

            try:
                updated = StepExecution(
                    id=step_id,
                    name=name or existing.name,
                    status=status,
                    start_time=step_start,
                    end_time=step_end,
                    input=input if input is not None else (existing.input if existing else None),
                    output=output,
                    error=error
                )
            except PydanticValidationError as e:
                raise ExecutionStateError(
                    f"Invalid result for step {step_id}: {e.errors()[0]['msg']}",
                    execution_id=execution_id,
                    step_id=step_id
                )

            if existing is None:
                execution.steps.append(updated)
            else:
                execution.steps[execution.steps.index(existing)] = updated
            execution.steps.sort(key=lambda step: step.start_time)

        logger.debug(f"Execution {execution_id}: step {step_id} is {status.value}")
        return updated.model_copy(deep=True)

    def complete_execution(
        self,
        execution_id: str,
        outcome: Optional[ExecutionStatusEnum] = None,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None
    ) -> Execution:
        """
        Finish an execution as completed or failed.

        The execution completes only when every step completed and no
        failure was reported. Steps still pending or running are marked
        cancelled.

        Args:
            execution_id: ID of the running execution
            outcome: Outcome reported by the run, if any
            error: Error message reported by the run, if any
            end_time: Explicit end time; now when omitted

        Returns:
            Copy of the finished execution

        Raises:
            ExecutionStateError: If the execution is unknown or already finished
        """
        if outcome is not None and outcome not in (ExecutionStatusEnum.COMPLETED, ExecutionStatusEnum.FAILED):
            raise ExecutionStateError(
                f"Cannot complete execution with outcome {ExecutionStatusEnum(outcome).value}",
                execution_id=execution_id
            )

        with self._lock_for(execution_id), logging_context(execution_id=execution_id):
            execution = self._require_active(execution_id)
            finished_at = ensure_utc(end_time) if end_time else max(utc_now(), execution.start_time)

            unfinished = self._cancel_unfinished_steps(execution, finished_at)
            failed_steps = [step for step in execution.steps if step.status == ExecutionStatusEnum.FAILED]

            if outcome == ExecutionStatusEnum.FAILED or error or failed_steps or unfinished:
                execution.status = ExecutionStatusEnum.FAILED
                if error:
                    execution.error = error
                elif failed_steps:
                    execution.error = f"Step {failed_steps[0].name} failed: {failed_steps[0].error}"
                elif unfinished:
                    execution.error = f"Steps did not finish: {', '.join(unfinished)}"
                else:
                    execution.error = "Execution failed"
            else:
                execution.status = ExecutionStatusEnum.COMPLETED

            self._finish(execution, finished_at)

        logger.info(
            f"Execution {execution_id} finished with status {execution.status.value} "
            f"in {execution.duration:.0f}ms"
        )
        return execution.model_copy(deep=True)

    def cancel_execution(self, execution_id: str, reason: Optional[str] = None) -> Execution:
        """
        Cancel a running execution; its unfinished steps become cancelled.

        Raises:
            ExecutionStateError: If the execution is unknown or already finished
        """
        with self._lock_for(execution_id):
            execution = self._require_active(execution_id)
            finished_at = max(utc_now(), execution.start_time)
            self._cancel_unfinished_steps(execution, finished_at)
            execution.status = ExecutionStatusEnum.CANCELLED
            execution.error = reason or "Execution cancelled"
            self._finish(execution, finished_at)

        logger.warning(f"Cancelled execution {execution_id}: {execution.error}")
        return execution.model_copy(deep=True)

    def is_cancelled(self, execution_id: str) -> bool:
        with self._lock_for(execution_id):
            return self._executions[execution_id].status == ExecutionStatusEnum.CANCELLED

    def _cancel_unfinished_steps(self, execution: Execution, finished_at: datetime) -> List[str]:
        unfinished = []
        for index, step in enumerate(execution.steps):
            if not step.status.is_terminal:
                execution.steps[index] = step.model_copy(update={
                    "status": ExecutionStatusEnum.CANCELLED,
                    "end_time": max(finished_at, step.start_time),
                })
                unfinished.append(step.id)
        return unfinished

    def _finish(self, execution: Execution, finished_at: datetime) -> None:
        execution.end_time = finished_at
        execution.duration = duration_ms(execution.start_time, finished_at)
        self._resolve(execution)

    def ingest_execution(self, execution: Execution) -> Execution:
        """
        Adopt an execution record produced elsewhere (e.g. a remote run trigger).

        Raises:
            ExecutionStateError: If an execution with the same ID is already tracked
        """
        record = Execution.model_validate(execution.model_dump())
        record.steps.sort(key=lambda step: step.start_time)
        self._register(record)
        if record.status.is_terminal:
            self._resolve(record)
        logger.info(f"Ingested execution {record.id} ({record.status.value}) for workflow {record.workflow_id}")
        return record.model_copy(deep=True)

    # Queries

    def get_execution(self, execution_id: str) -> Execution:
        """
        Get a copy of an execution.

        Raises:
            ExecutionStateError: If the execution is unknown
        """
        with self._lock_for(execution_id):
            return self._executions[execution_id].model_copy(deep=True)

    def has_execution(self, execution_id: str) -> bool:
        with self._lock_manager:
            return execution_id in self._executions

    def list_executions(self) -> List[Execution]:
        """All executions, newest first."""
        with self._lock_manager:
            ids = list(self._executions)
        executions = [self.get_execution(execution_id) for execution_id in ids]
        return sorted(executions, key=lambda execution: execution.start_time, reverse=True)

    def get_executions_for_workflow(self, workflow_id: str) -> List[Execution]:
        """Executions of one workflow, newest first."""
        return [execution for execution in self.list_executions() if execution.workflow_id == workflow_id]

    def completion_future(self, execution_id: str) -> Future:
        """Future resolved with a copy of the execution once it finishes."""
        with self._lock_manager:
            future = self._completion_futures.get(execution_id)
        if future is None:
            raise ExecutionStateError(f"Execution {execution_id} not found", execution_id=execution_id)
        return future

    def wait_for_completion(self, execution_id: str, timeout: Optional[float] = None) -> Execution:
        """
        Block until an execution finishes.

        Raises:
            ExecutionStateError: If the execution is unknown
            TimeoutError: If it does not finish within ``timeout`` seconds
        """
        return self.completion_future(execution_id).result(timeout=timeout)
