"""Local workflow runner: executes steps in dependency order on worker threads."""

import inspect
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..models.core import Execution, Step, StepType, Workflow
from .exceptions import (
    ConfigurationError,
    ExecutionStateError,
    RunTriggerError,
    StepExecutionError,
    ValidationError,
    WorkflowCanvasError,
)
from .execution_tracker import ExecutionTracker
from .logging import get_logger, logging_context
from .topology import build_adjacency, build_predecessors, descendants, entry_steps, topological_layers

logger = get_logger(__name__)

StepHandler = Callable[[Step, Any, "StepContext"], Any]


class StepContext:
    """Context handed to step handlers."""

    def __init__(self, execution_id: str, workflow: Workflow, step: Step, tracker: ExecutionTracker):
        self.execution_id = execution_id
        self.workflow = workflow
        self.step = step
        self._tracker = tracker

    @property
    def config(self) -> Dict[str, Any]:
        return self.step.config

    def is_cancelled(self) -> bool:
        return self._tracker.is_cancelled(self.execution_id)


def pass_through(step: Step, data: Any, context: StepContext) -> Any:
    """Default handler: the step's output is its input."""
    return data


class StepHandlerRegistry:
    """Registry of the callables that execute steps.

    Handlers are looked up by the step's template key first, then by its
    step type. Steps without a registered handler pass their input through.
    """

    def __init__(self, default_handler: Optional[StepHandler] = None):
        self._handlers: Dict[str, StepHandler] = {}
        self._descriptions: Dict[str, str] = {}
        self._default_handler = default_handler or pass_through
        self._lock = threading.RLock()

    def register_handler(self, key: Union[str, StepType], handler: StepHandler, description: str = "") -> None:
        """Register a handler for a template key or a step type.

        Args:
            key: Template key (``"action.http_request"``) or step type
            handler: Callable taking ``(step, data, context)``
            description: Optional description of what the handler does

        Raises:
            ConfigurationError: If the key is empty, already registered, or the handler is not callable
        """
        key = key.value if isinstance(key, StepType) else (key or "").strip()
        if not key:
            raise ConfigurationError("Handler key cannot be empty")

        if not callable(handler):
            raise ConfigurationError(f"Handler for '{key}' must be callable", config_key=key)

        try:
            parameters = inspect.signature(handler).parameters
            if len(parameters) < 3 and not any(p.kind == p.VAR_POSITIONAL for p in parameters.values()):
                raise ConfigurationError(
                    f"Handler for '{key}' must accept (step, data, context)",
                    config_key=key
                )
        except (ValueError, TypeError):
            logger.warning(f"Cannot inspect signature of handler for '{key}'")

        with self._lock:
            if key in self._handlers:
                raise ConfigurationError(f"Handler for '{key}' is already registered", config_key=key)
            self._handlers[key] = handler
            self._descriptions[key] = description.strip() if description else ""

        logger.info(f"Registered step handler '{key}'")

    def unregister_handler(self, key: Union[str, StepType]) -> bool:
        key = key.value if isinstance(key, StepType) else key
        with self._lock:
            self._descriptions.pop(key, None)
            return self._handlers.pop(key, None) is not None

    def has_handler(self, key: Union[str, StepType]) -> bool:
        key = key.value if isinstance(key, StepType) else key
        with self._lock:
            return key in self._handlers

    def list_handlers(self) -> Dict[str, str]:
        """Registered keys mapped to their descriptions."""
        with self._lock:
            return dict(self._descriptions)

    def resolve(self, step: Step) -> StepHandler:
        with self._lock:
            if step.template and step.template in self._handlers:
                return self._handlers[step.template]
            return self._handlers.get(step.type.value, self._default_handler)


class WorkflowRunner:
    """
    Runs workflows locally and reports progress to an :class:`ExecutionTracker`.

    All entry steps start immediately. A step becomes ready once every
    predecessor completed and then receives the run input (entry steps),
    its single predecessor's output, or a ``{predecessor_id: output}``
    mapping when several branches join. When a step fails, its
    descendants never run; independent branches continue.
    """

    def __init__(
        self,
        tracker: ExecutionTracker,
        registry: Optional[StepHandlerRegistry] = None,
        max_parallel_steps: int = 4,
        step_timeout: Optional[float] = None,
        max_concurrent_runs: int = 4,
        poll_interval: float = 0.05
    ):
        """Initialize the runner.

        Args:
            tracker: Tracker receiving execution and step results
            registry: Step handlers; a pass-through registry when omitted
            max_parallel_steps: Worker threads shared by step handlers
            step_timeout: Seconds a single step may run, or None for no limit
            max_concurrent_runs: Runs scheduled concurrently by :meth:`start`
            poll_interval: Seconds between cancellation checks while waiting
        """
        if max_parallel_steps < 1:
            raise ConfigurationError("max_parallel_steps must be at least 1", config_key="max_parallel_steps")
        if step_timeout is not None and step_timeout <= 0:
            raise ConfigurationError("step_timeout must be positive", config_key="step_timeout")

        self.tracker = tracker
        self.registry = registry or StepHandlerRegistry()
        self.step_timeout = step_timeout
        self.poll_interval = poll_interval
        self._step_executor = ThreadPoolExecutor(max_workers=max_parallel_steps, thread_name_prefix="step")
        self._run_executor = ThreadPoolExecutor(max_workers=max_concurrent_runs, thread_name_prefix="run")
        logger.info(
            f"WorkflowRunner initialized with max_parallel_steps={max_parallel_steps}, "
            f"step_timeout={step_timeout}"
        )

    def run(self, workflow: Workflow, input: Optional[Any] = None) -> Execution:
        """
        Run a workflow to completion.

        Returns:
            The finished execution

        Raises:
            ValidationError: If the workflow has no steps or contains a cycle
        """
        execution = self._begin(workflow, input)
        self._execute(workflow, execution.id, input)
        return self.tracker.get_execution(execution.id)

    def start(self, workflow: Workflow, input: Optional[Any] = None) -> Execution:
        """
        Start a run in the background.

        Returns:
            The running execution; wait on it with
            :meth:`ExecutionTracker.wait_for_completion`
        """
        execution = self._begin(workflow, input)
        self._run_executor.submit(self._execute, workflow, execution.id, input)
        return execution

    def submit(self, workflow: Workflow, input: Optional[Any] = None) -> Future:
        """Start a run in the background and return its completion future."""
        return self.tracker.completion_future(self.start(workflow, input).id)

    def cancel(self, execution_id: str, reason: Optional[str] = None) -> Execution:
        """Cancel a running execution; steps already running finish but are not recorded."""
        return self.tracker.cancel_execution(execution_id, reason or "Cancelled by user")

    def shutdown(self) -> None:
        self._run_executor.shutdown(wait=True)
        self._step_executor.shutdown(wait=True)
        logger.info("WorkflowRunner shutdown completed")

    def _begin(self, workflow: Workflow, input: Optional[Any]) -> Execution:
        if not workflow.steps:
            raise ValidationError("Workflow has no steps to run", workflow_name=workflow.name)
        try:
            topological_layers(workflow)
        except ValueError as e:
            raise ValidationError(str(e), validation_errors=[str(e)], workflow_name=workflow.name)

        return self.tracker.start_execution(workflow.id, input)

    def _execute(self, workflow: Workflow, execution_id: str, run_input: Any) -> None:
        with logging_context(execution_id=execution_id, workflow_id=workflow.id):
            try:
                self._schedule(workflow, execution_id, run_input)
            except Exception as e:
                if isinstance(e, ExecutionStateError) and self.tracker.is_cancelled(execution_id):
                    logger.info(f"Execution {execution_id} was cancelled while scheduling steps")
                    return
                logger.error(f"Execution {execution_id} aborted: {e}", exc_info=True)
                if not self.tracker.get_execution(execution_id).status.is_terminal:
                    self.tracker.complete_execution(execution_id, error=f"Execution aborted: {e}")
                if not isinstance(e, WorkflowCanvasError):
                    raise

    def _schedule(self, workflow: Workflow, execution_id: str, run_input: Any) -> None:
        order = [step.id for step in workflow.steps]
        steps = {step.id: step for step in workflow.steps}
        adjacency = build_adjacency(order, workflow.connections)
        predecessors = build_predecessors(order, workflow.connections)
        waiting_on: Dict[str, Set[str]] = {step_id: set(preds) for step_id, preds in predecessors.items()}

        outputs: Dict[str, Any] = {}
        started: Set[str] = set()
        halted: Set[str] = set()
        failed: List[str] = []
        in_flight: Dict[Future, str] = {}
        # Monotonic time each step began running on a worker; queued steps are absent
        began: Dict[str, float] = {}

        def run_step(step: Step, data: Any, context: StepContext) -> Any:
            self.tracker.start_step(execution_id, step.id, step.name, input=data)
            began[step.id] = time.monotonic()
            return self.registry.resolve(step)(step, data, context)

        def deadline(step_id: str) -> Optional[float]:
            if self.step_timeout is None or step_id not in began:
                return None
            return began[step_id] + self.step_timeout

        def launch(step_id: str) -> None:
            step = steps[step_id]
            preds = predecessors[step_id]
            if not preds:
                data = run_input
            elif len(preds) == 1:
                data = outputs[preds[0]]
            else:
                data = {pred: outputs[pred] for pred in preds}

            started.add(step_id)
            context = StepContext(execution_id, workflow, step, self.tracker)
            future = self._step_executor.submit(run_step, step, data, context)
            in_flight[future] = step_id

        def fail(step_id: str, message: str) -> None:
            self.tracker.record_step_result(
                execution_id, step_id, "failed", error=message, name=steps[step_id].name
            )
            failed.append(step_id)
            blocked = descendants(workflow, step_id) - started
            if blocked:
                logger.warning(f"Step {step_id} failed; halting {len(blocked)} dependent step(s)")
            halted.update(blocked)

        for step in entry_steps(workflow):
            launch(step.id)

        while in_flight:
            deadlines = [deadline(step_id) for step_id in in_flight.values()]
            done, _ = wait(
                list(in_flight),
                timeout=self._wait_timeout([d for d in deadlines if d is not None]),
                return_when=FIRST_COMPLETED
            )

            if self.tracker.is_cancelled(execution_id):
                for future in in_flight:
                    future.cancel()
                logger.info(f"Execution {execution_id} cancelled; {len(in_flight)} step(s) abandoned")
                return

            now = time.monotonic()
            for future, step_id in list(in_flight.items()):
                limit = deadline(step_id)
                if future not in done and limit is not None and now >= limit:
                    in_flight.pop(future)
                    future.cancel()
                    fail(step_id, str(StepExecutionError(
                        f"Step timed out after {self.step_timeout} seconds",
                        step_id=step_id,
                        execution_id=execution_id
                    )))

            for future in done:
                step_id = in_flight.pop(future, None)
                if step_id is None:
                    continue

                try:
                    output = future.result()
                except Exception as e:
                    logger.error(f"Step {step_id} failed: {e}")
                    fail(step_id, str(e) or e.__class__.__name__)
                    continue

                self.tracker.record_step_result(execution_id, step_id, "completed", output=output)
                outputs[step_id] = output
                for successor in adjacency[step_id]:
                    waiting_on[successor].discard(step_id)
                    if not waiting_on[successor] and successor not in started and successor not in halted:
                        launch(successor)

        error = None
        if failed:
            names = ", ".join(steps[step_id].name for step_id in failed)
            error = f"{len(failed)} step(s) failed: {names}"
            if halted:
                error += f"; halted: {', '.join(steps[step_id].name for step_id in order if step_id in halted)}"
        self.tracker.complete_execution(execution_id, error=error)

    def _wait_timeout(self, deadlines: List[float]) -> float:
        if not deadlines:
            return self.poll_interval
        return max(0.0, min(self.poll_interval, min(deadlines) - time.monotonic()))


class LocalRunTrigger:
    """Run trigger backed by an in-process :class:`WorkflowRunner`."""

    def __init__(self, runner: WorkflowRunner):
        self.runner = runner

    def run_workflow(self, workflow: Workflow, input: Optional[Any] = None) -> Execution:
        """
        Run a workflow and return its finished execution.

        Raises:
            ValidationError: If the workflow cannot be run as drawn
            RunTriggerError: If the run could not be carried out
        """
        try:
            return self.runner.run(workflow, input)
        except ValidationError:
            raise
        except Exception as e:
            raise RunTriggerError(f"Failed to run workflow {workflow.name}: {e}", workflow_id=workflow.id)
