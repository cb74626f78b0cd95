"""Core Pydantic models for the workflow canvas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Set, Tuple

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so every timestamp compares safely."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def duration_ms(start: datetime, end: datetime) -> float:
    """Milliseconds elapsed between two timestamps."""
    return (end - start).total_seconds() * 1000


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class DocumentModel(BaseModel):
    """Base for models exchanged as JSON documents (camelCase keys)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepType(str, Enum):
    """Enumeration of workflow step types."""
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    TRANSFORMATION = "transformation"
    KNOWLEDGE_QUERY = "knowledge_node"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of execution and step execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ExecutionStatusEnum.COMPLETED,
    ExecutionStatusEnum.FAILED,
    ExecutionStatusEnum.CANCELLED,
})


class ValidationResult(BaseModel):
    """Result of workflow validation."""
    is_valid: bool = Field(..., description="Whether the workflow is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class Position(BaseModel):
    """Location of a step's centre on the unscaled canvas."""
    x: float = Field(0.0, description="Horizontal canvas coordinate")
    y: float = Field(0.0, description="Vertical canvas coordinate")


class Step(DocumentModel):
    """A typed node of a workflow graph."""
    id: str = Field(..., description="Unique, immutable step identifier")
    type: StepType = Field(..., description="Kind of step")
    name: str = Field(..., description="Display name")
    description: Optional[str] = Field(None, description="Optional description")
    config: Dict[str, Any] = Field(default_factory=dict, description="Type-dependent configuration")
    position: Position = Field(default_factory=Position, description="Canvas position")
    template: Optional[str] = Field(None, description="Catalog template the step was created from")

    @field_validator('id')
    @classmethod
    def validate_id(cls, step_id):
        """Ensure step ID is not blank."""
        if not step_id or not step_id.strip():
            raise ValueError("Step ID cannot be empty")
        return step_id.strip()

    @field_validator('name')
    @classmethod
    def validate_name(cls, name):
        """Ensure step name is not blank."""
        if not name or not name.strip():
            raise ValueError("Step name cannot be empty")
        return name.strip()


class Connection(DocumentModel):
    """A directed edge between two steps."""
    id: str = Field(..., description="Unique connection identifier")
    source: str = Field(..., description="Source step ID")
    target: str = Field(..., description="Target step ID")
    label: Optional[str] = Field(None, description="Optional display label")

    @field_validator('id', 'source', 'target')
    @classmethod
    def validate_ids(cls, value):
        """Ensure identifiers are not blank."""
        if not value or not value.strip():
            raise ValueError("Connection identifiers cannot be empty")
        return value.strip()

    @model_validator(mode='after')
    def validate_not_self_loop(self):
        """Reject connections from a step to itself."""
        if self.source == self.target:
            raise ValueError(f"Self-referencing connection not allowed: {self.source}")
        return self

    @property
    def endpoints(self) -> Tuple[str, str]:
        return (self.source, self.target)


class Workflow(DocumentModel):
    """A workflow graph: steps plus the connections between them."""
    id: str = Field(..., description="Workflow identifier")
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    steps: List[Step] = Field(default_factory=list, description="Steps of the workflow")
    connections: List[Connection] = Field(default_factory=list, description="Connections between steps")
    created_at: UtcDatetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated_at: UtcDatetime = Field(default_factory=utc_now, description="Last modification timestamp")

    @field_validator('id', 'name')
    @classmethod
    def validate_not_blank(cls, value):
        """Ensure id and name are present."""
        if not value or not value.strip():
            raise ValueError("Workflow id and name cannot be empty")
        return value.strip()

    @field_validator('steps')
    @classmethod
    def validate_unique_step_ids(cls, steps):
        """Ensure all step IDs are unique."""
        step_ids = [step.id for step in steps]
        if len(step_ids) != len(set(step_ids)):
            raise ValueError("All step IDs must be unique")
        return steps

    @field_validator('connections')
    @classmethod
    def validate_unique_connection_ids(cls, connections):
        """Ensure all connection IDs are unique."""
        connection_ids = [connection.id for connection in connections]
        if len(connection_ids) != len(set(connection_ids)):
            raise ValueError("All connection IDs must be unique")
        return connections

    @model_validator(mode='after')
    def validate_references(self):
        """Every connection must join two existing steps, at most once per ordered pair."""
        step_ids = self.step_ids()
        seen_pairs: Set[Tuple[str, str]] = set()

        for connection in self.connections:
            if connection.source not in step_ids:
                raise ValueError(f"Connection {connection.id} references non-existent source step: {connection.source}")
            if connection.target not in step_ids:
                raise ValueError(f"Connection {connection.id} references non-existent target step: {connection.target}")
            if connection.endpoints in seen_pairs:
                raise ValueError(f"Duplicate connection {connection.source} -> {connection.target}")
            seen_pairs.add(connection.endpoints)

        return self

    def step_ids(self) -> Set[str]:
        return {step.id for step in self.steps}


class WorkflowSummary(DocumentModel):
    """Summary information about a stored workflow."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    step_count: int = Field(..., description="Number of steps")
    connection_count: int = Field(..., description="Number of connections")
    updated_at: UtcDatetime = Field(..., description="Last modification timestamp")


class StepExecution(DocumentModel):
    """Execution record of a single step within a run."""
    id: str = Field(..., description="ID of the step that was executed")
    name: str = Field(..., description="Step name at run time")
    status: ExecutionStatusEnum = Field(..., description="Step status")
    start_time: UtcDatetime = Field(..., description="When the step started")
    end_time: Optional[UtcDatetime] = Field(None, description="When the step finished")
    input: Optional[Any] = Field(None, description="Input handed to the step")
    output: Optional[Any] = Field(None, description="Output of a completed step")
    error: Optional[str] = Field(None, description="Error of a failed step")

    @model_validator(mode='after')
    def validate_result_fields(self):
        """Errors belong to failed steps only, outputs to completed steps only."""
        if self.error is not None and self.status != ExecutionStatusEnum.FAILED:
            raise ValueError(f"Step {self.id} carries an error but is {self.status.value}")
        if self.output is not None and self.status != ExecutionStatusEnum.COMPLETED:
            raise ValueError(f"Step {self.id} carries an output but is {self.status.value}")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError(f"Step {self.id} ends before it starts")
        return self


class Execution(DocumentModel):
    """One run of a workflow."""
    id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="ID of the workflow that was run")
    status: ExecutionStatusEnum = Field(..., description="Execution status")
    start_time: UtcDatetime = Field(..., description="When the run started")
    end_time: Optional[UtcDatetime] = Field(None, description="When the run finished")
    duration: Optional[float] = Field(None, description="Run duration in milliseconds")
    steps: List[StepExecution] = Field(default_factory=list, description="Step executions in start order")
    error: Optional[str] = Field(None, description="Error message of a failed run")
    input: Optional[Any] = Field(None, description="Input the run was started with")

    @model_validator(mode='after')
    def validate_timing(self):
        """Unfinished runs have no end time or duration; a finished run's duration is ``end_time - start_time``."""
        if not self.status.is_terminal:
            if self.end_time is not None or self.duration is not None:
                raise ValueError(f"Execution {self.id} is {self.status.value} but has an end time or duration")
        elif self.end_time is not None:
            if self.end_time < self.start_time:
                raise ValueError(f"Execution {self.id} ends before it starts")
            self.duration = duration_ms(self.start_time, self.end_time)
        elif self.duration is not None:
            raise ValueError(f"Execution {self.id} has a duration but no end time")
        return self

    def find_step(self, step_id: str) -> Optional[StepExecution]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class ExecutionStats(DocumentModel):
    """Summary statistics over a collection of executions."""
    total: int = 0
    completed: int = 0
    failed: int = 0
    running: int = 0
    pending: int = 0
    cancelled: int = 0
    avg_duration: float = Field(0.0, description="Mean duration of completed runs in milliseconds")
    success_rate: float = Field(0.0, description="Completed runs as a percentage of all runs")


class DateRange(BaseModel):
    """Inclusive range of start times."""
    start: UtcDatetime
    end: UtcDatetime

    @model_validator(mode='after')
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("Date range end must not precede its start")
        return self


class ExecutionFilter(BaseModel):
    """Criteria for filtering executions; all set criteria must match."""
    search_term: Optional[str] = Field(None, description="Matches workflow name or execution id")
    status: Optional[ExecutionStatusEnum] = Field(None, description="Required execution status")
    workflow_id: Optional[str] = Field(None, description="Required workflow id")
    date_range: Optional[DateRange] = Field(None, description="Required start time window")
