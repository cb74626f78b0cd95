"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from workflow_canvas.core.execution_tracker import ExecutionTracker
from workflow_canvas.core.graph_model import GraphModel
from workflow_canvas.core.templates import get_step_catalog
from workflow_canvas.models.core import (
    Connection,
    Execution,
    ExecutionStatusEnum,
    Position,
    Step,
    StepType,
    Workflow,
)
from workflow_canvas.storage.database import create_database_engine, create_tables
from workflow_canvas.storage.workflow_store import SqlWorkflowStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_step(step_id: str, step_type: StepType = StepType.ACTION, x: float = 0.0, y: float = 0.0,
              name: Optional[str] = None, **config) -> Step:
    """Build a step without a template."""
    return Step(
        id=step_id,
        type=step_type,
        name=name or step_id.title(),
        config=config,
        position=Position(x=x, y=y)
    )


def make_workflow(workflow_id: str, steps: List[Step], edges: List[Tuple[str, str]] = (),
                  name: Optional[str] = None) -> Workflow:
    """Build a workflow whose connections are given as (source, target) pairs."""
    return Workflow(
        id=workflow_id,
        name=name or workflow_id.replace("-", " ").title(),
        steps=steps,
        connections=[
            Connection(id=f"{source}-{target}", source=source, target=target)
            for source, target in edges
        ]
    )


def make_execution(execution_id: str, workflow_id: str, status: ExecutionStatusEnum,
                   minutes: int = 0, duration: Optional[float] = None, error: Optional[str] = None) -> Execution:
    """Build an execution starting ``minutes`` after :data:`BASE_TIME`."""
    start = BASE_TIME + timedelta(minutes=minutes)
    end = start + timedelta(milliseconds=duration) if duration is not None else None
    if status.is_terminal and end is None:
        end = start
    return Execution(
        id=execution_id,
        workflow_id=workflow_id,
        status=status,
        start_time=start,
        end_time=end if status.is_terminal else None,
        error=error
    )


@pytest.fixture
def catalog():
    """Default step template catalog."""
    return get_step_catalog()


@pytest.fixture
def linear_workflow() -> Workflow:
    """Trigger -> fetch -> notify, laid out left to right."""
    return make_workflow(
        "linear",
        [
            make_step("start", StepType.TRIGGER, 0, 0),
            make_step("fetch", StepType.ACTION, 200, 0),
            make_step("notify", StepType.ACTION, 400, 0),
        ],
        [("start", "fetch"), ("fetch", "notify")],
        name="Linear Workflow"
    )


@pytest.fixture
def diamond_workflow() -> Workflow:
    """start fans out to left and right, which join in merge."""
    return make_workflow(
        "diamond",
        [
            make_step("start", StepType.TRIGGER, 0, 0),
            make_step("left", StepType.ACTION, 200, -100),
            make_step("right", StepType.ACTION, 200, 100),
            make_step("merge", StepType.TRANSFORMATION, 400, 0),
        ],
        [("start", "left"), ("start", "right"), ("left", "merge"), ("right", "merge")],
        name="Diamond Workflow"
    )


@pytest.fixture
def graph(linear_workflow) -> GraphModel:
    """Graph model around the linear workflow."""
    return GraphModel(linear_workflow)


@pytest.fixture
def tracker() -> ExecutionTracker:
    return ExecutionTracker()


@pytest.fixture
def store() -> SqlWorkflowStore:
    """SQL store backed by a private in-memory SQLite database."""
    engine = create_database_engine("sqlite:///:memory:")
    create_tables(engine)
    yield SqlWorkflowStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


def echo_handler(step: Step, data: Any, context) -> Dict[str, Any]:
    """Step handler returning the step id with the data it received."""
    return {"step": step.id, "received": data}
