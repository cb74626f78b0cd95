"""Filtering and summary statistics over execution records.

Everything here is a pure function of its inputs; statistics are always
recomputed from the executions rather than maintained incrementally.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Union

from ..models.core import Execution, ExecutionFilter, ExecutionStats, ExecutionStatusEnum

NOT_RUN = "not_run"


def _name_index(workflows) -> Dict[str, str]:
    if workflows is None:
        return {}
    if isinstance(workflows, dict):
        return dict(workflows)
    return {workflow.id: workflow.name for workflow in workflows}


def matches(execution: Execution, criteria: ExecutionFilter, workflow_names: Optional[Dict[str, str]] = None) -> bool:
    """Whether an execution satisfies every criterion that is set."""
    if criteria.search_term:
        term = criteria.search_term.lower()
        name = (workflow_names or {}).get(execution.workflow_id, "")
        if term not in name.lower() and term not in execution.id.lower():
            return False

    if criteria.status is not None and execution.status != criteria.status:
        return False

    if criteria.workflow_id is not None and execution.workflow_id != criteria.workflow_id:
        return False

    if criteria.date_range is not None:
        if not criteria.date_range.start <= execution.start_time <= criteria.date_range.end:
            return False

    return True


def filter_executions(
    executions: Iterable[Execution],
    criteria: Optional[ExecutionFilter] = None,
    workflows=None
) -> List[Execution]:
    """
    Keep the executions matching all set criteria, preserving order.

    Args:
        executions: Executions to filter
        criteria: Filter criteria; everything matches when omitted
        workflows: Workflows (or an id -> name mapping) used to match the
            search term against workflow names

    Returns:
        Matching executions
    """
    if criteria is None:
        return list(executions)
    names = _name_index(workflows)
    return [execution for execution in executions if matches(execution, criteria, names)]


def compute_stats(executions: Iterable[Execution]) -> ExecutionStats:
    """
    Summarize executions.

    The average duration covers completed executions that have a
    duration; the success rate is completed executions as a percentage of
    all executions. Both are 0 when there is nothing to average.
    """
    executions = list(executions)
    counts = defaultdict(int)
    for execution in executions:
        counts[execution.status] += 1

    durations = [
        execution.duration for execution in executions
        if execution.status == ExecutionStatusEnum.COMPLETED and execution.duration is not None
    ]
    total = len(executions)

    return ExecutionStats(
        total=total,
        completed=counts[ExecutionStatusEnum.COMPLETED],
        failed=counts[ExecutionStatusEnum.FAILED],
        running=counts[ExecutionStatusEnum.RUNNING],
        pending=counts[ExecutionStatusEnum.PENDING],
        cancelled=counts[ExecutionStatusEnum.CANCELLED],
        avg_duration=sum(durations) / len(durations) if durations else 0.0,
        success_rate=counts[ExecutionStatusEnum.COMPLETED] / total * 100 if total else 0.0
    )


def stats_by_workflow(executions: Iterable[Execution]) -> Dict[str, ExecutionStats]:
    grouped: Dict[str, List[Execution]] = defaultdict(list)
    for execution in executions:
        grouped[execution.workflow_id].append(execution)
    return {workflow_id: compute_stats(group) for workflow_id, group in grouped.items()}


def latest_status(executions: Iterable[Execution], workflow_id: str) -> Union[ExecutionStatusEnum, str]:
    """Status of the workflow's newest execution, or ``"not_run"``."""
    runs = [execution for execution in executions if execution.workflow_id == workflow_id]
    if not runs:
        return NOT_RUN
    return max(runs, key=lambda execution: execution.start_time).status


def format_duration(ms: Optional[float]) -> str:
    """Render milliseconds as ``850ms``, ``1.50s`` or ``2m 5s``."""
    if ms is None:
        return "-"
    if ms < 1000:
        return f"{round(ms)}ms"
    if ms < 60000:
        return f"{ms / 1000:.2f}s"
    minutes = int(ms // 60000)
    seconds = int((ms % 60000) // 1000)
    return f"{minutes}m {seconds}s"
