"""Tests for execution filtering and statistics."""

from datetime import timedelta

import pytest

from workflow_canvas.core.monitoring import (
    NOT_RUN,
    compute_stats,
    filter_executions,
    format_duration,
    latest_status,
    stats_by_workflow,
)
from workflow_canvas.models.core import DateRange, ExecutionFilter, ExecutionStatusEnum

from conftest import BASE_TIME, make_execution


@pytest.fixture
def executions():
    return [
        make_execution("exec-a1", "wf-a", ExecutionStatusEnum.COMPLETED, minutes=0, duration=1000),
        make_execution("exec-a2", "wf-a", ExecutionStatusEnum.FAILED, minutes=10, error="boom"),
        make_execution("exec-b1", "wf-b", ExecutionStatusEnum.COMPLETED, minutes=20, duration=3000),
        make_execution("exec-b2", "wf-b", ExecutionStatusEnum.RUNNING, minutes=30),
    ]


@pytest.fixture
def workflow_names():
    return {"wf-a": "Daily Report", "wf-b": "Order Sync"}


class TestFilterExecutions:
    """Test cases for execution filtering."""

    def test_no_criteria_returns_everything(self, executions):
        """Test that an empty filter matches all executions in order."""
        assert filter_executions(executions) == executions
        assert filter_executions(executions, ExecutionFilter()) == executions

    def test_search_matches_workflow_name_case_insensitively(self, executions, workflow_names):
        """Test searching by workflow name."""
        result = filter_executions(executions, ExecutionFilter(search_term="daily"), workflow_names)
        assert [e.id for e in result] == ["exec-a1", "exec-a2"]

    def test_search_matches_execution_id(self, executions, workflow_names):
        """Test searching by execution id."""
        result = filter_executions(executions, ExecutionFilter(search_term="B2"), workflow_names)
        assert [e.id for e in result] == ["exec-b2"]

    def test_criteria_combine(self, executions, workflow_names):
        """Test that all set criteria must match."""
        criteria = ExecutionFilter(search_term="exec", status=ExecutionStatusEnum.COMPLETED, workflow_id="wf-b")
        result = filter_executions(executions, criteria, workflow_names)
        assert [e.id for e in result] == ["exec-b1"]

    def test_date_range_is_inclusive(self, executions):
        """Test filtering by start time window."""
        criteria = ExecutionFilter(date_range=DateRange(
            start=BASE_TIME + timedelta(minutes=10),
            end=BASE_TIME + timedelta(minutes=20)
        ))
        assert [e.id for e in filter_executions(executions, criteria)] == ["exec-a2", "exec-b1"]

    def test_inverted_date_range_rejected(self):
        """Test that a range ending before it starts is invalid."""
        with pytest.raises(ValueError):
            DateRange(start=BASE_TIME, end=BASE_TIME - timedelta(seconds=1))


class TestStatistics:
    """Test cases for execution statistics."""

    def test_compute_stats(self, executions):
        """Test counts, average completed duration and success rate."""
        stats = compute_stats(executions)

        assert stats.total == 4
        assert stats.completed == 2
        assert stats.failed == 1
        assert stats.running == 1
        assert stats.avg_duration == 2000.0
        assert stats.success_rate == 50.0

    def test_all_completed(self):
        """Test three completed runs of 1, 2 and 3 seconds."""
        runs = [
            make_execution(f"run-{ms}", "wf-a", ExecutionStatusEnum.COMPLETED, duration=ms)
            for ms in (1000, 2000, 3000)
        ]
        stats = compute_stats(runs)
        assert stats.avg_duration == 2000.0
        assert stats.success_rate == 100.0

    def test_empty_stats(self):
        """Test that no executions produce zeros instead of dividing by zero."""
        stats = compute_stats([])
        assert stats.total == 0
        assert stats.avg_duration == 0.0
        assert stats.success_rate == 0.0

    def test_stats_recomputed_from_filtered_set(self, executions):
        """Test statistics of a filtered subset."""
        failed_only = filter_executions(executions, ExecutionFilter(status=ExecutionStatusEnum.FAILED))
        stats = compute_stats(failed_only)
        assert stats.total == 1
        assert stats.success_rate == 0.0

    def test_stats_by_workflow(self, executions):
        """Test per-workflow grouping."""
        stats = stats_by_workflow(executions)
        assert stats["wf-a"].success_rate == 50.0
        assert stats["wf-b"].avg_duration == 3000.0

    def test_latest_status(self, executions):
        """Test the status of a workflow's newest run."""
        assert latest_status(executions, "wf-a") == ExecutionStatusEnum.FAILED
        assert latest_status(executions, "wf-b") == ExecutionStatusEnum.RUNNING
        assert latest_status(executions, "wf-c") == NOT_RUN


class TestFormatDuration:
    """Test cases for duration formatting."""

    @pytest.mark.parametrize("ms,expected", [
        (None, "-"),
        (0, "0ms"),
        (850.4, "850ms"),
        (1500, "1.50s"),
        (59999, "60.00s"),
        (60000, "1m 0s"),
        (125000, "2m 5s"),
    ])
    def test_format_duration(self, ms, expected):
        assert format_duration(ms) == expected
