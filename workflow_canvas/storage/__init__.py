"""Database models and storage layer."""

from .database import (
    Base,
    get_database_engine,
    get_session_factory,
    create_tables,
    drop_tables,
)
from .models import WorkflowRecord, ExecutionRecord
from .workflow_store import SqlWorkflowStore

__all__ = [
    "Base",
    "get_database_engine",
    "get_session_factory",
    "create_tables",
    "drop_tables",
    "WorkflowRecord",
    "ExecutionRecord",
    "SqlWorkflowStore",
]
