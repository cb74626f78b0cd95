"""SQLAlchemy database models for the workflow canvas."""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from ..models.core import utc_now
from .database import Base


class WorkflowRecord(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    definition = Column(JSON, nullable=False)  # Complete exported workflow document
    step_count = Column(Integer, nullable=False, default=0)
    connection_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    executions = relationship("ExecutionRecord", back_populates="workflow", cascade="all, delete-orphan")


class ExecutionRecord(Base):
    """Database model for workflow executions."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    status = Column(String, nullable=False)  # pending, running, completed, failed, cancelled
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))
    duration = Column(Float)  # milliseconds
    error = Column(Text)
    document = Column(JSON, nullable=False)  # Complete execution including step executions

    workflow = relationship("WorkflowRecord", back_populates="executions")
