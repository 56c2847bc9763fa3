"""SQLAlchemy database models for the workflow node engine."""

from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Text, JSON, Float, ForeignKey, Index
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Database model for stored workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    nodes = Column(JSON, nullable=False)  # Ordered node list as authored
    status = Column(String, nullable=False, default="inactive")  # active, inactive
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_run_at = Column(DateTime)

    runs = relationship("WorkflowRunModel", back_populates="workflow", cascade="all, delete-orphan")
    events = relationship("WorkflowEventModel", back_populates="workflow", cascade="all, delete-orphan")


class WorkflowRunModel(Base):
    """Database model for workflow execution runs."""
    __tablename__ = "workflow_runs"
    __table_args__ = (Index("ix_workflow_runs_status_started", "status", "started_at"),)

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=True, index=True)
    status = Column(String, nullable=False)  # pending, running, completed, failed
    input = Column(JSON)
    nodes_snapshot = Column(JSON)  # Nodes as they were when the run started
    results = Column(JSON)  # NodeExecutionResult records with derived message
    summary = Column(JSON)
    error = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow)
    last_progress_at = Column(DateTime)  # Last write made while the run was running
    completed_at = Column(DateTime)
    execution_time = Column(Float)  # milliseconds

    workflow = relationship("WorkflowModel", back_populates="runs")


class WorkflowEventModel(Base):
    """Database model for events ingested for a workflow."""
    __tablename__ = "workflow_events"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    event_data = Column(JSON, nullable=False)
    received_at = Column(DateTime, default=datetime.utcnow, index=True)
    processed = Column(Boolean, default=False)
    run_id = Column(String)  # Run started from this event

    workflow = relationship("WorkflowModel", back_populates="events")
