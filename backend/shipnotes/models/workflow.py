"""Workflow run and step-log models.

A run is the persisted cursor of one workflow execution. Status
transitions: queued -> running -> completed | failed, with
running -> queued when a retriable failure is scheduled for another
attempt. Each completed step is recorded in ``workflow_steps`` before the
cursor advances, so an interrupted run resumes at the first step without a
completed record.
"""

from sqlalchemy import (
    Column, String, Text, Integer, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.sql import func
from ..database import Base


class WorkflowRun(Base):
    __tablename__ = "workflow_runs"

    id = Column(String(50), primary_key=True)
    organization_id = Column(String(50), ForeignKey("organizations.id"), nullable=False, index=True)
    workflow_type = Column(String(50), nullable=False)
    # Key of the lock held for the lifetime of the run
    lock_key = Column(String(255), nullable=False, index=True)
    # Trigger id for content runs, None for ad-hoc runs
    correlation_id = Column(String(100), nullable=True)

    # Allowed values: queued, running, completed, failed
    status = Column(String(20), nullable=False, default="queued", index=True)
    # Index of the next step to execute (0-based)
    current_step = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=False)

    payload = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class WorkflowStep(Base):
    """Recorded outcome of one step of a run."""

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("run_id", "step_index", name="uq_step_run_index"),
    )

    id = Column(String(50), primary_key=True)
    run_id = Column(String(50), ForeignKey("workflow_runs.id"), nullable=False, index=True)
    step_index = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)
    # Allowed values: completed, failed
    status = Column(String(20), nullable=False)
    output = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
