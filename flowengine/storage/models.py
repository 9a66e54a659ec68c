"""SQLAlchemy database models for workflows and their executions."""

from datetime import datetime
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """A workflow as saved by the editor."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=False)
    trigger_type = Column(String)
    trigger_config = Column(JSON)
    rf_nodes = Column(JSON, nullable=False, default=list)  # editor nodes, storage order
    rf_edges = Column(JSON, nullable=False, default=list)  # editor edges, storage order
    last_run_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    executions = relationship(
        "ExecutionModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True
    )


class ExecutionModel(Base):
    """One run of a workflow."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)  # Running, Success, Failed, Cancelled
    trigger_type = Column(String)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime)
    duration_ms = Column(Integer)
    input = Column(JSON)
    output = Column(JSON)
    error = Column(JSON)  # {message, type, stack}
    success_rate = Column(Integer)

    workflow = relationship("WorkflowModel", back_populates="executions")
    steps = relationship(
        "ExecutionStepModel",
        back_populates="execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ExecutionStepModel.step_number"
    )


class ExecutionStepModel(Base):
    """One node run within an execution."""
    __tablename__ = "execution_steps"
    __table_args__ = (
        UniqueConstraint("execution_id", "step_number", name="uq_execution_steps_number"),
    )

    id = Column(String, primary_key=True)
    execution_id = Column(String, ForeignKey("executions.id", ondelete="CASCADE"), nullable=False)
    step_number = Column(Integer, nullable=False)  # 1-based, dense
    node_id = Column(String, nullable=False)
    node_name = Column(String)
    node_type = Column(String)
    status = Column(String, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime)
    duration_ms = Column(Integer)
    input = Column(JSON)
    output = Column(JSON)
    error = Column(JSON)

    execution = relationship("ExecutionModel", back_populates="steps")
