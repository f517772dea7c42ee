"""
Execution Models
Database models for workflow execution records and their per-action trace
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class ExecutionStatus:
    """Execution lifecycle: pending -> running -> {completed, failed, cancelled}"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)
    ACTIVE = (PENDING, RUNNING)


class Execution(Base):
    """
    Execution Model

    Records each run of a workflow.
    Tracks status, timing, trigger payload, final context and errors.
    """
    __tablename__ = "executions"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(
        Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )

    status = Column(String(20), nullable=False, default=ExecutionStatus.PENDING, index=True)

    trigger_type = Column(String(20), nullable=True)
    trigger_payload = Column(JSON, nullable=True)

    # Final context of the run (JSON)
    result = Column(JSON, nullable=True)

    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    workflow = relationship("Workflow", back_populates="executions")
    steps = relationship(
        "ExecutionStep",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="ExecutionStep.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in ExecutionStatus.TERMINAL

    def __repr__(self):
        return f"<Execution(id={self.id}, workflow_id={self.workflow_id}, status='{self.status}')>"


class ExecutionStep(Base):
    """
    Execution Step Model

    Audit trail of each action visited during an execution:
    what ran (or was skipped), with which input, what it produced and how long it took.
    """
    __tablename__ = "execution_steps"

    id = Column(Integer, primary_key=True, index=True)
    execution_id = Column(
        Integer, ForeignKey("executions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Weak reference: the action may be replaced while the execution is kept
    action_id = Column(Integer, nullable=False, index=True)
    action_type = Column(String(50), nullable=False)

    # success, failed, skipped
    status = Column(String(20), nullable=False, default="success")

    input_context = Column(JSON, nullable=True)
    output_result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    execution_time = Column(Float, nullable=True)  # seconds
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    execution = relationship("Execution", back_populates="steps")

    def __repr__(self):
        return f"<ExecutionStep(id={self.id}, action_id={self.action_id}, status='{self.status}')>"
