"""
Workflow Models
Database models for workflow definitions: the workflow itself, its triggers
and its action tree.
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class WorkflowStatus:
    """Workflow statuses"""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"

    ALL = (DRAFT, ACTIVE, PAUSED, ARCHIVED)


class TriggerType:
    """Trigger types understood by the engine"""
    SCHEDULE = "schedule"
    EVENT = "event"
    MANUAL = "manual"
    WEBHOOK = "webhook"

    ALL = (SCHEDULE, EVENT, MANUAL, WEBHOOK)


class Workflow(Base):
    """
    Workflow Model

    A user-defined automation: one trigger and a tree of actions.
    Aggregate counters are only ever changed through atomic UPDATE statements
    issued by the engine (see core.engine._increment_counters).
    """
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # draft, active, paused, archived
    status = Column(String(20), nullable=False, default=WorkflowStatus.DRAFT, index=True)

    execution_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    triggers = relationship(
        "Trigger",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="Trigger.id",
    )
    actions = relationship(
        "Action",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="Action.id",
    )
    executions = relationship(
        "Execution",
        back_populates="workflow",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Workflow(id={self.id}, name='{self.name}', status='{self.status}')>"


class Trigger(Base):
    """
    Trigger Model

    trigger_config is interpreted by trigger_type, e.g.:
        event:    {"event": "appointment.created"}
        schedule: {"cron": "0 9 * * 1"}
        webhook:  {"secret": "..."}
    """
    __tablename__ = "workflow_triggers"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(
        Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    trigger_type = Column(String(20), nullable=False)
    trigger_config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    workflow = relationship("Workflow", back_populates="triggers")

    def __repr__(self):
        return f"<Trigger(id={self.id}, workflow_id={self.workflow_id}, type='{self.trigger_type}')>"


class Action(Base):
    """
    Action Model

    One step of a workflow. Actions form a forest through parent_action_id:
    top-level actions have no parent, children run after their parent.

    Sibling order is (order, id); order is not unique and id follows
    insertion order.
    """
    __tablename__ = "workflow_actions"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(
        Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=True)
    action_type = Column(String(50), nullable=False)
    action_config = Column(JSON, nullable=False, default=dict)
    order = Column(Integer, nullable=False, default=0)
    # No FK constraint: the parent chain is validated by the graph builder,
    # which must reject dangling parents and cycles itself
    parent_action_id = Column(Integer, nullable=True, index=True)

    # Structured condition, e.g.
    # {"field": "trigger.lead.status", "operator": "equals", "value": "new"}
    condition = Column(JSON, nullable=True)

    # abort (default) or continue
    on_failure = Column(String(20), nullable=False, default="abort")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    workflow = relationship("Workflow", back_populates="actions")

    def __repr__(self):
        return f"<Action(id={self.id}, type='{self.action_type}', order={self.order})>"
