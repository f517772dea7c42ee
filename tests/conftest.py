"""
Pytest fixtures for AgentsFlow tests

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Fake delivery channels and a dispatcher with private circuit breakers
- Test executors for the workflow engine
- Builders for workflows, actions and appointments
"""

import os

# Module-level configuration in agentsflow.database / workers.celery_app
# requires these before anything from the package is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

import asyncio
import pytest
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agentsflow.models import Base, Workflow, Trigger, Action, Lead, Appointment
from agentsflow.models.workflow import WorkflowStatus
from agentsflow.core.actions import ActionExecutor, ActionRegistry, LogExecutor, SetContextExecutor
from agentsflow.core.circuit_breaker import CircuitBreaker
from agentsflow.core.exceptions import ActionExecutionError, DeliveryError
from agentsflow.core.notifications.channels import DeliveryChannel
from agentsflow.core.notifications.dispatcher import NotificationDispatcher


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """
    In-memory SQLite engine shared by every connection of the test.
    Each test gets a fresh database that's torn down after the test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)

    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def file_db(tmp_path):
    """
    File-backed SQLite database for tests that need two independent
    sessions (e.g. two sweepers racing for the same reminders).

    Returns a session factory.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'agentsflow_test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)

    try:
        yield sessionmaker(bind=engine)
    finally:
        engine.dispose()


# ============================================================================
# DELIVERY FIXTURES
# ============================================================================

class FakeChannel(DeliveryChannel):
    """Records every send; optionally fails with the given error"""

    def __init__(self, name: str, error: Optional[Exception] = None):
        self.name = name
        self.error = error
        self.sent: List[tuple] = []

    def send(self, recipient, rendered):
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, rendered))
        return f"{self.name}-{len(self.sent)}"


@pytest.fixture
def make_channel():
    """Factory: make_channel("email", error=DeliveryError(...))"""
    return FakeChannel


@pytest.fixture
def email_channel():
    return FakeChannel("email")


@pytest.fixture
def sms_channel():
    return FakeChannel("sms")


@pytest.fixture
def breakers():
    """Fresh breakers so tests never share state through the module-level ones"""
    return {
        "email": CircuitBreaker(name="email", failure_threshold=3, timeout=60),
        "sms": CircuitBreaker(name="sms", failure_threshold=3, timeout=60),
    }


@pytest.fixture
def dispatcher(email_channel, sms_channel, breakers):
    return NotificationDispatcher(
        channels={"email": email_channel, "sms": sms_channel},
        breakers=breakers,
    )


@pytest.fixture
def failing_dispatcher(breakers):
    """Dispatcher whose channels always fail"""
    return NotificationDispatcher(
        channels={
            "email": FakeChannel("email", error=DeliveryError("SMTP down", channel="email")),
            "sms": FakeChannel("sms", error=DeliveryError("Twilio down", channel="sms")),
        },
        breakers=breakers,
    )


# ============================================================================
# EXECUTOR FIXTURES
# ============================================================================

class RecordingExecutor(ActionExecutor):
    """Records the label of each call and returns it as output"""

    def __init__(self):
        self.calls: List[str] = []
        self.seen_context: List[Dict[str, Any]] = []

    async def execute(self, config, context):
        label = config.get("label")
        self.calls.append(label)
        self.seen_context.append(context.get_all())
        return {"last_label": label}


class FailingExecutor(ActionExecutor):
    async def execute(self, config, context):
        raise ActionExecutionError(config.get("message", "boom"))


class SlowExecutor(ActionExecutor):
    async def execute(self, config, context):
        await asyncio.sleep(config.get("sleep", 1))
        return {"slept": True}


class ScalarExecutor(ActionExecutor):
    async def execute(self, config, context):
        return config.get("value")


@pytest.fixture
def recorder():
    return RecordingExecutor()


@pytest.fixture
def registry(recorder):
    """Registry with deterministic test executors"""
    return ActionRegistry({
        "record": recorder,
        "fail": FailingExecutor(),
        "slow": SlowExecutor(),
        "scalar": ScalarExecutor(),
        "set_context": SetContextExecutor(),
        "log": LogExecutor(),
    })


# ============================================================================
# DATA BUILDERS
# ============================================================================

@pytest.fixture
def make_workflow(db_session):
    """
    Factory: make_workflow(status="active", trigger_type="manual", trigger_config=None)
    """
    def _make(
        status: str = WorkflowStatus.ACTIVE,
        trigger_type: Optional[str] = None,
        trigger_config: Optional[Dict[str, Any]] = None,
        name: str = "Test Workflow",
        trigger_active: bool = True,
    ) -> Workflow:
        workflow = Workflow(name=name, status=status)
        if trigger_type:
            workflow.triggers.append(Trigger(
                trigger_type=trigger_type,
                trigger_config=trigger_config or {},
                is_active=trigger_active,
            ))
        db_session.add(workflow)
        db_session.commit()
        db_session.refresh(workflow)
        return workflow

    return _make


@pytest.fixture
def add_action(db_session):
    """
    Factory: add_action(workflow, "record", {"label": "a"}, order=1, parent=None, ...)
    """
    def _add(
        workflow: Workflow,
        action_type: str,
        config: Optional[Dict[str, Any]] = None,
        order: int = 0,
        parent: Optional[Action] = None,
        condition: Optional[Dict[str, Any]] = None,
        on_failure: str = "abort",
    ) -> Action:
        action = Action(
            workflow_id=workflow.id,
            action_type=action_type,
            action_config=config or {},
            order=order,
            parent_action_id=parent.id if parent is not None else None,
            condition=condition,
            on_failure=on_failure,
        )
        db_session.add(action)
        db_session.commit()
        db_session.refresh(action)
        return action

    return _add


@pytest.fixture
def make_appointment(db_session):
    """
    Factory: make_appointment(scheduled_at, email=..., phone=...)
    """
    def _make(
        scheduled_at: Optional[datetime] = None,
        name: str = "Ana Lopez",
        email: Optional[str] = "ana@example.com",
        phone: Optional[str] = "+15550001111",
        title: str = "Demo Call",
        meeting_link: Optional[str] = None,
        status: str = "scheduled",
    ) -> Appointment:
        lead = Lead(name=name, email=email, phone=phone)
        appointment = Appointment(
            lead=lead,
            title=title,
            scheduled_at=scheduled_at or datetime.utcnow() + timedelta(days=2),
            duration_minutes=30,
            meeting_link=meeting_link,
            status=status,
        )
        db_session.add(appointment)
        db_session.commit()
        db_session.refresh(appointment)
        return appointment

    return _make
