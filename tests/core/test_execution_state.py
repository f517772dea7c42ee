"""
Tests for execution and workflow lifecycle transitions
"""

import pytest

from agentsflow.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from agentsflow.core.execution_state import (
    cancel_execution,
    delete_execution,
    delete_workflow,
    set_workflow_status,
    transition_execution,
)
from agentsflow.models import Execution, Workflow
from agentsflow.models.execution import ExecutionStatus


@pytest.fixture
def make_execution(db_session, make_workflow):
    def _make(status=ExecutionStatus.PENDING, workflow=None):
        workflow = workflow or make_workflow()
        execution = Execution(workflow_id=workflow.id, status=status, trigger_type="manual")
        db_session.add(execution)
        db_session.commit()
        db_session.refresh(execution)
        return execution

    return _make


@pytest.mark.unit
def test_transition_compare_and_set(db_session, make_execution):
    execution = make_execution()

    assert transition_execution(db_session, execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING)
    # Second writer loses
    assert not transition_execution(db_session, execution.id, [ExecutionStatus.PENDING], ExecutionStatus.RUNNING)

    db_session.refresh(execution)
    assert execution.status == ExecutionStatus.RUNNING


@pytest.mark.unit
def test_transition_out_of_terminal_rejected(db_session, make_execution):
    execution = make_execution(status=ExecutionStatus.COMPLETED)

    with pytest.raises(InvalidTransitionError):
        transition_execution(db_session, execution.id, [ExecutionStatus.COMPLETED], ExecutionStatus.RUNNING)


@pytest.mark.unit
@pytest.mark.parametrize("status", [ExecutionStatus.PENDING, ExecutionStatus.RUNNING])
def test_cancel_active_execution(db_session, make_execution, status):
    execution = make_execution(status=status)

    cancelled = cancel_execution(db_session, execution.id)

    assert cancelled.status == ExecutionStatus.CANCELLED
    assert cancelled.completed_at is not None
    assert cancelled.error_message == "Cancelled"


@pytest.mark.unit
@pytest.mark.parametrize("status", list(ExecutionStatus.TERMINAL))
def test_cancel_terminal_execution_rejected(db_session, make_execution, status):
    execution = make_execution(status=status)

    with pytest.raises(InvalidTransitionError) as exc_info:
        cancel_execution(db_session, execution.id)

    assert exc_info.value.current_status == status


@pytest.mark.unit
def test_cancel_unknown_execution(db_session):
    with pytest.raises(NotFoundError):
        cancel_execution(db_session, 404)


@pytest.mark.unit
def test_delete_terminal_execution(db_session, make_execution):
    execution = make_execution(status=ExecutionStatus.FAILED)
    execution_id = execution.id

    delete_execution(db_session, execution_id)

    assert db_session.get(Execution, execution_id) is None


@pytest.mark.unit
def test_delete_running_execution_rejected(db_session, make_execution):
    execution = make_execution(status=ExecutionStatus.RUNNING)

    with pytest.raises(InvalidTransitionError, match="only terminal executions"):
        delete_execution(db_session, execution.id)

    assert db_session.get(Execution, execution.id) is not None


@pytest.mark.unit
def test_set_workflow_status(db_session, make_workflow):
    workflow = make_workflow()

    updated = set_workflow_status(db_session, workflow.id, "paused")

    assert updated.status == "paused"


@pytest.mark.unit
def test_set_workflow_status_invalid(db_session, make_workflow):
    workflow = make_workflow()

    with pytest.raises(ValidationError, match="Invalid workflow status"):
        set_workflow_status(db_session, workflow.id, "sleeping")


@pytest.mark.unit
def test_set_status_unknown_workflow(db_session):
    with pytest.raises(NotFoundError):
        set_workflow_status(db_session, 99, "paused")


@pytest.mark.unit
def test_delete_workflow_cascades(db_session, make_workflow, make_execution, add_action):
    workflow = make_workflow(trigger_type="manual")
    add_action(workflow, "record", {"label": "a"})
    make_execution(status=ExecutionStatus.COMPLETED, workflow=workflow)
    workflow_id = workflow.id

    delete_workflow(db_session, workflow_id)

    assert db_session.get(Workflow, workflow_id) is None
    assert db_session.query(Execution).filter_by(workflow_id=workflow_id).count() == 0


@pytest.mark.unit
def test_delete_workflow_with_running_execution(db_session, make_workflow, make_execution):
    workflow = make_workflow()
    make_execution(status=ExecutionStatus.RUNNING, workflow=workflow)
    make_execution(status=ExecutionStatus.PENDING, workflow=workflow)
    workflow_id = workflow.id

    delete_workflow(db_session, workflow_id)

    assert db_session.get(Workflow, workflow_id) is None
    assert db_session.query(Execution).filter_by(workflow_id=workflow_id).count() == 0
