"""
Tests for WorkflowEngine

Tests cover:
- Depth-first execution in (order, insertion) order
- Conditions gating whole subtrees
- Failure policy (abort / continue) and timeouts
- Graph validation before any Execution exists
- Workflow status and trigger checks
- External cancellation and deletion mid-run
- Atomic workflow counters
- Event dispatch
"""

import pytest

from agentsflow.core.engine import WorkflowEngine, dispatch_event, make_json_serializable
from agentsflow.core.exceptions import (
    GraphCycleError,
    GraphValidationError,
    NotFoundError,
    TriggerMismatchError,
    ValidationError,
    WorkflowNotActiveError,
)
from agentsflow.core.execution_state import cancel_execution, delete_workflow
from agentsflow.core.actions import ActionExecutor
from agentsflow.models import Execution, ExecutionStep, Workflow
from agentsflow.models.execution import ExecutionStatus
from agentsflow.models.workflow import WorkflowStatus


def _steps(db_session, execution):
    return (
        db_session.query(ExecutionStep)
        .filter(ExecutionStep.execution_id == execution.id)
        .order_by(ExecutionStep.id)
        .all()
    )


# ============================================================================
# ORDERING
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_runs_actions_depth_first_by_order(db_session, registry, recorder, make_workflow, add_action):
    workflow = make_workflow()
    second = add_action(workflow, "record", {"label": "second"}, order=2)
    first = add_action(workflow, "record", {"label": "first"}, order=1)
    add_action(workflow, "record", {"label": "first.child"}, order=5, parent=first)
    add_action(workflow, "record", {"label": "second.child"}, order=0, parent=second)

    engine = WorkflowEngine(db_session, registry)
    execution = await engine.fire(workflow.id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert recorder.calls == ["first", "first.child", "second", "second.child"]
    assert [s.status for s in _steps(db_session, execution)] == ["success"] * 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_order_ties_follow_insertion(db_session, registry, recorder, make_workflow, add_action):
    workflow = make_workflow()
    add_action(workflow, "record", {"label": "a"}, order=1)
    add_action(workflow, "record", {"label": "b"}, order=1)
    add_action(workflow, "record", {"label": "c"}, order=0)

    await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert recorder.calls == ["c", "a", "b"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_workflow_completes(db_session, registry, make_workflow):
    workflow = make_workflow()

    execution = await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.started_at is not None
    assert execution.completed_at is not None


# ============================================================================
# CONTEXT AND CONDITIONS
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_outputs_flow_to_later_actions(db_session, registry, recorder, make_workflow, add_action):
    workflow = make_workflow()
    tag = add_action(workflow, "set_context", {"values": {"segment": "vip {{trigger.lead.name}}"}}, order=1)
    add_action(workflow, "record", {"label": "after"}, order=2)

    execution = await WorkflowEngine(db_session, registry).fire(
        workflow.id, {"lead": {"name": "Ana"}}
    )

    assert execution.status == ExecutionStatus.COMPLETED
    seen = recorder.seen_context[0]
    assert seen["segment"] == "vip Ana"
    assert seen["actions"][str(tag.id)] == {"segment": "vip Ana"}
    assert execution.result["trigger"] == {"lead": {"name": "Ana"}}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_false_condition_skips_subtree(db_session, registry, recorder, make_workflow, add_action):
    workflow = make_workflow()
    guarded = add_action(
        workflow, "record", {"label": "guarded"}, order=1,
        condition={"field": "trigger.lead.status", "operator": "equals", "value": "new"},
    )
    add_action(workflow, "record", {"label": "guarded.child"}, parent=guarded)
    add_action(workflow, "record", {"label": "sibling"}, order=2)

    execution = await WorkflowEngine(db_session, registry).fire(
        workflow.id, {"lead": {"status": "returning"}}
    )

    assert execution.status == ExecutionStatus.COMPLETED
    assert recorder.calls == ["sibling"]
    steps = _steps(db_session, execution)
    assert [(s.action_id, s.status) for s in steps][0] == (guarded.id, "skipped")
    assert len(steps) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_condition_reads_previous_output(db_session, registry, recorder, make_workflow, add_action):
    workflow = make_workflow()
    add_action(workflow, "set_context", {"values": {"score": 80}}, order=1)
    add_action(
        workflow, "record", {"label": "hot"}, order=2,
        condition={"field": "score", "operator": "greater_than", "value": 50},
    )

    await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert recorder.calls == ["hot"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_non_dict_output_is_wrapped(db_session, registry, make_workflow, add_action):
    workflow = make_workflow()
    action = add_action(workflow, "scalar", {"value": 42})

    execution = await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert execution.result["actions"][str(action.id)] == {"result": 42}


# ============================================================================
# FAILURES
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_failure_aborts_run(db_session, registry, recorder, make_workflow, add_action):
    workflow = make_workflow()
    failing = add_action(workflow, "fail", {"message": "SMTP rejected"}, order=1)
    add_action(workflow, "record", {"label": "never"}, order=2)

    execution = await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert execution.status == ExecutionStatus.FAILED
    assert "SMTP rejected" in execution.error_message
    assert f"Action {failing.id}" in execution.error_message
    assert recorder.calls == []

    steps = _steps(db_session, execution)
    assert len(steps) == 1
    assert steps[0].status == "failed"
    assert steps[0].error_message == "SMTP rejected"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failure_continue_skips_only_subtree(db_session, registry, recorder, make_workflow, add_action):
    workflow = make_workflow()
    failing = add_action(workflow, "fail", {}, order=1, on_failure="continue")
    add_action(workflow, "record", {"label": "child of failed"}, parent=failing)
    add_action(workflow, "record", {"label": "sibling"}, order=2)

    execution = await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert recorder.calls == ["sibling"]
    assert [s.status for s in _steps(db_session, execution)] == ["failed", "success"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_action_timeout_fails_run(db_session, registry, make_workflow, add_action):
    workflow = make_workflow()
    add_action(workflow, "slow", {"sleep": 2, "timeout": 0.05})

    execution = await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert execution.status == ExecutionStatus.FAILED
    assert "timed out" in execution.error_message


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_action_type_fails_run(db_session, registry, make_workflow, add_action):
    workflow = make_workflow()
    add_action(workflow, "teleport", {})

    execution = await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert execution.status == ExecutionStatus.FAILED
    assert "Unknown action type: 'teleport'" in execution.error_message


# ============================================================================
# GRAPH VALIDATION
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_cycle_aborts_before_execution(db_session, registry, make_workflow, add_action):
    workflow = make_workflow()
    a = add_action(workflow, "record", {"label": "a"})
    b = add_action(workflow, "record", {"label": "b"}, parent=a)
    a.parent_action_id = b.id
    db_session.commit()

    with pytest.raises(GraphCycleError) as exc_info:
        await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert set(exc_info.value.cycle) == {a.id, b.id}
    assert db_session.query(Execution).count() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dangling_parent_aborts_before_execution(db_session, registry, make_workflow, add_action):
    workflow = make_workflow()
    other = make_workflow(name="Other")
    foreign = add_action(other, "record", {})
    add_action(workflow, "record", {}, parent=foreign)

    with pytest.raises(GraphValidationError):
        await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert db_session.query(Execution).count() == 0


# ============================================================================
# FIREABILITY
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_workflow(db_session, registry):
    with pytest.raises(NotFoundError):
        await WorkflowEngine(db_session, registry).fire(999)


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("status", [WorkflowStatus.PAUSED, WorkflowStatus.ARCHIVED])
async def test_inactive_workflow_rejected(db_session, registry, make_workflow, status):
    workflow = make_workflow(status=status)

    with pytest.raises(WorkflowNotActiveError):
        await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert db_session.query(Execution).count() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_draft_workflow_manual_only(db_session, registry, make_workflow):
    workflow = make_workflow(status=WorkflowStatus.DRAFT, trigger_type="event",
                             trigger_config={"event": "lead.created"})
    engine = WorkflowEngine(db_session, registry)

    execution = await engine.fire(workflow.id, trigger_type="manual")
    assert execution.status == ExecutionStatus.COMPLETED

    with pytest.raises(WorkflowNotActiveError):
        await engine.fire(workflow.id, trigger_type="event")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_trigger_type_must_match(db_session, registry, make_workflow):
    workflow = make_workflow(trigger_type="schedule", trigger_config={"cron": "0 9 * * 1"})
    engine = WorkflowEngine(db_session, registry)

    with pytest.raises(TriggerMismatchError):
        await engine.fire(workflow.id, trigger_type="webhook")

    execution = await engine.fire(workflow.id, trigger_type="schedule")
    assert execution.status == ExecutionStatus.COMPLETED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_inactive_trigger_rejected(db_session, registry, make_workflow):
    workflow = make_workflow(trigger_type="webhook", trigger_active=False)

    with pytest.raises(TriggerMismatchError):
        await WorkflowEngine(db_session, registry).fire(workflow.id, trigger_type="webhook")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_trigger_type(db_session, registry, make_workflow):
    workflow = make_workflow()

    with pytest.raises(ValidationError):
        await WorkflowEngine(db_session, registry).fire(workflow.id, trigger_type="carrier_pigeon")


# ============================================================================
# CANCELLATION
# ============================================================================

class CancellingExecutor(ActionExecutor):
    """Cancels the running execution from inside an action"""

    def __init__(self, db_session):
        self.db = db_session

    async def execute(self, config, context):
        running = self.db.query(Execution).filter(Execution.status == ExecutionStatus.RUNNING).one()
        cancel_execution(self.db, running.id)
        return {"cancelled": running.id}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancellation_stops_before_next_action(db_session, registry, recorder, make_workflow, add_action):
    registry.register("cancel", CancellingExecutor(db_session))
    workflow = make_workflow()
    add_action(workflow, "cancel", {}, order=1)
    add_action(workflow, "record", {"label": "too late"}, order=2)

    execution = await WorkflowEngine(db_session, registry).fire(workflow.id)

    assert execution.status == ExecutionStatus.CANCELLED
    assert execution.error_message == "Cancelled"
    assert recorder.calls == []

    db_session.refresh(workflow)
    assert workflow.execution_count == 1
    assert workflow.success_count == 0
    assert workflow.failure_count == 0


class DeletingExecutor(ActionExecutor):
    """Deletes the whole workflow from inside an action"""

    def __init__(self, db_session):
        self.db = db_session

    async def execute(self, config, context):
        delete_workflow(self.db, config["workflow_id"])
        return {"deleted": config["workflow_id"]}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_workflow_deleted_mid_run(db_session, registry, recorder, make_workflow, add_action):
    registry.register("delete", DeletingExecutor(db_session))
    workflow = make_workflow()
    workflow_id = workflow.id
    add_action(workflow, "delete", {"workflow_id": workflow_id}, order=1)
    add_action(workflow, "record", {"label": "too late"}, order=2)

    execution = await WorkflowEngine(db_session, registry).fire(workflow_id)

    assert execution is None
    assert recorder.calls == []
    assert db_session.get(Workflow, workflow_id) is None
    assert db_session.query(Execution).filter_by(workflow_id=workflow_id).count() == 0


# ============================================================================
# COUNTERS
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_counters_track_outcomes(db_session, registry, make_workflow, add_action):
    workflow = make_workflow()
    add_action(
        workflow, "fail", {},
        condition={"field": "trigger.fail", "operator": "equals", "value": True},
    )
    engine = WorkflowEngine(db_session, registry)

    await engine.fire(workflow.id, {"fail": False})
    await engine.fire(workflow.id, {"fail": False})
    await engine.fire(workflow.id, {"fail": True})

    db_session.refresh(workflow)
    assert workflow.execution_count == 3
    assert workflow.success_count == 2
    assert workflow.failure_count == 1
    assert workflow.last_executed_at is not None


# ============================================================================
# EVENTS
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatch_event_fires_matching_workflows(db_session, registry, make_workflow):
    created = make_workflow(name="on created", trigger_type="event", trigger_config={"event": "lead.created"})
    make_workflow(name="on updated", trigger_type="event", trigger_config={"event": "lead.updated"})
    make_workflow(name="paused", status=WorkflowStatus.PAUSED, trigger_type="event",
                  trigger_config={"event": "lead.created"})
    make_workflow(name="manual")

    executions = await dispatch_event(db_session, "lead.created", {"lead": {"id": 1}}, registry=registry)

    assert [e.workflow_id for e in executions] == [created.id]
    assert executions[0].trigger_type == "event"
    assert executions[0].trigger_payload == {"lead": {"id": 1}}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatch_event_isolates_broken_workflow(db_session, registry, make_workflow, add_action):
    broken = make_workflow(name="broken", trigger_type="event", trigger_config={"event": "x"})
    a = add_action(broken, "record", {})
    b = add_action(broken, "record", {}, parent=a)
    a.parent_action_id = b.id
    db_session.commit()
    healthy = make_workflow(name="healthy", trigger_type="event", trigger_config={"event": "x"})

    executions = await dispatch_event(db_session, "x", registry=registry)

    assert [e.workflow_id for e in executions] == [healthy.id]


# ============================================================================
# SERIALIZATION
# ============================================================================

@pytest.mark.unit
def test_make_json_serializable():
    from datetime import datetime

    value = make_json_serializable({
        "when": datetime(2026, 1, 2, 3, 4, 5),
        "raw": b"hi",
        "tags": {"a"},
        "pair": (1, 2),
        1: "int key",
    })

    assert value == {
        "when": "2026-01-02T03:04:05",
        "raw": "aGk=",
        "tags": ["a"],
        "pair": [1, 2],
        "1": "int key",
    }
