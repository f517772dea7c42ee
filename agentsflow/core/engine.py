"""
Workflow Execution Engine

Runs a workflow's action tree for one trigger fire:

1. Check the workflow may be fired (status, trigger type)
2. Snapshot the action graph (cycles abort here, before any Execution exists)
3. Create the Execution as pending, move it to running
4. Walk the graph depth-first in (order, insertion) order:
   - condition false: record a skipped step, skip the whole subtree
   - dispatch through the executor registry, bounded by the action timeout
   - on failure: abort the run, or with on_failure="continue" record the
     failure, skip that action's subtree and keep going
   - stop if the execution was cancelled from outside
5. Compare-and-set the terminal status
6. Atomically bump the workflow counters (separate commit, best effort)
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .action_graph import ActionGraph, ActionNode, load_action_graph
from .actions import ActionRegistry, build_default_registry
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .exceptions import (
    ActionTimeoutError,
    AutomationException,
    NotFoundError,
    TriggerMismatchError,
    ValidationError,
    WorkflowNotActiveError,
)
from .execution_state import transition_execution
from .logging_config import clear_correlation_id, get_correlation_id, set_correlation_id
from ..models import Execution, ExecutionStep, Workflow
from ..models.execution import ExecutionStatus
from ..models.workflow import TriggerType, WorkflowStatus

logger = logging.getLogger(__name__)


def make_json_serializable(obj):
    """
    Recursively convert non-JSON-serializable objects to serializable format.

    Handles:
    - datetime → ISO 8601 string
    - bytes → base64 string
    - sets and tuples → lists
    - custom objects → str(obj)
    """
    if isinstance(obj, dict):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [make_json_serializable(item) for item in obj]
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, bytes):
        return base64.b64encode(obj).decode('ascii')
    elif hasattr(obj, '__dict__'):
        return str(obj)
    else:
        return obj


@dataclass
class RunOutcome:
    """How the graph walk ended. status is None if the execution row vanished."""
    status: Optional[str]
    error: Optional[str] = None


class WorkflowEngine:
    """
    Example:
        >>> engine = WorkflowEngine(db)
        >>> execution = await engine.fire(workflow_id=3, payload={"lead": {"status": "new"}})
        >>> execution.status
        'completed'
    """

    def __init__(
        self,
        db_session: Session,
        registry: Optional[ActionRegistry] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.db = db_session
        self.registry = registry or build_default_registry()
        self.evaluator = evaluator or ConditionEvaluator()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def fire(
        self,
        workflow_id: int,
        payload: Optional[Dict[str, Any]] = None,
        trigger_type: str = TriggerType.MANUAL,
    ) -> Optional[Execution]:
        """
        Fire a workflow and run it to a terminal state.

        Returns:
            The Execution, reloaded after the run. None only if the row was
            deleted by someone else while the run was in progress.

        Raises:
            NotFoundError: unknown workflow
            WorkflowNotActiveError: workflow is paused/archived (or draft for non-manual fires)
            TriggerMismatchError: trigger_type does not match the workflow's trigger
            GraphCycleError / GraphValidationError: the action graph is invalid
        """
        workflow = self.db.query(Workflow).filter(Workflow.id == workflow_id).first()
        if not workflow:
            raise NotFoundError("Workflow", workflow_id)

        self._check_fireable(workflow, trigger_type)

        # Snapshot before the Execution exists: an invalid graph creates nothing
        graph = load_action_graph(self.db, workflow_id)

        execution = Execution(
            workflow_id=workflow_id,
            status=ExecutionStatus.PENDING,
            trigger_type=trigger_type,
            trigger_payload=make_json_serializable(payload or {}),
        )
        self.db.add(execution)
        self.db.commit()
        execution_id = execution.id

        previous_correlation_id = get_correlation_id()
        set_correlation_id(f"exec-{execution_id}")
        try:
            logger.info(
                f"Execution {execution_id} created for workflow {workflow_id}",
                extra={"workflow_id": workflow_id, "trigger_type": trigger_type, "actions": len(graph)},
            )
            await self._run(execution_id, workflow_id, graph, payload or {})
        finally:
            if previous_correlation_id:
                set_correlation_id(previous_correlation_id)
            else:
                clear_correlation_id()

        self.db.expire_all()
        return self.db.query(Execution).filter(Execution.id == execution_id).first()

    def _check_fireable(self, workflow: Workflow, trigger_type: str) -> None:
        if trigger_type not in TriggerType.ALL:
            raise ValidationError(f"Unknown trigger type: '{trigger_type}'")

        if workflow.status in (WorkflowStatus.PAUSED, WorkflowStatus.ARCHIVED):
            raise WorkflowNotActiveError(workflow.id, workflow.status)

        if workflow.status == WorkflowStatus.DRAFT and trigger_type != TriggerType.MANUAL:
            raise WorkflowNotActiveError(workflow.id, workflow.status)

        if trigger_type == TriggerType.MANUAL:
            return

        # Only the first trigger is acted on
        trigger = workflow.triggers[0] if workflow.triggers else None
        if trigger is None or not trigger.is_active:
            raise TriggerMismatchError(f"Workflow {workflow.id} has no active trigger")
        if trigger.trigger_type != trigger_type:
            raise TriggerMismatchError(
                f"Workflow {workflow.id} is triggered by '{trigger.trigger_type}', not '{trigger_type}'"
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _run(self, execution_id: int, workflow_id: int, graph: ActionGraph, payload: Dict[str, Any]) -> None:
        started = transition_execution(
            self.db,
            execution_id,
            [ExecutionStatus.PENDING],
            ExecutionStatus.RUNNING,
            started_at=datetime.utcnow(),
        )
        if not started:
            logger.warning(f"Execution {execution_id} left 'pending' before it started; not running it")
            return

        context = ExecutionContext(payload)

        try:
            outcome = await self._walk(execution_id, graph, context)
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Execution {execution_id} crashed: {e}")
            outcome = RunOutcome(ExecutionStatus.FAILED, error=f"Engine error: {e}")

        if outcome.status is None:
            logger.warning(f"Execution {execution_id} vanished while running; nothing to finalize")
            return

        if outcome.status == ExecutionStatus.CANCELLED:
            # Already terminal: set by whoever cancelled it
            logger.info(f"Execution {execution_id} was cancelled; remaining actions not run")
            self._increment_counters(workflow_id, succeeded=None)
            return

        finished = transition_execution(
            self.db,
            execution_id,
            [ExecutionStatus.RUNNING],
            outcome.status,
            completed_at=datetime.utcnow(),
            error_message=outcome.error,
            result=make_json_serializable(context.snapshot()),
        )
        if not finished:
            logger.warning(
                f"Execution {execution_id} is no longer running; "
                f"'{outcome.status}' not written"
            )
            return

        logger.info(
            f"Execution {execution_id} {outcome.status}",
            extra={"workflow_id": workflow_id, "error": outcome.error},
        )
        self._increment_counters(workflow_id, succeeded=outcome.status == ExecutionStatus.COMPLETED)

    def _current_status(self, execution_id: int) -> Optional[str]:
        return (
            self.db.query(Execution.status)
            .filter(Execution.id == execution_id)
            .scalar()
        )

    # ------------------------------------------------------------------
    # Graph walk
    # ------------------------------------------------------------------

    async def _walk(self, execution_id: int, graph: ActionGraph, context: ExecutionContext) -> RunOutcome:
        stack: List[ActionNode] = list(reversed(graph.roots()))

        while stack:
            node = stack.pop()

            status = self._current_status(execution_id)
            if status != ExecutionStatus.RUNNING:
                return RunOutcome(status)

            if not self.evaluator.evaluate(node.condition, context):
                logger.info(f"Action {node.id} ({node.action_type}) skipped: condition is false")
                self._record_step(execution_id, node, "skipped", context.snapshot())
                continue

            input_snapshot = context.snapshot()
            start_time = time.time()
            try:
                output = await self._execute_action(node, context)
            except Exception as e:
                elapsed = time.time() - start_time
                message = e.message if isinstance(e, AutomationException) else str(e)
                self._record_step(
                    execution_id, node, "failed", input_snapshot,
                    error_message=message, execution_time=elapsed,
                )

                if node.on_failure == "continue":
                    logger.warning(
                        f"Action {node.id} ({node.action_type}) failed, continuing: {message}"
                    )
                    continue

                logger.error(f"Action {node.id} ({node.action_type}) failed: {message}")
                return RunOutcome(
                    ExecutionStatus.FAILED,
                    error=f"Action {node.id} ({node.action_type}) failed: {message}",
                )

            context.record_output(node.id, output)
            self._record_step(
                execution_id, node, "success", input_snapshot,
                output_result=output, execution_time=time.time() - start_time,
            )
            stack.extend(reversed(graph.children(node.id)))

        return RunOutcome(ExecutionStatus.COMPLETED)

    async def _execute_action(self, node: ActionNode, context: ExecutionContext) -> Dict[str, Any]:
        executor = self.registry.get(node.action_type)

        try:
            output = await asyncio.wait_for(
                executor.execute(dict(node.config), context),
                timeout=node.timeout,
            )
        except asyncio.TimeoutError:
            raise ActionTimeoutError(
                f"Action timed out after {node.timeout}s",
                action_id=node.id,
                timeout_seconds=node.timeout,
            )

        if output is None:
            return {}
        if not isinstance(output, dict):
            return {"result": output}
        return output

    def _record_step(
        self,
        execution_id: int,
        node: ActionNode,
        status: str,
        input_context: Dict[str, Any],
        output_result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        execution_time: float = 0.0,
    ) -> None:
        step = ExecutionStep(
            execution_id=execution_id,
            action_id=node.id,
            action_type=node.action_type,
            status=status,
            input_context=make_json_serializable(input_context),
            output_result=make_json_serializable(output_result) if output_result is not None else None,
            error_message=error_message,
            execution_time=execution_time,
            timestamp=datetime.utcnow(),
        )
        try:
            self.db.add(step)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not record step for action {node.id} of execution {execution_id}: {e}")

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def _increment_counters(self, workflow_id: int, succeeded: Optional[bool]) -> None:
        """
        Atomic x = x + 1 on the workflow row.

        succeeded=None (cancelled run) only counts the execution. Runs after
        the terminal status is committed; a failure here never touches it.
        """
        values = {
            "execution_count": Workflow.execution_count + 1,
            "last_executed_at": datetime.utcnow(),
        }
        if succeeded is True:
            values["success_count"] = Workflow.success_count + 1
        elif succeeded is False:
            values["failure_count"] = Workflow.failure_count + 1

        try:
            self.db.execute(
                update(Workflow)
                .where(Workflow.id == workflow_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Counter update failed for workflow {workflow_id}: {e}")


async def dispatch_event(
    db: Session,
    event_type: str,
    payload: Optional[Dict[str, Any]] = None,
    registry: Optional[ActionRegistry] = None,
) -> List[Execution]:
    """
    Fire every active workflow whose first trigger listens to `event_type`.

    A failing workflow is logged and does not stop the others.
    """
    engine = WorkflowEngine(db, registry)
    workflows = (
        db.query(Workflow)
        .filter(Workflow.status == WorkflowStatus.ACTIVE)
        .order_by(Workflow.id)
        .all()
    )

    executions = []
    for workflow in workflows:
        trigger = workflow.triggers[0] if workflow.triggers else None
        if trigger is None or not trigger.is_active or trigger.trigger_type != TriggerType.EVENT:
            continue
        if (trigger.trigger_config or {}).get("event") != event_type:
            continue

        try:
            execution = await engine.fire(workflow.id, payload, TriggerType.EVENT)
        except Exception as e:
            logger.error(f"Event '{event_type}' could not fire workflow {workflow.id}: {e}")
            continue

        if execution is not None:
            executions.append(execution)

    logger.info(f"Event '{event_type}' fired {len(executions)} workflow(s)")
    return executions
