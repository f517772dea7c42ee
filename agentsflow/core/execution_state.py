"""
Execution and Workflow Lifecycle

All status changes go through compare-and-set UPDATEs so that concurrent
writers (engine, API, workers) can never move an execution out of a
terminal state or overwrite each other's transition.

    pending -> running -> {completed, failed, cancelled}
    pending -> cancelled
"""

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from .exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import Execution, Workflow
from ..models.execution import ExecutionStatus
from ..models.workflow import WorkflowStatus

logger = logging.getLogger(__name__)


def transition_execution(
    db: Session,
    execution_id: int,
    from_statuses: Iterable[str],
    to_status: str,
    **fields,
) -> bool:
    """
    Atomically move an execution to `to_status` if it is currently in one
    of `from_statuses`. Extra column values are written in the same UPDATE.

    Returns:
        True if this call performed the transition, False otherwise
        (row gone or already moved by someone else).
    """
    from_statuses = tuple(from_statuses)
    illegal = [s for s in from_statuses if s in ExecutionStatus.TERMINAL]
    if illegal:
        raise InvalidTransitionError(f"Cannot transition out of terminal status {illegal[0]}")

    result = db.execute(
        update(Execution)
        .where(Execution.id == execution_id)
        .where(Execution.status.in_(from_statuses))
        .values(status=to_status, **fields)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def get_execution(db: Session, execution_id: int) -> Execution:
    execution = db.query(Execution).filter(Execution.id == execution_id).first()
    if not execution:
        raise NotFoundError("Execution", execution_id)
    return execution


def cancel_execution(db: Session, execution_id: int) -> Execution:
    """
    Cancel a pending or running execution.

    A running engine notices the cancellation before its next action.

    Raises:
        NotFoundError: unknown execution
        InvalidTransitionError: execution already terminal
    """
    execution = get_execution(db, execution_id)

    cancelled = transition_execution(
        db,
        execution_id,
        ExecutionStatus.ACTIVE,
        ExecutionStatus.CANCELLED,
        completed_at=datetime.utcnow(),
        error_message="Cancelled",
    )
    db.refresh(execution)

    if not cancelled:
        raise InvalidTransitionError(
            f"Execution {execution_id} is already {execution.status}",
            current_status=execution.status,
        )

    logger.info(f"Execution {execution_id} cancelled")
    return execution


def delete_execution(db: Session, execution_id: int) -> None:
    """
    Delete a terminal execution (and its steps).

    Raises:
        InvalidTransitionError: execution is pending or running
    """
    execution = get_execution(db, execution_id)
    if not execution.is_terminal:
        raise InvalidTransitionError(
            f"Execution {execution_id} is {execution.status}; only terminal executions can be deleted",
            current_status=execution.status,
        )

    db.delete(execution)
    db.commit()
    logger.info(f"Execution {execution_id} deleted")


def set_workflow_status(db: Session, workflow_id: int, status: str) -> Workflow:
    """
    Change a workflow's status.

    Pausing or archiving blocks new fires; in-flight executions keep running.
    """
    if status not in WorkflowStatus.ALL:
        raise ValidationError(f"Invalid workflow status: '{status}'")

    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise NotFoundError("Workflow", workflow_id)

    previous = workflow.status
    workflow.status = status
    db.commit()
    db.refresh(workflow)

    logger.info(f"Workflow {workflow_id} status {previous} → {status}")
    return workflow


def delete_workflow(db: Session, workflow_id: int) -> None:
    """
    Delete a workflow with its triggers, actions and executions.

    In-flight executions go too; the engine treats their rows as vanished
    and stops without finalizing.
    """
    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise NotFoundError("Workflow", workflow_id)

    db.delete(workflow)
    db.commit()
    logger.info(f"Workflow {workflow_id} deleted")
