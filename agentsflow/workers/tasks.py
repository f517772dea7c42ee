"""
Celery Tasks for AgentsFlow

Main Tasks:
- process_pending_reminders_task: one reminder sweep (Celery beat, every 10 minutes)
- fire_workflow_task: fire a workflow outside the request cycle
- dispatch_event_task: fire every workflow listening to an event

Retry policy: errors carrying retry_allowed=False (validation, not found,
inactive workflow...) are reported and never retried. Anything else is
retried with exponential backoff.
"""

import asyncio
import logging
import os
from typing import Any, Dict, Optional

from .celery_app import celery_app
from ..database import get_db
from ..core.engine import WorkflowEngine, dispatch_event
from ..core.exceptions import AutomationException
from ..core.notifications.dispatcher import NotificationDispatcher
from ..core.sweeper import DEFAULT_CLAIM_LEASE_MINUTES, ReminderSweeper
from ..models.workflow import TriggerType

logger = logging.getLogger(__name__)

_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """One dispatcher per worker process"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


@celery_app.task(bind=True, name="process_pending_reminders_task")
def process_pending_reminders_task(self) -> Dict[str, Any]:
    """
    Run one reminder sweep.

    Not retried: the next beat tick picks up whatever is still pending.
    """
    task_id = self.request.id
    lease_minutes = int(os.getenv("REMINDER_CLAIM_LEASE_MINUTES", DEFAULT_CLAIM_LEASE_MINUTES))

    with get_db() as db:
        sweeper = ReminderSweeper(db, get_dispatcher(), worker_id=f"celery-{task_id}" if task_id else None)
        recovered = sweeper.recover_stale_claims(lease_minutes=lease_minutes)
        processed = sweeper.process_pending()

    logger.info(f"Task {task_id}: sweep done, processed={processed}, recovered={recovered}")
    return {"processed": processed, "recovered": recovered}


@celery_app.task(
    bind=True,
    name="fire_workflow_task",
    max_retries=3,
    default_retry_delay=60,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def fire_workflow_task(
    self,
    workflow_id: int,
    payload: Optional[Dict[str, Any]] = None,
    trigger_type: str = TriggerType.MANUAL,
) -> Dict[str, Any]:
    """
    Fire a workflow and run it to completion.

    Returns:
        {"execution_id": 12, "status": "completed", "error": None}
        or {"execution_id": None, "status": "rejected", "error": "..."} for
        fires the workflow refuses (never retried)
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: firing workflow {workflow_id} ({trigger_type})")

    try:
        with get_db() as db:
            engine = WorkflowEngine(db)
            execution = asyncio.run(engine.fire(workflow_id, payload or {}, trigger_type))

            if execution is None:
                return {"execution_id": None, "status": "vanished", "error": None}

            return {
                "execution_id": execution.id,
                "status": execution.status,
                "error": execution.error_message,
            }

    except AutomationException as e:
        if not e.retry_allowed:
            logger.error(f"Task {task_id}: workflow {workflow_id} rejected: {e.message}")
            return {"execution_id": None, "status": "rejected", "error": e.message}

        logger.warning(f"Task {task_id}: retrying after {type(e).__name__}: {e.message}")
        raise self.retry(exc=e)

    except Exception as e:
        logger.exception(f"Task {task_id}: unexpected error: {e}")
        raise self.retry(exc=e)


@celery_app.task(bind=True, name="dispatch_event_task")
def dispatch_event_task(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    with get_db() as db:
        executions = asyncio.run(dispatch_event(db, event_type, payload or {}))
        result = {
            "event_type": event_type,
            "executions": [{"execution_id": e.id, "status": e.status} for e in executions],
        }

    logger.info(f"Task {self.request.id}: event '{event_type}' fired {len(result['executions'])} workflow(s)")
    return result
