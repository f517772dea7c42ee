"""
Celery Application Configuration for AgentsFlow

Architecture:
- Message Broker: Redis
- Result Backend: Redis
- Beat: runs the reminder sweep on a fixed interval

Queues:
- workflows: asynchronous workflow fires and event dispatch
- reminders: periodic reminder sweeps (kept apart so a backlog of
  workflow runs never delays reminder delivery)
"""

import os
import logging
from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv
from kombu import Queue, Exchange
from ..core.logging_config import setup_logging

load_dotenv()

setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "true").lower() == "true",  # Default to JSON in workers
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL")
if not REDIS_URL:
    raise ValueError(
        "REDIS_URL environment variable not set. "
        "Required for Celery message broker and result backend."
    )

REMINDER_SWEEP_MINUTES = int(os.getenv("REMINDER_SWEEP_MINUTES", "10"))

celery_app = Celery("agentsflow")

celery_app.conf.update(
    # ============================================================================
    # BROKER & BACKEND
    # ============================================================================
    broker_url=REDIS_URL,
    result_backend=REDIS_URL,
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,

    # ============================================================================
    # SERIALIZATION
    # ============================================================================
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    timezone="UTC",
    enable_utc=True,

    # ============================================================================
    # TASK EXECUTION
    # ============================================================================
    task_track_started=True,

    # Acknowledge tasks AFTER execution (ensures no lost tasks)
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    task_time_limit=600,  # Hard limit: 10 minutes
    task_soft_time_limit=540,

    result_expires=86400,  # 24 hours

    # ============================================================================
    # TASK ROUTING
    # ============================================================================
    task_default_queue="workflows",
    task_default_exchange="workflows",
    task_default_routing_key="workflow.execute",

    task_queues=(
        Queue(
            "workflows",
            Exchange("workflows"),
            routing_key="workflow.execute",
        ),
        Queue(
            "reminders",
            Exchange("reminders"),
            routing_key="reminders.sweep",
        ),
    ),

    task_routes={
        "fire_workflow_task": {"queue": "workflows", "routing_key": "workflow.execute"},
        "dispatch_event_task": {"queue": "workflows", "routing_key": "workflow.execute"},
        "process_pending_reminders_task": {"queue": "reminders", "routing_key": "reminders.sweep"},
    },

    # ============================================================================
    # WORKER CONFIGURATION
    # ============================================================================
    worker_pool="prefork",
    worker_concurrency=2,
    worker_max_tasks_per_child=1000,

    worker_send_task_events=True,
    task_send_sent_event=True,

    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
)

# ============================================================================
# BEAT SCHEDULE (Periodic Tasks)
# ============================================================================
# Overlapping sweeps are safe: reminders are claimed atomically

celery_app.conf.beat_schedule = {
    "process-pending-reminders": {
        "task": "process_pending_reminders_task",
        "schedule": crontab(minute=f"*/{REMINDER_SWEEP_MINUTES}"),
        "options": {"queue": "reminders"},
    },
}

logger.info("Celery app configured successfully")
logger.info(f"Broker: {REDIS_URL.split('@')[1] if '@' in REDIS_URL else 'configured'}")
logger.info(f"Reminder sweep every {REMINDER_SWEEP_MINUTES} minute(s)")

# This import MUST come AFTER celery_app is configured
from . import tasks  # noqa: F401, E402
