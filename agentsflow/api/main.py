"""
FastAPI main application
REST boundary of the automation core: trigger source, reminder scheduling,
manual sweeps, execution inspection and health.
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List
import os
import logging
import uuid

from ..database import get_db_session
from ..models import Appointment, Workflow
from ..core.engine import WorkflowEngine, dispatch_event
from ..core.action_graph import replace_workflow_actions
from ..core.execution_state import (
    cancel_execution,
    delete_execution,
    delete_workflow,
    get_execution,
    set_workflow_status,
)
from ..core.exceptions import (
    AutomationException,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    WorkflowNotActiveError,
)
from ..core.logging_config import setup_logging, set_correlation_id, clear_correlation_id
from ..core.notifications.dispatcher import NotificationDispatcher
from ..core.notifications.templates import default_catalog
from ..core.reminder_scheduler import ReminderScheduler
from ..core.sweeper import DEFAULT_CLAIM_LEASE_MINUTES, ReminderSweeper
from .schemas import (
    ActionResponse,
    AppointmentRemindersResponse,
    EventRequest,
    EventResponse,
    ExecutionDetailResponse,
    ExecutionResponse,
    FireRequest,
    MessageResponse,
    RejectedReminder,
    ReplaceActionsRequest,
    ScheduleRemindersRequest,
    ScheduleResponse,
    SweepResponse,
    TaskQueuedResponse,
    TemplateResponse,
    TestNotificationRequest,
    TestNotificationResponse,
    WorkflowResponse,
    WorkflowStatusUpdate,
)

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI APP CONFIGURATION
# ============================================================================

app = FastAPI(
    title="AgentsFlow Automation API",
    description="""
Workflow automation engine and appointment reminder scheduler.

- **POST /workflows/{id}/fire** runs a workflow for a trigger payload
- **POST /events/{event_type}** fires every workflow listening to an event
- **POST /appointments/{id}/reminders** schedules reminders at exact lead times
- **POST /reminders/process** runs one reminder sweep (normally done by Celery beat)
    """,
    version="0.1.0",
    openapi_tags=[
        {"name": "health", "description": "Health checks and metrics"},
        {"name": "workflows", "description": "Workflow status, actions and trigger fires"},
        {"name": "executions", "description": "Execution inspection and lifecycle"},
        {"name": "reminders", "description": "Appointment reminders and notification logs"},
    ]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db():
    """Dependency for database session"""
    db = get_db_session()
    try:
        yield db
    finally:
        db.close()


_dispatcher = None


def get_dispatcher() -> NotificationDispatcher:
    """Dependency for the notification dispatcher (one per process)"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


# ============================================================================
# MIDDLEWARE - Request ID Tracking
# ============================================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag every log line of a request with its X-Request-ID"""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    set_correlation_id(request_id)

    logger.info(
        f"{request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(f"Response {response.status_code}", extra={"status_code": response.status_code})
        return response

    except Exception as e:
        logger.exception("Unhandled exception in request", extra={"error": str(e)})
        raise

    finally:
        clear_correlation_id()


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _status_for(exc: AutomationException) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, (WorkflowNotActiveError, InvalidTransitionError)):
        return 409
    return 500


@app.exception_handler(AutomationException)
async def automation_exception_handler(request, exc: AutomationException):
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.message,
            "type": type(exc).__name__,
            "status_code": status_code
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code
        }
    )


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/health", tags=["health"], summary="Health check (lightweight)")
def health_check():
    return {
        "status": "healthy",
        "service": "AgentsFlow Automation API",
        "version": "0.1.0"
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
def detailed_health_check(db: Session = Depends(get_db)):
    from ..core.metrics import check_system_health

    health = check_system_health(db)
    if health["healthy"]:
        logger.info("System health check: HEALTHY")
    else:
        logger.warning("System health check: UNHEALTHY", extra={"issues": health["issues"]})
    return health


@app.get("/metrics", tags=["health"], summary="System metrics")
def get_metrics(db: Session = Depends(get_db)):
    from ..core.metrics import MetricsCollector

    metrics = MetricsCollector(db).get_all_metrics()
    logger.info(
        "Metrics collected",
        extra={
            "success_rate": metrics["executions"].get("success_rate"),
            "overdue_reminders": metrics["reminders"].get("overdue"),
        }
    )
    return metrics


# ============================================================================
# WORKFLOWS
# ============================================================================

@app.get("/workflows/{workflow_id}", response_model=WorkflowResponse, tags=["workflows"])
def get_workflow(workflow_id: int, db: Session = Depends(get_db)):
    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise NotFoundError("Workflow", workflow_id)
    return workflow


@app.put("/workflows/{workflow_id}/status", response_model=WorkflowResponse, tags=["workflows"])
def update_workflow_status(workflow_id: int, body: WorkflowStatusUpdate, db: Session = Depends(get_db)):
    return set_workflow_status(db, workflow_id, body.status)


@app.delete("/workflows/{workflow_id}", response_model=MessageResponse, tags=["workflows"])
def remove_workflow(workflow_id: int, db: Session = Depends(get_db)):
    delete_workflow(db, workflow_id)
    return {"message": f"Workflow {workflow_id} deleted"}


@app.put("/workflows/{workflow_id}/actions", response_model=List[ActionResponse], tags=["workflows"])
def replace_actions(workflow_id: int, body: ReplaceActionsRequest, db: Session = Depends(get_db)):
    """Replace the workflow's whole action tree atomically"""
    return replace_workflow_actions(db, workflow_id, body.actions)


@app.post("/workflows/{workflow_id}/fire", tags=["workflows"], status_code=200)
async def fire_workflow(workflow_id: int, body: FireRequest, db: Session = Depends(get_db)):
    """
    Fire a workflow.

    Inline by default (returns the finished Execution). With
    async_execution=true the fire is queued on Celery and a task id is
    returned with HTTP 202.
    """
    if body.async_execution:
        from ..workers.tasks import fire_workflow_task

        task = fire_workflow_task.delay(workflow_id, body.payload, body.trigger_type)
        logger.info(f"Workflow {workflow_id} queued as task {task.id}")
        return JSONResponse(status_code=202, content=TaskQueuedResponse(task_id=task.id).model_dump())

    engine = WorkflowEngine(db)
    execution = await engine.fire(workflow_id, body.payload, body.trigger_type)
    if execution is None:
        raise HTTPException(status_code=410, detail="Execution was deleted while running")
    return ExecutionResponse.model_validate(execution)


@app.post("/events/{event_type}", response_model=EventResponse, tags=["workflows"])
async def fire_event(event_type: str, body: EventRequest, db: Session = Depends(get_db)):
    executions = await dispatch_event(db, event_type, body.payload)
    return {"event_type": event_type, "executions": executions}


# ============================================================================
# EXECUTIONS
# ============================================================================

@app.get("/executions/{execution_id}", response_model=ExecutionDetailResponse, tags=["executions"])
def read_execution(execution_id: int, db: Session = Depends(get_db)):
    return get_execution(db, execution_id)


@app.post("/executions/{execution_id}/cancel", response_model=ExecutionResponse, tags=["executions"])
def cancel(execution_id: int, db: Session = Depends(get_db)):
    return cancel_execution(db, execution_id)


@app.delete("/executions/{execution_id}", response_model=MessageResponse, tags=["executions"])
def remove_execution(execution_id: int, db: Session = Depends(get_db)):
    delete_execution(db, execution_id)
    return {"message": f"Execution {execution_id} deleted"}


# ============================================================================
# REMINDERS
# ============================================================================

@app.post("/appointments/{appointment_id}/reminders", response_model=ScheduleResponse, tags=["reminders"])
def schedule_reminders(appointment_id: int, body: ScheduleRemindersRequest, db: Session = Depends(get_db)):
    scheduler = ReminderScheduler(db)
    if body.reminders is None:
        result = scheduler.schedule_defaults(appointment_id)
    else:
        result = scheduler.schedule(appointment_id, body.reminders)
    return {
        "scheduled": result.scheduled,
        "rejected": [RejectedReminder(index=e.index, error=e.message) for e in result.rejected],
        "superseded": result.superseded,
    }


@app.get("/appointments/{appointment_id}/reminders", response_model=AppointmentRemindersResponse, tags=["reminders"])
def list_reminders(appointment_id: int, db: Session = Depends(get_db)):
    """Reminders, delivery history and available templates of an appointment"""
    if not db.query(Appointment.id).filter(Appointment.id == appointment_id).first():
        raise NotFoundError("Appointment", appointment_id)

    scheduler = ReminderScheduler(db)
    return {
        "appointment_id": appointment_id,
        "reminders": scheduler.get_appointment_reminders(appointment_id),
        "logs": scheduler.get_notification_logs(appointment_id),
        "templates": {
            "email": default_catalog.get_templates_by_type("email"),
            "sms": default_catalog.get_templates_by_type("sms"),
        },
    }


@app.delete("/appointments/{appointment_id}/reminders", response_model=MessageResponse, tags=["reminders"])
def cancel_reminders(appointment_id: int, db: Session = Depends(get_db)):
    count = ReminderScheduler(db).cancel_appointment_reminders(appointment_id)
    return {"message": f"Cancelled {count} pending reminder(s)"}


@app.post("/appointments/{appointment_id}/cancel", response_model=MessageResponse, tags=["reminders"])
def cancel_appointment(appointment_id: int, db: Session = Depends(get_db)):
    count = ReminderScheduler(db).cancel_appointment(appointment_id)
    return {"message": f"Appointment {appointment_id} cancelled ({count} reminder(s) cancelled)"}


@app.post("/reminders/process", response_model=SweepResponse, tags=["reminders"])
def process_reminders(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Run one sweep now (same work as the periodic Celery task)"""
    sweeper = ReminderSweeper(db, dispatcher)
    lease_minutes = int(os.getenv("REMINDER_CLAIM_LEASE_MINUTES", DEFAULT_CLAIM_LEASE_MINUTES))
    recovered = sweeper.recover_stale_claims(lease_minutes=lease_minutes)
    processed = sweeper.process_pending()
    return {"processed": processed, "recovered": recovered}


@app.get("/templates/{channel}", response_model=List[TemplateResponse], tags=["reminders"])
def list_templates(channel: str):
    if channel not in ("email", "sms"):
        raise HTTPException(status_code=404, detail=f"Unknown channel '{channel}'")
    return default_catalog.get_templates_by_type(channel)


@app.post("/notifications/test", response_model=TestNotificationResponse, tags=["reminders"])
def send_test_notification(
    body: TestNotificationRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send one template with sample values, prefixed with [TEST]"""
    template = default_catalog.get_template(body.template_id)
    if template.channel != body.channel:
        raise ValidationError(f"Template '{body.template_id}' is a {template.channel} template")

    sample = {
        "lead_name": "Test User",
        "appointment_title": "Test Appointment",
        "appointment_datetime": datetime.utcnow().strftime("%B %d, %Y %I:%M %p"),
        "appointment_time": datetime.utcnow().strftime("%I:%M %p"),
        "appointment_duration": "30",
        "meeting_link_section": "",
        "meeting_link_short": "",
        "company_name": os.getenv("COMPANY_NAME", "AgentsFlowAI"),
    }
    rendered = default_catalog.render(body.template_id, sample)
    result = dispatcher.send_test_notification(body.channel, body.recipient, rendered)
    return {"success": result.success, "error": result.error}
