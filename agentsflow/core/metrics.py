"""
Metrics Collection for AgentsFlow

Provides system health metrics including:
- Workflow execution statistics and error rate
- Reminder queue statistics (due, processing, sent, failed)
- Delivery channel health (circuit breaker status)
- Database connectivity
"""

import logging
import time
from typing import Dict, Any
from datetime import datetime, timedelta

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from ..models import AppointmentReminder, Execution, Workflow
from ..models.execution import ExecutionStatus
from ..models.reminder import ReminderStatus
from ..models.workflow import WorkflowStatus
from .circuit_breaker import CHANNEL_BREAKERS, CircuitBreakerState

logger = logging.getLogger(__name__)

# Error rate (%) above which the system is reported unhealthy
ERROR_RATE_THRESHOLD = 50.0


class MetricsCollector:
    """Collects metrics from the database and the channel breakers."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get_execution_stats(self, hours: int = 24) -> Dict[str, Any]:
        """
        Execution counts by status over the last `hours`.

        Returns:
            total, completed, failed, cancelled, in_progress, success_rate
        """
        try:
            since = datetime.utcnow() - timedelta(hours=hours)

            stats = self.db_session.query(
                Execution.status,
                func.count(Execution.id).label("count")
            ).filter(
                Execution.created_at >= since
            ).group_by(Execution.status).all()

            result = {
                "total": 0,
                "completed": 0,
                "failed": 0,
                "cancelled": 0,
                "in_progress": 0,
                "success_rate": 0.0
            }

            for status, count in stats:
                result["total"] += count
                if status in ExecutionStatus.ACTIVE:
                    result["in_progress"] += count
                elif status in result:
                    result[status] = count

            if result["total"] > 0:
                result["success_rate"] = round(result["completed"] / result["total"] * 100, 2)

            return result

        except Exception as e:
            logger.error(f"Failed to get execution stats: {e}")
            return {"total": 0, "success_rate": 0.0, "error": str(e)}

    def get_error_rate(self, hours: int = 1) -> Dict[str, Any]:
        try:
            since = datetime.utcnow() - timedelta(hours=hours)

            total = self.db_session.query(func.count(Execution.id)).filter(
                Execution.created_at >= since
            ).scalar() or 0

            failed = self.db_session.query(func.count(Execution.id)).filter(
                Execution.created_at >= since,
                Execution.status == ExecutionStatus.FAILED,
            ).scalar() or 0

            return {
                "period_hours": hours,
                "total_executions": total,
                "failed_executions": failed,
                "error_rate": round(failed / total * 100, 2) if total > 0 else 0.0
            }

        except Exception as e:
            logger.error(f"Failed to get error rate: {e}")
            return {"period_hours": hours, "error_rate": 0.0, "error": str(e)}

    def get_reminder_stats(self) -> Dict[str, Any]:
        """
        Reminder queue state.

        overdue counts pending reminders whose fire time has already passed,
        i.e. work the next sweep will pick up.
        """
        try:
            now = datetime.utcnow()

            by_status = dict(
                self.db_session.query(
                    AppointmentReminder.status,
                    func.count(AppointmentReminder.id)
                ).group_by(AppointmentReminder.status).all()
            )

            overdue = self.db_session.query(func.count(AppointmentReminder.id)).filter(
                AppointmentReminder.status == ReminderStatus.PENDING,
                AppointmentReminder.fire_at <= now,
            ).scalar() or 0

            oldest_due = self.db_session.query(func.min(AppointmentReminder.fire_at)).filter(
                AppointmentReminder.status == ReminderStatus.PENDING,
                AppointmentReminder.fire_at <= now,
            ).scalar()

            return {
                "pending": by_status.get(ReminderStatus.PENDING, 0),
                "processing": by_status.get(ReminderStatus.PROCESSING, 0),
                "sent": by_status.get(ReminderStatus.SENT, 0),
                "failed": by_status.get(ReminderStatus.FAILED, 0),
                "cancelled": by_status.get(ReminderStatus.CANCELLED, 0),
                "overdue": overdue,
                "max_lag_seconds": round((now - oldest_due).total_seconds(), 1) if oldest_due else 0.0,
            }

        except Exception as e:
            logger.error(f"Failed to get reminder stats: {e}")
            return {"overdue": 0, "error": str(e)}

    def get_channel_status(self) -> Dict[str, Any]:
        channels = {}
        for name, breaker in CHANNEL_BREAKERS.items():
            status = breaker.get_status()
            channels[name] = {
                "state": status["state"],
                "failure_count": status["failure_count"],
                "failure_threshold": status["failure_threshold"],
                "is_healthy": status["state"] == CircuitBreakerState.CLOSED,
            }
        return channels

    def get_workflow_stats(self) -> Dict[str, Any]:
        try:
            by_status = dict(
                self.db_session.query(
                    Workflow.status,
                    func.count(Workflow.id)
                ).group_by(Workflow.status).all()
            )
            return {
                "total_workflows": sum(by_status.values()),
                "active_workflows": by_status.get(WorkflowStatus.ACTIVE, 0),
                "by_status": by_status,
            }

        except Exception as e:
            logger.error(f"Failed to get workflow stats: {e}")
            return {"total_workflows": 0, "active_workflows": 0, "error": str(e)}

    def get_database_health(self) -> Dict[str, Any]:
        try:
            start = time.time()
            self.db_session.execute(text("SELECT 1")).fetchone()
            return {
                "connected": True,
                "response_time_ms": round((time.time() - start) * 1000, 2)
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"connected": False, "response_time_ms": None, "error": str(e)}

    def get_all_metrics(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "executions": self.get_execution_stats(hours=24),
            "error_rate": self.get_error_rate(hours=1),
            "reminders": self.get_reminder_stats(),
            "channels": self.get_channel_status(),
            "workflows": self.get_workflow_stats(),
            "database": self.get_database_health()
        }


def check_system_health(db_session: Session) -> Dict[str, Any]:
    """
    Overall health summary.

    Returns:
        healthy: True if no issues were found
        components: health flag per component
        issues: human-readable problems
        metrics: the full metrics payload
    """
    metrics = MetricsCollector(db_session).get_all_metrics()

    issues = []
    components = {}

    components["database"] = metrics["database"]["connected"]
    if not metrics["database"]["connected"]:
        issues.append("Database connection failed")

    for name, channel in metrics["channels"].items():
        components[f"channel_{name}"] = channel["is_healthy"]
        if not channel["is_healthy"]:
            issues.append(f"{name} delivery circuit breaker is {channel['state']}")

    error_rate = metrics["error_rate"]["error_rate"]
    if error_rate > ERROR_RATE_THRESHOLD:
        issues.append(f"High execution error rate: {error_rate}%")

    return {
        "healthy": len(issues) == 0,
        "components": components,
        "issues": issues,
        "metrics": metrics,
    }
