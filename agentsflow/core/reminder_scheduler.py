"""
Reminder Scheduler

Turns an appointment and a list of reminder configs into pending
AppointmentReminder rows with exact fire times:

    fire_at = appointment.scheduled_at - offset(timing)

    24h    -> 1440 minutes
    1h     -> 60 minutes
    15m    -> 15 minutes
    custom -> custom_minutes (required, > 0)

Rules:
- A malformed config (unknown timing, bad custom_minutes, unknown template)
  rejects the whole call before anything is written.
- A config whose fire_at is not in the future is rejected on its own
  (StaleScheduleError in ScheduleResult.rejected); the others are scheduled.
- Rescheduling cancels every still-pending reminder of the appointment in
  the same transaction, so pending duplicates never coexist.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from .exceptions import (
    InvalidReminderConfigError,
    NotFoundError,
    StaleScheduleError,
    ValidationError,
)
from .notifications.templates import TemplateCatalog, default_catalog
from ..models import Appointment, AppointmentReminder, NotificationLog
from ..models.appointment import AppointmentStatus
from ..models.reminder import ReminderStatus, ReminderTiming

logger = logging.getLogger(__name__)

TIMING_OFFSETS_MINUTES = {
    ReminderTiming.DAY: 1440,
    ReminderTiming.HOUR: 60,
    ReminderTiming.QUARTER: 15,
}


class ReminderConfig(BaseModel):
    """One requested reminder. Accepts camelCase keys from API clients."""

    enabled: bool = True
    timing: str
    custom_minutes: Optional[int] = Field(None, alias="customMinutes")
    template_id: str = Field(..., alias="templateId", min_length=1)

    class Config:
        populate_by_name = True
        frozen = True


# Reminder set given to an appointment when the caller names none
DEFAULT_REMINDER_CONFIGS = [
    ReminderConfig(timing=ReminderTiming.DAY, template_id="appointment_reminder_24h"),
    ReminderConfig(timing=ReminderTiming.HOUR, template_id="appointment_reminder_1h"),
    ReminderConfig(timing=ReminderTiming.HOUR, template_id="appointment_reminder_sms_1h"),
    ReminderConfig(timing=ReminderTiming.QUARTER, template_id="appointment_reminder_sms_15m"),
]


@dataclass
class ScheduleResult:
    scheduled: List[AppointmentReminder] = field(default_factory=list)
    rejected: List[StaleScheduleError] = field(default_factory=list)
    superseded: int = 0


def compute_offset(timing: str, custom_minutes: Optional[int] = None) -> timedelta:
    """
    Lead time of a reminder before its appointment.

    Raises:
        InvalidReminderConfigError: unknown timing, or custom without a positive custom_minutes
    """
    if timing == ReminderTiming.CUSTOM:
        if custom_minutes is None:
            raise InvalidReminderConfigError("custom_minutes is required for custom timing")
        if custom_minutes <= 0:
            raise InvalidReminderConfigError(
                f"custom_minutes must be positive, got {custom_minutes}"
            )
        return timedelta(minutes=custom_minutes)

    if timing not in TIMING_OFFSETS_MINUTES:
        raise InvalidReminderConfigError(
            f"Unknown timing '{timing}'. Valid timings: {list(ReminderTiming.ALL)}"
        )
    return timedelta(minutes=TIMING_OFFSETS_MINUTES[timing])


def to_utc_naive(value: datetime) -> datetime:
    """Columns hold naive UTC; aware datetimes are converted"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ReminderScheduler:
    """
    Example:
        >>> scheduler = ReminderScheduler(db)
        >>> result = scheduler.schedule(42, [
        ...     {"timing": "24h", "template_id": "appointment_reminder_24h"},
        ...     {"timing": "1h", "template_id": "appointment_reminder_sms_1h"},
        ... ])
        >>> [(r.channel, r.fire_at) for r in result.scheduled]
    """

    def __init__(self, db_session: Session, templates: Optional[TemplateCatalog] = None):
        self.db = db_session
        self.templates = templates or default_catalog

    def validate_configs(self, configs: List[Any]) -> List[ReminderConfig]:
        """
        Parse and check every config; nothing is written.

        Raises:
            InvalidReminderConfigError: with .index set to the offending entry
        """
        parsed = []
        for index, raw in enumerate(configs):
            try:
                config = raw if isinstance(raw, ReminderConfig) else ReminderConfig(**raw)
            except PydanticValidationError as e:
                error = e.errors()[0]
                location = ".".join(str(part) for part in error.get("loc", ()))
                raise InvalidReminderConfigError(
                    f"Reminder config {index}: {location} {error['msg']}".strip(), index=index
                )
            except TypeError:
                raise InvalidReminderConfigError(
                    f"Reminder config {index}: expected an object", index=index
                )

            try:
                compute_offset(config.timing, config.custom_minutes)
            except InvalidReminderConfigError as e:
                raise InvalidReminderConfigError(f"Reminder config {index}: {e.message}", index=index)

            if not self.templates.has_template(config.template_id):
                raise InvalidReminderConfigError(
                    f"Reminder config {index}: template '{config.template_id}' not found", index=index
                )

            parsed.append(config)
        return parsed

    def schedule(self, appointment_id: int, configs: List[Any], now: Optional[datetime] = None) -> ScheduleResult:
        """
        Replace the appointment's pending reminders with the given set.

        Raises:
            InvalidReminderConfigError: malformed config (nothing changed)
            NotFoundError: unknown appointment
            ValidationError: appointment is cancelled
        """
        now = to_utc_naive(now or datetime.utcnow())
        parsed = self.validate_configs(configs)

        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFoundError("Appointment", appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED:
            raise ValidationError(f"Appointment {appointment_id} is cancelled; reminders cannot be scheduled")

        scheduled_at = to_utc_naive(appointment.scheduled_at)
        result = ScheduleResult()

        try:
            result.superseded = self._cancel_pending(appointment_id)

            for index, config in enumerate(parsed):
                if not config.enabled:
                    continue

                fire_at = scheduled_at - compute_offset(config.timing, config.custom_minutes)
                if fire_at <= now:
                    result.rejected.append(StaleScheduleError(
                        f"Reminder config {index} ({config.timing}) would fire at "
                        f"{fire_at.isoformat()}, which is not after {now.isoformat()}",
                        index=index,
                    ))
                    continue

                template = self.templates.get_template(config.template_id)
                reminder = AppointmentReminder(
                    appointment_id=appointment_id,
                    enabled=True,
                    timing=config.timing,
                    custom_minutes=config.custom_minutes if config.timing == ReminderTiming.CUSTOM else None,
                    template_id=config.template_id,
                    channel=template.channel,
                    fire_at=fire_at,
                    status=ReminderStatus.PENDING,
                )
                self.db.add(reminder)
                result.scheduled.append(reminder)

            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        for reminder in result.scheduled:
            self.db.refresh(reminder)

        logger.info(
            f"Scheduled {len(result.scheduled)} reminder(s) for appointment {appointment_id}",
            extra={
                "appointment_id": appointment_id,
                "superseded": result.superseded,
                "rejected": len(result.rejected),
            },
        )
        return result

    def schedule_defaults(self, appointment_id: int, now: Optional[datetime] = None) -> ScheduleResult:
        """Schedule DEFAULT_REMINDER_CONFIGS; lead times already past are rejected as usual"""
        return self.schedule(appointment_id, DEFAULT_REMINDER_CONFIGS, now=now)

    def _cancel_pending(self, appointment_id: int) -> int:
        result = self.db.execute(
            update(AppointmentReminder)
            .where(AppointmentReminder.appointment_id == appointment_id)
            .where(AppointmentReminder.status == ReminderStatus.PENDING)
            .values(status=ReminderStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def cancel_appointment_reminders(self, appointment_id: int) -> int:
        """Cancel every still-pending reminder of an appointment"""
        try:
            count = self._cancel_pending(appointment_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Cancelled {count} pending reminder(s) for appointment {appointment_id}")
        return count

    def cancel_appointment(self, appointment_id: int) -> int:
        """
        Mark an appointment cancelled and cascade to its pending reminders,
        in one transaction. Returns the number of reminders cancelled.
        """
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFoundError("Appointment", appointment_id)

        try:
            appointment.status = AppointmentStatus.CANCELLED
            self.db.flush()
            count = self._cancel_pending(appointment_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Appointment {appointment_id} cancelled ({count} reminder(s) cancelled)")
        return count

    def get_appointment_reminders(self, appointment_id: int) -> List[AppointmentReminder]:
        """All reminders of an appointment, earliest first"""
        return (
            self.db.query(AppointmentReminder)
            .filter(AppointmentReminder.appointment_id == appointment_id)
            .order_by(AppointmentReminder.fire_at.asc(), AppointmentReminder.id.asc())
            .all()
        )

    def get_notification_logs(self, appointment_id: int) -> List[NotificationLog]:
        """Delivery history of an appointment, newest first"""
        return (
            self.db.query(NotificationLog)
            .filter(NotificationLog.appointment_id == appointment_id)
            .order_by(NotificationLog.sent_at.desc(), NotificationLog.id.desc())
            .all()
        )
