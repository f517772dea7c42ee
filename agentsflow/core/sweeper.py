"""
Due-Work Sweeper

Delivers reminders whose fire time has passed. Invoked every few minutes
by Celery beat (or POST /reminders/process) and safe to run concurrently:

- select:  status = pending AND fire_at <= now, ordered by (fire_at, id)
- claim:   UPDATE ... SET status = 'processing' WHERE id = :id AND status = 'pending'
           rowcount 0 means another sweep owns it (ConcurrentClaimConflict, no-op)
- dedup:   a reminder that already has a 'sent' log is marked sent without delivery
- deliver: render, send with a bounded timeout, then write one NotificationLog
           and the final status (sent | failed) in the same commit

failed is terminal. One reminder failing never stops the rest of the batch.
"""

import logging
import socket
import uuid
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .exceptions import ConcurrentClaimConflict, DeliveryError, TemplateNotFoundError
from .logging_config import clear_correlation_id, get_correlation_id, set_correlation_id
from .notifications.dispatcher import NotificationDispatcher
from .notifications.templates import TemplateCatalog, build_appointment_variables, default_catalog
from .reminder_scheduler import to_utc_naive
from ..models import Appointment, AppointmentReminder, NotificationLog
from ..models.appointment import AppointmentStatus
from ..models.reminder import ReminderStatus

logger = logging.getLogger(__name__)

DEFAULT_CLAIM_LEASE_MINUTES = 30


class ReminderSweeper:
    """
    Example:
        >>> sweeper = ReminderSweeper(db, NotificationDispatcher())
        >>> sweeper.process_pending()
        3
    """

    def __init__(
        self,
        db_session: Session,
        dispatcher: NotificationDispatcher,
        templates: Optional[TemplateCatalog] = None,
        worker_id: Optional[str] = None,
    ):
        self.db = db_session
        self.dispatcher = dispatcher
        self.templates = templates or default_catalog
        self.worker_id = worker_id or f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def select_due(self, now: datetime) -> List[int]:
        """Ids of pending reminders due at `now`, earliest first"""
        rows = (
            self.db.query(AppointmentReminder.id)
            .filter(AppointmentReminder.status == ReminderStatus.PENDING)
            .filter(AppointmentReminder.fire_at <= now)
            .order_by(AppointmentReminder.fire_at.asc(), AppointmentReminder.id.asc())
            .all()
        )
        return [row.id for row in rows]

    def process_pending(self, now: Optional[datetime] = None) -> int:
        """
        Run one sweep.

        Returns:
            Number of reminders that reached sent or failed in this sweep
        """
        now = to_utc_naive(now or datetime.utcnow())

        previous_correlation_id = get_correlation_id()
        set_correlation_id(f"sweep-{uuid.uuid4().hex[:12]}")
        try:
            due_ids = self.select_due(now)
            logger.info(f"Sweep found {len(due_ids)} due reminder(s)", extra={"worker_id": self.worker_id})
            return self.process_batch(due_ids, now)
        finally:
            if previous_correlation_id:
                set_correlation_id(previous_correlation_id)
            else:
                clear_correlation_id()

    def process_batch(self, reminder_ids: Iterable[int], now: datetime) -> int:
        processed = 0
        errors = 0

        for reminder_id in reminder_ids:
            try:
                outcome = self.process_one(reminder_id, now)
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.exception(f"Reminder {reminder_id} could not be processed: {e}")
                continue

            if outcome in (ReminderStatus.SENT, ReminderStatus.FAILED):
                processed += 1

        logger.info(
            f"Sweep processed {processed} reminder(s)",
            extra={"processed": processed, "errors": errors, "worker_id": self.worker_id},
        )
        return processed

    # ------------------------------------------------------------------
    # One reminder
    # ------------------------------------------------------------------

    def claim(self, reminder_id: int, now: datetime) -> None:
        """
        Atomic pending → processing transition.

        Raises:
            ConcurrentClaimConflict: the reminder is no longer pending
        """
        result = self.db.execute(
            update(AppointmentReminder)
            .where(AppointmentReminder.id == reminder_id)
            .where(AppointmentReminder.status == ReminderStatus.PENDING)
            .values(status=ReminderStatus.PROCESSING, claimed_by=self.worker_id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount != 1:
            raise ConcurrentClaimConflict(reminder_id)

    def process_one(self, reminder_id: int, now: datetime) -> Optional[str]:
        """
        Claim and deliver one reminder.

        Returns:
            Final status written by this call, or None if another sweep owns it
        """
        try:
            self.claim(reminder_id, now)
        except ConcurrentClaimConflict:
            logger.debug(f"Reminder {reminder_id} already claimed elsewhere, skipping")
            return None

        reminder = self.db.query(AppointmentReminder).filter(AppointmentReminder.id == reminder_id).first()
        if reminder is None:
            # Appointment deleted between claim and load
            return None

        if self._already_sent(reminder_id):
            logger.warning(f"Reminder {reminder_id} already has a sent log; marking sent without delivery")
            reminder.status = ReminderStatus.SENT
            reminder.sent_at = reminder.sent_at or now
            self.db.commit()
            return ReminderStatus.SENT

        appointment = reminder.appointment
        if appointment is None or appointment.status == AppointmentStatus.CANCELLED:
            logger.info(f"Reminder {reminder_id} cancelled: appointment is cancelled or gone")
            reminder.status = ReminderStatus.CANCELLED
            self.db.commit()
            return ReminderStatus.CANCELLED

        return self._deliver(reminder, appointment, now)

    def _already_sent(self, reminder_id: int) -> bool:
        return (
            self.db.query(NotificationLog.id)
            .filter(NotificationLog.reminder_id == reminder_id)
            .filter(NotificationLog.status == "sent")
            .first()
            is not None
        )

    def _recipient(self, channel: str, appointment: Appointment) -> Optional[str]:
        lead = appointment.lead
        if lead is None:
            return None
        return lead.email if channel == "email" else lead.phone

    def _deliver(self, reminder: AppointmentReminder, appointment: Appointment, now: datetime) -> str:
        recipient = self._recipient(reminder.channel, appointment)

        try:
            rendered = self.templates.render(reminder.template_id, build_appointment_variables(appointment))
            result = self.dispatcher.deliver(reminder.channel, recipient, rendered)
            if not result.success:
                raise DeliveryError(result.error or "Delivery failed", channel=reminder.channel)
            error = None
            provider_id = result.provider_id
        except (DeliveryError, TemplateNotFoundError) as e:
            error = e.message
            provider_id = None
        except Exception as e:
            logger.exception(f"Unexpected error delivering reminder {reminder.id}: {e}")
            error = str(e) or type(e).__name__
            provider_id = None

        status = ReminderStatus.SENT if error is None else ReminderStatus.FAILED

        self.db.add(NotificationLog(
            reminder_id=reminder.id,
            appointment_id=appointment.id,
            lead_id=appointment.lead_id,
            template_id=reminder.template_id,
            channel=reminder.channel,
            recipient=recipient,
            status=status,
            error_message=error,
            details={
                "reminder_timing": reminder.timing,
                "appointment_title": appointment.title,
                "scheduled_at": appointment.scheduled_at.isoformat(),
                "provider_id": provider_id,
                "worker_id": self.worker_id,
            },
            sent_at=now,
        ))
        reminder.status = status
        reminder.error_message = error
        if status == ReminderStatus.SENT:
            reminder.sent_at = now
        self.db.commit()

        if error is None:
            logger.info(f"Reminder {reminder.id} sent via {reminder.channel} to {recipient}")
        else:
            logger.warning(f"Reminder {reminder.id} failed via {reminder.channel}: {error}")
        return status

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def recover_stale_claims(self, now: Optional[datetime] = None, lease_minutes: int = DEFAULT_CLAIM_LEASE_MINUTES) -> int:
        """
        Fail reminders stuck in 'processing' longer than the lease.

        Their sweeper died between claim and outcome, so whether the message
        went out is unknown. They are failed and logged, never redelivered.
        """
        now = to_utc_naive(now or datetime.utcnow())
        cutoff = now - timedelta(minutes=lease_minutes)

        stale = (
            self.db.query(AppointmentReminder)
            .filter(AppointmentReminder.status == ReminderStatus.PROCESSING)
            .filter(AppointmentReminder.claimed_at <= cutoff)
            .order_by(AppointmentReminder.id)
            .all()
        )

        recovered = 0
        for reminder in stale:
            result = self.db.execute(
                update(AppointmentReminder)
                .where(AppointmentReminder.id == reminder.id)
                .where(AppointmentReminder.status == ReminderStatus.PROCESSING)
                .values(status=ReminderStatus.FAILED, error_message="Delivery outcome unknown (claim expired)")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                continue

            appointment = reminder.appointment
            self.db.add(NotificationLog(
                reminder_id=reminder.id,
                appointment_id=reminder.appointment_id,
                lead_id=appointment.lead_id if appointment else None,
                template_id=reminder.template_id,
                channel=reminder.channel,
                recipient=None,
                status=ReminderStatus.FAILED,
                error_message="Delivery outcome unknown (claim expired)",
                details={"claimed_by": reminder.claimed_by, "lease_minutes": lease_minutes},
                sent_at=now,
            ))
            self.db.commit()
            recovered += 1

        if recovered:
            logger.warning(f"Recovered {recovered} stale reminder claim(s)")
        return recovered
