"""
Reminder Models
Database models for scheduled appointment reminders and the notification audit log
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Boolean, ForeignKey, Index, event
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class ReminderStatus:
    """
    Reminder lifecycle:
        pending -> processing -> {sent, failed}
        pending -> cancelled
    """
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = (SENT, FAILED, CANCELLED)


class ReminderTiming:
    DAY = "24h"
    HOUR = "1h"
    QUARTER = "15m"
    CUSTOM = "custom"

    ALL = (DAY, HOUR, QUARTER, CUSTOM)


class AppointmentReminder(Base):
    """
    Appointment Reminder Model

    One future notification for one appointment. Rows are independent:
    an appointment may carry an email reminder and an SMS reminder at
    different lead times, each claimed and delivered on its own.
    """
    __tablename__ = "appointment_reminders"
    __table_args__ = (
        # Sweeper query: status = 'pending' AND fire_at <= now ORDER BY fire_at
        Index("ix_appointment_reminders_status_fire_at", "status", "fire_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )

    enabled = Column(Boolean, nullable=False, default=True)
    timing = Column(String(10), nullable=False)
    custom_minutes = Column(Integer, nullable=True)
    template_id = Column(String(100), nullable=False)
    channel = Column(String(10), nullable=False)  # email, sms

    fire_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=ReminderStatus.PENDING)

    # Set by the sweeper that won the claim
    claimed_by = Column(String(100), nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    appointment = relationship("Appointment", back_populates="reminders")

    def __repr__(self):
        return (
            f"<AppointmentReminder(id={self.id}, appointment_id={self.appointment_id}, "
            f"channel='{self.channel}', fire_at={self.fire_at}, status='{self.status}')>"
        )


class NotificationLog(Base):
    """
    Notification Log Model

    Immutable audit record of one delivery attempt. Also the de-duplication
    source: a reminder with a 'sent' log entry is never delivered again.
    """
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Weak references (audit only, no ownership)
    reminder_id = Column(Integer, nullable=True, index=True)
    appointment_id = Column(Integer, nullable=True, index=True)
    lead_id = Column(Integer, nullable=True)

    template_id = Column(String(100), nullable=True)
    channel = Column(String(10), nullable=False)
    recipient = Column(String(255), nullable=True)

    # sent, failed
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)

    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<NotificationLog(id={self.id}, reminder_id={self.reminder_id}, status='{self.status}')>"


@event.listens_for(NotificationLog, "before_update")
def _reject_log_update(mapper, connection, target):
    raise ValueError(f"NotificationLog {target.id} is immutable")
