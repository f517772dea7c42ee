"""
Models module - SQLAlchemy database models
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models after Base is defined to avoid circular imports
from .workflow import Workflow, Trigger, Action
from .execution import Execution, ExecutionStep
from .appointment import Lead, Appointment
from .reminder import AppointmentReminder, NotificationLog

__all__ = [
    "Base",
    "Workflow",
    "Trigger",
    "Action",
    "Execution",
    "ExecutionStep",
    "Lead",
    "Appointment",
    "AppointmentReminder",
    "NotificationLog",
]
