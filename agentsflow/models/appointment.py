"""
Lead and Appointment Models

Owned by the CRM layer. The automation core only reads them, except that
deleting an appointment cascades to its reminders.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class AppointmentStatus:
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    appointments = relationship("Appointment", back_populates="lead")

    def __repr__(self):
        return f"<Lead(id={self.id}, name='{self.name}')>"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    scheduled_at = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False, default=30)
    meeting_link = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lead = relationship("Lead", back_populates="appointments")
    reminders = relationship(
        "AppointmentReminder",
        back_populates="appointment",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Appointment(id={self.id}, title='{self.title}', scheduled_at={self.scheduled_at})>"
