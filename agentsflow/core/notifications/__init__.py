"""
Notification delivery shared by the reminder sweeper and workflow actions.

- templates: template catalog and {{variable}} rendering
- channels: SMTP email and Twilio SMS delivery
- dispatcher: channel selection, circuit breaking, delivery results
"""

from .templates import (
    NotificationTemplate,
    RenderedMessage,
    TemplateCatalog,
    build_appointment_variables,
    default_catalog,
)
from .channels import DeliveryChannel, EmailChannel, SmsChannel
from .dispatcher import DeliveryResult, NotificationDispatcher

__all__ = [
    "NotificationTemplate",
    "RenderedMessage",
    "TemplateCatalog",
    "build_appointment_variables",
    "default_catalog",
    "DeliveryChannel",
    "EmailChannel",
    "SmsChannel",
    "DeliveryResult",
    "NotificationDispatcher",
]
