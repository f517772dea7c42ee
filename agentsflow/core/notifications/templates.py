"""
Notification Templates

Built-in email and SMS templates for appointment reminders, and the
{{variable}} renderer used by both the reminder sweeper and the
send_email / send_sms workflow actions.
"""

import os
import re
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from ..exceptions import TemplateNotFoundError

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


class NotificationTemplate(BaseModel):
    id: str = Field(..., min_length=1)
    channel: Literal["email", "sms"]
    name: str
    subject: Optional[str] = None
    body: str
    variables: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class RenderedMessage(BaseModel):
    """Output of template rendering. subject is None for SMS."""
    subject: Optional[str] = None
    body: str
    template_id: Optional[str] = None

    def html_body(self) -> str:
        """Plain text body as minimal HTML for email clients"""
        return "<div>" + self.body.replace("\n", "<br>") + "</div>"


EMAIL_TEMPLATES = [
    NotificationTemplate(
        id="appointment_reminder_24h",
        channel="email",
        name="Appointment Reminder (24 hours)",
        subject="Appointment Reminder: {{appointment_title}} Tomorrow",
        body=(
            "Hi {{lead_name}},\n"
            "\n"
            "This is a friendly reminder about your upcoming appointment:\n"
            "\n"
            "📅 **Appointment:** {{appointment_title}}\n"
            "🕐 **Date & Time:** {{appointment_datetime}}\n"
            "⏱️ **Duration:** {{appointment_duration}} minutes\n"
            "{{meeting_link_section}}\n"
            "\n"
            "We're looking forward to speaking with you!\n"
            "\n"
            "If you need to reschedule or have any questions, please don't hesitate to contact us.\n"
            "\n"
            "Best regards,\n"
            "{{company_name}}"
        ),
        variables=[
            "lead_name", "appointment_title", "appointment_datetime",
            "appointment_duration", "meeting_link_section", "company_name",
        ],
    ),
    NotificationTemplate(
        id="appointment_reminder_1h",
        channel="email",
        name="Appointment Reminder (1 hour)",
        subject="Your appointment starts in 1 hour: {{appointment_title}}",
        body=(
            "Hi {{lead_name}},\n"
            "\n"
            "Your appointment is coming up in just 1 hour!\n"
            "\n"
            "📅 **Appointment:** {{appointment_title}}\n"
            "🕐 **Time:** {{appointment_time}} ({{appointment_datetime}})\n"
            "⏱️ **Duration:** {{appointment_duration}} minutes\n"
            "{{meeting_link_section}}\n"
            "\n"
            "If you're running late or need to reschedule, please let us know as soon as possible.\n"
            "\n"
            "We're excited to connect with you!\n"
            "\n"
            "Best regards,\n"
            "{{company_name}}"
        ),
        variables=[
            "lead_name", "appointment_title", "appointment_time", "appointment_datetime",
            "appointment_duration", "meeting_link_section", "company_name",
        ],
    ),
    NotificationTemplate(
        id="appointment_reminder_15m",
        channel="email",
        name="Appointment Reminder (15 minutes)",
        subject="Your appointment starts in 15 minutes",
        body=(
            "Hi {{lead_name}},\n"
            "\n"
            "Your appointment starts in just 15 minutes!\n"
            "\n"
            "📅 **Appointment:** {{appointment_title}}\n"
            "🕐 **Time:** {{appointment_time}}\n"
            "{{meeting_link_section}}\n"
            "\n"
            "See you soon!\n"
            "\n"
            "Best regards,\n"
            "{{company_name}}"
        ),
        variables=[
            "lead_name", "appointment_title", "appointment_time",
            "meeting_link_section", "company_name",
        ],
    ),
]

SMS_TEMPLATES = [
    NotificationTemplate(
        id="appointment_reminder_sms_24h",
        channel="sms",
        name="Appointment Reminder SMS (24 hours)",
        body=(
            "Hi {{lead_name}}, reminder: {{appointment_title}} tomorrow at {{appointment_time}}. "
            "Duration: {{appointment_duration}}min. {{meeting_link_short}}"
        ),
        variables=[
            "lead_name", "appointment_title", "appointment_time",
            "appointment_duration", "meeting_link_short",
        ],
    ),
    NotificationTemplate(
        id="appointment_reminder_sms_1h",
        channel="sms",
        name="Appointment Reminder SMS (1 hour)",
        body=(
            "Hi {{lead_name}}, your {{appointment_title}} starts in 1 hour at "
            "{{appointment_time}}. {{meeting_link_short}}"
        ),
        variables=["lead_name", "appointment_title", "appointment_time", "meeting_link_short"],
    ),
    NotificationTemplate(
        id="appointment_reminder_sms_15m",
        channel="sms",
        name="Appointment Reminder SMS (15 minutes)",
        body=(
            "Hi {{lead_name}}, {{appointment_title}} starts in 15 min at "
            "{{appointment_time}}. {{meeting_link_short}}"
        ),
        variables=["lead_name", "appointment_title", "appointment_time", "meeting_link_short"],
    ),
]


def _lookup(variables: Mapping[str, Any], path: str) -> Any:
    if path in variables:
        return variables[path]
    value: Any = variables
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return None
        value = value[part]
    return value


def render_text(text: str, variables: Mapping[str, Any]) -> str:
    """
    Substitute {{name}} placeholders. Dot paths reach into nested mappings.
    Placeholders with no matching variable are left as they are.
    """
    def replace(match):
        value = _lookup(variables, match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(replace, text)


class TemplateCatalog:
    """
    Template resolver.

    Example:
        >>> catalog = TemplateCatalog()
        >>> [t.id for t in catalog.get_templates_by_type("sms")][0]
        'appointment_reminder_sms_24h'
        >>> catalog.render("appointment_reminder_sms_15m", variables).body
        'Hi Ana, Demo call starts in 15 min at 02:00 PM. '
    """

    def __init__(self, templates: Optional[List[NotificationTemplate]] = None):
        templates = templates if templates is not None else EMAIL_TEMPLATES + SMS_TEMPLATES
        self._templates: Dict[str, NotificationTemplate] = {t.id: t for t in templates}

    def get_template(self, template_id: str) -> NotificationTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def has_template(self, template_id: str) -> bool:
        return template_id in self._templates

    def get_templates_by_type(self, channel: str) -> List[NotificationTemplate]:
        return [t for t in self._templates.values() if t.channel == channel]

    def render(self, template_id: str, variables: Mapping[str, Any]) -> RenderedMessage:
        template = self.get_template(template_id)
        return RenderedMessage(
            subject=render_text(template.subject, variables) if template.subject else None,
            body=render_text(template.body, variables),
            template_id=template.id,
        )


default_catalog = TemplateCatalog()


def build_appointment_variables(appointment) -> Dict[str, str]:
    """
    Template variables for one appointment (and its lead).

    Times are rendered from the stored naive UTC scheduled_at.
    """
    scheduled_at = appointment.scheduled_at
    lead = appointment.lead

    variables = {
        "lead_name": lead.name if lead else "",
        "appointment_title": appointment.title,
        "appointment_datetime": scheduled_at.strftime("%B %d, %Y %I:%M %p"),
        "appointment_time": scheduled_at.strftime("%I:%M %p"),
        "appointment_duration": str(appointment.duration_minutes),
        "company_name": os.getenv("COMPANY_NAME", "AgentsFlowAI"),
    }

    if appointment.meeting_link:
        variables["meeting_link_section"] = f"\n🔗 **Meeting Link:** {appointment.meeting_link}"
        variables["meeting_link_short"] = f"Join: {appointment.meeting_link}"
    else:
        variables["meeting_link_section"] = ""
        variables["meeting_link_short"] = ""

    return variables
