"""
Pydantic schemas for API request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


# ============================================================================
# WORKFLOW SCHEMAS
# ============================================================================

class WorkflowResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    status: str
    execution_count: int
    success_count: int
    failure_count: int
    last_executed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WorkflowStatusUpdate(BaseModel):
    status: str = Field(..., description="draft, active, paused or archived")


class ReplaceActionsRequest(BaseModel):
    """
    Full replacement of a workflow's actions.

    Items are validated by the core (ActionSpec); nesting uses key/parent_key.
    """
    actions: List[Dict[str, Any]]

    class Config:
        json_schema_extra = {
            "example": {
                "actions": [
                    {"key": "tag", "action_type": "set_context", "order": 1,
                     "action_config": {"values": {"segment": "new"}}},
                    {"key": "welcome", "parent_key": "tag", "action_type": "send_email",
                     "action_config": {"to_field": "trigger.lead.email",
                                       "subject": "Welcome {{trigger.lead.name}}",
                                       "body": "Thanks for booking!"},
                     "condition": {"field": "trigger.lead.status", "operator": "equals", "value": "new"}}
                ]
            }
        }


class ActionResponse(BaseModel):
    id: int
    workflow_id: int
    name: Optional[str]
    action_type: str
    action_config: Dict[str, Any]
    order: int
    parent_action_id: Optional[int]
    condition: Optional[Dict[str, Any]]
    on_failure: str

    class Config:
        from_attributes = True


# ============================================================================
# EXECUTION SCHEMAS
# ============================================================================

class FireRequest(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict, description="Trigger payload")
    trigger_type: str = Field("manual", description="schedule, event, manual or webhook")
    async_execution: bool = Field(False, description="Queue on Celery instead of running inline")


class EventRequest(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict)


class ExecutionStepResponse(BaseModel):
    id: int
    action_id: int
    action_type: str
    status: str
    input_context: Optional[Dict[str, Any]]
    output_result: Optional[Dict[str, Any]]
    error_message: Optional[str]
    execution_time: Optional[float]
    timestamp: datetime

    class Config:
        from_attributes = True


class ExecutionResponse(BaseModel):
    id: int
    workflow_id: int
    status: str
    trigger_type: Optional[str]
    trigger_payload: Optional[Dict[str, Any]]
    result: Optional[Dict[str, Any]]
    error_message: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class ExecutionDetailResponse(ExecutionResponse):
    steps: List[ExecutionStepResponse] = []


class EventResponse(BaseModel):
    event_type: str
    executions: List[ExecutionResponse]


class TaskQueuedResponse(BaseModel):
    task_id: str
    status: str = "queued"


# ============================================================================
# REMINDER SCHEMAS
# ============================================================================

class ScheduleRemindersRequest(BaseModel):
    # Omitted: the default reminder set is scheduled
    reminders: Optional[List[Dict[str, Any]]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "reminders": [
                    {"enabled": True, "timing": "24h", "template_id": "appointment_reminder_24h"},
                    {"enabled": True, "timing": "1h", "template_id": "appointment_reminder_sms_1h"},
                    {"enabled": True, "timing": "custom", "customMinutes": 120,
                     "template_id": "appointment_reminder_1h"}
                ]
            }
        }


class ReminderResponse(BaseModel):
    id: int
    appointment_id: int
    timing: str
    custom_minutes: Optional[int]
    template_id: str
    channel: str
    fire_at: datetime
    status: str
    sent_at: Optional[datetime]
    error_message: Optional[str]

    class Config:
        from_attributes = True


class RejectedReminder(BaseModel):
    index: Optional[int]
    error: str


class ScheduleResponse(BaseModel):
    scheduled: List[ReminderResponse]
    rejected: List[RejectedReminder]
    superseded: int


class NotificationLogResponse(BaseModel):
    id: int
    reminder_id: Optional[int]
    appointment_id: Optional[int]
    template_id: Optional[str]
    channel: str
    recipient: Optional[str]
    status: str
    error_message: Optional[str]
    details: Optional[Dict[str, Any]]
    sent_at: datetime

    class Config:
        from_attributes = True


class TemplateResponse(BaseModel):
    id: str
    channel: str
    name: str
    subject: Optional[str]
    body: str
    variables: List[str]

    class Config:
        from_attributes = True


class AppointmentRemindersResponse(BaseModel):
    appointment_id: int
    reminders: List[ReminderResponse]
    logs: List[NotificationLogResponse]
    templates: Dict[str, List[TemplateResponse]]


class SweepResponse(BaseModel):
    processed: int
    recovered: int


class TestNotificationRequest(BaseModel):
    channel: str = Field(..., description="email or sms")
    recipient: str
    template_id: str


class TestNotificationResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
