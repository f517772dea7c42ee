"""
Custom Exceptions for the automation core

This module defines custom exception types for error handling and retry logic.

Exception Hierarchy:
- AutomationException (base)
  - ValidationError (don't retry)
    - GraphValidationError
      - GraphCycleError
    - InvalidReminderConfigError
      - StaleScheduleError
    - TemplateNotFoundError
    - TriggerMismatchError
  - NotFoundError (don't retry)
  - WorkflowNotActiveError (don't retry)
  - InvalidTransitionError (don't retry)
  - ActionExecutionError (retry)
    - UnknownActionTypeError (don't retry)
    - ActionTimeoutError (retry)
  - DeliveryError (recorded, never retried within a sweep)
    - DeliveryTimeoutError
  - ConcurrentClaimConflict (internal, never surfaced)
  - DatabaseError (retry)
"""

from typing import Optional


class AutomationException(Exception):
    """Base exception for all automation core errors"""

    def __init__(self, message: str, retry_allowed: bool = True):
        super().__init__(message)
        self.message = message
        self.retry_allowed = retry_allowed


# ============================================================================
# VALIDATION ERRORS
# ============================================================================

class ValidationError(AutomationException):
    """
    Malformed input to scheduling or graph construction.
    Raised before any state mutation. Should NOT be retried.
    """

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=False)


class GraphValidationError(ValidationError):
    """Action graph is structurally invalid (e.g. dangling parent reference)"""
    pass


class GraphCycleError(GraphValidationError):
    """
    An action's parent chain loops back on itself.
    Graph build aborts and no Execution is created.
    """

    def __init__(self, message: str, cycle: Optional[list] = None):
        super().__init__(message)
        self.cycle = cycle or []


class InvalidReminderConfigError(ValidationError):
    """Reminder configuration cannot be scheduled"""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class StaleScheduleError(InvalidReminderConfigError):
    """
    Computed fire time is already in the past.
    Only that entry is skipped; the rest of the batch continues.
    """
    pass


class TemplateNotFoundError(ValidationError):
    """Template id is not part of the catalog"""

    def __init__(self, template_id: str):
        super().__init__(f"Template '{template_id}' not found")
        self.template_id = template_id


class TriggerMismatchError(ValidationError):
    """Fired trigger type does not match the workflow's active trigger"""
    pass


# ============================================================================
# STATE ERRORS
# ============================================================================

class NotFoundError(AutomationException):
    """Referenced entity does not exist"""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", retry_allowed=False)
        self.entity = entity
        self.entity_id = entity_id


class WorkflowNotActiveError(AutomationException):
    """Paused or archived workflows do not accept new trigger fires"""

    def __init__(self, workflow_id: int, status: str):
        super().__init__(
            f"Workflow {workflow_id} is '{status}' and cannot be triggered",
            retry_allowed=False,
        )
        self.workflow_id = workflow_id
        self.status = status


class InvalidTransitionError(AutomationException):
    """
    Execution status change not allowed by the lifecycle
    (e.g. leaving a terminal state, deleting a running execution).
    """

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.current_status = current_status


# ============================================================================
# ACTION ERRORS
# ============================================================================

class ActionExecutionError(AutomationException):
    """An action's side effect failed"""

    def __init__(self, message: str, action_id: Optional[int] = None, retry_allowed: bool = True):
        super().__init__(message, retry_allowed=retry_allowed)
        self.action_id = action_id


class UnknownActionTypeError(ActionExecutionError):
    """No executor is registered for the action type. Should NOT be retried."""

    def __init__(self, action_type: str, action_id: Optional[int] = None):
        super().__init__(
            f"Unknown action type: '{action_type}'",
            action_id=action_id,
            retry_allowed=False,
        )
        self.action_type = action_type


class ActionTimeoutError(ActionExecutionError):
    """Action exceeded its timeout"""

    def __init__(self, message: str, action_id: Optional[int] = None, timeout_seconds: Optional[float] = None):
        super().__init__(message, action_id=action_id)
        self.timeout_seconds = timeout_seconds


# ============================================================================
# DELIVERY ERRORS
# ============================================================================

class DeliveryError(AutomationException):
    """
    Delivery channel failed (transient or permanent).
    Recorded in NotificationLog; the reminder becomes 'failed'.
    """

    def __init__(self, message: str, channel: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.channel = channel


class DeliveryTimeoutError(DeliveryError):
    """Delivery call exceeded its timeout. Treated as a failure."""

    def __init__(self, message: str, channel: Optional[str] = None, timeout_seconds: Optional[float] = None):
        super().__init__(message, channel=channel)
        self.timeout_seconds = timeout_seconds


# ============================================================================
# CONCURRENCY
# ============================================================================

class ConcurrentClaimConflict(AutomationException):
    """
    Another sweeper already claimed the reminder.
    Handled as a no-op by the sweeper, never surfaced to callers.
    """

    def __init__(self, reminder_id: int):
        super().__init__(f"Reminder {reminder_id} already claimed", retry_allowed=False)
        self.reminder_id = reminder_id


# ============================================================================
# DATABASE ERRORS
# ============================================================================

class DatabaseError(AutomationException):
    """
    Database connection or query error.
    Should be retried (transient failures).
    """

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=True)
