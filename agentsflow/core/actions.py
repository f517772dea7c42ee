"""
Action Executors

Each action_type maps to one ActionExecutor in an ActionRegistry.
The engine looks the executor up at dispatch time, so registering a new
type is enough to extend the set of actions.

Built-in types:
- set_context: merge values into the execution context
- send_email / send_sms: render a template and deliver it
- webhook: POST JSON to a URL
- log: write a message to the application log

Executors receive the action's config and the live ExecutionContext and
return a dict output, which the engine records under actions.<id>.
Failures raise ActionExecutionError.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .context import ExecutionContext
from .exceptions import ActionExecutionError, TemplateNotFoundError, UnknownActionTypeError
from .notifications.dispatcher import NotificationDispatcher
from .notifications.templates import RenderedMessage, TemplateCatalog, default_catalog, render_text

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TIMEOUT = 10


class ActionExecutor(ABC):
    """Interface for all action executors"""

    @abstractmethod
    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        """
        Run the action's side effect.

        Args:
            config: The action's action_config
            context: Execution context (trigger payload + prior outputs)

        Returns:
            Output dict recorded in the context

        Raises:
            ActionExecutionError: if the side effect failed
        """
        pass


class ActionRegistry:
    """action_type → ActionExecutor"""

    def __init__(self, executors: Optional[Dict[str, ActionExecutor]] = None):
        self._executors: Dict[str, ActionExecutor] = dict(executors or {})

    def register(self, action_type: str, executor: ActionExecutor) -> None:
        self._executors[action_type] = executor

    def get(self, action_type: str) -> ActionExecutor:
        executor = self._executors.get(action_type)
        if executor is None:
            raise UnknownActionTypeError(action_type)
        return executor

    def types(self) -> List[str]:
        return sorted(self._executors)

    def __contains__(self, action_type: str) -> bool:
        return action_type in self._executors


def _render_value(value: Any, variables: Dict[str, Any]) -> Any:
    if isinstance(value, str):
        return render_text(value, variables)
    if isinstance(value, dict):
        return {k: _render_value(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [_render_value(v, variables) for v in value]
    return value


class SetContextExecutor(ActionExecutor):
    """
    Config:
        {"values": {"lead_tag": "vip", "greeting": "Hi {{trigger.lead.name}}"}}
    """

    async def execute(self, config, context):
        values = config.get("values")
        if not isinstance(values, dict):
            raise ActionExecutionError("set_context requires a 'values' object", retry_allowed=False)
        return _render_value(values, context.get_all())


class SendNotificationExecutor(ActionExecutor):
    """
    Shared logic of send_email and send_sms.

    Config:
        {
            "template_id": "appointment_reminder_1h",   # or inline subject/body
            "subject": "Welcome {{trigger.lead.name}}",
            "body": "...",
            "to": "ana@example.com",                     # or
            "to_field": "trigger.lead.email",
            "variables": {"company_name": "Acme"}
        }
    """

    channel = ""

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None, catalog: Optional[TemplateCatalog] = None):
        self._dispatcher = dispatcher
        self.catalog = catalog or default_catalog

    @property
    def dispatcher(self) -> NotificationDispatcher:
        # Built lazily so channel credentials are only read when first used
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher()
        return self._dispatcher

    def _recipient(self, config: Dict[str, Any], context: ExecutionContext) -> Optional[str]:
        if config.get("to"):
            return render_text(str(config["to"]), context.get_all())
        if config.get("to_field"):
            value = context.get(config["to_field"])
            return str(value) if value else None
        return None

    def _render(self, config: Dict[str, Any], variables: Dict[str, Any]) -> RenderedMessage:
        template_id = config.get("template_id")
        if template_id:
            try:
                template = self.catalog.get_template(template_id)
            except TemplateNotFoundError as e:
                raise ActionExecutionError(e.message, retry_allowed=False)
            if template.channel != self.channel:
                raise ActionExecutionError(
                    f"Template '{template_id}' is a {template.channel} template, not {self.channel}",
                    retry_allowed=False,
                )
            return self.catalog.render(template_id, variables)

        body = config.get("body")
        if not body:
            raise ActionExecutionError(
                f"{self.channel} action requires 'template_id' or 'body'", retry_allowed=False
            )
        subject = config.get("subject")
        return RenderedMessage(
            subject=render_text(subject, variables) if subject else None,
            body=render_text(body, variables),
        )

    async def execute(self, config, context):
        variables = context.get_all()
        variables.update(config.get("variables") or {})

        rendered = self._render(config, variables)
        recipient = self._recipient(config, context)

        result = await asyncio.to_thread(self.dispatcher.deliver, self.channel, recipient, rendered)
        if not result.success:
            raise ActionExecutionError(f"{self.channel} delivery failed: {result.error}")

        return {
            "channel": self.channel,
            "recipient": recipient,
            "template_id": rendered.template_id,
            "provider_id": result.provider_id,
        }


class SendEmailExecutor(SendNotificationExecutor):
    channel = "email"


class SendSmsExecutor(SendNotificationExecutor):
    channel = "sms"


class WebhookExecutor(ActionExecutor):
    """
    Config:
        {"url": "https://hooks.example.com/x", "payload": {...}, "headers": {...}, "timeout": 10}

    Without "payload" the whole context is posted.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def _post(self, url: str, payload: Any, headers: Dict[str, str], timeout: float) -> requests.Response:
        return self.session.post(url, json=payload, headers=headers, timeout=timeout)

    async def execute(self, config, context):
        url = config.get("url")
        if not url:
            raise ActionExecutionError("webhook requires 'url'", retry_allowed=False)

        variables = context.get_all()
        payload = _render_value(config["payload"], variables) if "payload" in config else context.snapshot()
        timeout = float(config.get("timeout", DEFAULT_WEBHOOK_TIMEOUT))
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}

        try:
            response = await asyncio.to_thread(self._post, url, payload, headers, timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout:
            raise ActionExecutionError(f"Webhook timeout after {timeout}s: {url}")
        except requests.exceptions.HTTPError as e:
            raise ActionExecutionError(f"Webhook returned {e.response.status_code}: {url}")
        except requests.exceptions.RequestException as e:
            raise ActionExecutionError(f"Webhook request failed: {e}")

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text[:1000]

        return {"status_code": response.status_code, "response": body}


class LogExecutor(ActionExecutor):
    """Config: {"message": "New lead {{trigger.lead.name}}", "level": "info"}"""

    async def execute(self, config, context):
        message = render_text(str(config.get("message", "")), context.get_all())
        level = getattr(logging, str(config.get("level", "info")).upper(), logging.INFO)
        logger.log(level, message)
        return {"logged": message}


def build_default_registry(
    dispatcher: Optional[NotificationDispatcher] = None,
    catalog: Optional[TemplateCatalog] = None,
) -> ActionRegistry:
    """Registry with every built-in action type"""
    return ActionRegistry({
        "set_context": SetContextExecutor(),
        "send_email": SendEmailExecutor(dispatcher, catalog),
        "send_sms": SendSmsExecutor(dispatcher, catalog),
        "webhook": WebhookExecutor(),
        "log": LogExecutor(),
    })
