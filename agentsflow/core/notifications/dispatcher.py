"""
Notification Dispatcher

Selects the delivery channel by name, guards it with that channel's
circuit breaker and turns every outcome into a DeliveryResult.

Never raises for delivery problems: the sweeper and the send actions
decide what a failure means for them.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..circuit_breaker import CHANNEL_BREAKERS, CircuitBreaker
from ..exceptions import DeliveryError, DeliveryTimeoutError
from .channels import DeliveryChannel, EmailChannel, SmsChannel
from .templates import RenderedMessage

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    error: Optional[str] = None
    provider_id: Optional[str] = None
    timed_out: bool = False


class NotificationDispatcher:
    """
    Example:
        >>> dispatcher = NotificationDispatcher()
        >>> result = dispatcher.deliver("sms", "+15550001111", rendered)
        >>> result.success
        True
    """

    def __init__(
        self,
        channels: Optional[Dict[str, DeliveryChannel]] = None,
        breakers: Optional[Dict[str, CircuitBreaker]] = None,
    ):
        if channels is None:
            channels = {"email": EmailChannel(), "sms": SmsChannel()}
        self.channels = channels
        self.breakers = breakers if breakers is not None else CHANNEL_BREAKERS

    def deliver(self, channel: str, recipient: Optional[str], rendered: RenderedMessage) -> DeliveryResult:
        if channel not in self.channels:
            return DeliveryResult(success=False, error=f"Unsupported channel: '{channel}'")

        if not recipient:
            if channel == "email":
                return DeliveryResult(success=False, error="Email address required for email notifications")
            return DeliveryResult(success=False, error="Phone number required for SMS notifications")

        breaker = self.breakers.get(channel)
        if breaker is not None:
            if breaker.is_open():
                logger.warning(f"Delivery to {channel} skipped: circuit breaker is open")
                return DeliveryResult(success=False, error=f"{channel} circuit breaker is OPEN")
            breaker.record_probe()

        try:
            provider_id = self.channels[channel].send(recipient, rendered)

        except DeliveryTimeoutError as e:
            if breaker is not None:
                breaker.record_failure()
            logger.error(f"Delivery timeout on {channel} to {recipient}: {e.message}")
            return DeliveryResult(success=False, error=e.message, timed_out=True)

        except DeliveryError as e:
            if breaker is not None:
                breaker.record_failure()
            logger.error(f"Delivery failed on {channel} to {recipient}: {e.message}")
            return DeliveryResult(success=False, error=e.message)

        except Exception as e:
            if breaker is not None:
                breaker.record_failure()
            logger.exception(f"Unexpected error delivering on {channel} to {recipient}: {e}")
            return DeliveryResult(success=False, error=str(e))

        if breaker is not None:
            breaker.record_success()
        return DeliveryResult(success=True, provider_id=provider_id)

    def send_test_notification(self, channel: str, recipient: str, rendered: RenderedMessage) -> DeliveryResult:
        """Deliver a rendered message marked as a test"""
        test_message = RenderedMessage(
            subject=f"[TEST] {rendered.subject}" if rendered.subject else None,
            body=rendered.body if rendered.subject else f"[TEST] {rendered.body}",
            template_id=rendered.template_id,
        )
        return self.deliver(channel, recipient, test_message)
