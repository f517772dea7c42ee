"""
Circuit Breaker for delivery channels

Stops hammering an email or SMS provider that is down: after too many
consecutive failures the channel fails fast until a cool-down has passed.

States:
- CLOSED: Normal operation, deliveries go through
- OPEN: Too many failures, deliveries fail immediately
- HALF_OPEN: Cool-down passed, one probe delivery is allowed

Example:
    breaker = email_circuit_breaker

    if breaker.is_open():
        raise DeliveryError("email circuit breaker is OPEN", channel="email")

    try:
        channel.send(recipient, rendered)
        breaker.record_success()
    except DeliveryError:
        breaker.record_failure()
        raise
"""

import threading
import logging
from typing import Optional
from datetime import datetime

logger = logging.getLogger(__name__)


class CircuitBreakerState:
    """Circuit breaker states"""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Thread-safe circuit breaker guarding one delivery channel."""

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        timeout: int = 300,
        half_open_max_calls: int = 1
    ):
        """
        Args:
            name: Channel name, used in logs and status
            failure_threshold: Number of consecutive failures before opening
            timeout: Seconds to wait before allowing a probe (HALF_OPEN)
            half_open_max_calls: Number of probes allowed in HALF_OPEN state
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._half_open_calls = 0

        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def is_open(self) -> bool:
        """Check if the breaker is blocking calls"""
        with self._lock:
            if self._state == CircuitBreakerState.OPEN:
                if self._last_failure_time:
                    elapsed = (datetime.utcnow() - self._last_failure_time).total_seconds()
                    if elapsed >= self.timeout:
                        logger.info(f"CircuitBreaker[{self.name}]: OPEN → HALF_OPEN (timeout passed)")
                        self._state = CircuitBreakerState.HALF_OPEN
                        self._half_open_calls = 0
                        return False
                return True

            if self._state == CircuitBreakerState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    return True

            return False

    def is_closed(self) -> bool:
        return self.state == CircuitBreakerState.CLOSED

    def is_half_open(self) -> bool:
        return self.state == CircuitBreakerState.HALF_OPEN

    def record_success(self):
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = None

            if self._state != CircuitBreakerState.CLOSED:
                logger.info(f"CircuitBreaker[{self.name}]: {self._state} → CLOSED (success)")
                self._state = CircuitBreakerState.CLOSED
                self._half_open_calls = 0

    def record_failure(self):
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.utcnow()

            if self._state == CircuitBreakerState.HALF_OPEN:
                # A failed probe re-opens immediately
                self._state = CircuitBreakerState.OPEN
                logger.warning(
                    f"CircuitBreaker[{self.name}]: HALF_OPEN → OPEN "
                    f"(probe failed, will retry in {self.timeout}s)"
                )
            elif (
                self._state == CircuitBreakerState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitBreakerState.OPEN
                logger.error(
                    f"CircuitBreaker[{self.name}]: CLOSED → OPEN "
                    f"({self._failure_count} consecutive failures, "
                    f"will retry in {self.timeout}s)"
                )

            logger.warning(
                f"CircuitBreaker[{self.name}]: State={self._state}, "
                f"Failures={self._failure_count}/{self.failure_threshold}"
            )

    def record_probe(self):
        """Count a call let through while HALF_OPEN"""
        with self._lock:
            if self._state == CircuitBreakerState.HALF_OPEN:
                self._half_open_calls += 1

    def reset(self):
        """Manually reset to CLOSED"""
        with self._lock:
            previous_state = self._state
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_calls = 0

            if previous_state != CircuitBreakerState.CLOSED:
                logger.info(f"CircuitBreaker[{self.name}]: Manually reset {previous_state} → CLOSED")

    def get_status(self) -> dict:
        """Breaker status for monitoring"""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "last_failure": self._last_failure_time.isoformat() if self._last_failure_time else None,
                "timeout_seconds": self.timeout,
            }


# ============================================================================
# GLOBAL CIRCUIT BREAKER INSTANCES
# ============================================================================

# One breaker per delivery channel: an SMS outage must not block email
email_circuit_breaker = CircuitBreaker(name="email", failure_threshold=5, timeout=300)
sms_circuit_breaker = CircuitBreaker(name="sms", failure_threshold=5, timeout=300)

CHANNEL_BREAKERS = {
    "email": email_circuit_breaker,
    "sms": sms_circuit_breaker,
}
