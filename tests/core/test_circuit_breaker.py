"""
Unit Tests for Circuit Breaker

Tests cover:
- State transitions (CLOSED → OPEN → HALF_OPEN → CLOSED)
- Failure threshold behavior
- Probe accounting in HALF_OPEN
- Per-channel instances
- Thread safety
"""

import pytest
import threading
import time

from agentsflow.core.circuit_breaker import (
    CHANNEL_BREAKERS,
    CircuitBreaker,
    CircuitBreakerState,
    email_circuit_breaker,
    sms_circuit_breaker,
)


def _open(breaker):
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()
    assert breaker.is_open()


# ============================================================================
# BASIC FUNCTIONALITY TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_initial_state():
    breaker = CircuitBreaker(name="email", failure_threshold=3, timeout=60)

    assert breaker.state == CircuitBreakerState.CLOSED
    assert breaker.is_closed()
    assert not breaker.is_open()
    assert not breaker.is_half_open()


@pytest.mark.unit
def test_circuit_breaker_opens_after_threshold():
    breaker = CircuitBreaker(name="sms", failure_threshold=3, timeout=60)

    breaker.record_failure()
    breaker.record_failure()
    assert breaker.is_closed()

    breaker.record_failure()
    assert breaker.is_open()
    assert breaker.state == CircuitBreakerState.OPEN


@pytest.mark.unit
def test_circuit_breaker_success_resets_failures():
    """Only consecutive failures count"""
    breaker = CircuitBreaker(failure_threshold=3, timeout=60)

    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    breaker.record_failure()

    assert breaker.is_closed()


# ============================================================================
# RECOVERY TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_open_to_half_open_after_timeout():
    breaker = CircuitBreaker(failure_threshold=2, timeout=1)
    _open(breaker)

    time.sleep(1.1)

    assert not breaker.is_open()  # is_open() triggers transition
    assert breaker.is_half_open()


@pytest.mark.unit
def test_circuit_breaker_blocks_while_open():
    breaker = CircuitBreaker(failure_threshold=2, timeout=60)
    _open(breaker)

    time.sleep(0.1)

    assert breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_probe_success_closes():
    breaker = CircuitBreaker(failure_threshold=2, timeout=1)
    _open(breaker)
    time.sleep(1.1)
    assert not breaker.is_open()

    breaker.record_probe()
    breaker.record_success()

    assert breaker.is_closed()
    assert breaker.get_status()["failure_count"] == 0


@pytest.mark.unit
def test_circuit_breaker_probe_failure_reopens():
    breaker = CircuitBreaker(failure_threshold=2, timeout=1)
    _open(breaker)
    time.sleep(1.1)
    assert not breaker.is_open()

    breaker.record_probe()
    breaker.record_failure()

    assert breaker.is_open()
    assert not breaker.is_half_open()


@pytest.mark.unit
def test_circuit_breaker_half_open_allows_limited_probes():
    breaker = CircuitBreaker(failure_threshold=2, timeout=1, half_open_max_calls=1)
    _open(breaker)
    time.sleep(1.1)

    assert not breaker.is_open()
    breaker.record_probe()

    # Probe in flight: further deliveries are blocked
    assert breaker.is_open()


@pytest.mark.unit
def test_record_probe_ignored_when_closed():
    breaker = CircuitBreaker(failure_threshold=2, timeout=60)

    breaker.record_probe()
    breaker.record_probe()

    assert breaker.is_closed()
    assert not breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_manual_reset():
    breaker = CircuitBreaker(failure_threshold=2, timeout=60)
    _open(breaker)

    breaker.reset()

    assert breaker.is_closed()
    breaker.record_failure()
    assert breaker.is_closed()


# ============================================================================
# STATUS REPORTING TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_get_status():
    breaker = CircuitBreaker(name="sms", failure_threshold=3, timeout=60)
    breaker.record_failure()

    status = breaker.get_status()

    assert status["name"] == "sms"
    assert status["state"] == CircuitBreakerState.CLOSED
    assert status["failure_count"] == 1
    assert status["failure_threshold"] == 3
    assert status["last_failure"] is not None
    assert status["timeout_seconds"] == 60


@pytest.mark.unit
def test_channel_breakers_are_independent():
    assert CHANNEL_BREAKERS == {"email": email_circuit_breaker, "sms": sms_circuit_breaker}
    assert email_circuit_breaker is not sms_circuit_breaker
    assert email_circuit_breaker.failure_threshold == 5
    assert sms_circuit_breaker.timeout == 300


# ============================================================================
# THREAD SAFETY TESTS (basic)
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_concurrent_access():
    breaker = CircuitBreaker(failure_threshold=10, timeout=60)

    def record_failures():
        for _ in range(5):
            breaker.record_failure()

    threads = [threading.Thread(target=record_failures) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert breaker.get_status()["failure_count"] == 15
    assert breaker.is_open()
