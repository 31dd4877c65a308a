"""
Circuit Breakers

Per-operation circuit breakers for the external storage backends. After
fail_max consecutive failed calls (each already retried) the circuit
opens and calls fail fast until reset_timeout has elapsed; one trial
call then decides whether it closes again.
"""

import logging
from datetime import timedelta
from typing import Dict

from aiobreaker import CircuitBreaker, CircuitBreakerListener
from aiobreaker.state import CircuitBreakerState

from docvault.domain.errors import FileValidationError, StorageNotFoundError

logger = logging.getLogger(__name__)

GUARDED_OPERATIONS = ("upload", "download", "delete")


class CircuitStateLogger(CircuitBreakerListener):
    """Logs circuit transitions and counts every opening as an error."""

    def __init__(self, backend: str, operation: str, metrics=None):
        self.backend = backend
        self.operation = operation
        self.metrics = metrics

    def state_change(self, breaker, old, new) -> None:
        if new.state is CircuitBreakerState.OPEN:
            logger.warning(f"Circuit breaker opened for {self.operation} on {self.backend}")
            if self.metrics is not None:
                self.metrics.record_error(f"circuit_breaker_open_{self.operation}", self.backend, "circuit_open")
        elif new.state is CircuitBreakerState.HALF_OPEN:
            logger.info(f"Circuit breaker half-open for {self.operation} on {self.backend}")
        else:
            logger.info(f"Circuit breaker closed for {self.operation} on {self.backend}")


def make_breakers(
    backend: str,
    fail_max: int = 5,
    reset_timeout: timedelta = timedelta(seconds=30),
    metrics=None,
) -> Dict[str, CircuitBreaker]:
    """
    Build one breaker per guarded operation of a backend.

    Missing objects and rejected input do not count as failures.

    Args:
        backend: Backend name used in logs and metrics
        fail_max: Consecutive failures that open a circuit
        reset_timeout: Time an open circuit waits before a trial call
        metrics: Optional MetricsRecorder

    Returns:
        Mapping of operation name to breaker
    """
    return {
        operation: CircuitBreaker(
            fail_max=fail_max,
            timeout_duration=reset_timeout,
            exclude=[StorageNotFoundError, FileValidationError],
            listeners=[CircuitStateLogger(backend, operation, metrics)],
            name=f"{backend}:{operation}",
        )
        for operation in GUARDED_OPERATIONS
    }
