"""
Circuit breaker guarding calls to a single remote endpoint.

The metadata resolver keeps one breaker per Invidious instance so that an
instance that keeps failing is skipped for a while instead of being retried on
every playlist refresh.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Letting one request probe the endpoint


class CircuitBreaker:
    """
    Counts consecutive failures of one endpoint.

    States:
    - CLOSED: calls pass through
    - OPEN: calls are refused until `recovery_timeout` has elapsed
    - HALF_OPEN: the next call decides whether to close or re-open
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 300,
        success_threshold: int = 1,
    ):
        """
        Args:
            name: Label used in log messages (usually the endpoint URL).
            failure_threshold: Consecutive failures before opening the circuit.
            recovery_timeout: Seconds to wait before probing again.
            success_threshold: Successes in HALF_OPEN needed to close again.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Current circuit state, moving OPEN to HALF_OPEN once the timeout expired."""
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and time.monotonic() - self._opened_at >= self.recovery_timeout
        ):
            log.debug(f"Circuit for {self.name} is half-open, probing again.")
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    async def record_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    log.info(f"[green]✓ {self.name} is reachable again.[/green]")
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                log.warning(
                    f"[yellow]{self.name} failed {self._failure_count} time(s); "
                    f"skipping it for {self.recovery_timeout:.0f}s.[/yellow]"
                )
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._failure_count = 0
                self._success_count = 0

