"""
Circuit breaker for remote collaborators

Checkout cannot price an order without the fee/coverage calculator. When that
service keeps failing, calls fail fast with CircuitBreakerOpenError (503)
instead of each request waiting for its own timeout.

    CLOSED --failure_threshold failures--> OPEN --reset_timeout--> HALF_OPEN
    HALF_OPEN --success_threshold successes--> CLOSED
    HALF_OPEN --any failure--> OPEN
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar, Union

from orderflow.core.config import settings
from orderflow.core.exceptions import CircuitBreakerOpenError, ExternalServiceException
from orderflow.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3
    # Only these exceptions count toward opening; anything else passes through
    trips_on: tuple[type[BaseException], ...] = (Exception,)


class CircuitBreaker:
    """Per-service breaker; instances are shared through ``get_instance``"""

    _registry: dict[str, "CircuitBreaker"] = {}
    _registry_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0
        self._opened_at = 0.0

    @classmethod
    def get_instance(cls, service_name: str, config: CircuitBreakerConfig | None = None) -> "CircuitBreaker":
        with cls._registry_lock:
            breaker = cls._registry.get(service_name)
            if breaker is None:
                breaker = cls._registry[service_name] = cls(service_name, config)
            return breaker

    @classmethod
    def reset_all(cls) -> None:
        """Forget every shared breaker (tests)"""
        with cls._registry_lock:
            cls._registry.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def snapshot(self) -> dict[str, Any]:
        return {
            "service": self.service_name,
            "state": self._state.value,
            "failures": self._failures,
            "retry_after_seconds": round(self.get_retry_after(), 3),
        }

    def get_retry_after(self) -> float:
        """Seconds until the circuit may half-open; 0 unless open"""
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def _move_to(self, new_state: CircuitState) -> None:
        # caller holds self._lock
        old_state, self._state = self._state, new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._successes = 0
        else:
            self._failures = 0
            self._successes = 0

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.service_name}' {old_state.value} -> {new_state.value}",
            extra_data={"service": self.service_name, "old_state": old_state.value, "new_state": new_state.value},
        )

    def _admit(self) -> bool:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self.get_retry_after() > 0:
                    return False
                self._move_to(CircuitState.HALF_OPEN)
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    return False
                self._half_open_calls += 1
            return True

    async def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)
            else:
                self._failures = 0

    async def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            self._failures += 1
            logger.warning(
                f"Call to '{self.service_name}' failed",
                extra_data={
                    "service": self.service_name,
                    "failures": self._failures,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None,
                },
            )
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
                self._move_to(CircuitState.OPEN)

    async def execute(self, func: Callable[..., Union[T, Awaitable[T]]], *args: Any, **kwargs: Any) -> T:
        """
        Run ``func`` (sync or async) through the breaker.

        Raises:
            CircuitBreakerOpenError: the circuit is open or the half-open trial-call budget is spent
        """
        if not self._admit():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                result = await result
        except self.config.trips_on as e:
            await self.record_failure(e)
            raise

        await self.record_success()
        return result


def get_fee_service_circuit_breaker() -> CircuitBreaker:
    """Shared breaker for the fee/coverage calculator"""
    return CircuitBreaker.get_instance(
        "fee_service",
        CircuitBreakerConfig(
            failure_threshold=settings.FEE_SERVICE_CB_FAILURE_THRESHOLD,
            timeout_seconds=settings.FEE_SERVICE_CB_RESET_SECONDS,
            trips_on=(ExternalServiceException,),
        ),
    )
