"""Async provider call executor with timeouts, retries, and circuit breaker.

Every outbound provider ``search`` goes through here:
- Hard timeout per attempt
- Bounded retries with random jitter
- Per-provider circuit breaker (shared state via registry)
- Metrics and structured logging

Exhausted attempts, timeouts and an open breaker all surface as
ProviderUnavailableError so producers have a single failure condition to handle.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Generic, TypeVar

from tripplanner.config import Settings
from tripplanner.errors import ProviderUnavailableError
from tripplanner.models.common import Provenance
from tripplanner.models.criteria import SearchCriteria

T = TypeVar("T")


@dataclass
class ProviderResult(Generic[T]):
    """Provider output with provenance metadata."""

    value: T
    provenance: Provenance


@dataclass(frozen=True)
class ProviderContext:
    """Context for one provider call."""

    trip_id: str
    producer: str
    provider: str


@dataclass
class ProviderCallConfig:
    """Configuration for provider execution."""

    hard_timeout_ms: int
    retry_count: int
    retry_jitter_min_ms: int
    retry_jitter_max_ms: int
    breaker_failure_threshold: int = 5
    breaker_window_seconds: int = 60
    breaker_half_open_seconds: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderCallConfig":
        return cls(
            hard_timeout_ms=settings.provider_timeout_ms,
            retry_count=settings.provider_retry_count,
            retry_jitter_min_ms=settings.retry_jitter_min_ms,
            retry_jitter_max_ms=settings.retry_jitter_max_ms,
            breaker_failure_threshold=settings.circuit_breaker_failures,
            breaker_window_seconds=settings.circuit_breaker_window_sec,
            breaker_half_open_seconds=settings.circuit_breaker_half_open_sec,
        )


class BreakerState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Per-provider circuit breaker.

    Tracks failures within a time window and opens after threshold.
    """

    provider: str
    failure_threshold: int
    window_seconds: int
    half_open_seconds: int
    state: BreakerState = BreakerState.CLOSED
    failure_times: list[datetime] = field(default_factory=list)
    opened_at: datetime | None = None

    def record_success(self) -> None:
        if self.state == BreakerState.HALF_OPEN:
            self.state = BreakerState.CLOSED
            self.failure_times.clear()
            self.opened_at = None

    def record_failure(self, now: datetime) -> None:
        """Record a failed attempt; a failure while half-open reopens immediately."""
        if self.state == BreakerState.HALF_OPEN:
            self.state = BreakerState.OPEN
            self.opened_at = now
            return

        cutoff = now - timedelta(seconds=self.window_seconds)
        self.failure_times = [t for t in self.failure_times if t > cutoff]
        self.failure_times.append(now)

        if len(self.failure_times) >= self.failure_threshold:
            self.state = BreakerState.OPEN
            self.opened_at = now

    def check_and_update_state(self, now: datetime) -> BreakerState:
        """Check if breaker should transition states."""
        if self.state == BreakerState.OPEN:
            if self.opened_at and (now - self.opened_at).total_seconds() >= self.half_open_seconds:
                self.state = BreakerState.HALF_OPEN

        return self.state

    def is_open(self, now: datetime) -> bool:
        return self.check_and_update_state(now) == BreakerState.OPEN


class BreakerRegistry:
    """Registry of per-provider circuit breakers with shared state."""

    def __init__(self) -> None:
        self._by_provider: dict[str, CircuitBreaker] = {}

    def get_or_create(self, provider: str, config: ProviderCallConfig) -> CircuitBreaker:
        """Get existing breaker for provider or create new one with given config."""
        if provider not in self._by_provider:
            self._by_provider[provider] = CircuitBreaker(
                provider=provider,
                failure_threshold=config.breaker_failure_threshold,
                window_seconds=config.breaker_window_seconds,
                half_open_seconds=config.breaker_half_open_seconds,
            )
        return self._by_provider[provider]

    def clear(self) -> None:
        """Clear all breakers (useful for testing)."""
        self._by_provider.clear()


_global_breaker_registry = BreakerRegistry()


def get_breaker_registry() -> BreakerRegistry:
    """Get the global breaker registry instance."""
    return _global_breaker_registry


class ProviderMetrics:
    """Interface for provider call metrics."""

    def record_latency(self, provider: str, outcome: str, latency_ms: float) -> None:
        pass

    def inc_error(self, provider: str, reason: str) -> None:
        pass


class ProviderLogger:
    """Interface for structured logging of provider attempts."""

    def log_attempt(
        self,
        ctx: ProviderContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        pass


class ProviderExecutor:
    """Runs provider searches under the call policy."""

    def __init__(
        self,
        metrics: ProviderMetrics | None = None,
        logger: ProviderLogger | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
        registry: BreakerRegistry | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            metrics: Metrics recorder (optional, defaults to no-op)
            logger: Structured logger (optional, defaults to no-op)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
            registry: Breaker registry (default: process-wide registry)
        """
        self._metrics = metrics or ProviderMetrics()
        self._logger = logger or ProviderLogger()
        self._sleep = sleep_fn or asyncio.sleep
        self._registry = registry or get_breaker_registry()

    async def execute(
        self,
        ctx: ProviderContext,
        config: ProviderCallConfig,
        fn: Callable[[SearchCriteria], Awaitable[T]],
        criteria: SearchCriteria,
        *,
        source_url: str | None = None,
    ) -> ProviderResult[T]:
        """Execute one provider call with the full error handling pipeline.

        Args:
            ctx: Provider context with trip and producer identity
            config: Execution configuration
            fn: Async provider function
            criteria: Search criteria passed to ``fn``
            source_url: Recorded on the provenance when the provider is remote

        Returns:
            ProviderResult wrapping the provider output with provenance

        Raises:
            ProviderUnavailableError: Breaker open, timeout or failure after all retries
        """
        start_time = time.monotonic()
        breaker = self._registry.get_or_create(ctx.provider, config)

        if breaker.is_open(datetime.now(UTC)):
            elapsed_ms = (time.monotonic() - start_time) * 1000
            self._metrics.record_latency(ctx.provider, "breaker_open", elapsed_ms)
            self._metrics.inc_error(ctx.provider, "breaker_open")
            self._logger.log_attempt(
                ctx, 0, "breaker_open", elapsed_ms, error_reason="breaker_open"
            )
            raise ProviderUnavailableError(
                ctx.provider, f"Circuit breaker open for provider {ctx.provider}"
            )

        last_error: Exception | None = None
        for attempt in range(config.retry_count + 1):
            attempt_start = time.monotonic()

            try:
                result = await asyncio.wait_for(
                    fn(criteria), timeout=config.hard_timeout_ms / 1000
                )

                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                breaker.record_success()
                self._metrics.record_latency(ctx.provider, "success", elapsed_ms)
                self._logger.log_attempt(ctx, attempt + 1, "success", elapsed_ms)

                provenance = Provenance(
                    source=f"provider.{ctx.provider}",
                    ref_id=criteria.trip_id,
                    source_url=source_url,
                    fetched_at=datetime.now(UTC),
                )
                return ProviderResult(value=result, provenance=provenance)

            except TimeoutError as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                last_error = e
                self._metrics.inc_error(ctx.provider, "timeout")
                self._logger.log_attempt(
                    ctx, attempt + 1, "timeout", elapsed_ms, error_reason="timeout"
                )

            except Exception as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                last_error = e
                self._metrics.inc_error(ctx.provider, "execution_error")
                self._logger.log_attempt(
                    ctx, attempt + 1, "error", elapsed_ms, error_reason=type(e).__name__
                )

            breaker.record_failure(datetime.now(UTC))
            if breaker.is_open(datetime.now(UTC)):
                break

            if attempt < config.retry_count:
                jitter_ms = random.uniform(config.retry_jitter_min_ms, config.retry_jitter_max_ms)
                await self._sleep(jitter_ms / 1000)

        self._metrics.record_latency(
            ctx.provider, "unavailable", (time.monotonic() - start_time) * 1000
        )
        if isinstance(last_error, TimeoutError):
            raise ProviderUnavailableError(
                ctx.provider, f"Provider {ctx.provider} timed out after all retries"
            ) from last_error
        raise ProviderUnavailableError(
            ctx.provider, f"Provider {ctx.provider} failed after all retries: {last_error}"
        ) from last_error
