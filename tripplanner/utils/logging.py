"""Structured logging for provider calls."""

import logging
from typing import Any

from tripplanner.providers.executor import ProviderContext, ProviderLogger

logger = logging.getLogger(__name__)


class StructuredProviderLogger(ProviderLogger):
    """Structured logger for provider attempts."""

    def log_attempt(
        self,
        ctx: ProviderContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log provider attempt with structured data."""
        log_data: dict[str, Any] = {
            "trip_id": ctx.trip_id,
            "producer": ctx.producer,
            "provider": ctx.provider,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"Provider call: {ctx.provider} - {outcome}"

        if outcome == "success":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
