"""Prometheus metrics for provider calls, producer runs and normalization."""

from prometheus_client import Counter, Histogram

from tripplanner.normalization.normalizer import NormalizerMetrics
from tripplanner.orchestration.orchestrator import RunMetrics
from tripplanner.providers.executor import ProviderMetrics

provider_latency_ms = Histogram(
    "provider_latency_ms",
    "Provider call latency in milliseconds",
    ["provider", "outcome"],
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 4000, 8000],
)

provider_errors_total = Counter(
    "provider_errors_total",
    "Total provider call errors",
    ["provider", "reason"],
)

producer_runs_total = Counter(
    "producer_runs_total",
    "Producer runs by terminal status",
    ["producer", "status"],
)

producer_duration_ms = Histogram(
    "producer_duration_ms",
    "Producer run duration in milliseconds",
    ["producer"],
    buckets=[50, 100, 250, 500, 1000, 2000, 4000, 8000, 16000],
)

normalization_skipped_total = Counter(
    "normalization_skipped_total",
    "Raw items skipped during normalization",
    ["producer", "reason"],
)


class PrometheusProviderMetrics(ProviderMetrics):
    """Prometheus-based provider metrics implementation."""

    def record_latency(self, provider: str, outcome: str, latency_ms: float) -> None:
        provider_latency_ms.labels(provider=provider, outcome=outcome).observe(latency_ms)

    def inc_error(self, provider: str, reason: str) -> None:
        provider_errors_total.labels(provider=provider, reason=reason).inc()


class PrometheusRunMetrics(RunMetrics):
    """Prometheus-based producer run metrics."""

    def record_run(self, producer: str, status: str, duration_ms: float) -> None:
        producer_runs_total.labels(producer=producer, status=status).inc()
        producer_duration_ms.labels(producer=producer).observe(duration_ms)


class PrometheusNormalizerMetrics(NormalizerMetrics):
    """Prometheus-based normalizer metrics."""

    def inc_skipped(self, producer: str, reason: str) -> None:
        normalization_skipped_total.labels(producer=producer, reason=reason).inc()
