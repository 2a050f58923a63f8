"""Prometheus metrics collection and configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

if TYPE_CHECKING:
    from fastapi import FastAPI
    from prometheus_client.registry import CollectorRegistry

    from partner_ledger.core.config import PrometheusSettings

# Business metrics
TRANSACTION_APPROVALS_TOTAL = Counter(
    "transaction_approvals_total",
    "Outcomes of deposit and withdrawal approvals",
    ["type", "outcome"],
)

LEDGER_MUTATIONS_TOTAL = Counter(
    "ledger_mutations_total",
    "Balance log entries appended by the ledger engine",
    ["operation"],
)

RECONCILIATION_DRIFT_TOTAL = Counter(
    "reconciliation_drift_total",
    "Partners whose balance disagrees with the sum of their log deltas",
)

SETTLEMENT_CALL_DURATION_SECONDS = Histogram(
    "settlement_call_duration_seconds",
    "Latency of calls to external settlement providers",
    ["provider", "operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf")],
)

CREDENTIAL_CACHE_LOOKUPS_TOTAL = Counter(
    "credential_cache_lookups_total",
    "Credential cache lookups by result",
    ["result"],
)


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry: CollectorRegistry | None = registry
        self._instrumentator: Instrumentator | None = None

    def create_instrumentator(self, settings: PrometheusSettings) -> Instrumentator:
        return Instrumentator(
            should_group_status_codes=True,
            should_ignore_untemplated=True,
            excluded_handlers=settings.excluded_handlers,
            round_latency_decimals=4,
            registry=self.registry,
        )

    def instrument_app(self, app: FastAPI, settings: PrometheusSettings) -> None:
        """Instrument FastAPI application with metrics."""
        if not settings.enabled:
            return

        self._instrumentator = self.create_instrumentator(settings)
        self._instrumentator.instrument(app)
        self._instrumentator.expose(
            app,
            should_gzip=True,
            endpoint=settings.metrics_path,
            include_in_schema=False,
        )

    def record_approval(self, transaction_type: str, outcome: str) -> None:
        TRANSACTION_APPROVALS_TOTAL.labels(type=transaction_type, outcome=outcome).inc()

    def record_ledger_mutation(self, operation: str) -> None:
        LEDGER_MUTATIONS_TOTAL.labels(operation=operation).inc()

    def record_reconciliation_drift(self, count: int = 1) -> None:
        if count > 0:
            RECONCILIATION_DRIFT_TOTAL.inc(count)

    def observe_settlement_call(
        self, provider: str, operation: str, duration: float
    ) -> None:
        SETTLEMENT_CALL_DURATION_SECONDS.labels(
            provider=provider, operation=operation
        ).observe(duration)

    def record_cache_lookup(self, hit: bool) -> None:
        CREDENTIAL_CACHE_LOOKUPS_TOTAL.labels(result="hit" if hit else "miss").inc()


# Global metrics service instance
metrics_service: MetricsService = MetricsService()
