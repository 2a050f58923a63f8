"""Error tracking and business metrics for settlements and the ledger."""

from .metrics import MetricsService, metrics_service
from .sentry import add_breadcrumb, capture_exception, capture_message, configure_sentry

__all__ = [
    "MetricsService",
    "add_breadcrumb",
    "capture_exception",
    "capture_message",
    "configure_sentry",
    "metrics_service",
]
