"""Sentry error tracking integration."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import sentry_sdk
from sentry_sdk.integrations import Integration as SentryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from partner_ledger.core.config import SentrySettings

_SENSITIVE_KEYS = frozenset({"secret", "token", "opcode", "signature"})
_TAG_KEYS = frozenset({"provider", "transaction_id", "kind"})


def configure_sentry(settings: SentrySettings) -> bool:
    """Initialise the SDK; returns False when Sentry is disabled or has no DSN."""
    if not settings.enabled or settings.dsn is None:
        return False

    integrations: list[SentryIntegration] = [
        FastApiIntegration(),
        SqlalchemyIntegration(),
        LoggingIntegration(
            level=logging.INFO,
            event_level=logging.ERROR,
        ),
    ]

    sentry_sdk.init(
        dsn=settings.dsn.get_secret_value(),
        environment=settings.environment,
        release=settings.release,
        sample_rate=settings.sample_rate,
        traces_sample_rate=settings.traces_sample_rate,
        send_default_pii=settings.send_default_pii,
        integrations=integrations,
        before_send=_before_send,
    )
    return True


def _before_send(
    event: dict[str, Any],
    hint: dict[str, Any] | None,
) -> dict[str, Any] | None:
    """Strip provider secrets from extras and drop health check noise."""
    if event.get("request", {}).get("url", "").endswith("/health"):
        return None

    extra = event.get("extra")
    if isinstance(extra, dict):
        for key in list(extra):
            if key.lower() in _SENSITIVE_KEYS:
                extra[key] = "[redacted]"

    return event


@contextmanager
def _scope_with(extra: dict[str, Any]) -> Iterator[Any]:
    """Fresh scope carrying ``extra``; provider and transaction become searchable tags."""
    with sentry_sdk.new_scope() as scope:
        for key, value in extra.items():
            if key in _TAG_KEYS:
                scope.set_tag(key, str(value))
            scope.set_extra(key, value)
        yield scope


def capture_exception(exception: BaseException, **extra_context: Any) -> None:
    with _scope_with(extra_context):
        sentry_sdk.capture_exception(exception)


def capture_message(message: str, level: str = "info", **extra_context: Any) -> None:
    with _scope_with(extra_context):
        sentry_sdk.capture_message(message, level=level)


def add_breadcrumb(category: str, message: str, level: str = "info", **data: Any) -> None:
    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data)
