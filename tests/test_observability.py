"""Tests for settings, Sentry hooks, metrics and incident reporting."""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
from prometheus_client import REGISTRY
from pydantic import SecretStr

from partner_ledger.core.config import Environment, Settings
from partner_ledger.core.logging import mask_credentials
from partner_ledger.observability import metrics_service
from partner_ledger.observability.metrics import (
    CREDENTIAL_CACHE_LOOKUPS_TOTAL,
    LEDGER_MUTATIONS_TOTAL,
    RECONCILIATION_DRIFT_TOTAL,
    TRANSACTION_APPROVALS_TOTAL,
)
from partner_ledger.observability.sentry import _before_send, configure_sentry
from partner_ledger.transactions.enums import IncidentKind, TransactionType
from partner_ledger.transactions.incidents import Incident, LoggingIncidentReporter


def make_incident(kind: IncidentKind) -> Incident:
    return Incident(
        kind=kind,
        transaction_id=uuid.uuid4(),
        transaction_type=TransactionType.DEPOSIT,
        actor_id=uuid.uuid4(),
        amount=Decimal("100.00"),
        provider="invest",
        detail="boom",
    )


def test_settings_read_nested_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test nested settings and provider keys from the environment."""
    monkeypatch.setenv("HIERARCHY__MAX_DEPTH", "12")
    monkeypatch.setenv("PROVIDERS__OROPLAY__BASE_URL", "https://oro.test")
    monkeypatch.setenv("CREDENTIAL_CACHE__TTL_SECONDS", "30")
    monkeypatch.setenv("REDIS__URL", "redis://cache:6379/2")

    settings = Settings()

    assert settings.environment is Environment.TEST
    assert settings.is_testing is True
    assert settings.debug is True
    assert settings.hierarchy.max_depth == 12
    assert settings.credential_cache.ttl_seconds == 30
    assert settings.redis.url == "redis://cache:6379/2"
    assert settings.providers["oroplay"].base_url == "https://oro.test"


def test_database_dsn_is_assembled() -> None:
    """Test DSN assembly when no explicit URL is configured."""
    settings = Settings()
    settings.database.url = None
    settings.database.password = SecretStr("p@ss word")

    assert settings.database.dsn.startswith("postgresql+asyncpg://postgres:p%40ss+word@")


def test_configure_sentry_disabled() -> None:
    """Test Sentry configuration when disabled."""
    settings = Settings()

    assert configure_sentry(settings.sentry) is False


@patch("sentry_sdk.init")
def test_configure_sentry_enabled(mock_init: Mock) -> None:
    """Test Sentry configuration when enabled."""
    settings = Settings()
    settings.sentry.enabled = True
    settings.sentry.dsn = SecretStr("https://test@sentry.io/123")
    settings.sentry.environment = "test"
    settings.sentry.sample_rate = 0.5

    assert configure_sentry(settings.sentry) is True

    kwargs = mock_init.call_args[1]
    assert kwargs["dsn"] == "https://test@sentry.io/123"
    assert kwargs["sample_rate"] == 0.5
    assert kwargs["before_send"] is _before_send


def test_before_send_redacts_provider_secrets() -> None:
    """Test that credential material never leaves the process."""
    event = {"extra": {"secret": "abc", "Token": "def", "transaction_id": "t-1"}}

    cleaned = _before_send(event, None)

    assert cleaned is not None
    assert cleaned["extra"] == {
        "secret": "[redacted]",
        "Token": "[redacted]",
        "transaction_id": "t-1",
    }


def test_before_send_drops_health_checks() -> None:
    """Test that health check noise is discarded."""
    assert _before_send({"request": {"url": "http://svc/health"}}, None) is None


def test_business_metrics_registered() -> None:
    """Test that ledger metrics are exported by the default registry."""
    TRANSACTION_APPROVALS_TOTAL.labels(type="withdrawal", outcome="failed")
    LEDGER_MUTATIONS_TOTAL.labels(operation="recover_points")
    CREDENTIAL_CACHE_LOOKUPS_TOTAL.labels(result="hit")

    assert REGISTRY.get_sample_value(
        "transaction_approvals_total", {"type": "withdrawal", "outcome": "failed"}
    ) is not None
    assert REGISTRY.get_sample_value(
        "ledger_mutations_total", {"operation": "recover_points"}
    ) is not None
    assert REGISTRY.get_sample_value(
        "credential_cache_lookups_total", {"result": "hit"}
    ) is not None
    assert REGISTRY.get_sample_value("reconciliation_drift_total") is not None


def test_metrics_service_counts() -> None:
    """Test approval and mutation counters."""
    labels = {"type": "deposit", "outcome": "completed"}
    before = REGISTRY.get_sample_value("transaction_approvals_total", labels) or 0
    mutations_before = (
        REGISTRY.get_sample_value("ledger_mutations_total", {"operation": "grant_points"})
        or 0
    )

    metrics_service.record_approval("deposit", "completed")
    metrics_service.record_ledger_mutation("grant_points")

    assert REGISTRY.get_sample_value("transaction_approvals_total", labels) == before + 1
    assert (
        REGISTRY.get_sample_value("ledger_mutations_total", {"operation": "grant_points"})
        == mutations_before + 1
    )


def test_zero_drift_is_not_counted() -> None:
    """Test that a clean reconciliation leaves the drift counter alone."""
    before = REGISTRY.get_sample_value("reconciliation_drift_total") or 0

    metrics_service.record_reconciliation_drift(0)

    assert (REGISTRY.get_sample_value("reconciliation_drift_total") or 0) == before


@patch("partner_ledger.transactions.incidents.capture_message")
async def test_persistence_failure_is_fatal(mock_capture: Mock) -> None:
    """Test that ledger divergence is escalated at the highest level."""
    incident = make_incident(IncidentKind.PERSISTENCE_FAILURE)

    await LoggingIncidentReporter().report(incident)

    mock_capture.assert_called_once()
    assert mock_capture.call_args[1]["level"] == "fatal"
    assert mock_capture.call_args[1]["transaction_id"] == str(incident.transaction_id)


@patch("partner_ledger.transactions.incidents.capture_message")
async def test_unknown_outcome_is_an_error(mock_capture: Mock) -> None:
    """Test that timeouts are reported below the divergence level."""
    await LoggingIncidentReporter().report(
        make_incident(IncidentKind.UNKNOWN_EXTERNAL_OUTCOME)
    )

    assert mock_capture.call_args[1]["level"] == "error"


def test_log_events_never_carry_provider_secrets() -> None:
    """Test that credential material is masked before rendering."""
    event = mask_credentials(
        None, "info", {"event": "credential_stored", "secret": "shh", "token": "", "opcode": "OPC"}
    )

    assert event == {"event": "credential_stored", "secret": "***", "token": "", "opcode": "OPC"}
