from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Protocol

import structlog

from partner_ledger.observability.sentry import capture_message

from .enums import IncidentKind, TransactionType


@dataclass(frozen=True, slots=True)
class Incident:
    """Something an operator has to reconcile by hand against the provider."""

    kind: IncidentKind
    transaction_id: uuid.UUID
    transaction_type: TransactionType
    actor_id: uuid.UUID
    amount: Decimal
    provider: str
    detail: str

    def as_context(self) -> dict[str, str]:
        return {key: str(value) for key, value in asdict(self).items()}


class IncidentReporter(Protocol):
    """Escalates divergences between the provider and the internal ledger."""

    async def report(self, incident: Incident) -> None:
        """Surface the incident to operators."""


class LoggingIncidentReporter:
    """Default reporter: a structlog event plus a Sentry message."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(__name__)

    async def report(self, incident: Incident) -> None:
        context = incident.as_context()
        if incident.kind is IncidentKind.PERSISTENCE_FAILURE:
            self._logger.critical("ledger_divergence_detected", **context)
            level = "fatal"
        else:
            self._logger.error("settlement_incident_reported", **context)
            level = "error"
        capture_message(
            f"{incident.kind.value}: transaction {incident.transaction_id}",
            level=level,
            **context,
        )
