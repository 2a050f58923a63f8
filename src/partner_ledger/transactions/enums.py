from __future__ import annotations

from enum import StrEnum


class TransactionType(StrEnum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(StrEnum):
    """Life cycle of a request; every state but ``pending`` is terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


class IncidentKind(StrEnum):
    PERSISTENCE_FAILURE = "persistence_failure"
    UNKNOWN_EXTERNAL_OUTCOME = "unknown_external_outcome"
    LATE_CONFLICT = "late_conflict"
