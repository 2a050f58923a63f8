from __future__ import annotations

from .engine import (
    LedgerEngine,
    PointsOutcome,
    SettlementOutcome,
    TransferOutcome,
    normalise_amount,
)
from .enums import BalanceOperation, PointTransactionType, TransferDirection
from .models import BalanceLog, PointTransaction
from .reconciliation import Reconciler, ReconciliationReport, reconcile
from .tiers import DirectlyDebited, ExternallySynced, TierPolicy, tier_for

__all__ = [
    "BalanceLog",
    "BalanceOperation",
    "DirectlyDebited",
    "ExternallySynced",
    "LedgerEngine",
    "PointTransaction",
    "PointTransactionType",
    "PointsOutcome",
    "Reconciler",
    "ReconciliationReport",
    "SettlementOutcome",
    "TierPolicy",
    "TransferDirection",
    "TransferOutcome",
    "normalise_amount",
    "reconcile",
    "tier_for",
]
