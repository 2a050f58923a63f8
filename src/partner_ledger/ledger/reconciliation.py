from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.observability.metrics import metrics_service
from partner_ledger.partners.models import Partner

from .models import BalanceLog

_ZERO = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    partner_id: uuid.UUID
    username: str
    level: int
    balance: Decimal
    initial_balance: Decimal
    log_total: Decimal
    entry_count: int

    @property
    def expected_delta(self) -> Decimal:
        return self.balance - self.initial_balance

    @property
    def drift(self) -> Decimal:
        """Amount by which the stored balance exceeds what the logs explain."""
        return self.expected_delta - self.log_total

    @property
    def is_consistent(self) -> bool:
        return self.drift == _ZERO


class Reconciler:
    """Recomputes partner balances from their balance log entries.

    Multi-row approvals are not atomic across partners, so a crash between two
    writes shows up here as drift on exactly the nodes that were missed.
    """

    def __init__(self) -> None:
        self._logger = structlog.get_logger(__name__)

    async def reconcile(
        self,
        session: AsyncSession,
        partner_ids: Iterable[uuid.UUID] | None = None,
    ) -> list[ReconciliationReport]:
        stmt = select(Partner).order_by(Partner.level, Partner.username)
        scope = None if partner_ids is None else set(partner_ids)
        if scope is not None:
            stmt = stmt.where(Partner.id.in_(scope))
        partners = list((await session.execute(stmt)).scalars().all())

        totals: dict[uuid.UUID, Decimal] = defaultdict(lambda: _ZERO)
        counts: dict[uuid.UUID, int] = defaultdict(int)
        log_stmt = select(BalanceLog.partner_id, BalanceLog.delta)
        if scope is not None:
            log_stmt = log_stmt.where(BalanceLog.partner_id.in_(scope))
        for partner_id, delta in await session.execute(log_stmt):
            totals[partner_id] += delta
            counts[partner_id] += 1

        reports = [
            ReconciliationReport(
                partner_id=partner.id,
                username=partner.username,
                level=partner.level,
                balance=partner.balance,
                initial_balance=partner.initial_balance,
                log_total=totals[partner.id],
                entry_count=counts[partner.id],
            )
            for partner in partners
        ]

        drifted = [report for report in reports if not report.is_consistent]
        for report in drifted:
            self._logger.warning(
                "reconciliation_drift_detected",
                partner_id=str(report.partner_id),
                balance=str(report.balance),
                log_total=str(report.log_total),
                drift=str(report.drift),
            )
        metrics_service.record_reconciliation_drift(len(drifted))
        self._logger.info(
            "reconciliation_completed", checked=len(reports), drifted=len(drifted)
        )
        return reports


async def reconcile(
    session: AsyncSession, partner_ids: Iterable[uuid.UUID] | None = None
) -> list[ReconciliationReport]:
    return await Reconciler().reconcile(session, partner_ids)
