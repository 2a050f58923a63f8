from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.api.dependencies.actors import get_current_partner
from partner_ledger.api.schemas.reconciliation import (
    ReconciliationEntry,
    ReconciliationResponse,
)
from partner_ledger.db.dependencies import get_db_session
from partner_ledger.ledger.dependencies import get_reconciler
from partner_ledger.ledger.reconciliation import Reconciler
from partner_ledger.partners.dependencies import get_hierarchy_resolver
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import Partner

router = APIRouter(prefix="/api/v1/reconciliation", tags=["reconciliation"])


@router.get(
    "",
    response_model=ReconciliationResponse,
    summary="Compare balances with their log totals across the actor's subtree",
)
async def reconcile_subtree(
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
    reconciler: Reconciler = Depends(get_reconciler),
) -> ReconciliationResponse:
    scope = await hierarchy.get_descendants(session, actor.id)
    scope.add(actor.id)
    reports = await reconciler.reconcile(session, scope)

    entries = [
        ReconciliationEntry(
            partner_id=report.partner_id,
            username=report.username,
            level=report.level,
            balance=report.balance,
            initial_balance=report.initial_balance,
            log_total=report.log_total,
            entry_count=report.entry_count,
            drift=report.drift,
            is_consistent=report.is_consistent,
        )
        for report in reports
    ]
    return ReconciliationResponse(
        checked=len(entries),
        drifted=sum(1 for entry in entries if not entry.is_consistent),
        entries=entries,
    )
