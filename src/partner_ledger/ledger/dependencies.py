from __future__ import annotations

from fastapi import Depends

from partner_ledger.partners.dependencies import get_hierarchy_resolver
from partner_ledger.partners.hierarchy import HierarchyResolver

from .engine import LedgerEngine
from .reconciliation import Reconciler


def get_ledger_engine(
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
) -> LedgerEngine:
    return LedgerEngine(hierarchy=hierarchy)


def get_reconciler() -> Reconciler:
    return Reconciler()
