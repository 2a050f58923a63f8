from __future__ import annotations

from fastapi import Depends

from partner_ledger.core.config import Settings, get_settings

from .hierarchy import HierarchyResolver
from .service import PartnerService


def get_hierarchy_resolver(
    settings: Settings = Depends(get_settings),
) -> HierarchyResolver:
    return HierarchyResolver(max_depth=settings.hierarchy.max_depth)


def get_partner_service(
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
) -> PartnerService:
    return PartnerService(hierarchy=hierarchy)
