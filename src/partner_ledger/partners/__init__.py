from __future__ import annotations

from .enums import PartnerLevel, PartnerStatus, PartnerType
from .hierarchy import HierarchyResolver
from .models import EndUser, Partner
from .service import PartnerService

__all__ = [
    "PartnerLevel",
    "PartnerStatus",
    "PartnerType",
    "HierarchyResolver",
    "EndUser",
    "Partner",
    "PartnerService",
]
