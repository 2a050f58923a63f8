from __future__ import annotations

from enum import IntEnum, StrEnum


class PartnerLevel(IntEnum):
    """Depth of a partner node; level 7 is the end user and not a partner."""

    SYSTEM_ADMIN = 1
    HEAD_OFFICE = 2
    MAIN_OFFICE = 3
    SUB_OFFICE = 4
    DISTRIBUTOR = 5
    STORE = 6


class PartnerType(StrEnum):
    """Type tag stored alongside the numeric level."""

    SYSTEM_ADMIN = "system_admin"
    HEAD_OFFICE = "head_office"
    MAIN_OFFICE = "main_office"
    SUB_OFFICE = "sub_office"
    DISTRIBUTOR = "distributor"
    STORE = "store"

    @classmethod
    def for_level(cls, level: int) -> PartnerType:
        return _TYPE_BY_LEVEL[PartnerLevel(level)]


_TYPE_BY_LEVEL: dict[PartnerLevel, PartnerType] = {
    PartnerLevel.SYSTEM_ADMIN: PartnerType.SYSTEM_ADMIN,
    PartnerLevel.HEAD_OFFICE: PartnerType.HEAD_OFFICE,
    PartnerLevel.MAIN_OFFICE: PartnerType.MAIN_OFFICE,
    PartnerLevel.SUB_OFFICE: PartnerType.SUB_OFFICE,
    PartnerLevel.DISTRIBUTOR: PartnerType.DISTRIBUTOR,
    PartnerLevel.STORE: PartnerType.STORE,
}


class PartnerStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
