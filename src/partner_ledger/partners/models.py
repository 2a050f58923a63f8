from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from partner_ledger.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from partner_ledger.db.types import GUID, Money, ProviderList

from .enums import PartnerLevel, PartnerStatus, PartnerType

_ZERO = Decimal("0.00")


class Partner(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A node of the reseller tree (levels 1 to 6)."""

    __tablename__ = "partners"
    __table_args__ = (
        CheckConstraint("level BETWEEN 1 AND 6", name="level_range"),
        CheckConstraint(
            "(level = 1 AND parent_id IS NULL) OR (level > 1 AND parent_id IS NOT NULL)",
            name="root_has_no_parent",
        ),
        Index("ix_partners_level", "level"),
    )

    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String(128))
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    partner_type: Mapped[PartnerType] = mapped_column(
        Enum(PartnerType, name="partner_type", native_enum=False),
        nullable=False,
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(),
        ForeignKey("partners.id", ondelete="RESTRICT"),
        index=True,
    )
    status: Mapped[PartnerStatus] = mapped_column(
        Enum(PartnerStatus, name="partner_status", native_enum=False),
        nullable=False,
        default=PartnerStatus.ACTIVE,
    )
    balance: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=_ZERO)
    initial_balance: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=_ZERO
    )
    commission_rolling: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=_ZERO
    )
    commission_losing: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=_ZERO
    )
    enabled_providers: Mapped[list[str]] = mapped_column(
        ProviderList(), nullable=False, default=list
    )

    @property
    def tier_level(self) -> PartnerLevel:
        return PartnerLevel(self.level)

    @property
    def is_active(self) -> bool:
        return self.status is PartnerStatus.ACTIVE


class EndUser(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A level-7 player account attached to exactly one referrer node."""

    __tablename__ = "end_users"

    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    nickname: Mapped[str | None] = mapped_column(String(128))
    referrer_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("partners.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[PartnerStatus] = mapped_column(
        Enum(PartnerStatus, name="end_user_status", native_enum=False),
        nullable=False,
        default=PartnerStatus.ACTIVE,
    )
    balance: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=_ZERO)
    points: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=_ZERO)
    commission_rolling: Mapped[Decimal | None] = mapped_column(Money())
    commission_losing: Mapped[Decimal | None] = mapped_column(Money())
