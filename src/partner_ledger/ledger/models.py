from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import Enum, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from partner_ledger.db.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin
from partner_ledger.db.types import GUID, Money

from .enums import BalanceOperation, PointTransactionType


class BalanceLog(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Append-only record of one partner balance change.

    ``partner_id`` carries no foreign key so history outlives deleted nodes.
    """

    __tablename__ = "balance_logs"
    __table_args__ = (
        Index("ix_balance_logs_partner_created", "partner_id", "created_at"),
    )

    partner_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    operation: Mapped[BalanceOperation] = mapped_column(
        Enum(BalanceOperation, name="balance_operation", native_enum=False),
        nullable=False,
    )
    balance_before: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    delta: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    counterpart_partner_id: Mapped[uuid.UUID | None] = mapped_column(GUID())
    user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True)
    processed_by: Mapped[uuid.UUID | None] = mapped_column(GUID())
    memo: Mapped[str | None] = mapped_column(Text())


class PointTransaction(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Append-only audit of end-user point movements."""

    __tablename__ = "point_transactions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("end_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    partner_id: Mapped[uuid.UUID | None] = mapped_column(GUID())
    transaction_type: Mapped[PointTransactionType] = mapped_column(
        Enum(PointTransactionType, name="point_transaction_type", native_enum=False),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    points_before: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    points_after: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    memo: Mapped[str | None] = mapped_column(Text())
