from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from sqlalchemy import Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from partner_ledger.credentials.enums import Provider
from partner_ledger.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from partner_ledger.db.types import GUID, Money, UTCDateTime

from .enums import TransactionStatus, TransactionType


class TransactionRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A deposit or withdrawal awaiting approval by a partner admin."""

    __tablename__ = "transaction_requests"
    __table_args__ = (
        Index("ix_transaction_requests_partner_status", "partner_id", "status"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("end_users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    provider: Mapped[Provider] = mapped_column(
        Enum(Provider, name="provider", native_enum=False),
        nullable=False,
        default=Provider.INVEST,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type", native_enum=False),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, name="transaction_status", native_enum=False),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    balance_before: Mapped[Decimal | None] = mapped_column(Money())
    balance_after: Mapped[Decimal | None] = mapped_column(Money())
    claimed_by: Mapped[uuid.UUID | None] = mapped_column(GUID())
    claimed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    processed_by: Mapped[uuid.UUID | None] = mapped_column(GUID())
    processed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    memo: Mapped[str | None] = mapped_column(Text())
    failure_reason: Mapped[str | None] = mapped_column(Text())
    external_reference: Mapped[str | None] = mapped_column(String(128))

    @property
    def is_pending(self) -> bool:
        return self.status is TransactionStatus.PENDING
