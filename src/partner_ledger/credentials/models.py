from __future__ import annotations

import uuid

from sqlalchemy import Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from partner_ledger.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from partner_ledger.db.types import GUID

from .enums import Provider


class ProviderCredential(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Operator code, secret and token issued by a provider to a level-1 node."""

    __tablename__ = "provider_credentials"
    __table_args__ = (
        UniqueConstraint("owner_id", "provider", name="uq_provider_credentials_owner"),
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[Provider] = mapped_column(
        Enum(Provider, name="provider", native_enum=False),
        nullable=False,
    )
    opcode: Mapped[str | None] = mapped_column(String(128))
    secret: Mapped[str | None] = mapped_column(String(256))
    token: Mapped[str | None] = mapped_column(String(256))

    @property
    def is_complete(self) -> bool:
        return bool(self.opcode and self.secret and self.token)
