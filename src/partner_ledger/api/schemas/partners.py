from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from partner_ledger.ledger.enums import BalanceOperation, TransferDirection
from partner_ledger.partners.enums import PartnerStatus, PartnerType
from partner_ledger.partners.service import EndUserCreate, PartnerCreate


class PartnerCreateRequest(BaseModel):
    """Payload for creating a child node under ``parent_id``."""

    parent_id: uuid.UUID
    username: str = Field(..., min_length=2, max_length=64)
    nickname: str | None = Field(default=None, max_length=128)
    opening_balance: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    commission_rolling: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    commission_losing: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    enabled_providers: list[str] = Field(default_factory=list)

    model_config = ConfigDict(str_strip_whitespace=True)

    def to_domain(self) -> PartnerCreate:
        return PartnerCreate(
            username=self.username,
            nickname=self.nickname,
            opening_balance=self.opening_balance,
            commission_rolling=self.commission_rolling,
            commission_losing=self.commission_losing,
            enabled_providers=list(self.enabled_providers),
        )


class PartnerResponse(BaseModel):
    id: uuid.UUID
    username: str
    nickname: str | None
    level: int
    partner_type: PartnerType
    parent_id: uuid.UUID | None
    status: PartnerStatus
    balance: Decimal
    initial_balance: Decimal
    commission_rolling: Decimal
    commission_losing: Decimal
    enabled_providers: list[str]
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class DescendantsResponse(BaseModel):
    partner_id: uuid.UUID
    descendant_ids: list[uuid.UUID]


class EndUserCreateRequest(BaseModel):
    username: str = Field(..., min_length=2, max_length=64)
    nickname: str | None = Field(default=None, max_length=128)
    commission_rolling: Decimal | None = Field(default=None, ge=0, le=100)
    commission_losing: Decimal | None = Field(default=None, ge=0, le=100)

    model_config = ConfigDict(str_strip_whitespace=True)

    def to_domain(self) -> EndUserCreate:
        return EndUserCreate(
            username=self.username,
            nickname=self.nickname,
            commission_rolling=self.commission_rolling,
            commission_losing=self.commission_losing,
        )


class EndUserResponse(BaseModel):
    id: uuid.UUID
    username: str
    nickname: str | None
    referrer_id: uuid.UUID
    status: PartnerStatus
    balance: Decimal
    points: Decimal
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class TransferRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    direction: TransferDirection = TransferDirection.SEND
    memo: str | None = Field(default=None, max_length=500)


class BalanceLogResponse(BaseModel):
    id: uuid.UUID
    partner_id: uuid.UUID
    operation: BalanceOperation
    balance_before: Decimal
    balance_after: Decimal
    delta: Decimal
    counterpart_partner_id: uuid.UUID | None
    user_id: uuid.UUID | None
    transaction_id: uuid.UUID | None
    memo: str | None

    model_config = ConfigDict(from_attributes=True)


class TransferResponse(BaseModel):
    sender: BalanceLogResponse
    receiver: BalanceLogResponse
