from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from partner_ledger.credentials.enums import Provider
from partner_ledger.transactions.enums import TransactionStatus, TransactionType


class TransactionCreateRequest(BaseModel):
    user_id: uuid.UUID
    transaction_type: TransactionType
    amount: Decimal = Field(..., gt=0)
    provider: Provider = Provider.INVEST
    memo: str | None = Field(default=None, max_length=500)


class TransactionRejectRequest(BaseModel):
    memo: str | None = Field(default=None, max_length=500)


class TransactionFailRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class TransactionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    partner_id: uuid.UUID
    provider: Provider
    transaction_type: TransactionType
    amount: Decimal
    status: TransactionStatus
    balance_before: Decimal | None
    balance_after: Decimal | None
    claimed_by: uuid.UUID | None
    processed_by: uuid.UUID | None
    processed_at: dt.datetime | None
    memo: str | None
    failure_reason: str | None
    external_reference: str | None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)
