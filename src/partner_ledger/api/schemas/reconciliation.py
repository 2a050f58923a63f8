from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel


class ReconciliationEntry(BaseModel):
    partner_id: uuid.UUID
    username: str
    level: int
    balance: Decimal
    initial_balance: Decimal
    log_total: Decimal
    entry_count: int
    drift: Decimal
    is_consistent: bool


class ReconciliationResponse(BaseModel):
    checked: int
    drifted: int
    entries: list[ReconciliationEntry]
