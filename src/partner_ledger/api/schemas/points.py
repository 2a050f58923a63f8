from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field


class PointsRequest(BaseModel):
    user_id: uuid.UUID
    amount: Decimal = Field(..., gt=0)
    memo: str | None = Field(default=None, max_length=500)


class PointsResponse(BaseModel):
    user_id: uuid.UUID
    points_before: Decimal
    points_after: Decimal
    actor_balance_before: Decimal | None = None
    actor_balance_after: Decimal | None = None
    log_delta: Decimal | None = None
