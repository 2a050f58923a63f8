from __future__ import annotations

from typing import Any, NotRequired, TypedDict

__all__ = [
    "BalanceQueryPayload",
    "SettlementPayload",
    "SettlementResponse",
]


class SettlementPayload(TypedDict):
    """Body sent with deposit (POST) and withdrawal (PUT) calls."""

    opcode: str
    username: str
    token: str
    amount: int
    signature: str


class BalanceQueryPayload(TypedDict):
    opcode: str
    username: str
    token: str
    signature: str


class SettlementResponse(TypedDict):
    """Envelope returned by the provider for every call."""

    RESULT: bool
    DATA: NotRequired[Any]
    message: NotRequired[str]
