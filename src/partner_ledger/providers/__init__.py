from __future__ import annotations

from .exceptions import (
    SettlementConfigurationError,
    SettlementError,
    SettlementRejectedError,
    SettlementTimeoutError,
)
from .gateway import SettlementGateway, SignedSettlementGateway
from .signing import balance_signature, floor_amount, settlement_signature, sign

__all__ = [
    "SettlementConfigurationError",
    "SettlementError",
    "SettlementGateway",
    "SettlementRejectedError",
    "SettlementTimeoutError",
    "SignedSettlementGateway",
    "balance_signature",
    "floor_amount",
    "settlement_signature",
    "sign",
]
