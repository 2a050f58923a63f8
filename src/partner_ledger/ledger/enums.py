from __future__ import annotations

from enum import StrEnum


class BalanceOperation(StrEnum):
    """Reason recorded on every partner balance log entry."""

    GRANT_POINTS = "grant_points"
    RECOVER_POINTS = "recover_points"
    DEPOSIT_APPROVAL = "deposit_approval"
    WITHDRAWAL_APPROVAL = "withdrawal_approval"
    PARTNER_TRANSFER_SEND = "partner_transfer_send"
    PARTNER_TRANSFER_RECEIVE = "partner_transfer_receive"


class PointTransactionType(StrEnum):
    GRANT = "grant"
    RECOVER = "recover"
    CONVERT_TO_BALANCE = "convert_to_balance"


class TransferDirection(StrEnum):
    """Direction of a partner-to-partner transfer, seen from the ancestor."""

    SEND = "send"
    RECLAIM = "reclaim"
