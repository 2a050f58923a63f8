"""Domain error taxonomy shared by every ledger component."""

from __future__ import annotations

import uuid
from decimal import Decimal


class LedgerError(RuntimeError):
    """Base class for partner ledger domain errors."""


class ValidationError(LedgerError):
    """Raised when a request is malformed or violates a business rule."""


class NodeNotFoundError(LedgerError):
    """Raised when a partner, user or transaction cannot be found."""


class HierarchyTooDeepError(LedgerError):
    """Raised when a walk over parent links exceeds the configured bound."""

    def __init__(self, node_id: uuid.UUID, max_depth: int) -> None:
        super().__init__(
            f"Hierarchy walk from {node_id} exceeded {max_depth} hops"
        )
        self.node_id = node_id
        self.max_depth = max_depth


class MissingCredentialError(LedgerError):
    """Raised when no complete provider credential applies to a node."""


class InsufficientFundsError(LedgerError):
    """Raised before any write when a debit exceeds the available amount."""

    def __init__(
        self,
        holder_id: uuid.UUID,
        available: Decimal,
        required: Decimal,
        *,
        what: str = "balance",
    ) -> None:
        super().__init__(
            f"Insufficient {what} for {holder_id}: "
            f"available={available}, required={required}"
        )
        self.holder_id = holder_id
        self.available = available
        self.required = required


class BalanceConflictError(LedgerError):
    """Raised when a balance changed between the read and the conditional write."""


class AlreadyProcessedError(LedgerError):
    """Raised when another actor already claimed or finished a transaction."""


class ExternalApiFailureError(LedgerError):
    """Raised when the settlement provider rejects a call or does not answer."""

    def __init__(self, message: str, *, outcome_unknown: bool = False) -> None:
        super().__init__(message)
        self.outcome_unknown = outcome_unknown


class PersistenceFailureError(LedgerError):
    """Raised when the provider settled but the internal ledger could not follow.

    The external and internal states have diverged. Operators must reconcile
    manually; the operation is never retried automatically.
    """

    def __init__(self, transaction_id: uuid.UUID, message: str) -> None:
        super().__init__(message)
        self.transaction_id = transaction_id
