"""Level-dependent money rules.

Levels 1 and 2 are settled against the external provider and reconciled
later, so they are never funds-checked and point operations leave their
balance untouched. Levels 3 to 6 hold real money inside the ledger and are
debited synchronously.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from partner_ledger.core.exceptions import InsufficientFundsError
from partner_ledger.partners.enums import PartnerLevel

_ZERO = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class TierPolicy:
    name: str
    checks_funds: bool
    moves_balance_on_points: bool

    def ensure_can_debit(
        self, holder_id: uuid.UUID, balance: Decimal, amount: Decimal
    ) -> None:
        if self.checks_funds and balance < amount:
            raise InsufficientFundsError(holder_id, balance, amount)

    def point_grant_delta(self, amount: Decimal) -> Decimal:
        """Balance change applied to the actor when it grants points."""
        return -amount if self.moves_balance_on_points else _ZERO

    def point_recover_delta(self, amount: Decimal) -> Decimal:
        return amount if self.moves_balance_on_points else _ZERO


ExternallySynced = TierPolicy(
    name="externally_synced", checks_funds=False, moves_balance_on_points=False
)
DirectlyDebited = TierPolicy(
    name="directly_debited", checks_funds=True, moves_balance_on_points=True
)


def tier_for(level: int) -> TierPolicy:
    tier_level = PartnerLevel(level)
    if tier_level <= PartnerLevel.HEAD_OFFICE:
        return ExternallySynced
    return DirectlyDebited
