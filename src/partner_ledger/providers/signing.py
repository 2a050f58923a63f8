"""Request signatures expected by the settlement provider.

The provider hashes the UTF-8 concatenation of the call parameters, in a fixed
order and without separators, followed by the shared secret. Any deviation in
order or formatting makes every call fail.
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Iterable
from decimal import ROUND_FLOOR, Decimal


def sign(parts: Iterable[str], secret: str) -> str:
    payload = "".join(parts) + secret
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def floor_amount(amount: Decimal | int | float) -> int:
    """Providers accept whole units only; fractions are dropped."""
    if isinstance(amount, Decimal):
        return int(amount.to_integral_value(rounding=ROUND_FLOOR))
    return math.floor(amount)


def settlement_signature(
    opcode: str, username: str, token: str, amount: int, secret: str
) -> str:
    return sign([opcode, username, token, str(amount)], secret)


def balance_signature(opcode: str, username: str, token: str, secret: str) -> str:
    return sign([opcode, username, token], secret)
