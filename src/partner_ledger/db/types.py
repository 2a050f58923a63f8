"""Column types shared by every ledger table.

All of them behave the same on PostgreSQL and on the SQLite databases used by
the test-suite, which matters for the compare-and-set updates: a balance read
back from the database must compare equal to the value written.
"""

from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.type_api import TypeEngine
from sqlalchemy.types import CHAR, JSON, DateTime, Numeric, String, TypeDecorator

from partner_ledger.core.constants import MONEY_QUANTUM


def _is_postgres(dialect: Dialect) -> bool:
    return dialect.name == "postgresql"


class GUID(TypeDecorator[uuid.UUID]):
    """Partner, user and transaction identifiers: native UUID or CHAR(36)."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        native = PG_UUID(as_uuid=True) if _is_postgres(dialect) else CHAR(36)
        return dialect.type_descriptor(native)

    def process_bind_param(self, value: uuid.UUID | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        if not isinstance(value, uuid.UUID):
            raise TypeError(f"Identifiers must be UUID instances, got {type(value).__name__}")
        return value if _is_postgres(dialect) else str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class Money(TypeDecorator[Decimal]):
    """Exact two-place decimal amount.

    PostgreSQL stores NUMERIC(18, 2). Dialects without a native decimal (SQLite)
    store the canonical quantized string so equality predicates used by
    conditional balance updates compare exactly.
    """

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if _is_postgres(dialect):
            return dialect.type_descriptor(Numeric(18, 2, asdecimal=True))
        return dialect.type_descriptor(String(32))

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        try:
            amount = Decimal(str(value)).quantize(MONEY_QUANTUM)
        except InvalidOperation as exc:
            raise TypeError(f"Money values must be decimal-like, got {value!r}") from exc
        return amount if _is_postgres(dialect) else str(amount)

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return Decimal(str(value)).quantize(MONEY_QUANTUM)


class ProviderList(TypeDecorator[list[str]]):
    """Lower-cased, de-duplicated provider names kept as a JSON array."""

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return dialect.type_descriptor(JSONB() if _is_postgres(dialect) else JSON())

    def process_bind_param(self, value: list[str] | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        if isinstance(value, str) or not all(isinstance(item, str) for item in value):
            raise TypeError("Provider lists must be sequences of strings")
        return sorted({item.strip().lower() for item in value if item.strip()})

    def process_result_value(self, value: Any, dialect: Dialect) -> list[str] | None:
        if value is None:
            return None
        return [str(item) for item in value]


class UTCDateTime(TypeDecorator[dt.datetime]):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite has no timezone support, so naive values read back are tagged UTC.
    """

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value: dt.datetime | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not accepted; pass an aware UTC value")
        return value.astimezone(dt.UTC)

    def process_result_value(self, value: Any, dialect: Dialect) -> dt.datetime | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = dt.datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)
