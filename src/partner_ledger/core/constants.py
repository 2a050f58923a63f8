"""Global constants for the partner ledger service."""

from __future__ import annotations

from decimal import Decimal

SERVICE_NAME = "partner-ledger"
DEFAULT_ENV_FILE = ".env"
SECRETS_DIR = "/run/secrets"

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_CTX_KEY = "request_id"
REQUEST_ID_MAX_LENGTH = 128
ACTOR_ID_HEADER = "X-Partner-Id"
ACTOR_ID_CTX_KEY = "actor_id"

# Never rendered in log output.
MASKED_LOG_KEYS = frozenset({"secret", "token", "signature"})

ROOT_LEVEL = 1
HEAD_OFFICE_LEVEL = 2
LEAF_PARTNER_LEVEL = 6
MAX_HIERARCHY_HOPS = 10

MONEY_QUANTUM = Decimal("0.01")
