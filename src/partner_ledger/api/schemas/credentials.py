from __future__ import annotations

import uuid

from pydantic import BaseModel, Field

from partner_ledger.credentials.enums import Provider


class CredentialStoreRequest(BaseModel):
    opcode: str = Field(..., min_length=1, max_length=128)
    secret: str = Field(..., min_length=1, max_length=256)
    token: str = Field(..., min_length=1, max_length=256)


class CredentialStoreResponse(BaseModel):
    owner_id: uuid.UUID
    provider: Provider
    opcode: str


class CredentialScopeResponse(BaseModel):
    """Where a node's provider calls are signed from; secrets are never returned."""

    scope_node_id: uuid.UUID
    owner_id: uuid.UUID
    opcode: str


class ResolvedCredentialResponse(BaseModel):
    partner_id: uuid.UUID
    provider: Provider
    entries: list[CredentialScopeResponse]
