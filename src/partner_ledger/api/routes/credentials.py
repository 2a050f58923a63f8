from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.api.dependencies.actors import get_current_partner
from partner_ledger.api.schemas.credentials import (
    CredentialStoreRequest,
    CredentialStoreResponse,
)
from partner_ledger.credentials.dependencies import get_credential_service
from partner_ledger.credentials.enums import Provider
from partner_ledger.credentials.service import CredentialService
from partner_ledger.db.dependencies import get_db_session
from partner_ledger.partners.models import Partner

router = APIRouter(prefix="/api/v1/credentials", tags=["credentials"])


@router.put(
    "/{provider}",
    response_model=CredentialStoreResponse,
    summary="Store or rotate the acting level-1 partner's provider credential",
)
async def store_credential(
    provider: Provider,
    payload: CredentialStoreRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    service: CredentialService = Depends(get_credential_service),
) -> CredentialStoreResponse:
    credential = await service.store(
        session,
        actor.id,
        provider,
        opcode=payload.opcode,
        secret=payload.secret,
        token=payload.token,
    )
    await session.commit()
    await service.invalidate_cached(actor.id, provider)
    return CredentialStoreResponse(
        owner_id=credential.owner_id,
        provider=credential.provider,
        opcode=credential.opcode or "",
    )
