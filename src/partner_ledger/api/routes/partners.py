from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.api.dependencies.actors import (
    get_current_partner,
    require_managed_partner,
)
from partner_ledger.api.schemas.credentials import (
    CredentialScopeResponse,
    ResolvedCredentialResponse,
)
from partner_ledger.api.schemas.partners import (
    BalanceLogResponse,
    DescendantsResponse,
    EndUserCreateRequest,
    EndUserResponse,
    PartnerCreateRequest,
    PartnerResponse,
    TransferRequest,
    TransferResponse,
)
from partner_ledger.credentials.dependencies import get_credential_resolver
from partner_ledger.credentials.enums import Provider
from partner_ledger.credentials.resolver import CredentialResolver
from partner_ledger.credentials.types import CredentialBundle
from partner_ledger.db.dependencies import get_db_session
from partner_ledger.ledger.dependencies import get_ledger_engine
from partner_ledger.ledger.engine import LedgerEngine
from partner_ledger.partners.dependencies import (
    get_hierarchy_resolver,
    get_partner_service,
)
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import Partner
from partner_ledger.partners.service import PartnerService

router = APIRouter(prefix="/api/v1/partners", tags=["partners"])


@router.get("/me", response_model=PartnerResponse, summary="Acting partner")
async def read_me(actor: Partner = Depends(get_current_partner)) -> Partner:
    return actor


@router.post(
    "",
    response_model=PartnerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a child partner",
)
async def create_partner(
    payload: PartnerCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    service: PartnerService = Depends(get_partner_service),
) -> Partner:
    partner = await service.create_partner(
        session, actor.id, payload.parent_id, payload.to_domain()
    )
    await session.commit()
    return partner


@router.get("/{partner_id}", response_model=PartnerResponse)
async def read_partner(partner: Partner = Depends(require_managed_partner)) -> Partner:
    return partner


@router.delete(
    "/{partner_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_partner(
    partner_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    service: PartnerService = Depends(get_partner_service),
) -> Response:
    await service.delete_partner(session, actor.id, partner_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{partner_id}/descendants", response_model=DescendantsResponse)
async def list_descendants(
    partner: Partner = Depends(require_managed_partner),
    session: AsyncSession = Depends(get_db_session),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
) -> DescendantsResponse:
    descendants = await hierarchy.get_descendants(session, partner.id)
    return DescendantsResponse(
        partner_id=partner.id, descendant_ids=sorted(descendants, key=str)
    )


@router.get("/{partner_id}/ancestors", response_model=list[PartnerResponse])
async def list_ancestors(
    partner: Partner = Depends(require_managed_partner),
    session: AsyncSession = Depends(get_db_session),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
) -> list[Partner]:
    return await hierarchy.get_ancestor_chain(session, partner.id)


@router.post(
    "/{partner_id}/users",
    response_model=EndUserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(
    partner_id: uuid.UUID,
    payload: EndUserCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    service: PartnerService = Depends(get_partner_service),
) -> EndUserResponse:
    user = await service.create_user(session, actor.id, partner_id, payload.to_domain())
    await session.commit()
    return EndUserResponse.model_validate(user)


@router.post("/{partner_id}/transfers", response_model=TransferResponse)
async def transfer(
    partner_id: uuid.UUID,
    payload: TransferRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    ledger: LedgerEngine = Depends(get_ledger_engine),
) -> TransferResponse:
    outcome = await ledger.transfer(
        session,
        actor.id,
        partner_id,
        payload.amount,
        payload.direction,
        memo=payload.memo,
    )
    await session.commit()
    return TransferResponse(
        sender=BalanceLogResponse.model_validate(outcome.sender_log),
        receiver=BalanceLogResponse.model_validate(outcome.receiver_log),
    )


@router.get(
    "/{partner_id}/credentials/{provider}",
    response_model=ResolvedCredentialResponse,
    summary="Show which credential signs calls for a partner",
)
async def resolve_credential(
    provider: Provider,
    partner: Partner = Depends(require_managed_partner),
    session: AsyncSession = Depends(get_db_session),
    resolver: CredentialResolver = Depends(get_credential_resolver),
) -> ResolvedCredentialResponse:
    resolved = await resolver.resolve(session, partner.id, provider)
    if isinstance(resolved, CredentialBundle):
        entries = [
            CredentialScopeResponse(
                scope_node_id=entry.scope_node_id,
                owner_id=entry.credential.owner_id,
                opcode=entry.credential.opcode,
            )
            for entry in resolved
        ]
    else:
        entries = [
            CredentialScopeResponse(
                scope_node_id=partner.id,
                owner_id=resolved.owner_id,
                opcode=resolved.opcode,
            )
        ]
    return ResolvedCredentialResponse(
        partner_id=partner.id, provider=provider, entries=entries
    )
