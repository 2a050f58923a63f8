from __future__ import annotations

import uuid

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.core.constants import ACTOR_ID_HEADER
from partner_ledger.core.logging import bind_actor_context
from partner_ledger.db.dependencies import get_db_session
from partner_ledger.partners.dependencies import get_hierarchy_resolver
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import Partner


async def get_current_partner(
    session: AsyncSession = Depends(get_db_session),
    actor_id: uuid.UUID = Header(
        ...,
        alias=ACTOR_ID_HEADER,
        convert_underscores=False,
        description="Identifier of the partner performing the request",
    ),
) -> Partner:
    partner = await session.get(Partner, actor_id)
    if partner is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Acting partner not found",
        )
    if not partner.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Acting partner is suspended"
        )
    bind_actor_context(partner.id, partner.level)
    return partner


async def require_managed_partner(
    partner_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
) -> Partner:
    """Resolve ``partner_id`` from the path, restricted to the actor's subtree."""
    target = await hierarchy.get_partner(session, partner_id)
    if not await hierarchy.manages(session, actor.id, target.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Partner is outside of the acting partner's hierarchy",
        )
    return target
