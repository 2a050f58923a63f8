from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.api.dependencies.actors import get_current_partner
from partner_ledger.api.schemas.points import PointsRequest, PointsResponse
from partner_ledger.db.dependencies import get_db_session
from partner_ledger.ledger.dependencies import get_ledger_engine
from partner_ledger.ledger.engine import LedgerEngine, PointsOutcome
from partner_ledger.partners.dependencies import (
    get_hierarchy_resolver,
    get_partner_service,
)
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import Partner
from partner_ledger.partners.service import PartnerService

router = APIRouter(prefix="/api/v1/points", tags=["points"])


def _to_response(outcome: PointsOutcome) -> PointsResponse:
    log = outcome.log
    return PointsResponse(
        user_id=outcome.user_id,
        points_before=outcome.points_before,
        points_after=outcome.points_after,
        actor_balance_before=log.balance_before if log else None,
        actor_balance_after=log.balance_after if log else None,
        log_delta=log.delta if log else None,
    )


@router.post("/grant", response_model=PointsResponse, summary="Grant points to a user")
async def grant_points(
    payload: PointsRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    ledger: LedgerEngine = Depends(get_ledger_engine),
) -> PointsResponse:
    outcome = await ledger.grant_points(
        session, actor.id, payload.user_id, payload.amount, memo=payload.memo
    )
    await session.commit()
    return _to_response(outcome)


@router.post("/recover", response_model=PointsResponse, summary="Recover points")
async def recover_points(
    payload: PointsRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    ledger: LedgerEngine = Depends(get_ledger_engine),
) -> PointsResponse:
    outcome = await ledger.recover_points(
        session, actor.id, payload.user_id, payload.amount, memo=payload.memo
    )
    await session.commit()
    return _to_response(outcome)


@router.post(
    "/convert",
    response_model=PointsResponse,
    summary="Convert a user's points into balance",
)
async def convert_points(
    payload: PointsRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    ledger: LedgerEngine = Depends(get_ledger_engine),
    partners: PartnerService = Depends(get_partner_service),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
) -> PointsResponse:
    user = await partners.get_user(session, payload.user_id)
    if not await hierarchy.manages(session, actor.id, user.referrer_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is outside of the acting partner's hierarchy",
        )
    outcome = await ledger.convert_points(
        session, user.id, payload.amount, memo=payload.memo
    )
    await session.commit()
    return _to_response(outcome)
