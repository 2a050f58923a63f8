from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.api.dependencies.actors import get_current_partner
from partner_ledger.api.schemas.transactions import (
    TransactionCreateRequest,
    TransactionFailRequest,
    TransactionRejectRequest,
    TransactionResponse,
)
from partner_ledger.db.dependencies import get_db_session
from partner_ledger.partners.dependencies import (
    get_hierarchy_resolver,
    get_partner_service,
)
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import Partner
from partner_ledger.partners.service import PartnerService
from partner_ledger.transactions.dependencies import get_approval_workflow
from partner_ledger.transactions.enums import TransactionStatus, TransactionType
from partner_ledger.transactions.models import TransactionRequest
from partner_ledger.transactions.workflow import ApprovalWorkflow

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a deposit or withdrawal request for a user",
)
async def create_transaction(
    payload: TransactionCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    partners: PartnerService = Depends(get_partner_service),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
) -> TransactionRequest:
    user = await partners.get_user(session, payload.user_id)
    if not await hierarchy.manages(session, actor.id, user.referrer_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is outside of the acting partner's hierarchy",
        )
    if payload.transaction_type is TransactionType.DEPOSIT:
        return await workflow.request_deposit(
            user.id, payload.amount, memo=payload.memo, provider=payload.provider
        )
    return await workflow.request_withdrawal(
        user.id, payload.amount, memo=payload.memo, provider=payload.provider
    )


@router.get("", response_model=list[TransactionResponse])
async def list_transactions(
    status_filter: TransactionStatus | None = Query(default=None, alias="status"),
    actor: Partner = Depends(get_current_partner),
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
) -> list[TransactionRequest]:
    return await workflow.list_transactions(actor.id, status=status_filter)


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def read_transaction(
    transaction_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    actor: Partner = Depends(get_current_partner),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
) -> TransactionRequest:
    transaction = await workflow.get_transaction(transaction_id)
    if not await hierarchy.manages(session, actor.id, transaction.partner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Transaction is outside of the acting partner's hierarchy",
        )
    return transaction


@router.post("/{transaction_id}/approve", response_model=TransactionResponse)
async def approve_transaction(
    transaction_id: uuid.UUID,
    actor: Partner = Depends(get_current_partner),
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
) -> TransactionRequest:
    return await workflow.approve(transaction_id, actor.id)


@router.post("/{transaction_id}/reject", response_model=TransactionResponse)
async def reject_transaction(
    transaction_id: uuid.UUID,
    payload: TransactionRejectRequest,
    actor: Partner = Depends(get_current_partner),
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
) -> TransactionRequest:
    return await workflow.reject(transaction_id, actor.id, payload.memo)


@router.post("/{transaction_id}/fail", response_model=TransactionResponse)
async def fail_transaction(
    transaction_id: uuid.UUID,
    payload: TransactionFailRequest,
    actor: Partner = Depends(get_current_partner),
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
) -> TransactionRequest:
    return await workflow.mark_failed(transaction_id, actor.id, payload.reason)
