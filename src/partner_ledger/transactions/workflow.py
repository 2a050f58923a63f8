"""Approval state machine for deposit and withdrawal requests.

``approve`` runs in short, separate sessions so no database transaction is
held open across the provider call:

1. validate the request, resolve the credential and gateway, pre-check funds;
2. claim the request with a conditional write and commit;
3. call the provider;
4. apply the ledger mutation and flip the status in one transaction.

A failure in step 4 happens after money already moved at the provider. It is
reported as a :class:`PersistenceFailureError` incident and never retried. A
timeout in step 3 leaves the provider side unknown. In both cases the claim
stays in place so nobody settles the same request twice; only
:meth:`ApprovalWorkflow.mark_failed` closes such a request.
"""

from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from partner_ledger.core.exceptions import (
    AlreadyProcessedError,
    ExternalApiFailureError,
    InsufficientFundsError,
    NodeNotFoundError,
    PersistenceFailureError,
    ValidationError,
)
from partner_ledger.credentials.enums import Provider
from partner_ledger.credentials.resolver import CredentialResolver
from partner_ledger.credentials.types import ResolvedCredential
from partner_ledger.ledger.engine import LedgerEngine, SettlementOutcome, normalise_amount
from partner_ledger.observability.metrics import metrics_service
from partner_ledger.observability.sentry import add_breadcrumb
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import EndUser
from partner_ledger.providers.exceptions import SettlementError, SettlementTimeoutError
from partner_ledger.providers.gateway import SettlementGateway
from partner_ledger.providers.types import SettlementResponse

from .enums import IncidentKind, TransactionStatus, TransactionType
from .incidents import Incident, IncidentReporter, LoggingIncidentReporter
from .models import TransactionRequest

GatewayLookup = Callable[[Provider], SettlementGateway]


@dataclass(frozen=True, slots=True)
class _Approval:
    """Everything step 3 and 4 need, captured before the claim."""

    transaction_id: uuid.UUID
    transaction_type: TransactionType
    provider: Provider
    user_id: uuid.UUID
    username: str
    responsible_id: uuid.UUID
    amount: Decimal
    memo: str | None
    credential: ResolvedCredential
    gateway: SettlementGateway


def _now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class ApprovalWorkflow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        gateway_for: GatewayLookup,
        ledger: LedgerEngine | None = None,
        credentials: CredentialResolver | None = None,
        hierarchy: HierarchyResolver | None = None,
        incidents: IncidentReporter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._gateway_for = gateway_for
        self._hierarchy = hierarchy or HierarchyResolver()
        self._ledger = ledger or LedgerEngine(hierarchy=self._hierarchy)
        self._credentials = credentials or CredentialResolver(hierarchy=self._hierarchy)
        self._incidents = incidents or LoggingIncidentReporter()
        self._logger = structlog.get_logger(__name__)

    # -- requests -------------------------------------------------------

    async def request_deposit(
        self,
        user_id: uuid.UUID,
        amount: Any,
        *,
        memo: str | None = None,
        provider: Provider = Provider.INVEST,
    ) -> TransactionRequest:
        return await self._create_request(
            TransactionType.DEPOSIT, user_id, amount, memo=memo, provider=provider
        )

    async def request_withdrawal(
        self,
        user_id: uuid.UUID,
        amount: Any,
        *,
        memo: str | None = None,
        provider: Provider = Provider.INVEST,
    ) -> TransactionRequest:
        return await self._create_request(
            TransactionType.WITHDRAWAL, user_id, amount, memo=memo, provider=provider
        )

    async def _create_request(
        self,
        transaction_type: TransactionType,
        user_id: uuid.UUID,
        amount: Any,
        *,
        memo: str | None,
        provider: Provider,
    ) -> TransactionRequest:
        value = normalise_amount(amount)
        if value != value.to_integral_value():
            raise ValidationError("Amount must be a whole number")

        async with self._session_factory() as session:
            user = await session.get(EndUser, user_id)
            if user is None:
                raise NodeNotFoundError(f"User {user_id} not found")
            if transaction_type is TransactionType.WITHDRAWAL and user.balance < value:
                raise InsufficientFundsError(
                    user.id, user.balance, value, what="user balance"
                )

            request = TransactionRequest(
                user_id=user.id,
                partner_id=user.referrer_id,
                provider=provider,
                transaction_type=transaction_type,
                amount=value,
                status=TransactionStatus.PENDING,
                memo=memo,
            )
            session.add(request)
            await session.commit()

        self._logger.info(
            "transaction_requested",
            transaction_id=str(request.id),
            transaction_type=transaction_type.value,
            user_id=str(user_id),
            partner_id=str(request.partner_id),
            amount=str(value),
        )
        return request

    # -- approval -------------------------------------------------------

    async def approve(
        self, transaction_id: uuid.UUID, actor_id: uuid.UUID
    ) -> TransactionRequest:
        log = self._logger.bind(
            transaction_id=str(transaction_id), actor_id=str(actor_id)
        )
        approval = await self._prepare(transaction_id, actor_id)
        await self._claim(approval, actor_id)
        log.info("transaction_claimed", transaction_type=approval.transaction_type.value)
        add_breadcrumb(
            "settlement",
            f"claimed {approval.transaction_type.value} {transaction_id}",
            actor_id=str(actor_id),
            provider=approval.provider.value,
        )

        response = await self._settle_externally(approval, actor_id)
        outcome = await self._persist(approval, actor_id, response)

        metrics_service.record_approval(approval.transaction_type.value, "completed")
        log.info(
            "transaction_approved",
            balance_before=str(outcome.balance_before),
            balance_after=str(outcome.balance_after),
        )
        return await self.get_transaction(transaction_id)

    async def _prepare(
        self, transaction_id: uuid.UUID, actor_id: uuid.UUID
    ) -> _Approval:
        async with self._session_factory() as session:
            request = await self._load(session, transaction_id)
            if not request.is_pending or request.claimed_by is not None:
                raise AlreadyProcessedError(
                    f"Transaction {transaction_id} is already {request.status.value}"
                    if not request.is_pending
                    else f"Transaction {transaction_id} is being processed"
                )
            user = await session.get(EndUser, request.user_id)
            if user is None:
                raise NodeNotFoundError(f"User {request.user_id} not found")

            credential = await self._credentials.resolve_single(
                session, request.partner_id, request.provider
            )
            gateway = self._gateway_for(request.provider)
            if request.transaction_type is TransactionType.DEPOSIT:
                await self._ledger.check_deposit_funds(
                    session,
                    actor_id=actor_id,
                    responsible_id=request.partner_id,
                    amount=request.amount,
                )
            else:
                await self._ledger.check_withdrawal_funds(
                    session,
                    actor_id=actor_id,
                    responsible_id=request.partner_id,
                    user_id=user.id,
                    amount=request.amount,
                )

            return _Approval(
                transaction_id=request.id,
                transaction_type=request.transaction_type,
                provider=request.provider,
                user_id=user.id,
                username=user.username,
                responsible_id=request.partner_id,
                amount=request.amount,
                memo=request.memo,
                credential=credential,
                gateway=gateway,
            )

    async def _claim(self, approval: _Approval, actor_id: uuid.UUID) -> None:
        transaction_id = approval.transaction_id
        async with self._session_factory() as session:
            result = await session.execute(
                update(TransactionRequest)
                .where(
                    TransactionRequest.id == transaction_id,
                    TransactionRequest.status == TransactionStatus.PENDING,
                    TransactionRequest.claimed_by.is_(None),
                )
                .values(claimed_by=actor_id, claimed_at=_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                metrics_service.record_approval(
                    approval.transaction_type.value, "already_processed"
                )
                raise AlreadyProcessedError(
                    f"Transaction {transaction_id} was claimed by another approver"
                )
            await session.commit()

    async def _release_claim(
        self, transaction_id: uuid.UUID, actor_id: uuid.UUID
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(TransactionRequest)
                .where(
                    TransactionRequest.id == transaction_id,
                    TransactionRequest.status == TransactionStatus.PENDING,
                    TransactionRequest.claimed_by == actor_id,
                )
                .values(claimed_by=None, claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _settle_externally(
        self, approval: _Approval, actor_id: uuid.UUID
    ) -> SettlementResponse:
        call = (
            approval.gateway.deposit
            if approval.transaction_type is TransactionType.DEPOSIT
            else approval.gateway.withdraw
        )
        try:
            return await call(approval.credential, approval.username, approval.amount)
        except SettlementTimeoutError as exc:
            await self._incidents.report(
                self._incident(
                    approval,
                    actor_id,
                    IncidentKind.UNKNOWN_EXTERNAL_OUTCOME,
                    f"Provider did not answer: {exc}",
                )
            )
            metrics_service.record_approval(
                approval.transaction_type.value, "external_timeout"
            )
            raise ExternalApiFailureError(
                f"Provider call for {approval.transaction_id} timed out; "
                "the external outcome is unknown",
                outcome_unknown=True,
            ) from exc
        except SettlementError as exc:
            await self._release_claim(approval.transaction_id, actor_id)
            metrics_service.record_approval(
                approval.transaction_type.value, "external_failure"
            )
            raise ExternalApiFailureError(str(exc)) from exc

    async def _persist(
        self,
        approval: _Approval,
        actor_id: uuid.UUID,
        response: SettlementResponse,
    ) -> SettlementOutcome:
        try:
            async with self._session_factory() as session:
                outcome = await self._apply(session, approval, actor_id)
                result = await session.execute(
                    update(TransactionRequest)
                    .where(
                        TransactionRequest.id == approval.transaction_id,
                        TransactionRequest.status == TransactionStatus.PENDING,
                        TransactionRequest.claimed_by == actor_id,
                    )
                    .values(
                        status=TransactionStatus.COMPLETED,
                        processed_by=actor_id,
                        processed_at=_now(),
                        balance_before=outcome.balance_before,
                        balance_after=outcome.balance_after,
                        external_reference=_external_reference(response),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await session.rollback()
                    raise AlreadyProcessedError(
                        f"Transaction {approval.transaction_id} was closed while "
                        "the provider call was in flight"
                    )
                await session.commit()
                return outcome
        except AlreadyProcessedError as exc:
            await self._incidents.report(
                self._incident(approval, actor_id, IncidentKind.LATE_CONFLICT, str(exc))
            )
            metrics_service.record_approval(
                approval.transaction_type.value, "already_processed"
            )
            raise
        except Exception as exc:
            await self._incidents.report(
                self._incident(
                    approval,
                    actor_id,
                    IncidentKind.PERSISTENCE_FAILURE,
                    f"{type(exc).__name__}: {exc}",
                )
            )
            metrics_service.record_approval(
                approval.transaction_type.value, "persistence_failure"
            )
            raise PersistenceFailureError(
                approval.transaction_id,
                f"Provider settled transaction {approval.transaction_id} but the "
                f"ledger update failed: {exc}",
            ) from exc

    async def _apply(
        self, session: AsyncSession, approval: _Approval, actor_id: uuid.UUID
    ) -> SettlementOutcome:
        apply = (
            self._ledger.apply_deposit_approval
            if approval.transaction_type is TransactionType.DEPOSIT
            else self._ledger.apply_withdrawal_approval
        )
        return await apply(
            session,
            actor_id=actor_id,
            responsible_id=approval.responsible_id,
            user_id=approval.user_id,
            amount=approval.amount,
            transaction_id=approval.transaction_id,
            memo=approval.memo,
        )

    @staticmethod
    def _incident(
        approval: _Approval,
        actor_id: uuid.UUID,
        kind: IncidentKind,
        detail: str,
    ) -> Incident:
        return Incident(
            kind=kind,
            transaction_id=approval.transaction_id,
            transaction_type=approval.transaction_type,
            actor_id=actor_id,
            amount=approval.amount,
            provider=approval.provider.value,
            detail=detail,
        )

    # -- closing without settlement -------------------------------------

    async def reject(
        self,
        transaction_id: uuid.UUID,
        actor_id: uuid.UUID,
        memo: str | None = None,
    ) -> TransactionRequest:
        """Close an unclaimed pending request without touching any balance."""
        await self._close(
            transaction_id,
            actor_id,
            TransactionStatus.REJECTED,
            require_unclaimed=True,
            memo=memo,
        )
        return await self.get_transaction(transaction_id)

    async def mark_failed(
        self,
        transaction_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str,
    ) -> TransactionRequest:
        """Close a pending request as failed after manual investigation.

        Unlike :meth:`reject` this also closes requests left claimed by an
        approval that ended in an incident.
        """
        if not reason.strip():
            raise ValidationError("A failure reason is required")
        await self._close(
            transaction_id,
            actor_id,
            TransactionStatus.FAILED,
            require_unclaimed=False,
            failure_reason=reason.strip(),
        )
        return await self.get_transaction(transaction_id)

    async def _close(
        self,
        transaction_id: uuid.UUID,
        actor_id: uuid.UUID,
        status: TransactionStatus,
        *,
        require_unclaimed: bool,
        memo: str | None = None,
        failure_reason: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            request = await self._load(session, transaction_id)
            if not await self._hierarchy.manages(session, actor_id, request.partner_id):
                raise ValidationError(
                    f"Partner {actor_id} cannot process transaction {transaction_id}"
                )

            conditions = [
                TransactionRequest.id == transaction_id,
                TransactionRequest.status == TransactionStatus.PENDING,
            ]
            if require_unclaimed:
                conditions.append(TransactionRequest.claimed_by.is_(None))
            values: dict[str, Any] = {
                "status": status,
                "processed_by": actor_id,
                "processed_at": _now(),
            }
            if memo is not None:
                values["memo"] = memo
            if failure_reason is not None:
                values["failure_reason"] = failure_reason

            result = await session.execute(
                update(TransactionRequest)
                .where(*conditions)
                .values(values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise AlreadyProcessedError(
                    f"Transaction {transaction_id} is no longer open"
                )
            await session.commit()

        self._logger.info(
            "transaction_closed",
            transaction_id=str(transaction_id),
            actor_id=str(actor_id),
            status=status.value,
        )

    # -- queries --------------------------------------------------------

    async def get_transaction(self, transaction_id: uuid.UUID) -> TransactionRequest:
        async with self._session_factory() as session:
            return await self._load(session, transaction_id)

    async def list_transactions(
        self,
        actor_id: uuid.UUID,
        *,
        status: TransactionStatus | None = None,
    ) -> list[TransactionRequest]:
        """Requests whose responsible node lies in the actor's subtree."""
        async with self._session_factory() as session:
            scope = await self._hierarchy.get_descendants(session, actor_id)
            scope.add(actor_id)
            stmt = (
                select(TransactionRequest)
                .where(TransactionRequest.partner_id.in_(scope))
                .order_by(TransactionRequest.created_at.desc())
            )
            if status is not None:
                stmt = stmt.where(TransactionRequest.status == status)
            return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def _load(
        session: AsyncSession, transaction_id: uuid.UUID
    ) -> TransactionRequest:
        request = await session.get(
            TransactionRequest, transaction_id, populate_existing=True
        )
        if request is None:
            raise NodeNotFoundError(f"Transaction {transaction_id} not found")
        return request


def _external_reference(response: SettlementResponse) -> str | None:
    data = response.get("DATA")
    if isinstance(data, dict):
        for key in ("transaction_id", "id", "reference"):
            value = data.get(key)
            if value is not None:
                return str(value)[:128]
    return None
