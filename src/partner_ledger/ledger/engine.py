"""Balance and point mutations for partners and end users.

Every write is a conditional ``UPDATE ... WHERE <column> = :before`` against a
value read immediately beforehand; a miss raises :class:`BalanceConflictError`
instead of silently overwriting a concurrent change. Funds checks for every
node touched by an operation run before the first write.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.core.constants import MONEY_QUANTUM, ROOT_LEVEL
from partner_ledger.core.exceptions import (
    BalanceConflictError,
    InsufficientFundsError,
    NodeNotFoundError,
    ValidationError,
)
from partner_ledger.observability.metrics import metrics_service
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import EndUser, Partner

from .enums import BalanceOperation, PointTransactionType, TransferDirection
from .models import BalanceLog, PointTransaction
from .tiers import DirectlyDebited, TierPolicy, tier_for


@dataclass(slots=True)
class PointsOutcome:
    user_id: uuid.UUID
    points_before: Decimal
    points_after: Decimal
    point_transaction: PointTransaction
    log: BalanceLog | None = None


@dataclass(slots=True)
class SettlementOutcome:
    """Result of applying an approved deposit or withdrawal."""

    user_id: uuid.UUID
    balance_before: Decimal
    balance_after: Decimal
    logs: list[BalanceLog] = field(default_factory=list)


@dataclass(slots=True)
class TransferOutcome:
    sender_log: BalanceLog
    receiver_log: BalanceLog


@dataclass(frozen=True, slots=True)
class _Target:
    partner_id: uuid.UUID
    tier: TierPolicy


def normalise_amount(amount: Any) -> Decimal:
    """Coerce ``amount`` into a positive two-place decimal."""
    try:
        value = Decimal(str(amount)).quantize(MONEY_QUANTUM)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc
    if value <= 0:
        raise ValidationError("Amount must be greater than zero")
    return value


class LedgerEngine:
    """Applies level-tiered money rules and appends the matching audit rows."""

    def __init__(self, hierarchy: HierarchyResolver | None = None) -> None:
        self._hierarchy = hierarchy or HierarchyResolver()
        self._logger = structlog.get_logger(__name__)

    # -- points ---------------------------------------------------------

    async def grant_points(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        user_id: uuid.UUID,
        amount: Any,
        *,
        memo: str | None = None,
    ) -> PointsOutcome:
        value = normalise_amount(amount)
        actor, user = await self._authorise_points(session, actor_id, user_id)
        tier = tier_for(actor.level)
        tier.ensure_can_debit(actor.id, actor.balance, value)

        log = await self._apply_partner_delta(
            session,
            actor.id,
            tier.point_grant_delta(value),
            amount=value,
            operation=BalanceOperation.GRANT_POINTS,
            tier=tier,
            user_id=user.id,
            processed_by=actor.id,
            memo=memo or f"Granted {value} points to {user.username}",
        )
        outcome = await self._move_points(
            session,
            user,
            value,
            partner_id=actor.id,
            transaction_type=PointTransactionType.GRANT,
            memo=memo,
        )
        outcome.log = log

        self._logger.info(
            "points_granted",
            actor_id=str(actor.id),
            user_id=str(user.id),
            amount=str(value),
            tier=tier.name,
        )
        return outcome

    async def recover_points(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        user_id: uuid.UUID,
        amount: Any,
        *,
        memo: str | None = None,
    ) -> PointsOutcome:
        value = normalise_amount(amount)
        actor, user = await self._authorise_points(session, actor_id, user_id)
        if user.points < value:
            raise InsufficientFundsError(user.id, user.points, value, what="points")
        tier = tier_for(actor.level)

        log = await self._apply_partner_delta(
            session,
            actor.id,
            tier.point_recover_delta(value),
            amount=value,
            operation=BalanceOperation.RECOVER_POINTS,
            tier=tier,
            user_id=user.id,
            processed_by=actor.id,
            memo=memo or f"Recovered {value} points from {user.username}",
        )
        outcome = await self._move_points(
            session,
            user,
            -value,
            partner_id=actor.id,
            transaction_type=PointTransactionType.RECOVER,
            memo=memo,
        )
        outcome.log = log

        self._logger.info(
            "points_recovered",
            actor_id=str(actor.id),
            user_id=str(user.id),
            amount=str(value),
            tier=tier.name,
        )
        return outcome

    async def convert_points(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        amount: Any,
        *,
        memo: str | None = None,
    ) -> PointsOutcome:
        """Move ``amount`` points into the user's own balance."""
        value = normalise_amount(amount)
        user = await self._fresh_user(session, user_id)
        if user.points < value:
            raise InsufficientFundsError(user.id, user.points, value, what="points")

        outcome = await self._move_points(
            session,
            user,
            -value,
            partner_id=None,
            transaction_type=PointTransactionType.CONVERT_TO_BALANCE,
            memo=memo or "Points converted to balance",
        )
        user = await self._fresh_user(session, user_id)
        await _compare_and_set(
            session, EndUser, user.id, "balance", user.balance, user.balance + value
        )

        self._logger.info(
            "points_converted", user_id=str(user.id), amount=str(value)
        )
        return outcome

    # -- deposits and withdrawals --------------------------------------

    async def check_deposit_funds(
        self,
        session: AsyncSession,
        *,
        actor_id: uuid.UUID,
        responsible_id: uuid.UUID,
        amount: Any,
    ) -> None:
        """Raise :class:`InsufficientFundsError` if approving would overdraw a node.

        Performs no writes.
        """
        value = normalise_amount(amount)
        for target in await self._settlement_targets(session, actor_id, responsible_id):
            partner = await self._fresh_partner(session, target.partner_id)
            target.tier.ensure_can_debit(partner.id, partner.balance, value)

    async def check_withdrawal_funds(
        self,
        session: AsyncSession,
        *,
        actor_id: uuid.UUID,
        responsible_id: uuid.UUID,
        user_id: uuid.UUID,
        amount: Any,
    ) -> None:
        value = normalise_amount(amount)
        await self._settlement_targets(session, actor_id, responsible_id)
        user = await self._fresh_user(session, user_id)
        if user.balance < value:
            raise InsufficientFundsError(
                user.id, user.balance, value, what="user balance"
            )

    async def apply_deposit_approval(
        self,
        session: AsyncSession,
        *,
        actor_id: uuid.UUID,
        responsible_id: uuid.UUID,
        user_id: uuid.UUID,
        amount: Any,
        transaction_id: uuid.UUID | None = None,
        memo: str | None = None,
    ) -> SettlementOutcome:
        """Debit the responsible node (and a distinct directly-debited actor), credit the user."""
        value = normalise_amount(amount)
        await self.check_deposit_funds(
            session, actor_id=actor_id, responsible_id=responsible_id, amount=value
        )
        user = await self._fresh_user(session, user_id)

        logs = []
        for target in await self._settlement_targets(session, actor_id, responsible_id):
            logs.append(
                await self._apply_partner_delta(
                    session,
                    target.partner_id,
                    -value,
                    amount=value,
                    operation=BalanceOperation.DEPOSIT_APPROVAL,
                    tier=target.tier,
                    user_id=user.id,
                    transaction_id=transaction_id,
                    processed_by=actor_id,
                    memo=memo,
                )
            )

        user = await self._fresh_user(session, user_id)
        before = user.balance
        after = before + value
        await _compare_and_set(session, EndUser, user.id, "balance", before, after)

        self._logger.info(
            "deposit_applied",
            transaction_id=str(transaction_id) if transaction_id else None,
            user_id=str(user.id),
            amount=str(value),
            debited=[str(log.partner_id) for log in logs],
        )
        return SettlementOutcome(
            user_id=user.id, balance_before=before, balance_after=after, logs=logs
        )

    async def apply_withdrawal_approval(
        self,
        session: AsyncSession,
        *,
        actor_id: uuid.UUID,
        responsible_id: uuid.UUID,
        user_id: uuid.UUID,
        amount: Any,
        transaction_id: uuid.UUID | None = None,
        memo: str | None = None,
    ) -> SettlementOutcome:
        """Mirror of :meth:`apply_deposit_approval`: credit the nodes, debit the user."""
        value = normalise_amount(amount)
        user = await self._fresh_user(session, user_id)
        if user.balance < value:
            raise InsufficientFundsError(
                user.id, user.balance, value, what="user balance"
            )
        targets = await self._settlement_targets(session, actor_id, responsible_id)

        logs = []
        for target in targets:
            logs.append(
                await self._apply_partner_delta(
                    session,
                    target.partner_id,
                    value,
                    amount=value,
                    operation=BalanceOperation.WITHDRAWAL_APPROVAL,
                    tier=target.tier,
                    user_id=user.id,
                    transaction_id=transaction_id,
                    processed_by=actor_id,
                    memo=memo,
                )
            )

        user = await self._fresh_user(session, user_id)
        before = user.balance
        after = before - value
        await _compare_and_set(session, EndUser, user.id, "balance", before, after)

        self._logger.info(
            "withdrawal_applied",
            transaction_id=str(transaction_id) if transaction_id else None,
            user_id=str(user.id),
            amount=str(value),
            credited=[str(log.partner_id) for log in logs],
        )
        return SettlementOutcome(
            user_id=user.id, balance_before=before, balance_after=after, logs=logs
        )

    # -- partner transfers ---------------------------------------------

    async def transfer(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        target_id: uuid.UUID,
        amount: Any,
        direction: TransferDirection,
        *,
        memo: str | None = None,
    ) -> TransferOutcome:
        """Move money between an ancestor and one of its descendants.

        ``SEND`` pays the descendant out of the actor's balance; ``RECLAIM``
        pulls money back from the descendant, which is always funds-checked.
        """
        value = normalise_amount(amount)
        if not await self._hierarchy.is_descendant(session, actor_id, target_id):
            raise ValidationError(
                f"Partner {target_id} is not below {actor_id} in the hierarchy"
            )

        actor = await self._fresh_partner(session, actor_id)
        target = await self._fresh_partner(session, target_id)
        if direction is TransferDirection.SEND:
            sender, sender_tier = actor, tier_for(actor.level)
            receiver = target
        else:
            sender, sender_tier = target, DirectlyDebited
            receiver = actor
        sender_tier.ensure_can_debit(sender.id, sender.balance, value)

        sender_log = await self._apply_partner_delta(
            session,
            sender.id,
            -value,
            amount=value,
            operation=BalanceOperation.PARTNER_TRANSFER_SEND,
            tier=sender_tier,
            counterpart_id=receiver.id,
            processed_by=actor.id,
            memo=memo,
        )
        receiver_log = await self._apply_partner_delta(
            session,
            receiver.id,
            value,
            amount=value,
            operation=BalanceOperation.PARTNER_TRANSFER_RECEIVE,
            tier=tier_for(receiver.level),
            counterpart_id=sender.id,
            processed_by=actor.id,
            memo=memo,
        )

        self._logger.info(
            "partner_transfer_applied",
            actor_id=str(actor.id),
            target_id=str(target.id),
            direction=direction.value,
            amount=str(value),
        )
        return TransferOutcome(sender_log=sender_log, receiver_log=receiver_log)

    # -- internals ------------------------------------------------------

    async def _authorise_points(
        self, session: AsyncSession, actor_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[Partner, EndUser]:
        actor = await self._fresh_partner(session, actor_id)
        if actor.level == ROOT_LEVEL:
            raise ValidationError("Level-1 partners cannot grant or recover points")
        if not actor.is_active:
            raise ValidationError(f"Partner {actor_id} is not active")
        user = await self._fresh_user(session, user_id)
        if not await self._hierarchy.manages(session, actor.id, user.referrer_id):
            raise ValidationError(
                f"User {user_id} does not belong to the subtree of {actor_id}"
            )
        return actor, user

    async def _settlement_targets(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        responsible_id: uuid.UUID,
    ) -> list[_Target]:
        actor = await self._fresh_partner(session, actor_id)
        responsible = await self._fresh_partner(session, responsible_id)
        if not await self._hierarchy.manages(session, actor.id, responsible.id):
            raise ValidationError(
                f"Partner {actor_id} cannot settle for {responsible_id}"
            )

        targets = [_Target(responsible.id, tier_for(responsible.level))]
        actor_tier = tier_for(actor.level)
        if actor.id != responsible.id and actor_tier is DirectlyDebited:
            targets.append(_Target(actor.id, actor_tier))
        return targets

    async def _apply_partner_delta(
        self,
        session: AsyncSession,
        partner_id: uuid.UUID,
        delta: Decimal,
        *,
        amount: Decimal,
        operation: BalanceOperation,
        tier: TierPolicy,
        counterpart_id: uuid.UUID | None = None,
        user_id: uuid.UUID | None = None,
        transaction_id: uuid.UUID | None = None,
        processed_by: uuid.UUID | None = None,
        memo: str | None = None,
    ) -> BalanceLog:
        partner = await self._fresh_partner(session, partner_id)
        before = partner.balance
        if delta < 0:
            tier.ensure_can_debit(partner.id, before, -delta)
        after = before + delta
        if delta != 0:
            await _compare_and_set(session, Partner, partner.id, "balance", before, after)

        log = BalanceLog(
            partner_id=partner.id,
            operation=operation,
            balance_before=before,
            balance_after=after,
            delta=delta,
            amount=amount,
            counterpart_partner_id=counterpart_id,
            user_id=user_id,
            transaction_id=transaction_id,
            processed_by=processed_by,
            memo=memo,
        )
        session.add(log)
        await session.flush()
        metrics_service.record_ledger_mutation(operation.value)
        return log

    async def _move_points(
        self,
        session: AsyncSession,
        user: EndUser,
        delta: Decimal,
        *,
        partner_id: uuid.UUID | None,
        transaction_type: PointTransactionType,
        memo: str | None,
    ) -> PointsOutcome:
        user = await self._fresh_user(session, user.id)
        before = user.points
        after = before + delta
        if after < 0:
            raise InsufficientFundsError(user.id, before, -delta, what="points")
        await _compare_and_set(session, EndUser, user.id, "points", before, after)

        point_tx = PointTransaction(
            user_id=user.id,
            partner_id=partner_id,
            transaction_type=transaction_type,
            amount=abs(delta),
            points_before=before,
            points_after=after,
            memo=memo,
        )
        session.add(point_tx)
        await session.flush()
        return PointsOutcome(
            user_id=user.id,
            points_before=before,
            points_after=after,
            point_transaction=point_tx,
        )

    @staticmethod
    async def _fresh_partner(session: AsyncSession, partner_id: uuid.UUID) -> Partner:
        partner = await session.get(Partner, partner_id, populate_existing=True)
        if partner is None:
            raise NodeNotFoundError(f"Partner {partner_id} not found")
        return partner

    @staticmethod
    async def _fresh_user(session: AsyncSession, user_id: uuid.UUID) -> EndUser:
        user = await session.get(EndUser, user_id, populate_existing=True)
        if user is None:
            raise NodeNotFoundError(f"User {user_id} not found")
        return user


async def _compare_and_set(
    session: AsyncSession,
    model: type[Partner] | type[EndUser],
    row_id: uuid.UUID,
    attribute: str,
    before: Decimal,
    after: Decimal,
) -> None:
    column = getattr(model, attribute)
    stmt = (
        update(model)
        .where(model.id == row_id, column == before)
        .values({attribute: after})
        .execution_options(synchronize_session="evaluate")
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        raise BalanceConflictError(
            f"{model.__tablename__}.{attribute} of {row_id} changed concurrently "
            f"(expected {before})"
        )
