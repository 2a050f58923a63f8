from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import PartnerTree
from partner_ledger.core.exceptions import (
    BalanceConflictError,
    InsufficientFundsError,
    ValidationError,
)
from partner_ledger.ledger.engine import LedgerEngine, _compare_and_set, normalise_amount
from partner_ledger.ledger.enums import (
    BalanceOperation,
    PointTransactionType,
    TransferDirection,
)
from partner_ledger.ledger.models import BalanceLog, PointTransaction
from partner_ledger.ledger.tiers import DirectlyDebited, ExternallySynced, tier_for
from partner_ledger.partners.models import EndUser, Partner


@pytest.fixture
def ledger() -> LedgerEngine:
    return LedgerEngine()


async def fresh_partner(session: AsyncSession, partner_id: uuid.UUID) -> Partner:
    partner = await session.get(Partner, partner_id, populate_existing=True)
    assert partner is not None
    return partner


async def fresh_user(session: AsyncSession, user_id: uuid.UUID) -> EndUser:
    user = await session.get(EndUser, user_id, populate_existing=True)
    assert user is not None
    return user


async def logs_for(session: AsyncSession, partner_id: uuid.UUID) -> list[BalanceLog]:
    stmt = (
        select(BalanceLog)
        .where(BalanceLog.partner_id == partner_id)
        .order_by(BalanceLog.created_at)
    )
    return list((await session.execute(stmt)).scalars().all())


class TestTiers:
    @pytest.mark.parametrize("level", [1, 2])
    def test_upper_levels_are_externally_synced(self, level: int) -> None:
        assert tier_for(level) is ExternallySynced

    @pytest.mark.parametrize("level", [3, 4, 5, 6])
    def test_lower_levels_are_directly_debited(self, level: int) -> None:
        assert tier_for(level) is DirectlyDebited

    def test_externally_synced_never_checks_funds(self) -> None:
        ExternallySynced.ensure_can_debit(uuid.uuid4(), Decimal("0"), Decimal("10"))
        assert ExternallySynced.point_grant_delta(Decimal("10")) == Decimal("0")

    def test_directly_debited_checks_funds(self) -> None:
        with pytest.raises(InsufficientFundsError):
            DirectlyDebited.ensure_can_debit(uuid.uuid4(), Decimal("5"), Decimal("10"))
        assert DirectlyDebited.point_grant_delta(Decimal("10")) == Decimal("-10")
        assert DirectlyDebited.point_recover_delta(Decimal("10")) == Decimal("10")

    def test_unknown_level_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            tier_for(7)


class TestNormaliseAmount:
    def test_quantizes_to_cents(self) -> None:
        assert normalise_amount("10.005") == Decimal("10.00")
        assert normalise_amount(3) == Decimal("3.00")

    @pytest.mark.parametrize("raw", ["0", "-5", "abc"])
    def test_rejects_non_positive_or_garbage(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            normalise_amount(raw)


class TestPoints:
    async def test_directly_debited_grant_then_overdraw(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        """Level-3 actor pays for granted points and cannot go below zero."""
        actor = tree.main_office
        user = tree.users["main"]

        outcome = await ledger.grant_points(async_session, actor.id, user.id, 30000)
        await async_session.commit()

        assert (await fresh_partner(async_session, actor.id)).balance == Decimal("70000.00")
        assert (await fresh_user(async_session, user.id)).points == Decimal("30000.00")
        logs = await logs_for(async_session, actor.id)
        assert len(logs) == 1
        assert logs[0].delta == Decimal("-30000.00")
        assert logs[0].operation is BalanceOperation.GRANT_POINTS
        assert outcome.log is not None and outcome.log.id == logs[0].id

        with pytest.raises(InsufficientFundsError):
            await ledger.grant_points(async_session, actor.id, user.id, 80000)
        await async_session.rollback()

        assert (await fresh_partner(async_session, actor.id)).balance == Decimal("70000.00")
        assert (await fresh_user(async_session, user.id)).points == Decimal("30000.00")
        assert len(await logs_for(async_session, actor.id)) == 1

    async def test_externally_synced_grant_only_audits(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        actor = tree.head_office
        user = tree.users["head"]

        await ledger.grant_points(async_session, actor.id, user.id, 50000)
        await async_session.commit()

        assert (await fresh_partner(async_session, actor.id)).balance == Decimal("100000.00")
        assert (await fresh_user(async_session, user.id)).points == Decimal("50000.00")
        logs = await logs_for(async_session, actor.id)
        assert len(logs) == 1
        assert logs[0].delta == Decimal("0.00")
        assert logs[0].amount == Decimal("50000.00")

    async def test_grant_then_recover_restores_both_sides(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        actor = tree.main_office
        user = tree.users["main"]

        await ledger.grant_points(async_session, actor.id, user.id, 30000)
        await ledger.recover_points(async_session, actor.id, user.id, 30000)
        await async_session.commit()

        assert (await fresh_partner(async_session, actor.id)).balance == Decimal("100000.00")
        assert (await fresh_user(async_session, user.id)).points == Decimal("0.00")
        deltas = [log.delta for log in await logs_for(async_session, actor.id)]
        assert sorted(deltas) == [Decimal("-30000.00"), Decimal("30000.00")]

    async def test_ancestor_may_grant_to_users_deeper_down(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        await ledger.grant_points(
            async_session, tree.sub_office.id, tree.users["store"].id, 100
        )
        await async_session.commit()

        assert (await fresh_partner(async_session, tree.sub_office.id)).balance == Decimal(
            "49900.00"
        )
        assert (await fresh_partner(async_session, tree.store.id)).balance == Decimal(
            "10000.00"
        )

    async def test_level_one_cannot_grant(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        with pytest.raises(ValidationError, match="Level-1"):
            await ledger.grant_points(
                async_session, tree.root.id, tree.users["admin"].id, 10
            )

    async def test_users_outside_the_subtree_are_refused(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        with pytest.raises(ValidationError):
            await ledger.grant_points(
                async_session, tree.store.id, tree.users["main"].id, 10
            )

    async def test_recover_more_than_held(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        with pytest.raises(InsufficientFundsError):
            await ledger.recover_points(
                async_session, tree.store.id, tree.users["store"].id, 1
            )

    async def test_convert_points_into_balance(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        user = tree.users["store"]
        await ledger.grant_points(async_session, tree.store.id, user.id, 250)

        outcome = await ledger.convert_points(async_session, user.id, 100)
        await async_session.commit()

        refreshed = await fresh_user(async_session, user.id)
        assert refreshed.points == Decimal("150.00")
        assert refreshed.balance == Decimal("100.00")
        assert outcome.point_transaction.transaction_type is (
            PointTransactionType.CONVERT_TO_BALANCE
        )
        count = await async_session.scalar(
            select(func.count(PointTransaction.id)).where(
                PointTransaction.user_id == user.id
            )
        )
        assert count == 2


class TestDepositApproval:
    async def test_actor_is_the_responsible_node(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        user = tree.users["store"]

        outcome = await ledger.apply_deposit_approval(
            async_session,
            actor_id=tree.store.id,
            responsible_id=tree.store.id,
            user_id=user.id,
            amount=500,
        )
        await async_session.commit()

        assert len(outcome.logs) == 1
        assert outcome.balance_before == Decimal("0.00")
        assert outcome.balance_after == Decimal("500.00")
        assert (await fresh_partner(async_session, tree.store.id)).balance == Decimal(
            "9500.00"
        )
        assert (await fresh_user(async_session, user.id)).balance == Decimal("500.00")

    async def test_directly_debited_actor_is_debited_too(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        outcome = await ledger.apply_deposit_approval(
            async_session,
            actor_id=tree.main_office.id,
            responsible_id=tree.store.id,
            user_id=tree.users["store"].id,
            amount=1000,
        )
        await async_session.commit()

        assert {log.partner_id for log in outcome.logs} == {
            tree.store.id,
            tree.main_office.id,
        }
        assert (await fresh_partner(async_session, tree.store.id)).balance == Decimal(
            "9000.00"
        )
        assert (
            await fresh_partner(async_session, tree.main_office.id)
        ).balance == Decimal("99000.00")

    async def test_externally_synced_actor_is_not_debited(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        outcome = await ledger.apply_deposit_approval(
            async_session,
            actor_id=tree.head_office.id,
            responsible_id=tree.store.id,
            user_id=tree.users["store"].id,
            amount=1000,
        )
        await async_session.commit()

        assert [log.partner_id for log in outcome.logs] == [tree.store.id]
        assert (
            await fresh_partner(async_session, tree.head_office.id)
        ).balance == Decimal("100000.00")

    async def test_funds_guard_blocks_before_any_write(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        user = tree.users["store"]

        with pytest.raises(InsufficientFundsError):
            await ledger.apply_deposit_approval(
                async_session,
                actor_id=tree.main_office.id,
                responsible_id=tree.store.id,
                user_id=user.id,
                amount=20000,
            )
        await async_session.rollback()

        assert (await fresh_partner(async_session, tree.store.id)).balance == Decimal(
            "10000.00"
        )
        assert (
            await fresh_partner(async_session, tree.main_office.id)
        ).balance == Decimal("100000.00")
        assert (await fresh_user(async_session, user.id)).balance == Decimal("0.00")
        assert await logs_for(async_session, tree.store.id) == []

    async def test_actor_funds_are_checked_as_well(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        """Store has enough but the approving distributor does not."""
        await ledger.transfer(
            async_session,
            tree.distributor.id,
            tree.store.id,
            15000,
            TransferDirection.SEND,
        )

        with pytest.raises(InsufficientFundsError) as excinfo:
            await ledger.check_deposit_funds(
                async_session,
                actor_id=tree.distributor.id,
                responsible_id=tree.store.id,
                amount=10000,
            )
        assert excinfo.value.holder_id == tree.distributor.id

        await ledger.check_deposit_funds(
            async_session,
            actor_id=tree.distributor.id,
            responsible_id=tree.store.id,
            amount=5000,
        )

    async def test_head_office_may_go_negative(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        await ledger.apply_deposit_approval(
            async_session,
            actor_id=tree.root.id,
            responsible_id=tree.head_office.id,
            user_id=tree.users["head"].id,
            amount=150000,
        )
        await async_session.commit()

        assert (
            await fresh_partner(async_session, tree.head_office.id)
        ).balance == Decimal("-50000.00")
        assert (await fresh_partner(async_session, tree.root.id)).balance == Decimal(
            "0.00"
        )

    async def test_root_as_responsible_node_is_debited_without_a_funds_check(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        outcome = await ledger.apply_deposit_approval(
            async_session,
            actor_id=tree.root.id,
            responsible_id=tree.root.id,
            user_id=tree.users["admin"].id,
            amount=700,
        )
        await async_session.commit()

        assert (await fresh_partner(async_session, tree.root.id)).balance == Decimal(
            "-700.00"
        )
        assert (await fresh_user(async_session, tree.users["admin"].id)).balance == (
            Decimal("700.00")
        )
        [log] = outcome.logs
        assert log.partner_id == tree.root.id
        assert log.operation is BalanceOperation.DEPOSIT_APPROVAL
        assert log.delta == Decimal("-700.00")

    async def test_actor_must_manage_the_responsible_node(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        with pytest.raises(ValidationError):
            await ledger.apply_deposit_approval(
                async_session,
                actor_id=tree.store.id,
                responsible_id=tree.distributor.id,
                user_id=tree.users["dist"].id,
                amount=10,
            )


class TestWithdrawalApproval:
    async def test_credits_the_nodes_and_debits_the_user(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        user = tree.users["store"]
        await ledger.apply_deposit_approval(
            async_session,
            actor_id=tree.distributor.id,
            responsible_id=tree.store.id,
            user_id=user.id,
            amount=800,
        )

        outcome = await ledger.apply_withdrawal_approval(
            async_session,
            actor_id=tree.distributor.id,
            responsible_id=tree.store.id,
            user_id=user.id,
            amount=300,
        )
        await async_session.commit()

        assert outcome.balance_after == Decimal("500.00")
        assert all(log.delta == Decimal("300.00") for log in outcome.logs)
        assert (await fresh_partner(async_session, tree.store.id)).balance == Decimal(
            "9500.00"
        )
        assert (
            await fresh_partner(async_session, tree.distributor.id)
        ).balance == Decimal("19500.00")

    async def test_user_cannot_withdraw_more_than_held(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        with pytest.raises(InsufficientFundsError):
            await ledger.apply_withdrawal_approval(
                async_session,
                actor_id=tree.store.id,
                responsible_id=tree.store.id,
                user_id=tree.users["store"].id,
                amount=1,
            )


class TestTransfers:
    async def test_send_and_reclaim(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        sent = await ledger.transfer(
            async_session, tree.main_office.id, tree.store.id, 2500, TransferDirection.SEND
        )
        assert sent.sender_log.partner_id == tree.main_office.id
        assert sent.receiver_log.counterpart_partner_id == tree.main_office.id

        await ledger.transfer(
            async_session,
            tree.main_office.id,
            tree.store.id,
            500,
            TransferDirection.RECLAIM,
        )
        await async_session.commit()

        assert (
            await fresh_partner(async_session, tree.main_office.id)
        ).balance == Decimal("98000.00")
        assert (await fresh_partner(async_session, tree.store.id)).balance == Decimal(
            "12000.00"
        )

    async def test_reclaim_checks_the_descendant(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        with pytest.raises(InsufficientFundsError):
            await ledger.transfer(
                async_session,
                tree.root.id,
                tree.store.id,
                10001,
                TransferDirection.RECLAIM,
            )

    async def test_only_downwards(
        self, async_session: AsyncSession, tree: PartnerTree, ledger: LedgerEngine
    ) -> None:
        with pytest.raises(ValidationError):
            await ledger.transfer(
                async_session,
                tree.store.id,
                tree.main_office.id,
                1,
                TransferDirection.SEND,
            )


class TestCompareAndSet:
    async def test_stale_before_value_is_a_conflict(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        with pytest.raises(BalanceConflictError):
            await _compare_and_set(
                async_session,
                Partner,
                tree.store.id,
                "balance",
                Decimal("1.00"),
                Decimal("2.00"),
            )

        assert (await fresh_partner(async_session, tree.store.id)).balance == Decimal(
            "10000.00"
        )
