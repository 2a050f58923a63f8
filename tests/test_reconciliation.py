from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import PartnerTree
from partner_ledger.ledger.engine import LedgerEngine
from partner_ledger.ledger.enums import TransferDirection
from partner_ledger.ledger.reconciliation import Reconciler, reconcile
from partner_ledger.partners.models import Partner


class TestReconciliation:
    async def test_fresh_tree_is_consistent(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        reports = await reconcile(async_session)

        assert len(reports) == 6
        assert all(report.is_consistent for report in reports)
        assert all(report.entry_count == 0 for report in reports)

    async def test_ledger_activity_keeps_the_invariant(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        ledger = LedgerEngine()
        store_user = tree.users["store"]
        await ledger.grant_points(async_session, tree.main_office.id, tree.users["main"].id, 700)
        await ledger.grant_points(async_session, tree.head_office.id, tree.users["head"].id, 300)
        await ledger.apply_deposit_approval(
            async_session,
            actor_id=tree.sub_office.id,
            responsible_id=tree.store.id,
            user_id=store_user.id,
            amount=400,
        )
        await ledger.apply_withdrawal_approval(
            async_session,
            actor_id=tree.sub_office.id,
            responsible_id=tree.store.id,
            user_id=store_user.id,
            amount=150,
        )
        await ledger.transfer(
            async_session, tree.root.id, tree.distributor.id, 900, TransferDirection.SEND
        )
        await async_session.commit()

        reports = {report.partner_id: report for report in await reconcile(async_session)}

        assert all(report.is_consistent for report in reports.values())
        store = reports[tree.store.id]
        assert store.log_total == Decimal("-250.00")
        assert store.entry_count == 2
        assert reports[tree.root.id].balance == Decimal("-900.00")

    async def test_unlogged_write_shows_up_as_drift(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        """A balance changed outside the engine is what a half-applied approval looks like."""
        await LedgerEngine().grant_points(
            async_session, tree.store.id, tree.users["store"].id, 100
        )
        await async_session.execute(
            update(Partner)
            .where(Partner.id == tree.distributor.id)
            .values(balance=Decimal("19000.00"))
        )
        await async_session.commit()

        reports = await Reconciler().reconcile(
            async_session, [tree.store.id, tree.distributor.id]
        )

        assert len(reports) == 2
        drifted = [report for report in reports if not report.is_consistent]
        assert [report.partner_id for report in drifted] == [tree.distributor.id]
        assert drifted[0].drift == Decimal("-1000.00")
