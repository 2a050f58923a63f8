from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import PartnerTree
from partner_ledger.core.exceptions import (
    HierarchyTooDeepError,
    NodeNotFoundError,
    ValidationError,
)
from partner_ledger.partners.enums import PartnerLevel, PartnerStatus, PartnerType
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import Partner
from partner_ledger.partners.service import EndUserCreate, PartnerCreate, PartnerService


@pytest.fixture
def resolver() -> HierarchyResolver:
    return HierarchyResolver()


class TestHierarchyResolver:
    async def test_descendants_exclude_the_node_itself(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        descendants = await resolver.get_descendants(async_session, tree.main_office.id)

        assert descendants == {
            tree.sub_office.id,
            tree.distributor.id,
            tree.store.id,
        }

    async def test_descendants_cover_siblings_in_one_round(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        """A second branch below the head office is picked up alongside the first."""
        service = PartnerService()
        sibling = await service.create_partner(
            async_session,
            tree.root.id,
            tree.head_office.id,
            PartnerCreate(username="main-2"),
        )
        await async_session.commit()

        descendants = await resolver.get_descendants(async_session, tree.head_office.id)

        assert sibling.id in descendants
        assert tree.store.id in descendants
        assert len(descendants) == 5

    async def test_leaf_has_no_descendants(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        assert await resolver.get_descendants(async_session, tree.store.id) == set()

    async def test_unknown_node_raises(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        with pytest.raises(NodeNotFoundError):
            await resolver.get_descendants(async_session, uuid.uuid4())

    async def test_ancestor_chain_runs_from_node_to_root(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        chain = await resolver.get_ancestor_chain(async_session, tree.store.id)

        assert [partner.level for partner in chain] == [6, 5, 4, 3, 2, 1]
        assert chain[0].id == tree.store.id
        assert chain[-1].id == tree.root.id

    async def test_find_nearest_ancestor_skips_the_node_itself(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        found = await resolver.find_nearest_ancestor(
            async_session,
            tree.sub_office.id,
            lambda partner: partner.level == PartnerLevel.HEAD_OFFICE,
        )

        assert found.id == tree.head_office.id

    async def test_find_nearest_ancestor_without_match(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        with pytest.raises(NodeNotFoundError):
            await resolver.find_nearest_ancestor(
                async_session, tree.store.id, lambda partner: partner.level == 9
            )

    async def test_walks_stop_on_a_parent_cycle(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        """A corrupted parent link must not loop forever."""
        await async_session.execute(
            update(Partner)
            .where(Partner.id == tree.main_office.id)
            .values(parent_id=tree.sub_office.id)
        )
        await async_session.commit()

        with pytest.raises(HierarchyTooDeepError):
            await resolver.get_ancestor_chain(async_session, tree.store.id)
        with pytest.raises(HierarchyTooDeepError):
            await resolver.find_nearest_ancestor(
                async_session, tree.store.id, lambda partner: partner.level == 1
            )

    async def test_manages_and_is_descendant(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        assert await resolver.manages(async_session, tree.store.id, tree.store.id)
        assert await resolver.manages(async_session, tree.main_office.id, tree.store.id)
        assert not await resolver.manages(
            async_session, tree.store.id, tree.main_office.id
        )
        assert not await resolver.is_descendant(
            async_session, tree.store.id, tree.store.id
        )

    async def test_users_in_subtree(
        self, async_session: AsyncSession, tree: PartnerTree, resolver: HierarchyResolver
    ) -> None:
        users = await resolver.users_in_subtree(async_session, tree.sub_office.id)

        assert {user.username for user in users} == {
            "player_sub",
            "player_dist",
            "player_store",
        }

    def test_rejects_non_positive_depth(self) -> None:
        with pytest.raises(ValueError):
            HierarchyResolver(max_depth=0)


class TestPartnerService:
    async def test_child_level_and_type_follow_the_parent(
        self, tree: PartnerTree
    ) -> None:
        assert tree.store.level == 6
        assert tree.store.partner_type is PartnerType.STORE
        assert tree.head_office.partner_type is PartnerType.HEAD_OFFICE
        assert tree.main_office.initial_balance == Decimal("100000.00")

    async def test_store_cannot_have_children(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        with pytest.raises(ValidationError):
            await PartnerService().create_partner(
                async_session,
                tree.root.id,
                tree.store.id,
                PartnerCreate(username="too-deep"),
            )

    async def test_actor_must_manage_the_parent(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        with pytest.raises(ValidationError):
            await PartnerService().create_partner(
                async_session,
                tree.store.id,
                tree.distributor.id,
                PartnerCreate(username="sideways"),
            )

    async def test_duplicate_username_rejected(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        with pytest.raises(ValidationError, match="already taken"):
            await PartnerService().create_partner(
                async_session,
                tree.root.id,
                tree.root.id,
                PartnerCreate(username="head"),
            )

    async def test_negative_opening_balance_rejected(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        with pytest.raises(ValidationError):
            await PartnerService().create_partner(
                async_session,
                tree.root.id,
                tree.root.id,
                PartnerCreate(username="in-debt", opening_balance=Decimal("-1")),
            )

    async def test_users_require_an_active_referrer(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        await async_session.execute(
            update(Partner)
            .where(Partner.id == tree.store.id)
            .values(status=PartnerStatus.SUSPENDED)
        )
        await async_session.commit()

        with pytest.raises(ValidationError, match="not active"):
            await PartnerService().create_user(
                async_session,
                tree.root.id,
                tree.store.id,
                EndUserCreate(username="late-player"),
            )

    async def test_delete_refuses_nodes_with_children_or_users(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        service = PartnerService()

        with pytest.raises(ValidationError):
            await service.delete_partner(async_session, tree.root.id, tree.distributor.id)
        with pytest.raises(ValidationError):
            await service.delete_partner(async_session, tree.root.id, tree.store.id)

    async def test_delete_empty_node(
        self, async_session: AsyncSession, tree: PartnerTree
    ) -> None:
        service = PartnerService()
        empty = await service.create_partner(
            async_session,
            tree.distributor.id,
            tree.distributor.id,
            PartnerCreate(username="empty-store"),
        )
        await async_session.commit()

        with pytest.raises(ValidationError, match="not an ancestor"):
            await service.delete_partner(async_session, empty.id, empty.id)

        await service.delete_partner(async_session, tree.distributor.id, empty.id)
        await async_session.commit()

        assert await async_session.get(Partner, empty.id) is None
