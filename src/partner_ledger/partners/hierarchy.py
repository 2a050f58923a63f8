"""Read-only traversals over the partner tree.

Every walk is bounded: descendant expansion issues one query per tree level and
keeps a visited set, and upward walks stop after ``max_depth`` hops with
:class:`HierarchyTooDeepError` so a corrupted parent link cannot spin forever.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.core.constants import MAX_HIERARCHY_HOPS
from partner_ledger.core.exceptions import HierarchyTooDeepError, NodeNotFoundError

from .models import EndUser, Partner

PartnerPredicate = Callable[[Partner], bool]


class HierarchyResolver:
    """Computes descendant sets and ancestor chains over the partner tree."""

    def __init__(self, *, max_depth: int = MAX_HIERARCHY_HOPS) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be positive")
        self._max_depth = max_depth
        self._logger = structlog.get_logger(__name__)

    @property
    def max_depth(self) -> int:
        return self._max_depth

    async def get_partner(self, session: AsyncSession, node_id: uuid.UUID) -> Partner:
        partner = await session.get(Partner, node_id)
        if partner is None:
            raise NodeNotFoundError(f"Partner {node_id} not found")
        return partner

    async def get_descendants(
        self, session: AsyncSession, node_id: uuid.UUID
    ) -> set[uuid.UUID]:
        """Return every node below ``node_id`` (the node itself excluded)."""
        await self.get_partner(session, node_id)

        visited: set[uuid.UUID] = {node_id}
        descendants: set[uuid.UUID] = set()
        frontier: list[uuid.UUID] = [node_id]
        rounds = 0

        while frontier:
            rounds += 1
            stmt = select(Partner.id).where(Partner.parent_id.in_(frontier))
            children = (await session.execute(stmt)).scalars().all()
            frontier = [child for child in children if child not in visited]
            visited.update(frontier)
            descendants.update(frontier)

        self._logger.debug(
            "descendants_resolved",
            node_id=str(node_id),
            count=len(descendants),
            rounds=rounds,
        )
        return descendants

    async def get_ancestor_chain(
        self, session: AsyncSession, node_id: uuid.UUID
    ) -> list[Partner]:
        """Return the path from ``node_id`` up to its level-1 root, inclusive."""
        current = await self.get_partner(session, node_id)
        chain = [current]
        hops = 0

        while current.parent_id is not None:
            hops += 1
            if hops > self._max_depth:
                raise HierarchyTooDeepError(node_id, self._max_depth)
            current = await self.get_partner(session, current.parent_id)
            chain.append(current)

        return chain

    async def find_nearest_ancestor(
        self,
        session: AsyncSession,
        node_id: uuid.UUID,
        predicate: PartnerPredicate,
    ) -> Partner:
        """Walk parent links from ``node_id`` and return the first match.

        The node itself is not considered.
        """
        current = await self.get_partner(session, node_id)

        for _ in range(self._max_depth):
            if current.parent_id is None:
                raise NodeNotFoundError(
                    f"No ancestor of {node_id} matches the requested criteria"
                )
            current = await self.get_partner(session, current.parent_id)
            if predicate(current):
                return current

        raise HierarchyTooDeepError(node_id, self._max_depth)

    async def is_descendant(
        self,
        session: AsyncSession,
        ancestor_id: uuid.UUID,
        node_id: uuid.UUID,
    ) -> bool:
        """True when ``ancestor_id`` lies strictly above ``node_id``."""
        if ancestor_id == node_id:
            return False
        chain = await self.get_ancestor_chain(session, node_id)
        return any(partner.id == ancestor_id for partner in chain[1:])

    async def manages(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        node_id: uuid.UUID,
    ) -> bool:
        """True when the actor is the node itself or one of its ancestors."""
        if actor_id == node_id:
            return True
        return await self.is_descendant(session, actor_id, node_id)

    async def users_in_subtree(
        self, session: AsyncSession, node_id: uuid.UUID
    ) -> list[EndUser]:
        scope = await self.get_descendants(session, node_id)
        scope.add(node_id)
        stmt = (
            select(EndUser)
            .where(EndUser.referrer_id.in_(scope))
            .order_by(EndUser.created_at)
        )
        return list((await session.execute(stmt)).scalars().all())
