from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.core.constants import LEAF_PARTNER_LEVEL, MONEY_QUANTUM, ROOT_LEVEL
from partner_ledger.core.exceptions import NodeNotFoundError, ValidationError

from .enums import PartnerStatus, PartnerType
from .hierarchy import HierarchyResolver
from .models import EndUser, Partner


@dataclass(slots=True)
class PartnerCreate:
    """Input payload for a new partner node."""

    username: str
    nickname: str | None = None
    opening_balance: Decimal = Decimal("0.00")
    commission_rolling: Decimal = Decimal("0.00")
    commission_losing: Decimal = Decimal("0.00")
    enabled_providers: list[str] = field(default_factory=list)


@dataclass(slots=True)
class EndUserCreate:
    """Input payload for a new end user."""

    username: str
    nickname: str | None = None
    commission_rolling: Decimal | None = None
    commission_losing: Decimal | None = None


class PartnerService:
    """Creates and removes nodes of the partner tree and their end users."""

    def __init__(self, hierarchy: HierarchyResolver | None = None) -> None:
        self._hierarchy = hierarchy or HierarchyResolver()
        self._logger = structlog.get_logger(__name__)

    async def create_root(self, session: AsyncSession, payload: PartnerCreate) -> Partner:
        """Bootstrap a level-1 system administrator."""
        await self._ensure_username_free(session, Partner, payload.username)
        root = self._build(payload, level=ROOT_LEVEL, parent_id=None)
        session.add(root)
        await session.flush()
        self._logger.info("partner_root_created", partner_id=str(root.id))
        return root

    async def create_partner(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        parent_id: uuid.UUID,
        payload: PartnerCreate,
    ) -> Partner:
        """Create a direct child of ``parent_id``; the actor must manage the parent."""
        parent = await self._hierarchy.get_partner(session, parent_id)
        if not parent.is_active:
            raise ValidationError(f"Parent partner {parent_id} is not active")
        if parent.level >= LEAF_PARTNER_LEVEL:
            raise ValidationError("Stores cannot have partner children")
        if not await self._hierarchy.manages(session, actor_id, parent_id):
            raise ValidationError(
                f"Partner {actor_id} is not allowed to create nodes under {parent_id}"
            )
        await self._ensure_username_free(session, Partner, payload.username)

        partner = self._build(payload, level=parent.level + 1, parent_id=parent.id)
        session.add(partner)
        await session.flush()

        self._logger.info(
            "partner_created",
            partner_id=str(partner.id),
            parent_id=str(parent.id),
            level=partner.level,
            actor_id=str(actor_id),
        )
        return partner

    async def delete_partner(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        partner_id: uuid.UUID,
    ) -> None:
        """Delete a node that has neither child partners nor end users."""
        partner = await self._hierarchy.get_partner(session, partner_id)
        if not await self._hierarchy.is_descendant(session, actor_id, partner_id):
            raise ValidationError(
                f"Partner {actor_id} is not an ancestor of {partner_id}"
            )

        children = await session.scalar(
            select(func.count(Partner.id)).where(Partner.parent_id == partner_id)
        )
        users = await session.scalar(
            select(func.count(EndUser.id)).where(EndUser.referrer_id == partner_id)
        )
        if children or users:
            raise ValidationError(
                f"Partner {partner_id} still has {children} partners and {users} users"
            )

        await session.delete(partner)
        await session.flush()
        self._logger.info(
            "partner_deleted", partner_id=str(partner_id), actor_id=str(actor_id)
        )

    async def create_user(
        self,
        session: AsyncSession,
        actor_id: uuid.UUID,
        referrer_id: uuid.UUID,
        payload: EndUserCreate,
    ) -> EndUser:
        referrer = await self._hierarchy.get_partner(session, referrer_id)
        if not referrer.is_active:
            raise ValidationError(f"Referrer {referrer_id} is not active")
        if not await self._hierarchy.manages(session, actor_id, referrer_id):
            raise ValidationError(
                f"Partner {actor_id} cannot attach users to {referrer_id}"
            )
        await self._ensure_username_free(session, EndUser, payload.username)

        user = EndUser(
            username=payload.username.strip(),
            nickname=payload.nickname,
            referrer_id=referrer.id,
            status=PartnerStatus.ACTIVE,
            balance=Decimal("0.00"),
            points=Decimal("0.00"),
            commission_rolling=payload.commission_rolling,
            commission_losing=payload.commission_losing,
        )
        session.add(user)
        await session.flush()
        self._logger.info(
            "end_user_created", user_id=str(user.id), referrer_id=str(referrer.id)
        )
        return user

    async def get_user(self, session: AsyncSession, user_id: uuid.UUID) -> EndUser:
        user = await session.get(EndUser, user_id)
        if user is None:
            raise NodeNotFoundError(f"User {user_id} not found")
        return user

    def _build(
        self, payload: PartnerCreate, *, level: int, parent_id: uuid.UUID | None
    ) -> Partner:
        opening = payload.opening_balance.quantize(MONEY_QUANTUM)
        if opening < 0:
            raise ValidationError("Opening balance cannot be negative")
        return Partner(
            username=payload.username.strip(),
            nickname=payload.nickname,
            level=level,
            partner_type=PartnerType.for_level(level),
            parent_id=parent_id,
            status=PartnerStatus.ACTIVE,
            balance=opening,
            initial_balance=opening,
            commission_rolling=payload.commission_rolling,
            commission_losing=payload.commission_losing,
            enabled_providers=sorted({p.strip().lower() for p in payload.enabled_providers}),
        )

    @staticmethod
    async def _ensure_username_free(
        session: AsyncSession, model: type[Partner] | type[EndUser], username: str
    ) -> None:
        cleaned = username.strip()
        if not cleaned:
            raise ValidationError("Username must not be empty")
        existing = await session.scalar(
            select(model.id).where(model.username == cleaned).limit(1)
        )
        if existing is not None:
            raise ValidationError(f"Username '{cleaned}' is already taken")
