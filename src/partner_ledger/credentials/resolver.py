"""Maps a partner node to the provider credential its calls must be signed with.

Only level-1 nodes own credentials. A head office borrows its level-1 parent's
credential and every node below a head office borrows the head office's. The
walk never falls back to "the nearest ancestor that happens to own one".
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.core.constants import HEAD_OFFICE_LEVEL, ROOT_LEVEL
from partner_ledger.core.exceptions import MissingCredentialError, NodeNotFoundError
from partner_ledger.observability.metrics import metrics_service
from partner_ledger.partners.enums import PartnerStatus
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.partners.models import Partner

from .cache import CredentialCache
from .enums import Provider
from .models import ProviderCredential
from .types import CredentialBundle, ResolvedCredential, ScopedCredential


class CredentialResolver:
    def __init__(
        self,
        hierarchy: HierarchyResolver | None = None,
        cache: CredentialCache | None = None,
    ) -> None:
        self._hierarchy = hierarchy or HierarchyResolver()
        self._cache = cache
        self._logger = structlog.get_logger(__name__)

    async def resolve(
        self,
        session: AsyncSession,
        node_id: uuid.UUID,
        provider: Provider,
    ) -> ResolvedCredential | CredentialBundle:
        """Return the credential applying to ``node_id``.

        Level-1 nodes get a :class:`CredentialBundle`; every other level gets a
        single :class:`ResolvedCredential`.
        """
        node = await self._hierarchy.get_partner(session, node_id)

        if node.level == ROOT_LEVEL:
            return await self._resolve_root_bundle(session, node, provider)
        if node.level == HEAD_OFFICE_LEVEL:
            return await self._resolve_head_office(session, node, provider)

        try:
            head_office = await self._hierarchy.find_nearest_ancestor(
                session, node.id, lambda partner: partner.level == HEAD_OFFICE_LEVEL
            )
        except NodeNotFoundError as exc:
            raise MissingCredentialError(
                f"Partner {node.id} has no head office above it"
            ) from exc
        return await self._resolve_head_office(session, head_office, provider)

    async def resolve_single(
        self,
        session: AsyncSession,
        node_id: uuid.UUID,
        provider: Provider,
    ) -> ResolvedCredential:
        """Like :meth:`resolve` but collapses a bundle to its first entry."""
        resolved = await self.resolve(session, node_id, provider)
        if isinstance(resolved, CredentialBundle):
            return resolved.first
        return resolved

    async def _resolve_root_bundle(
        self, session: AsyncSession, root: Partner, provider: Provider
    ) -> CredentialBundle:
        entries = [
            ScopedCredential(
                scope_node_id=root.id,
                credential=await self._load_owned(session, root.id, provider),
            )
        ]

        stmt = (
            select(Partner)
            .where(
                Partner.level == HEAD_OFFICE_LEVEL,
                Partner.status == PartnerStatus.ACTIVE,
            )
            .order_by(Partner.created_at, Partner.username)
        )
        for head_office in (await session.execute(stmt)).scalars():
            try:
                credential = await self._resolve_head_office(
                    session, head_office, provider
                )
            except MissingCredentialError as exc:
                self._logger.warning(
                    "credential_bundle_entry_skipped",
                    head_office_id=str(head_office.id),
                    provider=provider.value,
                    reason=str(exc),
                )
                continue
            entries.append(
                ScopedCredential(scope_node_id=head_office.id, credential=credential)
            )

        return CredentialBundle(entries=tuple(entries))

    async def _resolve_head_office(
        self, session: AsyncSession, head_office: Partner, provider: Provider
    ) -> ResolvedCredential:
        if head_office.parent_id is None:
            raise MissingCredentialError(
                f"Head office {head_office.id} has no level-1 parent"
            )
        parent = await self._hierarchy.get_partner(session, head_office.parent_id)
        if parent.level != ROOT_LEVEL:
            raise MissingCredentialError(
                f"Parent of head office {head_office.id} must be level 1, "
                f"found level {parent.level}"
            )
        return await self._load_owned(session, parent.id, provider)

    async def _load_owned(
        self, session: AsyncSession, owner_id: uuid.UUID, provider: Provider
    ) -> ResolvedCredential:
        if self._cache is not None:
            cached = await self._cache.get(owner_id, provider)
            metrics_service.record_cache_lookup(hit=cached is not None)
            if cached is not None:
                return cached

        row = await session.scalar(
            select(ProviderCredential).where(
                ProviderCredential.owner_id == owner_id,
                ProviderCredential.provider == provider,
            )
        )
        if row is None or not row.is_complete:
            raise MissingCredentialError(
                f"No complete {provider.value} credential configured for {owner_id}"
            )

        credential = ResolvedCredential(
            owner_id=owner_id,
            provider=provider,
            opcode=row.opcode or "",
            secret=row.secret or "",
            token=row.token or "",
        )
        if self._cache is not None:
            await self._cache.put(credential)
        return credential
