from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.core.constants import ROOT_LEVEL
from partner_ledger.core.exceptions import NodeNotFoundError, ValidationError
from partner_ledger.partners.models import Partner

from .cache import CredentialCache
from .enums import Provider
from .models import ProviderCredential


class CredentialService:
    """Stores and rotates the credentials owned by level-1 nodes."""

    def __init__(self, cache: CredentialCache | None = None) -> None:
        self._cache = cache
        self._logger = structlog.get_logger(__name__)

    async def store(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        provider: Provider,
        *,
        opcode: str,
        secret: str,
        token: str,
    ) -> ProviderCredential:
        """Insert or overwrite the triple and flush without committing.

        The cached copy stays until the caller commits and then calls
        :meth:`invalidate_cached`.
        """
        owner = await session.get(Partner, owner_id)
        if owner is None:
            raise NodeNotFoundError(f"Partner {owner_id} not found")
        if owner.level != ROOT_LEVEL:
            raise ValidationError(
                f"Only level-1 partners may own credentials, {owner_id} is "
                f"level {owner.level}"
            )
        if not (opcode.strip() and secret.strip() and token.strip()):
            raise ValidationError("opcode, secret and token are all required")

        credential = await session.scalar(
            select(ProviderCredential).where(
                ProviderCredential.owner_id == owner_id,
                ProviderCredential.provider == provider,
            )
        )
        created = credential is None
        if credential is None:
            credential = ProviderCredential(owner_id=owner_id, provider=provider)
            session.add(credential)
        credential.opcode = opcode.strip()
        credential.secret = secret.strip()
        credential.token = token.strip()
        await session.flush()

        self._logger.info(
            "credential_stored" if created else "credential_rotated",
            owner_id=str(owner_id),
            provider=provider.value,
            opcode=credential.opcode,
        )
        return credential

    async def rotate(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        provider: Provider,
        *,
        opcode: str,
        secret: str,
        token: str,
    ) -> ProviderCredential:
        """Replace an existing credential; fails if none was stored yet."""
        existing = await session.scalar(
            select(ProviderCredential.id).where(
                ProviderCredential.owner_id == owner_id,
                ProviderCredential.provider == provider,
            )
        )
        if existing is None:
            raise NodeNotFoundError(
                f"No {provider.value} credential stored for {owner_id}"
            )
        return await self.store(
            session, owner_id, provider, opcode=opcode, secret=secret, token=token
        )

    async def invalidate_cached(self, owner_id: uuid.UUID, provider: Provider) -> None:
        if self._cache is None:
            return
        await self._cache.invalidate(owner_id, provider)
        self._logger.debug(
            "credential_cache_invalidated", owner_id=str(owner_id), provider=provider.value
        )
