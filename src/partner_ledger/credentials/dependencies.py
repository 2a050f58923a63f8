from __future__ import annotations

from fastapi import Depends

from partner_ledger.core.config import Settings, get_settings
from partner_ledger.core.redis import get_redis
from partner_ledger.partners.dependencies import get_hierarchy_resolver
from partner_ledger.partners.hierarchy import HierarchyResolver

from .cache import CredentialCache
from .resolver import CredentialResolver
from .service import CredentialService


async def get_credential_cache(
    settings: Settings = Depends(get_settings),
) -> CredentialCache | None:
    if not settings.credential_cache.enabled:
        return None
    return CredentialCache(
        await get_redis(settings),
        ttl_seconds=settings.credential_cache.ttl_seconds,
        prefix=settings.credential_cache.key_prefix,
    )


def get_credential_resolver(
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
    cache: CredentialCache | None = Depends(get_credential_cache),
) -> CredentialResolver:
    return CredentialResolver(hierarchy=hierarchy, cache=cache)


def get_credential_service(
    cache: CredentialCache | None = Depends(get_credential_cache),
) -> CredentialService:
    return CredentialService(cache=cache)
