from __future__ import annotations

from .cache import CredentialCache
from .enums import Provider
from .models import ProviderCredential
from .resolver import CredentialResolver
from .service import CredentialService
from .types import CredentialBundle, ResolvedCredential, ScopedCredential

__all__ = [
    "CredentialBundle",
    "CredentialCache",
    "CredentialResolver",
    "CredentialService",
    "Provider",
    "ProviderCredential",
    "ResolvedCredential",
    "ScopedCredential",
]
