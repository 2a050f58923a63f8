from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field

from .enums import Provider

__all__ = ["ResolvedCredential", "CredentialBundle", "ScopedCredential"]


@dataclass(frozen=True, slots=True)
class ResolvedCredential:
    """A complete credential triple ready to sign provider calls."""

    owner_id: uuid.UUID
    provider: Provider
    opcode: str
    secret: str = field(repr=False)
    token: str = field(repr=False)

    def masked(self) -> dict[str, str]:
        return {
            "owner_id": str(self.owner_id),
            "provider": self.provider.value,
            "opcode": self.opcode,
            "token": f"{self.token[:4]}***" if self.token else "",
        }


@dataclass(frozen=True, slots=True)
class ScopedCredential:
    """Credential that applies to the subtree rooted at ``scope_node_id``."""

    scope_node_id: uuid.UUID
    credential: ResolvedCredential


@dataclass(frozen=True, slots=True)
class CredentialBundle:
    """Ordered credentials visible to a level-1 node.

    The node's own credential comes first, followed by one entry per active
    head office resolved through that head office's parent.
    """

    entries: tuple[ScopedCredential, ...]

    def __post_init__(self) -> None:
        if not self.entries:
            raise ValueError("CredentialBundle requires at least one entry")

    @property
    def first(self) -> ResolvedCredential:
        return self.entries[0].credential

    def __iter__(self) -> Iterator[ScopedCredential]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
