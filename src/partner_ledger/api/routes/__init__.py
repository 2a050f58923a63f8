from __future__ import annotations

from collections.abc import Iterator

from fastapi import APIRouter

from . import credentials, health, partners, points, reconciliation, transactions

__all__ = ["load_routers"]

# Health first so it stays at the top of the generated schema.
_ROUTE_MODULES = (health, partners, credentials, points, transactions, reconciliation)


def load_routers() -> Iterator[APIRouter]:
    for module in _ROUTE_MODULES:
        yield module.router
