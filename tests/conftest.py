from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import partner_ledger.credentials.models  # noqa: F401 - register tables with the metadata
import partner_ledger.ledger.models  # noqa: F401
import partner_ledger.transactions.models  # noqa: F401
from partner_ledger.core import redis as redis_module
from partner_ledger.core.config import get_settings
from partner_ledger.credentials.enums import Provider
from partner_ledger.credentials.service import CredentialService
from partner_ledger.credentials.types import ResolvedCredential
from partner_ledger.db import session as db_session
from partner_ledger.db.base import Base
from partner_ledger.partners.models import EndUser, Partner
from partner_ledger.partners.service import EndUserCreate, PartnerCreate, PartnerService
from partner_ledger.providers.dependencies import reset_provider_dependencies
from partner_ledger.providers.exceptions import SettlementRejectedError
from partner_ledger.providers.types import SettlementResponse
from partner_ledger.transactions.dependencies import reset_transaction_dependencies
from partner_ledger.transactions.incidents import Incident


@pytest.fixture(autouse=True)
def configure_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("SENTRY__ENABLED", "false")
    monkeypatch.setenv("PROMETHEUS__ENABLED", "false")
    monkeypatch.setenv("CREDENTIAL_CACHE__ENABLED", "true")

    reset_provider_dependencies()
    reset_transaction_dependencies()
    get_settings.cache_clear()

    yield

    reset_provider_dependencies()
    reset_transaction_dependencies()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    """Give every test its own empty in-memory Redis."""
    client = FakeRedis(server=FakeServer(), decode_responses=True)
    monkeypatch.setattr(redis_module, "_REDIS", client)
    return client


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    monkeypatch.setenv("DATABASE__URL", f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    get_settings.cache_clear()
    engine = db_session.get_engine()

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    try:
        yield db_session.get_session_factory()
    finally:
        await db_session.dispose_engine()


@pytest_asyncio.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@dataclass(slots=True)
class PartnerTree:
    """One node per level, each the parent of the next."""

    root: Partner
    head_office: Partner
    main_office: Partner
    sub_office: Partner
    distributor: Partner
    store: Partner
    users: dict[str, EndUser] = field(default_factory=dict)

    def at(self, level: int) -> Partner:
        nodes = [
            self.root,
            self.head_office,
            self.main_office,
            self.sub_office,
            self.distributor,
            self.store,
        ]
        return nodes[level - 1]


OPENING_BALANCES = {
    1: Decimal("0.00"),
    2: Decimal("100000.00"),
    3: Decimal("100000.00"),
    4: Decimal("50000.00"),
    5: Decimal("20000.00"),
    6: Decimal("10000.00"),
}

ROOT_CREDENTIAL = {"opcode": "ROOTOP", "secret": "root-secret", "token": "root-token"}


@pytest_asyncio.fixture
async def tree(session_factory: async_sessionmaker[AsyncSession]) -> PartnerTree:
    """Build levels 1 to 6, one end user per level and the root's credential."""
    service = PartnerService()
    async with session_factory() as session:
        root = await service.create_root(
            session,
            PartnerCreate(username="admin", opening_balance=OPENING_BALANCES[1]),
        )
        nodes = [root]
        names = ["head", "main", "sub", "dist", "store"]
        for level, name in enumerate(names, start=2):
            parent = nodes[-1]
            nodes.append(
                await service.create_partner(
                    session,
                    root.id,
                    parent.id,
                    PartnerCreate(
                        username=name,
                        opening_balance=OPENING_BALANCES[level],
                        enabled_providers=["invest"],
                    ),
                )
            )

        users: dict[str, EndUser] = {}
        for node in nodes:
            user = await service.create_user(
                session,
                root.id,
                node.id,
                EndUserCreate(username=f"player_{node.username}"),
            )
            users[node.username] = user

        await CredentialService().store(
            session, root.id, Provider.INVEST, **ROOT_CREDENTIAL
        )
        await session.commit()

    return PartnerTree(*nodes, users=users)


@dataclass
class StubGateway:
    """Settlement gateway double recording every call."""

    fail_with: Exception | None = None
    response: SettlementResponse = field(
        default_factory=lambda: {"RESULT": True, "DATA": {"transaction_id": "ext-1"}}
    )
    calls: list[tuple[str, str, Decimal, ResolvedCredential]] = field(
        default_factory=list
    )

    async def deposit(
        self, credential: ResolvedCredential, username: str, amount: Decimal
    ) -> SettlementResponse:
        return self._record("deposit", credential, username, amount)

    async def withdraw(
        self, credential: ResolvedCredential, username: str, amount: Decimal
    ) -> SettlementResponse:
        return self._record("withdraw", credential, username, amount)

    async def get_balance(
        self, credential: ResolvedCredential, username: str
    ) -> Decimal:
        return Decimal("0")

    def _record(
        self,
        operation: str,
        credential: ResolvedCredential,
        username: str,
        amount: Decimal,
    ) -> SettlementResponse:
        self.calls.append((operation, username, amount, credential))
        if self.fail_with is not None:
            raise self.fail_with
        return self.response


@dataclass
class RecordingIncidentReporter:
    incidents: list[Incident] = field(default_factory=list)

    async def report(self, incident: Incident) -> None:
        self.incidents.append(incident)


@pytest.fixture
def stub_gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def rejecting_gateway() -> StubGateway:
    return StubGateway(fail_with=SettlementRejectedError("provider said no"))


@pytest.fixture
def incident_reporter() -> RecordingIncidentReporter:
    return RecordingIncidentReporter()


@pytest_asyncio.fixture
async def app(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[FastAPI]:
    from partner_ledger.api.app import create_app

    application = create_app()
    async with application.router.lifespan_context(application):
        yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client


def actor_headers(partner: Partner | Any) -> dict[str, str]:
    return {"X-Partner-Id": str(partner.id)}
