from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from partner_ledger.credentials.dependencies import get_credential_resolver
from partner_ledger.credentials.resolver import CredentialResolver
from partner_ledger.db.dependencies import get_db_session_factory
from partner_ledger.ledger.dependencies import get_ledger_engine
from partner_ledger.ledger.engine import LedgerEngine
from partner_ledger.partners.dependencies import get_hierarchy_resolver
from partner_ledger.partners.hierarchy import HierarchyResolver
from partner_ledger.providers.dependencies import GatewayRegistry, get_gateway_registry

from .incidents import IncidentReporter, LoggingIncidentReporter
from .workflow import ApprovalWorkflow

_REPORTER: IncidentReporter | None = None


def get_incident_reporter() -> IncidentReporter:
    global _REPORTER
    if _REPORTER is None:
        _REPORTER = LoggingIncidentReporter()
    return _REPORTER


def get_approval_workflow(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    ledger: LedgerEngine = Depends(get_ledger_engine),
    credentials: CredentialResolver = Depends(get_credential_resolver),
    hierarchy: HierarchyResolver = Depends(get_hierarchy_resolver),
    incidents: IncidentReporter = Depends(get_incident_reporter),
) -> ApprovalWorkflow:
    return ApprovalWorkflow(
        session_factory,
        gateway_for=registry.get,
        ledger=ledger,
        credentials=credentials,
        hierarchy=hierarchy,
        incidents=incidents,
    )


def reset_transaction_dependencies() -> None:
    global _REPORTER
    _REPORTER = None
