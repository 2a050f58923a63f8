"""Translation of ledger domain errors into HTTP responses."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import ORJSONResponse

from partner_ledger.core.exceptions import (
    AlreadyProcessedError,
    BalanceConflictError,
    ExternalApiFailureError,
    HierarchyTooDeepError,
    InsufficientFundsError,
    LedgerError,
    MissingCredentialError,
    NodeNotFoundError,
    PersistenceFailureError,
    ValidationError,
)
from partner_ledger.core.logging import get_request_id
from partner_ledger.observability.sentry import capture_exception
from partner_ledger.providers.exceptions import SettlementConfigurationError

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int, str], ...] = (
    (NodeNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (AlreadyProcessedError, status.HTTP_409_CONFLICT, "already_processed"),
    (BalanceConflictError, status.HTTP_409_CONFLICT, "balance_conflict"),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED, "insufficient_funds"),
    (HierarchyTooDeepError, status.HTTP_422_UNPROCESSABLE_ENTITY, "hierarchy_too_deep"),
    (MissingCredentialError, status.HTTP_422_UNPROCESSABLE_ENTITY, "missing_credential"),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    (ExternalApiFailureError, status.HTTP_502_BAD_GATEWAY, "external_api_failure"),
    (PersistenceFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR, "persistence_failure"),
    (SettlementConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE, "provider_not_configured"),
)


def _classify(exc: Exception) -> tuple[int, str]:
    for error_type, status_code, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code, code
    return status.HTTP_400_BAD_REQUEST, "ledger_error"


async def _handle(request: Request, exc: Exception) -> ORJSONResponse:
    status_code, code = _classify(exc)
    body: dict[str, Any] = {"detail": str(exc), "code": code}
    request_id = get_request_id()
    if request_id is not None:
        body["request_id"] = request_id
    if isinstance(exc, ExternalApiFailureError):
        body["outcome_unknown"] = exc.outcome_unknown
    if isinstance(exc, PersistenceFailureError):
        body["transaction_id"] = str(exc.transaction_id)

    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=code, detail=str(exc))
        capture_exception(exc, path=request.url.path, code=code)
    else:
        logger.info("request_rejected", path=request.url.path, code=code, detail=str(exc))
    return ORJSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, _handle)
    app.add_exception_handler(SettlementConfigurationError, _handle)
