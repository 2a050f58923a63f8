from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

import partner_ledger.credentials.models  # noqa: F401 - register tables with the metadata
import partner_ledger.ledger.models  # noqa: F401
import partner_ledger.partners.models  # noqa: F401
import partner_ledger.transactions.models  # noqa: F401
from partner_ledger.api.errors import register_exception_handlers
from partner_ledger.api.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from partner_ledger.api.routes import load_routers
from partner_ledger.core.config import Settings, get_settings
from partner_ledger.core.lifespan import create_lifespan
from partner_ledger.core.logging import configure_logging
from partner_ledger.observability import configure_sentry, metrics_service


def _register_middlewares(app: FastAPI) -> None:
    # Last added runs outermost; access logs need the bound request id.
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def _register_routers(app: FastAPI) -> None:
    for router in load_routers():
        app.include_router(router)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    # Sentry first so initialisation errors are captured
    configure_sentry(settings.sentry)

    app = FastAPI(
        title=settings.project_name,
        description=settings.project_description,
        version=settings.project_version,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        default_response_class=ORJSONResponse,
        lifespan=create_lifespan(settings),
    )

    app.state.settings = settings
    app.openapi_tags = [
        {"name": "health", "description": "Service health check operations"},
        {
            "name": "partners",
            "description": "Partner tree management, transfers and credential lookup.",
        },
        {"name": "points", "description": "Grant, recover and convert user points."},
        {
            "name": "transactions",
            "description": "Deposit and withdrawal requests and their approval.",
        },
        {
            "name": "reconciliation",
            "description": "Balance versus balance-log consistency reports.",
        },
        {"name": "credentials", "description": "Level-1 provider credentials."},
    ]

    metrics_service.instrument_app(app, settings.prometheus)

    _register_middlewares(app)
    register_exception_handlers(app)
    _register_routers(app)

    return app
