from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.types import Lifespan

from partner_ledger.core.config import Settings
from partner_ledger.core.redis import close_redis, init_redis
from partner_ledger.db.session import dispose_engine, get_engine
from partner_ledger.providers.dependencies import close_gateways


def create_lifespan(settings: Settings) -> Lifespan[FastAPI]:
    logger = structlog.get_logger(__name__).bind(environment=settings.environment)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("application_startup")
        get_engine(settings)
        if settings.credential_cache.enabled:
            app.state.redis = await init_redis(settings)

        try:
            yield
        finally:
            await close_gateways()
            await close_redis()
            await dispose_engine()
            logger.info("application_shutdown")

    return lifespan
