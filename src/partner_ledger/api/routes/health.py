from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from partner_ledger.core.config import Settings, get_settings
from partner_ledger.core.redis import get_redis
from partner_ledger.db.dependencies import get_db_session

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


class DependencyStatus(BaseModel):
    status: Literal["ok", "error"]
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["ok", "error"]
    service: str
    version: str
    timestamp: datetime
    environment: str
    metrics_enabled: bool = False
    error_tracking_enabled: bool = False
    database: DependencyStatus | None = None
    redis: DependencyStatus | None = None

    model_config = ConfigDict(extra="ignore")


@router.get("", summary="Service health check", response_model=HealthResponse)
async def health(
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_db_session),
) -> HealthResponse:
    """Return service metadata and whether the database and Redis answer."""

    try:
        await session.execute(text("SELECT 1"))
        database = DependencyStatus(status="ok")
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        database = DependencyStatus(status="error", error=str(exc))

    redis: DependencyStatus | None = None
    if settings.credential_cache.enabled:
        try:
            await (await get_redis(settings)).ping()
            redis = DependencyStatus(status="ok")
        except Exception as exc:
            logger.error("redis_health_check_failed", error=str(exc))
            redis = DependencyStatus(status="error", error=str(exc))

    checks = [check for check in (database, redis) if check is not None]
    return HealthResponse(
        status="ok" if all(check.status == "ok" for check in checks) else "error",
        service=settings.project_name,
        version=settings.project_version,
        timestamp=datetime.now(UTC),
        environment=settings.environment.value,
        metrics_enabled=settings.prometheus.enabled,
        error_tracking_enabled=settings.sentry.enabled and settings.sentry.dsn is not None,
        database=database,
        redis=redis,
    )
