"""
Status Routes - Liveness and dependency status.

/health is for load balancers (database only). /v1/status is a public status
page feed covering the database and every configured upstream provider.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from kuiqlee.config import settings
from kuiqlee.db.session import get_read_db, get_write_db
from kuiqlee.models.api import HealthResponse

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

# Timeout for health checks
CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

# Rate limiting: cache last result for 10 seconds
_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10

STRIPE_API_URL = "https://api.stripe.com/v1/charges"


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Status of a single provider."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str = "kuiqlee"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


def _level_for(latency_ms: int) -> StatusLevel:
    if latency_ms > DEGRADED_LATENCY_THRESHOLD:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


async def check_postgresql() -> ProviderStatus:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async for db in get_write_db():
            await db.execute(text("SELECT 1"))
            latency_ms = int((time.perf_counter() - start) * 1000)
            level = _level_for(latency_ms)
            return ProviderStatus(
                status=level,
                latency_ms=latency_ms,
                last_check=timestamp,
                message="High latency" if level == StatusLevel.DEGRADED else None,
            )
    except Exception as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )

    return ProviderStatus(
        status=StatusLevel.OUTAGE,
        latency_ms=None,
        last_check=timestamp,
        message="Unknown error",
    )


async def check_http_provider(name: str, url: str, reachable: tuple[int, ...]) -> ProviderStatus:
    """
    Check that an upstream HTTP API answers.

    Unauthenticated probes are expected to be rejected; any status in
    `reachable` counts as up.
    """
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            response = await client.get(url)
            latency_ms = int((time.perf_counter() - start) * 1000)

            if response.status_code in reachable:
                level = _level_for(latency_ms)
                return ProviderStatus(
                    status=level,
                    latency_ms=latency_ms,
                    last_check=timestamp,
                    message="High latency" if level == StatusLevel.DEGRADED else None,
                )

            return ProviderStatus(
                status=StatusLevel.DEGRADED,
                latency_ms=latency_ms,
                last_check=timestamp,
                message=f"HTTP {response.status_code}",
            )

    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("provider_health_check_failed", provider=name, error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from provider statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status() -> ServiceStatusResponse:
    """
    Get Kuiqlee service status.

    Public endpoint (no auth) for status page aggregation. Providers that are
    not configured are left out.

    Rate limited via 10-second cache to prevent abuse.
    """
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    checks = {"postgresql": check_postgresql()}
    if settings.stripe_configured:
        checks["stripe"] = check_http_provider("stripe", STRIPE_API_URL, (200, 401))
    if settings.model_api_key:
        checks["model_api"] = check_http_provider(
            "model_api", settings.model_api_url, (200, 401, 404, 405)
        )

    results = await asyncio.gather(*checks.values())
    providers = dict(zip(checks.keys(), results, strict=True))

    response = ServiceStatusResponse(
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )

    _status_cache[cache_key] = (now, response)

    return response
