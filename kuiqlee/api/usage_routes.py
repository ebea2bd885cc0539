"""
Usage Routes - Free tier entitlement checks and usage recording.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from kuiqlee.api.dependencies import get_current_identity, get_entitlement_service
from kuiqlee.models.api import (
    RecordUsageRequest,
    RecordUsageResponse,
    UsageCheckResponse,
    UsageHistoryItem,
    UsageHistoryResponse,
)
from kuiqlee.models.domain import RecordUsageResult, UsageSnapshot
from kuiqlee.services.entitlement import EntitlementService

router = APIRouter(prefix="/v1/usage", tags=["usage"])


def snapshot_message(snapshot: UsageSnapshot) -> str:
    if snapshot.is_premium:
        return "Premium user - unlimited access"
    if snapshot.domain_already_used:
        return "Domain already used - no additional usage counted"
    if snapshot.remaining:
        return f"{snapshot.remaining} summary credits remaining"
    return "Free tier limit reached. Upgrade to Premium for unlimited access."


def usage_check_response(snapshot: UsageSnapshot) -> UsageCheckResponse:
    return UsageCheckResponse(
        allowed=snapshot.allowed,
        is_premium=snapshot.is_premium,
        unlimited=snapshot.unlimited,
        used=snapshot.used,
        remaining=snapshot.remaining,
        limit=snapshot.limit,
        domains=list(snapshot.domains),
        domain_already_used=snapshot.domain_already_used,
        message=snapshot_message(snapshot),
    )


def record_usage_response(result: RecordUsageResult) -> RecordUsageResponse:
    snapshot = result.snapshot
    if snapshot.is_premium:
        message = "Premium user - usage not tracked"
    elif result.already_used:
        message = "Domain already used - no additional usage counted"
    elif snapshot.remaining:
        message = f"{snapshot.remaining} summaries remaining"
    else:
        message = "Free tier limit reached"

    return RecordUsageResponse(
        recorded=result.recorded,
        already_used=result.already_used,
        is_premium=snapshot.is_premium,
        unlimited=snapshot.unlimited,
        used=snapshot.used,
        remaining=snapshot.remaining,
        limit=snapshot.limit,
        message=message,
    )


@router.get("/check", response_model=UsageCheckResponse)
async def check_usage(
    domain: str | None = Query(None, max_length=2048),
    identity_id: UUID = Depends(get_current_identity),
    service: EntitlementService = Depends(get_entitlement_service),
) -> UsageCheckResponse:
    """
    Report whether the caller may summarize content from a domain.

    Without a domain, reports whether any new domain would be allowed.
    """
    snapshot = await service.check_entitlement(identity_id, domain)
    return usage_check_response(snapshot)


@router.post("/record", response_model=RecordUsageResponse)
async def record_usage(
    request: RecordUsageRequest,
    identity_id: UUID = Depends(get_current_identity),
    service: EntitlementService = Depends(get_entitlement_service),
) -> RecordUsageResponse:
    """
    Record use of a domain against the free tier.

    Errors:
    - 400: Domain cannot be normalized
    - 403: Free tier limit reached for a new domain
    """
    result = await service.record_usage(identity_id, request.domain, request.url)
    return record_usage_response(result)


@router.get("/history", response_model=UsageHistoryResponse)
async def usage_history(
    limit: int = Query(50, ge=1, le=200),
    identity_id: UUID = Depends(get_current_identity),
    service: EntitlementService = Depends(get_entitlement_service),
) -> UsageHistoryResponse:
    """Most recent usage records, newest first."""
    records = await service.usage_history(identity_id, limit)
    return UsageHistoryResponse(
        history=[
            UsageHistoryItem(
                domain=record.domain,
                url=record.resource_url,
                created_at=record.created_at.isoformat(),
            )
            for record in records
        ],
        count=len(records),
    )
