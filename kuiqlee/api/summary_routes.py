"""
Summary Routes - Entitlement-gated proxy to the model API.

Flow: check entitlement for the domain, call the model, then record usage.
Usage is only recorded after the model call succeeded, and a failure to record
does not fail the request.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from structlog import get_logger

from kuiqlee.api.dependencies import (
    get_current_identity,
    get_entitlement_service,
    get_model_client,
)
from kuiqlee.exceptions import StoreUnavailableError, UsageLimitReachedError
from kuiqlee.models.api import ModelUsage, SummaryRequest, SummaryResponse
from kuiqlee.services.entitlement import EntitlementService
from kuiqlee.services.model_client import ModelClient

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["summaries"])


@router.post("/summaries", response_model=SummaryResponse)
async def create_summary(
    request: SummaryRequest,
    identity_id: UUID = Depends(get_current_identity),
    service: EntitlementService = Depends(get_entitlement_service),
    model: ModelClient = Depends(get_model_client),
) -> SummaryResponse:
    """
    Run a prompt against the model if the caller is entitled for the domain.

    Errors:
    - 403: Free tier limit reached for a new domain
    - 429: Model API rate limited
    - 502: Model API rejected our key or returned an unusable body
    - 503: Model API unavailable or not configured
    """
    snapshot = await service.check_entitlement(identity_id, request.domain)
    if not snapshot.allowed:
        raise UsageLimitReachedError(
            used=snapshot.used, remaining=snapshot.remaining or 0, limit=snapshot.limit or 0
        )

    completion = await model.complete(
        request.prompt,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
    )

    try:
        await service.record_usage(identity_id, request.domain, request.url)
    except (UsageLimitReachedError, StoreUnavailableError) as e:
        # The summary was already produced; another request may have taken the last slot
        logger.warning(
            "summary_usage_not_recorded",
            identity_id=str(identity_id),
            error_type=type(e).__name__,
        )

    return SummaryResponse(
        response=completion.text,
        usage=ModelUsage(
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        ),
    )
