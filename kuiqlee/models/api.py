"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.

Email syntax, password length and domain normalization are checked by the
services so that each failure surfaces as its own typed error; the request
models only bound sizes.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Subscription status as reported by the payment provider."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"

    @property
    def is_entitled(self) -> bool:
        """Only active and trialing subscriptions grant unlimited usage."""
        return self in ENTITLED_STATUSES


ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


class PlanId(str, Enum):
    """Subscription plans offered at checkout."""

    MONTHLY = "monthly"
    ANNUAL = "annual"


# ============================================================================
# Auth Models
# ============================================================================


class RegisterRequest(BaseModel):
    """POST /v1/auth/register request body."""

    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=1024)


class LoginRequest(BaseModel):
    """POST /v1/auth/login request body."""

    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)


class UserResponse(BaseModel):
    """Public view of an identity."""

    id: UUID
    email: str
    is_premium: bool = False


class AuthResponse(BaseModel):
    """Response for register and login."""

    success: bool = True
    message: str
    token: str
    expires_at: str = Field(..., description="ISO 8601 timestamp")
    user: UserResponse


class VerifyResponse(BaseModel):
    """GET /v1/auth/verify response."""

    success: bool = True
    valid: bool = True
    user: UserResponse


class LogoutResponse(BaseModel):
    """POST /v1/auth/logout response."""

    success: bool = True
    message: str = "Logout successful"


# ============================================================================
# Usage Models
# ============================================================================


class UsageCheckResponse(BaseModel):
    """
    GET /v1/usage/check response.

    remaining and limit are null when unlimited is true.
    """

    success: bool = True
    allowed: bool
    is_premium: bool
    unlimited: bool
    used: int
    remaining: int | None
    limit: int | None
    domains: list[str] = Field(default_factory=list)
    domain_already_used: bool = False
    message: str


class RecordUsageRequest(BaseModel):
    """POST /v1/usage/record request body."""

    domain: str = Field(..., min_length=1, max_length=2048)
    url: str | None = Field(None, max_length=4096)


class RecordUsageResponse(BaseModel):
    """POST /v1/usage/record response."""

    success: bool = True
    recorded: bool
    already_used: bool
    is_premium: bool
    unlimited: bool
    used: int
    remaining: int | None
    limit: int | None
    message: str


class UsageHistoryItem(BaseModel):
    """Single usage ledger entry."""

    domain: str
    url: str | None
    created_at: str


class UsageHistoryResponse(BaseModel):
    """GET /v1/usage/history response."""

    success: bool = True
    history: list[UsageHistoryItem]
    count: int


# ============================================================================
# Billing Models
# ============================================================================


class CheckoutRequest(BaseModel):
    """POST /v1/billing/checkout request body."""

    plan_id: str = Field(..., min_length=1, max_length=32)


class CheckoutResponse(BaseModel):
    """POST /v1/billing/checkout response."""

    success: bool = True
    session_id: str
    url: str


class PortalResponse(BaseModel):
    """POST /v1/billing/portal response."""

    success: bool = True
    url: str


class SubscriptionDetail(BaseModel):
    """Subscription fields exposed to the client."""

    status: SubscriptionStatus
    plan_id: PlanId
    current_period_end: str | None
    cancel_at_period_end: bool


class SubscriptionStatusResponse(BaseModel):
    """GET /v1/billing/subscription response."""

    success: bool = True
    has_subscription: bool
    is_premium: bool
    subscription: SubscriptionDetail | None = None


class WebhookAckResponse(BaseModel):
    """POST /v1/billing/webhooks/stripe response."""

    received: bool = True
    status: str
    event_id: str


# ============================================================================
# Summary Models
# ============================================================================


class SummaryRequest(BaseModel):
    """POST /v1/summaries request body."""

    prompt: str = Field(..., min_length=1, max_length=400_000)
    domain: str = Field(..., min_length=1, max_length=2048)
    url: str | None = Field(None, max_length=4096)
    max_tokens: int | None = Field(None, gt=0, le=8192)
    temperature: float | None = Field(None, ge=0.0, le=1.0)


class ModelUsage(BaseModel):
    """Token usage reported by the model API."""

    input_tokens: int = 0
    output_tokens: int = 0


class SummaryResponse(BaseModel):
    """POST /v1/summaries response."""

    success: bool = True
    response: str
    usage: ModelUsage


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
