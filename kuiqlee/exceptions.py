"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Families (each maps to one externally observable status, see api/errors.py):
- InvalidInputError: client-fixable input problems
- ConflictError: duplicate registration
- AuthenticationError: bad credentials, missing/malformed/expired/revoked token
- UsageLimitReachedError: free tier cap reached
- ResourceNotFoundError: no identity / no subscription
- WebhookVerificationError: webhook authenticity failure, never retried
- UnavailableError: store or provider unreachable, safe to retry
"""

from uuid import UUID


class KuiqleeError(Exception):
    """Base exception for all service errors."""

    pass


# ============================================================================
# Invalid input
# ============================================================================


class InvalidInputError(KuiqleeError):
    """Raised when client input fails validation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidEmailError(InvalidInputError):
    """Raised when an email address fails the syntactic check."""

    def __init__(self) -> None:
        super().__init__("Invalid email format")


class WeakPasswordError(InvalidInputError):
    """Raised when a password is shorter than the minimum length."""

    def __init__(self, min_length: int) -> None:
        self.min_length = min_length
        super().__init__(f"Password must be at least {min_length} characters long")


class InvalidDomainError(InvalidInputError):
    """Raised when a resource domain cannot be normalized."""

    def __init__(self, domain: str) -> None:
        self.domain = domain
        super().__init__(f"Invalid domain: {domain[:100]!r}")


class InvalidPlanError(InvalidInputError):
    """Raised when a checkout plan is not one of the offered plans."""

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__("Valid plan ID is required (monthly or annual)")


# ============================================================================
# Conflict
# ============================================================================


class ConflictError(KuiqleeError):
    """Raised when a write collides with existing state."""

    pass


class EmailAlreadyRegisteredError(ConflictError):
    """Raised when registering an email that already has an identity."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Email already registered")


class SubscriptionConflictError(ConflictError):
    """Raised when a subscription write violates a constraint other than its owner key."""

    def __init__(self, identity_id: UUID, constraint: str | None) -> None:
        self.identity_id = identity_id
        self.constraint = constraint
        super().__init__(f"Subscription write conflict on {constraint or 'unknown constraint'}")


# ============================================================================
# Authentication
# ============================================================================


class AuthenticationError(KuiqleeError):
    """Raised when the caller is not authenticated. Always re-authenticate."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidCredentialsError(AuthenticationError):
    """Raised on unknown email or wrong password (deliberately indistinguishable)."""

    def __init__(self) -> None:
        super().__init__("Invalid email or password")


class MissingTokenError(AuthenticationError):
    """Raised when no bearer token was presented."""

    def __init__(self) -> None:
        super().__init__("Authentication required")


class MalformedTokenError(AuthenticationError):
    """Raised when a token fails structural or signature checks."""

    def __init__(self, reason: str = "Invalid token") -> None:
        self.reason = reason
        super().__init__(reason)


class TokenExpiredError(AuthenticationError):
    """Raised when a token is past its expiry."""

    def __init__(self) -> None:
        super().__init__("Token has expired")


class TokenRevokedError(AuthenticationError):
    """Raised when a well-formed token is revoked or unknown to the credential store."""

    def __init__(self) -> None:
        super().__init__("Token is invalid or has been revoked")


# ============================================================================
# Forbidden
# ============================================================================


class UsageLimitReachedError(KuiqleeError):
    """Raised when a non-premium identity reaches the free tier domain cap."""

    def __init__(self, used: int, remaining: int, limit: int) -> None:
        self.used = used
        self.remaining = remaining
        self.limit = limit
        super().__init__(
            f"Free tier limit reached ({used}/{limit} domains). "
            "Upgrade to Premium for unlimited access."
        )


# ============================================================================
# Not found
# ============================================================================


class ResourceNotFoundError(KuiqleeError):
    """Raised when a requested resource does not exist."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class IdentityNotFoundError(ResourceNotFoundError):
    """Raised when an identity id does not resolve to an account."""

    def __init__(self, identity_id: UUID) -> None:
        self.identity_id = identity_id
        super().__init__("User", str(identity_id))


class SubscriptionNotFoundError(ResourceNotFoundError):
    """Raised when an identity has no subscription record."""

    def __init__(self, identity_id: UUID) -> None:
        self.identity_id = identity_id
        super().__init__("Subscription", str(identity_id))


# ============================================================================
# Webhooks
# ============================================================================


class WebhookVerificationError(KuiqleeError):
    """Raised when webhook signature verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class UnsupportedSubscriptionError(KuiqleeError):
    """Raised when a provider subscription is in a status that is not mirrored.

    Retrying cannot change the outcome, so this is not an UnavailableError.
    """

    def __init__(self, subscription_id: str, status: str) -> None:
        self.subscription_id = subscription_id
        self.status = status
        super().__init__(f"Unsupported subscription status {status!r} for {subscription_id}")


# ============================================================================
# Unavailable
# ============================================================================


class UnavailableError(KuiqleeError):
    """Raised when a downstream dependency cannot serve the request."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class StoreUnavailableError(UnavailableError):
    """Raised when a database operation fails unexpectedly."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Database error during {operation}: {message}")


class PaymentProviderError(UnavailableError):
    """Raised when a payment provider operation fails."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Payment provider error: {message}")


class ProviderNotConfiguredError(UnavailableError):
    """Raised when an endpoint needs a provider whose settings are empty."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} is not configured")


# ============================================================================
# Model API
# ============================================================================


class ModelProviderError(KuiqleeError):
    """Base for typed failures of the language model API."""

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        self.message = message
        self.upstream_status = upstream_status
        super().__init__(message)


class ModelUnauthorizedError(ModelProviderError):
    """Model API rejected our key or quota is exhausted."""

    pass


class ModelRateLimitedError(ModelProviderError):
    """Model API rate limit hit."""

    pass


class ModelOverloadedError(ModelProviderError):
    """Model API temporarily unavailable."""

    pass


class ModelMalformedResponseError(ModelProviderError):
    """Model API answered with a body we cannot use."""

    pass
