"""
Auth Routes - Register, login, logout and credential verification.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from kuiqlee.api.dependencies import (
    get_bearer_token,
    get_current_identity,
    get_entitlement_service,
)
from kuiqlee.models.api import (
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    RegisterRequest,
    UserResponse,
    VerifyResponse,
)
from kuiqlee.models.domain import AuthResult
from kuiqlee.services.entitlement import EntitlementService

router = APIRouter(prefix="/v1/auth", tags=["auth"])


def _auth_response(result: AuthResult, message: str) -> AuthResponse:
    return AuthResponse(
        message=message,
        token=result.credential.token,
        expires_at=result.credential.expires_at.isoformat(),
        user=UserResponse(
            id=result.identity.identity_id,
            email=result.identity.email,
            is_premium=result.is_premium,
        ),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    service: EntitlementService = Depends(get_entitlement_service),
) -> AuthResponse:
    """
    Create an account and return its first bearer token.

    Errors:
    - 400: Invalid email format or password too short
    - 409: Email already registered
    """
    result = await service.register(request.email, request.password)
    return _auth_response(result, "User registered successfully")


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    service: EntitlementService = Depends(get_entitlement_service),
) -> AuthResponse:
    """
    Exchange email and password for a new bearer token.

    Errors:
    - 401: Invalid email or password
    """
    result = await service.login(request.email, request.password)
    return _auth_response(result, "Login successful")


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    token: str | None = Depends(get_bearer_token),
    service: EntitlementService = Depends(get_entitlement_service),
) -> LogoutResponse:
    """Revoke the presented token. Always succeeds."""
    await service.logout(token)
    return LogoutResponse()


@router.get("/verify", response_model=VerifyResponse)
async def verify(
    identity_id: UUID = Depends(get_current_identity),
    service: EntitlementService = Depends(get_entitlement_service),
) -> VerifyResponse:
    """
    Check the presented token and return the account with a fresh premium flag.

    Errors:
    - 401: Missing, malformed, expired or revoked token
    """
    identity, is_premium = await service.get_account(identity_id)
    return VerifyResponse(
        user=UserResponse(id=identity.identity_id, email=identity.email, is_premium=is_premium)
    )
