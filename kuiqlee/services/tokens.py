"""
Bearer Token Codec - Signed, expiring, self-describing tokens (PyJWT, HS256).

A token alone never authenticates anyone: the credential store must also hold
an unrevoked row for its fingerprint.
"""

import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from structlog import get_logger

from kuiqlee.exceptions import MalformedTokenError, TokenExpiredError
from kuiqlee.models.domain import TokenClaims

logger = get_logger(__name__)

TOKEN_ISSUER = "kuiqlee"


class BearerTokenCodec:
    """Issues and parses signed bearer tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self.secret = secret
        self.algorithm = algorithm

    @staticmethod
    def fingerprint(token: str) -> str:
        """
        SHA-256 hex digest of a token.

        Only fingerprints are persisted, so a leaked table yields no usable tokens.
        """
        return hashlib.sha256(token.encode()).hexdigest()

    def issue(
        self,
        identity_id: UUID,
        email: str,
        is_premium: bool,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> tuple[str, TokenClaims]:
        """Sign a new token. Returns the raw token and the claims it carries."""
        issued_at = (now or datetime.now(UTC)).replace(microsecond=0)
        expires_at = issued_at + ttl
        payload = {
            "sub": str(identity_id),
            "email": email,
            "is_premium": is_premium,
            "iss": TOKEN_ISSUER,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            # Two logins in the same second must still yield distinct fingerprints
            "jti": secrets.token_hex(16),
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        claims = TokenClaims(
            identity_id=identity_id,
            email=email,
            is_premium=is_premium,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        return token, claims

    def parse(self, token: str) -> TokenClaims:
        """
        Verify signature and expiry and return the claims.

        Raises:
            TokenExpiredError: Signature is valid but the token is past exp
            MalformedTokenError: Anything else wrong with the token
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=TOKEN_ISSUER,
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError() from None
        except jwt.InvalidTokenError as e:
            logger.info("bearer_token_invalid", error=str(e))
            raise MalformedTokenError() from None

        try:
            return TokenClaims(
                identity_id=UUID(str(payload["sub"])),
                email=str(payload.get("email", "")),
                is_premium=bool(payload.get("is_premium", False)),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), UTC),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), UTC),
            )
        except (ValueError, TypeError) as e:
            logger.info("bearer_token_claims_invalid", error=str(e))
            raise MalformedTokenError() from None
