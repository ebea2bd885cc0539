"""
Password Hashing - Argon2id via argon2-cffi.

Raw passwords are never stored or logged.
"""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from structlog import get_logger

logger = get_logger(__name__)


class PasswordService:
    """Hashes and verifies account passwords."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536) -> None:
        self.password_hasher = PasswordHasher(time_cost=time_cost, memory_cost=memory_cost)
        # Verified against when the email is unknown so both login failures take similar time
        self._dummy_hash = self.password_hasher.hash("kuiqlee-unknown-account")

    def hash(self, password: str) -> str:
        """Hash a password. The returned string embeds its own salt and parameters."""
        return self.password_hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        """Return True iff the password matches the stored hash."""
        try:
            return self.password_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("password_hash_unverifiable")
            return False

    def burn(self, password: str) -> None:
        """Spend one verification on a throwaway hash."""
        self.verify(self._dummy_hash, password)

    def needs_rehash(self, password_hash: str) -> bool:
        """True when the hash was made with weaker parameters than the current ones."""
        return self.password_hasher.check_needs_rehash(password_hash)
