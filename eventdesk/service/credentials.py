from __future__ import annotations

from typing import Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from eventdesk.config import Settings
from eventdesk.logging import get_logger
from eventdesk.service.errors import BadRequestError
from eventdesk.storage.models import PublicUser, User

logger = get_logger(__name__)


class CredentialStore(Protocol):
    def find_by_email(self, email: str) -> Optional[User]: ...


class CredentialValidator:
    """Checks email/password pairs against stored argon2id hashes."""

    def __init__(self, store: CredentialStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)

    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def compare_password(self, password: str, stored_hash: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    async def validate(self, email: str, password: str) -> Optional[PublicUser]:
        """Return the user's public projection on a match, otherwise None.

        An unknown email and a wrong password are indistinguishable to the
        caller. Oversized passwords are rejected before the store is touched
        so they never reach the hasher.
        """
        if len(password) > self.settings.max_password_length:
            raise BadRequestError("Password too long")

        user = self.store.find_by_email(email)
        if user is None:
            return None
        if not self.compare_password(password, user.password_hash):
            logger.info("password_verification_failed", user_id=user.id)
            return None
        return user.public()
