from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from eventdesk.config import Settings
from eventdesk.logging import get_logger
from eventdesk.service.audit import AuditService
from eventdesk.service.email import EmailSender
from eventdesk.service.errors import AuthenticationError, NotFoundError
from eventdesk.storage.models import PublicUser, User

logger = get_logger(__name__)

EMAIL_MFA_MARKER = {"secret": "EMAIL_MFA", "qr_code_url": ""}
INVALID_CODE_MESSAGE = "Invalid or expired code"


class MFAStore(Protocol):
    def find_by_id(self, user_id: str) -> Optional[User]: ...

    def update_user(self, user_id: str, **changes) -> Optional[User]: ...


class MFAChallengeManager:
    """Emailed one-time codes used both to enable MFA and to complete an MFA login.

    The pending code lives on the user record together with its expiry; both
    are written and cleared as a pair.
    """

    def __init__(
        self,
        store: MFAStore,
        email: EmailSender,
        audit: AuditService,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.email = email
        self.audit = audit
        self.settings = settings
        self._clock = clock

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(timezone.utc)

    @staticmethod
    def _generate_code() -> str:
        return str(100000 + secrets.randbelow(900000))

    async def request_code(self, user_id: str) -> None:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        ttl = self.settings.mfa_code_ttl_minutes
        code = self._generate_code()
        expires = self._now() + timedelta(minutes=ttl)
        # Last write wins if two requests race
        self.store.update_user(user.id, mfa_code=code, mfa_code_expires=expires)
        await self.email.send(
            user.email,
            "Your Verification Code",
            f"Your verification code is: {code}. It expires in {ttl} minutes.",
        )
        logger.info("mfa_code_issued", user_id=user.id, expires_at=expires.isoformat())

    async def enable(self, user_id: str) -> dict:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        await self.request_code(user.id)
        return dict(EMAIL_MFA_MARKER)

    def _code_matches(self, user: User, submitted: str) -> bool:
        if not user.mfa_code or user.mfa_code_expires is None:
            return False
        if not isinstance(submitted, str):
            return False
        if not hmac.compare_digest(user.mfa_code.encode(), submitted.encode("utf-8")):
            return False
        return self._now() < user.mfa_code_expires

    async def verify(self, user_id: str, code: str) -> PublicUser:
        """Consume a pending code; return the (now MFA-enabled) user on success."""
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        if not self._code_matches(user, code):
            await self.audit.log("VERIFY_MFA_FAILED", user.id)
            logger.warning("mfa_verification_failed", user_id=user.id)
            raise AuthenticationError(INVALID_CODE_MESSAGE)

        updated = self.store.update_user(
            user.id, mfa_enabled=True, mfa_code=None, mfa_code_expires=None
        )
        if updated is None:
            raise NotFoundError("User not found")
        await self.audit.log("VERIFY_MFA_SUCCESS", user.id)
        logger.info("mfa_verification_succeeded", user_id=user.id)
        return updated.public()
