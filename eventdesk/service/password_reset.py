from __future__ import annotations

from typing import Optional, Protocol

from eventdesk.config import Settings
from eventdesk.logging import email_fingerprint, get_logger
from eventdesk.service.audit import AuditService
from eventdesk.service.email import EmailSender
from eventdesk.service.errors import AuthenticationError, BadRequestError, NotFoundError
from eventdesk.service.tokens import RESET_TOKEN_TYPE, TokenIssuer
from eventdesk.storage.models import User

logger = get_logger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid token"


class ResetStore(Protocol):
    def find_by_email(self, email: str) -> Optional[User]: ...

    def find_by_id(self, user_id: str) -> Optional[User]: ...

    def update_user(self, user_id: str, **changes) -> Optional[User]: ...


class PasswordResetFlow:
    """Emailed, single-purpose reset tokens and their redemption."""

    def __init__(
        self,
        store: ResetStore,
        tokens: TokenIssuer,
        email: EmailSender,
        audit: AuditService,
        settings: Settings,
        *,
        hash_password,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.email = email
        self.audit = audit
        self.settings = settings
        self._hash_password = hash_password

    def reset_link(self, token: str) -> str:
        base = self.settings.frontend_url.rstrip("/")
        return f"{base}/password/reset?token={token}"

    async def request(self, email: str) -> None:
        """Email a reset link. Unknown addresses succeed silently."""
        user = self.store.find_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email", address_fp=email_fingerprint(email))
            return

        token = self.tokens.issue_reset(user.id)
        await self.audit.log("REQUEST_PASSWORD_RESET", user.id)
        await self.email.send(
            user.email,
            "Password Reset",
            f"Click here to reset your password: {self.reset_link(token)}",
        )
        logger.info("password_reset_requested", user_id=user.id)

    async def confirm(self, token: str, new_password: str) -> None:
        try:
            await self._confirm(token, new_password)
        except (BadRequestError, NotFoundError):
            raise
        except Exception as exc:
            # Every other cause is reported as the same generic rejection
            logger.warning("password_reset_rejected", error_type=type(exc).__name__)
            raise AuthenticationError(INVALID_TOKEN_MESSAGE) from None

    async def _confirm(self, token: str, new_password: str) -> None:
        payload = self.tokens.verify(token)
        if payload.get("type") != RESET_TOKEN_TYPE:
            raise AuthenticationError(INVALID_TOKEN_MESSAGE)

        user = self.store.find_by_id(payload["sub"])
        if user is None:
            raise NotFoundError("User not found")

        if len(new_password) < self.settings.min_password_length:
            raise BadRequestError(
                f"Password must be at least {self.settings.min_password_length} characters long"
            )
        if len(new_password) > self.settings.max_password_length:
            raise BadRequestError("Password too long")

        updated = self.store.update_user(
            user.id, password_hash=self._hash_password(new_password)
        )
        if updated is None:
            raise NotFoundError("User not found")
        await self.audit.log("RESET_PASSWORD", user.id)
        logger.info("password_reset_completed", user_id=user.id)
