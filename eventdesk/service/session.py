from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from eventdesk.logging import get_logger
from eventdesk.service.audit import AuditService
from eventdesk.service.credentials import CredentialValidator
from eventdesk.service.errors import AuthenticationError, ForbiddenError
from eventdesk.service.mfa import MFAChallengeManager
from eventdesk.service.password_reset import PasswordResetFlow
from eventdesk.service.tokens import InvalidToken, TokenIssuer
from eventdesk.storage.models import PublicUser, User

logger = get_logger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid token"


class SessionStore(Protocol):
    def find_by_id(self, user_id: str) -> Optional[User]: ...


@dataclass
class AuthContext:
    user_id: str
    roles: List[str] = field(default_factory=list)

    def has_any_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)


class SessionService:
    """Login, refresh, MFA and password-reset orchestration.

    A login either ends with tokens issued or, for MFA-enabled users, with a
    pending challenge and no tokens.
    """

    def __init__(
        self,
        store: SessionStore,
        tokens: TokenIssuer,
        credentials: CredentialValidator,
        mfa: MFAChallengeManager,
        password_reset: PasswordResetFlow,
        audit: AuditService,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.credentials = credentials
        self.mfa = mfa
        self.password_reset = password_reset
        self.audit = audit

    async def validate_user(self, email: str, password: str) -> Optional[PublicUser]:
        return await self.credentials.validate(email, password)

    async def login(self, user: PublicUser) -> dict:
        if user.mfa_enabled:
            await self.mfa.request_code(user.id)
            logger.info("login_mfa_required", user_id=user.id)
            return {"mfa_required": True, "user_id": user.id}
        return await self._issue_tokens(user)

    async def _issue_tokens(self, user: PublicUser) -> dict:
        roles = list(user.roles or [])
        tokens = {
            "access_token": self.tokens.issue_access(user.id, roles),
            "refresh_token": self.tokens.issue_refresh(user.id, roles),
        }
        await self.audit.log("LOGIN", user.id)
        logger.info("login_succeeded", user_id=user.id)
        return tokens

    async def refresh(self, refresh_token: str) -> dict:
        """Mint a new access token. The refresh token itself is not rotated."""
        try:
            payload = self.tokens.verify(refresh_token)
        except InvalidToken:
            raise AuthenticationError(INVALID_TOKEN_MESSAGE) from None
        if "type" in payload:
            # single-purpose tokens (reset) never mint sessions
            raise AuthenticationError(INVALID_TOKEN_MESSAGE)

        user = self.store.find_by_id(payload["sub"])
        if user is None:
            logger.warning("refresh_user_missing", user_id=payload["sub"])
            raise AuthenticationError(INVALID_TOKEN_MESSAGE)
        return {"access_token": self.tokens.issue_access(user.id, list(user.roles))}

    async def request_password_reset(self, email: str) -> None:
        await self.password_reset.request(email)

    async def reset_password(self, token: str, new_password: str) -> None:
        await self.password_reset.confirm(token, new_password)

    async def enable_mfa(self, user_id: str) -> dict:
        return await self.mfa.enable(user_id)

    async def verify_mfa(self, user_id: str, code: str) -> dict:
        user = await self.mfa.verify(user_id, code)
        # challenge already satisfied; go straight to token issuance
        return await self._issue_tokens(user)

    def authenticate(
        self,
        authorization: Optional[str],
        *,
        required_roles: Optional[tuple[str, ...]] = None,
    ) -> AuthContext:
        token = self._extract_bearer(authorization)
        if not token:
            raise AuthenticationError("Unauthorized")
        try:
            payload = self.tokens.verify(token)
        except InvalidToken:
            raise AuthenticationError("Unauthorized") from None
        if "type" in payload:
            raise AuthenticationError("Unauthorized")
        user = self.store.find_by_id(payload["sub"])
        if user is None:
            raise AuthenticationError("Unauthorized")
        ctx = AuthContext(user_id=user.id, roles=list(user.roles))
        if required_roles and not ctx.has_any_role(*required_roles):
            logger.warning("role_check_failed", user_id=user.id, required=list(required_roles))
            raise ForbiddenError("Forbidden resource")
        return ctx

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        if not header.lower().startswith("bearer "):
            return None
        return header.split(" ", 1)[1].strip() or None
