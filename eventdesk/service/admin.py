from __future__ import annotations

import secrets
from typing import List, Optional, Protocol, Sequence

from eventdesk.logging import get_logger
from eventdesk.service.audit import AuditService
from eventdesk.service.errors import BadRequestError, ConflictError
from eventdesk.storage.models import PublicUser, Role, User

logger = get_logger(__name__)

_VALID_ROLES = {role.value for role in Role}


class AdminStore(Protocol):
    def find_by_email(self, email: str) -> Optional[User]: ...

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        roles: Optional[Sequence[str]] = None,
        mfa_enabled: bool = False,
    ) -> User: ...

    def find_all_users(self) -> List[User]: ...

    def update_user(self, user_id: str, **changes) -> Optional[User]: ...


class AdminService:
    """User provisioning for administrators."""

    def __init__(self, store: AdminStore, audit: AuditService, *, hash_password) -> None:
        self.store = store
        self.audit = audit
        self._hash_password = hash_password

    @staticmethod
    def _generate_password() -> str:
        return secrets.token_urlsafe(12)

    async def create_user(
        self, email: str, roles: Optional[Sequence[str]] = None
    ) -> tuple[PublicUser, str]:
        """Provision an account; returns the user and its one-time temporary password."""
        requested = list(roles) if roles else [Role.USER.value]
        unknown = [r for r in requested if r not in _VALID_ROLES]
        if unknown:
            raise BadRequestError("Unknown role", detail={"roles": unknown})
        if self.store.find_by_email(email) is not None:
            raise ConflictError("User already exists")

        temporary_password = self._generate_password()
        # a concurrent insert still surfaces as DuplicateEmail from the store
        user = self.store.create_user(
            email, self._hash_password(temporary_password), roles=requested
        )
        await self.audit.log("PROVISION_USER", None, {"email": email, "roles": requested})
        logger.info("user_provisioned", user_id=user.id, roles=requested)
        return user.public(), temporary_password

    async def get_all_users(self) -> List[PublicUser]:
        return [user.public() for user in self.store.find_all_users()]

    async def ensure_admin(self, email: str, password: str) -> str:
        """Create an ADMIN account, or grant ADMIN to an existing one.

        Returns "created", "promoted" or "already_admin".
        """
        existing = self.store.find_by_email(email)
        if existing is not None:
            if Role.ADMIN.value in existing.roles:
                return "already_admin"
            self.store.update_user(existing.id, roles=[*existing.roles, Role.ADMIN.value])
            await self.audit.log("PROMOTE_ADMIN", existing.id)
            logger.info("admin_promoted", user_id=existing.id)
            return "promoted"
        user = self.store.create_user(
            email, self._hash_password(password), roles=[Role.ADMIN.value]
        )
        await self.audit.log("PROVISION_USER", None, {"email": email, "roles": user.roles})
        logger.info("admin_bootstrapped", user_id=user.id)
        return "created"
