from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "USER"
    AGENT = "AGENT"
    ADMIN = "ADMIN"


class SenderRole(str, Enum):
    """Role of the party that authored a chat message."""

    USER = "USER"
    AGENT = "AGENT"


@dataclass
class User:
    id: str
    email: str
    password_hash: str
    roles: List[str] = field(default_factory=lambda: [Role.USER.value])
    mfa_enabled: bool = False
    mfa_code: Optional[str] = None
    mfa_code_expires: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def public(self) -> "PublicUser":
        return PublicUser(
            id=self.id,
            email=self.email,
            roles=list(self.roles),
            mfa_enabled=self.mfa_enabled,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def copy(self, **changes) -> "User":
        return replace(self, roles=list(self.roles), **changes)


@dataclass(frozen=True)
class PublicUser:
    """User projection safe to hand to callers: no hash, no pending MFA code."""

    id: str
    email: str
    roles: List[str]
    mfa_enabled: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class ChatMessage:
    id: str
    chat_id: str
    sender_id: str
    sender_role: str
    content: str
    is_human_required: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    seq: int = 0


@dataclass
class QueueEntry:
    """Latest state of one conversation as seen from the agent queue."""

    chat_id: str
    last_message: str
    sender_id: str
    is_human_required: bool
    updated_at: datetime


@dataclass
class Event:
    id: str
    owner_id: str
    title: str
    occurrence: datetime
    description: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class AuditEntry:
    id: str
    action: str
    user_id: Optional[str] = None
    metadata: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
