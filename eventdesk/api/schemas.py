from __future__ import annotations

import re
from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from eventdesk.storage.models import (
    ChatMessage,
    Event,
    PublicUser,
    QueueEntry,
)

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
    "service_unavailable",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    """Check address shape. The address is stored exactly as given (no case folding)."""
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    if len(value) > 254:
        raise ValueError("email address too long")
    if len(value) < 3:
        raise ValueError("email address too short")
    local, sep, domain = value.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return value


# auth
class LoginRequest(BaseModel):
    # password length limits are enforced by the credential validator
    email: str = Field(..., max_length=320)
    password: str


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MFAChallengeResponse(BaseModel):
    mfa_required: bool = True
    user_id: str


class TokenRefreshRequest(BaseModel):
    refresh_token: str = Field(..., max_length=4096)


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MFAVerifyRequest(BaseModel):
    user_id: str = Field(..., max_length=128)
    code: str = Field(..., max_length=10)


class MFAEnableResponse(BaseModel):
    secret: str
    qr_code_url: str


class PasswordResetRequest(BaseModel):
    email: str = Field(..., max_length=320)


class PasswordResetConfirm(BaseModel):
    token: str = Field(..., max_length=4096)
    new_password: str


# users
class UserResponse(BaseModel):
    id: str
    email: str
    roles: List[str]
    mfa_enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            roles=list(user.roles),
            mfa_enabled=user.mfa_enabled,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserListResponse(BaseModel):
    items: List[UserResponse]


class AdminCreateUserRequest(BaseModel):
    email: str
    roles: List[str] = Field(default_factory=lambda: ["USER"], max_length=3)

    @field_validator("email")
    @classmethod
    def _validate_admin_email(cls, value: str) -> str:
        return _validate_email(value)


class AdminCreateUserResponse(BaseModel):
    user: UserResponse
    temporary_password: str


# events
class EventCreateRequest(BaseModel):
    title: str
    occurrence: datetime
    description: Optional[str] = None


class EventUpdateRequest(BaseModel):
    description: Optional[str] = None


class EventResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    occurrence: datetime
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_event(cls, event: Event) -> "EventResponse":
        return cls(
            id=event.id,
            owner_id=event.owner_id,
            title=event.title,
            occurrence=event.occurrence,
            description=event.description,
            created_at=event.created_at,
            updated_at=event.updated_at,
        )


class EventListResponse(BaseModel):
    items: List[EventResponse]


# helpdesk
class ChatRequest(BaseModel):
    content: str = Field(..., min_length=1)


class ChatUserMessage(BaseModel):
    id: str
    content: str
    role: Literal["USER"] = "USER"
    timestamp: datetime
    is_human_required: bool


class ChatReply(BaseModel):
    id: str
    content: str
    role: Literal["AI"] = "AI"
    timestamp: datetime


class ChatResponse(BaseModel):
    user_message: ChatUserMessage
    ai_reply: Optional[ChatReply] = None


class ChatMessageResponse(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    sender_role: str
    content: str
    is_human_required: bool
    created_at: datetime

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls(
            id=message.id,
            chat_id=message.chat_id,
            sender_id=message.sender_id,
            sender_role=message.sender_role,
            content=message.content,
            is_human_required=message.is_human_required,
            created_at=message.created_at,
        )


class ChatHistoryResponse(BaseModel):
    chat_id: str
    items: List[ChatMessageResponse]


class QueueEntryResponse(BaseModel):
    chat_id: str
    last_message: str
    sender_id: str
    is_human_required: bool
    updated_at: datetime

    @classmethod
    def from_entry(cls, entry: QueueEntry) -> "QueueEntryResponse":
        return cls(
            chat_id=entry.chat_id,
            last_message=entry.last_message,
            sender_id=entry.sender_id,
            is_human_required=entry.is_human_required,
            updated_at=entry.updated_at,
        )


class QueueResponse(BaseModel):
    items: List[QueueEntryResponse]


class AgentReplyRequest(BaseModel):
    user_id: str = Field(..., max_length=128)
    content: str = Field(..., min_length=1)


class ResolveChatRequest(BaseModel):
    chat_id: str = Field(..., max_length=128)
