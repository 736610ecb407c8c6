from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path

from eventdesk.api.schemas import (
    AccessTokenResponse,
    AdminCreateUserRequest,
    AdminCreateUserResponse,
    AgentReplyRequest,
    ChatHistoryResponse,
    ChatMessageResponse,
    ChatReply,
    ChatRequest,
    ChatResponse,
    ChatUserMessage,
    Envelope,
    EventCreateRequest,
    EventListResponse,
    EventResponse,
    EventUpdateRequest,
    LoginRequest,
    MFAChallengeResponse,
    MFAEnableResponse,
    MFAVerifyRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    QueueEntryResponse,
    QueueResponse,
    ResolveChatRequest,
    TokenPairResponse,
    TokenRefreshRequest,
    UserListResponse,
    UserResponse,
)
from eventdesk.logging import get_logger
from eventdesk.service.errors import AuthenticationError, BadRequestError, NotFoundError
from eventdesk.service.helpdesk import TriageResult
from eventdesk.service.runtime import get_runtime
from eventdesk.service.session import AuthContext
from eventdesk.storage.models import Role

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

_STAFF_ROLES = (Role.AGENT.value, Role.ADMIN.value)


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    return get_runtime().session.authenticate(authorization)


async def get_staff_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    return get_runtime().session.authenticate(authorization, required_roles=_STAFF_ROLES)


async def get_admin_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    return get_runtime().session.authenticate(
        authorization, required_roles=(Role.ADMIN.value,)
    )


def _login_payload(result: dict):
    if result.get("mfa_required"):
        return MFAChallengeResponse(user_id=result["user_id"])
    return TokenPairResponse(
        access_token=result["access_token"], refresh_token=result["refresh_token"]
    )


# auth
@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with email and password.

    Returns a token pair, or an MFA challenge marker (and no tokens) for
    accounts with MFA enabled; the code is emailed to the user.

    Raises:
        400: If the password exceeds the maximum accepted length
        401: If credentials are invalid
    """
    session = get_runtime().session
    user = await session.validate_user(body.email, body.password)
    if user is None:
        raise AuthenticationError("Invalid credentials")
    result = await session.login(user)
    return Envelope(status="ok", data=_login_payload(result))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(body: TokenRefreshRequest):
    result = await get_runtime().session.refresh(body.refresh_token)
    return Envelope(status="ok", data=AccessTokenResponse(access_token=result["access_token"]))


@router.post("/auth/mfa/verify", response_model=Envelope, tags=["auth"])
async def verify_mfa(body: MFAVerifyRequest):
    result = await get_runtime().session.verify_mfa(body.user_id, body.code)
    return Envelope(status="ok", data=_login_payload(result))


@router.post("/auth/mfa/enable", response_model=Envelope, tags=["auth"])
async def enable_mfa(principal: AuthContext = Depends(get_user)):
    """Email a verification code; MFA becomes active once it is verified."""
    result = await get_runtime().session.enable_mfa(principal.user_id)
    return Envelope(status="ok", data=MFAEnableResponse(**result))


@router.post("/auth/password-reset-request", response_model=Envelope, tags=["auth"])
async def request_password_reset(body: PasswordResetRequest):
    # Same response whether or not the address exists
    await get_runtime().session.request_password_reset(body.email)
    return Envelope(status="ok", data={"status": "sent"})


@router.post("/auth/password-reset", response_model=Envelope, tags=["auth"])
async def confirm_password_reset(body: PasswordResetConfirm):
    await get_runtime().session.reset_password(body.token, body.new_password)
    return Envelope(status="ok", data={"status": "password_reset"})


# users
@router.get("/users/me", response_model=Envelope, tags=["users"])
async def get_me(principal: AuthContext = Depends(get_user)):
    user = get_runtime().store.find_by_id(principal.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return Envelope(status="ok", data=UserResponse.from_user(user.public()))


@router.delete("/users/me", response_model=Envelope, tags=["users"])
async def delete_me(principal: AuthContext = Depends(get_user)):
    deleted = get_runtime().store.delete_user(principal.user_id)
    return Envelope(status="ok", data={"deleted": deleted})


# admin
@router.post("/admin/users", response_model=Envelope, tags=["admin"])
async def admin_create_user(
    body: AdminCreateUserRequest, principal: AuthContext = Depends(get_admin_user)
):
    user, temporary_password = await get_runtime().admin.create_user(body.email, body.roles)
    logger.info("admin_user_created", admin_id=principal.user_id, user_id=user.id)
    return Envelope(
        status="ok",
        data=AdminCreateUserResponse(
            user=UserResponse.from_user(user), temporary_password=temporary_password
        ),
    )


@router.get("/admin/users", response_model=Envelope, tags=["admin"])
async def admin_list_users(principal: AuthContext = Depends(get_admin_user)):
    users = await get_runtime().admin.get_all_users()
    return Envelope(
        status="ok", data=UserListResponse(items=[UserResponse.from_user(u) for u in users])
    )


# events
@router.post("/events", response_model=Envelope, tags=["events"])
async def create_event(body: EventCreateRequest, principal: AuthContext = Depends(get_user)):
    event = await get_runtime().events.create_event(
        principal.user_id, body.title, body.occurrence, body.description
    )
    return Envelope(status="ok", data=EventResponse.from_event(event))


@router.get("/events", response_model=Envelope, tags=["events"])
async def list_events(principal: AuthContext = Depends(get_user)):
    events = await get_runtime().events.get_user_events(principal.user_id)
    return Envelope(
        status="ok", data=EventListResponse(items=[EventResponse.from_event(e) for e in events])
    )


@router.patch("/events/{event_id}", response_model=Envelope, tags=["events"])
async def update_event(
    body: EventUpdateRequest,
    event_id: str = Path(..., max_length=128),
    principal: AuthContext = Depends(get_user),
):
    event = await get_runtime().events.update_description(
        event_id, principal.user_id, body.description
    )
    return Envelope(status="ok", data=EventResponse.from_event(event))


@router.delete("/events/{event_id}", response_model=Envelope, tags=["events"])
async def delete_event(
    event_id: str = Path(..., max_length=128),
    principal: AuthContext = Depends(get_user),
):
    await get_runtime().events.delete_event(event_id, principal.user_id)
    return Envelope(status="ok", data={"deleted": True})


# helpdesk
def _chat_response(result: TriageResult) -> ChatResponse:
    user_message = result.user_message
    reply = result.reply
    return ChatResponse(
        user_message=ChatUserMessage(
            id=user_message.id,
            content=user_message.content,
            timestamp=user_message.created_at,
            is_human_required=user_message.is_human_required,
        ),
        ai_reply=(
            ChatReply(id=reply.id, content=reply.content, timestamp=reply.created_at)
            if reply
            else None
        ),
    )


@router.post("/helpdesk/chat", response_model=Envelope, tags=["helpdesk"])
async def send_chat_message(body: ChatRequest, principal: AuthContext = Depends(get_user)):
    """Send a message to the help desk.

    The reply comes from the AI responder unless the conversation has been
    handed to a human agent. The first transfer request is acknowledged once.

    Raises:
        400: If the message is too long
        503: If the AI responder is unavailable
    """
    runtime = get_runtime()
    if len(body.content) > runtime.settings.max_chat_message_length:
        raise BadRequestError("Message is too long")
    result = await runtime.helpdesk.send_message(principal.user_id, body.content)
    return Envelope(status="ok", data=_chat_response(result))


@router.get("/helpdesk/history", response_model=Envelope, tags=["helpdesk"])
async def get_own_history(principal: AuthContext = Depends(get_user)):
    messages = await get_runtime().helpdesk.get_history(principal.user_id)
    return Envelope(
        status="ok",
        data=ChatHistoryResponse(
            chat_id=principal.user_id,
            items=[ChatMessageResponse.from_message(m) for m in messages],
        ),
    )


@router.get("/helpdesk/queue", response_model=Envelope, tags=["helpdesk"])
async def get_queue(principal: AuthContext = Depends(get_staff_user)):
    entries = await get_runtime().helpdesk.get_queue()
    return Envelope(
        status="ok",
        data=QueueResponse(items=[QueueEntryResponse.from_entry(e) for e in entries]),
    )


@router.post("/helpdesk/reply", response_model=Envelope, tags=["helpdesk"])
async def reply_to_user(body: AgentReplyRequest, principal: AuthContext = Depends(get_staff_user)):
    runtime = get_runtime()
    if len(body.content) > runtime.settings.max_chat_message_length:
        raise BadRequestError("Message is too long")
    message = await runtime.helpdesk.reply_to_user(principal.user_id, body.user_id, body.content)
    return Envelope(status="ok", data=ChatMessageResponse.from_message(message))


@router.get("/helpdesk/history/{chat_id}", response_model=Envelope, tags=["helpdesk"])
async def get_chat_history(
    chat_id: str = Path(..., max_length=128),
    principal: AuthContext = Depends(get_staff_user),
):
    messages = await get_runtime().helpdesk.get_history(chat_id)
    return Envelope(
        status="ok",
        data=ChatHistoryResponse(
            chat_id=chat_id, items=[ChatMessageResponse.from_message(m) for m in messages]
        ),
    )


@router.post("/helpdesk/resolve", response_model=Envelope, tags=["helpdesk"])
async def resolve_chat(body: ResolveChatRequest, principal: AuthContext = Depends(get_staff_user)):
    await get_runtime().helpdesk.resolve_chat(body.chat_id)
    logger.info("helpdesk_resolved_by_agent", agent_id=principal.user_id, chat_id=body.chat_id)
    return Envelope(status="ok", data={"chat_id": body.chat_id, "resolved": True})
