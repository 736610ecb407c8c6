from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from eventdesk.logging import get_logger
from eventdesk.service.ai import (
    AI_UNAVAILABLE_MESSAGE,
    EMPTY_QUERY_REPLY,
    AIChatRequest,
    AIResponder,
    HistoryTurn,
    is_blank,
)
from eventdesk.service.errors import ServiceUnavailableError
from eventdesk.storage.models import ChatMessage, QueueEntry, SenderRole

logger = get_logger(__name__)

AI_SENDER_ID = "AI_BOT"
TRANSFER_KEYWORDS = (
    "human",
    "person",
    "agent",
    "support",
    "talk to somebody",
    "representative",
)
TRANSFER_ACKNOWLEDGEMENT = (
    "I've flagged this conversation for a human agent. They will get back to you shortly."
)


class MessageStore(Protocol):
    def save_message(
        self,
        chat_id: str,
        sender_id: str,
        sender_role: str,
        content: str,
        *,
        is_human_required: bool = False,
    ) -> ChatMessage: ...

    def find_all_by_chat_id(self, chat_id: str) -> List[ChatMessage]: ...

    def get_active_queues(self) -> List[QueueEntry]: ...

    def update_all_by_chat_id(self, chat_id: str, *, is_human_required: bool) -> int: ...


@dataclass
class TriageResult:
    user_message: ChatMessage
    reply: Optional[ChatMessage] = None


def requests_human(content: str) -> bool:
    lowered = content.lower()
    return any(keyword in lowered for keyword in TRANSFER_KEYWORDS)


def to_history_turns(history: List[ChatMessage]) -> List[HistoryTurn]:
    return [
        HistoryTurn(
            role="user" if m.sender_role == SenderRole.USER.value else "model",
            content=m.content,
        )
        for m in history
    ]


class HelpDeskService:
    """Routes each inbound chat message to the AI responder or the human queue.

    A conversation is keyed by the user's id. Once any message in it is flagged
    for a human, every later user message is flagged too until an agent
    resolves the chat.
    """

    def __init__(self, store: MessageStore, ai: AIResponder) -> None:
        self.store = store
        self.ai = ai

    async def send_message(self, user_id: str, content: str) -> TriageResult:
        chat_id = user_id
        history = self.store.find_all_by_chat_id(chat_id)
        already_flagged = any(m.is_human_required for m in history)
        transfer_requested = requests_human(content)
        needs_human = already_flagged or transfer_requested

        user_message = self.store.save_message(
            chat_id,
            user_id,
            SenderRole.USER.value,
            content,
            is_human_required=needs_human,
        )

        if not needs_human:
            reply_text = await self._generate_reply(content, history)
            reply = self.store.save_message(
                chat_id,
                AI_SENDER_ID,
                SenderRole.AGENT.value,
                reply_text,
                is_human_required=False,
            )
            return TriageResult(user_message=user_message, reply=reply)

        if transfer_requested and not already_flagged:
            logger.info("helpdesk_transfer_requested", chat_id=chat_id)
            reply = self.store.save_message(
                chat_id,
                AI_SENDER_ID,
                SenderRole.AGENT.value,
                TRANSFER_ACKNOWLEDGEMENT,
                is_human_required=True,
            )
            return TriageResult(user_message=user_message, reply=reply)

        # Already with the human queue; an agent answers
        return TriageResult(user_message=user_message)

    async def _generate_reply(self, content: str, history: List[ChatMessage]) -> str:
        if is_blank(content):
            return EMPTY_QUERY_REPLY
        request = AIChatRequest(query=content, history=to_history_turns(history))
        try:
            response = await self.ai.generate_response(request)
        except Exception as exc:
            logger.error(
                "helpdesk_ai_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ServiceUnavailableError(AI_UNAVAILABLE_MESSAGE) from exc
        return response.text

    async def resolve_chat(self, chat_id: str) -> None:
        cleared = self.store.update_all_by_chat_id(chat_id, is_human_required=False)
        logger.info("helpdesk_chat_resolved", chat_id=chat_id, messages=cleared)

    async def get_queue(self) -> List[QueueEntry]:
        return self.store.get_active_queues()

    async def reply_to_user(self, agent_id: str, user_id: str, content: str) -> ChatMessage:
        # Agent replies keep the conversation's current routing state
        flagged = any(m.is_human_required for m in self.store.find_all_by_chat_id(user_id))
        return self.store.save_message(
            user_id,
            agent_id,
            SenderRole.AGENT.value,
            content,
            is_human_required=flagged,
        )

    async def get_history(self, chat_id: str) -> List[ChatMessage]:
        return self.store.find_all_by_chat_id(chat_id)
