from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from eventdesk.logging import get_logger
from eventdesk.storage.errors import ConstraintViolation, DuplicateEmail
from eventdesk.storage.models import (
    AuditEntry,
    ChatMessage,
    Event,
    QueueEntry,
    Role,
    User,
)

_USER_FIELDS = frozenset(
    {"email", "password_hash", "roles", "mfa_enabled", "mfa_code", "mfa_code_expires"}
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    """In-process backing store implementing the user, message, event and audit contracts.

    Records handed out are copies; callers persist changes through the
    update methods, so concurrent writers resolve last-write-wins.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.messages: Dict[str, List[ChatMessage]] = {}
        self.events: Dict[str, Event] = {}
        self.audit_entries: List[AuditEntry] = []
        self._message_seq: int = 0
        # RLock for all data operations to ensure thread safety
        self._data_lock = threading.RLock()

    # users
    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        roles: Optional[Sequence[str]] = None,
        mfa_enabled: bool = False,
    ) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise DuplicateEmail(email)
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                password_hash=password_hash,
                roles=list(roles) if roles else [Role.USER.value],
                mfa_enabled=mfa_enabled,
            )
            self.users[user.id] = user
            return user.copy()

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return user.copy() if user else None

    def find_by_email(self, email: str) -> Optional[User]:
        # exact match, no case folding
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return user.copy() if user else None

    def find_all_users(self) -> List[User]:
        with self._data_lock:
            ordered = sorted(self.users.values(), key=lambda u: u.created_at)
            return [u.copy() for u in ordered]

    def update_user(self, user_id: str, **changes) -> Optional[User]:
        unknown = set(changes) - _USER_FIELDS
        if unknown:
            raise ValueError(f"unknown user fields: {sorted(unknown)}")
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            new_email = changes.get("email")
            if new_email is not None and new_email != user.email:
                if any(u.email == new_email for u in self.users.values()):
                    raise DuplicateEmail(new_email)
            for key, value in changes.items():
                setattr(user, key, list(value) if key == "roles" else value)
            user.updated_at = _now()
            return user.copy()

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            if self.users.pop(user_id, None) is None:
                return False
            for event_id in [e.id for e in self.events.values() if e.owner_id == user_id]:
                del self.events[event_id]
            self.logger.info("user_deleted", user_id=user_id)
            return True

    # chat messages
    def save_message(
        self,
        chat_id: str,
        sender_id: str,
        sender_role: str,
        content: str,
        *,
        is_human_required: bool = False,
    ) -> ChatMessage:
        with self._data_lock:
            self._message_seq += 1
            message = ChatMessage(
                id=str(uuid.uuid4()),
                chat_id=chat_id,
                sender_id=sender_id,
                sender_role=sender_role,
                content=content,
                is_human_required=is_human_required,
                created_at=_now(),
                seq=self._message_seq,
            )
            self.messages.setdefault(chat_id, []).append(message)
            return self._clone_message(message)

    def find_all_by_chat_id(self, chat_id: str) -> List[ChatMessage]:
        with self._data_lock:
            history = sorted(self.messages.get(chat_id, []), key=lambda m: m.seq)
            return [self._clone_message(m) for m in history]

    def get_active_queues(self) -> List[QueueEntry]:
        """One row per conversation built from its latest message, most recent first."""
        with self._data_lock:
            entries: List[tuple[int, QueueEntry]] = []
            for chat_id, history in self.messages.items():
                if not history:
                    continue
                latest = max(history, key=lambda m: m.seq)
                entries.append(
                    (
                        latest.seq,
                        QueueEntry(
                            chat_id=chat_id,
                            last_message=latest.content,
                            sender_id=latest.sender_id,
                            is_human_required=any(m.is_human_required for m in history),
                            updated_at=latest.created_at,
                        ),
                    )
                )
            entries.sort(key=lambda item: item[0], reverse=True)
            return [entry for _, entry in entries]

    def update_all_by_chat_id(self, chat_id: str, *, is_human_required: bool) -> int:
        with self._data_lock:
            history = self.messages.get(chat_id, [])
            for message in history:
                message.is_human_required = is_human_required
            return len(history)

    @staticmethod
    def _clone_message(message: ChatMessage) -> ChatMessage:
        return ChatMessage(**vars(message))

    # events
    def save_event(self, event: Event) -> Event:
        with self._data_lock:
            if event.owner_id not in self.users:
                raise ConstraintViolation("event owner missing", {"owner_id": event.owner_id})
            event.updated_at = _now()
            self.events[event.id] = Event(**vars(event))
            return Event(**vars(event))

    def find_event(self, event_id: str) -> Optional[Event]:
        with self._data_lock:
            event = self.events.get(event_id)
            return Event(**vars(event)) if event else None

    def find_events_by_owner(self, owner_id: str) -> List[Event]:
        with self._data_lock:
            owned = [e for e in self.events.values() if e.owner_id == owner_id]
            return [Event(**vars(e)) for e in sorted(owned, key=lambda e: e.occurrence)]

    def delete_event(self, event_id: str) -> bool:
        with self._data_lock:
            return self.events.pop(event_id, None) is not None

    # audit
    def save_audit(
        self, action: str, user_id: Optional[str] = None, metadata: Optional[str] = None
    ) -> AuditEntry:
        with self._data_lock:
            entry = AuditEntry(
                id=str(uuid.uuid4()),
                action=action,
                user_id=user_id,
                metadata=metadata,
                created_at=_now(),
            )
            self.audit_entries.append(entry)
            return entry

    def list_audit(
        self, *, action: Optional[str] = None, user_id: Optional[str] = None
    ) -> List[AuditEntry]:
        with self._data_lock:
            return [
                e
                for e in self.audit_entries
                if (action is None or e.action == action)
                and (user_id is None or e.user_id == user_id)
            ]
