from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from eventdesk.config import Settings
from eventdesk.logging import get_logger
from eventdesk.service.audit import AuditService
from eventdesk.service.errors import BadRequestError, ForbiddenError, NotFoundError
from eventdesk.storage.models import Event

logger = get_logger(__name__)


class EventStore(Protocol):
    def save_event(self, event: Event) -> Event: ...

    def find_event(self, event_id: str) -> Optional[Event]: ...

    def find_events_by_owner(self, owner_id: str) -> List[Event]: ...

    def delete_event(self, event_id: str) -> bool: ...


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EventService:
    def __init__(
        self,
        store: EventStore,
        audit: AuditService,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.settings = settings
        self._clock = clock

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(timezone.utc)

    def _check_description(self, description: Optional[str]) -> None:
        if description and len(description) > self.settings.max_event_description_length:
            raise BadRequestError("Description too long")

    async def create_event(
        self,
        user_id: str,
        title: str,
        occurrence: datetime,
        description: Optional[str] = None,
    ) -> Event:
        occurrence = _as_utc(occurrence)
        if occurrence < self._now():
            raise BadRequestError("Event date must be in the future")
        if len(title) > self.settings.max_event_title_length:
            raise BadRequestError("Title too long")
        if not title.strip():
            raise BadRequestError("Title is required")
        self._check_description(description)

        event = self.store.save_event(
            Event(
                id=str(uuid.uuid4()),
                owner_id=user_id,
                title=title,
                occurrence=occurrence,
                description=description,
            )
        )
        await self.audit.log("CREATE_EVENT", user_id, {"eventId": event.id})
        logger.info("event_created", event_id=event.id, user_id=user_id)
        return event

    async def get_user_events(self, user_id: str) -> List[Event]:
        return self.store.find_events_by_owner(user_id)

    def _owned_event(self, event_id: str, user_id: str) -> Event:
        event = self.store.find_event(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        if event.owner_id != user_id:
            logger.warning("event_access_denied", event_id=event_id, user_id=user_id)
            raise ForbiddenError("Access Denied")
        return event

    async def update_description(
        self, event_id: str, user_id: str, description: Optional[str]
    ) -> Event:
        event = self._owned_event(event_id, user_id)
        self._check_description(description)
        event.description = description
        updated = self.store.save_event(event)
        await self.audit.log("UPDATE_EVENT", user_id, {"eventId": event_id})
        return updated

    async def delete_event(self, event_id: str, user_id: str) -> None:
        self._owned_event(event_id, user_id)
        self.store.delete_event(event_id)
        await self.audit.log("DELETE_EVENT", user_id, {"eventId": event_id})
        logger.info("event_deleted", event_id=event_id, user_id=user_id)
