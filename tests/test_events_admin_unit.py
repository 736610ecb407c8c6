"""Unit tests for event ownership, admin provisioning and the memory store."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from eventdesk.service.admin import AdminService
from eventdesk.service.credentials import CredentialValidator
from eventdesk.service.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from eventdesk.service.events import EventService
from eventdesk.storage.errors import ConstraintViolation, DuplicateEmail
from eventdesk.storage.models import Event


@pytest.fixture
def events(store, audit, settings, clock):
    return EventService(store, audit, settings, clock=clock)


@pytest.fixture
def credentials(store, settings):
    return CredentialValidator(store, settings)


@pytest.fixture
def admin(store, audit, credentials):
    return AdminService(store, audit, hash_password=credentials.hash_password)


@pytest.fixture
def owner(store):
    return store.create_user("owner@example.com", "hash")


@pytest.fixture
def stranger(store):
    return store.create_user("stranger@example.com", "hash")


class TestEventCreate:
    async def test_create_persists_and_audits(self, events, owner, clock, store):
        when = clock.now + timedelta(days=3)
        event = await events.create_event(owner.id, "Launch party", when, "Bring snacks")

        assert event.owner_id == owner.id
        assert event.occurrence == when
        assert store.find_event(event.id).title == "Launch party"
        entry = store.list_audit(action="CREATE_EVENT")[0]
        assert entry.user_id == owner.id
        assert json.loads(entry.metadata) == {"eventId": event.id}

    async def test_past_date_rejected(self, events, owner, clock):
        with pytest.raises(BadRequestError) as exc_info:
            await events.create_event(owner.id, "Too late", clock.now - timedelta(seconds=1))
        assert exc_info.value.message == "Event date must be in the future"

    async def test_naive_datetime_is_treated_as_utc(self, events, owner, clock):
        naive = (clock.now + timedelta(hours=1)).replace(tzinfo=None)
        event = await events.create_event(owner.id, "Naive", naive)
        assert event.occurrence.tzinfo == timezone.utc

    async def test_title_limits(self, events, owner, clock):
        when = clock.now + timedelta(days=1)
        with pytest.raises(BadRequestError, match="Title too long"):
            await events.create_event(owner.id, "t" * 151, when)
        with pytest.raises(BadRequestError, match="Title is required"):
            await events.create_event(owner.id, "   ", when)
        event = await events.create_event(owner.id, "t" * 150, when)
        assert len(event.title) == 150

    async def test_description_limit(self, events, owner, clock):
        with pytest.raises(BadRequestError, match="Description too long"):
            await events.create_event(
                owner.id, "ok", clock.now + timedelta(days=1), "d" * 5001
            )

    async def test_owner_must_exist(self, events, clock):
        with pytest.raises(ConstraintViolation):
            await events.create_event("ghost", "x", clock.now + timedelta(days=1))


class TestEventOwnership:
    async def test_list_only_own_events_sorted(self, events, owner, stranger, clock):
        later = await events.create_event(owner.id, "later", clock.now + timedelta(days=9))
        sooner = await events.create_event(owner.id, "sooner", clock.now + timedelta(days=1))
        await events.create_event(stranger.id, "theirs", clock.now + timedelta(days=2))

        listed = await events.get_user_events(owner.id)
        assert [e.id for e in listed] == [sooner.id, later.id]

    async def test_update_description_by_owner(self, events, owner, clock, store):
        event = await events.create_event(owner.id, "e", clock.now + timedelta(days=1))
        updated = await events.update_description(event.id, owner.id, "new text")

        assert updated.description == "new text"
        assert store.find_event(event.id).description == "new text"
        assert store.list_audit(action="UPDATE_EVENT")

    async def test_non_owner_cannot_update_or_delete(self, events, owner, stranger, clock, store):
        event = await events.create_event(owner.id, "e", clock.now + timedelta(days=1))

        with pytest.raises(ForbiddenError) as exc_info:
            await events.update_description(event.id, stranger.id, "hijack")
        assert exc_info.value.message == "Access Denied"
        with pytest.raises(ForbiddenError):
            await events.delete_event(event.id, stranger.id)
        assert store.find_event(event.id).description is None

    async def test_missing_event(self, events, owner):
        with pytest.raises(NotFoundError, match="Event not found"):
            await events.delete_event("nope", owner.id)

    async def test_delete_by_owner(self, events, owner, clock, store):
        event = await events.create_event(owner.id, "e", clock.now + timedelta(days=1))
        await events.delete_event(event.id, owner.id)

        assert store.find_event(event.id) is None
        assert store.list_audit(action="DELETE_EVENT")


class TestAdminService:
    async def test_create_user_returns_temporary_password(self, admin, credentials, store):
        user, temporary = await admin.create_user("new@example.com", ["AGENT"])

        assert user.roles == ["AGENT"]
        assert len(temporary) >= 12
        assert await credentials.validate("new@example.com", temporary) is not None
        entry = store.list_audit(action="PROVISION_USER")[0]
        assert json.loads(entry.metadata) == {"email": "new@example.com", "roles": ["AGENT"]}

    async def test_default_role_is_user(self, admin):
        user, _ = await admin.create_user("plain@example.com")
        assert user.roles == ["USER"]

    async def test_temporary_passwords_differ(self, admin):
        _, first = await admin.create_user("a@example.com")
        _, second = await admin.create_user("b@example.com")
        assert first != second

    async def test_duplicate_email(self, admin, owner):
        with pytest.raises(ConflictError, match="User already exists"):
            await admin.create_user("owner@example.com")

    async def test_unknown_role(self, admin):
        with pytest.raises(BadRequestError, match="Unknown role"):
            await admin.create_user("x@example.com", ["ROOT"])

    async def test_get_all_users_hides_secrets(self, admin, owner, stranger):
        users = await admin.get_all_users()
        assert {u.email for u in users} == {"owner@example.com", "stranger@example.com"}
        assert all(not hasattr(u, "password_hash") for u in users)

    async def test_ensure_admin_creates_promotes_and_is_idempotent(self, admin, owner, store):
        assert await admin.ensure_admin("root@example.com", "RootPassword1") == "created"
        assert await admin.ensure_admin("root@example.com", "RootPassword1") == "already_admin"
        assert await admin.ensure_admin("owner@example.com", "ignored-pass") == "promoted"
        assert store.find_by_id(owner.id).roles == ["USER", "ADMIN"]


class TestMemoryStore:
    def test_duplicate_email_raises(self, store, owner):
        with pytest.raises(DuplicateEmail) as exc_info:
            store.create_user("owner@example.com", "hash")
        assert exc_info.value.detail == {"field": "email"}

    def test_returned_records_are_copies(self, store, owner):
        fetched = store.find_by_id(owner.id)
        fetched.roles.append("ADMIN")
        assert store.find_by_id(owner.id).roles == ["USER"]

    def test_update_rejects_unknown_fields(self, store, owner):
        with pytest.raises(ValueError):
            store.update_user(owner.id, id="other")

    def test_update_missing_user_returns_none(self, store):
        assert store.update_user("missing", mfa_enabled=True) is None

    def test_delete_user_removes_their_events(self, store, owner, stranger):
        when = datetime.now(timezone.utc) + timedelta(days=1)
        store.save_event(Event(id="e1", owner_id=owner.id, title="mine", occurrence=when))
        store.save_event(Event(id="e2", owner_id=stranger.id, title="theirs", occurrence=when))

        assert store.delete_user(owner.id) is True
        assert store.find_event("e1") is None
        assert store.find_event("e2") is not None
        assert store.delete_user(owner.id) is False

    def test_messages_keep_insertion_order(self, store):
        for index in range(5):
            store.save_message("c1", "u1", "USER", f"m{index}")
        assert [m.content for m in store.find_all_by_chat_id("c1")] == [
            "m0", "m1", "m2", "m3", "m4"
        ]

    def test_update_all_by_chat_id_counts(self, store):
        store.save_message("c1", "u1", "USER", "a", is_human_required=True)
        store.save_message("c1", "u1", "USER", "b", is_human_required=True)

        assert store.update_all_by_chat_id("c1", is_human_required=False) == 2
        assert store.get_active_queues()[0].is_human_required is False
        assert store.update_all_by_chat_id("other", is_human_required=False) == 0

    def test_audit_filters(self, store):
        store.save_audit("LOGIN", "u1")
        store.save_audit("LOGIN", "u2")
        store.save_audit("RESET_PASSWORD", "u1")

        assert len(store.list_audit(action="LOGIN")) == 2
        assert [e.action for e in store.list_audit(user_id="u1")] == ["LOGIN", "RESET_PASSWORD"]
