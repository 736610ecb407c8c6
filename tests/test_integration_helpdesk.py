"""Integration tests for the help desk endpoints."""

import pytest
from fastapi.testclient import TestClient

from eventdesk import app as app_module
from eventdesk.service.runtime import get_runtime


class FailingResponder:
    async def generate_response(self, request):
        raise ConnectionError("upstream exploded with key=abc123")

    async def embed_text(self, text):
        raise ConnectionError("upstream exploded")


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _headers_for(email, roles):
    runtime = get_runtime()
    user = runtime.store.create_user(email, "unused-hash", roles=roles)
    token = runtime.tokens.issue_access(user.id, roles)
    return user, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer():
    return _headers_for("customer@example.com", ["USER"])


@pytest.fixture
def agent():
    return _headers_for("agent@example.com", ["AGENT"])


class TestChat:
    def test_ai_answers(self, client, customer):
        _, headers = customer
        response = client.post("/v1/helpdesk/chat", json={"content": "How do I add an event?"}, headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user_message"]["role"] == "USER"
        assert data["user_message"]["is_human_required"] is False
        assert data["ai_reply"]["role"] == "AI"
        assert data["ai_reply"]["content"] == "Mock AI response to: How do I add an event?"

    def test_transfer_then_silence(self, client, customer):
        _, headers = customer
        first = client.post("/v1/helpdesk/chat", json={"content": "talk to a human"}, headers=headers)
        second = client.post("/v1/helpdesk/chat", json={"content": "hello?"}, headers=headers)

        assert first.json()["data"]["user_message"]["is_human_required"] is True
        assert first.json()["data"]["ai_reply"]["content"].startswith("I've flagged this conversation")
        assert second.json()["data"]["user_message"]["is_human_required"] is True
        assert second.json()["data"]["ai_reply"] is None

    def test_message_too_long(self, client, customer):
        _, headers = customer
        response = client.post("/v1/helpdesk/chat", json={"content": "x" * 2001}, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Message is too long"

    def test_empty_message_rejected(self, client, customer):
        _, headers = customer
        response = client.post("/v1/helpdesk/chat", json={"content": ""}, headers=headers)
        assert response.status_code == 422

    def test_ai_outage_is_503_without_cause(self, client, customer):
        _, headers = customer
        get_runtime().helpdesk.ai = FailingResponder()

        response = client.post("/v1/helpdesk/chat", json={"content": "hello"}, headers=headers)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "service_unavailable"
        assert response.json()["error"]["message"] == "The AI integration is temporarily unavailable."
        assert "abc123" not in response.text

    def test_own_history(self, client, customer):
        user, headers = customer
        client.post("/v1/helpdesk/chat", json={"content": "one"}, headers=headers)

        response = client.get("/v1/helpdesk/history", headers=headers)

        data = response.json()["data"]
        assert data["chat_id"] == user.id
        assert [m["content"] for m in data["items"]] == ["one", "Mock AI response to: one"]
        assert [m["sender_role"] for m in data["items"]] == ["USER", "AGENT"]

    def test_chat_requires_auth(self, client):
        assert client.post("/v1/helpdesk/chat", json={"content": "hi"}).status_code == 401


class TestAgentDesk:
    def test_queue_requires_staff_role(self, client, customer):
        _, headers = customer
        response = client.get("/v1/helpdesk/queue", headers=headers)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_admin_counts_as_staff(self, client):
        _, headers = _headers_for("boss@example.com", ["ADMIN"])
        assert client.get("/v1/helpdesk/queue", headers=headers).status_code == 200

    def test_agent_handles_flagged_conversation(self, client, customer, agent):
        user, user_headers = customer
        agent_user, agent_headers = agent
        client.post("/v1/helpdesk/chat", json={"content": "I need support"}, headers=user_headers)

        queue = client.get("/v1/helpdesk/queue", headers=agent_headers).json()["data"]["items"]
        assert queue[0]["chat_id"] == user.id
        assert queue[0]["is_human_required"] is True

        reply = client.post(
            "/v1/helpdesk/reply",
            json={"user_id": user.id, "content": "Hi, how can I help?"},
            headers=agent_headers,
        )
        assert reply.status_code == 200
        assert reply.json()["data"]["sender_id"] == agent_user.id
        assert reply.json()["data"]["is_human_required"] is True

        history = client.get(f"/v1/helpdesk/history/{user.id}", headers=agent_headers)
        assert history.json()["data"]["items"][-1]["content"] == "Hi, how can I help?"

        resolved = client.post(
            "/v1/helpdesk/resolve", json={"chat_id": user.id}, headers=agent_headers
        )
        assert resolved.json()["data"] == {"chat_id": user.id, "resolved": True}
        queue = client.get("/v1/helpdesk/queue", headers=agent_headers).json()["data"]["items"]
        assert [(e["chat_id"], e["is_human_required"]) for e in queue] == [(user.id, False)]

        after = client.post("/v1/helpdesk/chat", json={"content": "thanks"}, headers=user_headers)
        assert after.json()["data"]["user_message"]["is_human_required"] is False
        assert after.json()["data"]["ai_reply"]["content"] == "Mock AI response to: thanks"

    def test_customer_cannot_read_other_history(self, client, customer, agent):
        _, headers = customer
        agent_user, _ = agent
        response = client.get(f"/v1/helpdesk/history/{agent_user.id}", headers=headers)
        assert response.status_code == 403
