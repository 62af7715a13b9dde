from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from api.routes import chat
from api.routes.chat import get_resolver
from core.conversation import ContinuationResolver, InMemorySessionStore, StorageUnavailable
from main import app


async def extract_sarah(message, context_summary, prior_turns, **options):
    return {
        "contacts": [{"input_contact": {"first_name": "Sarah", "last_name": "Williams", "intent": "add"}}],
        "language": "english",
    }


@pytest.fixture
def resolver():
    return ContinuationResolver(store=InMemorySessionStore(), extract=extract_sarah)


@pytest.fixture
def client(resolver):
    app.dependency_overrides[get_resolver] = lambda: resolver
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestChatEndpoint:
    def test_extracts_contact(self, client):
        response = client.post("/api/chat", json={"message": "Add Sarah Williams", "userId": "agent-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Contact information extracted successfully"
        assert body["data"]["contacts"][0]["input_contact"]["first_name"] == "Sarah"
        assert body["data"]["outstanding_question"] == ""
        assert body["tokenUsage"]["messagesCount"] == 1
        assert "timestamp" in body

    def test_empty_message_rejected(self, client):
        response = client.post("/api/chat", json={"message": "   "})

        assert response.status_code == 400

    def test_missing_message_is_validation_error(self, client):
        assert client.post("/api/chat", json={"userId": "agent-1"}).status_code == 422

    def test_storage_outage_returns_503(self, client, resolver):
        resolver.store = Mock()
        resolver.store.get.side_effect = StorageUnavailable("database unreachable", "agent-1")

        response = client.post("/api/chat", json={"message": "Add Sarah Williams", "userId": "agent-1"})

        assert response.status_code == 503
        assert response.json()["success"] is False

    def test_unexpected_error_returns_500(self, client, resolver):
        resolver.store = Mock()
        resolver.store.get.side_effect = KeyError("boom")

        response = client.post("/api/chat", json={"message": "Add Sarah Williams"})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to process request"


class TestStoreConstruction:
    @pytest.fixture
    def unbuilt(self, monkeypatch):
        monkeypatch.setattr(chat, "_resolver", None)
        return TestClient(app)

    def test_unreachable_store_returns_503(self, unbuilt):
        with patch.object(chat, "create_session_store",
                          side_effect=StorageUnavailable("Session store database unreachable")):
            response = unbuilt.post("/api/chat", json={"message": "Add Sarah Williams", "userId": "agent-1"})

        assert response.status_code == 503
        assert response.json() == {
            "success": False,
            "error": "Session storage unavailable",
            "message": "Session store database unreachable",
        }
        assert chat._resolver is None

    def test_session_listing_maps_store_failure(self, unbuilt):
        with patch.object(chat, "create_session_store", side_effect=StorageUnavailable("down")):
            assert unbuilt.get("/api/chat/sessions").status_code == 503


class TestSessionEndpoints:
    def test_list_and_clear(self, client):
        client.post("/api/chat", json={"message": "Add Sarah Williams", "userId": "agent-1"})

        listed = client.get("/api/chat/sessions").json()
        assert listed == {"sessions": ["agent-1"], "count": 1}

        cleared = client.delete("/api/chat/sessions/agent-1").json()
        assert cleared == {"success": True, "session_id": "agent-1"}
        assert client.get("/api/chat/sessions").json()["count"] == 0


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["session_backend"] == "memory"
