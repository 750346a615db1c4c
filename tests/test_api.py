# tests/test_api.py - API endpoint tests
from fastapi.testclient import TestClient

from config import GENERATION_ERROR_RESPONSE, MAX_MESSAGE_LENGTH, NO_DOCUMENTS_RESPONSE, RATE_LIMITS
from server import create_app
from widget import MemoryStorage, WidgetClient, WidgetSession

ADMIN_KEY = "test-admin-key"
ADMIN_HEADERS = {"X-Admin-Key": ADMIN_KEY}


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_returns_status(self, client):
        data = client.get("/health").json()
        assert data["status"] == "running"

    def test_root(self, client):
        assert client.get("/").json()["version"] == "1.0.0"


class TestLimitsEndpoint:
    """Tests for the /limits endpoint."""

    def test_limits_returns_configuration(self, client):
        data = client.get("/limits").json()
        assert data["input_limits"]["max_message_length"] == MAX_MESSAGE_LENGTH
        assert data["rate_limits"]["chat"]["requests_per_window"] == RATE_LIMITS["chat"][0]
        assert data["rate_limits"]["chat"]["window_seconds"] == RATE_LIMITS["chat"][1]
        assert "config_ttl_seconds" in data["cache"]


class TestWidgetScript:
    def test_widget_served(self, client):
        response = client.get("/widget.js")
        assert response.status_code == 200
        assert "javascript" in response.headers["content-type"]
        assert "chatbotConfig" in response.text


class TestChatEndpoint:
    """Tests for the /api/chat endpoint."""

    def test_no_documents_returns_apology(self, client, services, demo_chatbot, generator):
        response = client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hello"})

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == NO_DOCUMENTS_RESPONSE
        assert data["sessionId"].startswith("sess_")
        assert services.sessions.get_session(data["sessionId"]).message_count == 1
        assert generator.calls == []

    def test_answer_uses_document_context(self, client, docs_chatbot, generator):
        response = client.post("/api/chat", json={"chatbotId": "cb_docs01", "message": "When are you open?"})

        assert response.json()["response"] == generator.answer
        context, question = generator.calls[0]
        assert "Office hours" in context
        assert question == "When are you open?"

    def test_generator_failure_returns_apology(self, client, docs_chatbot, generator):
        generator.error = RuntimeError("insufficient_quota: secret internal detail")

        response = client.post("/api/chat", json={"chatbotId": "cb_docs01", "message": "hello"})

        assert response.status_code == 200
        assert response.json()["response"] == GENERATION_ERROR_RESPONSE
        assert "insufficient_quota" not in response.text

    def test_session_is_resumed(self, client, services, demo_chatbot):
        first = client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hello"}).json()
        second = client.post(
            "/api/chat", json={"chatbotId": "cb_demo01", "message": "again", "sessionId": first["sessionId"]}
        ).json()

        assert second["sessionId"] == first["sessionId"]
        assert services.sessions.get_session(first["sessionId"]).message_count == 2

    def test_blank_session_id_starts_new_session(self, client, demo_chatbot):
        response = client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hello", "sessionId": " "})
        assert response.json()["sessionId"].startswith("sess_")

    def test_ended_session_gets_new_id(self, client, demo_chatbot):
        first = client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hello"}).json()
        client.post("/api/chat/feedback", json={"sessionId": first["sessionId"], "rating": 0})

        second = client.post(
            "/api/chat", json={"chatbotId": "cb_demo01", "message": "again", "sessionId": first["sessionId"]}
        ).json()

        assert second["sessionId"] != first["sessionId"]

    def test_missing_message(self, client):
        response = client.post("/api/chat", json={"chatbotId": "cb_demo01"})
        assert response.status_code == 400

    def test_empty_message(self, client):
        response = client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "   "})
        assert response.status_code == 400

    def test_message_too_long(self, client):
        response = client.post(
            "/api/chat", json={"chatbotId": "cb_demo01", "message": "x" * (MAX_MESSAGE_LENGTH + 1)}
        )
        assert response.status_code == 400
        assert "Message too long" in response.json()["detail"]

    def test_malformed_chatbot_id(self, client):
        response = client.post("/api/chat", json={"chatbotId": "demo; DROP TABLE", "message": "hello"})
        assert response.status_code == 400

    def test_invalid_session_id_characters(self, client):
        response = client.post(
            "/api/chat", json={"chatbotId": "cb_demo01", "message": "hello", "sessionId": "test@#$%"}
        )
        assert response.status_code == 400

    def test_rate_limit_rejects_request_over_limit(self, client, demo_chatbot):
        limit = RATE_LIMITS["chat"][0]
        for _ in range(limit):
            assert client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hi"}).status_code == 200

        response = client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hi"})

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0

    def test_malformed_requests_count_toward_limit(self, client):
        limit = RATE_LIMITS["chat"][0]
        statuses = [
            client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": ""}).status_code
            for _ in range(limit + 1)
        ]

        assert statuses[:limit] == [400] * limit
        assert statuses[-1] == 429

    def test_unknown_chatbot_is_answered_without_ledger_rows(self, client, services):
        response = client.post("/api/chat", json={"chatbotId": "cb_nosuchbot", "message": "hello"})

        assert response.status_code == 200
        assert response.json()["response"] == NO_DOCUMENTS_RESPONSE
        assert services.sessions.get_session(response.json()["sessionId"]) is None
        assert services.sessions.list_conversations("cb_nosuchbot") == []

    def test_rate_limit_is_per_client_ip(self, client, demo_chatbot):
        limit = RATE_LIMITS["chat"][0]
        for _ in range(limit):
            client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hi"})

        response = client.post(
            "/api/chat",
            json={"chatbotId": "cb_demo01", "message": "hi"},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )
        assert response.status_code == 200


class TestFeedbackEndpoint:
    """Tests for the /api/chat/feedback endpoint."""

    def _start(self, client):
        return client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hello"}).json()["sessionId"]

    def test_rating_is_stored(self, client, services, demo_chatbot):
        session_id = self._start(client)

        response = client.post("/api/chat/feedback", json={"sessionId": session_id, "rating": 4})

        assert response.status_code == 200
        assert response.json()["rated"] is True
        row = services.sessions.get_session(session_id)
        assert row.satisfaction_rating == 4
        assert row.ended_at is not None

    def test_zero_rating_closes_without_score(self, client, services, demo_chatbot):
        session_id = self._start(client)

        response = client.post("/api/chat/feedback", json={"sessionId": session_id, "rating": 0})

        assert response.json()["rated"] is False
        assert services.sessions.get_session(session_id).satisfaction_rating is None

    def test_unknown_session(self, client):
        response = client.post("/api/chat/feedback", json={"sessionId": "sess_missing", "rating": 3})
        assert response.status_code == 404

    def test_rating_out_of_range(self, client):
        response = client.post("/api/chat/feedback", json={"sessionId": "sess_any", "rating": 6})
        assert response.status_code == 400

    def test_missing_session_id(self, client):
        response = client.post("/api/chat/feedback", json={"rating": 3})
        assert response.status_code == 400

    def test_malformed_feedback_counts_toward_limit(self, client):
        limit = RATE_LIMITS["feedback"][0]
        for _ in range(limit):
            assert client.post("/api/chat/feedback", json={"rating": 9}).status_code == 400

        response = client.post("/api/chat/feedback", json={"rating": 9})

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0


class TestPublicConfigEndpoint:
    """Tests for the /public/chatbots/{id} endpoint."""

    def test_deployed_chatbot(self, client, demo_chatbot, services):
        response = client.get("/public/chatbots/cb_demo01")

        assert response.status_code == 200
        assert response.json() == {"name": "Demo Bot", "color": "#112233", "welcomeMessage": "Hello there!"}
        assert response.headers["Cache-Control"] == f"public, max-age={services.config_cache.ttl_seconds}"

    def test_undeployed_chatbot(self, client, services):
        services.chatbots.create_chatbot(name="Draft", chatbot_id="cb_draft01", is_deployed=False)
        assert client.get("/public/chatbots/cb_draft01").status_code == 404

    def test_unknown_chatbot(self, client):
        assert client.get("/public/chatbots/cb_nothere").status_code == 404

    def test_malformed_id(self, client):
        assert client.get("/public/chatbots/not-a-chatbot").status_code == 404

    def test_update_invalidates_cached_config(self, client, demo_chatbot):
        assert client.get("/public/chatbots/cb_demo01").json()["name"] == "Demo Bot"

        response = client.put(
            "/internal/chatbots/cb_demo01",
            json={"name": "Support", "color": "#abcdef"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200

        data = client.get("/public/chatbots/cb_demo01").json()
        assert data["name"] == "Support"
        assert data["color"] == "#abcdef"


class TestInternalEndpoints:
    """Tests for the admin-keyed /internal routes."""

    def test_missing_key(self, client, demo_chatbot):
        response = client.put("/internal/chatbots/cb_demo01", json={"name": "X"})
        assert response.status_code == 401

    def test_wrong_key(self, client, demo_chatbot):
        response = client.put("/internal/chatbots/cb_demo01", json={"name": "X"}, headers={"X-Admin-Key": "nope"})
        assert response.status_code == 401

    def test_disabled_without_configured_key(self, services):
        client = TestClient(create_app(services=services, admin_api_key=""))
        response = client.get("/internal/chatbots/cb_demo01/analytics", headers=ADMIN_HEADERS)
        assert response.status_code == 403

    def test_update_unknown_chatbot(self, client):
        response = client.put("/internal/chatbots/cb_nothere", json={"name": "X"}, headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_update_rejects_bad_color(self, client, demo_chatbot):
        response = client.put("/internal/chatbots/cb_demo01", json={"color": "red"}, headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_analytics(self, client, demo_chatbot):
        client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hello"})

        data = client.get("/internal/chatbots/cb_demo01/analytics", headers=ADMIN_HEADERS).json()

        assert data["realTimeStats"]["todaySessions"] == 1
        assert data["realTimeStats"]["todayMessages"] == 2
        assert data["history"] == []

    def test_conversations(self, client, demo_chatbot):
        session_id = client.post("/api/chat", json={"chatbotId": "cb_demo01", "message": "hello"}).json()["sessionId"]

        data = client.get("/internal/chatbots/cb_demo01/conversations", headers=ADMIN_HEADERS).json()

        assert data["conversations"][0]["session_id"] == session_id
        assert [m["role"] for m in data["conversations"][0]["messages"]] == ["user", "bot"]

    def test_rollup(self, client):
        response = client.post("/internal/analytics/rollup?day=2024-01-15", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["chatbots"] == 0

    def test_rollup_bad_day(self, client):
        response = client.post("/internal/analytics/rollup?day=yesterday", headers=ADMIN_HEADERS)
        assert response.status_code == 400


class TestWidgetAgainstGateway:
    """WidgetSession driving the real app through the test client."""

    def test_conversation_and_rating(self, client, services, demo_chatbot, clock):
        transport = WidgetClient("http://testserver", session=client)
        widget = WidgetSession("cb_demo01", transport, MemoryStorage(), clock=clock)

        assert transport.fetch_config("cb_demo01")["welcomeMessage"] == "Hello there!"
        assert widget.send("hello") == NO_DOCUMENTS_RESPONSE
        session_id = widget.session_id

        assert widget.close() is True
        widget.rate(5)

        assert services.sessions.get_session(session_id).satisfaction_rating == 5


class TestLifespan:
    """Startup and shutdown of the maintenance task."""

    def test_shutdown_waits_for_maintenance_task(self, services):
        app = create_app(services=services, admin_api_key=ADMIN_KEY, rollup_interval=3600)

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            task = app.state.maintenance_task
            assert task is not None
            assert not task.done()

        assert task.done()
        assert not task.cancelled()

    def test_no_task_when_rollup_disabled(self, services):
        app = create_app(services=services, admin_api_key=ADMIN_KEY, rollup_interval=0)

        with TestClient(app) as client:
            client.get("/health")

        assert app.state.maintenance_task is None
