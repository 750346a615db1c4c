# tests/test_widget_client.py - HTTP transport tests against a mocked requests session
from unittest.mock import MagicMock

import pytest
import requests

from widget.client import ChatbotUnavailableError, RateLimitedError, WidgetClient, WidgetTransportError


def make_response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = body if body is not None else {}
    response.text = ""
    return response


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


class TestSendMessage:
    def test_posts_payload_without_session(self, http):
        http.request.return_value = make_response(body={"response": "hi", "sessionId": "sess_1"})
        client = WidgetClient("https://api.example.com/", session=http, timeout=5)

        reply = client.send_message("cb_demo01", "hello", None)

        assert reply.response == "hi"
        assert reply.session_id == "sess_1"
        http.request.assert_called_once_with(
            "POST",
            "https://api.example.com/api/chat",
            timeout=5,
            json={"chatbotId": "cb_demo01", "message": "hello"},
        )

    def test_includes_session_when_known(self, http):
        http.request.return_value = make_response(body={"response": "hi", "sessionId": "sess_1"})
        WidgetClient("https://api.example.com", session=http).send_message("cb_demo01", "hello", "sess_1")

        assert http.request.call_args.kwargs["json"]["sessionId"] == "sess_1"

    def test_rate_limited(self, http):
        http.request.return_value = make_response(429, {"detail": "slow down"}, {"Retry-After": "12"})

        with pytest.raises(RateLimitedError) as exc_info:
            WidgetClient("https://api.example.com", session=http).send_message("cb_demo01", "hello", None)
        assert exc_info.value.retry_after == 12

    def test_network_error(self, http):
        http.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(WidgetTransportError):
            WidgetClient("https://api.example.com", session=http).send_message("cb_demo01", "hello", None)

    def test_validation_error_detail(self, http):
        http.request.return_value = make_response(400, {"detail": "message: Message cannot be empty"})

        with pytest.raises(WidgetTransportError, match="Message cannot be empty"):
            WidgetClient("https://api.example.com", session=http).send_message("cb_demo01", " ", None)


class TestConfigAndFeedback:
    def test_fetch_config(self, http):
        body = {"name": "Demo Bot", "color": "#112233", "welcomeMessage": "Hello there!"}
        http.request.return_value = make_response(body=body)

        assert WidgetClient("https://api.example.com", session=http).fetch_config("cb_demo01") == body

    def test_fetch_config_not_deployed(self, http):
        http.request.return_value = make_response(404, {"detail": "Not found"})

        with pytest.raises(ChatbotUnavailableError):
            WidgetClient("https://api.example.com", session=http).fetch_config("cb_demo01")

    def test_submit_feedback(self, http):
        http.request.return_value = make_response(body={"message": "Feedback received"})
        WidgetClient("https://api.example.com", session=http).submit_feedback("sess_1", 4)

        assert http.request.call_args.kwargs["json"] == {"sessionId": "sess_1", "rating": 4}
