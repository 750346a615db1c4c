# widget/client.py - HTTP transport used by the widget session
from dataclasses import dataclass
from typing import Optional

import requests

from utils.logger import get_widget_logger

logger = get_widget_logger()

REQUEST_TIMEOUT = 30


class WidgetTransportError(Exception):
    """Network failure or unexpected response from the gateway."""
    pass


class RateLimitedError(WidgetTransportError):
    """Gateway answered 429."""

    def __init__(self, retry_after: Optional[int]):
        super().__init__(f"Rate limited, retry after {retry_after}s")
        self.retry_after = retry_after


class ChatbotUnavailableError(WidgetTransportError):
    """Chatbot is unknown or not deployed."""
    pass


@dataclass(frozen=True)
class ChatReply:
    response: str
    session_id: str


class WidgetClient:
    def __init__(self, api_url: str, session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT):
        self._api_url = api_url.rstrip("/")
        self._http = session or requests.Session()
        self._timeout = timeout

    def fetch_config(self, chatbot_id: str) -> dict:
        response = self._request("GET", f"/public/chatbots/{chatbot_id}")
        if response.status_code == 404:
            raise ChatbotUnavailableError(f"Chatbot {chatbot_id} not deployed or not found")
        return self._json(response)

    def send_message(self, chatbot_id: str, message: str, session_id: Optional[str]) -> ChatReply:
        payload = {"chatbotId": chatbot_id, "message": message}
        if session_id:
            payload["sessionId"] = session_id
        data = self._json(self._request("POST", "/api/chat", json=payload))
        return ChatReply(response=data["response"], session_id=data["sessionId"])

    def submit_feedback(self, session_id: str, rating: int) -> None:
        self._json(self._request("POST", "/api/chat/feedback", json={"sessionId": session_id, "rating": rating}))

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self._http.request(method, f"{self._api_url}{path}", timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise WidgetTransportError(f"{method} {path} failed: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(int(retry_after) if retry_after and retry_after.isdigit() else None)
        return response

    @staticmethod
    def _json(response: requests.Response) -> dict:
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise WidgetTransportError(f"HTTP {response.status_code}: {detail}")
        try:
            return response.json()
        except ValueError as e:
            raise WidgetTransportError(f"Invalid JSON response: {e}") from e
