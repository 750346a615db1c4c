# widget/state.py - Client-side session state machine for the chat widget
"""
Widget-side session state.

    NO_SESSION -> ACTIVE -> {EXPIRED, RATING_PENDING} -> NO_SESSION

The persisted record (``session:<chatbotId>`` and ``sessionTime:<chatbotId>``,
last activity in epoch milliseconds) is the source of truth; ``is_valid`` is
the only place that decides whether it may still be used. The periodic check
in widget/expiry.py is just an adapter calling ``check_expiry``.
"""

import threading
import time
from enum import Enum
from typing import Callable, Optional, Tuple

from config import GENERATION_ERROR_RESPONSE, SESSION_INACTIVITY_TIMEOUT_SECONDS
from utils.logger import get_widget_logger
from widget.client import RateLimitedError, WidgetTransportError
from widget.storage import LocalStorage

logger = get_widget_logger()

EXPIRY_NOTICE = "Your chat session has expired due to inactivity. Send a message to start a new conversation."
RATE_LIMITED_MESSAGE = "You're sending messages too quickly. Please wait a moment and try again."


class WidgetState(str, Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    EXPIRED = "expired"
    RATING_PENDING = "rating_pending"


class SendInProgressError(Exception):
    """A message is already in flight for this widget."""
    pass


class InvalidStateError(Exception):
    """Operation not allowed in the current widget state."""
    pass


def is_valid(last_activity_at: float, now: float, timeout: float) -> bool:
    """A session record is usable while less than `timeout` seconds have passed since its last activity."""
    return now - last_activity_at < timeout


def session_key(chatbot_id: str) -> str:
    return f"session:{chatbot_id}"


def session_time_key(chatbot_id: str) -> str:
    return f"sessionTime:{chatbot_id}"


class WidgetSession:
    def __init__(
        self,
        chatbot_id: str,
        transport,
        storage: LocalStorage,
        inactivity_timeout: float = SESSION_INACTIVITY_TIMEOUT_SECONDS,
        welcome_message: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.chatbot_id = chatbot_id
        self.welcome_message = welcome_message
        self._transport = transport
        self._storage = storage
        self._timeout = inactivity_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._sending = False
        self._message_count = 0
        self._welcome_shown = False
        self._state = WidgetState.ACTIVE if self._valid_session_id(clock()) else WidgetState.NO_SESSION

    @property
    def state(self) -> WidgetState:
        return self._state

    @property
    def session_id(self) -> Optional[str]:
        """Persisted session id, only while it is still valid."""
        return self._valid_session_id(self._clock())

    @property
    def message_count(self) -> int:
        return self._message_count

    def open(self) -> Optional[str]:
        """Open the widget; returns the welcome message once per episode."""
        with self._lock:
            if self._state == WidgetState.EXPIRED:
                self._enter_no_session()
            if self._welcome_shown or not self.welcome_message:
                return None
            self._welcome_shown = True
            return self.welcome_message

    def send(self, text: str) -> Optional[str]:
        """
        Send one message and return the text to display as the bot reply.

        Raises:
            SendInProgressError: If another send has not completed yet
            InvalidStateError: If the widget is waiting for a rating
        """
        if not text or not text.strip():
            return None

        with self._lock:
            if self._sending:
                raise SendInProgressError("A message is already being sent")
            if self._state == WidgetState.RATING_PENDING:
                raise InvalidStateError("Widget is waiting for a rating")
            if self._state == WidgetState.EXPIRED:
                self._enter_no_session()

            session_id = self._valid_session_id(self._clock())
            if session_id is None and self._load_record() is not None:
                # Stale id must never be reused
                self._clear_record()
                self._enter_no_session()
            self._sending = True

        try:
            reply = self._transport.send_message(self.chatbot_id, text.strip(), session_id)
        except RateLimitedError as e:
            logger.warning(f"[{self.chatbot_id}] {e}")
            return RATE_LIMITED_MESSAGE
        except WidgetTransportError as e:
            logger.error(f"[{self.chatbot_id}] Chat request failed: {e}")
            return GENERATION_ERROR_RESPONSE
        finally:
            with self._lock:
                self._sending = False

        with self._lock:
            if reply.session_id != session_id:
                self._message_count = 0
            self._persist(reply.session_id, self._clock())
            self._state = WidgetState.ACTIVE
            self._message_count += 2
        return reply.response

    def check_expiry(self) -> Optional[str]:
        """Expire an inactive session; returns the notice exactly once."""
        with self._lock:
            if self._state == WidgetState.RATING_PENDING or self._sending:
                return None
            record = self._load_record()
            if record is None:
                return None
            _, last_activity = record
            if is_valid(last_activity, self._clock(), self._timeout):
                return None

            self._clear_record()
            if self._state != WidgetState.ACTIVE:
                # Stale leftover from an earlier visit: nothing to expire
                return None
            self._state = WidgetState.EXPIRED
            self._message_count = 0
            logger.info(f"[{self.chatbot_id}] Session expired after inactivity")
            return EXPIRY_NOTICE

    def close(self) -> bool:
        """Close the widget. Returns True when a rating should be requested."""
        with self._lock:
            if self._state == WidgetState.RATING_PENDING:
                return True
            if self._state == WidgetState.ACTIVE and self._message_count > 1:
                self._state = WidgetState.RATING_PENDING
                return True
            self._clear_record()
            self._enter_no_session()
            return False

    def rate(self, stars: int) -> None:
        if not 1 <= stars <= 5:
            raise ValueError("Rating must be between 1 and 5")
        self._finish(stars)

    def dismiss_rating(self) -> None:
        """Close the rating prompt without a score."""
        self._finish(0)

    def _finish(self, rating: int) -> None:
        with self._lock:
            if self._state != WidgetState.RATING_PENDING:
                raise InvalidStateError("No rating requested")
            record = self._load_record()

        if record is not None:
            try:
                self._transport.submit_feedback(record[0], rating)
            except WidgetTransportError as e:
                logger.warning(f"[{record[0]}] Feedback not delivered: {e}")

        with self._lock:
            self._clear_record()
            self._enter_no_session()

    def _enter_no_session(self) -> None:
        self._state = WidgetState.NO_SESSION
        self._message_count = 0
        self._welcome_shown = False

    def _load_record(self) -> Optional[Tuple[str, float]]:
        session_id = self._storage.get_item(session_key(self.chatbot_id))
        stamp = self._storage.get_item(session_time_key(self.chatbot_id))
        if not session_id or not stamp:
            return None
        try:
            return session_id, int(stamp) / 1000
        except ValueError:
            return None

    def _valid_session_id(self, now: float) -> Optional[str]:
        record = self._load_record()
        if record is None:
            return None
        session_id, last_activity = record
        return session_id if is_valid(last_activity, now, self._timeout) else None

    def _persist(self, session_id: str, now: float) -> None:
        self._storage.set_item(session_key(self.chatbot_id), session_id)
        self._storage.set_item(session_time_key(self.chatbot_id), str(int(now * 1000)))

    def _clear_record(self) -> None:
        self._storage.remove_item(session_key(self.chatbot_id))
        self._storage.remove_item(session_time_key(self.chatbot_id))
