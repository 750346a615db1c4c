# widget/expiry.py - Periodic inactivity check for a widget session
import threading
from typing import Callable, Optional

from config import SESSION_EXPIRY_CHECK_SECONDS
from utils.logger import get_widget_logger
from widget.state import WidgetSession

logger = get_widget_logger()


class ExpiryMonitor:
    """
    Single background timer that calls ``WidgetSession.check_expiry``.

    The decision itself lives in the session; this only schedules it and
    forwards the one-time notice to ``on_expired``.
    """

    def __init__(
        self,
        session: WidgetSession,
        on_expired: Callable[[str], None],
        interval: float = SESSION_EXPIRY_CHECK_SECONDS,
    ):
        self._session = session
        self._on_expired = on_expired
        self._interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> Optional[str]:
        notice = self._session.check_expiry()
        if notice:
            self._on_expired(notice)
        return notice

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"expiry-{self._session.chatbot_id}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.tick()
            except Exception:
                logger.exception(f"[{self._session.chatbot_id}] Expiry check failed")
