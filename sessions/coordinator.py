# sessions/coordinator.py - Server-side session ledger and append-only conversation log
"""
Session lifecycle for widget conversations.

Session creation is made idempotent by the unique constraint on
``chat_sessions.session_id`` (insert-or-ignore), not by in-process locking,
so any number of stateless workers can race on the same id. Conversation
logging is best-effort: failures come back as a WriteResult and are logged,
they never abort the user-facing response.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from storage.database import dialect_insert
from storage.models import ChatSession, Conversation, utcnow
from utils.logger import get_session_logger

logger = get_session_logger()

ROLE_USER = "user"
ROLE_BOT = "bot"


class SessionNotFoundError(Exception):
    """No session exists with the given id."""
    pass


@dataclass(frozen=True)
class WriteResult:
    ok: bool
    error: Optional[str] = None


def generate_session_id() -> str:
    return f"sess_{uuid.uuid4().hex[:24]}"


class SessionCoordinator:
    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def resume_or_start(
        self,
        chatbot_id: str,
        candidate_session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """
        Resume an open session of this chatbot, or start one.

        An unknown candidate id is created as-is; an ended session or one
        belonging to another chatbot is replaced by a generated id.
        """
        try:
            if candidate_session_id:
                existing = self._get(candidate_session_id)
                if existing is not None:
                    if existing.chatbot_id == chatbot_id and existing.ended_at is None:
                        return candidate_session_id
                    logger.info(f"[{candidate_session_id}] Not resumable, starting a new session")
                elif self._insert_if_absent(candidate_session_id, chatbot_id, ip_address, user_agent):
                    return candidate_session_id

            session_id = generate_session_id()
            self._insert_if_absent(session_id, chatbot_id, ip_address, user_agent)
            return session_id

        except SQLAlchemyError as e:
            # Best-effort: keep the conversation going without a ledger row
            fallback = candidate_session_id or generate_session_id()
            logger.error(f"[{fallback}] Session write failed for chatbot {chatbot_id}: {e}")
            return fallback

    def append_message(
        self,
        session_id: str,
        chatbot_id: str,
        role: str,
        text: str,
        response_time_ms: Optional[int] = None,
    ) -> WriteResult:
        """Append one log entry; bot entries also bump the session's message_count."""
        if role not in (ROLE_USER, ROLE_BOT):
            raise ValueError(f"Unknown role: {role}")

        try:
            with self._session_factory.begin() as db:
                db.add(
                    Conversation(
                        session_id=session_id,
                        chatbot_id=chatbot_id,
                        role=role,
                        message=text,
                        response_time_ms=response_time_ms if role == ROLE_BOT else None,
                        created_at=self._clock(),
                    )
                )
                if role == ROLE_BOT:
                    db.execute(
                        update(ChatSession)
                        .where(ChatSession.session_id == session_id)
                        .values(message_count=ChatSession.message_count + 1)
                    )
            return WriteResult(ok=True)
        except SQLAlchemyError as e:
            logger.error(f"[{session_id}] Failed to log {role} message: {e}")
            return WriteResult(ok=False, error=str(e))

    def end_session(self, session_id: str, rating: Optional[int] = None) -> bool:
        """
        Mark a session ended.

        Args:
            session_id: Session to end
            rating: 1-5 stores a satisfaction score; 0 or None ends without one

        Returns:
            True if this call ended the session, False if it was already ended

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self._session_factory.begin() as db:
            session = db.scalar(select(ChatSession).where(ChatSession.session_id == session_id))
            if session is None:
                raise SessionNotFoundError(f"Session {session_id} not found")
            if session.ended_at is not None:
                logger.info(f"[{session_id}] Session already ended")
                return False

            session.ended_at = self._clock()
            if rating is not None and 1 <= rating <= 5:
                session.satisfaction_rating = rating

        logger.info(f"[{session_id}] Session ended (rating: {rating if rating else 'none'})")
        return True

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self._get(session_id)

    def list_conversations(self, chatbot_id: str, limit: int = 50) -> List[dict]:
        """Most recent sessions of a chatbot, each with its messages oldest first."""
        with self._session_factory() as db:
            sessions = db.scalars(
                select(ChatSession)
                .where(ChatSession.chatbot_id == chatbot_id)
                .order_by(ChatSession.started_at.desc(), ChatSession.id.desc())
                .limit(limit)
            ).all()
            if not sessions:
                return []

            entries = db.scalars(
                select(Conversation)
                .where(Conversation.session_id.in_([s.session_id for s in sessions]))
                .order_by(Conversation.created_at, Conversation.id)
            ).all()

        messages = {s.session_id: [] for s in sessions}
        for entry in entries:
            messages[entry.session_id].append(
                {
                    "role": entry.role,
                    "message": entry.message,
                    "response_time_ms": entry.response_time_ms,
                    "created_at": entry.created_at.isoformat(),
                }
            )

        return [
            {
                "session_id": s.session_id,
                "started_at": s.started_at.isoformat(),
                "ended_at": s.ended_at.isoformat() if s.ended_at else None,
                "message_count": s.message_count,
                "satisfaction_rating": s.satisfaction_rating,
                "messages": messages[s.session_id],
            }
            for s in sessions
        ]

    def _get(self, session_id: str) -> Optional[ChatSession]:
        with self._session_factory() as db:
            return db.scalar(select(ChatSession).where(ChatSession.session_id == session_id))

    def _insert_if_absent(
        self,
        session_id: str,
        chatbot_id: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> bool:
        """
        Insert-or-ignore keyed on the unique session id.

        Returns True when the row now belongs to chatbot_id and is open,
        whether this call or a concurrent one created it.
        """
        values = {
            "session_id": session_id,
            "chatbot_id": chatbot_id,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "started_at": self._clock(),
            "message_count": 0,
        }
        with self._session_factory.begin() as db:
            stmt = dialect_insert(db, ChatSession)
            if stmt is not None:
                db.execute(stmt.values(**values).on_conflict_do_nothing(index_elements=["session_id"]))
            else:
                try:
                    with db.begin_nested():
                        db.add(ChatSession(**values))
                except IntegrityError:
                    pass

        row = self._get(session_id)
        created = row is not None and row.chatbot_id == chatbot_id and row.ended_at is None
        if created:
            logger.info(f"[{session_id}] Session active for chatbot {chatbot_id}")
        return created
