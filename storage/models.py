# storage/models.py - ORM models
"""SQLAlchemy models for chatbots, sessions, conversation log and analytics."""

from datetime import date as date_type, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Chatbot(Base):
    __tablename__ = "chatbots"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="My Chatbot")
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#667eea")
    welcome_message: Mapped[str] = mapped_column(Text, nullable=False, default="Hi!")
    is_deployed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chatbot_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ready")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ChatSession(Base):
    """One continuous widget conversation; terminal once ended_at is set."""

    __tablename__ = "chat_sessions"
    __table_args__ = (
        CheckConstraint(
            "satisfaction_rating IS NULL OR (satisfaction_rating >= 1 AND satisfaction_rating <= 5)",
            name="ck_chat_sessions_rating",
        ),
        Index("idx_chat_sessions_chatbot_started", "chatbot_id", "started_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    chatbot_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    satisfaction_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class Conversation(Base):
    """Append-only log entry for a single user or bot message."""

    __tablename__ = "conversations"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'bot')", name="ck_conversations_role"),
        Index("idx_conversations_session_id", "session_id"),
        Index("idx_conversations_chatbot_created", "chatbot_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    chatbot_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ChatAnalytics(Base):
    """Daily rollup row, one per (chatbot, date)."""

    __tablename__ = "chat_analytics"
    __table_args__ = (UniqueConstraint("chatbot_id", "date", name="uq_chat_analytics_chatbot_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chatbot_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_response_time_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_session_length_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    satisfaction_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class KVEntry(Base):
    """Shared key/value row backing DatabaseStore (rate counters, cached configs)."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
