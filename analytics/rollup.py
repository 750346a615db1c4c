# analytics/rollup.py - Live and daily session/conversation statistics
"""
Dashboard analytics.

Live stats scan today's raw rows on demand. The daily rollup aggregates one
day into a chat_analytics row per chatbot, upserted on (chatbot_id, date), so
re-running a day replaces its row instead of duplicating it.

Run the batch job for yesterday (or a given day):
    python -m analytics.rollup [YYYY-MM-DD]
"""

import sys
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from storage.database import dialect_insert
from storage.models import ChatAnalytics, ChatSession, Conversation, utcnow
from utils.logger import get_analytics_logger

logger = get_analytics_logger()

METRIC_FIELDS = (
    "total_sessions",
    "total_messages",
    "avg_response_time_ms",
    "avg_session_length_minutes",
    "satisfaction_score",
)


def _day_bounds(day: date):
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


def _round(value, digits=2):
    return round(float(value), digits) if value is not None else None


class AnalyticsService:
    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def live_stats(self, chatbot_id: str) -> dict:
        """Today's numbers for one chatbot, computed from raw rows."""
        today = self._clock().date()
        with self._session_factory() as db:
            metrics = self._aggregate(db, chatbot_id, today)
        return {
            "todaySessions": metrics["total_sessions"],
            "todayMessages": metrics["total_messages"],
            "avgResponseTime": metrics["avg_response_time_ms"],
            "avgSatisfaction": metrics["satisfaction_score"],
        }

    def rollup_day(self, day: date) -> int:
        """Aggregate every chatbot with sessions on day. Returns rows written."""
        start, end = _day_bounds(day)
        with self._session_factory.begin() as db:
            chatbot_ids = db.scalars(
                select(ChatSession.chatbot_id)
                .where(ChatSession.started_at >= start, ChatSession.started_at < end)
                .distinct()
            ).all()

            for chatbot_id in chatbot_ids:
                metrics = self._aggregate(db, chatbot_id, day)
                self._upsert(db, chatbot_id, day, metrics)

        logger.info(f"Rolled up {len(chatbot_ids)} chatbots for {day.isoformat()}")
        return len(chatbot_ids)

    def history(self, chatbot_id: str, days: int) -> List[dict]:
        """Rollup rows for the last `days` days, oldest first."""
        since = self._clock().date() - timedelta(days=days)
        with self._session_factory() as db:
            rows = db.scalars(
                select(ChatAnalytics)
                .where(ChatAnalytics.chatbot_id == chatbot_id, ChatAnalytics.date >= since)
                .order_by(ChatAnalytics.date)
            ).all()
        return [
            {"date": row.date.isoformat(), **{field: getattr(row, field) for field in METRIC_FIELDS}}
            for row in rows
        ]

    def _aggregate(self, db: Session, chatbot_id: str, day: date) -> dict:
        start, end = _day_bounds(day)

        session_row = db.execute(
            select(
                func.count(ChatSession.id),
                func.avg(ChatSession.satisfaction_rating),
            ).where(
                ChatSession.chatbot_id == chatbot_id,
                ChatSession.started_at >= start,
                ChatSession.started_at < end,
            )
        ).one()

        ended = db.execute(
            select(ChatSession.started_at, ChatSession.ended_at).where(
                ChatSession.chatbot_id == chatbot_id,
                ChatSession.started_at >= start,
                ChatSession.started_at < end,
                ChatSession.ended_at.is_not(None),
            )
        ).all()
        lengths = [(ended_at - started_at).total_seconds() / 60 for started_at, ended_at in ended]

        message_row = db.execute(
            select(
                func.count(Conversation.id),
                func.avg(Conversation.response_time_ms),
            ).where(
                Conversation.chatbot_id == chatbot_id,
                Conversation.created_at >= start,
                Conversation.created_at < end,
            )
        ).one()

        return {
            "total_sessions": session_row[0] or 0,
            "total_messages": message_row[0] or 0,
            "avg_response_time_ms": _round(message_row[1]),
            "avg_session_length_minutes": _round(sum(lengths) / len(lengths)) if lengths else None,
            "satisfaction_score": _round(session_row[1]),
        }

    def _upsert(self, db: Session, chatbot_id: str, day: date, metrics: dict) -> None:
        stmt = dialect_insert(db, ChatAnalytics)
        if stmt is not None:
            stmt = stmt.values(chatbot_id=chatbot_id, date=day, created_at=self._clock(), **metrics)
            db.execute(
                stmt.on_conflict_do_update(
                    index_elements=["chatbot_id", "date"],
                    set_={field: stmt.excluded[field] for field in METRIC_FIELDS},
                )
            )
            return

        existing = db.scalar(
            select(ChatAnalytics).where(ChatAnalytics.chatbot_id == chatbot_id, ChatAnalytics.date == day)
        )
        if existing is None:
            try:
                with db.begin_nested():
                    db.add(ChatAnalytics(chatbot_id=chatbot_id, date=day, **metrics))
                return
            except IntegrityError:
                existing = db.scalar(
                    select(ChatAnalytics).where(ChatAnalytics.chatbot_id == chatbot_id, ChatAnalytics.date == day)
                )
        for field, value in metrics.items():
            setattr(existing, field, value)


def run_rollup(session_factory: sessionmaker, day: Optional[date] = None) -> int:
    """Roll up `day`, defaulting to yesterday (UTC)."""
    day = day or (utcnow().date() - timedelta(days=1))
    return AnalyticsService(session_factory).rollup_day(day)


if __name__ == "__main__":
    from config import DATABASE_URL
    from storage.database import create_db_engine, create_session_factory, init_db

    engine = create_db_engine(DATABASE_URL)
    init_db(engine)
    target = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else None
    written = run_rollup(create_session_factory(engine), target)
    print(f"Analytics rows written: {written}")
