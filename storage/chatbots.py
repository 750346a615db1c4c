# storage/chatbots.py - Read side of the chatbot/document store plus public-field updates
import random
import string
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from storage.models import Chatbot, Document, utcnow
from utils.logger import get_server_logger
from utils.validators import validate_color

logger = get_server_logger()

UpdateListener = Callable[[str], None]


@dataclass(frozen=True)
class ChatbotRecord:
    id: str
    name: str
    color: str
    welcome_message: str
    deployed: bool


def generate_chatbot_id() -> str:
    """``cb_`` followed by 9 random base-36 characters."""
    alphabet = string.ascii_lowercase + string.digits
    return "cb_" + "".join(random.choices(alphabet, k=9))


class ChatbotStore:
    """
    Source of truth for chatbot display config and document context.

    Listeners registered with ``on_update`` run after an update commits;
    the config cache registers its ``invalidate`` here.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._listeners: List[UpdateListener] = []

    def on_update(self, listener: UpdateListener) -> None:
        self._listeners.append(listener)

    def get_public_config(self, chatbot_id: str) -> Optional[ChatbotRecord]:
        with self._session_factory() as db:
            chatbot = db.get(Chatbot, chatbot_id)
            return self._to_record(chatbot) if chatbot else None

    def get_documents(self, chatbot_id: str) -> List[str]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(Document.content)
                .where(Document.chatbot_id == chatbot_id, Document.status == "ready")
                .order_by(Document.id)
            )
            return [content for content in rows if content and content.strip()]

    def update_public_config(
        self,
        chatbot_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
        welcome_message: Optional[str] = None,
        is_deployed: Optional[bool] = None,
    ) -> Optional[ChatbotRecord]:
        """Update public fields; returns None when the chatbot does not exist."""
        if color is not None:
            validate_color(color)

        with self._session_factory.begin() as db:
            chatbot = db.get(Chatbot, chatbot_id)
            if chatbot is None:
                return None
            if name is not None:
                chatbot.name = name.strip()
            if color is not None:
                chatbot.color = color
            if welcome_message is not None:
                chatbot.welcome_message = welcome_message.strip()
            if is_deployed is not None:
                chatbot.is_deployed = is_deployed
            chatbot.updated_at = utcnow()
            record = self._to_record(chatbot)

        # Transaction committed above; only now notify
        logger.info(f"[{chatbot_id}] Public config updated")
        for listener in self._listeners:
            listener(chatbot_id)
        return record

    def create_chatbot(
        self,
        name: str = "My Chatbot",
        color: str = "#667eea",
        welcome_message: str = "Hi!",
        is_deployed: bool = False,
        chatbot_id: Optional[str] = None,
    ) -> ChatbotRecord:
        validate_color(color)
        chatbot = Chatbot(
            id=chatbot_id or generate_chatbot_id(),
            name=name,
            color=color,
            welcome_message=welcome_message,
            is_deployed=is_deployed,
        )
        with self._session_factory.begin() as db:
            db.add(chatbot)
            record = self._to_record(chatbot)
        return record

    def add_document(self, chatbot_id: str, filename: str, content: str) -> int:
        document = Document(chatbot_id=chatbot_id, filename=filename, content=content)
        with self._session_factory.begin() as db:
            db.add(document)
            db.flush()
            return document.id

    @staticmethod
    def _to_record(chatbot: Chatbot) -> ChatbotRecord:
        return ChatbotRecord(
            id=chatbot.id,
            name=chatbot.name,
            color=chatbot.color,
            welcome_message=chatbot.welcome_message,
            deployed=bool(chatbot.is_deployed),
        )
