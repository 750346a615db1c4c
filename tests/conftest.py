# tests/conftest.py - Shared fixtures: isolated database, in-memory stores, fake LLM
import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from server import create_app
from services import build_services
from storage.kv_store import MemoryStore

ADMIN_KEY = "test-admin-key"


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGenerator:
    def __init__(self, answer: str = "We are open 9am to 5pm, Monday to Friday.", error: Exception = None):
        self.answer = answer
        self.error = error
        self.calls = []

    def generate(self, system_context: str, user_message: str) -> str:
        self.calls.append((system_context, user_message))
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def services(tmp_path, clock, generator):
    services = build_services(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        kv_store=MemoryStore(clock=clock),
        generator=generator,
        clock=clock,
    )
    yield services
    services.engine.dispose()


@pytest.fixture
def demo_chatbot(services):
    """Deployed chatbot without any training documents."""
    return services.chatbots.create_chatbot(
        name="Demo Bot", color="#112233", welcome_message="Hello there!", is_deployed=True, chatbot_id="cb_demo01"
    )


@pytest.fixture
def other_chatbot(services):
    """Second deployed chatbot, for cross-tenant checks."""
    return services.chatbots.create_chatbot(name="Other Bot", is_deployed=True, chatbot_id="cb_other01")


@pytest.fixture
def docs_chatbot(services):
    """Deployed chatbot with one ready document."""
    record = services.chatbots.create_chatbot(
        name="Docs Bot", is_deployed=True, chatbot_id="cb_docs01"
    )
    services.chatbots.add_document(record.id, "hours.txt", "Office hours: 9am to 5pm, Monday to Friday.")
    return record


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services, admin_api_key=ADMIN_KEY))
