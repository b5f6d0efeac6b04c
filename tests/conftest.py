import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "verify-me")
os.environ["OPENAI_API_KEY"] = ""

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import wendi_api.models  # noqa: E402,F401
from factories import make_chatbot, scenario_graph  # noqa: E402
from wendi_api.database import Base  # noqa: E402
from wendi_api.services.automation_service import AutomationRuleEngine  # noqa: E402
from wendi_api.services.chatbot_engine import ChatbotEngine  # noqa: E402
from wendi_api.services.dispatcher import Dispatcher  # noqa: E402
from wendi_api.services.memory_stores import (  # noqa: E402
    InMemoryBotStore,
    InMemoryConversationStore,
    InMemoryMessageLog,
    InMemorySettingsStore,
)
from wendi_api.services.result import Result  # noqa: E402


@pytest.fixture
def bot_store():
    return InMemoryBotStore([make_chatbot(scenario_graph(), trigger="/start")])


@pytest.fixture
def conversations():
    return InMemoryConversationStore()


@pytest.fixture
def message_log():
    return InMemoryMessageLog()


@pytest.fixture
def settings_store():
    return InMemorySettingsStore()


@pytest.fixture
def transport():
    mock = Mock()
    mock.send.return_value = Result.success("wamid.test")
    return mock


@pytest.fixture
def dispatcher(bot_store, conversations, message_log, settings_store, transport):
    return Dispatcher(
        conversations=conversations,
        messages=message_log,
        settings_store=settings_store,
        transport=transport,
        engine=ChatbotEngine(bot_store),
        rules=AutomationRuleEngine(message_log, settings_store=settings_store),
    )


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
