import os

# must be set before the app modules read settings
os.environ["DATABASE_URL"] = "sqlite:///./test_intake.db"
os.environ["OPENAI_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from intake.main import app
from intake.core.db import Base, engine, SessionLocal
from intake.core.config import settings
from intake.core.errors import LLMError
from intake.conversation.orchestrator import ScreenerOrchestrator

@pytest.fixture(autouse=True)
def setup_db():
    # fresh db for every test
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture()
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()

@pytest.fixture()
def client(monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_DEV_DEBUG_META", True)
    return TestClient(app)

class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, conversation_id, crisis_event_id, assessment):
        self.calls.append((conversation_id, crisis_event_id, assessment.level))

@pytest.fixture()
def notifier():
    return RecordingNotifier()

@pytest.fixture()
def orch(db, notifier):
    return ScreenerOrchestrator(db, notifier=notifier)

class FakeLLM:
    """Stands in for the reply model; extraction stays on the rule-based path."""

    def __init__(self, reply="ACK.", chunks=None, fail=False):
        self.reply = reply
        self.chunks = chunks if chunks is not None else ["ACK", ", next ", "question."]
        self.fail = fail
        self.calls = []

    async def compose(self, messages):
        self.calls.append(messages)
        if self.fail:
            raise LLMError("upstream down")
        return self.reply

    async def compose_stream(self, messages):
        self.calls.append(messages)
        if self.fail:
            raise LLMError("upstream down")
        for c in self.chunks:
            yield c

@pytest.fixture()
def fake_llm(monkeypatch):
    llm = FakeLLM()
    monkeypatch.setattr("intake.conversation.orchestrator.compose", llm.compose)
    monkeypatch.setattr("intake.conversation.orchestrator.compose_stream", llm.compose_stream)
    return llm
