"""Test configuration and fixtures."""
import json
import os

# Must be set before the application modules read their configuration
os.environ["REDIS_PUBSUB_ENABLED"] = "false"
os.environ["DEFAULT_MODEL_PROVIDER"] = "template"

import fakeredis
import pytest
from fastapi.testclient import TestClient

from app import app
from backend import redis_backend
from chat_service import chat_service
from relay import ConnectionRegistry, chat_relay


class FakeWebSocket:
    """Collects outbound frames the way a connected client would see them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_text(self, text: str):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    def events(self, name: str) -> list:
        return [frame["data"] for frame in self.sent if frame["event"] == name]


@pytest.fixture(autouse=True)
def fake_redis():
    client = fakeredis.FakeRedis(decode_responses=True)
    redis_backend.use_client(client)
    chat_relay.registry = ConnectionRegistry()
    chat_service.transport = None
    yield client
    client.flushall()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def room():
    return redis_backend.create_chat_room("lobby")


@pytest.fixture
def character():
    return redis_backend.create_character({"name": "Ada", "systemPrompt": "You are Ada, a patient tutor."})
