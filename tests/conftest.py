from __future__ import annotations

import pytest

from payanaagent.coordinator import SessionCoordinator
from payanaagent.db import MockDatabase
from payanaagent.dispatcher import Dispatcher
from payanaagent.notifier import MockNotifier
from payanaagent.realtime import RealtimeChannel
from payanaagent.scheduler import ManualScheduler


class RecordingConnection:
    """Connection double that keeps every event it is sent."""

    def __init__(self, connection_id: str = "c1", fail: bool = False):
        self.connection_id = connection_id
        self.fail = fail
        self.events: list[dict] = []

    async def send(self, event: dict) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.events.append(event)

    def types(self) -> list[str]:
        return [e["type"] for e in self.events]

    def of_type(self, event_type: str) -> list[dict]:
        return [e["payload"] for e in self.events if e["type"] == event_type]

    def texts(self) -> list[str]:
        return [e["payload"]["text"] for e in self.events if e["type"] in ("message", "options")]


class Stack:
    def __init__(self, repository=None, notifier=None, notifier_timeout: float = 1.0):
        self.scheduler = ManualScheduler()
        self.repository = repository or MockDatabase()
        self.notifier = notifier or MockNotifier()
        self.channel = RealtimeChannel(self.scheduler)
        self.dispatcher = Dispatcher(
            self.repository,
            self.notifier,
            self.channel,
            self.scheduler,
            notifier_timeout=notifier_timeout,
        )
        self.coordinator = SessionCoordinator(self.repository, self.dispatcher, self.channel)

    async def seed(self, session_id: str, step: int, **answers):
        session = await self.repository.get_or_create_session(session_id)
        session.step = step
        session.answers.update(answers)
        await self.repository.update_session(session)
        return session

    async def texts(self, session_id: str) -> list[str]:
        return [m.text for m in await self.repository.list_messages(session_id)]


@pytest.fixture
def connection():
    return RecordingConnection


@pytest.fixture
def make_stack():
    return Stack


@pytest.fixture
def stack():
    return Stack()
