"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from directbot.bus.event_bus import EventBus
from directbot.bus.events import ContentKind, Message
from directbot.config.schema import Config
from directbot.session.manager import SessionStore
from directbot.transport.loopback import LoopbackClient

ADMIN_ID = "admin-1"
USER_ID = "user-1"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_message(
    text: str | None = "hello",
    sender_id: str = USER_ID,
    sender_name: str = "alice",
    thread_id: str = "thread-1",
    kind: ContentKind = ContentKind.TEXT,
) -> Message:
    return Message(
        sender_id=sender_id,
        sender_name=sender_name,
        thread_id=thread_id,
        text=text,
        kind=kind,
    )


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def config(tmp_path):
    """Config isolated under tmp_path with one admin and a test password."""
    cfg = Config()
    cfg.bot.admin_users = [ADMIN_ID]
    cfg.bot.heartbeat_interval = 0
    cfg.account.username = "tester"
    cfg.account.password = "secret"
    cfg.account.session_path = str(tmp_path / "session")
    cfg.modules.modules_path = str(tmp_path / "modules")
    cfg.realtime.reconnect_delay = 10
    cfg.push.reconnect_delay = 10
    return cfg


@pytest.fixture
def session(config):
    return SessionStore(config.account.session_path)


@pytest.fixture
def client():
    return LoopbackClient(username="tester")


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Poll predicate until it is true or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
