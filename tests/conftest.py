from datetime import datetime, timedelta, timezone

import pytest

from healthgame.repositories.memory_repository import InMemoryEngineRepository
from healthgame.services.game_engine import GameEngine
from healthgame.settings import EngineSettings

# Tuesday morning, UTC
NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def repo():
    return InMemoryEngineRepository()


@pytest.fixture
def settings():
    return EngineSettings(timezone="UTC")


@pytest.fixture
def engine(repo, settings, clock):
    return GameEngine(repo, settings, clock=clock)


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable stand-in for a postgrest request builder."""

    def __init__(self, client, table):
        self.client = client
        self.table = table

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    def execute(self):
        return self.client.respond(self.table)


class FakeClient:
    def __init__(self, error=None, data=None):
        self.error = error
        self.data = data if data is not None else []
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return FakeQuery(self, name)

    def respond(self, table):
        if self.error is not None:
            raise self.error
        return FakeResponse(self.data)
