"""Shared fakes for bot tests."""

import pytest

from config import SessionConfig
from scheduler import VirtualScheduler
from trader import TradingBot

MARKETS = [
    "R_10", "R_25", "R_50", "R_75", "R_100",
    "R_10_1s", "R_25_1s", "R_50_1s", "R_75_1s", "R_100_1s",
]


class FakeSession:
    """Stands in for VenueSession: records traffic, delivers messages on demand."""

    def __init__(self, token, on_message, scheduler, report=None):
        self.token = token
        self.on_message = on_message
        self.scheduler = scheduler
        self.sent: list[dict] = []
        self.connect_calls = 0
        self.close_calls = 0
        self.connected = False

    def connect(self):
        self.connect_calls += 1
        self.connected = True

    def close(self):
        self.close_calls += 1
        self.connected = False

    def send(self, request: dict) -> bool:
        self.sent.append(request)
        return True

    def deliver(self, msg):
        self.on_message(msg)

    def sent_of(self, kind: str) -> list[dict]:
        return [r for r in self.sent if kind in r]


class BotHarness:
    def __init__(self, **cfg):
        self.scheduler = VirtualScheduler()
        self.lines: list[str] = []
        self.sessions: list[FakeSession] = []
        base = SessionConfig(api_token="tok-123", **cfg)
        self.bot = TradingBot(
            scheduler=self.scheduler,
            session_factory=self._make_session,
            report=self._collect,
            base_config=base,
            candidates=MARKETS,
        )

    def _make_session(self, *args, **kwargs):
        session = FakeSession(*args, **kwargs)
        self.sessions.append(session)
        return session

    def _collect(self, message, level="BOT"):
        self.lines.append(message)

    @property
    def session(self) -> FakeSession:
        return self.sessions[-1]


@pytest.fixture
def harness():
    return BotHarness()


@pytest.fixture
def make_harness():
    return BotHarness
