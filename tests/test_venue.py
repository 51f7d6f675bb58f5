"""Tests for the Deriv venue session: reconnect, dispatch, send."""

import asyncio
import json
from unittest.mock import patch

import pytest

from messages import AuthorizeMessage, ProposalMessage
from scheduler import VirtualScheduler
from venue import VenueSession


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeSocket:
    def __init__(self, frames):
        self.frames = list(frames)
        self.sent: list[str] = []

    async def send(self, payload):
        self.sent.append(payload)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            yield frame


class FakeConnect:
    def __init__(self, ws=None, error=None):
        self.ws = ws
        self.error = error

    async def __aenter__(self):
        if self.error:
            raise self.error
        return self.ws

    async def __aexit__(self, *exc):
        return False


def _session(connector=None, on_message=None):
    lines: list[str] = []
    received: list = []
    session = VenueSession(
        "tok",
        on_message=on_message or received.append,
        scheduler=VirtualScheduler(),
        report=lines.append,
        url="wss://test",
        connector=connector,
    )
    return session, lines, received


# ---------------------------------------------------------------------------
# Reconnect scheduling
# ---------------------------------------------------------------------------


class TestReconnect:

    def test_close_schedules_single_reconnect(self):
        session, lines, _ = _session()
        with patch.object(session, "_open") as opener:
            session.connect()
            assert opener.call_count == 1

            session._handle_close()
            session._handle_close()
            session._handle_close()

            assert session._scheduler.pending == 1
            assert lines.count("🔌 Deriv WS disconnected - reconnecting...") == 1

    def test_reconnect_fires_after_fixed_delay(self):
        session, _, _ = _session()
        with patch.object(session, "_open") as opener:
            session.connect()
            session._handle_close()

            session._scheduler.advance(4.9)
            assert opener.call_count == 1

            session._scheduler.advance(0.1)
            assert opener.call_count == 2
            assert session._scheduler.pending == 0

    def test_no_reconnect_after_close(self):
        session, lines, _ = _session()
        with patch.object(session, "_open"):
            session.connect()
            session._handle_close()
            session.close()

        assert session._scheduler.pending == 0
        session._handle_close()
        assert session._scheduler.pending == 0

    def test_close_is_idempotent(self):
        session, _, _ = _session()
        with patch.object(session, "_open"):
            session.connect()
        session.close()
        session.close()
        assert not session.active


# ---------------------------------------------------------------------------
# Connection loop
# ---------------------------------------------------------------------------


class TestConnection:

    @pytest.mark.asyncio
    async def test_authorizes_and_dispatches_frames(self):
        ws = FakeSocket([
            json.dumps({"msg_type": "authorize", "authorize": {"balance": 50, "currency": "USD"}}),
            "{broken",
            json.dumps({"msg_type": "proposal", "echo_req": {"symbol": "R_10"},
                        "proposal": {"ask_price": 1}}),
        ])
        session, lines, received = _session(connector=lambda url, **kw: FakeConnect(ws))

        session.connect()
        await session._task

        assert json.loads(ws.sent[0]) == {"authorize": "tok"}
        assert received == [
            AuthorizeMessage(balance=50.0, currency="USD"),
            ProposalMessage(symbol="R_10", ask_price=1.0),
        ]
        assert "⏳ Authorizing with Deriv API..." in lines
        assert "ERROR: Invalid message from Deriv WS" in lines
        # stream ended -> transport closed -> one reconnect pending
        assert session._scheduler.pending == 1
        session.close()

    @pytest.mark.asyncio
    async def test_transport_error_reported_and_retried(self):
        session, lines, _ = _session(
            connector=lambda url, **kw: FakeConnect(error=OSError("connection refused")),
        )

        session.connect()
        await session._task

        assert "ERROR: Deriv WS error - connection refused" in lines
        assert session.active
        assert session._scheduler.pending == 1

        session._scheduler.advance(5)
        assert session.connect_attempts == 2
        await session._task
        assert session._scheduler.pending == 1
        session.close()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_kill_connection(self):
        def boom(msg):
            raise ValueError("bad state")

        ws = FakeSocket([
            json.dumps({"msg_type": "balance", "balance": {"balance": 1}}),
            json.dumps({"msg_type": "balance", "balance": {"balance": 2}}),
        ])
        session, lines, _ = _session(connector=lambda url, **kw: FakeConnect(ws), on_message=boom)

        session.connect()
        await session._task

        errors = [line for line in lines if line.startswith("ERROR: Failed to handle BalanceMessage")]
        assert len(errors) == 2
        session.close()


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------


def test_send_while_disconnected_is_dropped():
    session, lines, _ = _session()
    assert session.send({"buy": 1}) is False
    assert lines == ["⚠️ Deriv WS not connected - dropped buy request"]


@pytest.mark.asyncio
async def test_send_queues_json_while_connected():
    session, _, _ = _session()
    session._outbox = asyncio.Queue()

    assert session.send({"balance": 1}) is True
    assert json.loads(session._outbox.get_nowait()) == {"balance": 1}
