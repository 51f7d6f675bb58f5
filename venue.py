"""
Venue Session: the single long-lived Deriv WebSocket connection.

  - authorizes with the API token as soon as the socket opens
  - queues outbound requests for an in-connection writer task
  - parses every inbound frame into a ``messages`` variant and hands it up
  - on close, schedules exactly one reconnect after a fixed delay
"""

import asyncio
import json

import websockets

import config
from events import report as default_report
from messages import MalformedMessage, authorize_request, parse_message


class VenueSession:
    """Owns one Deriv connection for the lifetime of a bot run."""

    def __init__(self, token: str, on_message, scheduler, report=default_report,
                 url: str = config.DERIV_WS_URL, connector=None,
                 reconnect_delay: float = config.RECONNECT_DELAY_SECONDS):
        self._token = token
        self._on_message = on_message
        self._scheduler = scheduler
        self._report = report
        self._url = url
        self._connector = connector or websockets.connect
        self.reconnect_delay = reconnect_delay

        self._active: bool = False
        self._task: asyncio.Task | None = None
        self._reconnect_handle = None
        self._outbox: asyncio.Queue | None = None
        self.connected: bool = False
        self.connect_attempts: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self):
        if self._active:
            return
        self._active = True
        self._open()

    def close(self):
        if not self._active:
            return
        self._active = False
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self._outbox = None
        self.connected = False

    @property
    def active(self) -> bool:
        return self._active

    def _open(self):
        self._reconnect_handle = None
        if not self._active:
            return
        self.connect_attempts += 1
        self._task = self._scheduler.spawn(self._connection(), name="deriv-session")

    def _handle_close(self):
        self.connected = False
        self._outbox = None
        if not self._active or self._reconnect_handle is not None:
            return
        self._report("🔌 Deriv WS disconnected - reconnecting...")
        self._reconnect_handle = self._scheduler.call_later(self.reconnect_delay, self._open)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _connection(self):
        try:
            async with self._connector(
                self._url,
                ping_interval=30,
                ping_timeout=20,
                close_timeout=10,
            ) as ws:
                outbox: asyncio.Queue = asyncio.Queue()
                self._outbox = outbox
                self.connected = True
                self._report("⏳ Authorizing with Deriv API...")
                await ws.send(json.dumps(authorize_request(self._token)))

                writer = asyncio.create_task(self._drain(ws, outbox), name="deriv-writer")
                try:
                    async for raw in ws:
                        if not self._active:
                            break
                        self._dispatch(raw)
                finally:
                    writer.cancel()
        except asyncio.CancelledError:
            self.connected = False
            raise
        except Exception as exc:
            self._report(f"ERROR: Deriv WS error - {exc}")
        self._handle_close()

    async def _drain(self, ws, outbox: asyncio.Queue):
        while True:
            payload = await outbox.get()
            try:
                await ws.send(payload)
            except websockets.ConnectionClosed:
                return

    def _dispatch(self, raw):
        msg = parse_message(raw)
        if isinstance(msg, MalformedMessage):
            self._report("ERROR: Invalid message from Deriv WS")
            return
        try:
            self._on_message(msg)
        except (ValueError, KeyError, TypeError) as exc:
            self._report(f"ERROR: Failed to handle {type(msg).__name__} - {exc!r}")

    def send(self, request: dict) -> bool:
        """Queue a request for the venue; dropped (False) while disconnected."""
        if self._outbox is None:
            self._report(f"⚠️ Deriv WS not connected - dropped {next(iter(request), 'request')} request")
            return False
        self._outbox.put_nowait(json.dumps(request))
        return True
