import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, ValidationError

import config
from events import add_listener, get_recent_logs, log_event, remove_listener, setup_logging
from scheduler import Scheduler
from trader import TradingBot

bot: TradingBot | None = None


def get_bot() -> TradingBot:
    global bot
    if bot is None:
        bot = TradingBot(scheduler=Scheduler())
    return bot


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    get_bot()
    log_event("INFO", f"HTTP + WebSocket server listening on port {config.PORT}")

    yield

    # Shutdown: stop the run and close the venue connection
    if bot and bot.running:
        bot.stop()


app = FastAPI(title="Deriv Martingale Bot", lifespan=lifespan)


class StartOverrides(BaseModel):
    """Start-command overrides. Values stay untyped here: SessionConfig.merged
    coerces them and keeps the previous value for anything unusable."""

    model_config = ConfigDict(extra="ignore")

    apiToken: Any = None
    baseStake: Any = None
    martingaleMultiplier: Any = None
    stopLoss: Any = None
    takeProfit: Any = None
    contractType: Any = None
    barrier: Any = None
    duration: Any = None
    durationUnit: Any = None


class ControlCommand(StartOverrides):
    command: str


def handle_command(data: Any) -> str | None:
    """Apply one control-channel command; returns an error line, if any."""
    try:
        cmd = ControlCommand.model_validate(data)
    except ValidationError:
        return "ERROR: Invalid command"

    target = get_bot()
    if cmd.command == "start":
        overrides = cmd.model_dump(exclude={"command"}, exclude_none=True)
        target.start(overrides)
    elif cmd.command == "stop":
        target.stop()
    else:
        return f"ERROR: Unknown command {cmd.command}"
    return None


# ------------------------------------------------------------------
# Liveness
# ------------------------------------------------------------------

@app.get("/", response_class=PlainTextResponse)
async def health():
    return "Deriv bot backend running"


# ------------------------------------------------------------------
# Control channel (WebSocket)
# ------------------------------------------------------------------

async def _relay(websocket: WebSocket, outbox: asyncio.Queue):
    while True:
        line = await outbox.get()
        await websocket.send_text(line)


@app.websocket("/")
@app.websocket("/ws")
async def control_channel(websocket: WebSocket):
    await websocket.accept()
    outbox: asyncio.Queue = asyncio.Queue()
    add_listener(outbox.put_nowait)
    sender = asyncio.create_task(_relay(websocket, outbox), name="control-relay")
    outbox.put_nowait("🟢 Connected to backend")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Binary frames carry no "text" and are treated like bad JSON
            text = message.get("text")
            if text is None:
                outbox.put_nowait("ERROR: Invalid JSON")
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                outbox.put_nowait("ERROR: Invalid JSON")
                continue
            error = handle_command(data)
            if error:
                outbox.put_nowait(error)
    except WebSocketDisconnect:
        log_event("INFO", "Control client disconnected")
    finally:
        remove_listener(outbox.put_nowait)
        sender.cancel()
        # Losing the operator stops the run
        get_bot().stop()


# ------------------------------------------------------------------
# JSON API
# ------------------------------------------------------------------

@app.get("/api/status")
async def api_status():
    return get_bot().get_status()


@app.get("/api/logs")
async def api_logs(limit: int = 80):
    return get_recent_logs(limit)


@app.get("/api/config")
async def api_config():
    return get_bot().config.as_public_dict()


@app.post("/api/start")
async def start_bot(overrides: StartOverrides | None = None):
    target = get_bot()
    if target.running:
        return {"ok": False, "msg": "Bot already running"}
    payload = overrides.model_dump(exclude_none=True) if overrides else {}
    target.start(payload)
    return {"ok": True, "state": target.state.value}


@app.post("/api/stop")
async def stop_bot():
    target = get_bot()
    if not target.running:
        return {"ok": False, "msg": "Bot not running"}
    target.stop()
    return {"ok": True, "state": target.state.value}


if __name__ == "__main__":
    uvicorn.run("web:app", host="0.0.0.0", port=config.PORT)
