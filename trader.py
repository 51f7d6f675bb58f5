from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import config
from config import SessionConfig
from events import report as default_report
from ledger import ContractLedger
from messages import (
    AuthorizeMessage,
    BalanceMessage,
    BuyMessage,
    OpenContractMessage,
    ProposalMessage,
    UnknownMessage,
    balance_request,
    buy_request,
)
from prober import MarketProber
from scheduler import Scheduler
from venue import VenueSession


class BotState(str, Enum):
    IDLE = "IDLE"
    PROBING = "PROBING"
    CYCLE_ACTIVE = "CYCLE_ACTIVE"
    EVALUATING = "EVALUATING"


@dataclass
class RunContext:
    """Everything scoped to one bot run. Discarded on stop, never reused."""

    config: SessionConfig
    stake: float
    state: BotState = BotState.PROBING
    net_profit: float = 0.0
    cycle: int = 0
    markets: list[str] = field(default_factory=list)
    probing: bool = False
    probe_retry: Any = None
    ledger: ContractLedger = field(default_factory=ContractLedger)
    session: Any = None
    cancelled: bool = False
    timers: set = field(default_factory=set)
    next_cycle: Any = None

    def cancel(self):
        self.cancelled = True
        for handle in list(self.timers):
            handle.cancel()
        self.timers.clear()
        self.next_cycle = None
        self.probe_retry = None


class TradingBot:
    """Martingale cycle engine for Deriv binary options.

    IDLE -> PROBING -> CYCLE_ACTIVE -> EVALUATING -> (CYCLE_ACTIVE | IDLE)

    Runs entirely on one event loop: venue messages and scheduled timers are
    the only inputs, and every callback checks that its RunContext is still
    the live one before touching state.
    """

    def __init__(self, scheduler: Scheduler | None = None, session_factory=None,
                 report=None, base_config: SessionConfig | None = None,
                 candidates: list[str] | None = None):
        self.scheduler = scheduler or Scheduler()
        self._session_factory = session_factory or VenueSession
        self._report = report or default_report
        self.config = base_config or SessionConfig.from_env()
        self.run: RunContext | None = None
        self.prober = MarketProber(
            send=self._send,
            later=self._later,
            report=self._report,
            candidates=candidates,
        )

    @property
    def running(self) -> bool:
        return self.run is not None

    @property
    def state(self) -> BotState:
        return self.run.state if self.run else BotState.IDLE

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def start(self, overrides: dict | None = None) -> bool:
        if self.run is not None:
            return False

        self.config = self.config.merged(overrides)
        ctx = RunContext(config=self.config, stake=self.config.base_stake)
        self.run = ctx

        ctx.session = self._session_factory(
            self.config.api_token,
            lambda msg: self.handle_message(ctx, msg),
            self.scheduler,
            report=self._report,
        )
        ctx.session.connect()
        self._later(ctx, config.WATCHDOG_INTERVAL_SECONDS, self._watchdog)
        self._report("🤖 Bot started")
        return True

    def stop(self) -> bool:
        ctx = self.run
        if ctx is None:
            return False
        self.run = None
        ctx.state = BotState.IDLE
        ctx.cancel()
        ctx.ledger.clear()
        ctx.markets = []
        if ctx.session is not None:
            ctx.session.close()
        self._report("🛑 Bot stopped")
        return True

    # ------------------------------------------------------------------
    # Scheduling helpers
    # ------------------------------------------------------------------

    def _later(self, ctx: RunContext, delay: float, fn, *args):
        """Schedule fn(ctx, *args); dropped if the run is gone by fire time."""
        def fire():
            ctx.timers.discard(handle)
            if ctx.cancelled or ctx is not self.run:
                return
            fn(ctx, *args)

        handle = self.scheduler.call_later(delay, fire)
        ctx.timers.add(handle)
        return handle

    def _send(self, request: dict) -> bool:
        if self.run is None or self.run.session is None:
            return False
        return self.run.session.send(request)

    # ------------------------------------------------------------------
    # Venue messages
    # ------------------------------------------------------------------

    def handle_message(self, ctx: RunContext, msg):
        if ctx.cancelled or ctx is not self.run:
            return

        if isinstance(msg, AuthorizeMessage):
            self._on_authorize(ctx, msg)
        elif isinstance(msg, ProposalMessage):
            self.prober.observe(ctx, msg)
        elif isinstance(msg, BuyMessage):
            self._on_buy(ctx, msg)
        elif isinstance(msg, OpenContractMessage):
            if msg.error:
                self._report(f"ERROR: Contract update failed - {msg.error}")
            elif msg.is_sold:
                self._on_contract_closed(ctx, msg)
        elif isinstance(msg, BalanceMessage):
            if msg.error:
                self._report(f"ERROR: Balance request failed - {msg.error}")
            else:
                self._report(f"💰 Balance: ${msg.balance:.2f}")
        elif isinstance(msg, UnknownMessage):
            self._report(f"Ignoring unhandled Deriv message: {msg.msg_type or 'untyped'}", level="DEBUG")

    def _on_authorize(self, ctx: RunContext, msg: AuthorizeMessage):
        if msg.error:
            self._report(f"ERROR: Authorization failed - {msg.error}")
            self.stop()
            return
        self._report(f"✅ Authorized. Balance: ${msg.balance:.2f}")
        # Re-authorization after a reconnect keeps the markets already found,
        # and a probe that is open or waiting to retry is left to finish.
        if ctx.state != BotState.PROBING or ctx.probing or ctx.probe_retry is not None:
            return
        self.prober.probe(ctx, self._on_markets_ready)

    def _on_markets_ready(self, ctx: RunContext):
        # Only the first probe of a run may start the cycle chain
        if ctx.state != BotState.PROBING or ctx.cycle:
            return
        self._start_cycle(ctx)

    def _on_buy(self, ctx: RunContext, msg: BuyMessage):
        if msg.error:
            self._report(f"ERROR: Buy failed on {msg.symbol} - {msg.error}")
            return
        if msg.contract_id is None:
            return
        ctx.ledger.record(msg.contract_id, self.scheduler.now())
        self._report(f"🎯 Bought contract on {msg.symbol} | ID: {msg.contract_id}")

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _start_cycle(self, ctx: RunContext):
        ctx.next_cycle = None
        ctx.state = BotState.CYCLE_ACTIVE
        ctx.cycle += 1
        self._report(f"♻️ Starting cycle {ctx.cycle}")

        ctx.ledger.clear()
        for idx, symbol in enumerate(ctx.markets):
            self._later(ctx, idx * config.BUY_STAGGER_SECONDS, self._place_buy, symbol)
        self._later(ctx, config.SETTLEMENT_WINDOW_SECONDS, self._settlement_window)

    def _place_buy(self, ctx: RunContext, symbol: str):
        ctx.session.send(buy_request(ctx.config, symbol, ctx.stake))

    def _settlement_window(self, ctx: RunContext):
        # Informational only: stake and profit come from contract settlements
        ctx.session.send(balance_request())
        ctx.state = BotState.EVALUATING

    def _on_contract_closed(self, ctx: RunContext, msg: OpenContractMessage):
        if msg.contract_id is None or not ctx.ledger.remove(msg.contract_id):
            return

        profit = msg.profit
        ctx.net_profit += profit
        self._report(
            f"🏁 Closed {msg.underlying} | P/L: ${profit:.2f} | Net: ${ctx.net_profit:.2f}"
        )

        # Last settlement wins: concurrent closes in one cycle overwrite each other.
        # TODO: decide whether each market should size its next buy from its own result
        if profit < 0:
            ctx.stake = min(ctx.stake * ctx.config.martingale_multiplier, config.MAX_STAKE)
            self._report(f"Martingale applied. New stake: ${ctx.stake:.2f}")
        else:
            ctx.stake = ctx.config.base_stake
            self._report("Stake reset to base.")

        self._check_stop_conditions(ctx)

    def _check_stop_conditions(self, ctx: RunContext):
        cfg = ctx.config
        if ctx.net_profit <= cfg.stop_loss:
            self._report("❌ Stop loss reached. Stopping bot.")
            self.stop()
        elif ctx.net_profit >= cfg.take_profit:
            self._report("🏆 Take profit reached. Stopping bot.")
            self.stop()
        elif ctx.next_cycle is None:
            ctx.next_cycle = self._later(ctx, config.NEXT_CYCLE_DELAY_SECONDS, self._start_cycle)

    # ------------------------------------------------------------------
    # Ledger watchdog
    # ------------------------------------------------------------------

    def _watchdog(self, ctx: RunContext):
        for cid in ctx.ledger.sweep(self.scheduler.now(), config.CONTRACT_TIMEOUT_SECONDS):
            self._report(f"⏰ Contract {cid} timeout removed")
        self._later(ctx, config.WATCHDOG_INTERVAL_SECONDS, self._watchdog)

    # ------------------------------------------------------------------
    # Status snapshot (for dashboard)
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        ctx = self.run
        status = {
            "running": ctx is not None,
            "state": self.state.value,
            "config": self.config.as_public_dict(),
        }
        if ctx is None:
            status.update({
                "cycle_count": 0,
                "net_profit": 0.0,
                "stake": self.config.base_stake,
                "tradable_markets": [],
                "open_contracts": [],
                "venue_connected": False,
            })
            return status
        status.update({
            "cycle_count": ctx.cycle,
            "net_profit": round(ctx.net_profit, 2),
            "stake": round(ctx.stake, 2),
            "tradable_markets": list(ctx.markets),
            "open_contracts": ctx.ledger.snapshot(self.scheduler.now()),
            "venue_connected": bool(getattr(ctx.session, "connected", False)),
        })
        return status
