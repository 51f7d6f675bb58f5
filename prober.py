import config
from messages import ProposalMessage, proposal_request


class MarketProber:
    """Finds which candidate markets quote the configured contract.

    One trial proposal is sent per candidate; every market that answers
    without an error inside the probe window becomes tradable for the run.
    """

    def __init__(self, send, later, report, candidates: list[str] | None = None,
                 window: float = config.PROBE_WINDOW_SECONDS,
                 retry_delay: float = config.PROBE_RETRY_SECONDS):
        self._send = send
        self._later = later  # later(ctx, delay, fn, *args): run-scoped timer
        self._report = report
        self.candidates = list(candidates if candidates is not None else config.VOL_MARKETS)
        self.window = window
        self.retry_delay = retry_delay

    def probe(self, ctx, on_ready):
        ctx.probe_retry = None
        ctx.markets = []
        ctx.probing = True
        cfg = ctx.config
        for symbol in self.candidates:
            self._send(proposal_request(cfg, symbol, cfg.base_stake))
        self._later(ctx, self.window, self._finalize, on_ready)

    def observe(self, ctx, msg: ProposalMessage) -> bool:
        """Record a proposal reply; True if it added a new tradable market."""
        if not ctx.probing or msg.error:
            return False
        if msg.symbol not in self.candidates or msg.symbol in ctx.markets:
            return False
        ctx.markets.append(msg.symbol)
        self._report(f"🟢 Market tradable: {msg.symbol}")
        return True

    def _finalize(self, ctx, on_ready):
        ctx.probing = False
        if not ctx.markets:
            self._report("⚠️ No tradable markets found, retrying...")
            ctx.probe_retry = self._later(ctx, self.retry_delay, self.probe, on_ready)
            return
        on_ready(ctx)
