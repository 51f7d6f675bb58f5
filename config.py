import math
import os
from dataclasses import asdict, dataclass, replace

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    """Read a numeric env var; unparsable, zero or non-finite values use the default."""
    try:
        value = float(os.getenv(name, ""))
    except ValueError:
        return default
    if not math.isfinite(value) or value == 0:
        return default
    return value


def _env_int(name: str, default: int) -> int:
    value = _env_float(name, default)
    return int(value) if value == int(value) else default


def _env_number(name: str, default: int) -> int | float:
    value = _env_float(name, default)
    return int(value) if value == int(value) else value


# --- Deriv connection ---
DERIV_APP_ID = _env_int("DERIV_APP_ID", 1089)
DERIV_WS_URL = os.getenv(
    "DERIV_WS_URL", f"wss://ws.binaryws.com/websockets/v3?app_id={DERIV_APP_ID}"
)

# --- HTTP / control channel ---
PORT = _env_int("PORT", 3000)

# Candidate markets probed at the start of every run
VOL_MARKETS = [
    s.strip() for s in os.getenv(
        "VOL_MARKETS",
        "R_10,R_25,R_50,R_75,R_100,R_10_1s,R_25_1s,R_50_1s,R_75_1s,R_100_1s",
    ).split(",") if s.strip()
]

# --- Timing (seconds) ---
PROBE_WINDOW_SECONDS = 5
PROBE_RETRY_SECONDS = 10
BUY_STAGGER_SECONDS = 0.2
SETTLEMENT_WINDOW_SECONDS = 10
NEXT_CYCLE_DELAY_SECONDS = 10
WATCHDOG_INTERVAL_SECONDS = 5
CONTRACT_TIMEOUT_SECONDS = 15
RECONNECT_DELAY_SECONDS = 5

# Martingale never grows the stake past this
MAX_STAKE = 10000.0

CURRENCY = "USD"


@dataclass(frozen=True)
class SessionConfig:
    """Trading parameters for one bot run. Replaced wholesale on every start."""

    api_token: str = ""
    base_stake: float = 100.0
    martingale_multiplier: float = 1.5
    stop_loss: float = -2000.0
    take_profit: float = 500.0
    contract_type: str = "DIGITOVER"
    barrier: int | float = 3
    duration: int = 2
    duration_unit: str = "t"
    currency: str = CURRENCY
    basis: str = "stake"

    @classmethod
    def from_env(cls) -> "SessionConfig":
        return cls(
            api_token=os.getenv("API_TOKEN", ""),
            base_stake=_env_float("BASE_STAKE", 100.0),
            martingale_multiplier=_env_float("MARTINGALE_MULTIPLIER", 1.5),
            stop_loss=_env_float("STOP_LOSS", -2000.0),
            take_profit=_env_float("TAKE_PROFIT", 500.0),
            contract_type=os.getenv("CONTRACT_TYPE") or "DIGITOVER",
            barrier=_env_number("BARRIER", 3),
            duration=_env_int("DURATION", 2),
            duration_unit=os.getenv("DURATION_UNIT") or "t",
        )

    def merged(self, overrides: dict | None) -> "SessionConfig":
        """Return a copy with control-channel overrides applied.

        Missing or falsy overrides are skipped, and a value that does not
        coerce to its field's type keeps the current value.
        """
        changes = {}
        for key, value in (overrides or {}).items():
            spec = OVERRIDE_FIELDS.get(key)
            if spec is None or not value:
                continue
            coerced = _coerce(value, spec["type"])
            if coerced is None:
                continue
            changes[spec["field"]] = coerced
        return replace(self, **changes) if changes else self

    def as_public_dict(self) -> dict:
        data = asdict(self)
        token = data.pop("api_token")
        data["api_token"] = f"***{token[-4:]}" if len(token) > 4 else ("***" if token else "")
        return data


# Control-channel keys accepted by the start command
OVERRIDE_FIELDS = {
    "apiToken":             {"field": "api_token",             "type": "str"},
    "baseStake":            {"field": "base_stake",            "type": "float"},
    "martingaleMultiplier": {"field": "martingale_multiplier", "type": "float"},
    "stopLoss":             {"field": "stop_loss",             "type": "float"},
    "takeProfit":           {"field": "take_profit",           "type": "float"},
    "contractType":         {"field": "contract_type",         "type": "str"},
    "barrier":              {"field": "barrier",               "type": "number"},
    "duration":             {"field": "duration",              "type": "int"},
    "durationUnit":         {"field": "duration_unit",         "type": "str"},
}


def _coerce(value, kind: str):
    if kind == "str":
        return value if isinstance(value, str) else None
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(number):
        return None
    if kind == "int":
        return int(number) if number == int(number) else None
    if kind == "number":
        # Digit barriers go out as 5, not 5.0
        return int(number) if number == int(number) else number
    return number
