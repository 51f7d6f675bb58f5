"""
Deriv WebSocket message variants.

Inbound frames are parsed once into one of the dataclasses below, keyed by
``msg_type``. Anything that is not valid JSON becomes ``MalformedMessage``;
valid JSON of a type the bot does not act on becomes ``UnknownMessage``.
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class AuthorizeMessage:
    balance: float = 0.0
    currency: str = ""
    error: str | None = None


@dataclass
class ProposalMessage:
    symbol: str = "unknown"
    ask_price: float | None = None
    error: str | None = None


@dataclass
class BuyMessage:
    contract_id: str | None = None
    symbol: str = "unknown"
    buy_price: float | None = None
    error: str | None = None


@dataclass
class OpenContractMessage:
    contract_id: str | None = None
    underlying: str = "unknown"
    is_sold: bool = False
    profit: float = 0.0
    error: str | None = None


@dataclass
class BalanceMessage:
    balance: float = 0.0
    currency: str = ""
    error: str | None = None


@dataclass
class UnknownMessage:
    msg_type: str = ""
    payload: dict = field(default_factory=dict)


@dataclass
class MalformedMessage:
    raw: Any = None
    reason: str = ""


VenueMessage = (
    AuthorizeMessage | ProposalMessage | BuyMessage | OpenContractMessage
    | BalanceMessage | UnknownMessage | MalformedMessage
)


def _error_text(data: dict) -> str | None:
    err = data.get("error")
    if not err:
        return None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("code") or "unknown error")
    return str(err)


def _contract_id(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _profit(value) -> float:
    # Missing or null profit counts as flat
    return float(value or 0)


def _parse_authorize(data: dict) -> AuthorizeMessage:
    error = _error_text(data)
    if error:
        return AuthorizeMessage(error=error)
    auth = data["authorize"]
    return AuthorizeMessage(
        balance=float(auth.get("balance", 0)),
        currency=auth.get("currency", ""),
    )


def _parse_proposal(data: dict) -> ProposalMessage:
    echo = data.get("echo_req") or {}
    symbol = echo.get("symbol") or "unknown"
    error = _error_text(data)
    proposal = data.get("proposal")
    if error or not proposal:
        return ProposalMessage(symbol=symbol, error=error or "empty proposal")
    ask = proposal.get("ask_price")
    return ProposalMessage(
        symbol=symbol,
        ask_price=float(ask) if ask is not None else None,
    )


def _parse_buy(data: dict) -> BuyMessage:
    echo = data.get("echo_req") or {}
    params = echo.get("parameters") or {}
    symbol = params.get("symbol") or "unknown"
    error = _error_text(data)
    if error:
        return BuyMessage(symbol=symbol, error=error)
    buy = data.get("buy") or {}
    price = buy.get("buy_price")
    return BuyMessage(
        contract_id=_contract_id(buy.get("contract_id")),
        symbol=symbol,
        buy_price=float(price) if price is not None else None,
    )


def _parse_open_contract(data: dict) -> OpenContractMessage:
    error = _error_text(data)
    if error:
        return OpenContractMessage(error=error)
    contract = data.get("proposal_open_contract") or {}
    return OpenContractMessage(
        contract_id=_contract_id(contract.get("contract_id")),
        underlying=contract.get("underlying") or "unknown",
        is_sold=bool(contract.get("is_sold")),
        profit=_profit(contract.get("profit")),
    )


def _parse_balance(data: dict) -> BalanceMessage:
    error = _error_text(data)
    if error:
        return BalanceMessage(error=error)
    bal = data["balance"]
    return BalanceMessage(
        balance=float(bal.get("balance", 0)),
        currency=bal.get("currency", ""),
    )


_PARSERS = {
    "authorize": _parse_authorize,
    "proposal": _parse_proposal,
    "buy": _parse_buy,
    "proposal_open_contract": _parse_open_contract,
    "balance": _parse_balance,
}


def parse_message(raw: str | bytes) -> VenueMessage:
    """Turn one raw frame into a typed message. Never raises."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
        return MalformedMessage(raw=raw, reason=f"invalid JSON: {exc}")
    if not isinstance(data, dict):
        return MalformedMessage(raw=raw, reason="not a JSON object")

    msg_type = data.get("msg_type", "")
    parser = _PARSERS.get(msg_type)
    if parser is None:
        return UnknownMessage(msg_type=str(msg_type), payload=data)
    try:
        return parser(data)
    except (KeyError, ValueError, TypeError, AttributeError) as exc:
        return MalformedMessage(raw=raw, reason=f"bad {msg_type} payload: {exc!r}")


# ------------------------------------------------------------------
# Outbound requests
# ------------------------------------------------------------------

def authorize_request(token: str) -> dict:
    return {"authorize": token}


def contract_parameters(cfg, symbol: str, amount: float) -> dict:
    return {
        "amount": amount,
        "basis": cfg.basis,
        "contract_type": cfg.contract_type,
        "currency": cfg.currency,
        "duration": cfg.duration,
        "duration_unit": cfg.duration_unit,
        "symbol": symbol,
        "barrier": cfg.barrier,
    }


def proposal_request(cfg, symbol: str, amount: float) -> dict:
    return {"proposal": 1, **contract_parameters(cfg, symbol, amount)}


def buy_request(cfg, symbol: str, amount: float) -> dict:
    # subscribe=1 makes the venue push proposal_open_contract updates until sale
    return {
        "buy": 1,
        "price": amount,
        "parameters": contract_parameters(cfg, symbol, amount),
        "subscribe": 1,
    }


def balance_request() -> dict:
    return {"balance": 1}
