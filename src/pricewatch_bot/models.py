from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO_ADDRESS = "0x" + ("0" * 40)


class Action(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


class ActionOutcome(str, Enum):
    FILLED = "filled"
    LIMIT_REACHED = "limit_reached"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text), tz=timezone.utc)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_decimal(raw: Any, default: Decimal | None = None) -> Decimal | None:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, float):
        # Never trust binary floats for money; go through their shortest repr.
        raw = repr(raw)
    text = str(raw).strip()
    if text == "":
        return default
    try:
        value = Decimal(text)
    except InvalidOperation:
        return default
    if not value.is_finite():
        return default
    return value


@dataclass(frozen=True)
class StrategyConfig:
    token: str
    blockchain: str
    action: Action
    price_threshold: Decimal
    hourly_ether_limit: Decimal

    @property
    def label(self) -> str:
        return f"{self.blockchain}::{self.token}"


@dataclass(frozen=True)
class Quote:
    token: str
    blockchain: str
    best_buy_price: Decimal | None
    best_sell_price: Decimal | None
    best_buy_order_tx: str
    best_sell_order_tx: str
    decimals: int


@dataclass(frozen=True)
class OrderDetail:
    order_tx: str
    price: Decimal
    token_balance: Decimal
    contract: str = ""
    order_id: int | None = None

    @property
    def ether_balance(self) -> Decimal:
        return self.price * self.token_balance


@dataclass(frozen=True)
class TradeRecord:
    buyer: str
    seller: str
    buy_token_amount: Decimal
    sell_token_amount: Decimal
    timestamp: datetime | None = None


@dataclass
class PendingAction:
    strategy: StrategyConfig
    quote: Quote
    order_tx: str
    created_at: datetime = field(default_factory=utc_now)
    _consumed: bool = field(default=False, repr=False)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> None:
        if self._consumed:
            raise RuntimeError(f"pending action for {self.strategy.label} already executed")
        self._consumed = True


@dataclass(frozen=True)
class TradeSize:
    strategy: StrategyConfig
    order: OrderDetail
    token_amount: Decimal
    decimals: int
    allowance: Decimal
    wallet_balance: Decimal

    @property
    def ether_amount(self) -> Decimal:
        return self.token_amount * self.order.price


@dataclass(frozen=True)
class TransactionHandle:
    tx_hash: str
    blockchain: str
    submitted_at: datetime = field(default_factory=utc_now)


@dataclass
class ActionResult:
    strategy: StrategyConfig
    outcome: ActionOutcome
    order_tx: str
    token_amount: Decimal = Decimal(0)
    ether_amount: Decimal = Decimal(0)
    tx_hash: str = ""
    reason: str = ""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime = field(default_factory=utc_now)

    @property
    def skipped(self) -> bool:
        return self.outcome in {
            ActionOutcome.LIMIT_REACHED,
            ActionOutcome.INSUFFICIENT_FUNDS,
            ActionOutcome.INSUFFICIENT_LIQUIDITY,
        }

    @property
    def filled(self) -> bool:
        return self.outcome == ActionOutcome.FILLED
