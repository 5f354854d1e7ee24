from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pricewatch_bot.config import load_config  # noqa: E402
from pricewatch_bot.errors import SubmissionError, VenueQueryError  # noqa: E402
from pricewatch_bot.execution import BaseExecutor  # noqa: E402
from pricewatch_bot.models import (  # noqa: E402
    Action,
    ConfirmationStatus,
    OrderDetail,
    PendingAction,
    Quote,
    StrategyConfig,
    TradeRecord,
    TradeSize,
    TransactionHandle,
)
from pricewatch_bot.wallet import TradingWallet  # noqa: E402

WALLET = "0x00000000000000000000000000000000000000aa"
TOKEN = "0x00000000000000000000000000000000000000bb"
FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_config(**kwargs):
    cfg = load_config()
    defaults = {
        "database_path": "",
        "poll_delay_seconds": 0.0,
        "private_key": "",
        "mnemonic": "",
        "strategy_file": "",
    }
    defaults.update(kwargs)
    return replace(cfg, **defaults)


def test_wallet() -> TradingWallet:
    return TradingWallet(address=WALLET, private_key="0x" + ("11" * 32))


# Builders, not test cases.
test_config.__test__ = False  # type: ignore[attr-defined]
test_wallet.__test__ = False  # type: ignore[attr-defined]


def make_strategy(
    action: Action = Action.BUY,
    price: str = "0.002",
    limit: str = "10",
    token: str = TOKEN,
    blockchain: str = "ETC",
) -> StrategyConfig:
    return StrategyConfig(
        token=token,
        blockchain=blockchain,
        action=action,
        price_threshold=Decimal(price),
        hourly_ether_limit=Decimal(limit),
    )


def make_quote(
    best_buy_price: str | None = "0.0015",
    best_sell_price: str | None = "0.0018",
    decimals: int = 18,
    token: str = TOKEN,
    blockchain: str = "ETC",
) -> Quote:
    return Quote(
        token=token,
        blockchain=blockchain,
        best_buy_price=Decimal(best_buy_price) if best_buy_price is not None else None,
        best_sell_price=Decimal(best_sell_price) if best_sell_price is not None else None,
        best_buy_order_tx="0xbuyorder",
        best_sell_order_tx="0xsellorder",
        decimals=decimals,
    )


def make_pending(strategy: StrategyConfig, quote: Quote | None = None) -> PendingAction:
    quote = quote or make_quote(token=strategy.token, blockchain=strategy.blockchain)
    order_tx = quote.best_sell_order_tx if strategy.action == Action.BUY else quote.best_buy_order_tx
    return PendingAction(strategy=strategy, quote=quote, order_tx=order_tx)


class FakeVenue:
    """In-memory Saturn API stand-in that records every call it receives."""

    def __init__(
        self,
        quotes: dict[str, Quote] | None = None,
        trades: list[TradeRecord] | None = None,
        order: OrderDetail | None = None,
        ether_balance: str = "2",
        token_balance: str = "1000",
    ) -> None:
        self.quotes = quotes or {}
        self.trades = trades or []
        self.order = order or OrderDetail(order_tx="0xsellorder", price=Decimal("0.0018"), token_balance=Decimal("2800"))
        self.ether_balance = Decimal(ether_balance)
        self.token_balance = Decimal(token_balance)
        self.failing: set[str] = set()
        self.calls: list[tuple[str, tuple]] = []

    def _check(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.failing:
            raise VenueQueryError(f"{name} unavailable")

    def get_quote(self, token: str, blockchain: str) -> Quote:
        self._check("get_quote", token, blockchain)
        quote = self.quotes.get(token)
        if quote is None:
            raise VenueQueryError(f"no quote for {token}")
        return quote

    def get_trade_history(self, token: str, blockchain: str, action: Action, since_timestamp: int) -> list[TradeRecord]:
        self._check("get_trade_history", token, blockchain, action, since_timestamp)
        return list(self.trades)

    def get_order_detail(self, blockchain: str, order_tx: str) -> OrderDetail:
        self._check("get_order_detail", blockchain, order_tx)
        return self.order

    def get_ether_balance(self, blockchain: str, wallet: str) -> Decimal:
        self._check("get_ether_balance", blockchain, wallet)
        return self.ether_balance

    def get_token_balance(self, blockchain: str, token: str, wallet: str) -> Decimal:
        self._check("get_token_balance", blockchain, token, wallet)
        return self.token_balance

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


class RecordingExecutor(BaseExecutor):
    """Executor stub that appends submit/confirm events to a shared log in call order."""

    def __init__(self, events: list[tuple[str, str]] | None = None) -> None:
        self.events = events if events is not None else []
        self.submitted: list[TradeSize] = []
        self.fail_submit_for: set[str] = set()
        self.revert_for: set[str] = set()
        self._pending: dict[str, str] = {}

    def submit_trade(self, trade: TradeSize) -> TransactionHandle:
        key = trade.strategy.token
        # Submitting while a previous trade is still unconfirmed would be a serialization bug.
        if self._pending:
            raise AssertionError(f"submit for {key} while {sorted(self._pending)} unconfirmed")
        self.events.append(("submit", key))
        if key in self.fail_submit_for:
            raise SubmissionError(f"rejected {key}")
        self.submitted.append(trade)
        tx_hash = f"0xtx{len(self.submitted)}"
        self._pending[tx_hash] = key
        return TransactionHandle(tx_hash=tx_hash, blockchain=trade.strategy.blockchain)

    def await_confirmation(self, handle: TransactionHandle) -> ConfirmationStatus:
        key = self._pending.pop(handle.tx_hash)
        self.events.append(("confirm", key))
        if key in self.revert_for:
            return ConfirmationStatus.REVERTED
        return ConfirmationStatus.CONFIRMED
