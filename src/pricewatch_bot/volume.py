from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Callable, Iterable, Protocol

from pricewatch_bot.models import Action, TradeRecord, utc_now

LOGGER = logging.getLogger("pricewatch_bot")

TRAILING_WINDOW = timedelta(hours=1)


class TradeHistorySource(Protocol):
    def get_trade_history(
        self, token: str, blockchain: str, action: Action, since_timestamp: int
    ) -> list[TradeRecord]: ...


def ether_volume(
    trades: Iterable[TradeRecord],
    wallet: str,
    action: Action,
    since: datetime | None = None,
) -> Decimal:
    """
    Ether-denominated volume the wallet took part in, on either side of the trade.
    Buys count `buy_token_amount`, sells count `sell_token_amount`. Records with a
    timestamp older than `since` are ignored; records without one are counted.
    """
    owner = wallet.lower()
    total = Decimal(0)
    for trade in trades:
        if trade.buyer.lower() != owner and trade.seller.lower() != owner:
            continue
        if since is not None and trade.timestamp is not None and trade.timestamp < since:
            continue
        total += trade.buy_token_amount if action == Action.BUY else trade.sell_token_amount
    return total


class VolumeAccountant:
    def __init__(
        self,
        client: TradeHistorySource,
        now_fn: Callable[[], datetime] = utc_now,
        window: timedelta = TRAILING_WINDOW,
    ) -> None:
        self.client = client
        self.now_fn = now_fn
        self.window = window

    def allowed_remaining(
        self,
        token: str,
        blockchain: str,
        action: Action,
        wallet: str,
        limit: Decimal,
    ) -> Decimal:
        since = self.now_fn() - self.window
        trades = self.client.get_trade_history(token, blockchain, action, int(since.timestamp()))
        consumed = ether_volume(trades, wallet, action, since=since)
        LOGGER.debug(
            "volume chain=%s token=%s action=%s trades=%s consumed=%s limit=%s",
            blockchain,
            token,
            action.value,
            len(trades),
            consumed,
            limit,
        )
        return limit - consumed
