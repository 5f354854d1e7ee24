from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Protocol, Sequence

from pricewatch_bot.errors import InvalidStrategyError, VenueQueryError
from pricewatch_bot.models import Action, PendingAction, Quote, StrategyConfig

LOGGER = logging.getLogger("pricewatch_bot")


class QuoteSource(Protocol):
    def get_quote(self, token: str, blockchain: str) -> Quote: ...


def opportunity_order(strategy: StrategyConfig, quote: Quote) -> str | None:
    """Return the order tx to fill when the quote crosses the strategy threshold, else None."""
    if strategy.action == Action.BUY:
        ask = quote.best_sell_price
        if ask is not None and ask <= strategy.price_threshold:
            return quote.best_sell_order_tx
        return None
    if strategy.action == Action.SELL:
        bid = quote.best_buy_price
        if bid is not None and bid >= strategy.price_threshold:
            return quote.best_buy_order_tx
        return None
    raise InvalidStrategyError(f"Unknown action {strategy.action!r}")


class OpportunityDetector:
    def __init__(self, client: QuoteSource, max_workers: int = 8) -> None:
        self.client = client
        self.max_workers = max(1, int(max_workers))

    def detect(self, strategy: StrategyConfig) -> PendingAction | None:
        quote = self.client.get_quote(strategy.token, strategy.blockchain)
        order_tx = opportunity_order(strategy, quote)
        if order_tx is None:
            return None
        price = quote.best_sell_price if strategy.action == Action.BUY else quote.best_buy_price
        if not order_tx:
            LOGGER.warning(
                "opportunity_without_order strategy=%s action=%s price=%s",
                strategy.label,
                strategy.action.value,
                price,
            )
            return None
        LOGGER.info(
            "%s opportunity for %s @ %s (threshold %s) order=%s",
            strategy.action.value.capitalize(),
            strategy.label,
            price,
            strategy.price_threshold,
            order_tx,
        )
        return PendingAction(strategy=strategy, quote=quote, order_tx=order_tx)

    def _detect_isolated(self, strategy: StrategyConfig) -> PendingAction | None:
        try:
            return self.detect(strategy)
        except VenueQueryError as exc:
            LOGGER.error("quote_failed strategy=%s error=%s", strategy.label, exc)
        except InvalidStrategyError as exc:
            LOGGER.error("invalid_strategy strategy=%s error=%s", strategy.label, exc)
        except Exception:
            LOGGER.exception("detect_failed strategy=%s", strategy.label)
        return None

    def detect_all(self, strategies: Sequence[StrategyConfig]) -> list[PendingAction]:
        if not strategies:
            return []
        workers = min(len(strategies), self.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="detect") as pool:
            # map() yields in submission order, i.e. configuration order.
            results = list(pool.map(self._detect_isolated, strategies))
        return [action for action in results if action is not None]
