from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, TypedDict, cast

from pricewatch_bot.errors import VenueQueryError
from pricewatch_bot.http_utils import get_json
from pricewatch_bot.models import (
    ZERO_ADDRESS,
    Action,
    OrderDetail,
    Quote,
    TradeRecord,
    parse_decimal,
    parse_ts,
)


class TokenInfoPayload(TypedDict, total=False):
    best_buy_price: object
    best_sell_price: object
    best_buy_order_tx: str
    best_sell_order_tx: str
    decimals: object


class TradePayload(TypedDict, total=False):
    buyer: str
    seller: str
    buytokenamount: object
    selltokenamount: object
    timestamp: object


def _positive_or_none(raw: object) -> Decimal | None:
    value = parse_decimal(raw)
    if value is None or value <= 0:
        return None
    return value


def _decimal_or_zero(raw: object) -> Decimal:
    value = parse_decimal(raw)
    return value if value is not None else Decimal(0)


def _require_decimal(payload: dict[str, Any], key: str, what: str) -> Decimal:
    value = parse_decimal(payload.get(key))
    if value is None:
        raise VenueQueryError(f"{what} response is missing a numeric {key!r}")
    return value


def _require_dict(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise VenueQueryError(f"{what} response must be a JSON object")
    return payload


@dataclass
class SaturnClient:
    base_url: str
    timeout_seconds: float = 10.0

    def _get(self, path: str) -> Any:
        return get_json(f"{self.base_url}/{path}", timeout=self.timeout_seconds)

    def get_quote(self, token: str, blockchain: str) -> Quote:
        payload = cast(
            TokenInfoPayload,
            _require_dict(self._get(f"tokens/show/{blockchain}/{token}.json"), "token info"),
        )
        raw_decimals = payload.get("decimals")
        try:
            decimals = int(str(raw_decimals))
        except (TypeError, ValueError) as exc:
            raise VenueQueryError(f"token info for {blockchain}::{token} has no decimals") from exc
        if decimals < 0:
            raise VenueQueryError(f"token info for {blockchain}::{token} has negative decimals")
        return Quote(
            token=token,
            blockchain=blockchain,
            best_buy_price=_positive_or_none(payload.get("best_buy_price")),
            best_sell_price=_positive_or_none(payload.get("best_sell_price")),
            best_buy_order_tx=str(payload.get("best_buy_order_tx") or ""),
            best_sell_order_tx=str(payload.get("best_sell_order_tx") or ""),
            decimals=decimals,
        )

    def get_trade_history(
        self,
        token: str,
        blockchain: str,
        action: Action,
        since_timestamp: int,
    ) -> list[TradeRecord]:
        path = f"trades/by_timestamp/{blockchain}/{ZERO_ADDRESS}/{token}/{int(since_timestamp)}.json"
        payload = _require_dict(self._get(path), "trade history")
        subset = "buys" if action == Action.BUY else "sells"
        rows = payload.get(subset) or []
        if not isinstance(rows, list):
            raise VenueQueryError(f"trade history field {subset!r} must be a JSON array")

        out: list[TradeRecord] = []
        for item in rows:
            if not isinstance(item, dict):
                continue
            row = cast(TradePayload, item)
            try:
                timestamp = parse_ts(row.get("timestamp"))
            except ValueError as exc:
                raise VenueQueryError(f"trade history has bad timestamp {row.get('timestamp')!r}") from exc
            out.append(
                TradeRecord(
                    buyer=str(row.get("buyer") or "").lower(),
                    seller=str(row.get("seller") or "").lower(),
                    buy_token_amount=_decimal_or_zero(row.get("buytokenamount")),
                    sell_token_amount=_decimal_or_zero(row.get("selltokenamount")),
                    timestamp=timestamp,
                )
            )
        return out

    def get_order_detail(self, blockchain: str, order_tx: str) -> OrderDetail:
        payload = _require_dict(self._get(f"orders/by_tx/{blockchain}/{order_tx}.json"), "order")
        raw_order_id = payload.get("order_id")
        try:
            order_id = int(str(raw_order_id)) if raw_order_id not in (None, "") else None
        except ValueError:
            order_id = None
        return OrderDetail(
            order_tx=order_tx,
            price=_require_decimal(payload, "price", "order"),
            token_balance=_require_decimal(payload, "balance", "order"),
            contract=str(payload.get("contract") or ""),
            order_id=order_id,
        )

    def _wallet_balance(self, blockchain: str, wallet: str, token: str) -> Decimal:
        payload = _require_dict(self._get(f"tokens/balances/{blockchain}/{wallet}/{token}.json"), "balance")
        balances = _require_dict(payload.get("balances"), "balance")
        return _require_decimal(balances, "walletbalance", "balance")

    def get_ether_balance(self, blockchain: str, wallet: str) -> Decimal:
        return self._wallet_balance(blockchain, wallet, ZERO_ADDRESS)

    def get_token_balance(self, blockchain: str, token: str, wallet: str) -> Decimal:
        return self._wallet_balance(blockchain, wallet, token)
