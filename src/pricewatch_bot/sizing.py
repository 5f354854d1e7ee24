from __future__ import annotations

from decimal import Decimal
import logging
from typing import Protocol

from pricewatch_bot.errors import (
    InsufficientFundsError,
    InsufficientLiquidityError,
    LimitReachedError,
    VenueQueryError,
)
from pricewatch_bot.models import Action, OrderDetail, PendingAction, TradeSize
from pricewatch_bot.pricing import EPSILON, is_exhausted, round_down, token_amount_for_ether
from pricewatch_bot.volume import VolumeAccountant

LOGGER = logging.getLogger("pricewatch_bot")


class VenueReader(Protocol):
    def get_order_detail(self, blockchain: str, order_tx: str) -> OrderDetail: ...

    def get_ether_balance(self, blockchain: str, wallet: str) -> Decimal: ...

    def get_token_balance(self, blockchain: str, token: str, wallet: str) -> Decimal: ...


class TradeSizer:
    """
    Bounds a pending action by, in order:
      1. the hourly ether allowance left for the strategy
      2. the ether value still resting on the counterparty order
      3. the wallet balance (ether for buys, tokens for sells)
    Every conversion to tokens truncates at the token's decimals.
    """

    def __init__(
        self,
        client: VenueReader,
        accountant: VolumeAccountant,
        wallet_address: str,
        epsilon: Decimal = EPSILON,
    ) -> None:
        self.client = client
        self.accountant = accountant
        self.wallet_address = wallet_address
        self.epsilon = epsilon

    def size(self, action: PendingAction) -> TradeSize:
        strategy = action.strategy
        decimals = action.quote.decimals

        allowance = self.accountant.allowed_remaining(
            strategy.token,
            strategy.blockchain,
            strategy.action,
            self.wallet_address,
            strategy.hourly_ether_limit,
        )
        if is_exhausted(allowance, self.epsilon):
            raise LimitReachedError(f"Hourly trade limit reached for {strategy.label} (allowance {allowance})")

        order = self.client.get_order_detail(strategy.blockchain, action.order_tx)
        if order.price <= 0:
            raise VenueQueryError(f"order {action.order_tx} has non-positive price {order.price}")
        capped = min(allowance, order.ether_balance)

        if strategy.action == Action.BUY:
            balance = self.client.get_ether_balance(strategy.blockchain, self.wallet_address)
            if is_exhausted(balance, self.epsilon):
                raise InsufficientFundsError(
                    f"Not enough {strategy.blockchain} in your wallet to complete transaction"
                )
            trade_ether = min(capped, balance)
            token_amount = token_amount_for_ether(trade_ether, order.price, decimals)
        else:
            token_amount = token_amount_for_ether(capped, order.price, decimals)
            balance = self.client.get_token_balance(strategy.blockchain, strategy.token, self.wallet_address)
            if is_exhausted(balance, self.epsilon):
                raise InsufficientFundsError(
                    f"Not enough {strategy.label} in your wallet to complete transaction"
                )
            token_amount = round_down(min(token_amount, balance), decimals)

        if token_amount <= 0:
            raise InsufficientLiquidityError(
                f"Nothing to trade on order {action.order_tx} at {decimals} decimals"
            )

        size = TradeSize(
            strategy=strategy,
            order=order,
            token_amount=token_amount,
            decimals=decimals,
            allowance=allowance,
            wallet_balance=balance,
        )
        LOGGER.debug(
            "sized strategy=%s allowance=%s order_ether=%s balance=%s tokens=%s ether=%s",
            strategy.label,
            allowance,
            order.ether_balance,
            balance,
            token_amount,
            size.ether_amount,
        )
        return size
