from __future__ import annotations

from pricewatch_bot.models import ActionOutcome


class PricewatchError(RuntimeError):
    pass


class ConfigurationError(PricewatchError):
    pass


class InvalidStrategyError(ConfigurationError):
    pass


class VenueQueryError(PricewatchError):
    pass


class SubmissionError(PricewatchError):
    pass


class ConfirmationFailure(PricewatchError):
    pass


class TradeSkipped(PricewatchError):
    """A pending action ended without a trade for a non-error reason."""

    outcome = ActionOutcome.FAILED


class LimitReachedError(TradeSkipped):
    outcome = ActionOutcome.LIMIT_REACHED


class InsufficientFundsError(TradeSkipped):
    outcome = ActionOutcome.INSUFFICIENT_FUNDS


class InsufficientLiquidityError(TradeSkipped):
    outcome = ActionOutcome.INSUFFICIENT_LIQUIDITY
