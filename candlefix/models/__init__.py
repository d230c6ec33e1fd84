"""Domain models."""

from candlefix.models.candle import PRICE_TOLERANCE, Candle, CandleDataError, CandleKey

__all__ = [
    "PRICE_TOLERANCE",
    "Candle",
    "CandleDataError",
    "CandleKey",
]
