"""Open-price continuity repair for one (symbol, interval) series."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from candlefix.models.candle import PRICE_TOLERANCE, Candle


@dataclass
class OpenCorrection:
    """A candle whose open was rewritten, with the value it had before."""

    candle: Candle
    previous_open: Decimal


@dataclass
class ContinuityResult:
    series: list[Candle]
    corrections: list[OpenCorrection] = field(default_factory=list)


def repair(sorted_candles: list[Candle], tolerance: Decimal = PRICE_TOLERANCE) -> ContinuityResult:
    """Make every candle's open equal its predecessor's close.

    ``sorted_candles`` must be duplicate-free and ascending by bucket start.
    The first candle is never touched. Each comparison uses the predecessor
    as already corrected in this pass, so one left-to-right scan is enough.
    When an open moves, high/low are widened to keep low <= open <= high.
    Input candles are not mutated; corrected rows are copies.
    """
    series = list(sorted_candles)
    corrections: list[OpenCorrection] = []

    for i in range(1, len(series)):
        expected_open = series[i - 1].close
        current = series[i]

        if abs(current.open - expected_open) <= tolerance:
            continue

        high = expected_open if current.high is None else max(current.high, expected_open)
        low = expected_open if current.low is None else min(current.low, expected_open)
        corrected = current.copy(open=expected_open, high=high, low=low)

        series[i] = corrected
        corrections.append(OpenCorrection(candle=corrected, previous_open=current.open))

    return ContinuityResult(series=series, corrections=corrections)
