"""Tests for the open-price continuity pass."""

from datetime import timedelta
from decimal import Decimal

from candlefix.models.candle import PRICE_TOLERANCE
from candlefix.services.continuity_repairer import repair
from tests.helpers import T0, continuous_series, make_candle

HOUR = timedelta(hours=1)


def test_open_is_pulled_to_previous_close_and_high_widens():
    """Candle 2 opens at 50 after a 48 close, with high 47: open and high become 48."""
    first = make_candle(created_at=T0, open="45", high="49", low="44", close="48")
    second = make_candle(created_at=T0 + HOUR, open="50", high="47", low="46", close="46.5")

    result = repair([first, second])

    fixed = result.series[1]
    assert fixed.open == Decimal("48")
    assert fixed.high == Decimal("48")
    assert fixed.low == Decimal("46")
    assert fixed.close == Decimal("46.5")
    assert len(result.corrections) == 1
    assert result.corrections[0].previous_open == Decimal("50")


def test_low_widens_when_open_drops_below():
    first = make_candle(created_at=T0, close="40", low="39", high="41", open="40")
    second = make_candle(created_at=T0 + HOUR, open="45", high="47", low="44", close="46")

    fixed = repair([first, second]).series[1]

    assert fixed.open == Decimal("40")
    assert fixed.low == Decimal("40")
    assert fixed.high == Decimal("47")


def test_first_candle_is_never_corrected():
    lone = make_candle(open="1", high="2", low="0.5", close="1.5")
    result = repair([lone])

    assert result.series == [lone]
    assert result.corrections == []


def test_empty_series():
    result = repair([])
    assert result.series == []
    assert result.corrections == []


def test_corrections_propagate_through_corrected_predecessor():
    """Only opens change, so each expected open is the predecessor's close."""
    candles = [
        make_candle(created_at=T0, open="10", high="12", low="9", close="11"),
        make_candle(created_at=T0 + HOUR, open="20", high="22", low="19", close="21"),
        make_candle(created_at=T0 + 2 * HOUR, open="30", high="32", low="29", close="31"),
    ]

    result = repair(candles)

    assert [c.open for c in result.series] == [Decimal("10"), Decimal("11"), Decimal("21")]
    assert result.series[1].low == Decimal("11")
    assert result.series[2].low == Decimal("21")
    assert len(result.corrections) == 2


def test_within_tolerance_is_left_alone():
    first = make_candle(created_at=T0, close="100")
    second = make_candle(created_at=T0 + HOUR, open=str(Decimal("100") + PRICE_TOLERANCE))

    result = repair([first, second])

    assert result.corrections == []
    assert result.series[1] is second


def test_just_beyond_tolerance_is_fixed():
    first = make_candle(created_at=T0, close="100")
    second = make_candle(created_at=T0 + HOUR, open="100.0000000002")

    result = repair([first, second])

    assert result.series[1].open == Decimal("100")


def test_custom_tolerance():
    first = make_candle(created_at=T0, close="100")
    second = make_candle(created_at=T0 + HOUR, open="100.004")

    assert repair([first, second], tolerance=Decimal("0.01")).corrections == []
    assert len(repair([first, second]).corrections) == 1


def test_missing_high_low_take_corrected_open():
    first = make_candle(created_at=T0, close="100")
    second = make_candle(created_at=T0 + HOUR, open="90", high=None, low=None, close="95")

    fixed = repair([first, second]).series[1]

    assert fixed.high == Decimal("100")
    assert fixed.low == Decimal("100")


def test_input_candles_are_not_mutated():
    first = make_candle(created_at=T0, close="48")
    second = make_candle(created_at=T0 + HOUR, open="50", high="47")

    repair([first, second])

    assert second.open == Decimal("50")
    assert second.high == Decimal("47")


def test_continuous_series_is_a_noop():
    series = continuous_series(10)
    result = repair(series)
    assert result.corrections == []
    assert result.series == series


def test_postconditions_hold_on_scrambled_series():
    opens = ["10", "15", "9", "30", "12.5", "12.5", "7"]
    closes = ["12", "9", "31", "12.5", "14", "6", "8"]
    candles = []
    for i, (o, c) in enumerate(zip(opens, closes)):
        hi = max(Decimal(o), Decimal(c)) + 1
        lo = min(Decimal(o), Decimal(c)) - 1
        candles.append(make_candle(created_at=T0 + i * HOUR, open=o, high=str(hi), low=str(lo), close=c))

    series = repair(candles).series

    for prev, cur in zip(series, series[1:]):
        assert abs(cur.open - prev.close) <= PRICE_TOLERANCE
    for candle in series:
        assert candle.is_well_formed()
    assert [c.close for c in series] == [Decimal(c) for c in closes]
