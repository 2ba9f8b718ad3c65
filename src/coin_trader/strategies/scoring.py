"""
Pure scoring helpers shared by the indicator strategies.

Every score is a float in [-1, 1]: positive favours buying, negative favours
selling. Nothing here touches the database.
"""
from __future__ import annotations

import math
from typing import Iterable, Sequence


def normalize_with_tanh(value: float, factor: float = 1.0) -> float:
    """Squash an unbounded value into (-1, 1)."""
    return math.tanh(value * factor)


def clamp_score(value: float, decimals: int = 2) -> float:
    """Clamp to [-1, 1] and round."""
    return round(max(-1.0, min(1.0, value)), decimals)


def apply_weight(score: float, weight: float) -> float:
    return round(score * weight, 2)


def combine_weighted(scores: Sequence[float]) -> float:
    """Mean of already-weighted scores, clamped since weights may exceed 1."""
    if not scores:
        return 0.0
    return clamp_score(sum(scores) / len(scores))


def bounded_ratio(numerator: float, denominator: float) -> float:
    """|numerator| / |denominator| capped at 1; a zero denominator counts as saturated."""
    if denominator == 0:
        return 1.0 if numerator != 0 else 0.0
    return min(1.0, abs(numerator) / abs(denominator))


# =============================================================================
# RSI
# =============================================================================


def rsi_base_score(rsi: float, oversold: float, overbought: float) -> float:
    if rsi <= oversold:
        return normalize_with_tanh((oversold - rsi) / 10)
    if rsi >= overbought:
        return -normalize_with_tanh((rsi - overbought) / 10)
    return normalize_with_tanh((rsi - 50) / 20)


def rsi_momentum_score(current: float, previous: Iterable[float], weight: float) -> float:
    deltas = [current - prev for prev in previous]
    if not deltas:
        return 0.0
    return weight * normalize_with_tanh(sum(deltas) / len(deltas) / 10)


# =============================================================================
# MACD
# =============================================================================


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def macd_crossover_score(
    current_macd: float,
    current_signal: float,
    prev_macd: float,
    prev_signal: float,
    max_weight: float = 0.4,
) -> float:
    """Non-zero only when MACD crossed its signal line since the previous bar."""
    current_cross = current_macd - current_signal
    prev_cross = prev_macd - prev_signal
    if _sign(current_cross) == _sign(prev_cross):
        return 0.0
    strength = bounded_ratio(current_cross - prev_cross, current_signal)
    return _sign(current_cross) * max_weight * strength


def macd_histogram_score(histogram: float, prev_histogram: float, max_weight: float = 0.3) -> float:
    change = histogram - prev_histogram
    return _sign(change) * max_weight * bounded_ratio(change, prev_histogram)


def macd_zero_line_score(
    current_macd: float,
    prev_macd: float,
    cross_weight: float = 0.3,
    approach_weight: float = 0.15,
) -> float:
    """Full weight for crossing zero, a smaller one for staying close to it."""
    strength = bounded_ratio(current_macd, prev_macd)
    if _sign(current_macd) != _sign(prev_macd):
        return _sign(current_macd) * cross_weight * strength
    return _sign(current_macd) * approach_weight * (1 - strength)


def macd_trend_strength(histogram: float, reference: float) -> float:
    """1 + tanh(|histogram| / |reference|), in [1, 2)."""
    if reference == 0:
        return 1.0
    return 1 + normalize_with_tanh(abs(histogram) / abs(reference))


# =============================================================================
# BOLLINGER
# =============================================================================


def bollinger_score(close: float, upper: float, middle: float, lower: float) -> float:
    """Mean reversion: above the middle band sells, below buys; near a band saturates."""
    if close >= upper * 0.98:
        return -1.0
    if close <= lower * 1.02:
        return 1.0

    band_width = upper - lower
    if band_width <= 0:
        return 0.0
    normalized_deviation = (close - middle) / (band_width / 2)
    width_factor = normalize_with_tanh(middle / band_width)
    return clamp_score(-normalize_with_tanh(normalized_deviation) * width_factor)


# =============================================================================
# STOCHASTIC
# =============================================================================


def stochastic_score(k_value: float, d_value: float) -> float:
    crossover = normalize_with_tanh((k_value - d_value) / 10)
    overbought = max(0.0, (k_value - 80) / 20)
    oversold = max(0.0, (20 - k_value) / 20)
    score = (
        normalize_with_tanh(crossover * 2) * 0.6
        - normalize_with_tanh(overbought) * 0.3
        + normalize_with_tanh(oversold) * 0.3
    )
    return clamp_score(score)


# =============================================================================
# MOVING AVERAGE
# =============================================================================


def ma_crossover_score(short_ma: float, long_ma: float, prev_short_ma: float) -> float:
    """
    Signed distance of the short MA from the long MA (in percent), boosted when
    the short MA is still moving in the same direction and damped otherwise.
    """
    deviation_pct = (short_ma - long_ma) / long_ma * 100
    momentum_pct = (short_ma - prev_short_ma) / prev_short_ma * 100
    base = normalize_with_tanh(deviation_pct)
    direction = 1.0 if deviation_pct >= 0 else -1.0
    return clamp_score(base * (1 + 0.5 * normalize_with_tanh(momentum_pct * direction)))


# =============================================================================
# VOLUME
# =============================================================================


def volume_score(latest_volume: float, average_volume: float) -> float:
    return clamp_score(normalize_with_tanh(math.log(latest_volume / average_volume)))
