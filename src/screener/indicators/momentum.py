import logging
from typing import NamedTuple, Optional

import numpy as np

from screener.indicators.averages import ema_series

logger = logging.getLogger(__name__)

RSI_LENGTH = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9


class MACDResult(NamedTuple):
    value: float
    signal: float
    histogram: float


def rsi(closes: np.ndarray, length: int = RSI_LENGTH) -> Optional[float]:
    """Wilder RSI over bar-to-bar close deltas.

    The first average gain/loss is the simple mean of the first `length` deltas; later
    deltas are folded in with Wilder smoothing. Needs `length + 1` closes.
    """
    if len(closes) < length + 1:
        return None

    deltas = np.diff(closes)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains[:length]))
    avg_loss = float(np.mean(losses[:length]))
    for gain, loss in zip(gains[length:], losses[length:]):
        avg_gain = (avg_gain * (length - 1) + float(gain)) / length
        avg_loss = (avg_loss * (length - 1) + float(loss)) / length

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    value = 100.0 - 100.0 / (1.0 + rs)
    return min(max(value, 0.0), 100.0)


def macd(
    closes: np.ndarray,
    fast_length: int = MACD_FAST,
    slow_length: int = MACD_SLOW,
    signal_length: int = MACD_SIGNAL,
) -> Optional[MACDResult]:
    """MACD value, signal and histogram, or None until all three are defined.

    The value series starts once the slow EMA exists; the signal is an EMA of that
    series, so the first full result needs slow_length + signal_length - 1 closes.
    """
    fast = ema_series(closes, fast_length)
    slow = ema_series(closes, slow_length)
    if len(slow) == 0:
        return None

    # Align the fast EMA with the slow one: both end on the last close
    value_series = fast[-len(slow) :] - slow
    signal = ema_series(value_series, signal_length)
    if len(signal) == 0:
        return None

    value = float(value_series[-1])
    signal_value = float(signal[-1])
    return MACDResult(value=value, signal=signal_value, histogram=value - signal_value)
