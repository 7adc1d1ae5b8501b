import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


def sma(values: np.ndarray, length: int) -> Optional[float]:
    """Arithmetic mean of the last `length` values, None with fewer values."""
    if length <= 0 or len(values) < length:
        return None
    return float(np.mean(values[-length:]))


def ema_with_seed(values: np.ndarray, length: int, seed: float) -> np.ndarray:
    alpha = 2.0 / (length + 1.0)
    out = np.zeros_like(values, dtype=float)
    if len(values) == 0:
        return out

    out[0] = alpha * values[0] + (1 - alpha) * seed
    for i in range(1, len(values)):
        out[i] = alpha * values[i] + (1 - alpha) * out[i - 1]

    return out


def ema_series(values: np.ndarray, length: int) -> np.ndarray:
    """EMA seeded with the SMA of the first `length` values.

    Element 0 of the result lines up with values[length - 1]; the series is empty
    until `length` values exist.
    """
    if length <= 0 or len(values) < length:
        return np.empty(0, dtype=float)

    seed = float(np.mean(values[:length]))
    rest = ema_with_seed(values[length:], length, seed)
    return np.concatenate(([seed], rest))


def ema(values: np.ndarray, length: int) -> Optional[float]:
    series = ema_series(values, length)
    if len(series) == 0:
        return None
    return float(series[-1])
