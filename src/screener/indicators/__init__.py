from screener.indicators.pipeline import compute_indicators

__all__ = ["compute_indicators"]
