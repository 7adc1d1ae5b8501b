import logging
from abc import ABC
from typing import Optional

logger = logging.getLogger(__name__)


class ScreenerError(Exception, ABC):
    """Base exception for the screener engine."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgumentError(ScreenerError):
    """Raised when a request body, parameter or filter definition is malformed."""

    status_code = 400

    def __init__(self, context: str):
        super().__init__(f"Invalid argument: {context}")


class NotFoundError(ScreenerError):
    """Raised when a symbol is untracked or a filter id cannot be resolved."""

    status_code = 404


class UpstreamFetchError(ScreenerError):
    """Raised when one symbol's bar history cannot be fetched from its source."""

    def __init__(self, symbol: str, cause: Optional[Exception] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to fetch bars for {symbol}{detail}")
        self.symbol = symbol
        self.cause = cause


class DataIntegrityError(ScreenerError):
    """Raised when bar history is out of order or holds non-finite values."""

    def __init__(self, symbol: str, reason: str):
        super().__init__(f"Bad bar data for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class ProtocolError(ScreenerError):
    """Raised for unrecognized frame types or malformed frame payloads."""

    status_code = 400


__all__ = [
    "ScreenerError",
    "InvalidArgumentError",
    "NotFoundError",
    "UpstreamFetchError",
    "DataIntegrityError",
    "ProtocolError",
]
