from __future__ import annotations


class CryptoSignalError(ValueError):
    """Base class for engine failures surfaced to callers."""


class InsufficientDataError(CryptoSignalError):
    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Insufficient data for technical analysis: {available} bars, need {required}"
        )
        self.available = available
        self.required = required


class NoOpenPositionError(CryptoSignalError):
    def __init__(self, trade_id: int) -> None:
        super().__init__(f"No open position found with id {trade_id}")
        self.trade_id = trade_id


class ConcurrentPositionConflict(CryptoSignalError):
    """The symbol already holds an open position that blocks a new one."""

    def __init__(self, symbol: str, trade_id: int) -> None:
        super().__init__(f"Position already open for {symbol} (id={trade_id})")
        self.symbol = symbol
        self.trade_id = trade_id


class UpstreamDataUnavailable(CryptoSignalError):
    """The market-data collaborator could not supply prices or bars."""
