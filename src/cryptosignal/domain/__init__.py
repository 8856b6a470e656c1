from cryptosignal.domain.models import (
    Action,
    ExitReason,
    MarketBar,
    PaperTrade,
    PerformanceMetrics,
    PositionSide,
    Prediction,
    TradeStatus,
    TradingSignal,
)

__all__ = [
    "Action",
    "ExitReason",
    "MarketBar",
    "PaperTrade",
    "PerformanceMetrics",
    "PositionSide",
    "Prediction",
    "TradeStatus",
    "TradingSignal",
]
