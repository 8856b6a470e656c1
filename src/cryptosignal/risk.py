from __future__ import annotations

from collections.abc import Iterable, Sequence

import pandas as pd

from cryptosignal.domain.models import PaperTrade, PerformanceMetrics, PositionSide


def fee_for(notional: float, fee_bps: float) -> float:
    return notional * fee_bps / 10_000


def compute_pnl(
    side: PositionSide,
    entry_price: float,
    exit_price: float,
    quantity: float,
    entry_fee: float = 0.0,
    exit_fee: float = 0.0,
) -> tuple[float, float]:
    """Return ``(gross_pnl, net_pnl)`` for a closed position."""
    if side == PositionSide.LONG:
        gross = (exit_price - entry_price) * quantity
    else:
        gross = (entry_price - exit_price) * quantity
    return gross, gross - (entry_fee + exit_fee)


def balance_curve(initial_balance: float, pnls: Iterable[float]) -> pd.Series:
    """Running balance after each P&L, starting with ``initial_balance``."""
    values = [float(initial_balance), *(float(p) for p in pnls)]
    return pd.Series(values).cumsum()


def max_drawdown(pnls: Iterable[float], initial_balance: float) -> float:
    """Largest ``(peak - balance) / peak`` seen while replaying ``pnls`` in order."""
    balance = balance_curve(initial_balance, pnls)
    if len(balance) < 2:
        return 0.0
    running_max = balance.cummax()
    drawdown = (running_max - balance) / running_max
    return max(0.0, float(drawdown.max()))


def performance_metrics(
    trades: Sequence[PaperTrade],
    starting_balance: float,
    window_days: int,
) -> PerformanceMetrics:
    """Aggregate closed trades, which must be in chronological close order."""
    net = [float(t.net_pnl or 0.0) for t in trades]
    wins = [p for p in net if p > 0]
    losses = [abs(p) for p in net if p <= 0]

    total = len(net)
    avg_win = sum(wins) / len(wins) if wins else 0.0
    avg_loss = sum(losses) / len(losses) if losses else 0.0
    net_pnl = sum(net)
    ending_balance = starting_balance + net_pnl

    return PerformanceMetrics(
        window_days=window_days,
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / total if total else 0.0,
        total_pnl=sum(float(t.gross_pnl or 0.0) for t in trades),
        net_pnl=net_pnl,
        total_fees=sum(t.fees for t in trades),
        avg_win=avg_win,
        avg_loss=avg_loss,
        profit_factor=avg_win / avg_loss if avg_loss > 0 else 0.0,
        max_drawdown=max_drawdown(net, starting_balance),
        starting_balance=starting_balance,
        ending_balance=ending_balance,
        total_return=(ending_balance / starting_balance) - 1.0 if starting_balance else 0.0,
    )
