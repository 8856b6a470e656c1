from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cryptosignal.domain.models import ExitReason, PaperTrade, PositionSide, TradeStatus
from cryptosignal.risk import balance_curve, compute_pnl, fee_for, max_drawdown, performance_metrics


def _closed(net: float, gross: float, fees: float = 1.0, hours: int = 0) -> PaperTrade:
    opened = datetime(2026, 2, 1, tzinfo=UTC) + timedelta(hours=hours)
    return PaperTrade(
        id=hours + 1,
        symbol="ETHUSDT",
        side=PositionSide.LONG,
        entry_price=100.0,
        quantity=1.0,
        entry_fee=fees / 2,
        opened_at=opened,
        status=TradeStatus.CLOSED,
        exit_price=100.0 + gross,
        exit_fee=fees / 2,
        gross_pnl=gross,
        net_pnl=net,
        exit_reason=ExitReason.MANUAL,
        closed_at=opened + timedelta(hours=1),
    )


def test_fee_for_uses_basis_points() -> None:
    assert fee_for(10_000.0, 8.0) == pytest.approx(8.0)


def test_compute_pnl_long_and_short() -> None:
    gross, net = compute_pnl(PositionSide.LONG, 100.0, 110.0, 2.0, entry_fee=1.0, exit_fee=1.0)
    assert gross == pytest.approx(20.0)
    assert net == pytest.approx(18.0)

    gross, net = compute_pnl(PositionSide.SHORT, 100.0, 90.0, 2.0, entry_fee=0.5, exit_fee=0.5)
    assert gross == pytest.approx(20.0)
    assert net == pytest.approx(19.0)

    gross, _ = compute_pnl(PositionSide.SHORT, 100.0, 110.0, 1.0)
    assert gross == pytest.approx(-10.0)


def test_balance_curve_starts_at_initial_balance() -> None:
    curve = balance_curve(1_000.0, [100.0, -50.0])
    assert list(curve) == [1_000.0, 1_100.0, 1_050.0]


def test_max_drawdown_replays_in_order() -> None:
    assert max_drawdown([100.0, -50.0, 20.0, -80.0], 1_000.0) == pytest.approx(0.1)
    assert max_drawdown([], 1_000.0) == 0.0
    assert max_drawdown([10.0, 20.0], 1_000.0) == 0.0


def test_performance_metrics_aggregates_closed_trades() -> None:
    trades = [
        _closed(net=99.0, gross=100.0, hours=0),
        _closed(net=-51.0, gross=-50.0, hours=2),
        _closed(net=19.0, gross=20.0, hours=4),
        _closed(net=-81.0, gross=-80.0, hours=6),
    ]

    metrics = performance_metrics(trades, starting_balance=1_000.0, window_days=30)

    assert metrics.total_trades == 4
    assert metrics.winning_trades == 2
    assert metrics.losing_trades == 2
    assert metrics.win_rate == pytest.approx(0.5)
    assert metrics.total_pnl == pytest.approx(-10.0)
    assert metrics.net_pnl == pytest.approx(-14.0)
    assert metrics.total_fees == pytest.approx(4.0)
    assert metrics.avg_win == pytest.approx(59.0)
    assert metrics.avg_loss == pytest.approx(66.0)
    assert metrics.profit_factor == pytest.approx(59.0 / 66.0)
    assert metrics.ending_balance == pytest.approx(986.0)
    assert metrics.total_return == pytest.approx(-0.014)
    assert metrics.max_drawdown > 0


def test_performance_metrics_counts_break_even_as_loss() -> None:
    metrics = performance_metrics([_closed(net=0.0, gross=1.0)], starting_balance=1_000.0, window_days=7)
    assert metrics.losing_trades == 1
    assert metrics.winning_trades == 0
    assert metrics.profit_factor == 0.0


def test_performance_metrics_without_trades() -> None:
    metrics = performance_metrics([], starting_balance=10_000.0, window_days=30)
    assert metrics.total_trades == 0
    assert metrics.win_rate == 0.0
    assert metrics.max_drawdown == 0.0
    assert metrics.ending_balance == 10_000.0
