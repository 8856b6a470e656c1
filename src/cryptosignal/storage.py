from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from cryptosignal.domain.models import (
    ExitReason,
    MarketBar,
    PaperTrade,
    PositionSide,
    Prediction,
    TradeStatus,
)
from cryptosignal.errors import ConcurrentPositionConflict

_TRADE_COLUMNS = """
    id, symbol, side, entry_price, quantity, entry_fee, exit_fee,
    stop_loss_price, take_profit_price, status, opened_at, exit_price,
    gross_pnl, net_pnl, exit_reason, closed_at
"""

_PREDICTION_COLUMNS = """
    id, symbol, timestamp, horizon_hours, current_price, predicted_price,
    predicted_return, confidence_score, quantile_low, quantile_high, model_version
"""


@dataclass(slots=True, frozen=True)
class StoredPrediction:
    prediction_id: int
    prediction: Prediction


@dataclass(slots=True, frozen=True)
class TradeClose:
    exit_price: float
    exit_fee: float
    gross_pnl: float
    net_pnl: float
    exit_reason: ExitReason
    closed_at: datetime


class TradingStorage:
    """Append-only bars/predictions plus the paper-trade ledger table."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url must be non-empty")
        self.database_url = database_url
        self._is_postgres = database_url.startswith(("postgresql://", "postgres://"))
        self._sqlite_path: str | None
        if database_url.startswith("sqlite:///"):
            self._sqlite_path = database_url.removeprefix("sqlite:///")
        elif self._is_postgres:
            self._sqlite_path = None
        else:
            raise ValueError("database_url must start with sqlite:/// or postgresql://")

    def init_schema(self) -> None:
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            conn.commit()

    # Market bars

    def upsert_bars(self, bars: Sequence[MarketBar]) -> int:
        """Insert bars, skipping (symbol, timestamp) pairs already stored."""
        if self._is_postgres:
            query = """
                INSERT INTO market_bars
                    (symbol, timestamp, open, high, low, close, volume, market_cap)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (symbol, timestamp) DO NOTHING
            """
        else:
            query = """
                INSERT OR IGNORE INTO market_bars
                    (symbol, timestamp, open, high, low, close, volume, market_cap)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """
        inserted = 0
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            for bar in bars:
                self._execute(
                    cur,
                    query,
                    (
                        bar.symbol,
                        _iso(bar.timestamp),
                        float(bar.open),
                        float(bar.high),
                        float(bar.low),
                        float(bar.close),
                        float(bar.volume),
                        self._to_float_or_none(bar.market_cap),
                    ),
                )
                inserted += max(cur.rowcount, 0)
            conn.commit()
        return inserted

    def list_bars(
        self,
        symbol: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[MarketBar]:
        """Bars for ``symbol`` in ascending timestamp order (most recent ``limit``)."""
        conditions = ["symbol = ?"]
        params: list[Any] = [symbol]
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(_iso(since))
        query = (
            "SELECT symbol, timestamp, open, high, low, close, volume, market_cap "
            f"FROM market_bars WHERE {' AND '.join(conditions)} ORDER BY timestamp DESC"
        )
        if limit is not None:
            if limit <= 0:
                raise ValueError("limit must be greater than zero")
            query += " LIMIT ?"
            params.append(int(limit))

        rows = self._fetchall(query, tuple(params))
        bars = [
            MarketBar(
                symbol=str(row[0]),
                timestamp=_parse(row[1]),
                open=float(row[2]),
                high=float(row[3]),
                low=float(row[4]),
                close=float(row[5]),
                volume=float(row[6]),
                market_cap=self._to_float_or_none(row[7]),
            )
            for row in rows
        ]
        bars.reverse()
        return bars

    # Predictions

    def record_prediction(self, prediction: Prediction) -> int:
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(
                cur,
                """
                INSERT INTO predictions
                    (
                        created_at,
                        symbol,
                        timestamp,
                        horizon_hours,
                        current_price,
                        predicted_price,
                        predicted_return,
                        confidence_score,
                        quantile_low,
                        quantile_high,
                        model_version
                    )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    datetime.now(UTC).isoformat(),
                    prediction.symbol,
                    _iso(prediction.timestamp),
                    int(prediction.horizon_hours),
                    float(prediction.current_price),
                    float(prediction.predicted_price),
                    float(prediction.predicted_return),
                    float(prediction.confidence_score),
                    float(prediction.quantile_low),
                    float(prediction.quantile_high),
                    prediction.model_version,
                ),
            )
            prediction_id = self._inserted_id(cur, "prediction")
            conn.commit()
        return prediction_id

    def latest_prediction(self, symbol: str) -> StoredPrediction | None:
        rows = self.list_predictions(limit=1, symbol=symbol)
        return rows[0] if rows else None

    def list_predictions(self, limit: int = 20, symbol: str | None = None) -> list[StoredPrediction]:
        if limit <= 0:
            raise ValueError("limit must be greater than zero")
        query = f"SELECT {_PREDICTION_COLUMNS} FROM predictions"
        params: list[Any] = []
        if symbol is not None:
            query += " WHERE symbol = ?"
            params.append(symbol)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(int(limit))
        return [
            StoredPrediction(
                prediction_id=int(row[0]),
                prediction=Prediction(
                    symbol=str(row[1]),
                    timestamp=_parse(row[2]),
                    horizon_hours=int(row[3]),
                    current_price=float(row[4]),
                    predicted_price=float(row[5]),
                    predicted_return=float(row[6]),
                    confidence_score=float(row[7]),
                    quantile_low=float(row[8]),
                    quantile_high=float(row[9]),
                    model_version=str(row[10]),
                ),
            )
            for row in self._fetchall(query, tuple(params))
        ]

    # Paper trades

    def insert_trade(
        self,
        symbol: str,
        side: PositionSide,
        entry_price: float,
        quantity: float,
        entry_fee: float,
        opened_at: datetime,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
        exclusive: bool = True,
    ) -> PaperTrade:
        """Insert an open trade.

        With ``exclusive`` the trade claims the symbol's single open slot; a
        second exclusive open for the same symbol, from any connection or
        process, raises :class:`ConcurrentPositionConflict`.
        """
        try:
            with self._connect() as conn:
                self._run_schema_migrations(conn)
                cur = conn.cursor()
                self._execute(
                    cur,
                    """
                    INSERT INTO paper_trades
                        (
                            symbol,
                            side,
                            entry_price,
                            quantity,
                            entry_fee,
                            stop_loss_price,
                            take_profit_price,
                            status,
                            opened_at,
                            open_slot
                        )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        symbol,
                        str(side),
                        float(entry_price),
                        float(quantity),
                        float(entry_fee),
                        self._to_float_or_none(stop_loss_price),
                        self._to_float_or_none(take_profit_price),
                        str(TradeStatus.OPEN),
                        _iso(opened_at),
                        symbol if exclusive else None,
                    ),
                )
                trade_id = self._inserted_id(cur, "trade")
                conn.commit()
        except self._integrity_errors() as exc:
            holders = self.list_open_trades(symbol)
            raise ConcurrentPositionConflict(symbol, holders[0].id if holders else -1) from exc
        return PaperTrade(
            id=trade_id,
            symbol=symbol,
            side=side,
            entry_price=float(entry_price),
            quantity=float(quantity),
            entry_fee=float(entry_fee),
            opened_at=_parse(_iso(opened_at)),
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
        )

    def get_trade(self, trade_id: int) -> PaperTrade | None:
        rows = self._fetchall(
            f"SELECT {_TRADE_COLUMNS} FROM paper_trades WHERE id = ?",
            (int(trade_id),),
        )
        return self._row_to_trade(rows[0]) if rows else None

    def close_trade(self, trade_id: int, close: TradeClose) -> bool:
        """Mark an open trade closed. Returns False if it was not open."""
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(
                cur,
                """
                UPDATE paper_trades
                SET status = ?, exit_price = ?, exit_fee = ?, gross_pnl = ?,
                    net_pnl = ?, exit_reason = ?, closed_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    str(TradeStatus.CLOSED),
                    float(close.exit_price),
                    float(close.exit_fee),
                    float(close.gross_pnl),
                    float(close.net_pnl),
                    str(close.exit_reason),
                    _iso(close.closed_at),
                    int(trade_id),
                    str(TradeStatus.OPEN),
                ),
            )
            updated = cur.rowcount == 1
            conn.commit()
        return updated

    def list_open_trades(self, symbol: str | None = None) -> list[PaperTrade]:
        query = f"SELECT {_TRADE_COLUMNS} FROM paper_trades WHERE status = ?"
        params: list[Any] = [str(TradeStatus.OPEN)]
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        query += " ORDER BY opened_at ASC, id ASC"
        return [self._row_to_trade(row) for row in self._fetchall(query, tuple(params))]

    def list_closed_trades(
        self,
        since: datetime | None = None,
        symbol: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[PaperTrade]:
        query = f"SELECT {_TRADE_COLUMNS} FROM paper_trades WHERE status = ?"
        params: list[Any] = [str(TradeStatus.CLOSED)]
        if since is not None:
            query += " AND closed_at >= ?"
            params.append(_iso(since))
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        order = "DESC" if newest_first else "ASC"
        query += f" ORDER BY closed_at {order}, id {order}"
        if limit is not None:
            if limit <= 0:
                raise ValueError("limit must be greater than zero")
            query += " LIMIT ?"
            params.append(int(limit))
        return [self._row_to_trade(row) for row in self._fetchall(query, tuple(params))]

    def sum_net_pnl(self, symbol: str | None = None, before: datetime | None = None) -> float:
        query = "SELECT COALESCE(SUM(net_pnl), 0) FROM paper_trades WHERE status = ?"
        params: list[Any] = [str(TradeStatus.CLOSED)]
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        if before is not None:
            query += " AND closed_at < ?"
            params.append(_iso(before))
        rows = self._fetchall(query, tuple(params))
        return float(rows[0][0]) if rows else 0.0

    # Internals

    def _fetchall(self, query: str, params: tuple[Any, ...]) -> list[Any]:
        with self._connect() as conn:
            self._run_schema_migrations(conn)
            cur = conn.cursor()
            self._execute(cur, query, params)
            return list(cur.fetchall())

    def _inserted_id(self, cur: Any, label: str) -> int:
        if self._is_postgres:
            inserted = cur.fetchone()
            if inserted is None:
                raise ValueError(f"Failed to read inserted {label} id")
            return int(inserted[0])
        return int(cur.lastrowid)

    def _row_to_trade(self, row: Any) -> PaperTrade:
        return PaperTrade(
            id=int(row[0]),
            symbol=str(row[1]),
            side=PositionSide(str(row[2])),
            entry_price=float(row[3]),
            quantity=float(row[4]),
            entry_fee=float(row[5]),
            exit_fee=self._to_float_or_none(row[6]),
            stop_loss_price=self._to_float_or_none(row[7]),
            take_profit_price=self._to_float_or_none(row[8]),
            status=TradeStatus(str(row[9])),
            opened_at=_parse(row[10]),
            exit_price=self._to_float_or_none(row[11]),
            gross_pnl=self._to_float_or_none(row[12]),
            net_pnl=self._to_float_or_none(row[13]),
            exit_reason=ExitReason(str(row[14])) if row[14] is not None else None,
            closed_at=_parse(row[15]) if row[15] is not None else None,
        )

    def _connect(self) -> Any:
        if self._is_postgres:
            try:
                import psycopg
            except ImportError as exc:  # pragma: no cover
                raise ValueError(
                    "PostgreSQL URL configured but psycopg is not installed."
                ) from exc
            return psycopg.connect(self.database_url)

        assert self._sqlite_path is not None
        path = Path(self._sqlite_path)
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), timeout=30.0)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _run_schema_migrations(self, conn: Any) -> None:
        cur = conn.cursor()
        if self._is_postgres:
            pk = "BIGSERIAL PRIMARY KEY"
            real = "DOUBLE PRECISION"
        else:
            pk = "INTEGER PRIMARY KEY AUTOINCREMENT"
            real = "REAL"
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS market_bars (
                id {pk},
                symbol TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                open {real} NOT NULL,
                high {real} NOT NULL,
                low {real} NOT NULL,
                close {real} NOT NULL,
                volume {real} NOT NULL,
                market_cap {real},
                UNIQUE (symbol, timestamp)
            )
            """
        )
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS predictions (
                id {pk},
                created_at TEXT NOT NULL,
                symbol TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                horizon_hours INTEGER NOT NULL,
                current_price {real} NOT NULL,
                predicted_price {real} NOT NULL,
                predicted_return {real} NOT NULL,
                confidence_score {real} NOT NULL,
                quantile_low {real} NOT NULL,
                quantile_high {real} NOT NULL,
                model_version TEXT NOT NULL
            )
            """
        )
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS paper_trades (
                id {pk},
                symbol TEXT NOT NULL,
                side TEXT NOT NULL CHECK (side IN ('long', 'short')),
                entry_price {real} NOT NULL,
                quantity {real} NOT NULL,
                entry_fee {real} NOT NULL DEFAULT 0,
                exit_fee {real},
                stop_loss_price {real},
                take_profit_price {real},
                status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'closed')),
                opened_at TEXT NOT NULL,
                exit_price {real},
                gross_pnl {real},
                net_pnl {real},
                exit_reason TEXT,
                closed_at TEXT,
                open_slot TEXT
            )
            """
        )
        if self._is_postgres:
            cur.execute("ALTER TABLE paper_trades ADD COLUMN IF NOT EXISTS open_slot TEXT")
        else:
            columns = {row[1] for row in cur.execute("PRAGMA table_info(paper_trades)")}
            if "open_slot" not in columns:
                cur.execute("ALTER TABLE paper_trades ADD COLUMN open_slot TEXT")
        # NULL slots never collide, so non-exclusive trades can stack.
        cur.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_paper_trades_open_slot "
            "ON paper_trades(open_slot) WHERE status = 'open'"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_paper_trades_status ON paper_trades(status, symbol)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_predictions_symbol ON predictions(symbol, timestamp)"
        )

    def _integrity_errors(self) -> tuple[type[Exception], ...]:
        if self._is_postgres:
            import psycopg

            return (psycopg.IntegrityError,)
        return (sqlite3.IntegrityError,)

    def _execute(self, cur: Any, query: str, params: tuple[Any, ...]) -> None:
        if self._is_postgres:
            pg_query = query.replace("?", "%s")
            if "INSERT INTO predictions" in query or "INSERT INTO paper_trades" in query:
                pg_query += " RETURNING id"
            cur.execute(pg_query, params)
        else:
            cur.execute(query, params)

    @staticmethod
    def _to_float_or_none(value: Any) -> float | None:
        if value is None:
            return None
        return float(value)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _parse(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
