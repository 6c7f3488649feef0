from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

import numpy as np
import pandas as pd

from unusual_options.types import PaperTrade
from unusual_options.utils import round2


@dataclass(frozen=True)
class PerformanceSummary:
    total_trades: int
    open_trades: int
    closed_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float
    avg_pnl: float
    best_trade: float
    worst_trade: float


def summarize_trades(trades: Iterable[PaperTrade]) -> PerformanceSummary:
    trades = list(trades)
    open_n = sum(1 for t in trades if t.status == "open")
    closed = [t for t in trades if t.status in ("closed", "expired") and t.pnl is not None]
    if not closed:
        return PerformanceSummary(
            total_trades=len(trades),
            open_trades=open_n,
            closed_trades=0,
            winning_trades=0,
            losing_trades=0,
            win_rate=0.0,
            total_pnl=0.0,
            avg_pnl=0.0,
            best_trade=0.0,
            worst_trade=0.0,
        )

    p = np.array([t.pnl for t in closed], dtype=float)
    wins = int(np.sum(p > 0))
    losses = int(np.sum(p < 0))
    total = float(np.sum(p))
    return PerformanceSummary(
        total_trades=len(trades),
        open_trades=open_n,
        closed_trades=len(closed),
        winning_trades=wins,
        losing_trades=losses,
        win_rate=round2(wins / len(closed) * 100.0),
        total_pnl=round2(total),
        avg_pnl=round2(total / len(closed)),
        best_trade=float(np.max(p)),
        worst_trade=float(np.min(p)),
    )


def trades_frame(trades: Iterable[PaperTrade]) -> pd.DataFrame:
    rows = []
    for t in trades:
        row = asdict(t)
        row["direction"] = t.direction.value
        rows.append(row)
    cols = [
        "id",
        "signal_id",
        "status",
        "direction",
        "quantity",
        "entry_time",
        "entry_price",
        "exit_time",
        "exit_price",
        "exit_reason",
        "pnl",
        "pnl_pct",
        "max_pnl",
        "min_pnl",
    ]
    return pd.DataFrame(rows, columns=cols)
