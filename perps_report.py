"""
Console and CSV output for a perps analytics snapshot.

The CSV log is append-only: one row per scan, header written once. It is
read back with pandas by the Streamlit dashboard.
"""

import csv
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

import pandas as pd

from position_aggregator import AggregateStats, TradeRecord

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Unix Time",
    "Total Pool Value",
    "Unrealized Paper P&L",
    "Total Fees",
    "Total Value of Positions",
    "Total Value of Collateral",
    "Average Leverage At Entry",
    "Average Effective Leverage",
    "Long Trades",
    "Long Value",
    "Short Trades",
    "Short Value",
]


@dataclass(frozen=True)
class Snapshot:
    unix_time: int
    pool_value: float
    stats: AggregateStats
    # custody address -> (mint, hourly borrow rate)
    borrow_rates: Mapping[str, Tuple[str, float]] = field(default_factory=dict)


def format_usd(value: float) -> str:
    """Whole dollars with thousands separators."""
    return f"${value:,.0f}"


UNDEFINED = "undefined"


def format_ratio(value: float) -> str:
    if math.isnan(value):
        return UNDEFINED
    return f"{value:.4f}"


def format_leverage(value: Optional[float]) -> str:
    """Leverage as shown on the dashboard, e.g. 2.50x."""
    if value is None or math.isnan(value):
        return UNDEFINED
    return f"{value:.2f}x"


def format_trade(label: str, trade: Optional[TradeRecord]) -> str:
    if trade is None:
        return f"{label}: none"
    return (f"{label}: {trade.address} Open P&L: {format_usd(trade.pnl)} "
            f"Entry Price ${trade.entry_price:.2f} Side: {trade.side.label} Mint {trade.mint}")


def format_summary(snapshot: Snapshot) -> str:
    """Render the snapshot as a multi-line plain-text report."""
    s = snapshot.stats
    lines = [
        f"Unix time: {snapshot.unix_time}",
        f"Total pool value: {format_usd(snapshot.pool_value)}",
        f"Total traders unrealized paper P&L: {format_usd(s.pnl)}",
        f"Total traders fees: {format_usd(s.fees)}",
        f"Total traders unrealized real P&L: {format_usd(s.real_pnl)}",
        f"Total value of positions: {format_usd(s.current_position_value)}",
        f"Total value of collateral: {format_usd(s.current_collateral)}",
        f"Average leverage at entry: {format_ratio(s.avg_leverage_at_entry)}",
        f"Average effective leverage: {format_ratio(s.avg_effective_leverage)}",
        f"Long trades: {s.num_longs:,} ({format_usd(s.long_value)})",
        f"Short trades: {s.num_shorts:,} ({format_usd(s.short_value)})",
        f"L/S ratio: {format_ratio(s.long_short_ratio)} ({format_ratio(s.long_short_value_ratio)})",
        f"Winning trades: {s.num_winning:,} Losing trades: {s.num_losing:,}",
        format_trade("Most profitable open trade", s.most_profitable),
        format_trade("Most unprofitable open trade", s.least_profitable),
    ]
    if snapshot.borrow_rates:
        lines.append("Hourly borrow rates:")
        for custody, (mint, rate) in sorted(snapshot.borrow_rates.items(), key=lambda item: (item[1][0], item[0])):
            lines.append(f"  {mint} (custody {custody}): {rate:.6f}")
    return "\n".join(lines)


def snapshot_row(snapshot: Snapshot) -> list:
    """The CSV row for a snapshot, in CSV_HEADER order."""
    s = snapshot.stats
    return [
        snapshot.unix_time,
        snapshot.pool_value,
        s.pnl,
        s.fees,
        s.current_position_value,
        s.current_collateral,
        s.avg_leverage_at_entry,
        s.avg_effective_leverage,
        s.num_longs,
        s.long_value,
        s.num_shorts,
        s.short_value,
    ]


def append_row(path, columns: Sequence) -> None:
    """Append one row, writing the header first if the file is new or empty."""
    csv_path = Path(path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    with open(csv_path, "a", newline="") as f:
        writer = csv.writer(f)
        if f.tell() == 0:
            writer.writerow(CSV_HEADER)
        writer.writerow(columns)
    logger.info(f"Appended snapshot row to {csv_path}")


def load_log(path) -> pd.DataFrame:
    """Read the CSV log; an empty frame with the header if it doesn't exist."""
    csv_path = Path(path)
    if not csv_path.exists() or csv_path.stat().st_size == 0:
        return pd.DataFrame(columns=CSV_HEADER)
    df = pd.read_csv(csv_path)
    df["Time"] = pd.to_datetime(df["Unix Time"], unit="s", utc=True)
    return df.sort_values("Unix Time").reset_index(drop=True)
