"""
Fold every open position into aggregate statistics.

Each active position is marked to market against the current oracle price,
then added to an immutable AggregateStats value. The fold is order
independent apart from ties for the best/worst trade, where the first
position seen keeps the record.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional, Tuple

from borrow_rates import BorrowRateTable, borrow_rate_for
from perps_accounts import Custody, Position, Side, amount_to_ui
from perps_errors import DecodeError, MissingRelation, UnknownMint

logger = logging.getLogger(__name__)

BPS = 10_000.0
SECONDS_PER_HOUR = 3600.0


def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, NaN when the denominator is zero."""
    if denominator == 0:
        return math.nan
    return numerator / denominator


@dataclass(frozen=True)
class TradeRecord:
    address: str
    pnl: float
    entry_price: float
    side: Side
    mint: str


@dataclass(frozen=True)
class PositionEvaluation:
    address: str
    side: Side
    mint: str
    amount: float
    entry_price: float
    current_price: float
    entry_value: float
    current_value: float
    entry_collateral: float
    current_collateral: float
    entry_fees: float
    borrow_fees: float
    unrealized_pnl: float

    @property
    def total_fees(self) -> float:
        # Position fee is charged on open and again on close
        return self.entry_fees * 2 + self.borrow_fees

    def trade_record(self) -> TradeRecord:
        return TradeRecord(self.address, self.unrealized_pnl, self.entry_price, self.side, self.mint)


def side_sign(side: Side) -> float:
    if side == Side.LONG:
        return 1.0
    if side == Side.SHORT:
        return -1.0
    raise DecodeError(f"active position has no side ({side!r})")


def evaluate_position(
    address: str,
    position: Position,
    custodies: Mapping[str, Custody],
    prices: Mapping[str, float],
    borrow_rates: BorrowRateTable,
    increase_position_bps: int,
    now: int,
) -> PositionEvaluation:
    """Mark a single active position to market."""
    custody = custodies.get(position.custody)
    if custody is None:
        raise MissingRelation(f"position {address} references unknown custody {position.custody}")
    if position.collateral_custody not in custodies:
        raise MissingRelation(
            f"position {address} references unknown collateral custody {position.collateral_custody}"
        )

    mint = custody.mint
    if mint not in prices:
        raise UnknownMint(f"no price for mint {mint} (position {address})")
    price = prices[mint]
    sign = side_sign(position.side)

    entry_price = amount_to_ui(position.price)
    entry_value = amount_to_ui(position.size_usd)
    if entry_price == 0:
        raise DecodeError(f"position {address} has zero entry price")
    amount = entry_value / entry_price
    current_value = amount * price

    entry_fees = entry_value * increase_position_bps / BPS
    elapsed_hours = (now - position.update_time) / SECONDS_PER_HOUR
    borrow_rate = borrow_rate_for(borrow_rates, position.collateral_custody)
    borrow_fees = borrow_rate * elapsed_hours * entry_value / BPS

    entry_collateral = amount_to_ui(position.collateral_usd)
    # Shorts gain when the price falls
    current_collateral = entry_collateral + sign * amount * (price - entry_price)
    unrealized_pnl = sign * (current_value - entry_value)

    return PositionEvaluation(
        address=address,
        side=position.side,
        mint=mint,
        amount=amount,
        entry_price=entry_price,
        current_price=price,
        entry_value=entry_value,
        current_value=current_value,
        entry_collateral=entry_collateral,
        current_collateral=current_collateral,
        entry_fees=entry_fees,
        borrow_fees=borrow_fees,
        unrealized_pnl=unrealized_pnl,
    )


@dataclass(frozen=True)
class AggregateStats:
    num_positions: int = 0
    num_longs: int = 0
    num_winning: int = 0
    entry_position_value: float = 0.0
    current_position_value: float = 0.0
    long_value: float = 0.0
    short_value: float = 0.0
    entry_collateral: float = 0.0
    current_collateral: float = 0.0
    fees: float = 0.0
    pnl: float = 0.0
    highest_profit: float = 0.0
    highest_loss: float = 0.0
    most_profitable: Optional[TradeRecord] = None
    least_profitable: Optional[TradeRecord] = None

    def add(self, ev: PositionEvaluation) -> "AggregateStats":
        """Return the stats with one more position folded in."""
        is_long = ev.side == Side.LONG
        changes = dict(
            num_positions=self.num_positions + 1,
            num_longs=self.num_longs + (1 if is_long else 0),
            num_winning=self.num_winning + (1 if ev.unrealized_pnl > 0 else 0),
            entry_position_value=self.entry_position_value + ev.entry_value,
            current_position_value=self.current_position_value + ev.current_value,
            long_value=self.long_value + (ev.current_value if is_long else 0.0),
            short_value=self.short_value + (0.0 if is_long else ev.current_value),
            entry_collateral=self.entry_collateral + ev.entry_collateral,
            current_collateral=self.current_collateral + ev.current_collateral,
            fees=self.fees + ev.total_fees,
            pnl=self.pnl + ev.unrealized_pnl,
        )
        if ev.unrealized_pnl > self.highest_profit:
            changes.update(highest_profit=ev.unrealized_pnl, most_profitable=ev.trade_record())
        if ev.unrealized_pnl < self.highest_loss:
            changes.update(highest_loss=ev.unrealized_pnl, least_profitable=ev.trade_record())
        return replace(self, **changes)

    @property
    def num_shorts(self) -> int:
        return self.num_positions - self.num_longs

    @property
    def num_losing(self) -> int:
        return self.num_positions - self.num_winning

    @property
    def real_pnl(self) -> float:
        return self.pnl - self.fees

    @property
    def avg_leverage_at_entry(self) -> float:
        return safe_ratio(self.entry_position_value, self.entry_collateral)

    @property
    def avg_effective_leverage(self) -> float:
        return safe_ratio(self.current_position_value, self.current_collateral)

    @property
    def long_short_ratio(self) -> float:
        return safe_ratio(self.num_longs, self.num_shorts)

    @property
    def long_short_value_ratio(self) -> float:
        return safe_ratio(self.long_value, self.short_value)


def aggregate_positions(
    positions: Iterable[Tuple[str, Position]],
    custodies: Mapping[str, Custody],
    prices: Mapping[str, float],
    borrow_rates: BorrowRateTable,
    increase_position_bps: int,
    now: int,
) -> AggregateStats:
    """Walk all positions once, skipping closed ones (size 0)."""
    stats = AggregateStats()
    skipped = 0
    for address, position in positions:
        if not position.is_active:
            skipped += 1
            continue
        ev = evaluate_position(address, position, custodies, prices, borrow_rates, increase_position_bps, now)
        stats = stats.add(ev)

    logger.info(f"Aggregated {stats.num_positions} open positions ({skipped} closed skipped)")
    return stats
