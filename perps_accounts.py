"""
Decoders for Jupiter Perpetuals program accounts.

Accounts are Anchor/Borsh encoded: an 8-byte discriminator followed by
little-endian fields. Only the leading part of each account that we use is
parsed; trailing bytes are ignored.
"""

import hashlib
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, TypeVar

import base58

from perps_errors import DecodeError

# USD amounts on the perps program use 6 implied decimals
USD_DECIMALS = 6

DISCRIMINATOR_SIZE = 8

T = TypeVar("T")


def account_discriminator(name: str) -> bytes:
    """Anchor account tag: first 8 bytes of sha256("account:<Name>")."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


POOL_DISCRIMINATOR = account_discriminator("Pool")
CUSTODY_DISCRIMINATOR = account_discriminator("Custody")
POSITION_DISCRIMINATOR = account_discriminator("Position")


def amount_to_ui(raw: int, decimals: int = USD_DECIMALS) -> float:
    """Convert a fixed-point integer to a float in display units."""
    return raw / (10 ** decimals)


class Side(IntEnum):
    NONE = 0
    LONG = 1
    SHORT = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


class AccountReader:
    """Sequential little-endian reader over an account buffer."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def _unpack(self, fmt: str, size: int):
        if self.offset + size > len(self.data):
            raise DecodeError(
                f"account data too short: need {self.offset + size} bytes, have {len(self.data)}"
            )
        value = struct.unpack_from(fmt, self.data, self.offset)[0]
        self.offset += size
        return value

    def u8(self) -> int:
        return self._unpack("<B", 1)

    def u32(self) -> int:
        return self._unpack("<I", 4)

    def u64(self) -> int:
        return self._unpack("<Q", 8)

    def i64(self) -> int:
        return self._unpack("<q", 8)

    def u128(self) -> int:
        low = self.u64()
        high = self.u64()
        return (high << 64) | low

    def flag(self) -> bool:
        value = self.u8()
        if value > 1:
            raise DecodeError(f"invalid bool byte {value} at offset {self.offset - 1}")
        return value == 1

    def pubkey(self) -> str:
        end = self.offset + 32
        if end > len(self.data):
            raise DecodeError(f"account data too short: need {end} bytes, have {len(self.data)}")
        key = base58.b58encode(self.data[self.offset:end]).decode("ascii")
        self.offset = end
        return key

    def string(self) -> str:
        length = self.u32()
        end = self.offset + length
        if end > len(self.data):
            raise DecodeError(f"string of length {length} runs past end of account data")
        raw = self.data[self.offset:end]
        self.offset = end
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"invalid utf-8 string: {e}") from e

    def vec(self, item: Callable[[], T]) -> List[T]:
        return [item() for _ in range(self.u32())]

    def side(self) -> Side:
        value = self.u8()
        try:
            return Side(value)
        except ValueError:
            raise DecodeError(f"invalid side tag {value}") from None


# --- Pool ---

@dataclass(frozen=True)
class PoolLimit:
    max_aum_usd: int
    token_weightage_buffer_bps: int
    max_position_usd: int


@dataclass(frozen=True)
class PoolFees:
    increase_position_bps: int
    decrease_position_bps: int
    add_remove_liquidity_bps: int
    swap_bps: int
    tax_bps: int
    stable_swap_bps: int
    stable_swap_tax_bps: int
    liquidation_reward_bps: int
    protocol_share_bps: int


@dataclass(frozen=True)
class Pool:
    name: str
    custodies: tuple
    aum_usd: int
    limit: PoolLimit
    fees: PoolFees

    @property
    def aum_usd_ui(self) -> float:
        return amount_to_ui(self.aum_usd)


def _parse_pool(r: AccountReader) -> Pool:
    name = r.string()
    custodies = tuple(r.vec(r.pubkey))
    aum_usd = r.u128()
    limit = PoolLimit(r.u128(), r.u128(), r.u64())
    fees = PoolFees(*(r.u64() for _ in range(9)))
    return Pool(name=name, custodies=custodies, aum_usd=aum_usd, limit=limit, fees=fees)


# --- Custody ---

@dataclass(frozen=True)
class OracleParams:
    oracle_account: str
    oracle_type: int
    max_price_error: int
    max_price_age_sec: int


@dataclass(frozen=True)
class PricingParams:
    trade_impact_fee_scalar: int
    buffer: int
    swap_spread: int
    max_leverage: int
    max_global_long_sizes: int
    max_global_short_sizes: int


@dataclass(frozen=True)
class Permissions:
    allow_swap: bool
    allow_add_liquidity: bool
    allow_remove_liquidity: bool
    allow_increase_position: bool
    allow_decrease_position: bool
    allow_collateral_withdrawal: bool
    allow_liquidate_position: bool


@dataclass(frozen=True)
class Assets:
    fees_reserves: int
    owned: int
    locked: int
    guaranteed_usd: int
    global_short_sizes: int
    global_short_average_prices: int


@dataclass(frozen=True)
class FundingRateState:
    cumulative_interest_rate: int
    last_update: int
    hourly_funding_bps: int


@dataclass(frozen=True)
class Custody:
    pool: str
    mint: str
    token_account: str
    decimals: int
    is_stable: bool
    oracle: OracleParams
    pricing: PricingParams
    permissions: Permissions
    target_ratio_bps: int
    assets: Assets
    funding_rate_state: FundingRateState


def _parse_custody(r: AccountReader) -> Custody:
    pool = r.pubkey()
    mint = r.pubkey()
    token_account = r.pubkey()
    decimals = r.u8()
    is_stable = r.flag()
    oracle = OracleParams(r.pubkey(), r.u8(), r.u64(), r.u32())
    pricing = PricingParams(*(r.u64() for _ in range(6)))
    permissions = Permissions(*(r.flag() for _ in range(7)))
    target_ratio_bps = r.u64()
    assets = Assets(*(r.u64() for _ in range(6)))
    funding = FundingRateState(r.u128(), r.i64(), r.u64())
    return Custody(
        pool=pool,
        mint=mint,
        token_account=token_account,
        decimals=decimals,
        is_stable=is_stable,
        oracle=oracle,
        pricing=pricing,
        permissions=permissions,
        target_ratio_bps=target_ratio_bps,
        assets=assets,
        funding_rate_state=funding,
    )


# --- Position ---

@dataclass(frozen=True)
class Position:
    owner: str
    pool: str
    custody: str
    collateral_custody: str
    open_time: int
    update_time: int
    side: Side
    price: int
    size_usd: int
    collateral_usd: int
    realised_pnl_usd: int
    cumulative_interest_snapshot: int
    locked_amount: int

    @property
    def is_active(self) -> bool:
        return self.size_usd != 0


def _parse_position(r: AccountReader) -> Position:
    return Position(
        owner=r.pubkey(),
        pool=r.pubkey(),
        custody=r.pubkey(),
        collateral_custody=r.pubkey(),
        open_time=r.i64(),
        update_time=r.i64(),
        side=r.side(),
        price=r.u64(),
        size_usd=r.u64(),
        collateral_usd=r.u64(),
        realised_pnl_usd=r.i64(),
        cumulative_interest_snapshot=r.u128(),
        locked_amount=r.u64(),
    )


def decode_account(data: bytes, discriminator: bytes, parser: Callable[[AccountReader], T]) -> T:
    """Check the leading tag, then parse the rest of the buffer with parser."""
    if data[:DISCRIMINATOR_SIZE] != discriminator:
        raise DecodeError(
            f"discriminator mismatch: expected {discriminator.hex()}, got {bytes(data[:DISCRIMINATOR_SIZE]).hex()}"
        )
    return parser(AccountReader(data, DISCRIMINATOR_SIZE))


def decode_pool(data: bytes) -> Pool:
    return decode_account(data, POOL_DISCRIMINATOR, _parse_pool)


def decode_custody(data: bytes) -> Custody:
    return decode_account(data, CUSTODY_DISCRIMINATOR, _parse_custody)


def decode_position(data: bytes) -> Position:
    return decode_account(data, POSITION_DISCRIMINATOR, _parse_position)
