"""
Oracle prices for custodies.

Reads Pyth price accounts and classifies each custody's asset as stable or
volatile. Prices are resolved once per scan and never cached across runs.
"""

import logging
import math
import struct
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, Dict, Mapping

from perps_accounts import Custody
from perps_errors import OracleUnavailable, TransportError

logger = logging.getLogger(__name__)

# Pyth v2 price account layout
PYTH_MAGIC = 0xA1B2C3D4
PYTH_PRICE_ACCOUNT_TYPE = 3
PYTH_STATUS_TRADING = 1
PYTH_EXPO_OFFSET = 20
PYTH_AGG_OFFSET = 208
PYTH_PRICE_ACCOUNT_MIN_SIZE = PYTH_AGG_OFFSET + 32

PriceOf = Callable[[str], float]


@dataclass(frozen=True)
class PriceQuote:
    price: float
    is_stable: bool


def decode_pyth_price(data: bytes) -> float:
    """Return the aggregate price of a Pyth price account in real units."""
    if len(data) < PYTH_PRICE_ACCOUNT_MIN_SIZE:
        raise OracleUnavailable(f"price account too short ({len(data)} bytes)")

    magic, _version, atype = struct.unpack_from("<III", data, 0)
    if magic != PYTH_MAGIC:
        raise OracleUnavailable(f"not a Pyth account (magic {magic:#x})")
    if atype != PYTH_PRICE_ACCOUNT_TYPE:
        raise OracleUnavailable(f"not a Pyth price account (type {atype})")

    expo = struct.unpack_from("<i", data, PYTH_EXPO_OFFSET)[0]
    price, _conf, status = struct.unpack_from("<qQI", data, PYTH_AGG_OFFSET)
    if status != PYTH_STATUS_TRADING:
        # Unchecked read: the last aggregate is still used
        logger.warning(f"Pyth aggregate status is {status}, using last price anyway")

    return price * (10.0 ** expo)


def oracle_price_reader(rpc) -> PriceOf:
    """Build a price_of(oracle_address) capability on top of an RPC client."""

    def price_of(oracle_address: str) -> float:
        try:
            data = rpc.get_account_data(oracle_address)
        except TransportError as e:
            raise OracleUnavailable(f"oracle {oracle_address}: {e}") from e
        try:
            return decode_pyth_price(data)
        except OracleUnavailable as e:
            raise OracleUnavailable(f"oracle {oracle_address}: {e}") from e

    return price_of


def round_half_away(value: float) -> float:
    """Round to the nearest integer, ties away from zero."""
    return float(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def classify(price: float) -> bool:
    """True when the asset is a stablecoin, i.e. its price rounds to 1."""
    return round_half_away(price) == 1.0


def resolve(custody: Custody, price_of: PriceOf) -> PriceQuote:
    price = price_of(custody.oracle.oracle_account)
    if price is None or not math.isfinite(price) or price <= 0:
        raise OracleUnavailable(f"oracle {custody.oracle.oracle_account} returned unusable price {price!r}")
    try:
        is_stable = classify(price)
    except InvalidOperation as e:
        raise OracleUnavailable(f"cannot classify price {price!r}") from e
    return PriceQuote(price=price, is_stable=is_stable)


def resolve_all(custodies: Mapping[str, Custody], price_of: PriceOf, max_workers: int = 4) -> Dict[str, PriceQuote]:
    """Resolve every custody's price, keyed by custody address.

    Oracle reads are independent, so they run on a thread pool. The first
    failure propagates out of the pool straight away: queued lookups are
    cancelled and lookups already running are not waited for.
    """
    quotes = {}
    if max_workers <= 1:
        for address, custody in custodies.items():
            quotes[address] = resolve(custody, price_of)
        return quotes

    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures = {
            executor.submit(resolve, custody, price_of): address
            for address, custody in custodies.items()
        }
        for future in as_completed(futures):
            address = futures[future]
            quotes[address] = future.result()
            logger.debug(f"Custody {address}: price {quotes[address].price}")
    except Exception:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown()

    return quotes


def prices_by_mint(custodies: Mapping[str, Custody], quotes: Mapping[str, PriceQuote]) -> Dict[str, float]:
    """Map each custody's mint to its resolved price."""
    return {custody.mint: quotes[address].price for address, custody in custodies.items()}
