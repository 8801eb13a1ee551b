"""
Hourly borrow rates per custody.

Volatile assets are priced from their own utilization times the custody's
hourly funding rate. Stablecoins share one rate derived from the combined
utilization of every stable custody.
"""

import logging
from types import MappingProxyType
from typing import Mapping

from perps_accounts import Custody, amount_to_ui
from perps_errors import InsufficientLiquidityData, MissingRelation
from perps_prices import PriceQuote

logger = logging.getLogger(__name__)

BorrowRateTable = Mapping[str, float]


def volatile_borrow_rate(custody: Custody) -> float:
    """Utilization (locked / owned) scaled by the hourly funding bps."""
    owned = amount_to_ui(custody.assets.owned)
    if owned == 0:
        raise InsufficientLiquidityData(f"custody for mint {custody.mint} owns no assets")
    locked = amount_to_ui(custody.assets.locked)
    return locked / owned * custody.funding_rate_state.hourly_funding_bps


def build_borrow_rate_table(custodies: Mapping[str, Custody], quotes: Mapping[str, PriceQuote]) -> BorrowRateTable:
    """Derive the borrow rate of every custody.

    Must be complete before any position is evaluated.
    """
    rates = {}
    stable_custodies = []
    stable_aum = 0
    stable_borrow = 0

    for address, custody in custodies.items():
        if address not in quotes:
            raise MissingRelation(f"no price resolved for custody {address}")
        if quotes[address].is_stable:
            stable_custodies.append(address)
            stable_aum += custody.assets.owned
            stable_borrow += custody.assets.locked
        else:
            rates[address] = volatile_borrow_rate(custody)

    if stable_custodies:
        if stable_aum == 0:
            raise InsufficientLiquidityData("stable custodies own no assets")
        stable_rate = stable_borrow / stable_aum
        for address in stable_custodies:
            rates[address] = stable_rate
        logger.info(f"Stable borrow rate {stable_rate:.6f} across {len(stable_custodies)} custodies")

    return MappingProxyType(rates)


def borrow_rate_for(table: BorrowRateTable, custody_address: str) -> float:
    try:
        return table[custody_address]
    except KeyError:
        raise MissingRelation(f"no borrow rate for custody {custody_address}") from None
