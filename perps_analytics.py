#!/usr/bin/env python3
"""
Jupiter Perps Analytics

Collects a point-in-time snapshot of Jupiter Perpetuals usage straight from
on-chain accounts: pool value, traders' unrealized P&L and fees, average
leverage, long/short split and borrow rates per custody.

Scan order: pool -> custodies (oracle prices, borrow rates) -> positions.

Usage:
    python perps_analytics.py -r https://api.mainnet-beta.solana.com
    python perps_analytics.py -r $RPC_URL -c data/perps_analytics.csv -s
"""

import argparse
import logging
import os
import sys
import time
from types import MappingProxyType
from typing import Optional

from dotenv import load_dotenv

from borrow_rates import build_borrow_rate_table
from perps_accounts import (
    CUSTODY_DISCRIMINATOR,
    POOL_DISCRIMINATOR,
    POSITION_DISCRIMINATOR,
    decode_custody,
    decode_pool,
    decode_position,
)
from perps_errors import MissingRelation, PerpsAnalyticsError
from perps_prices import oracle_price_reader, prices_by_mint, resolve_all
from perps_report import Snapshot, append_row, format_summary, snapshot_row
from perps_rpc import SolanaRpc
from position_aggregator import aggregate_positions

load_dotenv()

logger = logging.getLogger(__name__)

# Jupiter Perpetuals Program ID
JUPITER_PERPS_PROGRAM = "PERPHjGBqRHArX4DySjwM6UJHiR3sWAatqfdBS2qQJu"

# RPC endpoint configuration
# Priority: 1. --rpc-url, 2. SOLANA_RPC_URL env var, 3. Helius (if API key set)
HELIUS_API_KEY = os.environ.get("HELIUS_API_KEY")
SOLANA_RPC_URL_ENV = os.environ.get("SOLANA_RPC_URL")

if SOLANA_RPC_URL_ENV:
    DEFAULT_RPC_URL = SOLANA_RPC_URL_ENV
elif HELIUS_API_KEY:
    DEFAULT_RPC_URL = f"https://mainnet.helius-rpc.com/?api-key={HELIUS_API_KEY}"
else:
    DEFAULT_RPC_URL = None

PROGRAM_ID = os.environ.get("PERPS_PROGRAM_ID", JUPITER_PERPS_PROGRAM)
DEFAULT_CSV_PATH = os.environ.get("PERPS_CSV_PATH")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
ORACLE_WORKERS = 4


def run_scan(rpc, program_id: str = PROGRAM_ID, now: Optional[int] = None,
             price_of=None, max_workers: int = ORACLE_WORKERS) -> Snapshot:
    """Scan pool, custody and position accounts and aggregate them.

    Args:
        rpc: client with get_program_accounts/get_account_data
        program_id: perps program to scan
        now: unix time used for borrow fee accrual (defaults to current time)
        price_of: oracle price capability (defaults to Pyth accounts via rpc)
        max_workers: concurrent oracle lookups
    """
    if now is None:
        now = int(time.time())
    if price_of is None:
        price_of = oracle_price_reader(rpc)

    logger.info("Fetching pool accounts...")
    pool_accounts = rpc.get_program_accounts(program_id, POOL_DISCRIMINATOR)
    if not pool_accounts:
        raise MissingRelation(f"no pool account found for program {program_id}")
    pool_address, pool_data = pool_accounts[0]
    pool = decode_pool(pool_data)
    logger.info(f"Pool {pool.name} ({pool_address}): AUM ${pool.aum_usd_ui:,.0f}")

    logger.info("Fetching custody accounts...")
    custodies = MappingProxyType({
        address: decode_custody(data)
        for address, data in rpc.get_program_accounts(program_id, CUSTODY_DISCRIMINATOR)
    })
    quotes = resolve_all(custodies, price_of, max_workers=max_workers)
    borrow_rates = build_borrow_rate_table(custodies, quotes)
    prices = MappingProxyType(prices_by_mint(custodies, quotes))
    logger.info(f"Resolved {len(custodies)} custodies "
                f"({sum(q.is_stable for q in quotes.values())} stable)")

    logger.info("Fetching position accounts...")
    position_accounts = rpc.get_program_accounts(program_id, POSITION_DISCRIMINATOR)
    logger.info(f"Found {len(position_accounts):,} position accounts")
    positions = ((address, decode_position(data)) for address, data in position_accounts)

    stats = aggregate_positions(
        positions,
        custodies,
        prices,
        borrow_rates,
        pool.fees.increase_position_bps,
        now,
    )

    return Snapshot(
        unix_time=now,
        pool_value=pool.aum_usd_ui,
        stats=stats,
        borrow_rates={address: (custodies[address].mint, rate) for address, rate in borrow_rates.items()},
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Collects analytics about Jup perpetuals usage")
    parser.add_argument("-r", "--rpc-url", default=DEFAULT_RPC_URL,
                        help="Solana RPC URL (default: SOLANA_RPC_URL or Helius via HELIUS_API_KEY)")
    parser.add_argument("-c", "--csv-path", default=DEFAULT_CSV_PATH, help="Append a row to this CSV file")
    parser.add_argument("-s", "--silent", action="store_true", help="Don't print the summary")
    parser.add_argument("--program-id", default=PROGRAM_ID, help="Perpetuals program ID")
    parser.add_argument("--workers", type=int, default=ORACLE_WORKERS, help="Concurrent oracle lookups")
    args = parser.parse_args(argv)

    if not args.rpc_url:
        parser.error("an RPC URL is required (-r, SOLANA_RPC_URL or HELIUS_API_KEY)")

    logging.basicConfig(
        level=logging.WARNING if args.silent else LOG_LEVEL.upper(),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        snapshot = run_scan(SolanaRpc(args.rpc_url), args.program_id, max_workers=args.workers)
    except PerpsAnalyticsError as e:
        logger.error(f"Scan failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not args.silent:
        print(format_summary(snapshot))

    # CSV exports for plotting data over time
    if args.csv_path:
        try:
            append_row(args.csv_path, snapshot_row(snapshot))
        except OSError as e:
            print(f"Error writing {args.csv_path}: {e}", file=sys.stderr)
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
