"""Tests for perps account decoding."""

import pytest

from account_builders import custody_bytes, key, pool_bytes, position_bytes
from perps_accounts import (
    CUSTODY_DISCRIMINATOR,
    POOL_DISCRIMINATOR,
    POSITION_DISCRIMINATOR,
    Side,
    account_discriminator,
    amount_to_ui,
    decode_custody,
    decode_pool,
    decode_position,
)
from perps_errors import DecodeError


def test_discriminators_are_distinct_8_byte_tags():
    tags = {POOL_DISCRIMINATOR, CUSTODY_DISCRIMINATOR, POSITION_DISCRIMINATOR}
    assert len(tags) == 3
    assert all(len(t) == 8 for t in tags)
    assert account_discriminator("Pool") == POOL_DISCRIMINATOR


def test_amount_to_ui_uses_six_decimals():
    assert amount_to_ui(5_000_000_000000) == 5_000_000.0
    assert amount_to_ui(1_500_000_000, decimals=9) == 1.5


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

def test_decode_pool():
    custodies = (key(1), key(2))
    pool = decode_pool(pool_bytes(name="JLP", custodies=custodies, aum_usd=5_000_000_000000,
                                  increase_position_bps=6))
    assert pool.name == "JLP"
    assert pool.custodies == custodies
    assert pool.aum_usd == 5_000_000_000000
    assert pool.aum_usd_ui == 5_000_000.0
    assert pool.fees.increase_position_bps == 6
    assert pool.fees.protocol_share_bps == 2500


def test_decode_pool_large_aum_uses_u128():
    aum = (1 << 70) + 123
    assert decode_pool(pool_bytes(aum_usd=aum)).aum_usd == aum


# ---------------------------------------------------------------------------
# Custody
# ---------------------------------------------------------------------------

def test_decode_custody():
    mint, oracle = key(3), key(4)
    custody = decode_custody(custody_bytes(mint, oracle, owned=1_000, locked=500, hourly_funding_bps=10,
                                           decimals=6, is_stable=True))
    assert custody.mint == mint
    assert custody.oracle.oracle_account == oracle
    assert custody.decimals == 6
    assert custody.is_stable is True
    assert custody.assets.owned == 1_000
    assert custody.assets.locked == 500
    assert custody.funding_rate_state.hourly_funding_bps == 10
    assert custody.permissions.allow_increase_position is True


def test_custody_assets_block_starts_at_offset_214():
    data = bytearray(custody_bytes(key(3), key(4), owned=0))
    data[214 + 8:214 + 16] = (777).to_bytes(8, "little")
    assert decode_custody(bytes(data)).assets.owned == 777


def test_decode_custody_rejects_invalid_bool():
    data = bytearray(custody_bytes(key(3), key(4)))
    data[8 + 96 + 1] = 7  # is_stable
    with pytest.raises(DecodeError, match="invalid bool"):
        decode_custody(bytes(data))


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------

def test_decode_position():
    custody, collateral = key(5), key(6)
    position = decode_position(position_bytes(custody, collateral, side=Side.SHORT, price=90_000000,
                                              size_usd=100_000_000000, collateral_usd=10_000_000000,
                                              update_time=1_700_000_000))
    assert position.custody == custody
    assert position.collateral_custody == collateral
    assert position.side == Side.SHORT
    assert position.price == 90_000000
    assert position.size_usd == 100_000_000000
    assert position.collateral_usd == 10_000_000000
    assert position.update_time == 1_700_000_000
    assert position.is_active


def test_closed_position_is_inactive():
    position = decode_position(position_bytes(key(5), side=Side.NONE, size_usd=0))
    assert not position.is_active


def test_decode_position_rejects_unknown_side():
    data = bytearray(position_bytes(key(5)))
    data[8 + 128 + 16] = 9
    with pytest.raises(DecodeError, match="invalid side"):
        decode_position(bytes(data))


# ---------------------------------------------------------------------------
# Discriminator and layout checks
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("decoder,data", [
    (decode_pool, pool_bytes(discriminator=CUSTODY_DISCRIMINATOR)),
    (decode_custody, custody_bytes(key(1), key(2), discriminator=POSITION_DISCRIMINATOR)),
    (decode_position, position_bytes(key(1), discriminator=POOL_DISCRIMINATOR)),
])
def test_mismatched_discriminator_raises(decoder, data):
    with pytest.raises(DecodeError, match="discriminator mismatch"):
        decoder(data)


@pytest.mark.parametrize("decoder,data", [
    (decode_pool, pool_bytes()[:40]),
    (decode_custody, custody_bytes(key(1), key(2))[:200]),
    (decode_position, position_bytes(key(1))[:100]),
])
def test_truncated_account_raises(decoder, data):
    with pytest.raises(DecodeError, match="too short"):
        decoder(data)


def test_empty_buffer_raises():
    with pytest.raises(DecodeError):
        decode_position(b"")
