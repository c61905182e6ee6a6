#!/usr/bin/env python3
"""
Bonding Curve Math Engine
=========================

Turns the raw on-chain state of a tama.meme bonding-curve pool into
prices and market caps, and checks the curve invariant.

FORMULA SOURCES:
────────────────
1. Constant-product bonding curve (virtual reserves)
   k = virtualTokenReserve × virtualEthReserve    (held constant by the contract)
   price = virtualEthReserve / virtualTokenReserve
   Ref: https://docs.uniswap.org/contracts/v2/concepts/protocol-overview/how-uniswap-works

2. Market cap in the curve's own terms
   mcap = price × virtualTokenReserve

Fixed-point convention:
  Every reserve, price and constant on the contract is a uint256 scaled
  by 1e18 (WAD). All math here stays in Python ints (arbitrary width) and
  only divides once, at the end, so tiny prices never truncate to zero.
  Exactness (k) is checked with fractions.Fraction — no floats.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN, localcontext
from fractions import Fraction

from tama_cli.rpc_helpers import (
    decode_uint as _decode_uint,
    decode_address as _decode_address,
    decode_bytes32 as _decode_bytes32,
)

# ── Named Constants ──────────────────────────────────────────────────────
ETHER_DECIMALS = 18
WAD = 10 ** ETHER_DECIMALS  # 1 RON = 1e18 wei; also the fixed-point scale

# The contract rounds each trade, so k drifts by a few wei per trade.
INVARIANT_TOLERANCE = Fraction(1, 10 ** 9)

_DECIMAL_RE = re.compile(r"(\d+)?(?:\.(\d*))?")


# ── Pool State ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PoolState:
    """
    Snapshot of pools_(token) on the tama.meme main contract.

    Slot layout of the ABI response (13 static words):
      0 token            5 lastPrice        10 liquidityManager
      1 tokenReserve     6 lastMcapInEth    11 poolId (bytes32)
      2 virtualTokenRes  7 lastTimestamp    12 curveConstant
      3 ethReserve       8 lastBlock
      4 virtualEthRes    9 creator
    """

    token: str
    token_reserve: int
    virtual_token_reserve: int
    eth_reserve: int
    virtual_eth_reserve: int
    last_price: int
    last_mcap_in_eth: int
    last_timestamp: int
    last_block: int
    creator: str
    liquidity_manager: str
    pool_id: str
    curve_constant: int

    @classmethod
    def from_abi(cls, hex_data: str) -> "PoolState":
        """Decode a pools_(address) eth_call result (hex, no 0x prefix)."""
        return cls(
            token=_decode_address(hex_data, 0),
            token_reserve=_decode_uint(hex_data, 1),
            virtual_token_reserve=_decode_uint(hex_data, 2),
            eth_reserve=_decode_uint(hex_data, 3),
            virtual_eth_reserve=_decode_uint(hex_data, 4),
            last_price=_decode_uint(hex_data, 5),
            last_mcap_in_eth=_decode_uint(hex_data, 6),
            last_timestamp=_decode_uint(hex_data, 7),
            last_block=_decode_uint(hex_data, 8),
            creator=_decode_address(hex_data, 9),
            liquidity_manager=_decode_address(hex_data, 10),
            pool_id=_decode_bytes32(hex_data, 11),
            curve_constant=_decode_uint(hex_data, 12),
        )


# ── Curve Math ───────────────────────────────────────────────────────────


class CurveMath:
    """Pure functions over PoolState. No I/O."""

    @staticmethod
    def price(pool: PoolState) -> int:
        """
        Spot price in wei per whole token (1e18-scaled).

            price = virtualEthReserve × 1e18 / virtualTokenReserve

        Raises:
            ValueError: If virtualTokenReserve is zero.
        """
        if pool.virtual_token_reserve == 0:
            raise ValueError("Virtual token reserve is zero — price is undefined")
        return pool.virtual_eth_reserve * WAD // pool.virtual_token_reserve

    @staticmethod
    def market_cap(pool: PoolState) -> int:
        """
        Market cap in wei: price × virtualTokenReserve (back to 1e18 scale).

        Equal, by construction, to CurveMath.price(pool) * vTokenReserve // WAD.
        Compare with pool.last_mcap_in_eth via market_cap_drift().
        """
        return CurveMath.price(pool) * pool.virtual_token_reserve // WAD

    @staticmethod
    def invariant_error(pool: PoolState) -> Fraction:
        """|vToken × vEth − k| / k as an exact fraction."""
        if pool.curve_constant == 0:
            raise ValueError("Curve constant is zero — invariant is undefined")
        product = pool.virtual_token_reserve * pool.virtual_eth_reserve
        return Fraction(abs(product - pool.curve_constant), pool.curve_constant)

    @staticmethod
    def verify_invariant(pool: PoolState, tolerance=INVARIANT_TOLERANCE) -> bool:
        """True when vToken × vEth is within `tolerance` (relative) of curveConstant."""
        if pool.curve_constant == 0:
            return False
        return CurveMath.invariant_error(pool) < Fraction(tolerance)

    @staticmethod
    def market_cap_drift(pool: PoolState) -> float:
        """
        Relative gap between the recomputed market cap and lastMcapInEth.

        The two are rounded independently (contract vs. here), so a small
        drift is expected.
        """
        if pool.last_mcap_in_eth == 0:
            raise ValueError("Pool has no recorded market cap (lastMcapInEth == 0)")
        computed = CurveMath.market_cap(pool)
        return float(Fraction(abs(computed - pool.last_mcap_in_eth), pool.last_mcap_in_eth))


# ── Unit Formatting ──────────────────────────────────────────────────────


def format_ether(wei: int) -> str:
    """
    wei → decimal RON string, always with a fraction part.

    >>> format_ether(10 ** 18)
    '1.0'
    >>> format_ether(150_000_000_000_000_000)
    '0.15'
    """
    sign = "-" if wei < 0 else ""
    whole, frac = divmod(abs(wei), WAD)
    frac_str = str(frac).rjust(ETHER_DECIMALS, "0").rstrip("0") or "0"
    return f"{sign}{whole}.{frac_str}"


def parse_ether(text: str) -> int:
    """
    Decimal RON string → wei, exactly (no float / Decimal rounding).

    >>> parse_ether("0.1")
    100000000000000000

    Raises:
        ValueError: On empty, negative or malformed input, or more than
                    18 fractional digits.
    """
    cleaned = (text or "").strip()
    match = _DECIMAL_RE.fullmatch(cleaned)
    if not cleaned or not match or cleaned == ".":
        raise ValueError(f"Invalid RON amount: {text!r}")
    whole, frac = match.group(1) or "0", match.group(2) or ""
    if len(frac) > ETHER_DECIMALS:
        raise ValueError(f"Too many decimals in RON amount: {text!r} (max 18)")
    return int(whole) * WAD + int(frac.ljust(ETHER_DECIMALS, "0"))


def format_token_reserve(wei: int) -> str:
    """Token amount with thousands separators and at most 6 decimals."""
    with localcontext() as ctx:
        ctx.prec = 100
        amount = (Decimal(wei) / WAD).quantize(Decimal("0.000001"), rounding=ROUND_HALF_EVEN)
        text = f"{amount:,}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
