"""
Tama CLI — Command Implementations
==================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher.  Each public function corresponds to a
subcommand (info, fee, pool, token, creation-block, launch).

Read commands need no credentials.  `launch` signs with the key in
TAMA_PRIVATE_KEY and, when uploading an image, sends the tama.meme
session cookie from TAMA_COOKIE.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from tama_cli.central_config import (
    DEFAULT_MAX_BLOCK_RANGE,
    NETWORKS,
    PROJECT_NAME,
    PROJECT_VERSION,
    NetworkConfig,
    creation_defaults,
)

PRIVATE_KEY_ENV = "TAMA_PRIVATE_KEY"
COOKIE_ENV = "TAMA_COOKIE"


# ── Consent Helpers ──────────────────────────────────────────────────────


def _confirm_launch(network: NetworkConfig, name: str, symbol: str, amount: str) -> bool:
    """Explicit confirmation gate: a launch spends real RON and cannot be undone."""
    print("\n" + "═" * 60)
    print(f"  🏛️  {PROJECT_NAME} v{PROJECT_VERSION}")
    print("═" * 60)
    print()
    print(f"  🪙 Token    : {name} ({symbol})")
    print(f"  🌐 Network  : {network.name} (chain {network.chain_id})")
    print(f"  💧 Buy-in   : {amount} {network.currency} + creation fee + gas")
    print()
    print("  • The transaction is irreversible once mined")
    print("  • Token metadata cannot be edited after creation")
    print("  • Bonding-curve tokens carry HIGH RISK including total loss of funds")
    print()
    print("═" * 60)
    try:
        ans = input("\n✅ Create this token? (y/N): ")
        return ans.strip().lower() in ("y", "yes")
    except (KeyboardInterrupt, EOFError):
        print("\n❌ Cancelled.")
        return False


def _prompt_address(kind: str = "token") -> str | None:
    """Prompt the user for a 0x address when none is supplied."""
    try:
        addr = input(f"\n🔑 Enter {kind} address (0x…): ").strip()
        if addr and re.fullmatch(r"0x[0-9a-fA-F]{40}", addr):
            return addr
        print("❌ Invalid address. Must be 42 hex characters starting with 0x.")
        return None
    except (KeyboardInterrupt, EOFError):
        print("\n❌ Cancelled.")
        return None


def _amount_warning(amount: str) -> str | None:
    """Hint when the buy-in is outside the recommended range."""
    from curve_math import parse_ether

    wei = parse_ether(amount)
    if wei < parse_ether(creation_defaults.RECOMMENDED_MIN_AMOUNT):
        return (
            f"Initial buy-in below {creation_defaults.RECOMMENDED_MIN_AMOUNT} RON "
            "leaves the creator a negligible share of supply."
        )
    if wei > parse_ether(creation_defaults.RECOMMENDED_MAX_AMOUNT):
        return (
            f"Initial buy-in above {creation_defaults.RECOMMENDED_MAX_AMOUNT} RON "
            "moves far up a fresh curve."
        )
    return None


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display system and architecture information."""
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Protocol   : tama.meme bonding-curve launchpad (constant product)")
    print("🌐 Chain      : Ronin (RON)")
    print(f"📡 Log window : {DEFAULT_MAX_BLOCK_RANGE} blocks per eth_getLogs query")
    print()
    print("🌐 Networks:")
    seen = set()
    for key, net in NETWORKS.items():
        if net.name in seen:
            continue
        seen.add(net.name)
        print(f"   {key:<8} chain {net.chain_id:<5} {net.contract_address}")
        print(f"            RPC {net.rpc_url}")
    print()
    print("📁 Files:")
    print("   run.py                — CLI entry point")
    print("   curve_math.py         — Pool state decoding + bonding-curve math")
    print("   history_scanner.py    — Chunked log scan + creation-block search")
    print("   token_reader.py       — Pool / metadata reader")
    print("   token_launcher.py     — Token creation flow")
    print("   tama_cli/             — Config, JSON-RPC, chain client, errors, IPFS upload")
    print()
    print(f"🔐 Launch credentials: ${PRIVATE_KEY_ENV} (signing), ${COOKIE_ENV} (image upload)")


async def cmd_fee(network: NetworkConfig) -> None:
    """Show the current creation fee."""
    from curve_math import format_ether
    from token_launcher import TokenLauncher

    fee = await TokenLauncher(network).get_creation_fee()
    print(f"\n💰 Creation fee on {network.name}: {format_ether(fee)} {network.currency}")


async def cmd_pool(network: NetworkConfig, token: str) -> None:
    """Bonding-curve pool snapshot for one token."""
    from curve_math import CurveMath, format_ether, format_token_reserve
    from token_reader import TokenReader

    pool = await TokenReader(network).get_pool_state(token)
    cur = network.currency

    print(f"\n📊 Pool — {token}")
    print("=" * 55)
    print(f"  📈 Last price     : {format_ether(pool.last_price)} {cur}")
    print(f"  💰 Last mcap      : {format_ether(pool.last_mcap_in_eth)} {cur}")
    print(f"  🪙 Token reserve  : {format_token_reserve(pool.token_reserve)}")
    print(f"  🪙 Virtual tokens : {format_token_reserve(pool.virtual_token_reserve)}")
    print(f"  💧 RON reserve    : {format_ether(pool.eth_reserve)} {cur}")
    print(f"  💧 Virtual RON    : {format_ether(pool.virtual_eth_reserve)} {cur}")
    print(f"  👤 Creator        : {pool.creator}")
    print(f"  🏦 Liq. manager   : {pool.liquidity_manager}")
    print(f"  🧱 Last block     : {pool.last_block}")

    if pool.virtual_token_reserve:
        print(f"  🧮 Curve price    : {format_ether(CurveMath.price(pool))} {cur}")
        print(f"  🧮 Curve mcap     : {format_ether(CurveMath.market_cap(pool))} {cur}")
    if pool.curve_constant:
        ok = CurveMath.verify_invariant(pool)
        print(f"  {'✅' if ok else '⚠️ '} Invariant      : x·y {'=' if ok else '≠'} k")
    if pool.last_mcap_in_eth and pool.virtual_token_reserve:
        print(f"  📐 Mcap drift     : {CurveMath.market_cap_drift(pool):.6%}")
    print(f"\n🔗 {network.address_url(token)}")


async def cmd_token(
    network: NetworkConfig,
    token: str,
    from_block: int | None = None,
    find_creation: bool = False,
    max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
) -> None:
    """Pool state + creation metadata for one token."""
    from token_reader import TokenReader
    from tama_cli.central_config import tama_token_url

    reader = TokenReader(network, max_block_range=max_block_range)
    info = await reader.get_complete_token_info(
        token, from_block=from_block, locate_creation=find_creation
    )
    meta = info.metadata

    print(f"\n🪙 {meta.name} ({meta.symbol})")
    print("=" * 55)
    if meta.description:
        print(f"  📝 {meta.description}")
    print(f"  🖼️  Image    : {meta.image_url or '—'}")
    print(f"  📈 Price    : {info.formatted_price} {network.currency}")
    print(f"  💰 Mcap     : {info.formatted_market_cap} {network.currency}")
    print(f"  👤 Creator  : {info.pool.creator}")
    for kind, url in info.extended_links().items():
        print(f"  🔗 {kind:<9}: {url}")
    print(f"\n🔗 {tama_token_url(token)}")
    print(f"🔗 {network.address_url(token)}")


async def cmd_creation_block(network: NetworkConfig, token: str) -> None:
    """Estimated creation block of a token contract."""
    from token_reader import TokenReader

    block = await TokenReader(network).find_creation_block(token)
    print(f"\n⛏️  {token} was created at (or just before) block {block}")


async def cmd_launch(
    network: NetworkConfig,
    name: str,
    symbol: str,
    amount: str,
    description: str = "",
    twitter: str | None = None,
    discord: str | None = None,
    telegram: str | None = None,
    website: str | None = None,
    image_url: str | None = None,
    image_path: str | None = None,
    assume_yes: bool = False,
) -> bool:
    """
    Create a token. Returns False when the user declines.

    Raises:
        ValueError: Missing private key, bad amount or unreadable image.
        ClassifiedError: Upload or chain failure.
    """
    from tama_cli.chain_client import ChainClient
    from tama_cli.ipfs_upload import IpfsUploader
    from token_launcher import LaunchParameters, TokenLauncher

    private_key = os.environ.get(PRIVATE_KEY_ENV)
    if not private_key:
        raise ValueError(f"Set {PRIVATE_KEY_ENV} to the creator wallet's private key")

    warning = _amount_warning(amount)
    if warning:
        print(f"\n⚠️  {warning}")

    if not assume_yes and not _confirm_launch(network, name, symbol, amount):
        return False

    params = LaunchParameters(
        name=name,
        symbol=symbol,
        init_amount_in=amount,
        description=description,
        extended=LaunchParameters.build_extended(
            twitter=twitter, discord=discord, telegram=telegram, website=website
        ),
        image_url=image_url or "",
    )
    launcher = TokenLauncher(network, ChainClient(network, private_key=private_key))

    if image_path:
        path = Path(image_path)
        payload = path.read_bytes()
        uploader = IpfsUploader(cookie=os.environ.get(COOKIE_ENV))
        result = await launcher.launch_token_with_image(params, payload, path.name, uploader)
    else:
        result = await launcher.launch_token(params)

    print(f"\n🎉 {name} ({symbol}) launched on {network.name}")
    print("=" * 55)
    print(f"  🧾 Tx       : {result.transaction_hash}")
    print(f"  🔗 Explorer : {result.explorer_url(network)}")
    if result.token_address:
        print(f"  🪙 Token    : {result.token_address}")
        print(f"  🌐 tama.meme: {result.tama_url()}")
    else:
        print("  ⚠️  Token address not found in receipt — check the explorer link")
    return True
