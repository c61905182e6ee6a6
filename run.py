#!/usr/bin/env python3
"""
Tama CLI -- tama.meme Token Reader & Launcher
=============================================

Read bonding-curve pools and creation metadata of tama.meme memecoins on
Ronin, and launch new tokens.

Usage:
  python run.py info                                    System overview + networks
  python run.py fee                                     Current creation fee
  python run.py pool  <0x…token>                        Pool reserves, price, mcap
  python run.py token <0x…token>                        Pool + metadata (recent tokens)
  python run.py token <0x…token> --find-creation        Pool + metadata (any age)
  python run.py token <0x…token> --from-block <N>       Pool + metadata, scan from N
  python run.py creation-block <0x…token>               Estimate creation block
  python run.py launch --name N --symbol S --amount 0.1 --image logo.png
                                                        Create a token

Sources:
  tama.meme        : https://tama.meme
  Ronin RPC        : https://docs.roninchain.com/developers/network
"""

import sys
import asyncio
import argparse
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from tama_cli.central_config import (  # noqa: E402
    DEFAULT_MAX_BLOCK_RANGE,
    PROJECT_VERSION,
    get_network,
)
from tama_cli.commands import (  # noqa: E402
    cmd_info,
    cmd_fee,
    cmd_pool,
    cmd_token,
    cmd_creation_block,
    cmd_launch,
    _prompt_address,
)
from tama_cli.errors import ClassifiedError  # noqa: E402


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tama-cli",
        description=f"Tama CLI v{PROJECT_VERSION} — tama.meme Token Reader & Launcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py pool  0x024a…                              Pool snapshot (mainnet)
  python run.py token 0x024a… --network testnet            Metadata of a fresh token
  python run.py token 0x024a… --find-creation              Metadata of an older token
  python run.py creation-block 0x024a…                     Binary-search creation block
  python run.py fee --network testnet                      Creation fee on Saigon
  python run.py launch --name "Rakūn Inu" --symbol TANUKI --amount 0.1 \\
                       --image logo.png --twitter https://x.com/tanuki

Environment:
  TAMA_PRIVATE_KEY   Creator wallet key (launch only)
  TAMA_COOKIE        tama.meme session cookie (launch --image only)

Note:
  Ronin RPC nodes answer eth_getLogs for at most 500 blocks per query.
  Without --from-block / --find-creation only the newest window is searched.
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"Tama CLI v{PROJECT_VERSION}"
    )
    parser.add_argument(
        "--network",
        type=str,
        default="mainnet",
        help="Network: mainnet (ronin) or testnet (saigon) (default: mainnet)",
    )
    parser.add_argument(
        "--rpc-url",
        type=str,
        default=None,
        help="Override the network's JSON-RPC endpoint",
    )
    parser.add_argument(
        "--max-block-range",
        type=int,
        default=DEFAULT_MAX_BLOCK_RANGE,
        help=f"Blocks per eth_getLogs query (default: {DEFAULT_MAX_BLOCK_RANGE})",
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    sub.add_parser("info", help="System & network info")
    sub.add_parser("fee", help="Show the current creation fee")

    pool_p = sub.add_parser("pool", help="Bonding-curve pool state of a token")
    pool_p.add_argument("token", nargs="?", default=None, help="Token address (0x…)")

    token_p = sub.add_parser("token", help="Pool state + creation metadata")
    token_p.add_argument("token", nargs="?", default=None, help="Token address (0x…)")
    scan = token_p.add_mutually_exclusive_group()
    scan.add_argument(
        "--from-block",
        type=int,
        default=None,
        help="Scan for the creation event starting at this block",
    )
    scan.add_argument(
        "--find-creation",
        action="store_true",
        help="Locate the creation block first (works for tokens of any age)",
    )

    cb_p = sub.add_parser("creation-block", help="Estimate a token's creation block")
    cb_p.add_argument("token", nargs="?", default=None, help="Token address (0x…)")

    launch_p = sub.add_parser("launch", help="Create a new token")
    launch_p.add_argument("--name", required=True, help="Token name")
    launch_p.add_argument("--symbol", required=True, help="Token symbol")
    launch_p.add_argument(
        "--amount", required=True, help="Initial buy-in in RON, e.g. 0.1"
    )
    launch_p.add_argument("--description", default="", help="Token description")
    launch_p.add_argument("--twitter", default=None, help="Twitter / X URL")
    launch_p.add_argument("--discord", default=None, help="Discord invite URL")
    launch_p.add_argument("--telegram", default=None, help="Telegram URL")
    launch_p.add_argument("--website", default=None, help="Website URL")
    image = launch_p.add_mutually_exclusive_group(required=True)
    image.add_argument("--image-url", default=None, help="Already-hosted image URL")
    image.add_argument(
        "--image", default=None, help="Local image file, uploaded to IPFS first"
    )
    launch_p.add_argument(
        "--yes", action="store_true", help="Skip the confirmation prompt"
    )

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0

    try:
        network = get_network(args.network, rpc_url=args.rpc_url)

        if args.command == "fee":
            asyncio.run(cmd_fee(network))
            return 0

        if args.command in ("pool", "token", "creation-block"):
            token = args.token or _prompt_address("token")
            if not token:
                return 1
            if args.command == "pool":
                asyncio.run(cmd_pool(network, token))
            elif args.command == "token":
                asyncio.run(
                    cmd_token(
                        network,
                        token,
                        from_block=args.from_block,
                        find_creation=args.find_creation,
                        max_block_range=args.max_block_range,
                    )
                )
            else:
                asyncio.run(cmd_creation_block(network, token))
            return 0

        if args.command == "launch":
            launched = asyncio.run(
                cmd_launch(
                    network,
                    name=args.name,
                    symbol=args.symbol,
                    amount=args.amount,
                    description=args.description,
                    twitter=args.twitter,
                    discord=args.discord,
                    telegram=args.telegram,
                    website=args.website,
                    image_url=args.image_url,
                    image_path=args.image,
                    assume_yes=args.yes,
                )
            )
            if not launched:
                print("❌ Launch cancelled.")
                return 1
            return 0
    except ClassifiedError as exc:
        stage = f" [{exc.stage.value}]" if getattr(exc.stage, "value", None) else ""
        print(f"\n❌ {exc.kind.value}{stage}: {exc.message}")
        return 1
    except (ValueError, OSError) as exc:
        print(f"\n❌ {exc}")
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
