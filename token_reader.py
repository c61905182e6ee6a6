#!/usr/bin/env python3
"""
On-Chain Token Reader for tama.meme
===================================

Reads a token's bonding-curve pool and creation metadata directly from
the Ronin chain via JSON-RPC.

Data Sources (per RPC call):
─────────────────────────────
1. MainContract.pools_(token)
   Returns: token, reserves (real + virtual), lastPrice, lastMcapInEth,
            lastTimestamp, lastBlock, creator, liquidityManager, poolId,
            curveConstant — all uint256 values 1e18-scaled.

2. eth_getLogs — TokenCreated(creator, token, name, symbol,
   description, extended, tokenUrlImage), filtered on topic[2] = token.
   Ronin refuses log queries over more than 500 blocks, so the lookup
   goes through HistoryScanner: by default only the latest window is
   searched; pass from_block (or locate_creation=True) for older tokens.

3. eth_getCode(token, block) — creation-block binary search.

Every failure leaves this module as a ClassifiedError.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from curve_math import PoolState, format_ether
from history_scanner import HistoryScanner
from tama_cli.central_config import DEFAULT_MAX_BLOCK_RANGE, NetworkConfig, get_network
from tama_cli.chain_client import ChainClient
from tama_cli.errors import ClassifiedError, ErrorKind, MetadataNotFoundError, guard_chain_call
from tama_cli.rpc_helpers import (
    SELECTORS,
    TOKEN_CREATED_TOPIC,
    ZERO_ADDRESS,
    address_topic as _address_topic,
    decode_token_created as _decode_token_created,
    encode_address as _encode_address,
    is_address as _is_address,
)


# ── Data ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenMetadata:
    """Metadata emitted once, in the token's TokenCreated event."""

    name: str
    symbol: str
    description: str
    extended: str  # JSON string of social links
    image_url: str

    @classmethod
    def from_log(cls, log: Dict[str, Any]) -> "TokenMetadata":
        fields = _decode_token_created(log.get("data", "0x"))
        return cls(**fields)


@dataclass(frozen=True)
class CompleteTokenInfo:
    """Pool state + metadata + display strings, assembled per query."""

    pool: PoolState
    metadata: TokenMetadata
    formatted_price: str
    formatted_market_cap: str

    def extended_links(self) -> Dict[str, str]:
        """Parsed `extended` links; {} when the creator stored invalid JSON."""
        try:
            links = json.loads(self.metadata.extended or "{}")
        except json.JSONDecodeError:
            return {}
        return links if isinstance(links, dict) else {}


# ── Token Reader ────────────────────────────────────────────────────────


class TokenReader:
    """
    Reads tama.meme token data from the blockchain.

    Usage:
        reader = TokenReader("mainnet")
        pool = await reader.get_pool_state("0x024a...")
        info = await reader.get_complete_token_info("0x024a...", locate_creation=True)
    """

    def __init__(
        self,
        network: Union[str, NetworkConfig] = "mainnet",
        client: Optional[ChainClient] = None,
        max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
        probe_retries: int = 0,
    ):
        self.network = get_network(network) if isinstance(network, str) else network
        self.client = client or ChainClient(self.network)
        self.scanner = HistoryScanner(max_block_range, probe_retries=probe_retries)

    @staticmethod
    def _require_address(token_address: str) -> None:
        if not _is_address(token_address):
            raise ValueError(f"Invalid token address: {token_address}")

    def _creation_filter(self, token_address: str) -> Dict[str, Any]:
        """TokenCreated(any creator, token) on the main contract."""
        return {
            "address": self.network.contract_address,
            "topics": [TOKEN_CREATED_TOPIC, None, _address_topic(token_address)],
        }

    # ── Pool ────────────────────────────────────────────────────────────

    async def get_pool_state(self, token_address: str) -> PoolState:
        """
        Read pools_(token) — a fresh snapshot every call.

        Raises:
            ClassifiedError: CONTRACT_ERROR on revert / undecodable data /
                             unknown token, NETWORK_ERROR on transport failure.
        """
        self._require_address(token_address)
        print(f"  📖 Reading pool for {token_address[:12]}… on {self.network.name}")

        calldata = SELECTORS["pools_"] + _encode_address(token_address)
        raw = await guard_chain_call(
            self.client.read_state(self.network.contract_address, calldata),
            default=ErrorKind.CONTRACT_ERROR,
        )
        try:
            pool = PoolState.from_abi(raw)
        except ValueError as exc:
            raise ClassifiedError(
                ErrorKind.CONTRACT_ERROR,
                f"Malformed pools_ response for {token_address}: {exc}",
                exc,
            ) from exc

        if pool.token == ZERO_ADDRESS:
            raise ClassifiedError(
                ErrorKind.CONTRACT_ERROR,
                f"No tama.meme pool exists for token {token_address} on {self.network.name}.",
            )
        return pool

    # ── Metadata ────────────────────────────────────────────────────────

    async def get_token_metadata(
        self, token_address: str, from_block: Optional[int] = None
    ) -> TokenMetadata:
        """
        Metadata from the token's TokenCreated event.

        Args:
            token_address: Token contract address (0x...)
            from_block: Scan start. None → only the most recent
                        max_block_range blocks are searched.

        Raises:
            MetadataNotFoundError: No matching event in the searched range.
            ClassifiedError: Any chain failure during the scan.
        """
        self._require_address(token_address)
        if from_block is not None and from_block < 0:
            raise ValueError(f"from_block must be non-negative, got {from_block}")

        latest = await guard_chain_call(self.client.get_block_number())
        if from_block is not None and from_block > latest:
            raise ValueError(f"from_block {from_block} is after the latest block {latest}")

        if from_block is None:
            print(f"  🔍 Searching the last {self.scanner.max_block_range} blocks for creation event…")
        else:
            print(f"  🔍 Scanning blocks {from_block}–{latest} for creation event…")

        result = await guard_chain_call(
            self.scanner.scan_for_events(
                self.client.get_logs,
                self._creation_filter(token_address),
                latest,
                from_block=from_block,
            )
        )
        if not result.events:
            raise MetadataNotFoundError(
                token_address, result.from_block, result.to_block, result.window_only
            )

        # One creation event per token is expected; if several match, the
        # most recently mined (last, ascending order) is canonical.
        event = result.events[-1]
        try:
            return TokenMetadata.from_log(event)
        except Exception as exc:  # noqa: BLE001
            raise ClassifiedError(
                ErrorKind.CONTRACT_ERROR,
                f"Malformed TokenCreated event for {token_address}: {exc}",
                exc,
            ) from exc

    # ── Creation Block ──────────────────────────────────────────────────

    async def find_creation_block(self, token_address: str) -> int:
        """
        Binary-search the first block with code at the token address.

        Raises:
            ClassifiedError: NOT_A_CONTRACT when the address has no code.
        """
        self._require_address(token_address)
        latest = await guard_chain_call(self.client.get_block_number())
        print(f"  ⛏️  Locating creation block of {token_address[:12]}… (0–{latest})")

        async def _has_code(block: int) -> bool:
            return await self.client.has_code_at(token_address, block)

        block = await guard_chain_call(
            self.scanner.find_creation_block(_has_code, latest, token_address)
        )
        print(f"  📍 Estimated creation block: {block}")
        return block

    # ── Complete Info ───────────────────────────────────────────────────

    async def get_complete_token_info(
        self,
        token_address: str,
        from_block: Optional[int] = None,
        locate_creation: bool = False,
    ) -> CompleteTokenInfo:
        """
        Pool state and metadata together; fails if either read fails.

        Args:
            from_block: Metadata scan start (see get_token_metadata).
            locate_creation: When from_block is None, find the creation
                             block first and scan from there.
        """
        self._require_address(token_address)
        if from_block is None and locate_creation:
            from_block = await self.find_creation_block(token_address)

        pool_task = asyncio.create_task(self.get_pool_state(token_address))
        metadata_task = asyncio.create_task(self.get_token_metadata(token_address, from_block))
        try:
            pool, metadata = await asyncio.gather(pool_task, metadata_task)
        except BaseException:
            # First failure wins; the sibling read is abandoned.
            for task in (pool_task, metadata_task):
                task.cancel()
            await asyncio.gather(pool_task, metadata_task, return_exceptions=True)
            raise
        return CompleteTokenInfo(
            pool=pool,
            metadata=metadata,
            formatted_price=format_ether(pool.last_price),
            formatted_market_cap=format_ether(pool.last_mcap_in_eth),
        )
