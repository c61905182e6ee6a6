#!/usr/bin/env python3
"""
Chain Client — the chain-query capability bound to one network
===============================================================

Wraps the module-level JSON-RPC functions of rpc_helpers with:

  • the NetworkConfig (RPC endpoint, chain id) it was built for
  • a per-instance request budget (token bucket), so two clients for two
    networks never throttle each other
  • transaction submission, either signed locally (eth_account) or handed
    to a node/wallet-managed account via eth_sendTransaction
  • receipt polling

Every method raises the raw transport / RPC exception. Classification
into ClassifiedError happens in the reader and launcher that call it.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from eth_account import Account
from eth_utils import to_checksum_address

from tama_cli.central_config import NetworkConfig
from tama_cli.rpc_helpers import (
    eth_call as _eth_call,
    eth_get_code as _eth_get_code,
    eth_block_number as _eth_block_number,
    eth_get_logs as _eth_get_logs,
    eth_gas_price as _eth_gas_price,
    eth_estimate_gas as _eth_estimate_gas,
    eth_get_transaction_count as _eth_get_transaction_count,
    eth_send_transaction as _eth_send_transaction,
    eth_send_raw_transaction as _eth_send_raw_transaction,
    eth_get_transaction_receipt as _eth_get_transaction_receipt,
    hex_to_int as _hex_to_int,
    normalize_log as _normalize_log,
)

GAS_HEADROOM_PCT = 20  # estimateGas is a lower bound; pad it


# ── Rate Limiter ─────────────────────────────────────────────────────────


class _RateLimiter:
    """Token-bucket rate limiter to respect public RPC limits.

    Ronin's public endpoint throttles bursts; a binary search plus a
    chunked log scan can otherwise fire dozens of calls in a second.
    """

    def __init__(self, max_requests: int, period_seconds: float):
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: list[float] = []

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        now = time.monotonic()
        # Purge timestamps outside the current window
        self._timestamps = [t for t in self._timestamps if now - t < self._period]
        if len(self._timestamps) >= self._max:
            # Wait until the oldest request expires
            sleep_time = self._period - (now - self._timestamps[0]) + 0.1
            if sleep_time > 0:
                await asyncio.sleep(sleep_time)
        self._timestamps.append(time.monotonic())


# ── Chain Client ─────────────────────────────────────────────────────────


class ChainClient:
    """
    JSON-RPC access to one network.

    Usage:
        client = ChainClient(get_network("testnet"))
        latest = await client.get_block_number()
        client = ChainClient(network, private_key=os.environ["TAMA_PRIVATE_KEY"])
        tx_hash = await client.submit_transaction(contract, calldata, value)
        receipt = await client.await_receipt(tx_hash)
    """

    def __init__(
        self,
        network: NetworkConfig,
        *,
        private_key: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: int = 20,
        receipt_timeout: float = 120.0,
        poll_interval: float = 2.0,
        max_requests_per_minute: int = 300,
    ):
        self.network = network
        self.rpc_url = network.rpc_url
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._account = Account.from_key(private_key) if private_key else None
        self.sender = self._account.address if self._account else sender
        self._limiter = _RateLimiter(max_requests_per_minute, 60)

    # ── Reads ────────────────────────────────────────────────────────────

    async def read_state(self, to: str, data: str, block: Any = "latest") -> str:
        """eth_call → hex result without 0x."""
        await self._limiter.acquire()
        return await _eth_call(self.rpc_url, to, data, block, timeout=self.timeout)

    async def get_code(self, address: str, block: Any = "latest") -> str:
        await self._limiter.acquire()
        return await _eth_get_code(self.rpc_url, address, block, timeout=self.timeout)

    async def has_code_at(self, address: str, block: Any = "latest") -> bool:
        code = await self.get_code(address, block)
        return code not in ("", "0x", "0x0")

    async def get_block_number(self) -> int:
        await self._limiter.acquire()
        return await _eth_block_number(self.rpc_url, timeout=self.timeout)

    async def get_logs(
        self, log_filter: Dict[str, Any], from_block: int, to_block: int
    ) -> List[Dict[str, Any]]:
        """Logs in [from_block, to_block], oldest first, with int block numbers."""
        await self._limiter.acquire()
        logs = await _eth_get_logs(
            self.rpc_url, log_filter, from_block, to_block, timeout=self.timeout
        )
        normalized = [_normalize_log(log) for log in logs]
        normalized.sort(key=lambda log: (log.get("blockNumber", 0), log.get("logIndex", 0)))
        return normalized

    # ── Writes ───────────────────────────────────────────────────────────

    async def submit_transaction(self, to: str, data: str, value: int = 0) -> str:
        """
        Send a funded contract call. Returns the transaction hash as soon as
        the node accepts it (not mined yet).

        Raises:
            ValueError: Neither a private key nor a sender account configured.
        """
        if self._account is not None:
            return await self._submit_signed(to, data, value)
        if not self.sender:
            raise ValueError("No signer configured: pass private_key or sender")

        await self._limiter.acquire()
        tx = {"from": self.sender, "to": to, "data": data, "value": hex(value)}
        return await _eth_send_transaction(self.rpc_url, tx)

    async def _submit_signed(self, to: str, data: str, value: int) -> str:
        estimate_tx = {"from": self.sender, "to": to, "data": data, "value": hex(value)}

        await self._limiter.acquire()
        gas = await _eth_estimate_gas(self.rpc_url, estimate_tx, timeout=self.timeout)
        await self._limiter.acquire()
        nonce = await _eth_get_transaction_count(self.rpc_url, self.sender, timeout=self.timeout)
        await self._limiter.acquire()
        gas_price = await _eth_gas_price(self.rpc_url, timeout=self.timeout)

        unsigned = {
            "to": to_checksum_address(to),
            "data": data,
            "value": value,
            "gas": gas * (100 + GAS_HEADROOM_PCT) // 100,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.network.chain_id,
        }
        signed = self._account.sign_transaction(unsigned)
        raw_tx = getattr(signed, "raw_transaction", None)
        if raw_tx is None:
            raw_tx = signed.rawTransaction

        await self._limiter.acquire()
        return await _eth_send_raw_transaction(
            self.rpc_url, "0x" + bytes(raw_tx).hex(), timeout=self.timeout
        )

    async def await_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Poll until the transaction is mined.

        Returns:
            Receipt dict with int `status`/`blockNumber` and normalized logs.

        Raises:
            TimeoutError: No receipt within receipt_timeout seconds.
        """
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            await self._limiter.acquire()
            receipt = await _eth_get_transaction_receipt(
                self.rpc_url, tx_hash, timeout=self.timeout
            )
            if receipt is not None:
                return self._normalize_receipt(receipt)
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"No receipt for {tx_hash} after {self.receipt_timeout:.0f}s"
                )
            await asyncio.sleep(self.poll_interval)

    @staticmethod
    def _normalize_receipt(receipt: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(receipt)
        if out.get("status") is not None:
            out["status"] = _hex_to_int(out["status"])
        if out.get("blockNumber") is not None:
            out["blockNumber"] = _hex_to_int(out["blockNumber"])
        out["logs"] = [_normalize_log(log) for log in receipt.get("logs") or []]
        return out
