#!/usr/bin/env python3
"""
History Scanner — Creation-Block Locator & Bounded Event Scan
==============================================================

Two algorithms for reading chain history through an RPC node that caps
every eth_getLogs call at `max_block_range` blocks (Ronin: 500).

1. Creation-block locator (binary search on bytecode presence)
   hasCodeAt(addr, latest) must be true, else NOT_A_CONTRACT.
   Keeps the first-known-with-code block while narrowing [low, high]:

       mid = (low + high) // 2
       no code at mid  → low  = mid + 1
       code at mid     → high = mid − 1, best = mid

   O(log latest) probes. A probe that errors (after `probe_retries`
   retries) counts as "no code": the search moves toward newer blocks,
   so a transient failure near the true block can only bias the answer
   later, never earlier. If no lookup ever sees code the search fails with
   the classified last error instead of guessing. Proxy patterns that
   swap code at an address make this an estimate.

2. Bounded event scan (chunked pagination)
   [from, to] is split into ascending chunks of ≤ max_block_range blocks,
   queried in order (or concurrently, reassembled by chunk index) and
   concatenated, oldest first. Any chunk failure fails the scan.
   Without an explicit start block only the most recent window is
   searched; a full-history scan is opt-in.

Both algorithms take their chain access as plain async callables, so they
run unchanged against a real node or an in-memory fake.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from tama_cli.central_config import DEFAULT_MAX_BLOCK_RANGE
from tama_cli.errors import ClassifiedError, ErrorKind, classify_chain_error

CodeProbe = Callable[[int], Awaitable[bool]]
EventQuery = Callable[[Dict[str, Any], int, int], Awaitable[List[Dict[str, Any]]]]


@dataclass
class ScanResult:
    """Outcome of a bounded event scan."""

    events: List[Dict[str, Any]] = field(default_factory=list)
    from_block: int = 0
    to_block: int = 0
    window_only: bool = False
    chunks: int = 0


class HistoryScanner:
    """
    Chain-history access under a per-call block-range ceiling.

    Usage:
        scanner = HistoryScanner(max_block_range=500)
        block = await scanner.find_creation_block(probe, latest_block)
        result = await scanner.scan_for_events(client.get_logs, log_filter,
                                               latest_block, from_block=block)
    """

    def __init__(self, max_block_range: int = DEFAULT_MAX_BLOCK_RANGE, probe_retries: int = 0):
        if max_block_range < 1:
            raise ValueError(f"max_block_range must be >= 1, got {max_block_range}")
        if probe_retries < 0:
            raise ValueError(f"probe_retries must be >= 0, got {probe_retries}")
        self.max_block_range = max_block_range
        self.probe_retries = probe_retries

    # ── Chunking ─────────────────────────────────────────────────────────

    def chunk_ranges(self, from_block: int, to_block: int) -> List[Tuple[int, int]]:
        """
        Split [from_block, to_block] (inclusive) into ascending chunks.

        Each chunk covers at most max_block_range blocks:
        end − start + 1 ≤ max_block_range.
        """
        if from_block < 0 or to_block < 0:
            raise ValueError(f"Block bounds must be non-negative: {from_block}..{to_block}")
        if from_block > to_block:
            raise ValueError(f"from_block {from_block} is after to_block {to_block}")

        chunks = []
        start = from_block
        while start <= to_block:
            end = min(start + self.max_block_range - 1, to_block)
            chunks.append((start, end))
            start = end + 1
        return chunks

    def recent_window(self, latest_block: int) -> Tuple[int, int]:
        """The most recent max_block_range blocks, ending at latest_block."""
        return max(0, latest_block - self.max_block_range + 1), latest_block

    # ── Bounded Event Scan ───────────────────────────────────────────────

    async def scan(
        self,
        query_events: EventQuery,
        log_filter: Dict[str, Any],
        from_block: int,
        to_block: int,
        concurrent: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Query every chunk of [from_block, to_block] and concatenate, oldest first.

        Args:
            query_events: async (log_filter, from_block, to_block) → events
            log_filter: address/topics filter, reused for every chunk
            concurrent: issue all chunk queries at once (results are still
                        concatenated in chunk order)

        Raises:
            Whatever query_events raises for the first failing chunk.
        """
        chunks = self.chunk_ranges(from_block, to_block)

        if concurrent:
            per_chunk = await asyncio.gather(
                *[query_events(log_filter, start, end) for start, end in chunks]
            )
        else:
            per_chunk = []
            for start, end in chunks:
                per_chunk.append(await query_events(log_filter, start, end))

        events: List[Dict[str, Any]] = []
        for chunk_events in per_chunk:
            events.extend(chunk_events)
        return events

    async def scan_for_events(
        self,
        query_events: EventQuery,
        log_filter: Dict[str, Any],
        latest_block: int,
        from_block: Optional[int] = None,
        concurrent: bool = False,
    ) -> ScanResult:
        """
        Scan up to latest_block.

        Without from_block only the recent window is searched and the result
        is flagged window_only, so callers can tell "absent" apart from
        "not in the last max_block_range blocks".
        """
        window_only = from_block is None
        if window_only:
            from_block, to_block = self.recent_window(latest_block)
        else:
            to_block = latest_block

        events = await self.scan(query_events, log_filter, from_block, to_block, concurrent)
        return ScanResult(
            events=events,
            from_block=from_block,
            to_block=to_block,
            window_only=window_only,
            chunks=len(self.chunk_ranges(from_block, to_block)),
        )

    # ── Creation-Block Locator ───────────────────────────────────────────

    async def _probe(
        self, has_code_at: CodeProbe, block: int, failures: List[Exception]
    ) -> bool:
        """Code present at block? Errors count as absent once retries run out."""
        for _attempt in range(self.probe_retries + 1):
            try:
                return await has_code_at(block)
            except Exception as exc:  # noqa: BLE001
                failures.append(exc)
        return False

    async def find_creation_block(
        self, has_code_at: CodeProbe, latest_block: int, address: str = ""
    ) -> int:
        """
        First block at which the address has deployed bytecode (best effort).

        Raises:
            ClassifiedError(NOT_A_CONTRACT): No code at latest_block.
            ClassifiedError: No lookup after the precondition saw code; the
                last lookup error decides the kind (timeouts → NETWORK_ERROR).
        """
        if not await has_code_at(latest_block):
            raise ClassifiedError(
                ErrorKind.NOT_A_CONTRACT,
                f"Address {address or '(unknown)'} is not a contract "
                f"(no code at block {latest_block}).",
            )

        low, high = 0, latest_block
        found: Optional[int] = None
        failures: List[Exception] = []

        while low <= high:
            mid = (low + high) // 2
            if await self._probe(has_code_at, mid, failures):
                found = mid
                high = mid - 1
            else:
                low = mid + 1

        if found is None:
            if failures:
                raise classify_chain_error(failures[-1]) from failures[-1]
            raise ClassifiedError(
                ErrorKind.UNKNOWN_ERROR,
                f"Could not determine creation block for {address or '(unknown)'}.",
            )
        return found
