"""
Test Suite — History Scanner
============================

Creation-block binary search and chunked event scans, run against
in-memory chain fakes (no network).

Run:  python -m pytest tests/test_scanner.py -v
"""

import asyncio

import httpx
import pytest

from history_scanner import HistoryScanner, ScanResult
from tama_cli.errors import ClassifiedError, ErrorKind


# ── Fakes ────────────────────────────────────────────────────────────────

def code_oracle(creation_block: int):
    """has_code_at for a contract deployed at creation_block."""
    async def has_code_at(block: int) -> bool:
        return block >= creation_block
    return has_code_at


class FakeLogStore:
    """eth_getLogs over a fixed event list; records every queried range."""

    def __init__(self, event_blocks, fail_on_block=None):
        self.events = [
            {"blockNumber": b, "logIndex": i, "data": f"0x{b:x}"}
            for i, b in enumerate(sorted(event_blocks))
        ]
        self.calls = []
        self.fail_on_block = fail_on_block

    async def query(self, log_filter, from_block, to_block):
        self.calls.append((from_block, to_block))
        if self.fail_on_block is not None and from_block <= self.fail_on_block <= to_block:
            raise RuntimeError("RPC error: cannot get more than 500 blocks")
        await asyncio.sleep(0)
        return [e for e in self.events if from_block <= e["blockNumber"] <= to_block]

    def expected(self, from_block, to_block):
        return [e for e in self.events if from_block <= e["blockNumber"] <= to_block]


FILTER = {"address": "0x" + "11" * 20, "topics": ["0x" + "22" * 32]}


# ── Constructor ──────────────────────────────────────────────────────────

class TestScannerConfig:
    def test_defaults(self):
        scanner = HistoryScanner()
        assert scanner.max_block_range == 500
        assert scanner.probe_retries == 0

    @pytest.mark.parametrize("bad", [0, -1, -500])
    def test_range_below_one_rejected(self, bad):
        with pytest.raises(ValueError):
            HistoryScanner(max_block_range=bad)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            HistoryScanner(probe_retries=-1)


# ── Creation-Block Locator ──────────────────────────────────────────────

class TestFindCreationBlock:
    """Returns exactly the first block with code when probes are reliable."""

    @pytest.mark.parametrize("creation", [0, 1, 2, 7, 499, 500, 12_345, 999_999, 1_000_000])
    def test_exact_block(self, creation):
        scanner = HistoryScanner()
        block = asyncio.run(scanner.find_creation_block(code_oracle(creation), 1_000_000))
        assert block == creation

    @pytest.mark.parametrize("latest", [0, 1, 2, 3, 17])
    def test_tiny_chains(self, latest):
        scanner = HistoryScanner()
        for creation in range(latest + 1):
            assert asyncio.run(
                scanner.find_creation_block(code_oracle(creation), latest)
            ) == creation

    def test_probe_count_logarithmic(self):
        calls = []

        async def has_code_at(block):
            calls.append(block)
            return block >= 654_321

        asyncio.run(HistoryScanner().find_creation_block(has_code_at, 40_000_000))
        assert len(calls) <= 1 + 27  # precondition + ceil(log2(40M + 1))

    def test_not_a_contract(self):
        async def no_code(block):
            return False

        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(HistoryScanner().find_creation_block(no_code, 5_000, "0x" + "aa" * 20))
        assert exc_info.value.kind is ErrorKind.NOT_A_CONTRACT
        assert "0x" + "aa" * 20 in exc_info.value.message

    def test_failed_probes_bias_later(self):
        creation = 1_000

        async def flaky(block):
            if 1_000 <= block < 1_500:
                raise RuntimeError("RPC error: header not found")
            return block >= creation

        block = asyncio.run(HistoryScanner().find_creation_block(flaky, 2_000))
        assert block >= creation
        assert block >= 1_500  # never earlier than the first reliable code block

    def test_only_latest_block_answers(self):
        latest = 9_999

        async def only_latest(block):
            if block == latest:
                return True
            raise RuntimeError("timeout")

        block = asyncio.run(HistoryScanner().find_creation_block(only_latest, latest))
        assert block == latest

    def test_unreachable_history_raises_network_error(self):
        calls = []

        async def node_goes_down(block):
            calls.append(block)
            if len(calls) == 1:
                return True
            raise httpx.ReadTimeout("timed out")

        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(HistoryScanner().find_creation_block(node_goes_down, 9_999))
        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR
        assert isinstance(exc_info.value.original, httpx.ReadTimeout)

    def test_code_vanishing_after_precondition_raises(self):
        calls = []

        async def self_destructed(block):
            calls.append(block)
            return len(calls) == 1

        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(
                HistoryScanner().find_creation_block(self_destructed, 9_999, "0x" + "aa" * 20)
            )
        assert exc_info.value.kind is ErrorKind.UNKNOWN_ERROR
        assert "Could not determine creation block" in exc_info.value.message

    def test_retries_recover_transient_failures(self):
        creation = 4_242
        latest = 100_000
        seen = set()

        async def fails_once(block):
            if block != latest and block not in seen:
                seen.add(block)
                raise RuntimeError("network hiccup")
            return block >= creation

        scanner = HistoryScanner(probe_retries=1)
        assert asyncio.run(scanner.find_creation_block(fails_once, latest)) == creation

    def test_precondition_failure_propagates(self):
        async def down(block):
            raise RuntimeError("connection refused")

        with pytest.raises(RuntimeError, match="connection refused"):
            asyncio.run(HistoryScanner().find_creation_block(down, 100))


# ── Chunking ─────────────────────────────────────────────────────────────

class TestChunkRanges:
    def test_exact_multiple(self):
        assert HistoryScanner(500).chunk_ranges(0, 1_999) == [
            (0, 499), (500, 999), (1_000, 1_499), (1_500, 1_999),
        ]

    def test_remainder_chunk(self):
        assert HistoryScanner(500).chunk_ranges(0, 500) == [(0, 499), (500, 500)]

    def test_single_block(self):
        assert HistoryScanner(500).chunk_ranges(10, 10) == [(10, 10)]

    @pytest.mark.parametrize("size", [1, 3, 100, 500])
    @pytest.mark.parametrize("span", [(0, 0), (5, 1_234), (40_000_000, 40_003_001)])
    def test_chunks_cover_range_without_gaps(self, size, span):
        start, end = span
        chunks = HistoryScanner(size).chunk_ranges(start, end)
        assert chunks[0][0] == start
        assert chunks[-1][1] == end
        for (s, e) in chunks:
            assert 1 <= e - s + 1 <= size
        for (_, prev_end), (next_start, _) in zip(chunks, chunks[1:]):
            assert next_start == prev_end + 1

    def test_reversed_range_rejected(self):
        with pytest.raises(ValueError):
            HistoryScanner().chunk_ranges(10, 9)

    def test_negative_bound_rejected(self):
        with pytest.raises(ValueError):
            HistoryScanner().chunk_ranges(-1, 9)

    def test_recent_window(self):
        scanner = HistoryScanner(500)
        assert scanner.recent_window(10_000) == (9_501, 10_000)
        assert scanner.recent_window(100) == (0, 100)


# ── Bounded Event Scan ──────────────────────────────────────────────────

class TestScan:
    BLOCKS = [0, 3, 499, 500, 501, 999, 1_000, 1_777, 2_500, 2_501, 4_999]

    @pytest.mark.parametrize("concurrent", [False, True])
    def test_equals_unbounded_query(self, concurrent):
        store = FakeLogStore(self.BLOCKS)
        events = asyncio.run(
            HistoryScanner(500).scan(store.query, FILTER, 0, 4_999, concurrent=concurrent)
        )
        assert events == store.expected(0, 4_999)

    def test_every_query_within_limit(self):
        store = FakeLogStore(self.BLOCKS)
        asyncio.run(HistoryScanner(500).scan(store.query, FILTER, 0, 4_999))
        assert len(store.calls) == 10
        assert all(e - s + 1 <= 500 for s, e in store.calls)

    def test_sequential_queries_ascending(self):
        store = FakeLogStore(self.BLOCKS)
        asyncio.run(HistoryScanner(500).scan(store.query, FILTER, 250, 2_600))
        starts = [s for s, _ in store.calls]
        assert starts == sorted(starts)

    def test_partial_range(self):
        store = FakeLogStore(self.BLOCKS)
        events = asyncio.run(HistoryScanner(7).scan(store.query, FILTER, 499, 1_000))
        assert [e["blockNumber"] for e in events] == [499, 500, 501, 999, 1_000]

    def test_chunk_failure_fails_scan(self):
        store = FakeLogStore(self.BLOCKS, fail_on_block=1_200)
        with pytest.raises(RuntimeError, match="RPC error"):
            asyncio.run(HistoryScanner(500).scan(store.query, FILTER, 0, 4_999))

    def test_filter_passed_through(self):
        seen = []

        async def query(log_filter, start, end):
            seen.append(log_filter)
            return []

        asyncio.run(HistoryScanner(500).scan(query, FILTER, 0, 1_000))
        assert seen and all(f is FILTER for f in seen)


class TestScanForEvents:
    def test_window_only_by_default(self):
        store = FakeLogStore([100, 9_600, 9_999])
        result = asyncio.run(
            HistoryScanner(500).scan_for_events(store.query, FILTER, 10_000)
        )
        assert isinstance(result, ScanResult)
        assert result.window_only is True
        assert (result.from_block, result.to_block) == (9_501, 10_000)
        assert [e["blockNumber"] for e in result.events] == [9_600, 9_999]
        assert store.calls == [(9_501, 10_000)]

    def test_explicit_start_scans_full_history(self):
        store = FakeLogStore([100, 9_600, 9_999])
        result = asyncio.run(
            HistoryScanner(500).scan_for_events(store.query, FILTER, 10_000, from_block=0)
        )
        assert result.window_only is False
        assert result.chunks == 21
        assert [e["blockNumber"] for e in result.events] == [100, 9_600, 9_999]

    def test_start_at_latest(self):
        store = FakeLogStore([10_000])
        result = asyncio.run(
            HistoryScanner(500).scan_for_events(store.query, FILTER, 10_000, from_block=10_000)
        )
        assert result.chunks == 1
        assert len(result.events) == 1

    def test_empty_result(self):
        store = FakeLogStore([])
        result = asyncio.run(
            HistoryScanner(500).scan_for_events(store.query, FILTER, 1_000, from_block=0)
        )
        assert result.events == []
