"""
Unit Tests for token_reader.py
==============================

TokenReader against an in-memory ChainClient stand-in: pool decoding,
error classification, the bounded metadata scan and the creation-block
flow.  All tests are offline — no network calls.
"""

import asyncio
import json

import httpx
import pytest
from eth_abi import encode

from curve_math import WAD
from tama_cli.central_config import TESTNET
from tama_cli.errors import ClassifiedError, ErrorKind, MetadataNotFoundError
from tama_cli.rpc_helpers import (
    SELECTORS,
    TOKEN_CREATED_TOPIC,
    RpcError,
    address_topic,
    encode_address,
    encode_uint256,
)
from token_reader import CompleteTokenInfo, TokenMetadata, TokenReader


TOKEN = "0x" + "ab" * 20
CREATOR = "0x" + "cd" * 20


# ── Fakes ────────────────────────────────────────────────────────────────

def pools_hex(token=TOKEN, last_price=28 * 10 ** 9, last_mcap=30 * WAD) -> str:
    words = [
        encode_address(token),
        encode_uint256(800_000_000 * WAD),
        encode_uint256(1_073_000_000 * WAD),
        encode_uint256(0),
        encode_uint256(30 * WAD),
        encode_uint256(last_price),
        encode_uint256(last_mcap),
        encode_uint256(1_700_000_000),
        encode_uint256(9_000),
        encode_address(CREATOR),
        encode_address("0x" + "ef" * 20),
        "12" * 32,
        encode_uint256(1_073_000_000 * WAD * 30 * WAD),
    ]
    return "".join(words)


def creation_log(block: int, name: str, symbol: str = "TAMA", log_index: int = 0) -> dict:
    data = encode(
        ["string", "string", "string", "string", "string"],
        [name, symbol, f"{name} to the moon", json.dumps({"twitterUrl": "https://x.com/tama"}),
         "ipfs://bafy-image"],
    )
    return {
        "address": TESTNET.contract_address,
        "blockNumber": block,
        "logIndex": log_index,
        "topics": [TOKEN_CREATED_TOPIC, address_topic(CREATOR), address_topic(TOKEN)],
        "data": "0x" + data.hex(),
    }


class FakeChainClient:
    """Chain-query capability over fixed state."""

    def __init__(self, pool=None, logs=(), latest=10_000, creation_block=None,
                 read_error=None, logs_error=None):
        self.pool = pools_hex() if pool is None else pool
        self.logs = list(logs)
        self.latest = latest
        self.creation_block = creation_block
        self.read_error = read_error
        self.logs_error = logs_error
        self.reads = []
        self.log_calls = []

    async def read_state(self, to, data, block="latest"):
        self.reads.append((to, data))
        if self.read_error is not None:
            raise self.read_error
        return self.pool

    async def get_block_number(self):
        return self.latest

    async def get_logs(self, log_filter, from_block, to_block):
        self.log_calls.append((log_filter, from_block, to_block))
        if self.logs_error is not None:
            raise self.logs_error
        return [log for log in self.logs if from_block <= log["blockNumber"] <= to_block]

    async def has_code_at(self, address, block="latest"):
        return self.creation_block is not None and block >= self.creation_block


class FlakyHistoryClient(FakeChainClient):
    """First code check succeeds; the node times out on every later one."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.code_checks = 0

    async def has_code_at(self, address, block="latest"):
        self.code_checks += 1
        if self.code_checks == 1:
            return True
        raise httpx.ReadTimeout("timed out")


class StalledLogsClient(FakeChainClient):
    """get_logs hangs until cancelled; the pool read fails once a scan is in flight."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.scan_started = None
        self.scan_cancelled = False

    def _started(self):
        if self.scan_started is None:
            self.scan_started = asyncio.Event()
        return self.scan_started

    async def read_state(self, to, data, block="latest"):
        await self._started().wait()
        return await super().read_state(to, data, block)

    async def get_logs(self, log_filter, from_block, to_block):
        self._started().set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.scan_cancelled = True
            raise
        return []


def make_reader(client, max_block_range=500):
    return TokenReader(TESTNET, client=client, max_block_range=max_block_range)


# ── Pool State ───────────────────────────────────────────────────────────

class TestGetPoolState:
    def test_decodes_pool(self):
        client = FakeChainClient()
        pool = asyncio.run(make_reader(client).get_pool_state(TOKEN))
        assert pool.token == TOKEN
        assert pool.creator == CREATOR
        assert pool.virtual_eth_reserve == 30 * WAD
        assert pool.last_mcap_in_eth == 30 * WAD

    def test_calls_pools_on_main_contract(self):
        client = FakeChainClient()
        asyncio.run(make_reader(client).get_pool_state(TOKEN))
        assert client.reads == [
            (TESTNET.contract_address, SELECTORS["pools_"] + encode_address(TOKEN))
        ]

    def test_unknown_token_is_contract_error(self):
        client = FakeChainClient(pool=pools_hex(token="0x" + "00" * 20))
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_pool_state(TOKEN))
        assert exc_info.value.kind is ErrorKind.CONTRACT_ERROR
        assert "No tama.meme pool" in exc_info.value.message

    def test_revert_is_contract_error(self):
        client = FakeChainClient(read_error=RpcError("execution reverted", code=3))
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_pool_state(TOKEN))
        assert exc_info.value.kind is ErrorKind.CONTRACT_ERROR
        assert isinstance(exc_info.value.original, RpcError)

    def test_unrecognised_failure_defaults_to_contract_error(self):
        client = FakeChainClient(read_error=RuntimeError("something odd"))
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_pool_state(TOKEN))
        assert exc_info.value.kind is ErrorKind.CONTRACT_ERROR

    def test_transport_failure_is_network_error(self):
        client = FakeChainClient(read_error=httpx.ConnectError("connection refused"))
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_pool_state(TOKEN))
        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR

    def test_truncated_response_is_contract_error(self):
        client = FakeChainClient(pool="00" * 64)
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_pool_state(TOKEN))
        assert exc_info.value.kind is ErrorKind.CONTRACT_ERROR

    @pytest.mark.parametrize("bad", ["", "0x123", "not_an_address", "ab" * 20])
    def test_invalid_address_rejected_before_rpc(self, bad):
        client = FakeChainClient()
        with pytest.raises(ValueError):
            asyncio.run(make_reader(client).get_pool_state(bad))
        assert client.reads == []


# ── Metadata ─────────────────────────────────────────────────────────────

class TestGetTokenMetadata:
    def test_found_in_recent_window(self):
        client = FakeChainClient(logs=[creation_log(9_800, "Tama")])
        meta = asyncio.run(make_reader(client).get_token_metadata(TOKEN))
        assert meta == TokenMetadata(
            name="Tama",
            symbol="TAMA",
            description="Tama to the moon",
            extended='{"twitterUrl": "https://x.com/tama"}',
            image_url="ipfs://bafy-image",
        )

    def test_filter_targets_token_created_for_token(self):
        client = FakeChainClient(logs=[creation_log(9_800, "Tama")])
        asyncio.run(make_reader(client).get_token_metadata(TOKEN))
        log_filter, _, _ = client.log_calls[0]
        assert log_filter["address"] == TESTNET.contract_address
        assert log_filter["topics"][0] == TOKEN_CREATED_TOPIC
        assert log_filter["topics"][1] is None
        assert log_filter["topics"][2] == address_topic(TOKEN)

    def test_default_scan_is_one_window(self):
        client = FakeChainClient(logs=[creation_log(9_800, "Tama")])
        asyncio.run(make_reader(client).get_token_metadata(TOKEN))
        assert [(s, e) for _, s, e in client.log_calls] == [(9_501, 10_000)]

    def test_latest_event_wins(self):
        client = FakeChainClient(
            logs=[creation_log(200, "Old Name"), creation_log(4_321, "New Name")]
        )
        meta = asyncio.run(make_reader(client).get_token_metadata(TOKEN, from_block=0))
        assert meta.name == "New Name"

    def test_latest_event_wins_within_one_block(self):
        client = FakeChainClient(
            logs=[creation_log(700, "First", log_index=1), creation_log(700, "Second", log_index=5)]
        )
        meta = asyncio.run(make_reader(client).get_token_metadata(TOKEN, from_block=0))
        assert meta.name == "Second"

    def test_old_token_outside_window(self):
        client = FakeChainClient(logs=[creation_log(100, "Tama")])
        with pytest.raises(MetadataNotFoundError) as exc_info:
            asyncio.run(make_reader(client).get_token_metadata(TOKEN))
        err = exc_info.value
        assert err.kind is ErrorKind.METADATA_NOT_FOUND
        assert err.window_only is True
        assert (err.from_block, err.to_block) == (9_501, 10_000)
        assert "earlier start block" in err.message

    def test_explicit_start_finds_old_token(self):
        client = FakeChainClient(logs=[creation_log(100, "Tama")])
        meta = asyncio.run(make_reader(client).get_token_metadata(TOKEN, from_block=50))
        assert meta.name == "Tama"
        assert all(e - s + 1 <= 500 for _, s, e in client.log_calls)

    def test_not_found_after_full_scan(self):
        client = FakeChainClient(logs=[])
        with pytest.raises(MetadataNotFoundError) as exc_info:
            asyncio.run(make_reader(client).get_token_metadata(TOKEN, from_block=0))
        assert exc_info.value.window_only is False
        assert "earlier start block" not in exc_info.value.message

    def test_start_after_latest_rejected(self):
        client = FakeChainClient(latest=1_000)
        with pytest.raises(ValueError):
            asyncio.run(make_reader(client).get_token_metadata(TOKEN, from_block=1_001))

    def test_negative_start_rejected(self):
        with pytest.raises(ValueError):
            asyncio.run(make_reader(FakeChainClient()).get_token_metadata(TOKEN, from_block=-1))

    def test_log_query_failure_classified(self):
        client = FakeChainClient(logs_error=RpcError("rate limit exceeded", code=-32005))
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_token_metadata(TOKEN))
        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR

    def test_undecodable_event_is_contract_error(self):
        log = creation_log(9_800, "Tama")
        log["data"] = "0x1234"
        client = FakeChainClient(logs=[log])
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_token_metadata(TOKEN))
        assert exc_info.value.kind is ErrorKind.CONTRACT_ERROR


# ── Creation Block & Complete Info ───────────────────────────────────────

class TestCreationFlow:
    def test_find_creation_block(self):
        client = FakeChainClient(creation_block=3_333)
        assert asyncio.run(make_reader(client).find_creation_block(TOKEN)) == 3_333

    def test_not_a_contract(self):
        client = FakeChainClient(creation_block=None)
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).find_creation_block(TOKEN))
        assert exc_info.value.kind is ErrorKind.NOT_A_CONTRACT

    def test_complete_info_with_creation_lookup(self):
        client = FakeChainClient(logs=[creation_log(3_333, "Tama")], creation_block=3_333)
        info = asyncio.run(
            make_reader(client).get_complete_token_info(TOKEN, locate_creation=True)
        )
        assert isinstance(info, CompleteTokenInfo)
        assert info.metadata.name == "Tama"
        assert info.formatted_market_cap == "30.0"
        assert info.formatted_price == "0.000000028"
        assert client.log_calls[0][1] == 3_333

    def test_complete_info_window_miss(self):
        client = FakeChainClient(logs=[creation_log(3_333, "Tama")], creation_block=3_333)
        with pytest.raises(MetadataNotFoundError):
            asyncio.run(make_reader(client).get_complete_token_info(TOKEN))

    def test_complete_info_fails_when_pool_fails(self):
        client = FakeChainClient(
            logs=[creation_log(9_800, "Tama")],
            read_error=RpcError("execution reverted", code=3),
        )
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_complete_token_info(TOKEN))
        assert exc_info.value.kind is ErrorKind.CONTRACT_ERROR

    def test_complete_info_creation_lookup_network_outage(self):
        client = FlakyHistoryClient(logs=[creation_log(3_333, "Tama")], creation_block=3_333)
        with pytest.raises(ClassifiedError) as exc_info:
            asyncio.run(make_reader(client).get_complete_token_info(TOKEN, locate_creation=True))
        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR
        assert client.log_calls == []

    def test_pool_failure_cancels_metadata_scan(self):
        client = StalledLogsClient(read_error=RpcError("execution reverted", code=3))

        async def run():
            with pytest.raises(ClassifiedError):
                await make_reader(client).get_complete_token_info(TOKEN, from_block=0)
            return client.scan_cancelled

        assert asyncio.run(run()) is True


class TestExtendedLinks:
    def _info(self, extended):
        meta = TokenMetadata("Tama", "TAMA", "", extended, "")
        return CompleteTokenInfo(pool=None, metadata=meta,
                                 formatted_price="0.0", formatted_market_cap="0.0")

    def test_valid_json(self):
        info = self._info('{"twitterUrl": "https://x.com/tama", "websiteUrl": "https://tama.meme"}')
        assert info.extended_links() == {
            "twitterUrl": "https://x.com/tama",
            "websiteUrl": "https://tama.meme",
        }

    @pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", "{"])
    def test_invalid_json_is_empty(self, raw):
        assert self._info(raw).extended_links() == {}
