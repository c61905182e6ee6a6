#!/usr/bin/env python3
"""
RPC Helpers — Shared ABI Encoding/Decoding and JSON-RPC Client
===============================================================

Consolidates low-level EVM interaction primitives used by the token
reader, the history scanner and the token launcher:

  • ABI encoding/decoding (uint256, address, bytes32, dynamic strings)
  • Function selectors and event topics for the tama.meme main contract
  • JSON-RPC client (eth_call, eth_getCode, eth_getLogs, eth_blockNumber,
    transaction submission and receipts)

All constants reference the Ethereum ABI specification:
  https://docs.soliditylang.org/en/latest/abi-spec.html
JSON-RPC methods:
  https://ethereum.org/en/developers/docs/apis/json-rpc/

Terminology:
  • Word:  32 bytes = 256 bits = 64 hex characters
  • Slot:  Position of a 32-byte word in an ABI response
  • Topic: 32-byte indexed log field; topic[0] is the event signature hash
"""

import re
from typing import Any, Dict, List, Optional

import httpx
from eth_abi.abi import encode as abi_encode, decode as abi_decode
from eth_utils.crypto import keccak

# ── ABI Word Constants ──────────────────────────────────────────────────
# Ethereum ABI spec: https://docs.soliditylang.org/en/latest/abi-spec.html

ABI_WORD_HEX = 64            # 32 bytes × 2 hex chars = 64 hex characters
ADDRESS_HEX = 40              # 20 bytes × 2 = 40 hex characters
ADDRESS_PAD_HEX = 24          # Left padding in a 32-byte slot = 64 - 40 = 24 hex chars

ZERO_HASH = "0x" + "0" * ABI_WORD_HEX
ZERO_ADDRESS = "0x" + "0" * ADDRESS_HEX

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


def is_address(value: str) -> bool:
    """True for a 0x-prefixed 20-byte hex address (any checksum casing)."""
    return bool(value) and _ADDRESS_RE.fullmatch(value) is not None


def strip_0x(hex_str: str) -> str:
    return hex_str[2:] if hex_str.startswith(("0x", "0X")) else hex_str


# ── Contract Signatures ─────────────────────────────────────────────────
# tama.meme main contract. Selectors / topics are keccak256 of these
# canonical signatures, so the ABI lives in exactly one place.

SIGNATURES: Dict[str, str] = {
    # Read-only state
    "pools_":         "pools_(address)",
    "creationFee_":   "creationFee_()",

    # Payable write: name, symbol, initAmountIn (wei), description,
    # extended (JSON links), tokenUrlImage, referral payload
    "createNewToken": "createNewToken(string,string,uint256,string,string,string,bytes)",

    # Events
    "TokenCreated":   "TokenCreated(address,address,string,string,string,string,string)",
}


def function_selector(signature: str) -> str:
    """First 4 bytes of keccak256(signature), 0x-prefixed."""
    return "0x" + keccak(text=signature)[:4].hex()


def event_topic(signature: str) -> str:
    """Full keccak256(signature) — topic[0] of the event's logs."""
    return "0x" + keccak(text=signature).hex()


SELECTORS: Dict[str, str] = {
    name: function_selector(SIGNATURES[name])
    for name in ("pools_", "creationFee_", "createNewToken")
}

TOKEN_CREATED_TOPIC = event_topic(SIGNATURES["TokenCreated"])

# Non-indexed TokenCreated fields, in ABI order
TOKEN_CREATED_DATA_TYPES = ["string", "string", "string", "string", "string"]

CREATE_NEW_TOKEN_TYPES = [
    "string", "string", "uint256", "string", "string", "string", "bytes",
]


# ── ABI Encoding ────────────────────────────────────────────────────────

def encode_uint256(value: int) -> str:
    """ABI-encode a uint256 as 32-byte hex (no 0x prefix).

    >>> encode_uint256(1)
    '0000000000000000000000000000000000000000000000000000000000000001'
    """
    return format(value, f'0{ABI_WORD_HEX}x')


def encode_address(addr: str) -> str:
    """ABI-encode an address as 32 bytes (left-padded, no 0x prefix).

    >>> encode_address('0xA54b0184D12349Cf65281C6F965A74828DDd9E8F')
    '000000000000000000000000a54b0184d12349cf65281c6f965a74828ddd9e8f'
    """
    return addr.lower().replace("0x", "").zfill(ABI_WORD_HEX)


def address_topic(addr: str) -> str:
    """An address as an indexed log topic (0x + 32-byte word)."""
    return "0x" + encode_address(addr)


def encode_create_new_token(
    name: str,
    symbol: str,
    init_amount_in: int,
    description: str,
    extended: str,
    image_url: str,
    referral: bytes = b"",
) -> str:
    """Full calldata (0x-prefixed) for createNewToken(...)."""
    args = abi_encode(
        CREATE_NEW_TOKEN_TYPES,
        [name, symbol, init_amount_in, description, extended, image_url, referral],
    )
    return SELECTORS["createNewToken"] + args.hex()


# ── ABI Decoding ────────────────────────────────────────────────────────

def decode_uint(hex_data: str, slot: int = 0) -> int:
    """Decode uint256 from ABI response at 32-byte slot offset.

    Args:
        hex_data: Hex string (without 0x prefix).
        slot: Which 32-byte word to read (0-indexed).
    """
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return int(word, 16)


def decode_address(hex_data: str, slot: int = 0) -> str:
    """Decode address (last 20 bytes of 32-byte slot).

    Args:
        hex_data: Hex string (without 0x prefix).
        slot: Which 32-byte word to read (0-indexed).
    """
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return "0x" + word[ADDRESS_PAD_HEX:]


def decode_bytes32(hex_data: str, slot: int = 0) -> str:
    """Decode a bytes32 slot as a 0x-prefixed hex string."""
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return "0x" + word


def decode_token_created(data: str) -> Dict[str, str]:
    """Decode the non-indexed part of a TokenCreated log.

    Returns:
        Dict with name, symbol, description, extended, image_url.
    """
    name, symbol, description, extended, image_url = abi_decode(
        TOKEN_CREATED_DATA_TYPES, bytes.fromhex(strip_0x(data))
    )
    return {
        "name": name,
        "symbol": symbol,
        "description": description,
        "extended": extended,
        "image_url": image_url,
    }


def hex_to_int(value: Any) -> int:
    """Quantity field → int ('0x1a' or already an int)."""
    if isinstance(value, int):
        return value
    return int(value, 16)


def to_block_tag(block: Any) -> str:
    """Block number → hex quantity; tags like 'latest' pass through."""
    if isinstance(block, int):
        if block < 0:
            raise ValueError(f"Block number must be non-negative, got {block}")
        return hex(block)
    return block


def normalize_log(log: Dict[str, Any]) -> Dict[str, Any]:
    """Log entry with int blockNumber/logIndex and lower-cased topics."""
    out = dict(log)
    for key in ("blockNumber", "logIndex", "transactionIndex"):
        if out.get(key) is not None:
            out[key] = hex_to_int(out[key])
    out["topics"] = [t.lower() for t in out.get("topics") or []]
    return out


# ── JSON-RPC Client ─────────────────────────────────────────────────────

class RpcError(RuntimeError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(f"RPC error: {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_response(cls, error: Any) -> "RpcError":
        if isinstance(error, dict):
            return cls(
                str(error.get("message", error)),
                code=error.get("code"),
                data=error.get("data"),
            )
        return cls(str(error))


async def rpc_request(
    rpc_url: str, method: str, params: List[Any], timeout: int = 20
) -> Any:
    """
    Send one JSON-RPC request and return its "result" member.

    Raises:
        RpcError: If the node returns an error object.
        httpx.HTTPStatusError: On non-2xx HTTP status (e.g. 429, 5xx).
        httpx.TransportError: On connectivity failures / timeouts.
    """
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params,
    }
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(rpc_url, json=payload)
        resp.raise_for_status()
        result = resp.json()
    if "error" in result:
        raise RpcError.from_response(result["error"])
    return result.get("result")


async def eth_call(
    rpc_url: str, to: str, data: str, block: Any = "latest", timeout: int = 20
) -> str:
    """
    Execute eth_call on an EVM node.

    Args:
        rpc_url: JSON-RPC endpoint URL (e.g. https://api.roninchain.com/rpc)
        to: Contract address (0x...)
        data: ABI-encoded calldata (0x + selector + params)
        block: Block number or tag
        timeout: HTTP timeout in seconds

    Returns:
        Hex response string (without 0x prefix).

    Raises:
        RpcError: If RPC returns an error or empty response.
    """
    raw = await rpc_request(
        rpc_url, "eth_call", [{"to": to, "data": data}, to_block_tag(block)], timeout
    )
    if not raw or raw == "0x" or len(raw) < 4:
        raise RpcError("Empty response — contract may not exist at this address")
    return raw[2:]  # strip 0x prefix


async def eth_get_code(
    rpc_url: str, address: str, block: Any = "latest", timeout: int = 20
) -> str:
    """Deployed bytecode at `address` as of `block` ("0x" when none)."""
    code = await rpc_request(
        rpc_url, "eth_getCode", [address, to_block_tag(block)], timeout
    )
    return code or "0x"


async def eth_block_number(rpc_url: str, timeout: int = 10) -> int:
    """
    Get the latest block number from an EVM node.

    Args:
        rpc_url: JSON-RPC endpoint URL
        timeout: HTTP timeout in seconds

    Returns:
        Latest block number as integer.
    """
    return hex_to_int(await rpc_request(rpc_url, "eth_blockNumber", [], timeout))


async def eth_get_logs(
    rpc_url: str,
    log_filter: Dict[str, Any],
    from_block: int,
    to_block: int,
    timeout: int = 30,
) -> List[Dict[str, Any]]:
    """
    eth_getLogs over [from_block, to_block] (inclusive).

    `log_filter` carries address/topics; the block bounds are applied here
    so callers can reuse one filter across chunks.
    """
    params = dict(log_filter)
    params["fromBlock"] = to_block_tag(from_block)
    params["toBlock"] = to_block_tag(to_block)
    logs = await rpc_request(rpc_url, "eth_getLogs", [params], timeout)
    return logs or []


async def eth_gas_price(rpc_url: str, timeout: int = 10) -> int:
    return hex_to_int(await rpc_request(rpc_url, "eth_gasPrice", [], timeout))


async def eth_estimate_gas(rpc_url: str, tx: Dict[str, Any], timeout: int = 20) -> int:
    return hex_to_int(await rpc_request(rpc_url, "eth_estimateGas", [tx], timeout))


async def eth_get_transaction_count(
    rpc_url: str, address: str, block: str = "pending", timeout: int = 10
) -> int:
    return hex_to_int(
        await rpc_request(rpc_url, "eth_getTransactionCount", [address, block], timeout)
    )


async def eth_send_transaction(rpc_url: str, tx: Dict[str, Any], timeout: int = 60) -> str:
    """Submit an unsigned transaction for node/wallet-side signing. Returns tx hash."""
    return await rpc_request(rpc_url, "eth_sendTransaction", [tx], timeout)


async def eth_send_raw_transaction(rpc_url: str, raw_tx: str, timeout: int = 20) -> str:
    """Broadcast a signed transaction (0x-hex). Returns tx hash."""
    return await rpc_request(rpc_url, "eth_sendRawTransaction", [raw_tx], timeout)


async def eth_get_transaction_receipt(
    rpc_url: str, tx_hash: str, timeout: int = 20
) -> Optional[Dict[str, Any]]:
    """Receipt dict, or None while the transaction is still pending."""
    return await rpc_request(rpc_url, "eth_getTransactionReceipt", [tx_hash], timeout)
