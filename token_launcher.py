#!/usr/bin/env python3
"""
Token Launcher — create a memecoin on tama.meme
===============================================

Four stages, no automatic retries. A failure in any stage aborts the
launch with a ClassifiedError tagged with that stage:

  1. ComputeFee      creationFee_() (read fresh every launch, it is mutable
                     protocol state) + initial buy-in parsed from RON → wei
  2. Submit          createNewToken(name, symbol, initAmountIn, description,
                     extended, tokenUrlImage, referral=b"") with
                     value = fee + buy-in
  3. AwaitReceipt    wait until mined; receipt status 0 → CONTRACT_ERROR
  4. ExtractAddress  first receipt log whose topic[1] is the zero hash —
                     the contract's "new token" marker (a mint from
                     address(0)) — gives the token address as the log's
                     emitting address

Stage 4 is best effort: the transaction already succeeded, so a receipt
without a matching log yields LaunchResult(token_address=None) instead of
an error.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from curve_math import format_ether, parse_ether
from tama_cli.central_config import NetworkConfig, get_network, tama_token_url
from tama_cli.chain_client import ChainClient
from tama_cli.errors import TransactionRevertedError, guard_chain_call
from tama_cli.rpc_helpers import (
    SELECTORS,
    ZERO_HASH,
    decode_uint as _decode_uint,
    encode_create_new_token as _encode_create_new_token,
)

EMPTY_REFERRAL = b""

# Keys of the `extended` JSON understood by the tama.meme frontend
EXTENDED_LINK_KEYS = {
    "twitter": "twitterUrl",
    "discord": "discordUrl",
    "telegram": "telegramUrl",
    "website": "websiteUrl",
}


class LaunchStage(Enum):
    COMPUTE_FEE = "ComputeFee"
    SUBMIT = "Submit"
    AWAIT_RECEIPT = "AwaitReceipt"
    # Never attached to an error: a receipt without a creation log still
    # yields a result, with token_address=None.
    EXTRACT_ADDRESS = "ExtractAddress"


# ── Data ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LaunchParameters:
    """What the creator supplies. The contract is the only validator."""

    name: str
    symbol: str
    init_amount_in: str  # decimal RON, e.g. "0.1"
    description: str = ""
    extended: str = ""
    image_url: str = ""

    @staticmethod
    def build_extended(**links: Optional[str]) -> str:
        """
        Social links → `extended` JSON string.

        >>> LaunchParameters.build_extended(twitter="https://x.com/tama")
        '{"twitterUrl": "https://x.com/tama"}'
        """
        unknown = set(links) - set(EXTENDED_LINK_KEYS)
        if unknown:
            raise ValueError(f"Unknown link type(s): {sorted(unknown)}")
        payload = {
            EXTENDED_LINK_KEYS[kind]: url for kind, url in links.items() if url
        }
        return json.dumps(payload)


@dataclass(frozen=True)
class PaymentQuote:
    """Exact value attached to createNewToken, in wei."""

    creation_fee: int
    buy_in: int

    @property
    def total(self) -> int:
        return self.creation_fee + self.buy_in


@dataclass(frozen=True)
class LaunchResult:
    transaction_hash: str
    token_address: Optional[str] = None
    payment: Optional[PaymentQuote] = None
    image_url: Optional[str] = None

    def explorer_url(self, network: NetworkConfig) -> str:
        return network.tx_url(self.transaction_hash)

    def tama_url(self) -> Optional[str]:
        return tama_token_url(self.token_address) if self.token_address else None


# ── Receipt Parsing ─────────────────────────────────────────────────────


def is_creation_log(log: Dict[str, Any]) -> bool:
    """The contract's new-token marker: topic[1] == zero hash."""
    topics = log.get("topics") or []
    return len(topics) > 1 and str(topics[1]).lower() == ZERO_HASH


def extract_token_address(receipt: Dict[str, Any]) -> Optional[str]:
    """Emitting address of the first creation log, or None."""
    for log in receipt.get("logs") or []:
        if is_creation_log(log):
            return log.get("address")
    return None


# ── Token Launcher ──────────────────────────────────────────────────────


class TokenLauncher:
    """
    Usage:
        client = ChainClient(get_network("testnet"), private_key=key)
        launcher = TokenLauncher("testnet", client)
        result = await launcher.launch_token(LaunchParameters(
            name="Rakūn Inu", symbol="TANUKI", init_amount_in="0.1",
            image_url="ipfs://…"))
    """

    def __init__(
        self,
        network: Union[str, NetworkConfig] = "mainnet",
        client: Optional[ChainClient] = None,
    ):
        self.network = get_network(network) if isinstance(network, str) else network
        self.client = client or ChainClient(self.network)

    async def get_creation_fee(self) -> int:
        """Current creationFee_() in wei."""
        raw = await guard_chain_call(
            self.client.read_state(self.network.contract_address, SELECTORS["creationFee_"]),
            stage=LaunchStage.COMPUTE_FEE,
        )
        return _decode_uint(raw, 0)

    async def compute_payment(self, init_amount_in: str) -> PaymentQuote:
        """
        Stage 1 — fee + buy-in, read fresh.

        Raises:
            ValueError: init_amount_in is not a decimal RON amount.
            ClassifiedError: The fee read failed.
        """
        buy_in = parse_ether(init_amount_in)
        fee = await self.get_creation_fee()
        return PaymentQuote(creation_fee=fee, buy_in=buy_in)

    async def _await_success(self, tx_hash: str) -> Dict[str, Any]:
        receipt = await self.client.await_receipt(tx_hash)
        if receipt.get("status") == 0:
            raise TransactionRevertedError(tx_hash, receipt)
        return receipt

    async def launch_token(self, params: LaunchParameters) -> LaunchResult:
        """
        Run all four stages.

        Returns:
            LaunchResult; token_address is None if no creation log was found.

        Raises:
            ClassifiedError: With .stage set to the failing LaunchStage.
        """
        contract = self.network.contract_address

        print(f"  💰 Fetching creation fee from {self.network.name} contract…")
        quote = await self.compute_payment(params.init_amount_in)
        print(f"     Creation fee     : {format_ether(quote.creation_fee)} {self.network.currency}")
        print(f"     Initial liquidity: {format_ether(quote.buy_in)} {self.network.currency}")
        print(f"     Total value      : {format_ether(quote.total)} {self.network.currency}")

        calldata = _encode_create_new_token(
            params.name,
            params.symbol,
            quote.buy_in,
            params.description,
            params.extended,
            params.image_url,
            EMPTY_REFERRAL,
        )

        print(f"  🚀 Submitting {params.name} ({params.symbol})…")
        tx_hash = await guard_chain_call(
            self.client.submit_transaction(contract, calldata, quote.total),
            stage=LaunchStage.SUBMIT,
        )
        print(f"     Transaction submitted: {tx_hash}")

        print("  ⏳ Waiting for confirmation…")
        receipt = await guard_chain_call(
            self._await_success(tx_hash),
            stage=LaunchStage.AWAIT_RECEIPT,
        )
        print(f"  ✅ Confirmed in block {receipt.get('blockNumber')}")

        token_address = extract_token_address(receipt)
        if token_address:
            print(f"  🪙 New token: {token_address}")
        else:
            print("  ⚠️  Token created, but address could not be extracted from logs")

        return LaunchResult(
            transaction_hash=tx_hash,
            token_address=token_address,
            payment=quote,
            image_url=params.image_url or None,
        )

    async def launch_token_with_image(
        self,
        params: LaunchParameters,
        image: bytes,
        filename: str,
        uploader: Any,
    ) -> LaunchResult:
        """
        Upload the image, then launch with the returned URL.

        `uploader` is anything with `async upload(payload, filename) -> url`
        (IpfsUploader); its failures arrive already classified.
        """
        image_url = await uploader.upload(image, filename)
        params = LaunchParameters(
            name=params.name,
            symbol=params.symbol,
            init_amount_in=params.init_amount_in,
            description=params.description,
            extended=params.extended,
            image_url=image_url,
        )
        return await self.launch_token(params)
