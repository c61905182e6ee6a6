"""
Error Classification — one taxonomy for chain and upload failures
==================================================================

Raw failures come from heterogeneous places: JSON-RPC error objects,
httpx transport exceptions, HTTP status codes, wallet rejections, reverted
receipts. They are classified exactly once, at the boundary nearest the
raw failure, into a ClassifiedError with a stable kind and a message that
can be shown to a user as-is.

Classification is an ordered table of (predicate, kind, message) rows,
evaluated top to bottom; the first matching row wins:

  Chain table:   INSUFFICIENT_FUNDS → USER_REJECTED → NETWORK_ERROR → CONTRACT_ERROR
  Upload table:  AUTHENTICATION_ERROR → UPLOAD_FAILED (413) → NETWORK_ERROR

NOT_A_CONTRACT and METADATA_NOT_FOUND are raised directly by the scanner
and the reader; they never come out of a table.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

import httpx

from tama_cli.rpc_helpers import RpcError


class ErrorKind(Enum):
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    USER_REJECTED = "USER_REJECTED"
    NETWORK_ERROR = "NETWORK_ERROR"
    CONTRACT_ERROR = "CONTRACT_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    NOT_A_CONTRACT = "NOT_A_CONTRACT"
    METADATA_NOT_FOUND = "METADATA_NOT_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ClassifiedError(Exception):
    """A failure with a stable kind, a human message and the raw cause."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        original: Optional[BaseException] = None,
        stage: Any = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.original = original
        self.stage = stage

    def __repr__(self) -> str:
        return f"ClassifiedError({self.kind.value}, {self.message!r})"


class MetadataNotFoundError(ClassifiedError):
    """No TokenCreated event for the token inside the searched block range."""

    def __init__(self, token_address: str, from_block: int, to_block: int, window_only: bool):
        message = (
            f"No creation event found for token {token_address} "
            f"in blocks {from_block}–{to_block}."
        )
        if window_only:
            message += (
                " Only the most recent block window was searched; "
                "supply an earlier start block (e.g. the token's creation block)."
            )
        super().__init__(ErrorKind.METADATA_NOT_FOUND, message)
        self.token_address = token_address
        self.from_block = from_block
        self.to_block = to_block
        self.window_only = window_only


class TransactionRevertedError(RuntimeError):
    """A mined transaction whose receipt reports status 0."""

    def __init__(self, tx_hash: str, receipt: Optional[dict] = None):
        super().__init__(f"Transaction {tx_hash} reverted (receipt status 0)")
        self.tx_hash = tx_hash
        self.receipt = receipt


class UploadError(RuntimeError):
    """Non-2xx answer (or unusable body) from the upload endpoint."""

    def __init__(self, message: str, status: int = 0, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


# ── Predicates ──────────────────────────────────────────────────────────

Rule = Tuple[Callable[[BaseException, str], bool], ErrorKind, str]


def _error_text(exc: BaseException) -> str:
    """Everything a provider may have put in the error, lower-cased."""
    parts = [str(exc)]
    if isinstance(exc, RpcError) and exc.data is not None:
        parts.append(str(exc.data))
    body = getattr(exc, "body", None)
    if body:
        parts.append(str(body))
    return " ".join(parts).lower()


def _contains(*needles: str) -> Callable[[BaseException, str], bool]:
    lowered = tuple(n.lower() for n in needles)
    return lambda exc, text: any(n in text for n in lowered)


def _rpc_code(*codes: int) -> Callable[[BaseException, str], bool]:
    return lambda exc, text: isinstance(exc, RpcError) and exc.code in codes


def _any(*predicates: Callable[[BaseException, str], bool]) -> Callable[[BaseException, str], bool]:
    return lambda exc, text: any(p(exc, text) for p in predicates)


def _http_status(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, UploadError):
        return exc.status
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, TimeoutError)):
        return 0
    return None


def _is_transport_failure(exc: BaseException, text: str) -> bool:
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, TimeoutError)):
        return True
    status = _http_status(exc)
    return status is not None and (status == 429 or status >= 500)


def _status_in(*statuses: int) -> Callable[[BaseException, str], bool]:
    return lambda exc, text: _http_status(exc) in statuses


# ── Tables (fixed priority order) ───────────────────────────────────────

CHAIN_RULES: Sequence[Rule] = (
    (
        _contains("insufficient funds", "insufficient balance"),
        ErrorKind.INSUFFICIENT_FUNDS,
        "You do not have enough RON to complete this transaction. Make sure you "
        "have enough for gas fees plus the creation fee and initial liquidity.",
    ),
    (
        _any(_rpc_code(4001), _contains("user rejected", "user denied")),
        ErrorKind.USER_REJECTED,
        "You rejected the transaction in your wallet. Please try again and "
        "approve the transaction.",
    ),
    (
        _any(
            _is_transport_failure,
            _contains("network", "timeout", "timed out", "rate limit", "too many requests"),
        ),
        ErrorKind.NETWORK_ERROR,
        "Network error occurred. Please check your internet connection and try again.",
    ),
    (
        _contains("insufficientoutput", "invalidamountin"),
        ErrorKind.CONTRACT_ERROR,
        "Invalid initial amount. Please make sure you are providing a valid "
        "amount for initial liquidity.",
    ),
    (
        _contains("invalidtokenmetadata"),
        ErrorKind.CONTRACT_ERROR,
        "Invalid token metadata. Please check that all token details (name, "
        "symbol, etc.) are properly formatted.",
    ),
    (
        _any(
            lambda exc, text: isinstance(exc, TransactionRevertedError),
            _rpc_code(3),
            _contains("execution reverted", "revert"),
        ),
        ErrorKind.CONTRACT_ERROR,
        "The contract rejected the call: {detail}",
    ),
)

UPLOAD_RULES: Sequence[Rule] = (
    (
        _any(_status_in(401, 403), _contains("unauthorized", "forbidden")),
        ErrorKind.AUTHENTICATION_ERROR,
        "Authentication failed. Please make sure you are logged in to tama.meme.",
    ),
    (
        _any(_status_in(413), _contains("too large")),
        ErrorKind.UPLOAD_FAILED,
        "Image file is too large. Please use an image smaller than 1MB.",
    ),
    (
        _any(_is_transport_failure, _status_in(0), _contains("network")),
        ErrorKind.NETWORK_ERROR,
        "Network error during upload. Please check your internet connection and try again.",
    ),
)

_FALLBACK_MESSAGES = {
    ErrorKind.UNKNOWN_ERROR: "An unexpected error occurred: {detail}",
    ErrorKind.CONTRACT_ERROR: "The contract call failed: {detail}",
    ErrorKind.UPLOAD_FAILED: "Failed to upload image: {detail}",
}


def _classify(
    exc: BaseException,
    rules: Sequence[Rule],
    default: ErrorKind,
    stage: Any,
) -> ClassifiedError:
    if isinstance(exc, ClassifiedError):
        return exc
    text = _error_text(exc)
    detail = str(exc) or type(exc).__name__
    for predicate, kind, message in rules:
        if predicate(exc, text):
            return ClassifiedError(kind, message.format(detail=detail), exc, stage)
    fallback = _FALLBACK_MESSAGES.get(default, "{detail}")
    return ClassifiedError(default, fallback.format(detail=detail), exc, stage)


def classify_chain_error(
    exc: BaseException,
    default: ErrorKind = ErrorKind.UNKNOWN_ERROR,
    stage: Any = None,
) -> ClassifiedError:
    """Classify a failure from the chain-query capability (reads, submits, receipts)."""
    return _classify(exc, CHAIN_RULES, default, stage)


def classify_upload_error(exc: BaseException, stage: Any = None) -> ClassifiedError:
    """Classify a failure from the IPFS upload endpoint."""
    return _classify(exc, UPLOAD_RULES, ErrorKind.UPLOAD_FAILED, stage)


async def guard_chain_call(
    awaitable: Awaitable[Any],
    default: ErrorKind = ErrorKind.UNKNOWN_ERROR,
    stage: Any = None,
) -> Any:
    """Await a chain call, classifying any raw failure exactly once."""
    try:
        return await awaitable
    except ClassifiedError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise classify_chain_error(exc, default=default, stage=stage) from exc
