"""
Failure taxonomy for ledger RPC calls.

Every failure is classified once, where it happens, and the resulting
ErrorClassification travels with the exception (ClassifiedError) up the
call stack. Higher layers only map a classification to a message.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, Union
import aiohttp


class ErrorKind(Enum):
    """Failure categories"""
    RPC_TRANSPORT = "rpc_transport"
    USER_REJECTED = "user_rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NONCE_CONFLICT = "nonce_conflict"
    UNKNOWN = "unknown"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ErrorClassification:
    kind: ErrorKind
    severity: Severity
    retryable: bool
    message: str

    @property
    def is_transport(self) -> bool:
        return self.kind is ErrorKind.RPC_TRANSPORT


# ---------------- Exceptions ----------------

class LedgerRPCError(Exception):
    """Base class for everything raised by ledger_rpc"""


class ClassifiedError(LedgerRPCError):
    """A failure carrying the classification it was given at the point of failure"""

    def __init__(self, classification: ErrorClassification, cause: Optional[BaseException] = None,
                 attempts: int = 1):
        raw, _ = _extract(cause) if cause is not None else ("", None)
        super().__init__(raw or classification.message)
        self.classification = classification
        self.cause = cause
        self.attempts = attempts

    @classmethod
    def of(cls, error: BaseException) -> "ClassifiedError":
        if isinstance(error, cls):
            return error
        return cls(classify(error), error)

    @property
    def kind(self) -> ErrorKind:
        return self.classification.kind

    @property
    def retryable(self) -> bool:
        return self.classification.retryable

    @property
    def user_rejected(self) -> bool:
        return self.classification.kind is ErrorKind.USER_REJECTED


class NoWorkingEndpoint(LedgerRPCError):
    """Every candidate endpoint failed discovery: the environment is unavailable"""

    def __init__(self, tried: int = 0):
        super().__init__(
            "Environment unavailable: no working RPC endpoint found. "
            f"All {tried} endpoints either failed or don't support transactions."
        )
        self.tried = tried


class TransactionUnconfirmed(LedgerRPCError):
    """No receipt within the polling bound. The transaction may still be mined later."""

    def __init__(self, tx_hash: str, attempts: int):
        super().__init__(f"Transaction {tx_hash} not confirmed after {attempts} receipt checks")
        self.tx_hash = tx_hash
        self.attempts = attempts


class ReinitializeRequired(LedgerRPCError):
    """Wallet account or network changed; cached state was dropped"""


class BiometricError(LedgerRPCError):
    pass


class BiometricRejected(BiometricError):
    """The device answered and the subject did not verify"""


class BiometricUnavailable(BiometricError):
    """The device could not give an answer (not configured, error, timeout)"""


# ---------------- Classifier ----------------

USER_REJECTION_PHRASES = ("user rejected", "user denied")
TRANSPORT_PHRASES = (
    "network", "timeout", "connection", "fetch", "rpc",
    "not implemented", "method not found", "not supported",
)
# Standard JSON-RPC and EIP-1474 server error codes
RPC_ERROR_CODES = frozenset([-32700, -32600, -32601, -32602, -32603] + list(range(-32010, -31999)))
USER_REJECTED_CODE = 4001  # EIP-1193
TRANSPORT_EXCEPTIONS = (asyncio.TimeoutError, TimeoutError, ConnectionError, aiohttp.ClientError)

TRANSPORT = ErrorClassification(ErrorKind.RPC_TRANSPORT, Severity.HIGH, True, "Network or RPC connection issue")
USER_REJECTED = ErrorClassification(ErrorKind.USER_REJECTED, Severity.LOW, False, "User rejected the transaction")
INSUFFICIENT_FUNDS = ErrorClassification(ErrorKind.INSUFFICIENT_FUNDS, Severity.MEDIUM, False,
                                         "Insufficient funds for gas")
NONCE_CONFLICT = ErrorClassification(ErrorKind.NONCE_CONFLICT, Severity.MEDIUM, True, "Nonce mismatch, try again")


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            return None
    return None

def _extract(raw: Any) -> Tuple[str, Optional[int]]:
    """Return (message, code) from an exception, a JSON-RPC error dict or a string."""
    if raw is None:
        return "", None
    if isinstance(raw, str):
        return raw, None
    if isinstance(raw, dict):
        err = raw["error"] if isinstance(raw.get("error"), dict) else raw
        data = err.get("data")
        msg = data.get("message") if isinstance(data, dict) else None
        return str(msg or err.get("message") or ""), _as_int(err.get("code"))
    if isinstance(raw, BaseException):
        # web3 >= 7 keeps the JSON-RPC response on the exception
        payload = getattr(raw, "rpc_response", None)
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            return _extract(payload)
        # web3 6 raises ValueError({'code': ..., 'message': ...})
        if raw.args and isinstance(raw.args[0], dict):
            return _extract(raw.args[0])
        return str(raw), _as_int(getattr(raw, "code", None))
    return str(raw), None

def classify(raw_error: Any) -> ErrorClassification:
    if isinstance(raw_error, ClassifiedError):
        return raw_error.classification
    message, code = _extract(raw_error)
    msg = message.lower()

    if code == USER_REJECTED_CODE or any(p in msg for p in USER_REJECTION_PHRASES):
        return USER_REJECTED
    if "insufficient funds" in msg:
        return INSUFFICIENT_FUNDS
    if "nonce" in msg:
        return NONCE_CONFLICT
    if (any(p in msg for p in TRANSPORT_PHRASES)
            or code in RPC_ERROR_CODES
            or isinstance(raw_error, TRANSPORT_EXCEPTIONS)):
        return TRANSPORT
    return ErrorClassification(ErrorKind.UNKNOWN, Severity.MEDIUM, True, message or "Unknown error occurred")

def is_rpc_error(raw_error: Any) -> bool:
    return classify(raw_error).is_transport


# ---------------- Messages & retry helpers ----------------

_KIND_MESSAGES = {
    ErrorKind.RPC_TRANSPORT: "Network error. Please check your connection and try again.",
    ErrorKind.USER_REJECTED: "Transaction was rejected by user.",
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient funds for gas.",
    ErrorKind.NONCE_CONFLICT: "Nonce mismatch. Try again or reset the account nonce in the wallet.",
}

_HINTS = (
    ("replacement fee too low", "Replacement transaction fee too low."),
    ("gas required exceeds allowance", "Gas limit too low. Please try again."),
    ("execution reverted", "Transaction reverted. Check contract state."),
)

def describe_error(error: Union[BaseException, ErrorClassification],
                   fallback: str = "Transaction failed.") -> str:
    """User-facing message for a failure. Existing classifications are reused as-is."""
    if isinstance(error, ErrorClassification):
        classification, raw = error, error.message
    else:
        classification = ClassifiedError.of(error).classification
        raw = str(error)
    if classification.kind in _KIND_MESSAGES:
        return _KIND_MESSAGES[classification.kind]
    low = raw.lower()
    for needle, text in _HINTS:
        if needle in low:
            return text
    return raw or fallback

def should_retry(error: Any, attempt: int = 0, max_attempts: int = 3) -> bool:
    if attempt >= max_attempts:
        return False
    return classify(error).retryable

def get_retry_delay(attempt: int, base_ms: int = 1000, cap_ms: int = 10000) -> int:
    """Exponential backoff in milliseconds, capped (1s, 2s, 4s, 8s, 10s, 10s, ...)."""
    attempt = max(0, int(attempt))
    # cap the exponent too so huge attempt numbers don't build huge ints
    if attempt >= 32:
        return cap_ms
    return min(base_ms * (2 ** attempt), cap_ms)
