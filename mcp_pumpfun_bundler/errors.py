"""
Custom Exception Classes for the Bundle Trading Engine

This module defines the exceptions raised while validating, pricing, assembling and
submitting trades. Every exception carries a ``kind`` so callers can report failures
as structured (kind + message) results instead of opaque faults.

Exception Categories:
- validation: bad metadata, batch-size mismatch or overflow, malformed payloads
- precondition: insufficient balance, a curve that would be drained, unknown wallets
- transport: ledger or relay unreachable, non-2xx relay responses, exhausted retries
- protocol: malformed relay responses
- configuration / rate_limit: environment and request throttling problems

Validation and precondition errors are never retried. Transport errors are retried
only at the bundle-submission step.
"""
from typing import List, Optional


class BundlerError(Exception):
    """Base class for every error raised by the trading engine."""

    kind = "internal"


class ConfigurationError(BundlerError):
    """Raised when there are configuration-related errors."""

    kind = "configuration"


class RateLimitExceededError(BundlerError):
    """Raised when a requester exceeds its request budget."""

    kind = "rate_limit"


# --- Validation ---

class ValidationError(BundlerError):
    """Raised when input validation fails. ``errors`` lists every violation."""

    kind = "validation"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class InvalidMetadataError(ValidationError):
    """Raised when token metadata does not pass validation."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Invalid token metadata: {', '.join(errors)}", errors)


class BatchSizeMismatchError(ValidationError):
    """Raised when the number of amounts differs from the number of wallet IDs."""

    def __init__(self, amounts: int, wallets: int):
        super().__init__(
            f"Number of amounts ({amounts}) must match number of wallet IDs ({wallets})"
        )
        self.amounts = amounts
        self.wallets = wallets


class BatchTooLargeError(ValidationError):
    """Raised when a batch holds more entries than a bundle accepts."""

    def __init__(self, size: int, maximum: int):
        super().__init__(f"Maximum {maximum} wallets allowed per bundle, got {size}")
        self.size = size
        self.maximum = maximum


class EmptyBatchError(ValidationError):
    """Raised when a batch holds no entries."""

    def __init__(self, message: str = "No transactions to bundle"):
        super().__init__(message)


class InvalidTransactionEncodingError(ValidationError):
    """Raised when an encoded transaction is not valid base64."""


class WalletExistsError(ValidationError):
    """Raised when a wallet would overwrite one already in the store."""

    def __init__(self, wallet_id: str):
        super().__init__(f"Wallet '{wallet_id}' already exists")
        self.wallet_id = wallet_id


# --- Preconditions ---

class InsufficientBalanceError(BundlerError):
    """Raised when a wallet cannot cover the fee plus the safety buffer."""

    kind = "precondition"

    def __init__(self, required: float, available: float):
        super().__init__(
            f"Insufficient balance. Required: {required:.9f} SOL, Available: {available:.9f} SOL"
        )
        self.required = required
        self.available = available


class InvalidCurveStateError(BundlerError):
    """Raised when a trade is impossible against the current curve reserves."""

    kind = "precondition"


class WalletNotFoundError(BundlerError):
    """Raised when the wallet store cannot resolve a wallet ID."""

    kind = "precondition"


# --- Transport ---

class LedgerUnavailableError(BundlerError):
    """Raised when the ledger RPC cannot be reached or returns an error."""

    kind = "transport"

    def __init__(self, cause):
        super().__init__(f"Ledger unavailable: {cause}")
        self.cause = cause


class TransactionFailedError(BundlerError):
    """Raised if a transaction fails on-chain or is never confirmed."""

    kind = "transport"


class SubmissionFailedError(BundlerError):
    """Raised when a single bundle submission attempt fails."""

    kind = "transport"

    def __init__(self, body_text: str):
        super().__init__(f"Bundle submission failed: {body_text}")
        self.body_text = body_text


class BundleRetryExhaustedError(BundlerError):
    """Raised when every submission attempt failed."""

    kind = "transport"

    def __init__(self, attempts: int, last_error: Optional[str]):
        super().__init__(
            f"Bundle submission failed after {attempts} attempts. Last error: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


# --- Protocol ---

class RelayProtocolError(BundlerError):
    """Raised when the relay answers with a body that cannot be decoded."""

    kind = "protocol"
