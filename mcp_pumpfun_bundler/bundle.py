"""
Bundle Relay Submission

This module owns the client side of the bundle relay contract:

    POST {bundle_url}        {"transactions": [base64...], "tip_account": ..., "tip_amount": lamports}
    GET  {bundle_url}/{id}   -> {"bundle_id": ..., "status": ..., "error": ...}

Submission State Machine:
- Built: a TransactionBatch handed in by the assembler
- Submitting: one HTTP call per attempt, bounded by the client timeout
- Accepted / Failed: terminal; a result never moves back to pending

submit_with_retry makes at most max_retries attempts and sleeps 2**attempt seconds
between them (2s, 4s, ...), never after the last one. That sleep is the only point at
which a caller can cancel. Exhausting the attempts raises an error carrying the attempt
count and the last failure reason.

Status polling is a separate idempotent read that is never retried here.
"""
import asyncio
import binascii
import base64
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

import httpx

from mcp_pumpfun_bundler.config import (
    BUNDLE_BASE_FEE,
    BUNDLE_HARD_LIMIT,
    BUNDLE_PER_TX_FEE,
    BUNDLE_TIMEOUT_SECONDS,
    BUNDLE_URL,
)
from mcp_pumpfun_bundler.errors import (
    BatchTooLargeError,
    BundleRetryExhaustedError,
    EmptyBatchError,
    InvalidTransactionEncodingError,
    RelayProtocolError,
    SubmissionFailedError,
)
from mcp_pumpfun_bundler.pricing import sol_to_lamports
from mcp_pumpfun_bundler.schemas import BundleStatus, BundleSubmissionResult, TransactionBatch
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

SUCCESS_STATUSES = frozenset({"success", "accepted", "landed"})
FAILED_STATUSES = frozenset({"failed", "rejected", "invalid", "dropped"})


def _parse_status(raw: Optional[str], error: Optional[str]) -> BundleStatus:
    if error is not None:
        return BundleStatus.failed
    raw = raw.lower() if isinstance(raw, str) else ""
    if raw in SUCCESS_STATUSES:
        return BundleStatus.accepted
    if raw in FAILED_STATUSES:
        return BundleStatus.failed
    return BundleStatus.pending


def validate_transactions(transactions: Sequence[str], max_transactions: int = BUNDLE_HARD_LIMIT) -> None:
    """
    Checks a list of encoded transactions without touching the network.

    Raises:
        EmptyBatchError: If the list is empty.
        BatchTooLargeError: If the list exceeds ``max_transactions``.
        InvalidTransactionEncodingError: If an entry is empty or not valid base64.
    """
    if not transactions:
        raise EmptyBatchError("No transactions provided")
    if len(transactions) > max_transactions:
        raise BatchTooLargeError(len(transactions), max_transactions)
    for index, tx in enumerate(transactions):
        if not tx:
            raise InvalidTransactionEncodingError(f"Empty transaction at index {index}")
        try:
            base64.b64decode(tx, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise InvalidTransactionEncodingError(f"Invalid base64 transaction at index {index}: {e}")


def calculate_bundle_fee(
    transaction_count: int,
    base_fee: Decimal = BUNDLE_BASE_FEE,
    per_tx_fee: Decimal = BUNDLE_PER_TX_FEE,
) -> Decimal:
    """Base fee plus a per-transaction fee, in SOL."""
    return base_fee + transaction_count * per_tx_fee


class BundleSubmitter:
    def __init__(
        self,
        client: httpx.AsyncClient,
        bundle_url: str = BUNDLE_URL,
        timeout: float = BUNDLE_TIMEOUT_SECONDS,
        max_transactions: int = BUNDLE_HARD_LIMIT,
    ):
        self.client = client
        self.bundle_url = bundle_url.rstrip("/")
        self.timeout = timeout
        self.max_transactions = max_transactions

    def _payload(self, batch: TransactionBatch) -> Dict[str, Any]:
        return {
            "transactions": list(batch.transactions),
            "tip_account": batch.tip_account,
            "tip_amount": sol_to_lamports(batch.tip_amount),
        }

    def _decode(self, response: httpx.Response, attempts: int) -> BundleSubmissionResult:
        try:
            data = response.json()
        except ValueError:
            raise RelayProtocolError(f"Relay returned a non-JSON body: {response.text[:200]}")
        if not isinstance(data, dict):
            raise RelayProtocolError(f"Relay returned an unexpected body: {response.text[:200]}")

        bundle_id = data.get("bundle_id")
        status = data.get("status")
        if not isinstance(bundle_id, (str, type(None))) or not isinstance(status, (str, type(None))):
            raise RelayProtocolError(f"Relay returned an unexpected body: {response.text[:200]}")

        error = data.get("error")
        if error is not None and not isinstance(error, str):
            error = str(error)
        return BundleSubmissionResult(
            bundle_id=bundle_id,
            status=_parse_status(status, error),
            error=error,
            attempts=attempts,
        )

    async def submit(self, batch: TransactionBatch, attempt: int = 1) -> BundleSubmissionResult:
        """
        Makes one submission attempt.

        Raises:
            ValidationError: Before any network call, if the batch is empty, too large
                or holds an entry that is not valid base64.
            SubmissionFailedError: On a transport error or a non-2xx response.
            RelayProtocolError: If the response body cannot be decoded.
        """
        validate_transactions(batch.transactions, self.max_transactions)

        logger.info(f"Submitting bundle with {len(batch.transactions)} transactions")
        try:
            response = await self.client.post(self.bundle_url, json=self._payload(batch), timeout=self.timeout)
        except httpx.HTTPError as e:
            raise SubmissionFailedError(f"transport error: {e}")

        if not response.is_success:
            logger.error(f"Bundle submission failed: {response.status_code} - {response.text}")
            raise SubmissionFailedError(response.text)

        result = self._decode(response, attempt)
        logger.info(f"Bundle submitted: id={result.bundle_id}, status={result.status.value}")
        return result

    async def submit_with_retry(self, batch: TransactionBatch, max_retries: int) -> BundleSubmissionResult:
        """
        Submits with bounded retries and exponential backoff.

        Batch-shape errors are raised immediately since retrying cannot fix them, and so
        is a response body that cannot be decoded.

        Raises:
            RelayProtocolError: On the first undecodable relay response.
            BundleRetryExhaustedError: After ``max_retries`` failed attempts.
        """
        validate_transactions(batch.transactions, self.max_transactions)

        attempts = 0
        last_error: Optional[str] = None

        while attempts < max_retries:
            attempts += 1
            try:
                result = await self.submit(batch, attempt=attempts)
                if result.status is BundleStatus.accepted:
                    return result
                last_error = result.error or f"bundle not accepted (status={result.status.value})"
                logger.warning(f"Bundle submission attempt {attempts} rejected: {last_error}")
            except SubmissionFailedError as e:
                last_error = str(e)
                logger.warning(f"Bundle submission attempt {attempts} failed: {e}")

            if attempts < max_retries:
                delay = 2 ** attempts
                logger.debug(f"Retrying bundle submission in {delay}s")
                await asyncio.sleep(delay)

        logger.error(f"Bundle submission failed after {attempts} attempts: {last_error}")
        raise BundleRetryExhaustedError(attempts, last_error)

    async def get_status(self, bundle_id: str) -> BundleSubmissionResult:
        """
        Reads the relay's status for a bundle. Failures are raised, never retried.

        Raises:
            SubmissionFailedError: On a transport error or a non-2xx response.
            RelayProtocolError: If the response body cannot be decoded.
        """
        try:
            response = await self.client.get(f"{self.bundle_url}/{bundle_id}", timeout=self.timeout)
        except httpx.HTTPError as e:
            raise SubmissionFailedError(f"transport error: {e}")

        if not response.is_success:
            logger.error(f"Failed to get bundle status for {bundle_id}: {response.status_code} - {response.text}")
            raise SubmissionFailedError(response.text)

        result = self._decode(response, attempts=0)
        if result.bundle_id is None:
            result.bundle_id = bundle_id
        return result
