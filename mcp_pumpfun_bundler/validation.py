"""
Token Metadata and Trade Request Validation

Metadata validation accumulates every violation in one pass so a caller can report all
problems in a single response. Trade validation runs in two stages: shape (list lengths
and batch size, checked first and without looking at any amount) and domain (amount
values and the token address).

None of these functions touch the network.
"""
from decimal import Decimal
from typing import List, Sequence

from pydantic import AnyUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from solders.pubkey import Pubkey

from mcp_pumpfun_bundler.config import MAX_WALLETS_PER_BUNDLE, MIN_SOL_AMOUNT
from mcp_pumpfun_bundler.errors import (
    BatchSizeMismatchError,
    BatchTooLargeError,
    EmptyBatchError,
    ValidationError,
)
from mcp_pumpfun_bundler.schemas import TokenMetadata, TradeIntent, TradeSide, ValidationResult

MAX_NAME_LENGTH = 32
MAX_SYMBOL_LENGTH = 8
MAX_DESCRIPTION_LENGTH = 200

_url_adapter = TypeAdapter(AnyUrl)


def is_valid_url(value: str) -> bool:
    try:
        _url_adapter.validate_python(value)
        return True
    except PydanticValidationError:
        return False


def validate_token_metadata(metadata: TokenMetadata) -> ValidationResult:
    """Checks every metadata field and returns all violations found."""
    result = ValidationResult()

    if not metadata.name or len(metadata.name) > MAX_NAME_LENGTH:
        result.add_error(f"Token name must be 1-{MAX_NAME_LENGTH} characters")

    if not metadata.symbol or len(metadata.symbol) > MAX_SYMBOL_LENGTH:
        result.add_error(f"Token symbol must be 1-{MAX_SYMBOL_LENGTH} characters")

    if not metadata.description or len(metadata.description) > MAX_DESCRIPTION_LENGTH:
        result.add_error(f"Description must be 1-{MAX_DESCRIPTION_LENGTH} characters")

    if not metadata.image_url or not is_valid_url(metadata.image_url):
        result.add_error("Invalid image URL")

    if not metadata.telegram_link:
        result.add_error("Telegram link is required")
    elif not is_valid_url(metadata.telegram_link):
        result.add_warning("Telegram link is not a URL")

    if not metadata.twitter_link:
        result.add_error("Twitter link is required")
    elif not is_valid_url(metadata.twitter_link):
        result.add_warning("Twitter link is not a URL")

    return result


def validate_trade_shape(amounts: Sequence, wallet_ids: Sequence[str], max_batch: int = MAX_WALLETS_PER_BUNDLE) -> None:
    """
    Checks list lengths only. Content is never inspected here.

    Raises:
        BatchSizeMismatchError: If the lists differ in length.
        BatchTooLargeError: If the batch exceeds ``max_batch``.
        EmptyBatchError: If the batch is empty.
    """
    if len(amounts) != len(wallet_ids):
        raise BatchSizeMismatchError(len(amounts), len(wallet_ids))
    if len(amounts) > max_batch:
        raise BatchTooLargeError(len(amounts), max_batch)
    if not amounts:
        raise EmptyBatchError("No amounts provided")


def validate_trade_amounts(intent: TradeIntent, min_sol_amount: Decimal = MIN_SOL_AMOUNT) -> None:
    """
    Checks the token address and every leg amount, collecting all violations.

    Raises:
        ValidationError: With one entry per violation.
    """
    errors: List[str] = []

    try:
        Pubkey.from_string(intent.token_address)
    except Exception:
        errors.append(f"Invalid token address: {intent.token_address}")

    for index, (amount, wallet_id) in enumerate(zip(intent.amounts, intent.wallet_ids)):
        if not wallet_id:
            errors.append(f"Wallet ID at index {index} is empty")
        if amount <= 0:
            errors.append(f"Amount at index {index} must be positive")
        elif intent.side is TradeSide.buy and amount < min_sol_amount:
            errors.append(f"Amount at index {index} is below the minimum of {min_sol_amount} SOL")
        elif intent.side is TradeSide.sell and amount != amount.to_integral_value():
            errors.append(f"Token amount at index {index} must be a whole number of units")

    if errors:
        raise ValidationError(f"Invalid {intent.side.value} request: {'; '.join(errors)}", errors)
