"""
Pydantic Data Models for the Bundle Trading Engine

This module defines the data models flowing through the trading pipeline:
intent -> validation -> pricing -> instruction assembly -> signing -> bundle submission.

Key Components:
- TokenMetadata: immutable descriptor of a token to be created
- BondingCurveState: reserves of a trading pool, read fresh for every pricing request
- TradeIntent: a buy or sell request spread over several wallets
- TransactionBatch: ordered, signed, base64-encoded transactions ready for the relay
- BundleSubmissionResult: outcome of one submission, with a monotone status
- ValidationResult: accumulated errors and warnings of one validation pass
- TransactionResult: structured outcome returned to the orchestration layer

Monetary amounts are Decimal so that fractional SOL and integer token units are
bridged without silent precision loss.
"""
import json
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class TokenMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    symbol: str
    description: str
    image_url: str
    telegram_link: Optional[str] = None
    twitter_link: Optional[str] = None

    def to_instruction_bytes(self) -> bytes:
        """Compact JSON encoding attached to the curve initialization instruction."""
        return json.dumps(self.model_dump(mode="json"), separators=(",", ":")).encode("utf-8")


class BondingCurveState(BaseModel):
    token_address: str
    current_price: Decimal
    total_supply: int
    base_reserve: Decimal = Field(ge=0)
    token_reserve: Decimal = Field(ge=0)
    complete: bool = False


class TradeSide(str, Enum):
    buy = "buy"
    sell = "sell"


class TradeIntent(BaseModel):
    # Length and batch-size invariants are checked by validation.validate_trade_shape
    # so that they surface as domain errors rather than model errors.
    side: TradeSide
    token_address: str
    amounts: List[Decimal]
    wallet_ids: List[str]
    requester_id: str = "anonymous"


class TransactionBatch(BaseModel):
    transactions: List[str]
    tip_account: str
    tip_amount: Decimal

    def __len__(self) -> int:
        return len(self.transactions)


class BundleStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    failed = "failed"


class BundleSubmissionResult(BaseModel):
    bundle_id: Optional[str] = None
    status: BundleStatus = BundleStatus.pending
    error: Optional[str] = None
    attempts: int = 0


class ValidationResult(BaseModel):
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)


class TradeQuote(BaseModel):
    """Pricing of one trade leg against a curve snapshot."""

    side: TradeSide
    amount_in: Decimal
    gross_out: Decimal
    fee_out: Decimal
    net_out: Decimal
    fee_in_base: Decimal


class FeeCalculation(BaseModel):
    base_amount: Decimal
    fee_amount: Decimal
    total_amount: Decimal
    fee_percentage: Decimal


class TradeLeg(BaseModel):
    wallet_id: str
    wallet_address: str
    quote: TradeQuote
    signature: str


class AssembledBatch(BaseModel):
    batch: TransactionBatch
    legs: List[TradeLeg]
    total_fee: Decimal


class TransactionResult(BaseModel):
    success: bool
    signature: Optional[str] = None
    bundle_id: Optional[str] = None
    token_address: Optional[str] = None
    status: Optional[BundleStatus] = None
    attempts: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    fee_paid: Optional[Decimal] = None
