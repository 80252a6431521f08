"""
Request Orchestration for Create, Buy and Sell Intents

Each public intent runs the same pipeline:

    shape validation -> domain validation -> curve snapshot -> assembly -> submission

Shape checks (list lengths, batch size) run before any amount is even parsed, and
every validation failure short-circuits before the assembler or submitter is touched.
Failures come back as a TransactionResult with ``success=False`` plus the error kind
and message, so callers can answer users without treating them as internal faults.
"""
from decimal import Decimal, InvalidOperation
from typing import List, Sequence, Union

from solders.pubkey import Pubkey

from mcp_pumpfun_bundler.assembler import TransactionAssembler
from mcp_pumpfun_bundler.bundle import BundleSubmitter
from mcp_pumpfun_bundler.config import (
    BUNDLE_MAX_RETRIES,
    CREATION_FEE,
    MAX_WALLETS_PER_BUNDLE,
    MIN_SOL_AMOUNT,
    PUMP_PROGRAM_ID,
)
from mcp_pumpfun_bundler.errors import (
    BundleRetryExhaustedError,
    BundlerError,
    EmptyBatchError,
    InvalidCurveStateError,
    InvalidMetadataError,
    ValidationError,
)
from mcp_pumpfun_bundler.ledger import LedgerClient
from mcp_pumpfun_bundler.schemas import (
    BondingCurveState,
    BundleStatus,
    TokenMetadata,
    TradeIntent,
    TradeQuote,
    TradeSide,
    TransactionResult,
)
from mcp_pumpfun_bundler.validation import (
    validate_token_metadata,
    validate_trade_amounts,
    validate_trade_shape,
)
from mcp_pumpfun_bundler.wallets import WalletStore
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

Amount = Union[Decimal, float, int, str]


def _to_decimals(amounts: Sequence[Amount]) -> List[Decimal]:
    values: List[Decimal] = []
    for index, amount in enumerate(amounts):
        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationError(f"Amount at index {index} is not a number: {amount!r}")
        if not value.is_finite():
            raise ValidationError(f"Amount at index {index} is not finite: {amount!r}")
        values.append(value)
    return values


def failure_result(error: BundlerError) -> TransactionResult:
    """Structured result for an error raised anywhere in the pipeline."""
    result = TransactionResult(
        success=False,
        error=str(error),
        error_kind=error.kind,
        errors=list(getattr(error, "errors", None) or [str(error)]),
    )
    if isinstance(error, BundleRetryExhaustedError):
        result.attempts = error.attempts
        result.status = BundleStatus.failed
    return result


class RequestOrchestrator:
    def __init__(
        self,
        ledger: LedgerClient,
        wallets: WalletStore,
        assembler: TransactionAssembler,
        submitter: BundleSubmitter,
        max_retries: int = BUNDLE_MAX_RETRIES,
        max_batch: int = MAX_WALLETS_PER_BUNDLE,
        min_sol_amount: Decimal = MIN_SOL_AMOUNT,
        program_id: Pubkey = PUMP_PROGRAM_ID,
        creation_fee: Decimal = CREATION_FEE,
    ):
        self.ledger = ledger
        self.wallets = wallets
        self.assembler = assembler
        self.submitter = submitter
        self.max_retries = max_retries
        self.max_batch = max_batch
        self.min_sol_amount = min_sol_amount
        self.program_id = program_id
        self.creation_fee = creation_fee

    def _report(self, operation: str, error: BundlerError) -> TransactionResult:
        if error.kind in ("validation", "precondition", "rate_limit"):
            logger.warning(f"{operation} rejected ({error.kind}): {error}")
        else:
            logger.error(f"{operation} failed ({error.kind}): {error}")
        return failure_result(error)

    async def fetch_curve(self, token_address: str) -> BondingCurveState:
        try:
            mint = Pubkey.from_string(token_address)
        except Exception:
            raise ValidationError(f"Invalid token address: {token_address}")
        curve = await self.ledger.get_bonding_curve(mint, self.program_id)
        if curve.complete:
            raise InvalidCurveStateError(f"Bonding curve for {token_address} is complete; trading has migrated")
        return curve

    async def create_token(self, metadata: TokenMetadata, wallet_id: str) -> TransactionResult:
        """Validates metadata, then builds, signs and sends the creation transaction."""
        validation = validate_token_metadata(metadata)
        if not validation.is_valid:
            return self._report("Token creation", InvalidMetadataError(validation.errors))

        try:
            async with self.wallets.signer(wallet_id) as creator:
                transaction, mint = await self.assembler.assemble_create(metadata, creator)
            signature = await self.ledger.send_and_confirm(transaction)
        except BundlerError as e:
            return self._report("Token creation", e)

        logger.info(f"Token {metadata.symbol} created: mint={mint.pubkey()}, signature={signature}")
        return TransactionResult(
            success=True,
            signature=signature,
            token_address=str(mint.pubkey()),
            fee_paid=self.creation_fee,
        )

    async def buy(
        self,
        token_address: str,
        amounts: Sequence[Amount],
        wallet_ids: Sequence[str],
        requester_id: str = "anonymous",
    ) -> TransactionResult:
        """Buys with ``amounts[i]`` SOL from ``wallet_ids[i]`` as one bundle."""
        return await self._trade(TradeSide.buy, token_address, amounts, wallet_ids, requester_id)

    async def sell(
        self,
        token_address: str,
        amounts: Sequence[Amount],
        wallet_ids: Sequence[str],
        requester_id: str = "anonymous",
    ) -> TransactionResult:
        """Sells ``amounts[i]`` token units from ``wallet_ids[i]`` as one bundle."""
        return await self._trade(TradeSide.sell, token_address, amounts, wallet_ids, requester_id)

    async def _trade(
        self,
        side: TradeSide,
        token_address: str,
        amounts: Sequence[Amount],
        wallet_ids: Sequence[str],
        requester_id: str,
    ) -> TransactionResult:
        operation = f"{side.value.capitalize()} of {token_address}"
        try:
            validate_trade_shape(amounts, wallet_ids, self.max_batch)
            intent = TradeIntent(
                side=side,
                token_address=token_address,
                amounts=_to_decimals(amounts),
                wallet_ids=list(wallet_ids),
                requester_id=requester_id,
            )
            validate_trade_amounts(intent, self.min_sol_amount)

            curve = await self.fetch_curve(token_address)
            assembled = await self.assembler.assemble_trade_batch(intent, curve)
            submission = await self.submitter.submit_with_retry(assembled.batch, self.max_retries)
        except BundlerError as e:
            return self._report(operation, e)

        logger.info(f"{operation} submitted for {requester_id}: bundle={submission.bundle_id}, "
                    f"legs={len(assembled.legs)}, attempts={submission.attempts}, fee={assembled.total_fee} SOL")
        return TransactionResult(
            success=True,
            signature=assembled.legs[0].signature,
            bundle_id=submission.bundle_id,
            status=submission.status,
            attempts=submission.attempts,
            fee_paid=assembled.total_fee,
        )

    async def quote(self, side: TradeSide, token_address: str, amounts: Sequence[Amount]) -> List[TradeQuote]:
        """Prices each amount against one fresh curve snapshot without building anything."""
        if not amounts:
            raise EmptyBatchError("No amounts provided")
        if len(amounts) > self.max_batch:
            raise ValidationError(f"Maximum {self.max_batch} amounts allowed per quote")
        values = _to_decimals(amounts)
        curve = await self.fetch_curve(token_address)
        return [self.assembler.quote_leg(side, value, curve) for value in values]

    async def get_bundle_status(self, bundle_id: str) -> TransactionResult:
        try:
            status = await self.submitter.get_status(bundle_id)
        except BundlerError as e:
            return self._report(f"Status lookup for bundle {bundle_id}", e)
        return TransactionResult(
            success=status.status is not BundleStatus.failed,
            bundle_id=status.bundle_id,
            status=status.status,
            error=status.error,
        )
