"""
Transaction Assembly for Token Creation and Multi-Wallet Trades

This module turns validated intents into signed ledger transactions.

Token creation builds one transaction whose instruction order is fixed:
1. Initialize the token mint (9 decimals, creator as mint and freeze authority)
2. Create the creator's associated token account
3. Create the program's associated token account
4. Initialize the bonding curve with the serialized metadata attached
5. Transfer the creation fee to the fee collection address

Buy and sell batches build one transaction per wallet, in input order. Each holds one
trade instruction followed by one fee transfer. Every leg is priced against the single
curve snapshot handed in for the whole batch.

Signing material is borrowed from the wallet store for exactly one leg and released
when that leg is signed. The recent blockhash is fetched right before signing.
Assembly is all-or-nothing: any failure aborts the batch and nothing partial escapes.
Ledger errors propagate as LedgerUnavailableError and are never retried here.
"""
import base64
import hashlib
from decimal import Decimal
from typing import List, Optional, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
)
from spl.token.models import InitializeMintParams

from mcp_pumpfun_bundler import pricing
from mcp_pumpfun_bundler.config import (
    CREATION_BALANCE_BUFFER,
    CREATION_FEE,
    JITO_TIP_ACCOUNT,
    JITO_TIP_AMOUNT,
    MAX_WALLETS_PER_BUNDLE,
    PUMP_FEE_ADDRESS,
    PUMP_PROGRAM_ID,
    SLIPPAGE_BPS,
    TOKEN_DECIMALS,
    TRADING_FEE_RATE,
)
from mcp_pumpfun_bundler.errors import InsufficientBalanceError, InvalidMetadataError
from mcp_pumpfun_bundler.ledger import LedgerClient, get_bonding_curve_address
from mcp_pumpfun_bundler.schemas import (
    AssembledBatch,
    BondingCurveState,
    TokenMetadata,
    TradeIntent,
    TradeLeg,
    TradeQuote,
    TradeSide,
    TransactionBatch,
)
from mcp_pumpfun_bundler.validation import validate_token_metadata, validate_trade_shape
from mcp_pumpfun_bundler.wallets import WalletStore
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# Instruction discriminators (Anchor-style: sha256("global:<method>")[:8])
CREATE_DISCRIMINATOR = hashlib.sha256(b"global:create").digest()[:8]
BUY_DISCRIMINATOR = hashlib.sha256(b"global:buy").digest()[:8]
SELL_DISCRIMINATOR = hashlib.sha256(b"global:sell").digest()[:8]

BPS_DENOMINATOR = Decimal(10_000)


def _le_u64(n: int) -> bytes:
    return int(n).to_bytes(8, "little", signed=False)


def encode_transaction(transaction: Transaction) -> str:
    """Wire bytes of a signed transaction as base64, the relay's payload format."""
    return base64.b64encode(bytes(transaction)).decode("ascii")


class TransactionAssembler:
    def __init__(
        self,
        ledger: LedgerClient,
        wallets: WalletStore,
        program_id: Pubkey = PUMP_PROGRAM_ID,
        fee_address: Pubkey = PUMP_FEE_ADDRESS,
        creation_fee: Decimal = CREATION_FEE,
        balance_buffer: Decimal = CREATION_BALANCE_BUFFER,
        trading_fee_rate: Decimal = TRADING_FEE_RATE,
        slippage_bps: int = SLIPPAGE_BPS,
        max_batch: int = MAX_WALLETS_PER_BUNDLE,
        tip_account: Pubkey = JITO_TIP_ACCOUNT,
        tip_amount: Decimal = JITO_TIP_AMOUNT,
    ):
        self.ledger = ledger
        self.wallets = wallets
        self.program_id = program_id
        self.fee_address = fee_address
        self.creation_fee = creation_fee
        self.balance_buffer = balance_buffer
        self.trading_fee_rate = trading_fee_rate
        self.slippage = Decimal(slippage_bps) / BPS_DENOMINATOR
        self.max_batch = max_batch
        self.tip_account = tip_account
        self.tip_amount = tip_amount

    # --- Instruction builders ---

    def build_init_curve_instruction(
        self,
        mint: Pubkey,
        creator: Pubkey,
        creator_ata: Pubkey,
        program_ata: Pubkey,
        metadata: TokenMetadata,
    ) -> Instruction:
        # The program allocates the mint, so the mint keypair co-signs.
        accounts = [
            AccountMeta(mint, is_signer=True, is_writable=True),
            AccountMeta(creator, is_signer=True, is_writable=True),
            AccountMeta(creator_ata, is_signer=False, is_writable=True),
            AccountMeta(program_ata, is_signer=False, is_writable=True),
            AccountMeta(self.fee_address, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = CREATE_DISCRIMINATOR + metadata.to_instruction_bytes()
        return Instruction(self.program_id, data, accounts)

    def build_fee_transfer(self, payer: Pubkey, lamports: int) -> Instruction:
        return transfer(TransferParams(from_pubkey=payer, to_pubkey=self.fee_address, lamports=lamports))

    def build_create_instructions(self, metadata: TokenMetadata, creator: Pubkey, mint: Pubkey) -> List[Instruction]:
        """The five creation instructions, in the order the program requires."""
        creator_ata = get_associated_token_address(creator, mint)
        program_ata = get_associated_token_address(self.program_id, mint)
        return [
            initialize_mint(
                InitializeMintParams(
                    decimals=TOKEN_DECIMALS,
                    program_id=TOKEN_PROGRAM_ID,
                    mint=mint,
                    mint_authority=creator,
                    freeze_authority=creator,
                )
            ),
            create_associated_token_account(creator, creator, mint),
            create_associated_token_account(creator, self.program_id, mint),
            self.build_init_curve_instruction(mint, creator, creator_ata, program_ata, metadata),
            self.build_fee_transfer(creator, pricing.sol_to_lamports(self.creation_fee)),
        ]

    def build_trade_instruction(
        self,
        side: TradeSide,
        mint: Pubkey,
        user: Pubkey,
        token_amount: int,
        sol_bound_lamports: int,
    ) -> Instruction:
        """
        Buy data carries the token amount and the most SOL the buyer will pay.
        Sell data carries the token amount and the least SOL the seller accepts.
        """
        accounts = [
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(get_bonding_curve_address(mint, self.program_id), is_signer=False, is_writable=True),
            AccountMeta(user, is_signer=True, is_writable=True),
            AccountMeta(get_associated_token_address(user, mint), is_signer=False, is_writable=True),
            AccountMeta(get_associated_token_address(self.program_id, mint), is_signer=False, is_writable=True),
            AccountMeta(self.fee_address, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        discriminator = BUY_DISCRIMINATOR if side is TradeSide.buy else SELL_DISCRIMINATOR
        data = discriminator + _le_u64(token_amount) + _le_u64(sol_bound_lamports)
        return Instruction(self.program_id, data, accounts)

    def quote_leg(self, side: TradeSide, amount: Decimal, curve: BondingCurveState) -> TradeQuote:
        if side is TradeSide.buy:
            return pricing.quote_buy(amount, curve, self.trading_fee_rate)
        return pricing.quote_sell(amount, curve, self.trading_fee_rate)

    def build_leg_instructions(self, side: TradeSide, mint: Pubkey, user: Pubkey, quote: TradeQuote) -> List[Instruction]:
        if side is TradeSide.buy:
            token_amount = pricing.to_token_units(quote.net_out)
            sol_bound = pricing.sol_to_lamports(quote.amount_in * (1 + self.slippage))
        else:
            token_amount = pricing.to_token_units(quote.amount_in)
            sol_bound = pricing.sol_to_lamports(quote.net_out * (1 - self.slippage))
        return [
            self.build_trade_instruction(side, mint, user, token_amount, sol_bound),
            self.build_fee_transfer(user, pricing.sol_to_lamports(quote.fee_in_base)),
        ]

    # --- Token creation ---

    async def check_creation_balance(self, creator: Pubkey) -> None:
        required = pricing.sol_to_lamports(self.creation_fee + self.balance_buffer)
        balance = await self.ledger.get_balance(creator)
        if balance < required:
            raise InsufficientBalanceError(
                required=float(pricing.lamports_to_sol(required)),
                available=float(pricing.lamports_to_sol(balance)),
            )

    async def assemble_create(
        self,
        metadata: TokenMetadata,
        creator: Keypair,
        mint: Optional[Keypair] = None,
    ) -> Tuple[Transaction, Keypair]:
        """
        Builds and signs the token creation transaction.

        Returns:
            The signed transaction and the new mint keypair.

        Raises:
            InvalidMetadataError: If the metadata does not validate.
            InsufficientBalanceError: If the creator cannot cover fee plus buffer.
            LedgerUnavailableError: If the balance or blockhash cannot be fetched.
        """
        validation = validate_token_metadata(metadata)
        if not validation.is_valid:
            raise InvalidMetadataError(validation.errors)

        await self.check_creation_balance(creator.pubkey())

        mint = mint or Keypair()
        instructions = self.build_create_instructions(metadata, creator.pubkey(), mint.pubkey())

        recent_blockhash = await self.ledger.get_latest_blockhash()
        transaction = Transaction.new_signed_with_payer(
            instructions, creator.pubkey(), [creator, mint], recent_blockhash
        )
        logger.info(f"Assembled creation of {metadata.symbol} with mint {mint.pubkey()}")
        return transaction, mint

    # --- Trade batches ---

    async def assemble_trade_batch(self, intent: TradeIntent, curve: BondingCurveState) -> AssembledBatch:
        """
        Builds one signed transaction per (amount, wallet) pair, in list order.

        Raises:
            BatchSizeMismatchError / BatchTooLargeError / EmptyBatchError: Before any leg work.
            InvalidCurveStateError: If a leg cannot be priced against the snapshot.
            WalletNotFoundError: If a wallet cannot be resolved.
            LedgerUnavailableError: If a blockhash cannot be fetched.
        """
        validate_trade_shape(intent.amounts, intent.wallet_ids, self.max_batch)
        mint = Pubkey.from_string(intent.token_address)

        transactions: List[str] = []
        legs: List[TradeLeg] = []
        total_fee = Decimal(0)

        for amount, wallet_id in zip(intent.amounts, intent.wallet_ids):
            async with self.wallets.signer(wallet_id) as keypair:
                user = keypair.pubkey()
                quote = self.quote_leg(intent.side, amount, curve)
                instructions = self.build_leg_instructions(intent.side, mint, user, quote)
                recent_blockhash = await self.ledger.get_latest_blockhash()
                transaction = Transaction.new_signed_with_payer(instructions, user, [keypair], recent_blockhash)

            transactions.append(encode_transaction(transaction))
            legs.append(
                TradeLeg(
                    wallet_id=wallet_id,
                    wallet_address=str(user),
                    quote=quote,
                    signature=str(transaction.signatures[0]),
                )
            )
            total_fee += quote.fee_in_base

        logger.info(f"Assembled {intent.side.value} batch of {len(transactions)} transaction(s) "
                    f"for {intent.token_address}, total fee {total_fee} SOL")
        return AssembledBatch(
            batch=TransactionBatch(
                transactions=transactions,
                tip_account=str(self.tip_account),
                tip_amount=self.tip_amount,
            ),
            legs=legs,
            total_fee=total_fee,
        )
