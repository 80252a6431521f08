import base64
from decimal import Decimal

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID
from solders.transaction import Transaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

from mcp_pumpfun_bundler.assembler import (
    BUY_DISCRIMINATOR,
    CREATE_DISCRIMINATOR,
    SELL_DISCRIMINATOR,
    TransactionAssembler,
)
from mcp_pumpfun_bundler.errors import (
    BatchSizeMismatchError,
    InsufficientBalanceError,
    InvalidMetadataError,
    WalletNotFoundError,
)
from mcp_pumpfun_bundler.schemas import TradeIntent, TradeSide

PROGRAM_ID = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
FEE_ADDRESS = Pubkey.from_string("CebN5WGQ4jvEPvsVU4EoHEpgzq1VV7AbicfhtW4xC9iM")
FEE_RATE = Decimal("0.005")


@pytest.fixture
def assembler(fake_ledger, wallet_store):
    return TransactionAssembler(
        fake_ledger,
        wallet_store,
        program_id=PROGRAM_ID,
        fee_address=FEE_ADDRESS,
        creation_fee=Decimal("0.05"),
        balance_buffer=Decimal("0.01"),
        trading_fee_rate=FEE_RATE,
        slippage_bps=100,
        max_batch=16,
        tip_account=FEE_ADDRESS,
        tip_amount=Decimal("0.00001"),
    )


def decode(encoded: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(encoded))


def test_create_instructions_are_ordered(assembler, metadata):
    creator = Keypair().pubkey()
    mint = Keypair().pubkey()

    instructions = assembler.build_create_instructions(metadata, creator, mint)

    assert [ix.program_id for ix in instructions] == [
        TOKEN_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        PROGRAM_ID,
        SYS_PROGRAM_ID,
    ]
    init_curve = instructions[3]
    assert init_curve.data.startswith(CREATE_DISCRIMINATOR)
    assert init_curve.data[8:] == metadata.to_instruction_bytes()
    assert init_curve.accounts[0].pubkey == mint
    assert init_curve.accounts[1].pubkey == creator


@pytest.mark.asyncio
async def test_assemble_create_signs_with_creator_and_mint(assembler, metadata, fake_ledger):
    creator = Keypair()

    transaction, mint = await assembler.assemble_create(metadata, creator)

    signers = transaction.message.account_keys[:transaction.message.header.num_required_signatures]
    assert signers[0] == creator.pubkey()
    assert mint.pubkey() in signers
    assert len(transaction.message.instructions) == 5
    fake_ledger.get_balance.assert_awaited_once_with(creator.pubkey())


@pytest.mark.asyncio
async def test_assemble_create_accepts_exact_balance(assembler, metadata, fake_ledger):
    fake_ledger.get_balance.return_value = 60_000_000

    await assembler.assemble_create(metadata, Keypair())


@pytest.mark.asyncio
async def test_assemble_create_insufficient_balance(assembler, metadata, fake_ledger):
    fake_ledger.get_balance.return_value = 59_999_999

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await assembler.assemble_create(metadata, Keypair())

    assert exc_info.value.kind == "precondition"
    assert str(exc_info.value) == (
        "Insufficient balance. Required: 0.060000000 SOL, Available: 0.059999999 SOL"
    )
    fake_ledger.get_latest_blockhash.assert_not_awaited()


@pytest.mark.asyncio
async def test_assemble_create_rejects_invalid_metadata(assembler, metadata, fake_ledger):
    with pytest.raises(InvalidMetadataError) as exc_info:
        await assembler.assemble_create(metadata.model_copy(update={"symbol": ""}), Keypair())

    assert exc_info.value.errors == ["Token symbol must be 1-8 characters"]
    fake_ledger.get_balance.assert_not_awaited()


@pytest.mark.asyncio
async def test_buy_batch_has_one_transaction_per_wallet_in_order(assembler, curve, wallet_keys, fake_ledger):
    wallet_ids = ["wallet2", "wallet0", "wallet3"]
    amounts = [Decimal("0.1"), Decimal("0.5"), Decimal("1")]
    intent = TradeIntent(side=TradeSide.buy, token_address=curve.token_address, amounts=amounts, wallet_ids=wallet_ids)

    assembled = await assembler.assemble_trade_batch(intent, curve)

    assert len(assembled.batch) == 3
    assert [leg.wallet_id for leg in assembled.legs] == wallet_ids
    for encoded, wallet_id, amount in zip(assembled.batch.transactions, wallet_ids, amounts):
        transaction = decode(encoded)
        message = transaction.message
        assert message.account_keys[0] == wallet_keys[wallet_id].pubkey()
        assert len(message.instructions) == 2
        trade = message.instructions[0]
        assert message.account_keys[trade.program_id_index] == PROGRAM_ID
        assert bytes(trade.data).startswith(BUY_DISCRIMINATOR)
    assert assembled.total_fee == sum(amounts) * FEE_RATE
    assert assembled.batch.tip_amount == Decimal("0.00001")
    assert fake_ledger.get_latest_blockhash.await_count == 3


@pytest.mark.asyncio
async def test_all_legs_share_one_curve_snapshot(assembler, curve):
    intent = TradeIntent(
        side=TradeSide.buy,
        token_address=curve.token_address,
        amounts=[Decimal("1"), Decimal("1")],
        wallet_ids=["wallet0", "wallet1"],
    )

    assembled = await assembler.assemble_trade_batch(intent, curve)

    assert assembled.legs[0].quote == assembled.legs[1].quote


@pytest.mark.asyncio
async def test_sell_batch(assembler, curve):
    intent = TradeIntent(
        side=TradeSide.sell,
        token_address=curve.token_address,
        amounts=[Decimal(1_000_000_000)],
        wallet_ids=["wallet1"],
    )

    assembled = await assembler.assemble_trade_batch(intent, curve)

    trade = decode(assembled.batch.transactions[0]).message.instructions[0]
    data = bytes(trade.data)
    assert data.startswith(SELL_DISCRIMINATOR)
    assert int.from_bytes(data[8:16], "little") == 1_000_000_000


@pytest.mark.asyncio
async def test_batch_is_all_or_nothing(assembler, curve, fake_ledger):
    intent = TradeIntent(
        side=TradeSide.buy,
        token_address=curve.token_address,
        amounts=[Decimal("0.1"), Decimal("0.1"), Decimal("0.1")],
        wallet_ids=["wallet0", "ghost", "wallet1"],
    )

    with pytest.raises(WalletNotFoundError):
        await assembler.assemble_trade_batch(intent, curve)
    assert fake_ledger.get_latest_blockhash.await_count == 1


@pytest.mark.asyncio
async def test_batch_shape_is_checked_first(assembler, curve, fake_ledger):
    intent = TradeIntent(
        side=TradeSide.buy,
        token_address=curve.token_address,
        amounts=[Decimal("0.1"), Decimal("0.1")],
        wallet_ids=["wallet0"],
    )

    with pytest.raises(BatchSizeMismatchError):
        await assembler.assemble_trade_batch(intent, curve)
    fake_ledger.get_latest_blockhash.assert_not_awaited()


def test_buy_instruction_carries_slippage_bound(assembler, curve):
    user = Keypair().pubkey()
    mint = Pubkey.from_string(curve.token_address)
    quote = assembler.quote_leg(TradeSide.buy, Decimal("1"), curve)

    trade, fee_transfer = assembler.build_leg_instructions(TradeSide.buy, mint, user, quote)

    assert int.from_bytes(trade.data[16:24], "little") == 1_010_000_000
    assert fee_transfer.program_id == SYS_PROGRAM_ID
