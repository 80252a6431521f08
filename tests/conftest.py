import base64
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv
from solders.hash import Hash
from solders.keypair import Keypair

from mcp_pumpfun_bundler.ledger import BONDING_CURVE_LAYOUT
from mcp_pumpfun_bundler.schemas import BondingCurveState, TokenMetadata
from mcp_pumpfun_bundler.wallets import FileWalletStore

load_dotenv()

MINT = str(Keypair().pubkey())

# Virtual reserves of a freshly launched curve
VIRTUAL_SOL_LAMPORTS = 30_000_000_000
VIRTUAL_TOKEN_UNITS = 1_073_000_000_000_000
TOTAL_SUPPLY = 1_000_000_000_000_000


def curve_account_data(complete: bool = False) -> bytes:
    return bytes(8) + BONDING_CURVE_LAYOUT.pack(
        VIRTUAL_TOKEN_UNITS,
        VIRTUAL_SOL_LAMPORTS,
        793_100_000_000_000,
        0,
        TOTAL_SUPPLY,
        complete,
    )


def curve_account_info(complete: bool = False) -> dict:
    return {
        "context": {"slot": 1},
        "value": {
            "data": [base64.b64encode(curve_account_data(complete)).decode("ascii"), "base64"],
            "executable": False,
            "lamports": 1_000_000,
            "owner": "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P",
            "rentEpoch": 0,
        },
    }


@pytest.fixture
def mint_address() -> str:
    return MINT


@pytest.fixture
def curve() -> BondingCurveState:
    return BondingCurveState(
        token_address=MINT,
        current_price=Decimal(30) / Decimal(VIRTUAL_TOKEN_UNITS),
        total_supply=TOTAL_SUPPLY,
        base_reserve=Decimal(30),
        token_reserve=Decimal(VIRTUAL_TOKEN_UNITS),
    )


@pytest.fixture
def metadata() -> TokenMetadata:
    return TokenMetadata(
        name="Bundle Test Token",
        symbol="BTT",
        description="A token used by the test suite.",
        image_url="https://example.com/token.png",
        telegram_link="https://t.me/bundletest",
        twitter_link="https://twitter.com/bundletest",
    )


@pytest.fixture
def wallet_keys():
    return {f"wallet{i}": Keypair() for i in range(4)}


@pytest.fixture
def wallet_store(tmp_path, wallet_keys) -> FileWalletStore:
    store = FileWalletStore(tmp_path / "wallets")
    for wallet_id, keypair in wallet_keys.items():
        store.add_wallet(wallet_id, str(keypair))
    return store


@pytest.fixture
def fake_ledger(curve):
    """Ledger double with a funded creator and a fresh blockhash per call."""
    ledger = MagicMock()
    ledger.get_balance = AsyncMock(return_value=1_000_000_000)
    ledger.get_latest_blockhash = AsyncMock(side_effect=lambda: Hash.new_unique())
    ledger.get_bonding_curve = AsyncMock(return_value=curve)
    ledger.send_and_confirm = AsyncMock(return_value="confirmed-signature")
    return ledger


@pytest.fixture
def make_curve_account():
    return curve_account_info
