import json

import pytest
from solders.keypair import Keypair

from mcp_pumpfun_bundler.errors import ValidationError, WalletExistsError, WalletNotFoundError
from mcp_pumpfun_bundler.wallets import FileWalletStore, decode_keypair


class TestDecodeKeypair:
    def test_base58(self):
        keypair = Keypair()
        assert decode_keypair(str(keypair)).pubkey() == keypair.pubkey()

    def test_json_array(self):
        keypair = Keypair()
        assert decode_keypair(json.dumps(list(bytes(keypair)))).pubkey() == keypair.pubkey()

    def test_comma_separated(self):
        keypair = Keypair()
        secret = ", ".join(str(b) for b in bytes(keypair))
        assert decode_keypair(secret).pubkey() == keypair.pubkey()

    def test_seed(self):
        seed = bytes(range(32))
        assert decode_keypair(json.dumps(list(seed))).pubkey() == Keypair.from_seed(seed).pubkey()

    @pytest.mark.parametrize("secret", ["0OIl", "[1, 2, 3]", "1,2,300"])
    def test_rejects_bad_material(self, secret):
        with pytest.raises(ValidationError):
            decode_keypair(secret)


@pytest.mark.asyncio
async def test_public_key_resolves_stored_wallet(wallet_store, wallet_keys):
    assert await wallet_store.public_key("wallet2") == wallet_keys["wallet2"].pubkey()


@pytest.mark.asyncio
async def test_signer_yields_keypair(wallet_store, wallet_keys):
    async with wallet_store.signer("wallet0") as keypair:
        assert keypair.pubkey() == wallet_keys["wallet0"].pubkey()


@pytest.mark.asyncio
async def test_unknown_wallet(wallet_store):
    with pytest.raises(WalletNotFoundError):
        await wallet_store.public_key("nobody")


@pytest.mark.asyncio
@pytest.mark.parametrize("wallet_id", ["", "../wallet0", "a/b", "x" * 65])
async def test_invalid_wallet_ids(wallet_store, wallet_id):
    with pytest.raises(WalletNotFoundError):
        await wallet_store.load_secret(wallet_id)


@pytest.mark.asyncio
async def test_wallet_id_must_match_file(wallet_store):
    path = wallet_store.directory / "impostor.json"
    path.write_text(json.dumps({"wallet_id": "wallet0", "secret_key": str(Keypair())}))

    with pytest.raises(WalletNotFoundError):
        await wallet_store.load_secret("impostor")


@pytest.mark.asyncio
async def test_unusable_key_material(wallet_store):
    path = wallet_store.directory / "broken.json"
    path.write_text(json.dumps({"wallet_id": "broken", "secret_key": "[1, 2, 3]"}))

    with pytest.raises(WalletNotFoundError):
        async with wallet_store.signer("broken"):
            pass


@pytest.mark.asyncio
async def test_malformed_wallet_file(wallet_store):
    (wallet_store.directory / "garbled.json").write_text("{not json")

    with pytest.raises(WalletNotFoundError):
        await wallet_store.load_secret("garbled")


@pytest.mark.asyncio
async def test_wallet_files_are_read_per_call(wallet_store):
    replacement = Keypair()
    (wallet_store.directory / "wallet1.json").write_text(
        json.dumps({"wallet_id": "wallet1", "secret_key": str(replacement)})
    )

    assert await wallet_store.public_key("wallet1") == replacement.pubkey()


def test_list_wallet_ids(wallet_store):
    assert wallet_store.list_wallet_ids() == ["wallet0", "wallet1", "wallet2", "wallet3"]


def test_missing_directory_lists_nothing(tmp_path):
    assert FileWalletStore(tmp_path / "absent").list_wallet_ids() == []


def test_add_wallet_rejects_bad_key(tmp_path):
    store = FileWalletStore(tmp_path)
    with pytest.raises(ValidationError):
        store.add_wallet("bad", "not-a-key")


@pytest.mark.asyncio
async def test_create_wallet_stores_a_usable_key(tmp_path):
    store = FileWalletStore(tmp_path)

    address = store.create_wallet("generated", label="fresh")

    assert await store.public_key("generated") == address
    assert json.loads((tmp_path / "generated.json").read_text())["label"] == "fresh"


def test_add_wallet_never_overwrites(wallet_store):
    with pytest.raises(WalletExistsError):
        wallet_store.add_wallet("wallet0", str(Keypair()))
    with pytest.raises(WalletExistsError):
        wallet_store.create_wallet("wallet1")


@pytest.mark.parametrize("wallet_id", ["", "../escape", "x" * 65])
def test_add_wallet_rejects_bad_ids(tmp_path, wallet_id):
    with pytest.raises(ValidationError):
        FileWalletStore(tmp_path).add_wallet(wallet_id, str(Keypair()))
