import json
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

import base58
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mcp_pumpfun_bundler.config import WALLET_DIR
from mcp_pumpfun_bundler.errors import ValidationError, WalletExistsError, WalletNotFoundError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# Determine the absolute path to the directory containing this file
MODULE_DIR = Path(__file__).parent.resolve()

_WALLET_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class WalletRecord(BaseModel):
    wallet_id: str
    secret_key: str
    label: Optional[str] = None


def decode_keypair(secret: str) -> Keypair:
    """
    Decodes signing material in any of the formats wallets are imported with:
    base58 (64-byte secret key), a JSON byte array, or comma-separated bytes.
    A 32-byte value is treated as a seed.
    """
    secret = secret.strip()
    try:
        if secret.startswith("["):
            raw = bytes(json.loads(secret))
        elif "," in secret:
            raw = bytes(int(part.strip()) for part in secret.split(","))
        else:
            raw = base58.b58decode(secret)
    except (ValueError, TypeError):
        # The decoder message can quote key material
        raise ValidationError("Invalid private key format")

    if len(raw) not in (32, 64):
        raise ValidationError(f"Invalid private key length: {len(raw)} bytes")
    try:
        return Keypair.from_bytes(raw) if len(raw) == 64 else Keypair.from_seed(raw)
    except ValueError as e:
        raise ValidationError(f"Invalid private key: {e}")


class WalletStore:
    """
    Resolves wallet identifiers to signing material.

    Keys are borrowed for one transaction build through ``signer`` and never cached
    by the store or by its callers.
    """

    async def load_secret(self, wallet_id: str) -> str:
        raise NotImplementedError

    @asynccontextmanager
    async def signer(self, wallet_id: str) -> AsyncIterator[Keypair]:
        secret = await self.load_secret(wallet_id)
        try:
            keypair = decode_keypair(secret)
        except ValidationError as e:
            raise WalletNotFoundError(f"Wallet '{wallet_id}' holds unusable key material: {e}")
        try:
            yield keypair
        finally:
            del keypair
            del secret

    async def public_key(self, wallet_id: str) -> Pubkey:
        async with self.signer(wallet_id) as keypair:
            return keypair.pubkey()

    def list_wallet_ids(self) -> List[str]:
        raise NotImplementedError

    def add_wallet(self, wallet_id: str, secret_key: str, label: Optional[str] = None) -> Pubkey:
        raise NotImplementedError

    def create_wallet(self, wallet_id: str, label: Optional[str] = None) -> Pubkey:
        """Generates a fresh keypair and stores it. Only the public key is returned."""
        return self.add_wallet(wallet_id, str(Keypair()), label)


class FileWalletStore(WalletStore):
    """Wallet store backed by one ``<wallet_id>.json`` file per wallet."""

    def __init__(self, directory: Union[str, Path] = WALLET_DIR):
        directory = Path(directory)
        self.directory = directory if directory.is_absolute() else MODULE_DIR / directory

    def _path_for(self, wallet_id: str) -> Path:
        if not wallet_id or not _WALLET_ID_PATTERN.match(wallet_id):
            raise WalletNotFoundError(f"Invalid wallet ID: {wallet_id!r}")
        return self.directory / f"{wallet_id}.json"

    async def load_secret(self, wallet_id: str) -> str:
        file_path = self._path_for(wallet_id)
        if not file_path.is_file():
            raise WalletNotFoundError(f"Wallet '{wallet_id}' not found")

        try:
            with open(file_path, "r") as f:
                record = WalletRecord.model_validate(json.load(f))
        except json.JSONDecodeError:
            logger.error(f"Error decoding JSON from wallet file: {file_path}")
            raise WalletNotFoundError(f"Wallet '{wallet_id}' is unreadable")
        except PydanticValidationError as e:
            logger.error(f"Invalid wallet record in file {file_path}: {e.error_count()} error(s)")
            raise WalletNotFoundError(f"Wallet '{wallet_id}' is malformed")

        # Basic validation: Ensure wallet_id in file matches the file name
        if record.wallet_id != wallet_id:
            logger.warning(f"Wallet ID mismatch in {file_path}: expected '{wallet_id}', found '{record.wallet_id}'")
            raise WalletNotFoundError(f"Wallet '{wallet_id}' not found")

        return record.secret_key

    def list_wallet_ids(self) -> List[str]:
        if not self.directory.is_dir():
            logger.warning(f"Wallet directory not found: {self.directory}. No wallets available.")
            return []
        return sorted(path.stem for path in self.directory.glob("*.json"))

    def add_wallet(self, wallet_id: str, secret_key: str, label: Optional[str] = None) -> Pubkey:
        """
        Imports a wallet after checking that its key material decodes.

        Raises:
            ValidationError: If the ID or the key material is invalid.
            WalletExistsError: If a wallet with this ID is already stored.
        """
        if not wallet_id or not _WALLET_ID_PATTERN.match(wallet_id):
            raise ValidationError(f"Invalid wallet ID: {wallet_id!r}")
        file_path = self._path_for(wallet_id)
        if file_path.exists():
            raise WalletExistsError(wallet_id)
        keypair = decode_keypair(secret_key)
        self.directory.mkdir(parents=True, exist_ok=True)
        record = WalletRecord(wallet_id=wallet_id, secret_key=secret_key, label=label)
        with open(file_path, "w") as f:
            json.dump(record.model_dump(mode="json"), f, indent=4)
        logger.info(f"Stored wallet '{wallet_id}' ({keypair.pubkey()})")
        return keypair.pubkey()
