"""
Solana Ledger JSON-RPC Client

This module is the engine's only window onto the ledger: balances, recent blockhashes,
raw account data, bonding curve state, and sending transactions with confirmation.

One pooled httpx.AsyncClient is shared by reference across concurrent requests; the
client itself is safe for concurrent use, so no locking happens here.

Every transport or RPC failure is raised as LedgerUnavailableError. Nothing in this
module retries: a failed data fetch is terminal for the request that made it.
"""
import asyncio
import base64
import struct
from decimal import Decimal
from typing import Any, List, Optional

import httpx
from solders.hash import Hash as Blockhash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from mcp_pumpfun_bundler.config import PUMP_PROGRAM_ID, RPC_ENDPOINT
from mcp_pumpfun_bundler.errors import (
    InvalidCurveStateError,
    LedgerUnavailableError,
    TransactionFailedError,
)
from mcp_pumpfun_bundler.pricing import lamports_to_sol
from mcp_pumpfun_bundler.schemas import BondingCurveState
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

BONDING_CURVE_SEED = b"bonding-curve"
# Anchor discriminator, then virtual token, virtual SOL, real token, real SOL, total supply, complete
BONDING_CURVE_LAYOUT = struct.Struct("<QQQQQ?")
BONDING_CURVE_DISCRIMINATOR_SIZE = 8


def get_bonding_curve_address(mint: Pubkey, program_id: Pubkey = PUMP_PROGRAM_ID) -> Pubkey:
    """Derives the bonding curve account of a mint."""
    return Pubkey.find_program_address([BONDING_CURVE_SEED, bytes(mint)], program_id)[0]


def decode_bonding_curve(token_address: str, data: bytes) -> BondingCurveState:
    """Decodes raw bonding curve account data into reserves."""
    end = BONDING_CURVE_DISCRIMINATOR_SIZE + BONDING_CURVE_LAYOUT.size
    if len(data) < end:
        raise InvalidCurveStateError(
            f"Bonding curve account for {token_address} is too short ({len(data)} bytes)"
        )
    (
        virtual_token_reserves,
        virtual_sol_reserves,
        _real_token_reserves,
        _real_sol_reserves,
        token_total_supply,
        complete,
    ) = BONDING_CURVE_LAYOUT.unpack(data[BONDING_CURVE_DISCRIMINATOR_SIZE:end])

    base_reserve = lamports_to_sol(virtual_sol_reserves)
    token_reserve = Decimal(virtual_token_reserves)
    current_price = base_reserve / token_reserve if token_reserve > 0 else Decimal(0)
    return BondingCurveState(
        token_address=token_address,
        current_price=current_price,
        total_supply=token_total_supply,
        base_reserve=base_reserve,
        token_reserve=token_reserve,
        complete=complete,
    )


class LedgerClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        rpc_endpoint: str = RPC_ENDPOINT,
        confirm_timeout: float = 60,
        confirm_interval: float = 2,
    ):
        self.client = client
        self.rpc_endpoint = rpc_endpoint
        self.confirm_timeout = confirm_timeout
        self.confirm_interval = confirm_interval

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        try:
            resp = await self.client.post(
                self.rpc_endpoint,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error calling {method}: {e.response.status_code} - {e.response.text}")
            raise LedgerUnavailableError(f"HTTP {e.response.status_code} from {method}")
        except httpx.HTTPError as e:
            logger.error(f"Transport error calling {method}: {e}")
            raise LedgerUnavailableError(e)
        except ValueError as e:
            logger.error(f"Malformed JSON-RPC response for {method}: {e}")
            raise LedgerUnavailableError(f"Malformed response from {method}")

        if not isinstance(data, dict):
            logger.error(f"Unexpected JSON-RPC body for {method}: {resp.text[:200]}")
            raise LedgerUnavailableError(f"Malformed response from {method}")
        if data.get("error"):
            raise LedgerUnavailableError(f"{method} failed: {data['error']}")
        if "result" not in data:
            raise LedgerUnavailableError(f"{method} returned no result")
        return data["result"]

    async def get_balance(self, address: Pubkey) -> int:
        """Balance of an account in lamports."""
        result = await self._rpc("getBalance", [str(address), {"commitment": "confirmed"}])
        try:
            return int(result["value"])
        except (KeyError, TypeError, ValueError):
            raise LedgerUnavailableError(f"Unexpected response format for balance of {address}")

    async def get_latest_blockhash(self) -> Blockhash:
        result = await self._rpc("getLatestBlockhash", [{"commitment": "confirmed"}])
        try:
            return Blockhash.from_string(result["value"]["blockhash"])
        except (KeyError, TypeError, ValueError):
            raise LedgerUnavailableError("Unexpected response format for latest blockhash")

    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        """Raw account data, or None when the account does not exist."""
        result = await self._rpc(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": "confirmed"}],
        )
        try:
            value = result["value"]
            if value is None:
                return None
            return base64.b64decode(value["data"][0])
        except (KeyError, TypeError, IndexError, ValueError):
            raise LedgerUnavailableError(f"Unexpected response format for account {address}")

    async def get_bonding_curve(self, mint: Pubkey, program_id: Pubkey = PUMP_PROGRAM_ID) -> BondingCurveState:
        """Reads the current reserves of a mint's bonding curve. Never cached."""
        curve_address = get_bonding_curve_address(mint, program_id)
        data = await self.get_account_data(curve_address)
        if data is None:
            raise InvalidCurveStateError(f"No bonding curve found for token {mint}")
        curve = decode_bonding_curve(str(mint), data)
        logger.debug(f"Fetched bonding curve for {mint}: base={curve.base_reserve} SOL, "
                     f"token={curve.token_reserve}, complete={curve.complete}")
        return curve

    async def send_and_confirm(self, transaction: Transaction) -> str:
        """Sends a signed transaction and waits until it is confirmed."""
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        tx_hash = await self._rpc(
            "sendTransaction",
            [encoded, {"encoding": "base64", "skipPreflight": False, "preflightCommitment": "confirmed"}],
        )
        try:
            tx_signature = Signature.from_string(tx_hash)
        except Exception:
            raise LedgerUnavailableError(f"sendTransaction returned an invalid signature: {tx_hash!r}")
        logger.info(f"Sent transaction {tx_signature}")

        elapsed_time = 0.0
        while elapsed_time < self.confirm_timeout:
            await asyncio.sleep(self.confirm_interval)
            elapsed_time += self.confirm_interval
            result = await self._rpc(
                "getSignatureStatuses",
                [[str(tx_signature)], {"searchTransactionHistory": True}],
            )
            status = (result.get("value") or [None])[0]
            if not status:
                continue
            if status.get("err") is not None:
                logger.error(f"Transaction {tx_signature} failed on-chain: {status['err']}")
                raise TransactionFailedError(f"Transaction failed: {status['err']}")
            if status.get("confirmationStatus") in ("confirmed", "finalized"):
                logger.info(f"Transaction {tx_signature} confirmed.")
                return str(tx_signature)

        logger.warning(f"Transaction {tx_signature} confirmation timed out.")
        raise TransactionFailedError(f"Transaction {tx_signature} confirmation timed out")
