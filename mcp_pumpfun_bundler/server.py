"""
Pump.fun Bundle Trading Server - MCP Server Implementation

This module exposes the trading engine as MCP tools: token creation, bundled multi-wallet
buys and sells, bundle status lookups, metadata validation, price quotes and management
of the wallets that trade.

Key Features:
- Token creation with metadata validation and balance pre-checks
- Buy/sell batches of up to 16 wallets submitted as one atomic bundle
- Bounded bundle retries with exponential backoff
- Per-requester rate limiting
- Wallet creation, import, listing and balance lookups; secret keys are never returned
- Structured JSON results for every tool, success or failure

Resource Model:
- One pooled httpx.AsyncClient is opened by the server lifespan and shared by the
  ledger client and the bundle submitter for every request
- No component keeps per-request state; signing material is borrowed per transaction

All tool results are JSON strings. Failures carry ``success: false``, an ``error_kind``
and the messages a user needs; internal details are only logged.
"""

import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncIterator, List, Optional

import httpx
from pydantic import Field

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_pumpfun_bundler import bundle
from mcp_pumpfun_bundler import config
from mcp_pumpfun_bundler.assembler import TransactionAssembler
from mcp_pumpfun_bundler.bundle import BundleSubmitter
from mcp_pumpfun_bundler.errors import BundlerError
from mcp_pumpfun_bundler.ledger import LedgerClient
from mcp_pumpfun_bundler.orchestrator import RequestOrchestrator, failure_result
from mcp_pumpfun_bundler.pricing import lamports_to_sol, sol_to_lamports
from mcp_pumpfun_bundler.rate_limiter import RateLimiter
from mcp_pumpfun_bundler.schemas import TokenMetadata, TradeSide, TransactionResult
from mcp_pumpfun_bundler.validation import validate_token_metadata as run_metadata_validation
from mcp_pumpfun_bundler.wallets import FileWalletStore, WalletStore

logger = get_logger(__name__)

UNEXPECTED_ERROR = TransactionResult(
    success=False,
    error="An unexpected server error occurred",
    error_kind="internal",
)


@dataclass
class AppContext:
    http_client: httpx.AsyncClient
    ledger: LedgerClient
    wallets: WalletStore
    submitter: BundleSubmitter
    orchestrator: RequestOrchestrator
    rate_limiter: RateLimiter


def build_app_context(http_client: httpx.AsyncClient, wallets: Optional[WalletStore] = None) -> AppContext:
    """Wires every component around one shared HTTP client."""
    wallets = wallets or FileWalletStore(config.WALLET_DIR)
    ledger = LedgerClient(http_client, config.RPC_ENDPOINT)
    submitter = BundleSubmitter(http_client, config.BUNDLE_URL, timeout=config.BUNDLE_TIMEOUT_SECONDS)
    assembler = TransactionAssembler(ledger, wallets)
    orchestrator = RequestOrchestrator(ledger, wallets, assembler, submitter)
    return AppContext(
        http_client=http_client,
        ledger=ledger,
        wallets=wallets,
        submitter=submitter,
        orchestrator=orchestrator,
        rate_limiter=RateLimiter(config.RATE_LIMIT_PER_MINUTE),
    )


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(config.BUNDLE_TIMEOUT_SECONDS, connect=5.0),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
    ) as client:
        logger.info("HTTP client pool opened")
        yield build_app_context(client)
    logger.info("HTTP client pool closed")


# --- Server Setup ---
mcp = FastMCP(name="Pump.fun Bundle Trading Server", lifespan=app_lifespan)


def _app(context: Context) -> AppContext:
    return context.request_context.lifespan_context


def _dump(result: TransactionResult) -> str:
    return result.model_dump_json(indent=2)


def log_operation(operation: str, result: TransactionResult, requester_id: str, duration: float) -> None:
    """Log the outcome of a tool call with structured information."""
    if result.success:
        logger.info(f"{operation} succeeded: bundle={result.bundle_id}, signature={result.signature}, "
                    f"fee={result.fee_paid}, requester={requester_id}, duration={duration:.3f}s")
    else:
        logger.warning(f"{operation} failed ({result.error_kind}): {result.error}, "
                       f"requester={requester_id}, duration={duration:.3f}s")


# --- MCP Tools ---

@mcp.tool()
async def create_token(
    context: Context,
    name: str = Field(..., description="Token name (1-32 characters)."),
    symbol: str = Field(..., description="Token symbol (1-8 characters)."),
    description: str = Field(..., description="Token description (1-200 characters)."),
    image_url: str = Field(..., description="URL of the token image."),
    wallet_id: str = Field(..., description="ID of the creator wallet in the wallet store."),
    telegram_link: Optional[str] = Field(None, description="Telegram link (required by validation)."),
    twitter_link: Optional[str] = Field(None, description="Twitter link (required by validation)."),
    requester_id: str = Field("anonymous", description="ID of the user issuing the request."),
) -> str:
    """
    Creates a new token on the launch protocol and initializes its bonding curve.

    The creator wallet pays the creation fee and must hold the fee plus a safety buffer.
    Metadata problems are all reported at once.
    """
    start_time = time.time()
    app = _app(context)
    try:
        app.rate_limiter.enforce(requester_id)
        metadata = TokenMetadata(
            name=name,
            symbol=symbol,
            description=description,
            image_url=image_url,
            telegram_link=telegram_link,
            twitter_link=twitter_link,
        )
        result = await app.orchestrator.create_token(metadata, wallet_id)
    except BundlerError as e:
        result = failure_result(e)
    except Exception as e:
        logger.exception(f"Unexpected error creating token {symbol}: {e}")
        return _dump(UNEXPECTED_ERROR)

    log_operation("Token creation", result, requester_id, time.time() - start_time)
    return _dump(result)


@mcp.tool()
async def buy_tokens(
    context: Context,
    token_address: str = Field(..., description="Mint address of the token."),
    sol_amounts: List[float] = Field(..., description="SOL to spend, one entry per wallet."),
    wallet_ids: List[str] = Field(..., description="Wallet IDs, in the same order as the amounts."),
    requester_id: str = Field("anonymous", description="ID of the user issuing the request."),
) -> str:
    """
    Buys a token from up to 16 wallets at once, submitted as a single atomic bundle.

    Every leg is priced against the same bonding curve snapshot. The result carries the
    bundle ID, the number of submission attempts and the total fee paid.
    """
    start_time = time.time()
    app = _app(context)
    try:
        app.rate_limiter.enforce(requester_id)
        result = await app.orchestrator.buy(token_address, sol_amounts, wallet_ids, requester_id)
    except BundlerError as e:
        result = failure_result(e)
    except Exception as e:
        logger.exception(f"Unexpected error buying {token_address}: {e}")
        return _dump(UNEXPECTED_ERROR)

    log_operation("Bundle buy", result, requester_id, time.time() - start_time)
    return _dump(result)


@mcp.tool()
async def sell_tokens(
    context: Context,
    token_address: str = Field(..., description="Mint address of the token."),
    token_amounts: List[int] = Field(..., description="Token units to sell, one entry per wallet."),
    wallet_ids: List[str] = Field(..., description="Wallet IDs, in the same order as the amounts."),
    requester_id: str = Field("anonymous", description="ID of the user issuing the request."),
) -> str:
    """Sells a token from up to 16 wallets at once, submitted as a single atomic bundle."""
    start_time = time.time()
    app = _app(context)
    try:
        app.rate_limiter.enforce(requester_id)
        result = await app.orchestrator.sell(token_address, token_amounts, wallet_ids, requester_id)
    except BundlerError as e:
        result = failure_result(e)
    except Exception as e:
        logger.exception(f"Unexpected error selling {token_address}: {e}")
        return _dump(UNEXPECTED_ERROR)

    log_operation("Bundle sell", result, requester_id, time.time() - start_time)
    return _dump(result)


@mcp.tool()
async def get_bundle_status(
    context: Context,
    bundle_id: str = Field(..., description="Bundle ID returned by a buy or sell."),
) -> str:
    """Reads the relay's current status for a bundle. Poll as often as needed."""
    try:
        result = await _app(context).orchestrator.get_bundle_status(bundle_id)
    except Exception as e:
        logger.exception(f"Unexpected error reading status of bundle {bundle_id}: {e}")
        return _dump(UNEXPECTED_ERROR)
    return _dump(result)


@mcp.tool()
async def validate_token_metadata(
    context: Context,
    name: str = Field(..., description="Token name."),
    symbol: str = Field(..., description="Token symbol."),
    description: str = Field(..., description="Token description."),
    image_url: str = Field(..., description="URL of the token image."),
    telegram_link: Optional[str] = Field(None, description="Telegram link."),
    twitter_link: Optional[str] = Field(None, description="Twitter link."),
) -> str:
    """Checks token metadata and lists every problem found, without creating anything."""
    metadata = TokenMetadata(
        name=name,
        symbol=symbol,
        description=description,
        image_url=image_url,
        telegram_link=telegram_link,
        twitter_link=twitter_link,
    )
    return run_metadata_validation(metadata).model_dump_json(indent=2)


@mcp.tool()
async def quote_trade(
    context: Context,
    token_address: str = Field(..., description="Mint address of the token."),
    side: TradeSide = Field(..., description="'buy' (amounts in SOL) or 'sell' (amounts in token units)."),
    amounts: List[float] = Field(..., description="Amounts to price, one per leg."),
) -> str:
    """Prices trade legs against the current bonding curve, net of the trading fee."""
    try:
        quotes = await _app(context).orchestrator.quote(TradeSide(side), token_address, amounts)
    except BundlerError as e:
        return _dump(failure_result(e))
    except Exception as e:
        logger.exception(f"Unexpected error quoting {token_address}: {e}")
        return _dump(UNEXPECTED_ERROR)
    return json.dumps([quote.model_dump(mode="json") for quote in quotes], indent=2)


@mcp.tool()
async def get_bonding_curve(
    context: Context,
    token_address: str = Field(..., description="Mint address of the token."),
) -> str:
    """Reads the current reserves and price of a token's bonding curve."""
    try:
        curve = await _app(context).orchestrator.fetch_curve(token_address)
    except BundlerError as e:
        return _dump(failure_result(e))
    except Exception as e:
        logger.exception(f"Unexpected error reading curve of {token_address}: {e}")
        return _dump(UNEXPECTED_ERROR)
    return curve.model_dump_json(indent=2)


@mcp.tool()
async def calculate_bundle_fee(
    context: Context,
    transaction_count: int = Field(..., description="Number of transactions in the bundle."),
) -> str:
    """Estimates the relay fee of a bundle in SOL."""
    if transaction_count < 1 or transaction_count > config.MAX_WALLETS_PER_BUNDLE:
        return _dump(TransactionResult(
            success=False,
            error=f"Transaction count must be between 1 and {config.MAX_WALLETS_PER_BUNDLE}",
            error_kind="validation",
        ))
    fee = bundle.calculate_bundle_fee(transaction_count)
    return json.dumps({"transaction_count": transaction_count, "fee": str(fee)}, indent=2)


# --- Wallet Management Tools ---

@mcp.tool()
async def create_wallet(
    context: Context,
    wallet_id: str = Field(..., description="ID for the new wallet (letters, digits, '_' or '-')."),
    label: Optional[str] = Field(None, description="Optional human-readable label."),
) -> str:
    """
    Generates a new wallet and adds it to the wallet store.

    Only the wallet's public address is returned; the secret key never leaves the store.
    """
    try:
        address = _app(context).wallets.create_wallet(wallet_id, label)
    except BundlerError as e:
        return _dump(failure_result(e))
    except Exception as e:
        logger.exception(f"Unexpected error creating wallet {wallet_id}: {e}")
        return _dump(UNEXPECTED_ERROR)
    logger.info(f"Created wallet '{wallet_id}' ({address})")
    return json.dumps({"success": True, "wallet_id": wallet_id, "address": str(address)}, indent=2)


@mcp.tool()
async def import_wallet(
    context: Context,
    wallet_id: str = Field(..., description="ID to store the wallet under."),
    secret_key: str = Field(..., description="Secret key as base58, a JSON byte array or comma-separated bytes."),
    label: Optional[str] = Field(None, description="Optional human-readable label."),
) -> str:
    """Adds an existing wallet to the wallet store and returns its public address."""
    try:
        address = _app(context).wallets.add_wallet(wallet_id, secret_key, label)
    except BundlerError as e:
        return _dump(failure_result(e))
    except Exception:
        logger.exception(f"Unexpected error importing wallet {wallet_id}")
        return _dump(UNEXPECTED_ERROR)
    return json.dumps({"success": True, "wallet_id": wallet_id, "address": str(address)}, indent=2)


@mcp.tool()
async def list_wallets(context: Context) -> str:
    """Lists the wallets in the store with their public addresses."""
    wallets = _app(context).wallets
    entries = []
    for wallet_id in wallets.list_wallet_ids():
        try:
            entries.append({"wallet_id": wallet_id, "address": str(await wallets.public_key(wallet_id))})
        except BundlerError as e:
            logger.warning(f"Wallet '{wallet_id}' cannot be listed: {e}")
            entries.append({"wallet_id": wallet_id, "address": None, "error": str(e)})
    return json.dumps(entries, indent=2)


@mcp.tool()
async def get_wallet_balance(
    context: Context,
    wallet_id: str = Field(..., description="ID of the wallet in the wallet store."),
    required_sol: Optional[float] = Field(None, description="If given, also report whether the balance covers it."),
) -> str:
    """Reads a wallet's SOL balance from the ledger."""
    app = _app(context)
    try:
        address = await app.wallets.public_key(wallet_id)
        lamports = await app.ledger.get_balance(address)
    except BundlerError as e:
        return _dump(failure_result(e))
    except Exception as e:
        logger.exception(f"Unexpected error reading balance of wallet {wallet_id}: {e}")
        return _dump(UNEXPECTED_ERROR)

    balance = {
        "success": True,
        "wallet_id": wallet_id,
        "address": str(address),
        "lamports": lamports,
        "sol": str(lamports_to_sol(lamports)),
    }
    if required_sol is not None:
        balance["sufficient"] = lamports >= sol_to_lamports(Decimal(str(required_sol)))
    return json.dumps(balance, indent=2)


def main() -> None:
    logger.info("Starting Pump.fun Bundle Trading MCP Server...")
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")


# --- Main Execution ---
if __name__ == "__main__":
    main()
