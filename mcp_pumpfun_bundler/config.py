import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional
from solders.pubkey import Pubkey
from dotenv import load_dotenv

from mcp_pumpfun_bundler.errors import ConfigurationError

"""
Configuration Management for the Bundle Trading Engine

This module loads every setting of the trading engine from environment variables,
with defaults matching the launch protocol's published parameters, and validates
them at import time so a misconfigured process fails before serving requests.

Configuration Sources (in order of precedence):
1. Environment variables (a local .env file is loaded first)
2. Default values defined in this module

Environment Variables:
    RPC_ENDPOINT: Solana RPC endpoint URL
    BUNDLE_URL: Bundle relay endpoint
    PUMP_PROGRAM_ID: Launch protocol program ID
    PUMP_FEE_ADDRESS: Fee collection address
    JITO_TIP_ACCOUNT: Tip account sent with every bundle
    JITO_TIP_AMOUNT: Tip in SOL
    CREATION_FEE: Token creation fee in SOL
    CREATION_BALANCE_BUFFER: Extra SOL a creator must hold above the creation fee
    TRADING_FEE_RATE: Fee rate applied to the output of every trade leg (0.0-1.0)
    MIN_SOL_AMOUNT: Smallest buy leg in SOL
    SLIPPAGE_BPS: Slippage bound encoded in trade instructions
    MAX_WALLETS_PER_BUNDLE: Largest batch accepted (1-16)
    BUNDLE_MAX_RETRIES: Submission attempts per bundle
    BUNDLE_TIMEOUT_SECONDS: Relay HTTP timeout
    BUNDLE_BASE_FEE / BUNDLE_PER_TX_FEE: Bundle fee estimate parameters in SOL
    WALLET_DIR: Directory of the file wallet store
    RATE_LIMIT_PER_MINUTE: Request budget per requester
"""

logger = logging.getLogger(__name__)

load_dotenv()

# Protocol hard limit on transactions per bundle
BUNDLE_HARD_LIMIT = 16


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_float(key: str, default: float, min_val: Optional[float] = None, max_val: Optional[float] = None) -> float:
    """Get environment variable as float with validation."""
    try:
        value = float(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid float")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_decimal(key: str, default: str, min_val: Optional[str] = None, max_val: Optional[str] = None) -> Decimal:
    """Get environment variable as Decimal with validation. Amounts of SOL are kept exact."""
    try:
        value = Decimal(os.getenv(key, default))
    except InvalidOperation:
        raise ConfigurationError(f"Environment variable {key} must be a valid decimal number")
    if min_val is not None and value < Decimal(min_val):
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > Decimal(max_val):
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_pubkey(key: str, default: str) -> Pubkey:
    """Get environment variable as Pubkey with validation."""
    try:
        value = os.getenv(key, default)
        return Pubkey.from_string(value)
    except Exception as e:
        raise ConfigurationError(f"Environment variable {key} must be a valid public key: {e}")


try:
    # --- Solana Configuration ---
    RPC_ENDPOINT = _get_env_str("RPC_ENDPOINT", "https://api.mainnet-beta.solana.com", required=True)
    LAMPORTS_PER_SOL = 10**9
    TOKEN_DECIMALS = 9

    # --- Launch Protocol Configuration ---
    PUMP_PROGRAM_ID = _get_env_pubkey("PUMP_PROGRAM_ID", "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
    PUMP_FEE_ADDRESS = _get_env_pubkey("PUMP_FEE_ADDRESS", "CebN5WGQ4jvEPvsVU4EoHEpgzq1VV7AbicfhtW4xC9iM")
    CREATION_FEE = _get_env_decimal("CREATION_FEE", "0.05", min_val="0")
    CREATION_BALANCE_BUFFER = _get_env_decimal("CREATION_BALANCE_BUFFER", "0.01", min_val="0")
    TRADING_FEE_RATE = _get_env_decimal("TRADING_FEE_RATE", "0.005", min_val="0", max_val="1")
    MIN_SOL_AMOUNT = _get_env_decimal("MIN_SOL_AMOUNT", "0.02", min_val="0")
    SLIPPAGE_BPS = _get_env_int("SLIPPAGE_BPS", 100, min_val=0, max_val=10_000)
    MAX_WALLETS_PER_BUNDLE = _get_env_int("MAX_WALLETS_PER_BUNDLE", BUNDLE_HARD_LIMIT, min_val=1, max_val=BUNDLE_HARD_LIMIT)

    # --- Bundle Relay Configuration ---
    BUNDLE_URL = _get_env_str("BUNDLE_URL", "https://mainnet.block-engine.jito.wtf/api/v1/bundles", required=True)
    JITO_TIP_ACCOUNT = _get_env_pubkey("JITO_TIP_ACCOUNT", "CebN5WGQ4jvEPvsVU4EoHEpgzq1VV7AbicfhtW4xC9iM")
    JITO_TIP_AMOUNT = _get_env_decimal("JITO_TIP_AMOUNT", "0.00001", min_val="0")
    BUNDLE_MAX_RETRIES = _get_env_int("BUNDLE_MAX_RETRIES", 3, min_val=1, max_val=10)
    BUNDLE_TIMEOUT_SECONDS = _get_env_float("BUNDLE_TIMEOUT_SECONDS", 30.0, min_val=1.0)
    BUNDLE_BASE_FEE = _get_env_decimal("BUNDLE_BASE_FEE", "0.00001", min_val="0")
    BUNDLE_PER_TX_FEE = _get_env_decimal("BUNDLE_PER_TX_FEE", "0.000001", min_val="0")

    # --- Wallet Store ---
    WALLET_DIR = _get_env_str("WALLET_DIR", "wallets")

    # --- Rate Limiting ---
    RATE_LIMIT_PER_MINUTE = _get_env_int("RATE_LIMIT_PER_MINUTE", 10, min_val=1, max_val=1000)

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
except Exception as e:
    logger.error(f"Unexpected error loading configuration: {e}")
    raise ConfigurationError(f"Failed to load configuration: {e}")
