"""
Constant-Product Bonding Curve Pricing

This module converts between the base currency (SOL) and a launched token using the
constant-product invariant of the launch protocol's bonding curve:

    k = base_reserve * token_reserve

Pricing Process:
1. Read the reserves from a BondingCurveState snapshot (fetched fresh by the caller)
2. Move the input side of the pool by the trade amount
3. Derive the other side from k and take the difference as the gross output
4. Deduct the protocol trading fee from the output (never from the input)

The fee is charged per trade leg. A batch of N wallets pays the sum of N leg fees,
each leg priced against the same snapshot.

Every function here is pure: no I/O, no state, deterministic. Arithmetic is done in
Decimal with a widened context so that integer token units and fractional SOL
amounts are bridged without binary floating point error.
"""
from decimal import Decimal, ROUND_FLOOR, localcontext

from mcp_pumpfun_bundler.config import LAMPORTS_PER_SOL, TRADING_FEE_RATE
from mcp_pumpfun_bundler.errors import InvalidCurveStateError
from mcp_pumpfun_bundler.schemas import BondingCurveState, FeeCalculation, TradeQuote, TradeSide
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

PRICING_PRECISION = 60


def _check_reserves(curve: BondingCurveState) -> None:
    if curve.base_reserve <= 0 or curve.token_reserve <= 0:
        raise InvalidCurveStateError(
            f"Bonding curve for {curve.token_address} has non-positive reserves "
            f"(base={curve.base_reserve}, token={curve.token_reserve})"
        )


def quote_buy(base_in: Decimal, curve: BondingCurveState, fee_rate: Decimal = TRADING_FEE_RATE) -> TradeQuote:
    """
    Prices a buy of ``base_in`` SOL against the curve.

    Raises:
        InvalidCurveStateError: If a reserve is not positive or ``base_in`` is negative.
    """
    base_in = Decimal(base_in)
    _check_reserves(curve)
    if base_in < 0:
        raise InvalidCurveStateError(f"Base amount cannot be negative: {base_in}")

    with localcontext() as ctx:
        ctx.prec = PRICING_PRECISION
        k = curve.base_reserve * curve.token_reserve
        new_base_reserve = curve.base_reserve + base_in
        new_token_reserve = k / new_base_reserve
        gross_out = curve.token_reserve - new_token_reserve
        fee_out = gross_out * fee_rate
        net_out = gross_out - fee_out
        fee_in_base = calculate_fee(base_in, fee_rate).fee_amount

    logger.debug(f"Buy quote for {curve.token_address}: in={base_in} SOL, "
                 f"gross={gross_out} tokens, fee={fee_out} tokens, net={net_out} tokens")
    return TradeQuote(
        side=TradeSide.buy,
        amount_in=base_in,
        gross_out=gross_out,
        fee_out=fee_out,
        net_out=net_out,
        fee_in_base=fee_in_base,
    )


def quote_sell(tokens_in: Decimal, curve: BondingCurveState, fee_rate: Decimal = TRADING_FEE_RATE) -> TradeQuote:
    """
    Prices a sell of ``tokens_in`` token units against the curve.

    Raises:
        InvalidCurveStateError: If a reserve is not positive, ``tokens_in`` is negative,
            or ``tokens_in`` would drain the token reserve.
    """
    tokens_in = Decimal(tokens_in)
    _check_reserves(curve)
    if tokens_in < 0:
        raise InvalidCurveStateError(f"Token amount cannot be negative: {tokens_in}")
    if tokens_in >= curve.token_reserve:
        raise InvalidCurveStateError(
            f"Token amount {tokens_in} would drain the curve reserve of {curve.token_reserve}"
        )

    with localcontext() as ctx:
        ctx.prec = PRICING_PRECISION
        k = curve.base_reserve * curve.token_reserve
        new_token_reserve = curve.token_reserve - tokens_in
        new_base_reserve = k / new_token_reserve
        gross_out = new_base_reserve - curve.base_reserve
        fee_out = gross_out * fee_rate
        net_out = gross_out - fee_out

    logger.debug(f"Sell quote for {curve.token_address}: in={tokens_in} tokens, "
                 f"gross={gross_out} SOL, fee={fee_out} SOL, net={net_out} SOL")
    return TradeQuote(
        side=TradeSide.sell,
        amount_in=tokens_in,
        gross_out=gross_out,
        fee_out=fee_out,
        net_out=net_out,
        fee_in_base=fee_out,
    )


def tokens_for_base(base_in: Decimal, curve: BondingCurveState, fee_rate: Decimal = TRADING_FEE_RATE) -> Decimal:
    """Tokens received for ``base_in`` SOL, net of the trading fee."""
    return quote_buy(base_in, curve, fee_rate).net_out


def base_for_tokens(tokens_in: Decimal, curve: BondingCurveState, fee_rate: Decimal = TRADING_FEE_RATE) -> Decimal:
    """SOL derived from ``tokens_in`` token units, net of the trading fee."""
    return quote_sell(tokens_in, curve, fee_rate).net_out


def spot_price(curve: BondingCurveState) -> Decimal:
    """Marginal price in SOL per token unit."""
    _check_reserves(curve)
    with localcontext() as ctx:
        ctx.prec = PRICING_PRECISION
        return curve.base_reserve / curve.token_reserve


def calculate_fee(amount: Decimal, fee_rate: Decimal = TRADING_FEE_RATE) -> FeeCalculation:
    """Splits an amount into the fee charged on it and the total owed."""
    amount = Decimal(amount)
    fee_amount = amount * fee_rate
    return FeeCalculation(
        base_amount=amount,
        fee_amount=fee_amount,
        total_amount=amount + fee_amount,
        fee_percentage=fee_rate,
    )


def sol_to_lamports(sol: Decimal) -> int:
    """Convert SOL to lamports, rounding down to a whole lamport."""
    return int((Decimal(sol) * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_FLOOR))


def lamports_to_sol(lamports: int) -> Decimal:
    """Convert lamports to SOL."""
    return Decimal(lamports) / LAMPORTS_PER_SOL


def to_token_units(amount: Decimal) -> int:
    """Token instructions carry whole token units; fractions are dropped."""
    return int(Decimal(amount).to_integral_value(rounding=ROUND_FLOOR))
