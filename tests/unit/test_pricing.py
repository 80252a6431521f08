from decimal import Decimal

import pytest

from mcp_pumpfun_bundler import pricing
from mcp_pumpfun_bundler.errors import InvalidCurveStateError
from mcp_pumpfun_bundler.schemas import TradeSide

FEE_RATE = Decimal("0.005")
TOLERANCE = Decimal("1e-18")


def test_buy_quote_splits_gross_into_fee_and_net(curve):
    quote = pricing.quote_buy(Decimal("0.5"), curve, FEE_RATE)

    assert quote.side is TradeSide.buy
    assert quote.gross_out > 0
    assert abs(quote.fee_out - quote.gross_out * FEE_RATE) / quote.gross_out < TOLERANCE
    assert abs(quote.net_out + quote.fee_out - quote.gross_out) / quote.gross_out < TOLERANCE
    assert quote.fee_in_base == Decimal("0.5") * FEE_RATE


def test_buy_preserves_constant_product(curve):
    base_in = Decimal("2")
    quote = pricing.quote_buy(base_in, curve, FEE_RATE)

    k = curve.base_reserve * curve.token_reserve
    new_k = (curve.base_reserve + base_in) * (curve.token_reserve - quote.gross_out)
    assert abs(new_k - k) / k < TOLERANCE


def test_round_trip_gap_equals_fee(curve):
    base_in = Decimal("0.1")
    buy = pricing.quote_buy(base_in, curve, FEE_RATE)

    inverse = pricing.quote_sell(buy.gross_out, curve, FEE_RATE)

    assert abs(inverse.gross_out - base_in) < TOLERANCE
    assert abs((base_in - inverse.net_out) - base_in * FEE_RATE) < TOLERANCE


def test_round_trip_without_fee_recovers_input(curve):
    base_in = Decimal("1.25")
    tokens = pricing.tokens_for_base(base_in, curve, Decimal(0))

    assert abs(pricing.base_for_tokens(tokens, curve, Decimal(0)) - base_in) < TOLERANCE


def test_larger_buys_get_worse_prices(curve):
    small = pricing.quote_buy(Decimal("0.1"), curve, FEE_RATE)
    large = pricing.quote_buy(Decimal("10"), curve, FEE_RATE)

    assert large.net_out / Decimal("10") < small.net_out / Decimal("0.1")


def test_zero_buy_yields_nothing(curve):
    quote = pricing.quote_buy(Decimal(0), curve, FEE_RATE)
    assert quote.gross_out == 0
    assert quote.net_out == 0


def test_sell_that_drains_the_pool_is_rejected(curve):
    with pytest.raises(InvalidCurveStateError):
        pricing.quote_sell(curve.token_reserve, curve, FEE_RATE)

    with pytest.raises(InvalidCurveStateError):
        pricing.quote_sell(curve.token_reserve + 1, curve, FEE_RATE)


@pytest.mark.parametrize("quote", [pricing.quote_buy, pricing.quote_sell])
def test_negative_amounts_are_rejected(curve, quote):
    with pytest.raises(InvalidCurveStateError):
        quote(Decimal("-1"), curve, FEE_RATE)


def test_empty_reserves_are_rejected(curve):
    empty = curve.model_copy(update={"base_reserve": Decimal(0)})

    with pytest.raises(InvalidCurveStateError):
        pricing.quote_buy(Decimal("1"), empty, FEE_RATE)
    with pytest.raises(InvalidCurveStateError):
        pricing.spot_price(empty)


def test_spot_price(curve):
    assert abs(pricing.spot_price(curve) - curve.base_reserve / curve.token_reserve) < TOLERANCE


def test_calculate_fee(curve):
    fee = pricing.calculate_fee(Decimal("2"), FEE_RATE)

    assert fee.fee_amount == Decimal("0.010")
    assert fee.total_amount == Decimal("2.010")
    assert fee.fee_percentage == FEE_RATE
    assert pricing.quote_buy(Decimal("2"), curve, FEE_RATE).fee_in_base == fee.fee_amount


def test_lamport_conversions_round_down():
    assert pricing.sol_to_lamports(Decimal("0.05")) == 50_000_000
    assert pricing.sol_to_lamports(Decimal("0.0000000019")) == 1
    assert pricing.lamports_to_sol(1_500_000_000) == Decimal("1.5")
    assert pricing.to_token_units(Decimal("41.99")) == 41
