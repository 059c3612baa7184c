"""Swap pricing — pure integer math, no I/O.

Python ints are arbitrary precision, so ``k = virtual_base * virtual_asset``
cannot wrap even for reserves near u64::MAX. All rounding favours the pool.
"""

from src.venues.constants import BPS_DENOMINATOR
from src.venues.models import BondingCurvePool, SwapQuote


def _check_bps(slippage_bps: int) -> None:
    if not 0 <= slippage_bps < BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps must be in [0, {BPS_DENOMINATOR}), got {slippage_bps}")


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise ValueError(f"Swap amount must be positive, got {amount}")


def apply_slippage(estimated_output: int, slippage_bps: int) -> int:
    """floor(estimated_output * (10000 - bps) / 10000)."""
    _check_bps(slippage_bps)
    return estimated_output * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def quote_bonding_curve_sell(
    pool: BondingCurvePool, asset_amount: int, slippage_bps: int
) -> SwapQuote:
    """Base currency out for selling ``asset_amount`` into the curve."""
    _check_amount(asset_amount)
    _check_bps(slippage_bps)

    k = pool.virtual_base_reserve * pool.virtual_asset_reserve
    new_asset_reserve = pool.virtual_asset_reserve + asset_amount
    new_base_reserve = k // new_asset_reserve
    base_out = pool.virtual_base_reserve - new_base_reserve

    return SwapQuote(
        input_amount=asset_amount,
        estimated_output=base_out,
        minimum_output=apply_slippage(base_out, slippage_bps),
        slippage_bps=slippage_bps,
    )


def quote_bonding_curve_buy(
    pool: BondingCurvePool, base_amount: int, slippage_bps: int
) -> SwapQuote:
    """Asset out for spending ``base_amount`` lamports on the curve."""
    _check_amount(base_amount)
    _check_bps(slippage_bps)

    k = pool.virtual_base_reserve * pool.virtual_asset_reserve
    new_base_reserve = pool.virtual_base_reserve + base_amount
    # Ceil so the remaining asset reserve never drops below k / new_base
    new_asset_reserve = -(-k // new_base_reserve)
    asset_out = max(pool.virtual_asset_reserve - new_asset_reserve, 0)

    return SwapQuote(
        input_amount=base_amount,
        estimated_output=asset_out,
        minimum_output=apply_slippage(asset_out, slippage_bps),
        slippage_bps=slippage_bps,
    )


def quote_constant_product(amount: int, slippage_bps: int) -> SwapQuote:
    """Placeholder bound for the CPMM venue.

    The output is not estimated from the pool curve: the slippage floor is
    applied to the input amount itself and the program enforces the real
    invariant on chain. This is a known-imprecise bound, not a price.
    """
    _check_amount(amount)
    return SwapQuote(
        input_amount=amount,
        estimated_output=amount,
        minimum_output=apply_slippage(amount, slippage_bps),
        slippage_bps=slippage_bps,
    )
