"""Fixed-precision metric calculators.

All functions are pure integer arithmetic over unsigned fixed-width values.
Division truncates. The same functions run during preflight and replay, so
their results must agree bit for bit.
"""

from __future__ import annotations

from typing import Iterable

from .errors import FixedWidthOverflowError, ZeroDenominatorError

SECONDS_PER_YEAR = 60 * 60 * 24 * 365
BASIS_POINTS = 10_000
WAD = 10**18


def checked_uint(value: int, bits: int = 256) -> int:
    if value < 0 or value >= 1 << bits:
        raise FixedWidthOverflowError(f"value {value} does not fit in uint{bits}")
    return value


def require_nonzero(value: int, what: str) -> int:
    """Caller-side guard for calculators that divide without checking."""
    if value == 0:
        raise ZeroDenominatorError(f"{what} is zero; refusing to divide by it")
    return value


def base_apr(rate_per_second: int, seconds_per_year: int = SECONDS_PER_YEAR, bits: int = 64) -> int:
    return checked_uint(rate_per_second * seconds_per_year, bits)


def reward_apr(
    tracking_speed: int,
    reference_price: int,
    total_principal: int,
    scaling_factor: int,
    seconds_per_year: int = SECONDS_PER_YEAR,
) -> int:
    # unchecked division: guard total_principal with require_nonzero first
    numerator = checked_uint(tracking_speed * seconds_per_year * reference_price * scaling_factor)
    return numerator // total_principal


def utilization(total_borrowed: int, total_supplied: int, scale: int = WAD) -> int:
    if total_supplied == 0:
        return 0
    return checked_uint(total_borrowed * scale) // total_supplied


def supply_rate_from_borrow(borrow_rate: int, utilization_value: int, scale: int = WAD) -> int:
    return checked_uint(borrow_rate * utilization_value) // scale


def circulating_supply(total_supply: int, excluded_balances: Iterable[int]) -> int:
    return checked_uint(total_supply - sum(excluded_balances))


def inflation_bps(circulating_now: int, circulating_then: int) -> int:
    growth = checked_uint(circulating_now - circulating_then)
    return checked_uint(growth * BASIS_POINTS) // circulating_then
