"""Tests for the fixed-precision metric calculators."""

import pytest

from viewcall_commitment.calculators import (
    BASIS_POINTS,
    SECONDS_PER_YEAR,
    WAD,
    base_apr,
    checked_uint,
    circulating_supply,
    inflation_bps,
    require_nonzero,
    reward_apr,
    supply_rate_from_borrow,
    utilization,
)
from viewcall_commitment.errors import FixedWidthOverflowError, ViewCallError, ZeroDenominatorError


class TestBaseApr:
    def test_one_per_second_is_seconds_per_year(self) -> None:
        assert SECONDS_PER_YEAR == 31_536_000
        assert base_apr(1) == 31_536_000

    def test_truncating_multiplication(self) -> None:
        assert base_apr(1_000_000_000) == 31_536_000_000_000_000

    def test_overflows_uint64(self) -> None:
        with pytest.raises(FixedWidthOverflowError):
            base_apr(2**64 // SECONDS_PER_YEAR + 1)

    def test_wider_width_allowed(self) -> None:
        rate = 2**64 // SECONDS_PER_YEAR + 1
        assert base_apr(rate, bits=256) == rate * SECONDS_PER_YEAR


class TestRewardApr:
    def test_formula(self) -> None:
        value = reward_apr(1_000_000_000_000, 45_000_000, 500_000_000_000_000, 1_000)
        assert value == 2_838_240_000_000_000

    def test_division_truncates(self) -> None:
        assert reward_apr(1, 1, 7 * SECONDS_PER_YEAR + 1, 7) == 0
        assert reward_apr(1, 1, 3, 1) == SECONDS_PER_YEAR // 3

    def test_zero_principal_rejected_by_guard(self) -> None:
        with pytest.raises(ZeroDenominatorError) as exc:
            require_nonzero(0, "Comet totalSupply")
        assert "Comet totalSupply" in str(exc.value)
        assert isinstance(exc.value, ArithmeticError)
        assert exc.value.stage == "calculate"

    def test_guard_passes_value_through(self) -> None:
        assert require_nonzero(5, "x") == 5


class TestUtilization:
    def test_zero_supplied_is_zero(self) -> None:
        assert utilization(0, 0) == 0
        assert utilization(10, 0) == 0

    def test_custom_scale(self) -> None:
        assert utilization(50, 100, 100) == 50

    def test_wad_scale(self) -> None:
        assert utilization(9, 10) == 9 * WAD // 10

    def test_supply_rate_from_borrow(self) -> None:
        assert supply_rate_from_borrow(1_585_489_599, 9 * 10**17) == 1_426_940_639


class TestInflation:
    def test_circulating_supply(self) -> None:
        assert circulating_supply(1_000_000, [250_000, 150_000]) == 600_000
        assert circulating_supply(900_000, [300_000, 150_000]) == 450_000

    def test_no_excluded_accounts(self) -> None:
        assert circulating_supply(42, []) == 42

    def test_basis_points(self) -> None:
        assert BASIS_POINTS == 10_000
        assert inflation_bps(600_000, 450_000) == 3333

    def test_negative_circulating_supply(self) -> None:
        with pytest.raises(FixedWidthOverflowError):
            circulating_supply(100, [60, 50])

    def test_deflation_is_not_representable(self) -> None:
        with pytest.raises(FixedWidthOverflowError) as exc:
            inflation_bps(400_000, 450_000)
        assert isinstance(exc.value, OverflowError)
        assert isinstance(exc.value, ViewCallError)


class TestCheckedUint:
    def test_bounds(self) -> None:
        assert checked_uint(0) == 0
        assert checked_uint(2**256 - 1) == 2**256 - 1
        with pytest.raises(FixedWidthOverflowError):
            checked_uint(2**256)
        with pytest.raises(FixedWidthOverflowError):
            checked_uint(-1)
        with pytest.raises(FixedWidthOverflowError):
            checked_uint(2**64, bits=64)
