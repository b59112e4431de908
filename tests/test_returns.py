"""
Unit tests for the stochastic return generator.
"""
import pytest
import numpy as np
from params import SimulationParams
from returns import (
    INFLATION_FLOOR, RETURN_CAP, RETURN_FLOOR, AnnualReturns, ReturnGenerator, clamp_return,
    lognormal_parameters
)


class TestClampReturn:
    """Test repair of out-of-range returns"""

    def test_nan_becomes_floor(self):
        """NaN is replaced by the floor"""
        assert clamp_return(float('nan')) == RETURN_FLOOR

    def test_infinities(self):
        """Infinities map to the nearest bound"""
        assert clamp_return(float('inf')) == RETURN_CAP
        assert clamp_return(float('-inf')) == RETURN_FLOOR

    def test_bounds(self):
        """Finite values are bounded to [floor, cap]"""
        assert clamp_return(-5.0) == RETURN_FLOOR
        assert clamp_return(50.0) == RETURN_CAP
        assert clamp_return(0.05) == 0.05

    def test_custom_floor(self):
        """Inflation uses its own floor"""
        assert clamp_return(-0.5, floor=INFLATION_FLOOR) == INFLATION_FLOOR


class TestLognormalParameters:
    """Test mapping of arithmetic moments to log space"""

    def test_zero_volatility(self):
        """Without volatility the gross return is deterministic"""
        mu, sigma = lognormal_parameters(0.07, 0.0)
        assert sigma == 0
        assert abs(np.expm1(mu) - 0.07) < 1e-12

    def test_moments_recovered(self):
        """Lognormal mean and standard deviation match the inputs"""
        mu, sigma = lognormal_parameters(0.07, 0.16)
        mean = np.exp(mu + sigma ** 2 / 2) - 1
        std = np.sqrt((np.exp(sigma ** 2) - 1) * np.exp(2 * mu + sigma ** 2))
        assert abs(mean - 0.07) < 1e-12
        assert abs(std - 0.16) < 1e-12


class TestReturnGenerator:
    """Test per-year return draws"""

    def test_seeded_draws_repeat(self):
        """Same seed, same sequence of returns"""
        generator = ReturnGenerator(SimulationParams())
        rng_a = np.random.default_rng(7)
        rng_b = np.random.default_rng(7)
        for year in range(10):
            assert generator.next_annual_returns(year, rng_a) == generator.next_annual_returns(year, rng_b)

    def test_four_normals_per_year(self):
        """Each year consumes exactly four standard normals"""
        generator = ReturnGenerator(SimulationParams())
        rng = np.random.default_rng(11)
        reference = np.random.default_rng(11)
        generator.next_annual_returns(0, rng)
        reference.standard_normal(4)
        assert rng.standard_normal() == reference.standard_normal()

    def test_override_does_not_shift_stream(self):
        """A first-year shock leaves later years unchanged"""
        plain = ReturnGenerator(SimulationParams())
        shocked = ReturnGenerator(SimulationParams(first_year_stock_return=-0.30))
        rng_a = np.random.default_rng(3)
        rng_b = np.random.default_rng(3)

        first_plain = plain.next_annual_returns(0, rng_a)
        first_shocked = shocked.next_annual_returns(0, rng_b)
        assert first_shocked.stock == -0.30
        assert first_shocked.bond == first_plain.bond
        for year in range(1, 5):
            assert plain.next_annual_returns(year, rng_a) == shocked.next_annual_returns(year, rng_b)

    def test_retirement_year_override(self):
        """The retirement-year shock applies at the year retirement starts"""
        params = SimulationParams(current_age=60, retirement_age=63, retirement_year_stock_return=-0.25)
        generator = ReturnGenerator(params)
        rng = np.random.default_rng(5)
        stocks = [generator.next_annual_returns(year, rng).stock for year in range(5)]
        assert stocks[3] == -0.25
        assert stocks.count(-0.25) == 1

    def test_deterministic_without_volatility(self):
        """Zero volatility gives the configured means every year"""
        params = SimulationParams(stock_volatility=0.0, bond_volatility=0.0, cash_volatility=0.0,
                                  inflation_volatility=0.0)
        annual = ReturnGenerator(params).next_annual_returns(0, np.random.default_rng(1))
        assert abs(annual.stock - 0.07) < 1e-12
        assert abs(annual.bond - 0.04) < 1e-12
        assert abs(annual.cash - 0.025) < 1e-12
        assert annual.inflation == 0.025

    def test_sample_means(self):
        """Long-run sample means are close to the configured arithmetic means"""
        generator = ReturnGenerator(SimulationParams())
        rng = np.random.default_rng(2024)
        draws = [generator.next_annual_returns(1, rng) for _ in range(20_000)]
        assert abs(np.mean([d.stock for d in draws]) - 0.07) < 0.01
        assert abs(np.mean([d.bond for d in draws]) - 0.04) < 0.005
        assert abs(np.mean([d.inflation for d in draws]) - 0.025) < 0.002

    def test_returns_within_bounds(self):
        """Draws are always finite and inside the clamp range"""
        params = SimulationParams(stock_volatility=3.0)
        generator = ReturnGenerator(params)
        rng = np.random.default_rng(9)
        for year in range(2_000):
            annual = generator.next_annual_returns(year, rng)
            assert RETURN_FLOOR <= annual.stock <= RETURN_CAP
            assert annual.inflation >= INFLATION_FLOOR

    @pytest.mark.parametrize("weights, expected", [
        ((1.0, 0.0, 0.0), 0.10),
        ((0.5, 0.5, 0.0), 0.06),
        ((0.0, 0.0, 1.0), 0.01),
    ])
    def test_portfolio_return(self, weights, expected):
        """Portfolio return is the weighted sum of asset returns"""
        annual = AnnualReturns(stock=0.10, bond=0.02, cash=0.01, inflation=0.03)
        assert abs(annual.portfolio_return(weights) - expected) < 1e-12
