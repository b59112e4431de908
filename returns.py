"""
Stochastic annual return generator.

Stock, bond and cash returns are jointly lognormal: the configured arithmetic
mean and volatility of each asset class are mapped to log-space parameters and
correlated through a fixed Cholesky factor. Inflation is drawn independently
around the configured rate. Draws are independent across years.
"""
from dataclasses import dataclass
from typing import Optional

import numpy as np

from params import SimulationParams

RETURN_FLOOR = -0.99
RETURN_CAP = 10.0
INFLATION_FLOOR = -0.05

# Correlation of log returns: stock, bond, cash
ASSET_CORRELATION = np.array([
    [1.00, 0.10, 0.00],
    [0.10, 1.00, 0.30],
    [0.00, 0.30, 1.00],
])


@dataclass
class AnnualReturns:
    """One year's sampled returns"""
    stock: float
    bond: float
    cash: float
    inflation: float

    def portfolio_return(self, weights) -> float:
        w_stock, w_bond, w_cash = weights
        return w_stock * self.stock + w_bond * self.bond + w_cash * self.cash


def lognormal_parameters(mean: float, volatility: float):
    """Log-space (mu, sigma) for a gross return 1 + r with the given arithmetic mean and volatility"""
    gross_mean = max(1.0 + mean, 1e-6)
    sigma_sq = np.log(1.0 + (volatility / gross_mean) ** 2)
    mu = np.log(gross_mean) - sigma_sq / 2.0
    return mu, np.sqrt(sigma_sq)


def clamp_return(value: float, floor: float = RETURN_FLOOR) -> float:
    """Replace NaN and infinities, then bound the return to [floor, RETURN_CAP]"""
    if np.isnan(value) or value == -np.inf:
        return floor
    if value == np.inf:
        return RETURN_CAP
    return float(min(max(value, floor), RETURN_CAP))


class ReturnGenerator:
    """Seedable source of per-year asset and inflation returns"""

    def __init__(self, params: SimulationParams):
        self.params = params
        mus, sigmas = zip(*(
            lognormal_parameters(params.stock_return, params.stock_volatility),
            lognormal_parameters(params.bond_return, params.bond_volatility),
            lognormal_parameters(params.cash_return, params.cash_volatility),
        ))
        self._mu = np.array(mus)
        self._sigma = np.array(sigmas)
        self._cholesky = np.linalg.cholesky(ASSET_CORRELATION)
        self._retirement_year_index = max(0, params.retirement_age - params.current_age)

    def _stock_override(self, year_index: int) -> Optional[float]:
        if year_index == 0 and self.params.first_year_stock_return is not None:
            return self.params.first_year_stock_return
        if (year_index == self._retirement_year_index
                and self.params.retirement_year_stock_return is not None):
            return self.params.retirement_year_stock_return
        return None

    def next_annual_returns(self, year_index: int, rng: np.random.Generator) -> AnnualReturns:
        """
        Draw the returns for one simulated year.

        Exactly four standard normals are consumed per call whether or not a
        shock override applies, so overridden years leave later draws unchanged.
        """
        z = rng.standard_normal(4)
        correlated = self._cholesky @ z[:3]
        stock, bond, cash = np.expm1(self._mu + self._sigma * correlated)
        inflation = self.params.inflation_rate + self.params.inflation_volatility * z[3]

        override = self._stock_override(year_index)
        if override is not None:
            stock = override

        return AnnualReturns(
            stock=clamp_return(stock),
            bond=clamp_return(bond),
            cash=clamp_return(cash),
            inflation=clamp_return(inflation, floor=INFLATION_FLOOR),
        )
