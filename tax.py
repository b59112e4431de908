"""
Tax model for tax-deferred withdrawals.

Flat-rate gross-up by default; when progressive brackets are supplied the
gross-up is solved by bisection so that W - tax(W) meets the net need.
"""
from typing import List, Optional, Tuple

Brackets = List[Tuple[float, float]]


def calculate_tax(taxable_income: float, tax_brackets: Brackets) -> float:
    """
    Progressive tax on taxable income.

    Args:
        taxable_income: Income after the standard deduction
        tax_brackets: (start, rate) pairs; each rate applies from its start up to the next start

    Returns:
        Tax owed, never negative
    """
    if taxable_income <= 0 or not tax_brackets:
        return 0.0

    ordered = sorted(tax_brackets)
    ceilings = [start for start, _ in ordered[1:]] + [float('inf')]
    owed = 0.0
    for (start, rate), ceiling in zip(ordered, ceilings):
        if taxable_income <= start:
            break
        owed += (min(taxable_income, ceiling) - start) * rate
    return max(0.0, owed)


def solve_gross_withdrawal(net_need: float,
                           other_taxable_income: float,
                           standard_deduction: float,
                           tax_brackets: Brackets,
                           tolerance: float = 1e-6,
                           max_iterations: int = 100) -> Tuple[float, float]:
    """
    Gross withdrawal whose after-tax amount covers net_need.

    Tax is assessed on the withdrawal plus other taxable income, less the
    standard deduction. The root is bracketed by doubling an upper bound and
    then found by bisection.

    Returns:
        (gross_withdrawal, total_tax)
    """
    if net_need <= 0:
        return 0.0, 0.0

    def total_tax(gross: float) -> float:
        return calculate_tax(gross + other_taxable_income - standard_deduction, tax_brackets)

    def shortfall(gross: float) -> float:
        return net_need - (gross - total_tax(gross))

    low = net_need
    if shortfall(low) <= 0:
        return low, total_tax(low)

    top_rate = max((rate for _, rate in tax_brackets), default=0.5)
    high = net_need / max(1e-6, 1.0 - 1.2 * top_rate)
    for _ in range(20):
        if shortfall(high) <= 0:
            break
        high *= 2.0
    else:
        return high, total_tax(high)

    for _ in range(max_iterations):
        mid = 0.5 * (low + high)
        gap = shortfall(mid)
        if abs(gap) < tolerance:
            return mid, total_tax(mid)
        if gap > 0:
            low = mid
        else:
            high = mid

    gross = 0.5 * (low + high)
    return gross, total_tax(gross)


def flat_gross_up(net_need: float, tax_rate: float) -> float:
    """Gross amount that leaves net_need after a flat tax"""
    if net_need <= 0:
        return 0.0
    return net_need / (1.0 - tax_rate)


class DeferredTaxModel:
    """Tax applied to withdrawals from tax-deferred accounts"""

    def __init__(self, tax_rate: float,
                 tax_brackets: Optional[Brackets] = None,
                 standard_deduction: float = 0.0):
        self.tax_rate = tax_rate
        self.tax_brackets = tax_brackets
        self.standard_deduction = standard_deduction

    def tax_on(self, gross: float) -> float:
        if gross <= 0:
            return 0.0
        if self.tax_brackets:
            return calculate_tax(max(0.0, gross - self.standard_deduction), self.tax_brackets)
        return gross * self.tax_rate

    def net_of(self, gross: float) -> float:
        return gross - self.tax_on(gross)

    def gross_for_net(self, net: float) -> float:
        if net <= 0:
            return 0.0
        if self.tax_brackets:
            gross, _ = solve_gross_withdrawal(net, 0.0, self.standard_deduction, self.tax_brackets)
            return gross
        return flat_gross_up(net, self.tax_rate)
