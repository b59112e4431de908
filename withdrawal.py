"""
Withdrawal sizing and tax-aware bucket sequencing.

Sizing follows Guyton-Klinger guardrails: a per-trial spending factor is cut
when the current withdrawal rate breaches the upper guardrail, denied the
year's inflation increase after a negative portfolio year (inflation skip) and
raised when the rate falls below the lower guardrail. Sequencing draws taxable
money first, then tax-deferred (grossed up for tax), then tax-free.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from params import AssetBuckets, SimulationParams
from tax import DeferredTaxModel

MAX_SPENDING_FACTOR = 1.5
CAPITAL_PRESERVATION_SUNSET_YEARS = 15
BALANCE_EPSILON = 1e-6

# IRS Uniform Lifetime Table divisors
RMD_DIVISORS = {
    72: 27.4, 73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9, 78: 22.0,
    79: 21.1, 80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7, 84: 16.8, 85: 16.0,
    86: 15.2, 87: 14.4, 88: 13.7, 89: 12.9, 90: 12.2, 91: 11.5, 92: 10.8,
    93: 10.1, 94: 9.5, 95: 8.9, 96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8,
    100: 6.4, 101: 6.0, 102: 5.6, 103: 5.2, 104: 4.9, 105: 4.6, 106: 4.3,
    107: 4.1, 108: 3.9, 109: 3.7, 110: 3.5, 111: 3.4, 112: 3.3, 113: 3.1,
    114: 3.0, 115: 2.9, 116: 2.8, 117: 2.7, 118: 2.5, 119: 2.3, 120: 2.0,
}


class GuardrailRegime(str, Enum):
    NORMAL = "normal"
    CAPITAL_PRESERVATION = "capital_preservation"
    PROSPERITY = "prosperity"
    INFLATION_SKIP = "inflation_skip"


@dataclass
class GuardrailState:
    """Per-trial guardrail counters; never shared across trials"""
    capital_preservation_triggers: int = 0
    prosperity_triggers: int = 0
    portfolio_management_triggers: int = 0
    inflation_triggers: int = 0
    spending_factor: float = 1.0
    regime: GuardrailRegime = GuardrailRegime.NORMAL
    previous_withdrawal: Optional[float] = None

    @property
    def total_adjustments(self) -> int:
        return (self.capital_preservation_triggers + self.prosperity_triggers
                + self.portfolio_management_triggers)

    def breakdown(self) -> dict:
        return {
            'capital_preservation': self.capital_preservation_triggers,
            'prosperity': self.prosperity_triggers,
            'portfolio_management': self.portfolio_management_triggers,
            'inflation': self.inflation_triggers,
        }


@dataclass
class WithdrawalSplit:
    """Amounts debited from each tax bucket in one year"""
    taxable: float = 0.0
    tax_deferred: float = 0.0
    tax_free: float = 0.0
    taxes: float = 0.0
    rmd: float = 0.0
    reinvested: float = 0.0
    shortfall: float = 0.0

    @property
    def total(self) -> float:
        return self.taxable + self.tax_deferred + self.tax_free


def rmd_divisor(age: int) -> float:
    if age > 120:
        return RMD_DIVISORS[120]
    return RMD_DIVISORS.get(age, RMD_DIVISORS[72])


class WithdrawalSequencer:
    """Decides how much to withdraw each year and from which bucket"""

    def __init__(self, params: SimulationParams):
        self.params = params
        self.initial_rate = params.withdrawal_rate
        self.upper_guardrail = params.withdrawal_rate * (1 + params.guardrail_band)
        self.lower_guardrail = params.withdrawal_rate * (1 - params.guardrail_band)
        self.tax_model = DeferredTaxModel(
            tax_rate=params.tax_rate,
            tax_brackets=params.tax_brackets,
            standard_deduction=params.standard_deduction,
        )

    def apply_guardrails(self, state: GuardrailState, net_need: float, portfolio_value: float,
                         prior_return: Optional[float], remaining_years: int,
                         first_year: bool, prior_inflation: float = 0.0) -> Tuple[float, GuardrailRegime]:
        """
        Size this year's withdrawal and advance the guardrail state.

        At most one adjustment fires per year, in priority order
        capital preservation > inflation skip > prosperity. An inflation skip
        withholds only prior_inflation, the increase already built into
        net_need; real changes in the need still pass through.

        Returns:
            (adjusted_net_withdrawal, regime)
        """
        if not self.params.use_guardrails or net_need <= 0:
            state.regime = GuardrailRegime.NORMAL
            return max(0.0, net_need), state.regime

        if first_year or portfolio_value <= 0:
            state.regime = GuardrailRegime.NORMAL
            withdrawal = net_need * state.spending_factor
            state.previous_withdrawal = withdrawal
            return withdrawal, state.regime

        current_rate = net_need * state.spending_factor / portfolio_value

        if (current_rate > self.upper_guardrail
                and remaining_years > CAPITAL_PRESERVATION_SUNSET_YEARS):
            state.spending_factor *= 1 - self.params.guardrail_adjustment
            state.capital_preservation_triggers += 1
            state.regime = GuardrailRegime.CAPITAL_PRESERVATION
        elif prior_return is not None and prior_return < 0:
            # The skipped increase is never made up in later years
            if prior_inflation > 0:
                state.spending_factor /= 1 + prior_inflation
            state.portfolio_management_triggers += 1
            state.regime = GuardrailRegime.INFLATION_SKIP
        elif current_rate < self.lower_guardrail:
            state.spending_factor *= 1 + self.params.guardrail_adjustment
            state.prosperity_triggers += 1
            state.regime = GuardrailRegime.PROSPERITY
        else:
            state.inflation_triggers += 1
            state.regime = GuardrailRegime.NORMAL

        state.spending_factor = min(max(state.spending_factor, self.params.guardrail_spending_floor),
                                    MAX_SPENDING_FACTOR)
        withdrawal = net_need * state.spending_factor
        state.previous_withdrawal = withdrawal
        return withdrawal, state.regime

    def required_minimum_distribution(self, tax_deferred_balance: float, age: int) -> float:
        if not self.params.apply_rmds or age < self.params.rmd_start_age or tax_deferred_balance <= 0:
            return 0.0
        return tax_deferred_balance / rmd_divisor(age)

    def sequence(self, buckets: AssetBuckets, net_amount: float, age: int) -> WithdrawalSplit:
        """
        Debit buckets in place to deliver net_amount after tax.

        Order: cash and capital gains, then tax-deferred grossed up for tax,
        then tax-free. A required minimum distribution is taken from the
        tax-deferred bucket first; net proceeds beyond the need are reinvested
        in the capital-gains bucket. Balances never go negative; any unfunded
        remainder is reported as shortfall.
        """
        split = WithdrawalSplit()
        remaining = max(0.0, net_amount)

        rmd_gross = min(self.required_minimum_distribution(buckets.tax_deferred, age),
                        buckets.tax_deferred)
        rmd_net = self.tax_model.net_of(rmd_gross)
        covered = min(rmd_net, remaining)
        remaining -= covered
        surplus = rmd_net - covered
        split.rmd = rmd_gross

        for name in ("cash_equivalents", "capital_gains"):
            if remaining <= 0:
                break
            draw = min(remaining, getattr(buckets, name))
            setattr(buckets, name, getattr(buckets, name) - draw)
            split.taxable += draw
            remaining -= draw

        deferred_gross = rmd_gross
        if remaining > 0 and buckets.tax_deferred > rmd_gross:
            target_gross = self.tax_model.gross_for_net(rmd_net + remaining)
            deferred_gross = min(target_gross, buckets.tax_deferred)
            remaining -= self.tax_model.net_of(deferred_gross) - rmd_net
        buckets.tax_deferred -= deferred_gross
        split.tax_deferred = deferred_gross
        split.taxes = self.tax_model.tax_on(deferred_gross)

        if remaining > 0:
            draw = min(remaining, buckets.tax_free)
            buckets.tax_free -= draw
            split.tax_free = draw
            remaining -= draw

        if surplus > 0:
            buckets.capital_gains += surplus
            split.reinvested = surplus

        split.shortfall = remaining if remaining > BALANCE_EPSILON else 0.0
        return split
