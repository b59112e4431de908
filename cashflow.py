"""
Single-trial cash flow projection.

One trial walks the household from the current age to the last death age:
savings are added before retirement, and from retirement on each year nets
guaranteed income against inflated expenses, sizes the withdrawal through the
guardrails, debits the tax buckets and then grows what is left.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from errors import NumericAnomaly
from longevity import Horizon, LongevityModel
from params import SimulationParams, build_income_streams
from returns import ReturnGenerator
from withdrawal import BALANCE_EPSILON, GuardrailState, WithdrawalSequencer


@dataclass
class YearlyCashFlow:
    """One simulated year of a trial"""
    year: int
    age: int
    spouse_age: Optional[int] = None
    guaranteed_income: float = 0.0
    expenses: float = 0.0
    net_withdrawal_needed: float = 0.0
    gross_withdrawal_needed: float = 0.0
    withdrawal: float = 0.0
    taxable_withdrawal: float = 0.0
    tax_deferred_withdrawal: float = 0.0
    tax_free_withdrawal: float = 0.0
    taxes: float = 0.0
    rmd: float = 0.0
    growth: float = 0.0
    portfolio_return: float = 0.0
    inflation: float = 0.0
    stock_allocation: float = 0.0
    guardrail_regime: str = "normal"
    portfolio_balance: float = 0.0


@dataclass
class TrialResult:
    """Outcome of one simulated lifetime"""
    ending_balance: float
    succeeded: bool
    depletion_year: Optional[int]
    depletion_age: Optional[int]
    legacy_goal_met: bool
    horizon: Horizon
    guardrails: GuardrailState
    balances: List[float] = field(default_factory=list)
    yearly_cash_flows: List[YearlyCashFlow] = field(default_factory=list)
    trial_index: int = 0


class CashFlowProjector:
    """Advances one trial year by year"""

    def __init__(self, params: SimulationParams):
        self.params = params
        self.returns = ReturnGenerator(params)
        self.longevity = LongevityModel(params)
        self.sequencer = WithdrawalSequencer(params)
        self.streams = build_income_streams(params)

    def allocation_weights(self, age: int) -> Tuple[float, float, float]:
        """Stock/bond/cash weights for the given age, applying the glide path if enabled"""
        p = self.params
        if not p.use_glide_path or p.stock_allocation <= p.glide_path_final_stock_allocation:
            return p.stock_allocation, p.bond_allocation, p.cash_allocation

        span = max(1, p.life_expectancy - p.current_age)
        progress = min(max((age - p.current_age) / span, 0.0), 1.0)
        adjusted_stock = p.stock_allocation - (p.stock_allocation - p.glide_path_final_stock_allocation) * progress
        reduction_amount = p.stock_allocation - adjusted_stock

        # Distribute reduced stock proportionally to bonds and cash
        orig_non_stock = p.bond_allocation + p.cash_allocation
        if orig_non_stock > 0:
            adjusted_bonds = p.bond_allocation + reduction_amount * p.bond_allocation / orig_non_stock
            adjusted_cash = p.cash_allocation + reduction_amount * p.cash_allocation / orig_non_stock
        else:
            adjusted_bonds = p.bond_allocation + reduction_amount
            adjusted_cash = p.cash_allocation
        return adjusted_stock, adjusted_bonds, adjusted_cash

    def guaranteed_income(self, ages: Dict[str, Optional[int]], alive: Dict[str, bool],
                          cola_index: float) -> float:
        """Annual income from every active stream; the survivor keeps the larger Social Security benefit"""
        total = 0.0
        social_security: Dict[str, Tuple[float, int]] = {}
        for stream in self.streams:
            amount = stream.annual_amount * (cola_index if stream.cola else 1.0)
            if stream.type == "social_security":
                previous = social_security.get(stream.owner)
                if previous is None or amount > previous[0]:
                    social_security[stream.owner] = (amount, stream.start_age)
                continue
            owner_age = ages.get(stream.owner)
            if owner_age is not None and alive.get(stream.owner, False) and stream.is_active(owner_age):
                total += amount

        survivors = [owner for owner in ("user", "spouse") if alive.get(owner, False)]
        if len(survivors) == 1 and self.params.has_spouse:
            survivor = survivors[0]
            if social_security:
                own = social_security.get(survivor)
                start_age = own[1] if own else min(start for _, start in social_security.values())
                if ages[survivor] >= start_age:
                    total += max(amount for amount, _ in social_security.values())
        else:
            for owner in survivors:
                benefit = social_security.get(owner)
                if benefit is not None and ages[owner] >= benefit[1]:
                    total += benefit[0]
        return total

    def expenses(self, age: int, inflation_index: float, healthcare_index: float) -> float:
        p = self.params
        total = p.annual_retirement_expenses * inflation_index
        total += (p.annual_healthcare_costs + p.healthcare_cost_shock) * healthcare_index
        if (p.ltc_stress_active and not p.has_long_term_care_insurance
                and p.ltc_onset_age <= age < p.ltc_onset_age + p.ltc_duration_years):
            total += p.ltc_annual_cost * healthcare_index
        return total

    def run_trial(self, rng: np.random.Generator, record_cash_flows: bool = True) -> TrialResult:
        """
        Simulate one lifetime.

        Draw order is fixed: two longevity uniforms, then four normals for
        every horizon year, including years after depletion.

        Raises:
            NumericAnomaly: if a balance becomes non-finite
        """
        p = self.params
        horizon = self.longevity.horizon(rng)
        buckets = p.asset_buckets.copy()
        state = GuardrailState()

        inflation_index = 1.0
        prior_return: Optional[float] = None
        prior_inflation = 0.0
        fixed_withdrawal: Optional[float] = None
        first_retirement_year = True
        depletion_year: Optional[int] = None
        depletion_age: Optional[int] = None
        first_zero_year: Optional[Tuple[int, int]] = None
        balances: List[float] = []
        flows: List[YearlyCashFlow] = []

        for year_idx in range(horizon.years):
            age = p.current_age + year_idx
            spouse_age = p.spouse_age_at(year_idx)
            annual = self.returns.next_annual_returns(year_idx, rng)
            healthcare_index = (1 + p.healthcare_inflation_rate) ** year_idx
            weights = self.allocation_weights(age)
            portfolio_return = annual.portfolio_return(weights)

            row = YearlyCashFlow(year=year_idx + 1, age=age, spouse_age=spouse_age,
                                 portfolio_return=portfolio_return, inflation=annual.inflation,
                                 stock_allocation=weights[0])

            if depletion_year is not None:
                balances.append(0.0)
                if record_cash_flows:
                    flows.append(row)
                inflation_index *= 1 + annual.inflation
                continue

            start_balance = buckets.total

            if age < p.retirement_age:
                if p.annual_savings > 0:
                    buckets.add_pro_rata(p.annual_savings, buckets.weights())
            else:
                ages = {"user": age, "spouse": spouse_age}
                alive = {"user": age < horizon.user_death_age,
                         "spouse": horizon.spouse_death_age is not None and spouse_age < horizon.spouse_death_age}
                income = self.guaranteed_income(ages, alive, inflation_index)
                expenses = self.expenses(age, inflation_index, healthcare_index)

                if p.withdrawal_strategy == "fixed_rate":
                    if fixed_withdrawal is None:
                        fixed_withdrawal = p.withdrawal_rate * start_balance
                    need = fixed_withdrawal
                else:
                    need = max(0.0, expenses - income)

                withdrawal, regime = self.sequencer.apply_guardrails(
                    state, need, start_balance, prior_return,
                    remaining_years=horizon.years - year_idx,
                    first_year=first_retirement_year,
                    prior_inflation=prior_inflation,
                )
                first_retirement_year = False

                split = self.sequencer.sequence(buckets, withdrawal, age)
                row.guaranteed_income = income
                row.expenses = expenses
                row.net_withdrawal_needed = need
                row.gross_withdrawal_needed = split.total - split.reinvested + split.shortfall
                row.withdrawal = split.total
                row.taxable_withdrawal = split.taxable
                row.tax_deferred_withdrawal = split.tax_deferred
                row.tax_free_withdrawal = split.tax_free
                row.taxes = split.taxes
                row.rmd = split.rmd
                row.guardrail_regime = regime.value

                if split.shortfall > 0:
                    depletion_year, depletion_age = first_zero_year or (year_idx + 1, age)
                    buckets.clear()

            if depletion_year is None:
                row.growth = buckets.total * portfolio_return
                buckets.grow(portfolio_return)
                if not np.isfinite(buckets.total):
                    raise NumericAnomaly(f"Non-finite portfolio balance in year {year_idx + 1} (age {age})")
                if buckets.total > BALANCE_EPSILON:
                    first_zero_year = None
                elif first_zero_year is None:
                    first_zero_year = (year_idx + 1, age)
                if fixed_withdrawal is not None:
                    fixed_withdrawal *= 1 + annual.inflation

            row.portfolio_balance = buckets.total
            balances.append(row.portfolio_balance)
            if record_cash_flows:
                flows.append(row)
            inflation_index *= 1 + annual.inflation
            prior_return = portfolio_return
            prior_inflation = annual.inflation

        ending_balance = max(0.0, buckets.total)
        if depletion_year is None and ending_balance <= BALANCE_EPSILON:
            depletion_year, depletion_age = first_zero_year or (horizon.years, p.current_age + horizon.years - 1)
            ending_balance = 0.0

        return TrialResult(
            ending_balance=ending_balance,
            succeeded=depletion_year is None,
            depletion_year=depletion_year,
            depletion_age=depletion_age,
            legacy_goal_met=depletion_year is None and ending_balance >= p.legacy_goal,
            horizon=horizon,
            guardrails=state,
            balances=balances,
            yearly_cash_flows=flows,
        )
