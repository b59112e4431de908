"""
Input data model for the retirement Monte Carlo engine.

SimulationParams is built once per request and treated as immutable for the
run; stress scenarios and optimisation variables produce modified copies with
dataclasses.replace rather than mutating the original.
"""
import math
import numbers
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Tuple

from errors import ValidationError


def resolve(explicit: Any = None, profile_value: Any = None, default: Any = None) -> Any:
    """
    Resolve a value through the fixed precedence chain.

    Priority: explicit request value > stored profile value > hard default.
    A value counts as absent only when it is None; zero and False are kept.
    """
    if explicit is not None:
        return explicit
    if profile_value is not None:
        return profile_value
    return default


@dataclass
class AssetBuckets:
    """Portfolio balances split by tax treatment"""
    tax_deferred: float = 0.0
    tax_free: float = 0.0
    capital_gains: float = 0.0
    cash_equivalents: float = 0.0

    @property
    def total(self) -> float:
        return self.tax_deferred + self.tax_free + self.capital_gains + self.cash_equivalents

    def copy(self) -> "AssetBuckets":
        return replace(self)

    def scaled(self, factor: float) -> "AssetBuckets":
        """Return a copy with every bucket multiplied by factor"""
        return AssetBuckets(
            tax_deferred=max(0.0, self.tax_deferred * factor),
            tax_free=max(0.0, self.tax_free * factor),
            capital_gains=max(0.0, self.capital_gains * factor),
            cash_equivalents=max(0.0, self.cash_equivalents * factor),
        )

    def weights(self) -> Tuple[float, float, float, float]:
        """Bucket shares of the total, all to tax-deferred for an empty portfolio"""
        total = self.total
        if total <= 0:
            return 1.0, 0.0, 0.0, 0.0
        return (self.tax_deferred / total, self.tax_free / total,
                self.capital_gains / total, self.cash_equivalents / total)

    def add_pro_rata(self, amount: float, weights: Tuple[float, float, float, float]) -> None:
        w_def, w_free, w_cg, w_cash = weights
        self.tax_deferred += amount * w_def
        self.tax_free += amount * w_free
        self.capital_gains += amount * w_cg
        self.cash_equivalents += amount * w_cash

    def grow(self, rate: float) -> None:
        factor = 1.0 + rate
        self.tax_deferred *= factor
        self.tax_free *= factor
        self.capital_gains *= factor
        self.cash_equivalents *= factor

    def clear(self) -> None:
        self.tax_deferred = 0.0
        self.tax_free = 0.0
        self.capital_gains = 0.0
        self.cash_equivalents = 0.0


@dataclass
class GuaranteedIncomeStream:
    """Recurring non-portfolio income, active once the owner reaches start_age"""
    type: str
    monthly_amount: float
    start_age: int
    end_age: Optional[int] = None
    owner: str = "user"  # "user" or "spouse"
    cola: bool = False  # grows with realised inflation once active

    def is_active(self, owner_age: int) -> bool:
        if owner_age < self.start_age:
            return False
        if self.end_age is not None and owner_age > self.end_age:
            return False
        return True

    @property
    def annual_amount(self) -> float:
        return self.monthly_amount * 12


@dataclass
class SimulationParams:
    """Parameters for the retirement Monte Carlo simulation"""
    # Household ages
    current_age: int = 62
    retirement_age: int = 65
    life_expectancy: int = 93
    spouse_current_age: Optional[int] = None
    spouse_retirement_age: Optional[int] = None
    spouse_life_expectancy: Optional[int] = None

    # Longevity model
    longevity_mode: str = "fixed"  # "fixed" or "stochastic"
    user_gender: Optional[str] = None  # "male", "female" or None
    spouse_gender: Optional[str] = None
    user_health_status: str = "good"
    spouse_health_status: str = "good"

    # Assets
    total_assets: float = 1_000_000
    asset_buckets: Optional[AssetBuckets] = None
    annual_savings: float = 0.0

    # Expenses (today's dollars)
    annual_retirement_expenses: float = 80_000
    annual_healthcare_costs: float = 12_000
    healthcare_inflation_rate: float = 0.045
    inflation_rate: float = 0.025
    inflation_volatility: float = 0.01

    # Return model (annual, nominal)
    stock_return: float = 0.07
    stock_volatility: float = 0.16
    bond_return: float = 0.04
    bond_volatility: float = 0.06
    cash_return: float = 0.025
    cash_volatility: float = 0.01
    stock_allocation: float = 0.60
    bond_allocation: float = 0.35
    cash_allocation: float = 0.05

    # Glide path
    use_glide_path: bool = False
    glide_path_final_stock_allocation: float = 0.30

    # Withdrawal strategy
    withdrawal_rate: float = 0.04
    withdrawal_strategy: str = "expenses"  # "expenses" or "fixed_rate"

    # Guyton-Klinger guardrails
    use_guardrails: bool = True
    guardrail_band: float = 0.20
    guardrail_adjustment: float = 0.10
    guardrail_spending_floor: float = 0.70

    # Guaranteed income (monthly amounts)
    social_security_benefit: float = 0.0
    social_security_claim_age: Optional[int] = 67
    spouse_social_security_benefit: float = 0.0
    spouse_social_security_claim_age: Optional[int] = 67
    pension_benefit: float = 0.0
    pension_start_age: Optional[int] = None
    spouse_pension_benefit: float = 0.0
    spouse_pension_start_age: Optional[int] = None
    part_time_income: float = 0.0
    part_time_income_end_age: Optional[int] = None
    spouse_part_time_income: float = 0.0
    spouse_part_time_income_end_age: Optional[int] = None
    income_streams: List[GuaranteedIncomeStream] = field(default_factory=list)

    # Taxes
    tax_rate: float = 0.22
    tax_brackets: Optional[List[Tuple[float, float]]] = None
    standard_deduction: float = 29_200
    apply_rmds: bool = True
    rmd_start_age: int = 73

    # Long-term care
    has_long_term_care_insurance: bool = False
    ltc_stress_active: bool = False
    ltc_annual_cost: float = 100_000
    ltc_onset_age: int = 85
    ltc_duration_years: int = 3

    # Stress hooks (set by StressScenarioApplier)
    first_year_stock_return: Optional[float] = None
    retirement_year_stock_return: Optional[float] = None
    healthcare_cost_shock: float = 0.0

    # Goals and run control
    legacy_goal: float = 0.0
    num_sims: int = 1_000
    random_seed: Optional[int] = None

    def __post_init__(self):
        if self.asset_buckets is None:
            self.asset_buckets = AssetBuckets(tax_deferred=self.total_assets)
        if self.income_streams is None:
            self.income_streams = []
        if self.tax_brackets is not None:
            self.tax_brackets = [tuple(bracket) for bracket in self.tax_brackets]

    @property
    def has_spouse(self) -> bool:
        return self.spouse_current_age is not None

    def spouse_age_at(self, year_index: int) -> Optional[int]:
        if self.spouse_current_age is None:
            return None
        return self.spouse_current_age + year_index

    def with_assets(self, total_assets: float) -> "SimulationParams":
        """Copy with total assets changed and buckets rescaled to match"""
        factor = total_assets / self.total_assets if self.total_assets > 0 else 0.0
        return replace(self, total_assets=total_assets,
                       asset_buckets=self.asset_buckets.scaled(factor))


def build_income_streams(params: SimulationParams) -> List[GuaranteedIncomeStream]:
    """Expand the flat benefit fields into GuaranteedIncomeStream objects"""
    streams: List[GuaranteedIncomeStream] = []

    if params.social_security_benefit > 0:
        streams.append(GuaranteedIncomeStream(
            type="social_security", monthly_amount=params.social_security_benefit,
            start_age=params.social_security_claim_age, owner="user", cola=True))
    if params.pension_benefit > 0:
        streams.append(GuaranteedIncomeStream(
            type="pension", monthly_amount=params.pension_benefit,
            start_age=resolve(params.pension_start_age, None, params.retirement_age), owner="user"))
    if params.part_time_income > 0:
        streams.append(GuaranteedIncomeStream(
            type="part_time", monthly_amount=params.part_time_income,
            start_age=params.retirement_age, end_age=params.part_time_income_end_age, owner="user"))

    if params.has_spouse:
        spouse_retirement_age = resolve(params.spouse_retirement_age, None, params.retirement_age)
        if params.spouse_social_security_benefit > 0:
            streams.append(GuaranteedIncomeStream(
                type="social_security", monthly_amount=params.spouse_social_security_benefit,
                start_age=params.spouse_social_security_claim_age, owner="spouse", cola=True))
        if params.spouse_pension_benefit > 0:
            streams.append(GuaranteedIncomeStream(
                type="pension", monthly_amount=params.spouse_pension_benefit,
                start_age=resolve(params.spouse_pension_start_age, None, spouse_retirement_age),
                owner="spouse"))
        if params.spouse_part_time_income > 0:
            streams.append(GuaranteedIncomeStream(
                type="part_time", monthly_amount=params.spouse_part_time_income,
                start_age=spouse_retirement_age, end_age=params.spouse_part_time_income_end_age,
                owner="spouse"))

    streams.extend(params.income_streams)
    return streams


def _is_finite_number(value: Any) -> bool:
    # Numeric strings and booleans are rejected, not coerced
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(value)


def validate_params(params: SimulationParams) -> None:
    """
    Check a parameter set before any simulation starts.

    Raises:
        ValidationError: listing every problem found
    """
    problems: List[str] = []

    for name in ("current_age", "retirement_age", "life_expectancy"):
        value = getattr(params, name)
        if not _is_finite_number(value):
            problems.append(f"{name} is required and must be a number")
        elif value < 0:
            problems.append(f"{name} must not be negative")
    if _is_finite_number(params.life_expectancy) and _is_finite_number(params.current_age):
        if params.life_expectancy <= params.current_age:
            problems.append("life_expectancy must be greater than current_age")

    spouse_fields = (params.spouse_current_age, params.spouse_life_expectancy)
    if any(v is not None for v in spouse_fields) and not all(v is not None for v in spouse_fields):
        problems.append("spouse_current_age and spouse_life_expectancy must be given together")
    elif params.has_spouse:
        spouse_ages = [params.spouse_current_age, params.spouse_life_expectancy]
        if params.spouse_retirement_age is not None:
            spouse_ages.append(params.spouse_retirement_age)
        if not all(_is_finite_number(v) for v in spouse_ages):
            problems.append("spouse ages must be numbers")
        elif min(spouse_ages) < 0:
            problems.append("spouse ages must not be negative")
        elif params.spouse_life_expectancy <= params.spouse_current_age:
            problems.append("spouse_life_expectancy must be greater than spouse_current_age")

    required_rates = (
        "inflation_rate", "healthcare_inflation_rate", "stock_return", "bond_return",
        "cash_return", "stock_volatility", "bond_volatility", "cash_volatility",
        "inflation_volatility", "withdrawal_rate", "tax_rate",
    )
    for name in required_rates:
        if not _is_finite_number(getattr(params, name)):
            problems.append(f"{name} is required and must be a finite number")
    for name in ("stock_volatility", "bond_volatility", "cash_volatility", "inflation_volatility"):
        value = getattr(params, name)
        if _is_finite_number(value) and value < 0:
            problems.append(f"{name} must not be negative")
    if _is_finite_number(params.tax_rate) and not 0 <= params.tax_rate < 1:
        problems.append("tax_rate must be between 0 and 1")
    if _is_finite_number(params.withdrawal_rate) and params.withdrawal_rate < 0:
        problems.append("withdrawal_rate must not be negative")

    allocation = [params.stock_allocation, params.bond_allocation, params.cash_allocation]
    if not all(_is_finite_number(w) for w in allocation):
        problems.append("stock, bond and cash allocations are required")
    else:
        if any(w < 0 for w in allocation):
            problems.append("allocations must not be negative")
        if abs(sum(allocation) - 1.0) > 1e-6:
            problems.append(f"Allocation weights must sum to 1.0, got {sum(allocation):.6f}")

    if not _is_finite_number(params.total_assets) or params.total_assets < 0:
        problems.append("total_assets must be a non-negative number")
    buckets = params.asset_buckets
    bucket_values = [buckets.tax_deferred, buckets.tax_free, buckets.capital_gains, buckets.cash_equivalents]
    if not all(_is_finite_number(v) for v in bucket_values):
        problems.append("asset bucket balances must be finite numbers")
    else:
        if any(v < 0 for v in bucket_values):
            problems.append("asset bucket balances must not be negative")
        if _is_finite_number(params.total_assets):
            tolerance = max(1e-6 * params.total_assets, 0.01)
            if abs(buckets.total - params.total_assets) > tolerance:
                problems.append(
                    f"asset buckets sum to {buckets.total:,.2f} but total_assets is {params.total_assets:,.2f}")

    for prefix in ("", "spouse_"):
        benefit = getattr(params, f"{prefix}social_security_benefit")
        claim_age = getattr(params, f"{prefix}social_security_claim_age")
        if not _is_finite_number(benefit) or benefit < 0:
            problems.append(f"{prefix}social_security_benefit must be a non-negative number")
        elif benefit > 0 and (not _is_finite_number(claim_age) or not 62 <= claim_age <= 70):
            problems.append(f"{prefix}social_security_claim_age must be between 62 and 70")
    for name in ("pension_benefit", "spouse_pension_benefit", "part_time_income",
                 "spouse_part_time_income", "annual_savings", "annual_retirement_expenses",
                 "annual_healthcare_costs", "legacy_goal"):
        value = getattr(params, name)
        if not _is_finite_number(value) or value < 0:
            problems.append(f"{name} must be a non-negative number")
    for stream in params.income_streams:
        if (not _is_finite_number(stream.monthly_amount) or stream.monthly_amount < 0
                or not _is_finite_number(stream.start_age)):
            problems.append(f"income stream '{stream.type}' needs a non-negative amount and a start age")

    if params.longevity_mode not in ("fixed", "stochastic"):
        problems.append(f"Unknown longevity_mode '{params.longevity_mode}'")
    if params.withdrawal_strategy not in ("expenses", "fixed_rate"):
        problems.append(f"Unknown withdrawal_strategy '{params.withdrawal_strategy}'")
    if not isinstance(params.num_sims, int) or params.num_sims <= 0:
        problems.append("num_sims must be a positive integer")
    seed = params.random_seed
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, numbers.Integral) or seed < 0):
        problems.append("random_seed must be a non-negative integer")

    if problems:
        raise ValidationError(problems)
