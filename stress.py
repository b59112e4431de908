"""
Stress testing: perturb a baseline plan per scenario and re-run the simulation.

Each scenario is applied to its own copy of the baseline parameters and run
independently; one malformed or failing scenario is reported inline and does
not stop the others.
"""
import logging
import math
import threading
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional

from errors import NumericAnomaly, ScenarioComputationError, ValidationError
from params import SimulationParams, validate_params
from simulation import AggregateResult, EngineSettings, RetirementSimulator, SimulationProgress, new_entropy

logger = logging.getLogger(__name__)

CATEGORIES = ('market', 'inflation', 'longevity', 'costs', 'income', 'timing')
UNITS = ('percentage', 'years', 'amount')
TIMINGS = ('immediate', 'ongoing', 'retirement')

MIN_STOCK_RETURN = 0.01
MAX_TAX_RATE = 0.5
EARLIEST_RETIREMENT_AGE = 50
MAX_LIFE_EXPECTANCY = 120


@dataclass
class StressScenarioParameter:
    value: float
    unit: str = 'percentage'
    timing: str = 'immediate'


@dataclass
class StressScenario:
    id: str
    name: str
    category: str
    parameters: StressScenarioParameter
    description: str = ''
    enabled: bool = True


@dataclass
class StressScenarioResult:
    scenario_id: str
    name: str
    success_probability: Optional[float] = None
    impact: Optional[float] = None
    median_ending_balance: Optional[float] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class StressTestReport:
    baseline: AggregateResult
    individual_results: List[StressScenarioResult] = field(default_factory=list)
    combined: Optional[AggregateResult] = None
    combined_scenario_ids: List[str] = field(default_factory=list)
    combined_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'baseline': self.baseline.to_dict(),
            'individual_results': [asdict(r) for r in self.individual_results],
            'combined': self.combined.to_dict() if self.combined is not None else None,
            'combined_scenario_ids': list(self.combined_scenario_ids),
            'combined_error': self.combined_error,
        }


def _check_scenario(scenario: StressScenario) -> float:
    p = scenario.parameters
    if not isinstance(p, StressScenarioParameter):
        raise ScenarioComputationError("Scenario parameters are missing or malformed", scenario.id)
    if scenario.category not in CATEGORIES:
        raise ScenarioComputationError(f"Unknown stress category '{scenario.category}'", scenario.id)
    if p.unit not in UNITS:
        raise ScenarioComputationError(f"Unknown unit '{p.unit}'", scenario.id)
    if p.timing not in TIMINGS:
        raise ScenarioComputationError(f"Unknown timing '{p.timing}'", scenario.id)
    try:
        value = float(p.value)
    except (TypeError, ValueError):
        raise ScenarioComputationError(f"Scenario value {p.value!r} is not a number", scenario.id)
    if not math.isfinite(value):
        raise ScenarioComputationError("Scenario value must be finite", scenario.id)
    return value


def apply_scenario(params: SimulationParams, scenario: StressScenario) -> SimulationParams:
    """
    Return a copy of params with one scenario applied.

    Raises:
        ScenarioComputationError: if the scenario is malformed or yields invalid parameters
    """
    value = _check_scenario(scenario)
    unit, timing = scenario.parameters.unit, scenario.parameters.timing
    category = scenario.category

    if category == 'market':
        if timing == 'ongoing':
            stressed = replace(params, stock_return=max(MIN_STOCK_RETURN, params.stock_return - abs(value) / 100))
        elif timing == 'retirement':
            stressed = replace(params, retirement_year_stock_return=value / 100)
        else:
            stressed = replace(params, first_year_stock_return=value / 100)
    elif category == 'inflation':
        stressed = replace(params, inflation_rate=value / 100, inflation_volatility=0.0)
    elif category == 'longevity':
        years = int(round(value))
        changes = {'life_expectancy': min(MAX_LIFE_EXPECTANCY, params.life_expectancy + years)}
        if params.spouse_life_expectancy is not None:
            changes['spouse_life_expectancy'] = min(MAX_LIFE_EXPECTANCY, params.spouse_life_expectancy + years)
        stressed = replace(params, **changes)
    elif category == 'costs':
        if scenario.id == 'long-term-care':
            cost = value if unit == 'amount' else params.ltc_annual_cost
            stressed = replace(params, ltc_stress_active=True, ltc_annual_cost=cost)
        elif scenario.id == 'higher-taxes':
            stressed = replace(params, tax_rate=min(MAX_TAX_RATE, params.tax_rate * (1 + value / 100)))
        elif unit == 'amount':
            stressed = replace(params, healthcare_cost_shock=params.healthcare_cost_shock + value)
        else:
            stressed = replace(params, annual_healthcare_costs=params.annual_healthcare_costs * (1 + value / 100))
    elif category == 'income':
        factor = max(0.0, 1 + value / 100)
        stressed = replace(params,
                           social_security_benefit=params.social_security_benefit * factor,
                           spouse_social_security_benefit=params.spouse_social_security_benefit * factor)
    else:
        earliest = max(EARLIEST_RETIREMENT_AGE, params.current_age)
        stressed = replace(params, retirement_age=max(earliest, params.retirement_age - abs(int(round(value)))))

    try:
        validate_params(stressed)
    except ValidationError as e:
        raise ScenarioComputationError(f"Scenario produced invalid parameters: {e}", scenario.id)
    return stressed


class StressScenarioApplier:
    """Runs the baseline, each enabled scenario and optionally all of them combined"""

    def __init__(self, settings: Optional[EngineSettings] = None,
                 progress: Optional[SimulationProgress] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.settings = settings or EngineSettings()
        self.progress = progress or SimulationProgress()
        self.cancel_event = cancel_event

    def _run(self, params: SimulationParams) -> AggregateResult:
        simulator = RetirementSimulator(params, self.settings, self.progress, self.cancel_event)
        return simulator.run_simulation(compute_safe_withdrawal_rate=False)

    def apply_all(self, baseline: SimulationParams, scenarios: List[StressScenario],
                  combined: bool = False, trial_count: Optional[int] = None) -> StressTestReport:
        """
        Raises:
            ScenarioComputationError: if every enabled scenario fails
        """
        seed = baseline.random_seed if baseline.random_seed is not None else new_entropy()
        baseline = replace(baseline, random_seed=seed, num_sims=trial_count or baseline.num_sims)
        report = StressTestReport(baseline=self._run(baseline))

        succeeded: List[StressScenario] = []
        enabled = [s for s in scenarios if s.enabled]
        for scenario in enabled:
            result = StressScenarioResult(scenario_id=scenario.id, name=scenario.name)
            try:
                aggregate = self._run(apply_scenario(baseline, scenario))
            except (ScenarioComputationError, NumericAnomaly) as e:
                logger.warning("Stress scenario %s failed: %s", scenario.id, e)
                result.error = str(e)
            else:
                result.success_probability = aggregate.probability_of_success
                result.impact = aggregate.probability_of_success - report.baseline.probability_of_success
                result.median_ending_balance = aggregate.median_ending_balance
                succeeded.append(scenario)
                logger.info("Stress scenario %s: %.1f%% (%+.1f points)",
                            scenario.id, result.success_probability, result.impact)
            report.individual_results.append(result)

        if enabled and not succeeded:
            raise ScenarioComputationError(
                f"All {len(enabled)} stress scenarios failed: "
                + "; ".join(f"{r.scenario_id}: {r.error}" for r in report.individual_results))

        if combined and succeeded:
            stressed = baseline
            try:
                for scenario in succeeded:
                    stressed = apply_scenario(stressed, scenario)
                report.combined = self._run(stressed)
                report.combined_scenario_ids = [s.id for s in succeeded]
            except (ScenarioComputationError, NumericAnomaly) as e:
                logger.warning("Combined stress run failed: %s", e)
                report.combined_error = str(e)
        return report
