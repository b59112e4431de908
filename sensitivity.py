"""
Sensitivity analysis: attribute the change in success probability between a
baseline and an optimized plan to the individual variables that differ.
"""
import logging
import threading
from dataclasses import asdict, dataclass, field, fields, is_dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from errors import NumericAnomaly, ScenarioComputationError, ValidationError
from params import SimulationParams
from simulation import EngineSettings, RetirementSimulator, SimulationProgress, new_entropy

logger = logging.getLogger(__name__)

EXCLUDED_FIELDS = {'random_seed', 'num_sims'}
SUB_RUN_ERRORS = (ScenarioComputationError, ValidationError, NumericAnomaly)

RATE_KEYWORDS = ('rate', 'allocation', 'return', 'volatility', 'band', 'adjustment', 'floor')


def variable_unit(name: str, value: Any) -> str:
    if isinstance(value, bool):
        return 'flag'
    if name.endswith('_age') or name.endswith('life_expectancy') or name.endswith('_years'):
        return 'years'
    if any(keyword in name for keyword in RATE_KEYWORDS):
        return '%'
    if isinstance(value, (int, float)):
        return '$'
    return 'value'


def describe_change(name: str, before: Any, after: Any) -> Any:
    """Numeric difference (percentage points for rates) or the new value"""
    if is_dataclass(after):
        return asdict(after)
    if isinstance(after, bool) or not isinstance(after, (int, float)) or not isinstance(before, (int, float)):
        return after
    if variable_unit(name, after) == '%':
        return (after - before) * 100
    return after - before


@dataclass
class VariableImpact:
    change: Any
    expected_impact: Optional[float]
    unit: str
    error: Optional[str] = None


@dataclass
class SensitivityResult:
    baseline_success: float
    optimized_success: float
    absolute_change: float
    relative_change: Optional[float]
    variable_impacts: Dict[str, VariableImpact] = field(default_factory=dict)
    sum_of_impacts: float = 0.0
    interaction_effect: float = 0.0
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['variable_impacts'] = {name: asdict(impact) for name, impact in self.variable_impacts.items()}
        return result


def changed_variables(baseline: SimulationParams, optimized: SimulationParams) -> List[Tuple[str, Tuple[str, ...]]]:
    """
    Variables that differ, each with the fields it sets.

    A change in total_assets carries the rescaled buckets with it so the
    one-variable parameter set still balances.
    """
    variables = []
    total_assets_changed = baseline.total_assets != optimized.total_assets
    for f in fields(SimulationParams):
        if f.name in EXCLUDED_FIELDS:
            continue
        if getattr(baseline, f.name) == getattr(optimized, f.name):
            continue
        if f.name == 'asset_buckets' and total_assets_changed:
            continue
        if f.name == 'total_assets':
            variables.append(('total_assets', ('total_assets', 'asset_buckets')))
        else:
            variables.append((f.name, (f.name,)))
    return variables


class SensitivityAnalyzer:
    """Runs baseline, optimized and one-variable-at-a-time parameter sets"""

    def __init__(self, settings: Optional[EngineSettings] = None,
                 progress: Optional[SimulationProgress] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.settings = settings or EngineSettings()
        self.progress = progress or SimulationProgress()
        self.cancel_event = cancel_event

    def _success(self, params: SimulationParams) -> float:
        simulator = RetirementSimulator(params, self.settings, self.progress, self.cancel_event)
        return simulator.run_simulation(compute_safe_withdrawal_rate=False).probability_of_success

    def compare(self, baseline: SimulationParams, optimized: SimulationParams,
                trial_count: Optional[int] = None) -> SensitivityResult:
        """
        Compare two plans on common random numbers.

        Raises:
            ScenarioComputationError: if every one-variable run fails
        """
        seed = baseline.random_seed if baseline.random_seed is not None else new_entropy()
        trials = trial_count or baseline.num_sims
        baseline = replace(baseline, random_seed=seed, num_sims=trials)
        optimized = replace(optimized, random_seed=seed, num_sims=trials)

        baseline_success = self._success(baseline)
        optimized_success = self._success(optimized)
        absolute_change = optimized_success - baseline_success
        relative_change = absolute_change / baseline_success * 100 if baseline_success else None

        impacts: Dict[str, VariableImpact] = {}
        variables = changed_variables(baseline, optimized)
        for name, field_names in variables:
            before, after = getattr(baseline, name), getattr(optimized, name)
            impact = VariableImpact(change=describe_change(name, before, after), expected_impact=None,
                                    unit=variable_unit(name, after))
            try:
                isolated = replace(baseline, **{f: getattr(optimized, f) for f in field_names})
                impact.expected_impact = self._success(isolated) - baseline_success
                logger.info("Variable %s: %+.1f points", name, impact.expected_impact)
            except SUB_RUN_ERRORS as e:
                logger.warning("Sensitivity run for %s failed: %s", name, e)
                impact.error = str(e)
            impacts[name] = impact

        computed = [i.expected_impact for i in impacts.values() if i.expected_impact is not None]
        if variables and not computed:
            raise ScenarioComputationError(
                f"All {len(variables)} sensitivity runs failed: "
                + "; ".join(f"{name}: {impact.error}" for name, impact in impacts.items()))

        sum_of_impacts = float(sum(computed))
        return SensitivityResult(
            baseline_success=baseline_success,
            optimized_success=optimized_success,
            absolute_change=absolute_change,
            relative_change=relative_change,
            variable_impacts=impacts,
            sum_of_impacts=sum_of_impacts,
            interaction_effect=absolute_change - sum_of_impacts,
            seed=seed,
        )
