"""
The engine's three external operations: calculate, stress_test and optimize.

Each accepts a parameter document (dict, camelCase or snake_case) or a
SimulationParams, validates it before any trial runs and can be cancelled
between trials through a threading.Event.
"""
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Union

from errors import NumericAnomaly, ScenarioComputationError, SimulationCancelled, ValidationError
from io_utils import apply_optimization_variables, dict_to_params, parse_stress_scenarios
from params import SimulationParams, resolve, validate_params
from sensitivity import SensitivityAnalyzer, SensitivityResult
from simulation import AggregateResult, EngineSettings, RetirementSimulator, SimulationProgress, new_entropy
from stress import StressScenarioApplier, StressTestReport

logger = logging.getLogger(__name__)

ParamsInput = Union[SimulationParams, Dict[str, Any]]

TRIAL_COUNT_KEYS = {"num_sims", "numSims", "trial_count", "trialCount"}


def _prepare(params: ParamsInput, trial_count: Optional[int], seed: Optional[int],
             settings: EngineSettings) -> SimulationParams:
    """Build, size and seed a parameter set; the seed is fixed here so every sub-run shares it"""
    if isinstance(params, dict):
        document = params
        try:
            params = dict_to_params(document)
        except (TypeError, ValueError) as e:
            raise ValidationError([f"Malformed parameter document: {e}"])
        document_trials = params.num_sims if TRIAL_COUNT_KEYS & set(document) else None
    else:
        document_trials = params.num_sims
    num_sims = resolve(trial_count, document_trials, settings.trial_count)
    random_seed = seed if seed is not None else params.random_seed
    if random_seed is None:
        random_seed = new_entropy()
    params = replace(params, num_sims=num_sims, random_seed=random_seed)
    validate_params(params)
    return params


def calculate(params: ParamsInput, trial_count: Optional[int] = None, seed: Optional[int] = None,
              settings: Optional[EngineSettings] = None, progress: Optional[SimulationProgress] = None,
              cancel_event: Optional[threading.Event] = None,
              compute_safe_withdrawal_rate: bool = True) -> AggregateResult:
    """Run the Monte Carlo simulation for one plan"""
    settings = settings or EngineSettings()
    params = _prepare(params, trial_count, seed, settings)
    simulator = RetirementSimulator(params, settings, progress, cancel_event)
    return simulator.run_simulation(compute_safe_withdrawal_rate=compute_safe_withdrawal_rate)


def stress_test(params: ParamsInput, scenarios: List[Any], run_combined: bool = False,
                baseline_variables: Optional[Dict[str, Any]] = None,
                trial_count: Optional[int] = None, seed: Optional[int] = None,
                settings: Optional[EngineSettings] = None, progress: Optional[SimulationProgress] = None,
                cancel_event: Optional[threading.Event] = None) -> StressTestReport:
    """Run the baseline and every enabled stress scenario"""
    settings = settings or EngineSettings()
    params = _prepare(params, trial_count, seed, settings)
    params = apply_optimization_variables(params, baseline_variables)
    validate_params(params)
    applier = StressScenarioApplier(settings, progress, cancel_event)
    return applier.apply_all(params, parse_stress_scenarios(scenarios), combined=run_combined)


def optimize(params: ParamsInput, baseline_variables: Optional[Dict[str, Any]],
             optimized_variables: Dict[str, Any], trial_count: Optional[int] = None,
             seed: Optional[int] = None, settings: Optional[EngineSettings] = None,
             progress: Optional[SimulationProgress] = None,
             cancel_event: Optional[threading.Event] = None) -> SensitivityResult:
    """Compare the plan with optimisation variables applied against its baseline"""
    settings = settings or EngineSettings()
    params = _prepare(params, trial_count, seed, settings)
    baseline = apply_optimization_variables(params, baseline_variables)
    optimized = apply_optimization_variables(baseline, optimized_variables)
    validate_params(baseline)
    validate_params(optimized)
    analyzer = SensitivityAnalyzer(settings, progress, cancel_event)
    return analyzer.compare(baseline, optimized)


def describe_error(exc: Exception) -> str:
    """Single user-facing message for a failed operation"""
    if isinstance(exc, ValidationError):
        return "Please correct the following: " + "; ".join(exc.problems)
    if isinstance(exc, ScenarioComputationError):
        return f"Scenario analysis failed: {exc}"
    if isinstance(exc, SimulationCancelled):
        return "Calculation cancelled."
    if isinstance(exc, NumericAnomaly):
        return f"The simulation produced invalid numbers and was stopped: {exc}"
    logger.error("Unexpected engine error: %s", exc)
    return f"Unexpected error: {exc}"
