"""
Monte Carlo retirement simulation engine with guardrails and tax-aware withdrawals.
Pure functions for simulation logic, decoupled from UI.

Trials are independent: each owns a random stream derived from the run seed
and its trial index, so results do not depend on how trials are split across
worker processes.
"""
import logging
import math
import os
import threading
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed

from cashflow import CashFlowProjector, TrialResult, YearlyCashFlow
from errors import NumericAnomaly, SimulationCancelled
from params import SimulationParams, validate_params

logger = logging.getLogger(__name__)

PERCENTILES = (10, 25, 50, 75, 90)
SAFE_WITHDRAWAL_SEARCH_RANGE = (0.0, 0.15)
SAFE_WITHDRAWAL_TOLERANCE = 1e-4


@dataclass
class EngineSettings:
    """Execution settings, independent of the household being simulated"""
    trial_count: int = 1_000
    max_workers: Optional[int] = None
    parallel_threshold: int = 256
    max_discard_fraction: float = 0.05
    safe_withdrawal_target: float = 80.0

    @property
    def workers(self) -> int:
        return max(1, self.max_workers or os.cpu_count() or 1)


class SimulationProgress:
    """
    Completed/total trial counters, safe to poll from another thread.

    Only the coordinating thread writes; readers see a consistent pair
    through the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.completed = 0
        self.total = 0

    def reserve(self, trials: int) -> None:
        with self._lock:
            self.total += trials

    def advance(self, trials: int = 1) -> None:
        with self._lock:
            self.completed += trials

    @property
    def percent(self) -> float:
        with self._lock:
            if self.total == 0:
                return 0.0
            return min(100.0, 100.0 * self.completed / self.total)


@dataclass
class GuytonKlingerStats:
    average_adjustments_per_scenario: float
    adjustment_type_breakdown: Dict[str, int]


@dataclass
class ScenarioCounts:
    successful: int
    failed: int
    total: int


@dataclass
class AggregateResult:
    """Aggregated outcome of one Monte Carlo run"""
    probability_of_success: float
    median_ending_balance: float
    percentile_10_ending_balance: float
    percentile_25_ending_balance: float
    percentile_50_ending_balance: float
    percentile_75_ending_balance: float
    percentile_90_ending_balance: float
    confidence_intervals: Dict[str, List[float]]
    years_until_depletion: Optional[float]
    scenarios: ScenarioCounts
    legacy_goal_probability: float
    yearly_cash_flows: List[YearlyCashFlow]
    ending_balances: np.ndarray
    seed: int
    trial_count: int
    discarded_trials: int = 0
    safe_withdrawal_rate: Optional[float] = None
    guyton_klinger_stats: Optional[GuytonKlingerStats] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view; optional sections are present only when computed and NaN band padding becomes None"""
        result = {
            'probability_of_success': self.probability_of_success,
            'median_ending_balance': self.median_ending_balance,
            'percentile_10_ending_balance': self.percentile_10_ending_balance,
            'percentile_25_ending_balance': self.percentile_25_ending_balance,
            'percentile_50_ending_balance': self.percentile_50_ending_balance,
            'percentile_75_ending_balance': self.percentile_75_ending_balance,
            'percentile_90_ending_balance': self.percentile_90_ending_balance,
            'confidence_intervals': {key: [None if isinstance(v, float) and math.isnan(v) else v for v in values]
                                     for key, values in self.confidence_intervals.items()},
            'years_until_depletion': self.years_until_depletion,
            'scenarios': asdict(self.scenarios),
            'legacy_goal_probability': self.legacy_goal_probability,
            'yearly_cash_flows': [asdict(flow) for flow in self.yearly_cash_flows],
            'seed': self.seed,
            'trial_count': self.trial_count,
            'discarded_trials': self.discarded_trials,
        }
        if self.safe_withdrawal_rate is not None:
            result['safe_withdrawal_rate'] = self.safe_withdrawal_rate
        if self.guyton_klinger_stats is not None:
            result['guyton_klinger_stats'] = asdict(self.guyton_klinger_stats)
        return result


def trial_rng(entropy: int, trial_index: int) -> np.random.Generator:
    """Independent generator for one trial"""
    return np.random.default_rng(np.random.SeedSequence(entropy, spawn_key=(trial_index,)))


def new_entropy() -> int:
    """Fresh run seed for requests that did not supply one"""
    return int(np.random.SeedSequence().entropy)


def _run_trial_batch(args: Tuple[SimulationParams, int, int, int]) -> List[Tuple[int, Optional[TrialResult], Optional[str]]]:
    """Run trials [start, stop); top-level so worker processes can pickle it"""
    params, entropy, start, stop = args
    projector = CashFlowProjector(params)
    batch = []
    for index in range(start, stop):
        try:
            result = projector.run_trial(trial_rng(entropy, index), record_cash_flows=False)
            result.trial_index = index
            batch.append((index, result, None))
        except NumericAnomaly as e:
            batch.append((index, None, str(e)))
    return batch


class RetirementSimulator:
    """Monte Carlo retirement simulation with tax-aware withdrawals"""

    def __init__(self, params: SimulationParams, settings: Optional[EngineSettings] = None,
                 progress: Optional[SimulationProgress] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.params = params
        self.settings = settings or EngineSettings()
        self.progress = progress or SimulationProgress()
        self.cancel_event = cancel_event
        self._validate_params()
        self.seed = params.random_seed if params.random_seed is not None else new_entropy()

    def _validate_params(self):
        """Validate simulation parameters"""
        validate_params(self.params)

    def _check_cancelled(self, completed: int) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.info("Simulation cancelled after %d trials", completed)
            raise SimulationCancelled(completed)

    def run_trials(self, params: Optional[SimulationParams] = None,
                   trial_count: Optional[int] = None) -> Tuple[List[TrialResult], int]:
        """
        Run independent trials and return them in trial-index order.

        Returns:
            (completed trial results, number of discarded trials)

        Raises:
            NumericAnomaly: if more than max_discard_fraction of trials were discarded
            SimulationCancelled: if the cancel event is set between trials
        """
        params = params or self.params
        n = trial_count or params.num_sims
        self.progress.reserve(n)

        results: Dict[int, Optional[TrialResult]] = {}
        anomalies: List[str] = []

        if n < self.settings.parallel_threshold or self.settings.workers == 1:
            projector = CashFlowProjector(params)
            for index in range(n):
                self._check_cancelled(index)
                try:
                    results[index] = projector.run_trial(trial_rng(self.seed, index), record_cash_flows=False)
                    results[index].trial_index = index
                except NumericAnomaly as e:
                    results[index] = None
                    anomalies.append(str(e))
                self.progress.advance()
        else:
            workers = self.settings.workers
            chunk_size = max(1, math.ceil(n / (workers * 4)))
            batches = [(params, self.seed, start, min(start + chunk_size, n))
                       for start in range(0, n, chunk_size)]
            self._check_cancelled(0)
            outputs = Parallel(n_jobs=workers, backend='loky', return_as='generator')(
                delayed(_run_trial_batch)(batch) for batch in batches
            )
            try:
                for batch in outputs:
                    for index, result, anomaly in batch:
                        results[index] = result
                        if anomaly is not None:
                            anomalies.append(anomaly)
                    self.progress.advance(len(batch))
                    self._check_cancelled(len(results))
            finally:
                # Closing the generator aborts chunks still queued in the workers
                outputs.close()

        discarded = len(anomalies)
        if discarded:
            logger.warning("Discarded %d of %d trials after numeric anomalies (first: %s)",
                           discarded, n, anomalies[0])
            if discarded > self.settings.max_discard_fraction * n:
                raise NumericAnomaly(
                    f"{discarded} of {n} trials produced non-finite values; "
                    f"limit is {self.settings.max_discard_fraction:.0%}. First failure: {anomalies[0]}")

        completed = [results[i] for i in range(n) if results[i] is not None]
        return completed, discarded

    def success_probability(self, params: SimulationParams) -> float:
        trials, _ = self.run_trials(params)
        if not trials:
            return 0.0
        return 100.0 * sum(t.succeeded for t in trials) / len(trials)

    def find_safe_withdrawal_rate(self, target: Optional[float] = None) -> float:
        """
        Bisect the fixed-rate withdrawal for the target success probability.

        Every candidate reuses the run seed, so the search sees the same
        market and longevity paths at each rate.
        """
        target = self.settings.safe_withdrawal_target if target is None else target
        low, high = SAFE_WITHDRAWAL_SEARCH_RANGE

        def success_at(rate: float) -> float:
            return self.success_probability(replace(self.params, withdrawal_strategy="fixed_rate",
                                                    withdrawal_rate=rate))

        if success_at(high) >= target:
            return high
        if success_at(low) < target:
            return low

        while high - low > SAFE_WITHDRAWAL_TOLERANCE:
            mid = (low + high) / 2
            if success_at(mid) >= target:
                low = mid
            else:
                high = mid
        return low

    def run_simulation(self, compute_safe_withdrawal_rate: bool = True) -> AggregateResult:
        """Run Monte Carlo simulation"""
        n = self.params.num_sims
        logger.info("Running %d trials (seed=%d, longevity=%s, guardrails=%s)",
                    n, self.seed, self.params.longevity_mode, self.params.use_guardrails)

        trials, discarded = self.run_trials()
        if not trials:
            raise NumericAnomaly("Every trial was discarded")

        ending = np.array([t.ending_balance for t in trials])
        succeeded = sum(t.succeeded for t in trials)
        completed = len(trials)
        percentiles = {p: float(np.percentile(ending, p)) for p in PERCENTILES}

        depletion_years = [t.depletion_year for t in trials if t.depletion_year is not None]
        years_until_depletion = float(np.median(depletion_years)) if depletion_years else None

        max_years = max(len(t.balances) for t in trials)
        wealth_paths = np.full((completed, max_years), np.nan)
        for row, trial in enumerate(trials):
            wealth_paths[row, :len(trial.balances)] = trial.balances
        bands = calculate_percentiles(wealth_paths)
        confidence_intervals = {'ages': [self.params.current_age + i for i in range(max_years)]}
        confidence_intervals.update({key: values.tolist() for key, values in bands.items()})

        # Median-outcome trial is re-run with cash flow recording on
        median_idx = int(np.argsort(ending, kind="stable")[int(0.50 * completed)])
        median_trial_index = trials[median_idx].trial_index
        median_trial = CashFlowProjector(self.params).run_trial(trial_rng(self.seed, median_trial_index))

        guyton_klinger_stats = None
        if self.params.use_guardrails:
            breakdown = {key: 0 for key in ('capital_preservation', 'prosperity',
                                            'portfolio_management', 'inflation')}
            for trial in trials:
                for key, count in trial.guardrails.breakdown().items():
                    breakdown[key] += count
            guyton_klinger_stats = GuytonKlingerStats(
                average_adjustments_per_scenario=float(np.mean([t.guardrails.total_adjustments for t in trials])),
                adjustment_type_breakdown=breakdown,
            )

        safe_withdrawal_rate = self.find_safe_withdrawal_rate() if compute_safe_withdrawal_rate else None

        result = AggregateResult(
            probability_of_success=100.0 * succeeded / completed,
            median_ending_balance=percentiles[50],
            percentile_10_ending_balance=percentiles[10],
            percentile_25_ending_balance=percentiles[25],
            percentile_50_ending_balance=percentiles[50],
            percentile_75_ending_balance=percentiles[75],
            percentile_90_ending_balance=percentiles[90],
            confidence_intervals=confidence_intervals,
            years_until_depletion=years_until_depletion,
            scenarios=ScenarioCounts(successful=succeeded, failed=completed - succeeded, total=completed),
            legacy_goal_probability=100.0 * sum(t.legacy_goal_met for t in trials) / completed,
            yearly_cash_flows=median_trial.yearly_cash_flows,
            ending_balances=ending,
            seed=self.seed,
            trial_count=completed,
            discarded_trials=discarded,
            safe_withdrawal_rate=safe_withdrawal_rate,
            guyton_klinger_stats=guyton_klinger_stats,
        )
        logger.info("Success probability %.1f%% over %d trials", result.probability_of_success, completed)
        return result


def calculate_percentiles(wealth_paths: np.ndarray) -> Dict[str, np.ndarray]:
    """Calculate wealth percentile bands over time, ignoring NaN padding"""
    return {f'p{p}': np.nanpercentile(wealth_paths, p, axis=0) for p in PERCENTILES}


def calculate_summary_stats(terminal_wealth: np.ndarray, legacy_goal: float = 0.0) -> Dict[str, float]:
    """Calculate summary statistics for terminal wealth"""
    stats = {
        'mean': float(np.mean(terminal_wealth)),
        'prob_depleted': float(np.mean(terminal_wealth <= 0)),
        'prob_below_legacy_goal': float(np.mean(terminal_wealth < legacy_goal)),
    }
    for p in PERCENTILES:
        stats[f'p{p}'] = float(np.percentile(terminal_wealth, p))
    return stats
