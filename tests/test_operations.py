"""
Tests for the calculate, stress_test and optimize operations.
"""
import threading

import pytest
from config_utils import get_default_simulation_params, get_default_stress_scenarios
from errors import NumericAnomaly, ScenarioComputationError, SimulationCancelled, ValidationError
from operations import calculate, describe_error, optimize, stress_test
from simulation import EngineSettings

SERIAL = EngineSettings(parallel_threshold=10 ** 9, trial_count=80)


def document(**overrides):
    doc = get_default_simulation_params()
    doc.update(overrides)
    return doc


class TestCalculate:
    """Test the calculate operation"""

    def test_from_document(self):
        """A parameter document runs end to end"""
        result = calculate(document(), trial_count=60, seed=42, settings=SERIAL,
                           compute_safe_withdrawal_rate=False)
        assert result.trial_count == 60
        assert result.seed == 42
        assert 0 <= result.probability_of_success <= 100

    def test_trial_count_precedence(self):
        """Explicit trial count beats the document, which beats the settings default"""
        doc = document(num_sims=70)
        assert calculate(doc, trial_count=50, seed=1, settings=SERIAL,
                         compute_safe_withdrawal_rate=False).trial_count == 50
        assert calculate(doc, seed=1, settings=SERIAL, compute_safe_withdrawal_rate=False).trial_count == 70
        del doc['num_sims']
        assert calculate(doc, seed=1, settings=SERIAL, compute_safe_withdrawal_rate=False).trial_count == 80

    def test_seed_from_document(self):
        """A seed in the document is used when none is passed"""
        result = calculate(document(seed=123), trial_count=20, settings=SERIAL,
                           compute_safe_withdrawal_rate=False)
        assert result.seed == 123

    def test_reproducible(self):
        """The same seed gives the same answer"""
        first = calculate(document(), trial_count=40, seed=9, settings=SERIAL, compute_safe_withdrawal_rate=False)
        second = calculate(document(), trial_count=40, seed=9, settings=SERIAL, compute_safe_withdrawal_rate=False)
        assert first.to_dict() == second.to_dict()

    def test_validation_before_run(self):
        """Invalid documents are rejected with every problem listed"""
        with pytest.raises(ValidationError) as excinfo:
            calculate(document(stock_allocation=0.9, life_expectancy=50), settings=SERIAL)
        assert len(excinfo.value.problems) >= 2

    def test_malformed_document(self):
        """Values of the wrong type are reported as validation errors"""
        with pytest.raises(ValidationError, match="Malformed parameter document"):
            calculate(document(asset_buckets={'tax_deferred': 'lots'}), settings=SERIAL)

    def test_string_age_rejected(self):
        """A numeric string in the document is a validation error, not a crash"""
        with pytest.raises(ValidationError, match="current_age"):
            calculate(document(current_age='62'), settings=SERIAL)

    def test_cancelled(self):
        """A set cancel event stops the calculation"""
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SimulationCancelled):
            calculate(document(), trial_count=20, seed=1, settings=SERIAL, cancel_event=cancel)


class TestStressTest:
    """Test the stress_test operation"""

    def test_default_catalogue(self):
        """Enabled default scenarios each report a result"""
        scenarios = get_default_stress_scenarios()
        for scenario in scenarios[:3]:
            scenario['enabled'] = True
        report = stress_test(document(), scenarios, run_combined=True, trial_count=40, seed=3, settings=SERIAL)
        assert len(report.individual_results) == 3
        assert report.combined is not None
        assert report.baseline.seed == 3

    def test_baseline_variables(self):
        """Baseline variables are applied before any scenario"""
        scenarios = [{'id': 'crash', 'name': 'Crash', 'category': 'market',
                      'parameters': {'value': -30, 'unit': 'percentage', 'timing': 'immediate'}}]
        plain = stress_test(document(use_guardrails=False), scenarios, trial_count=40, seed=3, settings=SERIAL)
        richer = stress_test(document(use_guardrails=False), scenarios, baseline_variables={'partTimeIncome': 4_000},
                             trial_count=40, seed=3, settings=SERIAL)
        assert richer.baseline.probability_of_success >= plain.baseline.probability_of_success

    def test_malformed_parameters_isolated(self):
        """A scenario whose parameters are not an object fails alone"""
        scenarios = [{'id': 'hot', 'name': 'Hot', 'category': 'inflation',
                      'parameters': {'value': 5, 'unit': 'percentage', 'timing': 'ongoing'}},
                     {'id': 'broken', 'category': 'market', 'parameters': 'oops'}]
        report = stress_test(document(), scenarios, trial_count=30, seed=3, settings=SERIAL)
        hot, broken = report.individual_results
        assert not hot.failed
        assert hot.success_probability is not None
        assert broken.failed
        assert 'malformed' in broken.error

    def test_every_scenario_failing(self):
        """All-failing scenarios fail the request"""
        with pytest.raises(ScenarioComputationError):
            stress_test(document(), [{'id': 'a', 'category': 'weather'}], trial_count=20, seed=3, settings=SERIAL)


class TestOptimize:
    """Test the optimize operation"""

    def test_optimize(self):
        """Optimized variables are compared against the baseline on one seed"""
        result = optimize(document(), {'retirementAge': 65},
                          {'retirementAge': 67, 'partTimeIncome': 2_000},
                          trial_count=40, seed=5, settings=SERIAL)
        assert set(result.variable_impacts) == {'retirement_age', 'part_time_income'}
        assert result.seed == 5

    def test_invalid_optimized_plan(self):
        """Optimized variables that make the plan invalid are rejected up front"""
        with pytest.raises(ValidationError):
            optimize(document(), None, {'socialSecurityAge': 75}, trial_count=20, seed=5, settings=SERIAL)

    def test_unconvertible_variable(self):
        """An optimisation variable that is not a number is a validation error"""
        with pytest.raises(ValidationError, match="retirementAge"):
            optimize(document(), None, {'retirementAge': 'abc'}, trial_count=20, seed=5, settings=SERIAL)


class TestDescribeError:
    """Test user-facing error messages"""

    def test_messages(self):
        """Each engine error maps to one message"""
        assert describe_error(ValidationError(["a", "b"])) == "Please correct the following: a; b"
        assert describe_error(ScenarioComputationError("boom")) == "Scenario analysis failed: boom"
        assert describe_error(SimulationCancelled(5)) == "Calculation cancelled."
        assert describe_error(NumericAnomaly("inf")).startswith("The simulation produced invalid numbers")
        assert describe_error(RuntimeError("odd")) == "Unexpected error: odd"
