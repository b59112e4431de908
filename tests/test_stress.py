"""
Unit tests for stress scenario application and isolation.
"""
import pytest
from errors import ScenarioComputationError
from params import AssetBuckets, SimulationParams
from simulation import EngineSettings
from stress import (
    StressScenario, StressScenarioApplier, StressScenarioParameter, apply_scenario
)

SERIAL = EngineSettings(parallel_threshold=10 ** 9)


def household(**overrides):
    base = dict(
        current_age=62, retirement_age=65, life_expectancy=93,
        spouse_current_age=62, spouse_retirement_age=65, spouse_life_expectancy=95,
        total_assets=1_200_000,
        asset_buckets=AssetBuckets(tax_deferred=840_000, tax_free=240_000,
                                   capital_gains=90_000, cash_equivalents=30_000),
        annual_retirement_expenses=120_000, annual_healthcare_costs=18_000,
        withdrawal_rate=0.045,
        social_security_benefit=2_200, spouse_social_security_benefit=1_800,
        num_sims=150, random_seed=42,
    )
    base.update(overrides)
    return SimulationParams(**base)


def scenario(id, category, value, unit='percentage', timing='immediate', enabled=True):
    return StressScenario(id=id, name=id.replace('-', ' ').title(), category=category,
                          parameters=StressScenarioParameter(value=value, unit=unit, timing=timing),
                          enabled=enabled)


class TestApplyScenario:
    """Test each category's parameter change"""

    def test_immediate_market_shock(self):
        """An immediate market shock overrides the first year's stock return"""
        stressed = apply_scenario(household(), scenario('crash', 'market', -30))
        assert stressed.first_year_stock_return == -0.30
        assert stressed.stock_return == 0.07

    def test_retirement_market_shock(self):
        """A retirement-timed shock hits the first year of retirement"""
        stressed = apply_scenario(household(), scenario('crash', 'market', -25, timing='retirement'))
        assert stressed.retirement_year_stock_return == -0.25
        assert stressed.first_year_stock_return is None

    def test_ongoing_lower_returns(self):
        """Ongoing market stress lowers expected stock returns with a floor"""
        stressed = apply_scenario(household(), scenario('lower', 'market', -2, timing='ongoing'))
        assert abs(stressed.stock_return - 0.05) < 1e-12
        floored = apply_scenario(household(), scenario('lower', 'market', -20, timing='ongoing'))
        assert floored.stock_return == 0.01

    def test_inflation(self):
        """Inflation is fixed at the scenario value"""
        stressed = apply_scenario(household(), scenario('hot', 'inflation', 5, timing='ongoing'))
        assert stressed.inflation_rate == 0.05
        assert stressed.inflation_volatility == 0.0

    def test_longevity(self):
        """Both life expectancies extend, capped at the table end"""
        stressed = apply_scenario(household(), scenario('long', 'longevity', 5, unit='years'))
        assert stressed.life_expectancy == 98
        assert stressed.spouse_life_expectancy == 100
        capped = apply_scenario(household(), scenario('long', 'longevity', 40, unit='years'))
        assert capped.spouse_life_expectancy == 120

    def test_healthcare_percentage(self):
        """A percentage cost shock scales healthcare costs"""
        stressed = apply_scenario(household(), scenario('health', 'costs', 20, timing='ongoing'))
        assert abs(stressed.annual_healthcare_costs - 21_600) < 1e-6

    def test_healthcare_amount(self):
        """An amount cost shock adds a fixed healthcare cost"""
        stressed = apply_scenario(household(), scenario('health', 'costs', 6_000, unit='amount'))
        assert stressed.healthcare_cost_shock == 6_000
        assert stressed.annual_healthcare_costs == 18_000

    def test_long_term_care(self):
        """The long-term care scenario activates uninsured care costs"""
        stressed = apply_scenario(household(), scenario('long-term-care', 'costs', 120_000, unit='amount'))
        assert stressed.ltc_stress_active
        assert stressed.ltc_annual_cost == 120_000

    def test_higher_taxes(self):
        """The tax scenario raises the flat rate, capped at 50%"""
        stressed = apply_scenario(household(), scenario('higher-taxes', 'costs', 20))
        assert abs(stressed.tax_rate - 0.264) < 1e-12
        capped = apply_scenario(household(), scenario('higher-taxes', 'costs', 500))
        assert capped.tax_rate == 0.5

    def test_income_cut(self):
        """Income stress scales both Social Security benefits"""
        stressed = apply_scenario(household(), scenario('cut', 'income', -20))
        assert abs(stressed.social_security_benefit - 1_760) < 1e-9
        assert abs(stressed.spouse_social_security_benefit - 1_440) < 1e-9

    def test_early_retirement(self):
        """Timing stress brings retirement forward, not before the current age"""
        stressed = apply_scenario(household(), scenario('early', 'timing', -2, unit='years'))
        assert stressed.retirement_age == 63
        bounded = apply_scenario(household(), scenario('early', 'timing', -10, unit='years'))
        assert bounded.retirement_age == 62

    def test_baseline_untouched(self):
        """Scenarios work on copies"""
        baseline = household()
        apply_scenario(baseline, scenario('hot', 'inflation', 8))
        assert baseline.inflation_rate == 0.025

    @pytest.mark.parametrize("bad", [
        scenario('x', 'weather', 5),
        scenario('x', 'market', 5, unit='parsecs'),
        scenario('x', 'market', 5, timing='someday'),
        scenario('x', 'market', 'abc'),
        scenario('x', 'market', None),
        scenario('x', 'market', float('inf')),
        StressScenario(id='x', name='X', category='market', parameters=None),
    ])
    def test_malformed_scenarios(self, bad):
        """Malformed scenarios raise a scenario error naming the scenario"""
        with pytest.raises(ScenarioComputationError) as excinfo:
            apply_scenario(household(), bad)
        assert excinfo.value.scenario_id == 'x'

    def test_invalid_result_rejected(self):
        """A scenario that produces invalid parameters is rejected"""
        with pytest.raises(ScenarioComputationError, match="invalid parameters"):
            apply_scenario(household(), scenario('short', 'longevity', -40, unit='years'))


class TestStressScenarioApplier:
    """Test running scenarios against a baseline"""

    def test_individual_results(self):
        """Each enabled scenario reports its success and impact against the baseline"""
        scenarios = [scenario('crash', 'market', -30), scenario('hot', 'inflation', 6, timing='ongoing'),
                     scenario('off', 'income', -50, enabled=False)]
        report = StressScenarioApplier(SERIAL).apply_all(household(), scenarios)

        assert [r.scenario_id for r in report.individual_results] == ['crash', 'hot']
        for result in report.individual_results:
            assert not result.failed
            assert abs(result.impact - (result.success_probability - report.baseline.probability_of_success)) < 1e-9
        assert report.combined is None

    def test_crash_hurts(self):
        """A first-year crash does not improve success"""
        report = StressScenarioApplier(SERIAL).apply_all(household(use_guardrails=False),
                                                         [scenario('crash', 'market', -40)])
        assert report.individual_results[0].impact <= 0

    def test_malformed_scenario_isolated(self):
        """A malformed scenario fails alone while the rest still run"""
        scenarios = [scenario('broken', 'market', 'abc'), scenario('crash', 'market', -30)]
        report = StressScenarioApplier(SERIAL).apply_all(household(), scenarios)

        broken, crash = report.individual_results
        assert broken.failed
        assert broken.success_probability is None
        assert 'not a number' in broken.error
        assert not crash.failed
        assert crash.success_probability is not None

    def test_all_failing_raises(self):
        """The request fails when every enabled scenario fails"""
        scenarios = [scenario('a', 'weather', 5), scenario('b', 'market', 'abc')]
        with pytest.raises(ScenarioComputationError, match="All 2 stress scenarios failed"):
            StressScenarioApplier(SERIAL).apply_all(household(), scenarios)

    def test_nothing_enabled(self):
        """With no enabled scenario only the baseline is run"""
        report = StressScenarioApplier(SERIAL).apply_all(household(), [scenario('a', 'market', -30, enabled=False)])
        assert report.individual_results == []
        assert report.baseline.trial_count == 150

    def test_combined_run(self):
        """The combined run applies every scenario that succeeded on its own"""
        scenarios = [scenario('crash', 'market', -30), scenario('broken', 'weather', 1),
                     scenario('cut', 'income', -20)]
        report = StressScenarioApplier(SERIAL).apply_all(household(), scenarios, combined=True)
        assert report.combined is not None
        assert report.combined_scenario_ids == ['crash', 'cut']
        assert report.combined_error is None

    def test_shared_seed(self):
        """Baseline and scenarios run on the same seed"""
        report = StressScenarioApplier(SERIAL).apply_all(household(random_seed=None),
                                                         [scenario('crash', 'market', -30)], trial_count=40)
        assert report.baseline.trial_count == 40
        assert isinstance(report.baseline.seed, int)

    def test_to_dict(self):
        """Serialised report carries baseline, results and combined sections"""
        report = StressScenarioApplier(SERIAL).apply_all(household(), [scenario('crash', 'market', -30)],
                                                         trial_count=40)
        data = report.to_dict()
        assert data['combined'] is None
        assert data['individual_results'][0]['scenario_id'] == 'crash'
        assert 'probability_of_success' in data['baseline']
