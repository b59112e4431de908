"""
Tests for chart visualization functions.
Verifies chart generation and structure without testing visual output.
"""
import unittest
import numpy as np
from charts import (
    create_sensitivity_chart, create_stress_test_chart, create_terminal_wealth_distribution,
    create_wealth_percentile_bands, create_withdrawal_sources_chart
)
from params import AssetBuckets, SimulationParams
from sensitivity import SensitivityResult, VariableImpact
from simulation import EngineSettings, RetirementSimulator
from stress import StressScenarioResult, StressTestReport


class TestCharts(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        """Run one small simulation shared by the chart tests"""
        params = SimulationParams(
            current_age=62, retirement_age=65, life_expectancy=93,
            total_assets=1_200_000,
            asset_buckets=AssetBuckets(tax_deferred=840_000, tax_free=240_000, capital_gains=120_000),
            annual_retirement_expenses=90_000, social_security_benefit=2_500,
            num_sims=80, random_seed=42,
        )
        simulator = RetirementSimulator(params, EngineSettings(parallel_threshold=10 ** 9))
        cls.result = simulator.run_simulation(compute_safe_withdrawal_rate=False)

    def setUp(self):
        """Set up test data"""
        np.random.seed(42)  # For reproducible tests
        self.ending_balances = np.random.lognormal(mean=14, sigma=0.6, size=500)

    def test_terminal_wealth_distribution(self):
        """Histogram with density overlay and percentile markers"""
        fig = create_terminal_wealth_distribution(self.ending_balances)
        self.assertEqual(fig.layout.title.text, "Ending Balance Distribution")
        self.assertEqual(fig.data[0].type, 'histogram')
        self.assertEqual(len(fig.data), 2)
        self.assertGreaterEqual(len(fig.layout.shapes), 3)

    def test_terminal_wealth_with_depletions(self):
        """Depleted trials add a marker at zero"""
        balances = np.concatenate([np.zeros(100), self.ending_balances])
        fig = create_terminal_wealth_distribution(balances)
        annotations = [a.text for a in fig.layout.annotations]
        self.assertTrue(any(text.startswith("Depleted") for text in annotations))

    def test_terminal_wealth_all_identical(self):
        """No density curve when every trial ends at the same balance"""
        fig = create_terminal_wealth_distribution(np.zeros(50))
        self.assertEqual(len(fig.data), 1)

    def test_wealth_percentile_bands(self):
        """Two shaded bands plus the median line"""
        fig = create_wealth_percentile_bands(self.result.confidence_intervals)
        self.assertEqual(len(fig.data), 5)
        self.assertEqual(fig.data[-1].name, 'P50 (Median)')
        self.assertEqual(list(fig.data[-1].x), self.result.confidence_intervals['ages'])

    def test_withdrawal_sources(self):
        """Stacked tax-bucket bars with guaranteed income overlaid"""
        fig = create_withdrawal_sources_chart(self.result.yearly_cash_flows)
        self.assertEqual([trace.type for trace in fig.data], ['bar', 'bar', 'bar', 'scatter'])
        self.assertEqual(fig.layout.barmode, 'stack')
        self.assertEqual(len(fig.data[0].x), len(self.result.yearly_cash_flows))

    def test_withdrawal_sources_empty(self):
        """No cash flows gives an empty chart"""
        fig = create_withdrawal_sources_chart([])
        self.assertEqual(len(fig.data), 0)

    def test_stress_test_chart(self):
        """Baseline and successful scenarios are plotted; failed ones are skipped"""
        report = StressTestReport(
            baseline=self.result,
            individual_results=[
                StressScenarioResult('crash', 'Crash', success_probability=60.0, impact=-10.0),
                StressScenarioResult('broken', 'Broken', error='bad value'),
            ],
        )
        fig = create_stress_test_chart(report)
        self.assertEqual(list(fig.data[0].x), ['Baseline', 'Crash'])
        self.assertEqual(fig.data[0].marker.color[1], 'firebrick')

    def test_sensitivity_chart(self):
        """One bar per computed variable plus the interaction effect"""
        result = SensitivityResult(
            baseline_success=70.0, optimized_success=82.0, absolute_change=12.0, relative_change=17.1,
            variable_impacts={
                'retirement_age': VariableImpact(change=2, expected_impact=8.0, unit='years'),
                'stock_allocation': VariableImpact(change=20.0, expected_impact=None, unit='%', error='invalid'),
                'part_time_income': VariableImpact(change=2_000, expected_impact=3.0, unit='$'),
            },
            sum_of_impacts=11.0, interaction_effect=1.0,
        )
        fig = create_sensitivity_chart(result)
        self.assertEqual(list(fig.data[0].y), ['retirement_age', 'part_time_income', 'interaction'])
        self.assertIn('70%', fig.layout.title.text)
        self.assertIn('82%', fig.layout.title.text)


if __name__ == '__main__':
    unittest.main()
