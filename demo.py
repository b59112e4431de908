#!/usr/bin/env python3
"""
Demo script showing how to use the retirement simulation modules programmatically.
This demonstrates the core functionality without the Streamlit UI.
"""
import logging

from config_utils import get_default_simulation_params, get_default_stress_scenarios
from io_utils import dict_to_params, format_currency
from operations import calculate, optimize, stress_test
from simulation import calculate_summary_stats
from tax import solve_gross_withdrawal


def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("Retirement Simulation Demo")
    print("=" * 50)

    # 1. Baseline household
    document = get_default_simulation_params()
    params = dict_to_params(document)
    print(f"\nAssets: {format_currency(params.total_assets, precision=2)} "
          f"(tax-deferred {params.asset_buckets.tax_deferred / params.total_assets:.0%}, "
          f"tax-free {params.asset_buckets.tax_free / params.total_assets:.0%})")
    print(f"Expenses: {format_currency(params.annual_retirement_expenses)} + "
          f"{format_currency(params.annual_healthcare_costs)} healthcare")

    # 2. Monte Carlo run
    print("\nRunning Monte Carlo simulation...")
    result = calculate(document, trial_count=500, seed=42)
    stats = calculate_summary_stats(result.ending_balances, params.legacy_goal)
    print(f"   Probability of success: {result.probability_of_success:.1f}%")
    print(f"   Ending balance (P10/P50/P90): {format_currency(stats['p10'])} / "
          f"{format_currency(stats['p50'])} / {format_currency(stats['p90'])}")
    print(f"   Safe withdrawal rate: {result.safe_withdrawal_rate:.2%}")
    if result.guyton_klinger_stats is not None:
        print(f"   Guardrail adjustments per trial: "
              f"{result.guyton_klinger_stats.average_adjustments_per_scenario:.1f}")

    # 3. Tax gross-up with progressive brackets
    gross, taxes = solve_gross_withdrawal(100_000, 0, 29_200, [(0, 0.10), (23_200, 0.12), (94_300, 0.22)])
    print(f"\nNet $100K from tax-deferred needs {format_currency(gross, precision=1)} gross "
          f"({format_currency(taxes, precision=1)} tax)")

    # 4. Stress tests
    scenarios = get_default_stress_scenarios()
    for scenario in scenarios:
        scenario['enabled'] = scenario['id'] in ('bear-market-immediate', 'high-inflation', 'long-term-care')
    report = stress_test(document, scenarios, run_combined=True, trial_count=300, seed=42)
    print("\nStress tests:")
    for item in report.individual_results:
        if item.failed:
            print(f"   {item.name}: failed ({item.error})")
        else:
            print(f"   {item.name}: {item.success_probability:.1f}% ({item.impact:+.1f} points)")
    if report.combined is not None:
        print(f"   Combined: {report.combined.probability_of_success:.1f}%")

    # 5. Sensitivity of an optimized plan
    sensitivity = optimize(document, None, {'retirementAge': 67, 'partTimeIncome': 2_000},
                           trial_count=300, seed=42)
    print(f"\nOptimized plan: {sensitivity.baseline_success:.1f}% -> {sensitivity.optimized_success:.1f}%")
    for name, impact in sensitivity.variable_impacts.items():
        if impact.error:
            print(f"   {name}: failed ({impact.error})")
        else:
            print(f"   {name}: {impact.expected_impact:+.1f} points")
    print(f"   interaction: {sensitivity.interaction_effect:+.1f} points")


if __name__ == "__main__":
    main()
