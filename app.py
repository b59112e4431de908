"""
Streamlit web application for Monte Carlo retirement simulation.
Thin calling layer over the engine's calculate, stress-test and optimize operations.
"""
import logging

import streamlit as st

from charts import (
    create_sensitivity_chart, create_stress_test_chart, create_terminal_wealth_distribution,
    create_wealth_percentile_bands, create_withdrawal_sources_chart
)
from config_utils import get_default_simulation_params, get_default_stress_scenarios, get_engine_settings
from errors import NumericAnomaly, ScenarioComputationError, SimulationCancelled, ValidationError
from io_utils import (
    cash_flows_dataframe, create_batch_export_zip, create_parameters_download_json, dict_to_params,
    format_currency, params_to_dict, parse_parameters_upload_json, validate_parameters_json
)
from operations import calculate, describe_error, optimize, stress_test

ENGINE_ERRORS = (ValidationError, ScenarioComputationError, NumericAnomaly, SimulationCancelled)


def initialize_session_state():
    """Initialize session state with the baseline household"""
    if 'params' not in st.session_state:
        st.session_state.params = get_default_simulation_params()
    if 'scenarios' not in st.session_state:
        st.session_state.scenarios = get_default_stress_scenarios()
    if 'settings' not in st.session_state:
        st.session_state.settings = get_engine_settings()


def render_sidebar():
    """Household inputs; values are written straight into the parameter document"""
    p = st.session_state.params
    st.sidebar.title("Retirement Simulation")

    st.sidebar.header("Household")
    p['current_age'] = st.sidebar.number_input("Current age", 18, 100, int(p['current_age']))
    p['retirement_age'] = st.sidebar.number_input("Retirement age", 40, 80, int(p['retirement_age']))
    p['life_expectancy'] = st.sidebar.number_input("Life expectancy", 60, 120, int(p['life_expectancy']))
    p['longevity_mode'] = st.sidebar.selectbox("Longevity", ["fixed", "stochastic"],
                                               index=0 if p.get('longevity_mode', 'fixed') == 'fixed' else 1)

    st.sidebar.header("Assets")
    buckets = p['asset_buckets']
    for key, label in (('tax_deferred', 'Tax-deferred'), ('tax_free', 'Tax-free (Roth)'),
                       ('capital_gains', 'Taxable brokerage'), ('cash_equivalents', 'Cash')):
        buckets[key] = st.sidebar.number_input(label, 0, 50_000_000, int(buckets[key]), step=10_000)
    p['total_assets'] = sum(buckets.values())
    st.sidebar.caption(f"Total: {format_currency(p['total_assets'], precision=2)}")

    st.sidebar.header("Spending")
    p['annual_retirement_expenses'] = st.sidebar.number_input(
        "Annual expenses", 0, 2_000_000, int(p['annual_retirement_expenses']), step=1_000)
    p['annual_healthcare_costs'] = st.sidebar.number_input(
        "Annual healthcare", 0, 500_000, int(p['annual_healthcare_costs']), step=500)
    p['withdrawal_rate'] = st.sidebar.slider("Withdrawal rate", 0.02, 0.08, float(p['withdrawal_rate']), 0.0025)
    p['use_guardrails'] = st.sidebar.checkbox("Guyton-Klinger guardrails", value=p['use_guardrails'])

    st.sidebar.header("Allocation")
    stock = st.sidebar.slider("Stocks", 0.0, 1.0, float(p['stock_allocation']), 0.05)
    bonds = st.sidebar.slider("Bonds", 0.0, 1.0 - stock, min(float(p['bond_allocation']), 1.0 - stock), 0.05)
    p['stock_allocation'], p['bond_allocation'] = stock, bonds
    p['cash_allocation'] = round(1.0 - stock - bonds, 6)
    p['use_glide_path'] = st.sidebar.checkbox("Glide path", value=p['use_glide_path'])

    st.sidebar.header("Social Security (monthly)")
    p['social_security_benefit'] = st.sidebar.number_input("Benefit", 0, 10_000, int(p['social_security_benefit']))
    p['social_security_claim_age'] = st.sidebar.number_input("Claim age", 62, 70, int(p['social_security_claim_age']))

    st.sidebar.header("Run")
    p['num_sims'] = st.sidebar.number_input("Trials", 100, 10_000, int(p['num_sims']), step=100)
    seed = st.sidebar.text_input("Random seed (blank for random)", value="")
    p['random_seed'] = int(seed) if seed.strip().isdigit() else None

    uploaded = st.sidebar.file_uploader("Load parameters", type="json")
    if uploaded is not None:
        content = uploaded.getvalue().decode('utf-8')
        is_valid, message = validate_parameters_json(content)
        if is_valid:
            st.session_state.params = params_to_dict(parse_parameters_upload_json(content))
            st.sidebar.success("Parameters loaded")
        else:
            st.sidebar.error(message)


def render_calculate_tab():
    if st.button("Run simulation", type="primary"):
        try:
            with st.spinner("Simulating..."):
                st.session_state.result = calculate(st.session_state.params, settings=st.session_state.settings)
        except ENGINE_ERRORS as e:
            st.error(describe_error(e))
            return

    result = st.session_state.get('result')
    if result is None:
        return

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Probability of success", f"{result.probability_of_success:.1f}%")
    col2.metric("Median ending balance", format_currency(result.median_ending_balance, precision=2))
    col3.metric("Safe withdrawal rate",
                f"{result.safe_withdrawal_rate:.2%}" if result.safe_withdrawal_rate is not None else "n/a")
    col4.metric("Median depletion year",
                f"{result.years_until_depletion:.0f}" if result.years_until_depletion is not None else "none")

    st.plotly_chart(create_wealth_percentile_bands(result.confidence_intervals), use_container_width=True)
    st.plotly_chart(create_terminal_wealth_distribution(result.ending_balances), use_container_width=True)
    st.plotly_chart(create_withdrawal_sources_chart(result.yearly_cash_flows), use_container_width=True)
    st.dataframe(cash_flows_dataframe(result))

    params = dict_to_params(st.session_state.params)
    st.download_button("Download parameters", create_parameters_download_json(params),
                       file_name="parameters.json", mime="application/json")
    st.download_button("Download all results", create_batch_export_zip(params, result),
                       file_name="retirement_results.zip", mime="application/zip")


def render_stress_tab():
    for scenario in st.session_state.scenarios:
        scenario['enabled'] = st.checkbox(scenario['name'], value=scenario['enabled'],
                                          help=scenario.get('description'))
    run_combined = st.checkbox("Also run all enabled scenarios combined")

    if st.button("Run stress test"):
        try:
            with st.spinner("Running scenarios..."):
                report = stress_test(st.session_state.params, st.session_state.scenarios,
                                     run_combined=run_combined, settings=st.session_state.settings)
        except ENGINE_ERRORS as e:
            st.error(describe_error(e))
            return
        st.plotly_chart(create_stress_test_chart(report), use_container_width=True)
        for result in report.individual_results:
            if result.failed:
                st.warning(f"{result.name}: {result.error}")
        if report.combined_error:
            st.warning(f"Combined run: {report.combined_error}")


def render_optimize_tab():
    p = st.session_state.params
    col1, col2 = st.columns(2)
    retirement_age = col1.number_input("Optimized retirement age", 50, 80, int(p['retirement_age']))
    ss_age = col1.number_input("Optimized Social Security age", 62, 70, int(p['social_security_claim_age']))
    part_time = col2.number_input("Monthly part-time income", 0, 20_000, 0, step=250)
    ltc = col2.checkbox("Buy long-term care insurance", value=p['has_long_term_care_insurance'])

    if st.button("Compare"):
        variables = {'retirementAge': retirement_age, 'socialSecurityAge': ss_age,
                     'partTimeIncome': part_time, 'hasLongTermCareInsurance': ltc}
        try:
            with st.spinner("Running sensitivity analysis..."):
                result = optimize(p, None, variables, settings=st.session_state.settings)
        except ENGINE_ERRORS as e:
            st.error(describe_error(e))
            return
        st.plotly_chart(create_sensitivity_chart(result), use_container_width=True)


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    st.set_page_config(page_title="Retirement Monte Carlo", layout="wide")
    initialize_session_state()
    render_sidebar()

    calc_tab, stress_tab, optimize_tab = st.tabs(["Simulation", "Stress Tests", "Optimize"])
    with calc_tab:
        render_calculate_tab()
    with stress_tab:
        render_stress_tab()
    with optimize_tab:
        render_optimize_tab()


if __name__ == "__main__":
    main()
