"""
IO utilities for saving/loading parameters and exporting simulation results.
Handles JSON serialization of parameters, request-document mapping and CSV
exports of results.
"""
import io
import json
import logging
import re
from dataclasses import asdict, fields, replace
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from errors import ValidationError
from params import AssetBuckets, GuaranteedIncomeStream, SimulationParams, resolve, validate_params
from simulation import AggregateResult
from stress import StressScenario, StressScenarioParameter

logger = logging.getLogger(__name__)

# Request keys whose snake_case form is not the parameter name
REQUEST_ALIASES = {
    'spouse_age': 'spouse_current_age',
    'current_retirement_assets': 'total_assets',
    'current_assets': 'total_assets',
    'part_time_income_retirement': 'part_time_income',
    'spouse_part_time_income_retirement': 'spouse_part_time_income',
    'trial_count': 'num_sims',
    'seed': 'random_seed',
}

PARAM_FIELDS = {f.name for f in fields(SimulationParams)}


def _safe_numeric_convert(value: Any, default: float) -> float:
    """Safely convert a value to a numeric type, using default if invalid"""
    try:
        return float(value) if value is not None else default
    except (ValueError, TypeError):
        return default


def to_snake_case(name: str) -> str:
    return re.sub(r'(?<=[a-z0-9])([A-Z])', r'_\1', name).lower()


def _normalise_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {to_snake_case(key): value for key, value in data.items()}


def params_to_dict(params: SimulationParams) -> Dict[str, Any]:
    """
    Convert SimulationParams to dictionary for JSON serialization.

    Args:
        params: SimulationParams object

    Returns:
        Dictionary representation with tuples converted to lists
    """
    param_dict = asdict(params)
    if param_dict.get('tax_brackets'):
        param_dict['tax_brackets'] = [list(bracket) for bracket in param_dict['tax_brackets']]
    return param_dict


def dict_to_params(param_dict: Dict[str, Any]) -> SimulationParams:
    """
    Convert a parameter document to a SimulationParams object.

    Accepts snake_case or camelCase keys; nested asset buckets and income
    streams are rebuilt as dataclasses. Unknown keys are dropped.

    Args:
        param_dict: Dictionary with parameter values

    Returns:
        SimulationParams object
    """
    normalised = {}
    for key, value in _normalise_keys(param_dict).items():
        name = REQUEST_ALIASES.get(key, key)
        if name in PARAM_FIELDS:
            normalised[name] = value
        else:
            logger.debug("Ignoring unknown parameter %s", key)

    buckets = normalised.get('asset_buckets')
    if isinstance(buckets, dict):
        buckets = AssetBuckets(**{k: float(v) for k, v in _normalise_keys(buckets).items()
                                  if k in AssetBuckets.__dataclass_fields__})
        normalised['asset_buckets'] = buckets
        normalised['total_assets'] = resolve(normalised.get('total_assets'), None, buckets.total)

    streams = normalised.get('income_streams')
    if streams:
        normalised['income_streams'] = [
            stream if isinstance(stream, GuaranteedIncomeStream)
            else GuaranteedIncomeStream(**{k: v for k, v in _normalise_keys(stream).items()
                                           if k in GuaranteedIncomeStream.__dataclass_fields__})
            for stream in streams
        ]

    return SimulationParams(**normalised)


def save_parameters_json(params: SimulationParams, filepath: str) -> None:
    """
    Save simulation parameters to JSON file.

    Args:
        params: SimulationParams object to save
        filepath: Path to save JSON file
    """
    with open(filepath, 'w') as f:
        json.dump(params_to_dict(params), f, indent=2)


def load_parameters_json(filepath: str) -> SimulationParams:
    """
    Load simulation parameters from JSON file.

    Args:
        filepath: Path to JSON file

    Returns:
        SimulationParams object
    """
    with open(filepath, 'r') as f:
        param_dict = json.load(f)

    return dict_to_params(param_dict)


def create_parameters_download_json(params: SimulationParams) -> str:
    """JSON string for downloading parameters"""
    return json.dumps(params_to_dict(params), indent=2)


def parse_parameters_upload_json(json_string: str) -> SimulationParams:
    """Parse uploaded JSON string to SimulationParams"""
    return dict_to_params(json.loads(json_string))


def validate_parameters_json(json_string: str) -> tuple[bool, str]:
    """
    Validate uploaded parameters JSON.

    Args:
        json_string: JSON string to validate

    Returns:
        (is_valid, error_message)
    """
    try:
        params = parse_parameters_upload_json(json_string)
        validate_params(params)
        return True, ""
    except json.JSONDecodeError as e:
        return False, f"Invalid JSON: {str(e)}"
    except (TypeError, ValueError) as e:
        return False, f"Parameter validation error: {str(e)}"


def _reweight_allocation(params: SimulationParams, stock_pct: float) -> Dict[str, float]:
    """Set the stock share and rescale bonds and cash to fill the rest"""
    stock = min(max(stock_pct / 100, 0.0), 1.0)
    rest = params.bond_allocation + params.cash_allocation
    if rest > 0:
        bonds = (1 - stock) * params.bond_allocation / rest
    else:
        bonds = 1 - stock
    return {'stock_allocation': stock, 'bond_allocation': bonds, 'cash_allocation': 1 - stock - bonds}


def _whole_number(key: str, value: Any) -> int:
    """Age-like optimisation variable as an int; anything else is a validation problem"""
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError([f"{key} must be a whole number, got {value!r}"])


def apply_optimization_variables(params: SimulationParams, variables: Optional[Dict[str, Any]]) -> SimulationParams:
    """
    Map optimisation variables onto a copy of params.

    Accepts the planner vocabulary (retirementAge, socialSecurityAge,
    monthlyExpenses, assetAllocation, ...) as well as plain parameter names.
    Variables set to None are ignored.
    """
    if not variables:
        return params

    changes: Dict[str, Any] = {}
    for key, value in variables.items():
        if value is None:
            continue
        if key == 'retirementAge':
            changes['retirement_age'] = _whole_number(key, value)
        elif key == 'spouseRetirementAge':
            changes['spouse_retirement_age'] = _whole_number(key, value)
        elif key == 'socialSecurityAge':
            changes['social_security_claim_age'] = _whole_number(key, value)
        elif key == 'spouseSocialSecurityAge':
            changes['spouse_social_security_claim_age'] = _whole_number(key, value)
        elif key == 'monthlyExpenses':
            changes['annual_retirement_expenses'] = _safe_numeric_convert(value, params.annual_retirement_expenses / 12) * 12
        elif key == 'partTimeIncome':
            changes['part_time_income'] = _safe_numeric_convert(value, params.part_time_income)
        elif key == 'spousePartTimeIncome':
            changes['spouse_part_time_income'] = _safe_numeric_convert(value, params.spouse_part_time_income)
        elif key == 'hasLongTermCareInsurance':
            changes['has_long_term_care_insurance'] = bool(value)
        elif key == 'annualSavings':
            changes['annual_savings'] = _safe_numeric_convert(value, params.annual_savings)
        elif key == 'assetAllocation':
            if value == 'glide-path':
                changes['use_glide_path'] = True
            elif value != 'current':
                changes.update(_reweight_allocation(params, _safe_numeric_convert(value, params.stock_allocation * 100)))
        else:
            name = REQUEST_ALIASES.get(to_snake_case(key), to_snake_case(key))
            if name not in PARAM_FIELDS:
                logger.warning("Ignoring unknown optimisation variable %s", key)
                continue
            changes[name] = value

    if 'total_assets' in changes:
        total = changes.pop('total_assets')
        try:
            params = params.with_assets(float(total))
        except (TypeError, ValueError):
            raise ValidationError([f"totalAssets must be a number, got {total!r}"])
    return replace(params, **changes)


def parse_stress_scenarios(documents: List[Any]) -> List[StressScenario]:
    """
    Build StressScenario objects from request documents.

    Missing fields are filled with placeholders rather than rejected, so a
    malformed scenario fails on its own when it is applied.
    """
    scenarios = []
    for index, doc in enumerate(documents or []):
        if isinstance(doc, StressScenario):
            scenarios.append(doc)
            continue
        doc = doc if isinstance(doc, dict) else {}
        raw = doc.get('parameters')
        raw = raw if isinstance(raw, dict) else {}
        scenarios.append(StressScenario(
            id=str(doc.get('id', f'scenario-{index + 1}')),
            name=str(doc.get('name', doc.get('id', f'Scenario {index + 1}'))),
            category=str(doc.get('category', '')),
            parameters=StressScenarioParameter(
                value=raw.get('value'),
                unit=raw.get('unit', 'percentage'),
                timing=raw.get('timing', 'immediate'),
            ),
            description=doc.get('description', ''),
            enabled=bool(doc.get('enabled', True)),
        ))
    return scenarios


def export_terminal_wealth_csv(ending_balances: np.ndarray) -> str:
    """
    Export ending balances to CSV string.

    Args:
        ending_balances: Array of ending balance values, one per trial

    Returns:
        CSV string
    """
    df = pd.DataFrame({
        'simulation': range(1, len(ending_balances) + 1),
        'ending_balance': ending_balances
    })

    return df.to_csv(index=False)


def export_percentile_bands_csv(confidence_intervals: Dict[str, List[float]]) -> str:
    """
    Export per-year portfolio percentile bands to CSV string.

    Args:
        confidence_intervals: Dictionary with 'ages' and 'p10'..'p90' lists

    Returns:
        CSV string
    """
    df = pd.DataFrame({'age': confidence_intervals['ages']})
    for key in ('p10', 'p25', 'p50', 'p75', 'p90'):
        df[f'{key}_balance'] = confidence_intervals[key]

    return df.to_csv(index=False)


def cash_flows_dataframe(result: AggregateResult) -> pd.DataFrame:
    """Median-outcome trial as a DataFrame, one row per year"""
    return pd.DataFrame([asdict(flow) for flow in result.yearly_cash_flows])


def export_year_by_year_csv(result: AggregateResult) -> str:
    """Export the median trial's year-by-year cash flows to CSV string"""
    return cash_flows_dataframe(result).to_csv(index=False)


def create_summary_report(params: SimulationParams, result: AggregateResult) -> Dict[str, Any]:
    """
    Create comprehensive summary report of simulation.

    Args:
        params: Simulation parameters
        result: Aggregated simulation result

    Returns:
        Dictionary with summary information
    """
    ending = result.ending_balances
    terminal_stats = {
        'mean': float(np.mean(ending)),
        'median': float(np.median(ending)),
        'std': float(np.std(ending)),
        'p10': result.percentile_10_ending_balance,
        'p25': result.percentile_25_ending_balance,
        'p75': result.percentile_75_ending_balance,
        'p90': result.percentile_90_ending_balance,
        'min': float(np.min(ending)),
        'max': float(np.max(ending))
    }

    depletion_stats = {
        'probability_of_success': result.probability_of_success,
        'failed_trials': result.scenarios.failed,
        'median_years_to_depletion': result.years_until_depletion,
        'legacy_goal_probability': result.legacy_goal_probability,
    }

    report = {
        'simulation_info': {
            'num_simulations': result.trial_count,
            'discarded_trials': result.discarded_trials,
            'seed': result.seed,
            'current_age': params.current_age,
            'retirement_age': params.retirement_age,
            'total_assets': params.total_assets,
            'longevity_mode': params.longevity_mode,
            'withdrawal_strategy': params.withdrawal_strategy,
        },
        'terminal_wealth_stats': terminal_stats,
        'depletion_analysis': depletion_stats,
        'allocation': {
            'stock': params.stock_allocation,
            'bond': params.bond_allocation,
            'cash': params.cash_allocation,
            'glide_path': params.use_glide_path,
        },
        'asset_buckets': asdict(params.asset_buckets),
    }
    if result.safe_withdrawal_rate is not None:
        report['safe_withdrawal_rate'] = result.safe_withdrawal_rate
    if result.guyton_klinger_stats is not None:
        report['guardrail_analysis'] = asdict(result.guyton_klinger_stats)

    return report


def export_summary_report_json(report: Dict[str, Any]) -> str:
    """Export summary report as JSON string"""
    return json.dumps(report, indent=2, default=str)


def create_batch_export_zip(params: SimulationParams, result: AggregateResult) -> io.BytesIO:
    """
    Create ZIP file containing all export files.

    Args:
        params: Simulation parameters
        result: Aggregated simulation result

    Returns:
        BytesIO object containing ZIP file
    """
    import zipfile

    zip_buffer = io.BytesIO()

    with zipfile.ZipFile(zip_buffer, 'w', zipfile.ZIP_DEFLATED) as zip_file:
        zip_file.writestr('parameters.json', create_parameters_download_json(params))
        zip_file.writestr('ending_balances.csv', export_terminal_wealth_csv(result.ending_balances))
        zip_file.writestr('percentile_bands.csv', export_percentile_bands_csv(result.confidence_intervals))
        zip_file.writestr('year_by_year.csv', export_year_by_year_csv(result))
        zip_file.writestr('summary_report.json',
                          export_summary_report_json(create_summary_report(params, result)))

    zip_buffer.seek(0)
    return zip_buffer


def format_currency(value: float, precision: int = 0) -> str:
    """
    Format currency values for display.

    Args:
        value: Numeric value to format
        precision: Number of decimal places

    Returns:
        Formatted string
    """
    if abs(value) >= 1_000_000:
        return f"${value/1_000_000:.{precision}f}M"
    elif abs(value) >= 1_000:
        return f"${value/1_000:.{precision}f}K"
    return f"${value:.{precision}f}"
