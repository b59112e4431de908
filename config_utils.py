"""
Configuration Utilities for the Retirement Monte Carlo Engine
Pure utility functions for engine configuration and default parameters.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from simulation import EngineSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'engine_config.json'

ENV_CONFIG_PATH = 'RETIREMENT_MC_CONFIG'
ENV_OVERRIDES = {
    'RETIREMENT_MC_TRIALS': 'trial_count',
    'RETIREMENT_MC_WORKERS': 'max_workers',
}


def load_engine_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load engine configuration from JSON; a missing or unreadable file yields an empty config"""
    path = path or os.environ.get(ENV_CONFIG_PATH, DEFAULT_CONFIG_PATH)
    if not os.path.exists(path):
        logger.debug("No engine config at %s, using defaults", path)
        return {}
    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not load %s: %s", path, e)
        return {}
    if not isinstance(config, dict):
        logger.error("Engine config %s must be a JSON object", path)
        return {}
    logger.debug("Loaded engine config with %d keys", len(config))
    return config


def save_engine_config(config: Dict[str, Any], path: str = DEFAULT_CONFIG_PATH) -> None:
    """Save engine configuration to JSON"""
    with open(path, 'w') as f:
        json.dump(config, f, indent=2)


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Integer overrides from the environment; invalid values are ignored"""
    merged = dict(config)
    for variable, key in ENV_OVERRIDES.items():
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            merged[key] = int(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: not an integer", variable, raw)
    return merged


def get_engine_settings(path: Optional[str] = None) -> EngineSettings:
    """EngineSettings from the config file, then the environment"""
    config = apply_env_overrides(load_engine_config(path))
    known = EngineSettings.__dataclass_fields__
    for key in config:
        if key not in known:
            logger.warning("Ignoring unknown engine config key %s", key)
    return EngineSettings(**{key: value for key, value in config.items() if key in known})


def get_default_simulation_params() -> Dict[str, Any]:
    """Baseline household as a parameter document"""
    return {
        # Household
        'current_age': 62,
        'retirement_age': 65,
        'life_expectancy': 93,
        'spouse_current_age': 62,
        'spouse_retirement_age': 65,
        'spouse_life_expectancy': 95,

        # Assets
        'total_assets': 1_200_000,
        'asset_buckets': {
            'tax_deferred': 840_000,
            'tax_free': 240_000,
            'capital_gains': 90_000,
            'cash_equivalents': 30_000,
        },
        'annual_savings': 0,

        # Expenses
        'annual_retirement_expenses': 120_000,
        'annual_healthcare_costs': 18_000,
        'healthcare_inflation_rate': 0.045,
        'inflation_rate': 0.025,

        # Allocation and returns
        'stock_allocation': 0.60,
        'bond_allocation': 0.35,
        'cash_allocation': 0.05,
        'use_glide_path': False,

        # Withdrawals
        'withdrawal_rate': 0.045,
        'use_guardrails': True,
        'tax_rate': 0.22,

        # Guaranteed income (monthly)
        'social_security_benefit': 2_200,
        'social_security_claim_age': 67,
        'spouse_social_security_benefit': 1_800,
        'spouse_social_security_claim_age': 67,

        'has_long_term_care_insurance': False,
        'legacy_goal': 0,
        'num_sims': 1_000,
    }


def get_default_stress_scenarios() -> List[Dict[str, Any]]:
    """Default stress-test catalogue, all disabled"""
    return [
        {'id': 'bear-market-immediate', 'name': 'Bear Market (Immediate)', 'category': 'market',
         'description': 'Stocks fall 30% in the first year',
         'parameters': {'value': -30, 'unit': 'percentage', 'timing': 'immediate'}, 'enabled': False},
        {'id': 'bear-market-retirement', 'name': 'Bear Market at Retirement', 'category': 'market',
         'description': 'Stocks fall 30% in the first year of retirement',
         'parameters': {'value': -30, 'unit': 'percentage', 'timing': 'retirement'}, 'enabled': False},
        {'id': 'high-inflation', 'name': 'High Inflation', 'category': 'inflation',
         'description': 'Inflation stays at 5% every year',
         'parameters': {'value': 5, 'unit': 'percentage', 'timing': 'ongoing'}, 'enabled': False},
        {'id': 'longevity', 'name': 'Longer Life Expectancy', 'category': 'longevity',
         'description': 'Both spouses live 5 years longer',
         'parameters': {'value': 5, 'unit': 'years', 'timing': 'ongoing'}, 'enabled': False},
        {'id': 'healthcare-costs', 'name': 'Higher Healthcare Costs', 'category': 'costs',
         'description': 'Healthcare costs 20% higher',
         'parameters': {'value': 20, 'unit': 'percentage', 'timing': 'ongoing'}, 'enabled': False},
        {'id': 'long-term-care', 'name': 'Long-Term Care Need', 'category': 'costs',
         'description': 'Uninsured long-term care from age 85',
         'parameters': {'value': 100_000, 'unit': 'amount', 'timing': 'ongoing'}, 'enabled': False},
        {'id': 'social-security-cut', 'name': 'Social Security Cut', 'category': 'income',
         'description': 'Social Security benefits reduced by 20%',
         'parameters': {'value': -20, 'unit': 'percentage', 'timing': 'ongoing'}, 'enabled': False},
        {'id': 'higher-taxes', 'name': 'Higher Taxes', 'category': 'costs',
         'description': 'Tax rate 20% higher',
         'parameters': {'value': 20, 'unit': 'percentage', 'timing': 'ongoing'}, 'enabled': False},
        {'id': 'lower-returns', 'name': 'Lower Returns', 'category': 'market',
         'description': 'Expected stock return 2 points lower',
         'parameters': {'value': -2, 'unit': 'percentage', 'timing': 'ongoing'}, 'enabled': False},
        {'id': 'early-retirement', 'name': 'Forced Early Retirement', 'category': 'timing',
         'description': 'Retire 2 years earlier than planned',
         'parameters': {'value': -2, 'unit': 'years', 'timing': 'immediate'}, 'enabled': False},
    ]
