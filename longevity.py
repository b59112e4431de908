"""
Longevity model: fixed life expectancy or death ages sampled from the
SSA 2021 period life table.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import numpy as np

from params import SimulationParams

MAX_AGE = 120
TABLE_START_AGE = 50

# SSA 2021 period life table, probability of dying within one year (qx)
MORTALITY_QX = {
    50: (0.004186, 0.002634), 51: (0.004530, 0.002838), 52: (0.004912, 0.003071),
    53: (0.005346, 0.003344), 54: (0.005838, 0.003658), 55: (0.006390, 0.004005),
    56: (0.006993, 0.004379), 57: (0.007646, 0.004780), 58: (0.008359, 0.005217),
    59: (0.009147, 0.005710), 60: (0.010028, 0.006283), 61: (0.010998, 0.006920),
    62: (0.012047, 0.007610), 63: (0.013168, 0.008351), 64: (0.014366, 0.009154),
    65: (0.015651, 0.010035), 66: (0.017030, 0.010998), 67: (0.018506, 0.012049),
    68: (0.020088, 0.013201), 69: (0.021791, 0.014477), 70: (0.023640, 0.015901),
    71: (0.025660, 0.017483), 72: (0.027872, 0.019230), 73: (0.030275, 0.021139),
    74: (0.032884, 0.023216), 75: (0.035746, 0.025490), 76: (0.038921, 0.027998),
    77: (0.042465, 0.030774), 78: (0.046414, 0.033834), 79: (0.050799, 0.037189),
    80: (0.055651, 0.040853), 81: (0.061000, 0.044842), 82: (0.066875, 0.049174),
    83: (0.073305, 0.053870), 84: (0.080319, 0.058954), 85: (0.087945, 0.064449),
    86: (0.096211, 0.070379), 87: (0.105145, 0.076770), 88: (0.114772, 0.083647),
    89: (0.125116, 0.091037), 90: (0.136200, 0.098966), 91: (0.148046, 0.107461),
    92: (0.160674, 0.116549), 93: (0.174102, 0.126257), 94: (0.188348, 0.136613),
    95: (0.203426, 0.147644), 96: (0.219352, 0.159378), 97: (0.236136, 0.171842),
    98: (0.253789, 0.185064), 99: (0.272320, 0.199071), 100: (0.291735, 0.213890),
    101: (0.312043, 0.229548), 102: (0.333249, 0.246073), 103: (0.355359, 0.263492),
    104: (0.378378, 0.281832), 105: (0.402310, 0.301122), 106: (0.427159, 0.321389),
    107: (0.452928, 0.342661), 108: (0.479619, 0.364966), 109: (0.507236, 0.388332),
    110: (0.535782, 0.412788), 111: (0.565256, 0.438361), 112: (0.595662, 0.465082),
    113: (0.627001, 0.492978), 114: (0.659274, 0.522080), 115: (0.692482, 0.552418),
    116: (0.726625, 0.584022), 117: (0.761705, 0.616923), 118: (0.797720, 0.651152),
    119: (0.834672, 0.686741), 120: (1.000000, 1.000000),
}

HEALTH_MULTIPLIERS = {
    'excellent': 0.7,
    'good': 1.0,
    'fair': 1.5,
    'poor': 2.2,
}


def mortality_rate(age: int, gender: Optional[str] = None, health_status: str = 'good') -> float:
    """Annual probability of death; unknown gender uses the male/female average"""
    if age >= MAX_AGE:
        return 1.0
    male, female = MORTALITY_QX[max(age, TABLE_START_AGE)]
    if gender == 'male':
        base = male
    elif gender == 'female':
        base = female
    else:
        base = (male + female) / 2
    return min(1.0, base * HEALTH_MULTIPLIERS.get(health_status, 1.0))


def sample_death_age(current_age: int, u: float, gender: Optional[str] = None,
                     health_status: str = 'good') -> int:
    """Inverse-CDF walk: first age at which cumulative mortality reaches u"""
    survival = 1.0
    for age in range(current_age, MAX_AGE):
        survival *= 1.0 - mortality_rate(age, gender, health_status)
        if 1.0 - survival >= u:
            return age + 1
    return MAX_AGE


@lru_cache(maxsize=512)
def expected_death_age(current_age: int, gender: Optional[str] = None,
                       health_status: str = 'good') -> float:
    """Mean death age under the table, consistent with sample_death_age"""
    survival = 1.0
    expectation = 0.0
    for age in range(current_age, MAX_AGE):
        q = mortality_rate(age, gender, health_status)
        expectation += survival * q * (age + 1)
        survival *= 1.0 - q
    return expectation + survival * MAX_AGE


@dataclass
class Horizon:
    """Death ages for one trial and the resulting number of simulated years"""
    user_death_age: int
    spouse_death_age: Optional[int]
    years: int


class LongevityModel:
    """Determines how many years each trial runs"""

    def __init__(self, params: SimulationParams):
        self.params = params

    def _sample(self, current_age: int, life_expectancy: int, u: float,
                gender: Optional[str], health_status: str) -> int:
        raw = sample_death_age(current_age, u, gender, health_status)
        shift = life_expectancy - round(expected_death_age(current_age, gender, health_status))
        return int(min(max(raw + shift, current_age + 1), MAX_AGE))

    def horizon(self, rng: np.random.Generator) -> Horizon:
        """
        Death ages for one trial.

        Two uniforms are always consumed, one per spouse, so the return
        draws that follow line up regardless of mode or household size.
        """
        p = self.params
        u_user, u_spouse = rng.random(2)

        if p.longevity_mode == 'stochastic':
            user_death = self._sample(p.current_age, p.life_expectancy, u_user,
                                      p.user_gender, p.user_health_status)
        else:
            user_death = int(p.life_expectancy)
        years = user_death - p.current_age

        spouse_death = None
        if p.has_spouse:
            if p.longevity_mode == 'stochastic':
                spouse_death = self._sample(p.spouse_current_age, p.spouse_life_expectancy, u_spouse,
                                            p.spouse_gender, p.spouse_health_status)
            else:
                spouse_death = int(p.spouse_life_expectancy)
            years = max(years, spouse_death - p.spouse_current_age)

        return Horizon(user_death_age=user_death, spouse_death_age=spouse_death, years=max(1, years))
