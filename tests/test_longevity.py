"""
Unit tests for the longevity model and mortality table helpers.
"""
import pytest
import numpy as np
from longevity import (
    MAX_AGE, LongevityModel, expected_death_age, mortality_rate, sample_death_age
)
from params import SimulationParams


class TestMortalityRate:
    """Test table lookups"""

    def test_unknown_gender_is_average(self):
        """No gender given uses the male/female average"""
        male = mortality_rate(75, 'male')
        female = mortality_rate(75, 'female')
        assert abs(mortality_rate(75) - (male + female) / 2) < 1e-12
        assert male > female

    def test_health_multiplier(self):
        """Poorer health raises the annual death probability"""
        assert mortality_rate(70, 'male', 'poor') > mortality_rate(70, 'male', 'good')
        assert mortality_rate(70, 'male', 'excellent') < mortality_rate(70, 'male', 'good')

    def test_certain_death_at_max_age(self):
        """Nobody survives past the end of the table"""
        assert mortality_rate(MAX_AGE) == 1.0

    def test_young_ages_use_first_row(self):
        """Ages before the table start reuse its first row"""
        assert mortality_rate(30, 'female') == mortality_rate(50, 'female')

    def test_increasing_with_age(self):
        """Mortality rises through retirement ages"""
        rates = [mortality_rate(age) for age in range(60, 100)]
        assert all(a < b for a, b in zip(rates, rates[1:]))


class TestSampleDeathAge:
    """Test inverse-CDF sampling"""

    def test_low_quantile_dies_next_year(self):
        """u = 0 gives the earliest possible death age"""
        assert sample_death_age(65, 0.0) == 66

    def test_high_quantile_capped(self):
        """Quantiles near one stay at or below the maximum age"""
        assert sample_death_age(65, 0.999999) <= MAX_AGE

    def test_monotone_in_u(self):
        """Higher quantiles never give earlier deaths"""
        ages = [sample_death_age(65, u, 'male') for u in np.linspace(0.01, 0.99, 50)]
        assert ages == sorted(ages)

    def test_expected_age_consistent_with_sampling(self):
        """Mean of sampled ages matches the analytic expectation"""
        rng = np.random.default_rng(0)
        samples = [sample_death_age(65, u) for u in rng.random(5_000)]
        assert abs(np.mean(samples) - expected_death_age(65)) < 0.5


class TestLongevityModel:
    """Test per-trial horizons"""

    def test_fixed_horizon(self):
        """Fixed mode uses life expectancy directly"""
        params = SimulationParams(current_age=62, life_expectancy=93)
        horizon = LongevityModel(params).horizon(np.random.default_rng(1))
        assert horizon.user_death_age == 93
        assert horizon.spouse_death_age is None
        assert horizon.years == 31

    def test_couple_runs_until_last_death(self):
        """The horizon covers whichever spouse lives longer"""
        params = SimulationParams(current_age=62, life_expectancy=93,
                                  spouse_current_age=60, spouse_life_expectancy=95)
        horizon = LongevityModel(params).horizon(np.random.default_rng(1))
        assert horizon.years == 35

    def test_two_uniforms_always_consumed(self):
        """Fixed and stochastic modes leave the stream at the same position"""
        for mode in ('fixed', 'stochastic'):
            rng = np.random.default_rng(42)
            reference = np.random.default_rng(42)
            LongevityModel(SimulationParams(longevity_mode=mode)).horizon(rng)
            reference.random(2)
            assert rng.random() == reference.random()

    def test_stochastic_range(self):
        """Sampled death ages fall between next year and the table end"""
        params = SimulationParams(current_age=65, life_expectancy=90, longevity_mode='stochastic',
                                  spouse_current_age=63, spouse_life_expectancy=92)
        model = LongevityModel(params)
        rng = np.random.default_rng(3)
        for _ in range(500):
            horizon = model.horizon(rng)
            assert 66 <= horizon.user_death_age <= MAX_AGE
            assert 64 <= horizon.spouse_death_age <= MAX_AGE
            assert horizon.years >= 1

    @pytest.mark.parametrize("life_expectancy", [85, 93])
    def test_stochastic_mean_tracks_life_expectancy(self, life_expectancy):
        """Samples are shifted so their mean sits at the configured life expectancy"""
        params = SimulationParams(current_age=65, life_expectancy=life_expectancy,
                                  longevity_mode='stochastic', user_gender='female')
        model = LongevityModel(params)
        rng = np.random.default_rng(17)
        deaths = [model.horizon(rng).user_death_age for _ in range(3_000)]
        assert abs(np.mean(deaths) - life_expectancy) < 1.5
        assert np.std(deaths) > 3
