"""
Error types raised by the retirement simulation engine.
"""
from typing import List, Optional


class ValidationError(ValueError):
    """Invalid simulation input, rejected before any trial runs"""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class NumericAnomaly(ArithmeticError):
    """Non-finite value produced inside a trial that clamping could not repair"""


class ScenarioComputationError(RuntimeError):
    """A stress or sensitivity sub-run failed"""

    def __init__(self, message: str, scenario_id: Optional[str] = None):
        self.scenario_id = scenario_id
        super().__init__(message)


class SimulationCancelled(RuntimeError):
    """Cooperative cancellation observed between trials"""

    def __init__(self, completed_trials: int = 0):
        self.completed_trials = completed_trials
        super().__init__(f"Simulation cancelled after {completed_trials} trials")
