"""
Bayesian Beta-Binomial comparison of two rates.

Uniform Beta(1, 1) priors, posterior draws by Monte Carlo. The random source
is a numpy Generator so tests can pin the seed.
"""

import math
from typing import Optional

import numpy as np

from ..exceptions import InvalidArgument
from ..schema import BayesianResult
from .hypothesis_tests import check_counts
from .numeric import sample_beta

DEFAULT_SIMULATIONS = 10_000
ALPHA_PRIOR = 1.0
BETA_PRIOR = 1.0


def bayesian_analysis(
    n_c: int,
    x_c: int,
    n_t: int,
    x_t: int,
    simulations: int = DEFAULT_SIMULATIONS,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> BayesianResult:
    """
    Probability that treatment beats control, by posterior simulation.

    Args:
        n_c: Control sample size
        x_c: Control conversions
        n_t: Treatment sample size
        x_t: Treatment conversions
        simulations: Number of posterior draws per arm
        rng: Random generator (takes precedence over seed)
        seed: Seed for a fresh generator when rng is not given

    Returns:
        BayesianResult; lifts are relative ((t - c) / c), not percent
    """
    if simulations < 1:
        raise InvalidArgument(f"simulations must be at least 1, got {simulations}")
    for label, n, x in (("Control", n_c, x_c), ("Treatment", n_t, x_t)):
        if n < 0:
            raise InvalidArgument(f"{label} sample size must be non-negative, got {n}")
        check_counts(n, x, label)
        if x > n:
            raise InvalidArgument(f"{label} conversions ({x}) exceed sample size ({n})")
    if rng is None:
        rng = np.random.default_rng(seed)

    control_a = ALPHA_PRIOR + x_c
    control_b = BETA_PRIOR + n_c - x_c
    treatment_a = ALPHA_PRIOR + x_t
    treatment_b = BETA_PRIOR + n_t - x_t

    wins = 0
    lifts = np.empty(simulations)
    for i in range(simulations):
        control_rate = sample_beta(control_a, control_b, rng)
        treatment_rate = sample_beta(treatment_a, treatment_b, rng)
        if treatment_rate > control_rate:
            wins += 1
        lifts[i] = (treatment_rate - control_rate) / control_rate

    expected_lift = float(lifts.mean())
    lifts.sort()
    lower = float(lifts[math.floor(simulations * 0.025)])
    upper = float(lifts[math.floor(simulations * 0.975)])

    return BayesianResult(
        probability_treatment_wins=wins / simulations,
        expected_lift=expected_lift,
        credible_interval=(lower, upper),
        simulations=simulations,
    )
