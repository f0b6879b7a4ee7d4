"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if the observed split of sent messages across variants deviates
significantly from the configured weights.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from ..exceptions import InvalidArgument

DEFAULT_SRM_ALPHA = 0.01


def srm_chi_square(
    observed_counts: Sequence[int],
    expected_weights: Optional[Sequence[float]] = None,
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit for sample ratio mismatch.

    H0: observed split equals the configured weights
    H1: observed split differs

    Args:
        observed_counts: Participants (e.g., sent) per variant
        expected_weights: Configured weights per variant (uniform if omitted)

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    observed = np.asarray(observed_counts, dtype=float)
    if observed.ndim != 1 or len(observed) < 2:
        raise InvalidArgument("SRM needs counts for at least 2 variants")
    if np.any(observed < 0):
        raise InvalidArgument("SRM counts must be non-negative")
    if expected_weights is None:
        weights = np.ones(len(observed))
    else:
        weights = np.asarray(expected_weights, dtype=float)
        if weights.shape != observed.shape or np.any(weights <= 0):
            raise InvalidArgument("SRM weights must be positive and match the counts")

    n_total = observed.sum()
    if n_total == 0:
        return 0.0, 1.0

    expected = n_total * weights / weights.sum()
    chi2 = float(np.sum((observed - expected) ** 2 / expected))
    p_value = 1 - stats.chi2.cdf(chi2, df=len(observed) - 1)

    return chi2, float(p_value)


def check_srm(
    observed_counts: Sequence[int],
    expected_weights: Optional[Sequence[float]] = None,
    alpha: float = DEFAULT_SRM_ALPHA,
) -> Tuple[bool, float, float]:
    """
    Check for sample ratio mismatch.

    Args:
        observed_counts: Participants per variant
        expected_weights: Configured weights per variant
        alpha: Significance threshold (default 0.01)

    Returns:
        Tuple of (srm_passed, chi2_statistic, p_value)
    """
    chi2, p_value = srm_chi_square(observed_counts, expected_weights)
    srm_passed = p_value >= alpha
    return srm_passed, chi2, p_value
