"""Experiment statistics module."""

from .numeric import (
    Z_SCORES,
    POWER_Z_SCORES,
    normal_cdf,
    chi_square_cdf,
    z_critical,
    z_power,
)
from .hypothesis_tests import (
    z_test,
    is_significant,
    significance_report,
    chi_square_test,
    proportion_confidence_interval,
    relative_difference_ci,
)
from .bayesian import bayesian_analysis
from .sequential import sequential_test
from .power import (
    sample_size,
    sample_size_for_metric,
    mde_proportion,
    achieved_power,
    cohens_h,
    duration_estimate,
    practical_significance_sample_size,
)
from .srm import srm_chi_square, check_srm

__all__ = [
    "Z_SCORES",
    "POWER_Z_SCORES",
    "normal_cdf",
    "chi_square_cdf",
    "z_critical",
    "z_power",
    "z_test",
    "is_significant",
    "significance_report",
    "chi_square_test",
    "proportion_confidence_interval",
    "relative_difference_ci",
    "bayesian_analysis",
    "sequential_test",
    "sample_size",
    "sample_size_for_metric",
    "mde_proportion",
    "achieved_power",
    "cohens_h",
    "duration_estimate",
    "practical_significance_sample_size",
    "srm_chi_square",
    "check_srm",
]
