"""
Frequentist hypothesis tests for outreach experiments.

Two-proportion z-test (pooled SE for the statistic, unpooled SE for the
confidence interval of the difference), chi-square test of independence,
and confidence intervals for single and relative rates.
"""

import math
from typing import Sequence, Tuple

import numpy as np

from ..exceptions import InvalidArgument
from ..schema import ArmType, ChiSquareResult, SignificanceResult
from .numeric import (
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_POWER,
    chi_square_cdf,
    normal_cdf,
    z_critical,
)
from .power import mde_proportion, sample_size

CHI_SQUARE_ALPHA = 0.05


def check_counts(n: int, x: int, label: str) -> None:
    """Reject negative conversions, or more conversions than a positive sample."""
    if x < 0:
        raise InvalidArgument(f"{label} conversions must be non-negative, got {x}")
    if n > 0 and x > n:
        raise InvalidArgument(f"{label} conversions ({x}) exceed sample size ({n})")


def _neutral_result(
    n_c: int,
    n_t: int,
    confidence_level: float,
) -> SignificanceResult:
    return SignificanceResult(
        z_score=0.0,
        p_value=1.0,
        confidence_interval=(0.0, 0.0),
        standard_error=0.0,
        significant=False,
        confidence_level=confidence_level,
        control_sample=max(int(n_c), 0),
        treatment_sample=max(int(n_t), 0),
        degenerate=True,
    )


def z_test(
    n_c: int,
    x_c: int,
    n_t: int,
    x_t: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> SignificanceResult:
    """
    Two-proportion z-test, control vs treatment.

    ``significant`` is one-sided: it requires p < 1 - confidence_level AND a
    positive z (treatment ahead). A significantly worse treatment still reports
    ``winner=control`` with ``significant=False``.

    Args:
        n_c: Control sample size (e.g., sent)
        x_c: Control conversions
        n_t: Treatment sample size
        x_t: Treatment conversions
        confidence_level: 0.90, 0.95 or 0.99

    Returns:
        SignificanceResult without the sample-size planning fields
    """
    z_crit = z_critical(confidence_level)
    check_counts(n_c, x_c, "Control")
    check_counts(n_t, x_t, "Treatment")
    if n_c <= 0 or n_t <= 0:
        return _neutral_result(n_c, n_t, confidence_level)

    rate_c = x_c / n_c
    rate_t = x_t / n_t

    p_pool = (x_c + x_t) / (n_c + n_t)
    se = math.sqrt(p_pool * (1 - p_pool) * (1 / n_c + 1 / n_t))

    z = (rate_t - rate_c) / se if se > 0 else 0.0
    p_value = 2 * (1 - normal_cdf(abs(z)))

    delta = rate_t - rate_c
    diff_se = math.sqrt(rate_c * (1 - rate_c) / n_c + rate_t * (1 - rate_t) / n_t)
    margin = z_crit * diff_se

    if z > 0:
        winner = ArmType.TREATMENT
    elif z < 0:
        winner = ArmType.CONTROL
    else:
        winner = None

    return SignificanceResult(
        z_score=z,
        p_value=p_value,
        confidence_interval=(delta - margin, delta + margin),
        standard_error=se,
        significant=p_value < (1 - confidence_level) and z > 0,
        confidence_level=confidence_level,
        winner=winner,
        absolute_difference=delta,
        relative_lift=(delta / rate_c * 100) if rate_c > 0 else 0.0,
        control_sample=int(n_c),
        treatment_sample=int(n_t),
    )


def is_significant(
    n_c: int,
    x_c: int,
    n_t: int,
    x_t: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> bool:
    """Quick check whether treatment significantly beats control."""
    return z_test(n_c, x_c, n_t, x_t, confidence_level).significant


def chi_square_test(observed: Sequence[Sequence[int]]) -> ChiSquareResult:
    """
    Chi-square test of independence on a contingency table.

    Cells with zero expected count are skipped. The p-value uses the
    Wilson-Hilferty approximation; significance is fixed at 0.05.

    Args:
        observed: Rows x cols table of non-negative counts (at least 2x2),
                  e.g. [[conv_c, non_conv_c], [conv_t, non_conv_t]]
    """
    try:
        table = np.asarray(observed, dtype=float)
    except (TypeError, ValueError):
        raise InvalidArgument("Observed table must be rectangular and numeric") from None
    if table.ndim != 2 or table.shape[0] < 2 or table.shape[1] < 2:
        raise InvalidArgument(f"Observed table must be at least 2x2, got shape {table.shape}")
    if not np.all(np.isfinite(table)) or np.any(table < 0):
        raise InvalidArgument("Observed counts must be finite and non-negative")

    rows, cols = table.shape
    df = (rows - 1) * (cols - 1)

    row_totals = table.sum(axis=1)
    col_totals = table.sum(axis=0)
    grand_total = table.sum()

    if grand_total == 0:
        return ChiSquareResult(chi2=0.0, p_value=1.0, significant=False, degrees_of_freedom=df)

    expected = np.outer(row_totals, col_totals) / grand_total
    mask = expected > 0
    chi2 = float(np.sum((table[mask] - expected[mask]) ** 2 / expected[mask]))

    p_value = 1 - chi_square_cdf(chi2, df)
    return ChiSquareResult(
        chi2=chi2,
        p_value=p_value,
        significant=p_value < CHI_SQUARE_ALPHA,
        degrees_of_freedom=df,
    )


def proportion_confidence_interval(
    successes: int,
    trials: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> Tuple[float, float]:
    """Normal-approximation CI for a single rate, clipped to [0, 1]."""
    check_counts(trials, successes, "Interval")
    if trials <= 0:
        return 0.0, 0.0
    p = successes / trials
    margin = z_critical(confidence_level) * math.sqrt(p * (1 - p) / trials)
    return max(0.0, p - margin), min(1.0, p + margin)


def relative_difference_ci(
    rate_c: float,
    rate_t: float,
    n_c: int,
    n_t: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> Tuple[float, float]:
    """CI for the relative lift of treatment over control, in percent."""
    if n_c <= 0 or n_t <= 0:
        return 0.0, 0.0
    se_delta = math.sqrt(rate_c * (1 - rate_c) / n_c + rate_t * (1 - rate_t) / n_t)
    margin = z_critical(confidence_level) * se_delta

    if rate_c <= 0:
        return 0.0, 0.0
    relative_lift = (rate_t - rate_c) / rate_c * 100
    relative_margin = margin / rate_c * 100
    return relative_lift - relative_margin, relative_lift + relative_margin


def significance_report(
    n_c: int,
    x_c: int,
    n_t: int,
    x_t: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    power: float = DEFAULT_POWER,
) -> SignificanceResult:
    """
    z-test plus sample-size planning fields.

    ``minimum_detectable_effect`` is the relative lift the current samples can
    detect; ``recommended_sample_size`` is the per-variant size needed to
    confirm the observed lift (None when the lift or control rate is zero or
    the implied rates leave (0, 1)).
    """
    result = z_test(n_c, x_c, n_t, x_t, confidence_level)
    if result.degenerate:
        return result

    rate_c = x_c / n_c
    result.minimum_detectable_effect = mde_proportion(rate_c, n_c, n_t, confidence_level, power)
    observed_effect = result.relative_lift / 100
    try:
        result.recommended_sample_size = sample_size(
            rate_c, observed_effect, confidence_level, power
        )
    except InvalidArgument:
        result.recommended_sample_size = None
    return result
