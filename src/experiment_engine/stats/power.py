"""
Power analysis, MDE (Minimum Detectable Effect) and test duration planning.

Computes required sample size per variant for rate metrics, the effect a
given sample can detect, achieved power, and how long traffic takes to get
there. Critical values come from the fixed z tables in ``numeric``.
"""

import logging
import math
from typing import List

from ..exceptions import InvalidArgument
from ..schema import DurationEstimate, Metric, PracticalSampleSize
from .numeric import (
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_POWER,
    normal_cdf,
    z_critical,
    z_power,
)

logger = logging.getLogger(__name__)

MIN_SAMPLE_SIZE_FLOOR = 100
LARGE_SAMPLE_WARNING = 10_000
LOW_BASELINE_WARNING = 0.05


def cohens_h(p1: float, p2: float) -> float:
    """Arcsine effect size between two proportions."""
    return 2 * math.asin(math.sqrt(p1)) - 2 * math.asin(math.sqrt(p2))


def sample_size(
    baseline_rate: float,
    min_detectable_effect: float,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    power: float = DEFAULT_POWER,
    num_variants: int = 2,
) -> int:
    """
    Sample size per variant for a two-proportion test.

    Args:
        baseline_rate: Control rate (e.g., 0.08 reply rate)
        min_detectable_effect: Relative change to detect (e.g., 0.20 = +20%)
        confidence_level: Confidence level (0.90, 0.95, 0.99)
        power: Statistical power (0.70, 0.80, 0.90, 0.95)
        num_variants: Arms including control; z_alpha is inflated by
                      sqrt(num_variants - 1) for more than two

    Returns:
        Required sample size per variant, never below 100
    """
    if not 0 < baseline_rate < 1:
        raise InvalidArgument(f"baseline_rate must be in (0, 1), got {baseline_rate}")
    if min_detectable_effect == 0:
        raise InvalidArgument("min_detectable_effect must be non-zero")
    if num_variants < 2:
        raise InvalidArgument(f"num_variants must be at least 2, got {num_variants}")

    p1 = baseline_rate
    p2 = baseline_rate * (1 + min_detectable_effect)
    if not 0 < p2 < 1:
        raise InvalidArgument(
            f"Treatment rate {p2:.4f} implied by the effect is outside (0, 1)"
        )

    z_alpha = z_critical(confidence_level)
    z_beta = z_power(power)
    if num_variants > 2:
        z_alpha *= math.sqrt(num_variants - 1)

    p_pool = (p1 + p2) / 2
    numerator = (
        z_alpha * math.sqrt(2 * p_pool * (1 - p_pool))
        + z_beta * math.sqrt(p1 * (1 - p1) + p2 * (1 - p2))
    ) ** 2
    n_per_arm = math.ceil(numerator / (p1 - p2) ** 2)
    return max(n_per_arm, MIN_SAMPLE_SIZE_FLOOR)


def sample_size_for_metric(
    metric: Metric,
    baseline_rate: float,
    target_lift: float,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    power: float = DEFAULT_POWER,
) -> int:
    """Sample size per variant to detect ``target_lift`` on a rate metric."""
    metric = Metric(metric)
    n = sample_size(baseline_rate, target_lift, confidence_level, power)
    logger.info(
        f"{metric.value}: {n} per variant to detect {target_lift:+.0%} "
        f"from baseline {baseline_rate:.2%}"
    )
    return n


def mde_proportion(
    baseline_rate: float,
    n_c: int,
    n_t: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    power: float = DEFAULT_POWER,
) -> float:
    """
    Minimum detectable effect (relative) for the given sample sizes.

    Returns:
        MDE as relative change (e.g., 0.10 = 10% relative lift detectable);
        0.0 when the baseline or a sample is empty
    """
    if baseline_rate <= 0 or n_c <= 0 or n_t <= 0:
        return 0.0
    z_alpha = z_critical(confidence_level)
    z_beta = z_power(power)

    se = math.sqrt(baseline_rate * (1 - baseline_rate) * (1 / n_c + 1 / n_t))
    return float((z_alpha + z_beta) * se / baseline_rate)


def achieved_power(
    n_c: int,
    n_t: int,
    rate_c: float,
    rate_t: float,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> float:
    """
    Achieved power for the observed rates and sample sizes.

    Returns:
        Statistical power (0-1)
    """
    if n_c <= 0 or n_t <= 0:
        return 0.0
    se = math.sqrt(rate_c * (1 - rate_c) / n_c + rate_t * (1 - rate_t) / n_t)
    if se == 0:
        return 0.0
    z_crit = z_critical(confidence_level)
    z = (rate_t - rate_c) / se
    value = normal_cdf(z - z_crit) + normal_cdf(-z - z_crit)
    return min(max(value, 0.0), 1.0)


def duration_estimate(
    daily_traffic: float,
    samples_needed: int,
    num_variants: int = 2,
) -> DurationEstimate:
    """
    How long a test needs at the given traffic.

    Args:
        daily_traffic: Participants entering the test per day (all variants)
        samples_needed: Sample size required per variant
        num_variants: Variants sharing the traffic
    """
    if daily_traffic <= 0:
        raise InvalidArgument(f"daily_traffic must be positive, got {daily_traffic}")
    if num_variants < 1:
        raise InvalidArgument(f"num_variants must be positive, got {num_variants}")
    if samples_needed < 0:
        raise InvalidArgument(f"samples_needed must be non-negative, got {samples_needed}")

    samples_per_day = daily_traffic / num_variants
    days = math.ceil(samples_needed / samples_per_day)
    weeks = math.ceil(days / 7)

    if weeks < 1:
        recommended = f"{days} days"
    elif weeks <= 4:
        recommended = f"{weeks} week{'s' if weeks > 1 else ''}"
    else:
        months = math.ceil(weeks / 4)
        recommended = f"{months} month{'s' if months > 1 else ''}"

    return DurationEstimate(days=days, weeks=weeks, recommended=recommended)


def practical_significance_sample_size(
    baseline_rate: float,
    min_practical_lift: float,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    power: float = DEFAULT_POWER,
) -> PracticalSampleSize:
    """
    Sample size for the smallest business-relevant lift, with advice.

    Recommendations are plain strings for display.
    """
    n = sample_size(baseline_rate, min_practical_lift, confidence_level, power)

    recommendations: List[str] = []
    if n > LARGE_SAMPLE_WARNING:
        recommendations.append("Consider reducing confidence level or minimum detectable effect")
        recommendations.append("Or extend test duration to accumulate sufficient sample")
    if baseline_rate < LOW_BASELINE_WARNING:
        recommendations.append("Low baseline rate - consider using a different metric or longer test")

    return PracticalSampleSize(
        per_variant=n,
        total=n * 2,
        recommendations=recommendations,
        effect_size=cohens_h(baseline_rate, baseline_rate * (1 + min_practical_lift)),
    )
