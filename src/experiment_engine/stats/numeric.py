"""
Numeric building blocks shared by the statistics module.

Closed-form approximations (normal CDF, chi-square CDF), fixed z-critical
tables, and the Gamma/Beta samplers behind the Bayesian simulation. Kept free
of special-function libraries.
"""

import logging
import math
from typing import Dict

import numpy as np

from ..exceptions import InvalidArgument

logger = logging.getLogger(__name__)

# Z-scores for common confidence levels (two-tailed)
Z_SCORES: Dict[float, float] = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}

# Z-scores for statistical power
POWER_Z_SCORES: Dict[float, float] = {
    0.70: 0.52,
    0.80: 0.84,
    0.90: 1.28,
    0.95: 1.645,
}

DEFAULT_CONFIDENCE_LEVEL = 0.95
DEFAULT_POWER = 0.80

# Abramowitz & Stegun 7.1.26, |error| < 1.5e-7
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


def normal_cdf(x: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun erf approximation."""
    if x == 0:
        return 0.5
    sign = -1.0 if x < 0 else 1.0
    x = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


def chi_square_cdf(x: float, df: int) -> float:
    """Chi-square CDF via the Wilson-Hilferty cube-root normal approximation."""
    if df <= 0:
        raise InvalidArgument(f"Degrees of freedom must be positive, got {df}")
    if x <= 0:
        return 0.0
    z = (x / df) ** (1.0 / 3.0) - (1.0 - 2.0 / (9.0 * df))
    return normal_cdf(z / math.sqrt(2.0 / (9.0 * df)))


def _lookup(table: Dict[float, float], level: float, default: float, what: str) -> float:
    if not 0 < level < 1:
        raise InvalidArgument(f"{what} must be in (0, 1), got {level}")
    key = round(level, 4)
    if key in table:
        return table[key]
    logger.warning(f"No tabulated z for {what}={level}; using {default}")
    return table[default]


def z_critical(confidence_level: float) -> float:
    """Two-tailed z-critical value for a confidence level."""
    return _lookup(Z_SCORES, confidence_level, DEFAULT_CONFIDENCE_LEVEL, "confidence_level")


def z_power(power: float) -> float:
    """One-tailed z value for a statistical power."""
    return _lookup(POWER_Z_SCORES, power, DEFAULT_POWER, "power")


def _open_unit(rng: np.random.Generator) -> float:
    """Uniform draw in (0, 1)."""
    u = 0.0
    while u == 0.0:
        u = rng.random()
    return u


def sample_standard_normal(rng: np.random.Generator) -> float:
    """Box-Muller standard normal draw."""
    u = _open_unit(rng)
    v = _open_unit(rng)
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)


def sample_gamma(shape: float, rng: np.random.Generator, scale: float = 1.0) -> float:
    """
    Gamma(shape, scale) draw by Marsaglia-Tsang rejection.

    Shapes below 1 are boosted to shape + 1 and corrected with U ** (1 / shape).
    """
    if shape <= 0:
        raise InvalidArgument(f"Gamma shape must be positive, got {shape}")
    if shape < 1:
        return sample_gamma(shape + 1.0, rng, scale) * _open_unit(rng) ** (1.0 / shape)

    d = shape - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)
    while True:
        x = sample_standard_normal(rng)
        v = 1.0 + c * x
        if v <= 0:
            continue
        v = v * v * v
        u = rng.random()
        if u < 1.0 - 0.0331 * x * x * x * x:
            return d * v * scale
        if u > 0 and math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
            return d * v * scale


def sample_beta(a: float, b: float, rng: np.random.Generator) -> float:
    """Beta(a, b) draw as Gamma(a) / (Gamma(a) + Gamma(b))."""
    x = sample_gamma(a, rng)
    y = sample_gamma(b, rng)
    return x / (x + y)
