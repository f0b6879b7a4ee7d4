"""
Sequential analysis: repeated looks with a Bonferroni-adjusted threshold.

Each call sums every period seen so far, runs the z-test, and compares the
p-value against alpha divided by the number of looks. Conservative rather
than optimal.
"""

from typing import Dict, Sequence, Tuple

from ..exceptions import InvalidArgument
from ..schema import ArmType, SequentialResult
from .hypothesis_tests import z_test

DEFAULT_ALPHA = 0.05

_ARMS = (ArmType.CONTROL.value, ArmType.TREATMENT.value)


def _series(data: Dict[str, Sequence[int]], name: str) -> Tuple[Sequence[int], Sequence[int]]:
    try:
        control, treatment = (data[arm] for arm in _ARMS)
    except (KeyError, TypeError):
        raise InvalidArgument(f"{name} must map 'control' and 'treatment' to per-period counts") from None
    if len(control) != len(treatment):
        raise InvalidArgument(
            f"{name} has {len(control)} control periods but {len(treatment)} treatment periods"
        )
    if any(v < 0 for v in control) or any(v < 0 for v in treatment):
        raise InvalidArgument(f"{name} counts must be non-negative")
    return control, treatment


def sequential_test(
    visits: Dict[str, Sequence[int]],
    conversions: Dict[str, Sequence[int]],
    alpha: float = DEFAULT_ALPHA,
) -> SequentialResult:
    """
    Would stopping now be valid?

    Args:
        visits: {"control": [...], "treatment": [...]} per-period sample counts
        conversions: Same shape, per-period conversions
        alpha: Overall Type I error

    Returns:
        SequentialResult; should_stop when p < alpha / looks
    """
    if not 0 < alpha < 1:
        raise InvalidArgument(f"alpha must be in (0, 1), got {alpha}")
    visits_c, visits_t = _series(visits, "visits")
    conv_c, conv_t = _series(conversions, "conversions")
    if len(visits_c) != len(conv_c):
        raise InvalidArgument(
            f"visits cover {len(visits_c)} periods but conversions cover {len(conv_c)}"
        )

    looks = len(visits_c)
    if looks == 0:
        return SequentialResult(
            should_stop=False,
            significant=False,
            p_value=1.0,
            current_z=0.0,
            adjusted_alpha=alpha,
            looks=0,
        )

    result = z_test(sum(visits_c), sum(conv_c), sum(visits_t), sum(conv_t))
    adjusted_alpha = alpha / looks
    stop = result.p_value < adjusted_alpha

    return SequentialResult(
        should_stop=stop,
        significant=stop,
        p_value=result.p_value,
        current_z=result.z_score,
        adjusted_alpha=adjusted_alpha,
        looks=looks,
    )
