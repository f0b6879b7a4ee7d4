"""
Deterministic variant assignment for outreach experiments.

Hashes the participant id into [0, 1) and walks the cumulative variant
weights, so the same participant always lands in the same variant without
an assignment table or any coordination between instances.
"""

import hashlib
import logging
import math
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence

from .exceptions import InvalidArgument
from .schema import ExperimentConfig

logger = logging.getLogger(__name__)

_HASH_SPACE = 2 ** 64


def _hash_to_unit(participant_id: str, salt: str = "") -> float:
    """
    Deterministic hash to [0, 1).

    Same participant (and salt) always maps to the same point.
    """
    key = f"{salt}:{participant_id}" if salt else participant_id
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / _HASH_SPACE


def _check_weights(variants: Sequence[str], weights: Optional[Sequence[float]]) -> List[float]:
    if not variants:
        raise InvalidArgument("variants must be non-empty")
    if weights is None:
        return [1.0] * len(variants)
    if len(weights) != len(variants):
        raise InvalidArgument(
            f"Got {len(weights)} weights for {len(variants)} variants"
        )
    checked = [float(w) for w in weights]
    if any(not math.isfinite(w) or w <= 0 for w in checked):
        raise InvalidArgument(f"Weights must be finite and positive: {list(weights)}")
    return checked


def assign_variant(
    participant_id: str,
    variants: Sequence[str],
    weights: Optional[Sequence[float]] = None,
    salt: str = "",
) -> str:
    """
    Assign a participant to one of the variants deterministically.

    Args:
        participant_id: Stable participant identifier (e.g., prospect id)
        variants: Ordered variant names
        weights: Optional weights aligned to variants (uniform if omitted)
        salt: Optional namespace (e.g., test id) mixed into the hash

    Returns:
        The chosen variant name
    """
    if not participant_id:
        raise InvalidArgument("participant_id must be non-empty")
    checked = _check_weights(variants, weights)

    threshold = _hash_to_unit(participant_id, salt) * sum(checked)
    cumulative = 0.0
    for variant, weight in zip(variants, checked):
        cumulative += weight
        if threshold <= cumulative:
            return variant

    # Floating point rounding can leave the threshold just past the last bucket
    return variants[-1]


def assign_participants(
    participant_ids: Iterable[str],
    variants: Sequence[str],
    weights: Optional[Sequence[float]] = None,
    salt: str = "",
) -> Dict[str, str]:
    """
    Assign many participants at once.

    Returns:
        Mapping participant_id -> variant name
    """
    checked = _check_weights(variants, weights)
    assignments = {
        pid: assign_variant(pid, variants, checked, salt)
        for pid in participant_ids
    }
    counts = Counter(assignments.values())
    breakdown = ", ".join(f"{v}={counts.get(v, 0)}" for v in variants)
    logger.info(f"Assignment complete: {len(assignments)} participants -> {breakdown}")
    return assignments


def assign_for_config(participant_id: str, config: ExperimentConfig) -> str:
    """Assign using a test's configured variants and weights."""
    return assign_variant(participant_id, config.variants, config.weights)
