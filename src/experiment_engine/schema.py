"""
Experiment data models for the outreach experiment engine.

Dataclass schemas for experiment configuration, funnel events, per-variant
aggregates, and the results produced by the statistics module.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import InvalidArgument


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    """Funnel event type. Closed set."""
    SENT = "sent"
    OPENED = "opened"
    CLICKED = "clicked"
    REPLIED = "replied"
    CONVERTED = "converted"
    UNSUBSCRIBED = "unsubscribed"


class ArmType(str, Enum):
    """Experiment arm type."""
    CONTROL = "control"
    TREATMENT = "treatment"


class Metric(str, Enum):
    """Rate metric; numerator is one event type, denominator is sent."""
    OPEN_RATE = "open_rate"
    CLICK_RATE = "click_rate"
    REPLY_RATE = "reply_rate"
    CONVERSION_RATE = "conversion_rate"
    UNSUBSCRIBE_RATE = "unsubscribe_rate"

    @property
    def event_type(self) -> EventType:
        return _METRIC_EVENTS[self]


_METRIC_EVENTS = {
    Metric.OPEN_RATE: EventType.OPENED,
    Metric.CLICK_RATE: EventType.CLICKED,
    Metric.REPLY_RATE: EventType.REPLIED,
    Metric.CONVERSION_RATE: EventType.CONVERTED,
    Metric.UNSUBSCRIBE_RATE: EventType.UNSUBSCRIBED,
}


@dataclass(frozen=True)
class ExperimentEvent:
    """Immutable funnel fact for one participant in one variant."""
    test_id: str
    variant_id: str
    participant_id: str  # e.g., prospect id
    event_type: EventType
    sequence_id: str = ""
    touch_id: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)  # read-only once recorded
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "test_id": self.test_id,
            "variant_id": self.variant_id,
            "participant_id": self.participant_id,
            "sequence_id": self.sequence_id,
            "touch_id": self.touch_id,
            "event_type": EventType(self.event_type).value,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExperimentEvent":
        """Build from a producer row; event_type is validated by the ledger."""
        created_at = d.get("created_at")
        if isinstance(created_at, str):
            if created_at.endswith("Z"):
                created_at = created_at[:-1] + "+00:00"
            created_at = datetime.fromisoformat(created_at)
        kwargs = {}
        if created_at is not None:
            kwargs["created_at"] = created_at
        return cls(
            test_id=d.get("test_id", ""),
            variant_id=d.get("variant_id", ""),
            participant_id=d.get("participant_id", ""),
            event_type=d.get("event_type", ""),
            sequence_id=d.get("sequence_id") or "",
            touch_id=d.get("touch_id"),
            metadata=dict(d.get("metadata") or {}),
            **kwargs,
        )


@dataclass(frozen=True)
class VariantAggregate:
    """Per-variant event counters folded from the ledger."""
    test_id: str
    variant_id: str
    variant_name: str
    sent: int = 0
    opened: int = 0
    clicked: int = 0
    replied: int = 0
    converted: int = 0
    unsubscribed: int = 0

    def count(self, event_type: EventType) -> int:
        return getattr(self, EventType(event_type).value)

    def count_for(self, metric: Metric) -> int:
        return self.count(Metric(metric).event_type)

    def rate_for(self, metric: Metric) -> float:
        # max(sent, 1) guards the division only
        return self.count_for(metric) / max(self.sent, 1)

    @property
    def open_rate(self) -> float:
        return self.rate_for(Metric.OPEN_RATE)

    @property
    def click_rate(self) -> float:
        return self.rate_for(Metric.CLICK_RATE)

    @property
    def reply_rate(self) -> float:
        return self.rate_for(Metric.REPLY_RATE)

    @property
    def conversion_rate(self) -> float:
        return self.rate_for(Metric.CONVERSION_RATE)

    @property
    def unsubscribe_rate(self) -> float:
        return self.rate_for(Metric.UNSUBSCRIBE_RATE)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "test_id": self.test_id,
            "variant_id": self.variant_id,
            "variant_name": self.variant_name,
        }
        for etype in EventType:
            d[etype.value] = self.count(etype)
        for metric in Metric:
            d[metric.value] = self.rate_for(metric)
        return d


@dataclass
class SignificanceResult:
    """Two-proportion z-test snapshot."""
    z_score: float
    p_value: float
    confidence_interval: Tuple[float, float]
    standard_error: float
    significant: bool
    confidence_level: float
    winner: Optional[ArmType] = None
    absolute_difference: float = 0.0
    relative_lift: float = 0.0  # percent
    control_sample: int = 0
    treatment_sample: int = 0
    minimum_detectable_effect: Optional[float] = None
    recommended_sample_size: Optional[int] = None
    degenerate: bool = False  # neutral result, no usable data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "z_score": self.z_score,
            "p_value": self.p_value,
            "confidence_interval": list(self.confidence_interval),
            "standard_error": self.standard_error,
            "significant": self.significant,
            "confidence_level": self.confidence_level,
            "winner": self.winner.value if self.winner else None,
            "absolute_difference": self.absolute_difference,
            "relative_lift": self.relative_lift,
            "control_sample": self.control_sample,
            "treatment_sample": self.treatment_sample,
            "minimum_detectable_effect": self.minimum_detectable_effect,
            "recommended_sample_size": self.recommended_sample_size,
            "degenerate": self.degenerate,
        }


@dataclass
class ChiSquareResult:
    """Chi-square test of independence."""
    chi2: float
    p_value: float
    significant: bool
    degrees_of_freedom: int


@dataclass
class BayesianResult:
    """Monte Carlo Beta-Binomial comparison."""
    probability_treatment_wins: float
    expected_lift: float  # relative, e.g. 0.5 = +50%
    credible_interval: Tuple[float, float]
    simulations: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probability_treatment_wins": self.probability_treatment_wins,
            "expected_lift": self.expected_lift,
            "credible_interval": list(self.credible_interval),
            "simulations": self.simulations,
        }


@dataclass
class SequentialResult:
    """Repeated-looks significance check."""
    should_stop: bool
    significant: bool
    p_value: float
    current_z: float
    adjusted_alpha: float
    looks: int


@dataclass
class DurationEstimate:
    days: int
    weeks: int
    recommended: str


@dataclass
class PracticalSampleSize:
    per_variant: int
    total: int
    recommendations: List[str] = field(default_factory=list)
    effect_size: float = 0.0  # Cohen's h


@dataclass
class ExperimentConfig:
    """Configuration for an outreach A/B test."""
    test_id: str
    name: str
    variants: List[str]
    weights: Optional[List[float]] = None
    control_variant: Optional[str] = None  # defaults to variants[0]
    primary_metric: Metric = Metric.REPLY_RATE
    confidence_level: float = 0.95
    power: float = 0.8
    min_sample: int = 100
    max_sample: Optional[int] = None
    min_practical_lift: float = 5.0  # percent, |lift| a winner must exceed
    description: str = ""

    def __post_init__(self):
        if not self.test_id:
            raise InvalidArgument("test_id must be non-empty")
        if len(self.variants) < 2:
            raise InvalidArgument("Experiment must have at least 2 variants")
        if len(set(self.variants)) != len(self.variants):
            raise InvalidArgument("Variant ids must be unique")
        if self.weights is not None:
            if len(self.weights) != len(self.variants):
                raise InvalidArgument(
                    f"Got {len(self.weights)} weights for {len(self.variants)} variants"
                )
            if any(not math.isfinite(w) or w <= 0 for w in self.weights):
                raise InvalidArgument("Variant weights must be positive")
        if self.control_variant is None:
            self.control_variant = self.variants[0]
        elif self.control_variant not in self.variants:
            raise InvalidArgument(
                f"Control variant {self.control_variant!r} is not one of {self.variants}"
            )
        self.primary_metric = Metric(self.primary_metric)
        if not self.min_practical_lift >= 0:
            raise InvalidArgument("min_practical_lift must be non-negative")
        if not 0 < self.confidence_level < 1:
            raise InvalidArgument("confidence_level must be in (0, 1)")

    @property
    def treatment_variants(self) -> List[str]:
        return [v for v in self.variants if v != self.control_variant]

    def weight_of(self, variant_id: str) -> float:
        if self.weights is None:
            return 1.0
        return self.weights[self.variants.index(variant_id)]


@dataclass
class VariantResult:
    """One variant's standing against the control."""
    variant_id: str
    variant_name: str
    is_control: bool
    sample_size: int
    conversions: int
    rate: float
    metrics: Dict[str, float] = field(default_factory=dict)
    significance: Optional[SignificanceResult] = None
    power: Optional[float] = None
    bayesian: Optional[BayesianResult] = None
    lift_vs_control: Optional[float] = None  # percent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "variant_name": self.variant_name,
            "is_control": self.is_control,
            "sample_size": self.sample_size,
            "conversions": self.conversions,
            "rate": self.rate,
            "metrics": dict(self.metrics),
            "significance": self.significance.to_dict() if self.significance else None,
            "power": self.power,
            "bayesian": self.bayesian.to_dict() if self.bayesian else None,
            "lift_vs_control": self.lift_vs_control,
        }


@dataclass
class AnalysisResult:
    """Complete test analysis result."""
    test_id: str
    primary_metric: Metric
    control_variant: str
    analysis_timestamp: datetime = field(default_factory=_utcnow)
    variants: List[VariantResult] = field(default_factory=list)
    total_sent: int = 0

    # SRM
    srm_passed: bool = True
    srm_p_value: Optional[float] = None

    winner_variant_id: Optional[str] = None

    # Recommendation
    recommendation: str = "iterate"  # ship, hold, iterate
    recommendation_reason: str = ""

    def variant(self, variant_id: str) -> Optional[VariantResult]:
        for v in self.variants:
            if v.variant_id == variant_id:
                return v
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "test_id": self.test_id,
            "primary_metric": self.primary_metric.value,
            "control_variant": self.control_variant,
            "analysis_timestamp": self.analysis_timestamp.isoformat(),
            "total_sent": self.total_sent,
            "srm_passed": self.srm_passed,
            "srm_p_value": self.srm_p_value,
            "winner_variant_id": self.winner_variant_id,
            "recommendation": self.recommendation,
            "recommendation_reason": self.recommendation_reason,
            "variants": [v.to_dict() for v in self.variants],
        }
