"""Outreach experiment engine: assignment, event ledger and A/B inference."""

from .exceptions import InvalidArgument, InvalidEvent, SubscriberFailure
from .schema import (
    EventType,
    ArmType,
    Metric,
    ExperimentEvent,
    VariantAggregate,
    SignificanceResult,
    ExperimentConfig,
    AnalysisResult,
)
from .assignment import assign_variant, assign_participants, assign_for_config
from .event_store import EventLedger, validate_event
from .subscriptions import Subscription
from .analyze import analyze_test, experiment_progress

__all__ = [
    "InvalidArgument",
    "InvalidEvent",
    "SubscriberFailure",
    "EventType",
    "ArmType",
    "Metric",
    "ExperimentEvent",
    "VariantAggregate",
    "SignificanceResult",
    "ExperimentConfig",
    "AnalysisResult",
    "assign_variant",
    "assign_participants",
    "assign_for_config",
    "EventLedger",
    "validate_event",
    "Subscription",
    "analyze_test",
    "experiment_progress",
]
