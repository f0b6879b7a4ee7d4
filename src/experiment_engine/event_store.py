"""
Append-only event ledger for outreach experiments.

Records funnel events per test, folds them into per-variant aggregates on
demand, exposes them as pandas frames (optionally by time window or bucketed
into periods for sequential analysis), and pushes new events to subscribers.
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .exceptions import InvalidArgument, InvalidEvent
from .schema import (
    ArmType,
    EventType,
    ExperimentEvent,
    Metric,
    VariantAggregate,
)
from .subscriptions import ErrorHandler, EventHandler, SubscriberRegistry, Subscription

logger = logging.getLogger(__name__)

EVENT_COLUMNS = [
    "test_id",
    "variant_id",
    "participant_id",
    "sequence_id",
    "touch_id",
    "event_type",
    "created_at",
    "metadata",
]

_EVENT_TYPES = [e.value for e in EventType]


def validate_event(event: ExperimentEvent) -> ExperimentEvent:
    """
    Check an event before persistence.

    Returns:
        A normalized copy (EventType member, read-only private metadata)

    Raises:
        InvalidEvent: on unknown event type or missing required field
    """
    if not isinstance(event, ExperimentEvent):
        raise InvalidEvent(f"Expected ExperimentEvent, got {type(event).__name__}")
    for name in ("test_id", "variant_id", "participant_id"):
        value = getattr(event, name)
        if not isinstance(value, str) or not value:
            raise InvalidEvent(f"Event field {name} must be a non-empty string")
    try:
        event_type = EventType(event.event_type)
    except ValueError:
        raise InvalidEvent(
            f"Unknown event_type {event.event_type!r}; expected one of {_EVENT_TYPES}"
        ) from None
    if event.metadata is not None and not isinstance(event.metadata, Mapping):
        raise InvalidEvent("Event metadata must be a mapping")
    if not isinstance(event.created_at, datetime):
        raise InvalidEvent("Event created_at must be a datetime")
    return replace(
        event,
        event_type=event_type,
        metadata=MappingProxyType(dict(event.metadata or {})),
    )


def _event_to_row(evt: ExperimentEvent) -> dict:
    return {
        "test_id": evt.test_id,
        "variant_id": evt.variant_id,
        "participant_id": evt.participant_id,
        "sequence_id": evt.sequence_id,
        "touch_id": evt.touch_id,
        "event_type": evt.event_type.value,
        "created_at": evt.created_at,
        "metadata": dict(evt.metadata),
    }


def _frame(events: Sequence[ExperimentEvent]) -> pd.DataFrame:
    df = pd.DataFrame([_event_to_row(e) for e in events], columns=EVENT_COLUMNS)
    if not df.empty:
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
    return df


def _as_utc(ts) -> pd.Timestamp:
    ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def _check_freq(freq: str) -> None:
    try:
        pd.Period("2000-01-01", freq=freq)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"Unsupported period frequency {freq!r}: {exc}") from None


def _period_start(created_at: pd.Series, freq: str) -> pd.Series:
    """Start of the calendar period holding each UTC timestamp."""
    naive = created_at.dt.tz_convert("UTC").dt.tz_localize(None)
    return naive.dt.to_period(freq).dt.start_time.dt.tz_localize("UTC")


class EventLedger:
    """
    In-process ledger of experiment events.

    Writes are serialized by one lock; reads work on a snapshot of completed
    writes. Subscribers are notified asynchronously in record order.
    """

    def __init__(self, error_handler: Optional[ErrorHandler] = None):
        self._lock = threading.RLock()
        self._events: Dict[str, List[ExperimentEvent]] = {}
        self._variant_names: Dict[str, Dict[str, str]] = {}
        self._names_version: Dict[str, int] = {}
        # test_id -> (event count, names version, aggregates)
        self._cache: Dict[str, Tuple[int, int, Dict[str, VariantAggregate]]] = {}
        self._subscribers = SubscriberRegistry(error_handler)

    # -- writes ---------------------------------------------------------------

    def record(self, event: ExperimentEvent) -> ExperimentEvent:
        """
        Append one event.

        Raises:
            InvalidEvent: if the event fails validation (nothing is stored)
        """
        try:
            evt = validate_event(event)
        except InvalidEvent as exc:
            logger.warning(f"Rejected event: {exc}")
            raise
        with self._lock:
            self._events.setdefault(evt.test_id, []).append(evt)
            self._subscribers.publish([evt])
        logger.debug(
            f"Recorded {evt.event_type.value} for {evt.participant_id} "
            f"in {evt.test_id}/{evt.variant_id}"
        )
        return evt

    def record_batch(self, events: Sequence[ExperimentEvent]) -> int:
        """
        Append a batch of events, all or nothing.

        Returns:
            Number of events appended

        Raises:
            InvalidEvent: if any event fails validation (no event is stored)
        """
        validated = []
        for i, event in enumerate(events):
            try:
                validated.append(validate_event(event))
            except InvalidEvent as exc:
                logger.warning(f"Rejected batch of {len(events)} events: index {i}: {exc}")
                raise InvalidEvent(f"Batch rejected, event {i} invalid: {exc}") from exc

        with self._lock:
            for evt in validated:
                self._events.setdefault(evt.test_id, []).append(evt)
            self._subscribers.publish(validated)

        logger.info(f"Recorded batch of {len(validated)} events")
        return len(validated)

    def name_variants(self, test_id: str, names: Dict[str, str]) -> None:
        """Register display names for a test's variant ids."""
        with self._lock:
            self._variant_names.setdefault(test_id, {}).update(names)
            self._names_version[test_id] = self._names_version.get(test_id, 0) + 1
            self._cache.pop(test_id, None)

    # -- reads ----------------------------------------------------------------

    def events(self, test_id: str) -> Tuple[ExperimentEvent, ...]:
        """Snapshot of a test's events in record order."""
        with self._lock:
            return tuple(self._events.get(test_id, ()))

    def event_count(self, test_id: str) -> int:
        with self._lock:
            return len(self._events.get(test_id, ()))

    def test_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._events)

    def events_frame(
        self,
        test_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """
        Read a test's events as a DataFrame, optionally filtered by time.

        Args:
            test_id: Test identifier
            start: Optional start of time window (inclusive)
            end: Optional end of time window (inclusive)

        Returns:
            DataFrame with one row per event (EVENT_COLUMNS)
        """
        df = _frame(self.events(test_id))
        if not df.empty:
            if start is not None:
                df = df[df["created_at"] >= _as_utc(start)]
            if end is not None:
                df = df[df["created_at"] <= _as_utc(end)]
        return df

    def aggregate(self, test_id: str) -> Dict[str, VariantAggregate]:
        """
        Fold every stored event of a test into per-variant counters.

        Cached by the number of events seen and the variant-name version; the
        ledger is append-only so the count identifies the event state.

        Returns:
            Mapping variant_id -> VariantAggregate
        """
        with self._lock:
            snapshot = tuple(self._events.get(test_id, ()))
            names = dict(self._variant_names.get(test_id, {}))
            version = self._names_version.get(test_id, 0)
            cached = self._cache.get(test_id)
        if cached is not None and cached[:2] == (len(snapshot), version):
            return dict(cached[2])

        result = self._fold(test_id, snapshot, names)
        with self._lock:
            # A rename during the fold makes this result stale
            if self._names_version.get(test_id, 0) == version:
                current = self._cache.get(test_id)
                if current is None or current[0] <= len(snapshot):
                    self._cache[test_id] = (len(snapshot), version, result)
        return dict(result)

    @staticmethod
    def _fold(
        test_id: str,
        events: Sequence[ExperimentEvent],
        names: Dict[str, str],
    ) -> Dict[str, VariantAggregate]:
        if not events:
            return {}
        df = _frame(events)
        counts = pd.crosstab(df["variant_id"], df["event_type"]).reindex(
            columns=_EVENT_TYPES, fill_value=0
        )
        result = {}
        for variant_id, row in counts.iterrows():
            result[variant_id] = VariantAggregate(
                test_id=test_id,
                variant_id=variant_id,
                variant_name=names.get(variant_id, variant_id),
                **{etype.value: int(row[etype.value]) for etype in EventType},
            )
        return result

    def period_series(
        self,
        test_id: str,
        control_variant: str,
        treatment_variant: str,
        metric: Metric = Metric.CONVERSION_RATE,
        freq: str = "D",
    ) -> Tuple[Dict[str, List[int]], Dict[str, List[int]]]:
        """
        Bucket two variants' events into periods for sequential testing.

        Visits are sent counts, conversions are counts of the metric's event
        type; both are aligned on the union of periods that saw any event.
        Periods are calendar buckets of ``freq`` ("D", "W", ...) in UTC.

        Returns:
            Tuple of (visits, conversions), each {"control": [...], "treatment": [...]}
        """
        event_type = Metric(metric).event_type.value
        _check_freq(freq)
        df = self.events_frame(test_id)
        arms = {control_variant: ArmType.CONTROL.value, treatment_variant: ArmType.TREATMENT.value}
        empty = {ArmType.CONTROL.value: [], ArmType.TREATMENT.value: []}
        if df.empty:
            return dict(empty), {k: list(v) for k, v in empty.items()}

        df = df[df["variant_id"].isin(arms) & df["event_type"].isin([EventType.SENT.value, event_type])]
        if df.empty:
            return dict(empty), {k: list(v) for k, v in empty.items()}

        df = df.assign(
            period=_period_start(df["created_at"], freq),
            arm=df["variant_id"].map(arms),
        )
        periods = sorted(df["period"].unique())
        table = df.pivot_table(
            index="period",
            columns=["event_type", "arm"],
            values="participant_id",
            aggfunc="count",
            fill_value=0,
        )

        def _series(etype: str, arm: str) -> List[int]:
            if (etype, arm) not in table.columns:
                return [0] * len(periods)
            return [int(v) for v in table[(etype, arm)].reindex(periods, fill_value=0)]

        visits = {arm: _series(EventType.SENT.value, arm) for arm in empty}
        conversions = {arm: _series(event_type, arm) for arm in empty}
        return visits, conversions

    # -- subscriptions --------------------------------------------------------

    def subscribe(self, test_id: str, handler: EventHandler) -> Subscription:
        """Register a handler called once per new event of ``test_id``."""
        return self._subscribers.subscribe(test_id, handler)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued subscriber deliveries; False on timeout."""
        return self._subscribers.drain(timeout)

    def close(self) -> None:
        self._subscribers.close()

    def __enter__(self) -> "EventLedger":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
