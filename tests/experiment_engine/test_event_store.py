"""Tests for the event ledger: validation, aggregation, frames and subscriptions."""
import logging
import threading
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest
from src.experiment_engine.event_store import EVENT_COLUMNS, EventLedger, validate_event
from src.experiment_engine.exceptions import InvalidArgument, InvalidEvent, SubscriberFailure
from src.experiment_engine.schema import EventType, ExperimentEvent, Metric

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _evt(variant="control", pid="p1", etype=EventType.SENT, test_id="t1", at=T0, **kw):
    return ExperimentEvent(
        test_id=test_id,
        variant_id=variant,
        participant_id=pid,
        event_type=etype,
        created_at=at,
        **kw,
    )


@pytest.fixture
def ledger():
    led = EventLedger()
    yield led
    led.close()


def test_validate_event_normalizes_type():
    """String event types become EventType members."""
    evt = validate_event(_evt(etype="replied"))
    assert evt.event_type is EventType.REPLIED


@pytest.mark.parametrize(
    "kwargs",
    [
        {"etype": "bounced"},
        {"variant": ""},
        {"pid": ""},
        {"test_id": ""},
        {"metadata": ["not", "a", "mapping"]},
        {"at": "2024-03-01"},
    ],
)
def test_validate_event_rejects(kwargs):
    with pytest.raises(InvalidEvent):
        validate_event(_evt(**kwargs))


def test_invalid_event_is_invalid_argument():
    assert issubclass(InvalidEvent, InvalidArgument)


def test_record_and_read_back(ledger):
    ledger.record(_evt())
    ledger.record(_evt(etype=EventType.OPENED))
    events = ledger.events("t1")
    assert [e.event_type for e in events] == [EventType.SENT, EventType.OPENED]
    assert ledger.event_count("t1") == 2
    assert ledger.test_ids() == ["t1"]
    assert ledger.events("other") == ()


def test_record_rejects_without_storing(ledger):
    with pytest.raises(InvalidEvent):
        ledger.record(_evt(etype="bounced"))
    assert ledger.event_count("t1") == 0


def test_batch_is_all_or_nothing(ledger):
    """One invalid event among nine valid ones stores nothing."""
    ledger.record(_evt(pid="seed"))
    before = ledger.aggregate("t1")
    batch = [_evt(pid=f"p{i}") for i in range(9)]
    batch.insert(4, _evt(pid="bad", etype="bounced"))
    with pytest.raises(InvalidEvent, match="event 4"):
        ledger.record_batch(batch)
    assert ledger.event_count("t1") == 1
    assert ledger.aggregate("t1") == before


def test_batch_returns_count(ledger):
    assert ledger.record_batch([_evt(pid=f"p{i}") for i in range(5)]) == 5
    assert ledger.record_batch([]) == 0


def test_aggregate_counts_and_rates(ledger):
    ledger.record_batch(
        [_evt("control", f"c{i}") for i in range(10)]
        + [_evt("control", f"c{i}", EventType.OPENED) for i in range(4)]
        + [_evt("control", "c0", EventType.REPLIED)]
        + [_evt("treatment", f"t{i}") for i in range(5)]
        + [_evt("treatment", f"t{i}", EventType.REPLIED) for i in range(2)]
    )
    aggs = ledger.aggregate("t1")
    assert set(aggs) == {"control", "treatment"}
    c, t = aggs["control"], aggs["treatment"]
    assert (c.sent, c.opened, c.replied, c.clicked) == (10, 4, 1, 0)
    assert c.open_rate == pytest.approx(0.4)
    assert c.reply_rate == pytest.approx(0.1)
    assert t.reply_rate == pytest.approx(0.4)
    assert t.rate_for(Metric.CONVERSION_RATE) == 0


def test_aggregate_is_idempotent(ledger):
    """Repeated folds give identical results; new events change them."""
    ledger.record_batch([_evt(pid=f"p{i}") for i in range(3)])
    first = ledger.aggregate("t1")
    assert ledger.aggregate("t1") == first
    ledger.record(_evt(pid="p9"))
    assert ledger.aggregate("t1")["control"].sent == 4


def test_aggregate_empty_test(ledger):
    assert ledger.aggregate("missing") == {}


def test_zero_sent_guards_division(ledger):
    """Rates divide by max(sent, 1)."""
    ledger.record(_evt(etype=EventType.REPLIED))
    agg = ledger.aggregate("t1")["control"]
    assert agg.sent == 0
    assert agg.reply_rate == 1.0


def test_duplicates_are_kept(ledger):
    """The ledger does not deduplicate."""
    ledger.record(_evt())
    ledger.record(_evt())
    assert ledger.aggregate("t1")["control"].sent == 2


def test_name_variants(ledger):
    ledger.record(_evt())
    assert ledger.aggregate("t1")["control"].variant_name == "control"
    ledger.name_variants("t1", {"control": "Short subject"})
    assert ledger.aggregate("t1")["control"].variant_name == "Short subject"


def test_events_frame_time_filter(ledger):
    ledger.record_batch([_evt(pid=f"p{d}", at=T0 + timedelta(days=d)) for d in range(5)])
    df = ledger.events_frame("t1")
    assert list(df.columns) == EVENT_COLUMNS
    assert len(df) == 5
    window = ledger.events_frame("t1", start=T0 + timedelta(days=1), end=T0 + timedelta(days=3))
    assert sorted(window["participant_id"]) == ["p1", "p2", "p3"]
    naive = ledger.events_frame("t1", start=datetime(2024, 3, 4))
    assert len(naive) == 2
    assert ledger.events_frame("missing").empty


def test_period_series(ledger):
    events = []
    for day in range(3):
        at = T0 + timedelta(days=day)
        events += [_evt("A", f"a{day}{i}", at=at) for i in range(10)]
        events += [_evt("B", f"b{day}{i}", at=at) for i in range(10)]
        events += [_evt("B", f"b{day}{i}", EventType.CONVERTED, at=at) for i in range(day + 1)]
    events.append(_evt("C", "c1"))
    ledger.record_batch(events)

    visits, conversions = ledger.period_series("t1", "A", "B")
    assert visits == {"control": [10, 10, 10], "treatment": [10, 10, 10]}
    assert conversions == {"control": [0, 0, 0], "treatment": [1, 2, 3]}


def test_period_series_empty(ledger):
    visits, conversions = ledger.period_series("t1", "A", "B")
    assert visits == {"control": [], "treatment": []}
    assert conversions == {"control": [], "treatment": []}


def test_subscribe_receives_events_in_order(ledger):
    received = []
    ledger.subscribe("t1", received.append)
    ledger.record_batch([_evt(pid=f"p{i}") for i in range(20)])
    ledger.record(_evt(pid="last"))
    ledger.record(_evt(test_id="other"))
    assert ledger.flush(timeout=5)
    assert [e.participant_id for e in received] == [f"p{i}" for i in range(20)] + ["last"]


def test_unsubscribe_stops_delivery(ledger):
    received = []
    sub = ledger.subscribe("t1", received.append)
    ledger.record(_evt(pid="before"))
    assert ledger.flush(timeout=5)
    sub.unsubscribe()
    sub.unsubscribe()
    assert not sub.active
    ledger.record(_evt(pid="after"))
    assert ledger.flush(timeout=5)
    assert [e.participant_id for e in received] == ["before"]


def test_subscription_context_manager(ledger):
    with ledger.subscribe("t1", lambda e: None) as sub:
        assert sub.active
    assert not sub.active


def test_failing_handler_is_logged_and_kept(caplog):
    """A raising handler does not block the writer or lose its subscription."""
    failures = []
    led = EventLedger(error_handler=failures.append)
    calls = []

    def flaky(event):
        calls.append(event.participant_id)
        raise RuntimeError("boom")

    led.subscribe("t1", flaky)
    with caplog.at_level(logging.ERROR):
        led.record(_evt(pid="p1"))
        led.record(_evt(pid="p2"))
        assert led.flush(timeout=5)
    led.close()

    assert calls == ["p1", "p2"]
    assert led.event_count("t1") == 2
    assert len(failures) == 2
    assert isinstance(failures[0], SubscriberFailure)
    assert isinstance(failures[0].original, RuntimeError)
    assert failures[0].event.participant_id == "p1"
    assert any("boom" in r.getMessage() for r in caplog.records)


def test_other_subscribers_unaffected_by_failure(ledger):
    received = []

    def broken(event):
        raise ValueError("nope")

    ledger.subscribe("t1", broken)
    ledger.subscribe("t1", received.append)
    ledger.record(_evt())
    assert ledger.flush(timeout=5)
    assert len(received) == 1


def test_subscriber_does_not_block_writer(ledger):
    """Writes return while a handler is still busy."""
    release = threading.Event()
    ledger.subscribe("t1", lambda e: release.wait(5))
    ledger.record_batch([_evt(pid=f"p{i}") for i in range(3)])
    assert ledger.event_count("t1") == 3
    assert not ledger.flush(timeout=0.05)
    release.set()
    assert ledger.flush(timeout=5)


def test_subscribe_requires_callable(ledger):
    with pytest.raises(TypeError):
        ledger.subscribe("t1", "not callable")


def test_event_dict_round_trip():
    evt = _evt(etype=EventType.CLICKED, touch_id="touch-2", metadata={"link": "pricing"})
    d = evt.to_dict()
    assert d["event_type"] == "clicked"
    assert ExperimentEvent.from_dict(d) == evt
    assert isinstance(pd.Timestamp(d["created_at"]), pd.Timestamp)


def test_event_from_dict_accepts_z_suffix():
    """Producers often send UTC as a trailing Z."""
    evt = ExperimentEvent.from_dict({
        "test_id": "t1",
        "variant_id": "control",
        "participant_id": "p1",
        "event_type": "sent",
        "created_at": "2024-03-01T09:00:00Z",
    })
    assert evt.created_at == T0


def test_recorded_metadata_is_read_only(ledger):
    """Recorded events cannot be changed through readers, handlers or the caller's dict."""
    received = []
    ledger.subscribe("t1", received.append)
    metadata = {"k": 1}
    ledger.record(_evt(metadata=metadata))
    metadata["k"] = 2
    assert ledger.flush(timeout=5)

    stored = ledger.events("t1")[0]
    with pytest.raises(TypeError):
        stored.metadata["k"] = 999
    with pytest.raises(TypeError):
        received[0].metadata["k"] = 999
    assert dict(ledger.events("t1")[0].metadata) == {"k": 1}
    assert ledger.events_frame("t1")["metadata"].iloc[0] == {"k": 1}


def test_rename_during_fold_is_not_lost(ledger, monkeypatch):
    """A rename racing an aggregate shows up on the next read."""
    ledger.record(_evt(variant="a"))
    fold = EventLedger._fold

    def fold_then_rename(test_id, events, names):
        result = fold(test_id, events, names)
        monkeypatch.setattr(ledger, "_fold", fold)
        ledger.name_variants("t1", {"a": "Renamed"})
        return result

    monkeypatch.setattr(ledger, "_fold", fold_then_rename)
    ledger.aggregate("t1")
    assert ledger.aggregate("t1")["a"].variant_name == "Renamed"


def test_period_series_weekly(ledger):
    """Calendar weeks (Monday start) bucket a two-week test into two looks."""
    monday = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
    events = []
    for day in range(14):
        at = monday + timedelta(days=day)
        events += [_evt("A", f"a{day}", at=at), _evt("B", f"b{day}", at=at)]
        if day < 7:
            events.append(_evt("B", f"b{day}", EventType.CONVERTED, at=at))
    ledger.record_batch(events)

    visits, conversions = ledger.period_series("t1", "A", "B", freq="W")
    assert visits == {"control": [7, 7], "treatment": [7, 7]}
    assert conversions == {"control": [0, 0], "treatment": [7, 0]}


def test_period_series_rejects_unknown_frequency(ledger):
    ledger.record(_evt())
    with pytest.raises(InvalidArgument):
        ledger.period_series("t1", "control", "treatment", freq="fortnightly")


def test_flush_timeout_leaves_no_waiting_threads(ledger):
    """Timed-out flushes do not leave helper threads behind."""
    release = threading.Event()
    ledger.subscribe("t1", lambda e: release.wait(5))
    ledger.record(_evt())
    before = threading.active_count()
    for _ in range(5):
        assert not ledger.flush(timeout=0.01)
    assert threading.active_count() == before
    release.set()
    assert ledger.flush(timeout=5)


def test_concurrent_writes_reads_and_unsubscribes():
    """Readers never see part of a batch while subscribers come and go."""
    batch_size, n_batches = 10, 100
    led = EventLedger()
    received = []
    led.subscribe("t1", received.append)
    done = threading.Event()
    partial = []

    def writer():
        try:
            for b in range(n_batches):
                led.record_batch([_evt(pid=f"b{b}-{i}") for i in range(batch_size)])
        finally:
            done.set()

    def reader():
        while not done.is_set():
            agg = led.aggregate("t1").get("control")
            sent = agg.sent if agg else 0
            if sent % batch_size:
                partial.append(sent)

    def churner():
        while not done.is_set():
            sub = led.subscribe("t1", lambda e: None)
            sub.unsubscribe()

    threads = [threading.Thread(target=fn) for fn in (writer, reader, reader, churner)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert not partial
    assert led.aggregate("t1")["control"].sent == batch_size * n_batches
    assert led.flush(timeout=10)
    assert len(received) == batch_size * n_batches
    led.close()
