import queue
import time

import pytest

from meshserving.cached_source import SourceAlreadyStartedError
from meshserving.kube import NamespacedName
from meshserving.predictor import Predictor
from meshserving.source import EventType, PredictorStreamEvent
from meshserving.stream_source import EventStreamClosedError, StreamPredictorSource

NS = "test-namespace"


class FakeUpdater:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    def update_status(self, predictor):
        self.calls.append(predictor)
        return self.result


def make(name, rv):
    return Predictor(name=name, namespace=NS, resource_version=rv)


def update(name, rv):
    return PredictorStreamEvent(EventType.UPDATE, make(name, rv))


def drain(out, count, timeout=2.0):
    names = []
    deadline = time.monotonic() + timeout
    while len(names) < count:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            names.append(out.get(timeout=remaining))
        except queue.Empty:
            break
    return names


def started(events, updater=None):
    source = StreamPredictorSource("s", "Stream", events, updater or FakeUpdater())
    registry, out = source.start_watch(timeout=5)
    return source, registry, out


def test_initial_events_are_cached_and_emitted():
    events = queue.Queue()
    events.put(update("a", "1"))
    events.put(update("b", "2"))
    source, registry, out = started(events)
    assert registry is source
    assert set(drain(out, 2)) == {NamespacedName(NS, "a"), NamespacedName(NS, "b")}
    assert registry.get(NamespacedName(NS, "a")).resource_version == "1"
    assert registry.source_name() == "Stream"


def test_stale_update_is_ignored():
    events = queue.Queue()
    events.put(update("a", "5"))
    events.put(update("a", "3"))
    _, registry, out = started(events)
    assert drain(out, 2, timeout=0.5) == [NamespacedName(NS, "a")]
    assert registry.get(NamespacedName(NS, "a")).resource_version == "5"


def test_events_after_start_flow_through():
    events = queue.Queue()
    events.put(update("a", "1"))
    _, registry, out = started(events)
    assert drain(out, 1) == [NamespacedName(NS, "a")]
    events.put(update("c", "2"))
    assert drain(out, 1) == [NamespacedName(NS, "c")]
    assert registry.get(NamespacedName(NS, "c")).name == "c"


def test_overflow_beyond_queue_capacity_is_not_lost():
    events = queue.Queue()
    names = [f"p{i}" for i in range(200)]
    for i, name in enumerate(names, start=1):
        events.put(update(name, str(i)))
    _, _, out = started(events)
    received = drain(out, len(names), timeout=5)
    assert received == [NamespacedName(NS, n) for n in names]


def test_delete_event_hides_predictor():
    events = queue.Queue()
    events.put(update("a", "1"))
    deleted = make("a", "2")
    deleted.deletion_timestamp = time.time()
    events.put(PredictorStreamEvent(EventType.DELETE, deleted))
    _, registry, _ = started(events)
    assert registry.get(NamespacedName(NS, "a")) is None
    assert registry.find(NS, lambda p: True) is False


def test_closed_stream_before_sync_raises():
    events = queue.Queue()
    events.put(update("a", "1"))
    events.put(None)
    source = StreamPredictorSource("s", "Stream", events, FakeUpdater())
    with pytest.raises(EventStreamClosedError):
        source.start_watch(timeout=5)


def test_timeout_before_input_goes_quiet():
    source = StreamPredictorSource("s", "Stream", queue.Queue(), FakeUpdater())
    with pytest.raises(TimeoutError):
        source.start_watch(timeout=0.1)


def test_start_twice_raises():
    source, _, _ = started(queue.Queue())
    with pytest.raises(SourceAlreadyStartedError):
        source.start_watch(timeout=5)


def test_update_status_uses_updater_result():
    events = queue.Queue()
    events.put(update("a", "1"))
    newer = make("a", "2")
    newer.status = {"state": "Loaded"}
    updater = FakeUpdater((newer, "2", True))
    _, registry, _ = started(events, updater)
    assert registry.update_status(make("a", "1")) is True
    assert registry.get(NamespacedName(NS, "a")).status == {"state": "Loaded"}
    assert len(updater.calls) == 1


def test_update_status_of_vanished_predictor_marks_deleted():
    events = queue.Queue()
    events.put(update("a", "1"))
    updater = FakeUpdater((None, "7", False))
    _, registry, _ = started(events, updater)
    assert registry.update_status(make("a", "1")) is False
    assert registry.get(NamespacedName(NS, "a")) is None


def test_update_status_with_old_version_skips_updater():
    events = queue.Queue()
    events.put(update("a", "4"))
    updater = FakeUpdater((make("a", "9"), "9", True))
    _, registry, _ = started(events, updater)
    assert registry.update_status(make("a", "3")) is False
    assert updater.calls == []