"""A predictor source fed by a persistent stream of Predictor events."""

from __future__ import annotations

import queue
import threading
import time

from .cached_source import CachedPredictorSource, _StatusUpdater
from .kube import NamespacedName
from .source import PredictorStreamEvent

# Input is considered caught up once it has been quiet for this long.
_IDLE_SECONDS = 0.5
_OUT_CAPACITY = 128


class EventStreamClosedError(RuntimeError):
    """Raised when the input event stream ends before the initial sync."""


def _offer_initial(out: queue.Queue, overflow: list[NamespacedName], name: NamespacedName) -> None:
    """Queue an event without blocking, spilling to ``overflow`` once full."""
    if not overflow:
        try:
            out.put_nowait(name)
            return
        except queue.Full:
            pass
    overflow.append(name)


class StreamPredictorSource(CachedPredictorSource):
    """Predictor source built on an event stream.

    ``events`` is a ``queue.Queue`` of ``PredictorStreamEvent``; a ``None``
    item marks the end of the stream.
    """

    def __init__(
        self,
        source_id: str,
        source_name: str,
        events: queue.Queue[PredictorStreamEvent | None],
        updater: _StatusUpdater,
    ):
        super().__init__(source_id, source_name, updater)
        self._events = events

    def start_watch(
        self, timeout: float | None = None
    ) -> tuple[StreamPredictorSource, queue.Queue[NamespacedName]]:
        """Consume the initial burst of events, then keep watching in the background.

        Returns the registry and a queue of names of changed Predictors.
        Raises TimeoutError if ``timeout`` expires before the input goes quiet.
        """
        self._start()
        self._log.info("Starting PredictorSource event watch")

        out: queue.Queue[NamespacedName] = queue.Queue(maxsize=_OUT_CAPACITY)
        overflow: list[NamespacedName] = []
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            wait = _IDLE_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("timed out waiting for initial predictor events")
                wait = min(wait, remaining)
            try:
                event = self._events.get(timeout=wait)
            except queue.Empty:
                if wait < _IDLE_SECONDS:
                    raise TimeoutError("timed out waiting for initial predictor events") from None
                break
            if event is None:
                raise EventStreamClosedError("event channel closed")
            name = self.process_event(event.predictor, event.event_type)
            if name is not None:
                _offer_initial(out, overflow, name)

        threading.Thread(
            target=self._pump,
            args=(out, overflow),
            name=f"predictor-stream-{self.source_id}",
            daemon=True,
        ).start()
        return self, out

    def _pump(self, out: queue.Queue, overflow: list[NamespacedName]) -> None:
        for name in overflow:
            out.put(name)
        overflow.clear()
        while (event := self._read_event(self._events)) is not None:
            name = self.process_event(event.predictor, event.event_type)
            if name is not None:
                self._write_event(out, name)
        self._log.info("PredictorEventChan closed")