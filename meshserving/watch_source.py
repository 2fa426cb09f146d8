"""A predictor source built on refresh-and-watch semantics."""

from __future__ import annotations

import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .cached_source import CachedPredictorSource
from .kube import NamespacedName
from .predictor import Predictor, deleted_predictor
from .source import EventType, PredictorStreamEvent
from .stream_source import _OUT_CAPACITY, _offer_initial


class TooOldError(Exception):
    """Raised by a watch when the requested resource version is no longer available."""

    def __init__(self, message: str = "ERR_TOO_OLD"):
        super().__init__(message)


@dataclass
class PredictorList:
    """A complete snapshot of Predictors as of ``resource_version``."""

    resource_version: str = ""
    items: list[Predictor] = field(default_factory=list)


class PredictorWatcher(ABC):
    """Backend that can list Predictors and stream changes to them."""

    @abstractmethod
    def update_status(self, predictor: Predictor) -> tuple[Predictor | None, str, bool]:
        """Conditionally update status.

        Returns the latest Predictor (None if not found), the resource version
        at which it was observed, and whether the update succeeded.
        """

    @abstractmethod
    def refresh(self, limit: int, start: str) -> PredictorList:
        """Return all Predictors at the current resource version."""

    @abstractmethod
    def watch(self, resource_version: str) -> queue.Queue[PredictorStreamEvent | None]:
        """Stream events from ``resource_version``; a ``None`` item ends the stream.

        Raises TooOldError if that version is no longer available.
        """


class WatchPredictorSource(CachedPredictorSource):
    """Predictor source that resyncs with a refresh whenever a watch falls behind."""

    def __init__(
        self,
        source_id: str,
        source_name: str,
        watcher: PredictorWatcher,
        retry_delay: float = 5.0,
    ):
        super().__init__(source_id, source_name, watcher)
        self._watcher = watcher
        self._retry_delay = retry_delay

    def start_watch(self) -> tuple[WatchPredictorSource, queue.Queue[NamespacedName]]:
        """Populate the cache, then keep it in sync in the background.

        Returns the registry and a queue of names of changed Predictors.
        """
        self._start()
        self._log.info("Starting PredictorSource event watch")
        try:
            snapshot = self._watcher.refresh(0, "")
        except Exception:
            self._started = False
            raise
        self._log.info(
            "Completed initial refresh request: %d predictors at resource version %s",
            len(snapshot.items),
            snapshot.resource_version,
        )

        out: queue.Queue[NamespacedName] = queue.Queue(maxsize=_OUT_CAPACITY)
        overflow: list[NamespacedName] = []
        with self._lock:
            for predictor in snapshot.items:
                name = predictor.key()
                self._cache[name] = predictor
                _offer_initial(out, overflow, name)

        threading.Thread(
            target=self._run,
            args=(out, overflow, snapshot.resource_version),
            name=f"predictor-watch-{self.source_id}",
            daemon=True,
        ).start()
        return self, out

    def _run(self, out: queue.Queue, overflow: list[NamespacedName], resource_version: str) -> None:
        for name in overflow:
            out.put(name)
        overflow.clear()
        while True:
            events, resource_version = self._establish_watch(out, resource_version)
            while (event := self._read_event(events)) is not None:
                name = self.process_event(event.predictor, event.event_type)
                if name is not None:
                    self._write_event(out, name)
                    resource_version = event.predictor.resource_version

    def _establish_watch(
        self, out: queue.Queue, resource_version: str
    ) -> tuple[queue.Queue, str]:
        while True:
            self._log.info("Initiating watch from resource version %s", resource_version)
            try:
                return self._watcher.watch(resource_version), resource_version
            except TooOldError:
                self._log.info("Watch resource version too old, refreshing cache")
                resource_version = self._refresh_cache(out)
            except Exception:
                self._log.exception("Watch failed, retrying in %s seconds", self._retry_delay)
                time.sleep(self._retry_delay)

    def _refresh_cache(self, out: queue.Queue) -> str:
        """Resync the cache with a full listing; returns the listing's resource version."""
        while True:
            try:
                snapshot = self._watcher.refresh(0, "")
                break
            except Exception:
                self._log.exception("Refresh failed, retrying in %s seconds", self._retry_delay)
                time.sleep(self._retry_delay)

        present = set()
        for predictor in snapshot.items:
            name = self.process_event(predictor, EventType.UPDATE)
            if name is not None:
                self._write_event(out, name)
            present.add(predictor.key())

        with self._lock:
            missing = [name for name in self._cache if name not in present]
        for name in missing:
            changed = self.process_event(
                deleted_predictor(name, snapshot.resource_version), EventType.DELETE
            )
            if changed is not None:
                self._write_event(out, changed)
        return snapshot.resource_version