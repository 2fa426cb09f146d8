"""A Predictor registry backed by a local cache fed from an event stream."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from typing import Protocol

from .deletion_heap import DeletionHeap
from .kube import NamespacedName
from .predictor import (
    ZERO_TIME,
    Predictor,
    compare_resource_version,
    deleted_predictor,
    is_deleted,
)
from .source import EventType, PredictorRegistry, PredictorStreamEvent

# Deleted entries stay in the cache for a while to avoid racing update_status.
_PRUNE_HORIZON_SECONDS = 20
_DELETION_CLAMP_SECONDS = 2


class SourceAlreadyStartedError(RuntimeError):
    """Raised when a predictor source is started a second time."""


class _StatusUpdater(Protocol):
    def update_status(self, predictor: Predictor) -> tuple[Predictor | None, str, bool]:
        """Conditionally update; returns (latest predictor or None, resource version, ok)."""


class CachedPredictorSource(PredictorRegistry):
    """Registry over a cache that subclasses populate from a watch.

    Event streams are ``queue.Queue`` objects; a ``None`` item marks the
    end of a stream.
    """

    def __init__(self, source_id: str, source_name: str, updater: _StatusUpdater):
        self.source_id = source_id
        self._source_name = source_name
        self._updater = updater
        self._started = False
        self._cache: dict[NamespacedName, Predictor] = {}
        self._lock = threading.RLock()
        self._deletions = DeletionHeap()
        self._log = logging.getLogger(f"{__name__}.PS-{source_name}")

    # ----- registry interface

    def source_name(self) -> str:
        return self._source_name

    def get(self, name: NamespacedName) -> Predictor | None:
        p = self._get(name)
        if p is not None and not is_deleted(p):
            return p
        return None

    def find(self, namespace: str, predicate: Callable[[Predictor], bool]) -> bool:
        with self._lock:
            return any(
                not is_deleted(p) and p.namespace == namespace and predicate(p)
                for p in self._cache.values()
            )

    def update_status(self, predictor: Predictor) -> bool:
        if predictor is None:
            raise ValueError("can't update with nil predictor")
        name = predictor.key()
        existing = self._get(name)
        if existing is None or predictor.resource_version != existing.resource_version:
            return False
        new_predictor, resource_version, ok = self._updater.update_status(predictor)
        if new_predictor is None:
            ok = False
            new_predictor = deleted_predictor(name, resource_version)
        with self._lock:
            self._offer_to_cache(name, new_predictor)
        return ok

    # ----- event processing

    def process_event(
        self, predictor: Predictor | None, event_type: EventType
    ) -> NamespacedName | None:
        """Apply an event to the cache; returns the name if the cache changed."""
        if predictor is None:
            self._log.error("Encountered unexpected nil Predictor event")
            return None
        name = predictor.key()
        if event_type == EventType.DELETE and predictor.deletion_timestamp is not None:
            predictor.deletion_timestamp = ZERO_TIME
        with self._lock:
            if self._offer_to_cache(name, predictor):
                return name
        return None

    def prune_deletions(self) -> None:
        """Drop cached deletions whose time has come."""
        with self._lock:
            if not len(self._deletions):
                return
            cutoff = time.time() + _PRUNE_HORIZON_SECONDS
            while (p := self._deletions.pop_expired(cutoff)) is not None:
                name = p.key()
                if self._cache.get(name) is p:
                    del self._cache[name]

    # ----- helpers for subclasses

    def _start(self) -> None:
        if self._started:
            raise SourceAlreadyStartedError("already started")
        self._started = True

    def _read_event(self, events: queue.Queue) -> PredictorStreamEvent | None:
        """Next event, pruning deletions before blocking; None once closed."""
        try:
            return events.get_nowait()
        except queue.Empty:
            pass
        self.prune_deletions()
        return events.get()

    @staticmethod
    def _write_event(out: queue.Queue, name: NamespacedName) -> None:
        out.put(name)

    def _get(self, name: NamespacedName) -> Predictor | None:
        with self._lock:
            return self._cache.get(name)

    def _offer_to_cache(self, name: NamespacedName, predictor: Predictor) -> bool:
        current = self._cache.get(name)
        try:
            newer = compare_resource_version(current, predictor)
        except ValueError:
            self._log.exception(
                "Error comparing resource versions prior to cache update for %s", name
            )
            return False
        if not newer:
            self._log.info(
                "Ignoring predictor update or delete because cache has more recent: %s", name
            )
            return False
        if predictor.deletion_timestamp is not None:
            two_secs_ago = time.time() - _DELETION_CLAMP_SECONDS
            if predictor.deletion_timestamp < two_secs_ago:
                predictor.deletion_timestamp = two_secs_ago
            if current is None or current.deletion_timestamp is None:
                self._deletions.push(predictor)
        self._cache[name] = predictor
        return True