"""Interfaces shared by predictor sources and registries."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from .kube import NamespacedName
from .predictor import Predictor


class EventType(enum.IntEnum):
    UPDATE = 0
    DELETE = 1


@dataclass
class PredictorStreamEvent:
    """A change to a Predictor; the Predictor carries its resource version."""

    event_type: EventType
    predictor: Predictor | None


class PredictorRegistry(ABC):
    """Lookup and status update of Predictors."""

    @abstractmethod
    def get(self, name: NamespacedName) -> Predictor | None:
        """Return the Predictor, or None if it does not exist."""

    @abstractmethod
    def find(self, namespace: str, predicate: Callable[[Predictor], bool]) -> bool:
        """True if any Predictor in ``namespace`` satisfies ``predicate``."""

    @abstractmethod
    def update_status(self, predictor: Predictor) -> bool:
        """Conditionally update status; True if the update succeeded."""

    @abstractmethod
    def source_name(self) -> str:
        """Human-readable name of the source."""


def resolve_source(name: NamespacedName, default_source: str) -> tuple[NamespacedName, str]:
    """Split an optional ``<source>_`` prefix off the namespace."""
    namespace = name.namespace
    i = namespace.rfind("_")
    resolved = NamespacedName(namespace=namespace[i + 1 :], name=name.name)
    if i <= 0:
        return resolved, default_source
    return resolved, namespace[:i]