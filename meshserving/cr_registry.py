"""Predictor registry backed directly by the Kubernetes API."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from .kube import ConflictError, NamespacedName
from .predictor import Predictor
from .source import PredictorRegistry


class _PredictorClient(Protocol):
    def get(self, name: NamespacedName) -> Predictor:
        """Return the Predictor; raises NotFoundError if absent."""

    def list(self, namespace: str) -> Iterable[Predictor]:
        """All Predictors in ``namespace``."""

    def update_status(self, predictor: Predictor) -> None:
        """Write status; raises ConflictError on a resource version mismatch."""


@dataclass
class PredictorCRRegistry(PredictorRegistry):
    """Registry of Predictor custom resources."""

    client: _PredictorClient

    def get(self, name: NamespacedName) -> Predictor:
        """Fetch the Predictor; errors from the client, NotFoundError included, propagate."""
        return self.client.get(name)

    def find(self, namespace: str, predicate: Callable[[Predictor], bool]) -> bool:
        return any(predicate(p) for p in self.client.list(namespace))

    def update_status(self, predictor: Predictor) -> bool:
        """True if the update was applied, False if it lost to a concurrent change."""
        try:
            self.client.update_status(predictor)
        except ConflictError:
            return False
        return True

    def source_name(self) -> str:
        return "Predictor"