"""Minimal Kubernetes object model used by the controller components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, order=True)
class NamespacedName:
    """Identifies a namespaced Kubernetes object."""

    namespace: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class NotFoundError(LookupError):
    """Raised when a requested object does not exist."""

    def __init__(self, name: NamespacedName | str):
        super().__init__(f"{name} not found")
        self.name = name


class ConflictError(RuntimeError):
    """Raised when a conditional update loses to a concurrent change."""


@dataclass
class KubeClient:
    """An object store addressed by namespaced name.

    Objects are plain mappings in the Kubernetes wire shape, for example
    ``{"metadata": {"resourceVersion": "3"}, "data": {...}}``.
    """

    objects: dict[NamespacedName, Any] = field(default_factory=dict)

    def get(self, name: NamespacedName) -> Any:
        try:
            return self.objects[name]
        except KeyError:
            raise NotFoundError(name) from None