"""The Predictor resource as held by predictor sources, with helpers for it."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any

from .kube import NamespacedName

PREDICTOR_KIND = "Predictor"
PREDICTOR_API_VERSION = "serving.kserve.io/v1alpha1"

# Deletion timestamp used for "deleted at some unknown point in the past".
ZERO_TIME = 0.0

_INT64 = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


@dataclass
class Predictor:
    """A Predictor; ``deletion_timestamp`` is in seconds since the epoch."""

    name: str = ""
    namespace: str = ""
    resource_version: str = ""
    deletion_timestamp: float | None = None
    deletion_grace_period_seconds: int | None = None
    kind: str = PREDICTOR_KIND
    api_version: str = PREDICTOR_API_VERSION
    spec: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)

    def key(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)


def deleted_predictor(name: NamespacedName, resource_version: str) -> Predictor:
    """A Predictor representing a deletion observed at ``resource_version``."""
    return Predictor(
        name=name.name,
        namespace=name.namespace,
        resource_version=resource_version,
        deletion_timestamp=ZERO_TIME,
    )


def is_deleted(predictor: Predictor) -> bool:
    """True once the Predictor's deletion timestamp has passed."""
    ts = predictor.deletion_timestamp
    return ts is not None and time.time() > ts


def _parse_version(version: str) -> int:
    if not _INT64.fullmatch(version or ""):
        raise ValueError(f"unexpected resource version encountered: {version}")
    value = int(version)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"unexpected resource version encountered: {version}")
    return value


def compare_resource_version(existing: Predictor | None, new: Predictor) -> bool:
    """True if ``new`` has a newer resource version than ``existing``.

    Raises ValueError if either resource version is not an integer.
    """
    new_rv = _parse_version(new.resource_version)
    if existing is None:
        return True
    return new_rv > _parse_version(existing.resource_version)