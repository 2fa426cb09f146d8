import pytest

from meshserving.cr_registry import PredictorCRRegistry
from meshserving.kube import ConflictError, NamespacedName, NotFoundError
from meshserving.predictor import Predictor


class FakeClient:
    def __init__(self, predictors=()):
        self.store = {p.key(): p for p in predictors}
        self.fail_with = None

    def get(self, name):
        try:
            return self.store[name]
        except KeyError:
            raise NotFoundError(name) from None

    def list(self, namespace):
        return [p for p in self.store.values() if p.namespace == namespace]

    def update_status(self, predictor):
        if self.fail_with is not None:
            raise self.fail_with
        current = self.store[predictor.key()]
        if current.resource_version != predictor.resource_version:
            raise ConflictError("conflict")
        self.store[predictor.key()] = predictor


def make(name, namespace="ns", rv="1"):
    return Predictor(name=name, namespace=namespace, resource_version=rv)


def test_get_returns_stored_predictor():
    p = make("a")
    registry = PredictorCRRegistry(FakeClient([p]))
    assert registry.get(NamespacedName("ns", "a")) is p


def test_get_missing_raises_not_found():
    registry = PredictorCRRegistry(FakeClient())
    with pytest.raises(NotFoundError):
        registry.get(NamespacedName("ns", "missing"))


def test_find_filters_by_namespace_and_predicate():
    registry = PredictorCRRegistry(FakeClient([make("a"), make("b", namespace="other")]))
    assert registry.find("ns", lambda p: p.name == "a") is True
    assert registry.find("ns", lambda p: p.name == "b") is False
    assert registry.find("other", lambda p: p.name == "b") is True


def test_find_in_empty_namespace_is_false():
    registry = PredictorCRRegistry(FakeClient([make("a")]))
    assert registry.find("empty", lambda p: True) is False


def test_update_status_success_writes_through():
    client = FakeClient([make("a")])
    registry = PredictorCRRegistry(client)
    updated = make("a")
    updated.status = {"activeModelState": "Loaded"}
    assert registry.update_status(updated) is True
    assert client.store[NamespacedName("ns", "a")].status == {"activeModelState": "Loaded"}


def test_update_status_conflict_returns_false():
    client = FakeClient([make("a", rv="2")])
    registry = PredictorCRRegistry(client)
    assert registry.update_status(make("a", rv="1")) is False
    assert client.store[NamespacedName("ns", "a")].resource_version == "2"


def test_update_status_other_errors_propagate():
    client = FakeClient([make("a")])
    client.fail_with = RuntimeError("boom")
    registry = PredictorCRRegistry(client)
    with pytest.raises(RuntimeError, match="boom"):
        registry.update_status(make("a"))


def test_source_name():
    assert PredictorCRRegistry(FakeClient()).source_name() == "Predictor"