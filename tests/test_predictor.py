import time

import pytest

from meshserving.kube import NamespacedName
from meshserving.predictor import (
    Predictor,
    compare_resource_version,
    deleted_predictor,
    is_deleted,
)


def _p(rv, name="p", namespace="ns"):
    return Predictor(name=name, namespace=namespace, resource_version=rv)


def test_key_is_namespaced_name():
    assert _p("1", name="a", namespace="b").key() == NamespacedName(namespace="b", name="a")


def test_deleted_predictor_fields():
    nn = NamespacedName(namespace="ns", name="gone")
    p = deleted_predictor(nn, "7")
    assert p.key() == nn
    assert p.resource_version == "7"
    assert p.kind == "Predictor"
    assert p.api_version == "serving.kserve.io/v1alpha1"
    assert is_deleted(p)


def test_is_deleted_without_timestamp():
    assert not is_deleted(_p("1"))


def test_is_deleted_future_timestamp():
    p = _p("1")
    p.deletion_timestamp = time.time() + 3600
    assert not is_deleted(p)


def test_is_deleted_past_timestamp():
    p = _p("1")
    p.deletion_timestamp = time.time() - 10
    assert is_deleted(p)


def test_compare_newer():
    assert compare_resource_version(_p("1"), _p("2")) is True


def test_compare_equal_and_older():
    assert compare_resource_version(_p("2"), _p("2")) is False
    assert compare_resource_version(_p("3"), _p("2")) is False


def test_compare_no_existing():
    assert compare_resource_version(None, _p("5")) is True


def test_compare_negative_versions():
    assert compare_resource_version(_p("-1"), _p("1")) is True


@pytest.mark.parametrize("existing", [None, _p("1")])
def test_compare_bad_new_version(existing):
    with pytest.raises(ValueError, match="unexpected resource version encountered: abc"):
        compare_resource_version(existing, _p("abc"))


def test_compare_bad_existing_version():
    with pytest.raises(ValueError, match="unexpected resource version encountered: x1"):
        compare_resource_version(_p("x1"), _p("1"))


def test_compare_version_out_of_int64_range():
    with pytest.raises(ValueError):
        compare_resource_version(None, _p(str(2**63)))