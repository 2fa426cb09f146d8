# meshserving

Building blocks for a controller that serves machine-learning models through a
model mesh. The package covers:

- **Kubernetes objects** (`meshserving.kube`): `NamespacedName`, an in-memory
  `KubeClient` object store, and the `NotFoundError` and `ConflictError`
  exceptions.
- **Predictors** (`meshserving.predictor`): the `Predictor` resource,
  `deleted_predictor`, `is_deleted` and `compare_resource_version`.
- **Predictor sources** (`meshserving.source`, `meshserving.cached_source`,
  `meshserving.stream_source`, `meshserving.watch_source`,
  `meshserving.cr_registry`): a local cache of Predictors kept in step with an
  event stream (`StreamPredictorSource`) or with a refresh-and-watch backend
  (`WatchPredictorSource`, driven by a `PredictorWatcher`). Both hand back a
  registry and a `queue.Queue` of the names of Predictors that changed.
  `PredictorCRRegistry` answers the same registry calls straight from a client.
  `resolve_source` splits a `<source>_` prefix off a namespace.
- **Deletion queue** (`meshserving.deletion_heap`): `DeletionHeap`, deleted
  Predictors ordered by deletion time, used to prune the cache.
- **etcd** (`meshserving.etcd`): reads the etcd connection secret
  (`EtcdConfig.from_json` / `to_json`), resolves it with the secret's files into
  client settings including TLS roots and client key pairs
  (`get_etcd_client_config`, raising `EtcdConfigError`), and watches a key
  prefix, resyncing whenever the watch breaks (`RangeWatcher`).

## Installing

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Examples

Splitting a source prefix from a namespace:

```python
from meshserving.kube import NamespacedName
from meshserving.source import resolve_source

name, source = resolve_source(NamespacedName("isvc_ns", "pred"), "Predictor")
# name == NamespacedName("ns", "pred"), source == "isvc"
```

Keeping a cache of Predictors from an event stream:

```python
import queue

from meshserving.kube import NamespacedName
from meshserving.predictor import Predictor
from meshserving.source import EventType, PredictorStreamEvent
from meshserving.stream_source import StreamPredictorSource


class Updater:
    def update_status(self, predictor):
        return predictor, predictor.resource_version, True


events = queue.Queue()
events.put(PredictorStreamEvent(
    EventType.UPDATE, Predictor(name="p1", namespace="ns", resource_version="1")
))
source = StreamPredictorSource("s", "Stream", events, Updater())
registry, changes = source.start_watch(timeout=5)
print(changes.get())                               # ns/p1
print(registry.get(NamespacedName("ns", "p1")))    # the cached Predictor
```

Putting `None` on the input queue ends the stream.

Building etcd client settings from a secret:

```python
from meshserving.etcd import EtcdConfig, get_etcd_client_config

etcd_config = EtcdConfig.from_json(b'{"endpoints": "http://localhost:2379"}')
client_config = get_etcd_client_config(etcd_config, {})
print(client_config.endpoints, client_config.tls)  # ['http://localhost:2379'] False
```

## What the package does not do

- It does not open connections to etcd or to Kubernetes. `RangeWatcher` is
  given a factory for syncer objects, and the predictor sources are given a
  watcher or an event queue; supplying those is up to the caller.
- It has no controller configuration loading, no resource-quantity parsing, no
  gRPC target resolution and no tracking of the model-mesh Service spec.
- It has no command-line entry point and runs no server.