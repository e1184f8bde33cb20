"""
Tests for the engine — event handlers and the controller runner.
"""

import time

from replicaplane.adapters.base import WatchEvent
from replicaplane.adapters.memory import InMemoryStore, StaticPlacementResolver
from replicaplane.core.config.loader import ControllerConfig
from replicaplane.core.controller.handlers import EventHandlers
from replicaplane.core.controller.index import CorrelationIndex
from replicaplane.core.controller.keys import CLEANUP_FINALIZER
from replicaplane.core.engine.runner import ControllerRunner
from replicaplane.core.errors import StoreError
from replicaplane.core.models import PlacementDecision

AGENT_FINALIZER = "cluster.open-cluster-management.io/manifest-work-cleanup"


def _handlers():
    queued: list[str] = []
    index = CorrelationIndex()
    return EventHandlers(index, queued.append), index, queued


class TestEventHandlers:
    def test_replicaset_event_indexes_and_enqueues(self, make_rs):
        handlers, index, queued = _handlers()
        handlers(WatchEvent("ADDED", "ManifestWorkReplicaSet", make_rs()))
        assert queued == ["ns1/app"]
        assert index.lookup("ns1/place1") == {"ns1/app"}

    def test_replicaset_delete_unindexes(self, make_rs):
        handlers, index, queued = _handlers()
        rs = make_rs()
        handlers(WatchEvent("ADDED", "ManifestWorkReplicaSet", rs))
        handlers(WatchEvent("DELETED", "ManifestWorkReplicaSet", rs))
        assert queued == ["ns1/app", "ns1/app"]
        assert index.lookup("ns1/place1") == set()

    def test_work_event_maps_to_owner(self, make_work):
        handlers, _, queued = _handlers()
        keys = handlers.handle(WatchEvent("MODIFIED", "ManifestWork", make_work("c1")))
        assert keys == {"ns1/app"}
        assert queued == ["ns1/app"]

    def test_bad_label_ignored(self, make_work):
        handlers, _, queued = _handlers()
        keys = handlers.handle(WatchEvent("MODIFIED", "ManifestWork", make_work("c1", owner="badlabel")))
        assert keys == set()
        assert queued == []

    def test_decision_event_fans_out(self, make_rs):
        handlers, _, queued = _handlers()
        handlers(WatchEvent("ADDED", "ManifestWorkReplicaSet", make_rs(name="a")))
        handlers(WatchEvent("ADDED", "ManifestWorkReplicaSet", make_rs(name="b")))
        queued.clear()

        decision = PlacementDecision(namespace="ns1", name="place1", clusters=["c1"])
        handlers(WatchEvent("MODIFIED", "PlacementDecision", decision))
        assert queued == ["ns1/a", "ns1/b"]

    def test_placement_in_other_namespace_ignored(self, make_rs):
        handlers, _, queued = _handlers()
        handlers(WatchEvent("ADDED", "ManifestWorkReplicaSet", make_rs()))
        queued.clear()
        decision = PlacementDecision(namespace="ns2", name="place1")
        handlers(WatchEvent("DELETED", "Placement", decision))
        assert queued == []

    def test_unknown_kind_ignored(self):
        handlers, _, queued = _handlers()
        assert handlers.handle(WatchEvent("ADDED", "Secret", object())) == set()
        assert queued == []


class TestControllerRunnerSync:
    def _runner(self, store, resolver, **overrides):
        config = ControllerConfig(**{"workers": 2, "finalize_requeue_seconds": 0.05, **overrides})
        return ControllerRunner(store, resolver, config=config)

    def test_prime_and_converge(self, store, resolver, make_rs):
        store.create_replicaset(make_rs())
        runner = self._runner(store, resolver)
        assert runner.prime() == 1
        passes = runner.run_until_idle()
        assert passes >= 1
        assert len(store.list_works()) == 3
        assert runner.queue.idle()
        assert runner.metrics.counter("reconcile_total", result="ok").value == passes

    def test_decision_change_retriggers(self, store, resolver, make_rs):
        store.create_replicaset(make_rs())
        runner = self._runner(store, resolver)
        runner.prime()
        runner.run_until_idle()

        resolver.set_decision("ns1", "place1", ["c1"])
        assert len(runner.queue) == 1
        runner.run_until_idle()
        assert [w.cluster for w in store.list_works()] == ["c1"]

    def test_deleted_work_recreated(self, store, resolver, make_rs):
        store.create_replicaset(make_rs())
        runner = self._runner(store, resolver)
        runner.prime()
        runner.run_until_idle()

        store.delete_work("c2", "app")
        runner.run_until_idle()
        assert sorted(w.cluster for w in store.list_works()) == ["c1", "c2", "c3"]

    def test_failure_rate_limited(self, store, resolver, make_rs):
        store.create_replicaset(make_rs(finalizers=[CLEANUP_FINALIZER]))
        store.set_failure("create_work", "c2", "app", StoreError("quota"))
        runner = self._runner(store, resolver, base_delay=0.01)
        runner.prime()
        runner.run_until_idle()

        assert runner.queue.retrying() == ["ns1/app"]
        assert runner.metrics.total("workqueue_retries_total") >= 1

        store.clear_failures()
        deadline = time.monotonic() + 2.0
        while runner.queue.retrying() and time.monotonic() < deadline:
            runner.process_next_item(timeout=0.1)
        assert runner.queue.retrying() == []
        assert len(store.list_works()) == 3

    def test_finalize_requeue_scheduled(self, store, resolver, make_rs, make_work):
        store.create_replicaset(make_rs(finalizers=[CLEANUP_FINALIZER]))
        store.create_work(make_work("c1", finalizers=[AGENT_FINALIZER]))
        runner = self._runner(store, resolver)
        runner.prime()
        store.delete_replicaset("ns1", "app")
        runner.run_until_idle()

        status = runner.queue.get_status()
        assert status["delayed"] >= 1
        assert store.list_replicasets() != []

        store.remove_work_finalizers("c1", "app")
        runner.run_until_idle()
        assert store.list_replicasets() == []

    def test_unexpected_exception_requeued(self, resolver, make_rs):
        class ExplodingStore(InMemoryStore):
            def get_replicaset(self, namespace, name):
                raise RuntimeError("bug")

        store = ExplodingStore()
        store.create_replicaset(make_rs())
        runner = self._runner(store, resolver)
        runner.prime()
        assert runner.process_next_item(timeout=0) is True
        assert runner.queue.retrying() == ["ns1/app"]


class TestControllerRunnerThreads:
    def test_workers_converge(self, make_rs, conditions):
        store = InMemoryStore()
        resolver = StaticPlacementResolver({"ns1/place1": ["c1", "c2", "c3"]})
        for name in ("a", "b", "c", "d"):
            store.create_replicaset(make_rs(name=name))
        runner = ControllerRunner(store, resolver, config=ControllerConfig(workers=3))

        runner.start()
        try:
            assert runner.running
            deadline = time.monotonic() + 5.0
            while time.monotonic() < deadline:
                if len(store.list_works()) == 12 and runner.queue.idle():
                    break
                time.sleep(0.01)
        finally:
            runner.stop()

        assert len(store.list_works()) == 12
        assert not runner.running
        for rs in store.list_replicasets():
            assert CLEANUP_FINALIZER in rs.metadata.finalizers
            assert rs.status.summary.total == 3
