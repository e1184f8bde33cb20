"""
Tests for the distribution stage — resolve, prune, apply, rollout.
"""

from replicaplane.adapters.applier import WorkApplier
from replicaplane.core.controller.distribution import (
    DistributionReconciler,
    DistributionReport,
    build_work,
)
from replicaplane.core.controller.keys import (
    CLEANUP_FINALIZER,
    PLACEMENT_LABEL,
    REPLICASET_LABEL,
)
from replicaplane.core.controller.pipeline import ReconcileState, SyncContext
from replicaplane.core.errors import StoreError, TargetError
from replicaplane.core.models import (
    ManifestConfig,
    ResourceIdentifier,
    RolloutStrategy,
    UpdateStrategy,
)
from replicaplane.core.models.meta import find_condition
from replicaplane.core.models.replicaset import (
    PLACEMENT_VERIFIED,
    REASON_DECISION_EMPTY,
    REASON_DECISION_NOT_FOUND,
)


def _run(store, resolver, rs):
    ctx = SyncContext(key=rs.key)
    stage = DistributionReconciler(store, resolver, WorkApplier(store))
    rs, state, err = stage.reconcile(ctx, rs)
    assert state == ReconcileState.CONTINUE
    report = ctx.reports["distribution"]
    assert isinstance(report, DistributionReport)
    return rs, err, report


def _clusters(store):
    return sorted(w.cluster for w in store.list_works() if not w.metadata.deleting)


class TestBuildWork:
    def test_identity_and_labels(self, make_rs):
        rs = make_rs()
        work = build_work(rs, rs.spec.placement_refs[0], "c1")
        assert work.metadata.namespace == "c1"
        assert work.metadata.name == "app"
        assert work.metadata.labels == {
            REPLICASET_LABEL: "ns1.app",
            PLACEMENT_LABEL: "place1",
        }
        assert work.spec.manifests == rs.spec.manifest_work_template.manifests

    def test_template_copied(self, make_rs):
        rs = make_rs()
        work = build_work(rs, rs.spec.placement_refs[0], "c1")
        work.spec.manifests[0]["data"]["a"] = "changed"
        assert rs.spec.manifest_work_template.manifests[0]["data"]["a"] == "b"


class TestDistributionCreate:
    def test_creates_one_per_cluster(self, store, resolver, guarded_rs):
        rs, err, report = _run(store, resolver, guarded_rs)
        assert err is None
        assert _clusters(store) == ["c1", "c2", "c3"]
        assert report.count("created") == 3
        for work in store.list_works():
            assert work.metadata.name == "app"
            assert work.metadata.labels[REPLICASET_LABEL] == "ns1.app"

    def test_idempotent(self, store, resolver, guarded_rs):
        _run(store, resolver, guarded_rs)
        store.reset_log()
        rs, err, report = _run(store, resolver, guarded_rs)
        assert err is None
        assert store.writes() == []
        assert report.count("unchanged") == 3

    def test_placement_verified(self, store, resolver, guarded_rs):
        rs, _, _ = _run(store, resolver, guarded_rs)
        cond = find_condition(rs.status.conditions, PLACEMENT_VERIFIED)
        assert cond is not None and cond.is_true

    def test_no_guard_defers_creates(self, store, resolver, make_rs):
        rs = store.create_replicaset(make_rs())
        rs, err, report = _run(store, resolver, rs)
        assert err is None
        assert store.list_works() == []
        assert report.count("pending") == 3

    def test_template_change_updates(self, store, resolver, guarded_rs):
        _run(store, resolver, guarded_rs)
        guarded_rs.spec.manifest_work_template.manifests[0]["data"] = {"a": "c"}
        _, err, report = _run(store, resolver, guarded_rs)
        assert err is None
        assert report.count("updated") == 3
        for work in store.list_works():
            assert work.spec.manifests[0]["data"] == {"a": "c"}


class TestDistributionSelection:
    def test_shrink_deletes_removed_cluster(self, store, resolver, guarded_rs):
        _run(store, resolver, guarded_rs)
        resolver.set_decision("ns1", "place1", ["c1", "c3"])
        store.reset_log()

        _, err, report = _run(store, resolver, guarded_rs)

        assert err is None
        assert _clusters(store) == ["c1", "c3"]
        assert store.writes() == [("delete_work", "c2", "app")]
        assert report.count("deleted") == 1
        assert report.count("unchanged") == 2

    def test_empty_selection(self, store, resolver, guarded_rs):
        resolver.set_decision("ns1", "place1", [])
        rs, err, _ = _run(store, resolver, guarded_rs)
        assert err is None
        cond = find_condition(rs.status.conditions, PLACEMENT_VERIFIED)
        assert cond.reason == REASON_DECISION_EMPTY
        assert store.list_works() == []

    def test_unknown_placement_not_an_error(self, store, resolver, make_rs):
        rs = store.create_replicaset(make_rs(placements=["missing"], finalizers=[CLEANUP_FINALIZER]))
        rs, err, report = _run(store, resolver, rs)
        assert err is None
        assert "missing" in report.unresolved
        cond = find_condition(rs.status.conditions, PLACEMENT_VERIFIED)
        assert cond.status == "False"
        assert cond.reason == REASON_DECISION_NOT_FOUND

    def test_resolve_failure_surfaced_and_children_kept(self, store, resolver, guarded_rs):
        _run(store, resolver, guarded_rs)
        resolver.set_failure("ns1", "place1", RuntimeError("selector down"))
        store.reset_log()

        _, err, report = _run(store, resolver, guarded_rs)

        assert str(err) == "selector down"
        assert store.writes() == []
        assert _clusters(store) == ["c1", "c2", "c3"]

    def test_first_ref_claims_cluster(self, store, resolver, make_rs):
        resolver.set_decision("ns1", "place2", ["c3", "c4"])
        rs = store.create_replicaset(
            make_rs(placements=["place1", "place2"], finalizers=[CLEANUP_FINALIZER])
        )
        _, err, report = _run(store, resolver, rs)
        assert err is None
        assert _clusters(store) == ["c1", "c2", "c3", "c4"]
        assert store.get_work("c3", "app").metadata.labels[PLACEMENT_LABEL] == "place1"
        assert store.get_work("c4", "app").metadata.labels[PLACEMENT_LABEL] == "place2"
        skipped = [o for o in report.outcomes if o.outcome == "skipped"]
        assert [(o.cluster, o.placement) for o in skipped] == [("c3", "place2")]

    def test_repeated_ref_distributes_once(self, store, resolver, make_rs):
        rs = store.create_replicaset(
            make_rs(placements=["place1", "place1"], finalizers=[CLEANUP_FINALIZER])
        )
        _, err, report = _run(store, resolver, rs)
        assert err is None
        assert _clusters(store) == ["c1", "c2", "c3"]
        assert report.count("created") == 3
        assert report.count("skipped") == 0


class TestDistributionFailures:
    def test_failure_isolated_to_target(self, store, resolver, guarded_rs):
        store.set_failure("create_work", "c2", "app", StoreError("quota"))
        _, err, report = _run(store, resolver, guarded_rs)

        assert _clusters(store) == ["c1", "c3"]
        assert len(err) == 1
        assert isinstance(err.errors[0], TargetError)
        assert err.errors[0].target == "c2"
        failed = [o for o in report.outcomes if o.outcome == "failed"]
        assert [o.cluster for o in failed] == ["c2"]

    def test_retry_after_failure_creates_missing(self, store, resolver, guarded_rs):
        store.set_failure("create_work", "c2", "app", StoreError("quota"))
        _run(store, resolver, guarded_rs)
        store.clear_failures()
        _, err, report = _run(store, resolver, guarded_rs)
        assert err is None
        assert _clusters(store) == ["c1", "c2", "c3"]
        assert report.count("created") == 1

    def test_list_failure(self, store, resolver, guarded_rs):
        store.set_failure("list_works", "*", "*", StoreError("unavailable"))
        _, err, _ = _run(store, resolver, guarded_rs)
        assert str(err) == "unavailable"
        assert store.writes("create_work") == []


class TestRollout:
    def test_progressive_limits_creates(self, store, resolver, make_rs, conditions):
        strategy = RolloutStrategy(type="Progressive", max_concurrency=1)
        rs = store.create_replicaset(make_rs(finalizers=[CLEANUP_FINALIZER], strategy=strategy))

        _, _, report = _run(store, resolver, rs)
        assert _clusters(store) == ["c1"]
        assert report.count("pending") == 2

        # Nothing more while c1 is in flight
        _run(store, resolver, rs)
        assert _clusters(store) == ["c1"]

        store.set_work_conditions("c1", "app", conditions("Applied", "Available"))
        _run(store, resolver, rs)
        assert _clusters(store) == ["c1", "c2"]

    def test_percentage_limit(self, store, make_rs):
        from replicaplane.adapters.memory import StaticPlacementResolver

        resolver = StaticPlacementResolver({"ns1/place1": [f"c{i}" for i in range(10)]})
        strategy = RolloutStrategy(type="Progressive", max_concurrency="30%")
        rs = store.create_replicaset(make_rs(finalizers=[CLEANUP_FINALIZER], strategy=strategy))
        _, _, report = _run(store, resolver, rs)
        assert report.count("created") == 3
        assert report.count("pending") == 7

    def test_all_is_unbounded(self, store, resolver, make_rs):
        strategy = RolloutStrategy(type="All", max_concurrency=1)
        rs = store.create_replicaset(make_rs(finalizers=[CLEANUP_FINALIZER], strategy=strategy))
        _run(store, resolver, rs)
        assert _clusters(store) == ["c1", "c2", "c3"]


class TestCreateOnly:
    def test_create_only_manifest_not_overwritten(self, store, resolver, make_rs):
        manifest = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"namespace": "default", "name": "cm1"},
            "data": {"a": "b"},
        }
        rs = make_rs(manifests=[manifest], finalizers=[CLEANUP_FINALIZER])
        rs.spec.manifest_work_template.manifest_configs = [
            ManifestConfig(
                resource_identifier=ResourceIdentifier(
                    kind="ConfigMap", namespace="default", name="cm1"
                ),
                update_strategy=UpdateStrategy(type="CreateOnly"),
            )
        ]
        rs = store.create_replicaset(rs)
        _run(store, resolver, rs)

        rs.spec.manifest_work_template.manifests[0]["data"] = {"a": "changed"}
        store.reset_log()
        _, _, report = _run(store, resolver, rs)

        assert store.writes() == []
        assert report.count("unchanged") == 3
        assert store.get_work("c1", "app").spec.manifests[0]["data"] == {"a": "b"}
