"""
Tests for the status stage — summaries and conditions from observed children.
"""

from replicaplane.core.controller.keys import PLACEMENT_LABEL
from replicaplane.core.controller.pipeline import ReconcileState, SyncContext
from replicaplane.core.controller.status import (
    StatusReconciler,
    applied_condition,
    compute_status,
    summarize,
)
from replicaplane.core.errors import StoreError
from replicaplane.core.models import (
    Condition,
    PerPlacementStatus,
    ReplicaSetStatus,
    StatusSummary,
)
from replicaplane.core.models.meta import find_condition
from replicaplane.core.models.replicaset import (
    MANIFESTWORK_APPLIED,
    PLACEMENT_VERIFIED,
    REASON_AS_EXPECTED,
    REASON_DECISION_EMPTY,
    REASON_NOT_AS_EXPECTED,
    REASON_PROCESSING,
)


class TestSummarize:
    def test_counts_conditions(self, make_work, conditions):
        works = [make_work("c1"), make_work("c2"), make_work("c3")]
        works[0].status.conditions = conditions("Applied", "Available")
        works[1].status.conditions = conditions("Applied", "Degraded")
        works[2].status.conditions = conditions("Progressing")
        summary = summarize(works)
        assert summary == StatusSummary(
            total=3, applied=2, available=1, degraded=1, progressing=1
        )

    def test_false_conditions_not_counted(self, make_work):
        work = make_work("c1")
        work.status.conditions = [Condition(type="Applied", status="False")]
        assert summarize([work]).applied == 0

    def test_empty(self):
        assert summarize([]) == StatusSummary()


class TestAppliedCondition:
    def test_no_works(self):
        cond = applied_condition(StatusSummary(), 1)
        assert cond.status == "False"
        assert cond.reason == REASON_DECISION_EMPTY

    def test_all_applied(self):
        cond = applied_condition(StatusSummary(total=2, applied=2), 3)
        assert cond.is_true
        assert cond.reason == REASON_AS_EXPECTED
        assert cond.observed_generation == 3

    def test_partially_applied(self):
        cond = applied_condition(StatusSummary(total=3, applied=1), 1)
        assert cond.reason == REASON_PROCESSING

    def test_degraded_wins(self):
        cond = applied_condition(StatusSummary(total=2, applied=2, degraded=1), 1)
        assert cond.reason == REASON_NOT_AS_EXPECTED


class TestComputeStatus:
    def test_groups_by_placement(self, make_rs, make_work):
        rs = make_rs(placements=["p1", "p2"])
        works = [
            make_work("c1", placement="p1"),
            make_work("c2", placement="p1"),
            make_work("c3", placement="p2"),
        ]
        status = compute_status(rs, works)
        assert status.summary.total == 3
        assert [p.name for p in status.placement_summaries] == ["p1", "p2"]
        assert status.placement_summaries[0].clusters == ["c1", "c2"]
        assert status.placement_summaries[1].summary.total == 1

    def test_ref_without_works_listed(self, make_rs):
        status = compute_status(make_rs(placements=["p1"]), [])
        assert status.placement_summaries[0].summary.total == 0
        assert status.placement_summaries[0].clusters == []

    def test_deleting_works_excluded(self, make_rs, make_work):
        deleting = make_work("c2")
        deleting.metadata.deletion_timestamp = "2026-01-01T00:00:00+00:00"
        status = compute_status(make_rs(), [make_work("c1"), deleting])
        assert status.summary.total == 1

    def test_pure(self, make_rs, make_work, conditions):
        rs = make_rs()
        works = [make_work("c1"), make_work("c2")]
        works[0].status.conditions = conditions("Applied")
        first = compute_status(rs, works)
        rs.status = first
        second = compute_status(rs, works)
        assert first.model_dump() == second.model_dump()

    def test_same_output_regardless_of_prior_status(self, make_rs, make_work, conditions):
        works = [make_work("c1"), make_work("c2")]
        works[0].status.conditions = conditions("Applied")
        fresh = compute_status(make_rs(), works)

        stale = make_rs()
        stale.status = ReplicaSetStatus(
            summary=StatusSummary(total=99, applied=99),
            placement_summaries=[PerPlacementStatus(name="gone", summary=StatusSummary(total=4))],
            conditions=[
                Condition(type=MANIFESTWORK_APPLIED, status="True", reason=REASON_AS_EXPECTED),
                Condition(type="SomethingElse", status="True", reason="Leftover"),
            ],
        )
        assert compute_status(stale, works).model_dump_json() == fresh.model_dump_json()

    def test_repeated_ref_listed_once(self, make_rs, make_work):
        status = compute_status(make_rs(placements=["p1", "p1"]), [make_work("c1", placement="p1")])
        assert [p.name for p in status.placement_summaries] == ["p1"]

    def test_unresolved_ref_excluded(self, make_rs, make_work):
        rs = make_rs(placements=["p1", "missing"])
        status = compute_status(rs, [make_work("c1", placement="p1")], unresolved={"missing": "not found"})
        assert [p.name for p in status.placement_summaries] == ["p1"]

    def test_carries_placement_verified_only(self, make_rs):
        rs = make_rs()
        rs.status.conditions = [
            Condition(type=PLACEMENT_VERIFIED, status="True"),
            Condition(type="SomethingElse", status="True"),
        ]
        status = compute_status(rs, [])
        assert [c.type for c in status.conditions] == [MANIFESTWORK_APPLIED, PLACEMENT_VERIFIED]

    def test_unlabeled_work_counts_in_total_only(self, make_rs, make_work):
        work = make_work("c9")
        work.metadata.labels.pop(PLACEMENT_LABEL)
        status = compute_status(make_rs(), [work])
        assert status.summary.total == 1
        assert status.placement_summaries[0].summary.total == 0


class TestStatusReconciler:
    def test_lists_owned_works(self, store, guarded_rs, make_work, conditions):
        for c in ("c1", "c2"):
            store.create_work(make_work(c))
        store.create_work(make_work("c3", owner="ns1.other"))
        store.set_work_conditions("c1", "app", conditions("Applied"))

        rs, state, err = StatusReconciler(store).reconcile(SyncContext(), guarded_rs)

        assert state == ReconcileState.CONTINUE
        assert err is None
        assert rs.status.summary.total == 2
        assert rs.status.summary.applied == 1

    def test_list_failure_keeps_status(self, store, guarded_rs):
        store.set_failure("list_works", "*", "*", StoreError("unavailable"))
        before = guarded_rs.status.model_dump()
        rs, state, err = StatusReconciler(store).reconcile(SyncContext(), guarded_rs)
        assert state == ReconcileState.CONTINUE
        assert str(err) == "unavailable"
        assert rs.status.model_dump() == before
