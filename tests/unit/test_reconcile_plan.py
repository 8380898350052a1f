"""Unit tests for gig_etl.reconcile.plan_reconcile (pure diffing)."""

from gig_etl.reconcile import ReconcilePlan, plan_reconcile


def _key(x):
    return x["key"]


def _row(key, row_id=None, **extra):
    return {"key": key, "id": row_id or f"row-{key}", **extra}


class TestPlanReconcile:
    def test_minimal_diff(self):
        existing = [_row("A"), _row("B")]
        desired = [{"key": "B", "order": 0}, {"key": "C", "order": 1}]

        plan = plan_reconcile(existing, desired, _key, _key)

        assert [r["key"] for r in plan.remove] == ["A"]
        assert [(e["id"], d["order"]) for e, d in plan.update] == [("row-B", 0)]
        assert [d["key"] for d in plan.add] == ["C"]

    def test_surviving_child_keeps_its_row(self):
        existing = [_row("B", row_id="keep-me")]
        plan = plan_reconcile(existing, [{"key": "B"}], _key, _key)
        assert plan.update[0][0]["id"] == "keep-me"
        assert plan.remove == [] and plan.add == []

    def test_identical_lists_only_pair_up(self):
        existing = [_row("A"), _row("B")]
        plan = plan_reconcile(existing, [{"key": "A"}, {"key": "B"}], _key, _key)
        assert plan.remove == []
        assert plan.add == []
        assert len(plan.update) == 2

    def test_first_desired_occurrence_wins(self):
        desired = [{"key": "A", "order": 0}, {"key": "A", "order": 5}]
        plan = plan_reconcile([], desired, _key, _key)
        assert plan.add == [{"key": "A", "order": 0}]

    def test_remove_missing_false_keeps_existing(self):
        existing = [_row("A")]
        plan = plan_reconcile(existing, [{"key": "B"}], _key, _key, remove_missing=False)
        assert plan.remove == []
        assert [d["key"] for d in plan.add] == ["B"]

    def test_empty_desired_removes_everything(self):
        existing = [_row("A"), _row("B")]
        plan = plan_reconcile(existing, [], _key, _key)
        assert [r["key"] for r in plan.remove] == ["A", "B"]

    def test_add_keeps_desired_order(self):
        desired = [{"key": k} for k in ("Z", "M", "A")]
        plan = plan_reconcile([], desired, _key, _key)
        assert [d["key"] for d in plan.add] == ["Z", "M", "A"]

    def test_duplicate_existing_key_extra_row_removed(self):
        existing = [_row("A", row_id="first"), _row("A", row_id="second")]
        plan = plan_reconcile(existing, [{"key": "A"}], _key, _key)
        assert plan.update[0][0]["id"] == "first"
        assert [r["id"] for r in plan.remove] == ["second"]


class TestReconcilePlanNoop:
    def test_empty_plan_is_noop(self):
        assert ReconcilePlan().is_noop

    def test_plan_with_update_is_not_noop(self):
        assert not ReconcilePlan(update=[("a", "b")]).is_noop
