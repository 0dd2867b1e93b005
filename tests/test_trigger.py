"""Tests for the trigger evaluator."""

from buildmatrix.schemas import TriggerDef, TriggerEvent
from buildmatrix.trigger import evaluate_trigger


MASTER_ONLY = TriggerDef(events=("push",), branches=("master",))


class TestEvaluateTrigger:
    def test_any_branch_when_no_branches_declared(self):
        decision = evaluate_trigger(TriggerDef(), TriggerEvent.push("feature/x"))
        assert decision.should_run is True
        assert decision.branch == "feature/x"
        assert "any branch" in decision.reason

    def test_master_only_admits_master(self):
        decision = evaluate_trigger(MASTER_ONLY, TriggerEvent.push("master"))
        assert decision.should_run is True

    def test_master_only_rejects_other_branches(self):
        """A mismatch is a normal negative decision, not an error."""
        decision = evaluate_trigger(MASTER_ONLY, TriggerEvent.push("develop"))
        assert decision.should_run is False
        assert "develop" in decision.reason

    def test_rejects_other_event_kinds(self):
        decision = evaluate_trigger(MASTER_ONLY, TriggerEvent("pull_request", "master"))
        assert decision.should_run is False
        assert "pull_request" in decision.reason

    def test_branch_globs(self):
        trigger = TriggerDef(branches=("release/*",))
        assert evaluate_trigger(trigger, TriggerEvent.push("release/1.2")).should_run is True
        assert evaluate_trigger(trigger, TriggerEvent.push("release")).should_run is False

    def test_plain_names_are_exact(self):
        assert evaluate_trigger(MASTER_ONLY, TriggerEvent.push("master-old")).should_run is False

    def test_full_refs_are_normalised(self):
        event = TriggerEvent.from_ref("push", "refs/heads/master")
        assert event.branch == "master"
        assert evaluate_trigger(MASTER_ONLY, event).should_run is True

    def test_decision_carries_event(self):
        event = TriggerEvent.push("master")
        assert evaluate_trigger(MASTER_ONLY, event).event == event
