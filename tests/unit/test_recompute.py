"""Unit tests for ost_forge.recompute — forest roll-up."""

import logging

import pytest

from ost_forge.errors import StructuralInvariantViolation
from ost_forge.models import EvidenceItem, Opportunity, Outcome, Solution
from ost_forge.recompute import compute_confidence_map, recompute_confidence


# ===================================================================
# Keys and levels of the roll-up
# ===================================================================


class TestComputeConfidenceMap:
    def test_keys_in_tree_order(self, sample_forest, now):
        result = compute_confidence_map(sample_forest, now=now)
        assert list(result) == [
            "outcome:o1",
            "opportunity:opp1",
            "opportunity:opp1a",
            "solution:sol3",
            "solution:sol1",
            "solution:sol1a",
            "solution:sol2",
            "outcome:o2",
        ]

    def test_solution_scores_own_tests_only(self, sample_forest, now):
        result = compute_confidence_map(sample_forest, now=now)
        sol1 = result["solution:sol1"]
        # t1 (1.2) and t2 (-0.7), not sol1a's t3
        assert sol1.decided == 2
        assert sol1.counts == {"pass": 1, "iterate": 0, "kill": 1}
        assert sol1.score == pytest.approx(65.5)
        assert sol1.level == "medium"

    def test_nested_solution_scored_on_its_own(self, sample_forest, now):
        result = compute_confidence_map(sample_forest, now=now)
        assert result["solution:sol1a"].score == pytest.approx(80.0)
        assert result["solution:sol1a"].level == "high"

    def test_solution_without_tests(self, sample_forest, now):
        sol2 = compute_confidence_map(sample_forest, now=now)["solution:sol2"]
        assert (sol2.score, sol2.level, sol2.decided) == (50, "medium", 0)

    def test_nested_opportunity(self, sample_forest, now):
        opp1a = compute_confidence_map(sample_forest, now=now)["opportunity:opp1a"]
        assert opp1a.decided == 1
        assert opp1a.score == pytest.approx(50 + 50 * 0.255)

    def test_opportunity_rolls_up_whole_subtree(self, sample_forest, now):
        opp1 = compute_confidence_map(sample_forest, now=now)["opportunity:opp1"]
        # t4 via opp1a, t1 + t2 via sol1, t3 via sol1a
        assert opp1.decided == 4
        assert opp1.counts == {"pass": 2, "iterate": 1, "kill": 1}
        assert opp1.score == pytest.approx(50 + 50 * (1.355 / 4) + 9)
        assert opp1.level == "high"

    def test_outcome_rolls_up_everything(self, sample_forest, now):
        result = compute_confidence_map(sample_forest, now=now)
        assert result["outcome:o1"].decided == 4
        assert result["outcome:o1"].score == pytest.approx(result["opportunity:opp1"].score)

    def test_empty_outcome(self, sample_forest, now):
        o2 = compute_confidence_map(sample_forest, now=now)["outcome:o2"]
        assert (o2.score, o2.level) == (50, "medium")

    def test_empty_forest(self, now):
        assert compute_confidence_map([], now=now) == {}
        assert compute_confidence_map(None, now=now) == {}

    def test_missing_collections_tolerated(self, now):
        outcome = Outcome(id="o", opportunities=None)
        opp = Opportunity(id="p", opportunities=None, solutions=None)
        sol = Solution(id="s", solutions=None, tests=None)
        opp.solutions = [sol]
        forest = [outcome, Outcome(id="o2", opportunities=[opp])]
        result = compute_confidence_map(forest, now=now)
        assert set(result) == {"outcome:o", "outcome:o2", "opportunity:p", "solution:s"}
        assert result["solution:s"].decided == 0


# ===================================================================
# Aggregation invariants
# ===================================================================


class TestAggregationInvariants:
    def test_nested_solutions_counted_once(self, make_test, now):
        child_a = Solution(id="a", tests=[make_test("ta", "pass")])
        child_b = Solution(id="b", tests=[make_test("tb", "pass")])
        parent = Solution(id="parent", solutions=[child_a, child_b])
        opp = Opportunity(id="opp", solutions=[parent])
        result = compute_confidence_map([Outcome(id="o", opportunities=[opp])], now=now)
        assert result["opportunity:opp"].decided == 2
        assert result["outcome:o"].decided == 2
        assert result["solution:parent"].decided == 0

    def test_test_reachable_twice_raises(self, make_test, now):
        shared = make_test("dup", "pass")
        opp = Opportunity(
            id="opp",
            solutions=[Solution(id="s1", tests=[shared]), Solution(id="s2", tests=[make_test("dup", "kill")])],
        )
        with pytest.raises(StructuralInvariantViolation, match="test:dup"):
            compute_confidence_map([Outcome(id="o", opportunities=[opp])], now=now)

    def test_node_reachable_twice_raises(self, now):
        sol = Solution(id="s")
        opp = Opportunity(id="opp", solutions=[sol, sol])
        with pytest.raises(StructuralInvariantViolation, match="solution:s"):
            compute_confidence_map([Outcome(id="o", opportunities=[opp])], now=now)

    def test_cycle_by_reference_raises(self, now):
        opp = Opportunity(id="loop")
        opp.opportunities.append(opp)
        with pytest.raises(StructuralInvariantViolation):
            compute_confidence_map([Outcome(id="o", opportunities=[opp])], now=now)

    def test_idempotent(self, sample_forest, now):
        first = compute_confidence_map(sample_forest, now=now)
        second = compute_confidence_map(sample_forest, now=now)
        assert first == second

    def test_deep_nesting_does_not_recurse(self, make_test, now):
        depth = 3000
        root = Solution(id="s0")
        current = root
        for i in range(1, depth):
            child = Solution(id=f"s{i}")
            current.solutions.append(child)
            current = child
        current.tests.append(make_test("leaf", "pass"))
        opp = Opportunity(id="opp", solutions=[root])
        result = compute_confidence_map([Outcome(id="o", opportunities=[opp])], now=now)
        assert len(result) == depth + 2
        assert result["opportunity:opp"].decided == 1
        assert result["solution:s0"].decided == 0


# ===================================================================
# Overrides and external evidence
# ===================================================================


class TestOverrides:
    def test_test_override_applied_without_mutation(self, sample_forest, now):
        result = compute_confidence_map(
            sample_forest, now=now, test_overrides={"test:t2": {"decision": "pass"}}
        )
        assert result["solution:sol1"].counts == {"pass": 2, "iterate": 0, "kill": 0}
        t2 = sample_forest[0].opportunities[0].solutions[0].tests[1]
        assert t2.decision == "kill"

    def test_override_can_open_todos(self, sample_forest, now):
        result = compute_confidence_map(
            sample_forest, now=now, test_overrides={"test:t1": {"todo": {"done": 0, "total": 2}}}
        )
        assert result["solution:sol1"].decided == 1

    def test_override_camel_case_decision(self, sample_forest, now):
        result = compute_confidence_map(
            sample_forest, now=now, test_overrides={"test:t4": {"resultDecision": "kill"}}
        )
        assert result["solution:sol3"].level == "low"

    def test_evidence_by_test(self, sample_forest, now):
        result = compute_confidence_map(
            sample_forest, now=now, evidence_by_test={"t3": [EvidenceItem("high", "t3")]}
        )
        assert result["solution:sol1a"].score == pytest.approx(100.0)


# ===================================================================
# recompute_confidence
# ===================================================================


class TestRecomputeConfidence:
    def test_returns_map(self, sample_forest, now):
        assert recompute_confidence(sample_forest, now=now) == compute_confidence_map(sample_forest, now=now)

    def test_structural_fault_logged_and_raised(self, now, caplog):
        sol = Solution(id="s")
        forest = [Outcome(id="o", opportunities=[Opportunity(id="p", solutions=[sol, sol])])]
        with caplog.at_level(logging.ERROR, logger="ost_forge.recompute"):
            with pytest.raises(StructuralInvariantViolation):
                recompute_confidence(forest, now=now)
        assert "Data integrity fault" in caplog.text
