"""Confidence roll-up across the whole forest in a single walk."""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Mapping

from .errors import StructuralInvariantViolation
from .models import (
    EvidenceItem,
    NodePatch,
    Outcome,
    Test,
    UNSET,
    get_node_key,
    iter_children,
    parse_timestamp,
)
from .scoring import ConfidenceResult, compute_confidence_for_tests

logger = logging.getLogger("ost_forge.recompute")

# Kinds the roll-up walks through; tests are collected, KPIs are ignored
_BRANCH_KINDS = ("outcome", "opportunity", "solution")


def _apply_override(test: Test, override: Mapping | None) -> Test:
    """Return a scoring copy of the test with unsaved field overrides applied."""
    if not override:
        return test
    patch = NodePatch.from_dict(override)
    changes = {}
    if patch.decision is not UNSET:
        changes["decision"] = patch.decision
    if patch.todo is not UNSET:
        changes["todo"] = patch.todo
    if "updated_at" in override or "updatedAt" in override:
        changes["updated_at"] = parse_timestamp(override.get("updated_at", override.get("updatedAt")))
    return replace(test, **changes) if changes else test


def compute_confidence_map(
    outcomes: list[Outcome] | None,
    now: datetime | None = None,
    evidence_by_test: Mapping[str, list[EvidenceItem]] | None = None,
    test_overrides: Mapping[str, Mapping] | None = None,
) -> dict[str, ConfidenceResult]:
    """Score every outcome, opportunity and solution in the forest.

    Solutions are scored from their own tests only. Opportunities and
    outcomes are scored from every test in their subtree, nested
    opportunities and nested solutions included.

    Returns a dict keyed by "<kind>:<id>", in tree (pre-)order.

    Raises:
        StructuralInvariantViolation: A node or test is reachable twice.
    """
    test_overrides = test_overrides or {}

    # Pre-order walk with an explicit stack
    order: list[tuple[str, object]] = []
    own_tests: dict[str, list[Test]] = {}
    seen_nodes: set[str] = set()
    seen_tests: set[str] = set()

    stack = [("outcome", outcome) for outcome in reversed(outcomes or [])]
    while stack:
        kind, node = stack.pop()
        key = get_node_key(kind, node.id)
        if key in seen_nodes:
            raise StructuralInvariantViolation(f"{key} is reachable through more than one path")
        seen_nodes.add(key)
        order.append((key, node))

        if kind == "solution":
            tests = []
            for test in node.tests or []:
                if test.id in seen_tests:
                    raise StructuralInvariantViolation(
                        f"test:{test.id} is reachable through more than one path"
                    )
                seen_tests.add(test.id)
                tests.append(_apply_override(test, test_overrides.get(get_node_key("test", test.id))))
            own_tests[key] = tests

        branches = [(k, c) for k, c in iter_children(node) if k in _BRANCH_KINDS]
        stack.extend(reversed(branches))

    # Children always follow their parent in pre-order, so reversing it
    # visits every subtree before its root.
    subtree_tests: dict[str, list[Test]] = {}
    results: dict[str, ConfidenceResult] = {}
    for key, node in reversed(order):
        own = own_tests.get(key, [])
        collected = list(own)
        for child_kind, child in iter_children(node):
            if child_kind in _BRANCH_KINDS:
                collected.extend(subtree_tests.pop(get_node_key(child_kind, child.id)))
        subtree_tests[key] = collected

        scored = own if node.kind == "solution" else collected
        results[key] = compute_confidence_for_tests(scored, now=now, evidence_by_test=evidence_by_test)

    return {key: results[key] for key, _ in order}


def recompute_confidence(
    outcomes: list[Outcome] | None,
    now: datetime | None = None,
    evidence_by_test: Mapping[str, list[EvidenceItem]] | None = None,
    test_overrides: Mapping[str, Mapping] | None = None,
) -> dict[str, ConfidenceResult]:
    """Read-layer entry point. Aborts the whole recompute on a structural fault."""
    try:
        confidence_map = compute_confidence_map(
            outcomes,
            now=now,
            evidence_by_test=evidence_by_test,
            test_overrides=test_overrides,
        )
    except StructuralInvariantViolation as exc:
        logger.error("Data integrity fault during recompute: %s", exc)
        raise
    logger.info("Recomputed confidence for %d nodes", len(confidence_map))
    return confidence_map
