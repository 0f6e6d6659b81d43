"""Confidence scoring — turn decided tests and their evidence into a 0–100 score.

Each decided test contributes

    decision_weight × evidence_multiplier × recency_multiplier

The mean contribution is mapped onto 50 ± 50, then a small bonus rewards
having more decided tests. The level ladder has a kill override: a node
whose only verdicts are kills, or that has two or more kills, is "low"
whatever its number says.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Literal, Mapping

from .decisions import is_decided, normalize_decision
from .models import EvidenceItem, Test

logger = logging.getLogger("ost_forge.scoring")

Level = Literal["low", "medium", "high"]

DECISION_WEIGHTS = {"pass": 1.0, "iterate": 0.3, "kill": -1.0}

EVIDENCE_WEIGHTS = {"high": 1.2, "medium": 1.0}
EVIDENCE_DEFAULT_WEIGHT = 0.8
NO_EVIDENCE_MULTIPLIER = 0.6

RECENT_DAYS = 14
STALE_DAYS = 45

HIGH_THRESHOLD = 70
MEDIUM_THRESHOLD = 40
NEUTRAL_SCORE = 50

SAMPLE_BONUS_PER_TEST = 3
SAMPLE_BONUS_CAP = 12


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _empty_counts() -> dict:
    return {"pass": 0, "iterate": 0, "kill": 0}


@dataclass
class ConfidenceResult:
    score: float
    level: Level
    counts: dict = field(default_factory=_empty_counts)
    decided: int = 0

    def explain(self) -> dict:
        return {
            "score": self.score,
            "level": self.level,
            "decided_tests": self.decided,
            **self.counts,
        }


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------


def decision_weight(decision: str | None) -> float:
    return DECISION_WEIGHTS.get(normalize_decision(decision), 0.0)


def evidence_multiplier(evidence: Iterable[EvidenceItem] | None) -> float:
    weights = [
        EVIDENCE_WEIGHTS.get(str(item.quality).lower(), EVIDENCE_DEFAULT_WEIGHT)
        for item in evidence or []
    ]
    if not weights:
        return NO_EVIDENCE_MULTIPLIER
    return sum(weights) / len(weights)


def recency_multiplier(timestamp: datetime | None, now: datetime) -> float:
    if timestamp is None:
        return 0.7
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    age_days = (now - timestamp).total_seconds() / 86400
    if age_days <= RECENT_DAYS:
        return 1.0
    if age_days <= STALE_DAYS:
        return 0.85
    return 0.7


def test_contribution(
    test: Test,
    now: datetime,
    evidence: Iterable[EvidenceItem] | None = None,
) -> float:
    """Signed contribution of a single test. Evidence defaults to the test's own."""
    if evidence is None:
        evidence = test.evidence
    return (
        decision_weight(test.decision)
        * evidence_multiplier(evidence)
        * recency_multiplier(test.updated_at or test.created_at, now)
    )


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------


def score_level(score: float) -> Level:
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def confidence_level(score: float, counts: Mapping[str, int]) -> Level:
    if counts["kill"] > 0 and counts["pass"] == 0:
        return "low"
    if counts["kill"] >= 2:
        return "low"
    return score_level(score)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _now_utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def compute_confidence_for_tests(
    tests: Iterable[Test],
    now: datetime | None = None,
    evidence_by_test: Mapping[str, list[EvidenceItem]] | None = None,
) -> ConfidenceResult:
    """Score a node from the tests it owns. Undecided and open tests are ignored.

    Args:
        tests: Tests owned by the node, directly or through its subtree.
        now: Reference time for recency. Defaults to the current UTC time.
        evidence_by_test: Optional test id → evidence items; replaces a
            listed test's embedded evidence.
    """
    now = _now_utc(now)
    evidence_by_test = evidence_by_test or {}

    counts = _empty_counts()
    total = 0.0
    decided = 0
    for test in tests:
        if not is_decided(test):
            continue
        counts[normalize_decision(test.decision)] += 1
        decided += 1
        total += test_contribution(test, now, evidence_by_test.get(test.id))

    raw = total / decided if decided else 0.0
    score = clamp(NEUTRAL_SCORE + 50 * raw, 0, 100)
    bonus = clamp((decided - 1) * SAMPLE_BONUS_PER_TEST, 0, SAMPLE_BONUS_CAP)
    score = clamp(score + bonus, 0, 100)

    level = confidence_level(score, counts)
    logger.debug("Scored %d decided tests: %.1f (%s)", decided, score, level)
    return ConfidenceResult(score=score, level=level, counts=counts, decided=decided)


def aggregate_confidence(child_scores: Iterable[ConfidenceResult | float]) -> ConfidenceResult:
    """Combine already-computed child scores when raw tests are unavailable.

    Kill and pass counts are unknown here, so only the plain ladder applies.
    """
    scores = [
        item.score if isinstance(item, ConfidenceResult) else float(item)
        for item in child_scores
    ]
    if not scores:
        return ConfidenceResult(score=NEUTRAL_SCORE, level=score_level(NEUTRAL_SCORE))
    score = clamp(sum(scores) / len(scores), 0, 100)
    return ConfidenceResult(score=score, level=score_level(score))


def clamp_confidence_score(value) -> int | None:
    """Round a score into 0–100 for storage. Empty or non-numeric input gives None."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return int(clamp(round(number), 0, 100))
