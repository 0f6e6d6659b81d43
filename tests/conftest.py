"""Root conftest: tree builders and shared fixtures."""

from datetime import date, datetime, timedelta, timezone

import pytest

from ost_forge.models import (
    DateRange,
    EvidenceItem,
    Opportunity,
    Outcome,
    Solution,
    Test,
)

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def _range(start: str | None, end: str | None) -> DateRange:
    return DateRange(
        start=date.fromisoformat(start) if start else None,
        end=date.fromisoformat(end) if end else None,
    )


def _make_test(test_id, decision=None, evidence=(), days_ago=1, **kwargs) -> Test:
    """Build a Test updated `days_ago` days before NOW. days_ago=None leaves it undated."""
    updated_at = NOW - timedelta(days=days_ago) if days_ago is not None else None
    return Test(
        id=test_id,
        decision=decision,
        evidence=[EvidenceItem(quality=q, test_id=test_id) for q in evidence],
        updated_at=updated_at,
        **kwargs,
    )


def _sample_forest() -> list[Outcome]:
    """Two outcomes; o1 exercises nested opportunities and nested solutions.

    o1 [2025-01-01, 2025-12-31]
      opp1 [2025-02-01, 2025-11-30]
        opp1a (undated)
          sol3 (undated): t4 iterate/medium, 20 days old
        sol1 [2025-03-01, 2025-06-30]: t1 pass/high, t2 kill/medium 60 days old
          sol1a (undated): t3 pass, no evidence
        sol2 (undated, no tests)
    o2 (undated, empty)
    """
    sol3 = Solution(id="sol3", tests=[_make_test("t4", "iterate", ["medium"], days_ago=20)])
    opp1a = Opportunity(id="opp1a", solutions=[sol3])
    sol1a = Solution(id="sol1a", tests=[_make_test("t3", "pass")])
    sol1 = Solution(
        id="sol1",
        dates=_range("2025-03-01", "2025-06-30"),
        solutions=[sol1a],
        tests=[
            _make_test("t1", "pass", ["high"]),
            _make_test("t2", "kill", ["medium"], days_ago=60),
        ],
    )
    sol2 = Solution(id="sol2")
    opp1 = Opportunity(
        id="opp1",
        dates=_range("2025-02-01", "2025-11-30"),
        opportunities=[opp1a],
        solutions=[sol1, sol2],
    )
    o1 = Outcome(id="o1", dates=_range("2025-01-01", "2025-12-31"), opportunities=[opp1])
    o2 = Outcome(id="o2")
    return [o1, o2]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_test():
    return _make_test


@pytest.fixture
def make_range():
    return _range


@pytest.fixture
def sample_forest():
    """Fresh copy of the sample forest for each test."""
    return _sample_forest()
