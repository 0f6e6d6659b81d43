"""Test decisions — normalize the free-form result field and classify tests."""

from .models import Test

DECISIONS = ("pass", "iterate", "kill")

DECISION_LABELS = {
    "pass": "Pass",
    "iterate": "Iterate",
    "kill": "Kill",
}


def normalize_decision(raw) -> str | None:
    """Map a raw decision value to 'pass' | 'iterate' | 'kill', or None if undecided."""
    if raw is None:
        return None
    value = str(raw).strip().lower()
    if value in DECISIONS:
        return value
    return None


def has_open_todos(test: Test) -> bool:
    return test.todo is not None and test.todo.is_open


def is_decided(test: Test) -> bool:
    """A test counts for scoring only with a decision and no open todo work."""
    return normalize_decision(test.decision) is not None and not has_open_todos(test)


def decision_label(raw, has_open_todos: bool = False) -> str:
    if has_open_todos:
        return "Ongoing"
    decision = normalize_decision(raw)
    if decision is None:
        return "Ongoing"
    return DECISION_LABELS[decision]
