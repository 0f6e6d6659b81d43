"""Confidence report — render the forest and its scores as a markdown artifact."""

import logging
from datetime import datetime
from pathlib import Path

from .decisions import decision_label, has_open_todos
from .models import Outcome, get_node_key, iter_children
from .scoring import ConfidenceResult

logger = logging.getLogger("ost_forge.report")

KIND_LABELS = {
    "outcome": "Outcome",
    "opportunity": "Opportunity",
    "solution": "Solution",
    "test": "Test",
}

LEVEL_BADGES = {"high": "🟢", "medium": "🟡", "low": "🔴"}


def _format_dates(node) -> str:
    if node.dates.is_complete:
        return f"{node.dates.start.isoformat()} → {node.dates.end.isoformat()}"
    return "—"


def _format_result(result: ConfidenceResult | None) -> str:
    if result is None:
        return "—"
    return f"{LEVEL_BADGES[result.level]} {result.score:.0f} ({result.level})"


def render_confidence_report(
    outcomes: list[Outcome],
    confidence_map: dict[str, ConfidenceResult],
    generated_at: datetime | None = None,
) -> str:
    """Render an outline table of every scored node plus its test verdicts."""
    if not outcomes:
        return "# Confidence Report\n\n_No outcomes yet._\n"

    rows = ""
    verdict_rows = ""
    # Depth-first with an explicit stack; KPIs are not part of the report
    stack = [(outcome, 0) for outcome in reversed(outcomes)]
    while stack:
        node, depth = stack.pop()
        indent = "&nbsp;&nbsp;" * depth
        if node.kind == "test":
            verdict = decision_label(node.decision, has_open_todos(node))
            evidence = ", ".join(e.quality for e in node.evidence) or "none"
            verdict_rows += f"| {node.title} | {verdict} | {evidence} |\n"
            continue
        result = confidence_map.get(get_node_key(node.kind, node.id))
        decided = result.decided if result else 0
        rows += (
            f"| {indent}{KIND_LABELS[node.kind]}: {node.title} | {_format_dates(node)} "
            f"| {_format_result(result)} | {decided} |\n"
        )
        children = [(child, depth + 1) for kind, child in iter_children(node) if kind != "kpi"]
        stack.extend(reversed(children))

    generated_at = generated_at or datetime.now()
    doc = f"""# Confidence Report

_Generated {generated_at.strftime('%Y-%m-%d %H:%M')}_

## Tree

| Node | Period | Confidence | Decided tests |
|------|--------|------------|---------------|
{rows}
## Test Verdicts

| Test | Verdict | Evidence |
|------|---------|----------|
{verdict_rows or '| — | No tests yet | — |'}
"""
    return doc


def write_report(project_dir: Path, doc: str) -> Path:
    artifacts_dir = project_dir / "artifacts"
    artifacts_dir.mkdir(parents=True, exist_ok=True)
    path = artifacts_dir / "confidence_report.md"
    path.write_text(doc, encoding="utf-8")
    logger.info("Confidence report written to %s", path)
    return path
