"""Command-line entry point: recompute confidence or render the report for a project."""

import argparse
import json
import logging
import sys
from pathlib import Path

from . import config
from .errors import RepositoryError, StructuralInvariantViolation
from .logging_config import setup_logging
from .models import parse_timestamp
from .persistence import load_forest, slugify_project_name
from .recompute import recompute_confidence
from .report import render_confidence_report, write_report

logger = logging.getLogger("ost_forge.cli")


def _timestamp_arg(value: str):
    try:
        return parse_timestamp(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO timestamp: {value!r}") from None


def _resolve_project_dir(project: str) -> Path:
    """Accept either a path or a project name inside the workspace."""
    path = Path(project).expanduser()
    if path.exists():
        return path
    return config.WORKSPACE_DIR / slugify_project_name(project)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ost-forge", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    recompute = sub.add_parser("recompute", help="Print the confidence map as JSON")
    recompute.add_argument("project", help="Project directory or workspace project name")
    recompute.add_argument("--now", type=_timestamp_arg, help="ISO timestamp to score recency against")

    report = sub.add_parser("report", help="Print the markdown confidence report")
    report.add_argument("project", help="Project directory or workspace project name")
    report.add_argument("--now", type=_timestamp_arg, help="ISO timestamp to score recency against")
    report.add_argument("--write", action="store_true", help="Also save it under <project>/artifacts")
    return parser


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    project_dir = _resolve_project_dir(args.project)
    now = args.now
    logger.info("Running %s for %s", args.command, project_dir)

    try:
        outcomes = load_forest(project_dir)
        confidence_map = recompute_confidence(outcomes, now=now)
    except (RepositoryError, StructuralInvariantViolation) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.command == "recompute":
        payload = {key: result.explain() for key, result in confidence_map.items()}
        print(json.dumps(payload, indent=2))
        return 0

    doc = render_confidence_report(outcomes, confidence_map)
    if args.write:
        write_report(project_dir, doc)
    print(doc)
    return 0


if __name__ == "__main__":
    sys.exit(main())
