"""Date coherence — child ranges must sit inside the nearest dated ancestor.

Pure checks shared by every node kind, for create and update alike. Callers
commit a mutation only when these return None.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Literal

from .models import DateRange

logger = logging.getLogger("ost_forge.dates")

DateErrorKind = Literal["DateRangeInvalid", "AncestorShrinkConflict"]

BOTH_DATES_REQUIRED = "both dates required together"
START_AFTER_END = "start must precede end"
START_OUTSIDE_PARENT = "start must be within parent period"
END_OUTSIDE_PARENT = "end must be within parent period"

START_AFTER_CHILD = "start cannot move after a child's start"
END_BEFORE_CHILD = "end cannot move before a child's end"


@dataclass(frozen=True)
class DateError:
    """A rejected date mutation. Rendered by callers as a form error."""

    kind: DateErrorKind
    reason: str
    node_kind: str | None = None

    def __str__(self) -> str:
        return self.reason


def validate_dates(candidate: DateRange, ancestor_window: DateRange | None) -> DateError | None:
    """Check a candidate range against the resolved ancestor window.

    An absent candidate is always fine. An ancestor window only constrains
    when it is complete.
    """
    if candidate.is_absent:
        return None
    if candidate.is_partial:
        return DateError("DateRangeInvalid", BOTH_DATES_REQUIRED)
    if candidate.start > candidate.end:
        return DateError("DateRangeInvalid", START_AFTER_END)
    if ancestor_window is not None and ancestor_window.is_complete:
        if candidate.start < ancestor_window.start:
            return DateError("DateRangeInvalid", START_OUTSIDE_PARENT)
        if candidate.end > ancestor_window.end:
            return DateError("DateRangeInvalid", END_OUTSIDE_PARENT)
    return None


def validate_node_dates(
    kind: str,
    candidate_range: DateRange,
    resolved_ancestor_range: DateRange | None,
) -> DateError | None:
    """Validate a create/update of any dated node kind."""
    error = validate_dates(candidate_range, resolved_ancestor_range)
    if error:
        logger.debug("Rejected %s dates %s: %s", kind, candidate_range, error.reason)
        return DateError(error.kind, error.reason, node_kind=kind)
    return None


def validate_ancestor_shrink(new_range: DateRange, child_ranges: Iterable[DateRange]) -> DateError | None:
    """Reject a parent window edit that would leave a direct child outside it.

    Only direct children are checked; deeper descendants re-validate on
    their own next edit.
    """
    if not new_range.is_complete:
        return None
    for child in child_ranges:
        if child is None or not child.is_complete:
            continue
        if child.start < new_range.start:
            logger.debug("Shrink to %s conflicts with child %s", new_range, child)
            return DateError("AncestorShrinkConflict", START_AFTER_CHILD)
        if child.end > new_range.end:
            logger.debug("Shrink to %s conflicts with child %s", new_range, child)
            return DateError("AncestorShrinkConflict", END_BEFORE_CHILD)
    return None
