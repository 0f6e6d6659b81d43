"""Node store — the live forest plus an id index with parent back-references.

Every mutation is validated before it touches the tree. Date rejections come
back as DateError values; structural faults raise.
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from .dates import DateError, validate_ancestor_shrink, validate_node_dates
from .errors import InvalidParentError, NodeNotFoundError, StructuralInvariantViolation
from .models import (
    ALLOWED_CHILDREN,
    DateRange,
    EvidenceItem,
    Node,
    NodePatch,
    Outcome,
    UNSET,
    child_list,
    iter_children,
    parse_node_key,
)

logger = logging.getLogger("ost_forge.store")

_COMMON_FIELDS = {"title", "description", "start_date", "end_date"}
PATCHABLE_FIELDS = {
    "outcome": _COMMON_FIELDS,
    "opportunity": _COMMON_FIELDS,
    "solution": _COMMON_FIELDS,
    "test": _COMMON_FIELDS | {"decision", "todo"},
    "kpi": {"name", "current", "target", "unit"},
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _has_dates(node: Node) -> bool:
    return node.kind != "kpi"


class NodeStore:
    """Holds the forest and applies validated mutations one at a time.

    Callers serialize mutations on the same subtree; the store does no
    locking of its own.
    """

    def __init__(self, outcomes: list[Outcome] | None = None, clock: Callable[[], datetime] | None = None):
        self._outcomes: list[Outcome] = []
        self._nodes: dict[str, Node] = {}
        self._parents: dict[str, str | None] = {}
        self._clock = clock or _utcnow
        for outcome in outcomes or []:
            self._index_subtree(outcome, None)
            self._outcomes.append(outcome)

    # -------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------

    def _index_subtree(self, root: Node, parent_id: str | None) -> None:
        """Index root and its descendants. Nothing is indexed if an id repeats."""
        pending: list[tuple[Node, str | None]] = []
        seen: set[str] = set()
        stack = [(root, parent_id)]
        while stack:
            node, pid = stack.pop()
            if node.id in seen or node.id in self._nodes:
                raise StructuralInvariantViolation(f"Duplicate node id {node.id}")
            seen.add(node.id)
            pending.append((node, pid))
            for _, child in iter_children(node):
                stack.append((child, node.id))

        for node, pid in pending:
            self._nodes[node.id] = node
            self._parents[node.id] = pid

    def _validate_subtree(self, root: Node, window: DateRange | None, existing: bool = False) -> DateError | None:
        """Check root and its dated descendants against the windows they will inherit.

        For a subtree already in the store only the topmost complete ranges are
        rechecked; everything below them was validated against those ranges.
        """
        seen: set[str] = set()
        stack = [(root, window)]
        while stack:
            node, inherited = stack.pop()
            if node.id in seen:
                raise StructuralInvariantViolation(f"Duplicate node id {node.id}")
            seen.add(node.id)
            if _has_dates(node):
                if node is root or not existing or node.dates.is_complete:
                    error = validate_node_dates(node.kind, node.dates, inherited)
                    if error:
                        return error
                if node.dates.is_complete:
                    if existing:
                        continue
                    inherited = node.dates
            children = [(child, inherited) for _, child in iter_children(node)]
            stack.extend(reversed(children))
        return None

    def _unindex_subtree(self, root: Node) -> list[str]:
        removed = []
        stack = [root]
        while stack:
            node = stack.pop()
            self._nodes.pop(node.id, None)
            self._parents.pop(node.id, None)
            removed.append(node.id)
            stack.extend(child for _, child in iter_children(node))
        return removed

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    @property
    def outcomes(self) -> list[Outcome]:
        return self._outcomes

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def kind_of(self, node_id: str) -> str:
        return self.get(node_id).kind

    def parent_of(self, node_id: str) -> Node | None:
        self.get(node_id)
        parent_id = self._parents[node_id]
        return self._nodes[parent_id] if parent_id is not None else None

    def children_of(self, node_id: str) -> list[Node]:
        return [child for _, child in iter_children(self.get(node_id))]

    def find_by_key(self, key: str) -> Node | None:
        parsed = parse_node_key(key)
        if parsed is None:
            return None
        kind, node_id = parsed
        node = self._nodes.get(node_id)
        if node is None or node.kind != kind:
            return None
        return node

    def path_to_root(self, node_id: str) -> list[str]:
        """Ids from node_id up to its outcome, inclusive."""
        self.get(node_id)
        path = []
        visited = set()
        current = node_id
        while current is not None:
            if current in visited:
                raise StructuralInvariantViolation(f"Cycle detected at node {current}")
            visited.add(current)
            path.append(current)
            current = self._parents.get(current)
        return path

    def resolve_ancestor_window(self, node_id: str, include_self: bool = False) -> DateRange | None:
        """Nearest range with both dates set, walking upward from node_id.

        With include_self=False the walk starts at the parent, which is what an
        edit of node_id validates against. A create under a parent passes the
        parent id with include_self=True.
        """
        path = self.path_to_root(node_id)
        if not include_self:
            path = path[1:]
        for ancestor_id in path:
            ancestor = self._nodes[ancestor_id]
            if _has_dates(ancestor) and ancestor.dates.is_complete:
                return ancestor.dates
        return None

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def _stamp(self, node: Node) -> None:
        now = self._clock()
        if node.created_at is None:
            node.created_at = now
        node.updated_at = now

    def add_outcome(self, outcome: Outcome) -> DateError | None:
        error = self._validate_subtree(outcome, None)
        if error:
            return error
        self._index_subtree(outcome, None)
        self._stamp(outcome)
        self._outcomes.append(outcome)
        logger.info("Added outcome %s", outcome.id)
        return None

    def add_child(self, parent_id: str, child: Node) -> DateError | None:
        """Attach child under parent_id after kind and date checks."""
        parent = self.get(parent_id)
        if child.kind not in ALLOWED_CHILDREN[parent.kind]:
            raise InvalidParentError(parent.kind, child.kind)

        window = self.resolve_ancestor_window(parent_id, include_self=True)
        error = self._validate_subtree(child, window)
        if error:
            return error

        self._index_subtree(child, parent_id)
        self._stamp(child)
        parent.updated_at = child.updated_at
        child_list(parent, child.kind).append(child)
        logger.info("Added %s %s under %s %s", child.kind, child.id, parent.kind, parent_id)
        return None

    def update_node(self, node_id: str, patch: NodePatch) -> DateError | None:
        """Apply a field-level patch. Dates are re-validated only when touched."""
        node = self.get(node_id)
        changes = patch.changed_fields()
        unknown = set(changes) - PATCHABLE_FIELDS[node.kind]
        if unknown:
            raise ValueError(f"Cannot set {', '.join(sorted(unknown))} on a {node.kind}")

        if patch.touches_dates:
            merged = DateRange(
                start=node.dates.start if patch.start_date is UNSET else patch.start_date,
                end=node.dates.end if patch.end_date is UNSET else patch.end_date,
            )
            error = validate_node_dates(node.kind, merged, self.resolve_ancestor_window(node_id))
            if error:
                return error
            error = validate_ancestor_shrink(
                merged,
                [child.dates for child in self.children_of(node_id) if _has_dates(child)],
            )
            if error:
                logger.info("Rejected date edit on %s %s: %s", node.kind, node_id, error.reason)
                return error
            node.dates = merged

        for name, value in changes.items():
            if name not in ("start_date", "end_date"):
                setattr(node, name, value)
        self._stamp(node)
        logger.debug("Updated %s %s: %s", node.kind, node_id, sorted(changes))
        return None

    def log_decision(self, test_id: str, raw_decision: str | None) -> DateError | None:
        return self.update_node(test_id, NodePatch(decision=raw_decision))

    def add_evidence(self, test_id: str, quality: str) -> EvidenceItem:
        test = self.get(test_id)
        if test.kind != "test":
            raise InvalidParentError(test.kind, "evidence")
        item = EvidenceItem(quality=quality, test_id=test_id)
        test.evidence.append(item)
        self._stamp(test)
        return item

    def _detach(self, node: Node) -> None:
        parent_id = self._parents[node.id]
        siblings = self._outcomes if parent_id is None else child_list(self._nodes[parent_id], node.kind)
        for index, sibling in enumerate(siblings):
            if sibling.id == node.id:
                del siblings[index]
                return
        raise StructuralInvariantViolation(f"{node.kind} {node.id} missing from its parent")

    def move_node(self, node_id: str, new_parent_id: str) -> DateError | None:
        """Re-parent a node with its subtree. Moves that would form a cycle raise."""
        node = self.get(node_id)
        new_parent = self.get(new_parent_id)
        if node.kind not in ALLOWED_CHILDREN[new_parent.kind]:
            raise InvalidParentError(new_parent.kind, node.kind)
        if node_id in self.path_to_root(new_parent_id):
            raise StructuralInvariantViolation(
                f"Moving {node.kind} {node_id} under {new_parent_id} would create a cycle"
            )

        window = self.resolve_ancestor_window(new_parent_id, include_self=True)
        error = self._validate_subtree(node, window, existing=True)
        if error:
            return error

        self._detach(node)
        child_list(new_parent, node.kind).append(node)
        self._parents[node_id] = new_parent_id
        new_parent.updated_at = self._clock()
        logger.info("Moved %s %s under %s", node.kind, node_id, new_parent_id)
        return None

    def delete_node(self, node_id: str) -> list[str]:
        """Delete a node and its whole subtree. Returns the removed ids."""
        node = self.get(node_id)
        parent = self.parent_of(node_id)
        self._detach(node)
        removed = self._unindex_subtree(node)
        if parent is not None:
            parent.updated_at = self._clock()
        logger.info("Deleted %s %s (%d nodes)", node.kind, node_id, len(removed))
        return removed
