"""Exceptions for structural problems. Date rejections are values, see dates.DateError."""


class StructuralInvariantViolation(Exception):
    """The tree is no longer a strict tree: a cycle, a duplicate id, or a test
    reachable through two paths.

    Not user-recoverable. Callers abort the operation and log it as a
    data-integrity bug instead of showing it as a validation message.
    """


class NodeNotFoundError(KeyError):
    """Raised when an id does not name any node in the store."""

    def __init__(self, node_id: str):
        super().__init__(node_id)
        self.node_id = node_id

    def __str__(self) -> str:
        return f"Node {self.node_id} not found"


class InvalidParentError(ValueError):
    """Raised when a child kind may not live under the given parent kind."""

    def __init__(self, parent_kind: str, child_kind: str):
        super().__init__(f"A {child_kind} cannot be added under a {parent_kind}")
        self.parent_kind = parent_kind
        self.child_kind = child_kind


class RepositoryError(Exception):
    """Raised when neither the tree file nor any backup can be read."""
