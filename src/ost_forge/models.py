"""Tree model — recursive node dataclasses and the nested wire shape.

Outcome → Opportunity* → Solution* → Test → KPI, where opportunities nest
inside opportunities and solutions inside solutions without a depth limit.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from typing import ClassVar

NODE_KINDS = ("outcome", "opportunity", "solution", "test", "kpi")

# Ordered (child kind, attribute) pairs per parent kind
CHILD_FIELDS = {
    "outcome": (("opportunity", "opportunities"),),
    "opportunity": (("opportunity", "opportunities"), ("solution", "solutions")),
    "solution": (("solution", "solutions"), ("test", "tests")),
    "test": (("kpi", "kpis"),),
    "kpi": (),
}

ALLOWED_CHILDREN = {
    kind: tuple(child_kind for child_kind, _ in pairs)
    for kind, pairs in CHILD_FIELDS.items()
}

DEFAULT_TITLES = {
    "outcome": "New Outcome",
    "opportunity": "New Opportunity",
    "solution": "New Solution",
    "test": "New Test",
    "kpi": "New KPI",
}


def get_node_key(kind: str, node_id: str) -> str:
    return f"{kind}:{node_id}"


def parse_node_key(key: str | None) -> tuple[str, str] | None:
    """Split 'solution:abc' into ('solution', 'abc'). Only the first colon separates."""
    if not key:
        return None
    kind, sep, node_id = key.partition(":")
    if not sep or not kind or not node_id:
        return None
    return kind, node_id


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateRange:
    start: date | None = None
    end: date | None = None

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def is_absent(self) -> bool:
        return self.start is None and self.end is None

    @property
    def is_partial(self) -> bool:
        return not self.is_complete and not self.is_absent


@dataclass(frozen=True)
class TodoProgress:
    done: int = 0
    total: int = 0

    @property
    def is_open(self) -> bool:
        # Open work blocks a decision from counting
        return self.total > 0 and self.done < self.total


@dataclass
class EvidenceItem:
    quality: str
    test_id: str | None = None


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


@dataclass
class KPI:
    kind: ClassVar[str] = "kpi"

    id: str
    name: str = DEFAULT_TITLES["kpi"]
    current: str = ""
    target: str = ""
    unit: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Test:
    kind: ClassVar[str] = "test"

    id: str
    title: str = DEFAULT_TITLES["test"]
    description: str = ""
    dates: DateRange = field(default_factory=DateRange)
    decision: str | None = None
    todo: TodoProgress | None = None
    evidence: list[EvidenceItem] = field(default_factory=list)
    kpis: list[KPI] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Solution:
    kind: ClassVar[str] = "solution"

    id: str
    title: str = DEFAULT_TITLES["solution"]
    description: str = ""
    dates: DateRange = field(default_factory=DateRange)
    solutions: list["Solution"] = field(default_factory=list)
    tests: list[Test] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Opportunity:
    kind: ClassVar[str] = "opportunity"

    id: str
    title: str = DEFAULT_TITLES["opportunity"]
    description: str = ""
    dates: DateRange = field(default_factory=DateRange)
    opportunities: list["Opportunity"] = field(default_factory=list)
    solutions: list[Solution] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Outcome:
    kind: ClassVar[str] = "outcome"

    id: str
    title: str = DEFAULT_TITLES["outcome"]
    description: str = ""
    dates: DateRange = field(default_factory=DateRange)
    opportunities: list[Opportunity] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


Node = Outcome | Opportunity | Solution | Test | KPI

NODE_CLASSES = {cls.kind: cls for cls in (Outcome, Opportunity, Solution, Test, KPI)}


def iter_children(node: Node):
    """Yield (child_kind, child) in display order. Missing collections yield nothing."""
    for child_kind, attr in CHILD_FIELDS[node.kind]:
        for child in getattr(node, attr, None) or []:
            yield child_kind, child


def child_list(parent: Node, child_kind: str) -> list:
    """Return the parent's collection that holds children of child_kind."""
    for kind, attr in CHILD_FIELDS[parent.kind]:
        if kind == child_kind:
            return getattr(parent, attr)
    raise KeyError(f"{parent.kind} cannot hold {child_kind}")


# ---------------------------------------------------------------------------
# Partial updates
# ---------------------------------------------------------------------------


class _Unset:
    """Marker for a patch field the caller did not touch."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()

DATE_FIELDS = ("start_date", "end_date")


@dataclass
class NodePatch:
    """Field-level edit. UNSET fields are left alone; None clears a field."""

    title: str | _Unset = UNSET
    description: str | _Unset = UNSET
    start_date: date | None | _Unset = UNSET
    end_date: date | None | _Unset = UNSET
    decision: str | None | _Unset = UNSET
    todo: TodoProgress | None | _Unset = UNSET
    # KPI fields
    name: str | _Unset = UNSET
    current: str | _Unset = UNSET
    target: str | _Unset = UNSET
    unit: str | _Unset = UNSET

    def changed_fields(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    @property
    def touches_dates(self) -> bool:
        return any(getattr(self, name) is not UNSET for name in DATE_FIELDS)

    @classmethod
    def from_dict(cls, data: dict) -> "NodePatch":
        """Build a patch from request-style input. Absent keys stay UNSET."""
        patch = cls()
        for key in ("title", "description", "decision", "name", "current", "target", "unit"):
            if key in data:
                setattr(patch, key, data[key])
        if "result_decision" in data or "resultDecision" in data:
            patch.decision = _pick(data, "result_decision", "resultDecision")
        for name, camel in (("start_date", "startDate"), ("end_date", "endDate")):
            if name in data or camel in data:
                setattr(patch, name, parse_date(_pick(data, name, camel)))
        if "todo" in data:
            patch.todo = _parse_todo(data["todo"])
        return patch


# ---------------------------------------------------------------------------
# Wire shape
# ---------------------------------------------------------------------------


def _pick(data: dict, *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_todo(value) -> TodoProgress | None:
    if not value:
        return None
    if isinstance(value, TodoProgress):
        return value
    return TodoProgress(done=int(value.get("done", 0)), total=int(value.get("total", 0)))


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _common_from_dict(kind: str, data: dict) -> dict:
    return {
        "id": str(data["id"]),
        "title": _pick(data, "title", default=DEFAULT_TITLES[kind]),
        "description": _pick(data, "description", default=""),
        "dates": DateRange(
            start=parse_date(_pick(data, "start_date", "startDate")),
            end=parse_date(_pick(data, "end_date", "endDate")),
        ),
        "created_at": parse_timestamp(_pick(data, "created_at", "createdAt")),
        "updated_at": parse_timestamp(_pick(data, "updated_at", "updatedAt")),
    }


def kpi_from_dict(data: dict) -> KPI:
    return KPI(
        id=str(data["id"]),
        name=_pick(data, "name", default=DEFAULT_TITLES["kpi"]),
        current=str(_pick(data, "current", default="")),
        target=str(_pick(data, "target", default="")),
        unit=_pick(data, "unit", default=""),
        created_at=parse_timestamp(_pick(data, "created_at", "createdAt")),
        updated_at=parse_timestamp(_pick(data, "updated_at", "updatedAt")),
    )


def test_from_dict(data: dict) -> Test:
    todo = _pick(data, "todo")
    if todo is None:
        done = _pick(data, "todo_done", "todoDone")
        total = _pick(data, "todo_total", "todoTotal")
        if total is not None:
            todo = {"done": done or 0, "total": total}
    test_id = str(data["id"])
    return Test(
        **_common_from_dict("test", data),
        decision=_pick(data, "decision", "result_decision", "resultDecision"),
        todo=_parse_todo(todo),
        evidence=[
            EvidenceItem(quality=item.get("quality", ""), test_id=item.get("test_id", test_id))
            for item in data.get("evidence") or []
            if isinstance(item, dict)
        ],
        kpis=[kpi_from_dict(k) for k in data.get("kpis") or []],
    )


def solution_from_dict(data: dict) -> Solution:
    return Solution(
        **_common_from_dict("solution", data),
        solutions=[solution_from_dict(s) for s in data.get("solutions") or []],
        tests=[test_from_dict(t) for t in data.get("tests") or []],
    )


def opportunity_from_dict(data: dict) -> Opportunity:
    return Opportunity(
        **_common_from_dict("opportunity", data),
        opportunities=[opportunity_from_dict(o) for o in data.get("opportunities") or []],
        solutions=[solution_from_dict(s) for s in data.get("solutions") or []],
    )


def outcome_from_dict(data: dict) -> Outcome:
    return Outcome(
        **_common_from_dict("outcome", data),
        opportunities=[opportunity_from_dict(o) for o in data.get("opportunities") or []],
    )


def forest_from_dicts(items: list[dict] | None) -> list[Outcome]:
    return [outcome_from_dict(item) for item in items or []]


def node_to_dict(node: Node) -> dict:
    """Serialize a node and its subtree to snake_case JSON-ready dicts."""
    if node.kind == "kpi":
        return {
            "id": node.id,
            "name": node.name,
            "current": node.current,
            "target": node.target,
            "unit": node.unit,
            "created_at": _format_timestamp(node.created_at),
            "updated_at": _format_timestamp(node.updated_at),
        }

    data = {
        "id": node.id,
        "title": node.title,
        "description": node.description,
        "start_date": node.dates.start.isoformat() if node.dates.start else None,
        "end_date": node.dates.end.isoformat() if node.dates.end else None,
        "created_at": _format_timestamp(node.created_at),
        "updated_at": _format_timestamp(node.updated_at),
    }
    if node.kind == "test":
        data["decision"] = node.decision
        data["todo"] = {"done": node.todo.done, "total": node.todo.total} if node.todo else None
        data["evidence"] = [{"quality": e.quality, "test_id": e.test_id} for e in node.evidence]
    for _, attr in CHILD_FIELDS[node.kind]:
        data[attr] = [node_to_dict(child) for child in getattr(node, attr)]
    return data


def forest_to_dicts(outcomes: list[Outcome]) -> list[dict]:
    return [node_to_dict(outcome) for outcome in outcomes]
