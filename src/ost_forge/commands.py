import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from .dates import DateError
from .errors import InvalidParentError, NodeNotFoundError, StructuralInvariantViolation
from .models import (
    DEFAULT_TITLES,
    KPI,
    DateRange,
    NodePatch,
    Opportunity,
    Outcome,
    Solution,
    Test,
    TodoProgress,
    get_node_key,
    parse_date,
)
from .recompute import recompute_confidence
from .report import render_confidence_report, write_report
from .store import NodeStore

logger = logging.getLogger("ost_forge.commands")

_DATE_PROPERTIES = {
    "start_date": {"type": "string", "format": "date", "description": "ISO date, set together with end_date"},
    "end_date": {"type": "string", "format": "date", "description": "ISO date, set together with start_date"},
}

_NODE_PROPERTIES = {
    "title": {"type": "string"},
    "description": {"type": "string", "default": ""},
    **_DATE_PROPERTIES,
}


COMMAND_DEFINITIONS = [
    {
        "name": "add_outcome",
        "description": "Create a new root outcome.",
        "input_schema": {
            "type": "object",
            "properties": dict(_NODE_PROPERTIES),
        },
    },
    {
        "name": "add_opportunity",
        "description": "Add an opportunity under an outcome or under another opportunity.",
        "input_schema": {
            "type": "object",
            "properties": {"parent_id": {"type": "string"}, **_NODE_PROPERTIES},
            "required": ["parent_id"],
        },
    },
    {
        "name": "add_solution",
        "description": "Add a solution under an opportunity or under another solution.",
        "input_schema": {
            "type": "object",
            "properties": {"parent_id": {"type": "string"}, **_NODE_PROPERTIES},
            "required": ["parent_id"],
        },
    },
    {
        "name": "add_test",
        "description": "Add a test to a solution.",
        "input_schema": {
            "type": "object",
            "properties": {
                "parent_id": {"type": "string"},
                **_NODE_PROPERTIES,
                "decision": {"type": "string", "description": "pass, iterate, kill, or empty while ongoing"},
            },
            "required": ["parent_id"],
        },
    },
    {
        "name": "add_kpi",
        "description": "Attach a KPI to a test. KPIs do not affect confidence.",
        "input_schema": {
            "type": "object",
            "properties": {
                "test_id": {"type": "string"},
                "name": {"type": "string"},
                "current": {"type": "string", "default": ""},
                "target": {"type": "string", "default": ""},
                "unit": {"type": "string", "default": ""},
            },
            "required": ["test_id"],
        },
    },
    {
        "name": "add_evidence",
        "description": "Record a piece of evidence for a test.",
        "input_schema": {
            "type": "object",
            "properties": {
                "test_id": {"type": "string"},
                "quality": {"type": "string", "enum": ["high", "medium", "low"]},
            },
            "required": ["test_id", "quality"],
        },
    },
    {
        "name": "update_node",
        "description": "Edit fields of any node. Only include the fields you want to change; null clears a field.",
        "input_schema": {
            "type": "object",
            "properties": {
                "node_id": {"type": "string"},
                **_NODE_PROPERTIES,
                "decision": {"type": "string"},
                "name": {"type": "string"},
                "current": {"type": "string"},
                "target": {"type": "string"},
                "unit": {"type": "string"},
            },
            "required": ["node_id"],
        },
    },
    {
        "name": "log_decision",
        "description": "Record a test's result decision.",
        "input_schema": {
            "type": "object",
            "properties": {
                "test_id": {"type": "string"},
                "decision": {"type": "string", "enum": ["pass", "iterate", "kill", "ongoing"]},
            },
            "required": ["test_id", "decision"],
        },
    },
    {
        "name": "set_todo_progress",
        "description": "Set how many of a test's todos are done. Open todos keep its decision out of scoring.",
        "input_schema": {
            "type": "object",
            "properties": {
                "test_id": {"type": "string"},
                "done": {"type": "integer", "minimum": 0},
                "total": {"type": "integer", "minimum": 0},
            },
            "required": ["test_id", "done", "total"],
        },
    },
    {
        "name": "move_node",
        "description": "Move a node and its subtree under a new parent.",
        "input_schema": {
            "type": "object",
            "properties": {
                "node_id": {"type": "string"},
                "new_parent_id": {"type": "string"},
            },
            "required": ["node_id", "new_parent_id"],
        },
    },
    {
        "name": "delete_node",
        "description": "Delete a node together with its entire subtree.",
        "input_schema": {
            "type": "object",
            "properties": {"node_id": {"type": "string"}},
            "required": ["node_id"],
        },
    },
    {
        "name": "generate_confidence_report",
        "description": "Recompute confidence and render the markdown confidence report.",
        "input_schema": {"type": "object", "properties": {}},
    },
]


@dataclass
class CommandResult:
    ok: bool
    message: str
    node_key: str | None = None
    error: DateError | None = None
    data: object = None


def handle_command(
    store: NodeStore,
    command_name: str,
    command_input: dict,
    project_dir: Path | None = None,
) -> CommandResult:
    """Route a mutation command to its handler.

    Date rejections and lookup failures come back as failed results.
    Structural faults are logged as data-integrity bugs and re-raised.
    """
    logger.debug("Command: %s | input: %.200s", command_name, str(command_input))
    handlers = {
        "add_outcome": _handle_add_outcome,
        "add_opportunity": _handle_add_opportunity,
        "add_solution": _handle_add_solution,
        "add_test": _handle_add_test,
        "add_kpi": _handle_add_kpi,
        "add_evidence": _handle_add_evidence,
        "update_node": _handle_update_node,
        "log_decision": _handle_log_decision,
        "set_todo_progress": _handle_set_todo_progress,
        "move_node": _handle_move_node,
        "delete_node": _handle_delete_node,
        "generate_confidence_report": _handle_generate_confidence_report,
    }
    handler = handlers.get(command_name)
    if not handler:
        logger.warning("Unknown command name: %s", command_name)
        return CommandResult(False, f"Unknown command: {command_name}")

    try:
        return handler(store, command_input, project_dir)
    except StructuralInvariantViolation as exc:
        logger.error("Data integrity fault in %s: %s", command_name, exc)
        raise
    except NodeNotFoundError as exc:
        return CommandResult(False, str(exc))
    except KeyError as exc:
        return CommandResult(False, f"Missing required field: {exc}")
    except (InvalidParentError, ValueError) as exc:
        return CommandResult(False, f"Invalid input: {exc}")


def _rejected(error: DateError) -> CommandResult:
    return CommandResult(False, error.reason, error=error)


def _new_id() -> str:
    return str(uuid.uuid4())


def _node_fields(kind: str, input: dict) -> dict:
    return {
        "id": _new_id(),
        "title": input.get("title") or DEFAULT_TITLES[kind],
        "description": input.get("description", ""),
        "dates": DateRange(
            start=parse_date(input.get("start_date")),
            end=parse_date(input.get("end_date")),
        ),
    }


def _add_child(store: NodeStore, parent_id: str, node) -> CommandResult:
    error = store.add_child(parent_id, node)
    if error:
        return _rejected(error)
    return CommandResult(True, f"Added {node.kind} {node.id}: {node.title}", node_key=get_node_key(node.kind, node.id))


def _handle_add_outcome(store: NodeStore, input: dict, project_dir) -> CommandResult:
    outcome = Outcome(**_node_fields("outcome", input))
    error = store.add_outcome(outcome)
    if error:
        return _rejected(error)
    return CommandResult(True, f"Added outcome {outcome.id}: {outcome.title}", node_key=get_node_key("outcome", outcome.id))


def _handle_add_opportunity(store: NodeStore, input: dict, project_dir) -> CommandResult:
    return _add_child(store, input["parent_id"], Opportunity(**_node_fields("opportunity", input)))


def _handle_add_solution(store: NodeStore, input: dict, project_dir) -> CommandResult:
    return _add_child(store, input["parent_id"], Solution(**_node_fields("solution", input)))


def _handle_add_test(store: NodeStore, input: dict, project_dir) -> CommandResult:
    test = Test(**_node_fields("test", input), decision=input.get("decision"))
    return _add_child(store, input["parent_id"], test)


def _handle_add_kpi(store: NodeStore, input: dict, project_dir) -> CommandResult:
    kpi = KPI(
        id=_new_id(),
        name=input.get("name") or DEFAULT_TITLES["kpi"],
        current=str(input.get("current", "")),
        target=str(input.get("target", "")),
        unit=input.get("unit", ""),
    )
    store.add_child(input["test_id"], kpi)
    return CommandResult(True, f"Added KPI {kpi.id}: {kpi.name}", node_key=get_node_key("kpi", kpi.id))


def _handle_add_evidence(store: NodeStore, input: dict, project_dir) -> CommandResult:
    item = store.add_evidence(input["test_id"], input["quality"])
    return CommandResult(True, f"Added {item.quality} evidence to test {item.test_id}", node_key=get_node_key("test", item.test_id))


def _handle_update_node(store: NodeStore, input: dict, project_dir) -> CommandResult:
    node_id = input["node_id"]
    patch = NodePatch.from_dict({k: v for k, v in input.items() if k != "node_id"})
    error = store.update_node(node_id, patch)
    if error:
        return _rejected(error)
    kind = store.kind_of(node_id)
    changed = ", ".join(sorted(patch.changed_fields())) or "nothing"
    return CommandResult(True, f"Updated {kind} {node_id}: {changed}", node_key=get_node_key(kind, node_id))


def _handle_log_decision(store: NodeStore, input: dict, project_dir) -> CommandResult:
    test_id = input["test_id"]
    if store.kind_of(test_id) != "test":
        return CommandResult(False, f"Node {test_id} is not a test")
    store.log_decision(test_id, input["decision"])
    return CommandResult(True, f"Logged decision {input['decision']} for test {test_id}", node_key=get_node_key("test", test_id))


def _handle_set_todo_progress(store: NodeStore, input: dict, project_dir) -> CommandResult:
    test_id = input["test_id"]
    done, total = int(input["done"]), int(input["total"])
    if done < 0 or total < 0:
        return CommandResult(False, "Todo counts cannot be negative")
    if store.kind_of(test_id) != "test":
        return CommandResult(False, f"Node {test_id} is not a test")
    store.update_node(test_id, NodePatch(todo=TodoProgress(done=done, total=total)))
    return CommandResult(True, f"Todo progress for test {test_id}: {done}/{total}", node_key=get_node_key("test", test_id))


def _handle_move_node(store: NodeStore, input: dict, project_dir) -> CommandResult:
    node_id = input["node_id"]
    error = store.move_node(node_id, input["new_parent_id"])
    if error:
        return _rejected(error)
    kind = store.kind_of(node_id)
    return CommandResult(True, f"Moved {kind} {node_id} under {input['new_parent_id']}", node_key=get_node_key(kind, node_id))


def _handle_delete_node(store: NodeStore, input: dict, project_dir) -> CommandResult:
    node_id = input["node_id"]
    kind = store.kind_of(node_id)
    removed = store.delete_node(node_id)
    return CommandResult(True, f"Deleted {kind} {node_id} and {len(removed) - 1} descendants", data=removed)


def _handle_generate_confidence_report(store: NodeStore, input: dict, project_dir) -> CommandResult:
    confidence_map = recompute_confidence(store.outcomes)
    doc = render_confidence_report(store.outcomes, confidence_map)

    # Auto-save artifact to project directory
    if project_dir:
        write_report(project_dir, doc)
    return CommandResult(True, "Confidence report generated", data=doc)
