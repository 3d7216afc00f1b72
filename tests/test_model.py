import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from dmflow.model import (
    IssueKind,
    NodeKind,
    NodeNotFound,
    ScriptValidationError,
    get_node,
    load,
    validate_script,
)
from sample_scripts import shop_script


def _kinds(raw):
    result = validate_script(raw)
    assert isinstance(result, list), "script unexpectedly loaded"
    return {issue.kind for issue in result}


def test_load_builds_immutable_arena():
    script = load(shop_script())
    assert script.id == "tee-drop"
    assert script.entry_node_id == "start"
    assert get_node(script, "confirm").kind is NodeKind.MESSAGE
    assert script.variables["product"].default == "Black Tee"
    assert script.warnings == ()
    with pytest.raises(TypeError):
        script.nodes["new"] = get_node(script, "start")  # type: ignore[index]


def test_get_node_unknown_raises_not_found():
    script = load(shop_script())
    with pytest.raises(NodeNotFound) as exc_info:
        get_node(script, "nope")
    assert exc_info.value.node_id == "nope"


def test_dangling_target_never_loads():
    raw = shop_script()
    raw["nodes"][0]["transitions"][0]["target"] = "ghost"
    assert IssueKind.DANGLING_TARGET in _kinds(raw)
    with pytest.raises(ScriptValidationError):
        load(raw)


def test_duplicate_node_and_missing_entry():
    raw = shop_script()
    raw["nodes"].append({"id": "bye", "kind": "terminal", "template": "again"})
    raw["entryNodeId"] = "nowhere"
    kinds = _kinds(raw)
    assert IssueKind.DUPLICATE_NODE in kinds
    assert IssueKind.MISSING_ENTRY in kinds


def test_non_final_catch_all_rejected():
    raw = shop_script()
    start = raw["nodes"][0]
    start["transitions"] = [start["transitions"][2], start["transitions"][0]]
    assert IssueKind.MISPLACED_CATCH_ALL in _kinds(raw)


def test_catch_all_outranked_by_priority_rejected():
    raw = shop_script()
    raw["nodes"][0]["transitions"][2]["priority"] = 0
    assert IssueKind.MISPLACED_CATCH_ALL in _kinds(raw)


def test_undeclared_template_variable_rejected():
    raw = shop_script()
    raw["nodes"][0]["template"] = "Hi {{ nickname }}"
    assert IssueKind.UNDECLARED_VARIABLE in _kinds(raw)


def test_undeclared_capture_rejected():
    raw = shop_script()
    raw["variables"] = [v for v in raw["variables"] if v["name"] != "size"]
    kinds = _kinds(raw)
    assert IssueKind.UNDECLARED_VARIABLE in kinds


def test_message_node_must_have_single_transition():
    raw = shop_script()
    confirm = raw["nodes"][2]
    confirm["transitions"].append({"target": "bye", "matcher": {"type": "catch_all"}})
    assert IssueKind.MESSAGE_FANOUT in _kinds(raw)


def test_terminal_with_transitions_rejected():
    raw = shop_script()
    raw["nodes"][-1]["transitions"] = [{"target": "start", "matcher": {"type": "catch_all"}}]
    assert IssueKind.TERMINAL_TRANSITIONS in _kinds(raw)


def test_bad_pattern_and_missing_group_rejected():
    raw = shop_script()
    raw["nodes"][1]["transitions"][0]["matcher"]["pattern"] = "(unclosed"
    assert IssueKind.INVALID_PATTERN in _kinds(raw)

    raw = shop_script()
    raw["nodes"][1]["transitions"][0]["matcher"]["pattern"] = r"(?P<other>S|M|L)"
    assert IssueKind.INVALID_PATTERN in _kinds(raw)


def test_message_only_cycle_rejected():
    raw = {
        "id": "spin",
        "entryNodeId": "a",
        "nodes": [
            {"id": "a", "kind": "message", "template": "a", "transitions": [{"target": "b", "matcher": {"type": "catch_all"}}]},
            {"id": "b", "kind": "message", "template": "b", "transitions": [{"target": "a", "matcher": {"type": "catch_all"}}]},
        ],
    }
    assert _kinds(raw) == {IssueKind.MESSAGE_CYCLE}


def test_invalid_default_and_duplicate_variable():
    raw = shop_script()
    raw["variables"].append({"name": "qty", "type": "number", "default": "lots"})
    raw["variables"].append({"name": "product", "type": "string"})
    kinds = _kinds(raw)
    assert IssueKind.INVALID_DEFAULT in kinds
    assert IssueKind.DUPLICATE_VARIABLE in kinds


def test_malformed_document_reports_issues_instead_of_raising_pydantic():
    issues = validate_script({"id": "x", "nodes": [{"id": "a", "kind": "banana"}]})
    assert isinstance(issues, list)
    assert {issue.kind for issue in issues} == {IssueKind.MALFORMED}


def test_unreachable_node_is_only_a_warning():
    raw = shop_script()
    raw["nodes"].append({"id": "orphan", "kind": "terminal", "template": "lost"})
    script = load(raw)
    assert [w.kind for w in script.warnings] == [IssueKind.UNREACHABLE_NODE]
    assert script.warnings[0].node_id == "orphan"


def test_snake_case_definition_keys_accepted():
    raw = shop_script()
    raw["entry_node_id"] = raw.pop("entryNodeId")
    assert load(raw).entry_node_id == "start"
