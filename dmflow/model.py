"""Immutable script graph and the load-time validation pipeline.

Nodes live in a flat mapping keyed by id and transitions refer to targets by
id, so cyclic scripts carry no ownership cycles and every structural check is a
pass over ids. A loaded :class:`Script` is never patched; an edit is loaded as
a new version.
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .definition import (
    CatchAllMatcherDef,
    KeywordMatcherDef,
    NodeDef,
    PatternMatcherDef,
    ScriptDefinition,
    VariableDef,
)
from .variables import TypeMismatch, VariableDecl, VariableType, bind, placeholders


class NodeKind(str, Enum):
    MESSAGE = "message"
    DECISION = "decision"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class KeywordMatcher:
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class PatternMatcher:
    pattern: str
    regex: re.Pattern[str] = field(compare=False, repr=False)


@dataclass(frozen=True)
class CatchAllMatcher:
    pass


Matcher = Union[KeywordMatcher, PatternMatcher, CatchAllMatcher]


@dataclass(frozen=True)
class Transition:
    target: str
    matcher: Matcher
    priority: int = 0
    captures: tuple[str, ...] = ()
    intent: Optional[str] = None


@dataclass(frozen=True)
class Node:
    id: str
    kind: NodeKind
    template: str = ""
    transitions: tuple[Transition, ...] = ()
    stage: Optional[str] = None


class IssueKind(str, Enum):
    MALFORMED = "malformed"
    DANGLING_TARGET = "dangling_target"
    DUPLICATE_NODE = "duplicate_node"
    MISSING_ENTRY = "missing_entry"
    MISPLACED_CATCH_ALL = "misplaced_catch_all"
    UNDECLARED_VARIABLE = "undeclared_variable"
    MESSAGE_FANOUT = "message_fanout"
    TERMINAL_TRANSITIONS = "terminal_transitions"
    INVALID_PATTERN = "invalid_pattern"
    DUPLICATE_VARIABLE = "duplicate_variable"
    INVALID_DEFAULT = "invalid_default"
    MESSAGE_CYCLE = "message_cycle"
    UNREACHABLE_NODE = "unreachable_node"


@dataclass(frozen=True)
class ValidationIssue:
    kind: IssueKind
    message: str
    node_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"kind": self.kind.value, "message": self.message, "node_id": self.node_id}


class ScriptValidationError(ValueError):
    """Raised by :func:`load` with every issue found in the document."""

    def __init__(self, issues: List[ValidationIssue]):
        self.issues = tuple(issues)
        summary = "; ".join(issue.message for issue in self.issues[:3])
        more = f" (+{len(self.issues) - 3} more)" if len(self.issues) > 3 else ""
        super().__init__(f"Invalid script: {summary}{more}")


class NodeNotFound(KeyError):
    def __init__(self, script_id: str, node_id: str):
        self.script_id = script_id
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found in script {script_id}")


@dataclass(frozen=True)
class Script:
    id: str
    version: int
    entry_node_id: str
    nodes: Mapping[str, Node]
    variables: Mapping[str, VariableDecl]
    keyword: Optional[str] = None
    warnings: tuple[ValidationIssue, ...] = ()


RawScript = Union[ScriptDefinition, Mapping[str, Any]]


def get_node(script: Script, node_id: str) -> Node:
    try:
        return script.nodes[node_id]
    except KeyError:
        raise NodeNotFound(script.id, node_id) from None


def validate_script(raw: RawScript) -> Union[Script, List[ValidationIssue]]:
    """Return the loaded script, or the list of issues that prevent loading."""

    try:
        return load(raw)
    except ScriptValidationError as exc:
        return list(exc.issues)


def load(raw: RawScript) -> Script:
    """Parse and validate ``raw`` into an immutable :class:`Script`.

    Raises :class:`ScriptValidationError` carrying every fatal issue found.
    Unreachable nodes are recorded on ``Script.warnings`` instead.
    """

    definition = _parse(raw)
    issues: List[ValidationIssue] = []

    variables = _load_variables(definition.variables, issues)

    nodes: Dict[str, Node] = {}
    for node_def in definition.nodes:
        if node_def.id in nodes:
            issues.append(
                ValidationIssue(IssueKind.DUPLICATE_NODE, f"Duplicate node id '{node_def.id}'", node_def.id)
            )
            continue
        nodes[node_def.id] = _load_node(node_def, variables, issues)

    if definition.entry_node_id not in nodes:
        issues.append(
            ValidationIssue(
                IssueKind.MISSING_ENTRY,
                f"Entry node '{definition.entry_node_id}' does not exist",
                definition.entry_node_id,
            )
        )

    for node in nodes.values():
        for transition in node.transitions:
            if transition.target not in nodes:
                issues.append(
                    ValidationIssue(
                        IssueKind.DANGLING_TARGET,
                        f"Node '{node.id}' has a transition to unknown node '{transition.target}'",
                        node.id,
                    )
                )

    if not issues:
        issues.extend(_message_cycles(nodes))
    if issues:
        raise ScriptValidationError(issues)

    reachable = _reachable(nodes, definition.entry_node_id)
    warnings = [
        ValidationIssue(IssueKind.UNREACHABLE_NODE, f"Node '{node_id}' is unreachable from the entry node", node_id)
        for node_id in nodes
        if node_id not in reachable
    ]

    return Script(
        id=definition.id,
        version=definition.version,
        entry_node_id=definition.entry_node_id,
        nodes=MappingProxyType(nodes),
        variables=MappingProxyType(variables),
        keyword=definition.keyword,
        warnings=tuple(warnings),
    )


def _parse(raw: RawScript) -> ScriptDefinition:
    if isinstance(raw, ScriptDefinition):
        return raw
    try:
        return ScriptDefinition.model_validate(raw)
    except PydanticValidationError as exc:
        issues = [
            ValidationIssue(
                IssueKind.MALFORMED,
                f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}",
            )
            for error in exc.errors()
        ]
        raise ScriptValidationError(issues) from exc


def _load_variables(defs: List[VariableDef], issues: List[ValidationIssue]) -> Dict[str, VariableDecl]:
    variables: Dict[str, VariableDecl] = {}
    for var in defs:
        if var.name in variables:
            issues.append(ValidationIssue(IssueKind.DUPLICATE_VARIABLE, f"Variable '{var.name}' is declared twice"))
            continue
        var_type = VariableType(var.type)
        if var_type is VariableType.ENUM and not var.values:
            issues.append(ValidationIssue(IssueKind.MALFORMED, f"Enum variable '{var.name}' declares no values"))
        decl = VariableDecl(
            name=var.name,
            type=var_type,
            values=tuple(var.values),
            required=var.required,
        )
        if var.default is not None:
            try:
                decl = replace(decl, default=bind(var.name, var.default, decl))
            except TypeMismatch as exc:
                issues.append(ValidationIssue(IssueKind.INVALID_DEFAULT, str(exc)))
        variables[var.name] = decl
    return variables


def _load_node(node_def: NodeDef, variables: Mapping[str, VariableDecl], issues: List[ValidationIssue]) -> Node:
    kind = NodeKind(node_def.kind)
    node_id = node_def.id

    for name in placeholders(node_def.template):
        if name not in variables:
            issues.append(
                ValidationIssue(
                    IssueKind.UNDECLARED_VARIABLE,
                    f"Template of node '{node_id}' references undeclared variable '{name}'",
                    node_id,
                )
            )

    if kind is NodeKind.TERMINAL and node_def.transitions:
        issues.append(
            ValidationIssue(IssueKind.TERMINAL_TRANSITIONS, f"Terminal node '{node_id}' has transitions", node_id)
        )
    if kind is NodeKind.MESSAGE and len(node_def.transitions) != 1:
        issues.append(
            ValidationIssue(
                IssueKind.MESSAGE_FANOUT,
                f"Message node '{node_id}' must have exactly one transition, found {len(node_def.transitions)}",
                node_id,
            )
        )

    transitions = []
    last = len(node_def.transitions) - 1
    for index, trans_def in enumerate(node_def.transitions):
        matcher_def = trans_def.matcher
        matcher: Matcher
        if isinstance(matcher_def, CatchAllMatcherDef):
            matcher = CatchAllMatcher()
            outranked = any(other.priority > trans_def.priority for other in node_def.transitions)
            if index != last or outranked:
                issues.append(
                    ValidationIssue(
                        IssueKind.MISPLACED_CATCH_ALL,
                        f"Catch-all transition of node '{node_id}' must be the final entry",
                        node_id,
                    )
                )
        elif isinstance(matcher_def, KeywordMatcherDef):
            matcher = KeywordMatcher(
                keywords=tuple(" ".join(word.lower().split()) for word in matcher_def.keywords if word.strip())
            )
        else:
            matcher = _load_pattern(node_id, matcher_def, trans_def.captures, issues)

        if trans_def.captures and not isinstance(matcher_def, PatternMatcherDef):
            issues.append(
                ValidationIssue(
                    IssueKind.MALFORMED,
                    f"Transition '{node_id}' -> '{trans_def.target}' captures variables without a pattern matcher",
                    node_id,
                )
            )
        for name in trans_def.captures:
            if name not in variables:
                issues.append(
                    ValidationIssue(
                        IssueKind.UNDECLARED_VARIABLE,
                        f"Transition '{node_id}' -> '{trans_def.target}' captures undeclared variable '{name}'",
                        node_id,
                    )
                )

        transitions.append(
            Transition(
                target=trans_def.target,
                matcher=matcher,
                priority=trans_def.priority,
                captures=tuple(trans_def.captures),
                intent=trans_def.intent,
            )
        )

    return Node(
        id=node_id,
        kind=kind,
        template=node_def.template,
        transitions=tuple(transitions),
        stage=node_def.stage,
    )


def _load_pattern(
    node_id: str,
    matcher_def: PatternMatcherDef,
    captures: List[str],
    issues: List[ValidationIssue],
) -> PatternMatcher:
    try:
        regex = re.compile(matcher_def.pattern, re.IGNORECASE)
    except re.error as exc:
        issues.append(
            ValidationIssue(
                IssueKind.INVALID_PATTERN,
                f"Pattern {matcher_def.pattern!r} in node '{node_id}' does not compile: {exc}",
                node_id,
            )
        )
        return PatternMatcher(pattern=matcher_def.pattern, regex=re.compile(re.escape(matcher_def.pattern)))

    for name in captures:
        if name not in regex.groupindex:
            issues.append(
                ValidationIssue(
                    IssueKind.INVALID_PATTERN,
                    f"Pattern {matcher_def.pattern!r} in node '{node_id}' has no group named '{name}'",
                    node_id,
                )
            )
    return PatternMatcher(pattern=matcher_def.pattern, regex=regex)


def _message_cycles(nodes: Mapping[str, Node]) -> List[ValidationIssue]:
    issues = []
    reported: set[str] = set()
    for start in nodes:
        path: List[str] = []
        current = start
        while nodes[current].kind is NodeKind.MESSAGE and current not in path:
            path.append(current)
            current = nodes[current].transitions[0].target
        if current in path:
            cycle = path[path.index(current):]
            if not reported.intersection(cycle):
                reported.update(cycle)
                issues.append(
                    ValidationIssue(
                        IssueKind.MESSAGE_CYCLE,
                        f"Message nodes {' -> '.join(cycle + [current])} loop without waiting for input",
                        current,
                    )
                )
    return issues


def _reachable(nodes: Mapping[str, Node], entry: str) -> set[str]:
    seen = {entry}
    queue = deque([entry])
    while queue:
        for transition in nodes[queue.popleft()].transitions:
            if transition.target not in seen:
                seen.add(transition.target)
                queue.append(transition.target)
    return seen


__all__ = [
    "CatchAllMatcher",
    "IssueKind",
    "KeywordMatcher",
    "Matcher",
    "Node",
    "NodeKind",
    "NodeNotFound",
    "PatternMatcher",
    "Script",
    "ScriptValidationError",
    "Transition",
    "ValidationIssue",
    "get_node",
    "load",
    "validate_script",
]
