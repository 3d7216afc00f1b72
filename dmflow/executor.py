"""Conversation executor: advance a session one DM at a time.

``step`` is a pure function of ``(script, session, text)``. It reads the shared
immutable script, copies the session, and reports everything that happened in
the returned outcome, so the same arguments always give the same result and a
dry run can be replayed exactly.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .intents import NEUTRAL, classify
from .matching import match
from .model import Node, NodeKind, Script
from .outcomes import (
    Advanced,
    AwaitingInput,
    Completed,
    InvalidState,
    LoopLimitExceeded,
    Outcome,
    StepWarning,
    WarningKind,
)
from .session import ConversationSession, SessionStatus
from .variables import TypeMismatch, Value, bind, render

logger = logging.getLogger("dmflow.executor")

DEFAULT_MAX_STEPS = 200
STAGE_ORDER = ("pitch", "qualify", "checkout", "delivery")


def create_session(
    script: Script,
    *,
    session_id: Optional[str] = None,
    bindings: Optional[Mapping[str, Value]] = None,
) -> ConversationSession:
    """Start a session at the script's entry node.

    Declared defaults are bound first, then ``bindings`` (type-checked against
    the declarations, raising :class:`TypeMismatch` on a bad seed).
    """

    seeded: Dict[str, Value] = {
        name: decl.default for name, decl in script.variables.items() if decl.default is not None
    }
    for name, raw in (bindings or {}).items():
        decl = script.variables.get(name)
        if decl is None:
            raise TypeMismatch(name, raw, "declared variable")
        seeded[name] = bind(name, raw, decl)

    return ConversationSession(
        session_id=session_id or uuid.uuid4().hex,
        script_id=script.id,
        script_version=script.version,
        current_node_id=script.entry_node_id,
        bindings=seeded,
        visited_node_ids=(script.entry_node_id,),
    )


@dataclass
class _Walk:
    """Mutable scratch state for a single step; never escapes ``step``."""

    script: Script
    bindings: Dict[str, Value]
    visited: List[str]
    messages: List[str] = field(default_factory=list)
    unresolved: Dict[str, None] = field(default_factory=dict)
    warnings: List[StepWarning] = field(default_factory=list)
    current: str = ""
    completed: bool = False

    def capture(self, captures: Mapping[str, str], node_id: str) -> None:
        for name, raw in captures.items():
            try:
                self.bindings[name] = bind(name, raw, self.script.variables[name])
            except TypeMismatch as exc:
                self.warnings.append(StepWarning(WarningKind.TYPE_MISMATCH, name, str(exc), node_id))

    def emit(self, node: Node) -> None:
        if not node.template:
            return
        rendered = render(node.template, self.bindings, self.script.variables)
        self.messages.append(rendered.text)
        for name in rendered.unresolved:
            if name not in self.unresolved:
                self.unresolved[name] = None
                self.warnings.append(
                    StepWarning(
                        WarningKind.UNRESOLVED_PLACEHOLDER,
                        name,
                        f"No usable binding for '{name}' in node '{node.id}'",
                        node.id,
                    )
                )

    def enter(self, node_id: str) -> None:
        # Message chains are acyclic (checked at load), so this terminates.
        while True:
            node = self.script.nodes[node_id]
            self.visited.append(node_id)
            self.emit(node)
            if node.kind is not NodeKind.MESSAGE:
                break
            node_id = node.transitions[0].target
        self.current = node_id
        self.completed = node.kind is NodeKind.TERMINAL


def opening_prompt(script: Script, session: ConversationSession) -> Tuple[str, ...]:
    """Render the prompt of a fresh session waiting on a Decision entry node.

    A Message entry renders itself on the first step, so it yields nothing here.
    """

    node = script.nodes.get(session.current_node_id)
    if session.step_count or node is None or node.kind is not NodeKind.DECISION or not node.template:
        return ()
    return (render(node.template, session.bindings, script.variables).text,)


def _fail(session: ConversationSession, outcome: Outcome, **update) -> Tuple[ConversationSession, Outcome]:
    update["status"] = SessionStatus.FAILED
    return session.model_copy(update=update), outcome


def _tags(text: str, script: Script, intent: Optional[str]) -> Tuple[str, ...]:
    classified = classify(text, script.keyword)
    if not intent:
        return classified
    return (intent,) + tuple(tag for tag in classified if tag not in (intent, NEUTRAL))


def step(
    script: Script,
    session: ConversationSession,
    text: str,
    *,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> Tuple[ConversationSession, Outcome]:
    """Apply one DM to ``session`` and return the new snapshot and outcome."""

    if session.status is not SessionStatus.ACTIVE:
        return session, InvalidState(reason=f"Session {session.session_id} is {session.status.value}")

    if (session.script_id, session.script_version) != (script.id, script.version):
        return _fail(
            session,
            InvalidState(
                reason=(
                    f"Session is pinned to {session.script_id} v{session.script_version}, "
                    f"got {script.id} v{script.version}"
                )
            ),
        )

    node = script.nodes.get(session.current_node_id)
    if node is None or node.kind is NodeKind.TERMINAL:
        reason = (
            f"Current node {session.current_node_id} does not exist"
            if node is None
            else f"Session is resting on terminal node {node.id}"
        )
        return _fail(session, InvalidState(reason=reason), step_count=session.step_count + 1)

    step_count = session.step_count + 1
    walk = _Walk(script=script, bindings=dict(session.bindings), visited=list(session.visited_node_ids))

    if node.kind is NodeKind.DECISION:
        found = match(node.transitions, text)
        if found is None:
            logger.debug("session=%s node=%s no transition accepted input", session.session_id, node.id)
            waiting = session.model_copy(update={"step_count": step_count})
            return _guard(waiting, AwaitingInput(intents=classify(text, script.keyword)), max_steps)
        intents = _tags(text, script, found.transition.intent)
        walk.capture(found.captures, node.id)
        walk.enter(found.transition.target)
    else:
        intents = ()
        walk.emit(node)
        walk.enter(node.transitions[0].target)

    status = SessionStatus.COMPLETED if walk.completed else SessionStatus.ACTIVE
    updated = session.model_copy(
        update={
            "current_node_id": walk.current,
            "bindings": walk.bindings,
            "visited_node_ids": tuple(walk.visited),
            "status": status,
            "step_count": step_count,
        }
    )
    result_type = Completed if walk.completed else Advanced
    outcome = result_type(
        messages=tuple(walk.messages),
        unresolved=tuple(walk.unresolved),
        warnings=tuple(walk.warnings),
        intents=intents,
    )
    logger.debug(
        "session=%s %s -> %s (%s)", session.session_id, node.id, walk.current, outcome.kind.value
    )
    return _guard(updated, outcome, max_steps)


def _guard(
    session: ConversationSession, outcome: Outcome, max_steps: int
) -> Tuple[ConversationSession, Outcome]:
    if session.status is SessionStatus.ACTIVE and session.step_count > max_steps:
        logger.warning(
            "session=%s exceeded %d steps at node %s; failing it",
            session.session_id,
            max_steps,
            session.current_node_id,
        )
        return _fail(
            session,
            LoopLimitExceeded(limit=max_steps, warnings=outcome.warnings, intents=outcome.intents),
        )
    return session, outcome


@dataclass(frozen=True)
class SimulationTurn:
    text: Optional[str]
    outcome: Outcome
    session: ConversationSession


@dataclass(frozen=True)
class Simulation:
    turns: Tuple[SimulationTurn, ...]
    session: ConversationSession
    opening: Tuple[str, ...] = ()

    @property
    def transcript(self) -> List[Tuple[str, str]]:
        """Flatten the run into ``(role, text)`` pairs."""
        lines: List[Tuple[str, str]] = [("assistant", message) for message in self.opening]
        for turn in self.turns:
            if turn.text is not None:
                lines.append(("user", turn.text))
            for message in getattr(turn.outcome, "messages", ()):
                lines.append(("assistant", message))
        return lines


def simulate(
    script: Script,
    inputs: Iterable[str],
    *,
    session: Optional[ConversationSession] = None,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> Simulation:
    """Dry-run ``inputs`` through ``script``.

    A fresh session waiting on a Decision entry gets its prompt rendered as
    ``opening``. Message nodes the session rests on (only possible at the
    entry) are advanced without consuming an input. The run stops as soon as
    the session leaves the active state; remaining inputs are ignored.
    """

    current = session or create_session(script, session_id="dry-run")
    opening = opening_prompt(script, current)
    turns: List[SimulationTurn] = []

    def advance(text: Optional[str]) -> None:
        nonlocal current
        current, outcome = step(script, current, text or "", max_steps=max_steps)
        turns.append(SimulationTurn(text=text, outcome=outcome, session=current))

    for text in inputs:
        while current.active and _resting_on_message(script, current):
            advance(None)
        if not current.active:
            break
        advance(text)

    return Simulation(turns=tuple(turns), session=current, opening=opening)


def _resting_on_message(script: Script, session: ConversationSession) -> bool:
    node = script.nodes.get(session.current_node_id)
    return node is not None and node.kind is NodeKind.MESSAGE


@dataclass(frozen=True)
class StageProgress:
    completed: Tuple[str, ...]
    last: Optional[str]
    next: Optional[str]


def stage_progress(script: Script, session: ConversationSession) -> StageProgress:
    """Summarize which funnel stages the session has reached so far."""

    completed: Dict[str, None] = {}
    last = None
    for node_id in session.visited_node_ids:
        node = script.nodes.get(node_id)
        if node is not None and node.stage:
            completed.setdefault(node.stage, None)
            last = node.stage
    upcoming = next((stage for stage in STAGE_ORDER if stage not in completed), None)
    return StageProgress(completed=tuple(completed), last=last, next=upcoming)


__all__ = [
    "DEFAULT_MAX_STEPS",
    "Simulation",
    "SimulationTurn",
    "StageProgress",
    "create_session",
    "opening_prompt",
    "simulate",
    "stage_progress",
    "step",
]
