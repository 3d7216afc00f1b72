"""Outcome variants returned with every step."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional


class OutcomeKind(str, Enum):
    ADVANCED = "advanced"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"
    LOOP_LIMIT_EXCEEDED = "loop_limit_exceeded"
    INVALID_STATE = "invalid_state"


class WarningKind(str, Enum):
    TYPE_MISMATCH = "type_mismatch"
    UNRESOLVED_PLACEHOLDER = "unresolved_placeholder"


@dataclass(frozen=True)
class StepWarning:
    kind: WarningKind
    variable: str
    message: str
    node_id: Optional[str] = None


@dataclass(frozen=True)
class Outcome:
    kind: ClassVar[OutcomeKind]

    warnings: tuple[StepWarning, ...] = ()
    intents: tuple[str, ...] = ()

    @property
    def fatal(self) -> bool:
        return False

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["fatal"] = self.fatal
        for warning in data["warnings"]:
            warning["kind"] = warning["kind"].value
        return data


@dataclass(frozen=True)
class _Rendered(Outcome):
    messages: tuple[str, ...] = ()
    unresolved: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        return "\n".join(self.messages)

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data["message"] = self.message
        return data


@dataclass(frozen=True)
class Advanced(_Rendered):
    kind: ClassVar[OutcomeKind] = OutcomeKind.ADVANCED


@dataclass(frozen=True)
class Completed(_Rendered):
    kind: ClassVar[OutcomeKind] = OutcomeKind.COMPLETED


@dataclass(frozen=True)
class AwaitingInput(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.AWAITING_INPUT


@dataclass(frozen=True)
class LoopLimitExceeded(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.LOOP_LIMIT_EXCEEDED

    limit: int = 0

    @property
    def fatal(self) -> bool:
        return True


@dataclass(frozen=True)
class InvalidState(Outcome):
    kind: ClassVar[OutcomeKind] = OutcomeKind.INVALID_STATE

    reason: str = ""

    @property
    def fatal(self) -> bool:
        return True


__all__ = [
    "Advanced",
    "AwaitingInput",
    "Completed",
    "InvalidState",
    "LoopLimitExceeded",
    "Outcome",
    "OutcomeKind",
    "StepWarning",
    "WarningKind",
]
