"""Conversation session snapshots.

A session is plain data owned by the caller. The executor never mutates one;
each step returns a fresh copy that the caller persists by ``session_id``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class ConversationSession(BaseModel):
    """One walk of a pinned script version for one end-user."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    session_id: str = Field(..., min_length=1)
    script_id: str
    script_version: int
    current_node_id: str
    bindings: Dict[str, Union[str, int, float]] = Field(default_factory=dict)
    visited_node_ids: Tuple[str, ...] = ()
    status: SessionStatus = SessionStatus.ACTIVE
    step_count: int = Field(default=0, ge=0)

    @property
    def active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def snapshot(self) -> Dict[str, Any]:
        """Return the JSON-ready camelCase snapshot."""
        return self.model_dump(mode="json", by_alias=True)


__all__ = ["ConversationSession", "SessionStatus"]
