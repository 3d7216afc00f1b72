"""Pydantic schemas used by the API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field

BindingValue = Union[str, int, float]


class IssueRead(BaseModel):
    kind: str
    message: str
    node_id: str | None = None


class ScriptRead(BaseModel):
    id: str
    version: int
    entry_node_id: str
    keyword: str | None = None
    node_ids: list[str]
    variables: list[str]
    warnings: list[IssueRead] = Field(default_factory=list)


class ScriptList(BaseModel):
    scripts: list[ScriptRead]


class ValidationReport(BaseModel):
    valid: bool
    issues: list[IssueRead] = Field(default_factory=list)
    warnings: list[IssueRead] = Field(default_factory=list)


class SessionCreate(BaseModel):
    script_id: str = Field(..., min_length=1, validation_alias=AliasChoices("script_id", "scriptId"))
    version: Optional[int] = Field(default=None, ge=1, description="Pin a specific version; latest when omitted.")
    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))
    bindings: Dict[str, BindingValue] = Field(default_factory=dict)


class MessageIn(BaseModel):
    text: str = Field(default="", description="Customer reply; empty to advance a message node.")


class StageRead(BaseModel):
    completed: list[str]
    last: str | None = None
    next: str | None = None


class StepResult(BaseModel):
    session: Dict[str, Any]
    outcome: Dict[str, Any]
    stage: StageRead


class SimulateRequest(BaseModel):
    script: Dict[str, Any]
    inputs: List[str] = Field(default_factory=list)
    bindings: Dict[str, BindingValue] = Field(default_factory=dict)


class SimulationTurnRead(BaseModel):
    input: str | None = None
    outcome: Dict[str, Any]
    session: Dict[str, Any]


class SimulateResult(BaseModel):
    opening: list[str] = Field(default_factory=list)
    turns: list[SimulationTurnRead]
    session: Dict[str, Any]
    transcript: list[Dict[str, str]]
    warnings: list[IssueRead] = Field(default_factory=list)


class SessionList(BaseModel):
    sessions: list[Dict[str, Any]]
