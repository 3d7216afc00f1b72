"""Pydantic shapes for raw script documents handed in by the authoring side."""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _Raw(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class KeywordMatcherDef(_Raw):
    type: Literal["keyword"]
    keywords: List[str] = Field(..., min_length=1)


class PatternMatcherDef(_Raw):
    type: Literal["pattern"]
    pattern: str = Field(..., min_length=1)


class CatchAllMatcherDef(_Raw):
    type: Literal["catch_all"]


MatcherDef = Annotated[
    Union[KeywordMatcherDef, PatternMatcherDef, CatchAllMatcherDef],
    Field(discriminator="type"),
]


class TransitionDef(_Raw):
    target: str = Field(..., validation_alias=AliasChoices("target", "targetNodeId", "target_node_id"))
    matcher: MatcherDef
    priority: int = 0
    captures: List[str] = Field(default_factory=list)
    intent: Optional[str] = None


class NodeDef(_Raw):
    id: str = Field(..., min_length=1)
    kind: Literal["message", "decision", "terminal"]
    template: str = ""
    stage: Optional[Literal["pitch", "qualify", "checkout", "delivery", "objection"]] = None
    transitions: List[TransitionDef] = Field(default_factory=list)


class VariableDef(_Raw):
    name: str = Field(..., min_length=1)
    type: Literal["string", "number", "enum"] = "string"
    values: List[str] = Field(default_factory=list)
    required: bool = False
    default: Optional[Union[str, int, float]] = None


class ScriptDefinition(_Raw):
    """The document an operator saves from the script editor."""

    id: str = Field(..., min_length=1)
    version: int = Field(default=1, ge=1)
    entry_node_id: str = Field(
        ..., validation_alias=AliasChoices("entryNodeId", "entry_node_id", "entry")
    )
    keyword: Optional[str] = None
    nodes: List[NodeDef] = Field(default_factory=list)
    variables: List[VariableDef] = Field(default_factory=list)


__all__ = [
    "CatchAllMatcherDef",
    "KeywordMatcherDef",
    "MatcherDef",
    "NodeDef",
    "PatternMatcherDef",
    "ScriptDefinition",
    "TransitionDef",
    "VariableDef",
]
