"""
pathway_pipeline/core/schemas.py

Strict schemas for collaborator payloads. Completion output is untrusted:
it is located with llm.parse_json_payload and validated here before any
branch is taken on it. Required fields fail validation (the caller then uses
its component fallback); optional fields degrade to None on bad values.
"""
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

QueryTypeLiteral = Literal["search", "followup", "clarification", "reasoning", "greeting"]
ScopeTypeLiteral = Literal["region", "school", "general"]
DegreeLiteral = Literal["Non-Credit", "2-Year", "4-Year"]
ToolNameLiteral = Literal[
    "trace_pathway",
    "search_programs",
    "get_by_classification_code",
    "get_program_detail",
    "get_program_locations",
    "get_occupations",
]


def _none_unless(allowed: tuple, v: Any) -> Any:
    return v if v in allowed else None


class ScopePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[ScopeTypeLiteral] = None
    location: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _scope_type(cls, v: Any) -> Any:
        if v == "island":
            return "region"
        return _none_unless(("region", "school", "general"), v)


class InstitutionFilterPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[Literal["school", "college"]] = None
    name: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _filter_type(cls, v: Any) -> Any:
        return _none_unless(("school", "college"), v)


class ClassifierPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    needs_lookup: bool
    query_type: QueryTypeLiteral
    reasoning: str = ""
    scope: Optional[ScopePayload] = None
    degree_preference: Optional[DegreeLiteral] = None
    institution_filter: Optional[InstitutionFilterPayload] = None

    @field_validator("degree_preference", mode="before")
    @classmethod
    def _degree(cls, v: Any) -> Any:
        return _none_unless(("Non-Credit", "2-Year", "4-Year"), v)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning(cls, v: Any) -> Any:
        return v if isinstance(v, str) else ""

    @field_validator("scope", "institution_filter", mode="before")
    @classmethod
    def _objects(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None


class PlannedToolPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tool: ToolNameLiteral
    args: Dict[str, Any] = Field(default_factory=dict)


class RelevanceScorePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = Field(ge=1)
    score: float = Field(ge=0.0, le=10.0)
    reasoning: str = ""

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning(cls, v: Any) -> Any:
        return v if isinstance(v, str) else ""


class QualityPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score: float = Field(ge=0.0, le=10.0)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @field_validator("issues", "suggestions", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [str(x).strip() for x in v if isinstance(x, (str, int, float)) and str(x).strip()]
