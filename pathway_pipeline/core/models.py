"""
pathway_pipeline/core/models.py

Typed values flowing between pipeline stages.

Identity rules:
* PreUniversityRecord  -> exact name
* InstitutionRecord    -> (full_code, name); aggregation identity is full_code alone
* OccupationRecord     -> (full_code, occupation_code)
"""
from __future__ import annotations
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class QueryType(str, Enum):
    SEARCH = "search"
    FOLLOWUP = "followup"
    CLARIFICATION = "clarification"
    REASONING = "reasoning"
    GREETING = "greeting"


class DegreeLevel(str, Enum):
    NON_CREDIT = "Non-Credit"
    TWO_YEAR = "2-Year"
    FOUR_YEAR = "4-Year"


_DEGREE_PATTERNS = [
    (re.compile(r"\b(non[- ]?credit|certificate of competence|co)\b", re.I), DegreeLevel.NON_CREDIT),
    (re.compile(r"\b(2[- ]?year|associate|aas|aa|as|atc|cert\w*)\b", re.I), DegreeLevel.TWO_YEAR),
    (re.compile(r"\b(4[- ]?year|bachelor|ba|bs|bfa|bsn|master|ms|ma|phd|doctor\w*)\b", re.I), DegreeLevel.FOUR_YEAR),
]


def normalize_degree_level(raw: Optional[str]) -> Optional[DegreeLevel]:
    if not raw:
        return None
    for member in DegreeLevel:
        if raw.strip().lower() == member.value.lower():
            return member
    for pat, level in _DEGREE_PATTERNS:
        if pat.search(raw):
            return level
    return None


@dataclass
class ConversationTurn:
    role: str
    content: str


@dataclass
class UserProfile:
    interests: List[str] = field(default_factory=list)
    career_goals: List[str] = field(default_factory=list)
    education_level: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> Optional["UserProfile"]:
        if not d:
            return None

        def _list(v: Any) -> List[str]:
            if isinstance(v, str):
                return [v] if v.strip() else []
            return [str(x) for x in (v or []) if str(x).strip()]

        return cls(
            interests=_list(d.get("interests")),
            career_goals=_list(d.get("career_goals") or d.get("careerGoals")),
            education_level=d.get("education_level") or d.get("educationLevel"),
            location=d.get("location"),
        )


@dataclass
class Classification:
    needs_lookup: bool
    query_type: QueryType
    reasoning: str = ""
    location: Optional[str] = None
    scope_type: Optional[str] = None  # region | school | general
    degree_preference: Optional[DegreeLevel] = None
    institution_filter: Optional[str] = None
    topic_pivot: bool = False
    bare_affirmative: bool = False
    fallback: bool = False


@dataclass
class SearchStrategy:
    broadened_keywords: List[str] = field(default_factory=list)
    prefer_category_search: bool = False
    include_related_fields: bool = False
    additional_keywords: List[str] = field(default_factory=list)


@dataclass
class CodeContext:
    keywords: List[str] = field(default_factory=list)
    location: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    full_codes: List[str] = field(default_factory=list)
    pre_university_programs: List[str] = field(default_factory=list)
    institution_programs: List[str] = field(default_factory=list)
    direct_matches: List[str] = field(default_factory=list)
    has_pre_university_data: bool = False
    has_institution_data: bool = False
    has_career_data: bool = False
    fuzzy: bool = False


@dataclass
class ToolCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PreUniversityRecord:
    name: str
    categories: List[str] = field(default_factory=list)
    locations: List[str] = field(default_factory=list)


@dataclass
class InstitutionRecord:
    full_code: Optional[str]
    name: str
    campuses: List[str] = field(default_factory=list)
    degree_level: Optional[DegreeLevel] = None
    description: str = ""


@dataclass
class OccupationRecord:
    full_code: str
    occupation_code: str


@dataclass
class ProgramDetail:
    name: str
    categories: List[str] = field(default_factory=list)
    courses_by_grade: Dict[str, List[str]] = field(default_factory=dict)
    courses_by_level: Dict[str, List[str]] = field(default_factory=dict)
    locations: List[str] = field(default_factory=list)


@dataclass
class RetrievalResult:
    pre_university: List[PreUniversityRecord] = field(default_factory=list)
    institution: List[InstitutionRecord] = field(default_factory=list)
    occupations: List[OccupationRecord] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.pre_university or self.institution or self.occupations)


@dataclass
class ScoredCandidate:
    record: Any
    score: float
    reasoning: str = ""
    fallback: bool = False


@dataclass
class VerifiedCandidates:
    pre_university: List[ScoredCandidate] = field(default_factory=list)
    institution: List[ScoredCandidate] = field(default_factory=list)
    occupations: List[OccupationRecord] = field(default_factory=list)
    thresholds: Dict[str, float] = field(default_factory=dict)


@dataclass
class QualityAssessment:
    score: float
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    threshold: float = 5.0
    fallback: bool = False

    @property
    def good_enough(self) -> bool:
        return self.score >= self.threshold


@dataclass
class PreUniversityAggregate:
    name: str
    categories: List[str]
    schools: List[str]
    courses_by_grade: Dict[str, List[str]] = field(default_factory=dict)
    courses_by_level: Dict[str, List[str]] = field(default_factory=dict)
    score: Optional[float] = None


@dataclass
class InstitutionAggregate:
    full_code: str
    display_name: str
    program_names: List[str]
    campuses: List[str]
    degree_levels: List[str] = field(default_factory=list)
    description: str = ""
    score: Optional[float] = None

    @property
    def variant_count(self) -> int:
        return len(self.program_names)

    @property
    def campus_count(self) -> int:
        return len(self.campuses)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["variant_count"] = self.variant_count
        d["campus_count"] = self.campus_count
        return d


@dataclass
class CareerAggregate:
    occupation_code: str
    full_codes: List[str]


@dataclass
class AggregatedResult:
    pre_university_programs: List[PreUniversityAggregate] = field(default_factory=list)
    institution_programs: List[InstitutionAggregate] = field(default_factory=list)
    careers: List[CareerAggregate] = field(default_factory=list)
    schools: List[str] = field(default_factory=list)
    campuses: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.pre_university_programs or self.institution_programs or self.careers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pre_university_programs": [asdict(p) for p in self.pre_university_programs],
            "institution_programs": [p.to_dict() for p in self.institution_programs],
            "careers": [asdict(c) for c in self.careers],
            "schools": list(self.schools),
            "campuses": list(self.campuses),
        }


@dataclass
class PipelineState:
    """
    Single-owner state threaded through the control loop.
    Created per query, discarded after termination. Stages commit results by
    assigning whole fields; a failing stage leaves its fields untouched.
    """

    request_id: str
    query: str
    history: List[ConversationTurn] = field(default_factory=list)
    profile: Optional[UserProfile] = None
    attempt_number: int = 1
    keywords: List[str] = field(default_factory=list)
    classification: Optional[Classification] = None
    strategy: Optional[SearchStrategy] = None
    code_context: Optional[CodeContext] = None
    plan: List[ToolCall] = field(default_factory=list)
    tools_used: List[str] = field(default_factory=list)
    raw: RetrievalResult = field(default_factory=RetrievalResult)
    previous_raw: RetrievalResult = field(default_factory=RetrievalResult)
    attempt_raw: RetrievalResult = field(default_factory=RetrievalResult)
    verified: VerifiedCandidates = field(default_factory=VerifiedCandidates)
    quality: Optional[QualityAssessment] = None
    result: Optional[AggregatedResult] = None
    errors: List[str] = field(default_factory=list)
