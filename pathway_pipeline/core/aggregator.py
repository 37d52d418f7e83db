#!/usr/bin/env python3
"""
pathway_pipeline/core/aggregator.py

Aggregator: verified candidates -> AggregatedResult. Pure function of its input.

Grouping rules:
1. pre-university programs group by exact name; schools and categories are unioned
2. institution programs group by full code only; display name is the first
   variant with parenthetical qualifiers stripped; variants and campuses are
   unioned and sorted
3. careers are restricted to occupation codes collected for a surviving full code
4. careers are capped at CAREER_CAP; only when step 3 yields nothing, all
   collected occupations are used (then capped)

Records without a resolvable full code are dropped.
"""
from __future__ import annotations
import re
import time
from typing import Any, Dict, List, Optional

from pathway_pipeline.core.code_index import ClassificationCodeIndex, is_full_code
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import (
    AggregatedResult,
    CareerAggregate,
    InstitutionAggregate,
    OccupationRecord,
    PreUniversityAggregate,
    VerifiedCandidates,
)

jlog = make_jlog("core.aggregator")

FRONTEND_VARIANTS = 3
_PARENTHETICAL = re.compile(r"\s*\([^)]*\)")


def display_name(variant: str) -> str:
    return " ".join(_PARENTHETICAL.sub("", variant).split()) or variant.strip()


def _resolvable(code: Optional[str], index: Optional[ClassificationCodeIndex]) -> bool:
    if not code:
        return False
    if index is not None:
        return index.is_known_full_code(code)
    return is_full_code(code)


def _max(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def aggregate_pre_university(verified: VerifiedCandidates, index: Optional[ClassificationCodeIndex]) -> List[PreUniversityAggregate]:
    groups: Dict[str, Dict[str, Any]] = {}
    for sc in verified.pre_university:
        r = sc.record
        g = groups.setdefault(r.name, {"categories": set(), "schools": set(), "score": None})
        g["categories"].update(r.categories)
        g["schools"].update(r.locations)
        g["score"] = _max(g["score"], sc.score)
    out = []
    for name in sorted(groups):
        g = groups[name]
        courses = index.courses_for_program(name) if index is not None else {"by_grade": {}, "by_level": {}}
        out.append(PreUniversityAggregate(
            name=name,
            categories=sorted(g["categories"]),
            schools=sorted(g["schools"]),
            courses_by_grade=courses["by_grade"],
            courses_by_level=courses["by_level"],
            score=g["score"],
        ))
    return out


def aggregate_institution(verified: VerifiedCandidates, index: Optional[ClassificationCodeIndex]) -> List[InstitutionAggregate]:
    groups: Dict[str, Dict[str, Any]] = {}
    dropped = 0
    for sc in verified.institution:
        r = sc.record
        code = (r.full_code or "").strip()
        if not _resolvable(code, index):
            dropped += 1
            continue
        g = groups.setdefault(code, {"first": r.name, "names": set(), "campuses": set(), "degrees": set(), "description": "", "score": None})
        g["names"].add(r.name)
        g["campuses"].update(r.campuses)
        if r.degree_level is not None:
            g["degrees"].add(r.degree_level.value)
        if not g["description"] and r.description:
            g["description"] = r.description
        g["score"] = _max(g["score"], sc.score)
    if dropped:
        jlog({"event": "aggregate_dropped_unresolvable", "count": dropped})
    out = [
        InstitutionAggregate(
            full_code=code,
            display_name=display_name(g["first"]),
            program_names=sorted(g["names"]),
            campuses=sorted(g["campuses"]),
            degree_levels=sorted(g["degrees"]),
            description=g["description"],
            score=g["score"],
        )
        for code, g in groups.items()
    ]
    out.sort(key=lambda a: (a.display_name.lower(), a.full_code))
    return out


def _group_occupations(records: List[OccupationRecord]) -> List[CareerAggregate]:
    by_occ: Dict[str, set] = {}
    for o in records:
        by_occ.setdefault(o.occupation_code, set()).add(o.full_code)
    return [CareerAggregate(occupation_code=occ, full_codes=sorted(by_occ[occ])) for occ in sorted(by_occ)]


def aggregate_careers(occupations: List[OccupationRecord], surviving_codes: set, cap: int) -> List[CareerAggregate]:
    restricted = _group_occupations([o for o in occupations if o.full_code in surviving_codes])
    if restricted:
        return restricted[:cap]
    return _group_occupations(list(occupations))[:cap]


def aggregate(verified: VerifiedCandidates, index: Optional[ClassificationCodeIndex] = None, career_cap: int = 10) -> AggregatedResult:
    start = time.time()
    pre = aggregate_pre_university(verified, index)
    inst = aggregate_institution(verified, index)
    careers = aggregate_careers(verified.occupations, {a.full_code for a in inst}, career_cap)
    schools = sorted({s for p in pre for s in p.schools})
    campuses = sorted({c for a in inst for c in a.campuses})
    res = AggregatedResult(
        pre_university_programs=pre,
        institution_programs=inst,
        careers=careers,
        schools=schools,
        campuses=campuses,
    )
    jlog({
        "event": "aggregate_complete",
        "pre_university": len(pre),
        "institution": len(inst),
        "careers": len(careers),
        "ms": int((time.time() - start) * 1000),
    })
    return res


def format_for_frontend(result: AggregatedResult) -> Dict[str, Any]:
    """Presentation-ready dict: institution aggregates expose only their top variants."""
    d = result.to_dict()
    for p in d["institution_programs"]:
        p["program_names"] = p["program_names"][:FRONTEND_VARIANTS]
    return d
