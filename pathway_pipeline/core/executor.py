#!/usr/bin/env python3
"""
pathway_pipeline/core/executor.py

Retrieval Executor: runs a plan against RetrievalTools.

* Independent calls run concurrently on a thread pool; each writes only its
  own result slot. The executor waits for all of them (join barrier) and then
  merges the slots in plan order.
* get_occupations("all") depends on the institution records collected by the
  other calls, so it runs after the barrier.
* A failed call contributes no records; its error is returned for the
  non-fatal error list and the attempt continues.
* Merge dedupes by exact identity (pre-university name, institution
  (full_code, name), occupation (full_code, occupation_code)) and unions
  location lists onto records already seen.
"""
from __future__ import annotations
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from pathway_pipeline.core.errors import ToolError
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import (
    DegreeLevel,
    InstitutionRecord,
    OccupationRecord,
    PreUniversityRecord,
    RetrievalResult,
    ToolCall,
)
from pathway_pipeline.core.planner import ALL_COLLECTED
from pathway_pipeline.core.tools import RetrievalTools

jlog = make_jlog("core.executor")


def _union(into: List[str], new: List[str]) -> None:
    for x in new:
        if x not in into:
            into.append(x)


class CandidateAccumulator:
    """Identity-keyed merge of retrieval results; insertion order is preserved."""

    def __init__(self, base: Optional[RetrievalResult] = None):
        self._pre: Dict[str, PreUniversityRecord] = {}
        self._inst: Dict[Tuple[Optional[str], str], InstitutionRecord] = {}
        self._occ: Dict[Tuple[str, str], OccupationRecord] = {}
        if base is not None:
            self.add(base)

    def add(self, res: RetrievalResult) -> None:
        for r in res.pre_university:
            cur = self._pre.get(r.name)
            if cur is None:
                self._pre[r.name] = PreUniversityRecord(r.name, list(r.categories), list(r.locations))
            else:
                _union(cur.categories, r.categories)
                _union(cur.locations, r.locations)
        for r in res.institution:
            key = (r.full_code, r.name)
            cur = self._inst.get(key)
            if cur is None:
                self._inst[key] = InstitutionRecord(r.full_code, r.name, list(r.campuses), r.degree_level, r.description)
            else:
                _union(cur.campuses, r.campuses)
                cur.degree_level = cur.degree_level or r.degree_level
                cur.description = cur.description or r.description
        for r in res.occupations:
            self._occ.setdefault((r.full_code, r.occupation_code), OccupationRecord(r.full_code, r.occupation_code))

    def institution_codes(self) -> List[str]:
        seen: Dict[str, None] = {}
        for code, _ in self._inst:
            if code:
                seen[code] = None
        return list(seen)

    def result(self) -> RetrievalResult:
        return RetrievalResult(list(self._pre.values()), list(self._inst.values()), list(self._occ.values()))


def merge_results(*results: RetrievalResult) -> RetrievalResult:
    acc = CandidateAccumulator()
    for r in results:
        acc.add(r)
    return acc.result()


@dataclass
class ExecutionOutcome:
    result: RetrievalResult
    tools_used: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


# ---- tool catalogue ----
def _trace_pathway(tools: RetrievalTools, args: Dict) -> RetrievalResult:
    location = args.get("location")
    found = tools.search_by_keyword(args.get("keywords") or [], location)
    cats: Dict[str, None] = {}
    for r in found.pre_university:
        for c in r.categories:
            cats[c] = None
    by_cat = tools.get_by_classification_code(list(cats), location) if cats else RetrievalResult()
    # pre-university programs from the category expansion are secondary; keep only the keyword hits
    by_cat.pre_university = []
    merged = merge_results(found, by_cat)
    codes = list({r.full_code: None for r in merged.institution if r.full_code})
    merged.occupations = tools.get_occupations_for_code(codes) if codes else []
    return merged


def _search_programs(tools: RetrievalTools, args: Dict) -> RetrievalResult:
    return tools.search_by_keyword(args.get("keywords") or [], args.get("location"))


def _by_code(tools: RetrievalTools, args: Dict) -> RetrievalResult:
    return tools.get_by_classification_code(args.get("codes") or [], args.get("location"))


def _detail(tools: RetrievalTools, args: Dict) -> RetrievalResult:
    d = tools.get_detail_by_name(args["name"])
    if d is None:
        return RetrievalResult()
    return RetrievalResult(pre_university=[PreUniversityRecord(d.name, list(d.categories), list(d.locations))])


def _locations(tools: RetrievalTools, args: Dict) -> RetrievalResult:
    locs = tools.get_locations_for_program(args["name"])
    if not locs:
        return RetrievalResult()
    return RetrievalResult(pre_university=[PreUniversityRecord(args["name"], [], list(locs))])


def _occupations(tools: RetrievalTools, args: Dict) -> RetrievalResult:
    return RetrievalResult(occupations=tools.get_occupations_for_code(args.get("codes") or []))


TOOL_CATALOGUE: Dict[str, Callable[[RetrievalTools, Dict], RetrievalResult]] = {
    "trace_pathway": _trace_pathway,
    "search_programs": _search_programs,
    "get_by_classification_code": _by_code,
    "get_program_detail": _detail,
    "get_program_locations": _locations,
    "get_occupations": _occupations,
}


def _run_one(tools: RetrievalTools, call: ToolCall) -> Tuple[Optional[RetrievalResult], Optional[str]]:
    fn = TOOL_CATALOGUE.get(call.name)
    if fn is None:
        return None, f"{call.name}: unknown_tool"
    try:
        return fn(tools, call.args), None
    except ToolError as e:
        return None, f"{call.name}: {e.detail}"
    except Exception as e:
        return None, f"{call.name}: {e}"


def _drop_other_degrees(res: RetrievalResult, degree: Optional[DegreeLevel]) -> RetrievalResult:
    if degree is None:
        return res
    res.institution = [r for r in res.institution if r.degree_level is None or r.degree_level == degree]
    return res


def execute(
    plan: List[ToolCall],
    tools: RetrievalTools,
    max_workers: int = 4,
    degree_preference: Optional[DegreeLevel] = None,
    request_id: Optional[str] = None,
) -> ExecutionOutcome:
    start = time.time()
    immediate = [c for c in plan if not (c.name == "get_occupations" and c.args.get("codes") == ALL_COLLECTED)]
    deferred = [c for c in plan if c not in immediate]

    slots: List[Tuple[Optional[RetrievalResult], Optional[str]]] = []
    if immediate:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(immediate)))) as pool:
            futures = [pool.submit(_run_one, tools, c) for c in immediate]
            slots = [f.result() for f in futures]

    acc = CandidateAccumulator()
    tools_used: List[str] = []
    errors: List[str] = []
    for call, (res, err) in zip(immediate, slots):
        tools_used.append(call.name)
        if err is not None:
            errors.append(err)
            jlog({"level": "WARN", "event": "tool_failed", "request_id": request_id, "tool": call.name, "detail": err})
            continue
        acc.add(_drop_other_degrees(res, degree_preference))

    for call in deferred:
        tools_used.append(call.name)
        codes = acc.institution_codes()
        if not codes:
            continue
        res, err = _run_one(tools, ToolCall(call.name, {"codes": codes}))
        if err is not None:
            errors.append(err)
            jlog({"level": "WARN", "event": "tool_failed", "request_id": request_id, "tool": call.name, "detail": err})
            continue
        acc.add(res)

    result = acc.result()
    jlog({
        "event": "execute_complete",
        "request_id": request_id,
        "tools": tools_used,
        "pre_university": len(result.pre_university),
        "institution": len(result.institution),
        "occupations": len(result.occupations),
        "errors": len(errors),
        "ms": int((time.time() - start) * 1000),
    })
    return ExecutionOutcome(result=result, tools_used=tools_used, errors=errors)
