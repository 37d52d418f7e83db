#!/usr/bin/env python3
"""
pathway_pipeline/core/planner.py

Retrieval Planner: CodeContext -> ordered [ToolCall].

Decision table (applied in this order):
* retry strategy prefers category search  -> get_by_classification_code(categories)
* always                                  -> trace_pathway(keywords, location)
* pre-university program named directly   -> get_program_detail(name) + get_program_locations(name)
* location-qualified query with categories -> get_by_classification_code(categories, location)
* always                                  -> get_occupations("all")

When PLANNER_USE_LLM is on, the completion collaborator may propose extra
calls; each is validated (tool name enum + argument shapes) and invalid ones
are dropped. A failed or empty planning call changes nothing: the trace
invocation is part of the table and cannot be removed.
"""
from __future__ import annotations
import json
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import CollaboratorError
from pathway_pipeline.core.llm import CompletionClient, parse_json_payload
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import CodeContext, SearchStrategy, ToolCall
from pathway_pipeline.core.schemas import PlannedToolPayload

jlog = make_jlog("core.planner")

MAX_DIRECT_DETAILS = 3
ALL_COLLECTED = "all"

# argument name -> expected kind ("str_list", "str", "opt_str", "codes")
TOOL_ARGS: Dict[str, Dict[str, str]] = {
    "trace_pathway": {"keywords": "str_list", "location": "opt_str"},
    "search_programs": {"keywords": "str_list", "location": "opt_str"},
    "get_by_classification_code": {"codes": "str_list", "location": "opt_str"},
    "get_program_detail": {"name": "str"},
    "get_program_locations": {"name": "str"},
    "get_occupations": {"codes": "codes"},
}

PLANNER_PROMPT = (
    "You plan data lookups for an educational and career pathway assistant.\n"
    "AVAILABLE TOOLS:\n"
    "- trace_pathway(keywords: string[], location?: string)\n"
    "- search_programs(keywords: string[], location?: string)\n"
    "- get_by_classification_code(codes: string[], location?: string)\n"
    "- get_program_detail(name: string)\n"
    "- get_program_locations(name: string)\n"
    "- get_occupations(codes: string[] | \"all\")\n"
    'Respond with ONLY a JSON array: [{"tool": "...", "args": {...}}]. Use the keywords given; do not invent codes.'
)


def _valid_args(tool: str, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    kinds = TOOL_ARGS[tool]
    out: Dict[str, Any] = {}
    for key, kind in kinds.items():
        v = args.get(key)
        if kind == "str_list":
            if not isinstance(v, list) or not all(isinstance(x, str) for x in v):
                return None
            out[key] = [x.strip() for x in v if x.strip()]
        elif kind == "str":
            if not isinstance(v, str) or not v.strip():
                return None
            out[key] = v.strip()
        elif kind == "opt_str":
            if v is not None and not isinstance(v, str):
                return None
            out[key] = v.strip() if isinstance(v, str) and v.strip() else None
        elif kind == "codes":
            if v == ALL_COLLECTED:
                out[key] = ALL_COLLECTED
            elif isinstance(v, list) and all(isinstance(x, str) for x in v):
                out[key] = [x.strip() for x in v if x.strip()]
            else:
                return None
    return out


def _call_key(call: ToolCall) -> str:
    return call.name + ":" + json.dumps(call.args, sort_keys=True, default=str)


def decision_table(ctx: CodeContext, strategy: Optional[SearchStrategy]) -> List[ToolCall]:
    calls: List[ToolCall] = []
    if strategy is not None and strategy.prefer_category_search and ctx.categories:
        calls.append(ToolCall("get_by_classification_code", {"codes": list(ctx.categories), "location": ctx.location}))
    calls.append(ToolCall("trace_pathway", {"keywords": list(ctx.keywords), "location": ctx.location}))
    for name in ctx.direct_matches[:MAX_DIRECT_DETAILS]:
        calls.append(ToolCall("get_program_detail", {"name": name}))
        calls.append(ToolCall("get_program_locations", {"name": name}))
    if ctx.location and ctx.categories:
        calls.append(ToolCall("get_by_classification_code", {"codes": list(ctx.categories), "location": ctx.location}))
    calls.append(ToolCall("get_occupations", {"codes": ALL_COLLECTED}))
    return calls


def llm_plan(ctx: CodeContext, completion: CompletionClient, request_id: Optional[str] = None) -> List[ToolCall]:
    """Collaborator-proposed calls; [] on any failure."""
    summary = {
        "keywords": ctx.keywords,
        "location": ctx.location,
        "categories": ctx.categories[:10],
        "pre_university_programs": ctx.pre_university_programs[:10],
        "institution_programs": ctx.institution_programs[:10],
        "has_career_data": ctx.has_career_data,
    }
    try:
        raw = completion.complete(PLANNER_PROMPT, [{"role": "user", "content": json.dumps(summary)}])
        items = parse_json_payload(raw, "[")
    except CollaboratorError as e:
        jlog({"level": "WARN", "event": "planner_llm_fallback", "request_id": request_id, "detail": str(e)})
        return []
    except Exception as e:
        jlog({"level": "ERROR", "event": "planner_llm_fallback", "request_id": request_id, "reason": "unexpected", "detail": str(e)})
        return []
    if not isinstance(items, list):
        return []
    calls = []
    dropped = 0
    for item in items:
        try:
            p = PlannedToolPayload.model_validate(item)
        except ValidationError:
            dropped += 1
            continue
        args = _valid_args(p.tool, p.args)
        if args is None:
            dropped += 1
            continue
        calls.append(ToolCall(p.tool, args))
    if dropped:
        jlog({"level": "WARN", "event": "planner_llm_calls_dropped", "request_id": request_id, "dropped": dropped})
    return calls


def plan(
    ctx: CodeContext,
    strategy: Optional[SearchStrategy],
    settings: Settings,
    completion: Optional[CompletionClient] = None,
    request_id: Optional[str] = None,
) -> List[ToolCall]:
    start = time.time()
    calls = decision_table(ctx, strategy)
    if settings.planner_use_llm and completion is not None:
        # proposed calls run before the trailing occupations lookup
        calls = calls[:-1] + llm_plan(ctx, completion, request_id) + calls[-1:]
    seen = set()
    out = []
    for c in calls:
        k = _call_key(c)
        if k not in seen:
            seen.add(k)
            out.append(c)
    jlog({"event": "plan_complete", "request_id": request_id, "tools": [c.name for c in out], "ms": int((time.time() - start) * 1000)})
    return out
