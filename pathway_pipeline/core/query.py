#!/usr/bin/env python3
"""
pathway_pipeline/core/query.py

Core orchestration: classification, bounded resolve/plan/execute/verify/reflect loop, aggregation.

Control flow is a closed set of stages with one transition function:

  CLASSIFY --needs_lookup--> RESOLVE -> PLAN -> EXECUTE -> VERIFY -> REFLECT
     |                          ^                                      |
     +--> CONVERSE -> DONE      +-------------- ADJUST <---(retry)-----+
                                                                       |
                                               AGGREGATE <--(proceed)--+ -> DONE

REFLECT proceeds when the quality score reaches QUALITY_THRESHOLD or the
attempt number has reached MAX_ATTEMPTS (2), so at most two full
resolve..verify cycles run per query.

Each stage function reads PipelineState and commits its output by assigning
whole fields; stage fallbacks (classifier, verifier, reflector) are local to
their modules, so a collaborator failure never leaves a half-written field.

Canonical request (into handle):
  {
    "request_id": "uuid",                                   # optional
    "query": "text",                                        # REQUIRED
    "conversation_history": [{"role": "user|assistant", "content": "..."}],  # optional
    "user_profile": {"interests": [...], "career_goals": [...], "education_level": "...", "location": "..."}  # optional
  }
Core response:
  {
    "request_id": "...",
    "resolution": "results" | "conversational" | "failure",
    "results": {pre_university_programs, institution_programs, careers, schools, campuses},
    "classification_codes": {"categories": [...], "full_codes": [...]},
    "quality_score": float | null,
    "attempts": int,
    "tools_used": [...],
    "errors": [...]
  }
Only an index load failure (or a malformed request) yields resolution == "failure".
An empty result after all attempts is still "results".
"""
from __future__ import annotations
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pathway_pipeline.core import aggregator, classifier, executor, planner, reflector, resolver
from pathway_pipeline.core.cache import Cache, InMemoryTTLCache
from pathway_pipeline.core.code_index import ClassificationCodeIndex, get_code_index
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import IndexLoadError
from pathway_pipeline.core.llm import (
    BedrockCompletionClient,
    BedrockEmbeddingClient,
    CachedEmbedder,
    CompletionClient,
    EmbeddingClient,
)
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import ConversationTurn, PipelineState, UserProfile
from pathway_pipeline.core.tools import IndexBackedTools, IndexProgramCatalog, PgProgramCatalog, RetrievalTools
from pathway_pipeline.core.verifier import RelevanceVerifier

jlog = make_jlog("core.query")


class Stage(Enum):
    CLASSIFY = "classify"
    CONVERSE = "converse"
    RESOLVE = "resolve"
    PLAN = "plan"
    EXECUTE = "execute"
    VERIFY = "verify"
    REFLECT = "reflect"
    ADJUST = "adjust"
    AGGREGATE = "aggregate"
    DONE = "done"


@dataclass
class PipelineDeps:
    index: ClassificationCodeIndex
    tools: RetrievalTools
    settings: Settings = field(default_factory=Settings)
    completion: Optional[CompletionClient] = None
    embedder: Optional[EmbeddingClient] = None
    cache: Optional[Cache] = None


def build_default_deps(settings: Optional[Settings] = None) -> PipelineDeps:
    """Wire Bedrock collaborators, the shared index and the configured program catalogue. Raises IndexLoadError."""
    settings = settings or Settings.from_env()
    index = get_code_index(settings.code_index_dir)
    catalog = PgProgramCatalog(settings) if settings.program_catalog == "postgres" else IndexProgramCatalog(index)
    cache = InMemoryTTLCache(default_ttl_sec=settings.cache_ttl_sec)
    return PipelineDeps(
        index=index,
        tools=IndexBackedTools(index, catalog),
        settings=settings,
        completion=BedrockCompletionClient(settings),
        embedder=CachedEmbedder(BedrockEmbeddingClient(settings), cache, settings.cache_ttl_sec),
        cache=cache,
    )


# ---- transition function ----
def next_stage(stage: Stage, state: PipelineState, settings: Settings) -> Stage:
    if stage is Stage.CLASSIFY:
        return Stage.RESOLVE if state.classification is not None and state.classification.needs_lookup else Stage.CONVERSE
    if stage is Stage.CONVERSE:
        return Stage.DONE
    if stage is Stage.RESOLVE:
        return Stage.PLAN
    if stage is Stage.PLAN:
        return Stage.EXECUTE
    if stage is Stage.EXECUTE:
        return Stage.VERIFY
    if stage is Stage.VERIFY:
        return Stage.REFLECT
    if stage is Stage.REFLECT:
        if state.quality is None or reflector.should_proceed(state, state.quality, settings):
            return Stage.AGGREGATE
        return Stage.ADJUST
    if stage is Stage.ADJUST:
        return Stage.RESOLVE
    if stage is Stage.AGGREGATE:
        return Stage.DONE
    raise ValueError(f"no transition from {stage}")


# ---- stage functions ----
def _classify(state: PipelineState, deps: PipelineDeps) -> None:
    state.classification = classifier.classify(state.query, state.history, deps.completion, deps.settings, state.request_id)


def _converse(state: PipelineState, deps: PipelineDeps) -> None:
    # prose is rendered by the presentation layer; nothing to retrieve
    pass


def _resolve(state: PipelineState, deps: PipelineDeps) -> None:
    ctx = resolver.resolve(state, deps.index, deps.settings)
    state.keywords = list(ctx.keywords)
    state.code_context = ctx


def _plan(state: PipelineState, deps: PipelineDeps) -> None:
    state.plan = planner.plan(state.code_context, state.strategy, deps.settings, deps.completion, state.request_id)


def _execute(state: PipelineState, deps: PipelineDeps) -> None:
    degree = state.classification.degree_preference if state.classification else None
    outcome = executor.execute(state.plan, deps.tools, deps.settings.executor_max_workers, degree, state.request_id)
    state.previous_raw = state.raw
    state.attempt_raw = outcome.result
    state.raw = executor.merge_results(state.raw, outcome.result)
    state.tools_used = state.tools_used + outcome.tools_used
    state.errors = state.errors + outcome.errors


def _verify(state: PipelineState, deps: PipelineDeps) -> None:
    v = RelevanceVerifier(deps.settings, deps.completion, deps.embedder, deps.index)
    state.verified = v.verify(state)


def _reflect(state: PipelineState, deps: PipelineDeps) -> None:
    state.quality = reflector.assess(state, deps.completion, deps.settings)


def _adjust(state: PipelineState, deps: PipelineDeps) -> None:
    strategy = reflector.adjust_strategy(state, state.quality, deps.index)
    jlog({
        "event": "retry_scheduled",
        "request_id": state.request_id,
        "attempt": state.attempt_number,
        "score": state.quality.score if state.quality else None,
        "broadened_keywords": strategy.broadened_keywords,
    })
    state.strategy = strategy
    state.attempt_number = state.attempt_number + 1


def _aggregate(state: PipelineState, deps: PipelineDeps) -> None:
    state.result = aggregator.aggregate(state.verified, deps.index, deps.settings.career_cap)


STAGE_FUNCS: Dict[Stage, Callable[[PipelineState, PipelineDeps], None]] = {
    Stage.CLASSIFY: _classify,
    Stage.CONVERSE: _converse,
    Stage.RESOLVE: _resolve,
    Stage.PLAN: _plan,
    Stage.EXECUTE: _execute,
    Stage.VERIFY: _verify,
    Stage.REFLECT: _reflect,
    Stage.ADJUST: _adjust,
    Stage.AGGREGATE: _aggregate,
}


def run_pipeline(
    query: str,
    history: Optional[List[ConversationTurn]] = None,
    profile: Optional[UserProfile] = None,
    deps: Optional[PipelineDeps] = None,
    request_id: Optional[str] = None,
) -> PipelineState:
    """Drive one query through the stages; returns the terminal state."""
    if deps is None:
        deps = build_default_deps()
    state = PipelineState(
        request_id=request_id or f"r-{int(time.time() * 1000)}",
        query=query,
        history=list(history or []),
        profile=profile,
    )
    stage = Stage.CLASSIFY
    while stage is not Stage.DONE:
        t0 = time.time()
        STAGE_FUNCS[stage](state, deps)
        jlog({"event": "stage_complete", "request_id": state.request_id, "stage": stage.value, "attempt": state.attempt_number, "ms": int((time.time() - t0) * 1000)})
        stage = next_stage(stage, state, deps.settings)
    return state


def state_to_response(state: PipelineState) -> Dict[str, Any]:
    conversational = state.classification is not None and not state.classification.needs_lookup
    ctx = state.code_context
    return {
        "request_id": state.request_id,
        "resolution": "conversational" if conversational else "results",
        "query_type": state.classification.query_type.value if state.classification else None,
        "results": aggregator.format_for_frontend(state.result) if state.result is not None else {
            "pre_university_programs": [], "institution_programs": [], "careers": [], "schools": [], "campuses": [],
        },
        "classification_codes": {
            "categories": list(ctx.categories) if ctx else [],
            "full_codes": list(ctx.full_codes) if ctx else [],
        },
        "quality_score": state.quality.score if state.quality else None,
        "attempts": 0 if conversational else state.attempt_number,
        "tools_used": list(state.tools_used),
        "errors": list(state.errors),
    }


# ---- helper validators ----
def _parse_history(raw: Any) -> List[ConversationTurn]:
    turns = []
    for item in raw or []:
        if isinstance(item, dict) and isinstance(item.get("content"), str):
            turns.append(ConversationTurn(role=str(item.get("role") or "user"), content=item["content"]))
    return turns


def _failure(request_id: str, error: str) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "resolution": "failure",
        "error": error,
        "results": {"pre_university_programs": [], "institution_programs": [], "careers": [], "schools": [], "campuses": []},
        "classification_codes": {"categories": [], "full_codes": []},
        "quality_score": None,
        "attempts": 0,
        "tools_used": [],
        "errors": [error],
    }


def handle(event: Dict[str, Any], deps: Optional[PipelineDeps] = None) -> Dict[str, Any]:
    """
    Main core entrypoint: validates the request, runs the pipeline and returns
    the canonical response described in the module docstring.
    """
    start = time.time()
    request_id = event.get("request_id") or f"r-{int(start * 1000)}"
    query_text = (event.get("query") or "").strip()
    if not query_text:
        jlog({"level": "ERROR", "event": "invalid_request_shape", "request_id": request_id, "detail": "empty_query"})
        return _failure(request_id, "empty_query")
    history = _parse_history(event.get("conversation_history"))
    profile = UserProfile.from_dict(event.get("user_profile") if isinstance(event.get("user_profile"), dict) else None)

    jlog({"event": "request_start", "request_id": request_id, "history_turns": len(history), "has_profile": profile is not None})
    if deps is None:
        try:
            deps = build_default_deps()
        except IndexLoadError as e:
            jlog({"level": "CRITICAL", "event": "index_unavailable", "request_id": request_id, "detail": str(e)})
            return _failure(request_id, "index_load_failed")

    state = run_pipeline(query_text, history, profile, deps, request_id)
    res = state_to_response(state)
    jlog({
        "event": "request_complete",
        "request_id": request_id,
        "resolution": res["resolution"],
        "attempts": res["attempts"],
        "quality_score": res["quality_score"],
        "ms": int((time.time() - start) * 1000),
    })
    return res


# Lambda-style handler (adapter common entrypoint)
def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        return handle(event)
    except Exception as e:
        jlog({"level": "ERROR", "event": "handler_unexpected", "detail": str(e)})
        req_id = (event.get("request_id") if isinstance(event, dict) else None) or f"r-{int(time.time() * 1000)}"
        return _failure(req_id, "handler_exception")


# CLI parity for local tests
if __name__ == "__main__":
    sample = {
        "request_id": "local-req",
        "query": "What nursing programs are available on Oahu?",
        "conversation_history": [],
        "user_profile": {"interests": ["healthcare"]},
    }
    print(json.dumps(handle(sample), indent=2, default=str))
