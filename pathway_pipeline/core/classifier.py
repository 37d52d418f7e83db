#!/usr/bin/env python3
"""
pathway_pipeline/core/classifier.py

Query Classifier: raw text + recent turns -> Classification.

Order of decisions:
1. Bare affirmative ("yes", "ok", ...)        -> needs_lookup=True, followup (no collaborator call)
2. Greeting / acknowledgment ("hi", "thanks") -> needs_lookup=False (no collaborator call)
3. Otherwise the completion collaborator is asked for a JSON object validated by
   schemas.ClassifierPayload.
4. Any collaborator failure or invalid payload -> needs_lookup=False, clarification.
   The pipeline never searches on the strength of malformed output.

topic_pivot and bare_affirmative are always computed locally.
"""
from __future__ import annotations
import json
import time
from typing import List, Optional

from pydantic import ValidationError

from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import CollaboratorError
from pathway_pipeline.core.llm import CompletionClient, parse_json_payload
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import Classification, ConversationTurn, DegreeLevel, QueryType
from pathway_pipeline.core.schemas import ClassifierPayload
from pathway_pipeline.core.vocabulary import (
    ACKNOWLEDGMENT_PAT,
    AFFIRMATIVE_PAT,
    GREETING_PAT,
    TOPIC_PIVOT_PAT,
    matching_topics,
)

jlog = make_jlog("core.classifier")

RECENT_TURNS_KEPT = 3
MAX_FILTERED_TURNS = 5

SYSTEM_PROMPT = (
    "You classify messages sent to an educational and career pathway assistant.\n"
    "Decide whether answering requires looking up programs, schools, campuses or careers.\n"
    "Respond with ONLY a JSON object of this shape:\n"
    '{"needs_lookup": true|false,\n'
    ' "query_type": "search"|"followup"|"clarification"|"reasoning"|"greeting",\n'
    ' "reasoning": "one short sentence",\n'
    ' "scope": {"type": "region"|"school"|"general", "location": "place name or null"},\n'
    ' "degree_preference": "Non-Credit"|"2-Year"|"4-Year"|null,\n'
    ' "institution_filter": {"type": "school"|"college", "name": "name"} or null}\n'
    "Use needs_lookup=false for small talk, questions about the conversation itself, or when the message is unclear."
)


def filter_relevant_conversation(history: List[ConversationTurn], max_turns: int = MAX_FILTERED_TURNS) -> List[ConversationTurn]:
    """
    Keep the last 3 turns; keep an older turn only if it mentions a topic that
    also appears in those recent turns. At most max_turns are returned.
    """
    if len(history) <= RECENT_TURNS_KEPT:
        return list(history)
    recent = history[-RECENT_TURNS_KEPT:]
    topics = set()
    for t in recent:
        topics.update(matching_topics(t.content))
    if not topics:
        return list(recent)
    older = [t for t in history[:-RECENT_TURNS_KEPT] if topics.intersection(matching_topics(t.content))]
    room = max(0, max_turns - RECENT_TURNS_KEPT)
    kept_older = older[-room:] if room else []
    return kept_older + list(recent)


def is_bare_affirmative(text: str) -> bool:
    return bool(AFFIRMATIVE_PAT.match((text or "").strip()))


def is_topic_pivot(text: str) -> bool:
    return bool(TOPIC_PIVOT_PAT.match((text or "").strip()))


def fallback_classification(reason: str) -> Classification:
    return Classification(
        needs_lookup=False,
        query_type=QueryType.CLARIFICATION,
        reasoning=reason,
        fallback=True,
    )


def _fast_path(text: str) -> Optional[Classification]:
    stripped = (text or "").strip()
    if AFFIRMATIVE_PAT.match(stripped):
        return Classification(
            needs_lookup=True,
            query_type=QueryType.FOLLOWUP,
            reasoning="bare affirmative continues the previous topic",
            bare_affirmative=True,
        )
    if ACKNOWLEDGMENT_PAT.match(stripped):
        return Classification(needs_lookup=False, query_type=QueryType.CLARIFICATION, reasoning="acknowledgment")
    if GREETING_PAT.match(stripped):
        return Classification(needs_lookup=False, query_type=QueryType.GREETING, reasoning="greeting")
    return None


def _build_messages(query: str, history: List[ConversationTurn], turns: int) -> List[dict]:
    recent = filter_relevant_conversation(history)[-turns:] if turns > 0 else []
    lines = [f"{t.role}: {t.content}" for t in recent]
    ctx = "\n".join(lines) if lines else "(no prior conversation)"
    return [{"role": "user", "content": f"RECENT CONVERSATION:\n{ctx}\n\nMESSAGE:\n{query.strip()}"}]


def classify(
    query: str,
    history: List[ConversationTurn],
    completion: Optional[CompletionClient],
    settings: Settings,
    request_id: Optional[str] = None,
) -> Classification:
    start = time.time()
    fast = _fast_path(query)
    if fast is not None:
        jlog({"event": "classify_fast_path", "request_id": request_id, "query_type": fast.query_type.value, "needs_lookup": fast.needs_lookup})
        return fast

    if completion is None:
        jlog({"level": "WARN", "event": "classifier_fallback", "request_id": request_id, "reason": "no_completion_client"})
        return fallback_classification("no completion collaborator")

    try:
        raw = completion.complete(SYSTEM_PROMPT, _build_messages(query, history, settings.history_turns))
        payload = ClassifierPayload.model_validate(parse_json_payload(raw, "{"))
    except CollaboratorError as e:
        jlog({"level": "WARN", "event": "classifier_fallback", "request_id": request_id, "reason": "collaborator_error", "detail": str(e)})
        return fallback_classification("classification unavailable")
    except ValidationError as e:
        jlog({"level": "WARN", "event": "classifier_fallback", "request_id": request_id, "reason": "invalid_payload", "detail": json.dumps(e.errors(), default=str)[:500]})
        return fallback_classification("classification unparseable")
    except Exception as e:
        jlog({"level": "ERROR", "event": "classifier_fallback", "request_id": request_id, "reason": "unexpected", "detail": str(e)})
        return fallback_classification("classification unavailable")

    scope = payload.scope
    inst = payload.institution_filter
    result = Classification(
        needs_lookup=payload.needs_lookup,
        query_type=QueryType(payload.query_type),
        reasoning=payload.reasoning,
        location=(scope.location.strip() if scope and scope.location and scope.location.strip() else None),
        scope_type=scope.type if scope else None,
        degree_preference=DegreeLevel(payload.degree_preference) if payload.degree_preference else None,
        institution_filter=(inst.name.strip() if inst and inst.name and inst.name.strip() else None),
        topic_pivot=is_topic_pivot(query),
        bare_affirmative=False,
    )
    jlog({
        "event": "classify_complete",
        "request_id": request_id,
        "needs_lookup": result.needs_lookup,
        "query_type": result.query_type.value,
        "scope_type": result.scope_type,
        "topic_pivot": result.topic_pivot,
        "ms": int((time.time() - start) * 1000),
    })
    return result
