#!/usr/bin/env python3
"""
pathway_pipeline/core/reflector.py

Reflection/Retry Controller.

* assess(): QualityAssessment from the completion collaborator, validated by
  schemas.QualityPayload; on any failure a deterministic score based only on
  which domains are non-empty (pre-university 3, institution 4, careers 3).
* should_proceed(): score >= QUALITY_THRESHOLD or attempt_number >= MAX_ATTEMPTS.
* adjust_strategy(): broadened keywords for the next resolve pass.
"""
from __future__ import annotations
import json
import time
from typing import List, Optional

from pydantic import ValidationError

from pathway_pipeline.core.code_index import ClassificationCodeIndex, tokenize_keywords
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import CollaboratorError
from pathway_pipeline.core.llm import CompletionClient, parse_json_payload
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import PipelineState, QualityAssessment, SearchStrategy
from pathway_pipeline.core.resolver import extract_keywords
from pathway_pipeline.core.schemas import QualityPayload
from pathway_pipeline.core.vocabulary import STOP_WORDS

jlog = make_jlog("core.reflector")

DOMAIN_WEIGHTS = {"pre_university": 3.0, "institution": 4.0, "careers": 3.0}
SAMPLE_NAMES = 8

REFLECTION_PROMPT = (
    "You review search results for an educational and career pathway assistant.\n"
    "Rate from 0 to 10 how well the results answer the request, list concrete issues,\n"
    "and suggest up to 5 alternative search keywords that would find better matches.\n"
    'Respond with ONLY a JSON object: {"score": 7, "issues": ["..."], "suggestions": ["keyword", ...]}'
)


def fallback_assessment(state: PipelineState, settings: Settings) -> QualityAssessment:
    v = state.verified
    present = {
        "pre_university": bool(v.pre_university),
        "institution": bool(v.institution),
        "careers": bool(v.occupations),
    }
    score = sum(DOMAIN_WEIGHTS[d] for d, ok in present.items() if ok)
    issues = [f"no {d.replace('_', '-')} results" for d, ok in present.items() if not ok]
    return QualityAssessment(score=score, issues=issues, suggestions=[], threshold=settings.quality_threshold, fallback=True)


def _summary(state: PipelineState) -> str:
    v = state.verified
    return json.dumps({
        "request": state.query,
        "keywords": state.keywords,
        "attempt": state.attempt_number,
        "pre_university": [s.record.name for s in v.pre_university[:SAMPLE_NAMES]],
        "pre_university_count": len(v.pre_university),
        "institution": [s.record.name for s in v.institution[:SAMPLE_NAMES]],
        "institution_count": len(v.institution),
        "career_count": len({o.occupation_code for o in v.occupations}),
    })


def assess(state: PipelineState, completion: Optional[CompletionClient], settings: Settings) -> QualityAssessment:
    start = time.time()
    if completion is None:
        qa = fallback_assessment(state, settings)
        jlog({"level": "WARN", "event": "reflection_fallback", "request_id": state.request_id, "reason": "no_completion_client", "score": qa.score})
        return qa
    try:
        raw = completion.complete(REFLECTION_PROMPT, [{"role": "user", "content": _summary(state)}])
        payload = QualityPayload.model_validate(parse_json_payload(raw, "{"))
    except (CollaboratorError, ValidationError) as e:
        qa = fallback_assessment(state, settings)
        jlog({"level": "WARN", "event": "reflection_fallback", "request_id": state.request_id, "detail": str(e)[:300], "score": qa.score})
        return qa
    except Exception as e:
        qa = fallback_assessment(state, settings)
        jlog({"level": "ERROR", "event": "reflection_fallback", "request_id": state.request_id, "reason": "unexpected", "detail": str(e), "score": qa.score})
        return qa
    qa = QualityAssessment(
        score=float(payload.score),
        issues=payload.issues,
        suggestions=payload.suggestions,
        threshold=settings.quality_threshold,
    )
    jlog({"event": "reflection_complete", "request_id": state.request_id, "attempt": state.attempt_number, "score": qa.score, "issues": len(qa.issues), "ms": int((time.time() - start) * 1000)})
    return qa


def should_proceed(state: PipelineState, qa: QualityAssessment, settings: Settings) -> bool:
    return qa.good_enough or state.attempt_number >= settings.max_attempts


def adjust_strategy(state: PipelineState, qa: QualityAssessment, index: Optional[ClassificationCodeIndex] = None) -> SearchStrategy:
    extra: List[str] = []
    for s in qa.suggestions:
        for kw in extract_keywords(s, 3):
            if kw not in extra:
                extra.append(kw)
    category_words: List[str] = []
    if index is not None and state.code_context is not None:
        for cat in state.code_context.categories:
            for w in tokenize_keywords(index.category_name(cat) or ""):
                if w not in STOP_WORDS and w not in category_words:
                    category_words.append(w)
    broadened: List[str] = []
    for kw in list(state.keywords) + extra + category_words:
        if kw not in broadened:
            broadened.append(kw)
    return SearchStrategy(
        broadened_keywords=broadened,
        prefer_category_search=True,
        include_related_fields=True,
        additional_keywords=extra,
    )
