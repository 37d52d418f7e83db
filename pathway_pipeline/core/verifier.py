#!/usr/bin/env python3
"""
pathway_pipeline/core/verifier.py

Relevance Verifier: raw candidates -> scored, filtered, sorted candidates.

Inputs per attempt are bounded (VERIFIER_MAX_PRE_UNIVERSITY / VERIFIER_MAX_INSTITUTION)
and scored in fixed-size batches, processed one batch at a time:
* mode "llm"    : one completion call per batch returning [{"index", "score", "reasoning"}]
* mode "vector" : query context embedded once; candidate texts embedded concurrently
                  within the batch; cosine similarity rescaled to [0, 10]

Fail-open: a batch whose collaborator call fails keeps every candidate with
NEUTRAL_SCORE and fallback=True. Fallback candidates bypass the threshold and
the classification check.

Adaptive threshold per domain (computed from non-fallback scores):
* any score >= THRESHOLD_STRONG_TRIGGER               -> THRESHOLD_STRONG ("strong")
* else effective query has <= 3 distinct words (len>3) -> THRESHOLD_GENERIC ("generic")
* else                                                -> THRESHOLD_DEFAULT ("default")

Classification check (institution domain): unknown full codes are dropped; in
"default" mode, candidates outside the resolved categories must score a strong match.
Occupation records are not scored here.
"""
from __future__ import annotations
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from pathway_pipeline.core.code_index import ClassificationCodeIndex, tokenize_keywords
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import CollaboratorError
from pathway_pipeline.core.llm import CompletionClient, EmbeddingClient, cosine_similarity, parse_json_payload
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import (
    InstitutionRecord,
    PipelineState,
    PreUniversityRecord,
    ScoredCandidate,
    VerifiedCandidates,
)
from pathway_pipeline.core.schemas import RelevanceScorePayload
from pathway_pipeline.core.vocabulary import STOP_WORDS

jlog = make_jlog("core.verifier")

CONTEXT_USER_TURNS = 3

VERIFIER_PROMPT = (
    "You judge how relevant education programs are to a student's request.\n"
    "Score each numbered program from 0 (unrelated) to 10 (exactly what was asked).\n"
    "A program in a different field than the request scores below 3 even if it shares a word.\n"
    'Respond with ONLY a JSON array: [{"index": 1, "score": 8.5, "reasoning": "short reason"}, ...]'
)


def effective_query(state: PipelineState) -> str:
    return " ".join(state.keywords).strip() or state.query.strip()


def meaningful_word_count(text: str) -> int:
    return len({w for w in tokenize_keywords(text) if len(w) > 3 and w not in STOP_WORDS})


def build_verification_context(state: PipelineState) -> str:
    lines = [f"User is searching for: {effective_query(state)}"]
    users = [t.content for t in state.history if (t.role or "").lower() == "user"][-CONTEXT_USER_TURNS:]
    if users:
        lines.append("Recent user messages: " + " | ".join(users))
    bare = bool(state.classification and state.classification.bare_affirmative)
    p = state.profile
    if p is not None and not bare:
        if p.interests:
            lines.append("Interests: " + ", ".join(p.interests))
        if p.career_goals:
            lines.append("Career goals: " + ", ".join(p.career_goals))
        if p.location:
            lines.append("Location: " + p.location)
    return "\n".join(lines)


def candidate_window(state: PipelineState) -> Tuple[List[PreUniversityRecord], List[InstitutionRecord]]:
    """
    Merged raw candidates ordered for the per-attempt window: identities first
    found by this attempt, then ones it found again, then earlier-only ones.
    """
    def rank(key, current, previous):
        if key in current:
            return 1 if key in previous else 0
        return 2

    cur_pre = {r.name for r in state.attempt_raw.pre_university}
    old_pre = {r.name for r in state.previous_raw.pre_university}
    cur_inst = {(r.full_code, r.name) for r in state.attempt_raw.institution}
    old_inst = {(r.full_code, r.name) for r in state.previous_raw.institution}
    pre = sorted(state.raw.pre_university, key=lambda r: rank(r.name, cur_pre, old_pre))
    inst = sorted(state.raw.institution, key=lambda r: rank((r.full_code, r.name), cur_inst, old_inst))
    return pre, inst


def candidate_text(record: Any) -> str:
    if isinstance(record, InstitutionRecord):
        parts = [f"Program: {record.name}"]
        if record.description:
            parts.append(f"Description: {record.description}")
        if record.full_code:
            parts.append(f"Classification: {record.full_code}")
        if record.degree_level is not None:
            parts.append(f"Degree: {record.degree_level.value}")
        return ". ".join(parts)
    if isinstance(record, PreUniversityRecord):
        return f"High school program of study: {record.name}"
    return str(record)


def compute_threshold(scores: List[float], query: str, settings: Settings) -> Tuple[float, str]:
    if any(s >= settings.threshold_strong_trigger for s in scores):
        return settings.threshold_strong, "strong"
    if meaningful_word_count(query) <= 3:
        return settings.threshold_generic, "generic"
    return settings.threshold_default, "default"


def _fail_open(batch: List[Any], settings: Settings, reason: str) -> List[ScoredCandidate]:
    return [ScoredCandidate(record=r, score=settings.neutral_score, reasoning=reason, fallback=True) for r in batch]


class RelevanceVerifier:
    def __init__(
        self,
        settings: Settings,
        completion: Optional[CompletionClient] = None,
        embedder: Optional[EmbeddingClient] = None,
        index: Optional[ClassificationCodeIndex] = None,
    ):
        self.settings = settings
        self.completion = completion
        self.embedder = embedder
        self.index = index

    # ---- batch scorers ----
    def _score_batch_llm(self, batch: List[Any], context: str, domain: str, request_id: Optional[str]) -> List[ScoredCandidate]:
        if self.completion is None:
            return _fail_open(batch, self.settings, "no completion collaborator")
        listing = "\n".join(f"{i}. {candidate_text(r)}" for i, r in enumerate(batch, start=1))
        msg = f"{context}\n\n{domain.upper()} CANDIDATES:\n{listing}"
        try:
            raw = self.completion.complete(VERIFIER_PROMPT, [{"role": "user", "content": msg}])
            items = parse_json_payload(raw, "[")
            if not isinstance(items, list):
                raise CollaboratorError("payload_not_array")
        except Exception as e:
            jlog({"level": "WARN", "event": "verifier_batch_fail_open", "request_id": request_id, "domain": domain, "size": len(batch), "detail": str(e)})
            return _fail_open(batch, self.settings, "scoring unavailable")

        scores: Dict[int, RelevanceScorePayload] = {}
        for item in items:
            try:
                p = RelevanceScorePayload.model_validate(item)
            except ValidationError:
                continue
            if p.index <= len(batch):
                scores.setdefault(p.index, p)
        out = []
        for i, r in enumerate(batch, start=1):
            p = scores.get(i)
            if p is None:
                out.append(ScoredCandidate(record=r, score=self.settings.neutral_score, reasoning="not scored", fallback=True))
            else:
                out.append(ScoredCandidate(record=r, score=round(p.score, 1), reasoning=p.reasoning))
        return out

    def _score_batch_vector(self, batch: List[Any], query_vec: List[float], domain: str, request_id: Optional[str]) -> List[ScoredCandidate]:
        texts = [candidate_text(r) for r in batch]
        try:
            with ThreadPoolExecutor(max_workers=max(1, min(self.settings.verifier_max_workers, len(batch)))) as pool:
                vecs = list(pool.map(self.embedder.embed, texts))
        except Exception as e:
            jlog({"level": "WARN", "event": "verifier_batch_fail_open", "request_id": request_id, "domain": domain, "size": len(batch), "detail": str(e)})
            return _fail_open(batch, self.settings, "similarity unavailable")
        out = []
        for r, v in zip(batch, vecs):
            sim = cosine_similarity(query_vec, v)
            out.append(ScoredCandidate(record=r, score=round(max(0.0, sim) * 10.0, 1), reasoning=f"cosine={sim:.3f}"))
        return out

    # ---- domain scoring ----
    def score_domain(self, candidates: List[Any], context: str, domain: str, request_id: Optional[str] = None) -> List[ScoredCandidate]:
        if not candidates:
            return []
        size = max(1, self.settings.verifier_batch_size)
        batches = [candidates[i : i + size] for i in range(0, len(candidates), size)]
        mode = self.settings.verifier_mode
        query_vec: Optional[List[float]] = None
        if mode == "vector":
            if self.embedder is None:
                return [c for b in batches for c in _fail_open(b, self.settings, "no embedding collaborator")]
            try:
                query_vec = self.embedder.embed(context)
            except Exception as e:
                jlog({"level": "WARN", "event": "verifier_query_embed_failed", "request_id": request_id, "domain": domain, "detail": str(e)})
                return [c for b in batches for c in _fail_open(b, self.settings, "similarity unavailable")]
        scored: List[ScoredCandidate] = []
        for b in batches:
            if mode == "vector":
                scored.extend(self._score_batch_vector(b, query_vec, domain, request_id))
            else:
                scored.extend(self._score_batch_llm(b, context, domain, request_id))
        return scored

    def filter_domain(self, scored: List[ScoredCandidate], query: str) -> Tuple[List[ScoredCandidate], float, str]:
        threshold, mode = compute_threshold([s.score for s in scored if not s.fallback], query, self.settings)
        kept = [s for s in scored if s.fallback or s.score >= threshold]
        kept.sort(key=lambda s: -s.score)
        return kept, threshold, mode

    def classification_check(self, kept: List[ScoredCandidate], categories: List[str], mode: str) -> List[ScoredCandidate]:
        if self.index is None:
            return kept
        allowed = set(categories)
        out = []
        for s in kept:
            if s.fallback:
                out.append(s)
                continue
            code = s.record.full_code
            if not self.index.is_known_full_code(code):
                continue
            if mode == "default" and allowed and self.index.category_for_full_code(code) not in allowed \
                    and s.score < self.settings.threshold_strong_trigger:
                continue
            out.append(s)
        return out

    def verify(self, state: PipelineState) -> VerifiedCandidates:
        start = time.time()
        s = self.settings
        context = build_verification_context(state)
        query = effective_query(state)
        pre, inst = candidate_window(state)
        pre = pre[: s.verifier_max_pre_university]
        inst = inst[: s.verifier_max_institution]

        pre_kept, pre_thr, pre_mode = self.filter_domain(self.score_domain(pre, context, "pre_university", state.request_id), query)
        inst_kept, inst_thr, inst_mode = self.filter_domain(self.score_domain(inst, context, "institution", state.request_id), query)
        categories = state.code_context.categories if state.code_context else []
        inst_kept = self.classification_check(inst_kept, categories, inst_mode)

        out = VerifiedCandidates(
            pre_university=pre_kept,
            institution=inst_kept,
            occupations=list(state.raw.occupations),
            thresholds={"pre_university": pre_thr, "institution": inst_thr},
        )
        jlog({
            "event": "verify_complete",
            "request_id": state.request_id,
            "mode": s.verifier_mode,
            "pre_university_in": len(pre),
            "pre_university_kept": len(pre_kept),
            "pre_university_threshold": pre_thr,
            "threshold_modes": [pre_mode, inst_mode],
            "institution_in": len(inst),
            "institution_kept": len(inst_kept),
            "institution_threshold": inst_thr,
            "ms": int((time.time() - start) * 1000),
        })
        return out
