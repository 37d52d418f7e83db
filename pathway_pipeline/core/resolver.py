#!/usr/bin/env python3
"""
pathway_pipeline/core/resolver.py

Code Resolver: classification + state -> CodeContext.

Keyword selection:
* retry attempt       -> the reflector's broadened keyword set
* bare affirmative    -> topic of the previous assistant turn, else profile interests, else [] (broad search)
* topic pivot         -> fresh keywords from this message only
* otherwise           -> fresh keywords, falling back to the previous user turn when the message has none
* fewer than 3 keywords -> related profile interests are appended
* region/school scoped query with only generic words -> profile interests[:3], else [] (broad search)

Index resolution (all against ClassificationCodeIndex):
1. direct name search on the keyword phrase
2. keyword inverted-index search
3. fuzzy scoring of pre-university program names, only when 1 and 2 found nothing
4. every matched category expands to all of its full codes
"""
from __future__ import annotations
import time
from collections import Counter
from typing import Any, Dict, List, Optional

from pathway_pipeline.core.code_index import ClassificationCodeIndex, tokenize_keywords
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import Classification, CodeContext, ConversationTurn, PipelineState, QueryType, UserProfile
from pathway_pipeline.core.vocabulary import DOMAIN_KEYWORDS, GENERIC_SCOPE_WORDS, REGION_ALIASES, STOP_WORDS, detect_region

jlog = make_jlog("core.resolver")

FUZZY_THRESHOLD = 0.3
FUZZY_TOP_N = 5
MIN_KEYWORDS_BEFORE_ENRICHMENT = 3
ENRICHMENT_INTEREST_LIMIT = 2
SCOPE_INTEREST_LIMIT = 3

_REGION_TOKENS = frozenset(tok for alias in REGION_ALIASES for tok in tokenize_keywords(alias))


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for it in items:
        key = it.lower().strip()
        if key and key not in seen:
            seen.add(key)
            out.append(it.strip())
    return out


def extract_keywords(text: str, max_keywords: int = 5) -> List[str]:
    """Up to max_keywords ranked keywords; any domain term present overrides frequency ranking."""
    tokens = [t for t in tokenize_keywords(text) if t not in STOP_WORDS]
    if not tokens:
        return []
    domain = _dedupe([t for t in tokens if t in DOMAIN_KEYWORDS])
    if domain:
        return domain[:max_keywords]
    counts = Counter(tokens)
    first_pos: Dict[str, int] = {}
    for i, t in enumerate(tokens):
        first_pos.setdefault(t, i)
    ranked = sorted(counts, key=lambda t: (-counts[t], first_pos[t]))
    return ranked[:max_keywords]


def _last_turn(history: List[ConversationTurn], role: str) -> Optional[ConversationTurn]:
    for t in reversed(history):
        if (t.role or "").lower() == role:
            return t
    return None


def _related(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a in b or b in a or (len(a) >= 4 and len(b) >= 4 and a[:4] == b[:4])


def relevant_profile_interests(profile: Optional[UserProfile], keywords: List[str]) -> List[str]:
    if not profile or not profile.interests:
        return []
    out = []
    for interest in profile.interests:
        toks = tokenize_keywords(interest)
        if any(_related(t, k) for t in toks for k in keywords):
            out.append(interest.lower().strip())
    return out


def _only_generic(keywords: List[str]) -> bool:
    return all(k.lower() in GENERIC_SCOPE_WORDS or k.lower() in _REGION_TOKENS for k in keywords)


def select_keywords(state: PipelineState, classification: Classification, settings: Settings) -> List[str]:
    max_kw = settings.max_keywords
    profile = state.profile
    history = state.history

    if state.strategy is not None and state.attempt_number > 1:
        return _dedupe(list(state.strategy.broadened_keywords))[: max_kw * 2]

    fresh = extract_keywords(state.query, max_kw)
    if classification.bare_affirmative:
        prev = _last_turn(history, "assistant")
        keywords = extract_keywords(prev.content, max_kw) if prev else []
        if not keywords and profile and profile.interests:
            keywords = [i.lower().strip() for i in profile.interests[:SCOPE_INTEREST_LIMIT]]
        elif 0 < len(keywords) < MIN_KEYWORDS_BEFORE_ENRICHMENT:
            keywords = keywords + relevant_profile_interests(profile, keywords)[:ENRICHMENT_INTEREST_LIMIT]
    elif classification.topic_pivot:
        keywords = fresh
    else:
        keywords = fresh
        if not keywords:
            prev_user = _last_turn(history, "user")
            keywords = extract_keywords(prev_user.content, max_kw) if prev_user else []

    if classification.scope_type in ("region", "school") and _only_generic(keywords):
        if profile and profile.interests:
            keywords = [i.lower().strip() for i in profile.interests[:SCOPE_INTEREST_LIMIT]]
        else:
            keywords = []

    return _dedupe(keywords)[:max_kw]


def resolve_location(classification: Classification, query: str) -> Optional[str]:
    if classification.location:
        return detect_region(classification.location) or classification.location
    return detect_region(query)


def fuzzy_score(query_text: str, keywords: List[str], name: str) -> float:
    name_l = name.lower()
    q = " ".join(query_text.lower().split())
    score = 0.0
    if q and (q in name_l or name_l in q):
        score += 0.8
    kws = [k.lower() for k in keywords if k.strip()]
    if kws:
        score += (sum(1 for k in kws if k in name_l) / len(kws)) * 0.6
    q_toks = tokenize_keywords(q)
    n_toks = tokenize_keywords(name_l)
    if q_toks and n_toks:
        partial = sum(1 for qt in q_toks if any(qt in nt or nt in qt for nt in n_toks))
        score += (partial / len(q_toks)) * 0.4
    return score


def fuzzy_match_programs(index: ClassificationCodeIndex, keywords: List[str]) -> List[str]:
    query_text = " ".join(keywords)
    scored = []
    for name in index.all_pre_university_programs():
        s = fuzzy_score(query_text, keywords, name)
        if s > FUZZY_THRESHOLD:
            scored.append((s, name))
    scored.sort(key=lambda x: (-x[0], x[1]))
    return [name for _, name in scored[:FUZZY_TOP_N]]


def build_code_context(index: ClassificationCodeIndex, keywords: List[str], location: Optional[str] = None) -> CodeContext:
    ctx = CodeContext(keywords=list(keywords), location=location)
    if not keywords:
        return ctx

    categories: Dict[str, None] = {}
    codes: Dict[str, None] = {}
    pre_programs: Dict[str, None] = {}
    direct: Dict[str, None] = {}

    # 1) direct name search
    hits = index.find_programs_by_name(" ".join(keywords))
    for name in hits["pre_university"]:
        direct[name] = None
        pre_programs[name] = None
    for code in hits["institution"]:
        codes[code] = None

    # 2) keyword inverted index
    for name in sorted(index.search_programs_by_keyword(keywords)):
        pre_programs[name] = None
    for code in sorted(index.search_full_codes_by_keyword(keywords)):
        codes[code] = None

    # 3) fuzzy, only when nothing matched
    if not pre_programs and not codes:
        for name in fuzzy_match_programs(index, keywords):
            pre_programs[name] = None
        ctx.fuzzy = bool(pre_programs)

    for name in pre_programs:
        for cat in sorted(index.categories_for_program(name)):
            categories[cat] = None
    for code in codes:
        cat = index.category_for_full_code(code)
        if cat:
            categories[cat] = None

    # 4) expand categories
    for cat in categories:
        for code in index.ordered_full_codes_for_category(cat):
            codes[code] = None

    inst_names: Dict[str, None] = {}
    has_career = False
    for code in codes:
        for name in index.ordered_programs_for_full_code(code):
            inst_names[name] = None
        if index.occupations_for_full_code(code):
            has_career = True

    ctx.categories = list(categories)
    ctx.full_codes = list(codes)
    ctx.pre_university_programs = list(pre_programs)
    ctx.institution_programs = list(inst_names)
    ctx.direct_matches = list(direct)
    ctx.has_pre_university_data = bool(pre_programs)
    ctx.has_institution_data = bool(inst_names)
    ctx.has_career_data = has_career
    return ctx


def resolve(state: PipelineState, index: ClassificationCodeIndex, settings: Settings) -> CodeContext:
    start = time.time()
    classification = state.classification or Classification(needs_lookup=True, query_type=QueryType.SEARCH)
    keywords = select_keywords(state, classification, settings)
    location = resolve_location(classification, state.query)
    ctx = build_code_context(index, keywords, location)
    jlog({
        "event": "resolve_complete",
        "request_id": state.request_id,
        "attempt": state.attempt_number,
        "keywords": keywords,
        "location": location,
        "categories": len(ctx.categories),
        "full_codes": len(ctx.full_codes),
        "fuzzy": ctx.fuzzy,
        "ms": int((time.time() - start) * 1000),
    })
    return ctx


# ---- context helpers ----
def context_for_pre_university_program(index: ClassificationCodeIndex, name: str) -> Dict[str, Any]:
    cats = sorted(index.categories_for_program(name))
    codes: List[str] = []
    for cat in cats:
        codes.extend(index.ordered_full_codes_for_category(cat))
    inst: Dict[str, None] = {}
    for code in codes:
        for n in index.ordered_programs_for_full_code(code):
            inst[n] = None
    return {
        "program": name,
        "categories": [{"code": c, "name": index.category_name(c)} for c in cats],
        "full_codes": codes,
        "institution_programs": list(inst),
        "schools": index.schools_for_program(name),
    }


def context_for_full_code(index: ClassificationCodeIndex, code: str) -> Dict[str, Any]:
    cat = index.category_for_full_code(code)
    return {
        "full_code": code,
        "category": cat,
        "category_name": index.category_name(cat) if cat else None,
        "institution_programs": index.ordered_programs_for_full_code(code),
        "campuses": index.campuses_for_full_code(code),
        "occupations": sorted(index.occupations_for_full_code(code)),
        "pre_university_programs": index.pre_university_programs_for_category(cat) if cat else [],
    }
