#!/usr/bin/env python3
"""
e2e_local_run.py - single-process end-to-end local runner for pathway_pipeline.

Purpose
- Run the full pipeline (classify -> resolve -> plan -> execute -> verify -> reflect -> aggregate)
  against a small demo classification index, with no network access.
- Collaborators are local stand-ins:
    - ScriptedCompletion: deterministic JSON answers keyed on the system prompt
    - deterministic_embedding: SHA256-seeded pseudo-embedding (vector verifier mode)

Usage
- python3 -m pathway_pipeline.core.e2e_local_run --query "nursing programs on oahu"
- python3 -m pathway_pipeline.core.e2e_local_run --verifier-mode vector --query "culinary"
- python3 -m pathway_pipeline.core.e2e_local_run --self-test
"""
from __future__ import annotations

import argparse
import hashlib
import json
import math
import re
from typing import Any, Dict, List, Optional

from pathway_pipeline.core import classifier, planner, reflector, verifier
from pathway_pipeline.core.cache import InMemoryTTLCache
from pathway_pipeline.core.code_index import ClassificationCodeIndex, tokenize_keywords
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.llm import CachedEmbedder
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.query import PipelineDeps, handle
from pathway_pipeline.core.tools import IndexBackedTools
from pathway_pipeline.core.vocabulary import detect_region

jlog = make_jlog("e2e")

EMBED_DIM = 128


# ---------- deterministic pseudo-embedding (stable across runs) ----------
def deterministic_embedding(text: str, dim: int = EMBED_DIM) -> List[float]:
    """
    Bag-of-words pseudo-embedding: each token hashes to a fixed pseudo-random
    direction; the text vector is their L2-normalized sum, so texts sharing
    tokens have positive cosine similarity.
    """
    vals = [0.0] * dim
    for tok in tokenize_keywords(text):
        acc = hashlib.sha256(tok.encode("utf-8")).hexdigest()
        while len(acc) < dim * 8:
            acc += hashlib.sha256(acc.encode("utf-8")).hexdigest()
        for i in range(dim):
            v = int(acc[i * 8:(i + 1) * 8], 16)
            vals[i] += ((v / 0xFFFFFFFF) * 2.0) - 1.0
    norm = math.sqrt(sum(x * x for x in vals)) or 1.0
    return [x / norm for x in vals]


class DeterministicEmbedder:
    def embed(self, text: str) -> List[float]:
        return deterministic_embedding(text)


class ScriptedCompletion:
    """Answers each pipeline prompt with well-formed JSON derived from the message text."""

    def complete(self, system: str, messages: List[Dict[str, str]]) -> str:
        text = messages[-1]["content"] if messages else ""
        if system == classifier.SYSTEM_PROMPT:
            msg = text.split("MESSAGE:", 1)[-1].strip()
            region = detect_region(msg)
            return json.dumps({
                "needs_lookup": True,
                "query_type": "search",
                "reasoning": "asks about programs",
                "scope": {"type": "region" if region else "general", "location": region},
            })
        if system == verifier.VERIFIER_PROMPT:
            m = re.search(r"User is searching for: (.*)", text)
            wanted = set(tokenize_keywords(m.group(1))) if m else set()
            scores = []
            for line in text.splitlines():
                lm = re.match(r"^(\d+)\. (.*)$", line)
                if not lm:
                    continue
                toks = set(tokenize_keywords(lm.group(2)))
                scores.append({"index": int(lm.group(1)), "score": 9 if toks & wanted else 1, "reasoning": "keyword overlap"})
            return "Scores:\n" + json.dumps(scores)
        if system == reflector.REFLECTION_PROMPT:
            summary = json.loads(text)
            found = summary.get("institution_count", 0) + summary.get("pre_university_count", 0)
            return json.dumps({"score": 8 if found else 2, "issues": [] if found else ["nothing found"], "suggestions": []})
        if system == planner.PLANNER_PROMPT:
            return "[]"
        return ""


def demo_tables() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "pos_to_category": [
            {"PROGRAM_OF_STUDY": "Health Services", "CIP_2DIGIT": ["51"]},
            {"PROGRAM_OF_STUDY": "Nursing Services", "CIP_2DIGIT": ["51"]},
            {"PROGRAM_OF_STUDY": "Culinary Arts", "CIP_2DIGIT": ["12"]},
            {"PROGRAM_OF_STUDY": "Programming", "CIP_2DIGIT": ["11"]},
        ],
        "category_to_codes": [
            {"CATEGORY_NAME": "Health Professions", "CIP_2DIGIT": "51", "CIP_CODE": ["51.3801", "51.0801"]},
            {"CATEGORY_NAME": "Culinary Services", "CIP_2DIGIT": "12", "CIP_CODE": ["12.0503"]},
            {"CATEGORY_NAME": "Computer Sciences", "CIP_2DIGIT": "11", "CIP_CODE": ["11.0701"]},
        ],
        "code_to_campus": [
            {"CIP_CODE": "51.3801", "CAMPUS": ["Kapiolani CC", "Maui College", "Hilo"]},
            {"CIP_CODE": "51.0801", "CAMPUS": ["Kapiolani CC"]},
            {"CIP_CODE": "12.0503", "CAMPUS": ["Kapiolani CC", "Kauai CC"]},
            {"CIP_CODE": "11.0701", "CAMPUS": ["Manoa", "Hilo"]},
        ],
        "code_to_program": [
            {"CIP_CODE": "51.3801", "PROGRAM_NAME": ["Nursing (BSN)", "Nursing (ADN)", "Practical Nursing"]},
            {"CIP_CODE": "51.0801", "PROGRAM_NAME": ["Medical Assisting (CA)"]},
            {"CIP_CODE": "12.0503", "PROGRAM_NAME": ["Culinary Arts (AAS)"]},
            {"CIP_CODE": "11.0701", "PROGRAM_NAME": ["Computer Science (BS)", "Computer Science"]},
        ],
        "code_to_occupation": [
            {"CIP_CODE": "51.3801", "SOC_CODE": ["29-1141", "29-2061"]},
            {"CIP_CODE": "51.0801", "SOC_CODE": ["31-9092"]},
            {"CIP_CODE": "12.0503", "SOC_CODE": ["35-1011", "35-2014"]},
            {"CIP_CODE": "11.0701", "SOC_CODE": ["15-1252"]},
        ],
        "pos_courses_by_grade": [
            {"PROGRAM_OF_STUDY": "Nursing Services", "9TH_GRADE_COURSES": ["Biology"], "10TH_GRADE_COURSES": ["Health Foundations"]},
        ],
        "pos_courses_by_level": [
            {"PROGRAM_OF_STUDY": "Nursing Services", "LEVEL_1_POS_COURSES": ["Health Core"], "LEVEL_2_POS_COURSES": ["Nursing Services I"]},
        ],
        "pos_to_school": [
            {"PROGRAM_OF_STUDY": "Nursing Services", "HIGH_SCHOOL": ["Farrington High", "Baldwin High"]},
            {"PROGRAM_OF_STUDY": "Health Services", "HIGH_SCHOOL": ["Kapolei High"]},
            {"PROGRAM_OF_STUDY": "Culinary Arts", "HIGH_SCHOOL": ["Waipahu High", "Kauai High"]},
            {"PROGRAM_OF_STUDY": "Programming", "HIGH_SCHOOL": ["Hilo High"]},
        ],
    }


def build_demo_deps(verifier_mode: str = "llm") -> PipelineDeps:
    index = ClassificationCodeIndex.from_tables(demo_tables())
    settings = Settings().with_overrides(verifier_mode=verifier_mode, planner_use_llm=True)
    cache = InMemoryTTLCache(default_ttl_sec=settings.cache_ttl_sec)
    return PipelineDeps(
        index=index,
        tools=IndexBackedTools(index),
        settings=settings,
        completion=ScriptedCompletion(),
        embedder=CachedEmbedder(DeterministicEmbedder(), cache),
        cache=cache,
    )


def self_test(deps: PipelineDeps) -> None:
    """Run a few deterministic assertions to ensure the pipeline is functioning."""
    jlog({"event": "self_test_start"})
    r1 = handle({"query": "Show me nursing programs", "request_id": "st-1"}, deps)
    assert r1["resolution"] == "results", r1
    assert any(p["full_code"] == "51.3801" for p in r1["results"]["institution_programs"]), r1
    r2 = handle({"query": "hello", "request_id": "st-2"}, deps)
    assert r2["resolution"] == "conversational", r2
    r3 = handle({"query": "yes", "request_id": "st-3"}, deps)
    assert r3["resolution"] == "results" and r3["attempts"] <= 2, r3
    jlog({"event": "self_test_ok"})
    print("self-test passed.")


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="E2E local runner for pathway_pipeline")
    p.add_argument("--query", type=str, help="one-off query")
    p.add_argument("--verifier-mode", choices=["llm", "vector"], default="llm", help="relevance scoring collaborator")
    p.add_argument("--self-test", action="store_true", help="run self tests and exit")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    deps = build_demo_deps(args.verifier_mode)
    if args.self_test:
        self_test(deps)
        return
    if args.query:
        out = handle({"query": args.query}, deps)
        print(json.dumps(out, indent=2, ensure_ascii=False, default=str))
        return
    print("No query provided. Use --query or --self-test. Exiting.")


if __name__ == "__main__":
    main()
