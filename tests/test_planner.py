"""
Tests for retrieval planning
"""
import json

from pathway_pipeline.core.errors import CollaboratorError
from pathway_pipeline.core.models import CodeContext, SearchStrategy
from pathway_pipeline.core.planner import ALL_COLLECTED, PLANNER_PROMPT, decision_table, llm_plan, plan

from helpers import FakeCompletion


def _names(calls):
    return [c.name for c in calls]


def test_minimal_plan_traces_and_collects_occupations(settings):
    calls = plan(CodeContext(keywords=["welding"]), None, settings)
    assert _names(calls) == ["trace_pathway", "get_occupations"]
    assert calls[0].args == {"keywords": ["welding"], "location": None}
    assert calls[-1].args == {"codes": ALL_COLLECTED}


def test_direct_matches_add_detail_and_locations():
    ctx = CodeContext(keywords=["nursing"], categories=["51"], direct_matches=["Nursing Services"])
    assert _names(decision_table(ctx, None)) == [
        "trace_pathway",
        "get_program_detail",
        "get_program_locations",
        "get_occupations",
    ]


def test_location_qualified_query_adds_category_lookup():
    ctx = CodeContext(keywords=["culinary"], location="Kauai", categories=["12"])
    calls = decision_table(ctx, None)
    by_code = [c for c in calls if c.name == "get_by_classification_code"]
    assert by_code and by_code[0].args == {"codes": ["12"], "location": "Kauai"}


def test_retry_strategy_prefers_category_search_first():
    ctx = CodeContext(keywords=["nursing", "health"], categories=["51"])
    calls = decision_table(ctx, SearchStrategy(prefer_category_search=True))
    assert calls[0].name == "get_by_classification_code"
    assert calls[1].name == "trace_pathway"


def test_plan_dedupes_identical_calls(settings):
    ctx = CodeContext(keywords=["culinary"], location="Kauai", categories=["12"])
    calls = plan(ctx, SearchStrategy(prefer_category_search=True), settings)
    assert _names(calls).count("get_by_classification_code") == 1


def test_llm_plan_keeps_only_valid_calls():
    reply = json.dumps([
        {"tool": "search_programs", "args": {"keywords": ["chef"], "location": None}},
        {"tool": "drop_database", "args": {}},
        {"tool": "get_program_detail", "args": {"name": 42}},
        {"tool": "get_occupations", "args": {"codes": ["12.0503"]}},
    ])
    calls = llm_plan(CodeContext(keywords=["chef"]), FakeCompletion({PLANNER_PROMPT: reply}))
    assert _names(calls) == ["search_programs", "get_occupations"]
    assert calls[1].args == {"codes": ["12.0503"]}


def test_llm_proposals_run_before_trailing_occupations(settings):
    reply = json.dumps([{"tool": "search_programs", "args": {"keywords": ["chef"]}}])
    s = settings.with_overrides(planner_use_llm=True)
    calls = plan(CodeContext(keywords=["chef"]), None, s, FakeCompletion({PLANNER_PROMPT: reply}))
    assert _names(calls) == ["trace_pathway", "search_programs", "get_occupations"]


def test_failed_llm_planning_keeps_decision_table(settings):
    s = settings.with_overrides(planner_use_llm=True)
    for fake in (FakeCompletion({PLANNER_PROMPT: CollaboratorError("down")}), FakeCompletion({PLANNER_PROMPT: "no idea"})):
        calls = plan(CodeContext(keywords=["chef"]), None, s, fake)
        assert _names(calls) == ["trace_pathway", "get_occupations"]


def test_llm_planning_disabled_makes_no_call(settings):
    fake = FakeCompletion({PLANNER_PROMPT: "[]"})
    plan(CodeContext(keywords=["chef"]), None, settings, fake)
    assert fake.calls == []
