"""
Tests for keyword selection and code resolution
"""
import pytest

from pathway_pipeline.core.models import (
    Classification,
    ConversationTurn,
    PipelineState,
    QueryType,
    SearchStrategy,
    UserProfile,
)
from pathway_pipeline.core.resolver import (
    build_code_context,
    context_for_full_code,
    context_for_pre_university_program,
    extract_keywords,
    fuzzy_match_programs,
    fuzzy_score,
    resolve,
    resolve_location,
    select_keywords,
)


def _search(**kw):
    return Classification(needs_lookup=True, query_type=QueryType.SEARCH, **kw)


def test_extract_keywords_prefers_domain_terms():
    assert extract_keywords("I want to find nursing programs near my house") == ["nursing"]


def test_extract_keywords_ranks_by_frequency_then_position():
    assert extract_keywords("welding welding plumbing carpentry", 2) == ["welding", "plumbing"]


def test_extract_keywords_only_stop_words():
    assert extract_keywords("show me all the programs") == []


def test_select_keywords_fresh_query(settings):
    state = PipelineState(request_id="t", query="culinary programs")
    assert select_keywords(state, _search(), settings) == ["culinary"]


def test_select_keywords_bare_affirmative_uses_previous_assistant_turn(settings):
    state = PipelineState(
        request_id="t",
        query="yes",
        history=[ConversationTurn("user", "hi"), ConversationTurn("assistant", "Would you like to see nursing programs?")],
    )
    c = Classification(needs_lookup=True, query_type=QueryType.FOLLOWUP, bare_affirmative=True)
    assert select_keywords(state, c, settings) == ["nursing"]


def test_select_keywords_bare_affirmative_falls_back_to_profile(settings):
    state = PipelineState(request_id="t", query="yes", profile=UserProfile(interests=["Cooking", "Travel", "Music", "Art"]))
    c = Classification(needs_lookup=True, query_type=QueryType.FOLLOWUP, bare_affirmative=True)
    assert select_keywords(state, c, settings) == ["cooking", "travel", "music"]


def test_select_keywords_bare_affirmative_without_context_is_broad(settings):
    state = PipelineState(request_id="t", query="yes")
    c = Classification(needs_lookup=True, query_type=QueryType.FOLLOWUP, bare_affirmative=True)
    assert select_keywords(state, c, settings) == []


def test_select_keywords_topic_pivot_ignores_history(settings):
    state = PipelineState(
        request_id="t",
        query="what about culinary",
        history=[ConversationTurn("user", "nursing programs"), ConversationTurn("assistant", "nursing is offered at Hilo")],
    )
    assert select_keywords(state, _search(topic_pivot=True), settings) == ["culinary"]


def test_select_keywords_falls_back_to_previous_user_turn(settings):
    state = PipelineState(
        request_id="t",
        query="show me more",
        history=[ConversationTurn("user", "engineering programs"), ConversationTurn("assistant", "Here you go")],
    )
    assert select_keywords(state, _search(), settings) == ["engineering"]


def test_select_keywords_plain_query_ignores_profile(settings):
    state = PipelineState(request_id="t", query="nursing", profile=UserProfile(interests=["Nursing care", "Surfing"]))
    assert select_keywords(state, _search(), settings) == ["nursing"]


def test_select_keywords_topic_pivot_ignores_profile(settings):
    profile = UserProfile(interests=["Science fiction writing", "Computer games"])
    state = PipelineState(request_id="t", query="what about computer science", profile=profile)
    assert select_keywords(state, _search(topic_pivot=True), settings) == ["computer", "science"]


def test_select_keywords_affirmative_enriches_from_related_interests(settings):
    profile = UserProfile(interests=["Nursing care", "Surfing", "Nursing research", "Nursing homes"])
    state = PipelineState(
        request_id="t",
        query="sure",
        history=[ConversationTurn("assistant", "Want to see nursing programs?")],
        profile=profile,
    )
    c = Classification(needs_lookup=True, query_type=QueryType.FOLLOWUP, bare_affirmative=True)
    assert select_keywords(state, c, settings) == ["nursing", "nursing care", "nursing research"]


def test_select_keywords_region_scope_with_generic_words(settings):
    state = PipelineState(request_id="t", query="programs on maui", profile=UserProfile(interests=["culinary"]))
    c = _search(scope_type="region", location="Maui")
    assert select_keywords(state, c, settings) == ["culinary"]

    state.profile = None
    assert select_keywords(state, c, settings) == []


def test_select_keywords_retry_uses_broadened_set(settings):
    state = PipelineState(request_id="t", query="nursing", attempt_number=2)
    state.strategy = SearchStrategy(broadened_keywords=["nursing", "health", "professions", "nursing"])
    assert select_keywords(state, _search(), settings) == ["nursing", "health", "professions"]


def test_resolve_location_canonicalizes_places():
    assert resolve_location(_search(location="Kapiolani"), "") == "Oahu"
    assert resolve_location(_search(), "culinary programs in Hilo") == "Hawaii"
    assert resolve_location(_search(), "culinary programs") is None


def test_build_code_context_expands_categories(index):
    ctx = build_code_context(index, ["nursing"])
    assert ctx.categories == ["51"]
    assert set(ctx.full_codes) == {"51.3801", "51.0801"}
    assert "Nursing Services" in ctx.pre_university_programs
    assert ctx.direct_matches == ["Nursing Services"]
    assert {"Nursing (BSN)", "Medical Assisting (CA)"} <= set(ctx.institution_programs)
    assert ctx.has_pre_university_data and ctx.has_institution_data and ctx.has_career_data
    assert ctx.fuzzy is False


def test_build_code_context_empty_keywords(index):
    ctx = build_code_context(index, [])
    assert ctx.categories == [] and ctx.full_codes == []


def test_build_code_context_fuzzy_only_when_nothing_matched(index):
    ctx = build_code_context(index, ["artsy"])
    assert ctx.fuzzy is True
    assert ctx.pre_university_programs == ["Culinary Arts"]
    assert ctx.full_codes == ["12.0503"]


def test_fuzzy_score_components():
    assert fuzzy_score("culinary arts", ["culinary", "arts"], "Culinary Arts") == pytest.approx(1.8)
    assert fuzzy_score("zzz", ["zzz"], "Culinary Arts") == 0.0


def test_fuzzy_match_programs_threshold(index):
    assert fuzzy_match_programs(index, ["qqqq"]) == []


def test_resolve_sets_keywords_and_location(index, settings):
    state = PipelineState(request_id="t", query="culinary programs on kauai")
    state.classification = _search(scope_type="region", location="Kauai")
    ctx = resolve(state, index, settings)
    assert ctx.keywords == ["culinary"]
    assert ctx.location == "Kauai"
    assert ctx.full_codes == ["12.0503"]


def test_context_helpers(index):
    pre = context_for_pre_university_program(index, "Programming")
    assert pre["full_codes"] == ["11.0701"]
    assert pre["institution_programs"] == ["Computer Science (BS)", "Computer Science"]
    assert pre["schools"] == ["Hilo High"]

    full = context_for_full_code(index, "12.0503")
    assert full["category"] == "12"
    assert full["category_name"] == "Culinary Services"
    assert full["occupations"] == ["35-1011", "35-2014"]
    assert full["pre_university_programs"] == ["Culinary Arts"]
