"""
Tests for result aggregation
"""
from pathway_pipeline.core.aggregator import aggregate, aggregate_careers, display_name, format_for_frontend
from pathway_pipeline.core.models import (
    DegreeLevel,
    InstitutionRecord,
    OccupationRecord,
    PreUniversityRecord,
    ScoredCandidate,
    VerifiedCandidates,
)


def _inst(code, name, campuses, score=8.0, degree=None):
    return ScoredCandidate(InstitutionRecord(code, name, list(campuses), degree), score)


def _cs_variants():
    return VerifiedCandidates(institution=[
        _inst("11.0701", "Computer Science (BS)", ["A"], degree=DegreeLevel.FOUR_YEAR),
        _inst("11.0701", "Computer Science - AI Track", ["B"], score=9.0, degree=DegreeLevel.FOUR_YEAR),
        _inst("11.0701", "Computer Science", ["A"]),
    ])


def test_display_name_strips_qualifiers():
    assert display_name("Computer Science (BS)") == "Computer Science"
    assert display_name("Nursing (ADN) (Evening)") == "Nursing"
    assert display_name("Welding") == "Welding"


def test_variants_group_by_full_code():
    res = aggregate(_cs_variants())
    assert len(res.institution_programs) == 1
    agg = res.institution_programs[0]
    assert agg.full_code == "11.0701"
    assert agg.display_name == "Computer Science"
    assert agg.variant_count == 3
    assert agg.campuses == ["A", "B"]
    assert agg.campus_count == 2
    assert agg.degree_levels == ["4-Year"]
    assert agg.score == 9.0
    assert res.campuses == ["A", "B"]


def test_aggregation_is_idempotent():
    verified = _cs_variants()
    verified.pre_university = [
        ScoredCandidate(PreUniversityRecord("Programming", ["11"], ["Hilo High"]), 7.0),
        ScoredCandidate(PreUniversityRecord("Programming", ["11"], ["Kapolei High"]), 6.0),
    ]
    verified.occupations = [OccupationRecord("11.0701", "15-1252")]
    assert aggregate(verified) == aggregate(verified)


def test_pre_university_groups_by_name(index):
    verified = VerifiedCandidates(pre_university=[
        ScoredCandidate(PreUniversityRecord("Nursing Services", ["51"], ["Farrington High"]), 7.0),
        ScoredCandidate(PreUniversityRecord("Nursing Services", ["51"], ["Baldwin High"]), 8.0),
    ])
    res = aggregate(verified, index)
    assert len(res.pre_university_programs) == 1
    p = res.pre_university_programs[0]
    assert p.schools == ["Baldwin High", "Farrington High"]
    assert p.courses_by_grade["9th"] == ["Biology"]
    assert res.schools == ["Baldwin High", "Farrington High"]


def test_unresolvable_codes_are_dropped(index):
    verified = VerifiedCandidates(institution=[
        _inst("12.0503", "Culinary Arts (AAS)", ["Kauai CC"]),
        _inst(None, "Mystery Program", ["X"]),
        _inst("99.9999", "Unknown Code", ["Y"]),
    ])
    res = aggregate(verified, index)
    assert [a.full_code for a in res.institution_programs] == ["12.0503"]


def test_careers_restricted_to_surviving_codes():
    verified = _cs_variants()
    verified.occupations = [
        OccupationRecord("11.0701", "15-1252"),
        OccupationRecord("51.3801", "29-1141"),
    ]
    res = aggregate(verified)
    assert [c.occupation_code for c in res.careers] == ["15-1252"]
    assert res.careers[0].full_codes == ["11.0701"]


def test_careers_fall_back_to_all_when_restriction_is_empty():
    occ = [OccupationRecord("51.3801", f"29-{1000 + i}") for i in range(15)]
    careers = aggregate_careers(occ, set(), cap=10)
    assert len(careers) == 10
    assert careers[0].occupation_code == "29-1000"


def test_careers_capped():
    occ = [OccupationRecord("11.0701", f"15-{1200 + i}") for i in range(12)]
    assert len(aggregate_careers(occ, {"11.0701"}, cap=10)) == 10


def test_empty_input():
    res = aggregate(VerifiedCandidates())
    assert res.is_empty()
    assert res.to_dict() == {"pre_university_programs": [], "institution_programs": [], "careers": [], "schools": [], "campuses": []}


def test_format_for_frontend_keeps_top_variants():
    verified = _cs_variants()
    verified.institution.append(_inst("11.0701", "Computer Science (MS)", ["C"]))
    d = format_for_frontend(aggregate(verified))
    p = d["institution_programs"][0]
    assert len(p["program_names"]) == 3
    assert p["variant_count"] == 4
    assert p["campus_count"] == 3
