"""
Tests for retrieval tools and program catalogues
"""
import pytest

from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import ToolError
from pathway_pipeline.core.models import DegreeLevel
from pathway_pipeline.core.tools import (
    IndexBackedTools,
    PgProgramCatalog,
    degree_from_name,
    location_matches,
)


class FakeCursor:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if self.error:
            raise self.error

    def fetchall(self):
        return self.rows


class FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor


PG_ROWS = [
    ("11.0701", "Computer Science (BS)", "Manoa", "Bachelor of Science", "University of Hawaii at Manoa", ["Data Structures", "Algorithms"]),
    ("11.0701", "Computer Science (BS)", "Hilo", "Bachelor of Science", "University of Hawaii at Hilo", None),
    ("11.0701", "Computer Science (AS)", "Kapiolani CC", "Associate in Science", "Kapiolani Community College", []),
]


def test_location_matches_by_substring_and_region():
    assert location_matches(None, "anything")
    assert location_matches("Maui", "Maui College")
    assert location_matches("Oahu", "Kapiolani CC")
    assert not location_matches("Kauai", "Hilo")


def test_degree_from_name():
    assert degree_from_name("Nursing (BSN)") == DegreeLevel.FOUR_YEAR
    assert degree_from_name("Culinary Arts (AAS)") == DegreeLevel.TWO_YEAR
    assert degree_from_name("Practical Nursing") is None


def test_empty_keywords_are_a_broad_search(tools):
    res = tools.search_by_keyword([])
    assert len(res.pre_university) == 4
    assert {r.full_code for r in res.institution} == {"51.3801", "51.0801", "12.0503", "11.0701"}


def test_search_by_keyword_with_location(tools):
    res = tools.search_by_keyword(["culinary"], "Kauai")
    assert [(r.name, r.locations) for r in res.pre_university] == [("Culinary Arts", ["Kauai High"])]
    assert [(r.name, r.campuses) for r in res.institution] == [("Culinary Arts (AAS)", ["Kauai CC"])]


def test_get_by_classification_code_accepts_categories_and_full_codes(tools):
    by_cat = tools.get_by_classification_code(["12"])
    by_code = tools.get_by_classification_code(["12.0503"])
    assert [r.full_code for r in by_cat.institution] == [r.full_code for r in by_code.institution] == ["12.0503"]
    assert [r.name for r in by_cat.pre_university] == ["Culinary Arts"]


def test_institution_records_carry_description_and_degree(tools):
    rec = tools.get_by_classification_code(["51.3801"]).institution[0]
    assert rec.name == "Nursing (BSN)"
    assert rec.description == "Health Professions"
    assert rec.degree_level == DegreeLevel.FOUR_YEAR


def test_get_detail_by_name(tools):
    d = tools.get_detail_by_name("Nursing Services")
    assert d.categories == ["51"]
    assert d.courses_by_level["level_2"] == ["Nursing Services I"]
    assert d.locations == ["Farrington High", "Baldwin High"]
    assert tools.get_detail_by_name("Nursing (BSN)") is None


def test_get_locations_for_program(tools):
    assert tools.get_locations_for_program("Culinary Arts") == ["Waipahu High", "Kauai High"]
    assert tools.get_locations_for_program("Computer Science (BS)") == ["Manoa", "Hilo"]
    assert tools.get_locations_for_program("Basket Weaving") == []


def test_get_occupations_for_code(tools):
    occ = tools.get_occupations_for_code(["12"])
    assert [(o.full_code, o.occupation_code) for o in occ] == [("12.0503", "35-1011"), ("12.0503", "35-2014")]
    assert tools.get_occupations_for_code(["99.9999"]) == []


def test_pg_catalog_merges_campus_rows():
    cur = FakeCursor(PG_ROWS)
    catalog = PgProgramCatalog(Settings(pg_programs_table="education_programs"), FakeConn(cur))
    recs = catalog.records_for_codes(["11.0701"])
    assert [r.name for r in recs] == ["Computer Science (BS)", "Computer Science (AS)"]
    assert recs[0].campuses == ["Manoa", "Hilo"]
    assert recs[0].degree_level == DegreeLevel.FOUR_YEAR
    assert recs[0].description == "University of Hawaii at Manoa. Core courses: Data Structures, Algorithms"
    assert recs[1].degree_level == DegreeLevel.TWO_YEAR
    sql, params = cur.executed[0]
    assert "FROM education_programs" in sql
    assert params == (["11.0701"],)


def test_pg_catalog_skips_query_for_no_codes():
    cur = FakeCursor(PG_ROWS)
    assert PgProgramCatalog(Settings(), FakeConn(cur)).records_for_codes([]) == []
    assert cur.executed == []


def test_pg_catalog_failure_raises_tool_error():
    catalog = PgProgramCatalog(Settings(), FakeConn(FakeCursor(error=RuntimeError("relation does not exist"))))
    with pytest.raises(ToolError) as ei:
        catalog.records_for_codes(["11.0701"])
    assert ei.value.tool == "program_catalog"


def test_tools_use_injected_catalog(index):
    tools = IndexBackedTools(index, PgProgramCatalog(Settings(), FakeConn(FakeCursor(PG_ROWS))))
    res = tools.get_by_classification_code(["11"], "Oahu")
    assert [(r.name, r.campuses) for r in res.institution] == [
        ("Computer Science (BS)", ["Manoa"]),
        ("Computer Science (AS)", ["Kapiolani CC"]),
    ]
