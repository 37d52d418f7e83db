#!/usr/bin/env python3
"""
pathway_pipeline/core/tools.py

Retrieval tools: read-only, idempotent data access used by the executor.

Contract (RetrievalTools):
* search_by_keyword(keywords, location_filter=None)         -> RetrievalResult (pre-university + institution)
* get_by_classification_code(codes, location_filter=None)   -> RetrievalResult (codes may be categories or full codes)
* get_detail_by_name(name)                                  -> ProgramDetail | None
* get_locations_for_program(name)                           -> [location]
* get_occupations_for_code(codes)                           -> [OccupationRecord]

Institution program rows (name variants, campuses, degree level, description)
come from a ProgramCatalog:
* IndexProgramCatalog    : derived from the classification index tables
* PgProgramCatalog       : Postgres `education_programs` table via psycopg

An empty keyword list is a broad search: the first BROAD_* entries of each domain.
"""
from __future__ import annotations
import re
from typing import Any, Dict, Iterable, List, Optional, Protocol

import psycopg

from pathway_pipeline.core.code_index import ClassificationCodeIndex, is_full_code, normalize_category
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import ToolError
from pathway_pipeline.core.logs import make_jlog
from pathway_pipeline.core.models import (
    InstitutionRecord,
    OccupationRecord,
    PreUniversityRecord,
    ProgramDetail,
    RetrievalResult,
    normalize_degree_level,
)
from pathway_pipeline.core.vocabulary import detect_region

jlog = make_jlog("core.tools")

BROAD_PRE_UNIVERSITY_LIMIT = 20
BROAD_FULL_CODE_LIMIT = 30
_PAREN = re.compile(r"\(([^)]*)\)")


def location_matches(location_filter: Optional[str], place: str) -> bool:
    if not location_filter:
        return True
    loc = location_filter.strip().lower()
    if not loc:
        return True
    if loc in (place or "").lower():
        return True
    wanted = detect_region(location_filter) or location_filter.strip()
    return detect_region(place) == wanted


def filter_locations(location_filter: Optional[str], places: Iterable[str]) -> List[str]:
    return [p for p in places if location_matches(location_filter, p)]


class RetrievalTools(Protocol):
    def search_by_keyword(self, keywords: List[str], location_filter: Optional[str] = None) -> RetrievalResult: ...

    def get_by_classification_code(self, codes: List[str], location_filter: Optional[str] = None) -> RetrievalResult: ...

    def get_detail_by_name(self, name: str) -> Optional[ProgramDetail]: ...

    def get_locations_for_program(self, name: str) -> List[str]: ...

    def get_occupations_for_code(self, codes: List[str]) -> List[OccupationRecord]: ...


class ProgramCatalog(Protocol):
    def records_for_codes(self, codes: List[str]) -> List[InstitutionRecord]: ...


def degree_from_name(name: str) -> Optional[Any]:
    m = _PAREN.search(name or "")
    return normalize_degree_level(m.group(1)) if m else None


class IndexProgramCatalog:
    def __init__(self, index: ClassificationCodeIndex):
        self.index = index

    def records_for_codes(self, codes: List[str]) -> List[InstitutionRecord]:
        out: List[InstitutionRecord] = []
        for code in codes:
            cat = self.index.category_for_full_code(code)
            desc = self.index.category_name(cat) or "" if cat else ""
            campuses = self.index.campuses_for_full_code(code)
            for name in self.index.ordered_programs_for_full_code(code):
                out.append(InstitutionRecord(
                    full_code=code,
                    name=name,
                    campuses=list(campuses),
                    degree_level=degree_from_name(name),
                    description=desc,
                ))
        return out


class PgProgramCatalog:
    """
    Reads institution program rows from Postgres:
      SELECT cip_code, program_name, campus, degree_type, institution, core_courses FROM <table>
    One row per (program, campus); rows sharing (cip_code, program_name) are merged.
    """

    def __init__(self, settings: Settings, conn: Any = None):
        self.settings = settings
        self._conn = conn

    def _get_conn(self):
        if self._conn is not None:
            return self._conn
        s = self.settings
        conninfo = f"host={s.pg_host} port={s.pg_port} dbname={s.pg_db} user={s.pg_user} password={s.pg_password}"
        try:
            self._conn = psycopg.connect(conninfo, autocommit=True)
        except Exception as e:
            jlog({"level": "CRITICAL", "event": "pg_connect_failed", "detail": str(e)})
            raise ToolError("program_catalog", f"pg_connect_failed: {e}") from e
        return self._conn

    def records_for_codes(self, codes: List[str]) -> List[InstitutionRecord]:
        if not codes:
            return []
        sql = f"""
        SELECT cip_code, program_name, campus, degree_type, institution, core_courses
        FROM {self.settings.pg_programs_table}
        WHERE cip_code = ANY(%s) AND program_status = 'active'
        ORDER BY cip_code, program_name, campus;
        """
        try:
            with self._get_conn().cursor() as cur:
                cur.execute(sql, (list(codes),))
                rows = cur.fetchall()
        except ToolError:
            raise
        except Exception as e:
            jlog({"level": "ERROR", "event": "pg_catalog_query_failed", "detail": str(e)})
            raise ToolError("program_catalog", f"pg_query_failed: {e}") from e
        merged: Dict[tuple, InstitutionRecord] = {}
        for cip_code, program_name, campus, degree_type, institution, core_courses in rows:
            key = (cip_code, program_name)
            rec = merged.get(key)
            if rec is None:
                desc_parts = [institution or ""]
                if core_courses:
                    desc_parts.append("Core courses: " + ", ".join(core_courses))
                rec = InstitutionRecord(
                    full_code=cip_code,
                    name=program_name,
                    campuses=[],
                    degree_level=normalize_degree_level(degree_type),
                    description=". ".join(p for p in desc_parts if p),
                )
                merged[key] = rec
            if campus and campus not in rec.campuses:
                rec.campuses.append(campus)
        return list(merged.values())


class IndexBackedTools:
    def __init__(self, index: ClassificationCodeIndex, catalog: Optional[ProgramCatalog] = None):
        self.index = index
        self.catalog = catalog if catalog is not None else IndexProgramCatalog(index)

    # ---- record builders ----
    def _pre_records(self, names: Iterable[str], location_filter: Optional[str]) -> List[PreUniversityRecord]:
        out = []
        for name in names:
            schools = filter_locations(location_filter, self.index.schools_for_program(name))
            if location_filter and not schools:
                continue
            out.append(PreUniversityRecord(name=name, categories=sorted(self.index.categories_for_program(name)), locations=schools))
        return out

    def _institution_records(self, codes: List[str], location_filter: Optional[str]) -> List[InstitutionRecord]:
        out = []
        for rec in self.catalog.records_for_codes(codes):
            if location_filter:
                rec.campuses = filter_locations(location_filter, rec.campuses)
                if not rec.campuses:
                    continue
            out.append(rec)
        return out

    def _expand_codes(self, codes: Iterable[str]) -> List[str]:
        full: Dict[str, None] = {}
        for c in codes:
            c = str(c).strip()
            if is_full_code(c):
                full[c] = None
            else:
                for fc in self.index.ordered_full_codes_for_category(normalize_category(c)):
                    full[fc] = None
        return list(full)

    # ---- contract ----
    def search_by_keyword(self, keywords: List[str], location_filter: Optional[str] = None) -> RetrievalResult:
        if not keywords:
            pre = self.index.all_pre_university_programs()[:BROAD_PRE_UNIVERSITY_LIMIT]
            codes = self.index.all_full_codes()[:BROAD_FULL_CODE_LIMIT]
        else:
            direct = self.index.find_programs_by_name(" ".join(keywords))
            pre_set: Dict[str, None] = {n: None for n in direct["pre_university"]}
            for n in sorted(self.index.search_programs_by_keyword(keywords)):
                pre_set[n] = None
            code_set: Dict[str, None] = {c: None for c in direct["institution"]}
            for c in sorted(self.index.search_full_codes_by_keyword(keywords)):
                code_set[c] = None
            pre, codes = list(pre_set), list(code_set)
        return RetrievalResult(
            pre_university=self._pre_records(pre, location_filter),
            institution=self._institution_records(codes, location_filter),
        )

    def get_by_classification_code(self, codes: List[str], location_filter: Optional[str] = None) -> RetrievalResult:
        full = self._expand_codes(codes)
        cats: Dict[str, None] = {}
        for c in full:
            cat = self.index.category_for_full_code(c)
            if cat:
                cats[cat] = None
        pre: Dict[str, None] = {}
        for cat in cats:
            for name in self.index.pre_university_programs_for_category(cat):
                pre[name] = None
        return RetrievalResult(
            pre_university=self._pre_records(pre, location_filter),
            institution=self._institution_records(full, location_filter),
        )

    def get_detail_by_name(self, name: str) -> Optional[ProgramDetail]:
        if not self.index.is_pre_university_program(name):
            return None
        courses = self.index.courses_for_program(name)
        return ProgramDetail(
            name=name,
            categories=sorted(self.index.categories_for_program(name)),
            courses_by_grade=courses["by_grade"],
            courses_by_level=courses["by_level"],
            locations=self.index.schools_for_program(name),
        )

    def get_locations_for_program(self, name: str) -> List[str]:
        if self.index.is_pre_university_program(name):
            return self.index.schools_for_program(name)
        campuses: Dict[str, None] = {}
        for code in self.index.find_programs_by_name(name)["institution"]:
            for c in self.index.campuses_for_full_code(code):
                campuses[c] = None
        return list(campuses)

    def get_occupations_for_code(self, codes: List[str]) -> List[OccupationRecord]:
        out = []
        for code in self._expand_codes(codes):
            for occ in sorted(self.index.occupations_for_full_code(code)):
                out.append(OccupationRecord(full_code=code, occupation_code=occ))
        return out
