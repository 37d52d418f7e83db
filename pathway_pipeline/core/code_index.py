#!/usr/bin/env python3
"""
pathway_pipeline/core/code_index.py

Classification Code Index: read-only mappings between the two-level
classification vocabulary (category code -> full codes) and the three result
domains (pre-university programs, institution programs/campuses, occupations).

Backing tables (line-delimited JSON, paths relative to CODE_INDEX_DIR):
* highschool/highschool_pos_to_cip2digit_mapping.jsonl   {PROGRAM_OF_STUDY, CIP_2DIGIT[]}
* college/cip2digit_to_cip/cip2digit_to_cip_mapping.jsonl {CATEGORY_NAME, CIP_2DIGIT, CIP_CODE[]}
* college/cip_to_campus/cip_to_campus_mapping.jsonl      {CIP_CODE, CAMPUS[]}
* college/cip_to_program/cip_to_program_mapping.jsonl    {CIP_CODE, PROGRAM_NAME[]}
* workforce/cip_to_soc_mapping.jsonl                     {CIP_CODE, SOC_CODE[]}
* highschool/pos_to_courses_by_grade.jsonl               {PROGRAM_OF_STUDY, 9TH_GRADE_COURSES[] .. 12TH_GRADE_COURSES[]}
* highschool/pos_to_recommended_and_level_courses.jsonl  {PROGRAM_OF_STUDY, RECOMMENDED_COURSES[], LEVEL_1_POS_COURSES[] ..}
* highschool/pos_to_highschool_mapping.jsonl             {PROGRAM_OF_STUDY, HIGH_SCHOOL[]}

Invariants:
* Every full code belongs to exactly one category (violations fail the load).
* Loading is all-or-nothing: structures are built locally and published in one step.
* After initialize() returns, every lookup is a pure read and needs no locking.
* Any missing or undecodable table raises IndexLoadError.
"""
from __future__ import annotations
import json
import os
import re
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Set

from pathway_pipeline.core.errors import IndexLoadError
from pathway_pipeline.core.logs import make_jlog

jlog = make_jlog("core.code_index")

TABLE_FILES = {
    "pos_to_category": "highschool/highschool_pos_to_cip2digit_mapping.jsonl",
    "category_to_codes": "college/cip2digit_to_cip/cip2digit_to_cip_mapping.jsonl",
    "code_to_campus": "college/cip_to_campus/cip_to_campus_mapping.jsonl",
    "code_to_program": "college/cip_to_program/cip_to_program_mapping.jsonl",
    "code_to_occupation": "workforce/cip_to_soc_mapping.jsonl",
    "pos_courses_by_grade": "highschool/pos_to_courses_by_grade.jsonl",
    "pos_courses_by_level": "highschool/pos_to_recommended_and_level_courses.jsonl",
    "pos_to_school": "highschool/pos_to_highschool_mapping.jsonl",
}

GRADE_FIELDS = {
    "9th": "9TH_GRADE_COURSES",
    "10th": "10TH_GRADE_COURSES",
    "11th": "11TH_GRADE_COURSES",
    "12th": "12TH_GRADE_COURSES",
}
LEVEL_FIELDS = {
    "recommended": "RECOMMENDED_COURSES",
    "level_1": "LEVEL_1_POS_COURSES",
    "level_2": "LEVEL_2_POS_COURSES",
    "level_3": "LEVEL_3_POS_COURSES",
    "level_4": "LEVEL_4_POS_COURSES",
}

FULL_CODE_PAT = re.compile(r"^\d{2}\.\d{4}$")
_PUNCT = re.compile(r"[^\w\s]")


def tokenize_keywords(text: str) -> List[str]:
    """Lower-case, strip punctuation, drop tokens of 2 characters or fewer."""
    return [w for w in _PUNCT.sub(" ", (text or "").lower()).split() if len(w) > 2]


def normalize_category(code: Any) -> str:
    s = str(code or "").strip()
    return s.zfill(2) if s.isdigit() else s


def is_full_code(code: Optional[str]) -> bool:
    return bool(code) and bool(FULL_CODE_PAT.match(code.strip()))


def _as_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        return [v.strip()] if v.strip() else []
    return [str(x).strip() for x in v if str(x).strip()]


def _add(mapping: Dict[str, Dict[str, None]], key: str, value: str) -> None:
    # dict-as-ordered-set keeps first-seen order deterministic
    mapping.setdefault(key, {})[value] = None


def load_jsonl(path: str) -> List[Dict[str, Any]]:
    if not os.path.isfile(path):
        raise IndexLoadError(f"table_missing: {path}")
    rows: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except ValueError as e:
                raise IndexLoadError(f"table_decode_failed: {path}:{lineno}: {e}") from e
            if not isinstance(row, dict):
                raise IndexLoadError(f"table_row_not_object: {path}:{lineno}")
            rows.append(row)
    return rows


def load_tables(data_dir: str) -> Dict[str, List[Dict[str, Any]]]:
    return {name: load_jsonl(os.path.join(data_dir, rel)) for name, rel in TABLE_FILES.items()}


class ClassificationCodeIndex:
    def __init__(self):
        self._lock = threading.Lock()
        self._initialized = False
        self._reset()

    def _reset(self) -> None:
        self._pos_to_categories: Dict[str, Dict[str, None]] = {}
        self._category_to_pos: Dict[str, Dict[str, None]] = {}
        self._category_names: Dict[str, str] = {}
        self._category_to_codes: Dict[str, Dict[str, None]] = {}
        self._code_to_category: Dict[str, str] = {}
        self._code_to_campuses: Dict[str, Dict[str, None]] = {}
        self._campus_to_codes: Dict[str, Dict[str, None]] = {}
        self._code_to_programs: Dict[str, Dict[str, None]] = {}
        self._code_to_occupations: Dict[str, Dict[str, None]] = {}
        self._occupation_to_codes: Dict[str, Dict[str, None]] = {}
        self._courses_by_grade: Dict[str, Dict[str, List[str]]] = {}
        self._courses_by_level: Dict[str, Dict[str, List[str]]] = {}
        self._pos_to_schools: Dict[str, Dict[str, None]] = {}
        self._keyword_to_codes: Dict[str, Dict[str, None]] = {}
        self._keyword_to_pos: Dict[str, Dict[str, None]] = {}

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ---- loading ----
    def initialize(self, data_dir: str) -> None:
        """Blocking one-time load; a second call is a no-op."""
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            start = time.time()
            try:
                tables = load_tables(data_dir)
            except IndexLoadError as e:
                jlog({"level": "CRITICAL", "event": "index_load_failed", "data_dir": data_dir, "detail": str(e)})
                raise
            self._build(tables)
            jlog({"event": "index_loaded", "data_dir": data_dir, "ms": int((time.time() - start) * 1000), **self.stats()})

    @classmethod
    def from_tables(cls, tables: Dict[str, List[Dict[str, Any]]]) -> "ClassificationCodeIndex":
        idx = cls()
        missing = [name for name in TABLE_FILES if name not in tables]
        if missing:
            raise IndexLoadError(f"tables_missing: {','.join(missing)}")
        with idx._lock:
            idx._build(tables)
        return idx

    def _build(self, tables: Dict[str, List[Dict[str, Any]]]) -> None:
        staged = ClassificationCodeIndex.__new__(ClassificationCodeIndex)
        staged._reset()

        for row in tables["pos_to_category"]:
            pos = str(row.get("PROGRAM_OF_STUDY") or "").strip()
            if not pos:
                continue
            staged._pos_to_categories.setdefault(pos, {})
            for cat in _as_list(row.get("CIP_2DIGIT")):
                cat = normalize_category(cat)
                _add(staged._pos_to_categories, pos, cat)
                _add(staged._category_to_pos, cat, pos)

        for row in tables["category_to_codes"]:
            cat = normalize_category(row.get("CIP_2DIGIT"))
            if not cat:
                continue
            staged._category_names[cat] = str(row.get("CATEGORY_NAME") or "").strip()
            staged._category_to_codes.setdefault(cat, {})
            for code in _as_list(row.get("CIP_CODE")):
                owner = staged._code_to_category.get(code)
                if owner is not None and owner != cat:
                    raise IndexLoadError(f"full_code_in_two_categories: {code} ({owner}, {cat})")
                staged._code_to_category[code] = cat
                _add(staged._category_to_codes, cat, code)

        for row in tables["code_to_campus"]:
            code = str(row.get("CIP_CODE") or "").strip()
            for campus in _as_list(row.get("CAMPUS")):
                _add(staged._code_to_campuses, code, campus)
                _add(staged._campus_to_codes, campus, code)

        for row in tables["code_to_program"]:
            code = str(row.get("CIP_CODE") or "").strip()
            for name in _as_list(row.get("PROGRAM_NAME")):
                _add(staged._code_to_programs, code, name)

        for row in tables["code_to_occupation"]:
            code = str(row.get("CIP_CODE") or "").strip()
            for occ in _as_list(row.get("SOC_CODE")):
                _add(staged._code_to_occupations, code, occ)
                _add(staged._occupation_to_codes, occ, code)

        for row in tables["pos_courses_by_grade"]:
            pos = str(row.get("PROGRAM_OF_STUDY") or "").strip()
            if pos:
                staged._courses_by_grade[pos] = {k: _as_list(row.get(f)) for k, f in GRADE_FIELDS.items() if row.get(f)}

        for row in tables["pos_courses_by_level"]:
            pos = str(row.get("PROGRAM_OF_STUDY") or "").strip()
            if pos:
                staged._courses_by_level[pos] = {k: _as_list(row.get(f)) for k, f in LEVEL_FIELDS.items() if row.get(f)}

        for row in tables["pos_to_school"]:
            pos = str(row.get("PROGRAM_OF_STUDY") or "").strip()
            for school in _as_list(row.get("HIGH_SCHOOL")):
                _add(staged._pos_to_schools, pos, school)

        staged._build_keyword_indexes()

        # publish in one step
        self.__dict__.update({k: v for k, v in staged.__dict__.items() if k.startswith("_") and k not in ("_lock", "_initialized")})
        self._initialized = True

    def _build_keyword_indexes(self) -> None:
        for pos, cats in self._pos_to_categories.items():
            for kw in tokenize_keywords(pos):
                _add(self._keyword_to_pos, kw, pos)
                for cat in cats:
                    for code in self._category_to_codes.get(cat, {}):
                        _add(self._keyword_to_codes, kw, code)
        for cat, name in self._category_names.items():
            for kw in tokenize_keywords(name):
                for code in self._category_to_codes.get(cat, {}):
                    _add(self._keyword_to_codes, kw, code)
        for code, names in self._code_to_programs.items():
            for name in names:
                for kw in tokenize_keywords(name):
                    _add(self._keyword_to_codes, kw, code)

    # ---- core contract ----
    def categories_for_program(self, name: str) -> Set[str]:
        return set(self._pos_to_categories.get(name, {}))

    def full_codes_for_category(self, category: str) -> Set[str]:
        return set(self._category_to_codes.get(normalize_category(category), {}))

    def programs_for_full_code(self, code: str) -> Set[str]:
        return set(self._code_to_programs.get(code, {}))

    def occupations_for_full_code(self, code: str) -> Set[str]:
        return set(self._code_to_occupations.get(code, {}))

    def search_by_keyword(self, keywords: Iterable[str]) -> Set[str]:
        """Full codes and pre-university program names whose tokens match any keyword."""
        return self.search_full_codes_by_keyword(keywords) | self.search_programs_by_keyword(keywords)

    def search_full_codes_by_keyword(self, keywords: Iterable[str]) -> Set[str]:
        out: Set[str] = set()
        for kw in keywords:
            for tok in tokenize_keywords(kw):
                out.update(self._keyword_to_codes.get(tok, {}))
        return out

    def search_programs_by_keyword(self, keywords: Iterable[str]) -> Set[str]:
        out: Set[str] = set()
        for kw in keywords:
            for tok in tokenize_keywords(kw):
                out.update(self._keyword_to_pos.get(tok, {}))
        return out

    # ---- ordered lookups ----
    def ordered_full_codes_for_category(self, category: str) -> List[str]:
        return list(self._category_to_codes.get(normalize_category(category), {}))

    def ordered_programs_for_full_code(self, code: str) -> List[str]:
        return list(self._code_to_programs.get(code, {}))

    def category_name(self, category: str) -> Optional[str]:
        return self._category_names.get(normalize_category(category))

    def category_for_full_code(self, code: str) -> Optional[str]:
        return self._code_to_category.get(code)

    def is_known_full_code(self, code: Optional[str]) -> bool:
        return bool(code) and code in self._code_to_category

    def campuses_for_full_code(self, code: str) -> List[str]:
        return list(self._code_to_campuses.get(code, {}))

    def full_codes_for_campus(self, campus: str) -> List[str]:
        return list(self._campus_to_codes.get(campus, {}))

    def full_codes_for_occupation(self, occupation_code: str) -> List[str]:
        return list(self._occupation_to_codes.get(occupation_code, {}))

    def pre_university_programs_for_category(self, category: str) -> List[str]:
        return list(self._category_to_pos.get(normalize_category(category), {}))

    def schools_for_program(self, name: str) -> List[str]:
        return list(self._pos_to_schools.get(name, {}))

    def courses_for_program(self, name: str) -> Dict[str, Dict[str, List[str]]]:
        return {
            "by_grade": {k: list(v) for k, v in self._courses_by_grade.get(name, {}).items()},
            "by_level": {k: list(v) for k, v in self._courses_by_level.get(name, {}).items()},
        }

    def is_pre_university_program(self, name: str) -> bool:
        return name in self._pos_to_categories

    def find_programs_by_name(self, phrase: str) -> Dict[str, List[str]]:
        """Direct (case-insensitive substring) name search across both program domains."""
        needle = " ".join((phrase or "").lower().split())
        if len(needle) <= 2:
            return {"pre_university": [], "institution": []}
        pre = [p for p in self._pos_to_categories if needle in p.lower()]
        inst: Dict[str, None] = {}
        for code, names in self._code_to_programs.items():
            for n in names:
                if needle in n.lower():
                    inst[code] = None
        return {"pre_university": pre, "institution": list(inst)}

    # ---- enumerations ----
    def all_pre_university_programs(self) -> List[str]:
        return list(self._pos_to_categories)

    def all_categories(self) -> List[str]:
        return list(self._category_to_codes)

    def all_full_codes(self) -> List[str]:
        return list(self._code_to_category)

    def all_campuses(self) -> List[str]:
        return list(self._campus_to_codes)

    def all_occupations(self) -> List[str]:
        return list(self._occupation_to_codes)

    def stats(self) -> Dict[str, int]:
        return {
            "pre_university_programs": len(self._pos_to_categories),
            "categories": len(self._category_to_codes),
            "full_codes": len(self._code_to_category),
            "campuses": len(self._campus_to_codes),
            "institution_program_codes": len(self._code_to_programs),
            "occupations": len(self._occupation_to_codes),
            "keywords": len(self._keyword_to_codes) + len(self._keyword_to_pos),
        }


# ---- process-wide accessor ----
_index: Optional[ClassificationCodeIndex] = None
_index_lock = threading.Lock()


def get_code_index(data_dir: str) -> ClassificationCodeIndex:
    global _index
    with _index_lock:
        if _index is None:
            _index = ClassificationCodeIndex()
    _index.initialize(data_dir)
    return _index
