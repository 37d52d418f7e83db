"""
pathway_pipeline/core/config.py

Operational knobs (envs and defaults). Every knob is read once at import into a
module constant; `Settings.from_env()` snapshots them into an immutable value
that components receive explicitly, so tests override knobs by constructing
`Settings(...)` instead of mutating the environment.

Nothing here fails at import: AWS_REGION is validated when the Bedrock client
is first built (core/llm.py).
"""
from __future__ import annotations
import os
from dataclasses import dataclass, replace
from typing import Optional


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if v is not None else default


def _env_bool(key: str, default: str) -> bool:
    return (_env(key, default) or "").strip().lower() in ("1", "true", "yes")


# ---- collaborators (Bedrock) ----
AWS_REGION = _env("AWS_REGION")
BEDROCK_MODEL_ID = _env("BEDROCK_MODEL_ID", "anthropic.claude-3-haiku-20240307-v1:0")
EMBED_MODEL_ID = _env("EMBED_MODEL_ID", "amazon.titan-embed-text-v2:0")
EMBED_DIM = int(_env("EMBED_DIM", "1024"))
EMBED_MAX_TOKENS = int(_env("EMBED_MAX_TOKENS", "2000"))
BEDROCK_CONNECT_TIMEOUT_SEC = float(_env("BEDROCK_CONNECT_TIMEOUT_SEC", "3"))
BEDROCK_READ_TIMEOUT_SEC = float(_env("BEDROCK_READ_TIMEOUT_SEC", "20"))
LLM_TEMPERATURE = float(_env("LLM_TEMPERATURE", "0.1"))
LLM_MAX_TOKENS = int(_env("LLM_MAX_TOKENS", "800"))

# ---- data sources ----
CODE_INDEX_DIR = _env("CODE_INDEX_DIR", "./data/classification")
PROGRAM_CATALOG = (_env("PROGRAM_CATALOG", "index") or "index").lower()
PG_HOST = _env("PG_HOST", "localhost")
PG_PORT = int(_env("PG_PORT", "5432"))
PG_USER = _env("PG_USER", "postgres")
PG_PASSWORD = _env("PG_PASSWORD", "postgres")
PG_DB = _env("PG_DB", "postgres")
PG_PROGRAMS_TABLE = _env("PG_PROGRAMS_TABLE", "education_programs")

# ---- verifier ----
VERIFIER_MODE = (_env("VERIFIER_MODE", "llm") or "llm").lower()
VERIFIER_BATCH_SIZE = int(_env("VERIFIER_BATCH_SIZE", "5"))
VERIFIER_MAX_PRE_UNIVERSITY = int(_env("VERIFIER_MAX_PRE_UNIVERSITY", "20"))
VERIFIER_MAX_INSTITUTION = int(_env("VERIFIER_MAX_INSTITUTION", "30"))
THRESHOLD_STRONG_TRIGGER = float(_env("THRESHOLD_STRONG_TRIGGER", "7.0"))
THRESHOLD_STRONG = float(_env("THRESHOLD_STRONG", "6.0"))
THRESHOLD_GENERIC = float(_env("THRESHOLD_GENERIC", "3.5"))
THRESHOLD_DEFAULT = float(_env("THRESHOLD_DEFAULT", "3.0"))
NEUTRAL_SCORE = float(_env("NEUTRAL_SCORE", "5.0"))
VERIFIER_MAX_WORKERS = int(_env("VERIFIER_MAX_WORKERS", "5"))

# ---- control loop ----
QUALITY_THRESHOLD = float(_env("QUALITY_THRESHOLD", "5.0"))
MAX_ATTEMPTS = int(_env("MAX_ATTEMPTS", "2"))
MAX_KEYWORDS = int(_env("MAX_KEYWORDS", "5"))
HISTORY_TURNS = int(_env("HISTORY_TURNS", "4"))
CAREER_CAP = int(_env("CAREER_CAP", "10"))
EXECUTOR_MAX_WORKERS = int(_env("EXECUTOR_MAX_WORKERS", "4"))
PLANNER_USE_LLM = _env_bool("PLANNER_USE_LLM", "false")

# ---- cache ----
CACHE_TTL_SEC = float(_env("CACHE_TTL_SEC", "3600"))


@dataclass(frozen=True)
class Settings:
    aws_region: Optional[str] = AWS_REGION
    bedrock_model_id: str = BEDROCK_MODEL_ID
    embed_model_id: str = EMBED_MODEL_ID
    embed_dim: int = EMBED_DIM
    embed_max_tokens: int = EMBED_MAX_TOKENS
    connect_timeout_sec: float = BEDROCK_CONNECT_TIMEOUT_SEC
    read_timeout_sec: float = BEDROCK_READ_TIMEOUT_SEC
    llm_temperature: float = LLM_TEMPERATURE
    llm_max_tokens: int = LLM_MAX_TOKENS

    code_index_dir: str = CODE_INDEX_DIR
    program_catalog: str = PROGRAM_CATALOG
    pg_host: str = PG_HOST
    pg_port: int = PG_PORT
    pg_user: str = PG_USER
    pg_password: str = PG_PASSWORD
    pg_db: str = PG_DB
    pg_programs_table: str = PG_PROGRAMS_TABLE

    verifier_mode: str = VERIFIER_MODE
    verifier_batch_size: int = VERIFIER_BATCH_SIZE
    verifier_max_pre_university: int = VERIFIER_MAX_PRE_UNIVERSITY
    verifier_max_institution: int = VERIFIER_MAX_INSTITUTION
    threshold_strong_trigger: float = THRESHOLD_STRONG_TRIGGER
    threshold_strong: float = THRESHOLD_STRONG
    threshold_generic: float = THRESHOLD_GENERIC
    threshold_default: float = THRESHOLD_DEFAULT
    neutral_score: float = NEUTRAL_SCORE
    verifier_max_workers: int = VERIFIER_MAX_WORKERS

    quality_threshold: float = QUALITY_THRESHOLD
    max_attempts: int = MAX_ATTEMPTS
    max_keywords: int = MAX_KEYWORDS
    history_turns: int = HISTORY_TURNS
    career_cap: int = CAREER_CAP
    executor_max_workers: int = EXECUTOR_MAX_WORKERS
    planner_use_llm: bool = PLANNER_USE_LLM

    cache_ttl_sec: float = CACHE_TTL_SEC

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()

    def with_overrides(self, **kwargs) -> "Settings":
        return replace(self, **kwargs)
