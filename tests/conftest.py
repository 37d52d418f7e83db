import copy
import json
import os
from pathlib import Path

import pytest

from pathway_pipeline.core.code_index import TABLE_FILES, ClassificationCodeIndex
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.e2e_local_run import demo_tables
from pathway_pipeline.core.tools import IndexBackedTools


# Common test fixtures
@pytest.fixture
def tables():
    """Small classification dataset: health (51), culinary (12), computing (11)."""
    return copy.deepcopy(demo_tables())


@pytest.fixture
def index(tables):
    return ClassificationCodeIndex.from_tables(tables)


@pytest.fixture
def tools(index):
    return IndexBackedTools(index)


@pytest.fixture
def index_dir(tmp_path: Path, tables):
    """Write the tables as line-delimited JSON under their canonical relative paths."""
    for name, rel in TABLE_FILES.items():
        p = tmp_path / rel
        os.makedirs(p.parent, exist_ok=True)
        with open(p, "w", encoding="utf-8") as fh:
            for row in tables[name]:
                fh.write(json.dumps(row) + "\n")
    return tmp_path


@pytest.fixture
def settings():
    return Settings(
        aws_region="us-east-1",
        verifier_mode="llm",
        verifier_batch_size=5,
        planner_use_llm=False,
        executor_max_workers=4,
    )
