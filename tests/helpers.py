"""
Test doubles for the pipeline collaborators and retrieval tools.
"""
import json
import threading
from typing import Any, Callable, Dict, List, Optional, Union

from pathway_pipeline.core.errors import ToolError
from pathway_pipeline.core.models import RetrievalResult


Response = Union[str, Exception, Callable[[List[Dict[str, str]]], str]]


class FakeCompletion:
    """Completion collaborator answering per system prompt; records every call."""

    def __init__(self, responses: Optional[Dict[str, Response]] = None, default: Response = ""):
        self.responses = dict(responses or {})
        self.default = default
        self.calls: List[tuple] = []

    def complete(self, system: str, messages: List[Dict[str, str]]) -> str:
        self.calls.append((system, messages))
        r = self.responses.get(system, self.default)
        if isinstance(r, Exception):
            raise r
        if callable(r):
            return r(messages)
        return r

    def calls_for(self, system: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == system]


class FakeEmbedder:
    """Bag-of-words embedder: every distinct word gets its own axis."""

    def __init__(self, dim: int = 512, fail: bool = False):
        self.dim = dim
        self.fail = fail
        self.calls: List[str] = []
        self._vocab: Dict[str, int] = {}
        self._lock = threading.Lock()

    def embed(self, text: str) -> List[float]:
        with self._lock:
            self.calls.append(text)
            if self.fail:
                raise RuntimeError("embedding service down")
            vec = [0.0] * self.dim
            for w in text.lower().split():
                w = "".join(ch for ch in w if ch.isalnum())
                if len(w) <= 2:
                    continue
                slot = self._vocab.setdefault(w, len(self._vocab) % self.dim)
                vec[slot] += 1.0
        return vec


def scores_reply(scores: List[float]) -> str:
    return json.dumps([{"index": i, "score": s, "reasoning": "test"} for i, s in enumerate(scores, start=1)])


class RecordingTools:
    """Wraps real tools, records calls and can fail selected operations."""

    def __init__(self, inner, fail: Optional[Dict[str, Exception]] = None):
        self.inner = inner
        self.fail = dict(fail or {})
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, op: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((op,) + args)
        if op in self.fail:
            raise self.fail[op]

    def search_by_keyword(self, keywords, location_filter=None) -> RetrievalResult:
        self._record("search_by_keyword", list(keywords), location_filter)
        return self.inner.search_by_keyword(keywords, location_filter)

    def get_by_classification_code(self, codes, location_filter=None) -> RetrievalResult:
        self._record("get_by_classification_code", list(codes), location_filter)
        return self.inner.get_by_classification_code(codes, location_filter)

    def get_detail_by_name(self, name):
        self._record("get_detail_by_name", name)
        return self.inner.get_detail_by_name(name)

    def get_locations_for_program(self, name):
        self._record("get_locations_for_program", name)
        return self.inner.get_locations_for_program(name)

    def get_occupations_for_code(self, codes):
        self._record("get_occupations_for_code", list(codes))
        return self.inner.get_occupations_for_code(codes)

    def ops(self) -> List[str]:
        return [c[0] for c in self.calls]


def tool_error(tool: str = "search", detail: str = "backend unavailable") -> ToolError:
    return ToolError(tool, detail)
