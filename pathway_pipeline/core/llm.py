#!/usr/bin/env python3
"""
pathway_pipeline/core/llm.py

Collaborator clients (completion + embedding) and tolerant payload extraction.

Contracts:
* CompletionClient.complete(system: str, messages: [{role, content}]) -> str
* EmbeddingClient.embed(text: str) -> List[float] (fixed length)

Both raise CollaboratorError on transport failure or an unusable payload; the
owning pipeline component converts that into its own fallback. No retry is
performed here: botocore retries are disabled (max_attempts=1) and the per-call
timeout comes from the botocore client config.

Bedrock clients are built lazily; AWS_REGION is validated on first use.
"""
from __future__ import annotations
import json
import math
import threading
from typing import Any, Dict, List, Optional, Protocol

import boto3
from botocore.config import Config as BotoConfig

from pathway_pipeline.core.cache import Cache, NullCache
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import CollaboratorError
from pathway_pipeline.core.logs import make_jlog

jlog = make_jlog("core.llm")


class CompletionClient(Protocol):
    def complete(self, system: str, messages: List[Dict[str, str]]) -> str: ...


class EmbeddingClient(Protocol):
    def embed(self, text: str) -> List[float]: ...


# ---- Bedrock runtime client (lazy, shared) ----
_bedrock = None
_bedrock_lock = threading.Lock()


def init_bedrock_client(settings: Settings):
    global _bedrock
    if _bedrock is not None:
        return _bedrock
    with _bedrock_lock:
        if _bedrock is not None:
            return _bedrock
        if not settings.aws_region:
            jlog({"level": "CRITICAL", "event": "aws_region_missing", "hint": "Set AWS_REGION env var"})
            raise CollaboratorError("aws_region_missing")
        cfg = BotoConfig(
            connect_timeout=settings.connect_timeout_sec,
            read_timeout=settings.read_timeout_sec,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        try:
            _bedrock = boto3.client("bedrock-runtime", region_name=settings.aws_region, config=cfg)
        except Exception as e:
            jlog({"level": "CRITICAL", "event": "bedrock_client_init_failed", "detail": str(e)})
            raise CollaboratorError(f"bedrock_client_init_failed: {e}") from e
        jlog({"event": "bedrock_client_init", "region": settings.aws_region})
        return _bedrock


def _converse_messages(messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Converse requires alternating roles starting with 'user'; merge runs and drop a leading assistant turn."""
    out: List[Dict[str, Any]] = []
    for m in messages:
        role = "assistant" if (m.get("role") or "").lower() == "assistant" else "user"
        text = str(m.get("content") or "").strip()
        if not text:
            continue
        if not out and role == "assistant":
            continue
        if out and out[-1]["role"] == role:
            out[-1]["content"][0]["text"] += "\n\n" + text
        else:
            out.append({"role": role, "content": [{"text": text}]})
    return out


class BedrockCompletionClient:
    def __init__(self, settings: Settings, client: Any = None):
        self.settings = settings
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = init_bedrock_client(self.settings)
        return self._client

    def complete(self, system: str, messages: List[Dict[str, str]]) -> str:
        conv = _converse_messages(messages)
        if not conv:
            raise CollaboratorError("no_user_message")
        try:
            resp = self._get_client().converse(
                modelId=self.settings.bedrock_model_id,
                system=[{"text": system}],
                messages=conv,
                inferenceConfig={"temperature": self.settings.llm_temperature, "maxTokens": self.settings.llm_max_tokens},
            )
        except CollaboratorError:
            raise
        except Exception as e:
            jlog({"level": "ERROR", "event": "bedrock_converse_failed", "detail": str(e)})
            raise CollaboratorError(f"converse_failed: {e}") from e
        # tolerant extraction of generated text
        content = ((resp or {}).get("output") or {}).get("message", {}).get("content") or []
        text = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        if not text.strip():
            jlog({"level": "WARN", "event": "bedrock_empty_completion", "stop_reason": (resp or {}).get("stopReason")})
            raise CollaboratorError("empty_completion")
        return text


class BedrockEmbeddingClient:
    def __init__(self, settings: Settings, client: Any = None):
        self.settings = settings
        self._client = client
        self._encoding = None

    def _get_client(self):
        if self._client is None:
            self._client = init_bedrock_client(self.settings)
        return self._client

    def _truncate(self, text: str) -> str:
        if self._encoding is None:
            import tiktoken
            self._encoding = tiktoken.get_encoding("cl100k_base")
        toks = self._encoding.encode(text)
        if len(toks) <= self.settings.embed_max_tokens:
            return text
        return self._encoding.decode(toks[: self.settings.embed_max_tokens])

    def embed(self, text: str) -> List[float]:
        try:
            text = self._truncate(text)
        except Exception as e:
            jlog({"level": "WARN", "event": "embed_truncate_failed", "detail": str(e)})
            text = text[:8000]
        body = json.dumps({"inputText": text, "dimensions": self.settings.embed_dim, "normalize": True})
        try:
            resp = self._get_client().invoke_model(modelId=self.settings.embed_model_id, body=body, contentType="application/json")
            body_stream = resp.get("body")
            raw = body_stream.read() if hasattr(body_stream, "read") else body_stream
            mr = json.loads(raw)
        except CollaboratorError:
            raise
        except Exception as e:
            jlog({"level": "ERROR", "event": "bedrock_embed_failed", "detail": str(e)})
            raise CollaboratorError(f"embed_failed: {e}") from e
        embedding = mr.get("embedding") if isinstance(mr, dict) else None
        if not isinstance(embedding, list) or len(embedding) != self.settings.embed_dim:
            jlog({"level": "ERROR", "event": "bedrock_embedding_invalid", "len": len(embedding) if isinstance(embedding, list) else None})
            raise CollaboratorError("invalid_embedding")
        return [float(x) for x in embedding]


def embedding_cache_key(text: str) -> str:
    return "emb:" + " ".join((text or "").lower().split())


class CachedEmbedder:
    """Wrap an EmbeddingClient with the injected cache, keyed by normalized text."""

    def __init__(self, inner: EmbeddingClient, cache: Optional[Cache] = None, ttl_sec: Optional[float] = None):
        self.inner = inner
        self.cache = cache if cache is not None else NullCache()
        self.ttl_sec = ttl_sec

    def embed(self, text: str) -> List[float]:
        key = embedding_cache_key(text)
        hit = self.cache.get(key)
        if hit is not None:
            return hit
        vec = self.inner.embed(text)
        self.cache.set(key, vec, self.ttl_sec)
        return vec


def cosine_similarity(a: List[float], b: List[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return max(min(dot / (na * nb), 1.0), -1.0)


# ---- payload extraction ----
_PAIRS = {"{": "}", "[": "]"}


def extract_json_span(text: str, opener: str = "{") -> Optional[str]:
    """
    Return the first balanced {...} or [...] span in text, or None.
    Brackets inside JSON string literals are ignored.
    """
    if not text or opener not in _PAIRS:
        return None
    closer = _PAIRS[opener]
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # unbalanced from this opener; try the next one
        start = text.find(opener, start + 1)
    return None


def parse_json_payload(text: Optional[str], opener: str = "{") -> Any:
    """Locate and decode the first balanced JSON span; raise CollaboratorError if there is none."""
    span = extract_json_span(text or "", opener)
    if span is None:
        raise CollaboratorError("no_json_payload")
    try:
        return json.loads(span)
    except ValueError as e:
        raise CollaboratorError(f"json_decode_failed: {e}") from e
