"""
Tests for collaborator clients and payload extraction
"""
import io
import json

import pytest

from pathway_pipeline.core import llm
from pathway_pipeline.core.cache import InMemoryTTLCache
from pathway_pipeline.core.config import Settings
from pathway_pipeline.core.errors import CollaboratorError
from pathway_pipeline.core.llm import (
    BedrockCompletionClient,
    BedrockEmbeddingClient,
    CachedEmbedder,
    _converse_messages,
    cosine_similarity,
    embedding_cache_key,
    extract_json_span,
    init_bedrock_client,
    parse_json_payload,
)

from helpers import FakeEmbedder


class FakeBedrock:
    def __init__(self, converse_resp=None, embedding=None, error=None):
        self.converse_resp = converse_resp
        self.embedding = embedding
        self.error = error
        self.requests = []

    def converse(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return self.converse_resp

    def invoke_model(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return {"body": io.BytesIO(json.dumps({"embedding": self.embedding}).encode("utf-8"))}


class WordEncoding:
    def encode(self, text):
        return text.split()

    def decode(self, toks):
        return " ".join(toks)


def _reply(text):
    return {"output": {"message": {"role": "assistant", "content": [{"text": text}]}}, "stopReason": "end_turn"}


def test_converse_messages_alternate_and_start_with_user():
    out = _converse_messages([
        {"role": "assistant", "content": "earlier reply"},
        {"role": "user", "content": "first"},
        {"role": "user", "content": "second"},
        {"role": "assistant", "content": "answer"},
        {"role": "user", "content": "  "},
    ])
    assert [m["role"] for m in out] == ["user", "assistant"]
    assert out[0]["content"][0]["text"] == "first\n\nsecond"


def test_completion_client_returns_text():
    fake = FakeBedrock(converse_resp=_reply('{"ok": true}'))
    s = Settings(aws_region="us-east-1", bedrock_model_id="test-model")
    out = BedrockCompletionClient(s, fake).complete("system text", [{"role": "user", "content": "hello"}])
    assert out == '{"ok": true}'
    req = fake.requests[0]
    assert req["modelId"] == "test-model"
    assert req["system"] == [{"text": "system text"}]


@pytest.mark.parametrize("fake", [FakeBedrock(error=RuntimeError("throttled")), FakeBedrock(converse_resp=_reply("   "))])
def test_completion_client_failures_raise_collaborator_error(fake):
    with pytest.raises(CollaboratorError):
        BedrockCompletionClient(Settings(aws_region="us-east-1"), fake).complete("s", [{"role": "user", "content": "hello"}])


def test_completion_client_requires_user_message():
    with pytest.raises(CollaboratorError):
        BedrockCompletionClient(Settings(aws_region="us-east-1"), FakeBedrock()).complete("s", [])


def test_embedding_client_truncates_and_validates():
    s = Settings(aws_region="us-east-1", embed_dim=4, embed_max_tokens=3)
    fake = FakeBedrock(embedding=[0.1, 0.2, 0.3, 0.4])
    client = BedrockEmbeddingClient(s, fake)
    client._encoding = WordEncoding()
    assert client.embed("one two three four five") == [0.1, 0.2, 0.3, 0.4]
    body = json.loads(fake.requests[0]["body"])
    assert body["inputText"] == "one two three"
    assert body["dimensions"] == 4


def test_embedding_client_rejects_wrong_dimension():
    client = BedrockEmbeddingClient(Settings(aws_region="us-east-1", embed_dim=8), FakeBedrock(embedding=[0.1, 0.2]))
    client._encoding = WordEncoding()
    with pytest.raises(CollaboratorError):
        client.embed("text")


def test_init_requires_region(monkeypatch):
    monkeypatch.setattr(llm, "_bedrock", None)
    with pytest.raises(CollaboratorError):
        init_bedrock_client(Settings(aws_region=None))


def test_cached_embedder_normalizes_keys():
    inner = FakeEmbedder()
    cached = CachedEmbedder(inner, InMemoryTTLCache())
    a = cached.embed("Nursing  Programs")
    b = cached.embed("nursing programs")
    assert a == b
    assert len(inner.calls) == 1
    assert embedding_cache_key(" Nursing\tPrograms ") == "emb:nursing programs"


def test_cached_embedder_without_cache_always_delegates():
    inner = FakeEmbedder()
    cached = CachedEmbedder(inner)
    cached.embed("x y z")
    cached.embed("x y z")
    assert len(inner.calls) == 2


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_extract_json_span_from_prose():
    text = 'Here you go: {"a": {"b": [1, 2]}, "c": "}"} trailing'
    assert json.loads(extract_json_span(text, "{")) == {"a": {"b": [1, 2]}, "c": "}"}


def test_extract_json_span_array_and_missing():
    assert extract_json_span('Scores:\n[{"index": 1}]', "[") == '[{"index": 1}]'
    assert extract_json_span("no json here", "{") is None
    assert extract_json_span("{unbalanced", "{") is None


def test_parse_json_payload_errors():
    with pytest.raises(CollaboratorError):
        parse_json_payload("nothing", "{")
    with pytest.raises(CollaboratorError):
        parse_json_payload("{'single': 'quotes'}", "{")
    assert parse_json_payload('ok [1, 2]', "[") == [1, 2]
