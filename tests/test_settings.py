import asyncio

import pytest
from pydantic import ValidationError

from memchat.domain.errors import AuthenticationError
from memchat.infrastructure.config.settings import MemoryConfig, Settings, parse_token_map
from memchat.infrastructure.security.identity import StaticTokenIdentityService, extract_bearer


def test_defaults_match_memory_constants():
    config = MemoryConfig()
    assert config.short_term_limit == 20
    assert config.archive_chunk_size == 4
    assert config.retrieval_top_k == 5
    assert config.relevance_threshold == 0.7
    assert config.record_kind == "conversation_memory"
    assert config.namespace_for("42") == "user_42"


def test_memory_config_validates_ranges():
    with pytest.raises(ValidationError):
        MemoryConfig(relevance_threshold=1.5)
    with pytest.raises(ValidationError):
        MemoryConfig(short_term_limit=0)


def test_from_env_reads_overrides(monkeypatch):
    monkeypatch.setenv("MEMCHAT_SHORT_TERM_LIMIT", "10")
    monkeypatch.setenv("MEMCHAT_RELEVANCE_THRESHOLD", "0.8")
    monkeypatch.setenv("MEMCHAT_VECTOR_BACKEND", "opensearch")
    monkeypatch.setenv("OPENSEARCH_HOST", "search.internal")
    monkeypatch.setenv("MEMCHAT_STORE_BACKEND", "sqlite")
    monkeypatch.setenv("MEMCHAT_PURGE_ARCHIVE_ON_DELETE", "true")
    monkeypatch.setenv("MEMCHAT_AUTH_TOKENS", "abc:alice, def:bob")
    monkeypatch.setenv("GOOGLE_API_KEY", "key-123")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example,https://b.example")

    settings = Settings.from_env(dotenv=False)

    assert settings.memory.short_term_limit == 10
    assert settings.memory.relevance_threshold == 0.8
    assert settings.memory.purge_archive_on_delete is True
    assert settings.vector_index.backend == "opensearch"
    assert settings.vector_index.host == "search.internal"
    assert settings.store.backend == "sqlite"
    assert settings.providers.google_api_key == "key-123"
    assert settings.auth_tokens == {"abc": "alice", "def": "bob"}
    assert settings.allowed_origins == ["https://a.example", "https://b.example"]


def test_parse_token_map_skips_malformed_pairs():
    assert parse_token_map("a:1,,broken, :x,b:2:extra") == {"a": "1", "b": "2:extra"}
    assert parse_token_map("") == {}


def test_extract_bearer():
    assert extract_bearer("Bearer abc") == "abc"
    assert extract_bearer("bearer  abc ") == "abc"
    assert extract_bearer("Basic abc") is None
    assert extract_bearer("Bearer ") is None
    assert extract_bearer(None) is None


def test_static_identity_resolves_known_tokens():
    identity = StaticTokenIdentityService({"abc": "alice"})

    assert asyncio.run(identity.resolve("abc")) == "alice"
    with pytest.raises(AuthenticationError):
        asyncio.run(identity.resolve("nope"))
    with pytest.raises(AuthenticationError):
        asyncio.run(identity.resolve(None))
