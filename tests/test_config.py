from __future__ import annotations

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding
from langchain_core.vectorstores import InMemoryVectorStore

from rag_backend import service
from rag_backend.memory import InMemorySessionStore, JsonFileSessionStore
from rag_backend.rag import TfidfVectorStore, VectorStoreSearch
from rag_backend.service import create_search, create_store
from rag_backend.tools import agent_config
from rag_backend.tools.agent_config import ServiceSettings, get_agent_settings, get_service_settings


@pytest.fixture
def agent_yaml(tmp_path, monkeypatch):
    def _write(text: str):
        path = tmp_path / "agent_config.yaml"
        path.write_text(text, encoding="utf-8")
        monkeypatch.setenv("AGENT_CONFIG_PATH", str(path))
        agent_config.load_agent_config.cache_clear()
        return path

    yield _write
    agent_config.load_agent_config.cache_clear()


def test_service_settings_defaults(monkeypatch):
    for var in ("RAG_TOP_K", "RAG_CORPUS_PATH", "SESSION_STORE", "SESSION_STORE_DIR", "SEARCH_BACKEND"):
        monkeypatch.delenv(var, raising=False)

    settings = get_service_settings()

    assert settings.top_k == 2
    assert settings.corpus_path is None
    assert settings.session_store == "memory"
    assert settings.search_backend == "tfidf"


def test_service_settings_from_env(monkeypatch):
    monkeypatch.setenv("RAG_TOP_K", "4")
    monkeypatch.setenv("SESSION_STORE", "File")
    monkeypatch.setenv("SESSION_STORE_DIR", "/tmp/sessions")

    settings = get_service_settings()

    assert settings.top_k == 4
    assert settings.session_store == "file"
    assert settings.session_store_dir == "/tmp/sessions"


@pytest.mark.parametrize(
    "var, value",
    [("RAG_TOP_K", "zero"), ("RAG_TOP_K", "0"), ("SESSION_STORE", "redis"), ("SEARCH_BACKEND", "pinecone")],
)
def test_service_settings_rejects_bad_values(monkeypatch, var, value):
    monkeypatch.setenv(var, value)

    with pytest.raises(ValueError):
        get_service_settings()


def test_agent_settings_fall_back_to_default_model(agent_yaml):
    agent_yaml(
        "default_model: gpt-4o-mini\n"
        "generate:\n"
        "  model_name: gpt-4o\n"
        "  system_prompt: 'Persona {context}'\n"
    )

    assert get_agent_settings("generate").model_name == "gpt-4o"
    assert get_agent_settings("generate").system_prompt == "Persona {context}"
    assert get_agent_settings("query_or_respond").model_name == "gpt-4o-mini"
    assert get_agent_settings("query_or_respond").system_prompt is None


def test_broken_yaml_is_ignored(agent_yaml):
    agent_yaml("generate: [unclosed")

    assert get_agent_settings("generate").model_name is None


def test_shipped_config_defines_a_persona_with_context(monkeypatch):
    monkeypatch.delenv("AGENT_CONFIG_PATH", raising=False)
    agent_config.load_agent_config.cache_clear()
    try:
        prompt = get_agent_settings("generate").system_prompt
    finally:
        agent_config.load_agent_config.cache_clear()

    assert prompt is not None
    assert "{context}" in prompt


def test_create_store(tmp_path):
    assert isinstance(create_store("memory"), InMemorySessionStore)
    assert isinstance(create_store("file", str(tmp_path / "s")), JsonFileSessionStore)


def test_atlas_backend_needs_connection_settings(monkeypatch):
    monkeypatch.setenv("SEARCH_BACKEND", "atlas")
    monkeypatch.delenv("MONGODB_ATLAS_URI", raising=False)
    monkeypatch.setenv("DATABASE_NAME", "course")

    with pytest.raises(ValueError):
        get_service_settings()


def test_atlas_settings_from_env(monkeypatch):
    monkeypatch.setenv("SEARCH_BACKEND", "Atlas")
    monkeypatch.setenv("MONGODB_ATLAS_URI", "mongodb+srv://cluster.example")
    monkeypatch.setenv("DATABASE_NAME", "course")
    monkeypatch.delenv("COLLECTION_NAME", raising=False)
    monkeypatch.delenv("ATLAS_INDEX_NAME", raising=False)

    settings = get_service_settings()

    assert settings.search_backend == "atlas"
    assert (settings.atlas_database, settings.atlas_collection, settings.atlas_index) == ("course", "data", "vector_index")


def test_create_search_defaults_to_tfidf():
    assert isinstance(create_search(ServiceSettings()), TfidfVectorStore)


def test_create_search_wraps_the_atlas_vector_store(monkeypatch):
    calls = []
    vector_store = InMemoryVectorStore(DeterministicFakeEmbedding(size=8))

    def fake_atlas(uri, database, collection, *, index_name):
        calls.append((uri, database, collection, index_name))
        return vector_store

    monkeypatch.setattr(service, "atlas_vector_store", fake_atlas)
    settings = ServiceSettings(search_backend="atlas", atlas_uri="mongodb+srv://cluster.example", atlas_database="course")

    search = create_search(settings)

    assert isinstance(search, VectorStoreSearch)
    assert search.vector_store is vector_store
    assert calls == [("mongodb+srv://cluster.example", "course", "data", "vector_index")]
