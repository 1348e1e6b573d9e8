from __future__ import annotations

import json

import pytest
from langchain_core.documents import Document
from langchain_core.embeddings import DeterministicFakeEmbedding
from langchain_core.vectorstores import InMemoryVectorStore

from rag_backend.rag import TfidfVectorStore, VectorStoreSearch
from rag_backend.tools.retrieval import retrieve


def test_default_corpus_finds_stack_first():
    store = TfidfVectorStore()

    hits = store.search("What is a stack?", top_k=2)

    assert 1 <= len(hits) <= 2
    assert hits[0].metadata["source"].endswith("#stack")


def test_unrelated_query_returns_nothing():
    store = TfidfVectorStore([Document(page_content="binary trees", metadata={"source": "a"})])

    assert store.search("zebra", top_k=2) == []
    assert store.search("", top_k=2) == []


def test_empty_store_returns_nothing():
    assert TfidfVectorStore([]).search("stack") == []


def test_results_are_copies():
    store = TfidfVectorStore([Document(page_content="queue fifo", metadata={"source": "q"})])

    hit = store.search("queue")[0]
    hit.metadata["source"] = "changed"

    assert store.documents[0].metadata["source"] == "q"


def test_from_json_loads_ingested_corpus(tmp_path):
    path = tmp_path / "corpus.json"
    path.write_text(
        json.dumps(
            [
                {"content": "Heaps keep the smallest item on top.", "source": "heap.md"},
                {"content": "Graphs are made of nodes and edges.", "source": "graph.md"},
            ]
        ),
        encoding="utf-8",
    )

    store = TfidfVectorStore.from_json(str(path))

    assert [d.metadata["source"] for d in store.search("nodes and edges")] == ["graph.md"]


def test_from_json_rejects_non_list(tmp_path):
    path = tmp_path / "corpus.json"
    path.write_text("{}", encoding="utf-8")

    with pytest.raises(ValueError):
        TfidfVectorStore.from_json(str(path))


@pytest.mark.asyncio
async def test_asearch_matches_search():
    store = TfidfVectorStore()

    hits = await store.asearch("hash table collisions", top_k=1)

    assert [d.metadata["source"] for d in hits] == ["data-structures.md#hash-table"]


@pytest.mark.asyncio
async def test_vector_store_search_delegates_to_the_vector_store():
    vector_store = InMemoryVectorStore(DeterministicFakeEmbedding(size=32))
    vector_store.add_texts(
        ["A stack is LIFO.", "A queue is FIFO.", "A heap keeps the minimum on top."],
        metadatas=[{"source": "stack.md"}, {"source": "queue.md"}, {"source": "heap.md"}],
    )

    hits = await VectorStoreSearch(vector_store).asearch("A queue is FIFO.", top_k=1)

    assert [(h.page_content, h.metadata["source"]) for h in hits] == [("A queue is FIFO.", "queue.md")]


@pytest.mark.asyncio
async def test_retrieve_through_a_vector_store_keeps_sources():
    vector_store = InMemoryVectorStore(DeterministicFakeEmbedding(size=32))
    vector_store.add_texts(["A stack is LIFO.", "A queue is FIFO."], metadatas=[{"source": "stack.md"}, {"source": "queue.md"}])

    serialized, passages = await retrieve(VectorStoreSearch(vector_store), "A stack is LIFO.", top_k=2)

    assert len(passages) == 2
    assert passages[0].metadata["source"] == "stack.md"
    assert serialized.startswith("Source: stack.md\nContent: A stack is LIFO.")
