"""
Similarity-search collaborators for the retrieval tool.

The conversation controller never talks to a vector database directly; it only
needs something that answers ``asearch(query, top_k)`` with a ranked list of
``Document`` objects whose ``metadata["source"]`` identifies where the passage
came from.  Two implementations live here:

``TfidfVectorStore``
    A lightweight in-memory index using TF-IDF vectors from ``scikit-learn``.
    It has no external embedding service, which keeps local development and
    tests self-contained.  A corpus can be loaded from the JSON file written by
    :mod:`rag_backend.ingest`; a small default corpus is used otherwise.

``VectorStoreSearch``
    Adapts any LangChain ``VectorStore``.  With ``SEARCH_BACKEND=atlas`` the
    service wraps a MongoDB Atlas vector index built by
    :func:`atlas_vector_store`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

try:
    # Optional dependency, only needed for SEARCH_BACKEND=atlas.
    from langchain_mongodb import MongoDBAtlasVectorSearch  # type: ignore
except ImportError:  # pragma: no cover
    MongoDBAtlasVectorSearch = None  # type: ignore

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.vectorstores import VectorStore
from langchain_openai import OpenAIEmbeddings
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

logger = logging.getLogger("rag_backend.rag")


_DEFAULT_CORPUS: List[Dict[str, str]] = [
    {
        "source": "data-structures.md#stack",
        "content": (
            "A stack is a linear data structure that follows the LIFO (last in, first out) "
            "principle. Elements are added with push and removed with pop, both at the top. "
            "Stacks are used for function call management, undo features and expression parsing."
        ),
    },
    {
        "source": "data-structures.md#hash-table",
        "content": (
            "A hash table maps keys to values using a hash function that computes an index into "
            "an array of buckets. Average lookup, insertion and deletion run in O(1) time. "
            "Collisions are resolved with chaining or open addressing."
        ),
    },
    {
        "source": "data-structures.md#big-o",
        "content": (
            "Big O notation describes the upper bound of an algorithm's running time or space as "
            "the input size grows. Common classes are O(1), O(log n), O(n), O(n log n) and O(n^2); "
            "quadratic and exponential algorithms are the slowest for large inputs."
        ),
    },
    {
        "source": "data-structures.md#binary-tree",
        "content": (
            "A binary tree is a hierarchical structure in which each node has at most two children. "
            "A binary search tree keeps the left subtree smaller and the right subtree larger than "
            "the node, giving O(log n) search when the tree is balanced."
        ),
    },
]


def _to_document(record: Dict[str, Any]) -> Document:
    content = record.get("content") or record.get("page_content") or ""
    metadata = dict(record.get("metadata") or {})
    if "source" in record:
        metadata.setdefault("source", record["source"])
    return Document(page_content=content, metadata=metadata)


class TfidfVectorStore:
    """Retrieval component performing TF-IDF cosine-similarity search."""

    def __init__(self, documents: Optional[Sequence[Document]] = None) -> None:
        """Build the index.

        Args:
            documents: Passages to index.  If ``None``, a small default corpus
                about basic data structures is used.
        """
        if documents is None:
            documents = [_to_document(r) for r in _DEFAULT_CORPUS]
        self.documents: List[Document] = list(documents)
        self.vectorizer: Optional[TfidfVectorizer] = None
        self.doc_vectors = None
        if self.documents:
            texts = [doc.page_content for doc in self.documents]
            self.vectorizer = TfidfVectorizer().fit(texts)
            self.doc_vectors = self.vectorizer.transform(texts)

    @classmethod
    def from_json(cls, path: str) -> "TfidfVectorStore":
        """Load a corpus written by the ingestion job (list of ``{content, source}``)."""
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
        if not isinstance(records, list):
            raise ValueError(f"Corpus file {path} must contain a JSON list")
        documents = [_to_document(r) for r in records if isinstance(r, dict)]
        logger.info(f"Loaded {len(documents)} passages from {path}")
        return cls(documents)

    def search(self, query: str, top_k: int = 2) -> List[Document]:
        """Return up to ``top_k`` passages ranked by similarity to ``query``.

        Passages with zero similarity are never returned, so an unrelated
        query yields an empty list.
        """
        if not query or not query.strip() or self.vectorizer is None or top_k <= 0:
            return []
        query_vec = self.vectorizer.transform([query])
        sims = cosine_similarity(query_vec, self.doc_vectors).flatten()
        ranked = sims.argsort()[::-1]
        hits: List[Document] = []
        for idx in ranked[:top_k]:
            if sims[idx] <= 0:
                break
            doc = self.documents[idx]
            hits.append(Document(page_content=doc.page_content, metadata=dict(doc.metadata)))
        return hits

    async def asearch(self, query: str, top_k: int = 2) -> List[Document]:
        return await asyncio.to_thread(self.search, query, top_k)


class VectorStoreSearch:
    """Expose a LangChain ``VectorStore`` through the ``asearch`` interface."""

    def __init__(self, vector_store: VectorStore) -> None:
        self.vector_store = vector_store

    async def asearch(self, query: str, top_k: int = 2) -> List[Document]:
        return await self.vector_store.asimilarity_search(query, k=top_k)


def atlas_vector_store(
    uri: str,
    database: str,
    collection: str = "data",
    *,
    index_name: str = "vector_index",
    embedding: Optional[Embeddings] = None,
) -> VectorStore:
    """Connect to a MongoDB Atlas vector index filled with OpenAI embeddings.

    Documents are expected under the ``text`` key with their vector under
    ``embedding``.
    """
    if MongoDBAtlasVectorSearch is None:
        raise RuntimeError(
            "SEARCH_BACKEND=atlas but langchain-mongodb isn't installed. "
            "Install the `atlas` extra or use the TF-IDF backend instead."
        )
    logger.info(f"Connecting to Atlas vector index {index_name!r} on {database}.{collection}")
    return MongoDBAtlasVectorSearch.from_connection_string(
        uri,
        f"{database}.{collection}",
        embedding or OpenAIEmbeddings(),
        index_name=index_name,
        text_key="text",
        embedding_key="embedding",
    )


__all__ = ["TfidfVectorStore", "VectorStoreSearch", "atlas_vector_store"]
