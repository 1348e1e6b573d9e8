"""
Retrieval tool.

Wraps a similarity-search collaborator (see :mod:`rag_backend.rag`) as the
``retrieve`` tool offered to the chat model.  The tool returns two things:
a serialized text block that goes into the prompt, and the raw passages as a
``ToolMessage`` artifact so callers keep the source metadata without it
being pasted into the prompt twice.
"""

from __future__ import annotations

import logging
from typing import Any, List, Protocol, Sequence, Tuple

from langchain_core.documents import Document
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from ..errors import RetrievalFailure, ValidationFailure
from .langfuse_tracing import traced_tool

logger = logging.getLogger("rag_backend.retrieval")

RETRIEVE_TOOL_NAME = "retrieve"
RETRIEVE_DESCRIPTION = "Retrieve information related to a query."


class SimilaritySearch(Protocol):
    async def asearch(self, query: str, top_k: int = 2) -> List[Document]: ...


class RetrieveInput(BaseModel):
    query: str = Field(..., description="Search query used to look up relevant passages.")


def serialize_passages(passages: Sequence[Document]) -> str:
    """Render passages as ``Source: ...\\nContent: ...`` blocks joined by newlines."""
    return "\n".join(
        f"Source: {doc.metadata.get('source', 'unknown')}\nContent: {doc.page_content}"
        for doc in passages
    )


@traced_tool(RETRIEVE_TOOL_NAME, capture_input=False)
async def retrieve(search: SimilaritySearch, query: str, top_k: int = 2) -> Tuple[str, List[Document]]:
    """Look up passages for ``query``.

    Args:
        search: Similarity-search collaborator.
        query: Non-empty search string chosen by the model.
        top_k: Number of passages to request.

    Returns:
        ``(serialized, passages)`` where ``passages`` are the unmodified
        search results.

    Raises:
        ValidationFailure: ``query`` is empty or not a string.
        RetrievalFailure: the collaborator raised; it is not retried here.
    """
    if not isinstance(query, str) or not query.strip():
        raise ValidationFailure("Invalid query", "Retrieval query must be a non-empty string")
    try:
        passages = await search.asearch(query, top_k)
    except Exception as e:
        logger.exception(f"Similarity search failed for query {query!r}")
        raise RetrievalFailure("Similarity search failed", details={"query": query}) from e
    passages = list(passages)
    logger.info(f"Retrieved {len(passages)} passage(s) for query {query!r}")
    return serialize_passages(passages), passages


def build_retrieve_tool(search: SimilaritySearch, top_k: int = 2) -> BaseTool:
    """Return the ``retrieve`` tool bound to a search backend.

    The tool uses the ``content_and_artifact`` response format: invoking it
    with a tool call yields a ``ToolMessage`` whose content is the serialized
    text and whose artifact is the list of passages.
    """

    async def _retrieve(query: str) -> Tuple[str, List[Document]]:
        return await retrieve(search, query, top_k=top_k)

    return StructuredTool.from_function(
        coroutine=_retrieve,
        name=RETRIEVE_TOOL_NAME,
        description=RETRIEVE_DESCRIPTION,
        args_schema=RetrieveInput,
        response_format="content_and_artifact",
    )


def tool_call_payload(call: dict[str, Any]) -> dict[str, Any]:
    """Normalise a model tool call into the dict shape tools accept."""
    return {
        "type": "tool_call",
        "id": call.get("id"),
        "name": call.get("name"),
        "args": call.get("args") or {},
    }
