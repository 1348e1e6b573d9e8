from __future__ import annotations

import pytest
from langchain_core.documents import Document
from langchain_core.messages import ToolMessage

from rag_backend.errors import RetrievalFailure, ValidationFailure
from rag_backend.tools.retrieval import build_retrieve_tool, retrieve, serialize_passages

from conftest import FakeSearch


def test_serialize_passages_formats_source_and_content(passages):
    assert serialize_passages(passages) == (
        "Source: ds.pdf#1\nContent: A stack is LIFO.\n"
        "Source: ds.pdf#2\nContent: Push adds to the top."
    )


def test_serialize_passages_without_source_metadata():
    assert serialize_passages([Document(page_content="x")]) == "Source: unknown\nContent: x"
    assert serialize_passages([]) == ""


@pytest.mark.asyncio
async def test_retrieve_requests_top_two_and_returns_raw_passages(fake_search, passages):
    serialized, found = await retrieve(fake_search, "what is a stack")

    assert fake_search.queries == [("what is a stack", 2)]
    assert serialized == serialize_passages(passages)
    assert [d.page_content for d in found] == [d.page_content for d in passages]
    assert [d.metadata for d in found] == [d.metadata for d in passages]


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   "])
async def test_retrieve_rejects_blank_query(fake_search, query):
    with pytest.raises(ValidationFailure):
        await retrieve(fake_search, query)
    assert fake_search.queries == []


@pytest.mark.asyncio
async def test_retrieve_wraps_search_errors_without_retrying():
    search = FakeSearch(error=TimeoutError("vector store timed out"))

    with pytest.raises(RetrievalFailure) as excinfo:
        await retrieve(search, "stack")

    assert isinstance(excinfo.value.__cause__, TimeoutError)
    assert len(search.queries) == 1


def test_retrieve_tool_declaration(fake_search):
    tool = build_retrieve_tool(fake_search)

    assert tool.name == "retrieve"
    assert tool.description == "Retrieve information related to a query."
    assert list(tool.args) == ["query"]


@pytest.mark.asyncio
async def test_retrieve_tool_returns_content_and_artifact(fake_search, passages):
    tool = build_retrieve_tool(fake_search, top_k=3)

    result = await tool.ainvoke(
        {"type": "tool_call", "id": "call_9", "name": "retrieve", "args": {"query": "stack"}}
    )

    assert isinstance(result, ToolMessage)
    assert result.tool_call_id == "call_9"
    assert result.content == serialize_passages(passages)
    assert [d.page_content for d in result.artifact] == [d.page_content for d in passages]
    assert fake_search.queries == [("stack", 3)]
