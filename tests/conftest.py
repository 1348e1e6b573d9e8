"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import asyncio
from typing import Any, Iterable, List, Optional, Sequence

import pytest
from langchain_core.documents import Document
from langchain_core.messages import AIMessage, BaseMessage

from rag_backend.agents.graph import ConversationController
from rag_backend.memory import InMemorySessionStore
from rag_backend.service import RagService
from rag_backend.tools.retrieval import build_retrieve_tool


class ScriptedChatModel:
    """Stand-in chat model replaying a fixed list of replies.

    Each entry is an ``AIMessage``, a plain string (becomes an ``AIMessage``)
    or an exception to raise.  Every prompt it receives is recorded.
    """

    def __init__(self, responses: Iterable[Any], delay: float = 0.0) -> None:
        self.responses: List[Any] = list(responses)
        self.delay = delay
        self.calls: List[List[BaseMessage]] = []
        self.bound_tools: List[List[str]] = []

    def bind_tools(self, tools: Sequence[Any]) -> "ScriptedChatModel":
        self.bound_tools.append([t.name for t in tools])
        return self

    async def ainvoke(self, messages: Sequence[BaseMessage]) -> AIMessage:
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise RuntimeError("no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, AIMessage):
            return item.model_copy(deep=True)
        return AIMessage(content=str(item))


class FakeSearch:
    """Similarity search returning canned passages and recording queries."""

    def __init__(self, passages: Optional[List[Document]] = None, error: Optional[Exception] = None) -> None:
        self.passages = passages if passages is not None else []
        self.error = error
        self.queries: List[tuple[str, int]] = []

    async def asearch(self, query: str, top_k: int = 2) -> List[Document]:
        self.queries.append((query, top_k))
        if self.error is not None:
            raise self.error
        return [Document(page_content=d.page_content, metadata=dict(d.metadata)) for d in self.passages]


def tool_request(*queries: str, start: int = 1) -> AIMessage:
    """An assistant message asking for one ``retrieve`` call per query."""
    return AIMessage(
        content="",
        tool_calls=[
            {"name": "retrieve", "args": {"query": q}, "id": f"call_{start + i}", "type": "tool_call"}
            for i, q in enumerate(queries)
        ],
    )


@pytest.fixture
def passages() -> List[Document]:
    return [
        Document(page_content="A stack is LIFO.", metadata={"source": "ds.pdf#1"}),
        Document(page_content="Push adds to the top.", metadata={"source": "ds.pdf#2"}),
    ]


@pytest.fixture
def fake_search(passages: List[Document]) -> FakeSearch:
    return FakeSearch(passages)


@pytest.fixture
def make_service():
    """Build a service around a scripted model and a fake search backend."""

    def _make(responses: Iterable[Any], search: Optional[FakeSearch] = None, delay: float = 0.0):
        model = ScriptedChatModel(responses, delay=delay)
        search = search if search is not None else FakeSearch()
        controller = ConversationController(model, [build_retrieve_tool(search, top_k=2)])
        store = InMemorySessionStore()
        return RagService(controller, store), model, search, store

    return _make
