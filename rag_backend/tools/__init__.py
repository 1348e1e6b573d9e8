# Collaborators used by the conversation graph.
#
# The modules in this directory wrap everything the graph talks to: the
# ``retrieve`` tool over a similarity-search backend, the chat model factory,
# configuration loading and optional Langfuse tracing.

from .retrieval import build_retrieve_tool, retrieve, serialize_passages
from .llm import get_llm

__all__ = [
    "build_retrieve_tool",
    "retrieve",
    "serialize_passages",
    "get_llm",
]
