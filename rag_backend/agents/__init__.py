"""LangGraph conversation controller for the RAG assistant.

Each turn runs through three nodes:
- ``query_or_respond`` asks the tool-bound model to answer or to call ``retrieve``
- ``tools`` executes every requested retrieval
- ``generate`` answers from the retrieved context

Public API:
- ``ConversationController``
- ``TurnResult``
- ``assemble``
"""

from .graph import ConversationController
from .prompt import assemble
from .types import FinalAnswer, ToolRequest, TurnResult

__all__ = [
    "ConversationController",
    "FinalAnswer",
    "ToolRequest",
    "TurnResult",
    "assemble",
]
