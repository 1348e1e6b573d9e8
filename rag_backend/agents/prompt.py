"""Grounded-answer prompt assembly.

The final generation step never sees tool plumbing: retrieved passages are
folded into the system instruction and only the real conversation (user,
system, and plain assistant replies) follows it.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from .types import message_text

DEFAULT_SYSTEM_PROMPT = (
    "You are an assistant for question-answering tasks. "
    "Use the following pieces of retrieved context to answer "
    "the question. If you don't know the answer, say that you "
    "don't know. Use three sentences maximum and keep the "
    "answer concise."
)

CONTEXT_PLACEHOLDER = "{context}"


def recent_tool_messages(history: Sequence[BaseMessage]) -> List[ToolMessage]:
    """Return the trailing run of tool results, oldest first.

    Scans backward from the end and stops at the first message that is not a
    ``ToolMessage``.
    """
    trailing: List[ToolMessage] = []
    idx = len(history) - 1
    while idx >= 0:
        message = history[idx]
        if not isinstance(message, ToolMessage):
            break
        trailing.append(message)
        idx -= 1
    trailing.reverse()
    return trailing


def build_system_prompt(docs_content: str, template: Optional[str] = None) -> str:
    """Embed retrieved context into the system instruction.

    ``template`` may contain a ``{context}`` placeholder; without one the
    context is appended after a blank line, as with the default instruction.
    """
    base = template if template else DEFAULT_SYSTEM_PROMPT
    if CONTEXT_PLACEHOLDER in base:
        return base.replace(CONTEXT_PLACEHOLDER, docs_content)
    return f"{base.rstrip()}\n\n{docs_content}"


def conversation_messages(history: Sequence[BaseMessage]) -> List[BaseMessage]:
    """User and system messages plus assistant replies that made no tool calls."""
    return [
        message
        for message in history
        if isinstance(message, (HumanMessage, SystemMessage))
        or (isinstance(message, AIMessage) and not message.tool_calls)
    ]


def assemble(history: Sequence[BaseMessage], template: Optional[str] = None) -> List[BaseMessage]:
    """Build the exact message list sent to the grounded-answer call."""
    docs_content = "\n".join(message_text(m) for m in recent_tool_messages(history))
    system = SystemMessage(content=build_system_prompt(docs_content, template))
    return [system, *conversation_messages(history)]
