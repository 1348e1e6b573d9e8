from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Annotated, List, Literal, Tuple, TypedDict, Union

from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.messages.tool import ToolCall


@dataclass(frozen=True)
class FinalAnswer:
    """Model reply with plain content and no tool calls."""

    message: AIMessage
    kind: Literal["final_answer"] = "final_answer"


@dataclass(frozen=True)
class ToolRequest:
    """Model reply asking for one or more tool calls, in call order."""

    message: AIMessage
    calls: Tuple[ToolCall, ...]
    kind: Literal["tool_request"] = "tool_request"


Decision = Union[FinalAnswer, ToolRequest]


class TurnState(TypedDict, total=False):
    """Schema for the graph's state during one turn.

    ``messages`` is append-only: every node returns only the messages it
    produced and the reducer concatenates them.  The counters are summed the
    same way.
    """

    messages: Annotated[List[BaseMessage], operator.add]
    decision: Decision
    completion_calls: Annotated[int, operator.add]
    retrieval_calls: Annotated[int, operator.add]


@dataclass
class TurnResult:
    """Everything a finished turn produced, ready to be persisted."""

    new_messages: List[BaseMessage]
    answer: AIMessage
    completion_calls: int = 0
    retrieval_calls: int = 0
    tool_calls: List[ToolCall] = field(default_factory=list)

    @property
    def content(self) -> str:
        return message_text(self.answer)


def classify_response(message: BaseMessage) -> Decision:
    """Tag a completion response as a final answer or a tool request."""
    if isinstance(message, AIMessage) and message.tool_calls:
        return ToolRequest(message=message, calls=tuple(message.tool_calls))
    if not isinstance(message, AIMessage):
        message = AIMessage(content=message_text(message))
    return FinalAnswer(message=message)


def message_text(message: BaseMessage) -> str:
    """Plain text of a message, flattening content blocks when present."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)
