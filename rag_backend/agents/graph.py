from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.messages.tool import ToolCall
from langchain_core.tools import BaseTool
from langgraph.graph import END, START, StateGraph
from pydantic import ValidationError

from ..errors import GenerationFailure, RetrievalFailure, ValidationFailure
from ..tools.langfuse_tracing import end_span, start_span
from ..tools.retrieval import tool_call_payload

from .prompt import assemble
from .routing import route
from .types import ToolRequest, TurnResult, TurnState, classify_response, message_text

logger = logging.getLogger("rag_backend.graph")


class ConversationController:
    """Drive one turn through decide, retrieve and generate.

    The compiled graph has no checkpointer: it starts from the history the
    caller passes in and returns what the turn produced.  Persisting that is
    the caller's job, so a failed turn leaves nothing behind.

    Args:
        llm: Chat model used to decide whether to retrieve.  ``None`` means
            no model is configured and every turn fails.
        tools: Tools offered to the model (normally just ``retrieve``).
        generate_llm: Chat model for the grounded answer; defaults to ``llm``.
        decide_prompt: Optional system prompt prepended to the decision call
            only (never persisted).
        generate_template: Optional system instruction template for the
            grounded answer (see :func:`~rag_backend.agents.prompt.build_system_prompt`).
    """

    def __init__(
        self,
        llm: Any,
        tools: Sequence[BaseTool],
        *,
        generate_llm: Any = None,
        decide_prompt: Optional[str] = None,
        generate_template: Optional[str] = None,
    ) -> None:
        self.llm = llm
        self.generate_llm = generate_llm if generate_llm is not None else llm
        self.tools: Dict[str, BaseTool] = {t.name: t for t in tools}
        self.decide_prompt = decide_prompt
        self.generate_template = generate_template
        self.graph = self._build_graph()

    def _build_graph(self) -> Any:
        graph_builder: StateGraph = StateGraph(TurnState)

        graph_builder.add_node("query_or_respond", self.query_or_respond)
        graph_builder.add_node("tools", self.execute_tools)
        graph_builder.add_node("generate", self.generate)

        graph_builder.add_edge(START, "query_or_respond")
        graph_builder.add_conditional_edges(
            "query_or_respond",
            route,
            {"tools": "tools", END: END},
        )
        graph_builder.add_edge("tools", "generate")
        graph_builder.add_edge("generate", END)

        return graph_builder.compile()

    # --------- nodes ----------
    async def query_or_respond(self, state: TurnState) -> TurnState:
        """Ask the tool-bound model for either an answer or tool calls."""
        _span = start_span(name="agent:query_or_respond", metadata={"kind": "agent"})
        if self.llm is None:
            end_span(_span, error="no model configured")
            raise GenerationFailure("No language model configured.  Set the appropriate environment variables.")

        messages: List[BaseMessage] = list(state["messages"])
        if self.decide_prompt:
            messages = [SystemMessage(content=self.decide_prompt), *messages]
        try:
            bound = self.llm.bind_tools(list(self.tools.values()))
            response = await bound.ainvoke(messages)
        except Exception as e:
            logger.exception("Completion model failed while deciding")
            end_span(_span, error=str(e))
            raise GenerationFailure("Completion model failed while deciding") from e

        decision = classify_response(response)
        end_span(_span, output={"kind": decision.kind})
        return {"messages": [decision.message], "decision": decision, "completion_calls": 1}

    async def execute_tools(self, state: TurnState) -> TurnState:
        """Run every requested tool call; results keep the call order."""
        decision = state["decision"]
        if not isinstance(decision, ToolRequest):
            raise GenerationFailure("Tools node reached without a tool request")

        for call in decision.calls:
            if call["name"] not in self.tools:
                raise GenerationFailure(
                    f"Model requested unknown tool {call['name']!r}",
                    details={"tool_call_id": call.get("id")},
                )
            if not call.get("id"):
                raise GenerationFailure(
                    f"Model requested tool {call['name']!r} without a call id",
                    details={"args": call.get("args")},
                )

        _span = start_span(
            name="agent:tools",
            input={"calls": [call["args"] for call in decision.calls]},
            metadata={"kind": "agent"},
        )
        try:
            results = await asyncio.gather(*(self._run_tool(call) for call in decision.calls))
        except Exception as e:
            end_span(_span, error=str(e))
            raise
        end_span(_span, output={"results": len(results)})
        return {"messages": list(results), "retrieval_calls": len(results)}

    async def _run_tool(self, call: ToolCall) -> ToolMessage:
        tool = self.tools[call["name"]]
        try:
            return await tool.ainvoke(tool_call_payload(call))
        except RetrievalFailure:
            raise
        except (ValidationFailure, ValidationError) as e:
            raise GenerationFailure(
                "Model requested an invalid tool call",
                details={"tool_call_id": call.get("id")},
            ) from e

    async def generate(self, state: TurnState) -> TurnState:
        """Produce the grounded answer from the assembled prompt."""
        _span = start_span(name="agent:generate", metadata={"kind": "agent"})
        prompt = assemble(state["messages"], self.generate_template)
        try:
            response = await self.generate_llm.ainvoke(prompt)
        except Exception as e:
            logger.exception("Completion model failed while generating")
            end_span(_span, error=str(e))
            raise GenerationFailure("Completion model failed while generating") from e

        answer = classify_response(response).message
        end_span(_span, output={"answer": message_text(answer)})
        return {"messages": [answer], "completion_calls": 1}

    # --------- entry point ----------
    async def run_turn(self, history: Sequence[BaseMessage], user_message: str) -> TurnResult:
        """Run one turn on top of ``history``.

        Returns the new user message, any tool-call request and tool results,
        and the final assistant message, in order.  Nothing is persisted.
        """
        prior = list(history)
        initial: TurnState = {
            "messages": [*prior, HumanMessage(content=user_message)],
            "completion_calls": 0,
            "retrieval_calls": 0,
        }
        final = await self.graph.ainvoke(initial)

        new_messages = list(final["messages"][len(prior):])
        answer = new_messages[-1]
        if not isinstance(answer, AIMessage):
            raise GenerationFailure("Turn ended without an assistant message")

        tool_calls: List[ToolCall] = []
        for message in new_messages:
            if isinstance(message, AIMessage):
                tool_calls.extend(message.tool_calls)

        return TurnResult(
            new_messages=new_messages,
            answer=answer,
            completion_calls=final.get("completion_calls", 0),
            retrieval_calls=final.get("retrieval_calls", 0),
            tool_calls=tool_calls,
        )
