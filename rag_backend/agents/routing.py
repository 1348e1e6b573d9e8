from __future__ import annotations

import logging
from typing import Literal

from langgraph.graph import END

from ..tools.langfuse_tracing import end_span, start_span

from .types import TurnState

logger = logging.getLogger("rag_backend.routing")


def route(state: TurnState) -> Literal["tools", "__end__"]:
    """Send tool requests to the tools node; final answers end the turn."""
    decision = state.get("decision")
    route_span = start_span(
        name="agent:route",
        input={"kind": getattr(decision, "kind", None)},
        metadata={"kind": "routing"},
    )

    if decision is not None and decision.kind == "tool_request":
        names = [call["name"] for call in decision.calls]
        logger.info(f"Routing to tools: {names}")
        end_span(route_span, output={"decision": "tools", "calls": names})
        return "tools"

    logger.info("Answering directly without retrieval")
    end_span(route_span, output={"decision": "end"})
    return END
