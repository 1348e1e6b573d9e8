"""Optional Langfuse instrumentation for conversation turns.

Nothing is recorded unless ``LANGFUSE_PUBLIC_KEY``, ``LANGFUSE_SECRET_KEY``
and ``LANGFUSE_HOST`` are all set and the ``langfuse`` package imports; in
every other case the helpers below return ``None`` and do nothing.

A recorded turn looks like:

    trace "/api/rag"  (session_id = the conversation)
      span agent:query_or_respond
      span agent:route
      span agent:tools
        span tool:retrieve
      span agent:generate

Open observations are kept in context variables, so each ``asyncio`` task
sees its own turn.
"""

from __future__ import annotations

import functools
import inspect
import logging
import os
from contextvars import ContextVar
from typing import Any, Callable, Optional, TypeVar, cast

try:
    from langfuse import Langfuse  # type: ignore
except ImportError as e:  # pragma: no cover
    Langfuse = None  # type: ignore
    _import_error: Optional[Exception] = e
else:  # pragma: no cover
    _import_error = None


_T = TypeVar("_T")

logger = logging.getLogger("rag_backend.langfuse")

_client: Optional[Any] = None
_turn_trace: ContextVar[Optional[Any]] = ContextVar("rag_turn_trace", default=None)
_open_span: ContextVar[Optional[Any]] = ContextVar("rag_open_span", default=None)

_REQUIRED_ENV = ("LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY", "LANGFUSE_HOST")


def get_langfuse() -> Optional[Any]:
    """Shared Langfuse client, or ``None`` when tracing is off."""
    global _client
    if _client is not None:
        return _client
    if not all(os.getenv(var) for var in _REQUIRED_ENV):
        return None
    if Langfuse is None:
        logger.warning(f"LANGFUSE_* is configured but langfuse failed to import ({_import_error}); not tracing")
        return None

    _client = Langfuse(
        public_key=os.getenv("LANGFUSE_PUBLIC_KEY"),
        secret_key=os.getenv("LANGFUSE_SECRET_KEY"),
        host=os.getenv("LANGFUSE_HOST"),
    )
    return _client


def _finish(observation: Any, output: Optional[Any], error: Optional[str]) -> None:
    if error:
        observation.update(level="ERROR", status_message=error)
    if output is not None:
        observation.update(output=output)


def start_trace(
    *,
    name: str,
    session_id: Optional[str] = None,
    input: Optional[Any] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Optional[Any]:
    """Open the trace for one turn; later spans in this task nest under it."""
    client = get_langfuse()
    if client is None:
        return None

    trace = client.trace(name=name, session_id=session_id, input=input, metadata=metadata)
    _turn_trace.set(trace)
    _open_span.set(None)
    return trace


def end_trace(trace: Optional[Any], *, output: Optional[Any] = None, error: Optional[str] = None) -> None:
    if trace is None:
        return
    _finish(trace, output, error)
    client = get_langfuse()
    if client is not None:
        client.flush()
    _turn_trace.set(None)
    _open_span.set(None)


def start_span(
    *,
    name: str,
    input: Optional[Any] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Optional[Any]:
    """Open a span under the innermost open observation of this turn."""
    trace = _turn_trace.get()
    if trace is None:
        return None

    span = (_open_span.get() or trace).span(name=name, input=input, metadata=metadata)
    _open_span.set(span)
    return span


def end_span(span: Optional[Any], *, output: Optional[Any] = None, error: Optional[str] = None) -> None:
    if span is None:
        return
    _finish(span, output, error)
    span.end()
    _open_span.set(None)


def traced_tool(
    name: Optional[str] = None,
    *,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[..., _T]], Callable[..., _T]]:
    """Record each call of the decorated tool as a ``tool:<name>`` span.

    Works for plain functions and coroutine functions alike; a raised
    exception marks the span as an error and propagates unchanged.
    """

    def deco(fn: Callable[..., _T]) -> Callable[..., _T]:
        tool_name = name or fn.__name__

        def _open(args: Any, kwargs: Any) -> Optional[Any]:
            return start_span(
                name=f"tool:{tool_name}",
                input={"args": args, "kwargs": kwargs} if capture_input else None,
                metadata={"kind": "tool", "tool_name": tool_name},
            )

        def _close(span: Optional[Any], out: Any) -> None:
            end_span(span, output=out if capture_output else None)

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def run_async(*args: Any, **kwargs: Any) -> Any:
                span = _open(args, kwargs)
                try:
                    out = await fn(*args, **kwargs)
                except Exception as e:
                    end_span(span, error=str(e))
                    raise
                _close(span, out)
                return out

            return cast(Callable[..., _T], run_async)

        @functools.wraps(fn)
        def run(*args: Any, **kwargs: Any) -> _T:
            span = _open(args, kwargs)
            try:
                out = fn(*args, **kwargs)
            except Exception as e:
                end_span(span, error=str(e))
                raise
            _close(span, out)
            return out

        return cast(Callable[..., _T], run)

    return deco
