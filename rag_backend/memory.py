"""
Session-scoped conversation memory.

A session store is the single source of truth for what happened in a
conversation: an append-only list of LangChain messages per session id.  The
store is created once per process and shared by every request; a session is
created implicitly by its first append and never expires on its own.

Two backends are provided:

``InMemorySessionStore``
    Messages live in a Python dictionary and are lost when the process exits.

``JsonFileSessionStore``
    One JSON file per session, rewritten atomically on every append so a crash
    never leaves a half-written history behind.

Both hand out a per-session ``asyncio.Lock`` through :meth:`lock`.  The
service holds it for the whole load, turn, append sequence, so two messages
sent concurrently on one session are processed one after the other while
distinct sessions never wait on each other.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Sequence

from langchain_core.documents import Document
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    ToolMessage,
    message_to_dict,
    messages_from_dict,
)


def validate_history(messages: Sequence[BaseMessage]) -> None:
    """Check that every tool result follows the tool call it answers.

    Raises:
        ValueError: a ``ToolMessage`` has no earlier ``AIMessage`` tool call
            with the same id.
    """
    requested: set[str] = set()
    for idx, message in enumerate(messages):
        if isinstance(message, AIMessage):
            requested.update(call["id"] for call in message.tool_calls if call.get("id"))
        elif isinstance(message, ToolMessage) and message.tool_call_id not in requested:
            raise ValueError(
                f"Tool result at position {idx} references unknown tool call id {message.tool_call_id!r}"
            )


class SessionMemoryStore(ABC):
    """Append-only message log keyed by session id."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold exclusive access to one session for the duration of a turn."""
        session_lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with session_lock:
            yield

    @abstractmethod
    async def load(self, session_id: str) -> List[BaseMessage]:
        """Return every message recorded for the session, oldest first."""

    @abstractmethod
    async def append(self, session_id: str, messages: Sequence[BaseMessage]) -> None:
        """Append ``messages`` after the existing history, preserving order."""


class InMemorySessionStore(SessionMemoryStore):
    """Process-local session store backed by a dictionary of lists."""

    def __init__(self) -> None:
        super().__init__()
        self._sessions: Dict[str, List[BaseMessage]] = {}

    async def load(self, session_id: str) -> List[BaseMessage]:
        return list(self._sessions.get(session_id, []))

    async def append(self, session_id: str, messages: Sequence[BaseMessage]) -> None:
        new_messages = list(messages)
        if not new_messages:
            return
        existing = self._sessions.get(session_id, [])
        validate_history(existing + new_messages)
        self._sessions.setdefault(session_id, []).extend(new_messages)


# -----------------------------
# Disk-backed store
# -----------------------------
def _safe_filename(session_id: str) -> str:
    # Readable prefix plus a digest so distinct ids never share a file.
    readable = re.sub(r"[^\w.\-@]+", "_", session_id.strip())[:64]
    digest = hashlib.sha1(session_id.encode("utf-8")).hexdigest()[:12]
    return f"{readable}-{digest}.json"


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def _message_to_record(message: BaseMessage) -> Dict[str, Any]:
    record = message_to_dict(message)
    if isinstance(message, ToolMessage) and isinstance(message.artifact, list):
        record["data"]["artifact"] = [
            {"page_content": doc.page_content, "metadata": dict(doc.metadata)}
            if isinstance(doc, Document)
            else doc
            for doc in message.artifact
        ]
    return record


def _record_to_message(record: Dict[str, Any]) -> BaseMessage:
    message = messages_from_dict([record])[0]
    if isinstance(message, ToolMessage) and isinstance(message.artifact, list):
        message.artifact = [
            Document(page_content=item.get("page_content", ""), metadata=item.get("metadata") or {})
            if isinstance(item, dict) and "page_content" in item
            else item
            for item in message.artifact
        ]
    return message


class JsonFileSessionStore(SessionMemoryStore):
    """JSON-file session store, one file per session.

    Layout:
        root/
          <readable-id>-<sha1 prefix>.json   # list of serialized messages
    """

    def __init__(self, root: str) -> None:
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._io_lock = threading.RLock()

    def _path(self, session_id: str) -> Path:
        return self.root / _safe_filename(session_id)

    def _read(self, session_id: str) -> List[BaseMessage]:
        path = self._path(session_id)
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as f:
            records = json.load(f)
        return [_record_to_message(r) for r in records]

    def _write(self, session_id: str, new_messages: List[BaseMessage]) -> None:
        with self._io_lock:
            history = self._read(session_id)
            validate_history(history + new_messages)
            records = [_message_to_record(m) for m in history + new_messages]
            _atomic_write_text(self._path(session_id), json.dumps(records, ensure_ascii=False, indent=2))

    async def load(self, session_id: str) -> List[BaseMessage]:
        return await asyncio.to_thread(self._read, session_id)

    async def append(self, session_id: str, messages: Sequence[BaseMessage]) -> None:
        new_messages = list(messages)
        if not new_messages:
            return
        await asyncio.to_thread(self._write, session_id, new_messages)


__all__ = [
    "SessionMemoryStore",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "validate_history",
]
