"""
RAG service facade.

``RagService.respond(message, session_id)`` is the only operation the HTTP
layer calls.  One call is one turn:

1. validate the session id and message;
2. take the session's lock so turns on one session never interleave;
3. load the history, run the conversation controller, append the new
   messages in a single write;
4. return the final answer text.

Anything that goes wrong after validation is logged with its cause and
re-raised as an opaque :class:`~rag_backend.errors.RagResponseFailure`.  The
store is only written after the turn finishes, so a failed turn leaves the
session exactly as it was and a client retry is simply a new turn.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .agents.graph import ConversationController
from .errors import RagResponseFailure, ValidationFailure
from .memory import InMemorySessionStore, JsonFileSessionStore, SessionMemoryStore
from .rag import TfidfVectorStore, VectorStoreSearch, atlas_vector_store
from .tools.agent_config import ServiceSettings, get_agent_settings, get_service_settings
from .tools.llm import get_llm
from .tools.retrieval import SimilaritySearch, build_retrieve_tool

logger = logging.getLogger("rag_backend.service")

SESSION_ID_MIN_LENGTH = 3
SESSION_ID_MAX_LENGTH = 100


def validate_session_id(session_id: Any) -> str:
    """Return the session id unchanged or raise ``ValidationFailure``.

    There is no fallback id: every caller must say which
    conversation it is talking about.
    """
    if session_id is None or session_id == "":
        raise ValidationFailure(
            "Session ID is required",
            "Please provide a sessionId in the request body or x-session-id header",
        )
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationFailure("Invalid Session ID", "Session ID must be a non-empty string")
    if not SESSION_ID_MIN_LENGTH <= len(session_id) <= SESSION_ID_MAX_LENGTH:
        raise ValidationFailure(
            "Invalid Session ID format",
            f"Session ID must be between {SESSION_ID_MIN_LENGTH} and {SESSION_ID_MAX_LENGTH} characters",
        )
    return session_id


def validate_message(message: Any) -> str:
    if not isinstance(message, str) or not message.strip():
        raise ValidationFailure("Message is required", "Please provide a non-empty message")
    return message


class RagService:
    """Entry point tying the controller to a session store."""

    def __init__(self, controller: ConversationController, store: SessionMemoryStore) -> None:
        self.controller = controller
        self.store = store

    async def respond(self, message: str, session_id: str) -> str:
        """Answer ``message`` in the context of session ``session_id``.

        Raises:
            ValidationFailure: bad message or session id; nothing ran.
            RagResponseFailure: the turn failed; the store is unchanged.
        """
        session_id = validate_session_id(session_id)
        message = validate_message(message)

        async with self.store.lock(session_id):
            try:
                history = await self.store.load(session_id)
                logger.info(f"Turn started (session={session_id}, history={len(history)} messages)")
                result = await self.controller.run_turn(history, message)
                await self.store.append(session_id, result.new_messages)
            except Exception as e:
                logger.exception(f"Turn failed (session={session_id})")
                raise RagResponseFailure("Failed to generate a response", cause=e) from e

        logger.info(
            f"Turn finished (session={session_id}, completion_calls={result.completion_calls}, "
            f"retrieval_calls={result.retrieval_calls}, new_messages={len(result.new_messages)})"
        )
        return result.content


def create_store(kind: str = "memory", directory: Optional[str] = None) -> SessionMemoryStore:
    if kind == "file":
        return JsonFileSessionStore(directory or ".sessions")
    return InMemorySessionStore()


def create_search(settings: ServiceSettings) -> SimilaritySearch:
    """Build the similarity-search collaborator selected by ``SEARCH_BACKEND``."""
    if settings.search_backend == "atlas":
        return VectorStoreSearch(
            atlas_vector_store(
                settings.atlas_uri,
                settings.atlas_database,
                settings.atlas_collection,
                index_name=settings.atlas_index,
            )
        )
    if settings.corpus_path:
        return TfidfVectorStore.from_json(settings.corpus_path)
    return TfidfVectorStore()


def create_service() -> RagService:
    """Wire the service from environment variables and ``agent_config.yaml``."""
    settings = get_service_settings()
    search = create_search(settings)

    decide_settings = get_agent_settings("query_or_respond")
    generate_settings = get_agent_settings("generate")
    controller = ConversationController(
        get_llm(decide_settings.model_name),
        [build_retrieve_tool(search, top_k=settings.top_k)],
        generate_llm=get_llm(generate_settings.model_name),
        decide_prompt=decide_settings.system_prompt,
        generate_template=generate_settings.system_prompt,
    )
    store = create_store(settings.session_store, settings.session_store_dir)
    logger.info(
        f"RAG service ready (search={settings.search_backend}, store={settings.session_store}, top_k={settings.top_k})"
    )
    return RagService(controller, store)
