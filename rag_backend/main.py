"""
FastAPI server exposing the conversational RAG assistant.

The application has a single functional route, ``POST /api/rag``, which
accepts a JSON body ``{"message": ..., "sessionId": ...}``.  The session id
may also be supplied through the ``x-session-id`` header; it is required
either way and must be 3 to 100 characters long.  A successful turn returns
``201`` with ``{"response": ..., "sessionId": ...}``.

Validation problems map to ``400`` with an ``error``/``message`` pair.  Any
failure inside a turn maps to a generic ``500``; the cause is logged but never
sent to the client.

The service (chat model, search backend and session store) is built once at
startup.  To start the server run
``uvicorn rag_backend.main:app --reload`` from the project root.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import Body, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import RagResponseFailure, ValidationFailure
from .service import RagService, create_service, validate_message, validate_session_id
from .tools.langfuse_tracing import end_trace, start_trace

import logging


# Configure a simple application-wide logger.  The log level can be set via
# the LOG_LEVEL environment variable (default: INFO).
_log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=_log_level,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger("rag_backend.main")


class RagRequest(BaseModel):
    # Untyped: validate_session_id/validate_message produce the 400 bodies.
    message: Optional[Any] = None
    sessionId: Optional[Any] = None


def create_app(service: Optional[RagService] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Pre-built service to use.  When omitted, one is created from
            the environment during application startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "service", None) is None:
            app.state.service = create_service()
        yield

    app = FastAPI(title="Conversational RAG Backend", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(ValidationFailure)
    async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": exc.error, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def malformed_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "message": "Request body must be a JSON object"},
        )

    @app.exception_handler(RagResponseFailure)
    async def rag_failure_handler(request: Request, exc: RagResponseFailure) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": "Failed to generate a response"},
        )

    @app.post("/api/rag", status_code=201)
    async def rag(
        request: Request,
        payload: Optional[RagRequest] = Body(default=None),
        x_session_id: Optional[str] = Header(default=None),
    ) -> JSONResponse:
        """Run one conversational turn and return the assistant's answer."""
        body = payload or RagRequest()
        session_id = validate_session_id(body.sessionId or x_session_id)
        message = validate_message(body.message)

        trace = start_trace(
            name="/api/rag",
            session_id=session_id,
            input={"message": message},
            metadata={"endpoint": "/api/rag"},
        )
        logger.info(f"Received rag request (session={session_id})")

        service: RagService = request.app.state.service
        try:
            answer = await service.respond(message, session_id)
        except RagResponseFailure as e:
            end_trace(trace, error=str(e.cause or e))
            raise
        end_trace(trace, output={"response": answer})
        return JSONResponse(status_code=201, content={"response": answer, "sessionId": session_id})

    @app.get("/")
    async def root() -> JSONResponse:
        """Return a brief description of the API."""
        return JSONResponse(
            {
                "message": "Conversational RAG backend is running. POST {message, sessionId} to /api/rag.",
            }
        )

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return app


app = create_app()
