"""Package exposing the conversational RAG backend."""

from .main import app  # Re-export FastAPI application for uvicorn

__all__ = ["app"]
