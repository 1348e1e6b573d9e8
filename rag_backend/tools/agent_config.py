"""Configuration loader.

Per-step model settings and system prompts live in
`rag_backend/agent_config.yaml`; everything deployment-specific comes from
environment variables.

The YAML loader is intentionally tolerant:
- If the YAML file is missing or invalid, it falls back to empty defaults.
- Callers can still override model names explicitly at call sites.

The YAML schema:

- default_model: <string | null>
- query_or_respond/generate:
    system_prompt: <string | null>
    model_name: <string | null>
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Any

import yaml

logger = logging.getLogger("rag_backend.config")

DEFAULT_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class AgentSettings:
    model_name: Optional[str]
    system_prompt: Optional[str]


@dataclass(frozen=True)
class ServiceSettings:
    """Deployment settings read from the environment."""

    top_k: int = 2
    corpus_path: Optional[str] = None
    session_store: str = "memory"
    session_store_dir: str = ".sessions"
    search_backend: str = "tfidf"
    atlas_uri: Optional[str] = None
    atlas_database: Optional[str] = None
    atlas_collection: str = "data"
    atlas_index: str = "vector_index"


def _package_root() -> str:
    # rag_backend/tools/agent_config.py -> rag_backend/tools -> rag_backend
    return os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _default_config_path() -> str:
    return os.path.join(_package_root(), "agent_config.yaml")


@lru_cache(maxsize=1)
def load_agent_config(path: Optional[str] = None) -> dict[str, Any]:
    config_path = path or os.getenv("AGENT_CONFIG_PATH") or _default_config_path()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data
    except FileNotFoundError:
        return {}
    except yaml.YAMLError:
        # Keep this loader non-fatal; a broken file should not crash the server.
        logger.warning(f"Ignoring unreadable agent config at {config_path}")
        return {}


def get_agent_settings(step_name: str) -> AgentSettings:
    config = load_agent_config()
    default_model = config.get("default_model")

    step_block = config.get(step_name, {}) if isinstance(config, dict) else {}
    if not isinstance(step_block, dict):
        step_block = {}

    model_name = step_block.get("model_name")
    if model_name is None:
        model_name = default_model

    system_prompt = step_block.get("system_prompt")

    return AgentSettings(
        model_name=model_name if isinstance(model_name, str) else None,
        system_prompt=system_prompt if isinstance(system_prompt, str) else None,
    )


def get_service_settings() -> ServiceSettings:
    top_k_raw = os.getenv("RAG_TOP_K", "2")
    try:
        top_k = int(top_k_raw)
    except ValueError:
        raise ValueError(f"RAG_TOP_K must be an integer, got {top_k_raw!r}")
    if top_k < 1:
        raise ValueError(f"RAG_TOP_K must be >= 1, got {top_k}")

    session_store = os.getenv("SESSION_STORE", "memory").strip().lower()
    if session_store not in ("memory", "file"):
        raise ValueError(f"SESSION_STORE must be 'memory' or 'file', got {session_store!r}")

    search_backend = os.getenv("SEARCH_BACKEND", "tfidf").strip().lower()
    if search_backend not in ("tfidf", "atlas"):
        raise ValueError(f"SEARCH_BACKEND must be 'tfidf' or 'atlas', got {search_backend!r}")
    atlas_uri = os.getenv("MONGODB_ATLAS_URI") or None
    atlas_database = os.getenv("DATABASE_NAME") or None
    if search_backend == "atlas" and not (atlas_uri and atlas_database):
        raise ValueError("SEARCH_BACKEND=atlas requires MONGODB_ATLAS_URI and DATABASE_NAME")

    return ServiceSettings(
        top_k=top_k,
        corpus_path=os.getenv("RAG_CORPUS_PATH") or None,
        session_store=session_store,
        session_store_dir=os.getenv("SESSION_STORE_DIR", ".sessions"),
        search_backend=search_backend,
        atlas_uri=atlas_uri,
        atlas_database=atlas_database,
        atlas_collection=os.getenv("COLLECTION_NAME") or "data",
        atlas_index=os.getenv("ATLAS_INDEX_NAME") or "vector_index",
    )
