"""
Chat model factory for the conversation graph.

Chat models are constructed lazily from environment variables and cached per
model name.  When the Azure OpenAI variables are provided the factory
instantiates ``AzureChatOpenAI`` for the given deployment (API key or Entra ID
client credentials); otherwise it falls back to ``ChatOpenAI``.  Both steps of
the graph run with temperature 0 so answers stay close to the retrieved
context.
"""

from __future__ import annotations

import os
import logging
from typing import Any, Optional, Dict

try:
    # Optional dependency used only when authenticating to Azure OpenAI via
    # Azure Entra ID (AAD) client credentials.
    from azure.identity import ClientSecretCredential  # type: ignore
except ImportError:  # pragma: no cover
    ClientSecretCredential = None  # type: ignore

from langchain_openai import ChatOpenAI, AzureChatOpenAI

from .agent_config import DEFAULT_MODEL

logger = logging.getLogger("rag_backend.llm")

# Cache multiple chat model instances keyed by model name
_cached_llms: Dict[str, Any] = {}


def _azure_token_provider(scope: str) -> Any:
    if ClientSecretCredential is None:
        raise RuntimeError(
            "Azure Entra ID auth requested but azure-identity isn't installed. "
            "Install `azure-identity` or use AZURE_OPENAI_API_KEY instead."
        )
    credential = ClientSecretCredential(
        tenant_id=os.environ["AZURE_TENANT_ID"],
        client_id=os.environ["AZURE_CLIENT_ID"],
        client_secret=os.environ["AZURE_CLIENT_SECRET"],
    )

    # LangChain expects a callable returning a bearer token string.
    def token_provider() -> str:
        return credential.get_token(scope).token

    return token_provider


def get_llm(model_name: Optional[str] = None) -> Any:
    """Return a lazily constructed chat model instance.

    Args:
        model_name: Optional Azure deployment or OpenAI model name.  If
            ``None``, ``AZURE_OPENAI_DEPLOYMENT_NAME`` is used for Azure and
            ``gpt-4o-mini`` for OpenAI.

    Returns:
        An ``AzureChatOpenAI`` or ``ChatOpenAI`` instance, or ``None`` if no
        API credentials are configured.
    """
    key = model_name or "__default__"
    if key in _cached_llms:
        return _cached_llms[key]

    azure_base = os.getenv("AZURE_OPENAI_API_BASE")
    azure_version = os.getenv("AZURE_OPENAI_API_VERSION")
    azure_deployment = model_name or os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME")
    azure_ready = bool(azure_base and azure_version and azure_deployment)

    has_entra = all(os.getenv(v) for v in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET"))
    if azure_ready and has_entra:
        logger.info(f"Initialising Azure OpenAI model via Entra ID (deployment={azure_deployment})")
        scope = os.getenv("AZURE_OPENAI_SCOPE", "https://cognitiveservices.azure.com/.default")
        llm = AzureChatOpenAI(
            azure_endpoint=azure_base,
            azure_deployment=azure_deployment,
            api_version=azure_version,
            azure_ad_token_provider=_azure_token_provider(scope),
            temperature=0,
        )
        _cached_llms[key] = llm
        return llm

    azure_key = os.getenv("AZURE_OPENAI_API_KEY")
    if azure_ready and azure_key:
        logger.info(f"Initialising Azure OpenAI model (API key auth, deployment={azure_deployment})")
        llm = AzureChatOpenAI(
            azure_endpoint=azure_base,
            azure_deployment=azure_deployment,
            api_version=azure_version,
            api_key=azure_key,
            temperature=0,
        )
        _cached_llms[key] = llm
        return llm

    openai_key = os.getenv("OPENAI_API_KEY")
    if openai_key:
        logger.info(f"Initialising OpenAI model {model_name or DEFAULT_MODEL}")
        llm = ChatOpenAI(model=model_name or DEFAULT_MODEL, api_key=openai_key, temperature=0)
        _cached_llms[key] = llm
        return llm

    logger.warning("No OpenAI API keys found.  Language model features will be disabled.")
    return None
