"""
OpenAI -> Azure OpenAI URL translation.

Maps a client-facing OpenAI path (``/v1/chat/completions``) onto the
deployment-scoped Azure path and makes sure the query carries an
``api-version``.
"""

from typing import Optional

from .config import AzureConfig, DEFAULT_API_VERSION
from .errors import ConfigurationError


CHAT_COMPLETIONS_PREFIX = "v1/chat/completions"
RESPONSES_PREFIX = "v1/responses"
V1_PREFIX = "v1/"


def map_path(path: str, deployment: str) -> str:
    """Translate an incoming request path into an Azure deployment path."""
    incoming = path.lstrip("/")
    lowered = incoming.lower()
    prefix = f"openai/deployments/{deployment}"

    if lowered.startswith(CHAT_COMPLETIONS_PREFIX):
        return f"{prefix}/chat/completions"
    if lowered.startswith(RESPONSES_PREFIX):
        return f"{prefix}/responses"

    remainder = incoming[len(V1_PREFIX):] if lowered.startswith(V1_PREFIX) else incoming
    return f"{prefix}/{remainder}"


def build_query(query: Optional[str], api_version: Optional[str]) -> str:
    """
    Return the query suffix (including ``?``) for the upstream URL.

    The api-version check is a plain substring match, so a parameter such as
    ``x-api-version=1`` also counts as already present.
    """
    version = api_version or DEFAULT_API_VERSION
    query = (query or "").lstrip("?")

    if not query:
        return f"?api-version={version}"
    if "api-version=" in query.lower():
        return f"?{query}"
    return f"?{query}&api-version={version}"


def build_upstream_url(path: str, query: Optional[str], azure: AzureConfig) -> str:
    """Build the upstream URL for one inbound request.

    Raises:
        ConfigurationError: neither ``endpoint_full`` nor both ``base`` and
            ``deployment`` are configured.
    """
    if azure.endpoint_full and azure.endpoint_full.strip():
        return azure.endpoint_full

    base = (azure.base or "").strip()
    deployment = (azure.deployment or "").strip()
    if not base or not deployment:
        raise ConfigurationError("Azure base or deployment not configured (azure.base, azure.deployment).")

    return f"{base.rstrip('/')}/{map_path(path, deployment)}{build_query(query, azure.api_version)}"
