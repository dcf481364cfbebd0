"""
Azure OpenAI Proxy - OpenAI-compatible front for Azure OpenAI deployments

Accepts OpenAI-shaped requests (`/v1/chat/completions`, `/v1/responses`, ...)
and streams them to a single Azure OpenAI deployment.
"""

__version__ = "0.1.0"

from .config import AzureConfig, ProxyConfig, load_config
from .translator import build_upstream_url
from .server import create_app

__all__ = [
    "__version__",
    "AzureConfig",
    "ProxyConfig",
    "load_config",
    "build_upstream_url",
    "create_app",
]
