"""
Configuration management for the Azure OpenAI proxy.

Supports YAML configuration with environment variable expansion, plus
layered environment overrides (``AZURE__KEY`` and friends) applied on top
of the file.
"""

import os
import re
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, List, Any

import yaml


DEFAULT_API_VERSION = "2025-01-01-preview"
FALLBACK_MODEL_ID = "gpt-5-chat"


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"


@dataclass(frozen=True)
class AzureConfig:
    """Upstream Azure OpenAI deployment settings."""
    endpoint_full: Optional[str] = None
    base: Optional[str] = None
    deployment: Optional[str] = None
    api_version: str = DEFAULT_API_VERSION
    key: Optional[str] = None

    @property
    def model_id(self) -> str:
        """Model id advertised by the listing endpoints."""
        return self.deployment or FALLBACK_MODEL_ID

    def problems(self) -> List[str]:
        """Return human-readable invariant violations (empty when usable)."""
        issues = []
        if _is_blank(self.key):
            issues.append("Azure key not configured (azure.key / AZURE__KEY).")
        if _is_blank(self.endpoint_full):
            if _is_blank(self.base):
                issues.append("Azure base URL not configured (azure.base / AZURE__BASE).")
            if _is_blank(self.deployment):
                issues.append("Azure deployment not configured (azure.deployment / AZURE__DEPLOYMENT).")
        return issues


@dataclass
class ProxyConfig:
    """Root configuration for the proxy."""
    server: ServerConfig = field(default_factory=ServerConfig)
    azure: AzureConfig = field(default_factory=AzureConfig)


# Schema names accepted in the `azure` section, mapped to field names
AZURE_KEYS = {
    "endpoint_full": "endpoint_full",
    "endpointfull": "endpoint_full",
    "base": "base",
    "deployment": "deployment",
    "api_version": "api_version",
    "apiversion": "api_version",
    "key": "key",
}

ENV_PREFIX = "AZURE__"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values."""
    if isinstance(value, str):
        # Match ${VAR} or $VAR patterns
        pattern = r'\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)'

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return re.sub(pattern, replace_var, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def parse_azure_config(data: Dict[str, Any]) -> AzureConfig:
    """Parse the `azure` section, accepting snake_case or schema key names."""
    values: Dict[str, Any] = {}
    for raw_key, raw_value in (data or {}).items():
        name = AZURE_KEYS.get(str(raw_key).lower())
        if name is None:
            raise ValueError(f"Unknown azure config key: {raw_key}")
        values[name] = None if raw_value is None else str(raw_value)

    if _is_blank(values.get("api_version")):
        values["api_version"] = DEFAULT_API_VERSION

    return AzureConfig(**values)


def apply_env_overrides(azure: AzureConfig, environ: Optional[Dict[str, str]] = None) -> AzureConfig:
    """Overlay ``AZURE__*`` environment variables onto the file settings."""
    environ = os.environ if environ is None else environ

    overrides = {}
    for var, value in environ.items():
        if not var.upper().startswith(ENV_PREFIX):
            continue
        name = AZURE_KEYS.get(var[len(ENV_PREFIX):].lower())
        if name is not None:
            overrides[name] = value

    if not overrides:
        return azure

    if "api_version" in overrides and _is_blank(overrides["api_version"]):
        overrides["api_version"] = DEFAULT_API_VERSION

    return replace(azure, **overrides)


def load_config(path: str | Path | None = None) -> ProxyConfig:
    """Load configuration from a YAML file (optional) and the environment."""
    data: Dict[str, Any] = {}

    if path is not None:
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            raw = yaml.safe_load(f) or {}

        # Expand environment variables
        data = expand_env_vars(raw)

    # Parse server config
    server_data = data.get("server") or {}
    server = ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=int(server_data.get("port", 8080)),
        log_level=str(server_data.get("log_level", "info")).lower(),
    )

    # Parse Azure config, then layer the environment on top
    azure = parse_azure_config(data.get("azure") or {})
    azure = apply_env_overrides(azure)

    return ProxyConfig(server=server, azure=azure)


def create_default_config() -> str:
    """Generate default configuration YAML."""
    return """# Azure OpenAI proxy configuration
#
# Every azure value can be overridden from the environment:
#   AZURE__ENDPOINTFULL, AZURE__BASE, AZURE__DEPLOYMENT,
#   AZURE__APIVERSION, AZURE__KEY

server:
  host: 0.0.0.0
  port: 8080
  log_level: info

azure:
  base: https://my-resource.openai.azure.com
  deployment: gpt-5-chat
  api_version: 2025-01-01-preview
  key: ${AZURE_OPENAI_KEY}
  # Send every request to this exact URL instead of building one:
  # endpoint_full: https://my-resource.openai.azure.com/openai/deployments/gpt-5-chat/chat/completions?api-version=2025-01-01-preview
"""
