"""
Azure OpenAI Proxy Server

FastAPI application exposing an OpenAI-shaped surface and forwarding it to
an Azure OpenAI deployment.
"""

import logging
from typing import List, Optional
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from . import __version__
from .config import ProxyConfig, load_config
from .forwarder import ORIGINAL_PATH_KEY, Forwarder, create_http_client, forward_or_fail

logger = logging.getLogger("aoai-proxy")


# =============================================================================
# Pydantic Models
# =============================================================================

class ModelEntry(BaseModel):
    """One entry of an OpenAI-style model list."""
    id: str
    object: str = "model"


class ModelList(BaseModel):
    """OpenAI-style `GET /v1/models` body."""
    data: List[ModelEntry] = Field(default_factory=list)


class SimpleModelList(BaseModel):
    """Simplified listing some clients request from `/models`."""
    models: List[str] = Field(default_factory=list)


# =============================================================================
# Route table
# =============================================================================

OPENAI_MODEL_PATHS = ("/v1/models", "/v1/chat/completions/models", "/v1/responses/models")
SIMPLE_MODEL_PATHS = ("/models", "/api/v0/models")
FORWARD_PATHS = ("/v1/chat/completions", "/v1/responses")
FORWARD_WILDCARD = "/v1/{rest:path}"


# =============================================================================
# Middleware
# =============================================================================

class InboundRequestMiddleware:
    """Logs every inbound HTTP request and makes routing case-insensitive.

    The path is lowercased for route matching; the client's spelling stays in
    the scope for URL translation. Plain ASGI so the receive channel reaches
    the forwarder untouched.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] == "http":
            client = scope.get("client")
            remote = client[0] if client else "unknown"
            logger.info(f"Incoming {scope['method']} {scope['path']} from {remote}")

            scope = dict(scope)
            scope[ORIGINAL_PATH_KEY] = scope["path"]
            scope["path"] = scope["path"].lower()
        await self.app(scope, receive, send)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(config: ProxyConfig = None, client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Create FastAPI application.

    `client` is the outbound connection pool; one is created (and closed on
    shutdown) when not supplied.
    """
    config = config or ProxyConfig()
    owns_client = client is None
    client = client or create_http_client()

    forwarder = Forwarder(azure=config.azure, client=client)
    known_models = [config.azure.model_id]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("Azure OpenAI proxy starting...")
        for problem in config.azure.problems():
            logger.warning(f"Configuration: {problem}")

        yield

        logger.info("Azure OpenAI proxy shutting down...")
        if owns_client:
            await client.aclose()

    app = FastAPI(
        title="Azure OpenAI Proxy",
        description="OpenAI-compatible front for an Azure OpenAI deployment",
        version=__version__,
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )

    # Store components in app state
    app.state.config = config
    app.state.forwarder = forwarder

    app.add_middleware(InboundRequestMiddleware)

    # =========================================================================
    # Routes
    # =========================================================================

    @app.get("/health")
    async def health():
        """Health check."""
        return {"status": "healthy"}

    # -------------------------------------------------------------------------
    # Model listing stubs (registered before the POST catch-all)
    # -------------------------------------------------------------------------

    async def list_models():
        return ModelList(data=[ModelEntry(id=m) for m in known_models])

    async def list_models_simple():
        return SimpleModelList(models=known_models)

    for path in OPENAI_MODEL_PATHS:
        app.add_api_route(path, list_models, methods=["GET"], response_model=ModelList)
    for path in SIMPLE_MODEL_PATHS:
        app.add_api_route(path, list_models_simple, methods=["GET"], response_model=SimpleModelList)

    # -------------------------------------------------------------------------
    # Preflight
    # -------------------------------------------------------------------------

    async def preflight():
        return Response(status_code=200)

    for path in ("/v1/{any:path}", *SIMPLE_MODEL_PATHS):
        app.add_api_route(path, preflight, methods=["OPTIONS"], include_in_schema=False)

    # -------------------------------------------------------------------------
    # Forwarding (named paths first, wildcard last)
    # -------------------------------------------------------------------------

    async def proxy(request: Request):
        return await forward_or_fail(forwarder, request)

    for path in (*FORWARD_PATHS, FORWARD_WILDCARD):
        app.add_api_route(path, proxy, methods=["POST"], include_in_schema=False)

    return app


# =============================================================================
# Main
# =============================================================================

def main(config_path: str = None, host: str = None, port: int = None):
    """Run the proxy server."""
    import uvicorn

    config = load_config(config_path)

    logging.basicConfig(
        level=config.server.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(config)

    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.server.log_level,
    )


if __name__ == "__main__":
    main()
