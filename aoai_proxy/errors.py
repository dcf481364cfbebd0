"""
Error taxonomy for the forwarding pipeline.

Each stage (translate, build, send, relay) raises one of these; the route
handlers turn them into responses with `error_response`.
"""

from pydantic import BaseModel
from fastapi.responses import JSONResponse, Response


STATUS_CLIENT_CLOSED_REQUEST = 499


class ErrorBody(BaseModel):
    """JSON body returned for proxy-side failures."""
    error: str
    details: str


class ProxyError(Exception):
    """Base class for failures the proxy reports to the caller."""

    status_code = 500
    code = "proxy_error"

    def __init__(self, details: str = "", code: str | None = None):
        super().__init__(details)
        self.details = details
        if code is not None:
            self.code = code


class ConfigurationError(ProxyError):
    """Operator misconfiguration (missing key, base or deployment)."""

    code = "azure_url_build_failed"


class ClientCancellation(ProxyError):
    """The caller went away before the upstream call finished."""

    status_code = STATUS_CLIENT_CLOSED_REQUEST
    code = "client_closed_request"


class UpstreamTransportError(ProxyError):
    """Network, timeout or protocol failure while reaching the upstream."""

    status_code = 502
    code = "forward_error"


class UnexpectedHandlerFailure(ProxyError):
    """Anything not otherwise classified."""


def error_response(exc: ProxyError) -> Response:
    if isinstance(exc, ClientCancellation):
        return Response(status_code=exc.status_code)

    body = ErrorBody(error=exc.code, details=exc.details)
    return JSONResponse(content=body.model_dump(), status_code=exc.status_code)
