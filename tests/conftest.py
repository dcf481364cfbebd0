"""Shared fixtures: an Azure config and a recording upstream double."""

import os

import pytest
import httpx
from fastapi.testclient import TestClient

from aoai_proxy.config import AzureConfig, ProxyConfig
from aoai_proxy.server import create_app


BASE = "https://x.openai.azure.com"
DEPLOYMENT = "gpt-5-chat"
KEY = "secret-key"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep AZURE__* overrides from the host environment out of the tests."""
    for var in list(os.environ):
        if var.upper().startswith("AZURE__"):
            monkeypatch.delenv(var)


@pytest.fixture
def azure():
    return AzureConfig(base=BASE, deployment=DEPLOYMENT, key=KEY)


def streamed_response(status_code=200, content=b"", headers=None) -> httpx.Response:
    """A response whose body is still an unread stream, as a real transport returns."""
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(content))


class Upstream:
    """Records outbound requests and answers with a configurable handler."""

    def __init__(self):
        self.calls = []
        self.respond(200, b'{"ok": true}', {"content-type": "application/json"})

    def respond(self, status_code=200, content=b"", headers=None):
        self.handler = lambda request: streamed_response(status_code, content, headers)

    async def __call__(self, request: httpx.Request):
        self.calls.append(request)
        result = self.handler(request)
        if not isinstance(result, httpx.Response):
            result = await result
        return result

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def make_client(upstream):
    """Build a TestClient for a given AzureConfig, wired to the upstream double."""

    def _make(azure_config: AzureConfig) -> TestClient:
        app = create_app(ProxyConfig(azure=azure_config), client=upstream.client())
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client, azure):
    return make_client(azure)
