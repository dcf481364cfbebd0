"""Tests for the route table: model stubs, preflight and dispatch."""

import pytest
from fastapi.routing import APIRoute

from aoai_proxy.config import AzureConfig


@pytest.mark.parametrize("path", [
    "/v1/models",
    "/v1/chat/completions/models",
    "/v1/responses/models",
])
def test_openai_model_listing(client, path):
    response = client.get(path)

    assert response.status_code == 200
    assert response.json() == {"data": [{"id": "gpt-5-chat", "object": "model"}]}


@pytest.mark.parametrize("path", ["/models", "/api/v0/models"])
def test_simple_model_listing(client, path):
    response = client.get(path)

    assert response.status_code == 200
    assert response.json() == {"models": ["gpt-5-chat"]}


def test_model_listing_uses_configured_deployment(make_client):
    client = make_client(AzureConfig(base="https://x", deployment="my-dep", key="k"))

    assert client.get("/v1/models").json()["data"][0]["id"] == "my-dep"
    assert client.get("/models").json() == {"models": ["my-dep"]}


def test_model_listing_is_idempotent(client, upstream):
    """Repeated calls return identical bodies and never touch the upstream."""
    first = client.get("/v1/models").content
    second = client.get("/v1/models").content

    assert first == second
    assert upstream.calls == []


@pytest.mark.parametrize("path", [
    "/v1/chat/completions",
    "/v1/anything/at/all",
    "/models",
    "/api/v0/models",
])
def test_preflight_returns_empty_ok(client, upstream, path):
    response = client.options(path)

    assert response.status_code == 200
    assert response.content == b""
    assert upstream.calls == []


def test_unknown_path_not_found(client, upstream):
    assert client.post("/v2/chat/completions", json={}).status_code == 404
    assert client.get("/nothing-here").status_code == 404
    assert upstream.calls == []


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_named_forward_routes_precede_wildcard(client):
    """The named POST routes are matched before the /v1 catch-all."""
    post_paths = [
        route.path for route in client.app.routes
        if isinstance(route, APIRoute) and "POST" in route.methods
    ]

    assert post_paths == ["/v1/chat/completions", "/v1/responses", "/v1/{rest:path}"]


@pytest.mark.parametrize("path,upstream_path", [
    ("/v1/chat/completions", "/openai/deployments/gpt-5-chat/chat/completions"),
    ("/v1/responses", "/openai/deployments/gpt-5-chat/responses"),
    ("/v1/embeddings", "/openai/deployments/gpt-5-chat/embeddings"),
    ("/v1/audio/transcriptions", "/openai/deployments/gpt-5-chat/audio/transcriptions"),
])
def test_post_paths_are_forwarded(client, upstream, path, upstream_path):
    response = client.post(path, json={"input": "hi"})

    assert response.status_code == 200
    assert len(upstream.calls) == 1
    assert upstream.calls[0].url.path == upstream_path


def test_routing_ignores_path_case(client, upstream):
    assert client.get("/V1/Models").json() == {"data": [{"id": "gpt-5-chat", "object": "model"}]}
    assert client.options("/V1/Chat/Completions").status_code == 200

    response = client.post("/V1/Chat/Completions", json={})

    assert response.status_code == 200
    assert upstream.calls[0].url.path == "/openai/deployments/gpt-5-chat/chat/completions"


def test_mixed_case_wildcard_keeps_remainder_case(client, upstream):
    response = client.post("/V1/Audio/Transcriptions", json={})

    assert response.status_code == 200
    assert upstream.calls[0].url.path == "/openai/deployments/gpt-5-chat/Audio/Transcriptions"
