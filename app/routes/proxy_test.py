import gzip

import httpx
from httpx import AsyncClient

from app.tests.fixtures_upstream import FakeUpstream

CHALLENGE = 'Bearer realm="https://auth.upstream.example/token",service="registry.upstream.example"'


# Registry


async def test_registry_v2_synthesizes_challenge(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(lambda request: httpx.Response(401, json={"errors": []}))

    response = await registry_client.get("/v2/")

    assert response.status_code == 401
    assert response.content == b'{"message":"UNAUTHORIZED"}'
    assert response.headers["www-authenticate"] == (
        'Bearer realm="https://registry.proxy.example/v2/auth",'
        'service="cloudflare-docker-proxy"'
    )
    assert response.headers["access-control-allow-origin"] == "*"
    assert [str(r.url) for r in upstream.requests] == [
        "https://registry.upstream.example/v2/"
    ]


async def test_registry_v2_passes_upstream_challenge_through(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(
        lambda request: httpx.Response(401, headers={"WWW-Authenticate": CHALLENGE})
    )

    response = await registry_client.get("/v2/")

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == CHALLENGE


async def test_registry_v2_authenticated(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(
        lambda request: httpx.Response(
            200,
            json={},
            headers={"Docker-Distribution-API-Version": "registry/2.0"},
        )
    )

    response = await registry_client.get(
        "/v2/", headers={"User-Agent": "docker/24.0", "Cookie": "a=b"}
    )

    assert response.status_code == 200
    assert response.headers["docker-distribution-api-version"] == "registry/2.0"
    probe = upstream.requests[0]
    assert probe.headers["user-agent"] == "docker/24.0"
    assert "cookie" not in probe.headers


async def test_registry_auth_fetches_token(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.upstream.example":
            return httpx.Response(200, json={"token": "abc", "expires_in": 300})
        return httpx.Response(401, headers={"WWW-Authenticate": CHALLENGE})

    upstream.respond(handler)

    response = await registry_client.get(
        "/v2/auth",
        params={"scope": "repository:library/alpine:pull", "service": "ignored"},
        headers={"Authorization": "Basic dXNlcjpwYXNz"},
    )

    assert response.status_code == 200
    assert response.json() == {"token": "abc", "expires_in": 300}
    assert response.headers["access-control-allow-origin"] == "*"

    probe, token_request = upstream.requests
    assert str(probe.url) == "https://registry.upstream.example/v2/"
    assert token_request.method == "GET"
    assert token_request.url.path == "/token"
    assert token_request.url.params["service"] == "registry.upstream.example"
    assert token_request.url.params["scope"] == "repository:library/alpine:pull"
    assert "authorization" not in token_request.headers


async def test_registry_auth_forwards_every_scope(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.upstream.example":
            return httpx.Response(200, json={"token": "abc"})
        return httpx.Response(401, headers={"WWW-Authenticate": CHALLENGE})

    upstream.respond(handler)

    response = await registry_client.get(
        "/v2/auth",
        params=[
            ("scope", "repository:library/alpine:pull"),
            ("scope", "repository:me/alpine:pull,push"),
        ],
    )

    assert response.status_code == 200
    token_request = upstream.requests[1]
    assert token_request.url.params.get_list("scope") == [
        "repository:library/alpine:pull",
        "repository:me/alpine:pull,push",
    ]
    assert token_request.url.params["service"] == "registry.upstream.example"


async def test_registry_auth_without_scope(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.upstream.example":
            return httpx.Response(200, json={"token": "anonymous"})
        return httpx.Response(401, headers={"WWW-Authenticate": CHALLENGE})

    upstream.respond(handler)

    response = await registry_client.get("/v2/auth")

    assert response.status_code == 200
    assert "scope" not in upstream.requests[1].url.params


async def test_registry_auth_without_challenge_passes_401_through(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(lambda request: httpx.Response(401, json={"detail": "denied"}))

    response = await registry_client.get("/v2/auth")

    assert response.status_code == 401
    assert response.json() == {"detail": "denied"}
    assert "www-authenticate" not in response.headers
    assert len(upstream.requests) == 1


async def test_registry_auth_malformed_challenge(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(
        lambda request: httpx.Response(
            401, headers={"WWW-Authenticate": 'Bearer realm="https://auth.example"'}
        )
    )

    response = await registry_client.get("/v2/auth")

    assert response.status_code == 500
    assert "Unable to access the requested resource." in response.text
    assert "auth.example" not in response.text
    assert len(upstream.requests) == 1


async def test_registry_auth_not_required(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(lambda request: httpx.Response(200, json={}))

    response = await registry_client.get("/v2/auth")

    assert response.status_code == 200
    assert len(upstream.requests) == 1


async def test_registry_manifest_forwarded_with_credentials(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(
        lambda request: httpx.Response(
            200,
            json={"schemaVersion": 2},
            headers={"Docker-Content-Digest": "sha256:abc"},
        )
    )

    response = await registry_client.get(
        "/v2/library/alpine/manifests/latest",
        params={"ns": "docker.io"},
        headers={"Authorization": "Bearer token", "Cookie": "a=b"},
    )

    assert response.status_code == 200
    assert response.headers["docker-content-digest"] == "sha256:abc"
    forwarded = upstream.requests[0]
    assert str(forwarded.url) == (
        "https://registry.upstream.example/v2/library/alpine/manifests/latest?ns=docker.io"
    )
    assert forwarded.headers["authorization"] == "Bearer token"
    assert "cookie" not in forwarded.headers


async def test_registry_blob_keeps_content_encoding(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    payload = gzip.compress(b"layer data")
    upstream.respond(
        lambda request: httpx.Response(
            200,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Encoding": "gzip",
            },
            stream=httpx.ByteStream(payload),
        )
    )

    response = await registry_client.get("/v2/library/alpine/blobs/sha256:abc")

    assert response.status_code == 200
    assert response.headers["content-encoding"] == "gzip"
    # httpx decodes on the client side
    assert response.content == b"layer data"


async def test_registry_blob_redirect_reenters_proxy(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(
        lambda request: httpx.Response(
            307, headers={"Location": "https://blobs.example/sha256/abc?sig=1"}
        )
    )

    response = await registry_client.get("/v2/library/alpine/blobs/sha256:abc")

    assert response.status_code == 307
    assert response.headers["location"] == (
        "https://registry.proxy.example/https://blobs.example/sha256/abc?sig=1"
    )


async def test_registry_relative_redirect_stays_on_registry_route(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/data"):
            return httpx.Response(200, content=b"layer data")
        return httpx.Response(
            307, headers={"Location": "/v2/library/alpine/blobs/sha256:abc/data"}
        )

    upstream.respond(handler)
    credentials = {"Authorization": "Bearer token"}

    response = await registry_client.get(
        "/v2/library/alpine/blobs/sha256:abc", headers=credentials
    )

    assert response.status_code == 307
    location = response.headers["location"]
    assert location == (
        "https://registry.proxy.example/v2/library/alpine/blobs/sha256:abc/data"
    )

    followed = await registry_client.get(location, headers=credentials)

    assert followed.content == b"layer data"
    data_request = upstream.requests[1]
    assert str(data_request.url) == (
        "https://registry.upstream.example/v2/library/alpine/blobs/sha256:abc/data"
    )
    assert data_request.headers["authorization"] == "Bearer token"


async def test_registry_host_outside_v2_falls_through_to_generic(
    registry_client: AsyncClient, upstream: FakeUpstream
):
    response = await registry_client.get("/example.com/file.txt")

    assert response.status_code == 200
    assert str(upstream.requests[0].url) == "https://example.com/file.txt"


# API


async def test_api_options_short_circuits(api_client: AsyncClient, upstream: FakeUpstream):
    response = await api_client.options("/anything", params={"x": "1"})

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == (
        "GET, POST, PUT, DELETE, OPTIONS"
    )
    assert response.headers["access-control-max-age"] == "1728000"
    assert upstream.requests == []


async def test_api_forwards_credentials(api_client: AsyncClient, upstream: FakeUpstream):
    upstream.respond(lambda request: httpx.Response(200, json={"candidates": []}))

    response = await api_client.post(
        "/v1beta/models/gemini-pro:generateContent",
        params={"alt": "sse"},
        content=b'{"contents":[]}',
        headers={
            "Content-Type": "application/json",
            "x-goog-api-key": "secret-key",
            "x-goog-api-client": "genai-js/0.1",
            "Cookie": "a=b",
        },
    )

    assert response.status_code == 200
    assert response.json() == {"candidates": []}
    assert response.headers["access-control-allow-origin"] == "*"

    forwarded = upstream.requests[0]
    assert forwarded.method == "POST"
    assert str(forwarded.url) == (
        "https://api.upstream.example/v1beta/models/gemini-pro:generateContent?alt=sse"
    )
    assert forwarded.headers["x-goog-api-key"] == "secret-key"
    assert forwarded.headers["x-goog-api-client"] == "genai-js/0.1"
    assert forwarded.headers["content-type"] == "application/json"
    assert "cookie" not in forwarded.headers
    assert forwarded.content == b'{"contents":[]}'


# Generic


async def test_generic_proxy_adds_scheme(client: AsyncClient, upstream: FakeUpstream):
    upstream.respond(
        lambda request: httpx.Response(
            200, text="plain", headers={"Content-Type": "text/plain"}
        )
    )

    response = await client.get("/example.com/file.txt", params={"v": "2"})

    assert response.status_code == 200
    assert response.text == "plain"
    assert response.headers["access-control-allow-origin"] == "*"
    assert str(upstream.requests[0].url) == "https://example.com/file.txt?v=2"


async def test_generic_proxy_uses_cdn_for_github_files(
    client: AsyncClient, upstream: FakeUpstream
):
    response = await client.get("/https://github.com/owner/repo/blob/main/README.md")

    assert response.status_code == 200
    assert str(upstream.requests[0].url) == (
        "https://cdn.jsdelivr.net/gh/owner/repo@main/README.md"
    )


async def test_generic_proxy_rewrites_html(client: AsyncClient, upstream: FakeUpstream):
    upstream.respond(
        lambda request: httpx.Response(
            200,
            text='<a href="/about">About</a><a href="next.html">Next</a>',
            headers={"Content-Type": "text/html; charset=utf-8"},
        )
    )

    response = await client.get("/https://site.example/docs/index.html")

    assert response.status_code == 200
    assert response.text == (
        '<a href="https://proxy.example/https://site.example/about">About</a>'
        '<a href="next.html">Next</a>'
    )


async def test_generic_proxy_rewrites_redirects(
    client: AsyncClient, upstream: FakeUpstream
):
    upstream.respond(
        lambda request: httpx.Response(302, headers={"Location": "/new"})
    )

    response = await client.get("/https://up.example/x")

    assert response.status_code == 302
    assert response.headers["location"] == "https://proxy.example/https://up.example/new"
    assert len(upstream.requests) == 1


async def test_generic_proxy_upstream_unreachable(
    client: AsyncClient, upstream: FakeUpstream
):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused to 10.0.0.7", request=request)

    upstream.respond(handler)

    response = await client.get("/https://down.example/")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("text/html")
    assert response.headers["access-control-allow-origin"] == "*"
    assert "<h1>Error</h1>" in response.text
    assert "Unable to access the requested resource." in response.text
    assert "10.0.0.7" not in response.text
    assert "down.example" not in response.text


async def test_homepage(client: AsyncClient, upstream: FakeUpstream):
    upstream.respond(
        lambda request: httpx.Response(
            200,
            text='<link href="/style.css" rel="stylesheet">',
            headers={"Content-Type": "text/html"},
        )
    )

    response = await client.get("/", headers={"Cookie": "a=b"})

    assert response.status_code == 200
    assert response.text == (
        '<link href="https://proxy.example/https://assets.example/style.css" rel="stylesheet">'
    )
    homepage_request = upstream.requests[0]
    assert str(homepage_request.url) == "https://assets.example/index.html"
    assert "cookie" not in homepage_request.headers
