"""Request dispatcher.

Each inbound request is classified by hostname and path and handed to
exactly one pipeline, tried in order:

    1. Container registry (host in registry routes, path under /v2/)
    2. API proxy (host in API routes)
    3. Generic path-embedded URL proxy

A stage returns None when it does not apply, letting the next one run.
An empty target serves the homepage.
"""

from typing import Optional
from urllib.parse import urljoin

import httpx
import structlog
from fastapi import Request, Response

from .fetcher import UpstreamFetcher
from .github import normalize_github_url
from .headers import allow_list, apply_cors
from .registry import RegistryAuthRelay
from .types import ProxyConfig, ProxyRequestContext

logger = structlog.stdlib.get_logger(__name__)

API_CREDENTIAL_HEADERS = allow_list(
    "x-goog-api-client",
    "x-goog-api-key",
    "Authorization",
)


class ProxyRouter:
    def __init__(self, config: ProxyConfig, client: httpx.AsyncClient):
        self.config = config
        self.fetcher = UpstreamFetcher(client, config)
        self.registry = RegistryAuthRelay(self.fetcher, config)

    async def dispatch(self, request: Request) -> Response:
        ctx = ProxyRequestContext.from_request(request)

        if not ctx.target:
            return await self.homepage(ctx)

        for stage in (self.handle_registry, self.handle_api):
            response = await stage(ctx)
            if response is not None:
                return response

        return await self.handle_generic(ctx)

    async def homepage(self, ctx: ProxyRequestContext) -> Response:
        target_url = f"{self.config.asset_url}index.html"
        return await self.fetcher.fetch(target_url, ctx, forward_request=False)

    async def handle_registry(self, ctx: ProxyRequestContext) -> Optional[Response]:
        upstream = self.config.registry_routes.lookup(ctx.hostname)
        if not upstream or not ctx.path.startswith("/v2/"):
            return None

        structlog.contextvars.bind_contextvars(route="registry", upstream=upstream)
        return await self.registry.handle(ctx, upstream)

    async def handle_api(self, ctx: ProxyRequestContext) -> Optional[Response]:
        upstream = self.config.api_routes.lookup(ctx.hostname)
        if not upstream:
            return None

        structlog.contextvars.bind_contextvars(route="api", upstream=upstream)

        if ctx.method == "OPTIONS":
            response = Response(status_code=200)
            for name, value in apply_cors(httpx.Headers()).items():
                response.headers[name] = value
            return response

        target_url = urljoin(upstream, ctx.path)
        if ctx.query:
            target_url = f"{target_url}?{ctx.query}"

        return await self.fetcher.fetch(
            target_url, ctx, extra_headers=API_CREDENTIAL_HEADERS
        )

    async def handle_generic(self, ctx: ProxyRequestContext) -> Response:
        target_url = ctx.target
        if not target_url.startswith(("https://", "http://")):
            target_url = f"https://{target_url}"

        target_url = normalize_github_url(
            target_url,
            self.config.github_cdn_base_url,
            enabled=self.config.use_jsdelivr,
        )

        structlog.contextvars.bind_contextvars(route="generic")
        return await self.fetcher.fetch(target_url, ctx)
