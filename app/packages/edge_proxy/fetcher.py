"""Outbound HTTP calls to upstream servers.

All upstream traffic goes through UpstreamFetcher so that header filtering,
manual redirect handling and transport error handling are applied the same
way for every routing domain.
"""

from typing import AsyncIterator, Optional, Sequence

import httpx
import structlog
from fastapi import Response

from .errors import UpstreamUnreachable, error_page
from .headers import DEFAULT_ALLOWED_HEADERS, HeaderRule, filter_headers
from .rewrite import modify_response
from .types import ProxyConfig, ProxyRequestContext, RewriteTarget

logger = structlog.stdlib.get_logger(__name__)

BODYLESS_METHODS = ("GET", "HEAD")


async def stream_request_body(ctx: ProxyRequestContext) -> AsyncIterator[bytes]:
    """Stream request body from client in chunks."""
    async for chunk in ctx.request.stream():
        yield chunk


class UpstreamFetcher:
    """Performs the outbound call for a proxied request."""

    def __init__(self, client: httpx.AsyncClient, config: ProxyConfig):
        self.client = client
        self.config = config

    def outbound_headers(
        self,
        ctx: ProxyRequestContext,
        extra_headers: Sequence[HeaderRule] = (),
    ) -> httpx.Headers:
        return filter_headers(
            ctx.request.headers, (*DEFAULT_ALLOWED_HEADERS, *extra_headers)
        )

    async def send(
        self,
        target_url: str,
        method: str = "GET",
        headers: Optional[httpx.Headers] = None,
        content: Optional[AsyncIterator[bytes]] = None,
    ) -> httpx.Response:
        """Open an upstream response without reading its body.

        Redirects are never followed.

        Raises:
            UpstreamUnreachable: On DNS, connection, timeout or URL errors
        """
        logger.info("Proxying request", method=method, target_url=target_url)

        try:
            request = self.client.build_request(
                method, target_url, headers=headers, content=content
            )
            response = await self.client.send(
                request, stream=True, follow_redirects=False
            )
        except (httpx.TransportError, httpx.InvalidURL) as e:
            logger.error(
                "Upstream unreachable",
                error=str(e),
                error_type=type(e).__name__,
                target_url=target_url,
            )
            raise UpstreamUnreachable(target_url, str(e)) from e

        logger.info(
            "Proxy response received",
            status_code=response.status_code,
            target_url=target_url,
        )
        return response

    async def send_request(
        self,
        target_url: str,
        ctx: ProxyRequestContext,
        extra_headers: Sequence[HeaderRule] = (),
    ) -> httpx.Response:
        """Open an upstream response reusing the inbound method, body and
        allow-listed headers."""
        content = None
        if ctx.method not in BODYLESS_METHODS:
            content = stream_request_body(ctx)

        return await self.send(
            target_url,
            method=ctx.method,
            headers=self.outbound_headers(ctx, extra_headers),
            content=content,
        )

    async def fetch(
        self,
        target_url: str,
        ctx: ProxyRequestContext,
        extra_headers: Sequence[HeaderRule] = (),
        delete_headers: Sequence[str] = (),
        skip_compression: bool = False,
        forward_request: bool = True,
        keep_upstream_paths: bool = False,
    ) -> Response:
        """Fetch `target_url` and build the client response.

        Args:
            target_url: Full upstream URL
            ctx: Inbound request context
            extra_headers: Allow-list rules added to the default ones
            delete_headers: Response headers to drop
            skip_compression: Pass the body and Content-Encoding through raw
            forward_request: When False, send a bare GET instead of replaying
                             the inbound method, headers and body
            keep_upstream_paths: Keep same-origin redirects on the inbound host
                                 route instead of the generic one

        Returns:
            Rewritten upstream response, or the error page if the upstream
            could not be reached
        """
        try:
            if forward_request:
                upstream = await self.send_request(target_url, ctx, extra_headers)
            else:
                upstream = await self.send(target_url)
        except UpstreamUnreachable:
            return error_page(self.config)

        return await self.relay(
            upstream,
            ctx,
            target_url,
            delete_headers=delete_headers,
            skip_compression=skip_compression,
            keep_upstream_paths=keep_upstream_paths,
        )

    async def relay(
        self,
        upstream: httpx.Response,
        ctx: ProxyRequestContext,
        target_url: str,
        delete_headers: Sequence[str] = (),
        skip_compression: bool = False,
        keep_upstream_paths: bool = False,
    ) -> Response:
        """Hand an opened upstream response to the rewriting pipeline."""
        return await modify_response(
            upstream,
            RewriteTarget(
                origin=ctx.origin,
                upstream_url=target_url,
                keep_upstream_paths=keep_upstream_paths,
            ),
            delete_headers=delete_headers,
            skip_compression=skip_compression,
        )
