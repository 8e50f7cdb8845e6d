"""Response rewriting utilities.

This module turns an upstream httpx response into the response sent back
to the client:
- Redirects are not followed; Location is rewritten to re-enter the proxy
- HTML links (href/src/action) are rewritten to re-enter the proxy
- Everything else is streamed through unchanged
"""

import re
from typing import Sequence
from urllib.parse import urljoin, urlsplit

import httpx
import structlog
from fastapi import Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .headers import apply_cors
from .types import RewriteTarget

logger = structlog.stdlib.get_logger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

# Never forwarded back to the client
HOP_BY_HOP_HEADERS = ("connection", "keep-alive", "transfer-encoding")

# attribute="value" or attribute='value'
_LINK_ATTRIBUTE_RE = re.compile(
    r"""\b(?P<attr>href|src|action)=(?P<quote>["'])(?P<value>.*?)(?P=quote)""",
    re.IGNORECASE | re.DOTALL,
)


def proxied_url(value: str, target: RewriteTarget) -> str:
    """Resolve `value` against the upstream URL and route it through the proxy.

    Example:
        "/foo" with upstream "https://up.example/base/" and origin
        "https://proxy.example" -> "https://proxy.example/https://up.example/foo"
    """
    absolute_url = urljoin(target.upstream_url, value)
    return f"{target.origin}/{absolute_url}"


def is_rewritable_link(value: str) -> bool:
    """Only root-relative and absolute http(s) links are rewritten."""
    return value.startswith("/") or value.lower().startswith(("http://", "https://"))


def rewrite_html(html: str, target: RewriteTarget) -> str:
    """Rewrite href/src/action links of an HTML document to proxy URLs.

    Relative paths without a leading slash, fragments, javascript: and
    mailto: links are left untouched.
    """

    def replace(match: re.Match) -> str:
        value = match.group("value")
        if not is_rewritable_link(value):
            return match.group(0)
        quote = match.group("quote")
        return f"{match.group('attr')}={quote}{proxied_url(value, target)}{quote}"

    return _LINK_ATTRIBUTE_RE.sub(replace, html)


def rewrite_location(location: str, target: RewriteTarget) -> str:
    """Rewrite a redirect target so the client's next request re-enters the proxy.

    With keep_upstream_paths, a redirect within the upstream's own origin keeps
    its path on the proxy origin:
        "/v2/a/blobs/x" from "https://registry.example/v2/a/blobs/y"
        -> "https://proxy.example/v2/a/blobs/x"
    """
    if target.keep_upstream_paths:
        resolved = urlsplit(urljoin(target.upstream_url, location))
        upstream = urlsplit(target.upstream_url)
        if (resolved.scheme, resolved.netloc) == (upstream.scheme, upstream.netloc):
            path = resolved.path or "/"
            if resolved.query:
                path = f"{path}?{resolved.query}"
            return f"{target.origin}{path}"
    return proxied_url(location, target)


def _response_headers(
    upstream: httpx.Response, delete_headers: Sequence[str]
) -> httpx.Headers:
    dropped = {name.lower() for name in (*HOP_BY_HOP_HEADERS, *delete_headers)}
    headers = httpx.Headers(
        [
            (name, value)
            for name, value in upstream.headers.multi_items()
            if name.lower() not in dropped
        ]
    )
    return apply_cors(headers)


def _with_headers(response: Response, headers: httpx.Headers) -> Response:
    for name, value in headers.multi_items():
        response.headers.append(name, value)
    return response


async def modify_response(
    upstream: httpx.Response,
    target: RewriteTarget,
    delete_headers: Sequence[str] = (),
    skip_compression: bool = False,
) -> Response:
    """Convert an upstream response into the client response.

    Args:
        upstream: Upstream response, opened with stream=True
        target: Origin/upstream pair for link rewriting
        delete_headers: Extra response headers to drop
        skip_compression: Stream the raw body and keep Content-Encoding
                          (registry blobs must reach the client as stored)

    Returns:
        Response for the client. The upstream response is closed once the
        body has been consumed.
    """
    headers = _response_headers(upstream, delete_headers)
    status_code = upstream.status_code

    if status_code in REDIRECT_STATUSES:
        await upstream.aclose()
        headers.pop("Content-Length", None)
        location = upstream.headers.get("Location")
        if location:
            headers["Location"] = rewrite_location(location, target)
            logger.debug(
                "Rewrote redirect",
                original=location,
                rewritten=headers["Location"],
            )
        return _with_headers(Response(status_code=status_code), headers)

    content_type = upstream.headers.get("Content-Type", "")
    content_encoding = upstream.headers.get("Content-Encoding", "")

    if "text/html" in content_type:
        try:
            await upstream.aread()
        finally:
            await upstream.aclose()
        encoding = upstream.encoding or "utf-8"
        html = rewrite_html(upstream.text, target)
        for name in ("Content-Length", "Content-Encoding"):
            headers.pop(name, None)
        return _with_headers(
            Response(
                content=html.encode(encoding, errors="replace"),
                status_code=status_code,
            ),
            headers,
        )

    if content_encoding and skip_compression:
        body = upstream.aiter_raw()
    else:
        body = upstream.aiter_bytes()
        if content_encoding:
            # decoded by httpx, the upstream length no longer applies
            for name in ("Content-Length", "Content-Encoding"):
                headers.pop(name, None)

    return _with_headers(
        StreamingResponse(
            content=body,
            status_code=status_code,
            background=BackgroundTask(upstream.aclose),
        ),
        headers,
    )
