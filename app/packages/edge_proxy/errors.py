"""Proxy error kinds and the error page shown to clients."""

from dataclasses import dataclass

import httpx
from fastapi.responses import HTMLResponse

from .headers import apply_cors
from .types import ProxyConfig


class UpstreamUnreachable(Exception):
    """An outbound call failed at the transport level (DNS, connect, timeout)."""

    def __init__(self, target_url: str, reason: str):
        super().__init__(f"Upstream unreachable: {target_url}")
        self.target_url = target_url
        self.reason = reason


@dataclass(frozen=True)
class MalformedAuthChallenge:
    """Parse failure of a WWW-Authenticate header.

    Returned instead of an AuthChallenge, never raised.
    """

    header: str
    reason: str


def error_page(config: ProxyConfig) -> HTMLResponse:
    """Render the fixed error page. Never includes failure details."""
    headers = apply_cors(httpx.Headers())
    return HTMLResponse(
        content=(
            "<html><body><h1>Error</h1>"
            f"<p>{config.error_page_message}</p></body></html>"
        ),
        status_code=config.error_page_status,
        headers=dict(headers),
    )
