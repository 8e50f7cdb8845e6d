"""Edge proxy types and data structures.

This module contains shared types used across the edge proxy package.
No dependencies on app.* modules to maintain independence.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional
from urllib.parse import quote_from_bytes

from fastapi import Request

# Reserved characters and existing escapes stay as sent, raw non-ASCII bytes
# are percent-encoded
_PATH_SAFE = "/%:@!$&'()*+,;=~[]"


@dataclass(frozen=True)
class RouteTable:
    """Static hostname -> upstream base URL mapping.

    Keys are either full hostnames ("docker.example.com") or a bare first
    DNS label ("docker"), which lets one table serve every domain the proxy
    is deployed under.
    """

    routes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "routes", MappingProxyType(dict(self.routes)))

    def lookup(self, hostname: str) -> Optional[str]:
        """Resolve the upstream for a hostname.

        Returns:
            Upstream base URL, or None when neither the full hostname nor its
            first label is configured
        """
        hostname = hostname.lower()
        upstream = self.routes.get(hostname)
        if upstream:
            return upstream
        return self.routes.get(hostname.split(".")[0]) or None

    def __len__(self) -> int:
        return len(self.routes)


@dataclass(frozen=True)
class ProxyConfig:
    """Immutable proxy configuration, built once per process.

    Attributes:
        registry_routes: Container registry hosts
        api_routes: API hosts whose credential headers are forwarded
        asset_url: Base URL of the static homepage assets (with trailing slash)
        use_jsdelivr: Whether GitHub blob/raw URLs are served from the CDN
        github_cdn_base_url: CDN prefix replacing the GitHub host
        error_page_message: Human-readable message of the error page
        error_page_status: HTTP status of the error page
    """

    registry_routes: RouteTable = field(default_factory=RouteTable)
    api_routes: RouteTable = field(default_factory=RouteTable)
    asset_url: str = "https://daiaji.github.io/cf-proxy/"
    use_jsdelivr: bool = True
    github_cdn_base_url: str = "https://cdn.jsdelivr.net/gh"
    error_page_message: str = (
        "Unable to access the requested resource. Please try again later."
    )
    error_page_status: int = 500


@dataclass(frozen=True)
class ProxyRequestContext:
    """Per-request view of the inbound request.

    Attributes:
        request: Original FastAPI request
        origin: Scheme and authority the client used to reach the proxy
        hostname: Hostname the client used, used for route lookup
        path: Request path with repeated leading slashes collapsed
        query: Raw query string, without the "?"
        target: Path-embedded target ("github.com/a/b?x=1"), may be empty
    """

    request: Request
    origin: str
    hostname: str
    path: str
    query: str
    target: str

    @classmethod
    def from_request(cls, request: Request) -> "ProxyRequestContext":
        # raw_path keeps percent-encoding intact for the embedded URL
        raw_path = request.scope.get("raw_path")
        if raw_path:
            path = quote_from_bytes(raw_path.split(b"?", 1)[0], safe=_PATH_SAFE)
        else:
            path = request.url.path
        path = "/" + path.lstrip("/")
        query = request.url.query

        target = path[1:]
        if query:
            target = f"{target}?{query}"

        return cls(
            request=request,
            origin=f"{request.url.scheme}://{request.url.netloc}",
            hostname=request.url.hostname or "",
            path=path,
            query=query,
            target=target,
        )

    @property
    def method(self) -> str:
        return self.request.method


@dataclass(frozen=True)
class AuthChallenge:
    """Bearer challenge parsed from a WWW-Authenticate header."""

    realm: str
    service: str


@dataclass(frozen=True)
class RewriteTarget:
    """Origin/upstream pair used to turn upstream links into proxy links.

    Attributes:
        origin: Proxy origin as seen by the client (e.g. "https://proxy.example")
        upstream_url: URL the response was fetched from
        keep_upstream_paths: Map redirects on the upstream's own origin to the
                             same path on the proxy origin, so the client stays
                             on the host route that produced them
    """

    origin: str
    upstream_url: str
    keep_upstream_paths: bool = False
