"""Edge proxy package.

This package provides the request dispatcher, the response rewriting
pipeline and the Docker Registry v2 token relay of the edge proxy.
"""

from .errors import MalformedAuthChallenge, UpstreamUnreachable, error_page
from .fetcher import UpstreamFetcher
from .github import is_github_url, normalize_github_url
from .headers import Exact, Pattern, allow_list, apply_cors, filter_headers
from .registry import RegistryAuthRelay, parse_authenticate
from .rewrite import modify_response, rewrite_html, rewrite_location
from .router import ProxyRouter
from .types import (
    AuthChallenge,
    ProxyConfig,
    ProxyRequestContext,
    RewriteTarget,
    RouteTable,
)

__all__ = [
    # Dispatcher
    "ProxyRouter",
    "RegistryAuthRelay",
    "UpstreamFetcher",
    # Types
    "AuthChallenge",
    "ProxyConfig",
    "ProxyRequestContext",
    "RewriteTarget",
    "RouteTable",
    # Errors
    "MalformedAuthChallenge",
    "UpstreamUnreachable",
    "error_page",
    # Utilities
    "Exact",
    "Pattern",
    "allow_list",
    "apply_cors",
    "filter_headers",
    "is_github_url",
    "normalize_github_url",
    "modify_response",
    "parse_authenticate",
    "rewrite_html",
    "rewrite_location",
]
