"""Header allow-lists and CORS.

Allow-list entries are either an exact header name or a regex pattern.
Header names are compared case-insensitively in both cases.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Union

import httpx


@dataclass(frozen=True)
class Exact:
    name: str

    def matches(self, header_name: str) -> bool:
        return header_name.lower() == self.name.lower()


@dataclass(frozen=True)
class Pattern:
    regex: re.Pattern

    @classmethod
    def compile(cls, pattern: str) -> "Pattern":
        return cls(re.compile(pattern, re.IGNORECASE))

    def matches(self, header_name: str) -> bool:
        return self.regex.search(header_name) is not None


HeaderRule = Union[Exact, Pattern]
HeaderAllowList = Sequence[HeaderRule]


# Request headers forwarded to every upstream
DEFAULT_ALLOWED_HEADERS: tuple[HeaderRule, ...] = (
    Exact("Accept"),
    Exact("Content-Type"),
    Exact("Content-Length"),
    Exact("accept-encoding"),
    Exact("User-Agent"),
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept",
    "Access-Control-Max-Age": "1728000",
}


def allow_list(*names: Union[str, HeaderRule]) -> tuple[HeaderRule, ...]:
    """Build allow-list rules, treating plain strings as exact names."""
    return tuple(Exact(name) if isinstance(name, str) else name for name in names)


def _header_items(source: Mapping[str, str]) -> Iterable[tuple[str, str]]:
    # httpx.Headers merges repeated headers in items(); keep them apart
    if isinstance(source, httpx.Headers):
        return source.multi_items()
    return source.items()


def filter_headers(
    source: Mapping[str, str], allowed: HeaderAllowList
) -> httpx.Headers:
    """Copy the allow-listed headers of `source` into a new header set.

    Args:
        source: Request or response headers, left untouched
        allowed: Allow-list rules

    Returns:
        New httpx.Headers holding only the matching headers, values verbatim
    """
    return httpx.Headers(
        [
            (name, value)
            for name, value in _header_items(source)
            if any(rule.matches(name) for rule in allowed)
        ]
    )


def apply_cors(headers: httpx.Headers) -> httpx.Headers:
    """Set the CORS headers on `headers` in place and return it."""
    for name, value in CORS_HEADERS.items():
        headers[name] = value
    return headers
