"""GitHub blob/raw URL to CDN mirror normalization."""

import re

GITHUB_FILE_URL_RE = re.compile(
    r"^(https?://)?(www\.)?(github\.com|raw\.githubusercontent\.com)"
    r"/[^/]+/[^/]+/(blob|raw)/.+",
    re.IGNORECASE,
)
_BLOB_OR_RAW_SEGMENT_RE = re.compile(r"/(blob|raw)/", re.IGNORECASE)
_GITHUB_HOST_PREFIX_RE = re.compile(
    r"^(https?://)?(www\.)?(github\.com|raw\.githubusercontent\.com)",
    re.IGNORECASE,
)


def is_github_url(url: str) -> bool:
    """Whether `url` points at a file view on github.com or raw.githubusercontent.com."""
    return GITHUB_FILE_URL_RE.match(url) is not None


def normalize_github_url(url: str, cdn_base_url: str, enabled: bool = True) -> str:
    """Rewrite a GitHub blob/raw URL to its CDN mirror.

    https://github.com/owner/repo/blob/main/README.md
    -> https://cdn.jsdelivr.net/gh/owner/repo@main/README.md

    URLs that are not GitHub file URLs are returned unchanged, which makes
    the transform idempotent.
    """
    if not enabled or not is_github_url(url):
        return url

    url = _BLOB_OR_RAW_SEGMENT_RE.sub("@", url, count=1)
    # lambda keeps backslashes in the base URL literal
    return _GITHUB_HOST_PREFIX_RE.sub(lambda _: cdn_base_url.rstrip("/"), url, count=1)
