"""Docker Registry v2 reverse proxy with bearer token relay.

Docker clients authenticate against a registry in two steps:

    1. GET /v2/ answers 401 with a challenge naming a token realm:
       WWW-Authenticate: Bearer realm="https://auth.example/token",service="registry.example"
    2. The client fetches a token from the realm and retries with
       Authorization: Bearer <token>

The relay points clients at this proxy's own /v2/auth endpoint and performs
the realm round trip on their behalf, so registries whose token service is
not directly reachable can still be used.

See: https://distribution.github.io/distribution/spec/auth/token/
"""

from typing import Optional, Union

import httpx
import structlog
from fastapi import Response
from fastapi.responses import JSONResponse

from .errors import MalformedAuthChallenge, UpstreamUnreachable, error_page
from .fetcher import UpstreamFetcher
from .headers import allow_list, apply_cors
from .types import AuthChallenge, ProxyConfig, ProxyRequestContext

logger = structlog.stdlib.get_logger(__name__)

# Service name advertised in the synthesized challenge
CHALLENGE_SERVICE = "cloudflare-docker-proxy"

PROBE_HEADERS = allow_list("WWW-Authenticate")
PASSTHROUGH_HEADERS = allow_list(
    "WWW-Authenticate",
    "Authorization",
    "Docker-Content-Digest",
)


def _parse_auth_params(params: str) -> Optional[tuple[dict[str, str], int]]:
    """Parse `key=value, key="quoted value"` pairs.

    Returns:
        Parameters keyed by lower-cased name and the number of quoted values,
        or None for an unterminated quoted string
    """
    parsed: dict[str, str] = {}
    quoted = 0
    i, n = 0, len(params)

    while i < n:
        while i < n and params[i] in " \t,":
            i += 1
        if i >= n:
            break

        eq = params.find("=", i)
        if eq == -1:
            break
        comma = params.find(",", i, eq)
        if comma != -1:
            # Bare token (token68 or flag) without a value
            i = comma
            continue
        name = params[i:eq].strip().lower()
        i = eq + 1
        while i < n and params[i] in " \t":
            i += 1

        if i < n and params[i] == '"':
            i += 1
            chars = []
            while i < n and params[i] != '"':
                if params[i] == "\\" and i + 1 < n:
                    i += 1
                chars.append(params[i])
                i += 1
            if i >= n:
                return None
            i += 1
            value = "".join(chars)
            quoted += 1
        else:
            end = params.find(",", i)
            if end == -1:
                end = n
            value = params[i:end].strip()
            i = end

        parsed.setdefault(name, value)

    return parsed, quoted


def parse_authenticate(header: str) -> Union[AuthChallenge, MalformedAuthChallenge]:
    """Parse a Bearer WWW-Authenticate header.

    Example:
        >>> parse_authenticate('Bearer realm="https://auth.example/token",service="registry.example"')
        AuthChallenge(realm='https://auth.example/token', service='registry.example')

    Returns:
        AuthChallenge, or MalformedAuthChallenge when the header does not carry
        both a quoted realm and a quoted service
    """
    scheme, _, params = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return MalformedAuthChallenge(header, f"unsupported scheme {scheme!r}")

    result = _parse_auth_params(params)
    if result is None:
        return MalformedAuthChallenge(header, "unterminated quoted string")

    parsed, quoted = result
    if quoted < 2:
        return MalformedAuthChallenge(header, "expected at least two quoted attributes")

    realm = parsed.get("realm")
    service = parsed.get("service")
    if not realm or not service:
        return MalformedAuthChallenge(header, "missing realm or service")

    return AuthChallenge(realm=realm, service=service)


class RegistryAuthRelay:
    """Proxies /v2/ traffic of one registry host to its upstream."""

    def __init__(self, fetcher: UpstreamFetcher, config: ProxyConfig):
        self.fetcher = fetcher
        self.config = config

    async def handle(self, ctx: ProxyRequestContext, upstream: str) -> Response:
        upstream = upstream.rstrip("/")

        if ctx.path == "/v2/":
            return await self.probe(ctx, upstream)
        if ctx.path == "/v2/auth":
            return await self.authenticate(ctx, upstream)

        target_url = f"{upstream}{ctx.path}"
        if ctx.query:
            target_url = f"{target_url}?{ctx.query}"

        logger.info(
            "Proxying request to registry",
            method=ctx.method,
            target_url=target_url,
        )
        return await self.fetcher.fetch(
            target_url,
            ctx,
            extra_headers=PASSTHROUGH_HEADERS,
            skip_compression=True,
            keep_upstream_paths=True,
        )

    async def _open_probe(self, ctx: ProxyRequestContext, upstream: str):
        probe_url = f"{upstream}/v2/"
        response = await self.fetcher.send_request(probe_url, ctx, PROBE_HEADERS)
        return probe_url, response

    async def probe(self, ctx: ProxyRequestContext, upstream: str) -> Response:
        """Handle the /v2/ version check.

        A 401 without challenge gets a synthesized one pointing at /v2/auth.
        """
        try:
            probe_url, response = await self._open_probe(ctx, upstream)
        except UpstreamUnreachable:
            return error_page(self.config)

        if response.status_code == 401 and "WWW-Authenticate" not in response.headers:
            await response.aclose()
            logger.debug("Synthesizing registry challenge", upstream=upstream)
            return self.challenge(ctx)

        return await self.fetcher.relay(
            response, ctx, probe_url, keep_upstream_paths=True
        )

    async def authenticate(self, ctx: ProxyRequestContext, upstream: str) -> Response:
        """Handle /v2/auth by exchanging the upstream challenge for a token."""
        try:
            probe_url, response = await self._open_probe(ctx, upstream)
        except UpstreamUnreachable:
            return error_page(self.config)

        header = response.headers.get("WWW-Authenticate")
        if response.status_code != 401 or not header:
            # Nothing to negotiate, the client sees the upstream answer
            return await self.fetcher.relay(response, ctx, probe_url)

        await response.aclose()

        challenge = parse_authenticate(header)
        if isinstance(challenge, MalformedAuthChallenge):
            logger.warning(
                "Malformed registry challenge",
                upstream=upstream,
                header=challenge.header,
                reason=challenge.reason,
            )
            return error_page(self.config)

        return await self.fetch_token(ctx, challenge)

    async def fetch_token(
        self, ctx: ProxyRequestContext, challenge: AuthChallenge
    ) -> Response:
        params: dict[str, Union[str, list[str]]] = {"service": challenge.service}
        # Cross-repository mounts ask for several scopes at once
        scope = ctx.request.query_params.getlist("scope")
        if scope:
            params["scope"] = scope

        try:
            token_url = str(httpx.URL(challenge.realm).copy_merge_params(params))
        except httpx.InvalidURL as e:
            logger.warning(
                "Invalid token realm", realm=challenge.realm, error=str(e)
            )
            return error_page(self.config)

        logger.info(
            "Fetching registry token",
            realm=challenge.realm,
            service=challenge.service,
            scope=scope,
        )
        return await self.fetcher.fetch(token_url, ctx, forward_request=False)

    def challenge(self, ctx: ProxyRequestContext) -> Response:
        headers = apply_cors(
            httpx.Headers(
                {
                    "WWW-Authenticate": (
                        f'Bearer realm="{ctx.origin}/v2/auth",'
                        f'service="{CHALLENGE_SERVICE}"'
                    ),
                    "Docker-Distribution-API-Version": "registry/2.0",
                }
            )
        )
        return JSONResponse(
            status_code=401,
            content={"message": "UNAUTHORIZED"},
            headers=dict(headers),
        )
