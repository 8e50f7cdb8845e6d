from functools import lru_cache

import httpx

from app.packages.edge_proxy import ProxyConfig, RouteTable
from app.settings import settings


@lru_cache
def proxy_config_factory() -> ProxyConfig:
    """Build the immutable proxy configuration from settings.

    Returns:
        ProxyConfig shared by every request of this worker process
    """
    return ProxyConfig(
        registry_routes=RouteTable(settings.REGISTRY_ROUTES),
        api_routes=RouteTable(settings.API_ROUTES),
        asset_url=settings.ASSET_URL,
        use_jsdelivr=settings.USE_JSDELIVR,
        github_cdn_base_url=settings.GITHUB_CDN_BASE_URL,
        error_page_message=settings.ERROR_PAGE_MESSAGE,
        error_page_status=settings.ERROR_PAGE_STATUS,
    )


def http_client_factory() -> httpx.AsyncClient:
    """Create the outbound HTTP client.

    Owned by the application lifespan, which closes it on shutdown.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.UPSTREAM_CONNECT_TIMEOUT,
            read=settings.UPSTREAM_READ_TIMEOUT,
            write=settings.UPSTREAM_WRITE_TIMEOUT,
            pool=settings.UPSTREAM_POOL_TIMEOUT,
        ),
        follow_redirects=False,
    )
