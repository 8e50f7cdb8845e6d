from typing import Annotated

import httpx
from fastapi import Depends, Request

from app.factories import proxy_config_factory
from app.packages.edge_proxy import ProxyConfig, ProxyRouter


def get_proxy_config() -> ProxyConfig:
    return proxy_config_factory()


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_proxy_router(
    config: Annotated[ProxyConfig, Depends(get_proxy_config)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> ProxyRouter:
    return ProxyRouter(config=config, client=client)


ProxyConfigDep = Annotated[ProxyConfig, Depends(get_proxy_config)]
ProxyRouterDep = Annotated[ProxyRouter, Depends(get_proxy_router)]
