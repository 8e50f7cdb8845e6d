"""Catch-all proxy route.

Every path is a potential proxy target (e.g. /https://github.com/...), so
this router must be included after all other routes.
"""

from fastapi import APIRouter, Request

from app.deps.proxy import ProxyRouterDep

router = APIRouter(tags=["Proxy"])

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(request: Request, proxy_router: ProxyRouterDep):
    return await proxy_router.dispatch(request)
