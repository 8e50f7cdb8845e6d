from typing import Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from typing_extensions import TypedDict

from app.deps.proxy import ProxyConfigDep

router = APIRouter(tags=["Health"])


class HealthResponse(TypedDict):
    status: Literal["pass"]
    registry_routes: int
    api_routes: int


# "-" never occurs as a hostname, so this path cannot shadow a proxy target
@router.get("/-/health", responses={200: {"model": HealthResponse}})
async def health(config: ProxyConfigDep):
    if not config.asset_url.startswith(("http://", "https://")):
        return JSONResponse(
            status_code=500,
            content={"status": "fail", "invalid_settings": ["ASSET_URL"]},
        )

    return {
        "status": "pass",
        "registry_routes": len(config.registry_routes),
        "api_routes": len(config.api_routes),
    }
