from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from app.factories import http_client_factory, proxy_config_factory
from app.packages.edge_proxy import error_page
from app.routes import health, proxy
from app.utils.logging import setup_logger
from app.utils.sentry import init_sentry

logger = structlog.stdlib.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http_client = http_client_factory()

    config = proxy_config_factory()
    logger.info(
        "Edge proxy started",
        registry_routes=sorted(config.registry_routes.routes),
        api_routes=sorted(config.api_routes.routes),
    )

    yield

    await app.state.http_client.aclose()


init_sentry()
# No docs routes: every path belongs to the proxy
app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
setup_logger(app)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error while proxying", path=request.url.path)
    return error_page(proxy_config_factory())


app.include_router(health.router)
app.include_router(proxy.router)
