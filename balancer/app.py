import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
from fastapi import FastAPI, Request, Response
from starlette.concurrency import run_in_threadpool

from .config import BalancerConfig
from .proxy import Balancer


def raw_path(request: Request) -> str:
    """The request path as the client sent it, percent-escapes intact."""
    raw = request.scope.get("raw_path")
    if not raw:
        return request.url.path
    return raw.decode("latin-1").split("?", 1)[0]


PROXIED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    config: BalancerConfig,
    transport: Optional[httpx.BaseTransport] = None,
    clock: Callable[[], float] = time.monotonic,
    logger: Optional[logging.Logger] = None,
) -> FastAPI:
    balancer = Balancer(config, transport=transport, clock=clock, logger=logger)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        balancer.close()

    app = FastAPI(title="uuid-balancer", lifespan=lifespan)
    app.state.balancer = balancer

    @app.get("/_balancer/status")
    def status():
        return {"upstreams": balancer.health.snapshot()}

    @app.api_route("/{full_path:path}", methods=PROXIED_METHODS)
    async def proxy(request: Request):
        body = await request.body()
        # upstream calls block, keep them off the event loop
        result = await run_in_threadpool(
            balancer.handle,
            request.method,
            raw_path(request),
            request.url.query,
            request.headers.items(),
            body,
            request.client.host if request.client else "",
        )
        response = Response(content=result.body, status_code=result.status_code)
        for k, v in result.all_headers():
            response.headers.append(k, v)
        return response

    return app
