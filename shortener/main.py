"""FastAPI application entry point for the URL shortener service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────────┐
    │ uvicorn startup   │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan():       │
    │ ServiceManager    │ engine, tables, repositories,
    │  .initialize()    │ cache (or None), click workers
    │ rate limiter sweep│
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ Serve HTTP        │ rate limit ─▶ CORS ─▶ routes
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan():       │
    │ stop sweep        │
    │ drain click queue │
    │ close cache + db  │
    └──────────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/urls \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Requests beyond a client's token bucket get 429 before reaching any route.
- Prometheus metrics are exposed at /metrics.
- Queued clicks are drained for a bounded time on shutdown.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.dependencies import _service_manager, client_ip
from shortener.ratelimit import RateLimiter
from shortener.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await _service_manager.initialize()
    limiter = app.state.rate_limiter
    if limiter is not None:
        await limiter.start()
    yield
    # Shutdown
    if limiter is not None:
        await limiter.stop()
    await _service_manager.cleanup()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short links with cache-first redirects and click analytics",
    lifespan=lifespan,
)

app.state.rate_limiter = (
    RateLimiter(
        rate=settings.RATE_LIMIT_PER_SECOND,
        burst=settings.RATE_LIMIT_BURST,
        idle_ttl=settings.RATE_LIMIT_IDLE_SECONDS,
        sweep_interval=settings.RATE_LIMIT_SWEEP_SECONDS,
    )
    if settings.RATE_LIMIT_PER_SECOND > 0
    else None
)


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    limiter: RateLimiter | None = request.app.state.rate_limiter
    if limiter is not None and not limiter.allow(client_ip(request) or "unknown"):
        return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
