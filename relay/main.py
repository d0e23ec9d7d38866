"""FastAPI application wiring for the relay.

- Configures logging, Prometheus metrics and rate limiting.
- Mounts the webhook receiver, the broker push endpoint, the direct query API
  and the dead-letter admin routes.
- Exposes health and version probes.

Queue processing itself runs in ``relay.worker`` or through the push endpoint.
"""

import logging

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.limits import limiter
from .routers import dead_letters, query, queue_push, webhooks

logger = logging.getLogger(__name__)

app = FastAPI(title="Vault Relay", version=__version__)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.include_router(webhooks.router)
app.include_router(queue_push.router)
app.include_router(query.router)
app.include_router(dead_letters.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
