import logging
import sys
from contextlib import asynccontextmanager

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from repairdesk.api.errors import register_exception_handlers
from repairdesk.api.v1 import auth, users

# App loggers (auth, audit, cleanup) print to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
from repairdesk.config import settings
from repairdesk.core.rate_limit import limiter
from repairdesk.db.session import database
from repairdesk.services.audit import audit_trail
from repairdesk.services.token_cleanup import TokenCleanupSweeper
from prometheus_client import make_asgi_app

logging.getLogger("repairdesk").setLevel(logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

sweeper = TokenCleanupSweeper(
    database,
    interval_seconds=settings.token_cleanup_interval_seconds,
    enabled=settings.sweeper_enabled,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to start without a usable signing key
    settings.validate_jwt_config()
    await database.init()
    sweeper.start()
    logger.info("RepairDesk API started (env=%s)", settings.app_env)
    yield
    sweeper.shutdown()
    await audit_trail.drain()
    await database.dispose()


app = FastAPI(
    title="RepairDesk API",
    description="Device repair tracking backend: authentication, sessions, role-based access",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth.router, prefix="/api")
app.include_router(users.router, prefix="/api")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
