import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from app.api import health
from app.api.v1 import auth, users

# Ensure app loggers (auth, token sweep, etc.) print to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("app").setLevel(logging.DEBUG)
from app.config import settings
from app.core.errors import register_exception_handlers
from app.core.middleware import RequestSizeLimitMiddleware, RequestTimeoutMiddleware, SecurityHeadersMiddleware
from app.db.session import engine, init_db
from app.services.refresh_tokens import scheduled_refresh_token_cleanup
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_production_config()
    await init_db()

    interval = settings.refresh_token_cleanup_interval_minutes
    if interval > 0:
        scheduler.add_job(
            scheduled_refresh_token_cleanup,
            "interval",
            minutes=interval,
            id="refresh_token_cleanup",
            replace_existing=True,
        )
    scheduler.start()
    logger.info("Chat Gateway API started (env=%s)", settings.app_env)
    yield
    scheduler.shutdown()
    await engine.dispose()


app = FastAPI(
    title="Chat Gateway API",
    description="Chatbot gateway backend: JWT auth, refresh-token sessions, role-based access",
    version=settings.version,
    lifespan=lifespan,
)
register_exception_handlers(app)
app.add_middleware(GZipMiddleware, minimum_size=500)

_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestTimeoutMiddleware, timeout=settings.request_timeout_seconds)
app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.max_request_size)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(users.router)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)
