"""
TripCircle scheduling service -- trip date consensus, voting and locking.

Entrypoint: uvicorn services.api.main:app --host 0.0.0.0 --port 8000
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from starlette.responses import JSONResponse

from services.api.config import settings
from services.api.db.engine import create_engine as create_sa_engine
from services.api.middleware.cors import setup_cors
from services.api.middleware.rate_limit import RateLimitMiddleware
from services.api.middleware.sentry import setup_sentry
from services.api.routers import health, scheduling

logger = logging.getLogger(__name__)

# Filled by lifespan; the rate limiter reads it per request.
_redis_holder: dict = {"client": None}


async def _connect_redis() -> Optional[aioredis.Redis]:
    """Redis is optional: without it the rate limiter lets everything through."""
    if not settings.redis_url:
        return None
    client = aioredis.from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=5)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("redis_unavailable error=%s", e)
        return None
    return client


def _attach_database(app: FastAPI) -> Optional[AsyncEngine]:
    if not settings.database_url:
        logger.warning("database_url_missing scheduling endpoints will fail")
        return None
    sa_engine = create_sa_engine()
    app.state.db_engine = sa_engine
    # NullPool hands the connection back on commit; loaded rows must stay usable.
    app.state.db_session_factory = async_sessionmaker(sa_engine, expire_on_commit=False)
    return sa_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_sentry()
    redis_client = await _connect_redis()
    _redis_holder["client"] = redis_client
    app.state.redis = redis_client
    app.state.settings = settings
    sa_engine = _attach_database(app)
    logger.info(
        "startup env=%s redis=%s database=%s",
        settings.environment,
        redis_client is not None,
        sa_engine is not None,
    )

    yield

    if sa_engine is not None:
        await sa_engine.dispose()
    if redis_client is not None:
        await redis_client.aclose()


app = FastAPI(
    title="TripCircle Scheduling API",
    version=settings.app_version,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(scheduling.router)

# Middleware: last added runs outermost.
setup_cors(app)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


class _LazyRateLimitMiddleware(RateLimitMiddleware):
    """Middleware is built before lifespan runs; pick Redis up per request."""

    def __init__(self, app):
        super().__init__(app, redis_client=None)

    async def dispatch(self, request, call_next):
        self.redis = _redis_holder.get("client")
        return await super().dispatch(request, call_next)


app.add_middleware(_LazyRateLimitMiddleware)


# -- Error envelopes --

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _envelope(request: Request, status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "requestId": _request_id(request)},
    )


# Fallback code/message when the router did not attach its own error body.
_DEFAULT_ERRORS = {
    400: ("VALIDATION_ERROR", "Invalid request."),
    403: ("FORBIDDEN", "Not allowed."),
    404: ("NOT_FOUND", "Resource not found."),
    409: ("CONFLICT", "Trip state changed; refresh and retry."),
}


def _status_handler(status_code: int):
    code, message = _DEFAULT_ERRORS[status_code]

    async def handler(request: Request, exc) -> JSONResponse:
        detail = getattr(exc, "detail", None)
        if isinstance(detail, dict) and "error" in detail:
            return _envelope(request, status_code, detail["error"])
        return _envelope(request, status_code, {"code": code, "message": message})

    return handler


for _status in _DEFAULT_ERRORS:
    app.add_exception_handler(_status, _status_handler(_status))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid')}" if location else "Validation error."
    return _envelope(request, 422, {"code": "VALIDATION_ERROR", "message": message})


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc) -> JSONResponse:
    logger.error("unhandled_error path=%s", request.url.path, exc_info=exc)
    return _envelope(request, 500, {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred."})
