import sentry_sdk
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from virtualqueue.api import auth, users
from virtualqueue.core.cache import close_redis_client, create_redis_client, get_redis
from virtualqueue.core.config import settings
from virtualqueue.core.logging import configure_logging
from virtualqueue.core.middleware import CORRELATION_HEADER, request_context, security_headers
from virtualqueue.core.rate_limiter import limiter
from virtualqueue.db.session import engine
from virtualqueue.utils.response import error

configure_logging()
logger = structlog.get_logger()

if settings.is_production and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=f"virtualqueue@{settings.API_VERSION}",
            traces_sample_rate=0.1,
            send_default_pii=False,
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
        logger.info("sentry_initialized", environment=settings.ENVIRONMENT)
    except Exception as exc:
        # The API still serves requests without error monitoring.
        logger.warning("sentry_init_failed", error=str(exc))

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.API_VERSION,
    openapi_url=f"{settings.DOCS_PATH}/openapi.json",
    docs_url=settings.DOCS_PATH,
    redoc_url=None,
    openapi_tags=[
        {"name": "General", "description": "Health checks."},
        {"name": "Auth", "description": "Sign-in, token rotation and session management."},
        {"name": "Users", "description": "User accounts and roles."},
    ],
)
app.state.limiter = limiter

# Registered innermost first: request_context wraps everything below it.
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.BACKEND_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", CORRELATION_HEADER],
    expose_headers=[CORRELATION_HEADER, "X-Process-Time"],
    max_age=600,
)
app.middleware("http")(security_headers)
app.middleware("http")(request_context)

app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(users.router, prefix="/users", tags=["Users"])


@app.on_event("startup")
def startup():
    app.state.redis = create_redis_client()
    logger.info("api_started", environment=settings.ENVIRONMENT, docs=settings.DOCS_PATH)


@app.on_event("shutdown")
def shutdown():
    close_redis_client(getattr(app.state, "redis", None))
    engine.dispose()
    logger.info("api_stopped")


@app.get("/health", tags=["General"], summary="View the health status of the API")
def health_check():
    return {"status": "ok"}


@app.get("/health/database", tags=["General"], summary="Check database connectivity")
def database_health_check():
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("database_health_check_failed", error=str(exc))
        return {"status": "unhealthy", "component": "database"}
    return {"status": "ok", "component": "database"}


@app.get("/health/redis", tags=["General"], summary="Check key-value store connectivity")
def redis_health_check(redis_client=Depends(get_redis)):
    try:
        redis_client.ping()
    except Exception as exc:
        logger.warning("redis_health_check_failed", error=str(exc))
        return {"status": "unhealthy", "component": "redis"}
    return {"status": "ok", "component": "redis"}


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.info("rate_limit_exceeded", limit=str(exc.detail))
    return error(
        request,
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        message="Too many requests. Please try again later.",
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error(
        request,
        status_code=exc.status_code,
        message=message,
        details=exc.detail,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # ctx may hold the raw exception object, which is not serializable
    errors = [{key: value for key, value in err.items() if key != "ctx"} for err in exc.errors()]
    return error(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation failed",
        details=errors,
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("integrity_error", detail=str(exc.orig))
    if "email" in str(exc.orig).lower():
        message = "Email address is already in use"
    else:
        message = "A record with this information already exists"
    return error(request, status_code=status.HTTP_409_CONFLICT, message=message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    if settings.DEBUG and not settings.is_production:
        return error(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message=f"Internal server error: {exc}",
            details=[{"type": type(exc).__name__}],
        )
    return error(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Internal server error",
    )
