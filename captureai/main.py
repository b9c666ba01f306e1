"""
CaptureAI Backend - Main Application
====================================

FastAPI application serving license keys, metered AI completions and
Stripe subscriptions for the CaptureAI extension.
"""

import re
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from captureai import __version__
from captureai.config import Settings, get_settings
from captureai.database import close_db, init_db
from captureai.errors import CaptureAIError, NotFoundError
from captureai.log import configure_logging, sanitize_log_data, security
from captureai.rate_limit import create_rate_limiter, get_client_identifier
from captureai.routes import ai_router, auth_router, health_router, subscription_router


logger = structlog.get_logger()

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


def cors_origin_regex(settings: Settings) -> str:
    """Any GitHub Pages site plus the allowed Chrome extensions."""
    if settings.chrome_extension_ids:
        ids = "|".join(re.escape(i) for i in settings.chrome_extension_ids)
        extensions = f"chrome-extension://({ids})"
    else:
        extensions = r"chrome-extension://[a-z]{32}"
    return rf"https://[a-zA-Z0-9-]+\.github\.io|{extensions}"


def cors_origins(settings: Settings) -> list:
    origins = list(settings.cors_origins)
    if settings.is_development:
        origins.extend(settings.cors_dev_origins)
    return origins


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()

    # Startup
    logger.info(
        "Starting CaptureAI Backend",
        version=__version__,
        environment=settings.environment,
        debug=settings.api_debug,
    )

    if not settings.stripe_secret_key or not settings.stripe_webhook_secret:
        logger.warning("Stripe is not fully configured, billing endpoints will answer 503")
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY not set, license keys will not be emailed")

    logger.info("Initializing database...")
    await init_db()
    logger.info("Database initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down CaptureAI Backend")
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
## CaptureAI Backend

License keys, metered AI completions and Pro subscriptions for the CaptureAI extension.

### Authentication

Protected endpoints take the license key in the `Authorization` header:

```
Authorization: LicenseKey XXXX-XXXX-XXXX-XXXX-XXXX
```

### Quotas

- Free: daily request cap, resets at midnight UTC
- Pro: per-minute request cap
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.rate_limiter = create_rate_limiter(settings)

    allowed_origins = set(cors_origins(settings))
    origin_pattern = re.compile(cors_origin_regex(settings))

    # Middleware added later wraps the ones added before it: unhandled
    # errors turn into a 500 innermost, beneath CORS and the header middleware.
    @app.middleware("http")
    async def catch_unhandled_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "Unhandled exception",
                error=str(exc),
                path=request.url.path,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error"},
            )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allowed_origins),
        allow_origin_regex=origin_pattern.pattern,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    # Request context, logging and security headers
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        start_time = time.time()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=get_client_identifier(request),
            origin=request.headers.get("origin"),
        )
        request.state.request_id = request_id

        origin = request.headers.get("origin")
        if origin and origin not in allowed_origins and not origin_pattern.fullmatch(origin):
            security(logger, "cors_rejected", origin=origin)

        response = await call_next(request)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        response.headers["X-Request-ID"] = request_id
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value

        return response

    # Exception handlers
    @app.exception_handler(CaptureAIError)
    async def captureai_error_handler(request: Request, exc: CaptureAIError):
        if exc.status_code >= 500:
            logger.error("Request failed", error=exc.message, **sanitize_log_data(exc.extra))
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (404, 405):
            not_found = NotFoundError("Route not found")
            return JSONResponse(status_code=not_found.status_code, content=not_found.to_dict())
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    # Include routers
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(ai_router)
    app.include_router(subscription_router)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "captureai.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
