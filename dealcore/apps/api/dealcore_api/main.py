"""dealcore API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dealcore_api import __version__
from dealcore_api.config.env import get_rate_limit_settings
from dealcore_api.context import actor_id_var, request_id_var, tenant_id_var
from dealcore_api.db.redis_client import RedisClient
from dealcore_api.problems import http_problem_response, problem_response
from dealcore_api.rate_limiter import DEFAULT_POLICY, NoOpRateLimiter, RateLimiter, RedisRateLimiter
from dealcore_api.results import ResultError
from dealcore_api.routers import admin, deals, health, purchases, redemptions, vouchers
from dealcore_api.utils import configure_json_logging

logger = logging.getLogger(__name__)

# Business routers; each is mounted at /v1 and again at /v1/c/{county}
V1_ROUTERS = (deals.router, purchases.router, redemptions.router, vouchers.router, admin.router)


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        429: "Too Many Requests",
        500: "Internal Server Error",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


def build_rate_limiter() -> RateLimiter:
    """Redis-backed limiter when REDIS_URL is set, otherwise the no-op limiter."""
    policies = get_rate_limit_settings()
    if RedisClient.is_configured():
        return RedisRateLimiter(RedisClient.get_client(), policies)
    quota, window = policies[DEFAULT_POLICY]
    return NoOpRateLimiter(quota=quota, window=window)


def _rate_limit_headers(result: Any) -> dict[str, str]:
    return {
        "RateLimit-Policy": f'"{result.policy_id}"; q={result.quota}; w={result.window}',
        "RateLimit": f'"{result.policy_id}"; r={result.remaining}; t={result.reset}',
    }


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ResultError)
    async def result_error_handler(request: Request, exc: ResultError) -> JSONResponse:
        """Render a domain Err (raised from a dependency or router) as problem+json."""
        return problem_response(exc.error, extra=exc.extra)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """HTTP exceptions as RFC 9457 Problem Details; dict details are preserved."""
        detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)
        headers = dict(exc.headers or {})
        if exc.status_code == 429:
            headers.setdefault("Retry-After", "60")
        return http_problem_response(
            exc.status_code,
            _get_title_for_status(exc.status_code),
            detail_value,
            headers=headers or None,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """422 problem+json naming the first invalid field."""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        return http_problem_response(
            422,
            "Request Validation Failed",
            f"Invalid field '{field}': {msg}",
            type_uri="https://api.dealcore.local/problems/validation-error",
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Uncaught exceptions: 500 without internals; full traceback goes to the log."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return http_problem_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            "An unexpected error occurred. Please try again later.",
            type_uri="https://api.dealcore.local/problems/internal-error",
        )


def create_app(
    *,
    otel_enabled: bool = False,
    otel_service_name: str = "dealcore-api",
    otel_span_exporter=None,
    otel_metric_reader=None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        otel_enabled: Enable OpenTelemetry tracing/metrics
        otel_service_name: Service name for OTel resource
        otel_span_exporter: Custom span exporter (testing)
        otel_metric_reader: Custom metric reader (testing)
        rate_limiter: Limiter override; defaults to build_rate_limiter()

    Returns:
        Configured FastAPI application instance
    """
    if otel_enabled:
        from dealcore_api.otel import init_otel

        init_otel(
            service_name=otel_service_name,
            span_exporter=otel_span_exporter,
            metric_reader=otel_metric_reader,
        )

    new_app = FastAPI(
        title="dealcore API",
        description="County-scoped deals marketplace core: deal lifecycle, voucher allocation and redemption.",
        version=__version__,
        docs_url="/api-docs",
        redoc_url="/redoc",
    )

    cors_origins = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_origins:
        allowed_origins = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
    else:
        allowed_origins = [
            "http://localhost:3000",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:8000",
        ]

    new_app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Request-ID",
            "X-Actor-Id",
            "X-Actor-Role",
            "X-Admin-Token",
            "X-County-Slug",
            "X-County-Id",
        ],
        expose_headers=["X-Request-ID", "RateLimit-Policy", "RateLimit", "Retry-After"],
    )

    new_app.include_router(health.router, tags=["health"])
    for router in V1_ROUTERS:
        new_app.include_router(router, prefix="/v1")
        new_app.include_router(router, prefix="/v1/c/{county}", include_in_schema=False)

    _register_exception_handlers(new_app)

    # Instrument before the http middlewares so spans wrap all of them
    if otel_enabled:
        from opentelemetry import metrics, trace
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(
            new_app,
            tracer_provider=trace.get_tracer_provider(),
            meter_provider=metrics.get_meter_provider(),
        )
    new_app.state.otel_enabled = otel_enabled

    @new_app.middleware("http")
    async def rate_limit_mw(request: Request, call_next):
        """Enforce rate limits and add IETF RateLimit headers on /v1/* routes."""
        if not request.url.path.startswith("/v1/"):
            return await call_next(request)

        limiter: RateLimiter = getattr(new_app.state, "rate_limiter", None) or NoOpRateLimiter()

        key = request.headers.get("X-Actor-Id") or (request.client.host if request.client else "anonymous")
        result = limiter.check_rate_limit(key, request.url.path, request.method)

        if not result.allowed:
            headers = _rate_limit_headers(result)
            headers["Retry-After"] = str(result.reset)
            return http_problem_response(
                429,
                "Too Many Requests",
                "Rate limit exceeded. Please retry after the specified time.",
                headers=headers,
            )

        response = await call_next(request)

        # Fill missing headers only; handler-set values win
        if 200 <= response.status_code < 300:
            for name, value in _rate_limit_headers(result).items():
                if name not in response.headers:
                    response.headers[name] = value
        return response

    @new_app.middleware("http")
    async def completion_logging_mw(request: Request, call_next):
        """Emit http.request.completed for every request, including early 429s."""
        tenant_id_var.set("")
        actor_id_var.set("")

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logging.getLogger(__name__).info(
                "http.request.completed",
                extra={
                    "event": "http.request.completed",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            tenant_id_var.set("")
            actor_id_var.set("")

    @new_app.middleware("http")
    async def request_id_mw(request: Request, call_next):
        """Generate and propagate request_id (outermost)."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    new_app.state.rate_limiter = rate_limiter if rate_limiter is not None else build_rate_limiter()

    return new_app


# Set DEALCORE_JSON_LOGS=false to disable structured logging
if os.getenv("DEALCORE_JSON_LOGS", "true").lower() != "false":
    configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))

app = create_app(otel_enabled=os.getenv("DEALCORE_OTEL_ENABLED", "false").lower() == "true")
