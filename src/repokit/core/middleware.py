"""Request context middleware: request IDs, locale binding and request logging."""
import time
import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar

import structlog
from fastapi import Request, Response
from opentelemetry.trace.status import Status, StatusCode
from starlette.middleware.base import BaseHTTPMiddleware

from repokit.core.i18n import Translator, bind_translator, negotiate_locale, reset_translator
from repokit.core.logging import get_logger
from repokit.core.tracing import create_span, get_tracer

# Context variable for storing request ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"

logger = get_logger(__name__)
tracer = get_tracer(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware that sets up per-request context.

    This middleware:
    - Reuses the caller's 'X-Request-ID' or generates a UUID4, and echoes it back
    - Binds the request ID to structlog contextvars for every log line
    - Negotiates a locale from 'Accept-Language' and binds a translator, so
      repository error messages come back in the caller's language
    - Logs request start and completion with timing information
    - Creates OpenTelemetry spans for distributed tracing (when enabled)
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        locale = negotiate_locale(request.headers.get("accept-language"))

        request_id_token = request_id_var.set(request_id)
        translator_token = bind_translator(Translator(locale))
        structlog.contextvars.bind_contextvars(request_id=request_id, locale=locale)

        with create_span(
            tracer,
            f"{request.method} {request.url.path}",
            **{
                "http.method": request.method,
                "http.url": str(request.url),
                "http.route": request.url.path,
                "request.id": request_id,
                "request.locale": locale,
            }
        ) as span:
            start_time = time.time()

            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
                query_params=str(request.query_params) if request.query_params else None,
            )

            try:
                response = await call_next(request)
                response.headers[REQUEST_ID_HEADER] = request_id
                response.headers["Content-Language"] = locale

                duration_ms = round((time.time() - start_time) * 1000, 2)
                span.set_attribute("http.status_code", response.status_code)
                span.set_attribute("request.duration_ms", duration_ms)
                if response.status_code >= 400:
                    span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
                else:
                    span.set_status(Status(StatusCode.OK))

                logger.info(
                    "Request completed",
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )

                return response

            except Exception as exc:
                duration_ms = round((time.time() - start_time) * 1000, 2)
                span.record_exception(exc)
                span.set_attribute("request.duration_ms", duration_ms)
                span.set_status(Status(StatusCode.ERROR, str(exc)))

                logger.error(
                    "Request failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    duration_ms=duration_ms,
                    exc_info=True,
                )
                raise

            finally:
                structlog.contextvars.clear_contextvars()
                reset_translator(translator_token)
                request_id_var.reset(request_id_token)


def get_request_id() -> str:
    """Get the current request ID from context.

    Returns:
        The current request ID, or empty string if no request is active.
    """
    return request_id_var.get("")
