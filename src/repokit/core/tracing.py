"""OpenTelemetry setup and the span decorators used by repositories and caches.

Spans are only created when tracing is enabled; otherwise the decorators
hand back the undecorated function.
"""
import functools
import os
from typing import Any, Callable, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace.status import Status, StatusCode

from repokit import __version__
from repokit.core.config import settings

F = TypeVar("F", bound=Callable[..., Any])


def is_tracing_enabled() -> bool:
    """False under pytest or when ``OTEL_ENABLED`` is off."""
    if "pytest" in os.environ.get("_", "") or os.environ.get("PYTEST_CURRENT_TEST"):
        return False

    return settings.otel_enabled


def database_system() -> str:
    """``db.system`` span attribute, taken from the database URL scheme."""
    return settings.database_url.split(":", 1)[0].split("+", 1)[0] or "unknown"


def configure_tracing() -> None:
    """Install an OTLP-exporting tracer provider when tracing is enabled."""
    if not is_tracing_enabled():
        return

    resource = Resource.create({
        "service.name": settings.otel_service_name,
        "service.version": __version__,
        "deployment.environment": settings.environment,
        "service.namespace": "repokit",
    })

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.otel_exporter_otlp_endpoint,
                insecure=not settings.is_production,
            )
        )
    )
    trace.set_tracer_provider(tracer_provider)


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def instrument_fastapi_app(app: Any) -> None:
    if not is_tracing_enabled():
        return

    FastAPIInstrumentor.instrument_app(app)


def create_span(tracer: trace.Tracer, name: str, **attributes: Any) -> Any:
    """Start a span for the request middleware, or a no-op stand-in when disabled."""
    if not is_tracing_enabled():
        return _NoOpSpan()

    span = tracer.start_span(name)
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, str(value))
    return span


# Tracing Decorators

def trace_async(
    span_name: str | None = None,
    tracer_name: str | None = None,
    **span_attributes: Any
) -> Callable[[F], F]:
    """Wrap a coroutine function in a span that records its outcome.

    Exceptions are recorded on the span and re-raised unchanged.
    """
    def decorator(func: F) -> F:
        if not is_tracing_enabled():
            return func

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_tracer(tracer_name or func.__module__)
            name = span_name or f"{func.__module__}.{func.__name__}"

            with tracer.start_as_current_span(name) as span:
                for key, value in span_attributes.items():
                    if value is not None:
                        span.set_attribute(key, str(value))

                try:
                    result = await func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as exc:
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, str(exc)))
                    raise

        return async_wrapper  # type: ignore
    return decorator


def trace_database(operation: str | None = None) -> Callable[[F], F]:
    """Span named ``repository.<operation>`` for a repository method.

    ``operation`` defaults to the method name, so ``BaseRepository.find_by``
    reports ``repository.find_by`` with ``db.operation=find_by``.
    """
    def decorator(func: F) -> F:
        op_name = operation or func.__name__
        return trace_async(
            span_name=f"repository.{op_name}",
            **{
                "db.operation": op_name,
                "db.system": database_system(),
                "component": "database"
            }
        )(func)
    return decorator


def trace_cache(operation: str | None = None) -> Callable[[F], F]:
    """Span named ``cache.<operation>`` tagged with the configured cache backend."""
    def decorator(func: F) -> F:
        op_name = operation or func.__name__
        return trace_async(
            span_name=f"cache.{op_name}",
            **{
                "cache.operation": op_name,
                "cache.system": settings.cache_backend,
                "component": "cache"
            }
        )(func)
    return decorator


class _NoOpSpan:
    def __enter__(self) -> "_NoOpSpan":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        pass

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_status(self, status: Any) -> None:
        pass

    def record_exception(self, exception: Exception) -> None:
        pass
