"""Test tracing helpers and span decorators."""

from collections.abc import Iterator
from unittest.mock import patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from repokit.core.config import settings
from repokit.core.tracing import (
    create_span,
    database_system,
    is_tracing_enabled,
    trace_cache,
    trace_database,
)


@pytest.fixture
def exporter() -> Iterator[InMemorySpanExporter]:
    """Tracing switched on, with spans collected in memory."""
    span_exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))

    with patch("repokit.core.tracing.is_tracing_enabled", return_value=True), \
            patch("repokit.core.tracing.get_tracer", side_effect=provider.get_tracer):
        yield span_exporter


class TestTracingSwitch:
    def test_disabled_under_pytest(self) -> None:
        assert is_tracing_enabled() is False

    def test_decorators_return_function_unchanged_when_disabled(self) -> None:
        async def lookup() -> None:
            return None

        assert trace_database()(lookup) is lookup
        assert trace_cache("get")(lookup) is lookup

    def test_create_span_is_a_no_op_when_disabled(self) -> None:
        with create_span(None, "request") as span:  # type: ignore[arg-type]
            span.set_attribute("http.method", "GET")


class TestDatabaseSystem:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("sqlite+aiosqlite:///./repokit.db", "sqlite"),
            ("postgresql+asyncpg://user@localhost/db", "postgresql"),
        ],
    )
    def test_reads_scheme_without_driver(self, url: str, expected: str) -> None:
        with patch.object(settings, "database_url", url):
            assert database_system() == expected


class TestTraceDatabase:
    """Test trace_database spans when tracing is enabled."""

    async def test_records_repository_span(self, exporter: InMemorySpanExporter) -> None:
        @trace_database()
        async def find_by(field: str) -> str:
            return field

        assert await find_by("email") == "email"

        [span] = exporter.get_finished_spans()
        assert span.name == "repository.find_by"
        assert span.attributes["db.operation"] == "find_by"
        assert span.attributes["component"] == "database"
        assert span.status.status_code is StatusCode.OK

    async def test_records_and_reraises_errors(self, exporter: InMemorySpanExporter) -> None:
        @trace_database("aggregate")
        async def broken() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await broken()

        [span] = exporter.get_finished_spans()
        assert span.name == "repository.aggregate"
        assert span.status.status_code is StatusCode.ERROR
        assert span.events[0].name == "exception"


class TestTraceCache:
    async def test_span_carries_cache_backend(self, exporter: InMemorySpanExporter) -> None:
        @trace_cache("clear")
        async def clear() -> None:
            return None

        await clear()

        [span] = exporter.get_finished_spans()
        assert span.name == "cache.clear"
        assert span.attributes["cache.system"] == settings.cache_backend
