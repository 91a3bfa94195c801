"""
Observability for the column store.

Provides:
- OpenTelemetry tracing of store operations
- Prometheus metrics (operation counts, latencies, reconnects, pages)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from opentelemetry import trace
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)


# ============================================================================
# OpenTelemetry Tracing
# ============================================================================

class Tracer:
    """
    Thin tracing wrapper over the OpenTelemetry API.

    Spans go to whatever TracerProvider the application installed; call
    ``install_provider`` to set up a basic SDK provider when none is.
    """

    def __init__(self, service_name: str = "vertector-columnstore", enabled: bool = True):
        self.service_name = service_name
        self.enabled = enabled
        self._tracer = trace.get_tracer(__name__) if enabled else None

    def install_provider(self, exporter: Any = None) -> None:
        """
        Install an SDK TracerProvider tagged with this service name.

        Args:
            exporter: Span exporter; defaults to the console exporter
        """
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

        provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: self.service_name}))
        provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))
        trace.set_tracer_provider(provider)
        self._tracer = provider.get_tracer(__name__)
        self.enabled = True
        logger.info(f"OpenTelemetry tracing initialized for {self.service_name}")

    @asynccontextmanager
    async def span(self, name: str, attributes: Optional[dict[str, Any]] = None):
        """
        Create a traced span for an operation.

        Args:
            name: Span name (e.g., "columnstore.get")
            attributes: Span attributes

        Yields:
            The span, or None when tracing is disabled
        """
        if not self.enabled or self._tracer is None:
            yield None
            return

        with self._tracer.start_as_current_span(name) as span:
            for key, value in (attributes or {}).items():
                if value is None:
                    continue
                span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))
            try:
                yield span
                span.set_status(trace.Status(trace.StatusCode.OK))
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


# ============================================================================
# Prometheus Metrics
# ============================================================================

class StoreMetrics:
    """
    Prometheus metrics for one ColumnStore.

    Each instance owns its CollectorRegistry unless one is passed in, so
    several stores (and tests) never collide on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None, namespace: str = "columnstore"):
        self.registry = registry or CollectorRegistry()
        self.operations = Counter(
            "operations",
            "Store operations by outcome",
            ["operation", "outcome"],
            namespace=namespace,
            registry=self.registry,
        )
        self.latency = Histogram(
            "operation_latency_seconds",
            "Store operation latency, retries included",
            ["operation"],
            namespace=namespace,
            registry=self.registry,
        )
        self.reconnects = Counter(
            "reconnects",
            "Connections rebuilt after a transport failure",
            ["keyspace"],
            namespace=namespace,
            registry=self.registry,
        )
        self.pages = Counter(
            "pages_fetched",
            "Pages fetched by chunked reads",
            ["read"],
            namespace=namespace,
            registry=self.registry,
        )

    def record_operation(self, operation: str, outcome: str, latency_seconds: float) -> None:
        self.operations.labels(operation=operation, outcome=outcome).inc()
        self.latency.labels(operation=operation).observe(latency_seconds)

    def record_reconnect(self, keyspace: str) -> None:
        self.reconnects.labels(keyspace=keyspace).inc()

    def record_page(self, read: str) -> None:
        self.pages.labels(read=read).inc()

    def export_prometheus(self) -> str:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry).decode("utf-8")
