"""OpenTelemetry tracing for the cache stack.

cache_stack() owns one TelemetryConfig: setup() installs the tracer
provider, the span exporter and the Redis and logging instrumentation,
and shutdown() undoes the Redis instrumentation and flushes spans.
"""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from retrieval_cache.core.config import Settings

logger = logging.getLogger(__name__)


class TelemetryConfig:
    """Tracer provider, exporter and instrumentation for one cache stack.

    Exporters: "console", "otlp" (needs otlp_endpoint) or "none" (spans
    are sampled and recorded but not exported).
    """

    def __init__(
        self,
        service_name: str,
        service_version: str,
        enabled: bool = True,
        environment: str = "development",
        exporter: str = "console",
        otlp_endpoint: str | None = None,
        sample_rate: float = 1.0,
    ) -> None:
        self.service_name = service_name
        self.service_version = service_version
        self.enabled = enabled
        self.environment = environment
        self.exporter = exporter
        self.otlp_endpoint = otlp_endpoint
        self.sample_rate = sample_rate
        self.tracer_provider: TracerProvider | None = None
        self._redis_instrumentor: RedisInstrumentor | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelemetryConfig":
        return cls(
            service_name=settings.app_name,
            service_version=settings.app_version,
            enabled=settings.telemetry_enabled,
            environment=settings.telemetry_environment,
            exporter=settings.telemetry_exporter,
            otlp_endpoint=settings.telemetry_otlp_endpoint,
            sample_rate=settings.telemetry_sample_rate,
        )

    def _build_exporter(self) -> SpanExporter | None:
        if self.exporter == "none":
            return None
        if self.exporter == "otlp":
            if self.otlp_endpoint:
                logger.info("Using OTLP span exporter: %s", self.otlp_endpoint)
                return OTLPSpanExporter(
                    endpoint=self.otlp_endpoint,
                    insecure=self.otlp_endpoint.startswith("http://"),
                )
            logger.warning("OTLP exporter selected without an endpoint, using console")
        elif self.exporter != "console":
            logger.warning("Unknown exporter type '%s', using console", self.exporter)
        return ConsoleSpanExporter()

    def setup(self) -> TracerProvider | None:
        """Install the global tracer provider and instrument Redis and logging.

        Returns:
            The tracer provider, or None when telemetry is disabled or
            could not be initialized (the cache runs untraced).
        """
        if not self.enabled:
            logger.info("Telemetry disabled")
            return None
        try:
            provider = TracerProvider(
                resource=Resource(
                    attributes={
                        SERVICE_NAME: self.service_name,
                        SERVICE_VERSION: self.service_version,
                        "deployment.environment": self.environment,
                    }
                ),
                sampler=TraceIdRatioBased(self.sample_rate),
            )
            exporter = self._build_exporter()
            if exporter is not None:
                provider.add_span_processor(BatchSpanProcessor(exporter))
            trace.set_tracer_provider(provider)
        except Exception as e:
            logger.exception("Failed to initialize telemetry: %s", e)
            return None
        self.tracer_provider = provider
        self._instrument(provider)
        logger.info(
            "OpenTelemetry initialized: service=%s, exporter=%s, sample_rate=%s",
            self.service_name,
            self.exporter,
            self.sample_rate,
        )
        return provider

    def _instrument(self, provider: TracerProvider) -> None:
        try:
            instrumentor = RedisInstrumentor()
            instrumentor.instrument(tracer_provider=provider)
            self._redis_instrumentor = instrumentor
        except Exception as e:
            logger.exception("Failed to instrument Redis: %s", e)
        try:
            # Adds trace_id and span_id to every log record.
            LoggingInstrumentor().instrument(tracer_provider=provider, set_logging_format=True)
        except Exception as e:
            logger.exception("Failed to instrument logging: %s", e)

    def shutdown(self) -> None:
        """Remove Redis instrumentation and flush remaining spans."""
        if self._redis_instrumentor is not None:
            self._redis_instrumentor.uninstrument()
            self._redis_instrumentor = None
        if self.tracer_provider is None:
            return
        try:
            self.tracer_provider.shutdown()
            logger.info("Telemetry shutdown complete")
        except Exception as e:
            logger.exception("Error during telemetry shutdown: %s", e)
        self.tracer_provider = None
