"""OpenTelemetry tracing for hook dispatch and MCP tool calls.

One :class:`BenTenTracer` is built per process and handed to the components
that emit spans (``hook/<event>``, ``mcp/call``). Spans carry the outcome of
the Result they wrapped via :func:`mark_result`.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import NoOpTracer, Span, Status, StatusCode, Tracer

from .errors import Err

if TYPE_CHECKING:
    from .config import BenTenConfig

_log = logging.getLogger(__name__)

EXPORTERS = ("none", "stdout", "otlp")


@dataclass
class TelemetryConfig:
    service_name: str = "ben-ten"
    enabled: bool = True
    exporter: str = "none"  # one of EXPORTERS
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_config(cls, config: BenTenConfig) -> TelemetryConfig:
        return cls(exporter=config.telemetry_exporter)


def _build_exporter(cfg: TelemetryConfig) -> SpanExporter | None:
    if cfg.exporter == "stdout":
        # stdout carries hook output and JSON-RPC frames.
        return ConsoleSpanExporter(out=sys.stderr)
    if cfg.exporter == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError:
            _log.warning("OTLP exporter requested but opentelemetry-exporter-otlp "
                         "is not installed; tracing disabled")
            return None
        return OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True)
    return None


def mark_result(span: Span, result: Any) -> None:
    """Tag *span* with the outcome of an Ok/Err result."""
    if not span.is_recording():
        return
    if isinstance(result, Err):
        span.set_attribute("ben_ten.ok", False)
        span.set_attribute("ben_ten.error_code", result.error.code.value)
        span.set_status(Status(StatusCode.ERROR, result.error.message))
    else:
        span.set_attribute("ben_ten.ok", True)


class BenTenTracer:
    """Owns the TracerProvider; a no-op until :meth:`init` installs an exporter."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def active(self) -> bool:
        return self._provider is not None

    def init(self) -> None:
        cfg = self._config
        if not cfg.enabled or self._provider is not None:
            return
        exporter = _build_exporter(cfg)
        if exporter is None:
            return
        provider = TracerProvider(resource=Resource.create({"service.name": cfg.service_name}))
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        self._provider = provider
        self._tracer = provider.get_tracer("ben_ten")
        _log.debug("Tracing enabled (exporter=%s)", cfg.exporter)

    @contextlib.contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None) -> Iterator[Span]:
        """Open a span as the current span; ``None`` attribute values are skipped."""
        with self._tracer.start_as_current_span(name) as s:
            for key, value in (attributes or {}).items():
                if value is not None:
                    s.set_attribute(key, value)
            yield s

    def record_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        current = trace.get_current_span()
        if current.is_recording():
            current.add_event(name, dict(attributes or {}))

    def shutdown(self) -> None:
        """Flush and drop the provider. Safe to call more than once."""
        provider, self._provider = self._provider, None
        if provider is not None:
            provider.shutdown()
        self._tracer = NoOpTracer()
