"""Tests for telemetry module — OpenTelemetry tracing integration."""

from __future__ import annotations

from ben_ten.telemetry import BenTenTracer, TelemetryConfig


def test_init_with_none_config_succeeds() -> None:
    tracer = BenTenTracer(TelemetryConfig(exporter="none"))
    tracer.init()
    tracer.shutdown()


def test_span_context_manager_works() -> None:
    tracer = BenTenTracer(TelemetryConfig(exporter="none"))
    tracer.init()
    with tracer.span("hook/SessionStart", {"session.id": "s1"}) as s:
        assert s is not None
    tracer.shutdown()


def test_record_event_does_not_error() -> None:
    tracer = BenTenTracer()
    tracer.record_event("context-saved", {"path": "/p"})


def test_stdout_exporter_writes_spans_to_stderr(capsys) -> None:
    tracer = BenTenTracer(TelemetryConfig(exporter="stdout", service_name="ben-ten-test"))
    tracer.init()
    with tracer.span("mcp/call", {"mcp.tool": "ben_ten_load"}) as s:
        assert s.is_recording()
    tracer.shutdown()
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "mcp/call" in captured.err


def test_disabled_config_stays_noop() -> None:
    tracer = BenTenTracer(TelemetryConfig(enabled=False, exporter="stdout"))
    tracer.init()
    with tracer.span("x") as s:
        assert not s.is_recording()


def test_shutdown_is_idempotent() -> None:
    tracer = BenTenTracer(TelemetryConfig(exporter="stdout"))
    tracer.init()
    tracer.shutdown()
    tracer.shutdown()
    assert tracer.config.exporter == "stdout"


def test_mark_result_tags_span_outcome() -> None:
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import SimpleSpanProcessor
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
    from opentelemetry.trace import StatusCode

    from ben_ten.errors import ErrorCode, Ok, fail
    from ben_ten.telemetry import mark_result

    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    otel = provider.get_tracer("test")

    with otel.start_as_current_span("ok") as s:
        mark_result(s, Ok(1))
    with otel.start_as_current_span("err") as s:
        mark_result(s, fail(ErrorCode.FS_NOT_FOUND, "gone"))
    provider.shutdown()

    ok_span, err_span = exporter.get_finished_spans()
    assert ok_span.attributes["ben_ten.ok"] is True
    assert err_span.attributes["ben_ten.error_code"] == "FS_NOT_FOUND"
    assert err_span.status.status_code is StatusCode.ERROR


def test_from_config_uses_exporter_setting() -> None:
    from ben_ten.config import BenTenConfig

    cfg = TelemetryConfig.from_config(BenTenConfig(telemetry_exporter="stdout"))
    assert cfg.exporter == "stdout"
    assert cfg.service_name == "ben-ten"
