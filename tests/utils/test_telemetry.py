"""Tests for OpenTelemetry tracing helpers and the spans isoenv emits."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from opentelemetry import trace

from isoenv.utils import telemetry
from isoenv.utils.telemetry import (
    ATTR_COMMAND,
    ATTR_EXIT_STATUS,
    ATTR_PID,
    ATTR_TIMED_OUT,
    ATTR_WORKSPACE,
    _INSTRUMENTATION_NAME,
    configure_telemetry,
    get_tracer,
)


def _in_memory_tracer():
    try:
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import SimpleSpanProcessor
        from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
    except ImportError:
        pytest.skip("opentelemetry-sdk not installed")

    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider.get_tracer("test"), exporter


class TestGetTracer:
    def test_returns_tracer(self) -> None:
        assert isinstance(get_tracer("isoenv.test"), trace.Tracer)

    def test_default_name(self) -> None:
        assert isinstance(get_tracer(), trace.Tracer)

    def test_noop_span(self) -> None:
        with get_tracer("test.noop").start_as_current_span("isoenv.execute") as span:
            span.set_attribute(ATTR_PID, 1)


class TestConfigureTelemetry:
    def test_raises_without_sdk(self) -> None:
        with patch.dict("sys.modules", {"opentelemetry.sdk.resources": None}):
            with pytest.raises(ImportError, match="isoenv\\[otel\\]"):
                configure_telemetry()

    def test_otlp_raises_without_exporter(self) -> None:
        try:
            import opentelemetry.sdk.trace  # noqa: F401
        except ImportError:
            pytest.skip("opentelemetry-sdk not installed")

        with patch.dict(
            "sys.modules",
            {"opentelemetry.exporter.otlp.proto.grpc.trace_exporter": None},
        ):
            with pytest.raises(ImportError, match="opentelemetry-exporter-otlp"):
                configure_telemetry(
                    export_to_console=False,
                    otlp_endpoint="http://localhost:4317",
                )


class TestAttributeConstants:
    def test_keys_are_namespaced_and_unique(self) -> None:
        keys = [v for k, v in vars(telemetry).items() if k.startswith("ATTR_")]
        assert keys
        assert all(k.startswith("isoenv.") for k in keys)
        assert len(keys) == len(set(keys))

    def test_instrumentation_name(self) -> None:
        assert _INSTRUMENTATION_NAME == "isoenv"


class TestExecutorSpans:
    def test_execute_span_attributes(self) -> None:
        from isoenv.runtime.executor import ProcessExecutor

        tracer, exporter = _in_memory_tracer()
        executor = ProcessExecutor(tracer=tracer, drain_interval=0.05)

        result = executor.run(["sh", "-c", "exit 3"], env=dict(os.environ), cwd=os.getcwd())

        (span,) = exporter.get_finished_spans()
        assert span.name == "isoenv.execute"
        assert span.attributes[ATTR_COMMAND] == "sh -c exit 3"
        assert span.attributes[ATTR_EXIT_STATUS] == result.exit_status == 3
        assert span.attributes[ATTR_TIMED_OUT] is False
        assert isinstance(span.attributes[ATTR_PID], int)


class TestEnvironmentSpans:
    def test_close_span_records_workspace(self) -> None:
        from isoenv.runtime.environment import IsolatedEnvironment

        tracer, exporter = _in_memory_tracer()
        env = IsolatedEnvironment(tracer=tracer)
        root = str(env.root)

        env.close()

        (span,) = exporter.get_finished_spans()
        assert span.name == "isoenv.close"
        assert span.attributes[ATTR_WORKSPACE] == root
