"""
Tests for structured logging, tracing, metrics and the command line entry point.
"""

import asyncio
import io
import json
import logging

import pytest
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from toolflow import __version__
from toolflow.config.settings import ObservabilityConfig, Settings
from toolflow.core.audit import FunctionAudit
from toolflow.core.flow import ToolFlow
from toolflow.core.issues import Issue, IssueSeverity
from toolflow.core.outputs import ToolOutput
from toolflow.core.step_config import StepConfig
from toolflow.core.steps import ToolCallStep
from toolflow.main import configure_observability, main
from toolflow.observability.logging import (
    StructuredFormatter,
    get_logger,
    get_run_id,
    set_run_id,
)
from toolflow.observability.metrics import (
    get_flow_metrics,
    get_metrics_collector,
    reset_metrics,
)
from toolflow.observability.tracing import (
    add_span_attributes,
    get_tracing_manager,
    setup_tracing,
    trace_span,
)
from toolflow.services.mock import MockToolService


@pytest.fixture
def log_stream():
    """Capture one logger's output through the structured formatter."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    target = logging.getLogger("toolflow.tests.observability")
    target.addHandler(handler)
    target.setLevel(logging.DEBUG)
    yield stream
    target.removeHandler(handler)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def span_exporter():
    manager = setup_tracing("toolflow-test")
    exporter = InMemorySpanExporter()
    manager.tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


class TestStructuredLogging:
    """Test the key=value line format."""

    def test_line_contains_run_id_and_fields(self, log_stream):
        set_run_id("run42")
        get_logger("toolflow.tests.observability").info("Step passed", step="draft", round=1)

        line = log_stream.getvalue().strip()
        assert "level=INFO" in line
        assert "run=run42" in line
        assert "mod=observability" in line
        assert 'msg="Step passed"' in line
        assert "step=draft" in line
        assert "round=1" in line

    def test_missing_run_id_renders_dash(self, log_stream):
        get_logger("toolflow.tests.observability").warning("No run")

        assert "run=-" in log_stream.getvalue()

    def test_timed(self, log_stream):
        get_logger("toolflow.tests.observability").timed("Flow finished", 12.345)

        assert "ms=12.3" in log_stream.getvalue()

    def test_reserved_keys_are_dropped(self, log_stream):
        get_logger("toolflow.tests.observability").info("Reserved", name="clash", step="x")

        assert "step=x" in log_stream.getvalue()

    def test_exception_text_is_appended(self, log_stream):
        logger = get_logger("toolflow.tests.observability")
        try:
            raise ValueError("bad value")
        except ValueError:
            logger.exception("Failed")

        output = log_stream.getvalue()
        assert "level=ERROR" in output
        assert "ValueError: bad value" in output

    def test_get_logger_is_cached(self):
        assert get_logger("toolflow.x") is get_logger("toolflow.x")

    def test_run_id_context(self):
        assert get_run_id() is None
        set_run_id("abc")
        assert get_run_id() == "abc"


class TestTracing:
    """Test spans produced by the decorator."""

    def test_noop_by_default(self):
        manager = get_tracing_manager()

        assert not manager.initialized

        @trace_span("noop")
        def work():
            return 7

        assert work() == 7

    @pytest.mark.asyncio
    async def test_async_span_records_attributes(self, span_exporter):
        @trace_span("unit.work", {"component": "test"})
        async def work():
            add_span_attributes(step="draft")
            await asyncio.sleep(0)
            return "done"

        assert await work() == "done"

        [span] = span_exporter.get_finished_spans()
        assert span.name == "unit.work"
        assert span.attributes["component"] == "test"
        assert span.attributes["step"] == "draft"
        assert span.status.status_code == StatusCode.OK

    def test_sync_span_records_exception(self, span_exporter):
        @trace_span("unit.fail")
        def fail():
            raise RuntimeError("broken")

        with pytest.raises(RuntimeError):
            fail()

        [span] = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert [e.name for e in span.events] == ["exception"]

    @pytest.mark.asyncio
    async def test_flow_run_span_records_retries(self, span_exporter, settings, registry):
        registry.register("draft", ToolOutput)
        strict = FunctionAudit(
            "strict",
            lambda output: [Issue(id="nope", severity=IssueSeverity.HIGH, description="nope")],
            passed=lambda issues: not issues,
        )
        flow = ToolFlow(
            [ToolCallStep("draft", config=StepConfig(audits=[strict], max_retries=1))],
            MockToolService({"draft": {"text": "x"}}),
            registry=registry,
            settings=settings,
        )

        await flow.run({})

        spans = {span.name: span for span in span_exporter.get_finished_spans()}
        run_span = spans["flow.run"]
        assert [e.name for e in run_span.events] == ["step.retry"]
        assert run_span.events[0].attributes["round"] == 0
        assert run_span.attributes["halted"] == "True"
        assert "flow.tool_call" in spans

    def test_setup_replaces_manager(self):
        first = setup_tracing("one")
        second = setup_tracing("two")

        assert get_tracing_manager() is second
        assert not first.initialized
        assert second.service_name == "two"


class TestMetrics:
    """Test the in-process metrics summary."""

    def test_summary(self):
        collector = get_metrics_collector()
        collector.record_attempt("draft", 0.1, passed=False)
        collector.record_attempt("draft", 0.1, passed=True)
        collector.record_retry("draft")
        collector.record_issue("draft", "critical")
        collector.record_tokens("draft", 10, 0)
        collector.record_run(2.0, passed=True, halted=False)
        collector.record_run(4.0, passed=False, halted=True)

        metrics = get_flow_metrics()

        assert metrics["attempts"] == {"draft": 2}
        assert metrics["retries"] == {"draft": 1}
        assert metrics["failures"] == {}
        assert metrics["issues_by_severity"] == {"critical": 1}
        assert metrics["tokens"] == {"prompt": 10}
        assert metrics["runs"] == {"passed": 1, "failed": 1}
        assert metrics["avg_run_duration"] == 3.0

    def test_reset(self):
        get_metrics_collector().record_retry("draft")
        reset_metrics()

        assert get_flow_metrics()["retries"] == {}


class TestEntryPoint:
    """Test startup helpers and the command line."""

    def test_version(self, capsys):
        assert main(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"toolflow {__version__}"

    def test_show_config_masks_api_key(self, capsys, monkeypatch):
        monkeypatch.setenv("TOOLFLOW_SERVICE__API_KEY", "sk-secret")

        assert main(["--show-config"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["service"]["api_key"] == "***"
        assert data["flow"]["default_max_retries"] == 3

    def test_help_without_arguments(self, capsys):
        assert main([]) == 0
        assert "usage: toolflow" in capsys.readouterr().out

    def test_configure_observability(self, restore_root_logger):
        settings = Settings(
            observability=ObservabilityConfig(log_level="debug", enable_tracing=True)
        )

        assert configure_observability(settings) is settings
        assert logging.getLogger().level == logging.DEBUG
        assert get_tracing_manager().initialized
        assert logging.getLogger("httpx").level == logging.WARNING
