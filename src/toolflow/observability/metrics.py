"""
Flow metrics over an OpenTelemetry meter, plus an in-process summary.

The OTel instruments feed whatever exporter the host application configures;
the summary kept alongside them is what get_flow_metrics() returns and what
tests assert on.
"""

from collections import defaultdict
from typing import Any

from opentelemetry.metrics import Counter as OTelCounter
from opentelemetry.metrics import Histogram, Meter, NoOpMeter

from .logging import get_logger

logger = get_logger(__name__)


class MetricsCollector:
    """Counts attempts, retries, failures, issues and tokens per step."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, OTelCounter] = {}
        self._histograms: dict[str, Histogram] = {}

        self._runs = defaultdict(int)
        self._attempts = defaultdict(int)
        self._retries = defaultdict(int)
        self._failures = defaultdict(int)
        self._issues = defaultdict(int)
        self._tokens = defaultdict(int)
        self._run_durations: list[float] = []

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        self._counters["flow_runs_total"] = self.meter.create_counter(
            "toolflow_flow_runs_total", description="Total flow runs", unit="1"
        )
        self._counters["step_attempts_total"] = self.meter.create_counter(
            "toolflow_step_attempts_total", description="Total step attempts", unit="1"
        )
        self._counters["step_retries_total"] = self.meter.create_counter(
            "toolflow_step_retries_total", description="Total step retries", unit="1"
        )
        self._counters["step_failures_total"] = self.meter.create_counter(
            "toolflow_step_failures_total",
            description="Steps that exhausted their retries",
            unit="1",
        )
        self._counters["issues_total"] = self.meter.create_counter(
            "toolflow_issues_total", description="Issues reported by audits", unit="1"
        )
        self._counters["tokens_total"] = self.meter.create_counter(
            "toolflow_tokens_total", description="Tokens reported by the tool service", unit="1"
        )
        self._histograms["flow_duration"] = self.meter.create_histogram(
            "toolflow_flow_duration_seconds", description="Flow run duration", unit="s"
        )
        self._histograms["attempt_duration"] = self.meter.create_histogram(
            "toolflow_attempt_duration_seconds", description="Step attempt duration", unit="s"
        )

    def record_attempt(self, step_name: str, duration: float, passed: bool):
        attributes = {"step": step_name, "passed": str(passed).lower()}
        self._counters["step_attempts_total"].add(1, attributes)
        self._histograms["attempt_duration"].record(duration, attributes)
        self._attempts[step_name] += 1

    def record_retry(self, step_name: str):
        self._counters["step_retries_total"].add(1, {"step": step_name})
        self._retries[step_name] += 1

    def record_failure(self, step_name: str):
        self._counters["step_failures_total"].add(1, {"step": step_name})
        self._failures[step_name] += 1

    def record_issue(self, step_name: str, severity: str):
        self._counters["issues_total"].add(1, {"step": step_name, "severity": severity})
        self._issues[severity] += 1

    def record_tokens(self, step_name: str, prompt_tokens: int, completion_tokens: int):
        for kind, count in (("prompt", prompt_tokens), ("completion", completion_tokens)):
            if count:
                self._counters["tokens_total"].add(count, {"step": step_name, "kind": kind})
                self._tokens[kind] += count

    def record_run(self, duration: float, passed: bool, halted: bool):
        attributes = {"passed": str(passed).lower(), "halted": str(halted).lower()}
        self._counters["flow_runs_total"].add(1, attributes)
        self._histograms["flow_duration"].record(duration, attributes)
        self._runs["passed" if passed else "failed"] += 1
        self._run_durations.append(duration)

    def get_flow_metrics(self) -> dict[str, Any]:
        """Aggregated counts since this collector was created."""
        durations = self._run_durations
        return {
            "runs": dict(self._runs),
            "attempts": dict(self._attempts),
            "retries": dict(self._retries),
            "failures": dict(self._failures),
            "issues_by_severity": dict(self._issues),
            "tokens": dict(self._tokens),
            "avg_run_duration": sum(durations) / len(durations) if durations else 0.0,
        }


_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter) -> MetricsCollector:
    """Install a global metrics collector over the given meter."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter)
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Global metrics collector, backed by a no-op meter until setup_metrics() runs."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(NoOpMeter("toolflow"))
    return _metrics_collector


def reset_metrics() -> None:
    global _metrics_collector
    _metrics_collector = None


def get_flow_metrics() -> dict[str, Any]:
    return get_metrics_collector().get_flow_metrics()
