"""
Observability for toolflow: structured logs, OpenTelemetry spans and metrics.

    >>> from toolflow.observability import get_logger, setup_logging
    >>> setup_logging("DEBUG")
    >>> logger = get_logger(__name__)
    >>> logger.info("Flow started", steps=3)

Environment variables:
    - TOOLFLOW_OBSERVABILITY__LOG_LEVEL=INFO
    - TOOLFLOW_OBSERVABILITY__ENABLE_TRACING=true
    - TOOLFLOW_OBSERVABILITY__OTLP_ENDPOINT=http://...
"""

from .logging import get_logger, get_run_id, set_run_id, setup_logging
from .metrics import get_flow_metrics, get_metrics_collector, setup_metrics
from .tracing import get_tracing_manager, setup_tracing, trace_span

__all__ = [
    "get_logger",
    "setup_logging",
    "get_run_id",
    "set_run_id",
    "get_flow_metrics",
    "get_metrics_collector",
    "setup_metrics",
    "get_tracing_manager",
    "setup_tracing",
    "trace_span",
]
