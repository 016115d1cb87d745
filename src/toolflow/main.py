"""
Startup helpers and a small command line entry point.
"""

import argparse
import json

from . import __version__
from .config.settings import Settings, get_settings
from .observability.logging import get_logger, setup_logging
from .observability.tracing import setup_tracing

logger = get_logger(__name__)


def configure_observability(settings: Settings | None = None) -> Settings:
    """Apply logging and tracing settings; call once at process start."""
    settings = settings or get_settings()
    observability = settings.observability

    setup_logging(observability.log_level)
    if observability.enable_tracing:
        setup_tracing(observability.service_name, observability.otlp_endpoint)

    logger.info(
        "Observability configured",
        log_level=observability.log_level,
        tracing=observability.enable_tracing,
        metrics=observability.enable_metrics,
    )
    return settings


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="toolflow", description="toolflow utilities")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument(
        "--show-config", action="store_true", help="Print the effective settings as JSON"
    )
    args = parser.parse_args(argv)

    if args.version:
        print(f"toolflow {__version__}")
        return 0

    settings = get_settings()
    if args.show_config:
        data = settings.model_dump(mode="json")
        if data["service"].get("api_key"):
            data["service"]["api_key"] = "***"
        print(json.dumps(data, indent=2))
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
