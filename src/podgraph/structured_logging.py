"""
Structured logging configuration for podgraph.

Provides consistent, machine-readable events for lock-file resolution and
curation processing so that hosting systems can aggregate them.
"""

import json
import logging
import sys
from datetime import datetime, timezone

_RESERVED_ATTRIBUTES = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
        }
        message = record.getMessage()
        if message:
            log_entry["message"] = message

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRIBUTES:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Structured event logger for one podgraph component."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"podgraph.{name}")
        self._setup_logger()

    def _setup_logger(self) -> None:
        """Setup logger with structured formatting."""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **kwargs}
        getattr(self.logger, level)("", extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


# Global logger instances
_resolver_logger = StructuredLogger("resolver")
_curation_logger = StructuredLogger("curation")
_configuration_logger = StructuredLogger("configuration")

_ALL_LOGGERS = [_resolver_logger, _curation_logger, _configuration_logger]


def get_resolver_logger() -> StructuredLogger:
    """Get lock-file resolution logger."""
    return _resolver_logger


def get_curation_logger() -> StructuredLogger:
    """Get package curation logger."""
    return _curation_logger


def get_configuration_logger() -> StructuredLogger:
    """Get package configuration logger."""
    return _configuration_logger


def log_resolution_start(definition_file: str, pods_count: int, dependencies_count: int) -> None:
    """Log the start of a lock-file resolution."""
    get_resolver_logger().info(
        "resolution_started",
        definition_file=definition_file,
        pods_count=pods_count,
        dependencies_count=dependencies_count,
    )


def log_resolution_complete(definition_file: str, duration_ms: int, packages_count: int, issues_count: int) -> None:
    """Log the end of a lock-file resolution."""
    logger = get_resolver_logger()
    event = "resolution_completed_with_issues" if issues_count else "resolution_completed"
    getattr(logger, "warning" if issues_count else "info")(
        event,
        definition_file=definition_file,
        duration_ms=duration_ms,
        packages_count=packages_count,
        issues_count=issues_count,
    )


def log_curations_loaded(source_count: int, curation_count: int, failed_sources: int = 0) -> None:
    """Log the outcome of loading curation sources."""
    logger = get_curation_logger()
    log_data = {
        "source_count": source_count,
        "curation_count": curation_count,
        "failed_sources": failed_sources,
    }
    if failed_sources:
        logger.warning("curations_loaded_partially", **log_data)
    else:
        logger.info("curations_loaded", **log_data)


def log_curations_applied(package_id: str, curation_count: int) -> None:
    """Log curations folded into one package."""
    if curation_count:
        get_curation_logger().info(
            "curations_applied", package_id=package_id, curation_count=curation_count
        )


def log_configuration_match(package_id: str, provenance: str, match_count: int) -> None:
    """Log package configuration matching for one package and provenance."""
    get_configuration_logger().debug(
        "package_configuration_matched",
        package_id=package_id,
        provenance=provenance,
        match_count=match_count,
    )


def configure_logging(log_level: str = "WARNING", enable_json: bool = True) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for structured in _ALL_LOGGERS:
        structured.logger.setLevel(level)
        if not enable_json:
            for handler in structured.logger.handlers:
                handler.setFormatter(
                    logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s %(event_type)s")
                )
