"""Structured logging for the AGITS kernel.

Components log dot-namespaced events with keyword context:

    from agits_kernel.core.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("patterns.engine")
    logger.info("detection.started", data_points=12)

Loggers are usable before ``configure_logging`` is called; structlog's
defaults apply until then.
"""

import logging
import sys
from typing import Any, Dict, Literal

import structlog


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    include_timestamps: bool = True,
) -> None:
    """Configure structlog once at startup.

    Args:
        level: Minimum log level to emit.
        format: "json" for machine-readable lines, "console" for humans.
        include_timestamps: Whether to add ISO8601 timestamps.
    """
    log_level = getattr(logging, level)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]
    if include_timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if format == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


class KernelLogger:
    """Component-bound logger that resolves structlog's configuration on every call.

    Module-level loggers are created at import time, usually before
    ``configure_logging`` runs, so nothing is bound eagerly.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._context: Dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> Any:
        return structlog.get_logger().bind(**self._context)

    def bind(self, **context: Any) -> "KernelLogger":
        """A new logger carrying additional context."""
        bound = KernelLogger.__new__(KernelLogger)
        bound._context = {**self._context, **context}
        return bound

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)


def get_logger(component: str, **initial_context: Any) -> KernelLogger:
    """Get a logger bound to a component name (e.g. "patterns.engine")."""
    return KernelLogger(component, **initial_context)


__all__ = ["KernelLogger", "configure_logging", "get_logger"]
