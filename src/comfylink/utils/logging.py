"""
Structured logging for comfylink.

Thin structlog wrapper that gives every component a named logger with keyword
context, scoped operation timing, and a single place to configure renderers.
"""

import logging
import logging.config
import structlog
from typing import Any, Dict, Iterator, Optional, List
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from contextlib import contextmanager
import time


class LogFormat(str, Enum):
    """Log output formats."""

    STRUCTURED = "structured"
    SIMPLE = "simple"
    JSON = "json"
    CONSOLE = "console"


class ContextKeys:
    """Standard context keys for structured logging."""

    COMPONENT = "component"
    OPERATION = "operation"
    JOB_ID = "job_id"
    CLIENT_ID = "client_id"
    DURATION_MS = "duration_ms"
    ERROR_TYPE = "error_type"


class StructuredLogger:
    """
    Component logger carrying base context into every entry.

    Context passed through ``extra_context`` is merged on top of the
    component's base context.
    """

    def __init__(
        self,
        component: str,
        *,
        logger_name: Optional[str] = None,
        base_context: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize structured logger for component.

        Args:
            component: Component name (e.g., "client", "dispatcher", "cli")
            logger_name: Optional logger name (defaults to comfylink.<component>)
            base_context: Base context added to all log messages
        """
        self.component = component
        self.logger_name = logger_name or f"comfylink.{component}"
        self.base_context = dict(base_context or {})
        self._logger = structlog.get_logger(self.logger_name)

        self.base_context[ContextKeys.COMPONENT] = component

    def _log_with_context(
        self,
        level: str,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
    ) -> None:
        # Skip context building when the stdlib level filters this out
        log_level = getattr(logging, level.upper(), None)
        if isinstance(log_level, int):
            if logging.getLogger(self.logger_name).getEffectiveLevel() > log_level:
                return

        context = self.base_context.copy()

        if extra_context:
            context.update(extra_context)

        if exception:
            context.update(
                {
                    ContextKeys.ERROR_TYPE: type(exception).__name__,
                    "error_message": str(exception),
                }
            )

        context["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_method = getattr(self._logger, level.lower())
        log_method(message, **context)

    def debug(self, message: str, *, extra_context: Optional[Dict[str, Any]] = None) -> None:
        """Log debug message."""
        self._log_with_context("DEBUG", message, extra_context=extra_context)

    def info(self, message: str, *, extra_context: Optional[Dict[str, Any]] = None) -> None:
        """Log info message."""
        self._log_with_context("INFO", message, extra_context=extra_context)

    def warning(
        self,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
    ) -> None:
        """Log warning message."""
        self._log_with_context(
            "WARNING", message, extra_context=extra_context, exception=exception
        )

    def error(
        self,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
    ) -> None:
        """Log error message."""
        self._log_with_context(
            "ERROR", message, extra_context=extra_context, exception=exception
        )

    def with_context(self, **context: Any) -> "ContextualLogger":
        """Create a logger that adds ``context`` to every entry."""
        return ContextualLogger(self, context)

    @contextmanager
    def performance_timer(self, operation: str, *, threshold_ms: Optional[float] = None) -> Iterator[None]:
        """Log the wall time of the block at debug level, optionally only above ``threshold_ms``."""
        started = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            if threshold_ms is None or duration_ms >= threshold_ms:
                self.debug(
                    f"Operation '{operation}' completed",
                    extra_context={
                        ContextKeys.OPERATION: operation,
                        ContextKeys.DURATION_MS: round(duration_ms, 2),
                    },
                )

    @contextmanager
    def operation_context(self, operation: str, **additional_context: Any) -> Iterator["ContextualLogger"]:
        """
        Scope a block as ``operation``.

        Yields a logger carrying the operation name; failures are logged with
        their duration and re-raised.
        """
        started = time.perf_counter()
        op_logger = self.with_context(**{ContextKeys.OPERATION: operation}, **additional_context)
        op_logger.debug(f"Starting operation: {operation}")

        try:
            yield op_logger
        except Exception as e:
            op_logger.error(
                f"Operation '{operation}' failed",
                extra_context={ContextKeys.DURATION_MS: _elapsed_ms(started)},
                exception=e,
            )
            raise
        op_logger.debug(
            f"Operation '{operation}' completed",
            extra_context={ContextKeys.DURATION_MS: _elapsed_ms(started)},
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class ContextualLogger:
    """Logger wrapper that adds fixed context to every entry."""

    def __init__(self, base_logger: StructuredLogger, context: Dict[str, Any]):
        self.base_logger = base_logger
        self.context = context

    def _merge(self, extra_context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = self.context.copy()
        if extra_context:
            merged.update(extra_context)
        return merged

    def debug(self, message: str, *, extra_context: Optional[Dict[str, Any]] = None) -> None:
        self.base_logger.debug(message, extra_context=self._merge(extra_context))

    def error(
        self,
        message: str,
        *,
        extra_context: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
    ) -> None:
        self.base_logger.error(
            message, extra_context=self._merge(extra_context), exception=exception
        )


_LINE_FORMATS = {
    LogFormat.STRUCTURED: "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    LogFormat.SIMPLE: "%(levelname)s: %(message)s",
    LogFormat.JSON: "%(message)s",
    LogFormat.CONSOLE: "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
}


class LoggerFactory:
    """Process-wide logging configuration and the per-component logger cache."""

    _loggers: Dict[str, StructuredLogger] = {}
    _configured: bool = False

    @classmethod
    def configure_logging(
        cls,
        level: str = "INFO",
        format_type: str = LogFormat.STRUCTURED.value,
        enable_console: bool = True,
    ) -> None:
        """
        Configure structlog and the stdlib root logger.

        Args:
            level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            format_type: One of :class:`LogFormat`'s values
            enable_console: Attach a stderr handler to the root logger

        Raises:
            ValueError: ``level`` or ``format_type`` is not recognised
        """
        level = level.upper()
        numeric_level = logging.getLevelName(level)
        if not isinstance(numeric_level, int):
            raise ValueError(f"Unknown log level: {level}")
        log_format = LogFormat(format_type)

        # structlog processor signatures vary; Any keeps the list homogeneous
        processors: List[Any] = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
        ]
        if log_format is LogFormat.JSON:
            processors.append(structlog.processors.JSONRenderer())
        elif log_format is LogFormat.CONSOLE:
            processors.append(structlog.dev.ConsoleRenderer(colors=True))
        else:
            processors.append(structlog.processors.KeyValueRenderer())

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        logging_config: Dict[str, Any] = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": _LINE_FORMATS[log_format]}},
            "handlers": {},
            "root": {"level": level, "handlers": []},
        }
        if enable_console:
            logging_config["handlers"]["console"] = {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
                "stream": "ext://sys.stderr",
            }
            logging_config["root"]["handlers"].append("console")

        logging.config.dictConfig(logging_config)
        cls._configured = True

    @classmethod
    def get_logger(
        cls,
        component: str,
        *,
        logger_name: Optional[str] = None,
        base_context: Optional[Dict[str, Any]] = None,
    ) -> StructuredLogger:
        """Return the cached logger for ``component``, creating it on first use."""
        cache_key = f"{component}:{logger_name or component}"
        if cache_key not in cls._loggers:
            cls._loggers[cache_key] = StructuredLogger(
                component, logger_name=logger_name, base_context=base_context
            )
        return cls._loggers[cache_key]


@lru_cache()
def get_cli_logger() -> StructuredLogger:
    """Get CLI component logger."""
    return LoggerFactory.get_logger("cli")
