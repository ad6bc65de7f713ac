"""Unified error handling for comfylink with structured context."""

from pathlib import Path
from typing import Any, Dict, NoReturn, Optional
from datetime import datetime, timezone
from enum import Enum

import typer

from comfylink.utils.logging import StructuredLogger, get_cli_logger


class ErrorSeverity(str, Enum):
    """Error severity levels for classification and handling."""

    WARNING = "warning"
    ERROR = "error"


class ErrorCategory(str, Enum):
    """Error categories for structured handling."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    RUNTIME = "runtime"
    EXTERNAL = "external"


class ComfyLinkError(Exception):
    """
    Base exception for all comfylink operations with structured context.

    Provides consistent error handling across all components with
    contextual information for debugging and user feedback.
    """

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        category: ErrorCategory = ErrorCategory.RUNTIME,
        operation: Optional[str] = None,
        component: Optional[str] = None,
        user_message: Optional[str] = None,
        help_text: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        """
        Initialize structured error.

        Args:
            message: Technical error message for developers
            context: Additional context data for debugging
            severity: Error severity level
            category: Error category for classification
            operation: Operation that failed (e.g., "submit", "fetch_history")
            component: Component where error occurred (e.g., "client", "cli")
            user_message: User-friendly error message
            help_text: Suggested resolution or help information
            error_code: Unique error code for documentation reference
        """
        super().__init__(message)

        self.message = message
        self.context = context or {}
        self.severity = severity
        self.category = category
        self.operation = operation
        self.component = component
        self.user_message = user_message or message
        self.help_text = help_text
        self.error_code = error_code
        self.exit_code: Optional[int] = None
        self.timestamp = datetime.now(timezone.utc)

        self.context.update(
            {
                "timestamp": self.timestamp.isoformat(),
                "severity": self.severity.value,
                "category": self.category.value,
            }
        )

        if self.operation:
            self.context["operation"] = self.operation
        if self.component:
            self.context["component"] = self.component

    def __str__(self) -> str:
        if self.operation and self.component:
            return f"[{self.component.upper()}] {self.operation} failed: {self.message}"
        elif self.operation:
            return f"Operation '{self.operation}' failed: {self.message}"
        return self.message

    def get_user_message(self) -> str:
        """Get user-friendly error message."""
        if self.user_message != self.message:
            return self.user_message

        if self.operation:
            return f"Failed to {self.operation}. {self.help_text if self.help_text else ''}".strip()
        return self.message

    def get_context_for_logging(self) -> Dict[str, Any]:
        """Get context information for structured logging."""
        log_context = self.context.copy()
        log_context.update(
            {
                "error_type": self.__class__.__name__,
                "error_message": self.message,
                "user_message": self.get_user_message(),
            }
        )

        if self.error_code:
            log_context["error_code"] = self.error_code
        if self.help_text:
            log_context["help_text"] = self.help_text

        return log_context


class ConfigurationError(ComfyLinkError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        *,
        config_key: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            component="config",
            category=ErrorCategory.CONFIGURATION,
            user_message=f"Invalid configuration value for '{config_key}'" if config_key else "Configuration error",
            help_text="Check the COMFYLINK_* environment variables",
            error_code="CFG001",
            **kwargs,
        )

        if config_key:
            self.context["config_key"] = config_key
        if value is not None:
            self.context["invalid_value"] = str(value)


class SerializationError(ComfyLinkError):
    """Data serialization/deserialization errors."""

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        operation: str = "deserialize",
        data_type: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            context=context,
            category=ErrorCategory.RUNTIME,
            severity=ErrorSeverity.ERROR,
            operation=operation,
            component="codec",
            user_message="Data serialization failed",
            help_text="Check data format and server compatibility",
            error_code="SER001",
            **kwargs,
        )

        if data_type:
            self.context["data_type"] = data_type


class CLIError(ComfyLinkError):
    """CLI-specific errors."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        exit_code: int = 1,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            component="cli",
            category=ErrorCategory.RUNTIME,
            **kwargs,
        )

        self.exit_code = exit_code
        if command:
            self.context["command"] = command


class CLIErrorHandler:
    """Turns exceptions into a user-facing message plus ``typer.Exit``."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or get_cli_logger()

    def handle_error(self, error: Exception, operation: str = "operation") -> NoReturn:
        """
        Report an error and exit.

        Raises:
            typer.Exit: Always exits with appropriate code
        """
        exit_code = 1

        if isinstance(error, ComfyLinkError):
            exit_code = error.exit_code or 1
            self.logger.error(
                f"CLI {operation} failed", extra_context=error.get_context_for_logging()
            )
            typer.echo(f"Error: {error.get_user_message()}", err=True)
            if error.help_text:
                typer.echo(f"Hint: {error.help_text}", err=True)
        else:
            self.logger.error(f"CLI {operation} failed", exception=error)
            typer.echo(f"Error: failed to {operation}: {error}", err=True)

        raise typer.Exit(code=exit_code)

    def validate_path_exists(self, path: Path, description: str = "Path") -> None:
        """Exit with an error if ``path`` does not exist."""
        if not path.exists():
            self.handle_error(
                CLIError(
                    f"{description} not found: {path}",
                    operation="validate_path",
                    user_message=f"{description} does not exist: {path}",
                ),
                "validate_path",
            )


cli_error_handler = CLIErrorHandler()


def handle_exception(operation: str, error: Exception) -> NoReturn:
    """Report ``error`` for ``operation`` through the global CLI handler."""
    cli_error_handler.handle_error(error, operation)
