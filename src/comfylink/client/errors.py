"""
Client-side error taxonomy.

Every failure surfaced by :class:`comfylink.client.ComfyClient` is one of these,
built on the shared :class:`ComfyLinkError` so callers get the same structured
context (category, severity, user message) as the rest of the package.
"""

from typing import Any, Dict, Optional

from comfylink.utils.errors import (
    ComfyLinkError,
    ErrorCategory,
    ErrorSeverity,
    SerializationError,
)

RAW_BODY_PREVIEW = 2000


class ClientError(ComfyLinkError):
    """Base exception for workflow-server client errors."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.RUNTIME,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        help_text: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=category,
            severity=severity,
            operation=operation,
            component="client",
            context=context or {},
            user_message=user_message,
            help_text=help_text,
            error_code=error_code,
        )


class ServerConnectionError(ClientError):
    """The pre-flight connectivity check failed; nothing was sent."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        websocket_url: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            operation=operation,
            context={"websocket_url": websocket_url} if websocket_url else None,
            user_message="Not connected to the workflow server",
            help_text="Call connect() first and check that the server is reachable",
            error_code="NET001",
        )


class TransportError(ClientError):
    """Issuing the HTTP request failed at the network level."""

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        url: Optional[str] = None,
    ):
        context: Dict[str, Any] = {}
        if method:
            context["method"] = method
        if url:
            context["url"] = url
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            context=context,
            user_message="Request to the workflow server failed",
            error_code="NET002",
        )


class ServerResponseError(ClientError):
    """The server answered a simple request with an error status."""

    def __init__(
        self,
        message: str,
        *,
        http_status: int,
        endpoint: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            context={"http_status": http_status, "endpoint": endpoint},
            user_message=f"Workflow server returned HTTP {http_status}",
            error_code="NET003",
        )
        self.http_status = http_status


class MalformedResponseError(ClientError):
    """Response body matched none of the schemas expected for the endpoint."""

    def __init__(
        self,
        message: str,
        *,
        raw_body: str,
        decode_error: Optional[Exception] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.EXTERNAL,
            operation=operation,
            context={
                "raw_body": raw_body[:RAW_BODY_PREVIEW],
                "decode_error": str(decode_error) if decode_error else None,
            },
            user_message="Unexpected response from the workflow server",
            help_text="Check that the client and server versions are compatible",
            error_code="RSP001",
        )
        self.raw_body = raw_body
        self.decode_error = decode_error


class JobRejectedError(ClientError):
    """The server explicitly refused a submitted job."""

    def __init__(
        self,
        message: str,
        *,
        error_type: Optional[str] = None,
        details: Optional[str] = None,
        node_errors: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.WARNING,
            operation="submit",
            context={"error_type": error_type, "node_errors": node_errors or {}},
            user_message=message,
            error_code="JOB001",
        )
        self.error_type = error_type
        self.details = details
        self.node_errors = node_errors or {}

    def __str__(self) -> str:
        return self.message


class DuplicateJobError(ClientError):
    """The server issued a job id that is already registered."""

    def __init__(self, job_id: str):
        super().__init__(
            f"job {job_id} is already registered",
            category=ErrorCategory.EXTERNAL,
            operation="submit",
            context={"job_id": job_id},
            user_message="The server returned a job id that is already being tracked",
            error_code="JOB002",
        )
        self.job_id = job_id


class HistoryDecodeError(ClientError):
    """A history entry violated the positional wire contract."""

    def __init__(self, message: str, *, job_id: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.EXTERNAL,
            operation="fetch_history",
            context={"job_id": job_id} if job_id else None,
            user_message="Could not decode the server's job history",
            help_text="The server's history format may have changed; upgrade comfylink",
            error_code="HIS001",
        )
        self.job_id = job_id


class GraphDecodeError(SerializationError):
    """A serialized document is not a workflow graph."""

    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message, operation="decode_graph", data_type="workflow_graph")
        if path:
            self.context["path"] = path
