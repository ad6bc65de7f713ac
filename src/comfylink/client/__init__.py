"""Client for a ComfyUI-style workflow execution server."""

from .client import ComfyClient  # noqa: F401
from .config import ServerConfig, resolve_server_config  # noqa: F401
from .dispatcher import PushDispatcher  # noqa: F401
from .errors import (  # noqa: F401
    ClientError,
    DuplicateJobError,
    GraphDecodeError,
    HistoryDecodeError,
    JobRejectedError,
    MalformedResponseError,
    ServerConnectionError,
    ServerResponseError,
    TransportError,
)
from .graph import NestedDocument, PromptNode, WorkflowGraph  # noqa: F401
from .models import (  # noqa: F401
    DataOutput,
    HistoryRecord,
    JobNotification,
    JobRecord,
    QueueState,
    SystemStats,
)
from .registry import JobRegistry  # noqa: F401
