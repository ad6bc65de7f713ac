"""
Typed views over the server's payloads.

``from_api`` constructors raise :class:`PayloadDecodeError` when the payload as a
whole does not have the expected shape; the error discriminator relies on that
to tell success bodies from rejection bodies.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

from comfylink.client.graph import WorkflowGraph

JsonDict = Dict[str, Any]

TERMINAL_KINDS = frozenset({"execution_success", "execution_error", "execution_interrupted"})


class PayloadDecodeError(ValueError):
    """A payload does not match the schema it was decoded against."""


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise PayloadDecodeError(f"{what} is not an object")
    return value


@dataclass(frozen=True)
class DataOutput:
    """Reference to an artifact stored on the server; content is fetched separately."""

    filename: str
    subfolder: str = ""
    type: str = "output"

    @classmethod
    def from_api(cls, data: Any) -> "DataOutput":
        payload = _require_mapping(data, "output reference")
        filename = payload.get("filename")
        if not isinstance(filename, str):
            raise PayloadDecodeError("output reference has no filename")
        return cls(
            filename=filename,
            subfolder=str(payload.get("subfolder") or ""),
            type=str(payload.get("type") or "output"),
        )

    def to_query(self) -> Dict[str, str]:
        return {"filename": self.filename, "subfolder": self.subfolder, "type": self.type}


@dataclass(frozen=True)
class SubmitAccepted:
    """Success body of a job submission."""

    prompt_id: str
    number: int
    node_errors: JsonDict

    @classmethod
    def from_api(cls, data: Any) -> "SubmitAccepted":
        payload = _require_mapping(data, "submission response")
        prompt_id = payload.get("prompt_id")
        if not isinstance(prompt_id, str) or not prompt_id:
            raise PayloadDecodeError("submission response has no prompt_id")
        number = payload.get("number", 0)
        if isinstance(number, bool) or not isinstance(number, int):
            raise PayloadDecodeError("submission response number is not an integer")
        node_errors = payload.get("node_errors") or {}
        if not isinstance(node_errors, Mapping):
            raise PayloadDecodeError("submission response node_errors is not an object")
        return cls(prompt_id=prompt_id, number=number, node_errors=dict(node_errors))


@dataclass(frozen=True)
class RejectionPayload:
    """Structured refusal: an error object plus optional per-node errors."""

    type: str
    message: str
    details: str
    extra_info: JsonDict
    node_errors: JsonDict

    @classmethod
    def from_api(cls, data: Any) -> "RejectionPayload":
        payload = _require_mapping(data, "rejection")
        error = _require_mapping(payload.get("error"), "rejection error")
        message = error.get("message")
        if not isinstance(message, str):
            raise PayloadDecodeError("rejection error has no message")
        node_errors = payload.get("node_errors") or {}
        if isinstance(node_errors, list):
            node_errors = {str(index): item for index, item in enumerate(node_errors)}
        if not isinstance(node_errors, Mapping):
            raise PayloadDecodeError("rejection node_errors is not an object")
        extra_info = error.get("extra_info") or {}
        return cls(
            type=str(error.get("type") or ""),
            message=message,
            details=str(error.get("details") or ""),
            extra_info=dict(extra_info) if isinstance(extra_info, Mapping) else {},
            node_errors=dict(node_errors),
        )


@dataclass
class JobNotification:
    """One push-channel message routed to a job."""

    job_id: str
    kind: str
    data: JsonDict
    raw: Any = None
    image: Optional[bytes] = None
    image_format: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        if self.kind in TERMINAL_KINDS:
            return True
        return self.kind == "executing" and "node" in self.data and self.data["node"] is None

    @property
    def node(self) -> Optional[str]:
        node = self.data.get("node")
        return None if node is None else str(node)


@dataclass(eq=False)
class JobRecord:
    """
    A submitted job as seen by the caller.

    ``messages`` is the job's sink: the push dispatcher puts every notification
    for ``job_id`` on it in server order. ``release()`` drops the registry entry
    so no further notifications are routed here.
    """

    job_id: str
    number: int
    graph: WorkflowGraph
    node_errors: JsonDict = field(default_factory=dict)
    messages: "asyncio.Queue[JobNotification]" = field(default_factory=asyncio.Queue)
    completed: asyncio.Event = field(default_factory=asyncio.Event)
    created_at: float = field(default_factory=time.time)
    _on_release: Optional[Callable[[str], None]] = field(default=None, repr=False, compare=False)

    def deliver(self, notification: JobNotification) -> None:
        """Called by the dispatcher; never blocks."""
        self.messages.put_nowait(notification)
        if notification.is_terminal:
            self.completed.set()

    @property
    def is_complete(self) -> bool:
        return self.completed.is_set()

    async def notifications(self) -> AsyncIterator[JobNotification]:
        """Yield notifications until (and including) the terminal one."""
        while True:
            notification = await self.messages.get()
            yield notification
            if notification.is_terminal:
                return

    async def wait_complete(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self.completed.wait(), timeout=timeout)

    def release(self) -> None:
        if self._on_release is not None:
            self._on_release(self.job_id)
            self._on_release = None


@dataclass
class HistoryRecord:
    """A past job rebuilt from the server's history."""

    job_id: str
    ordinal: int
    graph: Optional[WorkflowGraph]
    outputs: Dict[int, List[DataOutput]] = field(default_factory=dict)
    status: Optional[JsonDict] = None
    graph_error: Optional[str] = None

    @property
    def images(self) -> List[DataOutput]:
        return [output for node_id in sorted(self.outputs) for output in self.outputs[node_id]]


@dataclass(frozen=True)
class SystemStats:
    system: JsonDict
    devices: List[JsonDict]

    @classmethod
    def from_api(cls, data: Any) -> "SystemStats":
        payload = _require_mapping(data, "system stats")
        system = _require_mapping(payload.get("system") or {}, "system stats system")
        devices = payload.get("devices") or []
        if not isinstance(devices, list):
            raise PayloadDecodeError("system stats devices is not a list")
        return cls(
            system=dict(system),
            devices=[dict(_require_mapping(device, "system stats device")) for device in devices],
        )


@dataclass(frozen=True)
class QueueState:
    """Queue snapshot: remaining count and, when available, the entries themselves."""

    queue_remaining: int
    running: List[Any] = field(default_factory=list)
    pending: List[Any] = field(default_factory=list)

    @classmethod
    def from_exec_info(cls, data: Any) -> "QueueState":
        payload = _require_mapping(data, "queue info")
        exec_info = _require_mapping(payload.get("exec_info"), "queue exec_info")
        remaining = exec_info.get("queue_remaining")
        if isinstance(remaining, bool) or not isinstance(remaining, int):
            raise PayloadDecodeError("queue_remaining is not an integer")
        return cls(queue_remaining=remaining)

    @classmethod
    def from_queue(cls, data: Any) -> "QueueState":
        payload = _require_mapping(data, "queue")
        running = payload.get("queue_running") or []
        pending = payload.get("queue_pending") or []
        if not isinstance(running, list) or not isinstance(pending, list):
            raise PayloadDecodeError("queue entries are not lists")
        return cls(queue_remaining=len(running) + len(pending), running=running, pending=pending)
