"""
Workflow-server client.

``submit`` is the only place jobs enter the registry, and it does so with the
push dispatcher paused: the server can announce a job on the push channel
before the submission response (and therefore the job id) reaches us, and
those early notifications must wait in the dispatcher's inbox until the job
is registered.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from comfylink.client.config import ServerConfig, resolve_server_config
from comfylink.client.decoding import decode_json, decode_submission
from comfylink.client.dispatcher import PushDispatcher, StatusCallback
from comfylink.client.errors import HistoryDecodeError, ServerConnectionError, ServerResponseError
from comfylink.client.graph import WorkflowGraph
from comfylink.client.history import order_by_ordinal, reconstruct_history
from comfylink.client.models import (
    DataOutput,
    HistoryRecord,
    JobRecord,
    PayloadDecodeError,
    QueueState,
    SystemStats,
)
from comfylink.client.registry import JobRegistry
from comfylink.client.transport import HttpTransport
from comfylink.utils.logging import ContextKeys, LoggerFactory

logger = LoggerFactory.get_logger("client")

JsonDict = Dict[str, Any]
JSON_HEADERS = {"Content-Type": "application/json"}


def _string_list(data: Any) -> List[str]:
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise PayloadDecodeError("expected a list of strings")
    return list(data)


def _json_object(data: Any) -> JsonDict:
    if not isinstance(data, dict):
        raise PayloadDecodeError("expected an object")
    return data


class ComfyClient:
    """One session against a workflow server: HTTP requests plus the push channel."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        *,
        transport: Optional[HttpTransport] = None,
        registry: Optional[JobRegistry] = None,
        dispatcher: Optional[PushDispatcher] = None,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        self.config = config if config is not None else resolve_server_config()
        if registry is None:
            registry = JobRegistry(max_entries=self.config.registry_max_entries)
        self.registry = registry
        if transport is None:
            transport = HttpTransport(self.config.base_url, timeout=self.config.request_timeout)
        self.transport = transport
        if dispatcher is None:
            dispatcher = PushDispatcher(
                self.config.session_websocket_url,
                self.registry,
                status_callback=status_callback,
            )
        self.dispatcher = dispatcher

    @property
    def client_id(self) -> str:
        return self.config.client_id

    async def connect(self) -> None:
        await self.dispatcher.connect()

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.transport.close()

    async def __aenter__(self) -> "ComfyClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def check_connection(self, operation: str) -> None:
        if not self.dispatcher.is_connected:
            raise ServerConnectionError(
                "Push channel is not connected",
                operation=operation,
                websocket_url=self.dispatcher.websocket_url,
            )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def build_submission(self, graph: WorkflowGraph) -> JsonDict:
        """Request body for ``graph``, tagged with this client's session id."""
        return {
            "client_id": self.client_id,
            "prompt": graph.to_prompt(),
            "extra_data": {"extra_pnginfo": graph.to_extra_pnginfo()},
        }

    async def submit(self, graph: WorkflowGraph) -> JobRecord:
        """Queue ``graph`` and return its live record, registered before routing resumes."""
        self.check_connection("submit")
        body = self.build_submission(graph)

        with logger.performance_timer("submit"):
            async with self.dispatcher.paused():
                response = await self.transport.request(
                    "POST", "prompt", headers=JSON_HEADERS, json_body=body
                )
                accepted = decode_submission(response.text)
                record = JobRecord(
                    job_id=accepted.prompt_id,
                    number=accepted.number,
                    graph=graph,
                    node_errors=accepted.node_errors,
                )
                self.registry.insert(record.job_id, record)

        logger.info(
            "Job queued",
            extra_context={
                ContextKeys.JOB_ID: record.job_id,
                ContextKeys.CLIENT_ID: self.client_id,
                "number": record.number,
                "nodes": len(graph),
            },
        )
        return record

    async def interrupt(self) -> None:
        await self._post_discarding("interrupt", {})

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def fetch_history(self, max_items: Optional[int] = None) -> Dict[str, HistoryRecord]:
        """All history entries keyed by job id; any positional-contract violation fails the call."""
        params = {"max_items": str(max_items)} if max_items is not None else None
        with logger.operation_context("fetch_history") as op_logger:
            payload = await self._get_json("history", _json_object, params=params)
            records = reconstruct_history(payload)
            op_logger.debug("History reconstructed", extra_context={"count": len(records)})
        return records

    async def fetch_history_ordered(self, max_items: Optional[int] = None) -> List[HistoryRecord]:
        """History as a list sorted by ordinal; the server does not keep ordinals dense."""
        return order_by_ordinal(await self.fetch_history(max_items=max_items))

    async def fetch_history_item(self, job_id: str) -> Optional[HistoryRecord]:
        payload = await self._get_json(f"history/{job_id}", _json_object)
        records = reconstruct_history(payload)
        if not records:
            return None
        if job_id not in records:
            raise HistoryDecodeError(
                f"history response for {job_id} does not contain that job", job_id=job_id
            )
        return records[job_id]

    async def clear_history(self) -> None:
        await self._post_discarding("history", {"clear": True})

    async def delete_history_item(self, job_id: str) -> None:
        await self._post_discarding("history", {"delete": [job_id]})

    # ------------------------------------------------------------------
    # Read-only endpoints
    # ------------------------------------------------------------------

    async def fetch_artifact(self, output: DataOutput) -> bytes:
        response = await self.transport.request("GET", "view", params=output.to_query())
        self._raise_for_status(response, "view")
        return response.content

    async def get_system_stats(self) -> SystemStats:
        self.check_connection("get_system_stats")
        return await self._get_json("system_stats", SystemStats.from_api)

    async def get_embeddings(self) -> List[str]:
        return await self._get_json("embeddings", _string_list)

    async def get_extensions(self) -> List[str]:
        return await self._get_json("extensions", _string_list)

    async def get_object_info(self, node_class: Optional[str] = None) -> JsonDict:
        path = f"object_info/{node_class}" if node_class else "object_info"
        return await self._get_json(path, _json_object)

    async def get_queue_info(self) -> QueueState:
        return await self._get_json("prompt", QueueState.from_exec_info)

    async def get_queue(self) -> QueueState:
        return await self._get_json("queue", QueueState.from_queue)

    async def get_view_metadata(self, folder: str, filename: str) -> str:
        response = await self.transport.request(
            "GET", f"view_metadata/{folder}", params={"filename": filename}
        )
        self._raise_for_status(response, "view_metadata")
        return response.text

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_json(self, path: str, schema, *, params: Optional[Dict[str, str]] = None):
        response = await self.transport.request("GET", path, params=params)
        self._raise_for_status(response, path)
        return decode_json(response.text, schema, operation=f"GET {path}")

    async def _post_discarding(self, path: str, body: JsonDict) -> None:
        response = await self.transport.request("POST", path, headers=JSON_HEADERS, json_body=body)
        self._raise_for_status(response, path)

    @staticmethod
    def _raise_for_status(response: httpx.Response, endpoint: str) -> None:
        if response.status_code >= 400:
            raise ServerResponseError(
                f"{endpoint} returned HTTP {response.status_code}",
                http_status=response.status_code,
                endpoint=endpoint,
            )
