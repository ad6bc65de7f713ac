"""Tests for the thin read-only and housekeeping endpoints."""

import json

import httpx
import pytest

from comfylink.client import ComfyClient, ServerConfig
from comfylink.client.dispatcher import PushDispatcher
from comfylink.client.errors import MalformedResponseError, ServerConnectionError, ServerResponseError
from comfylink.client.models import DataOutput
from comfylink.client.registry import JobRegistry
from comfylink.client.transport import HttpTransport

BASE_URL = "http://comfy.test:8188"


class _ConnectedDispatcher(PushDispatcher):
    is_connected = True


class _Recorder:
    """MockTransport handler that answers from a routing table and records requests."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text="404: Not Found")
        return route


def _client(recorder: _Recorder, *, connected: bool = False) -> ComfyClient:
    config = ServerConfig(base_url=BASE_URL)
    registry = JobRegistry()
    dispatcher = (_ConnectedDispatcher if connected else PushDispatcher)(config.session_websocket_url, registry)
    transport = HttpTransport(BASE_URL, http_transport=httpx.MockTransport(recorder))
    return ComfyClient(config, transport=transport, registry=registry, dispatcher=dispatcher)


@pytest.mark.asyncio
async def test_fetch_artifact_sends_reference_as_query():
    recorder = _Recorder({("GET", "/view"): httpx.Response(200, content=b"\x89PNG")})
    client = _client(recorder)
    try:
        content = await client.fetch_artifact(DataOutput("ComfyUI_00001_.png", "batch", "output"))
    finally:
        await client.close()

    assert content == b"\x89PNG"
    params = recorder.requests[0].url.params
    assert params["filename"] == "ComfyUI_00001_.png"
    assert params["subfolder"] == "batch"
    assert params["type"] == "output"


@pytest.mark.asyncio
async def test_missing_artifact_raises_server_response_error():
    client = _client(_Recorder({}))
    try:
        with pytest.raises(ServerResponseError) as excinfo:
            await client.fetch_artifact(DataOutput("gone.png"))
    finally:
        await client.close()

    assert excinfo.value.http_status == 404


@pytest.mark.asyncio
async def test_housekeeping_bodies():
    ok = httpx.Response(200)
    recorder = _Recorder({("POST", "/interrupt"): ok, ("POST", "/history"): ok})
    client = _client(recorder)
    try:
        await client.interrupt()
        await client.clear_history()
        await client.delete_history_item("job-7")
    finally:
        await client.close()

    bodies = [json.loads(request.content) for request in recorder.requests]
    assert bodies == [{}, {"clear": True}, {"delete": ["job-7"]}]
    assert all(request.headers["content-type"] == "application/json" for request in recorder.requests)


@pytest.mark.asyncio
async def test_system_stats_requires_connection():
    recorder = _Recorder({("GET", "/system_stats"): httpx.Response(200, json={"system": {}, "devices": []})})
    client = _client(recorder)
    try:
        with pytest.raises(ServerConnectionError):
            await client.get_system_stats()
    finally:
        await client.close()

    assert recorder.requests == []


@pytest.mark.asyncio
async def test_system_stats():
    payload = {
        "system": {"os": "posix", "python_version": "3.11.6", "embedded_python": False},
        "devices": [{"name": "cuda:0 NVIDIA GeForce RTX 4090", "type": "cuda", "vram_total": 25393692672}],
    }
    client = _client(_Recorder({("GET", "/system_stats"): httpx.Response(200, json=payload)}), connected=True)
    try:
        stats = await client.get_system_stats()
    finally:
        await client.close()

    assert stats.system["os"] == "posix"
    assert stats.devices[0]["type"] == "cuda"


@pytest.mark.asyncio
async def test_string_list_endpoints():
    recorder = _Recorder(
        {
            ("GET", "/embeddings"): httpx.Response(200, json=["easynegative", "bad_prompt_v2"]),
            ("GET", "/extensions"): httpx.Response(200, json=["/extensions/core/widgetInputs.js"]),
        }
    )
    client = _client(recorder)
    try:
        embeddings = await client.get_embeddings()
        extensions = await client.get_extensions()
    finally:
        await client.close()

    assert embeddings == ["easynegative", "bad_prompt_v2"]
    assert extensions == ["/extensions/core/widgetInputs.js"]


@pytest.mark.asyncio
async def test_wrong_shape_is_malformed():
    client = _client(_Recorder({("GET", "/embeddings"): httpx.Response(200, json={"not": "a list"})}))
    try:
        with pytest.raises(MalformedResponseError):
            await client.get_embeddings()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_queue_endpoints_and_object_info():
    recorder = _Recorder(
        {
            ("GET", "/prompt"): httpx.Response(200, json={"exec_info": {"queue_remaining": 3}}),
            ("GET", "/queue"): httpx.Response(200, json={"queue_running": [[1, "a"]], "queue_pending": [[2, "b"], [3, "c"]]}),
            ("GET", "/object_info/KSampler"): httpx.Response(200, json={"KSampler": {"category": "sampling"}}),
            ("GET", "/view_metadata/loras"): httpx.Response(200, text='{"ss_network_dim": "32"}'),
        }
    )
    client = _client(recorder)
    try:
        info = await client.get_queue_info()
        queue = await client.get_queue()
        node_info = await client.get_object_info("KSampler")
        metadata = await client.get_view_metadata("loras", "detail.safetensors")
    finally:
        await client.close()

    assert info.queue_remaining == 3
    assert queue.queue_remaining == 3
    assert len(queue.pending) == 2
    assert node_info["KSampler"]["category"] == "sampling"
    assert json.loads(metadata) == {"ss_network_dim": "32"}
    assert recorder.requests[-1].url.params["filename"] == "detail.safetensors"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [{"system": 5, "devices": []}, {"system": ["posix"], "devices": []}, {"system": {}, "devices": ["cuda"]}],
)
async def test_wrong_shaped_system_stats_is_malformed(payload):
    client = _client(_Recorder({("GET", "/system_stats"): httpx.Response(200, json=payload)}), connected=True)
    try:
        with pytest.raises(MalformedResponseError):
            await client.get_system_stats()
    finally:
        await client.close()
