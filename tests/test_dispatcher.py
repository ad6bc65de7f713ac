"""Tests for push-notification routing and the pause/resume contract."""

import asyncio
import json
import struct

import pytest
import pytest_asyncio
from aiohttp import web

from comfylink.client.dispatcher import PushDispatcher
from comfylink.client.errors import ServerConnectionError
from comfylink.client.graph import WorkflowGraph
from comfylink.client.models import JobRecord
from comfylink.client.protocol import PushMessage
from comfylink.client.registry import JobRegistry


def _record(job_id: str) -> JobRecord:
    return JobRecord(job_id=job_id, number=0, graph=WorkflowGraph())


def _progress(job_id: str, value: int) -> PushMessage:
    return PushMessage(kind="progress", data={"prompt_id": job_id, "node": "3", "value": value, "max": 3})


async def _drain(record: JobRecord, count: int):
    return [await asyncio.wait_for(record.messages.get(), timeout=1.0) for _ in range(count)]


@pytest_asyncio.fixture
async def dispatcher():
    registry = JobRegistry()
    instance = PushDispatcher("ws://unused.invalid/ws", registry)
    instance.start()
    yield instance
    await instance.close()


def _register(dispatcher: PushDispatcher, job_id: str) -> JobRecord:
    record = _record(job_id)
    dispatcher._registry.insert(job_id, record)  # noqa: SLF001
    return record


@pytest.mark.asyncio
async def test_routes_to_registered_job(dispatcher):
    record = _register(dispatcher, "job-a")

    dispatcher.feed(_progress("job-a", 1))

    [notification] = await _drain(record, 1)
    assert notification.job_id == "job-a"
    assert notification.data["value"] == 1


@pytest.mark.asyncio
async def test_paused_notifications_are_held_then_delivered_in_order(dispatcher):
    record = _register(dispatcher, "job-a")

    dispatcher.pause()
    for value in range(3):
        dispatcher.feed(_progress("job-a", value))
    await asyncio.sleep(0.05)

    assert record.messages.empty()
    assert dispatcher.is_paused

    dispatcher.resume()
    delivered = await _drain(record, 3)

    assert [n.data["value"] for n in delivered] == [0, 1, 2]


@pytest.mark.asyncio
async def test_messages_for_unregistered_job_wait_for_registration_while_paused(dispatcher):
    dispatcher.pause()
    dispatcher.feed(_progress("late-job", 0))
    dispatcher.feed(_progress("late-job", 1))
    await asyncio.sleep(0.02)

    record = _register(dispatcher, "late-job")
    dispatcher.resume()

    assert [n.data["value"] for n in await _drain(record, 2)] == [0, 1]


@pytest.mark.asyncio
async def test_stale_resume_does_not_route_during_new_pause(dispatcher):
    record = _register(dispatcher, "job-a")
    dispatcher.pause()
    dispatcher.feed(_progress("job-a", 0))
    await asyncio.sleep(0.02)

    dispatcher.resume()
    dispatcher.pause()
    await asyncio.sleep(0.05)

    assert record.messages.empty()

    dispatcher.resume()
    assert len(await _drain(record, 1)) == 1


@pytest.mark.asyncio
async def test_paused_context_resumes_after_error(dispatcher):
    with pytest.raises(RuntimeError):
        async with dispatcher.paused():
            assert dispatcher.is_paused
            raise RuntimeError("boom")

    assert not dispatcher.is_paused


@pytest.mark.asyncio
async def test_unknown_job_notifications_are_dropped(dispatcher):
    record = _register(dispatcher, "job-a")

    dispatcher.feed(_progress("ghost", 0))
    dispatcher.feed(PushMessage(kind="executing", data={"node": "3"}))
    dispatcher.feed(_progress("job-a", 2))

    [notification] = await _drain(record, 1)
    assert notification.data["value"] == 2
    assert record.messages.empty()


@pytest.mark.asyncio
async def test_preview_without_job_id_goes_to_executing_job(dispatcher):
    record = _register(dispatcher, "job-a")

    dispatcher.feed(PushMessage(kind="executing", data={"node": "8", "prompt_id": "job-a"}))
    dispatcher.feed(PushMessage(kind="preview", data={}, image=b"jpeg", image_format="JPEG"))
    dispatcher.feed(PushMessage(kind="executing", data={"node": None, "prompt_id": "job-a"}))

    executing, preview, done = await _drain(record, 3)
    assert preview.kind == "preview"
    assert preview.image == b"jpeg"
    assert done.is_terminal
    assert record.is_complete


@pytest.mark.asyncio
async def test_status_updates_queue_remaining_and_callback():
    seen = []
    instance = PushDispatcher("ws://unused.invalid/ws", JobRegistry(), status_callback=seen.append)
    instance.start()
    try:
        instance.feed(PushMessage(kind="status", data={"status": {"exec_info": {"queue_remaining": 4}}}))
        await asyncio.sleep(0.02)
    finally:
        await instance.close()

    assert instance.queue_remaining == 4
    assert [message.kind for message in seen] == ["status"]


@pytest.mark.asyncio
async def test_failing_status_callback_does_not_stop_routing():
    def _explode(message):
        raise ValueError("callback bug")

    registry = JobRegistry()
    instance = PushDispatcher("ws://unused.invalid/ws", registry, status_callback=_explode)
    record = _record("job-a")
    registry.insert("job-a", record)
    instance.start()
    try:
        instance.feed(PushMessage(kind="status", data={"status": {}}))
        instance.feed(_progress("job-a", 0))
        assert len(await _drain(record, 1)) == 1
    finally:
        await instance.close()


@pytest_asyncio.fixture
async def push_server(unused_tcp_port):
    """WebSocket endpoint that pushes a short job lifecycle once a client connects."""
    connected = {}

    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        connected["client_id"] = request.query.get("clientId")

        await asyncio.sleep(0.1)
        await ws.send_json({"type": "status", "data": {"status": {"exec_info": {"queue_remaining": 1}}}})
        await ws.send_json({"type": "execution_start", "data": {"prompt_id": "job-123"}})
        await ws.send_str("not json")
        await ws.send_bytes(struct.pack(">II", 1, 1) + b"jpeg-bytes")
        await ws.send_json({"type": "executing", "data": {"node": None, "prompt_id": "job-123"}})

        async for _ in ws:
            pass
        return ws

    app = web.Application()
    app.router.add_get("/ws", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", unused_tcp_port)
    await site.start()

    yield f"ws://127.0.0.1:{unused_tcp_port}/ws", connected

    await runner.cleanup()


@pytest.mark.asyncio
async def test_receives_over_websocket(push_server):
    url, connected = push_server
    registry = JobRegistry()
    record = _record("job-123")
    registry.insert("job-123", record)
    instance = PushDispatcher(f"{url}?clientId=abc", registry, heartbeat=2.0)

    try:
        await instance.connect()
        assert instance.is_connected
        await asyncio.wait_for(record.wait_complete(), timeout=5.0)
    finally:
        await instance.close()

    kinds = []
    while not record.messages.empty():
        kinds.append(record.messages.get_nowait().kind)

    assert kinds == ["execution_start", "preview", "executing"]
    assert instance.queue_remaining == 1
    assert connected["client_id"] == "abc"
    assert not instance.is_connected


@pytest.mark.asyncio
async def test_connect_failure_raises(unused_tcp_port):
    instance = PushDispatcher(f"ws://127.0.0.1:{unused_tcp_port}/ws", JobRegistry(), connect_timeout=2.0)

    try:
        with pytest.raises(ServerConnectionError) as excinfo:
            await instance.connect()
    finally:
        await instance.close()

    assert excinfo.value.context["websocket_url"].endswith("/ws")
