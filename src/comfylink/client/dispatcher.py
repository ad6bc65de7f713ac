"""
Push-channel dispatcher.

Keeps one WebSocket open to the server and routes every notification to the
sink of the job it belongs to. Receiving and routing are separate tasks joined
by an unbounded inbox: while routing is paused the receiver keeps reading and
buffering, so pausing delays notifications but never drops them.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Callable, Optional

import aiohttp

from comfylink.client.errors import ServerConnectionError
from comfylink.client.models import JobNotification
from comfylink.client.protocol import (
    ProtocolDecodeError,
    PushMessage,
    decode_binary_frame,
    decode_text_frame,
)
from comfylink.client.registry import JobRegistry
from comfylink.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("client.dispatcher")

StatusCallback = Callable[[PushMessage], None]

_UNATTRIBUTED_KINDS = frozenset({"preview", "progress_text"})


class PushDispatcher:
    """Maintains the push connection and routes notifications to registered jobs."""

    def __init__(
        self,
        websocket_url: str,
        registry: JobRegistry,
        *,
        heartbeat: float = 20.0,
        connect_timeout: float = 10.0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        self.websocket_url = websocket_url
        self._registry = registry
        self._heartbeat = heartbeat
        self._connect_timeout = connect_timeout
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._session_factory = session_factory
        self._status_callback = status_callback

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._receiver_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._stop_requested = False

        self._inbox: "asyncio.Queue[PushMessage]" = asyncio.Queue()
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._pause_lock = asyncio.Lock()

        self._executing_job_id: Optional[str] = None
        self.queue_remaining: Optional[int] = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def backlog(self) -> int:
        """Notifications received but not yet routed."""
        return self._inbox.qsize()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the push connection and start routing; one attempt, fails fast."""
        self._stop_requested = False
        self.start()
        if self.is_connected:
            return
        try:
            await self._open_socket()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            await self._close_socket()
            raise ServerConnectionError(
                f"Unable to open push channel: {exc}",
                operation="connect",
                websocket_url=self.websocket_url,
            ) from exc
        self._receiver_task = asyncio.create_task(
            self._receive_forever(), name="comfylink-ws-listener"
        )

    def start(self) -> None:
        """Start the routing task without a connection (notifications come via ``feed``)."""
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(
                self._dispatch_loop(), name="comfylink-dispatcher"
            )

    async def close(self) -> None:
        """Stop receiving and routing and close the connection."""
        self._stop_requested = True
        for task in (self._receiver_task, self._dispatch_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._receiver_task = None
        self._dispatch_task = None
        await self._close_socket()

    async def _open_socket(self) -> None:
        self._session = self._session_factory() if self._session_factory else aiohttp.ClientSession()
        self._ws = await asyncio.wait_for(
            self._session.ws_connect(self.websocket_url, heartbeat=self._heartbeat),
            timeout=self._connect_timeout,
        )
        logger.info("Connected to push channel", extra_context={"url": self.websocket_url})

    async def _close_socket(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._ws = None
        self._session = None

    async def _reconnect_with_backoff(self) -> None:
        attempt = 0
        while not self._stop_requested:
            attempt += 1
            try:
                await self._open_socket()
                return
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                logger.warning(
                    "Push channel reconnect attempt failed",
                    extra_context={"attempt": attempt, "error": str(exc)},
                )
                await self._close_socket()
                delay = min(self._reconnect_max_delay, self._reconnect_base_delay * (2 ** (attempt - 1)))
                await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    async def _receive_forever(self) -> None:
        while not self._stop_requested:
            await self._receive_until_closed()
            await self._close_socket()
            if self._stop_requested:
                break
            logger.warning("Push channel lost; reconnecting", extra_context={"url": self.websocket_url})
            await self._reconnect_with_backoff()

    async def _receive_until_closed(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._accept(decode_text_frame, msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._accept(decode_binary_frame, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("Push channel transport error", extra_context={"error": str(ws.exception())})
                    break
        except aiohttp.ClientError as exc:
            logger.error("Push channel receive failed", exception=exc)

    def _accept(self, decoder: Callable[..., PushMessage], frame) -> None:
        try:
            message = decoder(frame)
        except ProtocolDecodeError as exc:
            logger.warning("Ignoring undecodable push frame", extra_context={"error": str(exc)})
            return
        self.feed(message)

    def feed(self, message: PushMessage) -> None:
        """Buffer a decoded notification for routing; accepted even while paused."""
        self._inbox.put_nowait(message)

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    @contextlib.asynccontextmanager
    async def paused(self) -> AsyncIterator[None]:
        """Hold routing suspended for the duration of the block, one holder at a time."""
        async with self._pause_lock:
            self.pause()
            try:
                yield
            finally:
                self.resume()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        while True:
            message = await self._inbox.get()
            # A wake-up from resume() may be stale if a new pause started since.
            while not self._resumed.is_set():
                await self._resumed.wait()
            self._route(message)

    def _route(self, message: PushMessage) -> None:
        if message.kind == "status":
            self._handle_status(message)
            return

        job_id = message.job_id
        if job_id is None and message.kind in _UNATTRIBUTED_KINDS:
            job_id = self._executing_job_id

        if message.kind == "execution_start":
            self._executing_job_id = job_id
        elif message.kind == "executing":
            self._executing_job_id = job_id if message.data.get("node") is not None else None
        elif message.kind in ("execution_success", "execution_error", "execution_interrupted"):
            if self._executing_job_id == job_id:
                self._executing_job_id = None

        if job_id is None:
            logger.debug("Dropping notification without job id", extra_context={"kind": message.kind})
            return

        record = self._registry.lookup(job_id)
        if record is None:
            logger.debug(
                "Dropping notification for unregistered job",
                extra_context={"job_id": job_id, "kind": message.kind},
            )
            return

        record.deliver(
            JobNotification(
                job_id=job_id,
                kind=message.kind,
                data=message.data,
                raw=message.raw,
                image=message.image,
                image_format=message.image_format,
            )
        )

    def _handle_status(self, message: PushMessage) -> None:
        status = message.data.get("status")
        exec_info = status.get("exec_info") if isinstance(status, dict) else None
        remaining = exec_info.get("queue_remaining") if isinstance(exec_info, dict) else None
        if isinstance(remaining, int) and not isinstance(remaining, bool):
            self.queue_remaining = remaining
        if self._status_callback is None:
            return
        try:
            self._status_callback(message)
        except Exception as exc:
            logger.error("Status callback raised", exception=exc)
