"""Request/response channel between the page side and the background service.

The page side (orchestrator and flows) never performs network I/O
itself.  It sends a :class:`BridgeRequest` through a
:class:`CrossContextBridge` and awaits the :class:`BridgeResponse`.
The :class:`BackgroundService` on the other end owns the HTTP session,
the credential store and both transcript cache tiers.

Message contract::

    {action: "transcribe", audioUrl}  -> {success, text?, error?, metadata?}
    {action: "notify", title, message} -> {success}
    {action: "ping"}                   -> {success, pong}

Every request resolves or fails with :class:`BridgeTimeout` within the
configured bound; it never stays pending.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from browser.credentials import CredentialStore, build_credential_store
from core.config import SolverSettings
from core.errors import BridgeTimeout, ChallengeError, classify_error
from core.notifier import DEFAULT_TITLE, Notifier
from solvers.cache import DurableCache, MemoryCache, TranscriptCache
from solvers.transcription import TranscriptionPipeline

logger = logging.getLogger(__name__)

DEFAULT_BRIDGE_TIMEOUT_SECONDS = 30.0


class BridgeRequest(BaseModel):
    """Message sent from the page side."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    title: Optional[str] = None
    message: Optional[str] = None


class BridgeResponse(BaseModel):
    """Reply from the background service."""

    success: bool
    text: Optional[str] = None
    error: Optional[str] = None
    pong: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


Handler = Callable[[BridgeRequest], Awaitable[BridgeResponse]]


class CrossContextBridge:
    """Asyncio request/response channel with per-request timeouts.

    Requests are queued and dispatched by a serving task; each request
    is handled in its own task so a slow transcription never delays a
    liveness probe.  A caller that times out cancels its handler task.
    ``close()`` stops serving and fails whatever is still pending.

    Args:
        handler: Coroutine answering one request (normally
            :meth:`BackgroundService.handle`).
        timeout: Default bound in seconds for :meth:`send`.
    """

    def __init__(self, handler: Handler, timeout: float = DEFAULT_BRIDGE_TIMEOUT_SECONDS) -> None:
        self.handler = handler
        self.timeout = timeout
        self._queue: "asyncio.Queue[Tuple[BridgeRequest, asyncio.Future]]" = asyncio.Queue()
        self._server: Optional[asyncio.Task] = None
        # Handler task per pending caller future
        self._inflight: Dict[asyncio.Future, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return self._server is not None and not self._server.done()

    def start(self) -> None:
        if not self.running:
            self._server = asyncio.create_task(self._serve())

    async def _serve(self) -> None:
        while True:
            request, future = await self._queue.get()
            if future.done():
                # Caller already gave up
                continue
            task = asyncio.create_task(self._dispatch(request, future))
            self._inflight[future] = task
            task.add_done_callback(lambda _, f=future: self._inflight.pop(f, None))

    async def _dispatch(self, request: BridgeRequest, future: asyncio.Future) -> None:
        try:
            response = await self.handler(request)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            logger.error("Bridge handler failed for '%s': %s", request.action, e)
            response = BridgeResponse(success=False, error=str(e))
        if not future.done():
            future.set_result(response)

    async def send(
        self,
        request: BridgeRequest,
        timeout: Optional[float] = None,
    ) -> BridgeResponse:
        """Send *request* and wait for its response.

        Raises:
            BridgeTimeout: No response within *timeout* (or the default).
        """
        bound = self.timeout if timeout is None else timeout
        self.start()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((request, future))
        try:
            return await asyncio.wait_for(future, timeout=bound)
        except asyncio.TimeoutError:
            logger.warning("Bridge request '%s' timed out after %.1fs", request.action, bound)
            task = self._inflight.pop(future, None)
            if task is not None:
                task.cancel()
            raise BridgeTimeout(request.action, bound) from None

    async def request(self, action: str, timeout: Optional[float] = None, **params: Any) -> BridgeResponse:
        """Shorthand: build a :class:`BridgeRequest` from keywords and send it."""
        return await self.send(BridgeRequest(action=action, **params), timeout=timeout)

    async def close(self) -> None:
        """Stop serving and cancel in-flight handlers and their callers."""
        tasks = list(self._inflight.values())
        if self._server is not None:
            tasks.append(self._server)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._server = None
        self._inflight.clear()
        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.cancel()


class BackgroundService:
    """Privileged side of the bridge.

    Args:
        pipeline: Transcription pipeline (owns the HTTP session).
        credentials: Store consulted at call time for the speech token.
        notifier: Notification sink.
        cleanup_interval: Seconds between durable-cache purges; ``0``
            disables the periodic task.
    """

    def __init__(
        self,
        pipeline: TranscriptionPipeline,
        credentials: CredentialStore,
        notifier: Optional[Notifier] = None,
        cleanup_interval: float = 0,
    ) -> None:
        self.pipeline = pipeline
        self.credentials = credentials
        self.notifier = notifier or Notifier()
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task] = None
        self._actions: Dict[str, Handler] = {
            "transcribe": self._handle_transcribe,
            "notify": self._handle_notify,
            "ping": self._handle_ping,
        }

    @classmethod
    def from_settings(
        cls,
        settings: SolverSettings,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "BackgroundService":
        cache = TranscriptCache(
            MemoryCache(settings.memory_cache_size),
            DurableCache(settings.cache_file, ttl_seconds=settings.cache_ttl_seconds),
        )
        return cls(
            pipeline=TranscriptionPipeline.from_settings(settings, cache, session),
            credentials=build_credential_store(settings),
            notifier=Notifier(
                enabled=settings.notifications_enabled,
                webhook_url=settings.alert_webhook_url,
                session=session,
            ),
            cleanup_interval=settings.cache_cleanup_interval_seconds,
        )

    async def handle(self, request: BridgeRequest) -> BridgeResponse:
        """Answer one bridge request; never raises."""
        handler = self._actions.get(request.action)
        if handler is None:
            logger.warning("Unknown bridge action: %s", request.action)
            return BridgeResponse(success=False, error="Unknown action")
        try:
            return await handler(request)
        except Exception as e:
            logger.error(
                "Bridge action '%s' failed [%s]: %s",
                request.action, classify_error(e).value, e,
            )
            return BridgeResponse(success=False, error=str(e))

    async def _handle_transcribe(self, request: BridgeRequest) -> BridgeResponse:
        if not request.audio_url:
            return BridgeResponse(success=False, error="Missing audioUrl parameter")
        try:
            audio = await self.pipeline.download_audio(request.audio_url)
            result = await self.pipeline.process(audio, self.credentials.get_credential())
        except ChallengeError as e:
            logger.error("Transcription failed [%s]: %s", e.error_type.value, e)
            return BridgeResponse(success=False, error=str(e))
        return BridgeResponse(success=True, text=result.text, metadata=result.metadata())

    async def _handle_notify(self, request: BridgeRequest) -> BridgeResponse:
        await self.notifier.notify(request.title or DEFAULT_TITLE, request.message or "")
        return BridgeResponse(success=True)

    async def _handle_ping(self, request: BridgeRequest) -> BridgeResponse:
        return BridgeResponse(success=True, pong=True)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                removed = self.pipeline.cache.clear_expired()
                if removed:
                    logger.info("Periodic cleanup removed %d cache entries", removed)
            except Exception as e:
                logger.error("Cache cleanup failed: %s", e)

    def start(self) -> None:
        if self.cleanup_interval > 0 and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None
        await self.pipeline.close()
        await self.notifier.close()
