from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pump_token_feed.pipeline.scheduling import SleepFn

logger = logging.getLogger(__name__)

DEFAULT_FEED_URL = "wss://pumpportal.fun/api/data"
DEFAULT_SUBSCRIBE_METHOD = "subscribeNewToken"


def now_ms() -> int:
    return int(datetime.now(tz=UTC).timestamp() * 1000)


@dataclass(frozen=True, slots=True)
class FeedFrame:
    payload: dict[str, Any]
    arrival_time_ms: int


@dataclass(frozen=True, slots=True)
class UnparseableFrame:
    raw: str
    reason: str
    arrival_time_ms: int


def parse_frame(raw: str | bytes, arrival_time_ms: int) -> FeedFrame | UnparseableFrame:
    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return UnparseableFrame(raw=repr(raw[:200]), reason="not valid UTF-8", arrival_time_ms=arrival_time_ms)
    else:
        text = raw

    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        return UnparseableFrame(raw=text[:200], reason=f"invalid JSON: {exc.msg}", arrival_time_ms=arrival_time_ms)

    if not isinstance(message, dict):
        return UnparseableFrame(raw=text[:200], reason="not a JSON object", arrival_time_ms=arrival_time_ms)
    return FeedFrame(payload=message, arrival_time_ms=arrival_time_ms)


def _default_connect_factory() -> Callable[..., Any]:
    import websockets

    return websockets.connect


class FeedConnection:
    """Owns the single streaming connection to the new-token feed.

    Every close (clean or not) is followed by one reconnect after
    `reconnect_seconds`, forever, until `stop()` is called.
    """

    def __init__(
        self,
        *,
        url: str = DEFAULT_FEED_URL,
        on_frame: Callable[[dict[str, Any]], Any] | None = None,
        subscribe_method: str = DEFAULT_SUBSCRIBE_METHOD,
        reconnect_seconds: float = 5.0,
        raw_trail_capacity: int = 20,
        connect_factory: Callable[..., Any] | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._url = url
        self._on_frame = on_frame
        self._subscribe_method = subscribe_method
        self._reconnect_seconds = reconnect_seconds
        self._connect_factory = connect_factory
        self._sleep = sleep

        self._trail: deque[dict[str, Any]] = deque(maxlen=raw_trail_capacity)
        self._connected = False
        self._last_error: str | None = None
        self._websocket: Any | None = None
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._stopping = False

        self.connect_count = 0
        self.messages_received = 0
        self.frames_dropped = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def raw_trail(self) -> tuple[dict[str, Any], ...]:
        return tuple(self._trail)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self._run_loop(), name="feed-connection")

    async def stop(self) -> None:
        self._stopping = True
        self._wake.set()

        websocket = self._websocket
        if websocket is not None:
            try:
                await websocket.close()
            except Exception:
                logger.debug("Error while closing feed socket", exc_info=True)

        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._publish_connection(False)

    def reconnect(self) -> bool:
        """Skip the remaining reconnect delay; a no-op while a socket is open."""
        if self._websocket is not None:
            logger.debug("Reconnect ignored; feed connection still open", extra={"url": self._url})
            return False
        self._wake.set()
        return True

    async def _run_loop(self) -> None:
        while not self._stopping:
            try:
                await self._run_once()
                if not self._stopping:
                    logger.info("Feed connection closed", extra={"url": self._url})
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._last_error = f"WebSocket connection error: {exc.__class__.__name__}: {exc}"
                logger.warning("Feed connection failed", extra={"url": self._url, "error": str(exc)})
            finally:
                self._publish_connection(False)

            if self._stopping:
                break
            logger.info(
                "Reconnecting to feed",
                extra={"url": self._url, "delay_seconds": self._reconnect_seconds},
            )
            await self._wait_before_reconnect()

    async def _wait_before_reconnect(self) -> None:
        self._wake.clear()
        sleeper = asyncio.ensure_future(self._sleep(self._reconnect_seconds))
        waker = asyncio.ensure_future(self._wake.wait())
        try:
            await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waker.cancel()

    async def _run_once(self) -> None:
        if self._websocket is not None:
            return

        connect = self._connect_factory or _default_connect_factory()
        async with connect(
            self._url,
            ping_interval=20,
            ping_timeout=20,
            close_timeout=5,
            max_size=2**22,
        ) as websocket:
            self._websocket = websocket
            try:
                self.connect_count += 1
                self._last_error = None
                self._publish_connection(True)

                await websocket.send(json.dumps({"method": self._subscribe_method}))
                logger.info(
                    "Feed connected and subscribed",
                    extra={"url": self._url, "method": self._subscribe_method, "connect_count": self.connect_count},
                )

                async for message in websocket:
                    self._handle_message(message)
                    if self._stopping:
                        break
            finally:
                self._websocket = None

    def _handle_message(self, message: str | bytes) -> None:
        self.messages_received += 1
        frame = parse_frame(message, now_ms())
        if isinstance(frame, UnparseableFrame):
            self.frames_dropped += 1
            logger.warning("Dropping unparseable feed frame", extra={"reason": frame.reason, "raw": frame.raw})
            return

        self._trail.appendleft(frame.payload)
        if self._on_frame is None:
            return
        try:
            self._on_frame(frame.payload)
        except Exception:
            logger.exception("Feed frame handler failed", extra={"url": self._url})

    def _publish_connection(self, connected: bool) -> None:
        self._connected = connected
