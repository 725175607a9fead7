# Alert Feed - Broadcast Distributor
# Best-effort fan-out of init/delta messages; each observer drains its own bounded queue,
# so one slow or dead socket never delays the others or the mutation that triggered the push.

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from typing import Any

from starlette.websockets import WebSocket, WebSocketState

from alertfeed.errors import ObserverUnreachable
from alertfeed.services.alert_store import AlertRecord
from alertfeed.services.snapshot_cache import Snapshot, alert_to_payload
from alertfeed.time_windows import TimeWindows

logger = logging.getLogger(__name__)

def build_init_message(snapshot: Snapshot, windows: TimeWindows) -> dict[str, Any]:
    return {
        "type": "init",
        "liveStocks": [alert_to_payload(r, windows) for r in snapshot.live],
        "historyStocks": [alert_to_payload(r, windows) for r in snapshot.history],
    }


def build_delta_message(records: Iterable[AlertRecord], windows: TimeWindows) -> dict[str, Any]:
    return {
        "type": "delta",
        "liveDelta": [alert_to_payload(r, windows) for r in records],
    }


class Observer:
    """One connected viewer: its socket and outbound queue."""

    def __init__(
        self,
        websocket: WebSocket,
        queue_size: int,
        on_send_failure: Callable[["Observer", Exception], None],
    ):
        self.websocket = websocket
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._on_send_failure = on_send_failure
        self._writer: asyncio.Task | None = None

    def __repr__(self) -> str:
        client = getattr(self.websocket, "client", None)
        return f"Observer(client={client!r}, queued={self._queue.qsize()})"

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def offer(self, message: str) -> None:
        """Enqueue without waiting; a full queue means the observer is not keeping up."""
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull as e:
            raise ObserverUnreachable(f"{self!r}: outbound queue full") from e

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.websocket.send_text(message)
            except Exception as e:
                self._on_send_failure(self, e)
                return

    async def close(self, code: int = 1000) -> None:
        writer = self._writer
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            writer.cancel()
        if not self.is_open():
            return
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            # Half-open sockets fail on close too; the observer is gone either way.
            logger.debug("Close of %r failed: %s", self, e)


class BroadcastDistributor:
    """
    Set of connected observers plus the push and liveness operations over it.
    Delivery is at-most-once per push; reconnecting viewers reconcile via the init snapshot.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._observers: set[Observer] = set()
        self._closing: set[asyncio.Task] = set()

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    @property
    def observers(self) -> tuple[Observer, ...]:
        return tuple(self._observers)

    async def connect(
        self,
        websocket: WebSocket,
        current_snapshot: Callable[[], Snapshot],
        windows: TimeWindows,
    ) -> Observer:
        """
        Accept the socket, queue an init built from the snapshot current at registration,
        and register the observer. Nothing suspends between reading the snapshot and
        joining the set, so every later delta is newer than that init.
        """
        await websocket.accept()
        observer = Observer(websocket, self._queue_size, self._send_failed)
        observer.offer(json.dumps(build_init_message(current_snapshot(), windows)))
        observer.start()
        self._observers.add(observer)
        logger.info("Observer connected: %r (total %d)", observer, len(self._observers))
        return observer

    async def disconnect(self, observer: Observer) -> None:
        self._observers.discard(observer)
        await observer.close()
        logger.info("Observer disconnected: %r (total %d)", observer, len(self._observers))

    def publish(self, message: dict[str, Any]) -> int:
        """Fan out one message to every open observer; returns how many accepted it."""
        text = json.dumps(message)
        delivered = 0
        for observer in tuple(self._observers):
            if not observer.is_open():
                continue
            try:
                observer.offer(text)
            except ObserverUnreachable as e:
                logger.warning("Dropping observer: %s", e)
                self._drop(observer, code=1013)
                continue
            delivered += 1
        return delivered

    def publish_init(self, snapshot: Snapshot, windows: TimeWindows) -> int:
        return self.publish(build_init_message(snapshot, windows))

    def publish_delta(self, records: tuple[AlertRecord, ...], windows: TimeWindows) -> int:
        if not records:
            return 0
        return self.publish(build_delta_message(records, windows))

    async def probe(self) -> int:
        """
        Liveness cycle: remove observers whose transport is no longer open.
        Protocol-level ping/pong is left to the ASGI server (uvicorn ws_ping_interval),
        which closes half-open peers; a viewer that only listens stays connected.
        Returns the number removed.
        """
        removed = 0
        for observer in tuple(self._observers):
            if observer.is_open():
                continue
            logger.info("Observer transport closed, removing: %r", observer)
            self._observers.discard(observer)
            await observer.close(code=1001)
            removed += 1
        return removed

    async def close_all(self) -> None:
        observers = tuple(self._observers)
        self._observers.clear()
        for observer in observers:
            await observer.close(code=1001)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def _send_failed(self, observer: Observer, error: Exception) -> None:
        logger.warning("Observer unreachable, dropping %r: %s", observer, error)
        self._observers.discard(observer)

    def _drop(self, observer: Observer, code: int) -> None:
        self._observers.discard(observer)
        task = asyncio.create_task(observer.close(code=code))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
