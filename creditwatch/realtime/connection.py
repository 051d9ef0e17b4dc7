"""
Live client connections.

All server→client push uses SSE (not WebSocket).
SSE is simpler: Nginx config, debugging, auto-reconnect all easier.

A StreamConnection is the hub-facing side of one SSE response: the hub
``send``s events into a bounded queue, the HTTP layer drains it through
``stream()``.
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Optional, Protocol


class ConnectionClosed(Exception):
    """Send attempted on a connection that has gone away."""


class ClientConnection(Protocol):
    """Anything the hub can push an event to."""

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        ...


def format_sse(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"


class StreamConnection:
    """
    SSE-backed connection.

    ``send`` blocks while the queue is full; the hub bounds that wait with
    its delivery timeout, so a stalled client only loses events.
    """

    def __init__(self, connection_id: str, max_queue: int = 100):
        self.connection_id = connection_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self._closed:
            raise ConnectionClosed(self.connection_id)
        await self._queue.put((event, payload))

    def close(self) -> None:
        self._closed = True
        try:
            self._queue.put_nowait((None, None))
        except asyncio.QueueFull:
            pass

    async def stream(self, keepalive_seconds: float = 30.0) -> AsyncGenerator[str, None]:
        """
        Yield SSE-formatted strings until closed.

        Sends a keepalive comment every ``keepalive_seconds`` to prevent
        connection timeout.
        """
        while True:
            try:
                event, payload = await asyncio.wait_for(self._queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                if self._closed:
                    break
                # SSE comment = keepalive (not data, won't trigger onmessage)
                yield ": keepalive\n\n"
                continue
            if event is None:
                break
            yield format_sse(event, payload)

    def drain(self) -> list[tuple[str, Optional[dict[str, Any]]]]:
        """Pop everything queued so far without blocking."""
        items = []
        while not self._queue.empty():
            event, payload = self._queue.get_nowait()
            if event is not None:
                items.append((event, payload))
        return items
