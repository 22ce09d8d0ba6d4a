"""Server-sent events primitive.

A handler receives an `SSEStream` and pushes JSON events with `send()`. The
stream interleaves a comment heartbeat so proxies keep the connection open.
When the client goes away Starlette stops iterating; the heartbeat and the
handler are cancelled quietly.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

from starlette.responses import StreamingResponse

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = ": heartbeat\n\n"

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(event: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


class SSEStream:
    def __init__(self, heartbeat_interval: float = 30.0):
        self.heartbeat_interval = heartbeat_interval
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        # heartbeat and handler tasks of the running `frames` call
        self.tasks: tuple[asyncio.Task, ...] = ()

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: Mapping[str, Any]) -> None:
        if self._closed:
            return
        self._queue.put_nowait(format_event(event))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def _heartbeat(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval)
            if not self._closed:
                self._queue.put_nowait(HEARTBEAT_FRAME)

    async def _run(self, handler: StreamHandler) -> None:
        try:
            await handler(self)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("SSE handler failed")
            await self.send({"type": "error", "data": {"error": str(e)}})
        finally:
            await self.close()

    async def frames(self, handler: StreamHandler) -> AsyncIterator[str]:
        heartbeat = asyncio.create_task(self._heartbeat())
        worker = asyncio.create_task(self._run(handler))
        self.tasks = (heartbeat, worker)
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self._closed = True
            for task in (heartbeat, worker):
                if not task.done():
                    task.cancel()
            await asyncio.gather(heartbeat, worker, return_exceptions=True)


StreamHandler = Callable[[SSEStream], Awaitable[None]]


def create_sse_response(
    handler: StreamHandler, *, heartbeat_interval: float = 30.0
) -> StreamingResponse:
    stream = SSEStream(heartbeat_interval=heartbeat_interval)
    return StreamingResponse(
        stream.frames(handler),
        headers=SSE_HEADERS,
        media_type="text/event-stream",
    )
