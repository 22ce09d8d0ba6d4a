"""Resilient consumer for the progress stream.

Reads `data: <json>` frames over httpx, reconnects with exponential backoff on
transport errors or non-2xx answers, and after `max_reconnects` failed
attempts falls back to polling a caller-supplied function. A clean close from
the server ends the stream without reconnecting.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Mapping

import httpx

logger = logging.getLogger(__name__)

MAX_RECONNECTS = 3


class SSEConnectionError(Exception):
    pass


class FrameParser:
    """Incremental `text/event-stream` parser.

    Bytes may split anywhere, including inside a UTF-8 sequence or a frame
    separator; the unfinished tail is kept for the next `feed`.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[Any]:
        self._buffer = (self._buffer + self._decoder.decode(chunk)).replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split("\n\n")
        events = []
        for frame in frames:
            event = self._parse(frame)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _parse(frame: str) -> Any | None:
        data_lines = []
        for line in frame.split("\n"):
            if not line or line.startswith(":"):
                continue
            if line.startswith("data:"):
                value = line[5:]
                data_lines.append(value[1:] if value.startswith(" ") else value)
        if not data_lines:
            return None
        payload = "\n".join(data_lines)
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping non-JSON SSE data: %.80s", payload)
            return None


Callback = Callable[..., Any]


async def _call(callback: Callback | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class SSEConsumer:
    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        on_message: Callback | None = None,
        on_error: Callback | None = None,
        on_complete: Callback | None = None,
        fallback_poll: Callable[[], Awaitable[Any]] | None = None,
        max_reconnects: int = MAX_RECONNECTS,
        backoff_base: float = 1.0,
        poll_interval: float = 2.0,
        headers: Mapping[str, str] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.url = url
        self.on_message = on_message
        self.on_error = on_error
        self.on_complete = on_complete
        self.fallback_poll = fallback_poll
        self.max_reconnects = max_reconnects
        self.backoff_base = backoff_base
        self.poll_interval = poll_interval
        self.headers = dict(headers or {})
        self._sleep = sleep

        # idle | connecting | connected | error | closed | polling | stopped
        self.status = "idle"
        self.reconnects = 0
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True
        self.status = "stopped"

    def backoff(self, attempt: int) -> float:
        return self.backoff_base * 2**attempt

    async def run(self) -> None:
        self._stopped = False
        self.reconnects = 0
        while not self._stopped:
            try:
                await self._stream_once()
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, SSEConnectionError) as e:
                if self._stopped:
                    return
                self.status = "error"
                await _call(self.on_error, e)
                if self.reconnects < self.max_reconnects:
                    delay = self.backoff(self.reconnects)
                    self.reconnects += 1
                    logger.info(
                        "SSE reconnect %d/%d in %.1fs",
                        self.reconnects,
                        self.max_reconnects,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.warning("SSE reconnects exhausted, switching to polling")
                await self._poll_forever()
                return
            else:
                if not self._stopped:
                    self.status = "closed"
                    await _call(self.on_complete)
                return

    async def _stream_once(self) -> None:
        self.status = "connecting"
        headers = {"Accept": "text/event-stream", **self.headers}
        async with self.client.stream("GET", self.url, headers=headers) as response:
            if not response.is_success:
                raise SSEConnectionError(
                    f"SSE connection failed: {response.status_code} {response.reason_phrase}"
                )
            self.status = "connected"
            self.reconnects = 0
            parser = FrameParser()
            async for chunk in response.aiter_bytes():
                for event in parser.feed(chunk):
                    if self._stopped:
                        return
                    await _call(self.on_message, event)
                if self._stopped:
                    return

    async def _poll_forever(self) -> None:
        if self.fallback_poll is None:
            return
        self.status = "polling"
        while not self._stopped:
            try:
                result = await self.fallback_poll()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # next interval tries again
                logger.warning("Polling fallback error: %s", e)
            else:
                if result is not None:
                    await _call(self.on_message, result)
            if self._stopped:
                return
            await self._sleep(self.poll_interval)
