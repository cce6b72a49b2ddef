"""
Transport boundary.

The dispatcher depends only on the Transport protocol: send() accepts a
WireRequest and a `done` callback, and must call `done` exactly once with a
TransportResult. How the bytes move is the adapter's business.

AsyncioTransport adapts any coroutine function `fetch(request) -> body` (an
aiohttp/httpx call, a test fake, ...) to that protocol. It owns the timeout
and converts failures into TransportError results.
"""

from __future__ import annotations

import asyncio
import logging
from asyncio import timeout as asyncio_timeout
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from .errors import KeysyncErrorContext, TransportError, TransportTimeout
from .request import WireRequest

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransportResult:
    ok: bool
    body: Any = None
    status: str = "success"
    error: Optional[TransportError] = None

    @classmethod
    def success(cls, body: Any, status: str = "success") -> "TransportResult":
        return cls(ok=True, body=body, status=status)

    @classmethod
    def failure(cls, error: TransportError) -> "TransportResult":
        return cls(ok=False, status=error.status, error=error)


TransportDone = Callable[[TransportResult], None]


class Transport(Protocol):
    def send(self, request: WireRequest, done: TransportDone) -> None: ...


Fetch = Callable[[WireRequest], Awaitable[Any]]


class AsyncioTransport:
    """Run each request as a task on the running event loop."""

    def __init__(self, fetch: Fetch) -> None:
        self._fetch = fetch
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def send(self, request: WireRequest, done: TransportDone) -> None:
        """Must be called from inside a running event loop."""
        if self._closed:
            self._finish(done, TransportResult.failure(TransportError(
                "Transport is closed.",
                status="abort",
                context=KeysyncErrorContext(phase="transport", url=request.url),
            )))
            return
        task = asyncio.get_running_loop().create_task(self._perform(request, done))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _perform(self, request: WireRequest, done: TransportDone) -> None:
        ctx = KeysyncErrorContext(phase="transport", url=request.url)
        try:
            if request.timeout_s:
                async with asyncio_timeout(request.timeout_s):
                    body = await self._fetch(request)
            else:
                # timeout of 0/None means wait forever (long-poll feeds)
                body = await self._fetch(request)
        except asyncio.CancelledError:
            self._finish(done, TransportResult.failure(
                TransportError("Request cancelled before completion.", status="abort", context=ctx)
            ))
            raise
        except TimeoutError as err:
            LOG.debug("%s %s timed out after %ss", request.method, request.url, request.timeout_s)
            self._finish(done, TransportResult.failure(TransportTimeout(context=ctx, cause=err)))
        except TransportError as err:
            self._finish(done, TransportResult.failure(err))
        except Exception as err:
            LOG.debug("%s %s failed: %s", request.method, request.url, err)
            self._finish(done, TransportResult.failure(
                TransportError(f"{request.method} {request.url} failed: {err}", context=ctx, cause=err)
            ))
        else:
            self._finish(done, TransportResult.success(body))

    @staticmethod
    def _finish(done: TransportDone, result: TransportResult) -> None:
        try:
            done(result)
        except Exception:
            LOG.exception("Transport completion callback raised")

    async def drain(self) -> None:
        """Wait until no request is in flight, including ones started by completions."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """
        Cancel everything in flight; each cancelled request still completes
        once. Requests sent after close() (e.g. queued requests launched by
        those completions) fail straight away with status "abort".
        """
        self._closed = True
        for task in list(self._tasks):
            if asyncio.current_task() != task:
                task.cancel()
