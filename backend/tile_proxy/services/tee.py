"""Byte stream splitter.

StreamTee reads a source stream once and hands every chunk to N branches.
Each branch keeps its own queue and is drained by its own consumer at its
own pace, so a slow or stalled branch never holds back the others. Memory
is bounded by the chunks a branch has been handed but not consumed yet.

Example:
    Duplicate an upstream body for the client and the cache:
        >>> tee = StreamTee(upstream.body, branches=2)
        >>> to_client, to_cache = tee.branches
        >>> tee.start()
        >>> asyncio.create_task(cache.save(key, to_cache, metadata))
        >>> return StreamingResponse(to_client)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_END = object()


class _SourceFailure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


class TeeBranch:
    """One consumer side of a StreamTee.

    Iterating the branch starts the tee's pump if it is not running yet.
    Closing the branch detaches it: the pump stops queueing chunks for it
    and the remaining branches are unaffected.
    """

    def __init__(self, tee: StreamTee) -> None:
        self._tee = tee
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._done = False
        self.detached = False

    def __aiter__(self) -> TeeBranch:
        return self

    async def __anext__(self) -> bytes:
        if self._done or self.detached:
            raise StopAsyncIteration
        self._tee.start()
        item = await self._queue.get()
        if item is _END:
            self._done = True
            raise StopAsyncIteration
        if isinstance(item, _SourceFailure):
            self._done = True
            raise item.error
        return item  # type: ignore[return-value]

    async def aclose(self) -> None:
        """Stop receiving chunks and drop anything still queued."""
        self.detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def _feed(self, item: object) -> None:
        if not self.detached:
            self._queue.put_nowait(item)


class StreamTee:
    """Read ``source`` once and fan it out to ``branches`` iterators.

    Attributes:
        branches: The consumer iterators, in creation order.
    """

    def __init__(self, source: AsyncIterator[bytes], branches: int = 2) -> None:
        if branches < 1:
            msg = "StreamTee needs at least one branch"
            raise ValueError(msg)
        self._source = source
        self.branches: tuple[TeeBranch, ...] = tuple(
            TeeBranch(self) for _ in range(branches)
        )
        self._pump_task: asyncio.Task[None] | None = None

    def start(self) -> asyncio.Task[None]:
        """Start the pump task (idempotent) and return it."""
        if self._pump_task is None:
            self._pump_task = asyncio.get_running_loop().create_task(self._pump())
        return self._pump_task

    async def _pump(self) -> None:
        try:
            async for chunk in self._source:
                for branch in self.branches:
                    branch._feed(chunk)
                if all(branch.detached for branch in self.branches):
                    logger.debug("All tee branches detached, stopping early")
                    break
        except asyncio.CancelledError:
            for branch in self.branches:
                branch._feed(_SourceFailure(ConnectionAbortedError("tee cancelled")))
            raise
        except Exception as exc:
            for branch in self.branches:
                branch._feed(_SourceFailure(exc))
        else:
            for branch in self.branches:
                branch._feed(_END)
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
