"""Blocking, file-like access to an async HTTP response body."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import CancelledError as FutureCancelledError
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Final

from aiohttp import ClientError, ClientResponse

logger = logging.getLogger(__name__)

READ_TIMEOUT: Final[float] = 30.0
"""Seconds a single read may wait for the network before it counts as end of stream."""


class StreamBody:
    """
    Expose an aiohttp response body through a synchronous ``read``.

    The decoder runs on a worker thread and pulls bytes through ``read``; each
    call is scheduled onto the event loop that owns the response. Network
    failures, a closed response or a stalled read all surface as ``b""`` so the
    decoder sees a plain end of stream.
    """

    def __init__(
        self,
        response: ClientResponse,
        loop: asyncio.AbstractEventLoop,
        *,
        read_timeout: float = READ_TIMEOUT,
    ) -> None:
        """
        Initialize the body reader.

        Args:
            response: Open response whose content is read.
            loop: Event loop the response belongs to.
            read_timeout: Maximum seconds to wait for one read.
        """
        self._response = response
        self._loop = loop
        self._read_timeout = read_timeout
        self._closed = False
        self.bytes_read = 0

    @property
    def closed(self) -> bool:
        """Return True once the body has been closed."""
        return self._closed

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes. Must not be called from the event loop thread."""
        if self._closed or self._loop.is_closed():
            return b""
        future = asyncio.run_coroutine_threadsafe(self._response.content.read(size), self._loop)
        try:
            data = future.result(timeout=self._read_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.debug("Stream read timed out after %.1fs", self._read_timeout)
            return b""
        except (ClientError, OSError, FutureCancelledError, asyncio.CancelledError) as err:
            logger.debug("Stream read ended: %s", err)
            return b""
        self.bytes_read += len(data)
        return data

    def close(self) -> None:
        """Close the underlying connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._response.close()
        else:
            self._loop.call_soon_threadsafe(self._response.close)
