"""Shared fixtures: fake audio devices, a recording sink and an HTTP test server."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any

import numpy as np
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from aioboombap.audio import AudioFormat


class FakeOutputStream:
    """Stands in for ``sounddevice.OutputStream``; tests drive the callback."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        self.closed = True

    def render(self, frames: int = 256) -> np.ndarray:
        """Ask the sink for one buffer, pre-filled with garbage to check padding."""
        out = np.full((frames, 2), 9.0, dtype=np.float32)
        self.callback(out, frames, None, 0)
        return out

    def render_until(
        self, predicate: Callable[[], bool], frames: int = 256, timeout: float = 5.0
    ) -> np.ndarray:
        """Render buffers until ``predicate`` holds; return the non-silent frames."""
        rendered: list[np.ndarray] = []
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("Timed out rendering audio")
            out = self.render(frames)
            rendered.append(out[np.any(out != 0, axis=1)])
            time.sleep(0.001)
        return np.concatenate(rendered) if rendered else np.empty((0, 2), dtype=np.float32)


class StreamRecorder:
    """Stream factory recording every device stream it opens."""

    def __init__(self) -> None:
        self.streams: list[FakeOutputStream] = []

    def __call__(self, **kwargs: Any) -> FakeOutputStream:
        stream = FakeOutputStream(**kwargs)
        self.streams.append(stream)
        return stream

    @property
    def last(self) -> FakeOutputStream:
        return self.streams[-1]


class RecordingSink:
    """Output sink double that records calls and lets tests end a source."""

    def __init__(self) -> None:
        self.gain = 0.5
        self.events: list[Any] = []
        self.frames: Iterator[np.ndarray] | None = None
        self._on_complete: Callable[[], None] | None = None
        self.completions = 0

    def configure(self, audio_format: AudioFormat, buffer_duration: float) -> None:
        self.events.append(("configure", audio_format, buffer_duration))

    def enqueue(self, frames: Iterator[np.ndarray], on_complete: Callable[[], None]) -> None:
        self.silence()
        self.events.append("enqueue")
        self.frames = frames
        self._on_complete = on_complete

    def silence(self) -> None:
        self.events.append("silence")
        self._fire()

    def finish(self) -> None:
        """Simulate the source running out of frames."""
        self._fire()

    def close(self) -> None:
        self.events.append("close")
        self._fire()

    def _fire(self) -> None:
        callback, self._on_complete = self._on_complete, None
        if callback is not None:
            self.completions += 1
            callback()


@pytest.fixture
def stream_recorder() -> StreamRecorder:
    """Return a device stream factory that records opened streams."""
    return StreamRecorder()


@pytest.fixture
def recording_sink() -> RecordingSink:
    """Return a recording sink double."""
    return RecordingSink()


PLAYLIST_TEMPLATE = """[playlist]
numberofentries=2
File1={base}/{stream}
Title1=Test stream
Length1=-1
File2={base}/backup
Version=2
"""


async def _slow_playlist(request: web.Request) -> web.Response:
    await asyncio.sleep(0.5)
    return await _playlist(request)


async def _playlist(request: web.Request) -> web.Response:
    base = f"http://{request.host}"
    body = PLAYLIST_TEMPLATE.format(base=base, stream=request.match_info["stream"])
    return web.Response(text=body, content_type="audio/x-scpls")


async def _empty_playlist(_request: web.Request) -> web.Response:
    return web.Response(text="[playlist]\nnumberofentries=0\n", content_type="audio/x-scpls")


def _stream(content_type: str) -> Callable[[web.Request], Any]:
    async def handler(_request: web.Request) -> web.Response:
        response = web.Response(body=b"\x00" * 4096)
        response.headers["Content-Type"] = content_type
        return response

    return handler


@pytest.fixture
async def radio_server() -> AsyncIterator[TestServer]:
    """Serve playlists and fake audio streams."""
    app = web.Application()
    app.router.add_get("/pls/{stream}", _playlist)
    app.router.add_get("/slow/{stream}", _slow_playlist)
    app.router.add_get("/empty.pls", _empty_playlist)
    app.router.add_get("/stream.mp3", _stream("audio/mpeg"))
    app.router.add_get("/stream.ogg", _stream("audio/ogg"))
    app.router.add_get("/page.html", _stream("text/html"))
    app.router.add_get("/params.mp3", _stream("audio/mpeg; charset=binary"))
    async with TestServer(app) as server:
        yield server
