"""Playback controller: the state machine driven by the presentation shell."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from types import TracebackType
from typing import Any, Final, Self

from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout, hdrs
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .body import READ_TIMEOUT, StreamBody
from .decoder import ByteSource, DecodedStream, StreamCodec, open_decoder
from .errors import PlaybackError, StreamFetchError
from .playlist import fetch_playlist, first_stream_url
from .session import PlaybackSession
from .sink import BUFFER_DURATION, OutputSink
from .stations import STATIONS, Station, StationCatalog

logger = logging.getLogger(__name__)

HTTP_TIMEOUT: Final[ClientTimeout] = ClientTimeout(total=None, sock_connect=10, sock_read=30)
"""Streams never finish, so only connect and per-read limits apply."""

DecoderFactory = Callable[[StreamCodec, ByteSource], DecodedStream]
LoadingCallback = Callable[[], None]
StateCallback = Callable[["PlayerSnapshot"], None]
ErrorCallback = Callable[[PlaybackError], None]


class PlaybackState(Enum):
    """Controller states."""

    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    STOPPING = "stopping"


@dataclass(frozen=True)
class PlayerSnapshot(DataClassORJSONMixin):
    """Read-only view of the controller state handed to the shell."""

    state: PlaybackState
    station_index: int
    loading: bool = False
    gain: float = 0.0
    last_error: str | None = None


class PlaybackController:
    """
    Play catalog stations one at a time.

    ``play`` returns immediately and resolves, fetches and decodes the station
    on a background task. Every attempt is bracketed by the loading-start and
    loading-stop listeners. Failures never propagate to the caller: they are
    logged, reported to the error listeners and the controller returns to idle.
    Must be used from a single event loop thread.
    """

    def __init__(
        self,
        *,
        stations: StationCatalog = STATIONS,
        sink: OutputSink | None = None,
        session: ClientSession | None = None,
        decoder_factory: DecoderFactory = open_decoder,
        buffer_duration: float = BUFFER_DURATION,
        read_timeout: float = READ_TIMEOUT,
        http_timeout: ClientTimeout = HTTP_TIMEOUT,
    ) -> None:
        """
        Create a playback controller.

        Args:
            stations: Catalog that indices refer to.
            sink: Audio output; a sounddevice backed sink is created if omitted.
            session: HTTP session to use; one is created and owned if omitted.
            decoder_factory: Opens a decoder for a codec over a byte source.
            buffer_duration: Device buffer length in seconds.
            read_timeout: Seconds a stream read may stall before ending playback.
            http_timeout: Timeouts for the owned HTTP session.
        """
        if not len(stations):
            raise ValueError("stations must not be empty")
        self._stations = stations
        self._sink = sink if sink is not None else OutputSink()
        self._http = session
        self._owns_http = session is None
        self._http_timeout = http_timeout
        self._decoder_factory = decoder_factory
        self._buffer_duration = buffer_duration
        self._read_timeout = read_timeout
        self._snapshot = PlayerSnapshot(
            state=PlaybackState.IDLE, station_index=0, gain=self._sink.gain
        )
        self._session: PlaybackSession | None = None
        self._session_counter = 0
        self._task: asyncio.Task[None] | None = None
        self._watchers: set[asyncio.Task[None]] = set()
        self._loading_start_callbacks: list[LoadingCallback] = []
        self._loading_stop_callbacks: list[LoadingCallback] = []
        self._state_callbacks: list[StateCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def state(self) -> PlayerSnapshot:
        """Return a snapshot of the current player state."""
        return self._snapshot

    @property
    def stations(self) -> StationCatalog:
        """Return the station catalog."""
        return self._stations

    @property
    def gain(self) -> float:
        """Return the output gain."""
        return self._sink.gain

    def get_station(self, index: int) -> Station:
        """Return the station at ``index``."""
        return self._stations[index]

    def select(self, index: int) -> Station:
        """Make ``index`` the current station without starting playback."""
        station_index = self._stations.wrap(index)
        self._update(station_index=station_index)
        return self._stations[station_index]

    def play(self, index: int | None = None) -> None:
        """
        Start playing ``index`` (or the current station) in the background.

        Any session that is loading or playing is silenced and replaced first.
        """
        if index is not None:
            self._update(station_index=self._stations.wrap(index))
        station_index = self._snapshot.station_index
        station = self._stations[station_index]
        self._supersede()

        self._session_counter += 1
        session = PlaybackSession(
            session_id=self._session_counter, station_index=station_index, station=station
        )
        self._session = session
        logger.info("Loading station %d (%s)", station_index, station.name)
        self._update(state=PlaybackState.LOADING, loading=True, last_error=None)
        self._notify(self._loading_start_callbacks)
        self._task = asyncio.get_running_loop().create_task(self._run_session(session))

    def stop(self) -> None:
        """Silence output and drop the current session. No-op when idle."""
        if self._session is None and self._snapshot.state is PlaybackState.IDLE:
            return
        self._update(state=PlaybackState.STOPPING)
        self._supersede()
        self._update(state=PlaybackState.IDLE, loading=False)
        logger.info("Playback stopped")

    def next(self) -> None:
        """Play the next station, wrapping to the first."""
        self._update(station_index=self._stations.wrap(self._snapshot.station_index + 1))
        self.stop()
        self.play()

    def previous(self) -> None:
        """Play the previous station, wrapping to the last."""
        self._update(station_index=self._stations.wrap(self._snapshot.station_index - 1))
        self.stop()
        self.play()

    def set_gain(self, gain: float) -> None:
        """Set the output gain; applies to the next rendered block."""
        self._sink.gain = gain
        self._update(gain=self._sink.gain)

    def add_loading_start_listener(self, callback: LoadingCallback) -> None:
        """Register a callback invoked when a playback attempt starts loading."""
        self._loading_start_callbacks.append(callback)

    def add_loading_stop_listener(self, callback: LoadingCallback) -> None:
        """Register a callback invoked when a playback attempt stops loading."""
        self._loading_stop_callbacks.append(callback)

    def add_state_listener(self, callback: StateCallback) -> None:
        """Register a callback invoked with every new state snapshot."""
        self._state_callbacks.append(callback)

    def add_error_listener(self, callback: ErrorCallback) -> None:
        """Register a callback invoked when a playback attempt fails."""
        self._error_callbacks.append(callback)

    async def close(self) -> None:
        """Stop playback and release the sink and HTTP session."""
        self.stop()
        tasks = [task for task in (self._task, *self._watchers) if task is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._task = None
        self._watchers.clear()
        self._sink.close()
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _supersede(self) -> None:
        """Silence the sink and cancel the current session, if any."""
        self._sink.silence()
        session = self._session
        self._session = None
        if session is not None:
            logger.debug("Superseding session %d", session.session_id)
            session.cancel()
            self._finish_loading(session)
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run_session(self, session: PlaybackSession) -> None:
        loop = asyncio.get_running_loop()
        try:
            urls = await fetch_playlist(self._get_http(), session.station.url)
            session.stream_url = first_stream_url(urls)
            response = await self._open_stream(session.stream_url)
            session.body = StreamBody(response, loop, read_timeout=self._read_timeout)
            codec = StreamCodec.from_content_type(response.headers.get(hdrs.CONTENT_TYPE))
            opening = asyncio.ensure_future(
                asyncio.to_thread(self._decoder_factory, codec, session.body)
            )
            try:
                session.decoded = await asyncio.shield(opening)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted; close its result once it lands
                opening.add_done_callback(_close_abandoned_decoder)
                raise
            if session is not self._session:
                session.close()
                return

            audio_format = session.decoded.audio_format
            self._sink.configure(audio_format, self._buffer_duration)
            session.enqueued = True
            self._sink.enqueue(
                session.frames(), on_complete=partial(self._on_source_complete, loop, session)
            )
            logger.info(
                "Playing %s (%s, %d Hz)",
                session.station.name,
                codec.value,
                audio_format.sample_rate,
            )
            self._update(state=PlaybackState.PLAYING, loading=False)
            self._finish_loading(session)
            watcher = loop.create_task(self._watch_session(session))
            self._watchers.add(watcher)
            watcher.add_done_callback(self._watchers.discard)
        except PlaybackError as err:
            session.close()
            self._fail(session, err)
        except Exception as err:
            logger.exception("Unexpected error while loading %s", session.station.name)
            session.close()
            self._fail(session, PlaybackError(str(err)))
        finally:
            self._finish_loading(session)

    async def _open_stream(self, url: str) -> ClientResponse:
        logger.debug("Fetching stream %s", url)
        try:
            response = await self._get_http().get(url)
        except (TimeoutError, ClientError) as err:
            raise StreamFetchError(f"Failed to fetch stream {url}: {err}") from err
        if response.status >= 400:
            response.close()
            raise StreamFetchError(f"Failed to fetch stream {url}: HTTP {response.status}")
        return response

    async def _watch_session(self, session: PlaybackSession) -> None:
        """Release the connection once the sink is done with the session."""
        await session.done.wait()
        session.close()
        if session.body is not None:
            logger.debug(
                "Closed stream for %s after %d bytes", session.station.name, session.body.bytes_read
            )
        if session is not self._session:
            return
        logger.info("Stream for %s ended", session.station.name)
        self._session = None
        self._update(state=PlaybackState.IDLE, loading=False)
        self._notify(self._loading_stop_callbacks)

    def _on_source_complete(
        self, loop: asyncio.AbstractEventLoop, session: PlaybackSession
    ) -> None:
        # May run on the device or feeder thread
        if not loop.is_closed():
            loop.call_soon_threadsafe(session.done.set)

    def _fail(self, session: PlaybackSession, err: PlaybackError) -> None:
        if session is not self._session:
            logger.debug("Ignoring failure of superseded session %d: %s", session.session_id, err)
            return
        logger.warning("Playback of %s failed: %s", session.station.name, err)
        self._session = None
        self._update(state=PlaybackState.IDLE, loading=False, last_error=str(err))
        self._notify(self._error_callbacks, err)

    def _finish_loading(self, session: PlaybackSession) -> None:
        if not session.loading:
            return
        session.loading = False
        if session is self._session or self._session is None:
            self._update(loading=False)
        self._notify(self._loading_stop_callbacks)

    def _get_http(self) -> ClientSession:
        if self._http is None:
            self._http = ClientSession(timeout=self._http_timeout)
        return self._http

    def _update(self, **changes: Any) -> None:
        snapshot = replace(self._snapshot, **changes)
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        self._notify(self._state_callbacks, snapshot)

    def _notify(self, callbacks: list[Callable[..., None]], *args: Any) -> None:
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception("Error in controller callback %s", callback)

    async def __aenter__(self) -> Self:
        """Enter the async context manager returning this instance."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Stop playback and release resources when leaving the context."""
        await self.close()


def _close_abandoned_decoder(future: asyncio.Future[DecodedStream]) -> None:
    """Close a decoder whose loading session was cancelled while it was opening."""
    if future.cancelled() or future.exception() is not None:
        return
    logger.debug("Closing decoder opened for a cancelled session")
    future.result().close()
