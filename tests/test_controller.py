"""Tests for the playback controller state machine."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable

import numpy as np
import pytest
from aiohttp.test_utils import TestServer

from aioboombap.audio import AudioFormat
from aioboombap.controller import PlaybackController, PlaybackState, PlayerSnapshot
from aioboombap.decoder import ByteSource, DecodedStream, StreamCodec
from aioboombap.errors import (
    DecoderInitError,
    MalformedPlaylist,
    PlaybackError,
    PlaylistFetchError,
    StreamFetchError,
    UnsupportedFormat,
)
from aioboombap.sink import OutputSink
from aioboombap.stations import StationCatalog

MP3, OGG, HTML, EMPTY, MISSING, PARAMS, SLOW, NO_STREAM = range(8)

BLOCKS = [np.full((64, 2), 0.25), np.full((64, 2), -0.25)]


class FakeDecoder:
    """Decoder factory recording codecs and returning canned blocks."""

    def __init__(self, error: PlaybackError | None = None) -> None:
        self.codecs: list[StreamCodec] = []
        self.error = error

    def __call__(self, codec: StreamCodec, source: ByteSource) -> DecodedStream:
        self.codecs.append(codec)
        if self.error is not None:
            raise self.error
        return DecodedStream(iter(BLOCKS), AudioFormat(sample_rate=44_100))


class BlockingDecoder(FakeDecoder):
    """Decoder factory that holds the worker thread until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.closed: list[StreamCodec] = []

    def __call__(self, codec: StreamCodec, source: ByteSource) -> DecodedStream:
        self.codecs.append(codec)
        self.entered.set()
        self.release.wait(5)
        return DecodedStream(
            iter(BLOCKS),
            AudioFormat(sample_rate=44_100),
            closer=lambda: self.closed.append(codec),
        )


class Recorder:
    """Collects listener invocations in order."""

    def __init__(self, controller: PlaybackController) -> None:
        self.loading: list[str] = []
        self.states: list[PlayerSnapshot] = []
        self.errors: list[PlaybackError] = []
        controller.add_loading_start_listener(lambda: self.loading.append("start"))
        controller.add_loading_stop_listener(lambda: self.loading.append("stop"))
        controller.add_state_listener(self.states.append)
        controller.add_error_listener(self.errors.append)


def _catalog(server: TestServer) -> StationCatalog:
    paths = [
        "/pls/stream.mp3",
        "/pls/stream.ogg",
        "/pls/page.html",
        "/empty.pls",
        "/missing.pls",
        "/pls/params.mp3",
        "/slow/stream.mp3",
        "/pls/no-such-stream",
    ]
    return StationCatalog.from_entries(
        [(f"Station {i}", str(server.make_url(path)), path) for i, path in enumerate(paths)]
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def decoder() -> FakeDecoder:
    return FakeDecoder()


@pytest.fixture
async def controller(radio_server, recording_sink, decoder):
    async with PlaybackController(
        stations=_catalog(radio_server), sink=recording_sink, decoder_factory=decoder
    ) as controller:
        yield controller


def _playing(controller: PlaybackController) -> Callable[[], bool]:
    return lambda: controller.state.state is PlaybackState.PLAYING


async def test_play_mp3_station(controller, recording_sink, decoder) -> None:
    recorder = Recorder(controller)
    controller.play(MP3)
    assert controller.state.state is PlaybackState.LOADING
    assert controller.state.loading
    assert recorder.loading == ["start"]

    await wait_for(_playing(controller))
    assert decoder.codecs == [StreamCodec.MP3]
    assert recorder.loading == ["start", "stop"]
    assert not controller.state.loading
    assert ("configure", AudioFormat(sample_rate=44_100), 0.1) in recording_sink.events
    assert recording_sink.events[-1] == "enqueue"
    assert [s.state for s in recorder.states][:2] == [PlaybackState.LOADING, PlaybackState.PLAYING]

    blocks = list(recording_sink.frames)
    assert len(blocks) == 2
    np.testing.assert_array_equal(blocks[0], BLOCKS[0])


async def test_play_ogg_station_uses_vorbis(controller, decoder) -> None:
    controller.play(OGG)
    await wait_for(_playing(controller))
    assert decoder.codecs == [StreamCodec.VORBIS]
    assert controller.state.station_index == OGG


@pytest.mark.parametrize(
    ("index", "error_type"),
    [
        (EMPTY, MalformedPlaylist),
        (MISSING, PlaylistFetchError),
        (NO_STREAM, StreamFetchError),
        (HTML, UnsupportedFormat),
        (PARAMS, UnsupportedFormat),
    ],
)
async def test_failed_attempt_returns_to_idle(
    controller, decoder, index: int, error_type: type[PlaybackError]
) -> None:
    recorder = Recorder(controller)
    controller.play(index)
    await wait_for(lambda: bool(recorder.errors))

    assert isinstance(recorder.errors[0], error_type)
    assert controller.state.state is PlaybackState.IDLE
    assert controller.state.last_error == str(recorder.errors[0])
    assert recorder.loading == ["start", "stop"]
    assert decoder.codecs == []


async def test_unsupported_format_reports_content_type(controller) -> None:
    recorder = Recorder(controller)
    controller.play(HTML)
    await wait_for(lambda: bool(recorder.errors))
    assert recorder.errors[0].content_type == "text/html"


async def test_decoder_failure_returns_to_idle(radio_server, recording_sink) -> None:
    decoder = FakeDecoder(DecoderInitError("no vorbis stream"))
    async with PlaybackController(
        stations=_catalog(radio_server), sink=recording_sink, decoder_factory=decoder
    ) as controller:
        recorder = Recorder(controller)
        controller.play(OGG)
        await wait_for(lambda: bool(recorder.errors))
        assert isinstance(recorder.errors[0], DecoderInitError)
        assert controller.state.state is PlaybackState.IDLE
        assert recorder.loading == ["start", "stop"]
        assert "enqueue" not in recording_sink.events


async def test_stop_when_idle_is_a_no_op(controller, recording_sink) -> None:
    recorder = Recorder(controller)
    controller.stop()
    controller.stop()
    assert recorder.states == []
    assert recorder.loading == []
    assert recording_sink.events == []


async def test_stop_while_playing(controller, recording_sink) -> None:
    recorder = Recorder(controller)
    controller.play(MP3)
    await wait_for(_playing(controller))

    controller.stop()
    assert controller.state.state is PlaybackState.IDLE
    assert recording_sink.events[-1] == "silence"
    assert PlaybackState.STOPPING in [s.state for s in recorder.states]
    assert list(recording_sink.frames) == []

    await asyncio.sleep(0.05)
    assert recorder.loading == ["start", "stop"]
    assert controller.state.state is PlaybackState.IDLE


async def test_play_replaces_current_station(controller, recording_sink, decoder) -> None:
    recorder = Recorder(controller)
    controller.play(MP3)
    await wait_for(_playing(controller))

    controller.play(OGG)
    assert controller.state.state is PlaybackState.LOADING
    await wait_for(_playing(controller))

    assert decoder.codecs == [StreamCodec.MP3, StreamCodec.VORBIS]
    assert recorder.loading == ["start", "stop", "start", "stop"]
    enqueues = [i for i, event in enumerate(recording_sink.events) if event == "enqueue"]
    assert len(enqueues) == 2
    assert "silence" in recording_sink.events[enqueues[0] + 1 : enqueues[1]]
    assert recording_sink.completions == 1


async def test_play_during_slow_load_supersedes_it(controller, decoder) -> None:
    recorder = Recorder(controller)
    controller.play(SLOW)
    await asyncio.sleep(0.05)
    controller.play(MP3)
    assert recorder.loading == ["start", "stop", "start"]

    await wait_for(_playing(controller))
    await asyncio.sleep(0.6)
    assert decoder.codecs == [StreamCodec.MP3]
    assert controller.state.station_index == MP3
    assert controller.state.state is PlaybackState.PLAYING
    assert recorder.loading == ["start", "stop", "start", "stop"]
    assert recorder.errors == []


async def test_natural_end_returns_to_idle(controller, recording_sink) -> None:
    recorder = Recorder(controller)
    controller.play(MP3)
    await wait_for(_playing(controller))

    recording_sink.finish()
    await wait_for(lambda: controller.state.state is PlaybackState.IDLE)
    assert recorder.loading == ["start", "stop", "stop"]
    assert recorder.errors == []


async def test_next_and_previous_wrap(controller) -> None:
    last = len(controller.stations) - 1
    controller.previous()
    assert controller.state.station_index == last
    assert controller.state.state is PlaybackState.LOADING

    controller.next()
    assert controller.state.station_index == 0
    controller.next()
    assert controller.state.station_index == 1


async def test_select_does_not_start_playback(controller, recording_sink) -> None:
    station = controller.select(-1)
    assert station == controller.get_station(len(controller.stations) - 1)
    assert controller.state.state is PlaybackState.IDLE
    assert recording_sink.events == []


async def test_get_station(controller) -> None:
    assert controller.get_station(OGG).name == f"Station {OGG}"


async def test_set_gain_is_clamped(radio_server, stream_recorder) -> None:
    sink = OutputSink(gain=0.5, stream_factory=stream_recorder)
    async with PlaybackController(stations=_catalog(radio_server), sink=sink) as controller:
        assert controller.state.gain == 0.5
        controller.set_gain(1.5)
        assert controller.gain == 1.0
        assert controller.state.gain == 1.0
        controller.set_gain(-0.2)
        assert sink.gain == 0.0


async def test_failing_listener_does_not_break_playback(controller) -> None:
    def explode() -> None:
        raise RuntimeError("listener failure")

    controller.add_loading_start_listener(explode)
    controller.add_state_listener(lambda _snapshot: explode())
    controller.play(MP3)
    await wait_for(_playing(controller))


async def test_empty_catalog_is_rejected(recording_sink) -> None:
    with pytest.raises(ValueError):
        PlaybackController(stations=StationCatalog(stations=()), sink=recording_sink)


async def test_snapshot_serializes(controller) -> None:
    controller.select(2)
    assert PlayerSnapshot.from_json(controller.state.to_json()) == controller.state


async def test_stop_while_loading(controller, recording_sink, decoder) -> None:
    recorder = Recorder(controller)
    controller.play(SLOW)
    await asyncio.sleep(0.05)
    controller.stop()
    assert controller.state.state is PlaybackState.IDLE
    assert recorder.loading == ["start", "stop"]

    await asyncio.sleep(0.6)
    assert controller.state.state is PlaybackState.IDLE
    assert recorder.loading == ["start", "stop"]
    assert "enqueue" not in recording_sink.events
    assert decoder.codecs == []
    assert recorder.errors == []


@pytest.mark.parametrize("interrupt", ["stop", "play"])
async def test_decoder_opened_for_cancelled_load_is_closed(
    radio_server, recording_sink, interrupt: str
) -> None:
    decoder = BlockingDecoder()
    async with PlaybackController(
        stations=_catalog(radio_server), sink=recording_sink, decoder_factory=decoder
    ) as controller:
        controller.play(MP3)
        await wait_for(decoder.entered.is_set)
        if interrupt == "stop":
            controller.stop()
        else:
            controller.play(HTML)
        decoder.release.set()

        await wait_for(lambda: decoder.closed == [StreamCodec.MP3])
        assert "enqueue" not in recording_sink.events
        assert controller.state.station_index == (MP3 if interrupt == "stop" else HTML)
        assert controller.state.state is not PlaybackState.PLAYING
