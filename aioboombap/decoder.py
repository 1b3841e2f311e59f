"""
Codec decoders turning an HTTP byte stream into stereo float frames.

Two variants are supported, selected by the exact ``Content-Type`` of the
stream: Vorbis in an Ogg container and MPEG Layer III. Both hand back a
``DecodedStream``: a lazy, forward-only iterator of ``(n, 2)`` float blocks
plus the ``AudioFormat`` known before the first block is pulled. Running out
of input, or a read failing half way, ends the iterator instead of raising.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, ClassVar, Final, Protocol

import av
import numpy as np
from av.error import FFmpegError
from av.logging import Capture

from .audio import STEREO, AudioFormat, FrameBlock
from .errors import DecodeReadError, DecoderInitError, UnsupportedFormat

logger = logging.getLogger(__name__)

BLOCK_FRAMES: Final[int] = 1024
"""Frames requested per pull from the MPEG decoder."""

_PCM16_SCALE: Final[float] = 32768.0
_BYTES_PER_FRAME: Final[int] = 4


class ByteSource(Protocol):
    """Anything PyAV can read a container from."""

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means end of stream."""


class StreamCodec(Enum):
    """Stream encodings, keyed by their HTTP content type."""

    VORBIS = "audio/ogg"
    """Vorbis audio in an Ogg container."""
    MP3 = "audio/mpeg"
    """MPEG-1/2 Layer III."""

    @classmethod
    def from_content_type(cls, content_type: str | None) -> StreamCodec:
        """Return the codec for an exact content type, or raise UnsupportedFormat."""
        for codec in cls:
            if codec.value == content_type:
                return codec
        raise UnsupportedFormat(content_type)


def pcm16_to_frames(data: bytes) -> FrameBlock:
    """
    Convert interleaved signed 16-bit little-endian stereo PCM to float frames.

    Each 4-byte group is one frame; trailing bytes that do not fill a frame are
    dropped. Samples are scaled by 1/32768, so -32768 maps to exactly -1.0.
    """
    usable = len(data) - len(data) % _BYTES_PER_FRAME
    if not usable:
        return np.empty((0, STEREO), dtype=np.float64)
    samples = np.frombuffer(data, dtype="<i2", count=usable // 2)
    return samples.reshape(-1, STEREO) / _PCM16_SCALE


def pull_pcm16_frames(
    read: Callable[[int], bytes], block_frames: int = BLOCK_FRAMES
) -> Iterator[FrameBlock]:
    """
    Yield frame blocks by pulling ``4 * block_frames`` PCM bytes per step from ``read``.

    A short or empty read, or a ``DecodeReadError``, ends the sequence; the
    complete frames of a short read are still yielded.
    """
    wanted = _BYTES_PER_FRAME * block_frames
    while True:
        try:
            data = read(wanted)
        except DecodeReadError as err:
            logger.debug("PCM stream ended on read error: %s", err)
            return
        block = pcm16_to_frames(data)
        if len(block):
            yield block
        if len(data) < wanted:
            return


@dataclass
class DecodedStream:
    """Frames plus format of a successfully opened stream."""

    frames: Iterator[FrameBlock]
    """Lazy, non-restartable iterator of frame blocks in decode order."""
    audio_format: AudioFormat
    """Format of every block produced by ``frames``."""
    closer: Callable[[], None] | None = None
    """Releases decoder resources when the frames are never consumed."""

    def close(self) -> None:
        """Release decoder resources. Only call from the thread consuming ``frames``."""
        close_frames = getattr(self.frames, "close", None)
        if close_frames is not None:
            close_frames()
        if self.closer is not None:
            self.closer()


class CodecDecoder(ABC):
    """Base class for PyAV backed decoders."""

    codec: ClassVar[StreamCodec]
    container_format: ClassVar[str]
    codec_names: ClassVar[frozenset[str]]
    _resample_format: ClassVar[str]

    def __init__(self, source: ByteSource | BinaryIO) -> None:
        """
        Open the container and parse its headers.

        Raises:
            DecoderInitError: The container or codec headers are unreadable.
        """
        self._container: Any = None
        self._closed = False
        try:
            with Capture() as logs:
                self._container = av.open(source, mode="r", format=self.container_format)
        except (FFmpegError, OSError, ValueError) as err:
            raise DecoderInitError(f"Cannot open {self.codec.value} stream: {err}") from err
        finally:
            for log in logs:
                logger.debug("Opening %s container log from av: %s", self.container_format, log)

        if not self._container.streams.audio:
            self.close()
            raise DecoderInitError(f"No audio track in {self.codec.value} stream")
        self._stream = self._container.streams.audio[0]
        codec_name = self._stream.codec_context.name
        if codec_name not in self.codec_names:
            self.close()
            raise DecoderInitError(f"Unexpected codec {codec_name!r} in {self.codec.value} stream")
        sample_rate = self._stream.codec_context.sample_rate or self._stream.rate
        if not sample_rate:
            self.close()
            raise DecoderInitError(f"{self.codec.value} stream does not declare a sample rate")
        self._sample_rate = int(sample_rate)
        logger.debug(
            "Opened %s stream (%s, %d Hz)", self.codec.value, codec_name, self._sample_rate
        )

    @property
    def sample_rate(self) -> int:
        """Sample rate declared by the stream."""
        return self._sample_rate

    @property
    def audio_format(self) -> AudioFormat:
        """Output format of the decoded frames."""
        return AudioFormat(sample_rate=self._sample_rate)

    @abstractmethod
    def frames(self) -> Iterator[FrameBlock]:
        """Return the frame block iterator."""

    def _decoded_frames(self) -> Iterator[Any]:
        """Yield PyAV frames resampled to packed stereo at the stream rate."""
        resampler = av.AudioResampler(
            format=self._resample_format, layout="stereo", rate=self._sample_rate
        )
        for frame in self._container.decode(self._stream):
            yield from resampler.resample(frame)
        yield from resampler.resample(None)

    def close(self) -> None:
        """Close the container. Idempotent."""
        if self._closed or self._container is None:
            return
        self._closed = True
        try:
            self._container.close()
        except (FFmpegError, OSError):
            logger.debug("Error closing %s container", self.codec.value, exc_info=True)


class VorbisDecoder(CodecDecoder):
    """Vorbis-in-Ogg decoder; headers are parsed eagerly on construction."""

    codec = StreamCodec.VORBIS
    container_format = "ogg"
    codec_names = frozenset({"vorbis", "libvorbis"})
    _resample_format = "flt"

    def frames(self) -> Iterator[FrameBlock]:
        """Yield float blocks until the stream ends or a read fails."""
        try:
            for frame in self._decoded_frames():
                block = frame.to_ndarray().reshape(-1, STEREO).astype(np.float64)
                if len(block):
                    yield block
        except (FFmpegError, OSError) as err:
            logger.debug("Vorbis stream ended on read error: %s", err)
        finally:
            self.close()


class Mp3Decoder(CodecDecoder):
    """
    Streaming MPEG Layer III decoder.

    ``read`` exposes the decoded audio as signed 16-bit little-endian stereo
    PCM; ``frames`` pulls fixed-size groups of bytes from it.
    """

    codec = StreamCodec.MP3
    container_format = "mp3"
    codec_names = frozenset({"mp3", "mp3float", "mp3on4", "mp3on4float"})
    _resample_format = "s16"

    def __init__(self, source: ByteSource | BinaryIO, *, block_frames: int = BLOCK_FRAMES) -> None:
        """Open the MPEG stream; ``block_frames`` sets frames requested per pull."""
        super().__init__(source)
        self._block_frames = block_frames
        self._pending = bytearray()
        self._decoded: Iterator[Any] | None = None
        self._eof = False
        self._error: Exception | None = None

    def read(self, size: int) -> bytes:
        """
        Read up to ``size`` bytes of PCM.

        A short result means the stream ended. Raises DecodeReadError when the
        stream failed and no buffered bytes remain.
        """
        while len(self._pending) < size and not self._eof:
            self._fill()
        if not self._pending and self._error is not None:
            raise DecodeReadError(str(self._error)) from self._error
        data = bytes(self._pending[:size])
        del self._pending[:size]
        return data

    def _fill(self) -> None:
        if self._decoded is None:
            self._decoded = self._decoded_frames()
        try:
            frame = next(self._decoded)
        except StopIteration:
            self._eof = True
            return
        except (FFmpegError, OSError) as err:
            self._eof = True
            self._error = err
            return
        self._pending += frame.to_ndarray().astype("<i2").tobytes()

    def frames(self) -> Iterator[FrameBlock]:
        """Pull ``block_frames`` frames at a time until a short or failed read."""
        try:
            yield from pull_pcm16_frames(self.read, self._block_frames)
        finally:
            self.close()


_DECODERS: Final[dict[StreamCodec, type[CodecDecoder]]] = {
    StreamCodec.VORBIS: VorbisDecoder,
    StreamCodec.MP3: Mp3Decoder,
}


def open_decoder(codec: StreamCodec, source: ByteSource | BinaryIO) -> DecodedStream:
    """
    Open a decoder for ``codec`` over ``source``.

    This blocks while the container headers are read, so call it off the event
    loop when ``source`` is network backed.

    Raises:
        DecoderInitError: The stream headers could not be parsed.
    """
    decoder = _DECODERS[codec](source)
    return DecodedStream(
        frames=decoder.frames(),
        audio_format=decoder.audio_format,
        closer=decoder.close,
    )
