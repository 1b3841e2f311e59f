"""Audio output sink backed by a sounddevice output stream."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Final

import numpy as np

from .audio import STEREO, AudioFormat, FrameBlock

logger = logging.getLogger(__name__)

BUFFER_DURATION: Final[float] = 0.1
"""Device buffer length in seconds."""
DEFAULT_GAIN: Final[float] = 0.5
"""Initial output gain."""

StreamFactory = Callable[..., Any]
CompletionCallback = Callable[[], None]


@dataclass(slots=True)
class _Source:
    """One enqueued frame producer and its completion bookkeeping."""

    source_id: int
    on_complete: CompletionCallback
    cancelled: threading.Event = field(default_factory=threading.Event)
    completed: bool = False


class OutputSink:
    """
    Render frame blocks from one source at a time to an audio device.

    ``enqueue`` starts a feeder thread that pulls blocks from the producer, in
    order, into a bounded queue. The device callback drains that queue, scales
    every sample by the current gain and pads with silence when the queue runs
    dry. Each block is tagged with its source, so blocks from a source that was
    silenced or replaced are dropped before they reach the device.

    Attributes:
        _stream_factory: Callable creating the device stream; defaults to a
            ``sounddevice.OutputStream``.
        _queue_blocks: Maximum number of blocks buffered ahead of the device.
    """

    _POLL_INTERVAL: Final[float] = 0.1
    """Seconds the feeder waits on a full queue before re-checking cancellation."""

    def __init__(
        self,
        *,
        gain: float = DEFAULT_GAIN,
        stream_factory: StreamFactory | None = None,
        queue_blocks: int = 32,
    ) -> None:
        """
        Initialize the output sink.

        Args:
            gain: Initial gain in [0.0, 1.0].
            stream_factory: Creates the device stream. Receives ``samplerate``,
                ``blocksize``, ``channels``, ``dtype`` and ``callback`` keywords.
            queue_blocks: Bound on blocks queued ahead of the device.
        """
        self._stream_factory = stream_factory or _sounddevice_stream
        self._queue_blocks = queue_blocks
        self._queue: queue.Queue[tuple[int, FrameBlock | None]] = queue.Queue(queue_blocks)
        self._lock = threading.Lock()
        self._gain = _clamp_gain(gain)
        self._format: AudioFormat | None = None
        self._blocksize = 0
        self._stream: Any = None
        self._source: _Source | None = None
        self._next_source_id = 0
        self._feeder: threading.Thread | None = None

        # Partially rendered block of the current source
        self._current_block: FrameBlock | None = None
        self._current_offset = 0
        self._underrun_count = 0

    @property
    def gain(self) -> float:
        """Return the current output gain."""
        return self._gain

    @gain.setter
    def gain(self, value: float) -> None:
        self._gain = _clamp_gain(value)

    @property
    def audio_format(self) -> AudioFormat | None:
        """Return the configured format, if any."""
        return self._format

    def configure(
        self, audio_format: AudioFormat, buffer_duration: float = BUFFER_DURATION
    ) -> None:
        """Open the device for ``audio_format``, keeping the stream if nothing changed."""
        blocksize = audio_format.frames_for(buffer_duration)
        if self._stream is not None and self._format == audio_format:
            if self._blocksize == blocksize:
                return
        self._close_stream()
        self._format = audio_format
        self._blocksize = blocksize
        self._stream = self._stream_factory(
            samplerate=audio_format.sample_rate,
            blocksize=blocksize,
            channels=STEREO,
            dtype="float32",
            callback=self._audio_callback,
        )
        self._stream.start()
        logger.info(
            "Audio output configured: %d Hz, %d frame buffer", audio_format.sample_rate, blocksize
        )

    def enqueue(self, frames: Iterator[FrameBlock], on_complete: CompletionCallback) -> None:
        """
        Play ``frames`` in place of whatever is currently playing.

        ``on_complete`` runs exactly once: after the last block was rendered or
        when the source is silenced. It may run on the device or feeder thread.
        """
        self.silence()
        with self._lock:
            self._next_source_id += 1
            source = _Source(source_id=self._next_source_id, on_complete=on_complete)
            self._source = source
        self._feeder = threading.Thread(
            target=self._feed,
            args=(source, frames),
            name=f"sink-feeder-{source.source_id}",
            daemon=True,
        )
        self._feeder.start()
        logger.debug("Enqueued source %d", source.source_id)

    def silence(self) -> None:
        """Stop and discard the current source. Safe to call when idle."""
        with self._lock:
            source = self._source
            self._source = None
            self._current_block = None
            self._current_offset = 0
            self._drain_queue()
        if source is None:
            return
        source.cancelled.set()
        logger.debug("Silenced source %d", source.source_id)
        self._complete(source)

    def close(self) -> None:
        """Silence output and release the device."""
        self.silence()
        self._close_stream()
        self._format = None

    def _feed(self, source: _Source, frames: Iterator[FrameBlock]) -> None:
        """Pull blocks from the producer into the queue until done or cancelled."""
        try:
            for block in frames:
                if not self._put(source, block):
                    return
            self._put(source, None)
        except Exception:
            logger.exception("Frame producer for source %d failed", source.source_id)
            self._put(source, None)
        finally:
            close_frames = getattr(frames, "close", None)
            if close_frames is not None:
                close_frames()
            logger.debug("Feeder for source %d finished", source.source_id)

    def _put(self, source: _Source, block: FrameBlock | None) -> bool:
        """Queue a block for ``source``; return False once the source is cancelled."""
        while not source.cancelled.is_set():
            try:
                self._queue.put((source.source_id, block), timeout=self._POLL_INTERVAL)
            except queue.Full:
                continue
            return True
        return False

    def _drain_queue(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _complete(self, source: _Source) -> None:
        with self._lock:
            if source.completed:
                return
            source.completed = True
            if self._source is source:
                self._source = None
        try:
            source.on_complete()
        except Exception:
            logger.exception("Error in completion callback for source %d", source.source_id)

    def _audio_callback(
        self,
        outdata: np.ndarray,
        frames: int,
        time: Any,  # noqa: ARG002
        status: Any,
    ) -> None:
        """
        Audio callback invoked by sounddevice when the output buffer needs filling.

        Args:
            outdata: Output buffer of shape ``(frames, 2)`` to fill.
            frames: Number of frames requested.
            time: Timing information (unused).
            status: Status flags (underrun, overflow, etc.).
        """
        if status:
            logger.debug("Audio callback status: %s", status)
        finished: _Source | None = None
        try:
            finished = self._fill_audio_buffer(outdata, frames)
        except Exception:  # pragma: no cover - error handling
            logger.exception("Error in audio callback")
            outdata.fill(0)
        if finished is not None:
            self._complete(finished)

    def _fill_audio_buffer(self, outdata: np.ndarray, frames: int) -> _Source | None:
        """Copy queued blocks into ``outdata``; return the source that just finished."""
        written = 0
        finished: _Source | None = None
        with self._lock:
            source = self._source
            while written < frames and source is not None:
                if self._current_block is None:
                    try:
                        source_id, block = self._queue.get_nowait()
                    except queue.Empty:
                        self._underrun_count += 1
                        logger.debug("Buffer underrun #%d", self._underrun_count)
                        break
                    if source_id != source.source_id:
                        continue
                    if block is None:
                        finished = source
                        break
                    self._current_block = block
                    self._current_offset = 0

                block = self._current_block
                count = min(len(block) - self._current_offset, frames - written)
                outdata[written : written + count] = block[
                    self._current_offset : self._current_offset + count
                ]
                written += count
                self._current_offset += count
                if self._current_offset >= len(block):
                    self._current_block = None
                    self._current_offset = 0

        if written < frames:
            outdata[written:] = 0
        gain = self._gain
        if gain != 1.0:
            outdata *= gain
        return finished

    def _close_stream(self) -> None:
        """Close the audio output stream."""
        stream = self._stream
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception:  # pragma: no cover - backend failure
                logger.exception("Failed to close audio output stream")
        self._stream = None


def _sounddevice_stream(**kwargs: Any) -> Any:
    # PortAudio is loaded on import, so defer it until a device is opened
    import sounddevice  # noqa: PLC0415

    return sounddevice.OutputStream(latency="high", **kwargs)


def _clamp_gain(value: float) -> float:
    return min(1.0, max(0.0, float(value)))
