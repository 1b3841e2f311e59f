"""State bundle for a single playback attempt."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field

from .audio import FrameBlock
from .body import StreamBody
from .decoder import DecodedStream
from .stations import Station

logger = logging.getLogger(__name__)


@dataclass
class PlaybackSession:
    """
    Decoder, connection and completion signal of one playback attempt.

    A session is created when ``play`` is called and fills in as loading
    progresses. The controller holds at most one current session; replacing it
    calls ``cancel`` on the old one.
    """

    session_id: int
    station_index: int
    station: Station
    done: asyncio.Event = field(default_factory=asyncio.Event)
    """Set once the sink is finished with this session's frames."""
    cancelled: threading.Event = field(default_factory=threading.Event)
    """Cancellation token checked by the decode loop between pulls."""
    stream_url: str | None = None
    body: StreamBody | None = None
    decoded: DecodedStream | None = None
    enqueued: bool = False
    """True once the frames were handed to the sink, which then owns the decoder."""
    loading: bool = True
    """True until loading-stop was reported for this attempt."""

    def frames(self) -> Iterator[FrameBlock]:
        """Yield decoded blocks until the stream ends or the session is cancelled."""
        decoded = self.decoded
        assert decoded is not None
        try:
            for block in decoded.frames:
                if self.cancelled.is_set():
                    logger.debug("Session %d cancelled, stopping decode", self.session_id)
                    return
                yield block
        finally:
            decoded.close()

    def cancel(self) -> None:
        """Cancel decoding and release the connection."""
        self.cancelled.set()
        self.close()

    def close(self) -> None:
        """Close the connection; close the decoder too if the sink never took it."""
        if self.body is not None:
            self.body.close()
        if self.decoded is not None and not self.enqueued:
            self.decoded.close()
            self.decoded = None
