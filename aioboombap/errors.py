"""Errors raised by the playback engine.

Every failure a playback attempt can hit derives from ``PlaybackError`` so the
controller can absorb them through a single channel.
"""

from __future__ import annotations


class PlaybackError(Exception):
    """Base class for all playback failures."""


class PlaylistFetchError(PlaybackError):
    """The playlist document could not be fetched."""


class MalformedPlaylist(PlaybackError):  # noqa: N818
    """The playlist document contained no ``File<N>=`` entry."""


class StreamFetchError(PlaybackError):
    """The resolved stream URL could not be fetched."""


class UnsupportedFormat(PlaybackError):  # noqa: N818
    """The stream declared a missing or unrecognized content type."""

    def __init__(self, content_type: str | None) -> None:
        """Initialize with the offending content type."""
        super().__init__(f"Unsupported stream content type: {content_type!r}")
        self.content_type = content_type


class DecoderInitError(PlaybackError):
    """The container or codec headers could not be parsed."""


class DecodeReadError(PlaybackError):
    """A read failed mid-stream; treated as the end of the stream."""
