"""Boombap: asyncio internet radio player for playlist-referenced streams."""

from __future__ import annotations

from aioboombap.audio import AudioFormat
from aioboombap.controller import PlaybackController, PlaybackState, PlayerSnapshot
from aioboombap.decoder import DecodedStream, StreamCodec, open_decoder, pcm16_to_frames
from aioboombap.errors import (
    DecodeReadError,
    DecoderInitError,
    MalformedPlaylist,
    PlaybackError,
    PlaylistFetchError,
    StreamFetchError,
    UnsupportedFormat,
)
from aioboombap.playlist import fetch_playlist, first_stream_url, parse_playlist
from aioboombap.sink import OutputSink
from aioboombap.stations import STATIONS, Station, StationCatalog

__all__ = [
    "STATIONS",
    "AudioFormat",
    "DecodeReadError",
    "DecodedStream",
    "DecoderInitError",
    "MalformedPlaylist",
    "OutputSink",
    "PlaybackController",
    "PlaybackError",
    "PlaybackState",
    "PlayerSnapshot",
    "PlaylistFetchError",
    "Station",
    "StationCatalog",
    "StreamCodec",
    "StreamFetchError",
    "UnsupportedFormat",
    "fetch_playlist",
    "first_stream_url",
    "open_decoder",
    "parse_playlist",
    "pcm16_to_frames",
]
