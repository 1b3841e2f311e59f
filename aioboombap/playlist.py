"""Resolve ``.pls`` playlist indirections to stream URLs."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from aiohttp import ClientError, ClientSession

from .errors import MalformedPlaylist, PlaylistFetchError

logger = logging.getLogger(__name__)

_ENTRY_PREFIX = "File"


def parse_playlist(lines: Iterable[bytes | str]) -> list[str]:
    """
    Extract the ``File<N>=`` values of a playlist, in document order.

    Only the line terminator is stripped; the value after the first ``=`` is
    otherwise kept as-is. Lines without the prefix are ignored, so a document
    without entries yields an empty list. Errors raised while iterating
    ``lines`` propagate to the caller.
    """
    urls: list[str] = []
    for raw_line in lines:
        line = raw_line.decode("utf-8", "replace") if isinstance(raw_line, bytes) else raw_line
        line = line.removesuffix("\n").removesuffix("\r")
        if not line.startswith(_ENTRY_PREFIX):
            continue
        _, sep, value = line.partition("=")
        if sep:
            urls.append(value)
    return urls


def first_stream_url(urls: list[str]) -> str:
    """Return the first candidate URL, raising MalformedPlaylist if there is none."""
    if not urls:
        raise MalformedPlaylist("Playlist contains no File= entries")
    return urls[0]


async def fetch_playlist(session: ClientSession, url: str) -> list[str]:
    """Download the playlist at ``url`` and return its candidate stream URLs."""
    logger.debug("Fetching playlist %s", url)
    try:
        async with session.get(url) as response:
            response.raise_for_status()
            body = await response.read()
    except (TimeoutError, ClientError) as err:
        raise PlaylistFetchError(f"Failed to fetch playlist {url}: {err}") from err

    urls = parse_playlist(body.splitlines(keepends=True))
    logger.debug("Playlist %s lists %d stream(s)", url, len(urls))
    return urls
