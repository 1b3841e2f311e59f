"""The compiled-in station catalog."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from mashumaro.mixins.orjson import DataClassORJSONMixin


@dataclass(frozen=True)
class Station(DataClassORJSONMixin):
    """A radio station reachable through a playlist indirection."""

    name: str
    """Display name."""
    url: str
    """URL of the ``.pls`` playlist pointing at the live stream."""
    description: str
    """One-line description shown by the info action."""


@dataclass(frozen=True)
class StationCatalog(DataClassORJSONMixin):
    """Ordered, read-only list of stations."""

    stations: tuple[Station, ...]

    def __len__(self) -> int:
        """Return the number of stations."""
        return len(self.stations)

    def __getitem__(self, index: int) -> Station:
        """Return the station at ``index``."""
        return self.stations[index]

    def wrap(self, index: int) -> int:
        """Map any integer onto a valid catalog index, wrapping in both directions."""
        if not self.stations:
            raise IndexError("Station catalog is empty")
        return index % len(self.stations)

    @classmethod
    def from_entries(cls, entries: Sequence[tuple[str, str, str]]) -> StationCatalog:
        """Build a catalog from ``(name, url, description)`` triples."""
        return cls(stations=tuple(Station(*entry) for entry in entries))


_SOMAFM: tuple[tuple[str, str, str], ...] = (
    (
        "Groove Salad",
        "https://somafm.com/groovesalad256.pls",
        "A nicely chilled plate of ambient/downtempo beats and grooves.",
    ),
    (
        "Drone Zone",
        "https://somafm.com/dronezone256.pls",
        "Served best chilled, safe with most medications. "
        "Atmospheric textures with minimal beats.",
    ),
    (
        "Space Station Soma",
        "https://somafm.com/spacestation.pls",
        "Tune in, turn on, space out. Spaced-out ambient and mid-tempo electronica.",
    ),
    (
        "Deep Space One",
        "https://somafm.com/deepspaceone.pls",
        "Deep ambient electronic, experimental and space music. "
        "For inner and outer space exploration.",
    ),
    (
        "Secret Agent",
        "https://somafm.com/secretagent.pls",
        "The soundtrack for your stylish, mysterious, dangerous life. For Spies and PIs too!",
    ),
    (
        "Groove Salad Classic",
        "https://somafm.com/gsclassic.pls",
        "The classic and influential downtempo electronica channel from SomaFM.",
    ),
    (
        "Underground 80s",
        "https://somafm.com/u80s256.pls",
        "Early 80s UK Synthpop and a bit of New Wave.",
    ),
    (
        "Synphaera Radio",
        "https://somafm.com/synphaera256.pls",
        "Ambient, techno and electronic music from the underground.",
    ),
    (
        "Beat Blender",
        "https://somafm.com/beatblender.pls",
        "A late night blend of deep-house and downtempo chill.",
    ),
    (
        "DEF CON Radio",
        "https://somafm.com/defcon256.pls",
        "Music for Hacking. The DEF CON Year-Round Channel.",
    ),
    (
        "The Trip",
        "https://somafm.com/thetrip.pls",
        "Progressive house / trance. Tip top tunes.",
    ),
    (
        "Sonic Universe",
        "https://somafm.com/sonicuniverse256.pls",
        "Transcending the world of jazz with eclectic, avant-garde takes on tradition.",
    ),
    (
        "Seven Inch Soul",
        "https://somafm.com/7soul.pls",
        "Vintage soul tracks from the original 45 RPM vinyl.",
    ),
    (
        "Cliqhop",
        "https://somafm.com/cliqhop256.pls",
        "Blips'n'beeps backed mostly w/beats. Intelligent Dance Music.",
    ),
    (
        "Illinois Street Lounge",
        "https://somafm.com/illstreet.pls",
        "Classic bachelor pad, playful exotica and vintage music of tomorrow.",
    ),
    (
        "Fluid",
        "https://somafm.com/fluid.pls",
        "NEW! Drown in the electronic sound of instrumental hiphop, "
        "future soul and liquid trap.",
    ),
    (
        "Reggae",
        "https://somafm.com/reggae256.pls",
        "Vintage Reggae and Dub",
    ),
    (
        "Mission Control",
        "https://somafm.com/missioncontrol.pls",
        "Celebrating NASA and Space Explorers everywhere.",
    ),
    (
        "The Darkroom",
        "https://somafm.com/darkzone256.pls",
        "Indie pop and chillout tracks with an edge.",
    ),
    (
        "Dub Step Beyond",
        "https://somafm.com/dubstep256.pls",
        "Dubstep, Dub and Deep Bass. May damage speakers at high volume.",
    ),
    (
        "SF 10-33",
        "https://somafm.com/sf1033.pls",
        "Ambient music mixed with the sounds of San Francisco public safety radio traffic.",
    ),
    (
        "Vaporwaves",
        "https://somafm.com/vaporwaves.pls",
        "A nostalgic journey through 80s and 90s internet and computer culture.",
    ),
    (
        "Metal Detector",
        "https://somafm.com/metal.pls",
        "From black to doom, prog to sludge, thrash to post, stoner to crossover, "
        "punk to industrial.",
    ),
    (
        "Specials",
        "https://somafm.com/specials.pls",
        "A selection of special broadcasts and one-time events.",
    ),
    (
        "n5MD Radio",
        "https://somafm.com/n5md.pls",
        "Ambient and IDM music from the n5MD label.",
    ),
    (
        "Scanner: Dark Ambient",
        "https://somafm.com/scanner.pls",
        "Dark ambient music for the mind's eye.",
    ),
    (
        "SF in SF",
        "https://somafm.com/sfinsf.pls",
        "Science fiction, fantasy, and horror from the SF in SF reading series.",
    ),
)

STATIONS = StationCatalog.from_entries(_SOMAFM)
"""Default catalog of SomaFM channels."""
