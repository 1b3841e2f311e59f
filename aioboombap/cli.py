"""Command-line interface for the internet radio player."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Final

import aioconsole

from aioboombap.controller import PlaybackController, PlaybackState, PlayerSnapshot
from aioboombap.errors import PlaybackError
from aioboombap.sink import DEFAULT_GAIN, OutputSink
from aioboombap.stations import STATIONS

logger = logging.getLogger(__name__)

VOLUME_STEP: Final[float] = 0.05


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the radio player."""
    parser = argparse.ArgumentParser(description="Play internet radio stations")
    parser.add_argument(
        "--station",
        type=int,
        default=None,
        help="Catalog index of a station to start playing immediately",
    )
    parser.add_argument(
        "--volume",
        type=float,
        default=DEFAULT_GAIN,
        help="Initial volume between 0.0 and 1.0",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the station catalog as JSON and exit",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    return parser.parse_args(argv)


class LoadingIndicator:
    """Prints loading transitions; stands in for a spinner widget."""

    def __init__(self) -> None:
        """Initialize the indicator as hidden."""
        self.visible = False

    def show(self) -> None:
        """Show the indicator."""
        if not self.visible:
            self.visible = True
            _print_event("Loading...")

    def hide(self) -> None:
        """Hide the indicator."""
        self.visible = False


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))

    if args.list:
        print(STATIONS.to_json(), flush=True)  # noqa: T201
        return 0

    indicator = LoadingIndicator()
    async with PlaybackController(sink=OutputSink(gain=args.volume)) as controller:
        controller.add_loading_start_listener(indicator.show)
        controller.add_loading_stop_listener(indicator.hide)
        controller.add_state_listener(_handle_state_change)
        controller.add_error_listener(_handle_error)

        _print_instructions()
        if args.station is not None:
            controller.play(args.station)

        keyboard_task = asyncio.create_task(_keyboard_loop(controller))
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            logger.debug("Received interrupt signal, shutting down...")
            keyboard_task.cancel()

        loop.add_signal_handler(signal.SIGINT, signal_handler)
        try:
            await keyboard_task
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            logger.debug("Keyboard loop cancelled")
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    return 0


def _handle_state_change(snapshot: PlayerSnapshot) -> None:
    if snapshot.state is PlaybackState.PLAYING:
        station = STATIONS[snapshot.station_index]
        _print_event(f"Now playing: {station.name}")


def _handle_error(error: PlaybackError) -> None:
    _print_event(f"Playback failed: {error}")


async def _keyboard_loop(controller: PlaybackController) -> None:
    try:
        while True:
            try:
                line = await aioconsole.ainput()
            except EOFError:
                break
            parts = line.strip().split()
            if not parts:
                continue
            if not handle_command(controller, parts):
                break
    except asyncio.CancelledError:
        logger.debug("Keyboard loop cancelled, exiting gracefully")
        raise


def handle_command(controller: PlaybackController, parts: list[str]) -> bool:
    """Run one keyboard command; return False when the shell should exit."""
    keyword = parts[0].lower()
    argument = parts[1] if len(parts) > 1 else None
    if keyword in {"quit", "exit", "q"}:
        return False
    if keyword in {"play", "p"}:
        index = _parse_index(argument)
        if argument is None or index is not None:
            controller.play(index)
    elif keyword in {"stop", "pause", "s"}:
        controller.stop()
    elif keyword in {"next", "n"}:
        controller.next()
    elif keyword in {"previous", "prev", "b"}:
        controller.previous()
    elif keyword in {"vol+", "volume+", "+"}:
        controller.set_gain(controller.gain + VOLUME_STEP)
        _print_event(f"Volume: {controller.gain:.2f}")
    elif keyword in {"vol-", "volume-", "-"}:
        controller.set_gain(controller.gain - VOLUME_STEP)
        _print_event(f"Volume: {controller.gain:.2f}")
    elif keyword in {"volume", "vol"}:
        _handle_volume_command(controller, argument)
    elif keyword in {"select", "sel"}:
        index = _parse_index(argument)
        if index is not None:
            station = controller.select(index)
            _print_event(f"Selected: {station.name}")
    elif keyword in {"info", "i"}:
        station = controller.get_station(controller.state.station_index)
        _print_event(f"{station.name}: {station.description}")
    elif keyword in {"list", "l"}:
        _print_catalog(controller)
    elif keyword == "status":
        _print_event(controller.state.to_json())
    else:
        _print_event("Unknown command")
    return True


def _handle_volume_command(controller: PlaybackController, argument: str | None) -> None:
    if argument is None:
        _print_event(f"Volume: {controller.gain:.2f}")
        return
    try:
        value = float(argument)
    except ValueError:
        _print_event("Invalid volume value")
        return
    controller.set_gain(value)
    _print_event(f"Volume: {controller.gain:.2f}")


def _parse_index(argument: str | None) -> int | None:
    if argument is None:
        return None
    try:
        return int(argument)
    except ValueError:
        _print_event("Invalid station index")
        return None


def _print_catalog(controller: PlaybackController) -> None:
    current = controller.state.station_index
    for index, station in enumerate(controller.stations.stations):
        marker = "*" if index == current else " "
        _print_event(f"{marker}{index:>3}  {station.name}")


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def _print_instructions() -> None:
    print(  # noqa: T201
        (
            "Commands: play(p) [n], stop(s), next(n), prev(b), vol+/-, volume <0-1>, "
            "select <n>, info(i), list(l), status, quit(q)"
        ),
        flush=True,
    )


def main() -> int:
    """Run the CLI player."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
