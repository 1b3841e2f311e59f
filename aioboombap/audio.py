"""Audio format definitions shared by the decoder and the output sink."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

import numpy as np

STEREO: Final[int] = 2
PCM16_BYTES: Final[int] = 2

FrameBlock = np.ndarray
"""A block of sample frames: float array of shape ``(n, 2)``, left then right."""


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Decoded audio format description."""

    sample_rate: int
    """Sample rate in Hz (e.g., 44100, 48000)."""
    channels: int = STEREO
    """Number of audio channels; decoders always produce stereo."""
    bytes_per_sample: int = PCM16_BYTES
    """Bytes per sample of the source precision."""

    def __post_init__(self) -> None:
        """Validate the provided audio format."""
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.channels != STEREO:
            raise ValueError("channels must be 2")
        if self.bytes_per_sample != PCM16_BYTES:
            raise ValueError("bytes_per_sample must be 2")

    @property
    def frame_size(self) -> int:
        """Return bytes per PCM frame."""
        return self.channels * self.bytes_per_sample

    def frames_for(self, seconds: float) -> int:
        """Return the number of frames covering ``seconds`` of audio."""
        return max(1, int(self.sample_rate * seconds))
