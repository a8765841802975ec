"""
Simulated Acoustic Room

Lets several sync devices share one stretch of simulated air inside a single
process: every emitter mixes its tones into a common timeline, every analyzer
hears the mix (plus a noise floor) as of "now". Used by the CLI's --simulate
mode and by the end-to-end tests.

Timeline:
    Tones are placed at the room clock's time of emission (milliseconds).
    capture(n) renders the n samples ending at the current room time.

Clock skew:
    Each device may read the room clock through a constant offset
    (device_clock). Offsets never affect where tones land, only what time
    the device believes it is.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from ..sync.sync_constants import (
    DEFAULT_SAMPLE_RATE,
    DEFAULT_FFT_SIZE,
    DEFAULT_FLOOR_DB,
    DEFAULT_FADE_S,
    DEFAULT_TONE_AMPLITUDE,
    DEFAULT_NOISE_FLOOR_DB,
)
from ..sync.sync_coordinator import monotonic_ms
from .spectral_analyzer import FFTSpectralAnalyzer
from .synthesis import SynthesizedToneEmitter

logger = logging.getLogger(__name__)


@dataclass
class _PlacedTone:
    device: str
    start_ms: float
    samples: np.ndarray


class AcousticRoom:
    """
    Shared simulated air for devices in one process.

    Usage:
        room = AcousticRoom(seed=1)
        room.add_device("coordinator")
        room.add_device("p1", clock_offset_ms=12.0)
        emitter = room.emitter_for("p1")
        analyzer = room.analyzer_for("coordinator")
    """

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        noise_floor_db: Optional[float] = DEFAULT_NOISE_FLOOR_DB,
        clock: Optional[Callable[[], float]] = None,
        seed: Optional[int] = None,
        retention_ms: float = 2000.0
    ):
        """
        Args:
            sample_rate: Sample rate of the simulated air (Hz)
            noise_floor_db: RMS of white background noise (None = silent room)
            clock: Room clock in ms (default: monotonic)
            seed: Noise generator seed
            retention_ms: Tones that ended longer ago than this are dropped
        """
        self.sample_rate = sample_rate
        self.noise_floor_db = noise_floor_db
        self.retention_ms = retention_ms
        self._clock = clock or monotonic_ms
        self._rng = np.random.default_rng(seed)
        self._tones: List[_PlacedTone] = []
        self._clock_offsets: Dict[str, float] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def add_device(self, name: str, clock_offset_ms: float = 0.0) -> None:
        self._clock_offsets[name] = float(clock_offset_ms)

    def device_clock(self, name: str) -> Callable[[], float]:
        """Clock as read by a device (room time + its offset)."""
        offset = self._clock_offsets.get(name, 0.0)
        return lambda: self._clock() + offset

    def emitter_for(
        self,
        name: str,
        fade_s: float = DEFAULT_FADE_S,
        amplitude: float = DEFAULT_TONE_AMPLITUDE
    ) -> SynthesizedToneEmitter:
        if name not in self._clock_offsets:
            self.add_device(name)
        return SynthesizedToneEmitter(
            sink=lambda samples: self.play(name, samples),
            sample_rate=self.sample_rate,
            fade_s=fade_s,
            amplitude=amplitude,
            name=name,
        )

    def analyzer_for(
        self,
        name: str,
        fft_size: int = DEFAULT_FFT_SIZE,
        window: str = 'blackman',
        floor_db: float = DEFAULT_FLOOR_DB
    ) -> FFTSpectralAnalyzer:
        if name not in self._clock_offsets:
            self.add_device(name)
        return FFTSpectralAnalyzer(
            self.capture,
            sample_rate=self.sample_rate,
            fft_size=fft_size,
            window=window,
            floor_db=floor_db,
        )

    # ------------------------------------------------------------------
    # Air
    # ------------------------------------------------------------------

    def play(self, device: str, samples: np.ndarray, at_ms: Optional[float] = None) -> None:
        """Place a tone on the timeline, starting now unless at_ms is given."""
        start_ms = self._clock() if at_ms is None else at_ms
        tone = _PlacedTone(device, start_ms, np.asarray(samples, dtype=np.float64))
        with self._lock:
            self._tones.append(tone)
            cutoff = start_ms - self.retention_ms
            self._tones = [t for t in self._tones if self._end_ms(t) >= cutoff]
            active = len(self._tones)
        logger.debug(f"{device}: tone at {start_ms:.1f} ms ({active} on timeline)")

    def _end_ms(self, tone: _PlacedTone) -> float:
        return tone.start_ms + tone.samples.size * 1000.0 / self.sample_rate

    def capture(self, n_samples: int, end_ms: Optional[float] = None) -> np.ndarray:
        """
        The n samples of air ending at end_ms (default: now).

        Returns:
            float64 mono samples, oldest first
        """
        end_ms = self._clock() if end_ms is None else end_ms
        window_start_ms = end_ms - n_samples * 1000.0 / self.sample_rate

        if self.noise_floor_db is not None:
            noise_rms = 10.0 ** (self.noise_floor_db / 20.0)
            buffer = self._rng.normal(0.0, noise_rms, n_samples)
        else:
            buffer = np.zeros(n_samples)

        with self._lock:
            tones = list(self._tones)

        for tone in tones:
            if tone.start_ms >= end_ms or self._end_ms(tone) <= window_start_ms:
                continue
            # Position of the tone's first sample within the capture window
            offset = int(round((tone.start_ms - window_start_ms) * self.sample_rate / 1000.0))
            src_start = max(0, -offset)
            dst_start = max(0, offset)
            count = min(tone.samples.size - src_start, n_samples - dst_start)
            if count > 0:
                buffer[dst_start:dst_start + count] += tone.samples[src_start:src_start + count]

        return buffer
