"""
Sound Card Adapters (sounddevice)

Real-hardware implementations of the audio collaborators, for running a
sync session on an actual laptop or Raspberry Pi.

Requires the optional `audio` extra:

    pip install beat-sync[audio]

Any failure to load PortAudio, find a device, or open a stream surfaces as
AudioDeviceError, which stops the session.
"""

import logging
import threading
from typing import Any, List, Optional

import numpy as np

from ..errors import AudioDeviceError
from ..sync.interfaces.audio_io import SpectralAnalyzer
from ..sync.interfaces.data_models import SpectralPeak
from ..sync.sync_constants import (
    DEFAULT_SAMPLE_RATE,
    DEFAULT_FFT_SIZE,
    DEFAULT_FLOOR_DB,
    DEFAULT_FADE_S,
    DEFAULT_TONE_AMPLITUDE,
)
from .spectral_analyzer import FFTSpectralAnalyzer
from .synthesis import SynthesizedToneEmitter

logger = logging.getLogger(__name__)


def _load_sounddevice() -> Any:
    try:
        import sounddevice
    except (ImportError, OSError) as e:
        # OSError: PortAudio shared library missing
        raise AudioDeviceError(
            f"sounddevice unavailable ({e}); install with 'pip install beat-sync[audio]'"
        ) from e
    return sounddevice


class DeviceToneEmitter(SynthesizedToneEmitter):
    """Plays rendered tones on a sound card output (non-blocking)."""

    def __init__(
        self,
        device: Optional[Any] = None,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        fade_s: float = DEFAULT_FADE_S,
        amplitude: float = DEFAULT_TONE_AMPLITUDE
    ):
        """
        Args:
            device: sounddevice output device (index or name, None = default)
            sample_rate: Playback sample rate (Hz)
            fade_s: Fade length at each end of a tone
            amplitude: Tone amplitude (full scale = 1.0)
        """
        super().__init__(
            sink=self._play,
            sample_rate=sample_rate,
            fade_s=fade_s,
            amplitude=amplitude,
            name="speaker"
        )
        self.device = device
        self._sd: Optional[Any] = None

    def open(self) -> None:
        sd = _load_sounddevice()
        try:
            info = sd.query_devices(self.device, kind='output')
        except Exception as e:
            raise AudioDeviceError(f"No usable output device: {e}") from e
        self._sd = sd
        logger.info(f"Speaker: {info.get('name', self.device)} @ {self.sample_rate} Hz")

    def _play(self, samples: np.ndarray) -> None:
        if self._sd is None:
            raise AudioDeviceError("Speaker not opened")
        try:
            self._sd.play(samples, samplerate=self.sample_rate, device=self.device, blocking=False)
        except Exception as e:
            raise AudioDeviceError(f"Playback failed: {e}") from e

    def close(self) -> None:
        # Leave any tone already playing to finish on its own
        self._sd = None


class DeviceSpectralAnalyzer(SpectralAnalyzer):
    """
    Analyzes live microphone input.

    A PortAudio callback thread keeps a ring buffer of the most recent
    samples; poll() runs the FFT over its latest fft_size samples.
    """

    def __init__(
        self,
        device: Optional[Any] = None,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        fft_size: int = DEFAULT_FFT_SIZE,
        window: str = 'blackman',
        floor_db: float = DEFAULT_FLOOR_DB,
        buffer_blocks: int = 4
    ):
        """
        Args:
            device: sounddevice input device (index or name, None = default)
            sample_rate: Capture sample rate (Hz)
            fft_size: Analysis length in samples
            window: FFT window name
            floor_db: Peaks below this magnitude are not reported
            buffer_blocks: Ring buffer length in units of fft_size
        """
        self.device = device
        self.sample_rate = sample_rate
        self.fft = FFTSpectralAnalyzer(
            self.latest_samples,
            sample_rate=sample_rate,
            fft_size=fft_size,
            window=window,
            floor_db=floor_db,
        )
        self.ring_size = fft_size * max(1, buffer_blocks)
        self.ring_buffer = np.zeros(self.ring_size, dtype=np.float32)
        self.ring_write_pos = 0
        self.status_errors = 0

        self._stream: Optional[Any] = None
        self._lock = threading.Lock()

    def open(self) -> None:
        sd = _load_sounddevice()
        try:
            stream = sd.InputStream(
                device=self.device,
                channels=1,
                samplerate=self.sample_rate,
                dtype='float32',
                callback=self._on_audio,
            )
            stream.start()
        except Exception as e:
            raise AudioDeviceError(f"Cannot open microphone: {e}") from e
        self._stream = stream
        logger.info(f"Microphone: {self.device if self.device is not None else 'default'} @ {self.sample_rate} Hz")

    def _on_audio(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            self.status_errors += 1
        samples = indata[:, 0]
        with self._lock:
            n = min(samples.size, self.ring_size)
            start = self.ring_write_pos % self.ring_size
            end = start + n
            if end <= self.ring_size:
                self.ring_buffer[start:end] = samples[-n:]
            else:
                split = self.ring_size - start
                self.ring_buffer[start:] = samples[-n:][:split]
                self.ring_buffer[:end - self.ring_size] = samples[-n:][split:]
            self.ring_write_pos += n

    def latest_samples(self, n_samples: int) -> np.ndarray:
        """Most recent n samples in time order."""
        with self._lock:
            n = min(n_samples, self.ring_size)
            end = self.ring_write_pos % self.ring_size
            return np.roll(self.ring_buffer, -end)[-n:].copy()

    def poll(self) -> List[SpectralPeak]:
        stream = self._stream
        if stream is None:
            raise AudioDeviceError("Microphone not opened")
        if not stream.active:
            raise AudioDeviceError("Microphone stream stopped")
        return self.fft.poll()

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
