"""
Tone Synthesis

Renders the beeps a device emits: a sine burst shaped by a Tukey window, so
the amplitude ramps up from zero and back down to zero over `fade_s` at each
end. A hard-keyed sine would click audibly and splatter energy across the
spectrum, which other devices' analyzers would pick up as false peaks.

    amplitude
      1 |      ____________________
        |     /                    \\
        |    /                      \\
      0 |___/                        \\___
          fade        steady        fade
"""

import logging
from typing import Callable, Optional

import numpy as np
from scipy.signal import windows

from ..sync.interfaces.audio_io import ToneEmitter
from ..sync.sync_constants import DEFAULT_SAMPLE_RATE, DEFAULT_FADE_S, DEFAULT_TONE_AMPLITUDE

logger = logging.getLogger(__name__)


def render_tone(
    frequency_hz: float,
    duration_s: float,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    fade_s: float = DEFAULT_FADE_S,
    amplitude: float = DEFAULT_TONE_AMPLITUDE
) -> np.ndarray:
    """
    Render a faded sine burst.

    Args:
        frequency_hz: Tone frequency
        duration_s: Total duration including both fades
        sample_rate: Output sample rate (Hz)
        fade_s: Length of each fade; clamped to half the duration
        amplitude: Peak amplitude (full scale = 1.0)

    Returns:
        float32 samples, first and last sample at zero when fade_s > 0
    """
    n_samples = int(round(duration_s * sample_rate))
    if n_samples <= 0:
        return np.zeros(0, dtype=np.float32)

    t = np.arange(n_samples) / float(sample_rate)
    tone = amplitude * np.sin(2 * np.pi * frequency_hz * t)

    fade_samples = min(int(round(fade_s * sample_rate)), n_samples // 2)
    if fade_samples > 0 and n_samples > 1:
        # Tukey taper length on each side is alpha * (N - 1) / 2
        alpha = min(1.0, 2.0 * fade_samples / (n_samples - 1))
        tone *= windows.tukey(n_samples, alpha=alpha)

    return tone.astype(np.float32)


class SynthesizedToneEmitter(ToneEmitter):
    """
    ToneEmitter that renders tones in software and hands them to a sink.

    The sink does the actual playback (a sound card, a simulated room, a
    test recorder) and must not block for the tone's duration.
    """

    def __init__(
        self,
        sink: Callable[[np.ndarray], None],
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        fade_s: float = DEFAULT_FADE_S,
        amplitude: float = DEFAULT_TONE_AMPLITUDE,
        name: Optional[str] = None
    ):
        self.sink = sink
        self.sample_rate = sample_rate
        self.fade_s = fade_s
        self.amplitude = amplitude
        self.name = name or "emitter"
        self.emit_count = 0

    def emit(self, frequency_hz: float, duration_s: float) -> None:
        samples = render_tone(
            frequency_hz,
            duration_s,
            sample_rate=self.sample_rate,
            fade_s=self.fade_s,
            amplitude=self.amplitude,
        )
        self.sink(samples)
        self.emit_count += 1
        logger.debug(f"{self.name}: emitted {frequency_hz:.2f} Hz for {duration_s * 1000:.0f} ms")
