"""
Audio Collaborator Interfaces

Defines the two capabilities the sync coordinator depends on but does not
implement: playing a tone and looking at the spectrum of what the microphone
hears right now.

Design principle:
    The coordinator doesn't care whether tones come out of a sound card, a
    browser, or a simulated room. It needs exactly two calls that either
    work or raise AudioDeviceError.
"""

from abc import ABC, abstractmethod
from typing import List

from .data_models import SpectralPeak


class ToneEmitter(ABC):
    """
    Plays a short sine burst.

    Implementations MUST shape the burst with a fade-in/fade-out envelope so
    that starting and stopping the tone does not produce an audible click.
    The envelope is the emitter's job, not the scheduler's.
    """

    def open(self) -> None:
        """
        Acquire the output device.

        Called once when a session becomes ACTIVE.

        Raises:
            AudioDeviceError: If the output is unavailable
        """

    @abstractmethod
    def emit(self, frequency_hz: float, duration_s: float) -> None:
        """
        Start playing a tone.

        Must not block for the tone's duration; once started the tone plays
        to completion even if the session stops.

        Args:
            frequency_hz: Tone frequency
            duration_s: Tone duration including the envelope

        Raises:
            AudioDeviceError: If the output is unavailable
        """

    def close(self) -> None:
        """Release the output device. Called when the session stops."""


class SpectralAnalyzer(ABC):
    """
    Frequency-domain view of the microphone input at the current instant.
    """

    def open(self) -> None:
        """
        Acquire the input device.

        Raises:
            AudioDeviceError: If the input is unavailable or permission denied
        """

    @abstractmethod
    def poll(self) -> List[SpectralPeak]:
        """
        Spectral peaks present right now.

        Returns:
            Zero or more peaks, any magnitude; the caller applies its own
            detection threshold

        Raises:
            AudioDeviceError: If the input is unavailable
        """

    def close(self) -> None:
        """Release the input device. Called when the session stops."""
