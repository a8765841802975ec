"""
Data Models for the Audio Collaborator Contracts

What the spectral analyzer hands to the sync coordinator.

Design principles:
- Immutable (frozen dataclasses)
- Frequencies in Hz, times in milliseconds, magnitudes in dB
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class SpectralPeak:
    """
    One spectral peak seen by the analyzer at the current instant.

    Attributes:
        frequency_hz: Peak frequency (may be interpolated between bins)
        magnitude_db: Amplitude-normalised magnitude (full-scale sine ~ 0 dB)
    """
    frequency_hz: float
    magnitude_db: float


@dataclass(frozen=True)
class DetectedEvent:
    """
    A peak above the detection threshold, stamped with the session clock.

    Only lives for the poll that produced it.

    Attributes:
        frequency_hz: Peak frequency
        timestamp_ms: Session clock reading when the analyzer was polled
        magnitude_db: Peak magnitude
    """
    frequency_hz: float
    timestamp_ms: float
    magnitude_db: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'frequency_hz': self.frequency_hz,
            'timestamp_ms': self.timestamp_ms,
            'magnitude_db': self.magnitude_db,
        }
