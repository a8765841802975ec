"""Interface definitions for the audio collaborators."""

from .data_models import SpectralPeak, DetectedEvent
from .audio_io import ToneEmitter, SpectralAnalyzer

__all__ = ['SpectralPeak', 'DetectedEvent', 'ToneEmitter', 'SpectralAnalyzer']
