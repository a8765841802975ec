"""Reference audio collaborators - tone synthesis, FFT analysis, sound devices, simulated room."""

from .synthesis import render_tone, SynthesizedToneEmitter
from .spectral_analyzer import FFTSpectralAnalyzer
from .sounddevice_io import DeviceToneEmitter, DeviceSpectralAnalyzer
from .simulated_room import AcousticRoom

__all__ = [
    'render_tone',
    'SynthesizedToneEmitter',
    'FFTSpectralAnalyzer',
    'DeviceToneEmitter',
    'DeviceSpectralAnalyzer',
    'AcousticRoom',
]
