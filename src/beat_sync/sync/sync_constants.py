#!/usr/bin/env python3
"""
Beat Sync Shared Constants - Reference Configuration

================================================================================
PURPOSE
================================================================================
Single source of truth for the reference session parameters, role
frequencies and analyzer settings. Every value here can be overridden from
the TOML configuration; these are the defaults a session falls back to.

================================================================================
REFERENCE SCHEME
================================================================================
Four roles beep in strict round-robin order, coordinator first:

    Slot:   0      1      2      3      4      5     ...   11
    Owner:  COORD  P1     P2     P3     COORD  P1    ...   P3

Tempo:     240 BPM  ->  250 ms per beat
Budget:    12 beats ->  3 full cycles through 4 roles (3 s total)
Beep:      100 ms sine burst with a 10 ms fade at each end

Role frequencies (musical notes, well inside every laptop/phone speaker band):

    COORDINATOR   440.00 Hz   A4
    PARTICIPANT1  493.88 Hz   B4
    PARTICIPANT2  523.25 Hz   C5
    PARTICIPANT3  587.33 Hz   D5

================================================================================
SPECTRAL RESOLUTION
================================================================================
The analyzer runs a 2048-point FFT at 48 kHz:

    bin width = 48000 / 2048 = 23.44 Hz

A tone rarely lands exactly on a bin centre, so reverse lookup accepts any
frequency within half a bin (11.72 Hz) of an assigned frequency. Assigned
frequencies must then be at least two tolerances apart so the bands never
overlap. The tightest reference pair (B4/C5) is 29.37 Hz apart.

Magnitudes are amplitude-normalised dB: a full-scale sine reads ~0 dB.
A peak counts as a beep at or above -50 dB.
"""

# =============================================================================
# SESSION TIMING
# =============================================================================

DEFAULT_BPM = 240.0
DEFAULT_BEAT_BUDGET = 12              # 3 cycles x 4 roles
DEFAULT_POLL_INTERVAL_MS = 10.0
DEFAULT_BEEP_DURATION_S = 0.1
DEFAULT_LISTEN_TAIL_MS = 0.0

MS_PER_MINUTE = 60000.0

# =============================================================================
# DETECTION
# =============================================================================

DEFAULT_DETECTION_THRESHOLD_DB = -50.0
DEFAULT_FLOOR_DB = -100.0             # Analyzer ignores peaks below this

# =============================================================================
# ANALYZER / SYNTHESIS
# =============================================================================

DEFAULT_SAMPLE_RATE = 48000
DEFAULT_FFT_SIZE = 2048
DEFAULT_TOLERANCE_BINS = 0.5
DEFAULT_FADE_S = 0.01                 # Fade-in/out to avoid clicks
DEFAULT_TONE_AMPLITUDE = 0.5

# =============================================================================
# ROLE FREQUENCIES (Hz)
# =============================================================================

COORDINATOR_FREQUENCY_HZ = 440.00     # A4
PARTICIPANT_FREQUENCIES_HZ = {
    1: 493.88,                        # B4
    2: 523.25,                        # C5
    3: 587.33,                        # D5
}

# =============================================================================
# SIMULATION
# =============================================================================

DEFAULT_NOISE_FLOOR_DB = -80.0
DEFAULT_PARTICIPANT_DELAYS_MS = [0.0, 35.0, -20.0]
