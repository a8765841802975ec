"""
beat-sync: Acoustic Clock Alignment for Multi-Device Playback

Devices agree on a common beat by listening to each other. Each device beeps
on its own slots of a fixed-tempo round-robin schedule at a frequency unique
to its role; the coordinator hears every participant and measures how far
each one's beeps land from where its own schedule expects them.

Architecture:
    speaker ◀── ToneEmitter ◀── SyncCoordinator ──▶ SpectralAnalyzer ◀── microphone
                                     │
                                     ▼
                        OffsetReport stream ──▶ timing adjustment

No network is involved: all coordination is acoustic.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .sync import (
    Role,
    RoleTable,
    reference_role_table,
    SyncCoordinator,
    SessionSettings,
    OffsetTracker,
)
from .interfaces.sync_result import (
    OffsetReport,
    SyncReport,
    SessionState,
    StopReason,
)
from .errors import SyncError, ConfigurationError, AudioDeviceError, SessionStateError

__all__ = [
    "Role",
    "RoleTable",
    "reference_role_table",
    "SyncCoordinator",
    "SessionSettings",
    "OffsetTracker",
    "OffsetReport",
    "SyncReport",
    "SessionState",
    "StopReason",
    "SyncError",
    "ConfigurationError",
    "AudioDeviceError",
    "SessionStateError",
    "__version__",
]
