"""
Exceptions raised by beat-sync.

Missed beeps are never errors; only broken configuration and unavailable
audio hardware are.
"""


class SyncError(Exception):
    """Base class for all beat-sync errors."""


class ConfigurationError(SyncError, ValueError):
    """
    Invalid role table or session settings.

    Raised before a session becomes ACTIVE (unknown role, duplicate or
    overlapping frequency assignment, non-positive tempo, ...).
    """


class AudioDeviceError(SyncError):
    """
    Microphone or speaker unavailable (missing device, permission denied).

    Fatal to the session that hits it: the session is STOPPED and the error
    is surfaced to the caller.
    """


class SessionStateError(SyncError):
    """Operation not allowed in the current session state."""
