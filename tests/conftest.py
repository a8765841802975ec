"""
Pytest configuration and fixtures for beat-sync tests.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from beat_sync.errors import AudioDeviceError
from beat_sync.sync.interfaces import SpectralAnalyzer, ToneEmitter


class FakeClock:
    """Manually driven millisecond clock; optionally advances on every read."""

    def __init__(self, now: float = 1000.0, step: float = 0.0):
        self.now = now
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingEmitter(ToneEmitter):
    """Remembers every emit() call."""

    def __init__(self, open_error: bool = False):
        self.calls = []
        self.opened = False
        self.closed = False
        self.open_error = open_error

    def open(self):
        if self.open_error:
            raise AudioDeviceError("speaker missing")
        self.opened = True

    def emit(self, frequency_hz, duration_s):
        self.calls.append((frequency_hz, duration_s))

    def close(self):
        self.closed = True


class ScriptedAnalyzer(SpectralAnalyzer):
    """Returns whatever is in .peaks on every poll."""

    def __init__(self, peaks=None, open_error: bool = False):
        self.peaks = list(peaks or [])
        self.poll_count = 0
        self.fail_on_poll = False
        self.open_error = open_error
        self.opened = False
        self.closed = False

    def open(self):
        if self.open_error:
            raise AudioDeviceError("microphone permission denied")
        self.opened = True

    def poll(self):
        self.poll_count += 1
        if self.fail_on_poll:
            raise AudioDeviceError("microphone unplugged")
        return list(self.peaks)

    def close(self):
        self.closed = True


@pytest.fixture
def sample_rate():
    """Standard analyzer sample rate for tests."""
    return 48000


@pytest.fixture
def role_table():
    """Reference coordinator + 3 participant table."""
    from beat_sync.sync.roles import reference_role_table
    return reference_role_table()


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def analyzer():
    return ScriptedAnalyzer()


@pytest.fixture
def settings():
    """Reference tempo and budget; manually driven polls never sleep."""
    from beat_sync.sync.sync_coordinator import SessionSettings
    return SessionSettings(poll_interval_ms=1.0)


@pytest.fixture
def make_coordinator(role_table, emitter, analyzer, settings, clock):
    """Factory for a SyncCoordinator wired to the fake collaborators."""
    from beat_sync.sync.sync_coordinator import SyncCoordinator

    def factory(**overrides):
        kwargs = dict(
            role_table=role_table,
            emitter=emitter,
            analyzer=analyzer,
            settings=settings,
            clock=clock,
        )
        kwargs.update(overrides)
        return SyncCoordinator(**kwargs)

    return factory
