"""
Tests for SyncCoordinator: beat scheduling, offset inference and lifecycle.

Most tests drive a session by hand with open_session() + poll() and a
FakeClock, so timing is exact. The threaded tests only check start/stop
behaviour.
"""

import time

import pytest

from beat_sync.errors import AudioDeviceError, ConfigurationError, SessionStateError
from beat_sync.interfaces.sync_result import SessionState, StopReason
from beat_sync.sync.interfaces import SpectralPeak
from beat_sync.sync.roles import Role, RoleTable
from beat_sync.sync.sync_coordinator import SessionSettings, SyncCoordinator

from conftest import FakeClock, RecordingEmitter, ScriptedAnalyzer

P1_HZ = 493.88
P2_HZ = 523.25
P3_HZ = 587.33


def peak(frequency_hz, magnitude_db=-20.0):
    return SpectralPeak(frequency_hz=frequency_hz, magnitude_db=magnitude_db)


class TestSessionSettings:
    """Tests for tempo and validation."""

    def test_reference_interval(self):
        assert SessionSettings().beat_interval_ms == 250.0
        assert SessionSettings(bpm=120).beat_interval_ms == 500.0

    @pytest.mark.parametrize("overrides", [
        {'bpm': 0},
        {'beat_budget': 0},
        {'poll_interval_ms': -1},
        {'poll_interval_ms': 0},
        {'beep_duration_s': 0},
        {'listen_tail_ms': -5},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            SessionSettings(**overrides).validate()

    def test_from_config(self):
        settings = SessionSettings.from_config({'session': {'bpm': 120, 'beat_budget': 8}})
        assert settings.bpm == 120.0
        assert settings.beat_budget == 8
        assert settings.poll_interval_ms == 10.0

    def test_from_config_bad_value(self):
        with pytest.raises(ConfigurationError):
            SessionSettings.from_config({'session': {'bpm': 'fast'}})


class TestCoordinatorOffsets:
    """Offset inference on the coordinator."""

    def test_late_participant_reports_positive_offset(self, make_coordinator, analyzer, clock):
        """A PARTICIPANT1 beep heard 15 ms after slot 1 is reported as +15 ms."""
        coordinator = make_coordinator()
        session = coordinator.open_session(Role.coordinator())
        assert session.start_ms == 1000.0

        coordinator.poll()                 # slot 0, own beep
        clock.now = 1265.0
        analyzer.peaks = [peak(P1_HZ)]
        coordinator.poll()

        reports = coordinator.reports
        assert len(reports) == 1
        report = reports[0]
        assert report.role == Role.participant(1)
        assert report.slot == 1
        assert report.expected_ms == 1250.0
        assert report.observed_ms == 1265.0
        assert report.offset_ms == pytest.approx(15.0)

    def test_early_participant_reports_negative_offset(self, make_coordinator, analyzer, clock):
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        for t in (1000.0, 1250.0):
            clock.now = t
            coordinator.poll()

        clock.now = 1490.0
        analyzer.peaks = [peak(P2_HZ + 4.0)]
        coordinator.poll()

        report = coordinator.reports[0]
        assert report.role == Role.participant(2)
        assert report.slot == 2
        assert report.offset_ms == pytest.approx(-10.0)

    def test_own_beep_ignored(self, make_coordinator, analyzer, clock):
        """The coordinator hears its own 440 Hz tone on every poll; no reports."""
        analyzer.peaks = [peak(440.0, -3.0)]
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        for _ in range(100):
            coordinator.poll()
            clock.advance(10.0)
        assert coordinator.reports == []

    def test_each_beep_reported_once(self, make_coordinator, analyzer, clock):
        """Two near frequencies and repeated polls of the same beep give one report."""
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        coordinator.poll()

        clock.now = 1262.0
        analyzer.peaks = [peak(P1_HZ), peak(P1_HZ + 3.0)]
        coordinator.poll()
        for _ in range(8):
            clock.advance(10.0)
            coordinator.poll()

        reports = coordinator.reports
        assert len(reports) == 1
        assert reports[0].offset_ms == pytest.approx(12.0)
        assert reports[0].frequency_hz == P1_HZ

    def test_quiet_peaks_below_threshold(self, make_coordinator, analyzer, clock):
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        clock.now = 1255.0
        analyzer.peaks = [peak(P1_HZ, -60.0)]
        coordinator.poll()
        assert coordinator.reports == []

    def test_threshold_is_exclusive(self, make_coordinator, analyzer, clock):
        """A peak exactly at -50 dB is not a beep; just above it is."""
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        clock.now = 1255.0
        analyzer.peaks = [peak(P1_HZ, -50.0)]
        coordinator.poll()
        assert coordinator.reports == []

        clock.now = 1260.0
        analyzer.peaks = [peak(P1_HZ, -49.9)]
        coordinator.poll()
        assert len(coordinator.reports) == 1
        assert coordinator.reports[0].offset_ms == pytest.approx(10.0)

    def test_unmatched_frequency_ignored(self, make_coordinator, analyzer, clock):
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        analyzer.peaks = [peak(1000.0), peak(P1_HZ + 15.0)]
        clock.now = 1260.0
        coordinator.poll()
        assert coordinator.reports == []

    def test_reports_every_participant(self, make_coordinator, analyzer, clock):
        """Every participant slot heard 5 ms late; the tail catches slot 11."""
        settings = SessionSettings(poll_interval_ms=1.0, listen_tail_ms=250.0)
        coordinator = make_coordinator(settings=settings)
        coordinator.open_session(Role.coordinator())

        frequencies = {1: P1_HZ, 2: P2_HZ, 3: P3_HZ}
        for slot in range(12):
            clock.now = 1000.0 + slot * 250.0
            analyzer.peaks = []
            coordinator.poll()
            owner = slot % 4
            if owner:
                clock.advance(5.0)
                analyzer.peaks = [peak(frequencies[owner])]
                coordinator.poll()

        reports = coordinator.reports
        assert len(reports) == 9
        assert [r.slot for r in reports] == [1, 2, 3, 5, 6, 7, 9, 10, 11]
        assert all(r.offset_ms == pytest.approx(5.0) for r in reports)

    def test_listener_receives_reports(self, make_coordinator, analyzer, clock):
        coordinator = make_coordinator()
        received = []
        coordinator.on_offset_report(received.append)

        @coordinator.on_offset_report
        def broken(report):
            raise RuntimeError("listener bug")

        coordinator.open_session(Role.coordinator())
        clock.now = 1270.0
        analyzer.peaks = [peak(P1_HZ)]
        assert coordinator.poll() is True

        assert len(received) == 1
        assert received[0].offset_ms == pytest.approx(20.0)
        assert coordinator.state == SessionState.ACTIVE


class TestBeatSchedule:
    """Emission on owned slots and session completion."""

    def test_coordinator_beeps_on_its_slots(self, make_coordinator, emitter, clock):
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        for slot in range(12):
            clock.now = 1000.0 + slot * 250.0
            coordinator.poll()
        assert emitter.calls == [(440.0, 0.1)] * 3

    def test_participant_beeps_on_its_slots_and_discards_detections(
        self, make_coordinator, emitter, analyzer, clock
    ):
        analyzer.peaks = [peak(440.0), peak(P1_HZ), peak(P3_HZ)]
        coordinator = make_coordinator()
        session = coordinator.open_session(Role.participant(2))

        emitted_slots = []
        for slot in range(12):
            clock.now = 1000.0 + slot * 250.0
            before = len(emitter.calls)
            coordinator.poll()
            if len(emitter.calls) > before:
                emitted_slots.append(slot)

        assert emitted_slots == [2, 6, 10]
        assert all(call == (P2_HZ, 0.1) for call in emitter.calls)
        assert coordinator.reports == []
        assert session.emissions == 3

    def test_one_slot_per_poll(self, make_coordinator, clock):
        """A late poll catches up one slot at a time."""
        coordinator = make_coordinator()
        session = coordinator.open_session(Role.coordinator())
        clock.now = 1000.0 + 3 * 250.0
        coordinator.poll()
        assert session.beat_count == 1
        coordinator.poll()
        assert session.beat_count == 2

    def test_completes_after_budget(self, make_coordinator, emitter, analyzer):
        """A silent room still completes, with no reports and no failure."""
        coordinator = make_coordinator(clock=FakeClock(0.0, step=10.0))
        report = coordinator.run_as_coordinator()

        assert coordinator.state == SessionState.STOPPED
        assert report.stop_reason == StopReason.COMPLETED
        assert report.beats_processed == 12
        assert report.reports == []
        assert report.error is None
        assert len(emitter.calls) == 3
        assert emitter.closed and analyzer.closed

    def test_listen_tail_keeps_session_open(self, make_coordinator, emitter, analyzer, clock):
        settings = SessionSettings(beat_budget=4, poll_interval_ms=1.0, listen_tail_ms=250.0)
        coordinator = make_coordinator(settings=settings)
        coordinator.open_session(Role.coordinator())
        for slot in range(4):
            clock.now = 1000.0 + slot * 250.0
            assert coordinator.poll() is True

        # Last participant beep arrives after its slot
        clock.now = 1780.0
        analyzer.peaks = [peak(P3_HZ)]
        assert coordinator.poll() is True
        assert coordinator.reports[0].offset_ms == pytest.approx(30.0)

        clock.now = 2000.0
        assert coordinator.poll() is False
        assert coordinator.state == SessionState.STOPPED
        assert len(emitter.calls) == 1

    def test_short_budget(self, make_coordinator, clock):
        """Budget of 2 ends on the beat after P1's only slot."""
        settings = SessionSettings(beat_budget=2, poll_interval_ms=1.0)
        coordinator = make_coordinator(settings=settings)
        coordinator.open_session(Role.coordinator())
        assert coordinator.poll() is True
        clock.now = 1250.0
        assert coordinator.poll() is False
        assert coordinator.report().stop_reason == StopReason.COMPLETED


class TestLifecycle:
    """State transitions and error handling."""

    def test_idle_before_start(self, make_coordinator):
        coordinator = make_coordinator()
        assert coordinator.state == SessionState.IDLE
        assert coordinator.reports == []
        coordinator.stop()
        assert coordinator.state == SessionState.IDLE
        assert coordinator.poll() is False

    def test_stop_manual_session(self, make_coordinator, emitter, analyzer, clock):
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        coordinator.poll()
        coordinator.stop()
        coordinator.stop()

        assert coordinator.state == SessionState.STOPPED
        assert coordinator.report().stop_reason == StopReason.STOPPED
        assert emitter.closed and analyzer.closed

        calls, polls = len(emitter.calls), analyzer.poll_count
        clock.now = 5000.0
        assert coordinator.poll() is False
        assert len(emitter.calls) == calls
        assert analyzer.poll_count == polls

    def test_second_start_while_active(self, make_coordinator):
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        with pytest.raises(SessionStateError):
            coordinator.open_session(Role.participant(1))

    def test_restart_after_stop_creates_new_session(self, make_coordinator):
        coordinator = make_coordinator()
        first = coordinator.open_session(Role.coordinator())
        coordinator.stop()
        second = coordinator.open_session(Role.participant(1))
        assert second is not first
        assert first.state == SessionState.STOPPED
        assert coordinator.state == SessionState.ACTIVE

    def test_role_not_in_table(self, emitter, analyzer, clock):
        table = RoleTable([(Role.coordinator(), 440.0), (Role.participant(1), 493.88)])
        coordinator = SyncCoordinator(table, emitter, analyzer, clock=clock)
        with pytest.raises(ConfigurationError):
            coordinator.start_as_participant(3)
        assert coordinator.state == SessionState.IDLE
        assert not emitter.opened

    def test_invalid_settings(self, make_coordinator):
        coordinator = make_coordinator(settings=SessionSettings(bpm=0))
        with pytest.raises(ConfigurationError):
            coordinator.open_session(Role.coordinator())
        assert coordinator.state == SessionState.IDLE

    def test_analyzer_open_failure(self, make_coordinator, emitter):
        coordinator = make_coordinator(analyzer=ScriptedAnalyzer(open_error=True))
        with pytest.raises(AudioDeviceError):
            coordinator.open_session(Role.coordinator())
        assert coordinator.state == SessionState.IDLE
        assert emitter.closed

    def test_device_failure_during_session(self, make_coordinator, emitter, analyzer, clock):
        coordinator = make_coordinator()
        coordinator.open_session(Role.coordinator())
        coordinator.poll()

        analyzer.fail_on_poll = True
        clock.now = 1010.0
        with pytest.raises(AudioDeviceError):
            coordinator.poll()

        report = coordinator.report()
        assert coordinator.state == SessionState.STOPPED
        assert report.stop_reason == StopReason.DEVICE_ERROR
        assert "unplugged" in report.error
        assert emitter.closed


class TestBackgroundLoop:
    """Threaded start/stop with the real clock."""

    def test_stop_halts_emission_and_polling(self, role_table):
        emitter = RecordingEmitter()
        analyzer = ScriptedAnalyzer()
        settings = SessionSettings(bpm=60, poll_interval_ms=5.0)
        coordinator = SyncCoordinator(role_table, emitter, analyzer, settings)

        coordinator.start_as_coordinator()
        time.sleep(0.1)
        assert coordinator.state == SessionState.ACTIVE
        assert emitter.calls == [(440.0, 0.1)]

        t0 = time.monotonic()
        coordinator.stop()
        assert time.monotonic() - t0 < 1.0
        assert coordinator.state == SessionState.STOPPED

        polls = analyzer.poll_count
        time.sleep(0.05)
        assert analyzer.poll_count == polls
        assert len(emitter.calls) == 1

        report = coordinator.join()
        assert report.stop_reason == StopReason.STOPPED

    def test_participant_completes_in_background(self, role_table):
        emitter = RecordingEmitter()
        settings = SessionSettings(bpm=6000, beat_budget=8, poll_interval_ms=1.0)
        coordinator = SyncCoordinator(role_table, emitter, ScriptedAnalyzer(), settings)

        coordinator.start_as_participant(1)
        report = coordinator.join(timeout=5.0)

        assert report.stop_reason == StopReason.COMPLETED
        assert report.local_role == Role.participant(1)
        assert emitter.calls == [(P1_HZ, 0.1)] * 2

    def test_device_failure_raised_from_join(self, role_table):
        analyzer = ScriptedAnalyzer()
        analyzer.fail_on_poll = True
        settings = SessionSettings(poll_interval_ms=1.0)
        coordinator = SyncCoordinator(role_table, RecordingEmitter(), analyzer, settings)

        coordinator.start_as_coordinator()
        with pytest.raises(AudioDeviceError):
            coordinator.join(timeout=5.0)
        assert coordinator.report().stop_reason == StopReason.DEVICE_ERROR

    def test_zero_poll_interval_refused(self, role_table):
        """A background loop must sleep between polls, so 0 ms is rejected up front."""
        emitter = RecordingEmitter()
        analyzer = ScriptedAnalyzer()
        settings = SessionSettings(poll_interval_ms=0.0)
        coordinator = SyncCoordinator(role_table, emitter, analyzer, settings)

        with pytest.raises(ConfigurationError):
            coordinator.start_as_coordinator()
        assert coordinator.state == SessionState.IDLE
        assert not emitter.opened
        assert analyzer.poll_count == 0

    def test_stale_loop_does_not_affect_next_session(self, role_table):
        """A previous session's loop exiting late leaves the new session joinable."""
        emitter = RecordingEmitter()
        settings = SessionSettings(bpm=60, poll_interval_ms=5.0)
        coordinator = SyncCoordinator(role_table, emitter, ScriptedAnalyzer(), settings)

        first = coordinator.open_session(Role.coordinator())
        coordinator.stop()

        second = coordinator.start_as_coordinator()
        assert second.loop_running

        # Old loop unwinding after the new one started
        coordinator._run_loop(first)
        assert second.loop_running

        coordinator.stop()
        assert not coordinator._thread.is_alive()
        assert not second.loop_running
        assert second.stop_reason == StopReason.STOPPED
