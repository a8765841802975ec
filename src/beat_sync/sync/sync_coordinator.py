#!/usr/bin/env python3
"""
Sync Coordinator - Acoustic Beat Scheduling and Offset Inference

================================================================================
PURPOSE
================================================================================
Align the clocks of several devices using nothing but sound. Every device
runs the same fixed-tempo beat schedule from the moment its user presses
"sync". Each beat slot belongs to one role; the owner beeps at its assigned
frequency. The coordinator listens to everyone and measures how late (or
early) each participant's beep arrived relative to its own schedule:

    offset_ms = T_heard - T_expected(slot)

A positive offset means the participant's clock runs behind the
coordinator's. A downstream timing-adjustment hook consumes the offsets.

================================================================================
SESSION LIFECYCLE
================================================================================
    IDLE ──start_as_coordinator()──▶ ACTIVE(coordinator) ──┐
    IDLE ──start_as_participant(n)─▶ ACTIVE(participant n) ├──▶ STOPPED
                                                           │
          stop() at any time, or beat budget exhausted ────┘

STOPPED is terminal. Syncing again creates a new session.

================================================================================
BEAT LOOP
================================================================================
    beat_interval_ms = 60000 / bpm                 (240 BPM -> 250 ms)
    T_expected(slot) = T_start + slot * beat_interval_ms
    owner(slot)      = roles[slot % role_count]    (coordinator first)

The loop wakes every poll interval (10 ms), waiting on the session's stop
event so that a stop request is seen on the next poll. Each poll:

    1. If the next slot is due: beep if we own it, advance the beat counter
       (at most one slot per poll).
    2. Poll the spectral analyzer once; peaks above threshold become
       DetectedEvents stamped with the clock.
    3. Coordinator only: match each event to a role within the frequency
       tolerance, skip our own role, attribute the event to that role's
       nearest owned slot and report observed - expected. The first event
       per (role, slot) wins; the same beep heard again on the following
       polls is dropped.
    4. Stop once the budget is spent (plus the optional listen tail).

Missed beeps produce no report. There are no retries: the beat budget bounds
the session length whatever the detection rate.

================================================================================
THREADING
================================================================================
The loop is the only mutator of session state. stop() from any other thread
only sets a threading.Event. start_as_*() runs the loop on a daemon thread;
run_as_*() runs it in the caller's thread.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..config import config_section
from ..errors import AudioDeviceError, ConfigurationError, SessionStateError
from ..interfaces.sync_result import OffsetReport, SessionState, StopReason, SyncReport
from .interfaces.audio_io import SpectralAnalyzer, ToneEmitter
from .interfaces.data_models import DetectedEvent
from .roles import Role, RoleTable
from .sync_constants import (
    DEFAULT_BPM,
    DEFAULT_BEAT_BUDGET,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_BEEP_DURATION_S,
    DEFAULT_DETECTION_THRESHOLD_DB,
    DEFAULT_LISTEN_TAIL_MS,
    MS_PER_MINUTE,
)

logger = logging.getLogger(__name__)

OffsetListener = Callable[[OffsetReport], Any]


def monotonic_ms() -> float:
    """Default session clock: monotonic time in milliseconds."""
    return time.monotonic() * 1000.0


@dataclass
class SessionSettings:
    """Tempo, budget and detection parameters shared by every role."""
    bpm: float = DEFAULT_BPM
    beat_budget: int = DEFAULT_BEAT_BUDGET
    poll_interval_ms: float = DEFAULT_POLL_INTERVAL_MS
    beep_duration_s: float = DEFAULT_BEEP_DURATION_S
    detection_threshold_db: float = DEFAULT_DETECTION_THRESHOLD_DB
    listen_tail_ms: float = DEFAULT_LISTEN_TAIL_MS

    @property
    def beat_interval_ms(self) -> float:
        return MS_PER_MINUTE / self.bpm

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If any parameter is out of range
        """
        if self.bpm <= 0:
            raise ConfigurationError(f"bpm must be positive, got {self.bpm}")
        if self.beat_budget < 1:
            raise ConfigurationError(f"beat_budget must be >= 1, got {self.beat_budget}")
        if self.poll_interval_ms <= 0:
            raise ConfigurationError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.beep_duration_s <= 0:
            raise ConfigurationError(f"beep_duration_s must be positive, got {self.beep_duration_s}")
        if self.listen_tail_ms < 0:
            raise ConfigurationError(f"listen_tail_ms must be >= 0, got {self.listen_tail_ms}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'SessionSettings':
        """Build validated settings from the [session] section of a config dict."""
        section = config_section(config, 'session')
        try:
            settings = cls(
                bpm=float(section.get('bpm', DEFAULT_BPM)),
                beat_budget=int(section.get('beat_budget', DEFAULT_BEAT_BUDGET)),
                poll_interval_ms=float(section.get('poll_interval_ms', DEFAULT_POLL_INTERVAL_MS)),
                beep_duration_s=float(section.get('beep_duration_s', DEFAULT_BEEP_DURATION_S)),
                detection_threshold_db=float(
                    section.get('detection_threshold_db', DEFAULT_DETECTION_THRESHOLD_DB)
                ),
                listen_tail_ms=float(section.get('listen_tail_ms', DEFAULT_LISTEN_TAIL_MS)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Bad [session] value: {e}") from None
        settings.validate()
        return settings


class SyncSession:
    """
    State of one synchronization run.

    Mutated only by the beat loop; request_stop() is the single operation
    safe to call from other threads.
    """

    def __init__(
        self,
        local_role: Role,
        role_table: RoleTable,
        settings: SessionSettings,
        start_ms: float
    ):
        self.local_role = local_role
        self.role_table = role_table
        self.settings = settings
        self.start_ms = start_ms
        self.beat_interval_ms = settings.beat_interval_ms

        self.beat_count = 0
        self.emissions = 0
        self.polls = 0
        self.loop_running = False
        self.state = SessionState.ACTIVE
        self.stop_reason: Optional[StopReason] = None
        self.error: Optional[BaseException] = None
        self.reports: List[OffsetReport] = []

        self._reported: Set[Tuple[Role, int]] = set()
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    @property
    def end_ms(self) -> float:
        """Time after which a completed session stops listening."""
        return self.expected_time(self.settings.beat_budget - 1) + self.settings.listen_tail_ms

    def expected_time(self, slot: int) -> float:
        return self.start_ms + slot * self.beat_interval_ms

    def owning_role(self, slot: int) -> Role:
        return self.role_table.owning_role(slot)

    def request_stop(self) -> None:
        self._stop_event.set()

    def wait(self, timeout_s: float) -> bool:
        """Sleep until the next poll; returns early (True) on a stop request."""
        return self._stop_event.wait(timeout_s)

    def already_reported(self, role: Role, slot: int) -> bool:
        return (role, slot) in self._reported

    def record(self, report: OffsetReport) -> None:
        self._reported.add((report.role, report.slot))
        self.reports.append(report)

    def finish(self, reason: StopReason, error: Optional[BaseException] = None) -> bool:
        """
        Move ACTIVE -> STOPPED.

        Returns:
            True if this call made the transition, False if already stopped
        """
        with self._state_lock:
            if self.state != SessionState.ACTIVE:
                return False
            self.state = SessionState.STOPPED
            self.stop_reason = reason
            self.error = error
            self._stop_event.set()
            return True

    def to_report(self) -> SyncReport:
        return SyncReport(
            local_role=self.local_role,
            state=self.state,
            stop_reason=self.stop_reason,
            error=str(self.error) if self.error else None,
            bpm=self.settings.bpm,
            beat_interval_ms=self.beat_interval_ms,
            beat_budget=self.settings.beat_budget,
            beats_processed=self.beat_count,
            start_ms=self.start_ms,
            reports=list(self.reports),
        )


class SyncCoordinator:
    """
    Drives sync sessions for one device.

    The same class serves both roles; what it does on each beat depends on
    the local role the session was started with.

    Usage:
        coordinator = SyncCoordinator(reference_role_table(), emitter, analyzer)
        coordinator.on_offset_report(lambda r: print(r.role, r.offset_ms))
        coordinator.start_as_coordinator()
        ...
        report = coordinator.join()

    A device that exclusively owns its emitter and analyzer must use a single
    SyncCoordinator; only one session can be ACTIVE at a time.
    """

    def __init__(
        self,
        role_table: RoleTable,
        emitter: ToneEmitter,
        analyzer: SpectralAnalyzer,
        settings: Optional[SessionSettings] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            role_table: Role/frequency assignment shared by all devices
            emitter: Tone output for this device
            analyzer: Spectral input for this device
            settings: Session parameters (reference values by default)
            clock: Millisecond clock (default: time.monotonic based)
        """
        self.role_table = role_table
        self.emitter = emitter
        self.analyzer = analyzer
        self.settings = settings or SessionSettings()
        self._clock = clock or monotonic_ms

        self.session: Optional[SyncSession] = None
        self._thread: Optional[threading.Thread] = None
        self._listeners: List[OffsetListener] = []
        self._start_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self.session is None:
            return SessionState.IDLE
        return self.session.state

    @property
    def reports(self) -> List[OffsetReport]:
        """Offset reports of the current (or last) session, in order."""
        if self.session is None:
            return []
        return list(self.session.reports)

    def on_offset_report(self, callback: OffsetListener) -> OffsetListener:
        """
        Register a streaming listener, called on the loop thread with each
        new OffsetReport. Returns the callback so it can be used as a
        decorator.
        """
        self._listeners.append(callback)
        return callback

    def start_as_coordinator(self) -> SyncSession:
        """Start a coordinator session on a background thread."""
        return self._start_background(Role.coordinator())

    def start_as_participant(self, index: int) -> SyncSession:
        """Start a participant session on a background thread."""
        return self._start_background(Role.participant(index))

    def run_as_coordinator(self) -> SyncReport:
        """Run a coordinator session in this thread until it stops."""
        return self._run_foreground(Role.coordinator())

    def run_as_participant(self, index: int) -> SyncReport:
        """Run a participant session in this thread until it stops."""
        return self._run_foreground(Role.participant(index))

    def stop(self) -> None:
        """
        Request the active session to stop. Safe from any thread and
        idempotent. Tones already playing are not cut off.
        """
        session = self.session
        if session is None or not session.is_active:
            return

        logger.info("Stop requested")
        session.request_stop()

        if not session.loop_running:
            # Manually polled session
            self._finish(session, StopReason.STOPPED)
            return

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(2.0, 10 * self.settings.poll_interval_ms / 1000.0))
            if thread.is_alive():
                logger.warning("Beat loop did not exit after stop request")

    def join(self, timeout: Optional[float] = None) -> SyncReport:
        """
        Wait for a background session to finish.

        Returns:
            The session's SyncReport

        Raises:
            AudioDeviceError: If the session died on an audio device failure
        """
        if self._thread is not None:
            self._thread.join(timeout)
        session = self.session
        if session is not None and session.error is not None and not session.is_active:
            raise session.error
        return self.report()

    def report(self) -> SyncReport:
        if self.session is None:
            return SyncReport(
                bpm=self.settings.bpm,
                beat_interval_ms=self.settings.beat_interval_ms,
                beat_budget=self.settings.beat_budget,
            )
        return self.session.to_report()

    # ------------------------------------------------------------------
    # Session setup
    # ------------------------------------------------------------------

    def open_session(self, role: Role) -> SyncSession:
        """
        Activate a session without starting a loop.

        The caller drives it with poll(). start_as_*() and run_as_*() are
        built on this.

        Raises:
            ConfigurationError: Invalid settings or role not in the table
            AudioDeviceError: Emitter or analyzer could not be opened
            SessionStateError: A session is already active
        """
        with self._start_lock:
            if self.session is not None and self.session.is_active:
                raise SessionStateError(f"Session already active as {self.session.local_role}")

            self.settings.validate()
            frequency = self.role_table.frequency_for(role)

            self._open_collaborators()

            session = SyncSession(role, self.role_table, self.settings, start_ms=self._clock())
            self.session = session
            self._thread = None

        logger.info("=" * 60)
        logger.info(f"Sync session started as {role}")
        logger.info(f"  Frequency: {frequency:.2f} Hz")
        logger.info(f"  Tempo: {self.settings.bpm:g} BPM ({session.beat_interval_ms:.1f} ms/beat)")
        logger.info(f"  Budget: {self.settings.beat_budget} beats, {self.role_table.role_count} roles")
        logger.info("=" * 60)
        return session

    def _open_collaborators(self) -> None:
        self.emitter.open()
        try:
            self.analyzer.open()
        except AudioDeviceError:
            self._safe_close(self.emitter, "emitter")
            raise

    def _start_background(self, role: Role) -> SyncSession:
        session = self.open_session(role)
        thread = threading.Thread(
            target=self._background_loop,
            args=(session,),
            name=f"BeatLoop-{role}",
            daemon=True
        )
        self._thread = thread
        session.loop_running = True
        thread.start()
        return session

    def _run_foreground(self, role: Role) -> SyncReport:
        session = self.open_session(role)
        session.loop_running = True
        self._run_loop(session)
        return session.to_report()

    # ------------------------------------------------------------------
    # Beat loop
    # ------------------------------------------------------------------

    def _background_loop(self, session: SyncSession) -> None:
        try:
            self._run_loop(session)
        except AudioDeviceError as e:
            logger.error(f"Beat loop aborted: {e}")
        except Exception as e:
            logger.exception(f"Fatal error in beat loop: {e}")
            self._finish(session, StopReason.STOPPED, e)

    def _run_loop(self, session: SyncSession) -> None:
        poll_interval_s = self.settings.poll_interval_ms / 1000.0
        logger.debug(f"Beat loop running (poll every {self.settings.poll_interval_ms:g} ms)")
        try:
            while self._poll_session(session):
                session.wait(poll_interval_s)
        finally:
            session.loop_running = False

    def poll(self) -> bool:
        """
        Run one loop iteration on the current session.

        Returns:
            True while the session is still ACTIVE

        Raises:
            AudioDeviceError: From the emitter or analyzer (session is STOPPED)
        """
        if self.session is None:
            return False
        return self._poll_session(self.session)

    def _poll_session(self, session: SyncSession) -> bool:
        if not session.is_active:
            return False
        if session.stop_requested:
            self._finish(session, StopReason.STOPPED)
            return False

        session.polls += 1
        now = self._clock()
        budget = self.settings.beat_budget

        try:
            if session.beat_count < budget and now >= session.expected_time(session.beat_count):
                self._process_slot(session)
            self._listen(session)
        except AudioDeviceError as e:
            logger.error(f"Audio device failure in slot {session.beat_count}: {e}")
            self._finish(session, StopReason.DEVICE_ERROR, e)
            raise

        if session.beat_count >= budget and self._clock() >= session.end_ms:
            self._finish(session, StopReason.COMPLETED)
            return False
        return session.is_active

    def _process_slot(self, session: SyncSession) -> None:
        slot = session.beat_count
        owner = session.owning_role(slot)

        if owner == session.local_role:
            frequency = self.role_table.frequency_for(owner)
            logger.debug(f"Slot {slot}: beep {frequency:.2f} Hz")
            self.emitter.emit(frequency, self.settings.beep_duration_s)
            session.emissions += 1
        else:
            logger.debug(f"Slot {slot}: listening for {owner}")

        session.beat_count += 1

    def _listen(self, session: SyncSession) -> None:
        peaks = self.analyzer.poll()
        observed_ms = self._clock()
        threshold = self.settings.detection_threshold_db

        events = [
            DetectedEvent(p.frequency_hz, observed_ms, p.magnitude_db)
            for p in peaks
            if p.magnitude_db > threshold
        ]
        if not events:
            return

        if not session.local_role.is_coordinator:
            logger.debug(f"{session.local_role}: discarding {len(events)} detections")
            return

        for event in events:
            if session.stop_requested:
                break
            report = self._attribute(session, event)
            if report is None:
                continue
            session.record(report)
            logger.info(
                f"{report.role} slot {report.slot}: offset {report.offset_ms:+.1f} ms "
                f"({report.frequency_hz:.1f} Hz, {report.magnitude_db:.1f} dB)"
            )
            self._publish(report)

    def _attribute(self, session: SyncSession, event: DetectedEvent) -> Optional[OffsetReport]:
        """
        Turn a detected event into an offset report, or None if it is
        unmatched, our own beep, or a repeat of an already reported beep.
        """
        role = self.role_table.match(event.frequency_hz)
        if role is None or role == session.local_role:
            return None

        slot_position = (event.timestamp_ms - session.start_ms) / session.beat_interval_ms
        slot = self.role_table.nearest_owned_slot(role, slot_position, self.settings.beat_budget)
        if slot is None or session.already_reported(role, slot):
            return None

        expected_ms = session.expected_time(slot)
        return OffsetReport(
            role=role,
            slot=slot,
            offset_ms=event.timestamp_ms - expected_ms,
            observed_ms=event.timestamp_ms,
            expected_ms=expected_ms,
            frequency_hz=event.frequency_hz,
            magnitude_db=event.magnitude_db,
        )

    def _publish(self, report: OffsetReport) -> None:
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception as e:
                logger.exception(f"Offset listener failed: {e}")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _finish(
        self,
        session: SyncSession,
        reason: StopReason,
        error: Optional[BaseException] = None
    ) -> None:
        if not session.finish(reason, error):
            return

        self._safe_close(self.emitter, "emitter")
        self._safe_close(self.analyzer, "analyzer")

        logger.info(
            f"Sync session stopped ({reason.value}): {session.beat_count}/{self.settings.beat_budget} beats, "
            f"{session.emissions} beeps, {len(session.reports)} offset reports"
        )

    @staticmethod
    def _safe_close(device: Any, label: str) -> None:
        try:
            device.close()
        except Exception as e:
            logger.warning(f"Error closing {label}: {e}")
