"""
Tests for the sync result contract.
"""

import json

from beat_sync.interfaces.sync_result import (
    OffsetReport,
    SessionState,
    StopReason,
    SyncReport,
)
from beat_sync.sync.roles import Role


class TestSyncReport:

    def make_report(self):
        return SyncReport(
            local_role=Role.coordinator(),
            state=SessionState.STOPPED,
            stop_reason=StopReason.COMPLETED,
            bpm=240.0,
            beat_interval_ms=250.0,
            beat_budget=12,
            beats_processed=12,
            start_ms=1000.0,
            reports=[
                OffsetReport(Role.participant(1), 1, 15.0, 1265.0, 1250.0, 494.1, -8.5),
                OffsetReport(Role.participant(2), 2, -4.0, 1496.0, 1500.0, 522.9, -9.0),
                OffsetReport(Role.participant(1), 5, 17.0, 2267.0, 2250.0, 493.6, -8.1),
            ],
        )

    def test_json_round_trip(self):
        report = self.make_report()
        restored = SyncReport.from_json(report.to_json())

        assert restored.local_role == Role.coordinator()
        assert restored.state == SessionState.STOPPED
        assert restored.stop_reason == StopReason.COMPLETED
        assert restored.beats_processed == 12
        assert restored.reports == report.reports

    def test_json_uses_role_names(self):
        data = json.loads(self.make_report().to_json())
        assert data['local_role'] == "COORDINATOR"
        assert data['stop_reason'] == "completed"
        assert data['reports'][0]['role'] == "PARTICIPANT1"
        assert data['reports'][0]['offset_ms'] == 15.0

    def test_reports_for(self):
        report = self.make_report()
        slots = [r.slot for r in report.reports_for(Role.participant(1))]
        assert slots == [1, 5]
        assert report.reports_for(Role.participant(3)) == []

    def test_idle_report(self):
        restored = SyncReport.from_json(SyncReport().to_json())
        assert restored.local_role is None
        assert restored.state == SessionState.IDLE
        assert restored.stop_reason is None
