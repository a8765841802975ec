"""
Sync Result Data Models

These dataclasses define the contract between a sync session and its
consumers (a UI, a timing-adjustment hook, the CLI's JSON output).

Sign convention everywhere: offset_ms = observed - expected, so a positive
offset means the device beeped late.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import json
import time

from ..sync.roles import Role


class SessionState(str, Enum):
    """Sync session lifecycle state."""
    IDLE = "IDLE"         # No session exists
    ACTIVE = "ACTIVE"     # Beat loop running
    STOPPED = "STOPPED"   # Terminal; start a new session to sync again


class StopReason(str, Enum):
    """Why a session reached STOPPED."""
    COMPLETED = "completed"        # Beat budget exhausted
    STOPPED = "stopped"            # Explicit stop request
    DEVICE_ERROR = "device_error"  # AudioDeviceError from a collaborator


@dataclass(frozen=True)
class OffsetReport:
    """
    Timing offset of one participant's beep on one beat slot.

    Attributes:
        role: Participant that beeped
        slot: Beat slot the beep was attributed to (owned by `role`)
        offset_ms: observed_ms - expected_ms (positive = late)
        observed_ms: Session clock time the beep was first heard
        expected_ms: Scheduled time of `slot`
        frequency_hz: Measured frequency of the detected peak
        magnitude_db: Magnitude of the detected peak
    """
    role: Role
    slot: int
    offset_ms: float
    observed_ms: float
    expected_ms: float
    frequency_hz: float
    magnitude_db: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'role': self.role.name,
            'slot': self.slot,
            'offset_ms': self.offset_ms,
            'observed_ms': self.observed_ms,
            'expected_ms': self.expected_ms,
            'frequency_hz': self.frequency_hz,
            'magnitude_db': self.magnitude_db,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OffsetReport':
        return cls(
            role=Role.parse(data['role']),
            slot=int(data['slot']),
            offset_ms=float(data['offset_ms']),
            observed_ms=float(data['observed_ms']),
            expected_ms=float(data['expected_ms']),
            frequency_hz=float(data.get('frequency_hz', 0.0)),
            magnitude_db=float(data.get('magnitude_db', 0.0)),
        )


@dataclass
class SyncReport:
    """
    Summary of a finished (or running) session.

    Built by the coordinator from its session; participants produce one too,
    with an empty report list.
    """
    version: str = "1.0.0"

    local_role: Optional[Role] = None
    state: SessionState = SessionState.IDLE
    stop_reason: Optional[StopReason] = None
    error: Optional[str] = None

    # Timing
    bpm: float = 0.0
    beat_interval_ms: float = 0.0
    beat_budget: int = 0
    beats_processed: int = 0
    start_ms: float = 0.0
    generated_at: float = field(default_factory=time.time)

    reports: List[OffsetReport] = field(default_factory=list)

    def reports_for(self, role: Role) -> List[OffsetReport]:
        return [r for r in self.reports if r.role == role]

    def to_json(self) -> str:
        """Serialize to JSON for the CLI or a UI bridge."""
        data = {
            "version": self.version,
            "local_role": self.local_role.name if self.local_role else None,
            "state": self.state.value,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "error": self.error,
            "bpm": self.bpm,
            "beat_interval_ms": self.beat_interval_ms,
            "beat_budget": self.beat_budget,
            "beats_processed": self.beats_processed,
            "start_ms": self.start_ms,
            "generated_at": self.generated_at,
            "reports": [r.to_dict() for r in self.reports],
        }
        return json.dumps(data, indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "SyncReport":
        """Deserialize from JSON."""
        data = json.loads(json_str)
        local_role = data.get("local_role")
        stop_reason = data.get("stop_reason")
        return cls(
            version=data.get("version", "1.0.0"),
            local_role=Role.parse(local_role) if local_role else None,
            state=SessionState(data.get("state", "IDLE")),
            stop_reason=StopReason(stop_reason) if stop_reason else None,
            error=data.get("error"),
            bpm=data.get("bpm", 0.0),
            beat_interval_ms=data.get("beat_interval_ms", 0.0),
            beat_budget=data.get("beat_budget", 0),
            beats_processed=data.get("beats_processed", 0),
            start_ms=data.get("start_ms", 0.0),
            generated_at=data.get("generated_at", time.time()),
            reports=[OffsetReport.from_dict(r) for r in data.get("reports", [])],
        )
