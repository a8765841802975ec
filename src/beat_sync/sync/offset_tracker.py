"""
Offset Tracker - per-participant offset statistics and timing adjustment

Consumes the OffsetReports a coordinator streams out and condenses them into
one clock correction per participant. Plug it straight in as a listener:

    tracker = OffsetTracker()
    coordinator.on_offset_report(tracker)
    coordinator.run_as_coordinator()
    for role, summary in tracker.summaries().items():
        print(role, summary.adjustment_ms)

The correction is the negated median offset: a participant that beeps 30 ms
late must move its playback clock 30 ms earlier. The median keeps one echo
or a neighbouring-bin false detection from dragging the estimate.

Applying the correction to a playback clock is left to the caller.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import threading

import numpy as np

from ..interfaces.sync_result import OffsetReport
from .roles import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OffsetSummary:
    """Offset statistics for one participant."""
    role: Role
    count: int
    mean_ms: float
    median_ms: float
    std_ms: float
    min_ms: float
    max_ms: float

    @property
    def adjustment_ms(self) -> float:
        """Correction to add to the participant's clock."""
        return -self.median_ms

    def to_dict(self) -> Dict[str, float]:
        return {
            'role': self.role.name,
            'count': self.count,
            'mean_ms': self.mean_ms,
            'median_ms': self.median_ms,
            'std_ms': self.std_ms,
            'min_ms': self.min_ms,
            'max_ms': self.max_ms,
            'adjustment_ms': self.adjustment_ms,
        }


class OffsetTracker:
    """
    Thread-safe accumulator of offset reports.

    Reports arrive on the beat loop thread; summaries may be read from any
    thread.
    """

    def __init__(self, max_abs_offset_ms: Optional[float] = None):
        """
        Args:
            max_abs_offset_ms: Reports with |offset| above this are ignored
                               (None = keep everything)
        """
        self.max_abs_offset_ms = max_abs_offset_ms
        self._offsets: Dict[Role, List[float]] = {}
        self._rejected = 0
        self._lock = threading.Lock()

    def __call__(self, report: OffsetReport) -> None:
        self.add(report)

    def add(self, report: OffsetReport) -> bool:
        """
        Record a report.

        Returns:
            False if the report was rejected as implausible
        """
        if self.max_abs_offset_ms is not None and abs(report.offset_ms) > self.max_abs_offset_ms:
            logger.debug(f"{report.role}: rejecting offset {report.offset_ms:+.1f} ms")
            with self._lock:
                self._rejected += 1
            return False
        with self._lock:
            self._offsets.setdefault(report.role, []).append(report.offset_ms)
        return True

    @property
    def rejected_count(self) -> int:
        return self._rejected

    def summary(self, role: Role) -> Optional[OffsetSummary]:
        """Statistics for one participant, or None if it was never heard."""
        with self._lock:
            values = list(self._offsets.get(role, []))
        if not values:
            return None
        arr = np.asarray(values, dtype=float)
        return OffsetSummary(
            role=role,
            count=int(arr.size),
            mean_ms=float(np.mean(arr)),
            median_ms=float(np.median(arr)),
            std_ms=float(np.std(arr)),
            min_ms=float(np.min(arr)),
            max_ms=float(np.max(arr)),
        )

    def summaries(self) -> Dict[Role, OffsetSummary]:
        with self._lock:
            roles = sorted(self._offsets, key=lambda r: r.index)
        result = {}
        for role in roles:
            summary = self.summary(role)
            if summary is not None:
                result[role] = summary
        return result

    def adjust_timing(self, role: Role) -> Optional[float]:
        """
        Correction to apply to a participant's playback clock.

        Returns:
            Milliseconds to add to the participant's clock, or None if no
            offset has been measured for it
        """
        summary = self.summary(role)
        if summary is None:
            logger.info(f"{role}: no offsets measured, leaving timing unchanged")
            return None
        logger.info(
            f"{role}: adjusting timing by {summary.adjustment_ms:+.1f} ms "
            f"(median of {summary.count}, σ={summary.std_ms:.1f} ms)"
        )
        return summary.adjustment_ms

    def reset(self) -> None:
        with self._lock:
            self._offsets.clear()
            self._rejected = 0
