"""Result data models published by a sync session."""

from .sync_result import SessionState, StopReason, OffsetReport, SyncReport

__all__ = ['SessionState', 'StopReason', 'OffsetReport', 'SyncReport']
