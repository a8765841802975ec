"""
Acoustic synchronization protocol for beat-sync.

Role assignment, the beat scheduling state machine and offset inference.
"""

from .roles import Role, RoleKind, RoleTable, reference_role_table, tolerance_from_resolution
from .sync_coordinator import SyncCoordinator, SyncSession, SessionSettings
from .offset_tracker import OffsetTracker, OffsetSummary

__all__ = [
    'Role',
    'RoleKind',
    'RoleTable',
    'reference_role_table',
    'tolerance_from_resolution',
    'SyncCoordinator',
    'SyncSession',
    'SessionSettings',
    'OffsetTracker',
    'OffsetSummary',
]
