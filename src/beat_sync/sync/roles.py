"""
Role Assignment Table

Binds every logical role in a sync session (the coordinator and
participants 1..N) to a unique detection frequency, and maps detected
frequencies back to roles.

Reverse lookup comes in two flavours:
    role_for(f)  - exact match, for frequencies taken from the table itself
    match(f)     - tolerance band, for frequencies measured by an analyzer
                   (FFT bins never land exactly on the assigned tone)

The table also fixes the beat order: coordinator first, then participants by
index, so slot s belongs to roles[s % role_count] and participant N owns the
slots where s % role_count == N.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import config_section, config_value
from ..errors import ConfigurationError
from .sync_constants import (
    COORDINATOR_FREQUENCY_HZ,
    PARTICIPANT_FREQUENCIES_HZ,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_FFT_SIZE,
    DEFAULT_TOLERANCE_BINS,
)

logger = logging.getLogger(__name__)


class RoleKind(str, Enum):
    """Kind of device in a sync session."""
    COORDINATOR = "COORDINATOR"   # Measures offsets
    PARTICIPANT = "PARTICIPANT"   # Only beeps


# Names used by earlier browser builds
_ROLE_ALIASES = {
    'HOST': 'COORDINATOR',
    'CLIENT': 'PARTICIPANT',
}


def _participant_index(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Participant index must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class Role:
    """
    Logical identity of a device within a session.

    The coordinator always has index 0, participants are numbered from 1.
    """
    kind: RoleKind
    index: int = 0

    @classmethod
    def coordinator(cls) -> 'Role':
        return cls(RoleKind.COORDINATOR, 0)

    @classmethod
    def participant(cls, index: int) -> 'Role':
        n = _participant_index(index)
        if n < 1:
            raise ConfigurationError(f"Participant index must be >= 1, got {index}")
        return cls(RoleKind.PARTICIPANT, n)

    @classmethod
    def parse(cls, name: str, index: Optional[int] = None) -> 'Role':
        """
        Parse a role name from configuration.

        Accepts "coordinator", "participant" (with index), "PARTICIPANT2",
        and the legacy "HOST" / "CLIENT1" spellings.

        Raises:
            ConfigurationError: If the name is not a known role
        """
        text = str(name).strip().upper()
        digits = ''
        while text and text[-1].isdigit():
            digits = text[-1] + digits
            text = text[:-1]
        text = _ROLE_ALIASES.get(text, text)

        if text == RoleKind.COORDINATOR.value:
            if digits:
                raise ConfigurationError(f"Coordinator role takes no index: {name!r}")
            return cls.coordinator()
        if text == RoleKind.PARTICIPANT.value:
            if digits and index is not None and int(digits) != _participant_index(index):
                raise ConfigurationError(f"Conflicting participant index in {name!r}: {index}")
            n = int(digits) if digits else index
            if n is None:
                raise ConfigurationError(f"Participant role needs an index: {name!r}")
            return cls.participant(n)
        raise ConfigurationError(f"Unknown role: {name!r}")

    @property
    def is_coordinator(self) -> bool:
        return self.kind == RoleKind.COORDINATOR

    @property
    def name(self) -> str:
        if self.is_coordinator:
            return self.kind.value
        return f"{self.kind.value}{self.index}"

    def __str__(self) -> str:
        return self.name


def tolerance_from_resolution(
    sample_rate: float = DEFAULT_SAMPLE_RATE,
    fft_size: int = DEFAULT_FFT_SIZE,
    bins: float = DEFAULT_TOLERANCE_BINS
) -> float:
    """
    Frequency tolerance for reverse lookup, in Hz.

    Args:
        sample_rate: Analyzer sample rate (Hz)
        fft_size: FFT length in samples
        bins: Tolerance expressed in FFT bins

    Returns:
        bins * sample_rate / fft_size
    """
    try:
        sample_rate, fft_size, bins = float(sample_rate), int(fft_size), float(bins)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Analyzer resolution must be numeric: sample_rate={sample_rate!r}, "
            f"fft_size={fft_size!r}, bins={bins!r}"
        ) from None
    if sample_rate <= 0 or fft_size <= 0 or bins <= 0:
        raise ConfigurationError(
            f"Invalid analyzer resolution: sample_rate={sample_rate}, "
            f"fft_size={fft_size}, bins={bins}"
        )
    return bins * sample_rate / fft_size


class RoleTable:
    """
    Fixed Role -> frequency assignment for one session.

    Usage:
        table = RoleTable(
            [(Role.coordinator(), 440.0), (Role.participant(1), 493.88)],
            tolerance_hz=11.7
        )
        table.frequency_for(Role.participant(1))   # 493.88
        table.match(497.2)                         # PARTICIPANT1
        table.owning_role(3)                       # PARTICIPANT1
    """

    def __init__(
        self,
        assignments: Iterable[Tuple[Role, float]],
        tolerance_hz: Optional[float] = None,
        min_separation_hz: Optional[float] = None
    ):
        """
        Build and validate the table.

        Args:
            assignments: (Role, frequency_hz) pairs, in any order
            tolerance_hz: Half-width of the reverse lookup band
                          (default: half a bin of the reference analyzer)
            min_separation_hz: Minimum spacing between assigned frequencies
                               (default: 2 x tolerance, so bands never overlap)

        Raises:
            ConfigurationError: On any invalid assignment
        """
        self.tolerance_hz = float(tolerance_hz) if tolerance_hz is not None else tolerance_from_resolution()
        if self.tolerance_hz <= 0:
            raise ConfigurationError(f"Tolerance must be positive, got {self.tolerance_hz}")
        self.min_separation_hz = (
            float(min_separation_hz) if min_separation_hz is not None else 2.0 * self.tolerance_hz
        )

        by_role: Dict[Role, float] = {}
        for role, frequency in assignments:
            if not isinstance(role, Role):
                raise ConfigurationError(f"Not a role: {role!r}")
            if role in by_role:
                raise ConfigurationError(f"Duplicate role assignment: {role}")
            try:
                frequency = float(frequency)
            except (TypeError, ValueError):
                raise ConfigurationError(f"{role}: frequency must be a number, got {frequency!r}") from None
            if frequency <= 0:
                raise ConfigurationError(f"{role}: frequency must be positive, got {frequency}")
            by_role[role] = frequency

        if not by_role:
            raise ConfigurationError("Role table is empty")

        coordinators = [r for r in by_role if r.is_coordinator]
        if len(coordinators) != 1:
            raise ConfigurationError(f"Exactly one coordinator required, got {len(coordinators)}")

        # Coordinator first, then participants by index
        self._roles: List[Role] = sorted(by_role, key=lambda r: (not r.is_coordinator, r.index))
        for position, role in enumerate(self._roles[1:], start=1):
            if role.index != position:
                raise ConfigurationError(
                    f"Participant indices must run 1..{len(self._roles) - 1} without gaps, "
                    f"found {role} at position {position}"
                )

        self._frequencies: Dict[Role, float] = {r: by_role[r] for r in self._roles}
        self._by_frequency: Dict[float, Role] = {}
        for role, frequency in self._frequencies.items():
            if frequency in self._by_frequency:
                raise ConfigurationError(
                    f"Duplicate frequency {frequency} Hz for {self._by_frequency[frequency]} and {role}"
                )
            self._by_frequency[frequency] = role

        ordered = sorted(self._by_frequency.items())
        for (f_low, r_low), (f_high, r_high) in zip(ordered, ordered[1:]):
            if f_high - f_low < self.min_separation_hz:
                raise ConfigurationError(
                    f"{r_low} ({f_low} Hz) and {r_high} ({f_high} Hz) are closer than "
                    f"{self.min_separation_hz:.2f} Hz"
                )

        logger.debug(
            f"RoleTable: {', '.join(f'{r}={f:.2f}Hz' for r, f in self._frequencies.items())} "
            f"(tolerance ±{self.tolerance_hz:.2f} Hz)"
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def frequency_for(self, role: Role) -> float:
        """
        Frequency assigned to a role.

        Raises:
            ConfigurationError: If the role is not part of this table
        """
        try:
            return self._frequencies[role]
        except KeyError:
            raise ConfigurationError(f"Role {role} has no assigned frequency") from None

    def role_for(self, frequency: float) -> Optional[Role]:
        """Exact-match reverse lookup. Measured frequencies should use match()."""
        return self._by_frequency.get(float(frequency))

    def match(self, frequency: float) -> Optional[Role]:
        """
        Tolerance-band reverse lookup.

        Returns:
            Role whose frequency is nearest to `frequency` and within
            tolerance_hz of it, or None
        """
        best: Optional[Role] = None
        best_distance = self.tolerance_hz
        for role, assigned in self._frequencies.items():
            distance = abs(float(frequency) - assigned)
            if distance <= best_distance:
                best, best_distance = role, distance
        return best

    # ------------------------------------------------------------------
    # Beat order
    # ------------------------------------------------------------------

    @property
    def roles(self) -> List[Role]:
        """Roles in beat order (coordinator first)."""
        return list(self._roles)

    @property
    def participants(self) -> List[Role]:
        return self._roles[1:]

    @property
    def role_count(self) -> int:
        return len(self._roles)

    def __contains__(self, role: object) -> bool:
        return role in self._frequencies

    def __len__(self) -> int:
        return len(self._roles)

    def position_of(self, role: Role) -> int:
        """Position of a role in the beat cycle."""
        if role not in self._frequencies:
            raise ConfigurationError(f"Role {role} is not part of this table")
        return self._roles.index(role)

    def owning_role(self, slot: int) -> Role:
        """Role that beeps on a beat slot."""
        if slot < 0:
            raise ValueError(f"Beat slot must be >= 0, got {slot}")
        return self._roles[slot % len(self._roles)]

    def slots_owned(self, role: Role, beat_budget: int) -> List[int]:
        """All slots in [0, beat_budget) owned by a role."""
        position = self.position_of(role)
        return list(range(position, beat_budget, len(self._roles)))

    def nearest_owned_slot(self, role: Role, slot_float: float, beat_budget: int) -> Optional[int]:
        """
        Owned slot of `role` closest to a fractional slot position.

        Args:
            role: Role to search
            slot_float: Position on the beat grid (may be negative or fractional)
            beat_budget: Number of slots in the session

        Returns:
            Nearest slot index in [0, beat_budget) owned by the role, or None
            if the role owns no slot within the budget
        """
        owned = self.slots_owned(role, beat_budget)
        if not owned:
            return None
        return min(owned, key=lambda s: (abs(s - slot_float), s))

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'RoleTable':
        """
        Build a table from a configuration dict.

        Reads [[roles]] entries (role, optional index, frequency_hz) and the
        [analyzer] section for the tolerance. Falls back to the reference
        scheme when no roles are configured.

        Raises:
            ConfigurationError: On malformed entries
        """
        analyzer = config_section(config, 'analyzer')
        tolerance_hz = config_value(analyzer, 'tolerance_hz', None, float, 'analyzer')
        if tolerance_hz is None:
            tolerance_hz = tolerance_from_resolution(
                analyzer.get('sample_rate', DEFAULT_SAMPLE_RATE),
                analyzer.get('fft_size', DEFAULT_FFT_SIZE),
                analyzer.get('tolerance_bins', DEFAULT_TOLERANCE_BINS),
            )
        min_separation_hz = config_value(analyzer, 'min_separation_hz', None, float, 'analyzer')

        entries = config.get('roles') or []
        if not isinstance(entries, list):
            raise ConfigurationError(f"[[roles]] must be an array of tables, got {entries!r}")
        if not entries:
            return reference_role_table(tolerance_hz=tolerance_hz, min_separation_hz=min_separation_hz)

        assignments: List[Tuple[Role, float]] = []
        for entry in entries:
            if not isinstance(entry, dict) or 'role' not in entry or 'frequency_hz' not in entry:
                raise ConfigurationError(f"Role entry needs 'role' and 'frequency_hz': {entry!r}")
            try:
                frequency = float(entry['frequency_hz'])
            except (TypeError, ValueError):
                raise ConfigurationError(f"Bad frequency in role entry: {entry!r}") from None
            assignments.append((Role.parse(entry['role'], entry.get('index')), frequency))

        return cls(assignments, tolerance_hz=tolerance_hz, min_separation_hz=min_separation_hz)


def reference_assignments(participants: int = 3) -> Sequence[Tuple[Role, float]]:
    """Reference coordinator + participant frequencies."""
    if participants not in range(0, len(PARTICIPANT_FREQUENCIES_HZ) + 1):
        raise ConfigurationError(
            f"Reference scheme has {len(PARTICIPANT_FREQUENCIES_HZ)} participants, asked for {participants}"
        )
    pairs = [(Role.coordinator(), COORDINATOR_FREQUENCY_HZ)]
    for index in range(1, participants + 1):
        pairs.append((Role.participant(index), PARTICIPANT_FREQUENCIES_HZ[index]))
    return pairs


def reference_role_table(
    tolerance_hz: Optional[float] = None,
    min_separation_hz: Optional[float] = None
) -> RoleTable:
    """The original four-role A4/B4/C5/D5 table."""
    return RoleTable(reference_assignments(), tolerance_hz=tolerance_hz, min_separation_hz=min_separation_hz)
