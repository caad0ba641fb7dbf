"""
Case status model.

    registered ──send──▶ notified
        │                   │
        └──defense──┬───────┘
                    ▼
               in_defense
                    │
    (registered | notified | in_defense) ──decision──▶ archived | warned | fined

Terminal statuses accept no further defense, decision or status change.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class CaseType(str, Enum):
    WARNING = "warning"
    NOTICE = "notice"
    FINE = "fine"


class CaseStatus(str, Enum):
    REGISTERED = "registered"
    NOTIFIED = "notified"
    IN_DEFENSE = "in_defense"
    ARCHIVED = "archived"
    WARNED = "warned"
    FINED = "fined"


class DecisionOutcome(str, Enum):
    ARCHIVED = "archived"
    WARNED = "warned"
    FINED = "fined"

    @property
    def status(self) -> CaseStatus:
        return CaseStatus(self.value)


TERMINAL_STATUSES = frozenset({CaseStatus.ARCHIVED, CaseStatus.WARNED, CaseStatus.FINED})

# Statuses that consume plan quota
QUOTA_COUNTED_STATUSES = frozenset({
    CaseStatus.NOTIFIED,
    CaseStatus.ARCHIVED,
    CaseStatus.WARNED,
    CaseStatus.FINED,
})

DEFENSE_OPEN_STATUSES = frozenset({CaseStatus.REGISTERED, CaseStatus.NOTIFIED})

_TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.REGISTERED: frozenset({CaseStatus.NOTIFIED, CaseStatus.IN_DEFENSE}) | TERMINAL_STATUSES,
    CaseStatus.NOTIFIED: frozenset({CaseStatus.IN_DEFENSE}) | TERMINAL_STATUSES,
    CaseStatus.IN_DEFENSE: TERMINAL_STATUSES,
    CaseStatus.ARCHIVED: frozenset(),
    CaseStatus.WARNED: frozenset(),
    CaseStatus.FINED: frozenset(),
}

# Position along the graph, used to check that observed statuses never go back
STATUS_RANK = {
    CaseStatus.REGISTERED: 0,
    CaseStatus.NOTIFIED: 1,
    CaseStatus.IN_DEFENSE: 2,
    CaseStatus.ARCHIVED: 3,
    CaseStatus.WARNED: 3,
    CaseStatus.FINED: 3,
}

# in_defense is shown as "analyzing": the defense is in and awaits a ruling.
# Derived label only, never persisted.
_DISPLAY_LABELS = {
    CaseStatus.IN_DEFENSE: "analyzing",
}


def can_transition(current: Union[CaseStatus, str], target: Union[CaseStatus, str]) -> bool:
    return CaseStatus(target) in _TRANSITIONS[CaseStatus(current)]


def is_terminal(status: Union[CaseStatus, str]) -> bool:
    return CaseStatus(status) in TERMINAL_STATUSES


def display_status(status: Union[CaseStatus, str]) -> str:
    status = CaseStatus(status)
    return _DISPLAY_LABELS.get(status, status.value)


# =============================================================================
# Outcome variant
# =============================================================================

@dataclass(frozen=True)
class Open:
    status: CaseStatus

    @property
    def is_closed(self) -> bool:
        return False


@dataclass(frozen=True)
class Closed:
    decision: DecisionOutcome
    decision_id: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return True


CaseOutcome = Union[Open, Closed]


def outcome_for(status: Union[CaseStatus, str], decision_id: Optional[str] = None) -> CaseOutcome:
    """Open(status) until a decision closes the case, then Closed(decision)."""
    status = CaseStatus(status)
    if status in TERMINAL_STATUSES:
        return Closed(DecisionOutcome(status.value), decision_id)
    return Open(status)
