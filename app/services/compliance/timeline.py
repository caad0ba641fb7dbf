"""
Timeline Synthesizer
Merges everything that happened to a case into one chronological list.

Pure read-side projection: recomputed from the stored rows on every call,
never written back. Items sort by timestamp; equal timestamps fall back to
created < evidence < notification < defense < decision, then ref id, so the
same rows always give the same order.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.models import Case, Decision, Defense, Evidence, NotificationEvent
from app.services.compliance import case_registry, decision_authority, evidence_ledger, notification_tracker
from app.services.compliance.defense_window import get_defense


class TimelineKind(str, Enum):
    CREATED = "created"
    EVIDENCE = "evidence"
    NOTIFICATION = "notification"
    DEFENSE = "defense"
    DECISION = "decision"


KIND_PRIORITY = {
    TimelineKind.CREATED: 0,
    TimelineKind.EVIDENCE: 1,
    TimelineKind.NOTIFICATION: 2,
    TimelineKind.DEFENSE: 3,
    TimelineKind.DECISION: 4,
}

DECISION_TITLES = {
    "archived": "Case archived",
    "warned": "Warning applied",
    "fined": "Fine applied",
}


@dataclass(frozen=True)
class TimelineItem:
    kind: TimelineKind
    title: str
    description: str
    timestamp: datetime
    ref_id: str

    def sort_key(self):
        return (self.timestamp, KIND_PRIORITY[self.kind], self.ref_id)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "description": self.description,
            "timestamp": self.timestamp,
            "ref_id": self.ref_id,
        }


def excerpt(text: str, length: Optional[int] = None) -> str:
    length = length or get_settings().timeline_excerpt_length
    if len(text) <= length:
        return text
    return text[:length] + "..."


def _notification_description(event: NotificationEvent) -> str:
    parts = [f"Via {event.channel}"]
    if event.delivered_at:
        parts.append(" - Delivered")
    if event.read_at:
        parts.append(" - Read")
    if event.acknowledged_at:
        parts.append(" - Acknowledged")
    return "".join(parts)


def synthesize(
    case: Case,
    evidence: Iterable[Evidence] = (),
    notifications: Iterable[NotificationEvent] = (),
    defenses: Iterable[Defense] = (),
    decisions: Iterable[Decision] = (),
) -> list[TimelineItem]:
    """Build the ordered timeline from already-loaded rows."""
    items = [
        TimelineItem(TimelineKind.CREATED, "Case registered", case.title, case.created_at, case.id),
    ]

    for ev in evidence:
        items.append(TimelineItem(
            TimelineKind.EVIDENCE,
            "Evidence added",
            ev.description or f"File {ev.file_type}",
            ev.created_at,
            ev.id,
        ))

    for event in notifications:
        items.append(TimelineItem(
            TimelineKind.NOTIFICATION,
            "Notification sent",
            _notification_description(event),
            event.sent_at,
            event.id,
        ))

    for defense in defenses:
        items.append(TimelineItem(
            TimelineKind.DEFENSE,
            "Defense submitted",
            excerpt(defense.content),
            defense.submitted_at,
            defense.id,
        ))

    for decision in decisions:
        items.append(TimelineItem(
            TimelineKind.DECISION,
            DECISION_TITLES.get(decision.decision, "Decision"),
            excerpt(decision.justification),
            decision.decided_at,
            decision.id,
        ))

    items.sort(key=TimelineItem.sort_key)
    return items


async def build_timeline(session: AsyncSession, case_id: str) -> list[TimelineItem]:
    case = await case_registry.get_case(session, case_id)
    defense = await get_defense(session, case.id)
    decision = await decision_authority.get_decision(session, case.id)

    return synthesize(
        case,
        evidence=await evidence_ledger.list_evidence(session, case.id),
        notifications=await notification_tracker.list_notifications(session, case.id),
        defenses=[defense] if defense else [],
        decisions=[decision] if decision else [],
    )
