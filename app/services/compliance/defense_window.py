"""
Defense Window Calculator
Decides whether a resident may still answer a case, and handles the answer.

A defense is accepted while the case is registered or notified and no
defense exists yet. Its deadline is submitted_at + defense_deadline_days,
frozen on the Defense row so later policy changes do not rewrite history.
The read-side window (what residents see before answering) uses the same
constant, anchored at case creation.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import DefenseAlreadySubmitted, Forbidden, NotEligible, ValidationFailed
from app.core.locks import case_locks
from app.core.user_context import ActorContext
from app.core.utc import add_days, utc_now
from app.models.models import Case, Defense, DefenseAttachment
from app.services.compliance import audit, case_registry
from app.services.compliance.status import DEFENSE_OPEN_STATUSES, CaseStatus

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class AttachmentRef:
    """A file uploaded with the defense (already stored, referenced by URL)."""
    file_url: str
    file_type: str
    description: Optional[str] = None


@dataclass
class DefenseWindow:
    opens_at: datetime
    closes_at: datetime
    days_remaining: int
    is_urgent: bool
    is_expired: bool
    eligible: bool

    def to_dict(self) -> dict:
        return {
            "opens_at": self.opens_at,
            "closes_at": self.closes_at,
            "days_remaining": self.days_remaining,
            "is_urgent": self.is_urgent,
            "is_expired": self.is_expired,
            "eligible": self.eligible,
        }


def compute_deadline(submitted_at: datetime) -> datetime:
    return add_days(submitted_at, get_settings().defense_deadline_days)


def window_closes_at(case: Case) -> datetime:
    return add_days(case.created_at, get_settings().defense_deadline_days)


def eligibility_error(case: Case, has_defense: bool, now: Optional[datetime] = None) -> Optional[NotEligible]:
    """The reason a defense would be refused right now, or None."""
    if has_defense:
        return DefenseAlreadySubmitted(
            f"A defense was already submitted for case {case.id}",
            {"case_id": case.id},
        )
    if CaseStatus(case.status) not in DEFENSE_OPEN_STATUSES:
        return NotEligible(
            f"Case {case.id} no longer accepts a defense (status '{case.status}')",
            {"case_id": case.id, "status": case.status},
        )
    if get_settings().enforce_defense_window:
        now = now or utc_now()
        closes_at = window_closes_at(case)
        if now > closes_at:
            return NotEligible(
                f"The defense window for case {case.id} closed at {closes_at.isoformat()}",
                {"case_id": case.id, "closes_at": closes_at.isoformat()},
            )
    return None


def is_defense_eligible(case: Case, has_defense: bool, now: Optional[datetime] = None) -> bool:
    return eligibility_error(case, has_defense, now) is None


def defense_window(case: Case, has_defense: bool, now: Optional[datetime] = None) -> DefenseWindow:
    settings = get_settings()
    now = now or utc_now()
    closes_at = window_closes_at(case)

    remaining = math.ceil((closes_at - now).total_seconds() / SECONDS_PER_DAY)
    is_expired = remaining < 0
    days_remaining = max(0, remaining)

    return DefenseWindow(
        opens_at=case.created_at,
        closes_at=closes_at,
        days_remaining=days_remaining,
        is_urgent=is_expired or days_remaining <= settings.defense_urgent_days,
        is_expired=is_expired,
        eligible=is_defense_eligible(case, has_defense, now),
    )


async def get_defense(session: AsyncSession, case_id: str) -> Optional[Defense]:
    result = await session.execute(select(Defense).where(Defense.case_id == case_id))
    return result.scalar_one_or_none()


async def list_attachments(session: AsyncSession, defense_id: str) -> list[DefenseAttachment]:
    result = await session.execute(
        select(DefenseAttachment)
        .where(DefenseAttachment.defense_id == defense_id)
        .order_by(DefenseAttachment.created_at, DefenseAttachment.id)
    )
    return list(result.scalars().all())


async def submit_defense(
    session: AsyncSession,
    actor: ActorContext,
    case_id: str,
    resident_id: str,
    content: str,
    attachments: Iterable[AttachmentRef] = (),
) -> Defense:
    """
    Record the resident's defense and move the case to in_defense.

    Raises ValidationFailed, Forbidden, DefenseAlreadySubmitted or NotEligible;
    a rejected submission leaves the case untouched.
    """
    actor.require("defense_submit")
    if not resident_id or not resident_id.strip():
        raise ValidationFailed("resident_id", "resident_id is required")
    if not content or not content.strip():
        raise ValidationFailed("content", "Defense content is required")
    attachments = list(attachments)
    for attachment in attachments:
        if not attachment.file_url or not attachment.file_type:
            raise ValidationFailed("attachments", "Each attachment needs file_url and file_type")

    resident_id = resident_id.strip()
    if actor.is_resident and actor.actor_id != resident_id:
        raise Forbidden("Residents can only answer their own cases", {"resident_id": resident_id})

    async with case_locks.hold(case_id):
        case = await case_registry.get_case(session, case_id, for_update=True)
        if case.resident_id and case.resident_id != resident_id:
            raise Forbidden("Case was raised against another resident", {"case_id": case.id})

        now = utc_now()
        existing = await get_defense(session, case.id)
        error = eligibility_error(case, existing is not None, now)
        if error is not None:
            logger.warning("Defense refused for case %s: %s", case.id[:8], error.code)
            raise error

        defense = Defense(
            id=str(uuid.uuid4()),
            case_id=case.id,
            resident_id=resident_id,
            content=content.strip(),
            submitted_at=now,
            deadline=compute_deadline(now),
        )
        session.add(defense)
        for attachment in attachments:
            session.add(DefenseAttachment(
                id=str(uuid.uuid4()),
                defense_id=defense.id,
                file_url=attachment.file_url.strip(),
                file_type=attachment.file_type.strip().lower(),
                description=(attachment.description or "").strip() or None,
                created_at=now,
            ))

        case_registry.advance_status(session, actor, case, CaseStatus.IN_DEFENSE, "defense_submitted")
        audit.record(
            session, actor, "defense_submitted", "defenses", defense.id, case.id,
            {"deadline": defense.deadline, "attachments": len(attachments)},
        )
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise DefenseAlreadySubmitted(
                f"A defense was already submitted for case {case_id}",
                {"case_id": case_id},
            )

    logger.info("Defense %s submitted for case %s", defense.id[:8], case_id[:8])
    return defense
