"""
Case Registry
Creates and stores infraction cases, and owns status transitions.

Creation runs quota check + insert as one unit of work under the
condominium lock, so two concurrent creations can never both pass a
limit that only has room for one.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import AlreadyTerminal, CaseNotFound, Forbidden, NotEligible, ValidationFailed
from app.core.locks import condominium_locks
from app.core.user_context import ActorContext
from app.core.utc import to_utc, utc_now
from app.models.models import Case, Defense
from app.services.compliance import audit, quota_guard
from app.services.compliance.status import CaseStatus, CaseType, can_transition, is_terminal

logger = logging.getLogger(__name__)


@dataclass
class NewCase:
    """Everything needed to register a case."""
    condominium_id: str
    type: Union[CaseType, str]
    title: str
    description: str
    occurred_at: Optional[datetime]
    block_id: Optional[str] = None
    apartment_id: Optional[str] = None
    resident_id: Optional[str] = None
    location: Optional[str] = None
    legal_basis: Optional[str] = None
    convention_article: Optional[str] = None
    internal_rules_article: Optional[str] = None
    civil_code_article: Optional[str] = None


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationFailed(field, f"{field} is required")
    return value.strip()


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate(request: NewCase, now: datetime) -> NewCase:
    """Reject missing/blank required fields before anything touches the store."""
    condominium_id = _require_text(request.condominium_id, "condominium_id")
    try:
        case_type = CaseType(request.type)
    except ValueError:
        raise ValidationFailed("type", f"Unknown case type '{request.type}'")
    title = _require_text(request.title, "title")
    description = _require_text(request.description, "description")

    if request.occurred_at is None:
        raise ValidationFailed("occurred_at", "occurred_at is required")
    occurred_at = to_utc(request.occurred_at)
    tolerance = timedelta(minutes=get_settings().case_future_tolerance_minutes)
    if occurred_at > now + tolerance:
        raise ValidationFailed("occurred_at", "occurred_at cannot be in the future")

    return NewCase(
        condominium_id=condominium_id,
        type=case_type,
        title=title,
        description=description,
        occurred_at=occurred_at,
        block_id=_clean(request.block_id),
        apartment_id=_clean(request.apartment_id),
        resident_id=_clean(request.resident_id),
        location=_clean(request.location),
        legal_basis=_clean(request.legal_basis),
        convention_article=_clean(request.convention_article),
        internal_rules_article=_clean(request.internal_rules_article),
        civil_code_article=_clean(request.civil_code_article),
    )


async def create_case(session: AsyncSession, actor: ActorContext, request: NewCase) -> Case:
    """
    Register a new case with status 'registered'.

    Raises ValidationFailed or QuotaExceeded; nothing is written in either case.
    """
    actor.require("case_create")
    now = utc_now()
    request = validate(request, now)

    async with condominium_locks.hold(request.condominium_id):
        await quota_guard.check_and_authorize(session, request.condominium_id, request.type)

        case = Case(
            id=str(uuid.uuid4()),
            condominium_id=request.condominium_id,
            block_id=request.block_id,
            apartment_id=request.apartment_id,
            resident_id=request.resident_id,
            registered_by=actor.actor_id,
            type=request.type.value,
            status=CaseStatus.REGISTERED.value,
            title=request.title,
            description=request.description,
            location=request.location,
            occurred_at=request.occurred_at,
            legal_basis=request.legal_basis,
            convention_article=request.convention_article,
            internal_rules_article=request.internal_rules_article,
            civil_code_article=request.civil_code_article,
            created_at=now,
            updated_at=now,
        )
        session.add(case)
        audit.record(
            session, actor, "case_registered", "cases", case.id, case.id,
            {"type": case.type, "condominium_id": case.condominium_id},
        )
        await session.commit()

    logger.info("Case %s registered (%s) for condominium %s", case.id[:8], case.type, case.condominium_id)
    return case


# =============================================================================
# Reads
# =============================================================================

def ensure_visible(case: Case, actor: ActorContext) -> None:
    """Residents only see cases raised against them."""
    if actor.is_resident and case.resident_id != actor.actor_id:
        raise Forbidden("Case belongs to another resident", {"case_id": case.id})


async def get_case(
    session: AsyncSession,
    case_id: str,
    for_update: bool = False,
) -> Case:
    query = select(Case).where(Case.id == case_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    case = result.scalar_one_or_none()
    if case is None:
        raise CaseNotFound(case_id)
    return case


async def list_cases(
    session: AsyncSession,
    condominium_id: Optional[str] = None,
    status: Optional[str] = None,
    case_type: Optional[str] = None,
    apartment_id: Optional[str] = None,
    resident_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Case]:
    """Newest first. Filter by apartment_id for a unit's history."""
    query = select(Case)
    if condominium_id:
        query = query.where(Case.condominium_id == condominium_id)
    if status:
        query = query.where(Case.status == CaseStatus(status).value)
    if case_type:
        query = query.where(Case.type == CaseType(case_type).value)
    if apartment_id:
        query = query.where(Case.apartment_id == apartment_id)
    if resident_id:
        query = query.where(Case.resident_id == resident_id)

    query = query.order_by(Case.created_at.desc(), Case.id).limit(limit).offset(offset)
    result = await session.execute(query)
    return list(result.scalars().all())


async def defense_queue(session: AsyncSession, condominium_id: str) -> list[tuple[Case, Defense]]:
    """Cases whose defense is in and awaits a ruling, oldest defense first."""
    result = await session.execute(
        select(Case, Defense)
        .join(Defense, Defense.case_id == Case.id)
        .where(
            Case.condominium_id == condominium_id,
            Case.status == CaseStatus.IN_DEFENSE.value,
        )
        .order_by(Defense.submitted_at, Case.id)
    )
    return [(case, defense) for case, defense in result.all()]


# =============================================================================
# Transitions
# =============================================================================

def advance_status(
    session: AsyncSession,
    actor: ActorContext,
    case: Case,
    target: Union[CaseStatus, str],
    reason: str,
) -> None:
    """Move the case forward along the status graph. Never backwards."""
    target = CaseStatus(target)
    if not can_transition(case.status, target):
        if is_terminal(case.status):
            raise AlreadyTerminal(
                f"Case {case.id} is already closed as '{case.status}'",
                {"case_id": case.id, "status": case.status},
            )
        raise NotEligible(
            f"Case {case.id} cannot move from '{case.status}' to '{target.value}'",
            {"case_id": case.id, "status": case.status, "target": target.value},
        )

    previous = case.status
    case.status = target.value
    case.updated_at = utc_now()
    audit.record(
        session, actor, "status_changed", "cases", case.id, case.id,
        {"from": previous, "to": target.value, "reason": reason},
    )
    logger.info("Case %s: %s -> %s (%s)", case.id[:8], previous, target.value, reason)
