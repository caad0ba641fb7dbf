"""
Decision Authority
Records the manager's ruling and closes the case.

A case is decided once. The ruling becomes the case's terminal status, and
a 'fined' ruling also issues the fine.
"""

import logging
import uuid
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import AlreadyTerminal, ValidationFailed
from app.core.locks import case_locks
from app.core.user_context import ActorContext
from app.core.utc import add_days, utc_now
from app.models.models import Case, Decision, Fine
from app.services.compliance import audit, case_registry
from app.services.compliance.status import DecisionOutcome, is_terminal

logger = logging.getLogger(__name__)


def _parse_outcome(decision: Union[DecisionOutcome, str, None]) -> DecisionOutcome:
    try:
        return DecisionOutcome(decision)
    except ValueError:
        raise ValidationFailed(
            "decision",
            f"decision must be one of {', '.join(d.value for d in DecisionOutcome)}",
        )


def _already_terminal(case: Case) -> AlreadyTerminal:
    return AlreadyTerminal(
        f"Case {case.id} is already closed as '{case.status}'",
        {"case_id": case.id, "status": case.status},
    )


async def record_decision(
    session: AsyncSession,
    actor: ActorContext,
    case_id: str,
    decision: Union[DecisionOutcome, str],
    justification: str,
) -> Decision:
    """
    Close the case with a ruling.

    Raises ValidationFailed (unknown decision, blank justification) or
    AlreadyTerminal; nothing changes when either is raised.
    """
    actor.require("decision_record")
    outcome = _parse_outcome(decision)
    if not justification or not justification.strip():
        raise ValidationFailed("justification", "justification is required")

    async with case_locks.hold(case_id):
        case = await case_registry.get_case(session, case_id, for_update=True)
        if is_terminal(case.status):
            logger.warning("Decision refused for case %s: already %s", case.id[:8], case.status)
            raise _already_terminal(case)

        now = utc_now()
        record = Decision(
            id=str(uuid.uuid4()),
            case_id=case.id,
            decision=outcome.value,
            justification=justification.strip(),
            decided_by=actor.actor_id,
            decided_at=now,
        )
        session.add(record)
        case_registry.advance_status(session, actor, case, outcome.status, "decision_recorded")

        if outcome is DecisionOutcome.FINED:
            issue_fine(session, actor, case)

        audit.record(
            session, actor, "decision_recorded", "decisions", record.id, case.id,
            {"decision": outcome.value},
        )
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise AlreadyTerminal(f"Case {case_id} was already decided", {"case_id": case_id})

    logger.info("Case %s decided: %s", case_id[:8], outcome.value)
    return record


def issue_fine(session: AsyncSession, actor: ActorContext, case: Case) -> Fine:
    settings = get_settings()
    now = utc_now()
    fine = Fine(
        id=str(uuid.uuid4()),
        case_id=case.id,
        resident_id=case.resident_id,
        amount=settings.fine_default_amount_cents,
        status="open",
        due_date=add_days(now, settings.fine_due_days),
        created_at=now,
    )
    session.add(fine)
    audit.record(
        session, actor, "fine_issued", "fines", fine.id, case.id,
        {"amount": fine.amount, "due_date": fine.due_date},
    )
    return fine


async def get_decision(session: AsyncSession, case_id: str) -> Optional[Decision]:
    result = await session.execute(select(Decision).where(Decision.case_id == case_id))
    return result.scalar_one_or_none()


async def get_fine(session: AsyncSession, case_id: str) -> Optional[Fine]:
    result = await session.execute(select(Fine).where(Fine.case_id == case_id))
    return result.scalar_one_or_none()
