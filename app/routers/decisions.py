"""
Decision API - the manager's ruling that closes a case.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import NotFound
from app.core.event_bus import EventType, publish_event
from app.core.user_context import ActorContext, get_actor
from app.core.utc import format_iso
from app.routers.cases import case_event_data, outcome_dict, visible_case
from app.services.compliance import case_registry, decision_authority
from app.services.compliance.timeline import excerpt

router = APIRouter(prefix="/api/cases", tags=["Decisions"])


# =============================================================================
# Pydantic Models
# =============================================================================

class DecisionCreate(BaseModel):
    decision: str  # archived, warned, fined
    justification: str


class FineResponse(BaseModel):
    id: str
    amount: int
    status: str
    due_date: datetime


class DecisionResponse(BaseModel):
    id: str
    case_id: str
    decision: str
    justification: str
    decided_by: str
    decided_at: datetime
    case_status: str
    outcome: dict
    fine: Optional[FineResponse] = None


async def _decision_response(db: AsyncSession, case, decision) -> DecisionResponse:
    fine = await decision_authority.get_fine(db, case.id)
    return DecisionResponse(
        id=decision.id,
        case_id=case.id,
        decision=decision.decision,
        justification=decision.justification,
        decided_by=decision.decided_by,
        decided_at=decision.decided_at,
        case_status=case.status,
        outcome=outcome_dict(case, decision.id),
        fine=FineResponse(
            id=fine.id, amount=fine.amount, status=fine.status, due_date=fine.due_date
        ) if fine else None,
    )


# =============================================================================
# Decision Endpoints
# =============================================================================

@router.post("/{case_id}/decision", response_model=DecisionResponse, status_code=status.HTTP_201_CREATED)
async def record_decision(
    case_id: str,
    body: DecisionCreate,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """
    Close the case as archived, warned or fined.

    409 already_terminal when the case was already decided.
    """
    decision = await decision_authority.record_decision(
        db, actor, case_id, body.decision, body.justification
    )
    case = await case_registry.get_case(db, case_id)
    response = await _decision_response(db, case, decision)

    await publish_event(
        EventType.DECISION_RECORDED,
        case_event_data(
            case,
            decision_id=decision.id,
            decision=decision.decision,
            justification=excerpt(decision.justification),
            decided_at=format_iso(decision.decided_at),
            fine_amount=response.fine.amount if response.fine else None,
        ),
        source="decisions",
        actor_id=actor.actor_id,
    )
    return response


@router.get("/{case_id}/decision", response_model=DecisionResponse)
async def get_decision(
    case_id: str,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    case = await visible_case(db, actor, case_id)
    decision = await decision_authority.get_decision(db, case.id)
    if decision is None:
        raise NotFound(f"Case {case_id} has no decision yet", {"case_id": case_id})
    return await _decision_response(db, case, decision)
