"""
Defense API - the resident's answer to a case and the manager's review queue.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.event_bus import EventType, publish_event
from app.core.user_context import ActorContext, get_actor
from app.core.utc import format_iso, utc_now
from app.routers.cases import visible_case, case_event_data
from app.services.compliance import case_registry, defense_window
from app.services.compliance.defense_window import AttachmentRef
from app.services.compliance.status import display_status

router = APIRouter(tags=["Defenses"])


# =============================================================================
# Pydantic Models
# =============================================================================

class AttachmentIn(BaseModel):
    file_url: str
    file_type: str
    description: Optional[str] = None


class DefenseCreate(BaseModel):
    """Resident's defense. resident_id defaults to the acting resident."""
    content: str
    resident_id: Optional[str] = None
    attachments: list[AttachmentIn] = []


class AttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    file_url: str
    file_type: str
    description: Optional[str]
    created_at: datetime


class DefenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    case_id: str
    resident_id: str
    content: str
    submitted_at: datetime
    deadline: datetime
    attachments: list[AttachmentResponse] = []


class DefenseStatus(BaseModel):
    """What a resident sees before (and after) answering."""
    case_id: str
    status: str
    display_status: str
    eligible: bool
    window: dict
    defense: Optional[DefenseResponse] = None


class QueueItem(BaseModel):
    case_id: str
    title: str
    type: str
    apartment_id: Optional[str]
    resident_id: Optional[str]
    display_status: str
    defense_id: str
    submitted_at: datetime
    deadline: datetime


async def _defense_response(db: AsyncSession, defense) -> DefenseResponse:
    attachments = await defense_window.list_attachments(db, defense.id)
    return DefenseResponse(
        id=defense.id,
        case_id=defense.case_id,
        resident_id=defense.resident_id,
        content=defense.content,
        submitted_at=defense.submitted_at,
        deadline=defense.deadline,
        attachments=[AttachmentResponse.model_validate(a) for a in attachments],
    )


# =============================================================================
# Defense Endpoints
# =============================================================================

@router.get("/api/cases/{case_id}/defense", response_model=DefenseStatus)
async def get_defense(
    case_id: str,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Eligibility, window and (if any) the submitted defense."""
    case = await visible_case(db, actor, case_id)
    defense = await defense_window.get_defense(db, case.id)
    window = defense_window.defense_window(case, defense is not None, utc_now())

    return DefenseStatus(
        case_id=case.id,
        status=case.status,
        display_status=display_status(case.status),
        eligible=window.eligible,
        window=window.to_dict(),
        defense=await _defense_response(db, defense) if defense else None,
    )


@router.post(
    "/api/cases/{case_id}/defense",
    response_model=DefenseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_defense(
    case_id: str,
    body: DefenseCreate,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """
    Submit the resident's defense; the case moves to in_defense.

    409 already_submitted / not_eligible when the case no longer accepts one.
    """
    defense = await defense_window.submit_defense(
        db,
        actor,
        case_id,
        body.resident_id or actor.actor_id,
        body.content,
        [AttachmentRef(a.file_url, a.file_type, a.description) for a in body.attachments],
    )

    case = await case_registry.get_case(db, case_id)
    await publish_event(
        EventType.DEFENSE_SUBMITTED,
        case_event_data(
            case,
            defense_id=defense.id,
            submitted_at=format_iso(defense.submitted_at),
            deadline=format_iso(defense.deadline),
        ),
        source="defenses",
        actor_id=actor.actor_id,
    )
    return await _defense_response(db, defense)


@router.get("/api/defenses/queue", response_model=list[QueueItem])
async def defense_queue(
    condominium_id: str = Query(..., description="Condominium whose queue to list"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Cases whose defense is in and awaits a ruling, oldest first."""
    actor.require("decision_record")
    pairs = await case_registry.defense_queue(db, condominium_id)
    return [
        QueueItem(
            case_id=case.id,
            title=case.title,
            type=case.type,
            apartment_id=case.apartment_id,
            resident_id=case.resident_id,
            display_status=display_status(case.status),
            defense_id=defense.id,
            submitted_at=defense.submitted_at,
            deadline=defense.deadline,
        )
        for case, defense in pairs
    ]
