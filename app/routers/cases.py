"""
Case API - registration, reads, evidence and timeline.
Every operation centers on a single infraction case.
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
from app.models.models import Case
from app.services.compliance import case_registry, decision_authority, evidence_ledger, timeline
from app.services.compliance.case_registry import NewCase
from app.services.compliance.defense_window import defense_window, get_defense
from app.services.compliance.status import CaseStatus, CaseType, Closed, display_status, outcome_for

router = APIRouter(prefix="/api/cases", tags=["Cases"])


# =============================================================================
# Pydantic Models
# =============================================================================

class CaseCreate(BaseModel):
    """Register a new case."""
    condominium_id: str
    type: str
    title: str
    description: str
    occurred_at: Optional[datetime] = None
    block_id: Optional[str] = None
    apartment_id: Optional[str] = None
    resident_id: Optional[str] = None
    location: Optional[str] = None
    legal_basis: Optional[str] = None
    convention_article: Optional[str] = None
    internal_rules_article: Optional[str] = None
    civil_code_article: Optional[str] = None


class CaseCreated(BaseModel):
    case_id: str
    status: str
    created_at: datetime


class CaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    condominium_id: str
    block_id: Optional[str]
    apartment_id: Optional[str]
    resident_id: Optional[str]
    registered_by: str
    type: str
    status: str
    title: str
    description: str
    location: Optional[str]
    occurred_at: datetime
    legal_basis: Optional[str]
    convention_article: Optional[str]
    internal_rules_article: Optional[str]
    civil_code_article: Optional[str]
    created_at: datetime
    updated_at: datetime


class CaseDetail(CaseResponse):
    """Case plus everything derived from it."""
    display_status: str
    outcome: dict
    has_defense: bool
    defense_window: dict


class EvidenceCreate(BaseModel):
    file_url: str
    file_type: str
    description: Optional[str] = None


class EvidenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    case_id: str
    file_url: str
    file_type: str
    description: Optional[str]
    uploaded_by: str
    created_at: datetime


class TimelineEntry(BaseModel):
    kind: str
    title: str
    description: str
    timestamp: datetime
    ref_id: str


def outcome_dict(case: Case, decision_id: Optional[str] = None) -> dict:
    outcome = outcome_for(case.status, decision_id)
    if isinstance(outcome, Closed):
        return {"closed": True, "decision": outcome.decision.value, "decision_id": outcome.decision_id}
    return {"closed": False, "status": outcome.status.value}


def case_event_data(case: Case, **extra) -> dict:
    """Event payload shared by the lifecycle routers."""
    return {
        "case_id": case.id,
        "condominium_id": case.condominium_id,
        "resident_id": case.resident_id,
        "type": case.type,
        "title": case.title,
        "status": case.status,
        "updated_at": format_iso(case.updated_at),
        **extra,
    }


async def visible_case(db: AsyncSession, actor: ActorContext, case_id: str) -> Case:
    actor.require("case_read")
    case = await case_registry.get_case(db, case_id)
    case_registry.ensure_visible(case, actor)
    return case


# =============================================================================
# Case Endpoints
# =============================================================================

@router.post("", response_model=CaseCreated, status_code=status.HTTP_201_CREATED)
async def create_case(
    body: CaseCreate,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """
    Register a case (status 'registered').

    402 quota_exceeded when the plan has no room left for this case type.
    """
    case = await case_registry.create_case(db, actor, NewCase(**body.model_dump()))

    await publish_event(
        EventType.CASE_REGISTERED,
        case_event_data(case),
        source="cases",
        actor_id=actor.actor_id,
    )
    return CaseCreated(case_id=case.id, status=case.status, created_at=case.created_at)


@router.get("", response_model=list[CaseResponse])
async def list_cases(
    condominium_id: Optional[str] = None,
    status_filter: Optional[CaseStatus] = Query(None, alias="status"),
    type_filter: Optional[CaseType] = Query(None, alias="type"),
    apartment_id: Optional[str] = None,
    resident_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """List cases, newest first. Residents only ever see their own."""
    actor.require("case_read")
    if actor.is_resident:
        resident_id = actor.actor_id

    cases = await case_registry.list_cases(
        db,
        condominium_id=condominium_id,
        status=status_filter.value if status_filter else None,
        case_type=type_filter.value if type_filter else None,
        apartment_id=apartment_id,
        resident_id=resident_id,
        limit=limit,
        offset=offset,
    )
    return [CaseResponse.model_validate(c) for c in cases]


@router.get("/{case_id}", response_model=CaseDetail)
async def get_case(
    case_id: str,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    case = await visible_case(db, actor, case_id)
    defense = await get_defense(db, case.id)
    decision = await decision_authority.get_decision(db, case.id)

    return CaseDetail(
        **CaseResponse.model_validate(case).model_dump(),
        display_status=display_status(case.status),
        outcome=outcome_dict(case, decision.id if decision else None),
        has_defense=defense is not None,
        defense_window=defense_window(case, defense is not None, utc_now()).to_dict(),
    )


# =============================================================================
# Evidence
# =============================================================================

@router.post("/{case_id}/evidence", response_model=EvidenceResponse, status_code=status.HTTP_201_CREATED)
async def attach_evidence(
    case_id: str,
    body: EvidenceCreate,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    evidence = await evidence_ledger.attach_evidence(
        db, actor, case_id, body.file_url, body.file_type, body.description
    )
    await publish_event(
        EventType.EVIDENCE_ATTACHED,
        {"case_id": case_id, "evidence_id": evidence.id, "file_type": evidence.file_type},
        source="cases",
        actor_id=actor.actor_id,
    )
    return EvidenceResponse.model_validate(evidence)


@router.get("/{case_id}/evidence", response_model=list[EvidenceResponse])
async def list_evidence(
    case_id: str,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    case = await visible_case(db, actor, case_id)
    return [EvidenceResponse.model_validate(e) for e in await evidence_ledger.list_evidence(db, case.id)]


# =============================================================================
# Timeline
# =============================================================================

@router.get("/{case_id}/timeline", response_model=list[TimelineEntry])
async def get_timeline(
    case_id: str,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Everything that happened to the case, oldest first."""
    case = await visible_case(db, actor, case_id)
    items = await timeline.build_timeline(db, case.id)
    return [TimelineEntry(**item.to_dict()) for item in items]
