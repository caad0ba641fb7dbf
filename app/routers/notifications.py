"""
Notification API - sends recorded by the manager / dispatcher and the
delivery callbacks reported back by the messaging service.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.event_bus import EventType, publish_event
from app.core.user_context import ActorContext, get_actor
from app.routers.cases import case_event_data, visible_case
from app.services.compliance import case_registry, notification_tracker
from app.services.compliance.notification_tracker import DeliveryStage

router = APIRouter(tags=["Notifications"])


# =============================================================================
# Pydantic Models
# =============================================================================

class NotificationSent(BaseModel):
    channel: str  # whatsapp, email, sms, letter
    resident_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    provider_message_id: Optional[str] = None


class NotificationFailed(BaseModel):
    channel: str
    reason: str


class StageUpdate(BaseModel):
    timestamp: Optional[datetime] = None


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    case_id: str
    resident_id: Optional[str]
    channel: str
    provider_message_id: Optional[str]
    sent_at: datetime
    delivered_at: Optional[datetime]
    read_at: Optional[datetime]
    acknowledged_at: Optional[datetime]


class SendResponse(BaseModel):
    notification: NotificationResponse
    case_status: str
    status_changed: bool


# =============================================================================
# Sends
# =============================================================================

@router.post(
    "/api/cases/{case_id}/notifications",
    response_model=SendResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_sent(
    case_id: str,
    body: NotificationSent,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Record a send. The first one on a registered case marks it notified."""
    sent = await notification_tracker.record_sent(
        db,
        actor,
        case_id,
        body.channel,
        resident_id=body.resident_id,
        sent_at=body.sent_at,
        provider_message_id=body.provider_message_id,
    )

    if sent.status_changed:
        case = await case_registry.get_case(db, case_id)
        await publish_event(
            EventType.CASE_NOTIFIED,
            case_event_data(case, notification_id=sent.event.id, channel=sent.event.channel),
            source="notifications",
            actor_id=actor.actor_id,
        )

    return SendResponse(
        notification=NotificationResponse.model_validate(sent.event),
        case_status=sent.case_status,
        status_changed=sent.status_changed,
    )


@router.post("/api/cases/{case_id}/notifications/failed", status_code=status.HTTP_202_ACCEPTED)
async def record_send_failure(
    case_id: str,
    body: NotificationFailed,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """A failed send is logged only; the case status does not move."""
    actor.require("notification_send")
    case = await case_registry.get_case(db, case_id)
    notification_tracker.record_send_failure(case.id, body.channel, body.reason)

    await publish_event(
        EventType.NOTIFICATION_SEND_FAILED,
        {"case_id": case.id, "channel": body.channel, "reason": body.reason},
        source="notifications",
        actor_id=actor.actor_id,
    )
    return {"case_id": case.id, "status": case.status, "recorded": False}


@router.get("/api/cases/{case_id}/notifications", response_model=list[NotificationResponse])
async def list_notifications(
    case_id: str,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    case = await visible_case(db, actor, case_id)
    events = await notification_tracker.list_notifications(db, case.id)
    return [NotificationResponse.model_validate(e) for e in events]


# =============================================================================
# Delivery callbacks
# =============================================================================

@router.post("/api/notifications/{event_id}/{stage}", response_model=NotificationResponse)
async def record_stage(
    event_id: str,
    stage: DeliveryStage,
    body: Optional[StageUpdate] = None,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """
    delivered / read / acknowledged. Idempotent: the first timestamp wins and
    replays return the event unchanged.
    """
    event = await notification_tracker.record_stage(
        db, actor, event_id, stage, body.timestamp if body else None
    )
    return NotificationResponse.model_validate(event)


@router.post(
    "/api/notifications/provider/{provider_message_id}/{stage}",
    response_model=NotificationResponse,
)
async def record_stage_by_provider_id(
    provider_message_id: str,
    stage: DeliveryStage,
    body: Optional[StageUpdate] = None,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Same as above, keyed by the messaging provider's message id."""
    actor.require("notification_track")
    event = await notification_tracker.find_by_provider_message_id(db, provider_message_id)
    event = await notification_tracker.record_stage(
        db, actor, event.id, stage, body.timestamp if body else None
    )
    return NotificationResponse.model_validate(event)
