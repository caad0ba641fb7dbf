"""
Notification Tracker
Records the lifecycle of each notice sent to a resident.

    sent ─▶ delivered ─▶ read ─▶ acknowledged

The first send on a registered case moves it to notified; every later send
(retries, other channels) leaves the status alone. Delivery updates arrive
from the channel callbacks and only ever touch the event row: each stamp is
written once and kept, so replaying a callback changes nothing.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import NotFound, ValidationFailed
from app.core.locks import case_locks, notification_locks
from app.core.user_context import ActorContext
from app.core.utc import to_utc, utc_now
from app.models.models import NotificationEvent
from app.services.compliance import audit, case_registry
from app.services.compliance.status import CaseStatus

logger = logging.getLogger(__name__)


class DeliveryStage(str, Enum):
    DELIVERED = "delivered"
    READ = "read"
    ACKNOWLEDGED = "acknowledged"


# Each stage implies the ones before it
_STAGE_FIELDS = {
    DeliveryStage.DELIVERED: ("delivered_at",),
    DeliveryStage.READ: ("read_at", "delivered_at"),
    DeliveryStage.ACKNOWLEDGED: ("acknowledged_at", "read_at", "delivered_at"),
}


def _checked_stamp(field: str, value: Optional[datetime]) -> datetime:
    """Provider stamps may lag but never lead the clock by more than the tolerance."""
    now = utc_now()
    if value is None:
        return now
    value = to_utc(value)
    tolerance = timedelta(minutes=get_settings().case_future_tolerance_minutes)
    if value > now + tolerance:
        raise ValidationFailed(field, f"{field} cannot be in the future")
    return value


@dataclass
class SentNotification:
    event: NotificationEvent
    case_status: str
    status_changed: bool


async def record_sent(
    session: AsyncSession,
    actor: ActorContext,
    case_id: str,
    channel: str,
    resident_id: Optional[str] = None,
    sent_at: Optional[datetime] = None,
    provider_message_id: Optional[str] = None,
) -> SentNotification:
    """Append a send; a registered case becomes notified."""
    actor.require("notification_send")
    if not channel or not channel.strip():
        raise ValidationFailed("channel", "channel is required")
    sent_at = _checked_stamp("sent_at", sent_at)

    async with case_locks.hold(case_id):
        case = await case_registry.get_case(session, case_id, for_update=True)
        if sent_at < case.created_at:
            raise ValidationFailed("sent_at", "sent_at is earlier than the case itself")

        event = NotificationEvent(
            id=str(uuid.uuid4()),
            case_id=case.id,
            resident_id=resident_id or case.resident_id,
            channel=channel.strip().lower(),
            provider_message_id=provider_message_id,
            sent_at=sent_at,
        )
        session.add(event)

        status_changed = False
        if case.status == CaseStatus.REGISTERED.value:
            case_registry.advance_status(session, actor, case, CaseStatus.NOTIFIED, "notification_sent")
            status_changed = True

        audit.record(
            session, actor, "notification_sent", "notification_events", event.id, case.id,
            {"channel": event.channel},
        )
        await session.commit()

    logger.info("Notification %s sent via %s for case %s", event.id[:8], event.channel, case.id[:8])
    return SentNotification(event=event, case_status=case.status, status_changed=status_changed)


def record_send_failure(case_id: str, channel: str, reason: str) -> None:
    """A failed send changes nothing; the case keeps waiting for a good one."""
    logger.warning("Notification via %s for case %s failed: %s", channel, case_id[:8], reason)


async def get_event(session: AsyncSession, event_id: str, for_update: bool = False) -> NotificationEvent:
    query = select(NotificationEvent).where(NotificationEvent.id == event_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    event = result.scalar_one_or_none()
    if event is None:
        raise NotFound(f"Notification {event_id} not found", {"event_id": event_id})
    return event


async def find_by_provider_message_id(session: AsyncSession, provider_message_id: str) -> NotificationEvent:
    result = await session.execute(
        select(NotificationEvent).where(NotificationEvent.provider_message_id == provider_message_id)
    )
    event = result.scalars().first()
    if event is None:
        raise NotFound(
            f"No notification for provider message {provider_message_id}",
            {"provider_message_id": provider_message_id},
        )
    return event


async def record_stage(
    session: AsyncSession,
    actor: ActorContext,
    event_id: str,
    stage: DeliveryStage,
    timestamp: Optional[datetime] = None,
) -> NotificationEvent:
    """Stamp a delivery stage (and any earlier stage still missing)."""
    actor.require("notification_track")
    stage = DeliveryStage(stage)
    stamp = _checked_stamp("timestamp", timestamp)

    async with notification_locks.hold(event_id):
        event = await get_event(session, event_id, for_update=True)

        # A stage never precedes the send or a stage already recorded before it
        earlier = [event.sent_at] + [getattr(event, f) for f in _STAGE_FIELDS[stage][1:]]
        stamp = max([stamp] + [t for t in earlier if t is not None])

        written = []
        for field in _STAGE_FIELDS[stage]:
            if getattr(event, field) is None:
                setattr(event, field, stamp)
                written.append(field)

        if not written:
            logger.debug("Notification %s already %s, nothing to do", event_id[:8], stage.value)
            return event

        audit.record(
            session, actor, f"notification_{stage.value}", "notification_events", event.id, event.case_id,
            {"fields": written, "at": stamp},
        )
        await session.commit()

    logger.info("Notification %s marked %s", event_id[:8], stage.value)
    return event


async def record_delivered(session, actor, event_id, timestamp=None) -> NotificationEvent:
    return await record_stage(session, actor, event_id, DeliveryStage.DELIVERED, timestamp)


async def record_read(session, actor, event_id, timestamp=None) -> NotificationEvent:
    return await record_stage(session, actor, event_id, DeliveryStage.READ, timestamp)


async def record_acknowledged(session, actor, event_id, timestamp=None) -> NotificationEvent:
    return await record_stage(session, actor, event_id, DeliveryStage.ACKNOWLEDGED, timestamp)


async def list_notifications(session: AsyncSession, case_id: str) -> list[NotificationEvent]:
    result = await session.execute(
        select(NotificationEvent)
        .where(NotificationEvent.case_id == case_id)
        .order_by(NotificationEvent.sent_at, NotificationEvent.id)
    )
    return list(result.scalars().all())
