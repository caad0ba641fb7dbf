"""
Audit trail writer.

Entries are added to the caller's session so they commit (or roll back)
together with the change they describe.
"""

import json
import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.user_context import ActorContext
from app.models.models import AuditLog


def _default(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


def record(
    session: AsyncSession,
    actor: ActorContext,
    action: str,
    entity: str,
    entity_id: str,
    case_id: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> AuditLog:
    entry = AuditLog(
        id=str(uuid.uuid4()),
        actor_id=actor.actor_id,
        actor_role=actor.role.value,
        action=action,
        entity=entity,
        entity_id=entity_id,
        case_id=case_id,
        payload=json.dumps(payload, default=_default) if payload else None,
    )
    session.add(entry)
    return entry


async def list_for_case(session: AsyncSession, case_id: str) -> list[AuditLog]:
    result = await session.execute(
        select(AuditLog).where(AuditLog.case_id == case_id).order_by(AuditLog.created_at)
    )
    return list(result.scalars().all())
