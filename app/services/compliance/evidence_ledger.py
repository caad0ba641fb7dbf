"""
Evidence Ledger
Append-only proofs attached to a case. The file itself lives in the blob
store; only its URL and type tag are kept here.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationFailed
from app.core.user_context import ActorContext
from app.core.utc import utc_now
from app.models.models import Evidence
from app.services.compliance import audit, case_registry

logger = logging.getLogger(__name__)


async def attach_evidence(
    session: AsyncSession,
    actor: ActorContext,
    case_id: str,
    file_url: str,
    file_type: str,
    description: Optional[str] = None,
) -> Evidence:
    actor.require("evidence_attach")
    if not file_url or not file_url.strip():
        raise ValidationFailed("file_url", "file_url is required")
    if not file_type or not file_type.strip():
        raise ValidationFailed("file_type", "file_type is required")

    case = await case_registry.get_case(session, case_id)

    evidence = Evidence(
        id=str(uuid.uuid4()),
        case_id=case.id,
        file_url=file_url.strip(),
        file_type=file_type.strip().lower(),
        description=(description or "").strip() or None,
        uploaded_by=actor.actor_id,
        created_at=utc_now(),
    )
    session.add(evidence)
    audit.record(
        session, actor, "evidence_attached", "case_evidence", evidence.id, case.id,
        {"file_type": evidence.file_type},
    )
    await session.commit()

    logger.info("Evidence %s attached to case %s", evidence.id[:8], case.id[:8])
    return evidence


async def list_evidence(session: AsyncSession, case_id: str) -> list[Evidence]:
    result = await session.execute(
        select(Evidence)
        .where(Evidence.case_id == case_id)
        .order_by(Evidence.created_at, Evidence.id)
    )
    return list(result.scalars().all())
