"""
Quota Guard
Ties case creation to the condominium's subscription limits.

Usage for a case type = cases of that type with a counted status
(notified, archived, warned, fined) created inside the billing period.
A limit of -1 means unlimited.

check_and_authorize is read-only. It must run in the same unit of work as
the case insert, under the condominium lock (see case_registry.create_case).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import NotFound, QuotaExceeded, ValidationFailed
from app.core.user_context import ActorContext
from app.core.utc import to_utc
from app.models.models import Case, SubscriptionPeriod
from app.services.compliance import audit
from app.services.compliance.status import (
    QUOTA_COUNTED_STATUSES,
    TERMINAL_STATUSES,
    CaseStatus,
    CaseType,
)

logger = logging.getLogger(__name__)

UNLIMITED = -1

LIMIT_FIELDS = {
    CaseType.NOTICE: "notifications_limit",
    CaseType.WARNING: "warnings_limit",
    CaseType.FINE: "fines_limit",
}

PENDING_STATUSES = frozenset(CaseStatus) - QUOTA_COUNTED_STATUSES - TERMINAL_STATUSES


@dataclass
class QuotaAuthorization:
    """Result of a passed quota check (also used for usage reports)."""
    case_type: CaseType
    limit: int
    used: int
    pending: int = 0

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited:
            return None
        return max(0, self.limit - self.used - self.pending)

    def to_dict(self) -> dict:
        return {
            "type": self.case_type.value,
            "limit": self.limit,
            "used": self.used,
            "pending": self.pending,
            "remaining": self.remaining,
            "unlimited": self.unlimited,
        }


def limit_for(subscription: SubscriptionPeriod, case_type: Union[CaseType, str]) -> int:
    return getattr(subscription, LIMIT_FIELDS[CaseType(case_type)])


async def get_subscription(
    session: AsyncSession,
    condominium_id: str,
    for_update: bool = False,
) -> Optional[SubscriptionPeriod]:
    query = select(SubscriptionPeriod).where(SubscriptionPeriod.condominium_id == condominium_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def count_cases(
    session: AsyncSession,
    condominium_id: str,
    case_type: Union[CaseType, str],
    statuses,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> int:
    """Count cases of a type with one of the statuses, created inside [start, end]."""
    conditions = [
        Case.condominium_id == condominium_id,
        Case.type == CaseType(case_type).value,
        Case.status.in_([CaseStatus(s).value for s in statuses]),
    ]
    if period_start is not None:
        conditions.append(Case.created_at >= period_start)
    if period_end is not None:
        conditions.append(Case.created_at <= period_end)

    result = await session.execute(select(func.count(Case.id)).where(*conditions))
    return result.scalar_one()


async def measure(
    session: AsyncSession,
    subscription: SubscriptionPeriod,
    case_type: Union[CaseType, str],
) -> QuotaAuthorization:
    case_type = CaseType(case_type)
    used = await count_cases(
        session,
        subscription.condominium_id,
        case_type,
        QUOTA_COUNTED_STATUSES,
        subscription.period_start,
        subscription.period_end,
    )
    pending = 0
    if get_settings().quota_counts_pending_cases:
        pending = await count_cases(
            session,
            subscription.condominium_id,
            case_type,
            PENDING_STATUSES,
            subscription.period_start,
            subscription.period_end,
        )
    return QuotaAuthorization(case_type, limit_for(subscription, case_type), used, pending)


async def check_and_authorize(
    session: AsyncSession,
    condominium_id: str,
    case_type: Union[CaseType, str],
) -> QuotaAuthorization:
    """
    Authorize one more case of case_type for the condominium.

    Raises QuotaExceeded{type, limit, used} when the plan is missing,
    inactive, or the type's limit is already consumed.
    """
    case_type = CaseType(case_type)
    subscription = await get_subscription(session, condominium_id, for_update=True)

    if subscription is None or not subscription.active:
        reason = "no_subscription" if subscription is None else "inactive_subscription"
        logger.warning("Quota denied for %s (%s): %s", condominium_id, case_type.value, reason)
        raise QuotaExceeded(case_type.value, limit=0, used=0, reason=reason)

    quota = await measure(session, subscription, case_type)
    if quota.unlimited:
        return quota

    if quota.used + quota.pending >= quota.limit:
        logger.warning(
            "Quota exceeded for %s (%s): used=%s pending=%s limit=%s",
            condominium_id, case_type.value, quota.used, quota.pending, quota.limit,
        )
        exc = QuotaExceeded(case_type.value, limit=quota.limit, used=quota.used)
        exc.details["pending"] = quota.pending
        raise exc

    return quota


async def usage_report(session: AsyncSession, condominium_id: str) -> dict:
    """Used / limit / remaining for every case type in the current period."""
    subscription = await get_subscription(session, condominium_id)
    if subscription is None:
        raise NotFound(
            f"No subscription for condominium {condominium_id}",
            {"condominium_id": condominium_id},
        )

    usage = [await measure(session, subscription, case_type) for case_type in CaseType]
    return {
        "condominium_id": condominium_id,
        "plan": subscription.plan,
        "active": subscription.active,
        "period_start": subscription.period_start,
        "period_end": subscription.period_end,
        "usage": [q.to_dict() for q in usage],
    }


async def upsert_subscription(
    session: AsyncSession,
    actor: ActorContext,
    condominium_id: str,
    plan: str,
    active: bool,
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    notifications_limit: int,
    warnings_limit: int,
    fines_limit: int,
) -> SubscriptionPeriod:
    """Store the billing service's view of the condominium's current period."""
    actor.require("subscription_write")
    period_start = to_utc(period_start) if period_start else None
    period_end = to_utc(period_end) if period_end else None

    if period_start and period_end and period_end < period_start:
        raise ValidationFailed("period_end", "period_end must not be before period_start")
    for field_name, value in (
        ("notifications_limit", notifications_limit),
        ("warnings_limit", warnings_limit),
        ("fines_limit", fines_limit),
    ):
        if value < UNLIMITED:
            raise ValidationFailed(field_name, f"{field_name} must be -1 (unlimited) or >= 0")

    subscription = await get_subscription(session, condominium_id, for_update=True)
    if subscription is None:
        subscription = SubscriptionPeriod(id=str(uuid.uuid4()), condominium_id=condominium_id)
        session.add(subscription)

    subscription.plan = plan
    subscription.active = active
    subscription.period_start = period_start
    subscription.period_end = period_end
    subscription.notifications_limit = notifications_limit
    subscription.warnings_limit = warnings_limit
    subscription.fines_limit = fines_limit

    audit.record(
        session, actor, "subscription_synced", "subscription_periods", subscription.id,
        payload={
            "condominium_id": condominium_id,
            "plan": plan,
            "active": active,
            "limits": [notifications_limit, warnings_limit, fines_limit],
        },
    )
    await session.commit()
    logger.info("Subscription for %s synced (plan=%s, active=%s)", condominium_id, plan, active)
    return subscription
