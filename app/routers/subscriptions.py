"""
Subscription API - billing pushes the current period in, managers read usage.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.user_context import ActorContext, get_actor
from app.services.compliance import quota_guard

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


class SubscriptionUpsert(BaseModel):
    """Billing view of the condominium's plan. A limit of -1 means unlimited."""
    plan: str = "start"
    active: bool = True
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    notifications_limit: int = 10
    warnings_limit: int = 10
    fines_limit: int = 0


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    condominium_id: str
    plan: str
    active: bool
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    notifications_limit: int
    warnings_limit: int
    fines_limit: int


class QuotaUsage(BaseModel):
    type: str
    limit: int
    used: int
    pending: int
    remaining: Optional[int]
    unlimited: bool


class UsageReport(BaseModel):
    condominium_id: str
    plan: str
    active: bool
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    usage: list[QuotaUsage]


@router.put("/{condominium_id}", response_model=SubscriptionResponse)
async def upsert_subscription(
    condominium_id: str,
    body: SubscriptionUpsert,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    subscription = await quota_guard.upsert_subscription(
        db, actor, condominium_id, **body.model_dump()
    )
    return SubscriptionResponse.model_validate(subscription)


@router.get("/{condominium_id}/usage", response_model=UsageReport)
async def get_usage(
    condominium_id: str,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    """Used / limit / remaining per case type for the current period."""
    actor.require("subscription_read")
    return UsageReport(**await quota_guard.usage_report(db, condominium_id))
