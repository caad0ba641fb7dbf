"""
Condo Compliance Database Models
SQLAlchemy ORM models for the infraction case lifecycle.

All datetime columns use UTCDateTime so values are always timezone-aware UTC,
on SQLite as well as PostgreSQL. Use utc_now() from app.core.utc for defaults.

Directory ids (condominium, block, apartment, resident) are stored as plain
strings: the directory lives in an external service, not in this database.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.utc import to_utc, utc_now


class UTCDateTime(TypeDecorator):
    """DateTime(timezone=True) that always binds and returns aware UTC values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return to_utc(value)


# Type alias for timezone-aware DateTime columns
DateTimeTZ = UTCDateTime()


# =============================================================================
# Subscription Periods (billing-owned, read by the quota guard)
# =============================================================================

class SubscriptionPeriod(Base):
    """
    Active billing window and per-type limits for one condominium.

    A limit of -1 means unlimited. Managed by the billing service through
    PUT /api/subscriptions/{condominium_id}.
    """
    __tablename__ = "subscription_periods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    condominium_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)

    plan: Mapped[str] = mapped_column(String(30), default="start")  # start, essential, professional, enterprise
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Billing window (missing bound = open)
    period_start: Mapped[Optional[datetime]] = mapped_column(DateTimeTZ, nullable=True)
    period_end: Mapped[Optional[datetime]] = mapped_column(DateTimeTZ, nullable=True)

    # Per-type limits (-1 = unlimited)
    notifications_limit: Mapped[int] = mapped_column(Integer, default=10)
    warnings_limit: Mapped[int] = mapped_column(Integer, default=10)
    fines_limit: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now, onupdate=utc_now)


# =============================================================================
# Cases (infraction occurrences)
# =============================================================================

class Case(Base):
    """
    Infraction case raised against a unit/resident.
    Status moves forward only; rows are never deleted.
    """
    __tablename__ = "cases"
    __table_args__ = (
        Index("ix_cases_quota", "condominium_id", "type", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    condominium_id: Mapped[str] = mapped_column(String(36), index=True)

    # Directory links
    block_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    apartment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    resident_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    registered_by: Mapped[str] = mapped_column(String(36))

    # Classification
    type: Mapped[str] = mapped_column(String(20))  # warning, notice, fine
    status: Mapped[str] = mapped_column(String(20), default="registered", index=True)

    # Facts
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTimeTZ)

    # Legal basis
    legal_basis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    convention_article: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    internal_rules_article: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    civil_code_article: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now, onupdate=utc_now)

    # Relationships
    evidence: Mapped[list["Evidence"]] = relationship(back_populates="case", order_by="Evidence.created_at")
    notifications: Mapped[list["NotificationEvent"]] = relationship(
        back_populates="case", order_by="NotificationEvent.sent_at"
    )
    defense: Mapped[Optional["Defense"]] = relationship(back_populates="case", uselist=False)
    decision: Mapped[Optional["Decision"]] = relationship(back_populates="case", uselist=False)


class Evidence(Base):
    """Append-only proof attached to a case (file lives in the blob store)."""
    __tablename__ = "case_evidence"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(36), ForeignKey("cases.id"), index=True)

    file_url: Mapped[str] = mapped_column(String(1000))
    file_type: Mapped[str] = mapped_column(String(50))  # image, video, document, audio
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    uploaded_by: Mapped[str] = mapped_column(String(36))

    created_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)

    case: Mapped["Case"] = relationship(back_populates="evidence")


# =============================================================================
# Notifications
# =============================================================================

class NotificationEvent(Base):
    """
    One send of a case notice through an external channel.
    Delivery / read / acknowledge timestamps are filled in by channel callbacks.
    """
    __tablename__ = "notification_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(36), ForeignKey("cases.id"), index=True)
    resident_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    channel: Mapped[str] = mapped_column(String(30), default="whatsapp")
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    sent_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTimeTZ, nullable=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTimeTZ, nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTimeTZ, nullable=True)

    case: Mapped["Case"] = relationship(back_populates="notifications")


# =============================================================================
# Defense
# =============================================================================

class Defense(Base):
    """
    Resident's written rebuttal. One per case.
    deadline is frozen at submission time.
    """
    __tablename__ = "defenses"
    __table_args__ = (UniqueConstraint("case_id", name="uq_defenses_case_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(36), ForeignKey("cases.id"), index=True)
    resident_id: Mapped[str] = mapped_column(String(36))

    content: Mapped[str] = mapped_column(Text)
    submitted_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)
    deadline: Mapped[datetime] = mapped_column(DateTimeTZ)

    case: Mapped["Case"] = relationship(back_populates="defense")
    attachments: Mapped[list["DefenseAttachment"]] = relationship(back_populates="defense")


class DefenseAttachment(Base):
    """File supplied together with a defense."""
    __tablename__ = "defense_attachments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    defense_id: Mapped[str] = mapped_column(String(36), ForeignKey("defenses.id"), index=True)

    file_url: Mapped[str] = mapped_column(String(1000))
    file_type: Mapped[str] = mapped_column(String(50))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)

    defense: Mapped["Defense"] = relationship(back_populates="attachments")


# =============================================================================
# Decision & Fine
# =============================================================================

class Decision(Base):
    """Terminal ruling on a case. One per case."""
    __tablename__ = "decisions"
    __table_args__ = (UniqueConstraint("case_id", name="uq_decisions_case_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(36), ForeignKey("cases.id"), index=True)

    decision: Mapped[str] = mapped_column(String(20))  # archived, warned, fined
    justification: Mapped[str] = mapped_column(Text)
    decided_by: Mapped[str] = mapped_column(String(36))
    decided_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)

    case: Mapped["Case"] = relationship(back_populates="decision")


class Fine(Base):
    """Monetary penalty issued by a 'fined' decision."""
    __tablename__ = "fines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    case_id: Mapped[str] = mapped_column(String(36), ForeignKey("cases.id"), unique=True, index=True)
    resident_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    amount: Mapped[int] = mapped_column(Integer)  # Store in cents to avoid float issues
    status: Mapped[str] = mapped_column(String(20), default="open")  # open, paid, overdue
    due_date: Mapped[datetime] = mapped_column(DateTimeTZ)

    created_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)


# =============================================================================
# Audit Trail
# =============================================================================

class AuditLog(Base):
    """
    Who did what to which record. Written in the same transaction as the change.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    actor_id: Mapped[str] = mapped_column(String(36), index=True)
    actor_role: Mapped[str] = mapped_column(String(20))

    action: Mapped[str] = mapped_column(String(50))  # case_registered, defense_submitted, ...
    entity: Mapped[str] = mapped_column(String(50))  # table name
    entity_id: Mapped[str] = mapped_column(String(36))
    case_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON

    created_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)
