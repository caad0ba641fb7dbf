"""
Compliance Case Lifecycle Engine
================================

Infraction cases from registration to a terminal ruling.

Components (leaf first):
- status: CaseStatus / CaseType / DecisionOutcome and the transition graph
- quota_guard: subscription limits per case type
- case_registry: case creation (quota-gated), reads, status transitions
- evidence_ledger: append-only proofs
- defense_window: defense eligibility, deadline and submission
- notification_tracker: sent / delivered / read / acknowledged
- decision_authority: terminal ruling (+ fine)
- timeline: ordered projection of all of the above
- audit: audit trail written with every change

Usage:
    from app.services.compliance import case_registry, NewCase

    case = await case_registry.create_case(db, actor, NewCase(...))
"""

from .case_registry import NewCase
from .defense_window import AttachmentRef, DefenseWindow
from .quota_guard import QuotaAuthorization
from .status import (
    CaseOutcome,
    CaseStatus,
    CaseType,
    Closed,
    DecisionOutcome,
    Open,
    TERMINAL_STATUSES,
    display_status,
    outcome_for,
)
from .timeline import TimelineItem, TimelineKind

__all__ = [
    "AttachmentRef",
    "CaseOutcome",
    "CaseStatus",
    "CaseType",
    "Closed",
    "DecisionOutcome",
    "DefenseWindow",
    "NewCase",
    "Open",
    "QuotaAuthorization",
    "TERMINAL_STATUSES",
    "TimelineItem",
    "TimelineKind",
    "display_status",
    "outcome_for",
]
