"""Create compliance case lifecycle tables

Revision ID: create_compliance_tables
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_compliance_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create subscription, case, evidence, notification, defense, decision, fine and audit tables."""

    op.create_table(
        'subscription_periods',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('condominium_id', sa.String(36), nullable=False),
        sa.Column('plan', sa.String(30), nullable=False, server_default='start'),
        sa.Column('active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notifications_limit', sa.Integer, nullable=False, server_default='10'),  # -1 = unlimited
        sa.Column('warnings_limit', sa.Integer, nullable=False, server_default='10'),
        sa.Column('fines_limit', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_subscription_periods_condominium_id', 'subscription_periods', ['condominium_id'], unique=True)

    op.create_table(
        'cases',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('condominium_id', sa.String(36), nullable=False),
        sa.Column('block_id', sa.String(36), nullable=True),
        sa.Column('apartment_id', sa.String(36), nullable=True),
        sa.Column('resident_id', sa.String(36), nullable=True),
        sa.Column('registered_by', sa.String(36), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),  # warning, notice, fine
        sa.Column('status', sa.String(20), nullable=False, server_default='registered'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('location', sa.String(255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('legal_basis', sa.Text, nullable=True),
        sa.Column('convention_article', sa.String(100), nullable=True),
        sa.Column('internal_rules_article', sa.String(100), nullable=True),
        sa.Column('civil_code_article', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_cases_condominium_id', 'cases', ['condominium_id'])
    op.create_index('ix_cases_apartment_id', 'cases', ['apartment_id'])
    op.create_index('ix_cases_resident_id', 'cases', ['resident_id'])
    op.create_index('ix_cases_status', 'cases', ['status'])
    op.create_index('ix_cases_quota', 'cases', ['condominium_id', 'type', 'status', 'created_at'])

    op.create_table(
        'case_evidence',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('case_id', sa.String(36), sa.ForeignKey('cases.id'), nullable=False),
        sa.Column('file_url', sa.String(1000), nullable=False),
        sa.Column('file_type', sa.String(50), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('uploaded_by', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_case_evidence_case_id', 'case_evidence', ['case_id'])

    op.create_table(
        'notification_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('case_id', sa.String(36), sa.ForeignKey('cases.id'), nullable=False),
        sa.Column('resident_id', sa.String(36), nullable=True),
        sa.Column('channel', sa.String(30), nullable=False, server_default='whatsapp'),
        sa.Column('provider_message_id', sa.String(100), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_notification_events_case_id', 'notification_events', ['case_id'])
    op.create_index('ix_notification_events_provider_message_id', 'notification_events', ['provider_message_id'])

    op.create_table(
        'defenses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('case_id', sa.String(36), sa.ForeignKey('cases.id'), nullable=False),
        sa.Column('resident_id', sa.String(36), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('deadline', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('case_id', name='uq_defenses_case_id'),
    )
    op.create_index('ix_defenses_case_id', 'defenses', ['case_id'])

    op.create_table(
        'defense_attachments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('defense_id', sa.String(36), sa.ForeignKey('defenses.id'), nullable=False),
        sa.Column('file_url', sa.String(1000), nullable=False),
        sa.Column('file_type', sa.String(50), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_defense_attachments_defense_id', 'defense_attachments', ['defense_id'])

    op.create_table(
        'decisions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('case_id', sa.String(36), sa.ForeignKey('cases.id'), nullable=False),
        sa.Column('decision', sa.String(20), nullable=False),  # archived, warned, fined
        sa.Column('justification', sa.Text, nullable=False),
        sa.Column('decided_by', sa.String(36), nullable=False),
        sa.Column('decided_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('case_id', name='uq_decisions_case_id'),
    )
    op.create_index('ix_decisions_case_id', 'decisions', ['case_id'])

    op.create_table(
        'fines',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('case_id', sa.String(36), sa.ForeignKey('cases.id'), nullable=False),
        sa.Column('resident_id', sa.String(36), nullable=True),
        sa.Column('amount', sa.Integer, nullable=False),  # cents
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_fines_case_id', 'fines', ['case_id'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('actor_id', sa.String(36), nullable=False),
        sa.Column('actor_role', sa.String(20), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('case_id', sa.String(36), nullable=True),
        sa.Column('payload', sa.Text, nullable=True),  # JSON
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_case_id', 'audit_logs', ['case_id'])


def downgrade() -> None:
    """Drop compliance tables."""
    op.drop_table('audit_logs')
    op.drop_table('fines')
    op.drop_table('decisions')
    op.drop_table('defense_attachments')
    op.drop_table('defenses')
    op.drop_table('notification_events')
    op.drop_table('case_evidence')
    op.drop_table('cases')
    op.drop_table('subscription_periods')
