"""initial ISMS schema

Revision ID: 000001_initial
Revises:
Create Date: 2026-10-16 00:00:01

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '000001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _stamps():
    return [
        sa.Column('created_at', sa.String(), nullable=False),
        sa.Column('updated_at', sa.String(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('industry', sa.String()),
        sa.Column('headcount', sa.String()),
        sa.Column('geography', sa.String()),
        *_stamps(),
    )
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('auth_subject', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('email', sa.String()),
        sa.Column('full_name', sa.String()),
        sa.Column('role', sa.String(), nullable=False),
        *_stamps(),
        sa.UniqueConstraint('auth_subject', name='uq_users_auth_subject'),
    )
    op.create_table(
        'intake_responses',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('question_key', sa.String(), nullable=False),
        sa.Column('response', sa.String()),
        *_stamps(),
        sa.UniqueConstraint('organization_id', 'question_key', name='uq_intake_responses_org_key'),
    )
    op.create_table(
        'isms_scopes',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('scope_statement', sa.String(), nullable=False),
        sa.Column('boundaries', sa.String()),
        sa.Column('exclusions', sa.String()),
        sa.Column('interested_parties', sa.String()),
        sa.Column('regulatory_requirements', sa.String()),
        sa.Column('approved_by', sa.String()),
        sa.Column('approved_at', sa.String()),
        *_stamps(),
        sa.UniqueConstraint('organization_id', name='uq_isms_scopes_org'),
    )
    op.create_table(
        'approval_logs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('object_type', sa.String(), nullable=False),
        sa.Column('object_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('approved_by', sa.String()),
        sa.Column('approved_at', sa.String(), nullable=False),
        sa.Column('comment', sa.String()),
        sa.Column('metadata', sa.String()),
        sa.Column('request_id', sa.String()),
    )
    op.create_table(
        'assets',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('asset_type', sa.String(), nullable=False),
        sa.Column('description', sa.String()),
        sa.Column('owner_id', sa.String()),
        sa.Column('criticality', sa.String(), nullable=False),
        sa.Column('in_scope', sa.Boolean(), nullable=False),
        *_stamps(),
    )
    op.create_table(
        'risks',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('asset_id', sa.String(), sa.ForeignKey('assets.id', ondelete='SET NULL')),
        sa.Column('threat', sa.String(), nullable=False),
        sa.Column('vulnerability', sa.String()),
        sa.Column('impact', sa.String(), nullable=False),
        sa.Column('likelihood', sa.String(), nullable=False),
        sa.Column('risk_level', sa.String(), nullable=False),
        sa.Column('treatment', sa.String(), nullable=False),
        sa.Column('treatment_plan', sa.String()),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('owner_id', sa.String()),
        sa.Column('approved_by', sa.String()),
        sa.Column('approved_at', sa.String()),
        *_stamps(),
    )
    op.create_table(
        'controls',
        sa.Column('control_id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('intent', sa.String()),
        sa.Column('theme', sa.String(), nullable=False),
    )
    op.create_table(
        'organization_controls',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('control_id', sa.String(), sa.ForeignKey('controls.control_id'), nullable=False),
        sa.Column('applicable', sa.Boolean(), nullable=False),
        sa.Column('justification', sa.String()),
        sa.Column('implementation_status', sa.String(), nullable=False),
        *_stamps(),
        sa.UniqueConstraint('organization_id', 'control_id', name='uq_organization_controls_org_control'),
    )
    op.create_table(
        'soa_records',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('control_id', sa.String(), sa.ForeignKey('controls.control_id'), nullable=False),
        sa.Column('applicable', sa.Boolean(), nullable=False),
        sa.Column('justification', sa.String()),
        sa.Column('linked_risks', sa.String()),
        sa.Column('linked_evidence', sa.String()),
        sa.Column('locked_for_audit', sa.Boolean(), nullable=False),
        sa.Column('locked_by', sa.String()),
        sa.Column('locked_at', sa.String()),
        *_stamps(),
        sa.UniqueConstraint('organization_id', 'control_id', name='uq_soa_records_org_control'),
    )
    op.create_table(
        'evidence',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('control_id', sa.String(), sa.ForeignKey('controls.control_id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.String()),
        sa.Column('evidence_type', sa.String(), nullable=False),
        sa.Column('evidence_url', sa.String(), nullable=False),
        sa.Column('stage_acceptable', sa.String(), nullable=False),
        sa.Column('uploaded_by', sa.String()),
        sa.Column('uploaded_at', sa.String(), nullable=False),
        *_stamps(),
    )


def downgrade() -> None:
    for tbl in [
        'evidence',
        'soa_records',
        'organization_controls',
        'controls',
        'risks',
        'assets',
        'approval_logs',
        'isms_scopes',
        'intake_responses',
        'users',
        'organizations',
    ]:
        op.drop_table(tbl)
