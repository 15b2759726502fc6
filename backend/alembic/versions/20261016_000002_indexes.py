"""org-scoped indexes

Revision ID: 000002_indexes
Revises: 000001_initial
Create Date: 2026-10-16 00:00:02

"""
from alembic import op


revision = '000002_indexes'
down_revision = '000001_initial'
branch_labels = None
depends_on = None


ORG_INDEXED = ['assets', 'risks', 'evidence']


def upgrade() -> None:
    for tbl in ORG_INDEXED:
        op.create_index(f'ix_{tbl}_organization_id', tbl, ['organization_id'])
    op.create_index('ix_approval_logs_object', 'approval_logs', ['object_type', 'object_id'])
    op.create_index('ix_approval_logs_org_approved', 'approval_logs', ['organization_id', 'approved_at'])


def downgrade() -> None:
    op.drop_index('ix_approval_logs_org_approved', table_name='approval_logs')
    op.drop_index('ix_approval_logs_object', table_name='approval_logs')
    for tbl in ORG_INDEXED:
        op.drop_index(f'ix_{tbl}_organization_id', table_name=tbl)
