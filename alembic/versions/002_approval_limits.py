"""Approval limits

Revision ID: 002_approval_limits
Revises: 001_replenishment_core
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '002_approval_limits'
down_revision = '001_replenishment_core'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'approval_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('role', sa.String(100), nullable=True),
        sa.Column('max_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='AOA'),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('updated_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('max_amount >= 0', name='ck_approval_limits_max_amount'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_approval_limits_user_id', 'approval_limits', ['user_id'])

    # Global approval history is filtered by decision time
    op.create_index(
        'ix_purchase_order_approvals_decided_at', 'purchase_order_approvals', ['decided_at']
    )


def downgrade():
    op.drop_index('ix_purchase_order_approvals_decided_at', table_name='purchase_order_approvals')
    op.drop_index('ix_approval_limits_user_id', table_name='approval_limits')
    op.drop_table('approval_limits')
