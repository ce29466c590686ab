"""Snapshot documents: one row per entity collection

Revision ID: 20261019_snapshots
Revises:
Create Date: 2026-10-19

Backs the sql snapshot backend. Each flush replaces the body of every
collection row; nothing else in the store lives in SQL.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_snapshots'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('snapshot_documents',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('record_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade():
    op.drop_table('snapshot_documents')
