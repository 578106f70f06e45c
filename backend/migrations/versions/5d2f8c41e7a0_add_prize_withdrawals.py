"""add prize withdrawals

Revision ID: 5d2f8c41e7a0
Revises: 1c7e0a9b2f3d
Create Date: 2026-10-18 16:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5d2f8c41e7a0'
down_revision = '1c7e0a9b2f3d'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'withdrawal',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=False),
        sa.Column('prize_id', sa.Integer(), sa.ForeignKey('prize.id'), nullable=False),
        sa.Column('certificate_id', sa.Integer(), sa.ForeignKey('prize_certificate.id'), nullable=False),
        sa.Column('hash', sa.String(length=64), nullable=False),
        sa.Column('amount_withdrawn', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('prize_id'),
    )
    op.create_index('ix_withdrawal_convincer_id', 'withdrawal', ['convincer_id'])


def downgrade():
    op.drop_index('ix_withdrawal_convincer_id', table_name='withdrawal')
    op.drop_table('withdrawal')
