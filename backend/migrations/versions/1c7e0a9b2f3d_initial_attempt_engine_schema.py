"""initial schema: convincers, time ledger, attempts, conversation, prizes

Revision ID: 1c7e0a9b2f3d
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1c7e0a9b2f3d'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'convincer',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_convincer_email', 'convincer', ['email'], unique=True)

    op.create_table(
        'payment',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=False),
        sa.Column('amount_paid', sa.Numeric(10, 2), nullable=False),
        sa.Column('time_purchased_seconds', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_convincer_id', 'payment', ['convincer_id'])

    op.create_table(
        'time_balance',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=False),
        sa.Column('amount_time_seconds', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount_time_seconds >= 0', name='ck_time_balance_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('convincer_id'),
    )

    op.create_table(
        'time_credit',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=False),
        sa.Column('payment_reference', sa.String(length=64), nullable=False),
        sa.Column('seconds', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_reference'),
    )
    op.create_index('ix_time_credit_convincer_id', 'time_credit', ['convincer_id'])

    op.create_table(
        'attempt',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('available_time_seconds', sa.Integer(), nullable=False),
        sa.Column('convincing_score', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_attempt_convincer_id', 'attempt', ['convincer_id'])
    # At most one active attempt per convincer
    op.create_index(
        'uq_attempt_one_active_per_convincer',
        'attempt',
        ['convincer_id'],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        'message',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.Integer(), sa.ForeignKey('attempt.id'), nullable=False),
        sa.Column('convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('convincing_score_snapshot', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_message_attempt_id', 'message', ['attempt_id'])

    op.create_table(
        'ai_response',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.Integer(), sa.ForeignKey('attempt.id'), nullable=False),
        sa.Column('user_message_id', sa.Integer(), sa.ForeignKey('message.id'), nullable=False),
        sa.Column('ai_response', sa.Text(), nullable=False),
        sa.Column('convincing_score_snapshot', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_message_id'),
    )
    op.create_index('ix_ai_response_attempt_id', 'ai_response', ['attempt_id'])

    op.create_table(
        'prize',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('winner_convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=True),
        sa.Column('winning_attempt_id', sa.Integer(), sa.ForeignKey('attempt.id'), nullable=True),
        sa.Column('distributed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'prize_certificate',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('convincer_id', sa.Integer(), sa.ForeignKey('convincer.id'), nullable=False),
        sa.Column('prize_id', sa.Integer(), sa.ForeignKey('prize.id'), nullable=False),
        sa.Column('hash', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('prize_id'),
    )
    op.create_index('ix_prize_certificate_convincer_id', 'prize_certificate', ['convincer_id'])
    op.create_index('ix_prize_certificate_hash', 'prize_certificate', ['hash'], unique=True)


def downgrade():
    op.drop_index('ix_prize_certificate_hash', table_name='prize_certificate')
    op.drop_index('ix_prize_certificate_convincer_id', table_name='prize_certificate')
    op.drop_table('prize_certificate')
    op.drop_table('prize')
    op.drop_index('ix_ai_response_attempt_id', table_name='ai_response')
    op.drop_table('ai_response')
    op.drop_index('ix_message_attempt_id', table_name='message')
    op.drop_table('message')
    op.drop_index('uq_attempt_one_active_per_convincer', table_name='attempt')
    op.drop_index('ix_attempt_convincer_id', table_name='attempt')
    op.drop_table('attempt')
    op.drop_index('ix_time_credit_convincer_id', table_name='time_credit')
    op.drop_table('time_credit')
    op.drop_table('time_balance')
    op.drop_index('ix_payment_convincer_id', table_name='payment')
    op.drop_table('payment')
    op.drop_index('ix_convincer_email', table_name='convincer')
    op.drop_table('convincer')
