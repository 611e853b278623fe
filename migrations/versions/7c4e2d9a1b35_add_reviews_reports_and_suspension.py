"""Add reviews, transaction reports and user moderation fields

Revision ID: 7c4e2d9a1b35
Revises: 3f1a9c2b7d10
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


revision = '7c4e2d9a1b35'
down_revision = '3f1a9c2b7d10'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('user', schema=None) as batch_op:
        batch_op.add_column(sa.Column('warning_count', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('is_suspended', sa.Boolean(), nullable=True))
        batch_op.add_column(sa.Column('suspended_at', sa.DateTime(), nullable=True))

    op.execute("UPDATE \"user\" SET warning_count = 0 WHERE warning_count IS NULL")
    op.execute("UPDATE \"user\" SET is_suspended = false WHERE is_suspended IS NULL")

    op.create_table(
        'review',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('reviewer_id', sa.Integer(), nullable=False),
        sa.Column('reviewee_id', sa.Integer(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['transaction.id'], ),
        sa.ForeignKeyConstraint(['reviewer_id'], ['user.id'], ),
        sa.ForeignKeyConstraint(['reviewee_id'], ['user.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'reviewer_id', name='uq_review_transaction_reviewer')
    )
    with op.batch_alter_table('review', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_review_transaction_id'), ['transaction_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_review_reviewee_id'), ['reviewee_id'], unique=False)

    op.create_table(
        'report',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('reporter_id', sa.Integer(), nullable=False),
        sa.Column('reported_user_id', sa.Integer(), nullable=False),
        sa.Column('report_type', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('action_taken', sa.String(length=20), nullable=True),
        sa.Column('admin_notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['transaction.id'], ),
        sa.ForeignKeyConstraint(['reporter_id'], ['user.id'], ),
        sa.ForeignKeyConstraint(['reported_user_id'], ['user.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('report', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_report_transaction_id'), ['transaction_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_report_reported_user_id'), ['reported_user_id'], unique=False)


def downgrade():
    with op.batch_alter_table('report', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_report_reported_user_id'))
        batch_op.drop_index(batch_op.f('ix_report_transaction_id'))
    op.drop_table('report')

    with op.batch_alter_table('review', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_review_reviewee_id'))
        batch_op.drop_index(batch_op.f('ix_review_transaction_id'))
    op.drop_table('review')

    with op.batch_alter_table('user', schema=None) as batch_op:
        batch_op.drop_column('suspended_at')
        batch_op.drop_column('is_suspended')
        batch_op.drop_column('warning_count')
